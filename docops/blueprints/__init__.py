"""
DocOps Compliance Engine
Blueprint registry and request-parsing helpers.
"""


def parse_id_list(value) -> list[int] | None:
    """Coerce a JSON list of ids to ints; None when the payload is not a list of ints."""
    if not isinstance(value, list):
        return None
    try:
        return [int(v) for v in value]
    except (TypeError, ValueError):
        return None


def optional_int(value) -> int | None:
    """``actor_id`` / ``person_id`` style optional integer; raises ValueError on junk."""
    if value is None or value == "":
        return None
    return int(value)
