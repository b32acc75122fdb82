"""Deterministic file and object names for documents and packages."""

import re
from datetime import date

_WHITESPACE = re.compile(r"\s+")
_FORBIDDEN = re.compile(r'[\\/:*?"<>|]')
_DOTS = re.compile(r"\.+")

MAX_PART_LENGTH = 50

KIND_PREFIXES = {
    "site_handover": "Site_handover_act",
    "assignment_order": "Assignment_order",
    "hse_briefing": "HSE_briefing_log",
    "work_plan": "Work_plan",
    "kickoff_protocol": "Kickoff_protocol",
    "hidden_work_act": "Hidden_work_act",
    "critical_structure_act": "Critical_structure_act",
    "network_act": "Network_act",
    "geodetic_act": "Geodetic_act",
    "executive_drawing": "As_built_drawing",
    "incoming_control_act": "Incoming_control_act",
    "material_certificate": "Material_certificate",
    "test_protocol": "Test_protocol",
    "interim_acceptance": "Interim_acceptance_act",
    "defect_list": "Defect_list",
    "completion_act": "Completion_act",
    "handover_act": "Documentation_handover_act",
    "correspondence": "Letter",
    "other": "Document",
}


def sanitize_for_file_name(value) -> str:
    """Whitespace → ``_``, drop path-hostile characters, cap the length."""
    text = _WHITESPACE.sub("_", str(value or "").strip())
    text = _FORBIDDEN.sub("", text)
    text = _DOTS.sub("_", text)
    return text[:MAX_PART_LENGTH]


def document_file_name(
    kind: str,
    zone: str | None,
    work: str | None,
    document_date: date | None,
    revision: int,
    extension: str = "pdf",
) -> str:
    """e.g. ``Hidden_work_act_Zone-Block_A_Work-Slab_pour_2024-01-15_Rev01.pdf``"""
    prefix = KIND_PREFIXES.get(kind, KIND_PREFIXES["other"])
    parts = [prefix]
    if zone:
        parts.append(f"Zone-{sanitize_for_file_name(zone)}")
    if work:
        parts.append(f"Work-{sanitize_for_file_name(work)}")
    if document_date:
        parts.append(document_date.isoformat())
    parts.append(f"Rev{revision:02d}")
    return f"{'_'.join(parts)}.{extension}"


def package_object_name(project_code: str, package_name: str, built_on: date, suffix: str) -> str:
    """Blob path for a built package artefact: ``packages/<code>/<name>_<date><suffix>``."""
    return (
        f"packages/{sanitize_for_file_name(project_code)}/"
        f"{sanitize_for_file_name(package_name)}_{built_on.isoformat()}{suffix}"
    )
