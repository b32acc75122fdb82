"""
HTTP contract tests for the matrix, documents and packages blueprints.

Covers status codes and error bodies:
    201 creation · 200 reads/actions · 400 malformed input · 403 wrong signer
    404 unknown ids · 409 illegal transition / duplicate / locked · 415 content type
    422 business-rule and validation failures
"""

from docops.models import db
from docops.models.matrix import MatrixRule


def _rule_body(**overrides):
    body = {
        "work_category": "concrete",
        "document_kind": "hidden_work_act",
        "trigger_event": "work completed",
        "preparer_role": "responsible_producer",
        "signer_roles": ["tech_supervisor_rep", "author_supervisor_rep"],
        "required_attachments": ["material certificate", "as-built diagram"],
    }
    body.update(overrides)
    return body


# ═════════════════════════════════════════════════════════════════════════════
# Matrix
# ═════════════════════════════════════════════════════════════════════════════


class TestMatrixApi:
    def test_create_and_list_rules(self, client):
        res = client.post("/api/v1/matrix/rules", json=_rule_body())
        assert res.status_code == 201
        rule = res.get_json()
        assert rule["scope"] == "global"

        listing = client.get("/api/v1/matrix/rules").get_json()
        assert listing["total"] == 1
        assert listing["items"][0]["id"] == rule["id"]

    def test_duplicate_rule_409(self, client):
        client.post("/api/v1/matrix/rules", json=_rule_body())
        res = client.post("/api/v1/matrix/rules", json=_rule_body())
        assert res.status_code == 409
        assert res.get_json()["code"] == "ERR_CONFLICT_DUPLICATE"

    def test_invalid_rule_422(self, client):
        res = client.post("/api/v1/matrix/rules", json=_rule_body(signer_roles=[]))
        assert res.status_code == 422

    def test_non_numeric_sort_order_422(self, client):
        res = client.post("/api/v1/matrix/rules", json=_rule_body(sort_order="first"))
        assert res.status_code == 422
        assert res.get_json()["details"] == {"sort_order": "integer"}

    def test_activation_requires_boolean(self, client):
        rule = client.post("/api/v1/matrix/rules", json=_rule_body()).get_json()
        res = client.post(f"/api/v1/matrix/rules/{rule['id']}/active", json={"is_active": "no"})
        assert res.status_code == 400
        res = client.post(f"/api/v1/matrix/rules/{rule['id']}/active", json={"is_active": False})
        assert res.status_code == 200
        assert res.get_json()["is_active"] is False

    def test_seed_defaults(self, client):
        res = client.post("/api/v1/matrix/seed-defaults", json={})
        assert res.status_code == 200
        assert res.get_json()["created"] == MatrixRule.query.count()

    def test_assign_role(self, client, project, staff):
        res = client.post(
            f"/api/v1/projects/{project.id}/roles",
            json={"role": "qa_engineer", "person_id": staff["tech_supervisor_rep"].id},
        )
        assert res.status_code == 409

        res = client.post(
            f"/api/v1/projects/{project.id}/roles",
            json={"role": "subcontractor_rep", "person_id": staff["tech_supervisor_rep"].id},
        )
        assert res.status_code == 201

    def test_trigger_creates_documents(self, client, staff, work_unit):
        client.post("/api/v1/matrix/rules", json=_rule_body())

        res = client.post(f"/api/v1/work-units/{work_unit.id}/triggers", json={"trigger_event": "work completed"})

        assert res.status_code == 201
        body = res.get_json()
        assert len(body["created"]) == 1
        assert [s["signer_role"] for s in body["created"][0]["signatures"]] == [
            "tech_supervisor_rep", "author_supervisor_rep",
        ]

        preview = client.get(
            f"/api/v1/work-units/{work_unit.id}/required-documents",
            query_string={"trigger_event": "work completed"},
        ).get_json()
        assert preview["total"] == 0

    def test_trigger_requires_event(self, client, work_unit):
        res = client.post(f"/api/v1/work-units/{work_unit.id}/triggers", json={})
        assert res.status_code == 400
        assert res.get_json()["code"] == "ERR_VALIDATION_REQUIRED"

    def test_trigger_unknown_work_unit(self, client):
        res = client.post("/api/v1/work-units/99999/triggers", json={"trigger_event": "work completed"})
        assert res.status_code == 404

    def test_non_json_body_415(self, client):
        res = client.post("/api/v1/matrix/rules", data="work_category=concrete", content_type="text/plain")
        assert res.status_code == 415


# ═════════════════════════════════════════════════════════════════════════════
# Documents
# ═════════════════════════════════════════════════════════════════════════════


class TestDocumentApi:
    def test_get_document(self, client, make_document):
        doc = make_document()
        res = client.get(f"/api/v1/documents/{doc.id}")
        assert res.status_code == 200
        assert len(res.get_json()["signatures"]) == 2

    def test_unknown_document_404(self, client):
        assert client.get("/api/v1/documents/99999").status_code == 404

    def test_transition_ok(self, client, make_document, staff):
        doc = make_document()
        res = client.post(
            f"/api/v1/documents/{doc.id}/transition",
            json={"to_status": "in_review", "actor_id": staff["qa_engineer"].id},
        )
        assert res.status_code == 200
        assert res.get_json()["status"] == "in_review"

    def test_illegal_transition_409(self, client, make_document, staff):
        doc = make_document()
        res = client.post(
            f"/api/v1/documents/{doc.id}/transition",
            json={"to_status": "signed", "actor_id": staff["qa_engineer"].id},
        )
        assert res.status_code == 409
        body = res.get_json()
        assert body["code"] == "ERR_ILLEGAL_TRANSITION"
        assert body["details"] == {"current_status": "draft", "target_status": "signed"}

    def test_validation_failure_422_lists_findings(self, client, make_document, staff):
        doc = make_document(status="in_review", fields={})
        res = client.post(
            f"/api/v1/documents/{doc.id}/transition",
            json={"to_status": "pending_signature", "actor_id": staff["qa_engineer"].id},
        )
        assert res.status_code == 422
        body = res.get_json()
        assert body["code"] == "ERR_VALIDATION_FAILED"
        assert 'Required field not filled: "act_number"' in body["details"]["errors"]
        assert body["details"]["warnings"]

    def test_transition_input_checks(self, client, make_document, staff):
        doc = make_document()
        url = f"/api/v1/documents/{doc.id}/transition"
        assert client.post(url, json={"actor_id": staff["qa_engineer"].id}).status_code == 400
        assert client.post(url, json={"to_status": "in_review"}).status_code == 400
        res = client.post(url, json={"to_status": "approved", "actor_id": staff["qa_engineer"].id})
        assert res.status_code == 400
        assert "valid_statuses" in res.get_json()["details"]

    def test_non_string_target_status_400(self, client, make_document, staff):
        doc = make_document()
        actor_id = staff["qa_engineer"].id
        res = client.post(f"/api/v1/documents/{doc.id}/transition", json={"to_status": 5, "actor_id": actor_id})
        assert res.status_code == 400
        assert res.get_json()["code"] == "ERR_VALIDATION_INVALID"
        res = client.post("/api/v1/documents/bulk-transition", json={
            "document_ids": [doc.id], "to_status": ["in_review"], "actor_id": actor_id,
        })
        assert res.status_code == 400

    def test_allowed_transitions(self, client, make_document):
        doc = make_document()
        body = client.get(f"/api/v1/documents/{doc.id}/transitions").get_json()
        assert body["allowed"] == ["in_review"]

    def test_bulk_transition_200_with_partial_failure(self, client, make_document, staff):
        ok = make_document()
        locked = make_document(status="signed")
        res = client.post("/api/v1/documents/bulk-transition", json={
            "document_ids": [ok.id, locked.id],
            "to_status": "in_review",
            "actor_id": staff["qa_engineer"].id,
        })
        assert res.status_code == 200
        body = res.get_json()
        assert (body["succeeded"], body["failed"]) == (1, 1)

    def test_history_endpoint(self, client, make_document, staff):
        doc = make_document()
        client.post(f"/api/v1/documents/{doc.id}/transition",
                    json={"to_status": "signed", "actor_id": staff["qa_engineer"].id})
        client.post(f"/api/v1/documents/{doc.id}/transition",
                    json={"to_status": "in_review", "actor_id": staff["qa_engineer"].id})

        applied = client.get(f"/api/v1/documents/{doc.id}/history").get_json()
        everything = client.get(f"/api/v1/documents/{doc.id}/history?include_rejected=true").get_json()
        assert applied["total"] == 1
        assert everything["total"] == 2

    def test_validation_report(self, client, make_document):
        doc = make_document()
        body = client.get(f"/api/v1/documents/{doc.id}/validation").get_json()
        assert body["valid"] is True
        assert body["errors"] == []

    def test_edit_locked_document_409(self, client, make_document):
        doc = make_document(status="signed")
        res = client.put(f"/api/v1/documents/{doc.id}", json={"title": "Changed"})
        assert res.status_code == 409
        assert res.get_json()["code"] == "ERR_CONFLICT_STATE"

    def test_add_attachment_201(self, client, make_document, staff):
        doc = make_document(attachments=[])
        res = client.post(f"/api/v1/documents/{doc.id}/attachments", json={
            "file_name": "passport.pdf", "category": "certificate", "actor_id": staff["qa_engineer"].id,
        })
        assert res.status_code == 201

    def test_revisions(self, client, make_document):
        doc = make_document(status="signed")
        res = client.post(f"/api/v1/documents/{doc.id}/revisions", json={})
        assert res.status_code == 201
        chain = client.get(f"/api/v1/documents/{res.get_json()['id']}/revisions").get_json()
        assert [c["revision"] for c in chain["items"]] == [1, 2]


class TestSignatureApi:
    def _seat_id(self, doc, role):
        return next(s.id for s in doc.signatures if s.signer_role == role)

    def test_sign_by_wrong_person_403(self, client, make_document, staff):
        doc = make_document(status="pending_signature")
        res = client.post(
            f"/api/v1/signatures/{self._seat_id(doc, 'tech_supervisor_rep')}/sign",
            json={"actor_id": staff["qa_engineer"].id},
        )
        assert res.status_code == 403
        assert res.get_json()["code"] == "ERR_FORBIDDEN"

    def test_sign_all_seats(self, client, make_document, staff):
        doc = make_document(status="pending_signature")
        seats = [(self._seat_id(doc, r), staff[r].id) for r in ("tech_supervisor_rep", "author_supervisor_rep")]
        bodies = [
            client.post(f"/api/v1/signatures/{sid}/sign", json={"actor_id": pid}).get_json()
            for sid, pid in seats
        ]
        assert [b["document_signed"] for b in bodies] == [False, True]
        assert bodies[-1]["document"]["status"] == "signed"

    def test_reject_requires_reason_400(self, client, make_document, staff):
        doc = make_document(status="pending_signature")
        res = client.post(
            f"/api/v1/signatures/{self._seat_id(doc, 'tech_supervisor_rep')}/reject",
            json={"actor_id": staff["tech_supervisor_rep"].id},
        )
        assert res.status_code == 400

    def test_reject(self, client, make_document, staff):
        doc = make_document(status="pending_signature")
        res = client.post(
            f"/api/v1/signatures/{self._seat_id(doc, 'tech_supervisor_rep')}/reject",
            json={"actor_id": staff["tech_supervisor_rep"].id, "reason": "Wrong axes"},
        )
        assert res.status_code == 200
        assert res.get_json()["document"]["status"] == "needs_revision"

    def test_unknown_signature_404(self, client, staff):
        res = client.post("/api/v1/signatures/99999/sign", json={"actor_id": staff["qa_engineer"].id})
        assert res.status_code == 404

    def test_assign_seat_to_role_holder(self, client, make_document, staff):
        doc = make_document()
        seat_id = self._seat_id(doc, "author_supervisor_rep")
        res = client.post(f"/api/v1/signatures/{seat_id}/assign", json={"person_id": staff["qa_engineer"].id})
        assert res.status_code == 200
        assert res.get_json()["assigned_person_id"] == staff["qa_engineer"].id

        res = client.post(f"/api/v1/signatures/{seat_id}/assign", json={})
        assert res.status_code == 200
        assert res.get_json()["assigned_person_id"] == staff["author_supervisor_rep"].id


# ═════════════════════════════════════════════════════════════════════════════
# Packages
# ═════════════════════════════════════════════════════════════════════════════


class TestPackageApi:
    def _package(self, client, project):
        res = client.post("/api/v1/packages", json={"project_id": project.id, "name": "Handover set 1"})
        assert res.status_code == 201
        return res.get_json()["id"]

    def test_create_requires_name(self, client, project):
        res = client.post("/api/v1/packages", json={"project_id": project.id})
        assert res.status_code == 400

    def test_build_and_deliver(self, client, project, make_document, blob_store):
        doc = make_document(status="signed", file_path="documents/a.pdf", file_name="a.pdf")
        blob_store.put("documents/a.pdf", b"%PDF")
        package_id = self._package(client, project)

        res = client.post(f"/api/v1/packages/{package_id}/items", json={"document_ids": [doc.id]})
        assert res.status_code == 200
        assert len(res.get_json()["added"]) == 1

        res = client.post(f"/api/v1/packages/{package_id}/build", json={})
        assert res.status_code == 200
        assert res.get_json()["document_count"] == 1

        res = client.post(f"/api/v1/packages/{package_id}/deliver", json={})
        assert res.status_code == 200
        assert res.get_json()["status"] == "delivered"

        detail = client.get(f"/api/v1/packages/{package_id}").get_json()
        assert detail["items"][0]["document_status"] == "in_package"

    def test_build_unsigned_422(self, client, project, make_document, blob_store):
        doc = make_document()
        package_id = self._package(client, project)
        client.post(f"/api/v1/packages/{package_id}/items", json={"document_ids": [doc.id]})

        res = client.post(f"/api/v1/packages/{package_id}/build", json={})
        assert res.status_code == 422
        assert res.get_json()["details"]["unsigned_document_ids"] == [doc.id]

    def test_build_timeout_must_be_positive(self, client, project):
        package_id = self._package(client, project)
        res = client.post(f"/api/v1/packages/{package_id}/build", json={"timeout": 0})
        assert res.status_code == 400

    def test_concurrent_build_409(self, client, project, make_document, blob_store):
        from docops.models.package import Package

        doc = make_document(status="signed")
        package_id = self._package(client, project)
        client.post(f"/api/v1/packages/{package_id}/items", json={"document_ids": [doc.id]})
        db.session.get(Package, package_id).status = "generating"
        db.session.commit()

        res = client.post(f"/api/v1/packages/{package_id}/build", json={})
        assert res.status_code == 409

    def test_unknown_package_404(self, client):
        assert client.get("/api/v1/packages/99999").status_code == 404

    def test_edit_and_remove_item(self, client, project, make_document):
        doc = make_document(status="signed")
        package_id = self._package(client, project)
        added = client.post(f"/api/v1/packages/{package_id}/items", json={"document_ids": [doc.id]}).get_json()
        item_id = added["added"][0]["id"]

        res = client.put(f"/api/v1/packages/{package_id}", json={"name": "Stage 2", "date_from": "2024-01-01"})
        assert res.status_code == 200
        assert (res.get_json()["name"], res.get_json()["date_from"]) == ("Stage 2", "2024-01-01")
        res = client.put(f"/api/v1/packages/{package_id}", json={"date_to": "2023-01-01"})
        assert res.status_code == 422

        res = client.delete(f"/api/v1/packages/{package_id}/items/{item_id}")
        assert res.status_code == 200
        assert res.get_json()["items"] == []
        assert client.delete(f"/api/v1/packages/{package_id}/items/{item_id}").status_code == 404

    def test_delete_package(self, client, project):
        from docops.models.package import Package

        package_id = self._package(client, project)
        res = client.delete(f"/api/v1/packages/{package_id}")
        assert res.status_code == 200
        assert res.get_json() == {"deleted": True, "id": package_id}
        assert client.get(f"/api/v1/packages/{package_id}").status_code == 404

        delivered_id = self._package(client, project)
        db.session.get(Package, delivered_id).status = "delivered"
        db.session.commit()
        assert client.delete(f"/api/v1/packages/{delivered_id}").status_code == 409
