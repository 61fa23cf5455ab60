import base64
import io
import json
import zipfile

import pytest

from app.collabdoc import create_app
from app.collabdoc.db import session_scope
from app.collabdoc.models import AuditEvent
from app.collabdoc.modules.document_lifecycle.files import DOCX_CONTENT_TYPE


def _docx(text: str = "hello") -> bytes:
    buf = io.BytesIO()
    with zipfile.ZipFile(buf, "w", zipfile.ZIP_STORED) as z:
        z.writestr("word/document.xml", f"<w:document>{text}</w:document>" + " " * 2048)
    return buf.getvalue()


@pytest.fixture()
def client(tmp_path, monkeypatch):
    monkeypatch.chdir(tmp_path)
    monkeypatch.setenv("SECRET_KEY", "test-secret")
    monkeypatch.setenv("DATABASE_URL", f"sqlite:///{tmp_path/'test.db'}")
    monkeypatch.setenv("ENV", "test")
    monkeypatch.setenv("STORAGE_BACKEND", "local")
    monkeypatch.setenv("DATA_DIR", str(tmp_path / "data"))
    monkeypatch.setenv("SSE_KEEPALIVE_SECONDS", "0.05")
    for k in ("USERS_CONFIG", "DOCUMENT_ID", "COLLAB_BASE_URL", "SSE_RETRY_MS", "SSE_QUEUE_SIZE"):
        monkeypatch.delenv(k, raising=False)

    app = create_app()
    return app.test_client()


def _post(client, path, **body):
    return client.post(f"/api/v1{path}", json=body)


def _audit_actions(client):
    with session_scope(client.application) as s:
        return [e.action for e in s.query(AuditEvent).order_by(AuditEvent.id).all()]


def test_read_endpoints(client):
    r = client.get("/api/v1/health")
    assert r.status_code == 200
    assert r.json == {"ok": True, "superdoc": "http://localhost:4100"}

    r = client.get("/api/v1/users")
    assert [u["id"] for u in r.json["items"]] == ["user1", "user2", "user3", "user4", "user5"]
    assert r.json["items"][0] == {"id": "user1", "label": "Warren Peace", "role": "editor"}

    r = client.get("/api/v1/theme")
    assert set(r.json["banner"]) >= {"final", "checked_out_self", "checked_out_other", "available", "view_only"}

    r = client.get("/api/v1/approvals/state")
    assert r.json == {"documentId": "default", "approvers": []}

    r = client.get("/api/v1/current-document")
    assert r.json["id"] == "default"
    assert r.json["url"] == "/documents/default.docx"
    assert r.json["hasWorkingOverlay"] is False
    assert r.json["revision"] == 0


def test_state_matrix_follows_lifecycle(client):
    r = client.get("/api/v1/state-matrix")
    assert r.status_code == 200
    assert r.json["revision"] == 0
    cfg = r.json["config"]
    assert cfg["userId"] == "user1"
    assert cfg["banner"]["state"] == "available"
    assert cfg["buttons"]["checkoutBtn"] is True

    assert _post(client, "/checkout", userId="user1").status_code == 200

    cfg = client.get("/api/v1/state-matrix?userId=user2&platform=word").json["config"]
    assert cfg["platform"] == "word"
    assert cfg["banner"]["message"] == "Checked out by Warren Peace"
    assert cfg["buttons"]["overrideBtn"] is True
    assert cfg["checkoutStatus"] == {
        "isCheckedOut": True,
        "checkedOutUserId": "user1",
        "checkedOutUserLabel": "Warren Peace",
    }

    cfg = client.get("/api/v1/state-matrix?userId=user1").json["config"]
    assert cfg["banner"]["state"] == "checked_out_self"
    assert cfg["buttons"]["checkinBtn"] is True


def test_state_matrix_role_override_only_for_unknown_users(client):
    cfg = client.get("/api/v1/state-matrix?userId=guest&userRole=viewer").json["config"]
    assert cfg["role"] == "viewer"
    assert cfg["mode"] == "viewing"
    assert [b["state"] for b in cfg["banners"]] == ["available", "view_only"]

    cfg = client.get("/api/v1/state-matrix?userId=user1&userRole=viewer").json["config"]
    assert cfg["role"] == "editor"


def test_checkout_checkin_roundtrip_is_audited(client):
    r = _post(client, "/checkout", userId="user1")
    assert r.json["ok"] is True
    assert r.json["checkedOutBy"] == "user1"
    assert r.json["revision"] == 1

    # idempotent: no bump, no audit row
    r = _post(client, "/checkout", userId="user1")
    assert r.json["revision"] == 1

    r = _post(client, "/checkin", userId="user1")
    assert r.json["checkedOutBy"] is None
    assert r.json["revision"] == 2

    assert _audit_actions(client) == ["doc.checkout", "doc.checkin"]
    with session_scope(client.application) as s:
        ev = s.query(AuditEvent).order_by(AuditEvent.id).first()
        assert ev.actor_user_id == "user1"
        assert ev.actor_label == "Warren Peace"
        assert ev.entity_id == "default"
        assert ev.revision == 1
        assert ev.request_id


def test_precondition_failures_map_to_409(client):
    _post(client, "/checkout", userId="user1")

    r = _post(client, "/checkout", userId="user2")
    assert r.status_code == 409
    assert r.json["ok"] is False
    assert r.json["error"] == "already_checked_out"
    assert r.json["checkedOutBy"] == "user1"

    r = _post(client, "/checkin", userId="user2")
    assert r.status_code == 409
    assert r.json["error"] == "wrong_holder"

    r = _post(client, "/finalize", userId="user2")
    assert r.status_code == 409
    assert r.json["error"] == "held_by_other"
    assert "user1" in r.json["message"]

    assert _post(client, "/finalize", userId="user1").status_code == 200
    r = _post(client, "/checkout", userId="user2")
    assert r.status_code == 409
    assert r.json["error"] == "already_final"

    r = _post(client, "/checkout/cancel", userId="user1")
    assert r.status_code == 409
    assert r.json["error"] == "not_checked_out"

    r = _post(client, "/unfinalize", userId="user2")
    assert r.status_code == 200
    assert r.json["isFinal"] is False

    assert _audit_actions(client) == ["doc.checkout", "doc.finalize", "doc.unfinalize"]


def test_missing_user_id_is_400(client):
    r = client.post("/api/v1/checkout", json={})
    assert r.status_code == 400
    assert r.json["error"] == "invalid_payload"


def test_override_is_role_gated(client):
    _post(client, "/checkout", userId="user3")

    r = _post(client, "/checkout/override", userId="user5")
    assert r.status_code == 403
    assert r.json["error"] == "forbidden"

    r = _post(client, "/checkout/override", userId="user2")
    assert r.status_code == 200
    assert r.json["checkedOutBy"] is None
    assert r.json["previousHolder"] == "user3"
    assert r.json["revision"] == 2

    with session_scope(client.application) as s:
        ev = s.query(AuditEvent).filter_by(action="doc.checkout_override").one()
        assert json.loads(ev.metadata_json) == {"previous_holder": "user3"}


def test_save_progress_and_document_bytes(client):
    data = _docx("draft")
    _post(client, "/checkout", userId="user1")
    r = _post(client, "/save-progress", userId="user1", base64=base64.b64encode(data).decode("ascii"))
    assert r.status_code == 200
    assert r.json["revision"] == 2
    assert r.json["checkedOutBy"] == "user1"

    r = client.get("/documents/default.docx")
    assert r.status_code == 200
    assert r.data == data
    assert r.mimetype == DOCX_CONTENT_TYPE
    assert r.headers["X-Document-Source"] == "working"

    r = client.get("/api/v1/current-document")
    assert r.json["source"] == "working"
    assert r.json["hasWorkingOverlay"] is True


def test_invalid_save_payload_is_400_and_keeps_overlay(client):
    good = _docx("good")
    _post(client, "/checkout", userId="user1")
    _post(client, "/save-progress", userId="user1", base64=base64.b64encode(good).decode("ascii"))

    r = _post(client, "/save-progress", userId="user1", base64=base64.b64encode(b"hello").decode("ascii"))
    assert r.status_code == 400
    r = _post(client, "/save-progress", userId="user1", base64="!!not base64!!")
    assert r.status_code == 400
    r = _post(client, "/save-progress", userId="user1")
    assert r.status_code == 400

    assert client.get("/documents/working/default.docx").data == good
    assert client.get("/api/v1/current-document").json["revision"] == 2


def test_save_on_final_document_is_409_even_with_bad_base64(client):
    _post(client, "/finalize", userId="user1")
    r = _post(client, "/save-progress", userId="user1", base64="!!not base64!!")
    assert r.status_code == 409
    assert r.json["error"] == "already_final"

    _post(client, "/unfinalize", userId="user1")
    r = _post(client, "/save-progress", userId="user1", base64="!!not base64!!")
    assert r.status_code == 409
    assert r.json["error"] == "not_checked_out"


def test_audit_failure_does_not_fail_accepted_action(client, monkeypatch, caplog):
    from sqlalchemy.exc import SQLAlchemyError

    def broken(*args, **kwargs):
        raise SQLAlchemyError("db down")

    monkeypatch.setattr("app.collabdoc.audit.record_event", broken)
    with caplog.at_level("ERROR", logger="app.collabdoc.audit"):
        r = _post(client, "/checkout", userId="user1")
    assert r.status_code == 200
    assert r.json["revision"] == 1
    assert r.json["checkedOutBy"] == "user1"
    assert "Audit write failed" in caplog.text

    assert _audit_actions(client) == []


def test_upload_revert_and_canonical_fallback(client, tmp_path):
    r = client.post(
        "/api/v1/document/upload",
        data={"userId": "user2", "file": (io.BytesIO(_docx("uploaded")), "contract.docx")},
        content_type="multipart/form-data",
    )
    assert r.status_code == 200
    assert r.json["revision"] == 1
    assert client.get("/documents/default.docx").headers["X-Document-Source"] == "working"

    r = _post(client, "/document/revert", userId="user2")
    assert r.status_code == 200
    assert r.json["revision"] == 2

    r = client.get("/documents/default.docx")
    assert r.status_code == 404
    assert r.json["error"] == "not_found"

    canonical = tmp_path / "data" / "app" / "documents" / "default.docx"
    canonical.parent.mkdir(parents=True, exist_ok=True)
    canonical.write_bytes(_docx("canonical"))
    r = client.get("/documents/default.docx")
    assert r.status_code == 200
    assert r.headers["X-Document-Source"] == "canonical"
    assert client.get("/documents/canonical/default.docx").status_code == 200
    assert client.get("/documents/working/default.docx").status_code == 404
    assert client.get("/documents/other/default.docx").status_code == 404
    assert client.get("/documents/other.docx").status_code == 404


def test_upload_rejected_when_held_by_other(client):
    _post(client, "/checkout", userId="user1")
    r = client.post(
        "/api/v1/document/upload",
        data={"userId": "user2", "file": (io.BytesIO(_docx()), "contract.docx")},
        content_type="multipart/form-data",
    )
    assert r.status_code == 409
    assert r.json["error"] == "held_by_other"

    r = client.post("/api/v1/document/upload", data={"userId": "user1"}, content_type="multipart/form-data")
    assert r.status_code == 400


def test_exhibits(client):
    r = client.post(
        "/api/v1/exhibits/upload",
        data={"userId": "user1", "file": (io.BytesIO(b"%PDF-1.4 exhibit"), "Exhibit A.pdf")},
        content_type="multipart/form-data",
    )
    assert r.status_code == 200
    assert r.json == {"ok": True, "name": "Exhibit_A.pdf", "url": "/exhibits/Exhibit_A.pdf"}
    assert client.get("/api/v1/current-document").json["revision"] == 0

    r = client.get("/api/v1/exhibits")
    assert r.json["items"] == [{"name": "Exhibit_A.pdf", "source": "working", "url": "/exhibits/Exhibit_A.pdf"}]

    r = client.get("/exhibits/Exhibit_A.pdf")
    assert r.status_code == 200
    assert r.data == b"%PDF-1.4 exhibit"
    assert r.mimetype == "application/pdf"

    assert client.get("/exhibits/missing.pdf").status_code == 404
    assert _audit_actions(client) == ["exhibit.upload"]


def test_factory_reset(client):
    _post(client, "/checkout", userId="user1")
    _post(client, "/save-progress", userId="user1", base64=base64.b64encode(_docx()).decode("ascii"))
    _post(client, "/finalize", userId="user1")

    r = client.post("/api/v1/factory-reset")
    assert r.status_code == 200
    assert r.json["isFinal"] is False
    assert r.json["checkedOutBy"] is None
    assert r.json["revision"] == 4
    assert client.get("/api/v1/current-document").json["hasWorkingOverlay"] is False


def test_send_vendor(client):
    r = client.get("/api/v1/ui/modal/send-vendor?userId=user2")
    schema = r.json["schema"]
    assert schema["userId"] == "user2"
    assert [f["name"] for f in schema["fields"]] == ["vendorName", "email", "message"]

    r = _post(client, "/send-vendor", userId="user5", vendorName="Acme")
    assert r.status_code == 403
    r = _post(client, "/send-vendor", vendorName="Acme")
    assert r.status_code == 400
    r = _post(client, "/send-vendor", userId="user1")
    assert r.status_code == 400

    r = _post(client, "/send-vendor", userId="user1", vendorName="Acme", email="legal@acme.example")
    assert r.status_code == 200
    assert r.json == {"ok": True, "vendorName": "Acme"}
    assert _audit_actions(client) == ["doc.send_vendor"]

    _post(client, "/finalize", userId="user1")
    r = _post(client, "/send-vendor", userId="user1", vendorName="Acme")
    assert r.status_code == 409


def test_client_events(client):
    r = _post(client, "/events/client", type="chat", userId="user3", payload={"text": "  hi there "})
    assert r.status_code == 200
    ev = r.json["event"]
    assert ev["type"] == "client:chat"
    assert ev["userId"] == "user3"
    assert ev["payload"] == {"text": "hi there"}
    assert ev["documentId"] == "default"

    assert _post(client, "/events/client", type="checkout", userId="user3").status_code == 400
    assert _post(client, "/events/client", type="chat", userId="user3", payload={}).status_code == 400


def test_event_stream_delivers_retry_events_and_keepalives(client):
    broadcaster = client.application.extensions["collabdoc_broadcaster"]
    r = client.get("/api/v1/events", buffered=False)
    assert r.status_code == 200
    assert r.mimetype == "text/event-stream"
    assert r.headers["Cache-Control"] == "no-cache"
    assert broadcaster.subscriber_count == 1

    frames = iter(r.response)
    assert next(frames) == b"retry: 3000\n\n"

    _post(client, "/checkout", userId="user2")
    frame = next(frames).decode("utf-8")
    assert frame.startswith("data: ")
    event = json.loads(frame[len("data: "):])
    assert event["type"] == "checkout"
    assert event["userId"] == "user2"
    assert event["revision"] == 1
    assert event["documentId"] == "default"
    assert isinstance(event["ts"], int)

    assert next(frames) == b": keep-alive\n\n"

    r.close()
    assert broadcaster.subscriber_count == 0
