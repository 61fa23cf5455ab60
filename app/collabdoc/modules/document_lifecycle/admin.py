from __future__ import annotations

from flask import Blueprint, current_app, jsonify, request

from app.collabdoc.audit import record_document_event
from app.collabdoc.constants import BANNER_THEME
from app.collabdoc.modules.document_lifecycle.errors import InvalidPayload
from app.collabdoc.modules.document_lifecycle.models import DocumentState
from app.collabdoc.modules.document_lifecycle.projector import project
from app.collabdoc.modules.document_lifecycle.service import DocumentLifecycle
from app.collabdoc.rbac import request_user_id, user_directory

bp = Blueprint("lifecycle", __name__)


def _lifecycle() -> DocumentLifecycle:
    return current_app.extensions["collabdoc_lifecycle"]


def _user_id_or_400() -> str:
    uid = request_user_id()
    if not uid:
        raise InvalidPayload("userId is required")
    return uid


def _ok(state: DocumentState, **extra: object):
    body = {"ok": True, **state.to_dict()}
    body.update(extra)
    return jsonify(body)


@bp.get("/health")
def health():
    return jsonify({"ok": True, "superdoc": current_app.config["COLLAB_BASE_URL"]})


@bp.get("/users")
def list_users():
    return jsonify({"items": [u.as_dict() for u in user_directory().list_users()]})


@bp.get("/theme")
def theme():
    return jsonify({"banner": BANNER_THEME})


@bp.get("/current-document")
def current_document():
    lc = _lifecycle()
    files = lc.files
    st = lc.state
    has_overlay = files.has_working_document()
    return jsonify(
        {
            "id": lc.document_id,
            "filename": files.document_filename,
            "url": f"/documents/{files.document_filename}",
            "source": "working" if has_overlay else "canonical",
            "hasWorkingOverlay": has_overlay,
            "lastUpdated": st.last_updated,
            "revision": st.revision,
        }
    )


@bp.get("/state-matrix")
def state_matrix():
    directory = user_directory()
    user_id = (request.args.get("userId") or "user1").strip()
    platform = (request.args.get("platform") or "web").strip().lower()
    user = directory.get(user_id)
    # Role comes from the directory; a userRole query arg only applies to users it does not know.
    role = user.role
    if user_id not in {u.id for u in directory.list_users()} and request.args.get("userRole"):
        role = request.args["userRole"].strip().lower()
    lc = _lifecycle()
    st = lc.state
    config = project(
        st,
        user_id,
        role,
        directory.role_permissions(role),
        platform=platform,
        document_id=lc.document_id,
        holder_label=directory.label_for(st.checked_out_by),
    )
    return jsonify({"config": config, "revision": st.revision})


@bp.get("/approvals/state")
def approvals_state():
    return jsonify({"documentId": _lifecycle().document_id, "approvers": []})


@bp.post("/checkout")
def checkout():
    uid = _user_id_or_400()
    before = _lifecycle().state.revision
    st = _lifecycle().checkout(uid)
    # repeat checkout by the holder is a no-op
    if st.revision != before:
        record_document_event("doc.checkout", revision=st.revision)
    return _ok(st)


@bp.post("/checkin")
def checkin():
    st = _lifecycle().checkin(_user_id_or_400())
    record_document_event("doc.checkin", revision=st.revision)
    return _ok(st)


@bp.post("/checkout/cancel")
def cancel_checkout():
    st = _lifecycle().cancel_checkout(_user_id_or_400())
    record_document_event("doc.checkout_cancel", revision=st.revision)
    return _ok(st)


@bp.post("/checkout/override")
def override_checkout():
    st, previous = _lifecycle().override_checkout(_user_id_or_400())
    record_document_event("doc.checkout_override", revision=st.revision, metadata={"previous_holder": previous})
    return _ok(st, previousHolder=previous)


@bp.post("/finalize")
def finalize():
    st = _lifecycle().finalize(_user_id_or_400())
    record_document_event("doc.finalize", revision=st.revision)
    return _ok(st)


@bp.post("/unfinalize")
def unfinalize():
    st = _lifecycle().unfinalize(_user_id_or_400())
    record_document_event("doc.unfinalize", revision=st.revision)
    return _ok(st)


@bp.post("/save-progress")
def save_progress():
    body = request.get_json(silent=True) or {}
    raw = body.get("base64")
    # decoded by the lifecycle once the holder checks pass
    st = _lifecycle().save_progress(_user_id_or_400(), raw if isinstance(raw, str) else None)
    record_document_event("doc.save_progress", revision=st.revision, metadata={"base64_chars": len(raw)})
    return _ok(st)


@bp.post("/factory-reset")
def factory_reset():
    st = _lifecycle().factory_reset()
    record_document_event("doc.factory_reset", revision=st.revision)
    return _ok(st)


@bp.post("/document/upload")
def upload_document():
    f = request.files.get("file")
    if not f or not f.filename:
        raise InvalidPayload("No file")
    data = f.read()
    st = _lifecycle().upload_document(request_user_id(), data)
    record_document_event("doc.upload", revision=st.revision, metadata={"filename": f.filename, "size_bytes": len(data)})
    return _ok(st)


@bp.post("/document/revert")
def revert_document():
    st = _lifecycle().revert_document(request_user_id())
    record_document_event("doc.revert", revision=st.revision)
    return _ok(st)


@bp.get("/exhibits")
def list_exhibits():
    items = _lifecycle().files.list_exhibits()
    for it in items:
        it["url"] = f"/exhibits/{it['name']}"
    return jsonify({"items": items})


@bp.post("/exhibits/upload")
def upload_exhibit():
    f = request.files.get("file")
    if not f or not f.filename:
        raise InvalidPayload("No file")
    data = f.read()
    lc = _lifecycle()
    name = lc.upload_exhibit(request_user_id(), f.filename, data)
    record_document_event("exhibit.upload", revision=lc.state.revision, metadata={"name": name, "size_bytes": len(data)})
    return jsonify({"ok": True, "name": name, "url": f"/exhibits/{name}"})
