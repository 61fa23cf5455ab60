import itertools

import pytest

from app.collabdoc.modules.document_lifecycle.models import DocumentState
from app.collabdoc.modules.document_lifecycle.projector import (
    BANNER_STATES,
    editor_mode_for_role,
    primary_banner,
    project,
)
from app.collabdoc.rbac import DEFAULT_ROLES, NO_PERMISSIONS

EDITOR = DEFAULT_ROLES["editor"]
SUGGESTOR = DEFAULT_ROLES["suggestor"]
VIEWER = DEFAULT_ROLES["viewer"]


def _state(**kw) -> DocumentState:
    kw.setdefault("last_updated", "2026-01-01T00:00:00.000Z")
    return DocumentState(**kw)


def test_available_editor_view():
    cfg = project(_state(), "user1", "editor", EDITOR)
    assert cfg["banner"]["state"] == "available"
    assert cfg["banners"] == [cfg["banner"]]
    assert cfg["mode"] == "editing"
    assert cfg["buttons"] == {
        "replaceDefaultBtn": True,
        "approvalsBtn": True,
        "checkoutBtn": True,
        "checkinBtn": False,
        "cancelBtn": False,
        "overrideBtn": False,
        "finalizeBtn": True,
        "unfinalizeBtn": False,
        "sendVendorBtn": True,
        "factoryResetBtn": True,
    }
    assert cfg["checkoutStatus"] == {"isCheckedOut": False, "checkedOutUserId": None, "checkedOutUserLabel": None}
    assert cfg["finalize"] == {"isFinal": False}


def test_holder_sees_checkin_and_cancel():
    cfg = project(_state(checked_out_by="user1"), "user1", "editor", EDITOR, holder_label="Warren Peace")
    b = cfg["buttons"]
    assert cfg["banner"]["state"] == "checked_out_self"
    assert b["checkinBtn"] and b["cancelBtn"]
    assert not b["checkoutBtn"] and not b["overrideBtn"]
    assert b["finalizeBtn"] and b["sendVendorBtn"] and b["replaceDefaultBtn"]
    assert cfg["checkoutStatus"]["checkedOutUserLabel"] == "Warren Peace"


def test_other_user_sees_holder_label_and_override():
    st = _state(checked_out_by="user1")
    cfg = project(st, "user2", "editor", EDITOR, holder_label="Warren Peace")
    b = cfg["buttons"]
    assert cfg["banner"] == {
        "state": "checked_out_other",
        "title": "Checked out",
        "message": "Checked out by Warren Peace",
    }
    assert b["overrideBtn"] is True
    assert not any(b[k] for k in ("checkoutBtn", "checkinBtn", "cancelBtn", "finalizeBtn", "sendVendorBtn", "replaceDefaultBtn"))

    cfg = project(st, "user3", "suggestor", SUGGESTOR, holder_label="Warren Peace")
    assert cfg["buttons"]["overrideBtn"] is False
    assert cfg["mode"] == "suggesting"


def test_final_wins_banner_precedence():
    st = _state(is_final=True, checked_out_by="user1")
    assert primary_banner(st, "user1")["state"] == "final"
    assert primary_banner(st, "user2")["state"] == "final"


def test_final_document_buttons():
    cfg = project(_state(is_final=True), "user1", "editor", EDITOR)
    b = cfg["buttons"]
    assert b["unfinalizeBtn"] is True
    assert not any(b[k] for k in ("checkoutBtn", "finalizeBtn", "sendVendorBtn", "replaceDefaultBtn", "overrideBtn"))
    assert b["approvalsBtn"] and b["factoryResetBtn"]
    assert cfg["finalize"] == {"isFinal": True}


def test_viewer_gets_view_only_banner_and_no_actions():
    cfg = project(_state(), "user5", "viewer", VIEWER)
    assert cfg["mode"] == "viewing"
    assert [b["state"] for b in cfg["banners"]] == ["available", "view_only"]
    assert cfg["banner"]["state"] == "available"
    on = {k for k, v in cfg["buttons"].items() if v}
    assert on == {"approvalsBtn", "factoryResetBtn"}
    assert cfg["permissions"] == {k: False for k in cfg["permissions"]}


def test_missing_holder_label_falls_back_to_id():
    assert primary_banner(_state(checked_out_by="user9"), "user1")["message"] == "Checked out by user9"


@pytest.mark.parametrize(
    "is_final,holder,user",
    list(itertools.product([False, True], [None, "user1", "user2"], ["user1", "user2"])),
)
def test_exactly_one_primary_banner(is_final, holder, user):
    cfg = project(_state(is_final=is_final, checked_out_by=holder), user, "editor", EDITOR)
    primaries = [b for b in cfg["banners"] if b["state"] in BANNER_STATES]
    assert primaries == [cfg["banner"]]
    if is_final:
        assert cfg["banner"]["state"] == "final"
    elif holder is None:
        assert cfg["banner"]["state"] == "available"
    else:
        expected = "checked_out_self" if holder == user else "checked_out_other"
        assert cfg["banner"]["state"] == expected


def test_projection_is_pure():
    st = _state(checked_out_by="user2")
    a = project(st, "user1", "editor", EDITOR, platform="word", document_id="doc-9", holder_label="Kent Uckey")
    b = project(st, "user1", "editor", EDITOR, platform="word", document_id="doc-9", holder_label="Kent Uckey")
    assert a == b
    assert a["platform"] == "word"
    assert a["documentId"] == "doc-9"
    assert st == _state(checked_out_by="user2")


def test_unknown_role_has_no_actions():
    cfg = project(_state(), "user1", "auditor", NO_PERMISSIONS)
    assert cfg["mode"] == "editing"
    assert cfg["buttons"]["checkoutBtn"] is False


def test_editor_mode_for_role():
    assert editor_mode_for_role("viewer") == "viewing"
    assert editor_mode_for_role("Vendor") == "suggesting"
    assert editor_mode_for_role("suggestor") == "suggesting"
    assert editor_mode_for_role("editor") == "editing"
    assert editor_mode_for_role("") == "editing"
