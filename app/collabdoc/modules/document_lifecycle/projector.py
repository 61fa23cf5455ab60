"""
ViewProjector: derives what a given user on a given platform should see.

Pure functions only. Same inputs, same output; nothing here reads the clock,
the request, or the filesystem.
"""

from __future__ import annotations

from typing import Any

from app.collabdoc.modules.document_lifecycle.models import DocumentState
from app.collabdoc.rbac import RolePermissions

BANNER_STATES = ("final", "checked_out_self", "checked_out_other", "available")
VIEW_ONLY_BANNER = "view_only"


def editor_mode_for_role(role: str) -> str:
    r = (role or "").strip().lower()
    if r == "viewer":
        return "viewing"
    if r in ("suggestor", "vendor"):
        return "suggesting"
    return "editing"


def primary_banner(state: DocumentState, user_id: str, holder_label: str | None = None) -> dict[str, str]:
    # Precedence: final > checked_out_* > available
    if state.is_final:
        return {
            "state": "final",
            "title": "Finalized",
            "message": "This document is finalized and read-only",
        }
    if state.checked_out_by is not None:
        if state.checked_out_by == user_id:
            return {
                "state": "checked_out_self",
                "title": "Checked out",
                "message": "You have this document checked out",
            }
        return {
            "state": "checked_out_other",
            "title": "Checked out",
            "message": f"Checked out by {holder_label or state.checked_out_by}",
        }
    return {
        "state": "available",
        "title": "Available",
        "message": "Available to check out",
    }


def project(
    state: DocumentState,
    user_id: str,
    role: str,
    permissions: RolePermissions,
    *,
    platform: str = "web",
    document_id: str = "default",
    holder_label: str | None = None,
) -> dict[str, Any]:
    is_final = state.is_final
    is_checked_out = state.checked_out_by is not None
    is_owner = is_checked_out and state.checked_out_by == user_id
    can_write = not is_checked_out or is_owner

    banner = primary_banner(state, user_id, holder_label)
    banners = [banner]
    if (role or "").strip().lower() == "viewer":
        banners.append(
            {
                "state": VIEW_ONLY_BANNER,
                "title": "View only",
                "message": "You can view this document but not edit it",
            }
        )

    buttons = {
        "replaceDefaultBtn": permissions.checkout and not is_final and can_write,
        "approvalsBtn": True,
        "checkoutBtn": permissions.checkout and not is_final and not is_checked_out,
        "checkinBtn": permissions.checkin and is_owner and not is_final,
        "cancelBtn": permissions.checkin and is_owner and not is_final,
        "overrideBtn": permissions.override and is_checked_out and not is_owner and not is_final,
        "finalizeBtn": permissions.finalize and not is_final and can_write,
        "unfinalizeBtn": permissions.unfinalize and is_final and can_write,
        "sendVendorBtn": permissions.send_vendor and not is_final and can_write,
        "factoryResetBtn": True,
    }

    return {
        "documentId": document_id,
        "userId": user_id,
        "role": role,
        "platform": platform,
        "mode": editor_mode_for_role(role),
        "buttons": buttons,
        "banner": banner,
        "banners": banners,
        "finalize": {"isFinal": is_final},
        "checkoutStatus": {
            "isCheckedOut": is_checked_out,
            "checkedOutUserId": state.checked_out_by,
            "checkedOutUserLabel": holder_label if is_checked_out else None,
        },
        "permissions": permissions.as_dict(),
        "viewerMessage": {"type": "info", "text": f"Hello {user_id} on {platform}"},
    }
