from __future__ import annotations

import json
import uuid
from collections.abc import Callable, Mapping
from dataclasses import asdict, dataclass
from functools import wraps
from pathlib import Path
from typing import Any

from flask import current_app, g, request

from app.collabdoc.modules.document_lifecycle.errors import Forbidden, InvalidPayload

PERMISSION_KEYS = ("checkout", "checkin", "finalize", "unfinalize", "override", "sendVendor")


@dataclass(frozen=True)
class RolePermissions:
    checkout: bool = False
    checkin: bool = False
    finalize: bool = False
    unfinalize: bool = False
    override: bool = False
    send_vendor: bool = False

    @classmethod
    def from_mapping(cls, raw: Mapping[str, Any]) -> "RolePermissions":
        return cls(
            checkout=bool(raw.get("checkout")),
            checkin=bool(raw.get("checkin")),
            finalize=bool(raw.get("finalize")),
            unfinalize=bool(raw.get("unfinalize")),
            override=bool(raw.get("override")),
            send_vendor=bool(raw.get("sendVendor")),
        )

    def allows(self, key: str) -> bool:
        if key not in PERMISSION_KEYS:
            raise KeyError(f"Unknown permission: {key!r}")
        return bool(getattr(self, "send_vendor" if key == "sendVendor" else key))

    def as_dict(self) -> dict[str, bool]:
        return {key: self.allows(key) for key in PERMISSION_KEYS}


NO_PERMISSIONS = RolePermissions()


@dataclass(frozen=True)
class UserRecord:
    id: str
    label: str
    role: str

    def as_dict(self) -> dict[str, str]:
        return asdict(self)


DEFAULT_USERS = (
    UserRecord(id="user1", label="Warren Peace", role="editor"),
    UserRecord(id="user2", label="Kent Uckey", role="editor"),
    UserRecord(id="user3", label="Yuri Lee", role="suggestor"),
    UserRecord(id="user4", label="Hugh R Ewe", role="vendor"),
    UserRecord(id="user5", label="Bob Viewer", role="viewer"),
)

DEFAULT_ROLES = {
    "editor": RolePermissions(
        checkout=True, checkin=True, finalize=True, unfinalize=True, override=True, send_vendor=True
    ),
    "suggestor": RolePermissions(checkout=True, checkin=True),
    "vendor": RolePermissions(checkout=True, checkin=True),
    "viewer": NO_PERMISSIONS,
}

# Callers that are not in the directory are treated as editors (no auth in this prototype).
FALLBACK_ROLE = "editor"


class UserDirectory:
    """Read-only users and role permissions, loaded once at startup."""

    def __init__(self, users: Mapping[str, UserRecord], roles: Mapping[str, RolePermissions]):
        self._users = dict(users)
        self._roles = dict(roles)

    def get(self, user_id: str) -> UserRecord:
        user = self._users.get(user_id)
        if user is None:
            return UserRecord(id=user_id, label=user_id, role=FALLBACK_ROLE)
        return user

    def label_for(self, user_id: str | None) -> str | None:
        if not user_id:
            return None
        return self.get(user_id).label

    def role_permissions(self, role: str) -> RolePermissions:
        return self._roles.get(role, NO_PERMISSIONS)

    def permissions_for(self, user_id: str) -> RolePermissions:
        return self.role_permissions(self.get(user_id).role)

    def list_users(self) -> list[UserRecord]:
        return list(self._users.values())

    def roles(self) -> dict[str, RolePermissions]:
        return dict(self._roles)


def parse_user_directory(raw: Mapping[str, Any]) -> UserDirectory:
    """
    Build a directory from the JSON shape:
        {"users": [{"id", "label", "role"}], "roles": {"editor": {"checkout": true, ...}}}
    Missing sections fall back to the built-in defaults.
    """
    users: dict[str, UserRecord] = {}
    raw_users = raw.get("users")
    if raw_users is None:
        users = {u.id: u for u in DEFAULT_USERS}
    else:
        if not isinstance(raw_users, list):
            raise ValueError("users must be a list")
        for item in raw_users:
            uid = str(item.get("id") or "").strip()
            if not uid:
                raise ValueError(f"user entry without id: {item!r}")
            users[uid] = UserRecord(
                id=uid,
                label=str(item.get("label") or uid),
                role=str(item.get("role") or FALLBACK_ROLE).strip().lower(),
            )

    raw_roles = raw.get("roles")
    if raw_roles is None:
        roles = dict(DEFAULT_ROLES)
    else:
        if not isinstance(raw_roles, dict):
            raise ValueError("roles must be an object")
        roles = {str(k).strip().lower(): RolePermissions.from_mapping(v or {}) for k, v in raw_roles.items()}
    return UserDirectory(users, roles)


def load_user_directory(path: str | None) -> UserDirectory:
    if not path:
        return parse_user_directory({})
    p = Path(path)
    if not p.is_file():
        raise RuntimeError(f"USERS_CONFIG points to a missing file: {path}")
    with p.open("r", encoding="utf-8") as f:
        raw = json.load(f)
    if not isinstance(raw, dict):
        raise RuntimeError(f"USERS_CONFIG must contain a JSON object: {path}")
    return parse_user_directory(raw)


def user_directory() -> UserDirectory:
    return current_app.extensions["collabdoc_users"]


def request_user_id() -> str | None:
    """userId from JSON body, form field or query string (first non-empty wins)."""
    data = request.get_json(silent=True) if request.is_json else None
    candidates = [
        data.get("userId") if isinstance(data, dict) else None,
        request.form.get("userId"),
        request.args.get("userId"),
    ]
    for c in candidates:
        if isinstance(c, str) and c.strip():
            return c.strip()
    return None


def load_current_user() -> None:
    """
    Resolves g.current_user from the request's userId.
    Also assigns a simple per-request request_id (for audit/log correlation).
    """
    if not getattr(g, "request_id", None):
        g.request_id = request.headers.get("X-Request-Id") or uuid.uuid4().hex
    if request.path.startswith(("/health", "/healthz")):
        g.current_user = None
        return
    user_id = request_user_id()
    g.current_user = user_directory().get(user_id) if user_id else None


def user_has_permission(user: UserRecord | None, permission_key: str) -> bool:
    if not user:
        return False
    return user_directory().role_permissions(user.role).allows(permission_key)


def require_permission(permission_key: str) -> Callable[[Callable[..., Any]], Callable[..., Any]]:
    def decorator(fn: Callable[..., Any]) -> Callable[..., Any]:
        @wraps(fn)
        def wrapped(*args: Any, **kwargs: Any):
            user: UserRecord | None = getattr(g, "current_user", None)
            if not user:
                raise InvalidPayload("userId is required")
            if not user_has_permission(user, permission_key):
                g.missing_permission = permission_key
                raise Forbidden(f"Role '{user.role}' lacks the '{permission_key}' permission")
            return fn(*args, **kwargs)

        return wrapped

    return decorator
