import json
import logging
from typing import Any

from flask import current_app, g, has_request_context, request
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from app.collabdoc.db import db_session
from app.collabdoc.models import AuditEvent
from app.collabdoc.rbac import UserRecord

LOGGER = logging.getLogger(__name__)


def record_event(
    s: Session,
    *,
    actor: UserRecord | None,
    action: str,
    entity_type: str | None = None,
    entity_id: str | None = None,
    revision: int | None = None,
    reason: str | None = None,
    metadata: dict[str, Any] | None = None,
    request_id: str | None = None,
) -> AuditEvent:
    """
    Append-only audit event helper. Adds to the session; the caller commits.
    """
    in_request = has_request_context()
    ev = AuditEvent(
        request_id=request_id or (g.get("request_id") if in_request else None),
        actor_user_id=actor.id if actor else None,
        actor_label=actor.label if actor else None,
        action=action,
        entity_type=entity_type,
        entity_id=entity_id,
        revision=revision,
        reason=reason,
        metadata_json=json.dumps(metadata, sort_keys=True) if metadata else None,
        client_ip=request.remote_addr if in_request else None,
    )
    s.add(ev)
    return ev


def record_document_event(
    action: str, *, revision: int, metadata: dict[str, Any] | None = None
) -> AuditEvent | None:
    """
    Record an accepted action on the served document for the current request's user, and commit.

    The action has already been applied and announced by the time this runs, so a
    failed audit write is logged and reported as None instead of failing the request.
    """
    s = db_session()
    try:
        ev = record_event(
            s,
            actor=g.get("current_user"),
            action=action,
            entity_type="Document",
            entity_id=current_app.config["DOCUMENT_ID"],
            revision=revision,
            metadata=metadata,
        )
        s.commit()
    except SQLAlchemyError:
        s.rollback()
        LOGGER.exception(
            "Audit write failed: action=%s revision=%s request_id=%s", action, revision, g.get("request_id")
        )
        return None
    LOGGER.debug("audit %s revision=%s request_id=%s", action, revision, ev.request_id)
    return ev
