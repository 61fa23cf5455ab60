from __future__ import annotations

import base64
import binascii
import logging
import threading
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from dataclasses import replace
from typing import Any

from app.collabdoc.modules.document_lifecycle.errors import (
    AlreadyCheckedOut,
    AlreadyFinal,
    Forbidden,
    HeldByOther,
    InvalidPayload,
    NotCheckedOut,
    WrongHolder,
)
from app.collabdoc.modules.document_lifecycle.files import DocumentFiles
from app.collabdoc.modules.document_lifecycle.models import DocumentState, StateFile, utcnow_iso
from app.collabdoc.rbac import UserDirectory

LOGGER = logging.getLogger(__name__)

# .docx files are ZIP containers.
DOCX_SIGNATURE = b"PK\x03\x04"
MIN_DOCUMENT_BYTES = 1024

EventListener = Callable[[dict[str, Any]], Any]


def validate_document_bytes(data: bytes | None) -> bytes:
    if not data:
        raise InvalidPayload("Document payload is empty")
    if len(data) < MIN_DOCUMENT_BYTES:
        raise InvalidPayload(f"Document payload too small ({len(data)} bytes)")
    if not data.startswith(DOCX_SIGNATURE):
        raise InvalidPayload("Document payload is not a .docx (ZIP) container")
    return data


def decode_document_payload(data: bytes | str | None) -> bytes | None:
    """Raw bytes pass through; str is base64 text as posted by the JSON clients."""
    if not isinstance(data, str):
        return data
    if not data.strip():
        return None
    try:
        return base64.b64decode(data, validate=True)
    except (binascii.Error, ValueError):
        raise InvalidPayload("base64 payload could not be decoded") from None


def _require_user(user_id: str | None) -> str:
    uid = (user_id or "").strip()
    if not uid:
        raise InvalidPayload("userId is required")
    return uid


class DocumentLifecycle:
    """
    Owner of the process-wide DocumentState.

    Every operation is a single check-then-set under one mutex. Accepted mutations
    persist the new state, bump the revision, then notify listeners once the mutex
    is released. Rejections raise a LifecycleError and leave state and revision untouched.

    Events carry the revision they committed and reach listeners in commit order.
    """

    def __init__(
        self,
        *,
        state_file: StateFile,
        files: DocumentFiles,
        directory: UserDirectory,
        document_id: str = "default",
    ) -> None:
        self.document_id = document_id
        self._state_file = state_file
        self._files = files
        self._directory = directory
        self._lock = threading.Lock()
        # Held from check through emission; reentrant so a listener may call back in.
        self._emit_lock = threading.RLock()
        self._listeners: list[EventListener] = []
        self._state = state_file.load()
        LOGGER.info(
            "Document %s loaded: revision=%s final=%s checked_out_by=%s",
            document_id,
            self._state.revision,
            self._state.is_final,
            self._state.checked_out_by,
        )

    @property
    def state(self) -> DocumentState:
        return self._state

    @property
    def files(self) -> DocumentFiles:
        return self._files

    def add_listener(self, listener: EventListener) -> None:
        self._listeners.append(listener)

    # ---------- internals ----------
    @contextmanager
    def _transaction(self) -> Iterator[list[dict[str, Any]]]:
        """
        Yields a list for events to announce. The state mutex covers the body; queued
        events are emitted after it is released but before the next operation starts.
        Nothing is emitted if the body raises.
        """
        with self._emit_lock:
            pending: list[dict[str, Any]] = []
            with self._lock:
                yield pending
            for event in pending:
                self._emit(event)

    def _commit(self, new_state: DocumentState) -> DocumentState:
        """Caller holds the lock. Persist first so a failed write leaves memory untouched."""
        committed = replace(new_state, revision=self._state.revision + 1, last_updated=utcnow_iso())
        self._state_file.save(committed)
        self._state = committed
        return committed

    def _emit(self, event: dict[str, Any]) -> None:
        for listener in list(self._listeners):
            listener(event)

    # ---------- checkout lock ----------
    def checkout(self, user_id: str) -> DocumentState:
        uid = _require_user(user_id)
        with self._transaction() as pending:
            st = self._state
            if st.is_final:
                raise AlreadyFinal()
            if st.checked_out_by == uid:
                return st
            if st.checked_out_by is not None:
                raise AlreadyCheckedOut(st.checked_out_by)
            new = self._commit(replace(st, checked_out_by=uid))
            pending.append({"type": "checkout", "userId": uid, "revision": new.revision})
        LOGGER.info("checkout by %s (revision=%s)", uid, new.revision)
        return new

    def _release(self, user_id: str, event_type: str) -> DocumentState:
        uid = _require_user(user_id)
        with self._transaction() as pending:
            st = self._state
            if st.checked_out_by is None:
                raise NotCheckedOut()
            if st.checked_out_by != uid:
                raise WrongHolder(st.checked_out_by)
            new = self._commit(replace(st, checked_out_by=None))
            pending.append({"type": event_type, "userId": uid, "revision": new.revision})
        LOGGER.info("%s by %s (revision=%s)", event_type, uid, new.revision)
        return new

    def checkin(self, user_id: str) -> DocumentState:
        return self._release(user_id, "checkin")

    def cancel_checkout(self, user_id: str) -> DocumentState:
        return self._release(user_id, "checkoutCancel")

    def override_checkout(self, user_id: str) -> tuple[DocumentState, str | None]:
        """Force-release the lock. Returns the new state and the holder that was released."""
        uid = _require_user(user_id)
        user = self._directory.get(uid)
        if not self._directory.role_permissions(user.role).override:
            raise Forbidden(f"Role '{user.role}' cannot override a checkout")
        with self._transaction() as pending:
            st = self._state
            if st.is_final:
                raise AlreadyFinal()
            previous = st.checked_out_by
            new = self._commit(replace(st, checked_out_by=None))
            pending.append(
                {"type": "overrideCheckout", "userId": uid, "previousHolder": previous, "revision": new.revision}
            )
        LOGGER.info("overrideCheckout by %s, released %s (revision=%s)", uid, previous, new.revision)
        return new, previous

    # ---------- final flag ----------
    def _set_final(self, user_id: str, value: bool) -> DocumentState:
        uid = _require_user(user_id)
        with self._transaction() as pending:
            st = self._state
            if st.checked_out_by is not None and st.checked_out_by != uid:
                raise HeldByOther(st.checked_out_by)
            if value:
                new = self._commit(replace(st, is_final=True, checked_out_by=None))
            else:
                new = self._commit(replace(st, is_final=False))
            pending.append({"type": "finalize", "value": value, "userId": uid, "revision": new.revision})
        LOGGER.info("%s by %s (revision=%s)", "finalize" if value else "unfinalize", uid, new.revision)
        return new

    def finalize(self, user_id: str) -> DocumentState:
        return self._set_final(user_id, True)

    def unfinalize(self, user_id: str) -> DocumentState:
        return self._set_final(user_id, False)

    # ---------- document bytes ----------
    def save_progress(self, user_id: str, data: bytes | str | None) -> DocumentState:
        """`data` may be raw bytes or base64 text; it is decoded only after the holder checks pass."""
        uid = _require_user(user_id)
        with self._transaction() as pending:
            st = self._state
            if st.is_final:
                raise AlreadyFinal()
            if st.checked_out_by is None:
                raise NotCheckedOut()
            if st.checked_out_by != uid:
                raise WrongHolder(st.checked_out_by)
            payload = validate_document_bytes(decode_document_payload(data))
            self._files.write_working_document(payload)
            new = self._commit(st)
            pending.append({"type": "saveProgress", "userId": uid, "size": len(payload), "revision": new.revision})
        LOGGER.info("saveProgress by %s: %s bytes (revision=%s)", uid, len(payload), new.revision)
        return new

    def _check_writable(self, st: DocumentState, user_id: str | None) -> None:
        if st.is_final:
            raise AlreadyFinal()
        if st.checked_out_by is not None and st.checked_out_by != user_id:
            raise HeldByOther(st.checked_out_by)

    def upload_document(self, user_id: str | None, data: bytes | None) -> DocumentState:
        with self._transaction() as pending:
            st = self._state
            self._check_writable(st, user_id)
            payload = validate_document_bytes(data)
            self._files.write_working_document(payload)
            new = self._commit(st)
            pending.append(
                {"type": "documentUpload", "name": self._files.document_filename, "userId": user_id, "revision": new.revision}
            )
        LOGGER.info("documentUpload by %s: %s bytes (revision=%s)", user_id, len(payload), new.revision)
        return new

    def revert_document(self, user_id: str | None) -> DocumentState:
        with self._transaction() as pending:
            st = self._state
            self._check_writable(st, user_id)
            removed = self._files.delete_working_document()
            new = self._commit(st)
            pending.append({"type": "documentRevert", "userId": user_id, "revision": new.revision})
        LOGGER.info("documentRevert by %s (overlay removed=%s, revision=%s)", user_id, removed, new.revision)
        return new

    def upload_exhibit(self, user_id: str | None, name: str, data: bytes | None) -> str:
        """Exhibits are not document content: stored and announced without a revision bump."""
        if not data:
            raise InvalidPayload("Exhibit file is empty")
        with self._transaction() as pending:
            stored = self._files.put_exhibit(name, data)
            pending.append({"type": "exhibitUpload", "name": stored, "userId": user_id, "revision": self._state.revision})
        LOGGER.info("exhibitUpload by %s: %s (%s bytes)", user_id, stored, len(data))
        return stored

    # ---------- reset ----------
    def factory_reset(self) -> DocumentState:
        with self._transaction() as pending:
            removed = self._files.clear_working()
            new = self._commit(DocumentState(revision=self._state.revision))
            pending.append({"type": "factoryReset", "revision": new.revision})
        LOGGER.warning("factoryReset: removed %s working file(s) (revision=%s)", removed, new.revision)
        return new
