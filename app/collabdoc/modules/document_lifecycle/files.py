from __future__ import annotations

from dataclasses import dataclass
from typing import BinaryIO

from werkzeug.utils import secure_filename

from app.collabdoc.modules.document_lifecycle.errors import InvalidPayload, NotFound
from app.collabdoc.storage import Storage

DOCX_CONTENT_TYPE = "application/vnd.openxmlformats-officedocument.wordprocessingml.document"

DOCUMENTS_PREFIX = "documents/"
EXHIBITS_PREFIX = "exhibits/"


def sanitize_exhibit_name(name: str) -> str:
    fn = secure_filename(name or "")
    if not fn:
        raise InvalidPayload("Exhibit file name is required")
    return fn


@dataclass(frozen=True)
class ResolvedFile:
    area: str
    key: str
    name: str
    storage: Storage

    def open(self) -> BinaryIO:
        return self.storage.open(self.key)


@dataclass(frozen=True)
class DocumentFiles:
    """
    Canonical vs. working-overlay resolution for the document and its exhibits.

    The working copy always wins when present; the canonical copy is never written.
    """

    canonical: Storage
    working: Storage
    document_filename: str = "default.docx"

    @property
    def document_key(self) -> str:
        return DOCUMENTS_PREFIX + self.document_filename

    def _area(self, area: str) -> Storage:
        if area == "canonical":
            return self.canonical
        if area == "working":
            return self.working
        raise ValueError(f"Unknown area: {area!r}")

    def has_working_document(self) -> bool:
        return self.working.exists(self.document_key)

    def resolve_document(self, area: str | None = None) -> ResolvedFile:
        areas = (area,) if area else ("working", "canonical")
        for a in areas:
            storage = self._area(a)
            if storage.exists(self.document_key):
                return ResolvedFile(area=a, key=self.document_key, name=self.document_filename, storage=storage)
        raise NotFound(f"{self.document_filename} not found")

    def read_working_document(self) -> bytes | None:
        if not self.has_working_document():
            return None
        return self.working.read_bytes(self.document_key)

    def write_working_document(self, data: bytes) -> None:
        self.working.put_bytes(self.document_key, data, content_type=DOCX_CONTENT_TYPE)

    def delete_working_document(self) -> bool:
        return self.working.delete(self.document_key)

    def put_exhibit(self, name: str, data: bytes, *, content_type: str | None = None) -> str:
        fn = sanitize_exhibit_name(name)
        self.working.put_bytes(EXHIBITS_PREFIX + fn, data, content_type=content_type)
        return fn

    def resolve_exhibit(self, name: str) -> ResolvedFile:
        fn = secure_filename(name or "")
        if not fn or fn != name:
            raise NotFound("exhibit not found")
        key = EXHIBITS_PREFIX + fn
        for a in ("working", "canonical"):
            storage = self._area(a)
            if storage.exists(key):
                return ResolvedFile(area=a, key=key, name=fn, storage=storage)
        raise NotFound("exhibit not found")

    def list_exhibits(self) -> list[dict[str, str]]:
        seen: dict[str, str] = {}
        for a in ("working", "canonical"):
            for key in self._area(a).list_keys(EXHIBITS_PREFIX):
                name = key[len(EXHIBITS_PREFIX):]
                if "/" in name or name in seen:
                    continue
                seen[name] = a
        return [{"name": name, "source": seen[name]} for name in sorted(seen)]

    def clear_working(self) -> int:
        """Delete every working overlay (document and exhibits). Returns the number of files removed."""
        removed = 0
        for prefix in (DOCUMENTS_PREFIX, EXHIBITS_PREFIX):
            for key in self.working.list_keys(prefix):
                if self.working.delete(key):
                    removed += 1
        return removed
