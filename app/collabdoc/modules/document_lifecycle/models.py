from __future__ import annotations

import json
import logging
import os
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

LOGGER = logging.getLogger(__name__)


def utcnow_iso() -> str:
    return datetime.now(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


@dataclass(frozen=True)
class DocumentState:
    """
    Snapshot of the single document's lifecycle.

    Instances are immutable; DocumentLifecycle swaps in a new one per accepted mutation.
    """

    is_final: bool = False
    checked_out_by: str | None = None
    revision: int = 0
    last_updated: str = ""

    @property
    def is_checked_out(self) -> bool:
        return self.checked_out_by is not None

    def to_dict(self) -> dict[str, Any]:
        return {
            "isFinal": self.is_final,
            "checkedOutBy": self.checked_out_by,
            "revision": self.revision,
            "lastUpdated": self.last_updated,
        }

    @classmethod
    def from_dict(cls, raw: dict[str, Any]) -> "DocumentState":
        holder = raw.get("checkedOutBy")
        revision = raw.get("revision", 0)
        # JSON writers outside Python may emit 3.0 for 3
        if isinstance(revision, float) and revision.is_integer():
            revision = int(revision)
        if not isinstance(revision, int) or isinstance(revision, bool) or revision < 0:
            raise ValueError(f"invalid revision: {revision!r}")
        return cls(
            is_final=bool(raw.get("isFinal", False)),
            checked_out_by=str(holder) if holder else None,
            revision=revision,
            last_updated=str(raw.get("lastUpdated") or utcnow_iso()),
        )


class StateFile:
    """Flat JSON persistence for DocumentState, rewritten atomically on every mutation."""

    def __init__(self, path: Path):
        self.path = Path(path)

    def load(self) -> DocumentState:
        if not self.path.is_file():
            return DocumentState(last_updated=utcnow_iso())
        try:
            with self.path.open("r", encoding="utf-8") as f:
                raw = json.load(f)
            if not isinstance(raw, dict):
                raise ValueError("state file must hold a JSON object")
            return DocumentState.from_dict(raw)
        except (OSError, ValueError) as e:
            LOGGER.error("Unreadable state file %s (%s); starting from defaults", self.path, e)
            return DocumentState(last_updated=utcnow_iso())

    def save(self, state: DocumentState) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        tmp = self.path.with_name(self.path.name + ".tmp")
        with tmp.open("w", encoding="utf-8") as f:
            json.dump(state.to_dict(), f, indent=2)
        os.replace(tmp, self.path)
