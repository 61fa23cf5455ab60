"""
Typed rejections for lifecycle operations.

Each carries the HTTP status it maps to and a stable `code` that clients can switch on.
"""

from __future__ import annotations


class LifecycleError(Exception):
    status_code = 500
    code = "error"

    def __init__(self, message: str | None = None):
        super().__init__(message or self.default_message())

    def default_message(self) -> str:
        return self.code

    def to_dict(self) -> dict[str, object]:
        return {"ok": False, "error": self.code, "message": str(self)}


class PreconditionFailed(LifecycleError):
    status_code = 409
    code = "precondition_failed"


class AlreadyFinal(PreconditionFailed):
    code = "already_final"

    def default_message(self) -> str:
        return "Document is finalized"


class NotCheckedOut(PreconditionFailed):
    code = "not_checked_out"

    def default_message(self) -> str:
        return "Document is not checked out"


class _HolderError(PreconditionFailed):
    def __init__(self, holder: str, message: str | None = None):
        self.holder = holder
        super().__init__(message)

    def to_dict(self) -> dict[str, object]:
        d = super().to_dict()
        d["checkedOutBy"] = self.holder
        return d


class AlreadyCheckedOut(_HolderError):
    code = "already_checked_out"

    def default_message(self) -> str:
        return f"Document is already checked out by {self.holder}"


class WrongHolder(_HolderError):
    code = "wrong_holder"

    def default_message(self) -> str:
        return f"Document is checked out by {self.holder}"


class HeldByOther(_HolderError):
    code = "held_by_other"

    def default_message(self) -> str:
        return f"Document is checked out by {self.holder}"


class Forbidden(LifecycleError):
    status_code = 403
    code = "forbidden"

    def default_message(self) -> str:
        return "Not permitted for this role"


class InvalidPayload(LifecycleError):
    status_code = 400
    code = "invalid_payload"

    def default_message(self) -> str:
        return "Invalid payload"


class NotFound(LifecycleError):
    status_code = 404
    code = "not_found"

    def default_message(self) -> str:
        return "Not found"
