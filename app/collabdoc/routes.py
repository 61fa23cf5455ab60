from flask import Blueprint, current_app, send_file

from app.collabdoc.modules.document_lifecycle.files import DOCX_CONTENT_TYPE, ResolvedFile

bp = Blueprint("routes", __name__)


def _files():
    return current_app.extensions["collabdoc_lifecycle"].files


def _send(resolved: ResolvedFile, mimetype: str | None = None):
    resp = send_file(
        resolved.open(),
        mimetype=mimetype,
        as_attachment=False,
        download_name=resolved.name,
        max_age=0,
    )
    resp.headers["X-Document-Source"] = resolved.area
    return resp


@bp.get("/")
def index():
    return {"ok": True, "service": "collabdoc", "api": "/api/v1"}


@bp.get("/health")
def health():
    """Health check endpoint. Returns JSON."""
    return {"ok": True}


@bp.get("/healthz")
def healthz():
    """
    Fast health check for probes. No DB or storage access.
    """
    return "ok", 200


@bp.get("/favicon.ico")
def favicon():
    return "", 204


@bp.get("/documents/<string:filename>")
def document_bytes(filename: str):
    """Working overlay if present, else the canonical copy."""
    files = _files()
    if filename != files.document_filename:
        return {"ok": False, "error": "not_found", "message": f"{filename} not found"}, 404
    return _send(files.resolve_document(), DOCX_CONTENT_TYPE)


@bp.get("/documents/<string:area>/<string:filename>")
def document_bytes_in_area(area: str, filename: str):
    files = _files()
    if area not in ("canonical", "working") or filename != files.document_filename:
        return {"ok": False, "error": "not_found", "message": f"{area}/{filename} not found"}, 404
    return _send(files.resolve_document(area), DOCX_CONTENT_TYPE)


@bp.get("/exhibits/<string:name>")
def exhibit_bytes(name: str):
    resolved = _files().resolve_exhibit(name)
    return _send(resolved, None)
