import logging
from pathlib import Path

from flask import Flask, g, jsonify, request
from dotenv import load_dotenv
from werkzeug.exceptions import HTTPException

from app.collabdoc.config import load_config
from app.collabdoc.db import init_db, teardown_db_session
from app.collabdoc.modules.document_lifecycle.admin import bp as lifecycle_bp
from app.collabdoc.modules.document_lifecycle.errors import LifecycleError
from app.collabdoc.modules.document_lifecycle.files import DocumentFiles
from app.collabdoc.modules.document_lifecycle.models import StateFile
from app.collabdoc.modules.document_lifecycle.service import DocumentLifecycle
from app.collabdoc.modules.events.admin import bp as events_bp
from app.collabdoc.modules.events.broadcaster import EventBroadcaster
from app.collabdoc.modules.vendor.admin import bp as vendor_bp
from app.collabdoc.rbac import load_current_user, load_user_directory
from app.collabdoc.routes import bp as routes_bp
from app.collabdoc.storage import storage_from_config


def create_app() -> Flask:
    load_dotenv()
    app = Flask(__name__)
    app.config.from_mapping(load_config())
    app.json.sort_keys = False

    # Production guardrails (fail fast with clear logs)
    env = (app.config.get("ENV") or "").strip().lower()
    if env in ("prod", "production"):
        if not app.config.get("SECRET_KEY") or str(app.config["SECRET_KEY"]) in ("", "change-me"):
            raise RuntimeError("SECRET_KEY must be set to a strong value in production (not default).")
        if app.config.get("STORAGE_BACKEND") == "s3" and not app.config.get("S3_BUCKET"):
            raise RuntimeError("S3_BUCKET is required when STORAGE_BACKEND=s3.")

    init_db(app)

    directory = load_user_directory(app.config.get("USERS_CONFIG"))
    files = DocumentFiles(
        canonical=storage_from_config(app.config, "canonical"),
        working=storage_from_config(app.config, "working"),
        document_filename=f"{app.config['DOCUMENT_ID']}.docx",
    )
    lifecycle = DocumentLifecycle(
        state_file=StateFile(Path(app.config["DATA_DIR"]) / "working" / "state.json"),
        files=files,
        directory=directory,
        document_id=app.config["DOCUMENT_ID"],
    )
    broadcaster = EventBroadcaster(
        document_id=lifecycle.document_id,
        revision_provider=lambda: lifecycle.state.revision,
        queue_size=int(app.config["SSE_QUEUE_SIZE"]),
    )
    lifecycle.add_listener(broadcaster.broadcast)

    app.extensions["collabdoc_users"] = directory
    app.extensions["collabdoc_lifecycle"] = lifecycle
    app.extensions["collabdoc_broadcaster"] = broadcaster

    app.register_blueprint(routes_bp)
    app.register_blueprint(lifecycle_bp, url_prefix="/api/v1")
    app.register_blueprint(events_bp, url_prefix="/api/v1")
    app.register_blueprint(vendor_bp, url_prefix="/api/v1")

    app.before_request(load_current_user)
    app.teardown_appcontext(teardown_db_session)

    @app.errorhandler(LifecycleError)
    def _lifecycle_error(e: LifecycleError):  # type: ignore[no-redef]
        if e.status_code == 403:
            app.logger.warning(
                "Forbidden: missing_permission=%s user=%s request_id=%s",
                getattr(g, "missing_permission", None),
                getattr(getattr(g, "current_user", None), "id", None),
                getattr(g, "request_id", None),
            )
        else:
            app.logger.info("%s %s rejected: %s (%s)", request.method, request.path, e.code, e)
        return jsonify(e.to_dict()), e.status_code

    @app.errorhandler(HTTPException)
    def _http_error(e: HTTPException):  # type: ignore[no-redef]
        return jsonify({"ok": False, "error": (e.name or "error").lower().replace(" ", "_"), "message": e.description}), e.code

    @app.errorhandler(Exception)
    def _err_500(e: Exception):  # type: ignore[no-redef]
        # Ensure stack trace shows in logs.
        app.logger.exception("Unhandled 500 (request_id=%s)", getattr(g, "request_id", None))
        return jsonify({"ok": False, "error": "internal_error", "message": "Internal server error"}), 500

    logging.getLogger(__name__).info(
        "create_app() complete; document=%s revision=%s collab=%s",
        lifecycle.document_id,
        lifecycle.state.revision,
        app.config["COLLAB_BASE_URL"],
    )

    return app
