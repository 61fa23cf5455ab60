from __future__ import annotations

from collections.abc import Iterator

from flask import Blueprint, Response, current_app, g, jsonify, request

from app.collabdoc.modules.document_lifecycle.errors import InvalidPayload
from app.collabdoc.modules.events.broadcaster import KEEPALIVE_FRAME, Channel, EventBroadcaster

bp = Blueprint("events", __name__)

CLIENT_EVENT_TYPES = frozenset({"userChange", "chat"})
MAX_CHAT_LENGTH = 2000


def _broadcaster() -> EventBroadcaster:
    return current_app.extensions["collabdoc_broadcaster"]


def _stream(broadcaster: EventBroadcaster, channel: Channel, *, retry_ms: int, keepalive: float) -> Iterator[str]:
    try:
        yield f"retry: {retry_ms}\n\n"
        while True:
            frame = channel.next_frame(keepalive)
            if channel.closed:
                break
            yield frame if frame is not None else KEEPALIVE_FRAME
    finally:
        broadcaster.unsubscribe(channel)


@bp.get("/events")
def events():
    broadcaster = _broadcaster()
    channel = broadcaster.subscribe()
    resp = Response(
        _stream(
            broadcaster,
            channel,
            retry_ms=int(current_app.config["SSE_RETRY_MS"]),
            keepalive=float(current_app.config["SSE_KEEPALIVE_SECONDS"]),
        ),
        mimetype="text/event-stream",
        headers={"Cache-Control": "no-cache", "X-Accel-Buffering": "no"},
    )
    # Covers a client that disconnects before the generator ever started.
    resp.call_on_close(lambda: broadcaster.unsubscribe(channel))
    return resp


@bp.post("/events/client")
def client_event():
    """Relay a small client-originated event (user switch, chat line) to every subscriber."""
    body = request.get_json(silent=True) or {}
    event_type = str(body.get("type") or "").strip()
    if event_type not in CLIENT_EVENT_TYPES:
        raise InvalidPayload(f"Unsupported client event type: {event_type!r}")
    payload = body.get("payload") or {}
    if not isinstance(payload, dict):
        raise InvalidPayload("payload must be an object")
    if event_type == "chat":
        text = str(payload.get("text") or "").strip()
        if not text:
            raise InvalidPayload("chat text is required")
        payload = {"text": text[:MAX_CHAT_LENGTH]}

    user = getattr(g, "current_user", None)
    stamped = _broadcaster().broadcast(
        {
            "type": f"client:{event_type}",
            "payload": payload,
            "userId": user.id if user else None,
            "platform": str(body.get("platform") or "web"),
        }
    )
    return jsonify({"ok": True, "event": stamped})
