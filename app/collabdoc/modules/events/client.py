from __future__ import annotations

import json
import logging
import random
import time
import urllib.error
import urllib.parse
import urllib.request
from collections.abc import Callable, Iterable, Iterator
from dataclasses import dataclass, field
from typing import Any

LOGGER = logging.getLogger(__name__)

BACKOFF_BASE_SECONDS = 1.0
BACKOFF_CAP_SECONDS = 30.0
BACKOFF_MAX_ATTEMPT = 6
BACKOFF_JITTER_SECONDS = 0.25


class EventStreamError(RuntimeError):
    pass


def reconnect_delay(attempt: int, *, jitter: Callable[[], float] = random.random) -> float:
    """Capped exponential backoff: 1s, 2s, 4s ... 30s, plus up to 250ms of jitter."""
    attempt = max(0, min(attempt, BACKOFF_MAX_ATTEMPT))
    return min(BACKOFF_CAP_SECONDS, BACKOFF_BASE_SECONDS * (2**attempt)) + jitter() * BACKOFF_JITTER_SECONDS


def parse_sse_lines(lines: Iterable[str]) -> Iterator[dict[str, Any]]:
    """
    Minimal text/event-stream parser.

    Yields {"data": <decoded JSON>} for data events and {"retry": <ms>} for retry
    hints; comments (keep-alives) are skipped.
    """
    data_lines: list[str] = []
    for raw in lines:
        line = raw.rstrip("\r\n")
        if not line:
            if data_lines:
                text = "\n".join(data_lines)
                data_lines = []
                try:
                    yield {"data": json.loads(text)}
                except json.JSONDecodeError:
                    LOGGER.warning("Skipping non-JSON SSE frame: %r", text[:200])
            continue
        if line.startswith(":"):
            continue
        name, _, value = line.partition(":")
        if value.startswith(" "):
            value = value[1:]
        if name == "data":
            data_lines.append(value)
        elif name == "retry":
            try:
                yield {"retry": int(value)}
            except ValueError:
                continue


@dataclass
class EventStreamClient:
    base_url: str
    timeout_seconds: float = 60.0
    sleep: Callable[[float], None] = time.sleep
    attempt: int = field(default=0, init=False)

    def _url(self, path: str, params: dict[str, Any] | None = None) -> str:
        url = self.base_url.rstrip("/") + path
        if params:
            url += "?" + urllib.parse.urlencode({k: v for k, v in params.items() if v is not None})
        return url

    def request_json(self, path: str, *, params: dict[str, Any] | None = None, body: dict[str, Any] | None = None) -> dict[str, Any]:
        data = json.dumps(body).encode("utf-8") if body is not None else None
        req = urllib.request.Request(self._url(path, params), data=data, method="POST" if data is not None else "GET")
        req.add_header("Accept", "application/json")
        if data is not None:
            req.add_header("Content-Type", "application/json")
        try:
            with urllib.request.urlopen(req, timeout=self.timeout_seconds) as resp:
                raw = resp.read()
        except urllib.error.HTTPError as e:
            try:
                detail = e.read().decode("utf-8", errors="ignore")
            except OSError:
                detail = ""
            raise EventStreamError(f"HTTP {e.code} from {path}: {detail[:300]}") from e
        try:
            return json.loads(raw.decode("utf-8"))
        except ValueError as e:
            raise EventStreamError(f"Invalid JSON from {path}") from e

    def fetch_view(self, user_id: str, platform: str = "web") -> dict[str, Any]:
        return self.request_json("/api/v1/state-matrix", params={"userId": user_id, "platform": platform})

    def _open(self):
        req = urllib.request.Request(self._url("/api/v1/events"), method="GET")
        req.add_header("Accept", "text/event-stream")
        req.add_header("Cache-Control", "no-cache")
        return urllib.request.urlopen(req, timeout=self.timeout_seconds)

    def events(self, *, max_reconnects: int | None = None) -> Iterator[dict[str, Any]]:
        """
        Yield decoded events forever, reconnecting with capped backoff.

        Missed events are not replayed; callers should re-fetch the view after a reconnect.
        """
        reconnects = 0
        while True:
            try:
                with self._open() as resp:
                    self.attempt = 0
                    LOGGER.info("event stream open: %s", self.base_url)
                    lines = (raw.decode("utf-8") for raw in resp)
                    for item in parse_sse_lines(lines):
                        if "data" in item:
                            yield item["data"]
                LOGGER.info("event stream closed by server")
            except (urllib.error.URLError, OSError) as e:
                LOGGER.warning("event stream error: %s", e)

            if max_reconnects is not None and reconnects >= max_reconnects:
                raise EventStreamError(f"event stream gave up after {reconnects} reconnect(s)")
            reconnects += 1
            delay = reconnect_delay(self.attempt)
            self.attempt = min(self.attempt + 1, BACKOFF_MAX_ATTEMPT)
            LOGGER.info("reconnecting in %.2fs", delay)
            self.sleep(delay)
