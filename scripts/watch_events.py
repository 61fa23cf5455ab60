#!/usr/bin/env python3
"""Follow the server's event stream and print the banner a user would see after each change.

Usage:
  python scripts/watch_events.py --base-url http://localhost:3007 --user user1
"""

from __future__ import annotations

import argparse
import logging
import sys
from pathlib import Path

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from app.collabdoc.modules.events.client import EventStreamClient, EventStreamError

REFRESH_EVENT_TYPES = frozenset(
    {
        "checkout",
        "checkin",
        "checkoutCancel",
        "overrideCheckout",
        "finalize",
        "saveProgress",
        "documentUpload",
        "documentRevert",
        "factoryReset",
    }
)


def _print_view(client: EventStreamClient, user: str, platform: str) -> None:
    view = client.fetch_view(user, platform)
    banner = (view.get("config") or {}).get("banner") or {}
    print(f"  rev {view.get('revision')}: {banner.get('title')}: {banner.get('message')}", flush=True)


def main() -> None:
    parser = argparse.ArgumentParser()
    parser.add_argument("--base-url", default="http://localhost:3007")
    parser.add_argument("--user", default="user1", help="userId whose view is re-fetched on each change")
    parser.add_argument("--platform", default="web", choices=("web", "word"))
    parser.add_argument("--max-reconnects", type=int, default=None)
    parser.add_argument("-v", "--verbose", action="store_true")
    args = parser.parse_args()

    logging.basicConfig(level=logging.DEBUG if args.verbose else logging.INFO, format="%(asctime)s %(levelname)s %(message)s")
    client = EventStreamClient(args.base_url)
    try:
        _print_view(client, args.user, args.platform)
        for event in client.events(max_reconnects=args.max_reconnects):
            print(f"[{event.get('ts')}] {event.get('type')} rev={event.get('revision')}", flush=True)
            if event.get("type") in REFRESH_EVENT_TYPES:
                _print_view(client, args.user, args.platform)
    except EventStreamError as e:
        print(f"ERROR: {e}", flush=True)
        sys.exit(1)
    except KeyboardInterrupt:
        pass


if __name__ == "__main__":
    main()
