#!/usr/bin/env python3
"""Prepare the data directory and audit table (idempotent).

Usage:
  python scripts/init_data.py
  python scripts/init_data.py --canonical-document path/to/default.docx
"""

from __future__ import annotations

import argparse
import sys
from pathlib import Path

from dotenv import load_dotenv

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from app.collabdoc.config import load_config
from app.collabdoc.db import create_audit_engine
from app.collabdoc.models import Base
from app.collabdoc.modules.document_lifecycle.service import validate_document_bytes
from app.collabdoc.storage import storage_from_config


def init_data(*, canonical_document: str | None = None) -> None:
    load_dotenv()
    config = load_config()

    if (config.get("STORAGE_BACKEND") or "local") == "local":
        data_dir = Path(config["DATA_DIR"])
        for sub in ("app/documents", "app/exhibits", "working/documents", "working/exhibits"):
            (data_dir / sub).mkdir(parents=True, exist_ok=True)
        print(f"Data directory ready: {data_dir}", flush=True)

    engine = create_audit_engine(config["DATABASE_URL"])
    try:
        Base.metadata.create_all(bind=engine)
    finally:
        engine.dispose()
    print("Audit table ready.", flush=True)

    if canonical_document:
        data = validate_document_bytes(Path(canonical_document).read_bytes())
        key = f"documents/{config['DOCUMENT_ID']}.docx"
        storage_from_config(config, "canonical").put_bytes(key, data)
        print(f"Canonical document installed: {key} ({len(data)} bytes)", flush=True)


def main() -> None:
    parser = argparse.ArgumentParser()
    parser.add_argument("--canonical-document", help="Path to a .docx to install as the canonical copy")
    args = parser.parse_args()
    init_data(canonical_document=args.canonical_document)


if __name__ == "__main__":
    main()
