from __future__ import annotations

import argparse
import json
import sys
from pathlib import Path
from typing import Any

from pydantic import ValidationError

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from dragon_faith.config import create_config_manager
from dragon_faith.models import SentimentRecord
from dragon_faith.state_manager import DEFAULT_STORAGE_KEY, RecordStoreError, create_record_store


def _load_entries(path: Path, storage_key: str) -> list[Any]:
    """
    Read a browser-storage dump.

    Accepts either the archive array itself or an object mapping storage
    keys to their (JSON string) values, as copied from the browser.
    """
    payload = json.loads(path.read_text(encoding="utf-8-sig"))
    if isinstance(payload, dict):
        payload = payload.get(storage_key, [])
        if isinstance(payload, str):
            payload = json.loads(payload)
    if not isinstance(payload, list):
        raise ValueError(f"{path} does not hold a record array")
    return payload


def main() -> int:
    parser = argparse.ArgumentParser(description="Import a legacy sentiment archive dump into the local record store.")
    parser.add_argument("source", help="JSON file with the archive array or a storage-key object.")
    parser.add_argument("--data-dir", default="", help="Target data directory (defaults to the configured one).")
    parser.add_argument("--storage-key", default="", help=f"Archive key (default {DEFAULT_STORAGE_KEY}).")
    parser.add_argument("--dry-run", action="store_true", help="Validate only, do not write.")
    args = parser.parse_args()

    config = create_config_manager().get_config()
    data_dir = args.data_dir.strip() or config.data_dir
    storage_key = args.storage_key.strip() or config.storage_key

    try:
        entries = _load_entries(Path(args.source), storage_key)
    except (OSError, ValueError) as exc:
        print(f"cannot read {args.source}: {exc}", file=sys.stderr)
        return 2

    records: list[SentimentRecord] = []
    for index, entry in enumerate(entries):
        try:
            records.append(SentimentRecord.model_validate(entry))
        except ValidationError as exc:
            print(f"[{index}] skip: {exc.error_count()} invalid fields", file=sys.stderr)

    if not records:
        print("no valid records to import", file=sys.stderr)
        return 1
    if args.dry_run:
        print(f"[dry-run] valid={len(records)} skipped={len(entries) - len(records)}")
        return 0

    try:
        store = create_record_store(data_dir=data_dir, storage_key=storage_key, strict=True)
        store.import_records(records)
    except RecordStoreError as exc:
        print(f"import failed: {exc.code} {exc.message}", file=sys.stderr)
        return 1
    print(f"[done] imported={len(records)} skipped={len(entries) - len(records)} total={len(store)}")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
