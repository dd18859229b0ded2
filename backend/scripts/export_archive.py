from __future__ import annotations

import argparse
import sys
from pathlib import Path

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from dragon_faith.config import create_config_manager
from dragon_faith.core.archive_series import ROLLING_WINDOW, export_archive_csv
from dragon_faith.state_manager import RecordStoreError, create_record_store


def main() -> int:
    parser = argparse.ArgumentParser(description="Export the sentiment archive as a CSV series with rolling means.")
    parser.add_argument("--out", default="dragon_faith_archive.csv", help="Output CSV path.")
    parser.add_argument("--data-dir", default="", help="Source data directory (defaults to the configured one).")
    parser.add_argument("--storage-key", default="", help="Archive key (defaults to the configured one).")
    parser.add_argument("--window", type=int, default=ROLLING_WINDOW, help="Rolling mean window in records.")
    args = parser.parse_args()

    config = create_config_manager().get_config()
    try:
        store = create_record_store(
            data_dir=args.data_dir.strip() or config.data_dir,
            storage_key=args.storage_key.strip() or config.storage_key,
            strict=True,
        )
    except RecordStoreError as exc:
        print(f"cannot open archive: {exc.code} {exc.message}", file=sys.stderr)
        return 1

    records = store.list_records()
    if not records:
        print("archive is empty, nothing to export", file=sys.stderr)
        return 1
    rows = export_archive_csv(records, Path(args.out), window=max(1, args.window))
    print(f"[done] rows={rows} out={args.out}")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
