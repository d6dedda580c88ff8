from __future__ import annotations

import argparse
import asyncio
import logging


def main() -> int:
    parser = argparse.ArgumentParser(
        description=(
            "Prune old idempotency ledger entries and hard-delete expired tombstones. "
            "Retention comes from SYNC_LEDGER_RETENTION_DAYS and SYNC_TOMBSTONE_RETENTION_DAYS."
        )
    )
    parser.add_argument(
        "--ledger-days",
        type=int,
        default=None,
        help="Override SYNC_LEDGER_RETENTION_DAYS for this run.",
    )
    parser.add_argument(
        "--tombstone-days",
        type=int,
        default=None,
        help="Override SYNC_TOMBSTONE_RETENTION_DAYS for this run (0 disables purging).",
    )
    args = parser.parse_args()

    # Import lazily so argparse --help stays fast.
    from fieldops_backend.config import settings
    from fieldops_backend.db import dispose_engine_cache
    from fieldops_backend.services.maintenance_service import run_maintenance

    logging.basicConfig(level=getattr(logging, settings.log_level.upper(), logging.INFO))

    if args.ledger_days is not None:
        settings.sync_ledger_retention_days = int(args.ledger_days)
    if args.tombstone_days is not None:
        settings.sync_tombstone_retention_days = int(args.tombstone_days)

    try:
        summary = asyncio.run(run_maintenance())
    finally:
        dispose_engine_cache()

    print(f"ledger entries pruned: {summary.ledger_pruned}")
    for entity_type, count in sorted(summary.tombstones_purged.items()):
        print(f"{entity_type} tombstones purged: {count}")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
