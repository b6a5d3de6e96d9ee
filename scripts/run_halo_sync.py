#!/usr/bin/env python
"""Run a Halo time sync outside the HTTP layer.

Examples:
  python scripts/run_halo_sync.py                      # latest fiscal year
  python scripts/run_halo_sync.py --fiscal-year-id 3
  python scripts/run_halo_sync.py --fiscal-year-id 3 --from 2025-01-01 --to 2025-01-31
"""

from __future__ import annotations

import argparse
import json
import sys
from datetime import date
from pathlib import Path

ROOT_DIR = Path(__file__).resolve().parents[1]
if str(ROOT_DIR) not in sys.path:
    sys.path.insert(0, str(ROOT_DIR))

from app.db import SessionLocal
from app.logging_utils import setup_json_logging
from app.models import AuditActorType
from app.services.halo_sync import run_fiscal_year_sync, run_latest_fiscal_year_sync
from app.settings import get_settings


def _parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Sync Halo timesheets into month entries.")
    parser.add_argument("--fiscal-year-id", type=int, default=None, help="Target fiscal year (default: latest)")
    parser.add_argument("--from", dest="date_from", type=date.fromisoformat, default=None)
    parser.add_argument("--to", dest="date_to", type=date.fromisoformat, default=None)
    args = parser.parse_args(argv)
    if args.fiscal_year_id is None and (args.date_from or args.date_to):
        parser.error("--from/--to need --fiscal-year-id")
    return args


def main(argv: list[str] | None = None) -> int:
    args = _parse_args(argv)
    setup_json_logging(get_settings().log_level)

    with SessionLocal() as db:
        if args.fiscal_year_id is None:
            result = run_latest_fiscal_year_sync(db)
        else:
            result = run_fiscal_year_sync(
                db,
                args.fiscal_year_id,
                date_from=args.date_from,
                date_to=args.date_to,
                trigger="cli",
                actor_type=AuditActorType.SYSTEM,
                actor_id="cli",
            )

    print(json.dumps(result.to_dict(), ensure_ascii=False, indent=2))
    return 0 if result.ok else 1


if __name__ == "__main__":
    raise SystemExit(main())
