#!/usr/bin/env python
from __future__ import annotations

import argparse
import json
import sys
from datetime import date, datetime, timezone
from pathlib import Path

ROOT_DIR = Path(__file__).resolve().parents[1]
if str(ROOT_DIR) not in sys.path:
    sys.path.insert(0, str(ROOT_DIR))

from shiftledger.db import SessionLocal
from shiftledger.logging_utils import setup_json_logging
from shiftledger.schemas import MAX_RECOMPUTE_SPAN_DAYS
from shiftledger.services.timesheets import recompute_range
from shiftledger.settings import get_settings


def _parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Re-run timesheet segmentation for a range of local work dates")
    parser.add_argument("--start-date", type=date.fromisoformat, required=True)
    parser.add_argument("--end-date", type=date.fromisoformat, required=True)
    parser.add_argument("--employee-id", type=int, default=None)
    parser.add_argument(
        "--today",
        type=date.fromisoformat,
        default=None,
        help="Reference date for the future-date check (defaults to the current UTC date)",
    )
    args = parser.parse_args(argv)
    if args.end_date < args.start_date:
        parser.error("--end-date must not be before --start-date")
    if (args.end_date - args.start_date).days >= MAX_RECOMPUTE_SPAN_DAYS:
        parser.error(f"range must be shorter than {MAX_RECOMPUTE_SPAN_DAYS} days")
    return args


def main(argv: list[str] | None = None) -> int:
    args = _parse_args(argv)
    setup_json_logging(get_settings().log_level)

    with SessionLocal() as db:
        outcome = recompute_range(
            db,
            start_date=args.start_date,
            end_date=args.end_date,
            employee_id=args.employee_id,
            today=args.today,
        )

    result = outcome.result
    summary = {
        "generated_at_utc": datetime.now(timezone.utc).isoformat(),
        "start_date": outcome.start_date.isoformat(),
        "end_date": outcome.end_date.isoformat(),
        "employee_id": args.employee_id,
        "days_written": outcome.days_written,
        "days_removed": outcome.days_removed,
        "skipped": [item.to_dict() for item in result.skipped],
        "notices": [item.to_dict() for item in result.notices],
        "day_issues": [item.to_dict() for item in result.day_issues],
        "overridden_days": [
            {"employee_id": employee_id, "work_date": work_date.isoformat()}
            for employee_id, work_date in result.overridden
        ],
        "capped_entry_ids": [item.shift.entry_id for item in result.capped],
    }
    print(json.dumps(summary, ensure_ascii=False, indent=2))
    return 0 if not result.day_issues else 1


if __name__ == "__main__":
    raise SystemExit(main())
