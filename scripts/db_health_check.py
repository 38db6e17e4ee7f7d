#!/usr/bin/env python
from __future__ import annotations

import json
import os
from datetime import datetime, timezone
from pathlib import Path

from sqlalchemy import create_engine, text


EXPECTED_HEAD = "0001_initial"
DEFAULT_TOLERANCE_HOURS = 0.5

HOUR_SUM_SQL = (
    "hours_regular + hours_night + hours_saturday + hours_sunday + hours_holiday"
    " + hours_driving + hours_passenger + hours_equipment + hours_leave + hours_medical_leave"
)


def load_env_if_exists() -> None:
    env_file = Path(".env")
    if not env_file.exists():
        return
    for raw_line in env_file.read_text(encoding="utf-8").splitlines():
        line = raw_line.strip()
        if not line or line.startswith("#") or "=" not in line:
            continue
        key, value = line.split("=", 1)
        os.environ.setdefault(key.strip(), value.strip())


def run() -> dict:
    load_env_if_exists()
    database_url = os.environ.get("DATABASE_URL")
    if not database_url:
        raise RuntimeError("DATABASE_URL not found (.env or env vars).")
    tolerance = float(os.environ.get("RECONCILE_TOLERANCE_HOURS", DEFAULT_TOLERANCE_HOURS))

    engine = create_engine(database_url)
    report: dict = {
        "generated_at_utc": datetime.now(timezone.utc).isoformat(),
        "database_url": database_url,
        "tolerance_hours": tolerance,
        "checks": [],
    }

    def add(name: str, status: str, details: dict) -> None:
        report["checks"].append(
            {
                "name": name,
                "status": status,
                "details": details,
            }
        )

    with engine.connect() as conn:
        tables = set(
            conn.execute(
                text(
                    """
                    select table_name
                    from information_schema.tables
                    where table_schema='public'
                    """
                )
            ).scalars()
        )

        current_versions: list[str] = []
        if "alembic_version" in tables:
            current_versions = [
                row[0]
                for row in conn.execute(text("select version_num from alembic_version")).fetchall()
            ]
        add("alembic_version", "ok" if current_versions else "fail", {"current": current_versions})
        add(
            "migration_up_to_date",
            "ok" if EXPECTED_HEAD in current_versions else "warn",
            {"expected_head": EXPECTED_HEAD, "current": current_versions},
        )

        required = ["time_entries", "holidays", "daily_timesheets", "manual_overrides", "security_alerts"]
        missing = [table for table in required if table not in tables]
        add("missing_tables", "fail" if missing else "ok", {"tables": missing})
        if missing:
            return report

        out_of_tolerance = conn.execute(
            text(
                f"""
                select t.employee_id, t.work_date, ({HOUR_SUM_SQL}) as total_hours,
                       t.clock_hours - t.break_hours as clock_total
                from daily_timesheets t
                left join manual_overrides o
                  on o.employee_id = t.employee_id and o.work_date = t.work_date
                where o.id is null
                  and abs(({HOUR_SUM_SQL}) - (t.clock_hours - t.break_hours)) > :tolerance
                order by t.work_date desc
                limit 20
                """
            ),
            {"tolerance": tolerance},
        ).fetchall()
        add(
            "computed_days_out_of_tolerance",
            "fail" if out_of_tolerance else "ok",
            {
                "rows": [
                    [row[0], row[1].isoformat(), round(float(row[2]), 2), round(float(row[3]), 2)]
                    for row in out_of_tolerance
                ]
            },
        )

        blank_reasons = conn.execute(
            text(
                """
                select id
                from manual_overrides
                where trim(reason) = ''
                limit 20
                """
            )
        ).fetchall()
        add(
            "override_without_reason",
            "fail" if blank_reasons else "ok",
            {"sample_ids": [row[0] for row in blank_reasons]},
        )

        mislabelled = conn.execute(
            text(
                f"""
                select id
                from manual_overrides
                where is_true_override = false
                  and abs(({HOUR_SUM_SQL}) - clock_hours) > :tolerance
                limit 20
                """
            ),
            {"tolerance": tolerance},
        ).fetchall()
        add(
            "override_flag_mismatch",
            "warn" if mislabelled else "ok",
            {"sample_ids": [row[0] for row in mislabelled]},
        )

        open_entries = conn.execute(
            text(
                """
                select id
                from time_entries
                where clock_out_ts is null
                  and clock_in_ts < now() - interval '24 hours'
                limit 20
                """
            )
        ).fetchall()
        add(
            "stale_open_time_entries",
            "warn" if open_entries else "ok",
            {"sample_ids": [row[0] for row in open_entries]},
        )

    return report


if __name__ == "__main__":
    print(json.dumps(run(), ensure_ascii=False, indent=2))
