#!/usr/bin/env python3
"""Monthly benefits run — calculate every eligible employee's VR / VT record.

Meant to be invoked by an external scheduler (cron, k8s CronJob) once the
month's schedule is known. Each employee is calculated and committed on its
own, so one failing employee never blocks the rest.

Usage:
    python -m scripts.run_monthly_benefits                       # current month
    python -m scripts.run_monthly_benefits --month 10 --year 2026
    python -m scripts.run_monthly_benefits --department <uuid>
    python -m scripts.run_monthly_benefits --dry-run             # list employees only

Requires in .env (project root):
    DATABASE_URL, JWT_SECRET
"""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import sys
import uuid
from datetime import datetime
from pathlib import Path
from typing import Optional
from zoneinfo import ZoneInfo

from dotenv import load_dotenv

# ── Path setup ────────────────────────────────────────────────────────
PROJECT_ROOT = Path(__file__).resolve().parent.parent
sys.path.insert(0, str(PROJECT_ROOT))

env_path = PROJECT_ROOT / ".env"
if env_path.exists():
    load_dotenv(env_path)

from backend.benefits.schemas import CalculateRequest  # noqa: E402
from backend.benefits.service import BenefitService  # noqa: E402
from backend.common.constants import TIMEZONE, EmploymentType  # noqa: E402
from backend.common.exceptions import AppException  # noqa: E402
from backend.common.logging_config import configure_logging  # noqa: E402
from backend.database import async_session_factory, engine  # noqa: E402

logger = logging.getLogger("run_monthly_benefits")


def _parse_args(argv: Optional[list[str]] = None) -> argparse.Namespace:
    now = datetime.now(ZoneInfo(TIMEZONE))
    parser = argparse.ArgumentParser(description="Calculate monthly benefits for eligible employees")
    parser.add_argument("--month", type=int, default=now.month, help="1-12 (default: current month)")
    parser.add_argument("--year", type=int, default=now.year, help="default: current year")
    parser.add_argument("--department", type=uuid.UUID, default=None, help="Only this department id")
    parser.add_argument(
        "--employment-type",
        choices=[t.value for t in EmploymentType],
        default=None,
        help="Only this contract type",
    )
    parser.add_argument("--actor", type=uuid.UUID, default=None, help="Employee id recorded as the actor")
    parser.add_argument("--dry-run", action="store_true", help="List eligible employees, write nothing")
    parser.add_argument("--log-level", default=None, help="Override LOG_LEVEL")
    args = parser.parse_args(argv)
    if not 1 <= args.month <= 12:
        parser.error(f"--month must be 1-12, got {args.month}")
    return args


async def run(args: argparse.Namespace) -> dict:
    employment_type = EmploymentType(args.employment_type) if args.employment_type else None

    async with async_session_factory() as session:
        employees = await BenefitService.list_eligible_employees(
            session, department_id=args.department, employment_type=employment_type,
        )
    employee_ids = [(e.id, e.employee_code) for e in employees]
    logger.info("%d eligible employee(s) for %04d-%02d", len(employee_ids), args.year, args.month)

    calculated, skipped = 0, 0
    for employee_id, code in employee_ids:
        if args.dry_run:
            logger.info("[dry-run] would calculate %s (%s)", code, employee_id)
            continue
        async with async_session_factory() as session:
            try:
                record = await BenefitService.calculate(
                    session,
                    CalculateRequest(employee_id=employee_id, month=args.month, year=args.year),
                    actor_id=args.actor,
                )
                await session.commit()
            except AppException as exc:
                await session.rollback()
                skipped += 1
                logger.info("Skipped %s: %s", code, exc.detail)
                continue
            calculated += 1
            logger.debug("Calculated %s: total %s", code, record.total_benefit_amount)

    async with async_session_factory() as session:
        stats = await BenefitService.get_statistics(session, args.month, args.year)

    logger.info("Run finished: %d calculated, %d skipped", calculated, skipped)
    return {"calculated": calculated, "skipped": skipped, "statistics": stats}


async def _main(argv: Optional[list[str]] = None) -> int:
    args = _parse_args(argv)
    configure_logging(args.log_level)
    try:
        summary = await run(args)
    finally:
        await engine.dispose()
    print(json.dumps(summary, indent=2, default=str))
    return 0


if __name__ == "__main__":
    sys.exit(asyncio.run(_main()))
