"""Deduction ledger — append-only per-day deductions on a benefit period.

Deductions cannot be edited or removed and there is no reversal entry type;
a wrong deduction is corrected by cancelling the whole period.
"""

from __future__ import annotations

import calendar
import uuid
from datetime import date, datetime, timezone
from decimal import Decimal
from typing import Optional

from backend.benefits.calculator import ensure_recalculable, recalculate, to_money
from backend.benefits.models import BenefitDeduction, BenefitPeriod
from backend.common.constants import BenefitType, DeductionType
from backend.common.exceptions import InvalidDeductionException


def month_bounds(month: str) -> tuple[date, date]:
    """Return the first and last day of a ``YYYY-MM`` month key."""
    year, month_num = (int(part) for part in month.split("-"))
    last_day = calendar.monthrange(year, month_num)[1]
    return date(year, month_num, 1), date(year, month_num, last_day)


def _is_enabled(record: BenefitPeriod, benefit_type: BenefitType) -> bool:
    return record.vr_enabled if benefit_type == BenefitType.vr else record.vt_enabled


def validate_deduction(
    record: BenefitPeriod,
    benefit_type: BenefitType,
    deduction_date: date,
    amount: Decimal,
    reason: str,
) -> None:
    """Raise ``InvalidDeductionException`` listing every problem found."""
    errors: dict[str, list[str]] = {}

    if amount is None or to_money(amount) <= 0:
        errors.setdefault("amount", []).append("Deduction amount must be greater than zero.")

    first_day, last_day = month_bounds(record.month)
    if not first_day <= deduction_date <= last_day:
        errors.setdefault("deduction_date", []).append(
            f"Date {deduction_date.isoformat()} is outside the benefit month {record.month}."
        )

    if not reason or not reason.strip():
        errors.setdefault("reason", []).append("A reason is required.")

    if not _is_enabled(record, benefit_type):
        errors.setdefault("benefit_type", []).append(
            f"{benefit_type.value} is not enabled on this benefit record."
        )

    if errors:
        raise InvalidDeductionException(errors)


def add_deduction(
    record: BenefitPeriod,
    benefit_type: BenefitType,
    *,
    deduction_date: date,
    amount: Decimal,
    reason: str,
    deduction_type: DeductionType = DeductionType.absence,
    recorded_by: Optional[uuid.UUID] = None,
) -> BenefitDeduction:
    """Append a deduction and recompute *only* that benefit type.

    State and input checks run before anything is appended, so a rejected
    deduction leaves the record untouched.
    """
    ensure_recalculable(record)
    validate_deduction(record, benefit_type, deduction_date, amount, reason)

    deduction = BenefitDeduction(
        id=uuid.uuid4(),
        benefit_type=benefit_type,
        deduction_date=deduction_date,
        amount=to_money(amount),
        reason=reason.strip(),
        deduction_type=deduction_type,
        recorded_by=recorded_by,
        recorded_at=datetime.now(timezone.utc),
    )
    record.deductions.append(deduction)
    recalculate(record, (benefit_type,))
    return deduction
