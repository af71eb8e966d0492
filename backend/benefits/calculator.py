"""Benefit calculator — derives VR / VT gross and net amounts for one record.

Functions here take a ``BenefitPeriod`` (or anything shaped like one) and
write the derived day counts and amounts back onto it. No I/O happens here;
the service layer owns loading, locking and flushing.

    totalDays   = businessDays + saturdays                    (VR)
    totalAmount = totalDays × dailyValue                      (VR, VT daily mode)
    totalAmount = fixedAmount                                 (VT fixed mode)
    finalAmount = max(0, totalAmount − Σ deductions.amount)
"""

from __future__ import annotations

from decimal import ROUND_HALF_UP, Decimal
from typing import Any, Callable, Iterable

from backend.common.constants import (
    CENT,
    LOCKED_PAYMENT_STATUSES,
    BenefitType,
    PaymentStatus,
    VTMode,
)
from backend.common.exceptions import InvalidStateTransitionException

ZERO = Decimal("0.00")


def to_money(value: Any) -> Decimal:
    """Coerce *value* to a 2-place Decimal; ``None`` counts as zero."""
    if value is None:
        return ZERO
    if not isinstance(value, Decimal):
        value = Decimal(str(value))
    return value.quantize(CENT, rounding=ROUND_HALF_UP)


def sum_deductions(deductions: Iterable[Any]) -> Decimal:
    return sum((to_money(d.amount) for d in deductions), ZERO)


# ── Per-benefit calculators ─────────────────────────────────────────

def calculate_vr(record) -> Decimal:
    """Meal voucher: day-rate times business days plus Saturdays."""
    if not record.vr_enabled:
        return ZERO

    record.vr_total_days = (record.vr_business_days or 0) + (record.vr_saturdays or 0)
    record.vr_total_amount = to_money(record.vr_total_days * to_money(record.vr_daily_value))
    deducted = sum_deductions(record.deductions_for(BenefitType.vr))
    record.vr_final_amount = max(ZERO, record.vr_total_amount - deducted)
    return record.vr_final_amount


def calculate_vt(record) -> Decimal:
    """Transport voucher: fixed monthly entitlement, or days × rate in daily mode."""
    if not record.vt_enabled:
        return ZERO

    if record.vt_mode == VTMode.daily:
        record.vt_total_amount = to_money(
            (record.vt_total_days or 0) * to_money(record.vt_daily_value)
        )
    else:
        record.vt_total_amount = to_money(record.vt_fixed_amount)
    deducted = sum_deductions(record.deductions_for(BenefitType.vt))
    record.vt_final_amount = max(ZERO, record.vt_total_amount - deducted)
    return record.vt_final_amount


_CALCULATORS: dict[BenefitType, Callable[[Any], Decimal]] = {
    BenefitType.vr: calculate_vr,
    BenefitType.vt: calculate_vt,
}


def mobility_amount(record) -> Decimal:
    return to_money(record.mobility_monthly_value) if record.mobility_enabled else ZERO


def total_benefit_amount(record) -> Decimal:
    """Sum of every *enabled* benefit's stored net amount."""
    total = ZERO
    if record.vr_enabled:
        total += to_money(record.vr_final_amount)
    if record.vt_enabled:
        total += to_money(record.vt_final_amount)
    return total + mobility_amount(record)


# ── Entry points ────────────────────────────────────────────────────

def ensure_recalculable(record) -> None:
    """Raise if the record's payment status no longer allows recalculation."""
    status = record.payment_status
    if status in LOCKED_PAYMENT_STATUSES:
        raise InvalidStateTransitionException(
            "benefit record", status.value, "recalculate",
        )


def recalculate(
    record,
    benefit_types: Iterable[BenefitType] = (BenefitType.vr, BenefitType.vt),
) -> Decimal:
    """Recompute the given benefit types and advance Pending → Calculated.

    A Pending record has never been computed, so every benefit type is
    calculated before it becomes Calculated. Returns the record's total
    benefit amount afterwards.
    """
    ensure_recalculable(record)
    is_pending = record.payment_status in (None, PaymentStatus.pending)
    if is_pending:
        benefit_types = tuple(_CALCULATORS)
    for benefit_type in benefit_types:
        _CALCULATORS[benefit_type](record)

    if is_pending:
        record.payment_status = PaymentStatus.calculated
    return total_benefit_amount(record)
