"""Approval & disbursement state machine for benefit periods.

    Pending ──calculate──▶ Calculated ──approve──▶ Approved ──reconcile──▶ Paid
       │                       │                      │
       └───────────────────────┴──────cancel──────────┴──▶ Cancelled

Provider status (Pending → Processing → Completed | Failed) is tracked
separately and never moves ``payment_status`` by itself; only ``reconcile``
turns a Completed disbursement into Paid.
"""

from __future__ import annotations

import uuid
from datetime import datetime
from typing import Any, Optional

from backend.benefits.models import BenefitPeriod
from backend.common.constants import PaymentStatus, ProviderStatus
from backend.common.exceptions import InvalidStateTransitionException

_ENTITY = "benefit record"

TRANSITIONS: dict[PaymentStatus, frozenset[PaymentStatus]] = {
    PaymentStatus.pending: frozenset({PaymentStatus.calculated, PaymentStatus.cancelled}),
    PaymentStatus.calculated: frozenset({PaymentStatus.approved, PaymentStatus.cancelled}),
    PaymentStatus.approved: frozenset({PaymentStatus.paid, PaymentStatus.cancelled}),
    PaymentStatus.paid: frozenset(),
    PaymentStatus.cancelled: frozenset(),
}


def can_transition(current: PaymentStatus, target: PaymentStatus) -> bool:
    return target in TRANSITIONS.get(current, frozenset())


def _transition(record: BenefitPeriod, target: PaymentStatus, action: str) -> None:
    if not can_transition(record.payment_status, target):
        raise InvalidStateTransitionException(_ENTITY, record.payment_status.value, action)
    record.payment_status = target


# ── Approval ────────────────────────────────────────────────────────

def approve(record: BenefitPeriod) -> None:
    _transition(record, PaymentStatus.approved, "approve")


# ── Submission ──────────────────────────────────────────────────────

def ensure_submittable(record: BenefitPeriod) -> None:
    """Only Approved records that were never submitted can join a batch."""
    if record.payment_status != PaymentStatus.approved:
        raise InvalidStateTransitionException(
            _ENTITY, record.payment_status.value, "submit",
        )
    if record.disbursement_submitted:
        raise InvalidStateTransitionException(
            _ENTITY, f"{record.payment_status.value}/submitted", "submit",
        )


def mark_submitted(
    record: BenefitPeriod,
    *,
    reference: str,
    submitted_by: Optional[uuid.UUID],
    submitted_at: datetime,
) -> None:
    ensure_submittable(record)
    record.disbursement_submitted = True
    record.disbursement_submitted_at = submitted_at
    record.disbursement_submitted_by = submitted_by
    record.provider_reference = reference
    record.provider_status = ProviderStatus.processing


def apply_provider_status(
    record: BenefitPeriod,
    status: ProviderStatus,
    response: Optional[dict[str, Any]] = None,
) -> None:
    """Store what the provider reported; payment status is left alone."""
    if not record.disbursement_submitted:
        raise InvalidStateTransitionException(
            _ENTITY, record.payment_status.value, "update provider status of",
        )
    record.provider_status = status
    if response is not None:
        record.provider_response = response


# ── Reconciliation ──────────────────────────────────────────────────

def reconcile(record: BenefitPeriod, paid_at: datetime) -> None:
    """Approved + provider Completed → Paid."""
    if record.provider_status != ProviderStatus.completed:
        raise InvalidStateTransitionException(
            _ENTITY,
            f"{record.payment_status.value}/provider {record.provider_status.value}",
            "reconcile",
        )
    _transition(record, PaymentStatus.paid, "reconcile")
    record.payment_date = paid_at


# ── Cancellation ────────────────────────────────────────────────────

def cancel(record: BenefitPeriod) -> None:
    """Cancel a record; funds already in flight block cancellation."""
    in_flight = (
        record.disbursement_submitted
        and record.provider_status != ProviderStatus.failed
    )
    if record.payment_status == PaymentStatus.approved and in_flight:
        raise InvalidStateTransitionException(
            _ENTITY,
            f"{record.payment_status.value}/provider {record.provider_status.value}",
            "cancel",
        )
    _transition(record, PaymentStatus.cancelled, "cancel")
