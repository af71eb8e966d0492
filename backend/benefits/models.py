"""Benefits ORM models: BenefitPeriod, BenefitDeduction.

One ``BenefitPeriod`` row per (employee, month) holds the VR / VT / mobility
amounts, the payment status and the disbursement tracking fields.
Deductions are append-only rows owned by exactly one period.
"""

from __future__ import annotations

import uuid
from datetime import date, datetime, timezone
from decimal import Decimal
from typing import Optional

import sqlalchemy as sa
from sqlalchemy import event
from sqlalchemy.dialects.postgresql import JSONB, UUID
from sqlalchemy.orm import Mapped, mapped_column, relationship

from backend.benefits.calculator import total_benefit_amount
from backend.common.constants import (
    BenefitType,
    DeductionType,
    PaymentMethod,
    PaymentStatus,
    ProviderStatus,
    VTMode,
)
from backend.database import Base


def _enum(enum_cls, name: str) -> sa.Enum:
    """Map a str-Enum on its *values* (``"Approved"``) rather than its names."""
    return sa.Enum(
        enum_cls,
        name=name,
        create_type=False,
        values_callable=lambda e: [m.value for m in e],
    )


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


# ═════════════════════════════════════════════════════════════════════
# Benefit Period Record
# ═════════════════════════════════════════════════════════════════════


class BenefitPeriod(Base):
    """Monthly benefit record for one employee."""

    __tablename__ = "benefit_periods"
    __table_args__ = (
        sa.UniqueConstraint("employee_id", "month", name="uq_benefit_employee_month"),
        sa.Index("ix_benefit_periods_month", "month"),
        sa.Index("ix_benefit_periods_payment_status", "payment_status"),
        sa.Index("ix_benefit_periods_provider_reference", "provider_reference"),
        sa.CheckConstraint("vr_final_amount >= 0", name="ck_benefit_vr_final"),
        sa.CheckConstraint("vt_final_amount >= 0", name="ck_benefit_vt_final"),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=uuid.uuid4,
    )
    employee_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        sa.ForeignKey("employees.id"),
        nullable=False,
    )
    month: Mapped[str] = mapped_column(sa.String(7), nullable=False)  # YYYY-MM
    year: Mapped[int] = mapped_column(sa.Integer, nullable=False)

    # ── Vale Refeição ───────────────────────────────────────────────
    vr_enabled: Mapped[bool] = mapped_column(sa.Boolean, default=True)
    vr_daily_value: Mapped[Decimal] = mapped_column(sa.Numeric(12, 2), default=Decimal("0"))
    vr_business_days: Mapped[int] = mapped_column(sa.Integer, default=22)
    vr_saturdays: Mapped[int] = mapped_column(sa.Integer, default=0)
    vr_total_days: Mapped[int] = mapped_column(sa.Integer, default=0)
    vr_total_amount: Mapped[Decimal] = mapped_column(sa.Numeric(12, 2), default=Decimal("0"))
    vr_final_amount: Mapped[Decimal] = mapped_column(sa.Numeric(12, 2), default=Decimal("0"))
    vr_schedule_file_url: Mapped[Optional[str]] = mapped_column(sa.String(500))
    vr_schedule_uploaded_by: Mapped[Optional[uuid.UUID]] = mapped_column(
        UUID(as_uuid=True), sa.ForeignKey("employees.id"),
    )
    vr_schedule_uploaded_at: Mapped[Optional[datetime]] = mapped_column(
        sa.DateTime(timezone=True),
    )

    # ── Vale Transporte ─────────────────────────────────────────────
    vt_enabled: Mapped[bool] = mapped_column(sa.Boolean, default=True)
    vt_mode: Mapped[VTMode] = mapped_column(
        _enum(VTMode, "benefit_vt_mode"), default=VTMode.fixed,
    )
    vt_fixed_amount: Mapped[Decimal] = mapped_column(sa.Numeric(12, 2), default=Decimal("0"))
    vt_daily_value: Mapped[Decimal] = mapped_column(sa.Numeric(12, 2), default=Decimal("0"))
    vt_total_days: Mapped[int] = mapped_column(sa.Integer, default=0)
    vt_total_amount: Mapped[Decimal] = mapped_column(sa.Numeric(12, 2), default=Decimal("0"))
    vt_final_amount: Mapped[Decimal] = mapped_column(sa.Numeric(12, 2), default=Decimal("0"))

    # ── Mobilidade ──────────────────────────────────────────────────
    mobility_enabled: Mapped[bool] = mapped_column(sa.Boolean, default=False)
    mobility_monthly_value: Mapped[Decimal] = mapped_column(
        sa.Numeric(12, 2), default=Decimal("0"),
    )

    # ── Payment ─────────────────────────────────────────────────────
    payment_status: Mapped[PaymentStatus] = mapped_column(
        _enum(PaymentStatus, "benefit_payment_status"),
        nullable=False,
        default=PaymentStatus.pending,
    )
    payment_method: Mapped[PaymentMethod] = mapped_column(
        _enum(PaymentMethod, "benefit_payment_method"),
        default=PaymentMethod.flash,
    )
    payment_date: Mapped[Optional[datetime]] = mapped_column(sa.DateTime(timezone=True))

    # ── Disbursement ────────────────────────────────────────────────
    disbursement_submitted: Mapped[bool] = mapped_column(
        sa.Boolean, nullable=False, default=False,
    )
    disbursement_submitted_at: Mapped[Optional[datetime]] = mapped_column(
        sa.DateTime(timezone=True),
    )
    disbursement_submitted_by: Mapped[Optional[uuid.UUID]] = mapped_column(
        UUID(as_uuid=True), sa.ForeignKey("employees.id"),
    )
    provider_reference: Mapped[Optional[str]] = mapped_column(sa.String(100))
    provider_status: Mapped[ProviderStatus] = mapped_column(
        _enum(ProviderStatus, "benefit_provider_status"),
        nullable=False,
        default=ProviderStatus.pending,
    )
    provider_response: Mapped[Optional[dict]] = mapped_column(JSONB)

    # ── Audit / concurrency ─────────────────────────────────────────
    created_by: Mapped[Optional[uuid.UUID]] = mapped_column(
        UUID(as_uuid=True), sa.ForeignKey("employees.id"),
    )
    updated_by: Mapped[Optional[uuid.UUID]] = mapped_column(
        UUID(as_uuid=True), sa.ForeignKey("employees.id"),
    )
    created_at: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True), default=_utcnow,
    )
    updated_at: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True), default=_utcnow, onupdate=_utcnow,
    )
    version: Mapped[int] = mapped_column(sa.Integer, nullable=False)

    __mapper_args__ = {"version_id_col": version}

    # Relationships
    employee = relationship(
        "Employee", foreign_keys=[employee_id], lazy="joined",
    )
    deductions: Mapped[list[BenefitDeduction]] = relationship(
        back_populates="benefit_period",
        order_by="BenefitDeduction.recorded_at",
        lazy="selectin",
    )

    # ── Helpers ─────────────────────────────────────────────────────

    def deductions_for(self, benefit_type: BenefitType) -> list[BenefitDeduction]:
        return [d for d in self.deductions if d.benefit_type == benefit_type]

    @property
    def total_benefit_amount(self) -> Decimal:
        return total_benefit_amount(self)

    def __repr__(self) -> str:
        return (
            f"<BenefitPeriod employee_id={self.employee_id} {self.month} "
            f"{self.payment_status.value if self.payment_status else None}>"
        )


# ═════════════════════════════════════════════════════════════════════
# Deduction
# ═════════════════════════════════════════════════════════════════════


class BenefitDeduction(Base):
    """Per-day deduction against the VR or VT part of a benefit period."""

    __tablename__ = "benefit_deductions"
    __table_args__ = (
        sa.CheckConstraint("amount > 0", name="ck_benefit_deduction_amount"),
        sa.Index("ix_benefit_deductions_period", "benefit_period_id"),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=uuid.uuid4,
    )
    benefit_period_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        sa.ForeignKey("benefit_periods.id"),
        nullable=False,
    )
    benefit_type: Mapped[BenefitType] = mapped_column(
        _enum(BenefitType, "benefit_type"), nullable=False,
    )
    deduction_date: Mapped[date] = mapped_column(sa.Date, nullable=False)
    amount: Mapped[Decimal] = mapped_column(sa.Numeric(12, 2), nullable=False)
    reason: Mapped[str] = mapped_column(sa.String(500), nullable=False)
    deduction_type: Mapped[DeductionType] = mapped_column(
        _enum(DeductionType, "benefit_deduction_type"),
        nullable=False,
        default=DeductionType.absence,
    )
    recorded_by: Mapped[Optional[uuid.UUID]] = mapped_column(
        UUID(as_uuid=True), sa.ForeignKey("employees.id"),
    )
    recorded_at: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True), nullable=False, default=_utcnow,
    )

    benefit_period: Mapped[BenefitPeriod] = relationship(
        back_populates="deductions",
    )

    def __repr__(self) -> str:
        return (
            f"<BenefitDeduction {self.benefit_type.value} {self.deduction_date} "
            f"R${self.amount} {self.deduction_type.value}>"
        )


@event.listens_for(BenefitDeduction, "before_update")
@event.listens_for(BenefitDeduction, "before_delete")
def _reject_deduction_change(mapper, connection, target) -> None:
    raise RuntimeError(
        f"Benefit deductions are append-only; refusing to change {target.id}."
    )
