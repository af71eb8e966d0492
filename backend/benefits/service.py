"""Benefits service — monthly VR / VT / mobility records and their workflow.

Every read-modify-write path loads the benefit period with ``FOR UPDATE``;
the mapper's version counter turns any lost update into a ``ConflictError``.
Bulk operations are partial-success: records in the wrong state are
reported back as skips and never abort the rest of the batch.
"""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Callable, Iterable, Optional

from sqlalchemy import case, func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm.exc import StaleDataError

from backend.benefits import workflow
from backend.benefits.calculator import (
    ZERO,
    ensure_recalculable,
    recalculate,
    to_money,
)
from backend.benefits.ledger import add_deduction as ledger_add_deduction
from backend.benefits.models import BenefitDeduction, BenefitPeriod
from backend.benefits.schemas import (
    BenefitConfigUpdate,
    CalculateRequest,
    DeductionCreate,
)
from backend.common.audit import create_audit_entry
from backend.common.constants import (
    BenefitType,
    EmploymentStatus,
    EmploymentType,
    PaymentMethod,
    PaymentStatus,
    ProviderStatus,
    VTMode,
)
from backend.common.exceptions import (
    ConflictError,
    DisbursementProviderException,
    InvalidStateTransitionException,
    NotFoundException,
    ValidationException,
)
from backend.common.pagination import PaginatedResponse, PaginationParams, paginate
from backend.config import settings
from backend.core_hr.models import Employee, EmployeeBenefitConfig
from backend.notifications import service as notifications

logger = logging.getLogger(__name__)

_ENTITY = "benefit_period"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def month_key(month: int, year: int) -> str:
    """``(10, 2026)`` → ``"2026-10"``."""
    if not 1 <= int(month) <= 12:
        raise ValidationException({"month": [f"Month must be 1-12, got {month}."]})
    if not 2000 <= int(year) <= 2100:
        raise ValidationException({"year": [f"Year {year} is out of range."]})
    return f"{int(year):04d}-{int(month):02d}"


def _amount_snapshot(record: BenefitPeriod) -> dict[str, Any]:
    return {
        "vr_final_amount": record.vr_final_amount,
        "vt_final_amount": record.vt_final_amount,
        "mobility_monthly_value": record.mobility_monthly_value,
        "payment_status": record.payment_status,
    }


def _touch(record: BenefitPeriod, actor_id: Optional[uuid.UUID]) -> None:
    record.updated_at = _utcnow()
    record.updated_by = actor_id


async def _flush(db: AsyncSession, record: Optional[BenefitPeriod] = None) -> None:
    # Read before flushing: a failed flush expires the instance
    record_id = record.id if record is not None else None
    version = record.version if record is not None else "stale"
    try:
        await db.flush()
    except StaleDataError:
        logger.warning("Concurrent update detected on benefit record %s", record_id or "?")
        raise ConflictError(
            "version",
            version,
            "Benefit record was modified by another request; reload and retry.",
        )


async def _change_in_savepoint(
    db: AsyncSession,
    record: BenefitPeriod,
    change: Callable[[BenefitPeriod], None],
    actor_id: Optional[uuid.UUID],
) -> None:
    """Apply one bulk-operation step to *record* inside its own SAVEPOINT.

    A rejected transition or a lost update rolls back this record only and
    leaves the surrounding transaction usable for the rest of the batch.
    """
    async with db.begin_nested():
        change(record)
        _touch(record, actor_id)
        await _flush(db, record)


# ── Outcomes of bulk operations ─────────────────────────────────────


@dataclass
class BulkOutcome:
    processed: list[uuid.UUID] = field(default_factory=list)
    skipped: list[dict[str, Any]] = field(default_factory=list)

    def skip(self, record_id: uuid.UUID, reason: str) -> None:
        logger.info("Skipping benefit record %s: %s", record_id, reason)
        self.skipped.append({"id": record_id, "reason": reason})

    @property
    def processed_count(self) -> int:
        return len(self.processed)

    @property
    def skipped_count(self) -> int:
        return len(self.skipped)

    def as_dict(self) -> dict[str, Any]:
        return {
            "processed": self.processed,
            "skipped": self.skipped,
            "processed_count": self.processed_count,
            "skipped_count": self.skipped_count,
        }


@dataclass
class SubmitOutcome(BulkOutcome):
    reference: Optional[str] = None
    total_amount: Decimal = ZERO
    employee_count: int = 0
    provider_status: Optional[ProviderStatus] = None
    error: Optional[str] = None

    def as_dict(self) -> dict[str, Any]:
        data = super().as_dict()
        data["batch"] = (
            {
                "reference": self.reference,
                "total_amount": self.total_amount,
                "employee_count": self.employee_count,
                "provider_status": self.provider_status,
            }
            if self.reference else None
        )
        data["error"] = self.error
        return data


@dataclass
class BatchDetail:
    reference: str
    records: list[BenefitPeriod]
    total_amount: Decimal
    employee_count: int
    provider_status: ProviderStatus
    submitted_at: Optional[datetime]


# ═════════════════════════════════════════════════════════════════════
# Service
# ═════════════════════════════════════════════════════════════════════


class BenefitService:
    """Async operations on benefit period records."""

    # ── Loading ─────────────────────────────────────────────────────

    @staticmethod
    async def _find(
        db: AsyncSession,
        employee_id: uuid.UUID,
        month: str,
        *,
        lock: bool = False,
    ) -> Optional[BenefitPeriod]:
        query = select(BenefitPeriod).where(
            BenefitPeriod.employee_id == employee_id,
            BenefitPeriod.month == month,
        )
        if lock:
            query = query.with_for_update(of=BenefitPeriod).execution_options(
                populate_existing=True,
            )
        return (await db.execute(query)).unique().scalars().first()

    @staticmethod
    async def _load(
        db: AsyncSession,
        benefit_id: uuid.UUID,
        *,
        lock: bool = False,
    ) -> Optional[BenefitPeriod]:
        query = select(BenefitPeriod).where(BenefitPeriod.id == benefit_id)
        if lock:
            query = query.with_for_update(of=BenefitPeriod).execution_options(
                populate_existing=True,
            )
        return (await db.execute(query)).unique().scalars().first()

    @staticmethod
    async def _load_or_404(
        db: AsyncSession,
        benefit_id: uuid.UUID,
        *,
        lock: bool = False,
    ) -> BenefitPeriod:
        record = await BenefitService._load(db, benefit_id, lock=lock)
        if record is None:
            raise NotFoundException("Benefit record", benefit_id)
        return record

    @staticmethod
    async def _get_employee(db: AsyncSession, employee_id: uuid.UUID) -> Employee:
        employee = await db.get(Employee, employee_id)
        if employee is None:
            raise NotFoundException("Employee", employee_id)
        return employee

    @staticmethod
    async def _get_config_row(
        db: AsyncSession,
        employee_id: uuid.UUID,
    ) -> Optional[EmployeeBenefitConfig]:
        result = await db.execute(
            select(EmployeeBenefitConfig).where(
                EmployeeBenefitConfig.employee_id == employee_id,
            )
        )
        return result.scalars().first()

    @staticmethod
    async def get_benefit(db: AsyncSession, benefit_id: uuid.UUID) -> BenefitPeriod:
        return await BenefitService._load_or_404(db, benefit_id)

    # ── Creation ────────────────────────────────────────────────────

    @staticmethod
    def _copy_config(
        record: BenefitPeriod,
        employee: Employee,
        config: Optional[EmployeeBenefitConfig],
    ) -> None:
        """Copy enablement and rates from the employee's configuration.

        Without a configuration row every benefit is disabled.
        """
        business_days = settings.BENEFITS_DEFAULT_BUSINESS_DAYS
        if config is None:
            record.vr_enabled = record.vt_enabled = record.mobility_enabled = False
            record.vr_daily_value = record.vt_daily_value = ZERO
            record.vt_fixed_amount = record.mobility_monthly_value = ZERO
            record.vr_business_days = business_days
            record.vt_mode = VTMode.fixed
            record.vt_total_days = 0
            return

        if config.vr_business_days_default:
            business_days = config.vr_business_days_default
        fixed_amount = to_money(config.vt_fixed_monthly_amount)
        is_fixed = employee.employment_type == EmploymentType.clt or fixed_amount > 0

        record.vr_enabled = bool(config.vr_enabled)
        record.vr_daily_value = to_money(config.vr_daily_value)
        record.vr_business_days = business_days
        record.vt_enabled = bool(config.vt_enabled)
        record.vt_mode = VTMode.fixed if is_fixed else VTMode.daily
        record.vt_fixed_amount = fixed_amount
        record.vt_daily_value = to_money(config.vt_daily_value)
        record.vt_total_days = 0 if is_fixed else business_days
        record.mobility_enabled = bool(config.mobility_enabled)
        record.mobility_monthly_value = to_money(config.mobility_monthly_value)

    @staticmethod
    def _new_record(
        employee: Employee,
        config: Optional[EmployeeBenefitConfig],
        month: str,
        year: int,
        actor_id: Optional[uuid.UUID],
    ) -> BenefitPeriod:
        now = _utcnow()
        record = BenefitPeriod(
            id=uuid.uuid4(),
            employee_id=employee.id,
            employee=employee,
            month=month,
            year=year,
            vr_saturdays=0,
            vr_total_days=0,
            vr_total_amount=ZERO,
            vr_final_amount=ZERO,
            vt_total_amount=ZERO,
            vt_final_amount=ZERO,
            payment_status=PaymentStatus.pending,
            payment_method=PaymentMethod.flash,
            disbursement_submitted=False,
            provider_status=ProviderStatus.pending,
            created_by=actor_id,
            updated_by=actor_id,
            created_at=now,
            updated_at=now,
            deductions=[],
        )
        BenefitService._copy_config(record, employee, config)
        return record

    @staticmethod
    async def get_or_create(
        db: AsyncSession,
        employee_id: uuid.UUID,
        month: int,
        year: int,
        *,
        actor_id: Optional[uuid.UUID] = None,
    ) -> tuple[BenefitPeriod, bool]:
        """Return the (employee, month) record, creating it from config if absent."""
        key = month_key(month, year)
        record = await BenefitService._find(db, employee_id, key)
        if record is not None:
            return record, False

        employee = await BenefitService._get_employee(db, employee_id)
        config = await BenefitService._get_config_row(db, employee_id)
        record = BenefitService._new_record(employee, config, key, int(year), actor_id)

        try:
            async with db.begin_nested():
                db.add(record)
                await db.flush()
        except IntegrityError:
            # Another writer created the same (employee, month) first
            logger.info("Benefit record %s/%s created concurrently; re-reading", employee_id, key)
            record = await BenefitService._find(db, employee_id, key)
            if record is None:
                raise ConflictError("month", key)
            return record, False

        await create_audit_entry(
            db,
            action="create",
            entity_type=_ENTITY,
            entity_id=record.id,
            actor_id=actor_id,
            new_values={
                "employee_id": employee_id,
                "month": key,
                "vr_enabled": record.vr_enabled,
                "vt_enabled": record.vt_enabled,
                "vt_mode": record.vt_mode,
                "mobility_enabled": record.mobility_enabled,
            },
        )
        logger.info("Created benefit record %s for employee %s (%s)", record.id, employee_id, key)
        return record, True

    # ── Calculation ─────────────────────────────────────────────────

    @staticmethod
    def _check_saturdays(
        saturdays: Optional[int],
        config: Optional[EmployeeBenefitConfig],
        field_name: str,
    ) -> None:
        if saturdays and not (config is not None and config.vr_include_saturdays):
            raise ValidationException({
                field_name: ["Saturdays are not enabled for this employee's meal voucher."],
            })

    @staticmethod
    async def calculate(
        db: AsyncSession,
        data: CalculateRequest,
        *,
        actor_id: Optional[uuid.UUID] = None,
    ) -> BenefitPeriod:
        """Apply day-count / rate inputs to the month's record and recalculate."""
        record, _ = await BenefitService.get_or_create(
            db, data.employee_id, data.month, data.year, actor_id=actor_id,
        )
        record = await BenefitService._load_or_404(db, record.id, lock=True)
        ensure_recalculable(record)

        config = await BenefitService._get_config_row(db, record.employee_id)
        if data.refresh_config:
            employee = await BenefitService._get_employee(db, record.employee_id)
            BenefitService._copy_config(record, employee, config)

        previous = _amount_snapshot(record)
        was_pending = record.payment_status == PaymentStatus.pending

        vr = data.vale_refeicao
        if vr is not None:
            BenefitService._check_saturdays(vr.saturdays, config, "vale_refeicao.saturdays")
            if vr.daily_value is not None:
                record.vr_daily_value = to_money(vr.daily_value)
            if vr.business_days is not None:
                record.vr_business_days = vr.business_days
            if vr.saturdays is not None:
                record.vr_saturdays = vr.saturdays

        vt = data.vale_transporte
        if vt is not None:
            if vt.mode is not None:
                record.vt_mode = vt.mode
            if vt.fixed_amount is not None:
                record.vt_fixed_amount = to_money(vt.fixed_amount)
            if vt.daily_value is not None:
                record.vt_daily_value = to_money(vt.daily_value)
            if vt.total_days is not None:
                record.vt_total_days = vt.total_days
            elif record.vt_mode == VTMode.daily and not record.vt_total_days:
                record.vt_total_days = record.vr_business_days

        if data.mobility is not None and data.mobility.monthly_value is not None:
            record.mobility_monthly_value = to_money(data.mobility.monthly_value)

        total = recalculate(record)
        _touch(record, actor_id)
        await _flush(db, record)

        await create_audit_entry(
            db,
            action="calculate",
            entity_type=_ENTITY,
            entity_id=record.id,
            actor_id=actor_id,
            old_values=previous,
            new_values=_amount_snapshot(record),
        )
        if was_pending:
            await notifications.notify_benefit_calculated(db, record)
        logger.info(
            "Calculated benefits %s for employee %s: VR=%s VT=%s total=%s",
            record.month, record.employee_id, record.vr_final_amount,
            record.vt_final_amount, total,
        )
        return record

    # ── Deductions ──────────────────────────────────────────────────

    @staticmethod
    async def add_deduction(
        db: AsyncSession,
        benefit_id: uuid.UUID,
        data: DeductionCreate,
        *,
        actor_id: Optional[uuid.UUID] = None,
    ) -> tuple[BenefitPeriod, BenefitDeduction]:
        record = await BenefitService._load_or_404(db, benefit_id, lock=True)
        deduction = ledger_add_deduction(
            record,
            data.benefit_type,
            deduction_date=data.deduction_date,
            amount=data.amount,
            reason=data.reason,
            deduction_type=data.deduction_type,
            recorded_by=actor_id,
        )
        _touch(record, actor_id)
        await _flush(db, record)

        await create_audit_entry(
            db,
            action="deduct",
            entity_type=_ENTITY,
            entity_id=record.id,
            actor_id=actor_id,
            new_values={
                "deduction_id": deduction.id,
                "benefit_type": deduction.benefit_type,
                "deduction_date": deduction.deduction_date,
                "amount": deduction.amount,
                "reason": deduction.reason,
                "deduction_type": deduction.deduction_type,
                "final_amount": (
                    record.vr_final_amount
                    if data.benefit_type == BenefitType.vr
                    else record.vt_final_amount
                ),
            },
        )
        logger.info(
            "Deduction %s of %s on %s for benefit record %s",
            deduction.benefit_type.value, deduction.amount, deduction.deduction_date, record.id,
        )
        return record, deduction

    # ── Schedule ────────────────────────────────────────────────────

    @staticmethod
    async def update_schedule(
        db: AsyncSession,
        benefit_id: uuid.UUID,
        *,
        business_days: int,
        saturdays: int = 0,
        file_url: Optional[str] = None,
        actor_id: Optional[uuid.UUID] = None,
    ) -> BenefitPeriod:
        """Set the month's VR day counts (optionally with the schedule file) and recalc VR."""
        if business_days < 0 or business_days > 31:
            raise ValidationException({"business_days": ["Business days must be 0-31."]})
        if saturdays < 0 or saturdays > 5:
            raise ValidationException({"saturdays": ["Saturdays must be 0-5."]})

        record = await BenefitService._load_or_404(db, benefit_id, lock=True)
        ensure_recalculable(record)
        config = await BenefitService._get_config_row(db, record.employee_id)
        BenefitService._check_saturdays(saturdays, config, "saturdays")

        previous = {
            "vr_business_days": record.vr_business_days,
            "vr_saturdays": record.vr_saturdays,
            "vr_final_amount": record.vr_final_amount,
        }
        record.vr_business_days = business_days
        record.vr_saturdays = saturdays
        if file_url:
            record.vr_schedule_file_url = file_url
            record.vr_schedule_uploaded_by = actor_id
            record.vr_schedule_uploaded_at = _utcnow()

        recalculate(record, (BenefitType.vr,))
        _touch(record, actor_id)
        await _flush(db, record)

        await create_audit_entry(
            db,
            action="schedule",
            entity_type=_ENTITY,
            entity_id=record.id,
            actor_id=actor_id,
            old_values=previous,
            new_values={
                "vr_business_days": business_days,
                "vr_saturdays": saturdays,
                "vr_final_amount": record.vr_final_amount,
                "file_url": file_url,
            },
        )
        return record

    # ── Approval ────────────────────────────────────────────────────

    @staticmethod
    async def approve(
        db: AsyncSession,
        benefit_ids: Iterable[uuid.UUID],
        *,
        actor_id: Optional[uuid.UUID] = None,
    ) -> BulkOutcome:
        """Calculated → Approved for each id; anything else is skipped."""
        outcome = BulkOutcome()
        approved: list[BenefitPeriod] = []

        for benefit_id in benefit_ids:
            record = await BenefitService._load(db, benefit_id, lock=True)
            if record is None:
                outcome.skip(benefit_id, "Benefit record not found.")
                continue
            try:
                await _change_in_savepoint(db, record, workflow.approve, actor_id)
            except (InvalidStateTransitionException, ConflictError) as exc:
                outcome.skip(benefit_id, exc.detail)
                continue
            outcome.processed.append(record.id)
            approved.append(record)

        for record in approved:
            await create_audit_entry(
                db,
                action="approve",
                entity_type=_ENTITY,
                entity_id=record.id,
                actor_id=actor_id,
                old_values={"payment_status": PaymentStatus.calculated},
                new_values={
                    "payment_status": record.payment_status,
                    "total_benefit_amount": record.total_benefit_amount,
                },
            )
            await notifications.notify_benefit_approved(db, record)

        logger.info(
            "Approved %d benefit record(s), skipped %d",
            outcome.processed_count, outcome.skipped_count,
        )
        return outcome

    # ── Disbursement ────────────────────────────────────────────────

    @staticmethod
    async def submit_batch(
        db: AsyncSession,
        benefit_ids: Iterable[uuid.UUID],
        provider,
        *,
        actor_id: Optional[uuid.UUID] = None,
    ) -> SubmitOutcome:
        """Group every submittable record into one provider batch.

        The provider is called at most once. On a provider error the records
        stay submitted with ``provider_status = Failed`` and the outcome
        carries the error; the caller commits before surfacing it.
        """
        outcome = SubmitOutcome()
        eligible: list[BenefitPeriod] = []
        seen: set[uuid.UUID] = set()

        for benefit_id in benefit_ids:
            if benefit_id in seen:
                outcome.skip(benefit_id, "Duplicate id in request.")
                continue
            seen.add(benefit_id)

            record = await BenefitService._load(db, benefit_id, lock=True)
            if record is None:
                outcome.skip(benefit_id, "Benefit record not found.")
                continue
            try:
                workflow.ensure_submittable(record)
            except InvalidStateTransitionException as exc:
                outcome.skip(benefit_id, exc.detail)
                continue
            eligible.append(record)

        if not eligible:
            logger.info("No submittable benefit records; provider not called")
            return outcome

        now = _utcnow()
        batch_id = f"{settings.DISBURSEMENT_REFERENCE_PREFIX}-{uuid.uuid4().hex[:12].upper()}"
        total = sum((record.total_benefit_amount for record in eligible), ZERO)

        for record in eligible:
            workflow.mark_submitted(
                record, reference=batch_id, submitted_by=actor_id, submitted_at=now,
            )
            _touch(record, actor_id)
        await _flush(db)

        items = [
            {
                "benefit_id": str(record.id),
                "employee_id": str(record.employee_id),
                "month": record.month,
                "amount": str(record.total_benefit_amount),
            }
            for record in eligible
        ]

        error: Optional[str] = None
        reference = batch_id
        try:
            result = await provider.submit_batch(batch_id, total, len(eligible), items)
        except DisbursementProviderException as exc:
            error = exc.detail
            response: dict[str, Any] = {"error": exc.detail, "batch_id": batch_id}
            status = ProviderStatus.failed
        else:
            reference = result.reference
            response = result.raw
            status = result.status
            if status == ProviderStatus.failed:
                error = f"Disbursement provider rejected batch {reference}."

        for record in eligible:
            record.provider_reference = reference
            workflow.apply_provider_status(record, status, response)
            _touch(record, actor_id)
        await _flush(db)

        outcome.processed = [record.id for record in eligible]
        outcome.reference = reference
        outcome.total_amount = total
        outcome.employee_count = len(eligible)
        outcome.provider_status = status
        outcome.error = error

        for record in eligible:
            await create_audit_entry(
                db,
                action="submit",
                entity_type=_ENTITY,
                entity_id=record.id,
                actor_id=actor_id,
                new_values={
                    "provider_reference": reference,
                    "provider_status": status,
                    "amount": record.total_benefit_amount,
                    "error": error,
                },
            )

        if error:
            logger.error(
                "Disbursement batch %s failed (%d record(s), total %s): %s",
                reference, len(eligible), total, error,
            )
            if actor_id is not None:
                await notifications.notify_disbursement_failed(db, actor_id, reference, error)
        else:
            for record in eligible:
                await notifications.notify_benefit_submitted(db, record)
            logger.info(
                "Submitted disbursement batch %s: %d record(s), total %s",
                reference, len(eligible), total,
            )
        return outcome

    @staticmethod
    async def _batch_records(
        db: AsyncSession,
        reference: str,
        *,
        lock: bool = False,
    ) -> list[BenefitPeriod]:
        query = (
            select(BenefitPeriod)
            .where(BenefitPeriod.provider_reference == reference)
            .order_by(BenefitPeriod.employee_id)
        )
        if lock:
            query = query.with_for_update(of=BenefitPeriod).execution_options(
                populate_existing=True,
            )
        records = list((await db.execute(query)).unique().scalars().all())
        if not records:
            raise NotFoundException("Disbursement batch", reference)
        return records

    @staticmethod
    def _batch_detail(reference: str, records: list[BenefitPeriod]) -> BatchDetail:
        return BatchDetail(
            reference=reference,
            records=records,
            total_amount=sum((r.total_benefit_amount for r in records), ZERO),
            employee_count=len(records),
            provider_status=records[0].provider_status,
            submitted_at=min(
                (r.disbursement_submitted_at for r in records if r.disbursement_submitted_at),
                default=None,
            ),
        )

    @staticmethod
    async def get_batch(db: AsyncSession, reference: str) -> BatchDetail:
        records = await BenefitService._batch_records(db, reference)
        return BenefitService._batch_detail(reference, records)

    @staticmethod
    async def apply_provider_status(
        db: AsyncSession,
        reference: str,
        status: ProviderStatus,
        payload: Optional[dict[str, Any]] = None,
        *,
        actor_id: Optional[uuid.UUID] = None,
    ) -> BatchDetail:
        """Store a provider status on every record of the batch.

        ``payment_status`` is never changed here; see ``reconcile``.
        """
        records = await BenefitService._batch_records(db, reference, lock=True)
        for record in records:
            previous = record.provider_status
            workflow.apply_provider_status(record, status, payload)
            _touch(record, actor_id)
            await create_audit_entry(
                db,
                action="provider_status",
                entity_type=_ENTITY,
                entity_id=record.id,
                actor_id=actor_id,
                old_values={"provider_status": previous},
                new_values={"provider_status": status, "provider_reference": reference},
            )
        await _flush(db)
        logger.info("Batch %s provider status → %s (%d record(s))", reference, status.value, len(records))
        return BenefitService._batch_detail(reference, records)

    @staticmethod
    async def refresh_batch_status(
        db: AsyncSession,
        reference: str,
        provider,
        *,
        actor_id: Optional[uuid.UUID] = None,
    ) -> BatchDetail:
        """Poll the provider for the batch status and store it."""
        await BenefitService._batch_records(db, reference)
        result = await provider.get_batch_status(reference)
        return await BenefitService.apply_provider_status(
            db, reference, result.status, result.raw, actor_id=actor_id,
        )

    # ── Reconciliation / cancellation ───────────────────────────────

    @staticmethod
    async def reconcile(
        db: AsyncSession,
        benefit_ids: Iterable[uuid.UUID],
        *,
        actor_id: Optional[uuid.UUID] = None,
    ) -> BulkOutcome:
        """Approved records whose disbursement completed → Paid."""
        outcome = BulkOutcome()
        paid: list[BenefitPeriod] = []
        now = _utcnow()

        for benefit_id in benefit_ids:
            record = await BenefitService._load(db, benefit_id, lock=True)
            if record is None:
                outcome.skip(benefit_id, "Benefit record not found.")
                continue
            try:
                await _change_in_savepoint(
                    db, record, lambda r: workflow.reconcile(r, now), actor_id,
                )
            except (InvalidStateTransitionException, ConflictError) as exc:
                outcome.skip(benefit_id, exc.detail)
                continue
            outcome.processed.append(record.id)
            paid.append(record)

        for record in paid:
            await create_audit_entry(
                db,
                action="reconcile",
                entity_type=_ENTITY,
                entity_id=record.id,
                actor_id=actor_id,
                old_values={"payment_status": PaymentStatus.approved},
                new_values={
                    "payment_status": record.payment_status,
                    "payment_date": record.payment_date,
                    "provider_reference": record.provider_reference,
                },
            )
            await notifications.notify_benefit_paid(db, record)

        logger.info("Reconciled %d benefit record(s), skipped %d", outcome.processed_count, outcome.skipped_count)
        return outcome

    @staticmethod
    async def cancel(
        db: AsyncSession,
        benefit_ids: Iterable[uuid.UUID],
        reason: str,
        *,
        actor_id: Optional[uuid.UUID] = None,
    ) -> BulkOutcome:
        outcome = BulkOutcome()
        cancelled: list[tuple[BenefitPeriod, PaymentStatus]] = []

        for benefit_id in benefit_ids:
            record = await BenefitService._load(db, benefit_id, lock=True)
            if record is None:
                outcome.skip(benefit_id, "Benefit record not found.")
                continue
            previous = record.payment_status
            try:
                await _change_in_savepoint(db, record, workflow.cancel, actor_id)
            except (InvalidStateTransitionException, ConflictError) as exc:
                outcome.skip(benefit_id, exc.detail)
                continue
            outcome.processed.append(record.id)
            cancelled.append((record, previous))

        for record, previous in cancelled:
            await create_audit_entry(
                db,
                action="cancel",
                entity_type=_ENTITY,
                entity_id=record.id,
                actor_id=actor_id,
                old_values={"payment_status": previous},
                new_values={"payment_status": record.payment_status, "reason": reason},
            )
            await notifications.notify_benefit_cancelled(db, record)

        logger.info("Cancelled %d benefit record(s), skipped %d", outcome.processed_count, outcome.skipped_count)
        return outcome

    # ── Listing ─────────────────────────────────────────────────────

    @staticmethod
    async def list_by_month(
        db: AsyncSession,
        month: int,
        year: int,
        pagination: PaginationParams,
        *,
        status: Optional[PaymentStatus] = None,
        department_id: Optional[uuid.UUID] = None,
        employee_id: Optional[uuid.UUID] = None,
        transform=None,
    ) -> PaginatedResponse:
        key = month_key(month, year)
        query = (
            select(BenefitPeriod)
            .where(BenefitPeriod.month == key)
            .order_by(BenefitPeriod.created_at, BenefitPeriod.id)
        )
        if status is not None:
            query = query.where(BenefitPeriod.payment_status == status)
        if employee_id is not None:
            query = query.where(BenefitPeriod.employee_id == employee_id)
        if department_id is not None:
            query = query.where(
                BenefitPeriod.employee_id.in_(
                    select(Employee.id).where(Employee.department_id == department_id)
                )
            )
        return await paginate(db, query, pagination, transform=transform)

    @staticmethod
    async def list_pending_payments(
        db: AsyncSession,
        month: Optional[int] = None,
        year: Optional[int] = None,
    ) -> list[BenefitPeriod]:
        """Approved records not yet sent to the provider."""
        query = (
            select(BenefitPeriod)
            .where(
                BenefitPeriod.payment_status == PaymentStatus.approved,
                BenefitPeriod.disbursement_submitted.is_(False),
            )
            .order_by(BenefitPeriod.month, BenefitPeriod.created_at)
        )
        if month is not None and year is not None:
            query = query.where(BenefitPeriod.month == month_key(month, year))
        return list((await db.execute(query)).unique().scalars().all())

    @staticmethod
    async def disbursement_preview(
        db: AsyncSession,
        month: int,
        year: int,
    ) -> dict[str, Any]:
        records = await BenefitService.list_pending_payments(db, month, year)
        return {
            "month": month_key(month, year),
            "total_amount": sum((r.total_benefit_amount for r in records), ZERO),
            "employee_count": len(records),
            "benefit_ids": [r.id for r in records],
        }

    # ── Statistics ──────────────────────────────────────────────────

    @staticmethod
    async def get_statistics(
        db: AsyncSession,
        month: int,
        year: int,
    ) -> dict[str, Any]:
        """Month rollup of stored amounts over non-cancelled records."""
        key = month_key(month, year)
        counted = [
            PaymentStatus.pending,
            PaymentStatus.calculated,
            PaymentStatus.approved,
            PaymentStatus.paid,
        ]

        def _enabled_sum(flag, amount):
            return func.coalesce(func.sum(case((flag.is_(True), amount), else_=0)), 0)

        query = select(
            func.count(BenefitPeriod.id),
            _enabled_sum(BenefitPeriod.vr_enabled, BenefitPeriod.vr_final_amount),
            _enabled_sum(BenefitPeriod.vt_enabled, BenefitPeriod.vt_final_amount),
            _enabled_sum(BenefitPeriod.mobility_enabled, BenefitPeriod.mobility_monthly_value),
            *[
                func.coalesce(
                    func.sum(case((BenefitPeriod.payment_status == s, 1), else_=0)), 0,
                )
                for s in counted
            ],
        ).where(
            BenefitPeriod.month == key,
            BenefitPeriod.payment_status != PaymentStatus.cancelled,
        )
        row = (await db.execute(query)).one()

        total_vr = to_money(row[1])
        total_vt = to_money(row[2])
        total_mobility = to_money(row[3])
        return {
            "month": key,
            "employee_count": int(row[0] or 0),
            "total_vr": total_vr,
            "total_vt": total_vt,
            "total_mobility": total_mobility,
            "grand_total": total_vr + total_vt + total_mobility,
            "status_counts": {
                status.value: int(count or 0)
                for status, count in zip(counted, row[4:])
            },
        }

    # ── Eligibility / configuration ─────────────────────────────────

    @staticmethod
    async def list_eligible_employees(
        db: AsyncSession,
        *,
        department_id: Optional[uuid.UUID] = None,
        employment_type: Optional[EmploymentType] = None,
    ) -> list[Employee]:
        """Active employees, optionally by department / contract type, by first name."""
        query = (
            select(Employee)
            .where(
                Employee.is_active.is_(True),
                Employee.employment_status == EmploymentStatus.active,
            )
            .order_by(Employee.first_name, Employee.last_name)
        )
        if department_id is not None:
            query = query.where(Employee.department_id == department_id)
        if employment_type is not None:
            query = query.where(Employee.employment_type == employment_type)
        return list((await db.execute(query)).scalars().all())

    @staticmethod
    async def get_config(db: AsyncSession, employee_id: uuid.UUID) -> EmployeeBenefitConfig:
        await BenefitService._get_employee(db, employee_id)
        config = await BenefitService._get_config_row(db, employee_id)
        if config is None:
            raise NotFoundException("Benefit configuration", employee_id)
        return config

    @staticmethod
    async def update_config(
        db: AsyncSession,
        employee_id: uuid.UUID,
        data: BenefitConfigUpdate,
        *,
        actor_id: Optional[uuid.UUID] = None,
    ) -> EmployeeBenefitConfig:
        """Replace the employee's benefit configuration (created if missing).

        Existing month records keep the values they were created with.
        """
        await BenefitService._get_employee(db, employee_id)
        config = await BenefitService._get_config_row(db, employee_id)
        old_values = None
        if config is None:
            config = EmployeeBenefitConfig(id=uuid.uuid4(), employee_id=employee_id)
            db.add(config)
        else:
            old_values = {
                name: getattr(config, name) for name in BenefitConfigUpdate.model_fields
            }

        values = data.model_dump()
        for name, value in values.items():
            setattr(config, name, value)
        config.updated_at = _utcnow()
        config.updated_by = actor_id
        await db.flush()

        await create_audit_entry(
            db,
            action="update" if old_values else "create",
            entity_type="employee_benefit_config",
            entity_id=config.id,
            actor_id=actor_id,
            old_values=old_values,
            new_values=values,
        )
        logger.info("Benefit configuration updated for employee %s", employee_id)
        return config
