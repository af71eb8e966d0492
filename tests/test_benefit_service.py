"""BenefitService tests against the async test database.

Covers record creation from configuration, calculation, deductions, the
approve → submit → reconcile workflow, cancellation, statistics and
optimistic-lock conflicts.
"""

from __future__ import annotations

import uuid
from datetime import date
from decimal import Decimal

import pytest
from sqlalchemy import func, select, update

from backend.benefits.models import BenefitPeriod
from backend.benefits.schemas import (
    BenefitConfigUpdate,
    CalculateRequest,
    DeductionCreate,
    VRInputs,
    VTInputs,
)
from backend.benefits.service import BenefitService, _flush, month_key
from backend.common.audit import AuditTrail
from backend.common.constants import (
    BenefitType,
    EmploymentStatus,
    EmploymentType,
    NotificationType,
    PaymentStatus,
    ProviderStatus,
    VTMode,
)
from backend.common.exceptions import (
    ConflictError,
    InvalidDeductionException,
    InvalidStateTransitionException,
    NotFoundException,
    ValidationException,
)
from backend.common.pagination import PaginationParams
from backend.notifications.models import Notification
from tests.conftest import TestSessionFactory, seed_employee


MONTH, YEAR = 10, 2026


# ── Helpers ─────────────────────────────────────────────────────────


async def _calculate(db, employee, **kwargs) -> BenefitPeriod:
    return await BenefitService.calculate(
        db, CalculateRequest(employee_id=employee.id, month=MONTH, year=YEAR, **kwargs),
    )


async def _deduct(db, record, benefit_type, amount, day=10):
    record, _ = await BenefitService.add_deduction(
        db,
        record.id,
        DeductionCreate(
            benefit_type=benefit_type,
            deduction_date=date(YEAR, MONTH, day),
            amount=Decimal(amount),
            reason="Absence",
        ),
    )
    return record


async def _approved(db, employee, **kwargs) -> BenefitPeriod:
    record = await _calculate(db, employee, **kwargs)
    outcome = await BenefitService.approve(db, [record.id])
    assert outcome.processed == [record.id]
    return record


async def _notifications(db, recipient_id, type=None) -> list[Notification]:
    query = select(Notification).where(Notification.recipient_id == recipient_id)
    if type is not None:
        query = query.where(Notification.type == type)
    return list((await db.execute(query)).scalars().all())


async def _audit_actions(db, entity_id) -> list[str]:
    rows = await db.execute(
        select(AuditTrail.action)
        .where(AuditTrail.entity_id == entity_id)
        .order_by(AuditTrail.created_at)
    )
    return list(rows.scalars().all())


async def _status(db, benefit_id) -> PaymentStatus:
    rows = await db.execute(
        select(BenefitPeriod.payment_status).where(BenefitPeriod.id == benefit_id)
    )
    return rows.scalar_one()


def _bump_version_after_load(monkeypatch, target_id) -> None:
    """Simulate another writer committing right after *target_id* is read."""
    original_load = BenefitService._load

    async def load_then_bump(db, benefit_id, *, lock=False):
        record = await original_load(db, benefit_id, lock=lock)
        if benefit_id == target_id:
            await db.execute(
                update(BenefitPeriod)
                .where(BenefitPeriod.id == benefit_id)
                .values(version=BenefitPeriod.version + 1)
                .execution_options(synchronize_session=False)
            )
        return record

    monkeypatch.setattr(BenefitService, "_load", staticmethod(load_then_bump))


# ═════════════════════════════════════════════════════════════════════
# 1. MONTH KEY
# ═════════════════════════════════════════════════════════════════════


def test_month_key_zero_pads():
    assert month_key(3, 2026) == "2026-03"


@pytest.mark.parametrize("month, year", [(0, 2026), (13, 2026), (5, 1999)])
def test_month_key_rejects_out_of_range(month, year):
    with pytest.raises(ValidationException):
        month_key(month, year)


# ═════════════════════════════════════════════════════════════════════
# 2. GET OR CREATE
# ═════════════════════════════════════════════════════════════════════


class TestGetOrCreate:

    async def test_copies_employee_config(self, db, test_employee):
        record, created = await BenefitService.get_or_create(db, test_employee.id, MONTH, YEAR)

        assert created is True
        assert record.month == "2026-10"
        assert record.year == YEAR
        assert record.payment_status == PaymentStatus.pending
        assert record.provider_status == ProviderStatus.pending
        assert record.vr_enabled is True
        assert record.vr_daily_value == Decimal("25.00")
        assert record.vr_business_days == 22
        assert record.vt_mode == VTMode.fixed
        assert record.vt_fixed_amount == Decimal("300.00")
        assert record.mobility_enabled is False
        assert record.disbursement_submitted is False

    async def test_second_call_returns_same_record(self, db, test_employee):
        first, _ = await BenefitService.get_or_create(db, test_employee.id, MONTH, YEAR)
        second, created = await BenefitService.get_or_create(db, test_employee.id, MONTH, YEAR)

        assert created is False
        assert second.id == first.id
        count = (await db.execute(
            select(func.count()).select_from(BenefitPeriod)
            .where(BenefitPeriod.employee_id == test_employee.id)
        )).scalar_one()
        assert count == 1

    async def test_creation_is_audited(self, db, test_employee):
        record, _ = await BenefitService.get_or_create(db, test_employee.id, MONTH, YEAR)
        assert await _audit_actions(db, record.id) == ["create"]

    async def test_without_config_everything_disabled(self, db):
        emp = await seed_employee(db, with_config=False)
        record, created = await BenefitService.get_or_create(db, emp.id, MONTH, YEAR)

        assert created is True
        assert record.vr_enabled is False
        assert record.vt_enabled is False
        assert record.mobility_enabled is False

    async def test_unknown_employee_raises_not_found(self, db):
        with pytest.raises(NotFoundException):
            await BenefitService.get_or_create(db, uuid.uuid4(), MONTH, YEAR)

    async def test_pj_without_fixed_amount_uses_daily_mode(self, db):
        emp = await seed_employee(
            db,
            employment_type=EmploymentType.pj,
            config={"vt_fixed_monthly_amount": "0.00", "vt_daily_value": "10.00"},
        )
        record, _ = await BenefitService.get_or_create(db, emp.id, MONTH, YEAR)

        assert record.vt_mode == VTMode.daily
        assert record.vt_total_days == 22

    async def test_pj_with_fixed_amount_stays_fixed(self, db):
        emp = await seed_employee(db, employment_type=EmploymentType.pj)
        record, _ = await BenefitService.get_or_create(db, emp.id, MONTH, YEAR)
        assert record.vt_mode == VTMode.fixed


# ═════════════════════════════════════════════════════════════════════
# 3. CALCULATE
# ═════════════════════════════════════════════════════════════════════


class TestCalculate:

    async def test_calculates_from_config(self, db, test_employee):
        record = await _calculate(db, test_employee)

        assert record.payment_status == PaymentStatus.calculated
        assert record.vr_total_days == 22
        assert record.vr_final_amount == Decimal("550.00")
        assert record.vt_final_amount == Decimal("300.00")
        assert record.total_benefit_amount == Decimal("850.00")

    async def test_first_calculation_notifies_employee(self, db, test_employee):
        await _calculate(db, test_employee)
        await _calculate(db, test_employee)

        notes = await _notifications(db, test_employee.id)
        assert len(notes) == 1
        assert notes[0].title == "Benefits Calculated"
        assert notes[0].entity_type == "benefit_period"

    async def test_inputs_override_copied_values(self, db, test_employee):
        record = await _calculate(
            db,
            test_employee,
            vale_refeicao=VRInputs(business_days=20, daily_value=Decimal("30.00")),
            vale_transporte=VTInputs(fixed_amount=Decimal("280.00")),
        )
        assert record.vr_final_amount == Decimal("600.00")
        assert record.vt_final_amount == Decimal("280.00")

    async def test_daily_mode_defaults_days_to_business_days(self, db, test_employee):
        record = await _calculate(
            db,
            test_employee,
            vale_refeicao=VRInputs(business_days=21),
            vale_transporte=VTInputs(mode=VTMode.daily, daily_value=Decimal("9.00")),
        )
        assert record.vt_total_days == 21
        assert record.vt_final_amount == Decimal("189.00")

    async def test_saturdays_rejected_when_not_enabled(self, db, test_employee):
        with pytest.raises(ValidationException) as exc_info:
            await _calculate(db, test_employee, vale_refeicao=VRInputs(saturdays=2))
        assert "vale_refeicao.saturdays" in exc_info.value.errors

    async def test_saturdays_counted_when_enabled(self, db):
        emp = await seed_employee(db, config={"vr_include_saturdays": True})
        record = await _calculate(db, emp, vale_refeicao=VRInputs(saturdays=4))
        assert record.vr_total_days == 26
        assert record.vr_final_amount == Decimal("650.00")

    async def test_recalculating_approved_record_rejected(self, db, test_employee):
        await _approved(db, test_employee)
        with pytest.raises(InvalidStateTransitionException):
            await _calculate(db, test_employee)

    async def test_refresh_config_picks_up_new_rates(self, db, test_employee):
        await _calculate(db, test_employee)
        await BenefitService.update_config(
            db,
            test_employee.id,
            BenefitConfigUpdate(vr_daily_value=Decimal("30.00"), vt_fixed_monthly_amount=Decimal("300.00")),
        )

        unchanged = await _calculate(db, test_employee)
        assert unchanged.vr_final_amount == Decimal("550.00")

        refreshed = await _calculate(db, test_employee, refresh_config=True)
        assert refreshed.vr_final_amount == Decimal("660.00")

    async def test_version_increments_on_each_write(self, db, test_employee):
        record = await _calculate(db, test_employee)
        version = record.version

        record = await _deduct(db, record, BenefitType.vr, "25")
        assert record.version > version


# ═════════════════════════════════════════════════════════════════════
# 4. DEDUCTIONS / SCHEDULE
# ═════════════════════════════════════════════════════════════════════


class TestDeductions:

    async def test_deduction_reduces_only_its_benefit(self, db, test_employee):
        record = await _calculate(db, test_employee)
        record = await _deduct(db, record, BenefitType.vr, "100")

        assert record.vr_final_amount == Decimal("450.00")
        assert record.vt_final_amount == Decimal("300.00")
        assert len(record.deductions) == 1
        assert "deduct" in await _audit_actions(db, record.id)

    async def test_overdeduction_clamps_at_zero(self, db, test_employee):
        record = await _calculate(db, test_employee)
        record = await _deduct(db, record, BenefitType.vt, "200")
        record = await _deduct(db, record, BenefitType.vt, "200", day=11)

        assert record.vt_final_amount == Decimal("0.00")
        assert record.total_benefit_amount == Decimal("550.00")

    async def test_deduction_on_disabled_benefit_rejected(self, db):
        emp = await seed_employee(db, config={"vt_enabled": False})
        record = await _calculate(db, emp)
        with pytest.raises(InvalidDeductionException):
            await _deduct(db, record, BenefitType.vt, "10")

    async def test_deduction_on_missing_record_not_found(self, db):
        with pytest.raises(NotFoundException):
            await BenefitService.add_deduction(
                db,
                uuid.uuid4(),
                DeductionCreate(
                    benefit_type=BenefitType.vr,
                    deduction_date=date(YEAR, MONTH, 1),
                    amount=Decimal("1"),
                    reason="x",
                ),
            )

    async def test_deductions_are_append_only(self, db, test_employee):
        record = await _calculate(db, test_employee)
        record, deduction = await BenefitService.add_deduction(
            db,
            record.id,
            DeductionCreate(
                benefit_type=BenefitType.vr,
                deduction_date=date(YEAR, MONTH, 3),
                amount=Decimal("10"),
                reason="Absence",
            ),
        )
        await db.commit()

        deduction.amount = Decimal("1.00")
        with pytest.raises(RuntimeError, match="append-only"):
            await db.flush()
        await db.rollback()

    async def test_update_schedule_recalculates_vr_only(self, db, test_employee):
        record = await _calculate(db, test_employee)
        record = await BenefitService.update_schedule(
            db, record.id, business_days=18, file_url="/uploads/schedules/oct.pdf",
        )

        assert record.vr_business_days == 18
        assert record.vr_final_amount == Decimal("450.00")
        assert record.vt_final_amount == Decimal("300.00")
        assert record.vr_schedule_file_url == "/uploads/schedules/oct.pdf"

    async def test_update_schedule_validates_ranges(self, db, test_employee):
        record = await _calculate(db, test_employee)
        with pytest.raises(ValidationException):
            await BenefitService.update_schedule(db, record.id, business_days=40)


# ═════════════════════════════════════════════════════════════════════
# 5. APPROVE / SUBMIT / RECONCILE / CANCEL
# ═════════════════════════════════════════════════════════════════════


class TestApprove:

    async def test_partial_success(self, db, test_employee):
        calculated = await _calculate(db, test_employee)
        other = await seed_employee(db)
        pending, _ = await BenefitService.get_or_create(db, other.id, MONTH, YEAR)
        missing = uuid.uuid4()

        outcome = await BenefitService.approve(db, [calculated.id, pending.id, missing])

        assert outcome.processed == [calculated.id]
        assert outcome.skipped_count == 2
        skipped = {s["id"] for s in outcome.skipped}
        assert skipped == {pending.id, missing}

        refreshed = await BenefitService.get_benefit(db, calculated.id)
        assert refreshed.payment_status == PaymentStatus.approved
        approvals = await _notifications(db, test_employee.id, NotificationType.approval)
        assert len(approvals) == 1

    async def test_repeated_id_skipped_as_already_approved(self, db, test_employee):
        record = await _calculate(db, test_employee)
        outcome = await BenefitService.approve(db, [record.id, record.id])
        assert outcome.processed_count == 1
        assert outcome.skipped_count == 1

    async def test_concurrent_update_skips_only_that_record(self, db, monkeypatch):
        first_id = (await _calculate(db, await seed_employee(db))).id
        second_id = (await _calculate(db, await seed_employee(db))).id
        _bump_version_after_load(monkeypatch, first_id)

        outcome = await BenefitService.approve(db, [first_id, second_id])

        assert outcome.processed == [second_id]
        assert outcome.skipped[0]["id"] == first_id
        assert "modified by another request" in outcome.skipped[0]["reason"]
        assert await _status(db, first_id) == PaymentStatus.calculated
        assert await _status(db, second_id) == PaymentStatus.approved


class TestSubmitBatch:

    async def _two_approved(self, db):
        """450 of VR for one employee, 250 of VT for another."""
        vr_only = await seed_employee(db, config={"vt_enabled": False})
        vt_only = await seed_employee(db, config={"vr_enabled": False})

        a = await _calculate(db, vr_only)
        a = await _deduct(db, a, BenefitType.vr, "100")
        b = await _calculate(db, vt_only)
        b = await _deduct(db, b, BenefitType.vt, "50")

        await BenefitService.approve(db, [a.id, b.id])
        return a, b

    async def test_single_provider_call_for_whole_batch(self, db, fake_provider, hr_user):
        a, b = await self._two_approved(db)

        outcome = await BenefitService.submit_batch(
            db, [a.id, b.id], fake_provider, actor_id=hr_user.id,
        )

        assert len(fake_provider.submissions) == 1
        sent = fake_provider.submissions[0]
        assert sent["total_amount"] == Decimal("700.00")
        assert sent["employee_count"] == 2
        assert len(sent["items"]) == 2

        assert outcome.error is None
        assert outcome.reference == "FAKE-0001"
        assert outcome.total_amount == Decimal("700.00")
        assert outcome.provider_status == ProviderStatus.processing

        for rid in (a.id, b.id):
            record = await BenefitService.get_benefit(db, rid)
            assert record.disbursement_submitted is True
            assert record.provider_reference == "FAKE-0001"
            assert record.provider_status == ProviderStatus.processing
            assert record.payment_status == PaymentStatus.approved
            assert record.disbursement_submitted_by == hr_user.id

    async def test_deduction_before_calculation_keeps_full_vt(self, db, fake_provider, test_employee):
        """A first-ever deduction computes VT too, so the batch carries 450 + 300."""
        record, _ = await BenefitService.get_or_create(db, test_employee.id, MONTH, YEAR)
        record = await _deduct(db, record, BenefitType.vr, "100")

        assert record.payment_status == PaymentStatus.calculated
        assert record.vt_total_amount == Decimal("300.00")
        assert record.vt_final_amount == Decimal("300.00")

        await BenefitService.approve(db, [record.id])
        await BenefitService.submit_batch(db, [record.id], fake_provider)

        assert fake_provider.submissions[0]["total_amount"] == Decimal("750.00")
    async def test_already_submitted_records_are_skipped(self, db, fake_provider):
        a, b = await self._two_approved(db)
        await BenefitService.submit_batch(db, [a.id], fake_provider)

        outcome = await BenefitService.submit_batch(db, [a.id, b.id], fake_provider)

        assert outcome.processed == [b.id]
        assert [s["id"] for s in outcome.skipped] == [a.id]
        assert len(fake_provider.submissions) == 2
        assert fake_provider.submissions[1]["employee_count"] == 1

    async def test_duplicate_ids_in_request(self, db, fake_provider):
        a, _ = await self._two_approved(db)
        outcome = await BenefitService.submit_batch(db, [a.id, a.id], fake_provider)

        assert outcome.processed == [a.id]
        assert outcome.skipped == [{"id": a.id, "reason": "Duplicate id in request."}]
        assert fake_provider.submissions[0]["employee_count"] == 1

    async def test_nothing_eligible_does_not_call_provider(self, db, fake_provider, test_employee):
        record = await _calculate(db, test_employee)
        outcome = await BenefitService.submit_batch(db, [record.id], fake_provider)

        assert fake_provider.submissions == []
        assert outcome.reference is None
        assert outcome.as_dict()["batch"] is None
        assert outcome.skipped_count == 1

    async def test_provider_failure_marks_records_failed(self, db, fake_provider, hr_user):
        a, b = await self._two_approved(db)
        fake_provider.fail_with = "Provider unavailable."

        outcome = await BenefitService.submit_batch(
            db, [a.id, b.id], fake_provider, actor_id=hr_user.id,
        )

        assert outcome.error == "Provider unavailable."
        assert outcome.provider_status == ProviderStatus.failed
        for rid in (a.id, b.id):
            record = await BenefitService.get_benefit(db, rid)
            assert record.disbursement_submitted is True
            assert record.provider_status == ProviderStatus.failed
            assert record.payment_status == PaymentStatus.approved
            assert record.provider_response["error"] == "Provider unavailable."

        alerts = await _notifications(db, hr_user.id, NotificationType.action_required)
        assert len(alerts) == 1
        assert alerts[0].entity_type == "disbursement_batch"

    async def test_failed_batch_can_be_cancelled(self, db, fake_provider):
        a, _ = await self._two_approved(db)
        fake_provider.fail_with = "Provider unavailable."
        await BenefitService.submit_batch(db, [a.id], fake_provider)

        outcome = await BenefitService.cancel(db, [a.id], "Provider rejected batch")
        assert outcome.processed == [a.id]


class TestProviderStatusAndReconcile:

    async def _submitted(self, db, fake_provider, employee):
        record = await _approved(db, employee)
        outcome = await BenefitService.submit_batch(db, [record.id], fake_provider)
        return record, outcome.reference

    async def test_provider_status_leaves_payment_status(self, db, fake_provider, test_employee):
        record, ref = await self._submitted(db, fake_provider, test_employee)

        detail = await BenefitService.apply_provider_status(
            db, ref, ProviderStatus.completed, {"status": "Completed"},
        )

        assert detail.provider_status == ProviderStatus.completed
        assert detail.employee_count == 1
        assert detail.total_amount == Decimal("850.00")
        refreshed = await BenefitService.get_benefit(db, record.id)
        assert refreshed.payment_status == PaymentStatus.approved

    async def test_refresh_polls_provider(self, db, fake_provider, test_employee):
        _, ref = await self._submitted(db, fake_provider, test_employee)
        fake_provider.batch_status = ProviderStatus.completed

        detail = await BenefitService.refresh_batch_status(db, ref, fake_provider)

        assert fake_provider.status_queries == [ref]
        assert detail.provider_status == ProviderStatus.completed

    async def test_unknown_batch_not_found(self, db, fake_provider):
        with pytest.raises(NotFoundException):
            await BenefitService.get_batch(db, "NOPE-1")
        with pytest.raises(NotFoundException):
            await BenefitService.refresh_batch_status(db, "NOPE-1", fake_provider)
        assert fake_provider.status_queries == []

    async def test_reconcile_only_completed(self, db, fake_provider, test_employee):
        record, ref = await self._submitted(db, fake_provider, test_employee)

        outcome = await BenefitService.reconcile(db, [record.id])
        assert outcome.processed == []
        assert outcome.skipped_count == 1

        await BenefitService.apply_provider_status(db, ref, ProviderStatus.completed)
        outcome = await BenefitService.reconcile(db, [record.id])
        assert outcome.processed == [record.id]

        paid = await BenefitService.get_benefit(db, record.id)
        assert paid.payment_status == PaymentStatus.paid
        assert paid.payment_date is not None
        assert len(await _notifications(db, test_employee.id)) >= 3

    async def test_paid_record_cannot_be_cancelled(self, db, fake_provider, test_employee):
        record, ref = await self._submitted(db, fake_provider, test_employee)
        await BenefitService.apply_provider_status(db, ref, ProviderStatus.completed)
        await BenefitService.reconcile(db, [record.id])

        outcome = await BenefitService.cancel(db, [record.id], "Too late")
        assert outcome.processed == []
        assert outcome.skipped_count == 1

    async def test_in_flight_record_cannot_be_cancelled(self, db, fake_provider, test_employee):
        record, _ = await self._submitted(db, fake_provider, test_employee)
        outcome = await BenefitService.cancel(db, [record.id], "Changed my mind")
        assert outcome.skipped_count == 1


class TestCancel:

    async def test_cancel_and_notify(self, db, test_employee):
        record = await _calculate(db, test_employee)
        outcome = await BenefitService.cancel(db, [record.id], "Employee left")

        assert outcome.processed == [record.id]
        cancelled = await BenefitService.get_benefit(db, record.id)
        assert cancelled.payment_status == PaymentStatus.cancelled
        alerts = await _notifications(db, test_employee.id, NotificationType.alert)
        assert len(alerts) == 1

    async def test_cancelled_record_rejects_deduction(self, db, test_employee):
        record = await _calculate(db, test_employee)
        await BenefitService.cancel(db, [record.id], "Employee left")
        with pytest.raises(InvalidStateTransitionException):
            await _deduct(db, record, BenefitType.vr, "10")

    async def test_concurrent_update_skips_only_that_record(self, db, monkeypatch):
        first_id = (await _calculate(db, await seed_employee(db))).id
        second_id = (await _calculate(db, await seed_employee(db))).id
        _bump_version_after_load(monkeypatch, first_id)

        outcome = await BenefitService.cancel(db, [first_id, second_id], "Employee left")

        assert outcome.processed == [second_id]
        assert [s["id"] for s in outcome.skipped] == [first_id]
        assert await _status(db, first_id) == PaymentStatus.calculated
        assert await _status(db, second_id) == PaymentStatus.cancelled


# ═════════════════════════════════════════════════════════════════════
# 6. QUERIES
# ═════════════════════════════════════════════════════════════════════


class TestQueries:

    async def test_list_by_month_filters(self, db, test_employee, test_department):
        outsider = await seed_employee(db)
        await _calculate(db, test_employee)
        await BenefitService.get_or_create(db, outsider.id, MONTH, YEAR)
        params = PaginationParams(page=1, page_size=50)

        everything = await BenefitService.list_by_month(db, MONTH, YEAR, params)
        assert everything.meta.total == 2

        dept = await BenefitService.list_by_month(
            db, MONTH, YEAR, params, department_id=test_department["id"],
        )
        assert [r.employee_id for r in dept.data] == [test_employee.id]

        calculated = await BenefitService.list_by_month(
            db, MONTH, YEAR, params, status=PaymentStatus.calculated,
        )
        assert calculated.meta.total == 1

        other_month = await BenefitService.list_by_month(db, 11, YEAR, params)
        assert other_month.meta.total == 0

    async def test_pending_payments_and_preview(self, db, fake_provider, test_employee):
        approved = await _approved(db, test_employee)
        other = await seed_employee(db)
        await _calculate(db, other)

        pending = await BenefitService.list_pending_payments(db, MONTH, YEAR)
        assert [r.id for r in pending] == [approved.id]

        preview = await BenefitService.disbursement_preview(db, MONTH, YEAR)
        assert preview["employee_count"] == 1
        assert preview["total_amount"] == Decimal("850.00")

        await BenefitService.submit_batch(db, [approved.id], fake_provider)
        assert await BenefitService.list_pending_payments(db, MONTH, YEAR) == []

    async def test_statistics_exclude_cancelled(self, db, test_employee):
        await _calculate(db, test_employee)
        mobile = await seed_employee(
            db, config={"mobility_enabled": True, "mobility_monthly_value": "150.00"},
        )
        await _approved(db, mobile)
        dropped = await seed_employee(db)
        gone = await _calculate(db, dropped)
        await BenefitService.cancel(db, [gone.id], "Left company")

        stats = await BenefitService.get_statistics(db, MONTH, YEAR)

        assert stats["month"] == "2026-10"
        assert stats["employee_count"] == 2
        assert stats["total_vr"] == Decimal("1100.00")
        assert stats["total_vt"] == Decimal("600.00")
        assert stats["total_mobility"] == Decimal("150.00")
        assert stats["grand_total"] == Decimal("1850.00")
        assert stats["status_counts"] == {
            "Pending": 0, "Calculated": 1, "Approved": 1, "Paid": 0,
        }

    async def test_eligible_employees_only_active(self, db):
        await seed_employee(db, first_name="Bruno")
        await seed_employee(db, first_name="Alice")
        await seed_employee(db, first_name="Carla", is_active=False)
        await seed_employee(db, first_name="Davi", employment_status=EmploymentStatus.relieved)
        await seed_employee(db, first_name="Eva", employment_type=EmploymentType.pj)

        names = [e.first_name for e in await BenefitService.list_eligible_employees(db)]
        assert names == ["Alice", "Bruno", "Eva"]

        pj = await BenefitService.list_eligible_employees(db, employment_type=EmploymentType.pj)
        assert [e.first_name for e in pj] == ["Eva"]


# ═════════════════════════════════════════════════════════════════════
# 7. CONFIGURATION
# ═════════════════════════════════════════════════════════════════════


class TestConfig:

    async def test_get_config_missing(self, db):
        emp = await seed_employee(db, with_config=False)
        with pytest.raises(NotFoundException):
            await BenefitService.get_config(db, emp.id)

    async def test_update_config_creates_then_updates(self, db):
        emp = await seed_employee(db, with_config=False)

        created = await BenefitService.update_config(
            db, emp.id, BenefitConfigUpdate(vr_daily_value=Decimal("20.00")),
        )
        assert created.vr_daily_value == Decimal("20.00")

        updated = await BenefitService.update_config(
            db, emp.id, BenefitConfigUpdate(vr_daily_value=Decimal("22.50"), vt_enabled=False),
        )
        assert updated.id == created.id
        assert updated.vt_enabled is False

        fetched = await BenefitService.get_config(db, emp.id)
        assert fetched.vr_daily_value == Decimal("22.50")
        assert sorted(await _audit_actions(db, created.id)) == ["create", "update"]

    async def test_existing_records_keep_their_rates(self, db, test_employee):
        record, _ = await BenefitService.get_or_create(db, test_employee.id, MONTH, YEAR)
        await BenefitService.update_config(
            db, test_employee.id, BenefitConfigUpdate(vr_daily_value=Decimal("40.00")),
        )
        fresh = await BenefitService.get_benefit(db, record.id)
        assert fresh.vr_daily_value == Decimal("25.00")


# ═════════════════════════════════════════════════════════════════════
# 8. OPTIMISTIC LOCKING
# ═════════════════════════════════════════════════════════════════════


async def test_stale_version_raises_conflict(db, test_employee):
    record = await _calculate(db, test_employee)
    await db.commit()

    async with TestSessionFactory() as other:
        theirs = await other.get(BenefitPeriod, record.id)
        theirs.vr_business_days = 21
        await other.commit()

    record.vr_business_days = 20
    with pytest.raises(ConflictError) as exc_info:
        await _flush(db, record)
    await db.rollback()

    assert exc_info.value.status_code == 409
    assert "version" in exc_info.value.errors
    assert "reload and retry" in exc_info.value.detail
