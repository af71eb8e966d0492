"""Benefits Pydantic schemas — request bodies and nested response views.

The ORM row is flat (``vr_*``, ``vt_*``, ``mobility_*``, disbursement
columns); responses re-nest it as ``vale_refeicao``, ``vale_transporte``,
``mobility`` and ``disbursement`` blocks.
"""

from __future__ import annotations

import uuid
from datetime import date, datetime
from decimal import Decimal
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from backend.common.constants import (
    BenefitType,
    DeductionType,
    EmploymentType,
    PaymentMethod,
    PaymentStatus,
    ProviderStatus,
    VTMode,
)

Money = Decimal


# ═════════════════════════════════════════════════════════════════════
# Employee Benefit Configuration
# ═════════════════════════════════════════════════════════════════════


class BenefitConfigBase(BaseModel):
    vr_enabled: bool = True
    vr_daily_value: Money = Field(default=Decimal("0"), ge=0, decimal_places=2)
    vr_business_days_default: int = Field(default=22, ge=0, le=31)
    vr_include_saturdays: bool = False

    vt_enabled: bool = True
    vt_fixed_monthly_amount: Money = Field(default=Decimal("0"), ge=0, decimal_places=2)
    vt_daily_value: Money = Field(default=Decimal("0"), ge=0, decimal_places=2)

    mobility_enabled: bool = False
    mobility_monthly_value: Money = Field(default=Decimal("0"), ge=0, decimal_places=2)


class BenefitConfigUpdate(BenefitConfigBase):
    """PUT body: replaces the employee's whole configuration."""


class BenefitConfigResponse(BenefitConfigBase):
    model_config = ConfigDict(from_attributes=True)

    employee_id: uuid.UUID
    updated_at: Optional[datetime] = None
    updated_by: Optional[uuid.UUID] = None


# ═════════════════════════════════════════════════════════════════════
# Requests
# ═════════════════════════════════════════════════════════════════════


class VRInputs(BaseModel):
    daily_value: Optional[Money] = Field(default=None, ge=0, decimal_places=2)
    business_days: Optional[int] = Field(default=None, ge=0, le=31)
    saturdays: Optional[int] = Field(default=None, ge=0, le=5)


class VTInputs(BaseModel):
    mode: Optional[VTMode] = None
    fixed_amount: Optional[Money] = Field(default=None, ge=0, decimal_places=2)
    daily_value: Optional[Money] = Field(default=None, ge=0, decimal_places=2)
    total_days: Optional[int] = Field(default=None, ge=0, le=31)


class MobilityInputs(BaseModel):
    monthly_value: Optional[Money] = Field(default=None, ge=0, decimal_places=2)


class CalculateRequest(BaseModel):
    """Create-or-update a month's record and run the calculator on it."""

    employee_id: uuid.UUID
    month: int = Field(..., ge=1, le=12)
    year: int = Field(..., ge=2000, le=2100)
    vale_refeicao: Optional[VRInputs] = None
    vale_transporte: Optional[VTInputs] = None
    mobility: Optional[MobilityInputs] = None
    refresh_config: bool = Field(
        default=False,
        description="Re-copy the employee's current benefit configuration first",
    )


class DeductionCreate(BaseModel):
    benefit_type: BenefitType
    deduction_date: date
    amount: Money = Field(..., decimal_places=2)
    reason: str = Field(..., max_length=500)
    deduction_type: DeductionType = DeductionType.absence


class RecordIdsRequest(BaseModel):
    """Body of the bulk approve / submit / reconcile endpoints."""

    benefit_ids: list[uuid.UUID] = Field(..., min_length=1, max_length=1000)


class CancelRequest(RecordIdsRequest):
    reason: str = Field(..., min_length=3, max_length=500)

    @field_validator("reason")
    @classmethod
    def _strip_reason(cls, v: str) -> str:
        v = v.strip()
        if len(v) < 3:
            raise ValueError("Cancellation reason must be at least 3 characters.")
        return v


class ProviderStatusUpdate(BaseModel):
    """Push-style provider callback for one batch reference."""

    status: ProviderStatus
    payload: Optional[dict[str, Any]] = None


# ═════════════════════════════════════════════════════════════════════
# Responses
# ═════════════════════════════════════════════════════════════════════


class DeductionResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    benefit_type: BenefitType
    deduction_date: date
    amount: Money
    reason: str
    deduction_type: DeductionType
    recorded_by: Optional[uuid.UUID] = None
    recorded_at: datetime


class ScheduleFileView(BaseModel):
    url: str
    uploaded_by: Optional[uuid.UUID] = None
    uploaded_at: Optional[datetime] = None


class ValeRefeicaoView(BaseModel):
    enabled: bool
    daily_value: Money
    business_days: int
    saturdays: int
    total_days: int
    total_amount: Money
    final_amount: Money
    schedule_file: Optional[ScheduleFileView] = None
    deductions: list[DeductionResponse] = []


class ValeTransporteView(BaseModel):
    enabled: bool
    mode: VTMode
    fixed_amount: Money
    daily_value: Money
    total_days: int
    total_amount: Money
    final_amount: Money
    deductions: list[DeductionResponse] = []


class MobilityView(BaseModel):
    enabled: bool
    monthly_value: Money


class DisbursementView(BaseModel):
    submitted: bool
    submitted_at: Optional[datetime] = None
    submitted_by: Optional[uuid.UUID] = None
    provider_reference: Optional[str] = None
    provider_status: ProviderStatus
    provider_response: Optional[dict[str, Any]] = None


class EmployeeBrief(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    employee_code: str
    full_name: str
    email: str
    employment_type: EmploymentType
    department_id: Optional[uuid.UUID] = None


class BenefitPeriodResponse(BaseModel):
    """One employee-month benefit record, re-nested by benefit."""

    id: uuid.UUID
    employee_id: uuid.UUID
    employee: Optional[EmployeeBrief] = None
    month: str
    year: int
    vale_refeicao: ValeRefeicaoView
    vale_transporte: ValeTransporteView
    mobility: MobilityView
    total_benefit_amount: Money
    payment_status: PaymentStatus
    payment_method: PaymentMethod
    payment_date: Optional[datetime] = None
    disbursement: DisbursementView
    version: int
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @classmethod
    def from_record(cls, record) -> BenefitPeriodResponse:
        deductions = [DeductionResponse.model_validate(d) for d in record.deductions]
        schedule = None
        if record.vr_schedule_file_url:
            schedule = ScheduleFileView(
                url=record.vr_schedule_file_url,
                uploaded_by=record.vr_schedule_uploaded_by,
                uploaded_at=record.vr_schedule_uploaded_at,
            )
        return cls(
            id=record.id,
            employee_id=record.employee_id,
            employee=(
                EmployeeBrief.model_validate(record.employee)
                if record.employee is not None else None
            ),
            month=record.month,
            year=record.year,
            vale_refeicao=ValeRefeicaoView(
                enabled=record.vr_enabled,
                daily_value=record.vr_daily_value,
                business_days=record.vr_business_days,
                saturdays=record.vr_saturdays,
                total_days=record.vr_total_days,
                total_amount=record.vr_total_amount,
                final_amount=record.vr_final_amount,
                schedule_file=schedule,
                deductions=[d for d in deductions if d.benefit_type == BenefitType.vr],
            ),
            vale_transporte=ValeTransporteView(
                enabled=record.vt_enabled,
                mode=record.vt_mode,
                fixed_amount=record.vt_fixed_amount,
                daily_value=record.vt_daily_value,
                total_days=record.vt_total_days,
                total_amount=record.vt_total_amount,
                final_amount=record.vt_final_amount,
                deductions=[d for d in deductions if d.benefit_type == BenefitType.vt],
            ),
            mobility=MobilityView(
                enabled=record.mobility_enabled,
                monthly_value=record.mobility_monthly_value,
            ),
            total_benefit_amount=record.total_benefit_amount,
            payment_status=record.payment_status,
            payment_method=record.payment_method,
            payment_date=record.payment_date,
            disbursement=DisbursementView(
                submitted=record.disbursement_submitted,
                submitted_at=record.disbursement_submitted_at,
                submitted_by=record.disbursement_submitted_by,
                provider_reference=record.provider_reference,
                provider_status=record.provider_status,
                provider_response=record.provider_response,
            ),
            version=record.version,
            created_at=record.created_at,
            updated_at=record.updated_at,
        )


class SkippedRecord(BaseModel):
    id: uuid.UUID
    reason: str


class BulkOperationResponse(BaseModel):
    """Partial-success result of a bulk workflow operation."""

    processed: list[uuid.UUID]
    skipped: list[SkippedRecord]
    processed_count: int
    skipped_count: int


class BatchSummary(BaseModel):
    reference: str
    total_amount: Money
    employee_count: int
    provider_status: ProviderStatus


class SubmitBatchResponse(BulkOperationResponse):
    batch: Optional[BatchSummary] = None
    error: Optional[str] = None


class BatchDetailResponse(BatchSummary):
    submitted_at: Optional[datetime] = None
    records: list[BenefitPeriodResponse]


class DisbursementPreviewResponse(BaseModel):
    month: str
    total_amount: Money
    employee_count: int
    benefit_ids: list[uuid.UUID]


class BenefitStatistics(BaseModel):
    """Month rollup over non-cancelled records."""

    month: str
    employee_count: int
    total_vr: Money
    total_vt: Money
    total_mobility: Money
    grand_total: Money
    status_counts: dict[str, int]


class EligibleEmployeeResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    employee_code: str
    first_name: str
    last_name: str
    full_name: str
    email: str
    employment_type: EmploymentType
    department_id: Optional[uuid.UUID] = None
    benefit_config: Optional[BenefitConfigResponse] = None
