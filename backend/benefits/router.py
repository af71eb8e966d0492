"""Benefits endpoints — monthly records, deductions, approval and disbursement.

NOTE: static paths (``/month``, ``/batches``, ``/config`` …) are registered
before ``/{benefit_id}`` so FastAPI never parses them as a UUID.
"""

import logging
import os
import uuid
from typing import Optional

from fastapi import (
    APIRouter,
    Depends,
    File,
    Form,
    HTTPException,
    Path,
    Query,
    Request,
    UploadFile,
)
from sqlalchemy.ext.asyncio import AsyncSession

from backend.auth.dependencies import get_current_user, has_role, require_role
from backend.benefits.provider import get_disbursement_provider
from backend.benefits.schemas import (
    BatchDetailResponse,
    BenefitConfigResponse,
    BenefitConfigUpdate,
    BenefitPeriodResponse,
    BenefitStatistics,
    BulkOperationResponse,
    CalculateRequest,
    CancelRequest,
    DeductionCreate,
    DeductionResponse,
    DisbursementPreviewResponse,
    EligibleEmployeeResponse,
    ProviderStatusUpdate,
    RecordIdsRequest,
    SubmitBatchResponse,
)
from backend.benefits.service import BatchDetail, BenefitService
from backend.common.constants import (
    SCHEDULE_FILE_EXTENSIONS,
    EmploymentType,
    PaymentStatus,
    UserRole,
)
from backend.common.exceptions import DisbursementProviderException, ForbiddenException
from backend.common.pagination import PaginatedResponse, PaginationParams
from backend.common.rate_limit import PROVIDER_REFRESH_LIMIT, SUBMIT_LIMIT, limiter
from backend.config import settings
from backend.core_hr.models import Employee
from backend.database import get_db

logger = logging.getLogger(__name__)

router = APIRouter(prefix="", tags=["benefits"])

_hr = require_role(UserRole.hr_admin)


def _batch_response(detail: BatchDetail) -> BatchDetailResponse:
    return BatchDetailResponse(
        reference=detail.reference,
        total_amount=detail.total_amount,
        employee_count=detail.employee_count,
        provider_status=detail.provider_status,
        submitted_at=detail.submitted_at,
        records=[BenefitPeriodResponse.from_record(r) for r in detail.records],
    )


# ── GET /month/{month}/{year} ───────────────────────────────────────

@router.get(
    "/month/{month}/{year}",
    response_model=PaginatedResponse[BenefitPeriodResponse],
)
async def list_by_month(
    request: Request,
    month: int = Path(..., ge=1, le=12),
    year: int = Path(..., ge=2000, le=2100),
    status: Optional[PaymentStatus] = Query(default=None),
    department_id: Optional[uuid.UUID] = Query(default=None),
    employee_id: Optional[uuid.UUID] = Query(default=None),
    pagination: PaginationParams = Depends(),
    employee: Employee = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """List a month's benefit records. Non-HR users only see their own."""
    if not has_role(request, UserRole.hr_admin):
        employee_id = employee.id
    return await BenefitService.list_by_month(
        db,
        month,
        year,
        pagination,
        status=status,
        department_id=department_id,
        employee_id=employee_id,
        transform=BenefitPeriodResponse.from_record,
    )


# ── GET /employee/{employee_id}/{month}/{year} ──────────────────────

@router.get(
    "/employee/{employee_id}/{month}/{year}",
    response_model=BenefitPeriodResponse,
)
async def get_or_create_for_employee(
    employee_id: uuid.UUID,
    month: int = Path(..., ge=1, le=12),
    year: int = Path(..., ge=2000, le=2100),
    hr: Employee = Depends(_hr),
    db: AsyncSession = Depends(get_db),
):
    """Return the employee's record for the month, creating it from their config."""
    record, _ = await BenefitService.get_or_create(
        db, employee_id, month, year, actor_id=hr.id,
    )
    return BenefitPeriodResponse.from_record(record)


# ── POST /calculate ─────────────────────────────────────────────────

@router.post("/calculate", response_model=BenefitPeriodResponse)
async def calculate(
    body: CalculateRequest,
    hr: Employee = Depends(_hr),
    db: AsyncSession = Depends(get_db),
):
    record = await BenefitService.calculate(db, body, actor_id=hr.id)
    return BenefitPeriodResponse.from_record(record)


# ── Bulk workflow ───────────────────────────────────────────────────

@router.post("/approve", response_model=BulkOperationResponse)
async def approve(
    body: RecordIdsRequest,
    hr: Employee = Depends(_hr),
    db: AsyncSession = Depends(get_db),
):
    """Approve Calculated records; other ids come back in ``skipped``."""
    outcome = await BenefitService.approve(db, body.benefit_ids, actor_id=hr.id)
    return outcome.as_dict()


@router.post("/submit", response_model=SubmitBatchResponse)
@limiter.limit(SUBMIT_LIMIT)
async def submit_to_provider(
    request: Request,
    body: RecordIdsRequest,
    hr: Employee = Depends(_hr),
    db: AsyncSession = Depends(get_db),
    provider=Depends(get_disbursement_provider),
):
    """Send Approved, unsubmitted records to the provider as one batch.

    A provider failure is committed (records stay submitted, provider
    status Failed) before the 502 is returned.
    """
    outcome = await BenefitService.submit_batch(
        db, body.benefit_ids, provider, actor_id=hr.id,
    )
    if outcome.error:
        await db.commit()
        raise DisbursementProviderException(outcome.error, reference=outcome.reference)
    return outcome.as_dict()


@router.post("/reconcile", response_model=BulkOperationResponse)
async def reconcile(
    body: RecordIdsRequest,
    hr: Employee = Depends(_hr),
    db: AsyncSession = Depends(get_db),
):
    """Mark Approved records whose disbursement completed as Paid."""
    outcome = await BenefitService.reconcile(db, body.benefit_ids, actor_id=hr.id)
    return outcome.as_dict()


@router.post("/cancel", response_model=BulkOperationResponse)
async def cancel(
    body: CancelRequest,
    hr: Employee = Depends(_hr),
    db: AsyncSession = Depends(get_db),
):
    outcome = await BenefitService.cancel(
        db, body.benefit_ids, body.reason, actor_id=hr.id,
    )
    return outcome.as_dict()


# ── Disbursement queries ────────────────────────────────────────────

@router.get("/pending-payments", response_model=list[BenefitPeriodResponse])
async def pending_payments(
    month: Optional[int] = Query(default=None, ge=1, le=12),
    year: Optional[int] = Query(default=None, ge=2000, le=2100),
    hr: Employee = Depends(_hr),
    db: AsyncSession = Depends(get_db),
):
    records = await BenefitService.list_pending_payments(db, month, year)
    return [BenefitPeriodResponse.from_record(r) for r in records]


@router.get(
    "/disbursement-preview/{month}/{year}",
    response_model=DisbursementPreviewResponse,
)
async def disbursement_preview(
    month: int = Path(..., ge=1, le=12),
    year: int = Path(..., ge=2000, le=2100),
    hr: Employee = Depends(_hr),
    db: AsyncSession = Depends(get_db),
):
    return await BenefitService.disbursement_preview(db, month, year)


@router.get("/batches/{reference}", response_model=BatchDetailResponse)
async def get_batch(
    reference: str,
    hr: Employee = Depends(_hr),
    db: AsyncSession = Depends(get_db),
):
    detail = await BenefitService.get_batch(db, reference)
    return _batch_response(detail)


@router.post("/batches/{reference}/refresh", response_model=BatchDetailResponse)
@limiter.limit(PROVIDER_REFRESH_LIMIT)
async def refresh_batch(
    request: Request,
    reference: str,
    hr: Employee = Depends(_hr),
    db: AsyncSession = Depends(get_db),
    provider=Depends(get_disbursement_provider),
):
    """Poll the provider and store the batch's current status."""
    detail = await BenefitService.refresh_batch_status(
        db, reference, provider, actor_id=hr.id,
    )
    return _batch_response(detail)


@router.post("/batches/{reference}/status", response_model=BatchDetailResponse)
async def update_batch_status(
    reference: str,
    body: ProviderStatusUpdate,
    hr: Employee = Depends(_hr),
    db: AsyncSession = Depends(get_db),
):
    detail = await BenefitService.apply_provider_status(
        db, reference, body.status, body.payload, actor_id=hr.id,
    )
    return _batch_response(detail)


# ── GET /statistics/{month}/{year} ──────────────────────────────────

@router.get("/statistics/{month}/{year}", response_model=BenefitStatistics)
async def statistics(
    month: int = Path(..., ge=1, le=12),
    year: int = Path(..., ge=2000, le=2100),
    employee: Employee = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    return await BenefitService.get_statistics(db, month, year)


# ── GET /eligible-employees ─────────────────────────────────────────

@router.get("/eligible-employees", response_model=list[EligibleEmployeeResponse])
async def eligible_employees(
    department_id: Optional[uuid.UUID] = Query(default=None),
    employment_type: Optional[EmploymentType] = Query(default=None),
    employee: Employee = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    employees = await BenefitService.list_eligible_employees(
        db, department_id=department_id, employment_type=employment_type,
    )
    return [EligibleEmployeeResponse.model_validate(e) for e in employees]


# ── /config/{employee_id} ───────────────────────────────────────────

@router.get("/config/{employee_id}", response_model=BenefitConfigResponse)
async def get_config(
    employee_id: uuid.UUID,
    hr: Employee = Depends(_hr),
    db: AsyncSession = Depends(get_db),
):
    config = await BenefitService.get_config(db, employee_id)
    return BenefitConfigResponse.model_validate(config)


@router.put("/config/{employee_id}", response_model=BenefitConfigResponse)
async def update_config(
    employee_id: uuid.UUID,
    body: BenefitConfigUpdate,
    hr: Employee = Depends(_hr),
    db: AsyncSession = Depends(get_db),
):
    config = await BenefitService.update_config(db, employee_id, body, actor_id=hr.id)
    return BenefitConfigResponse.model_validate(config)


# ── POST /{benefit_id}/deductions ───────────────────────────────────

@router.post(
    "/{benefit_id}/deductions",
    response_model=DeductionResponse,
    status_code=201,
)
async def add_deduction(
    benefit_id: uuid.UUID,
    body: DeductionCreate,
    hr: Employee = Depends(_hr),
    db: AsyncSession = Depends(get_db),
):
    _, deduction = await BenefitService.add_deduction(
        db, benefit_id, body, actor_id=hr.id,
    )
    return DeductionResponse.model_validate(deduction)


# ── POST /{benefit_id}/schedule ─────────────────────────────────────

@router.post("/{benefit_id}/schedule", response_model=BenefitPeriodResponse)
async def upload_schedule(
    benefit_id: uuid.UUID,
    business_days: int = Form(...),
    saturdays: int = Form(default=0),
    file: Optional[UploadFile] = File(default=None),
    hr: Employee = Depends(_hr),
    db: AsyncSession = Depends(get_db),
):
    """Set the month's VR day counts, optionally attaching the work schedule."""
    file_url = stored_path = None
    if file is not None and file.filename:
        ext = os.path.splitext(file.filename)[1].lower()
        if ext not in SCHEDULE_FILE_EXTENSIONS:
            raise HTTPException(
                status_code=400,
                detail=f"File type '{ext or file.content_type}' not allowed. Accepted: XLSX, XLS, CSV, PDF.",
            )

        contents = await file.read()
        if len(contents) > settings.MAX_UPLOAD_SIZE_MB * 1024 * 1024:
            raise HTTPException(
                status_code=400,
                detail=f"File too large. Maximum size is {settings.MAX_UPLOAD_SIZE_MB} MB.",
            )

        upload_dir = os.path.join(settings.UPLOAD_DIR, "schedules")
        os.makedirs(upload_dir, exist_ok=True)

        # UUID-only filename (no original filename) to prevent path traversal
        safe_name = f"{uuid.uuid4().hex}{ext}"
        stored_path = os.path.join(upload_dir, safe_name)
        with open(stored_path, "wb") as f:
            f.write(contents)
        file_url = f"/uploads/schedules/{safe_name}"
        logger.info("Stored schedule %s for benefit record %s", safe_name, benefit_id)

    try:
        record = await BenefitService.update_schedule(
            db,
            benefit_id,
            business_days=business_days,
            saturdays=saturdays,
            file_url=file_url,
            actor_id=hr.id,
        )
    except Exception:
        # Nothing references the file unless the record update succeeds
        if stored_path is not None:
            os.remove(stored_path)
            logger.info("Removed schedule %s after failed update", os.path.basename(stored_path))
        raise
    return BenefitPeriodResponse.from_record(record)


# ── GET /{benefit_id} ───────────────────────────────────────────────

@router.get("/{benefit_id}", response_model=BenefitPeriodResponse)
async def get_benefit(
    benefit_id: uuid.UUID,
    request: Request,
    employee: Employee = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    record = await BenefitService.get_benefit(db, benefit_id)
    if record.employee_id != employee.id and not has_role(request, UserRole.hr_admin):
        raise ForbiddenException("You can only view your own benefit records.")
    return BenefitPeriodResponse.from_record(record)
