"""Common module — shared utilities for HR Benefits."""

from backend.common.audit import AuditTrail, create_audit_entry, to_jsonable
from backend.common.constants import (
    DEFAULT_PAGE_SIZE,
    LOCKED_PAYMENT_STATUSES,
    MAX_PAGE_SIZE,
    TIMEZONE,
    BenefitType,
    DeductionType,
    EmploymentStatus,
    EmploymentType,
    NotificationType,
    PaymentMethod,
    PaymentStatus,
    ProviderStatus,
    UserRole,
    VTMode,
)
from backend.common.exceptions import (
    AppException,
    ConflictError,
    DisbursementProviderException,
    ForbiddenException,
    InvalidDeductionException,
    InvalidStateTransitionException,
    NotFoundException,
    ValidationException,
    register_exception_handlers,
)
from backend.common.pagination import (
    PaginatedResponse,
    PaginationMeta,
    PaginationParams,
    build_meta,
    paginate,
)

__all__ = [
    # Audit
    "AuditTrail",
    "create_audit_entry",
    "to_jsonable",
    # Constants / Enums
    "BenefitType",
    "DeductionType",
    "EmploymentStatus",
    "EmploymentType",
    "NotificationType",
    "PaymentMethod",
    "PaymentStatus",
    "ProviderStatus",
    "UserRole",
    "VTMode",
    "LOCKED_PAYMENT_STATUSES",
    "TIMEZONE",
    "DEFAULT_PAGE_SIZE",
    "MAX_PAGE_SIZE",
    # Exceptions
    "AppException",
    "ConflictError",
    "DisbursementProviderException",
    "ForbiddenException",
    "InvalidDeductionException",
    "InvalidStateTransitionException",
    "NotFoundException",
    "ValidationException",
    "register_exception_handlers",
    # Pagination
    "PaginatedResponse",
    "PaginationMeta",
    "PaginationParams",
    "build_meta",
    "paginate",
]
