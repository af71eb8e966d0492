"""Enums and constants for HR Benefits — matching PostgreSQL ENUM types."""

from __future__ import annotations

import enum
from decimal import Decimal


# ── Employee / Core HR ──────────────────────────────────────────────

class EmploymentStatus(str, enum.Enum):
    active = "active"
    notice_period = "notice_period"
    relieved = "relieved"
    on_leave = "on_leave"


class EmploymentType(str, enum.Enum):
    clt = "CLT"
    pj = "PJ"
    intern = "intern"
    contractor = "contractor"


# ── Auth / Roles ────────────────────────────────────────────────────

class UserRole(str, enum.Enum):
    employee = "employee"
    manager = "manager"
    hr_admin = "hr_admin"
    system_admin = "system_admin"


# ── Benefits ────────────────────────────────────────────────────────

class BenefitType(str, enum.Enum):
    """Deductible benefit kinds: meal voucher (VR) and transport voucher (VT)."""

    vr = "VR"
    vt = "VT"


class VTMode(str, enum.Enum):
    fixed = "fixed"
    daily = "daily"


class PaymentStatus(str, enum.Enum):
    pending = "Pending"
    calculated = "Calculated"
    approved = "Approved"
    paid = "Paid"
    cancelled = "Cancelled"


class ProviderStatus(str, enum.Enum):
    pending = "Pending"
    processing = "Processing"
    completed = "Completed"
    failed = "Failed"


class DeductionType(str, enum.Enum):
    absence = "Absence"
    holiday = "Holiday"
    vacation = "Vacation"
    other = "Other"


class PaymentMethod(str, enum.Enum):
    flash = "Flash"
    bank_transfer = "Bank Transfer"
    check = "Check"
    other = "Other"


# Records in these states can no longer be recalculated or receive deductions
LOCKED_PAYMENT_STATUSES: frozenset[PaymentStatus] = frozenset({
    PaymentStatus.approved,
    PaymentStatus.paid,
    PaymentStatus.cancelled,
})


# ── Notifications ───────────────────────────────────────────────────

class NotificationType(str, enum.Enum):
    info = "info"
    action_required = "action_required"
    approval = "approval"
    reminder = "reminder"
    alert = "alert"


# ── Misc constants ──────────────────────────────────────────────────

TIMEZONE = "America/Sao_Paulo"
CENT = Decimal("0.01")
MAX_PAGE_SIZE = 100
DEFAULT_PAGE_SIZE = 50
SCHEDULE_FILE_EXTENSIONS = frozenset({".xlsx", ".xls", ".csv", ".pdf"})
