"""Core HR ORM models: Department, Employee, EmployeeBenefitConfig.

SQLAlchemy 2.0 async-compatible models with Mapped[] annotations.
The benefits module only reads these tables; employee CRUD lives in the
wider HR platform.
"""

from __future__ import annotations

import uuid
from datetime import date, datetime
from decimal import Decimal
from typing import TYPE_CHECKING, Optional

import sqlalchemy as sa
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column, relationship

from backend.common.constants import EmploymentStatus, EmploymentType
from backend.database import Base

if TYPE_CHECKING:
    from backend.auth.models import UserSession
    from backend.notifications.models import Notification


# ═════════════════════════════════════════════════════════════════════
# Department
# ═════════════════════════════════════════════════════════════════════


class Department(Base):
    """Organisational department."""

    __tablename__ = "departments"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4,
    )
    name: Mapped[str] = mapped_column(sa.String(150), unique=True, nullable=False)
    code: Mapped[Optional[str]] = mapped_column(sa.String(20), unique=True)
    is_active: Mapped[bool] = mapped_column(
        sa.Boolean, server_default=sa.text("TRUE"),
    )
    created_at: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True), server_default=sa.func.now(),
    )

    employees: Mapped[list[Employee]] = relationship(
        back_populates="department", foreign_keys="Employee.department_id",
    )

    def __repr__(self) -> str:
        return f"<Department {self.name!r} ({self.code})>"


# ═════════════════════════════════════════════════════════════════════
# Employee
# ═════════════════════════════════════════════════════════════════════


class Employee(Base):
    """Employee record — the benefits core reads it, never writes it."""

    __tablename__ = "employees"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4,
    )
    employee_code: Mapped[str] = mapped_column(
        sa.String(20), unique=True, nullable=False,
    )

    # ── Name / contact ──────────────────────────────────────────────
    first_name: Mapped[str] = mapped_column(sa.String(100), nullable=False)
    last_name: Mapped[str] = mapped_column(sa.String(100), nullable=False)
    display_name: Mapped[Optional[str]] = mapped_column(sa.String(255))
    email: Mapped[str] = mapped_column(
        sa.String(255), unique=True, nullable=False,
    )

    # ── Org / contract ──────────────────────────────────────────────
    department_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        UUID(as_uuid=True), sa.ForeignKey("departments.id"),
    )
    job_title: Mapped[Optional[str]] = mapped_column(sa.String(200))
    employment_type: Mapped[EmploymentType] = mapped_column(
        sa.Enum(
            EmploymentType,
            name="employment_type",
            create_type=False,
            values_callable=lambda e: [m.value for m in e],
        ),
        default=EmploymentType.clt,
    )
    employment_status: Mapped[EmploymentStatus] = mapped_column(
        sa.Enum(EmploymentStatus, name="employment_status", create_type=False),
        default=EmploymentStatus.active,
    )
    date_of_joining: Mapped[date] = mapped_column(sa.Date, nullable=False)

    # ── Status / Timestamps ─────────────────────────────────────────
    is_active: Mapped[bool] = mapped_column(
        sa.Boolean, server_default=sa.text("TRUE"),
    )
    created_at: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True), server_default=sa.func.now(),
    )
    updated_at: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True), server_default=sa.func.now(),
    )

    # ── Relationships ───────────────────────────────────────────────
    department: Mapped[Optional[Department]] = relationship(
        back_populates="employees", foreign_keys=[department_id],
    )
    benefit_config: Mapped[Optional[EmployeeBenefitConfig]] = relationship(
        back_populates="employee",
        foreign_keys="EmployeeBenefitConfig.employee_id",
        uselist=False,
        lazy="selectin",
    )
    sessions: Mapped[list["UserSession"]] = relationship(
        back_populates="employee",
    )
    notifications: Mapped[list["Notification"]] = relationship(
        back_populates="recipient",
    )

    # ── Helpers ─────────────────────────────────────────────────────

    @property
    def full_name(self) -> str:
        return self.display_name or f"{self.first_name} {self.last_name}".strip()

    def __repr__(self) -> str:
        return (
            f"<Employee {self.employee_code} "
            f"{self.first_name} {self.last_name}>"
        )


# ═════════════════════════════════════════════════════════════════════
# Employee Benefit Configuration
# ═════════════════════════════════════════════════════════════════════


class EmployeeBenefitConfig(Base):
    """Per-employee enablement and base rates for VR / VT / mobility.

    One row per employee. New benefit period records copy these values at
    creation time, so later edits only affect months not yet created.
    """

    __tablename__ = "employee_benefit_configs"
    __table_args__ = (
        sa.CheckConstraint("vr_daily_value >= 0", name="ck_cfg_vr_daily_value"),
        sa.CheckConstraint("vt_daily_value >= 0", name="ck_cfg_vt_daily_value"),
        sa.CheckConstraint(
            "vt_fixed_monthly_amount >= 0", name="ck_cfg_vt_fixed_amount",
        ),
        sa.CheckConstraint(
            "mobility_monthly_value >= 0", name="ck_cfg_mobility_value",
        ),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=uuid.uuid4,
    )
    employee_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        sa.ForeignKey("employees.id", ondelete="CASCADE"),
        unique=True,
        nullable=False,
    )

    # Vale Refeição
    vr_enabled: Mapped[bool] = mapped_column(sa.Boolean, default=True)
    vr_daily_value: Mapped[Decimal] = mapped_column(
        sa.Numeric(12, 2), default=Decimal("0"),
    )
    vr_business_days_default: Mapped[int] = mapped_column(sa.Integer, default=22)
    vr_include_saturdays: Mapped[bool] = mapped_column(sa.Boolean, default=False)

    # Vale Transporte
    vt_enabled: Mapped[bool] = mapped_column(sa.Boolean, default=True)
    vt_fixed_monthly_amount: Mapped[Decimal] = mapped_column(
        sa.Numeric(12, 2), default=Decimal("0"),
    )
    vt_daily_value: Mapped[Decimal] = mapped_column(
        sa.Numeric(12, 2), default=Decimal("0"),
    )

    # Mobilidade
    mobility_enabled: Mapped[bool] = mapped_column(sa.Boolean, default=False)
    mobility_monthly_value: Mapped[Decimal] = mapped_column(
        sa.Numeric(12, 2), default=Decimal("0"),
    )

    updated_at: Mapped[Optional[datetime]] = mapped_column(
        sa.DateTime(timezone=True),
    )
    updated_by: Mapped[Optional[uuid.UUID]] = mapped_column(
        UUID(as_uuid=True), sa.ForeignKey("employees.id"),
    )

    employee: Mapped[Employee] = relationship(
        back_populates="benefit_config", foreign_keys=[employee_id],
    )

    def __repr__(self) -> str:
        return f"<EmployeeBenefitConfig employee_id={self.employee_id}>"
