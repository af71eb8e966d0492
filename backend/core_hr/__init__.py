"""Core HR module — the Employee, Department and benefit configuration tables."""

from backend.core_hr.models import Department, Employee, EmployeeBenefitConfig

__all__ = ["Employee", "Department", "EmployeeBenefitConfig"]
