"""Pydantic schemas for the core's operation inputs and outputs."""

from .availability import AvailabilityValidationResult, BookableWindow
from .package import (
    AllowanceBalance,
    AllowanceSpec,
    BookingData,
    CompatiblePackage,
    CompatiblePackagesForSession,
    PackageUseResult,
    StudentPackageSummary,
)

__all__ = [
    "AllowanceBalance",
    "AllowanceSpec",
    "AvailabilityValidationResult",
    "BookableWindow",
    "BookingData",
    "CompatiblePackage",
    "CompatiblePackagesForSession",
    "PackageUseResult",
    "StudentPackageSummary",
]
