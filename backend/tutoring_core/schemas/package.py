"""Package, allowance and ledger schemas."""
from datetime import datetime
from typing import Any, List, Optional

from pydantic import ConfigDict, Field, model_validator

from ..core.enums import ServiceType
from .base import StandardizedModel, StrictModel


class AllowanceSpec(StrictModel):
    """One allowance of a product being defined.

    Range checks live in ``validate_allowances`` so that every problem of a
    bundle is reported at once.
    """

    service_type: ServiceType
    credits: int
    credit_unit_minutes: int = 30
    teacher_tier_floor: int = 0


class BookingData(StrictModel):
    """Window for a private session created as part of a debit."""

    teacher_id: str
    start_at: datetime
    end_at: datetime
    title: Optional[str] = Field(default=None, max_length=255)

    @model_validator(mode="after")
    def _window_is_positive(self) -> "BookingData":
        if self.end_at <= self.start_at:
            raise ValueError("end_at must be after start_at")
        return self


class AllowanceBalance(StandardizedModel):
    allowance_id: str
    service_type: ServiceType
    teacher_tier_floor: int
    credit_unit_minutes: int
    credits: int
    used: int
    remaining: int
    label: str


class StudentPackageSummary(StandardizedModel):
    id: str
    package_name: str
    description: str
    purchased_at: datetime
    expires_at: Optional[datetime] = None
    is_expired: bool
    is_active: bool
    total_remaining: int
    allowances: List[AllowanceBalance]


class CompatiblePackage(StandardizedModel):
    package_id: str
    package_name: str
    expires_at: Optional[datetime] = None
    allowance: AllowanceBalance
    credits_required: int
    is_cross_tier: bool
    warning: Optional[str] = None
    duration_warning: Optional[str] = None


class CompatiblePackagesForSession(StandardizedModel):
    session_id: str
    exact_match: List[CompatiblePackage] = Field(default_factory=list)
    higher_tier: List[CompatiblePackage] = Field(default_factory=list)
    recommended: Optional[CompatiblePackage] = None


class PackageUseResult(StandardizedModel):
    """Outcome of a debit: the ledger row, the booking and any warnings."""

    model_config = ConfigDict(arbitrary_types_allowed=True)

    use: Any
    booking: Optional[Any] = None
    session: Optional[Any] = None
    credits_used: int
    remaining: int
    is_cross_tier: bool = False
    warnings: List[str] = Field(default_factory=list)
