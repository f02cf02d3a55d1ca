# backend/tutoring_core/services/allowance_balance.py
"""
Allowance balance math over the PackageUse ledger.

Balances are never stored. Everything here is a pure function of the
allowances of a package and its non-voided ledger rows:

    remaining(allowance) = max(0, credits - SUM(credits_used))

Legacy ledger rows carry no allowance id. They are attributed to the
package's allowance with the same service type, or to the first allowance
when the row has no service type either.
"""

from dataclasses import dataclass
from datetime import datetime
from typing import Any, Iterable, List, Optional, Protocol, Sequence, Tuple, Union

from ..core.clock import ensure_utc
from ..core.enums import ServiceType

VALID_CREDIT_UNIT_MINUTES = (15, 30, 45, 60)


class UseLike(Protocol):
    allowance_id: Optional[str]
    service_type: Optional[str]
    credits_used: Optional[int]


class AllowanceRecord(Protocol):
    id: str
    service_type: str
    credits: int
    credit_unit_minutes: int
    teacher_tier_floor: int


@dataclass(frozen=True)
class AllowanceBalanceLine:
    """Balance of one allowance."""

    allowance: Any
    used: int
    remaining: int


def _credits_of(use: UseLike) -> int:
    # Rows written before credits_used existed count as one credit
    return use.credits_used or 1


def _same_type(left: Optional[Union[ServiceType, str]], right: Union[ServiceType, str]) -> bool:
    return left is not None and ServiceType(left) == ServiceType(right)


def compute_remaining_credits(total_credits: int, uses: Iterable[UseLike]) -> int:
    """Remaining credits when every use counts against ``total_credits``."""
    used = sum(_credits_of(use) for use in uses)
    return max(0, total_credits - used)


def compute_remaining_credits_by_service_type(
    total_credits: int, uses: Iterable[UseLike], service_type: Union[ServiceType, str]
) -> int:
    """Remaining credits counting only uses of ``service_type`` (legacy packages)."""
    used = sum(_credits_of(use) for use in uses if _same_type(use.service_type, service_type))
    return max(0, total_credits - used)


def compute_remaining_credits_for_allowance(allowance: AllowanceRecord, uses: Iterable[UseLike]) -> int:
    """Remaining credits counting only uses recorded against ``allowance``."""
    used = sum(_credits_of(use) for use in uses if use.allowance_id == allowance.id)
    return max(0, allowance.credits - used)


def attribute_legacy_use(use: UseLike, allowances: Sequence[AllowanceRecord]) -> Optional[AllowanceRecord]:
    """Allowance a row without ``allowance_id`` is charged to."""
    if not allowances:
        return None
    if use.service_type is None:
        return allowances[0]
    for allowance in allowances:
        if _same_type(use.service_type, allowance.service_type):
            return allowance
    return None


def has_mixed_ledger(uses: Iterable[UseLike]) -> bool:
    """True when a package has both allowance-tracked and legacy rows."""
    tracked = legacy = False
    for use in uses:
        if use.allowance_id is None:
            legacy = True
        else:
            tracked = True
    return tracked and legacy


def compute_allowance_balances(
    allowances: Sequence[AllowanceRecord], uses: Iterable[UseLike]
) -> List[AllowanceBalanceLine]:
    """
    Per-allowance balances, in allowance order.

    Rows with an allowance id count against that allowance; legacy rows
    count against the allowance chosen by ``attribute_legacy_use``.
    """
    used_by_id = {allowance.id: 0 for allowance in allowances}
    for use in uses:
        target_id = use.allowance_id
        if target_id is None:
            target = attribute_legacy_use(use, allowances)
            target_id = target.id if target is not None else None
        if target_id in used_by_id:
            used_by_id[target_id] += _credits_of(use)

    return [
        AllowanceBalanceLine(
            allowance=allowance,
            used=used_by_id[allowance.id],
            remaining=max(0, allowance.credits - used_by_id[allowance.id]),
        )
        for allowance in allowances
    ]


def remaining_for_allowance(
    allowance: AllowanceRecord, allowances: Sequence[AllowanceRecord], uses: Iterable[UseLike]
) -> int:
    """Remaining credits of one allowance, legacy rows included."""
    for line in compute_allowance_balances(allowances, uses):
        if line.allowance.id == allowance.id:
            return line.remaining
    return 0


def compute_total_remaining(allowances: Sequence[AllowanceRecord], uses: Iterable[UseLike]) -> int:
    return sum(line.remaining for line in compute_allowance_balances(allowances, uses))


def is_package_exhausted(allowances: Sequence[AllowanceRecord], uses: Iterable[UseLike]) -> bool:
    return compute_total_remaining(allowances, uses) == 0


def is_package_expired(expires_at: Optional[datetime], now: datetime) -> bool:
    return expires_at is not None and ensure_utc(expires_at) < now


def is_package_active(
    expires_at: Optional[datetime],
    allowances: Sequence[AllowanceRecord],
    uses: Iterable[UseLike],
    now: datetime,
) -> bool:
    """Not expired and at least one allowance with credits left."""
    return not is_package_expired(expires_at, now) and not is_package_exhausted(allowances, uses)


# Bundle helpers


def _type_key(value: Any) -> str:
    try:
        return ServiceType(value).value
    except ValueError:
        return str(value)


def validate_allowances(allowances: Sequence[Any]) -> Tuple[bool, List[str]]:
    """Validate a bundle definition; returns (valid, errors)."""
    errors: List[str] = []

    if not allowances:
        errors.append("At least one allowance is required")

    for index, allowance in enumerate(allowances or []):
        if not getattr(allowance, "service_type", None):
            errors.append(f"Allowance {index}: serviceType is required")
        credits = getattr(allowance, "credits", None)
        if not credits or credits <= 0:
            errors.append(f"Allowance {index}: credits must be positive")
        if getattr(allowance, "credit_unit_minutes", None) not in VALID_CREDIT_UNIT_MINUTES:
            errors.append(f"Allowance {index}: creditUnitMinutes must be 15, 30, 45, or 60")
        tier_floor = getattr(allowance, "teacher_tier_floor", 0)
        if tier_floor is not None and tier_floor < 0:
            errors.append(f"Allowance {index}: teacherTier cannot be negative")

    service_types = [_type_key(getattr(a, "service_type", None)) for a in allowances or []]
    if len(set(service_types)) != len(service_types):
        errors.append("Each service type can only appear once in a bundle")

    return not errors, errors


def generate_bundle_description(allowances: Sequence[Any]) -> str:
    """Human summary such as "5 private (30min) + 3 group (60min) + 2 course"."""
    parts = []
    for allowance in allowances:
        service_type = ServiceType(allowance.service_type)
        label = service_type.value.lower()
        if service_type == ServiceType.COURSE:
            parts.append(f"{allowance.credits} {label}")
        else:
            parts.append(f"{allowance.credits} {label} ({allowance.credit_unit_minutes}min)")
    return " + ".join(parts)


def find_allowance_for_service_type(
    allowances: Sequence[Any], service_type: Union[ServiceType, str]
) -> Optional[Any]:
    for allowance in allowances:
        if _same_type(allowance.service_type, service_type):
            return allowance
    return None


def bundle_contains_service_type(allowances: Sequence[Any], service_type: Union[ServiceType, str]) -> bool:
    return find_allowance_for_service_type(allowances, service_type) is not None


def get_total_bundle_credits(allowances: Sequence[Any]) -> int:
    return sum(allowance.credits for allowance in allowances)
