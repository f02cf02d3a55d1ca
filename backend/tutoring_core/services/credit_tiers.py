# backend/tutoring_core/services/credit_tiers.py
"""
Credit tier rules.

A credit can pay for any session of the same service type whose tier is
equal to or lower than the credit's own tier:

    session tier   = base(service type) + teacher tier
    allowance tier = base(service type) + allowance teacher tier floor

COURSE sessions never consume credits; they go through enrollment.
"""

from dataclasses import dataclass
import math
from typing import Iterable, Optional, Protocol, Sequence, TypeVar, Union

from ..core.enums import ServiceType

SERVICE_TYPE_BASE_TIERS = {
    ServiceType.PRIVATE: 100,
    ServiceType.GROUP: 50,
    ServiceType.COURSE: 0,
}

COURSE_NOT_CREDITABLE = "Course sessions require enrollment and cannot be paid with package credits"
SERVICE_TYPE_MISMATCH = "This package cannot be used for this session type"
TIER_TOO_LOW = "This credit does not cover sessions with this teacher"


class AllowanceLike(Protocol):
    service_type: str
    teacher_tier_floor: int
    credit_unit_minutes: int


A = TypeVar("A", bound=AllowanceLike)


@dataclass(frozen=True)
class SessionTierInfo:
    """The parts of a session that decide which credits may pay for it."""

    service_type: ServiceType
    teacher_tier: int = 0
    duration_minutes: int = 0

    @classmethod
    def from_session(cls, session) -> "SessionTierInfo":
        teacher = getattr(session, "teacher", None)
        return cls(
            service_type=ServiceType(session.type),
            teacher_tier=(teacher.tier or 0) if teacher is not None else 0,
            duration_minutes=session.duration_minutes,
        )


@dataclass(frozen=True)
class TierCheck:
    """Outcome of matching one allowance against one session."""

    can_use: bool
    is_cross_tier: bool
    allowance_tier: int
    session_tier: int
    reason: Optional[str] = None
    warning: Optional[str] = None


def base_tier(service_type: Union[ServiceType, str]) -> int:
    return SERVICE_TYPE_BASE_TIERS.get(ServiceType(service_type), 0)


def session_tier(service_type: Union[ServiceType, str], teacher_tier: int = 0) -> int:
    return base_tier(service_type) + (teacher_tier or 0)


def allowance_tier(allowance: AllowanceLike) -> int:
    return base_tier(allowance.service_type) + (allowance.teacher_tier_floor or 0)


def can_use_allowance_for_session(allowance: AllowanceLike, session: SessionTierInfo) -> TierCheck:
    """
    Decide whether ``allowance`` may pay for ``session``.

    Usable iff the session is not COURSE, the service types match and the
    allowance tier is at least the session tier. Usable with a strictly
    higher allowance tier is a cross-tier booking and carries a warning.
    """
    a_tier = allowance_tier(allowance)
    s_tier = session_tier(session.service_type, session.teacher_tier)

    if session.service_type == ServiceType.COURSE:
        return TierCheck(False, False, a_tier, s_tier, reason=COURSE_NOT_CREDITABLE)
    if ServiceType(allowance.service_type) != session.service_type:
        return TierCheck(False, False, a_tier, s_tier, reason=SERVICE_TYPE_MISMATCH)
    if a_tier < s_tier:
        return TierCheck(False, False, a_tier, s_tier, reason=TIER_TOO_LOW)

    is_cross = a_tier > s_tier
    warning = _cross_tier_message(allowance, session) if is_cross else None
    return TierCheck(True, is_cross, a_tier, s_tier, warning=warning)


def is_cross_tier_booking(allowance: AllowanceLike, session: SessionTierInfo) -> bool:
    return can_use_allowance_for_session(allowance, session).is_cross_tier


def get_allowance_display_label(allowance: AllowanceLike) -> str:
    """User-facing label such as "Private Credit" or "Premium Group Credit"."""
    service_type = ServiceType(allowance.service_type)
    premium = (allowance.teacher_tier_floor or 0) > 0
    if service_type == ServiceType.PRIVATE:
        return "Premium Private Credit" if premium else "Private Credit"
    if service_type == ServiceType.GROUP:
        return "Premium Group Credit" if premium else "Group Credit"
    return "Course Credit"


def _cross_tier_message(allowance: AllowanceLike, session: SessionTierInfo) -> str:
    session_label = "private class" if session.service_type == ServiceType.PRIVATE else "group class"
    return f"This will use a {get_allowance_display_label(allowance)} for a {session_label}"


def get_cross_tier_warning_message(allowance: AllowanceLike, session: SessionTierInfo) -> Optional[str]:
    """Warning for a cross-tier booking, None when the booking is not cross-tier."""
    if not is_cross_tier_booking(allowance, session):
        return None
    return _cross_tier_message(allowance, session)


def calculate_credits_required(session_duration_minutes: int, credit_unit_minutes: int) -> int:
    """Credits a session costs, always rounded up."""
    if credit_unit_minutes <= 0:
        raise ValueError("credit_unit_minutes must be positive")
    return math.ceil(session_duration_minutes / credit_unit_minutes)


def has_duration_mismatch(session_duration_minutes: int, credit_unit_minutes: int) -> bool:
    return session_duration_minutes != credit_unit_minutes


def get_duration_mismatch_warning(
    session_duration_minutes: int, credit_unit_minutes: int
) -> Optional[str]:
    """Explain unused or multiple-credit consumption; None when durations match."""
    if not has_duration_mismatch(session_duration_minutes, credit_unit_minutes):
        return None

    credits_required = calculate_credits_required(session_duration_minutes, credit_unit_minutes)

    if session_duration_minutes < credit_unit_minutes:
        unused_minutes = credit_unit_minutes - session_duration_minutes
        plural = "s" if credits_required > 1 else ""
        return (
            f"This session is {session_duration_minutes} minutes, but your credit is for "
            f"{credit_unit_minutes} minutes. You'll use {credits_required} credit{plural} "
            f"and {unused_minutes} minutes will not be saved."
        )
    return (
        f"This session requires {credits_required} of your {credit_unit_minutes}-minute "
        f"credits (total: {session_duration_minutes} minutes)"
    )


def select_allowance_for_session(
    allowances: Iterable[A], session: SessionTierInfo
) -> Optional[A]:
    """
    First usable allowance in declaration order.

    This is first-match, not best-fit: a cross-tier allowance declared
    earlier wins over an exact match declared later. Pass an explicit
    allowance to the ledger to choose otherwise.
    """
    ordered: Sequence[A] = sorted(allowances, key=lambda a: getattr(a, "sort_order", 0) or 0)
    for allowance in ordered:
        if can_use_allowance_for_session(allowance, session).can_use:
            return allowance
    return None
