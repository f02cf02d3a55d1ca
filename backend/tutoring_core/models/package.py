# backend/tutoring_core/models/package.py
"""
Credit package models.

- PackageProduct: purchasable bundle definition
- PackageAllowance: one credit type inside a bundle (immutable once created)
- StudentPackage: a student's purchased bundle instance
- PackageUse: append-only ledger entry, the only source of balances

Balances are never stored. ``remaining = credits - SUM(credits_used)`` is
computed from non-voided PackageUse rows on every read.
"""

from datetime import datetime
from typing import Any, Dict, List, Optional

from sqlalchemy import (
    JSON,
    Boolean,
    CheckConstraint,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
    func,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from ..core.ulid_helper import generate_ulid
from ..database import Base
from .types import UTCDateTime


class PackageProduct(Base):
    """A purchasable bundle of allowances."""

    __tablename__ = "package_product"

    id: Mapped[str] = mapped_column(String(26), primary_key=True, default=generate_ulid)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    validity_days: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    created_at: Mapped[datetime] = mapped_column(UTCDateTime(), server_default=func.now(), nullable=False)
    deleted_at: Mapped[Optional[datetime]] = mapped_column(UTCDateTime(), nullable=True)

    allowances: Mapped[List["PackageAllowance"]] = relationship(
        "PackageAllowance",
        back_populates="product",
        order_by="PackageAllowance.sort_order",
        lazy="selectin",
    )

    def __repr__(self) -> str:
        return f"<PackageProduct(id={self.id}, name={self.name})>"


class PackageAllowance(Base):
    """
    One credit-type entitlement inside a product.

    ``sort_order`` is the declaration order used for first-match allowance
    selection.
    """

    __tablename__ = "package_allowance"

    id: Mapped[str] = mapped_column(String(26), primary_key=True, default=generate_ulid)
    product_id: Mapped[str] = mapped_column(
        String(26), ForeignKey("package_product.id", ondelete="CASCADE"), nullable=False
    )
    service_type: Mapped[str] = mapped_column(String(20), nullable=False)
    teacher_tier_floor: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    credits: Mapped[int] = mapped_column(Integer, nullable=False)
    credit_unit_minutes: Mapped[int] = mapped_column(Integer, nullable=False, default=30)
    sort_order: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    created_at: Mapped[datetime] = mapped_column(UTCDateTime(), server_default=func.now(), nullable=False)

    product: Mapped["PackageProduct"] = relationship("PackageProduct", back_populates="allowances")

    __table_args__ = (
        UniqueConstraint("product_id", "service_type", name="uq_package_allowance_product_service_type"),
        CheckConstraint("credits > 0", name="ck_package_allowance_credits_positive"),
        CheckConstraint("teacher_tier_floor >= 0", name="ck_package_allowance_tier_floor"),
        CheckConstraint(
            "credit_unit_minutes IN (15, 30, 45, 60)", name="ck_package_allowance_unit_minutes"
        ),
    )

    def __repr__(self) -> str:
        return (
            f"<PackageAllowance(id={self.id}, type={self.service_type}, "
            f"floor={self.teacher_tier_floor}, credits={self.credits})>"
        )


class StudentPackage(Base):
    """A purchased bundle owned by one student."""

    __tablename__ = "student_package"

    id: Mapped[str] = mapped_column(String(26), primary_key=True, default=generate_ulid)
    student_id: Mapped[str] = mapped_column(String(26), nullable=False, index=True)
    product_id: Mapped[str] = mapped_column(String(26), ForeignKey("package_product.id"), nullable=False)
    package_name: Mapped[str] = mapped_column(String(255), nullable=False)
    purchased_at: Mapped[datetime] = mapped_column(UTCDateTime(), nullable=False)
    expires_at: Mapped[Optional[datetime]] = mapped_column(UTCDateTime(), nullable=True)
    source_payment_id: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    # "metadata" is reserved on declarative classes
    package_metadata: Mapped[Optional[Dict[str, Any]]] = mapped_column("metadata", JSON, nullable=True)

    created_at: Mapped[datetime] = mapped_column(UTCDateTime(), server_default=func.now(), nullable=False)
    deleted_at: Mapped[Optional[datetime]] = mapped_column(UTCDateTime(), nullable=True)

    product: Mapped["PackageProduct"] = relationship("PackageProduct", lazy="joined")

    @property
    def allowances(self) -> List["PackageAllowance"]:
        return list(self.product.allowances) if self.product else []

    def __repr__(self) -> str:
        return f"<StudentPackage(id={self.id}, student={self.student_id}, name={self.package_name})>"


class PackageUse(Base):
    """
    Append-only ledger entry recording credits spent from a package.

    ``allowance_id`` is NULL on legacy rows written before per-allowance
    tracking; those are attributed by ``service_type``. A voided entry
    (refunded cancellation) carries ``deleted_at`` and no longer counts.
    """

    __tablename__ = "package_use"

    id: Mapped[str] = mapped_column(String(26), primary_key=True, default=generate_ulid)
    student_package_id: Mapped[str] = mapped_column(
        String(26), ForeignKey("student_package.id"), nullable=False
    )
    allowance_id: Mapped[Optional[str]] = mapped_column(
        String(26), ForeignKey("package_allowance.id"), nullable=True
    )
    session_id: Mapped[str] = mapped_column(String(26), ForeignKey("session.id"), nullable=False)
    # Back-filled once the booking exists; the booking row holds the enforced FK
    booking_id: Mapped[Optional[str]] = mapped_column(String(26), nullable=True, index=True)
    service_type: Mapped[Optional[str]] = mapped_column(String(20), nullable=True)
    credits_used: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    used_at: Mapped[datetime] = mapped_column(UTCDateTime(), nullable=False)
    used_by: Mapped[Optional[str]] = mapped_column(String(26), nullable=True)
    note: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    deleted_at: Mapped[Optional[datetime]] = mapped_column(UTCDateTime(), nullable=True)

    __table_args__ = (
        CheckConstraint("credits_used >= 1", name="ck_package_use_credits_used"),
        Index("idx_package_use_package_allowance", "student_package_id", "allowance_id"),
    )

    def __repr__(self) -> str:
        return (
            f"<PackageUse(id={self.id}, package={self.student_package_id}, "
            f"allowance={self.allowance_id}, credits={self.credits_used})>"
        )
