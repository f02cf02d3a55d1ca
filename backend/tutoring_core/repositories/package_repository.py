# backend/tutoring_core/repositories/package_repository.py
"""
Package Repository

Data access for credit packages and the PackageUse ledger:
- student packages with their product allowances
- the row lock taken before every debit
- ledger reads that skip voided entries
"""

from datetime import datetime
import logging
from typing import Dict, Iterable, List, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Query, Session, joinedload, lazyload, selectinload

from ..core.exceptions import RepositoryException
from ..models.package import PackageAllowance, PackageProduct, PackageUse, StudentPackage
from .base_repository import BaseRepository

logger = logging.getLogger(__name__)


class PackageRepository(BaseRepository[StudentPackage]):
    """Repository for student packages, product definitions and the usage ledger."""

    def __init__(self, db: Session):
        super().__init__(db, StudentPackage)

    def _apply_eager_loading(self, query: Query) -> Query:
        return query.options(
            joinedload(StudentPackage.product).selectinload(PackageProduct.allowances)
        )

    # Student packages

    def get_package_for_student(self, package_id: str, student_id: str) -> Optional[StudentPackage]:
        """Non-deleted package owned by ``student_id``."""
        try:
            return (
                self._apply_eager_loading(self._build_query())
                .filter(
                    StudentPackage.id == package_id,
                    StudentPackage.student_id == student_id,
                    StudentPackage.deleted_at.is_(None),
                )
                .first()
            )
        except SQLAlchemyError as e:
            self.logger.error("Error loading package %s for student %s: %s", package_id, student_id, e)
            raise RepositoryException(f"Failed to load package: {e}") from e

    def lock_package(self, package_id: str) -> Optional[StudentPackage]:
        """
        Re-read the package row under a write lock.

        Only the package row is locked; the product join is left out of the
        locking statement. SQLite ignores FOR UPDATE and relies on the
        BEGIN IMMEDIATE transaction taken by the engine.
        """
        try:
            query = (
                self.db.query(StudentPackage)
                .options(lazyload(StudentPackage.product))
                .filter(StudentPackage.id == package_id, StudentPackage.deleted_at.is_(None))
            )
            return self._for_update(query).first()
        except SQLAlchemyError as e:
            self.logger.error("Error locking package %s: %s", package_id, e)
            raise RepositoryException(f"Failed to lock package: {e}") from e

    def list_packages_for_student(self, student_id: str) -> List[StudentPackage]:
        """All non-deleted packages of a student, newest purchase first."""
        try:
            return (
                self._apply_eager_loading(self._build_query())
                .filter(StudentPackage.student_id == student_id, StudentPackage.deleted_at.is_(None))
                .order_by(StudentPackage.purchased_at.desc(), StudentPackage.id.desc())
                .all()
            )
        except SQLAlchemyError as e:
            self.logger.error("Error listing packages for student %s: %s", student_id, e)
            raise RepositoryException(f"Failed to list packages: {e}") from e

    # Ledger

    def get_active_uses(self, package_id: str) -> List[PackageUse]:
        """Non-voided ledger entries of one package."""
        try:
            return (
                self.db.query(PackageUse)
                .filter(PackageUse.student_package_id == package_id, PackageUse.deleted_at.is_(None))
                .order_by(PackageUse.used_at, PackageUse.id)
                .all()
            )
        except SQLAlchemyError as e:
            self.logger.error("Error loading uses for package %s: %s", package_id, e)
            raise RepositoryException(f"Failed to load package uses: {e}") from e

    def get_active_uses_by_package(self, package_ids: Iterable[str]) -> Dict[str, List[PackageUse]]:
        """Non-voided ledger entries grouped by package id."""
        ids = list(package_ids)
        grouped: Dict[str, List[PackageUse]] = {package_id: [] for package_id in ids}
        if not ids:
            return grouped
        try:
            rows = (
                self.db.query(PackageUse)
                .filter(PackageUse.student_package_id.in_(ids), PackageUse.deleted_at.is_(None))
                .all()
            )
        except SQLAlchemyError as e:
            self.logger.error("Error loading uses for packages: %s", e)
            raise RepositoryException(f"Failed to load package uses: {e}") from e
        for row in rows:
            grouped[row.student_package_id].append(row)
        return grouped

    def get_use(self, use_id: str) -> Optional[PackageUse]:
        try:
            return self.db.query(PackageUse).filter(PackageUse.id == use_id).first()
        except SQLAlchemyError as e:
            self.logger.error("Error loading package use %s: %s", use_id, e)
            raise RepositoryException(f"Failed to load package use: {e}") from e

    def create_use(self, **kwargs) -> PackageUse:
        """Append a ledger entry (flush only)."""
        return BaseRepository(self.db, PackageUse).create(**kwargs)

    def void_use(self, use: PackageUse, voided_at: datetime) -> PackageUse:
        """Tombstone a ledger entry so it no longer counts against the balance."""
        use.deleted_at = voided_at
        self.flush()
        return use

    # Product definitions

    def get_product(self, product_id: str) -> Optional[PackageProduct]:
        try:
            return (
                self.db.query(PackageProduct)
                .options(selectinload(PackageProduct.allowances))
                .filter(PackageProduct.id == product_id, PackageProduct.deleted_at.is_(None))
                .first()
            )
        except SQLAlchemyError as e:
            self.logger.error("Error loading product %s: %s", product_id, e)
            raise RepositoryException(f"Failed to load product: {e}") from e

    def create_product(self, *, allowances: List[Dict], **kwargs) -> PackageProduct:
        """Persist a product and its allowances in declaration order."""
        product = BaseRepository(self.db, PackageProduct).create(**kwargs)
        allowance_repo = BaseRepository(self.db, PackageAllowance)
        for index, data in enumerate(allowances):
            allowance_repo.create(product_id=product.id, sort_order=index, **data)
        self.db.expire(product, ["allowances"])
        return product
