import logging
import uuid
from typing import List, Optional, Union

from sqlalchemy import select, update
from sqlalchemy.orm import Session, selectinload

from examprep.core.errors import InvalidState, NotFound, StaleEntitlement, Unauthorized
from examprep.models.orm import Package, Purchase, PurchaseStatus, SessionKind

logger = logging.getLogger(__name__)


def as_uuid(value: Union[str, uuid.UUID], what: str) -> uuid.UUID:
    if isinstance(value, uuid.UUID):
        return value
    try:
        return uuid.UUID(str(value))
    except ValueError:
        raise NotFound(f"{what} not found", {"id": str(value)})


class EntitlementLedger:
    """Purchases and their session quotas."""

    def __init__(self, db: Session):
        self.db = db

    def list_packages(self, kind: Optional[SessionKind] = None) -> List[Package]:
        stmt = select(Package).where(Package.is_active.is_(True)).order_by(Package.session_qty.asc(), Package.id)
        if kind is not None:
            stmt = stmt.where(Package.kind == kind)
        return list(self.db.scalars(stmt).all())

    def list_purchases(self, user_id: str) -> List[Purchase]:
        stmt = (
            select(Purchase)
            .options(selectinload(Purchase.package))
            .where(Purchase.user_id == user_id)
            .order_by(Purchase.purchased_at.desc())
        )
        return list(self.db.scalars(stmt).all())

    def grant_purchase(self, user_id: str, package_id: int, payment_id: Optional[str] = None) -> Purchase:
        """Record a paid purchase. Billing calls this once payment clears."""
        package = self.db.get(Package, package_id)
        if package is None or not package.is_active:
            raise NotFound("Package not found", {"package_id": package_id})
        purchase = Purchase(
            user_id=user_id,
            package_id=package.id,
            payment_id=payment_id,
            sessions_total=package.session_qty,
            sessions_used=0,
            status=PurchaseStatus.ACTIVE,
            version=0,
        )
        purchase.package = package
        self.db.add(purchase)
        self.db.flush()
        logger.info("Purchase %s granted to user %s (%d sessions)", purchase.id, user_id, package.session_qty)
        return purchase

    def lock_purchase(self, purchase_id: Union[str, uuid.UUID]) -> Purchase:
        """Load a purchase FOR UPDATE, with its package."""
        pid = as_uuid(purchase_id, "Purchase")
        purchase = self.db.scalar(
            select(Purchase)
            .options(selectinload(Purchase.package))
            .where(Purchase.id == pid)
            .with_for_update(of=Purchase)
            .execution_options(populate_existing=True)
        )
        if purchase is None:
            raise NotFound("Purchase not found", {"purchase_id": str(pid)})
        return purchase

    def ensure_available(self, purchase: Purchase, user_id: str) -> None:
        if purchase.user_id != user_id:
            raise Unauthorized("Purchase belongs to another user", {"purchase_id": str(purchase.id)})
        if purchase.status != PurchaseStatus.ACTIVE:
            raise InvalidState(
                "Purchase is not active",
                {"purchase_id": str(purchase.id), "status": purchase.status.value},
            )
        if purchase.sessions_used >= purchase.sessions_total:
            raise InvalidState(
                "No sessions remaining on this purchase",
                {"purchase_id": str(purchase.id), "sessions_total": purchase.sessions_total},
            )

    def consume(self, purchase: Purchase) -> None:
        """Increment sessions_used iff the row is unchanged since it was read."""
        result = self.db.execute(
            update(Purchase)
            .where(
                Purchase.id == purchase.id,
                Purchase.version == purchase.version,
                Purchase.status == PurchaseStatus.ACTIVE,
                Purchase.sessions_used < Purchase.sessions_total,
            )
            .values(sessions_used=Purchase.sessions_used + 1, version=Purchase.version + 1)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            raise StaleEntitlement(purchase.id)
