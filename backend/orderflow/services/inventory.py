"""Material stock bookkeeping.

Purchase orders move quantities between two buckets per material:
``quantity_on_order`` grows when a PO is raised and shrinks when it is
cancelled or received; receipts land in ``quantity_on_hand``.
"""
from __future__ import annotations

import logging
from collections.abc import Iterable
from datetime import datetime, timezone
from decimal import Decimal
from uuid import UUID, uuid4

from sqlalchemy.orm import Session

from ..domain_errors import NotFoundError
from ..models import MaterialInventory
from .idempotency import create_or_fetch

logger = logging.getLogger(__name__)


def get_inventory(*, db: Session, org_id: UUID, material_id: UUID) -> MaterialInventory | None:
    return db.query(MaterialInventory).filter(
        MaterialInventory.org_id == org_id,
        MaterialInventory.material_id == material_id,
    ).first()


def _ensure_one(*, db: Session, org_id: UUID, material_id: UUID) -> MaterialInventory:
    def lookup() -> MaterialInventory | None:
        return get_inventory(db=db, org_id=org_id, material_id=material_id)

    def create() -> MaterialInventory:
        row = MaterialInventory(
            id=uuid4(),
            org_id=org_id,
            material_id=material_id,
            quantity_on_hand=0,
            quantity_on_order=0,
        )
        db.add(row)
        return row

    row, _created = create_or_fetch(db=db, lookup=lookup, create=create)
    return row


def ensure_inventory(*, db: Session, org_id: UUID, material_ids: Iterable[UUID | None]) -> None:
    """Make sure every material has a stock row.

    Commits when rows are created, so call it before the caller's own
    changes start.
    """
    for material_id in dict.fromkeys(material_ids):
        if material_id is not None:
            _ensure_one(db=db, org_id=org_id, material_id=material_id)


def adjust_inventory(
    *,
    db: Session,
    org_id: UUID,
    material_id: UUID,
    on_hand: Decimal | int = 0,
    on_order: Decimal | int = 0,
) -> None:
    """Shift stock in the caller's transaction.

    The increment runs in SQL so concurrent adjustments of the same
    material add up instead of overwriting each other.
    """
    on_hand = Decimal(str(on_hand))
    on_order = Decimal(str(on_order))
    if not on_hand and not on_order:
        return
    updated = db.query(MaterialInventory).filter(
        MaterialInventory.org_id == org_id,
        MaterialInventory.material_id == material_id,
    ).update(
        {
            MaterialInventory.quantity_on_hand: MaterialInventory.quantity_on_hand + on_hand,
            MaterialInventory.quantity_on_order: MaterialInventory.quantity_on_order + on_order,
            MaterialInventory.updated_at: datetime.now(timezone.utc),
        },
        synchronize_session=False,
    )
    if not updated:
        raise NotFoundError(
            code="INVENTORY_NOT_FOUND",
            message="Material has no inventory record",
            details={"material_id": str(material_id)},
        )
    logger.debug("Inventory of material %s moved: on_hand %s, on_order %s", material_id, on_hand, on_order)
