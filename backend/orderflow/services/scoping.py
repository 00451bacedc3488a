"""Org-scoped loaders. A row from another org is reported exactly like a missing one."""

from __future__ import annotations

from uuid import UUID

from sqlalchemy.orm import Session

from ..domain_errors import NotFoundError
from ..models import Designer, Manufacturer, Material, Order, OrderItem


def _get_scoped_or_404(*, db: Session, model, entity_id: UUID, org_id: UUID, code: str, label: str):
    row = db.query(model).filter(
        model.id == entity_id,
        model.org_id == org_id,
    ).first()
    if not row:
        raise NotFoundError(code=code, message=f"{label} not found")
    return row


def get_order_or_404(*, db: Session, order_id: UUID, org_id: UUID) -> Order:
    return _get_scoped_or_404(
        db=db, model=Order, entity_id=order_id, org_id=org_id, code="ORDER_NOT_FOUND", label="Order"
    )


def get_order_item_or_404(*, db: Session, order_item_id: UUID, org_id: UUID) -> OrderItem:
    return _get_scoped_or_404(
        db=db,
        model=OrderItem,
        entity_id=order_item_id,
        org_id=org_id,
        code="ORDER_ITEM_NOT_FOUND",
        label="Order item",
    )


def get_designer_or_404(*, db: Session, designer_id: UUID, org_id: UUID) -> Designer:
    return _get_scoped_or_404(
        db=db, model=Designer, entity_id=designer_id, org_id=org_id, code="DESIGNER_NOT_FOUND", label="Designer"
    )


def get_manufacturer_or_404(*, db: Session, manufacturer_id: UUID, org_id: UUID) -> Manufacturer:
    return _get_scoped_or_404(
        db=db,
        model=Manufacturer,
        entity_id=manufacturer_id,
        org_id=org_id,
        code="MANUFACTURER_NOT_FOUND",
        label="Manufacturer",
    )


def get_material_or_404(*, db: Session, material_id: UUID, org_id: UUID) -> Material:
    return _get_scoped_or_404(
        db=db, model=Material, entity_id=material_id, org_id=org_id, code="MATERIAL_NOT_FOUND", label="Material"
    )
