from __future__ import annotations

from types import SimpleNamespace
from uuid import uuid4

from orderflow.models import Designer, Manufacturer, Material, Order, OrderItem


def add_order(db, *, org_id, item_count=1, quantity=10, code=None):
    order = Order(id=uuid4(), org_id=org_id, code=code or f"ORD-{uuid4().hex[:6]}")
    db.add(order)
    db.flush()
    items = []
    for index in range(item_count):
        item = OrderItem(
            id=uuid4(),
            org_id=org_id,
            order_id=order.id,
            name_snapshot=f"Jersey #{index + 1}",
            quantity=quantity,
            status_code="design",
        )
        db.add(item)
        items.append(item)
    db.commit()
    return SimpleNamespace(order=order, items=items)


def add_designer(db, *, org_id, name, specializations=(), capacity_limit=None, is_active=True):
    designer = Designer(
        id=uuid4(),
        org_id=org_id,
        name=name,
        specializations=list(specializations),
        capacity_limit=capacity_limit,
        is_active=is_active,
    )
    db.add(designer)
    db.commit()
    return designer


def add_manufacturer(
    db,
    *,
    org_id,
    name,
    specializations=(),
    capacity_limit=None,
    lead_time_days=None,
    minimum_order_quantity=None,
    is_active=True,
):
    manufacturer = Manufacturer(
        id=uuid4(),
        org_id=org_id,
        name=name,
        specializations=list(specializations),
        capacity_limit=capacity_limit,
        lead_time_days=lead_time_days,
        minimum_order_quantity=minimum_order_quantity,
        is_active=is_active,
    )
    db.add(manufacturer)
    db.commit()
    return manufacturer


def add_material(db, *, org_id, name, unit_cost, supplier_id=None, unit="yard"):
    material = Material(
        id=uuid4(),
        org_id=org_id,
        name=name,
        unit=unit,
        unit_cost=unit_cost,
        preferred_supplier_id=supplier_id,
    )
    db.add(material)
    db.commit()
    return material
