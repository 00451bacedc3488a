"""Purchase order use-cases: creation, approval routing, status and receipt."""
from __future__ import annotations

import logging
from collections.abc import Sequence
from datetime import date, datetime, timedelta, timezone
from decimal import ROUND_HALF_UP, Decimal
from uuid import UUID, uuid4

from sqlalchemy import func
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from ..config import settings
from ..domain_errors import ConflictError, NotFoundError, ValidationError
from ..models import Manufacturer, Material, MaterialRequirement, PurchaseOrder, PurchaseOrderItem, WorkOrder
from ..schemas import PurchaseOrderCreate, PurchaseOrderItemCreate, ReceivedItem
from ..services import status_transitions as st
from ..services.audit import PurchaseOrderEventCode, record_event
from ..services.idempotency import is_unique_violation
from ..services.inventory import adjust_inventory, ensure_inventory
from ..services.scoping import get_manufacturer_or_404, get_material_or_404

logger = logging.getLogger(__name__)

_CENT = Decimal("0.01")

_STATUS_EVENT_CODES: dict[str, PurchaseOrderEventCode] = {
    "draft": PurchaseOrderEventCode.PO_DRAFT_SAVED,
    "pending_approval": PurchaseOrderEventCode.PO_SUBMITTED_FOR_APPROVAL,
    "approved": PurchaseOrderEventCode.PO_APPROVED,
    "sent": PurchaseOrderEventCode.PO_SENT_TO_SUPPLIER,
    "acknowledged": PurchaseOrderEventCode.PO_ACKNOWLEDGED_BY_SUPPLIER,
    "in_production": PurchaseOrderEventCode.PO_ITEMS_SHIPPED,
    "shipped": PurchaseOrderEventCode.PO_ITEMS_SHIPPED,
    "delivered": PurchaseOrderEventCode.PO_ITEMS_DELIVERED,
    "received": PurchaseOrderEventCode.PO_ITEMS_RECEIVED,
    "completed": PurchaseOrderEventCode.PO_COMPLETED,
    "cancelled": PurchaseOrderEventCode.PO_CANCELLED,
    "on_hold": PurchaseOrderEventCode.PO_PUT_ON_HOLD,
}

_RECEIVABLE_STATUSES = {"delivered", "received"}


def _money(value) -> Decimal:
    return Decimal(str(value)).quantize(_CENT, rounding=ROUND_HALF_UP)


def get_purchase_order_or_404(*, db: Session, purchase_order_id: UUID, org_id: UUID) -> PurchaseOrder:
    purchase_order = db.query(PurchaseOrder).filter(
        PurchaseOrder.id == purchase_order_id,
        PurchaseOrder.org_id == org_id,
    ).first()
    if not purchase_order:
        raise NotFoundError(code="PURCHASE_ORDER_NOT_FOUND", message="Purchase order not found")
    return purchase_order


def requires_approval(purchase_order: PurchaseOrder) -> bool:
    return _money(purchase_order.total_amount) >= _money(purchase_order.approval_threshold)


def estimate_delivery_date(*, supplier: Manufacturer, on: date | None = None) -> date:
    """Order date plus the supplier's lead time, or the default lead time when it has none."""
    day = on or datetime.now(timezone.utc).date()
    lead_time_days = supplier.lead_time_days or settings.DEFAULT_SUPPLIER_LEAD_TIME_DAYS
    return day + timedelta(days=lead_time_days)


def next_po_number(*, db: Session, org_id: UUID, on: date | None = None) -> str:
    """``PO-YYYYMMDD-NNNN`` with NNNN = POs already numbered that day + 1."""
    day = on or datetime.now(timezone.utc).date()
    prefix = f"PO-{day:%Y%m%d}-"
    count = db.query(func.count(PurchaseOrder.id)).filter(
        PurchaseOrder.org_id == org_id,
        PurchaseOrder.po_number.like(f"{prefix}%"),
    ).scalar() or 0
    return f"{prefix}{count + 1:04d}"


def _record_status_event(
    *,
    db: Session,
    purchase_order: PurchaseOrder,
    status: str,
    actor_id: UUID | None,
    payload: dict,
) -> None:
    record_event(
        db=db,
        kind=st.PURCHASE_ORDER,
        entity_id=purchase_order.id,
        org_id=purchase_order.org_id,
        code=_STATUS_EVENT_CODES[status],
        actor_id=actor_id,
        payload=payload,
    )


def _commit_or_conflict(*, db: Session, purchase_order: PurchaseOrder, flush_only: bool = False) -> None:
    po_number = purchase_order.po_number
    try:
        if flush_only:
            db.flush()
        else:
            db.commit()
    except IntegrityError as exc:
        db.rollback()
        if not is_unique_violation(exc):
            raise
        raise ConflictError(
            code="PO_NUMBER_TAKEN",
            message="Purchase order number was taken concurrently; retry the request",
            details={"po_number": po_number},
        ) from exc


def _load_requirement(*, db: Session, requirement_id: UUID, org_id: UUID) -> MaterialRequirement:
    requirement = db.query(MaterialRequirement).filter(
        MaterialRequirement.id == requirement_id,
        MaterialRequirement.org_id == org_id,
    ).first()
    if not requirement:
        raise NotFoundError(code="MATERIAL_REQUIREMENT_NOT_FOUND", message="Material requirement not found")
    return requirement


def create_purchase_order_use_case(
    *,
    db: Session,
    org_id: UUID,
    data: PurchaseOrderCreate,
    actor_id: UUID | None = None,
) -> PurchaseOrder:
    """Create a PO; totals at or above the approval threshold start in pending_approval.

    Linked material requirements are marked ordered in the same transaction.
    """
    supplier = get_manufacturer_or_404(db=db, manufacturer_id=data.supplier_id, org_id=org_id)

    requirements: list[MaterialRequirement] = []
    for line in data.items:
        if line.material_id is not None:
            get_material_or_404(db=db, material_id=line.material_id, org_id=org_id)
        if line.material_requirement_id is not None:
            requirement = _load_requirement(db=db, requirement_id=line.material_requirement_id, org_id=org_id)
            if requirement.status != "pending":
                raise ValidationError(
                    code="REQUIREMENT_ALREADY_ORDERED",
                    message="Material requirement is not pending",
                    details={"requirement_id": str(requirement.id), "status": requirement.status},
                )
            requirements.append(requirement)

    ensure_inventory(db=db, org_id=org_id, material_ids=[line.material_id for line in data.items])

    threshold = data.approval_threshold
    if threshold is None:
        threshold = Decimal(str(settings.DEFAULT_APPROVAL_THRESHOLD))

    line_totals = [_money(line.quantity * line.unit_cost) for line in data.items]
    purchase_order = PurchaseOrder(
        id=uuid4(),
        org_id=org_id,
        po_number=next_po_number(db=db, org_id=org_id),
        supplier_id=data.supplier_id,
        priority=data.priority,
        currency=data.currency.upper(),
        total_amount=_money(sum(line_totals, Decimal("0"))),
        approval_threshold=_money(threshold),
        expected_delivery_date=data.expected_delivery_date or estimate_delivery_date(supplier=supplier),
        requested_by=actor_id,
        notes=data.notes,
    )
    purchase_order.status_code = "pending_approval" if requires_approval(purchase_order) else "draft"
    db.add(purchase_order)
    _commit_or_conflict(db=db, purchase_order=purchase_order, flush_only=True)

    for number, (line, line_total) in enumerate(zip(data.items, line_totals), start=1):
        db.add(
            PurchaseOrderItem(
                org_id=org_id,
                purchase_order_id=purchase_order.id,
                material_id=line.material_id,
                material_requirement_id=line.material_requirement_id,
                material_name=line.material_name,
                description=line.description,
                quantity=line.quantity,
                unit=line.unit,
                unit_cost=_money(line.unit_cost),
                total_cost=line_total,
                quantity_received=0,
                line_number=number,
            )
        )
        if line.material_id is not None:
            adjust_inventory(db=db, org_id=org_id, material_id=line.material_id, on_order=line.quantity)

    for requirement in requirements:
        requirement.status = "ordered"

    work_order_ids = sorted({str(requirement.work_order_id) for requirement in requirements})
    record_event(
        db=db,
        kind=st.PURCHASE_ORDER,
        entity_id=purchase_order.id,
        org_id=org_id,
        code=PurchaseOrderEventCode.PO_CREATED,
        actor_id=actor_id,
        payload={
            "po_number": purchase_order.po_number,
            "supplier_id": purchase_order.supplier_id,
            "total_amount": purchase_order.total_amount,
            "work_order_ids": work_order_ids,
        },
    )
    _record_status_event(
        db=db,
        purchase_order=purchase_order,
        status=purchase_order.status_code,
        actor_id=actor_id,
        payload={"total_amount": purchase_order.total_amount, "approval_threshold": purchase_order.approval_threshold},
    )

    _commit_or_conflict(db=db, purchase_order=purchase_order)

    logger.info(
        "Purchase order %s created for supplier %s (%s %s)",
        purchase_order.po_number,
        purchase_order.supplier_id,
        purchase_order.total_amount,
        purchase_order.currency,
    )
    return purchase_order


def pending_requirements_for_work_orders(
    *,
    db: Session,
    org_id: UUID,
    work_order_ids: Sequence[UUID],
) -> list[MaterialRequirement]:
    if not work_order_ids:
        return []
    found = {
        row_id
        for (row_id,) in db.query(WorkOrder.id).filter(
            WorkOrder.org_id == org_id,
            WorkOrder.id.in_(list(work_order_ids)),
        ).all()
    }
    missing = [str(work_order_id) for work_order_id in work_order_ids if work_order_id not in found]
    if missing:
        raise NotFoundError(
            code="WORK_ORDER_NOT_FOUND",
            message="Work order not found",
            details={"work_order_ids": missing},
        )
    return (
        db.query(MaterialRequirement)
        .filter(
            MaterialRequirement.org_id == org_id,
            MaterialRequirement.work_order_id.in_(list(work_order_ids)),
            MaterialRequirement.status == "pending",
        )
        .order_by(MaterialRequirement.created_at.asc(), MaterialRequirement.id.asc())
        .all()
    )


def bulk_generate_purchase_orders_use_case(
    *,
    db: Session,
    org_id: UUID,
    work_order_ids: Sequence[UUID],
    actor_id: UUID | None = None,
) -> list[PurchaseOrder]:
    """One PO per preferred supplier over the work orders' pending requirements.

    Requirements whose material has no preferred supplier stay pending.
    """
    requirements = pending_requirements_for_work_orders(db=db, org_id=org_id, work_order_ids=work_order_ids)

    groups: dict[UUID, list[tuple[MaterialRequirement, Material]]] = {}
    for requirement in requirements:
        material = get_material_or_404(db=db, material_id=requirement.material_id, org_id=org_id)
        if material.preferred_supplier_id is None:
            logger.warning("Material %s has no preferred supplier; requirement %s left pending", material.id, requirement.id)
            continue
        groups.setdefault(material.preferred_supplier_id, []).append((requirement, material))

    purchase_orders = []
    for supplier_id, rows in groups.items():
        needed_by = [requirement.needed_by_date for requirement, _ in rows if requirement.needed_by_date]
        data = PurchaseOrderCreate(
            supplier_id=supplier_id,
            priority=settings.DEFAULT_PO_PRIORITY,
            currency=settings.DEFAULT_CURRENCY,
            expected_delivery_date=None,
            notes="Generated from material requirements",
            items=[
                PurchaseOrderItemCreate(
                    material_id=material.id,
                    material_requirement_id=requirement.id,
                    material_name=material.name,
                    quantity=Decimal(str(requirement.quantity_needed)) - Decimal(str(requirement.quantity_fulfilled or 0)),
                    unit=material.unit,
                    unit_cost=Decimal(str(material.unit_cost or 0)),
                )
                for requirement, material in rows
            ],
        )
        purchase_order = create_purchase_order_use_case(db=db, org_id=org_id, data=data, actor_id=actor_id)
        if needed_by and purchase_order.expected_delivery_date > min(needed_by):
            logger.warning(
                "Purchase order %s is expected %s, after the earliest needed-by date %s",
                purchase_order.po_number,
                purchase_order.expected_delivery_date,
                min(needed_by),
            )
        purchase_orders.append(purchase_order)
    return purchase_orders


def approve_purchase_order_use_case(
    *,
    db: Session,
    org_id: UUID,
    purchase_order_id: UUID,
    actor_id: UUID | None = None,
    notes: str | None = None,
) -> PurchaseOrder:
    purchase_order = get_purchase_order_or_404(db=db, purchase_order_id=purchase_order_id, org_id=org_id)
    if not requires_approval(purchase_order):
        raise ValidationError(
            code="APPROVAL_NOT_REQUIRED",
            message="Purchase order total is below the approval threshold",
            details={
                "total_amount": str(purchase_order.total_amount),
                "approval_threshold": str(purchase_order.approval_threshold),
            },
        )
    st.ensure_transition(st.PURCHASE_ORDER, purchase_order.status_code, "approved")

    previous = purchase_order.status_code
    purchase_order.status_code = "approved"
    purchase_order.approved_by = actor_id
    purchase_order.approved_at = datetime.now(timezone.utc)
    _record_status_event(
        db=db,
        purchase_order=purchase_order,
        status="approved",
        actor_id=actor_id,
        payload={"from": previous, "to": "approved", "approved_by": actor_id, "notes": notes},
    )
    db.commit()
    return purchase_order


def update_purchase_order_status_use_case(
    *,
    db: Session,
    org_id: UUID,
    purchase_order_id: UUID,
    new_status: str,
    actor_id: UUID | None = None,
    notes: str | None = None,
) -> PurchaseOrder:
    purchase_order = get_purchase_order_or_404(db=db, purchase_order_id=purchase_order_id, org_id=org_id)
    st.ensure_transition(st.PURCHASE_ORDER, purchase_order.status_code, new_status)
    if new_status == "approved" and requires_approval(purchase_order) and purchase_order.approved_by is None:
        raise ValidationError(
            code="APPROVAL_REQUIRED",
            message="Purchase order total requires explicit approval",
        )
    if new_status == "cancelled":
        ensure_inventory(db=db, org_id=org_id, material_ids=[line.material_id for line in purchase_order.items])

    previous = purchase_order.status_code
    purchase_order.status_code = new_status
    if new_status == "cancelled":
        _release_requirements(db=db, purchase_order=purchase_order)
        _release_on_order(db=db, purchase_order=purchase_order)
    _record_status_event(
        db=db,
        purchase_order=purchase_order,
        status=new_status,
        actor_id=actor_id,
        payload={"from": previous, "to": new_status, "notes": notes},
    )
    db.commit()
    return purchase_order


def _release_requirements(*, db: Session, purchase_order: PurchaseOrder) -> None:
    """Cancelled POs hand their ordered requirements back to the pending pool."""
    requirement_ids = [item.material_requirement_id for item in purchase_order.items if item.material_requirement_id]
    if not requirement_ids:
        return
    for requirement in db.query(MaterialRequirement).filter(
        MaterialRequirement.org_id == purchase_order.org_id,
        MaterialRequirement.id.in_(requirement_ids),
        MaterialRequirement.status == "ordered",
    ).all():
        requirement.status = "pending"


def _release_on_order(*, db: Session, purchase_order: PurchaseOrder) -> None:
    """Take whatever was never received off the on-order stock."""
    for line in purchase_order.items:
        if line.material_id is None:
            continue
        outstanding = Decimal(str(line.quantity)) - Decimal(str(line.quantity_received or 0))
        if outstanding > 0:
            adjust_inventory(db=db, org_id=purchase_order.org_id, material_id=line.material_id, on_order=-outstanding)


def receive_purchase_order_items_use_case(
    *,
    db: Session,
    org_id: UUID,
    purchase_order_id: UUID,
    items: Sequence[ReceivedItem],
    actor_id: UUID | None = None,
    notes: str | None = None,
) -> PurchaseOrder:
    """Book received quantities; the PO completes once every line is fully received."""
    purchase_order = get_purchase_order_or_404(db=db, purchase_order_id=purchase_order_id, org_id=org_id)
    if purchase_order.status_code not in _RECEIVABLE_STATUSES:
        raise ValidationError(
            code="PO_NOT_DELIVERED",
            message=f"Cannot receive items for a purchase order in status {purchase_order.status_code}",
        )
    if not items:
        raise ValidationError(code="NO_ITEMS_RECEIVED", message="At least one received item is required")

    lines = {line.id: line for line in purchase_order.items}
    # Every line is checked before any of them changes.
    totals: dict[UUID, Decimal] = {}
    for received in items:
        line = lines.get(received.item_id)
        if line is None:
            raise NotFoundError(code="PO_ITEM_NOT_FOUND", message="Purchase order item not found")
        new_total = totals.get(line.id, Decimal(str(line.quantity_received or 0))) + received.quantity_received
        if new_total > Decimal(str(line.quantity)):
            raise ValidationError(
                code="OVER_RECEIPT",
                message="Received quantity exceeds ordered quantity",
                details={"item_id": str(line.id), "ordered": str(line.quantity), "received": str(new_total)},
            )
        totals[line.id] = new_total

    ensure_inventory(db=db, org_id=org_id, material_ids=[lines[line_id].material_id for line_id in totals])

    now = datetime.now(timezone.utc)
    received_payload = []
    for received in items:
        line = lines[received.item_id]
        line.quantity_received = Decimal(str(line.quantity_received or 0)) + received.quantity_received
        line.date_received = now
        if received.quality_check_passed is not None:
            line.quality_check_passed = received.quality_check_passed
        if received.quality_notes is not None:
            line.quality_notes = received.quality_notes
        received_payload.append({"id": line.id, "quantity_received": received.quantity_received})
        if line.material_id is not None:
            adjust_inventory(
                db=db,
                org_id=org_id,
                material_id=line.material_id,
                on_hand=received.quantity_received,
                on_order=-received.quantity_received,
            )

    previous = purchase_order.status_code
    if previous == "delivered":
        st.ensure_transition(st.PURCHASE_ORDER, previous, "received")
        purchase_order.status_code = "received"
    _record_status_event(
        db=db,
        purchase_order=purchase_order,
        status="received",
        actor_id=actor_id,
        payload={"from": previous, "items": received_payload, "notes": notes},
    )

    fully_received = [
        line for line in lines.values()
        if Decimal(str(line.quantity_received or 0)) >= Decimal(str(line.quantity))
    ]
    requirement_ids = [line.material_requirement_id for line in fully_received if line.material_requirement_id]
    if requirement_ids:
        for requirement in db.query(MaterialRequirement).filter(
            MaterialRequirement.org_id == org_id,
            MaterialRequirement.id.in_(requirement_ids),
        ).all():
            requirement.status = "received"
            requirement.quantity_fulfilled = requirement.quantity_needed

    if len(fully_received) == len(lines):
        st.ensure_transition(st.PURCHASE_ORDER, purchase_order.status_code, "completed")
        purchase_order.status_code = "completed"
        _record_status_event(
            db=db,
            purchase_order=purchase_order,
            status="completed",
            actor_id=actor_id,
            payload={"from": "received", "to": "completed"},
        )

    db.commit()
    return purchase_order
