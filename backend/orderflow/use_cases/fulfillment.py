"""Order-level fulfillment: milestone seeding, milestone updates and status."""
from __future__ import annotations

import logging
from datetime import datetime, timezone
from uuid import UUID

from sqlalchemy.orm import Session

from ..domain_errors import NotFoundError, ValidationError
from ..models import FulfillmentMilestone, Order
from ..schemas import FulfillmentMilestoneUpdate
from ..services import milestones as ms
from ..services import status_transitions as st
from ..services.audit import FulfillmentEventCode, record_event
from ..services.idempotency import create_or_fetch
from ..services.scoping import get_order_or_404

logger = logging.getLogger(__name__)

_TEMPLATE_ORDER = {template.code: index for index, template in enumerate(ms.DEFAULT_FULFILLMENT_MILESTONES)}


def list_milestones(*, db: Session, org_id: UUID, order_id: UUID) -> list[FulfillmentMilestone]:
    rows = db.query(FulfillmentMilestone).filter(
        FulfillmentMilestone.org_id == org_id,
        FulfillmentMilestone.order_id == order_id,
    ).all()
    return sorted(rows, key=lambda row: (_TEMPLATE_ORDER.get(row.milestone_code, len(_TEMPLATE_ORDER)), row.milestone_code))


def _get_milestone_or_404(*, db: Session, org_id: UUID, order_id: UUID, milestone_code: str) -> FulfillmentMilestone:
    milestone = db.query(FulfillmentMilestone).filter(
        FulfillmentMilestone.org_id == org_id,
        FulfillmentMilestone.order_id == order_id,
        FulfillmentMilestone.milestone_code == milestone_code,
    ).first()
    if not milestone:
        raise NotFoundError(code="FULFILLMENT_MILESTONE_NOT_FOUND", message="Fulfillment milestone not found")
    return milestone


def _set_milestone_status(
    *,
    db: Session,
    milestone: FulfillmentMilestone,
    target: str,
    actor_id: UUID | None,
    blocked_reason: str | None = None,
    notes: str | None = None,
) -> None:
    st.ensure_transition(st.FULFILLMENT_MILESTONE, milestone.status, target)
    previous = milestone.status
    milestone.status = target
    if target == "blocked":
        milestone.blocked_reason = blocked_reason
    elif previous == "blocked":
        milestone.blocked_reason = None
    if target == "completed":
        milestone.completed_at = datetime.now(timezone.utc)
        milestone.completed_by = actor_id
    if notes is not None:
        milestone.notes = notes
    record_event(
        db=db,
        kind=st.FULFILLMENT,
        entity_id=milestone.order_id,
        org_id=milestone.org_id,
        code=FulfillmentEventCode.MILESTONE_UPDATED,
        actor_id=actor_id,
        payload={
            "milestone_code": milestone.milestone_code,
            "from": previous,
            "to": target,
            "blocked_reason": milestone.blocked_reason,
        },
    )


def _move_order(*, db: Session, order: Order, target: str, actor_id: UUID | None, notes: str | None = None) -> None:
    st.ensure_transition(st.FULFILLMENT, order.fulfillment_status_code, target)
    previous = order.fulfillment_status_code
    order.fulfillment_status_code = target
    record_event(
        db=db,
        kind=st.FULFILLMENT,
        entity_id=order.id,
        org_id=order.org_id,
        code=FulfillmentEventCode.STATUS_UPDATED,
        actor_id=actor_id,
        payload={"from": previous, "to": target, "notes": notes},
    )


def _ensure_critical_milestones_completed(*, db: Session, org_id: UUID, order_id: UUID) -> None:
    incomplete = [
        row.milestone_name
        for row in list_milestones(db=db, org_id=org_id, order_id=order_id)
        if row.milestone_code in ms.CRITICAL_FULFILLMENT_MILESTONES and row.status != "completed"
    ]
    if incomplete:
        raise ValidationError(
            code="CRITICAL_MILESTONES_INCOMPLETE",
            message=f"Cannot complete order: pending milestones - {', '.join(incomplete)}",
            details={"milestones": incomplete},
        )


def start_fulfillment_use_case(
    *,
    db: Session,
    org_id: UUID,
    order_id: UUID,
    actor_id: UUID | None = None,
    notes: str | None = None,
) -> tuple[Order, bool]:
    """Seed the default milestone set once per order; repeated calls return the existing state."""
    order = get_order_or_404(db=db, order_id=order_id, org_id=org_id)

    def lookup() -> FulfillmentMilestone | None:
        return db.query(FulfillmentMilestone).filter(
            FulfillmentMilestone.org_id == org_id,
            FulfillmentMilestone.order_id == order.id,
        ).first()

    def create() -> FulfillmentMilestone:
        now = datetime.now(timezone.utc)
        rows = []
        for template in ms.DEFAULT_FULFILLMENT_MILESTONES:
            confirmed = template.code in ms.PRECOMPLETED_FULFILLMENT_MILESTONES
            row = FulfillmentMilestone(
                org_id=org_id,
                order_id=order.id,
                milestone_code=template.code,
                milestone_name=template.name,
                milestone_type=template.milestone_type,
                status="completed" if confirmed else "pending",
                completed_at=now if confirmed else None,
                completed_by=actor_id if confirmed else None,
                notes=notes if confirmed else None,
            )
            db.add(row)
            rows.append(row)

        previous = order.fulfillment_status_code
        if st.can_transition(st.FULFILLMENT, previous, "preparation"):
            order.fulfillment_status_code = "preparation"
        record_event(
            db=db,
            kind=st.FULFILLMENT,
            entity_id=order.id,
            org_id=org_id,
            code=FulfillmentEventCode.FULFILLMENT_STARTED,
            actor_id=actor_id,
            payload={
                "milestone_codes": [row.milestone_code for row in rows],
                "from": previous,
                "to": order.fulfillment_status_code,
                "notes": notes,
            },
        )
        return rows[0]

    _milestone, created = create_or_fetch(db=db, lookup=lookup, create=create)
    if created:
        logger.info("Fulfillment started for order %s", order.id)
    return order, created


def update_fulfillment_milestone_use_case(
    *,
    db: Session,
    org_id: UUID,
    order_id: UUID,
    milestone_code: str,
    data: FulfillmentMilestoneUpdate,
    actor_id: UUID | None = None,
) -> FulfillmentMilestone:
    order = get_order_or_404(db=db, order_id=order_id, org_id=org_id)
    milestone = _get_milestone_or_404(db=db, org_id=org_id, order_id=order.id, milestone_code=milestone_code)

    if data.status == "blocked" and not data.blocked_reason:
        raise ValidationError(code="BLOCKED_REASON_REQUIRED", message="A blocked milestone needs a reason")
    if data.status == "completed" and milestone.milestone_code == ms.COMPLETED:
        _ensure_critical_milestones_completed(db=db, org_id=org_id, order_id=order.id)

    _set_milestone_status(
        db=db,
        milestone=milestone,
        target=data.status,
        actor_id=actor_id,
        blocked_reason=data.blocked_reason,
        notes=data.notes,
    )
    db.commit()
    return milestone


def update_fulfillment_status_use_case(
    *,
    db: Session,
    org_id: UUID,
    order_id: UUID,
    new_status: str,
    actor_id: UUID | None = None,
    notes: str | None = None,
) -> Order:
    order = get_order_or_404(db=db, order_id=order_id, org_id=org_id)
    st.ensure_transition(st.FULFILLMENT, order.fulfillment_status_code, new_status)
    if new_status == "completed":
        _ensure_critical_milestones_completed(db=db, org_id=org_id, order_id=order.id)
    _move_order(db=db, order=order, target=new_status, actor_id=actor_id, notes=notes)
    db.commit()
    return order


def mark_ready_for_packaging(
    *,
    db: Session,
    org_id: UUID,
    order_id: UUID,
    work_order_id: UUID,
    actor_id: UUID | None = None,
) -> bool:
    """Manufacturing finished for the whole order.

    Seeds fulfillment if needed, completes MANUFACTURING_COMPLETED, starts
    READY_TO_SHIP and moves the order toward packaging. Returns False when
    there was nothing left to do.
    """
    order, _created = start_fulfillment_use_case(db=db, org_id=org_id, order_id=order_id, actor_id=actor_id)
    manufactured = _get_milestone_or_404(
        db=db, org_id=org_id, order_id=order.id, milestone_code=ms.MANUFACTURING_COMPLETED
    )
    ready = _get_milestone_or_404(db=db, org_id=org_id, order_id=order.id, milestone_code=ms.READY_TO_SHIP)

    changed = False
    if manufactured.status != "completed":
        _set_milestone_status(db=db, milestone=manufactured, target="completed", actor_id=actor_id)
        changed = True
    if st.can_transition(st.FULFILLMENT_MILESTONE, ready.status, "in_progress"):
        _set_milestone_status(db=db, milestone=ready, target="in_progress", actor_id=actor_id)
        changed = True
    if not changed:
        return False

    for step in ("preparation", "packaging"):
        if st.can_transition(st.FULFILLMENT, order.fulfillment_status_code, step):
            _move_order(db=db, order=order, target=step, actor_id=actor_id, notes="Manufacturing completed")

    record_event(
        db=db,
        kind=st.FULFILLMENT,
        entity_id=order.id,
        org_id=org_id,
        code=FulfillmentEventCode.READY_FOR_PACKAGING,
        actor_id=actor_id,
        payload={"work_order_id": work_order_id},
    )
    db.commit()
    logger.info("Order %s ready for packaging", order.id)
    return True


def block_milestones_for_delay(
    *,
    db: Session,
    org_id: UUID,
    order_id: UUID,
    work_order_id: UUID,
    reason: str,
    actor_id: UUID | None = None,
) -> list[str]:
    """Block the order's downstream milestones that are not completed yet."""
    rows = {
        row.milestone_code: row
        for row in list_milestones(db=db, org_id=org_id, order_id=order_id)
        if row.milestone_code in ms.DELAY_BLOCKED_MILESTONES
    }
    blocked = []
    for code in ms.DELAY_BLOCKED_MILESTONES:
        milestone = rows.get(code)
        if milestone is None or not st.can_transition(st.FULFILLMENT_MILESTONE, milestone.status, "blocked"):
            continue
        _set_milestone_status(db=db, milestone=milestone, target="blocked", actor_id=actor_id, blocked_reason=reason)
        blocked.append(code)

    if not blocked:
        return []

    record_event(
        db=db,
        kind=st.FULFILLMENT,
        entity_id=order_id,
        org_id=org_id,
        code=FulfillmentEventCode.MANUFACTURING_DELAYED,
        actor_id=actor_id,
        payload={"work_order_id": work_order_id, "reason": reason, "blocked_milestones": blocked},
    )
    db.commit()
    logger.info("Blocked milestones %s for order %s", blocked, order_id)
    return blocked


def record_manufacturer_shipment(
    *,
    db: Session,
    org_id: UUID,
    order_id: UUID,
    work_order_id: UUID,
    manufacturer_id: UUID | None,
    quantity: int,
    order_complete: bool,
    actor_id: UUID | None = None,
) -> bool:
    """A manufacturer shipped a work order's goods to the fulfillment floor.

    Always records the receipt. When ``order_complete`` says every work order
    of the order is done, READY_TO_SHIP is completed and the order moves to
    ``ready_to_ship``. Returns whether READY_TO_SHIP was completed.
    """
    order, _created = start_fulfillment_use_case(db=db, org_id=org_id, order_id=order_id, actor_id=actor_id)
    record_event(
        db=db,
        kind=st.FULFILLMENT,
        entity_id=order.id,
        org_id=org_id,
        code=FulfillmentEventCode.RECEIVED_FROM_MANUFACTURER,
        actor_id=actor_id,
        payload={"work_order_id": work_order_id, "manufacturer_id": manufacturer_id, "quantity": quantity},
    )

    ready = _get_milestone_or_404(db=db, org_id=org_id, order_id=order.id, milestone_code=ms.READY_TO_SHIP)
    completed = order_complete and st.can_transition(st.FULFILLMENT_MILESTONE, ready.status, "completed")
    if completed:
        _set_milestone_status(
            db=db, milestone=ready, target="completed", actor_id=actor_id, notes="Received from manufacturer"
        )
        for step in ("preparation", "packaging", "ready_to_ship"):
            if st.can_transition(st.FULFILLMENT, order.fulfillment_status_code, step):
                _move_order(db=db, order=order, target=step, actor_id=actor_id, notes="Received from manufacturer")
    db.commit()
    logger.info("Order %s received work order %s from manufacturer", order.id, work_order_id)
    return completed
