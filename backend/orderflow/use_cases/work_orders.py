"""Work order (manufacturing) use-cases."""
from __future__ import annotations

import logging
from collections.abc import Sequence
from datetime import date, datetime, timedelta, timezone
from uuid import UUID, uuid4

from sqlalchemy.orm import Session

from ..config import settings
from ..domain_errors import NotFoundError, ValidationError
from ..models import DesignJob, MaterialRequirement, OrderItem, ProductionMilestone, WorkOrder
from ..schemas import (
    DelayReport,
    ManufacturerAssignment,
    MaterialRequirementCreate,
    ProductionMilestoneUpdate,
    WorkOrderCreate,
)
from ..services import status_transitions as st
from ..services.assignment import BulkOutcome, run_per_item
from ..services.audit import WorkOrderEventCode, record_event
from ..services.capacity import manufacturer_capacity
from ..services.idempotency import create_or_fetch, ensure_same_inputs
from ..services.milestones import DEFAULT_PRODUCTION_MILESTONES, PRODUCTION_MILESTONE_STATUSES
from ..services.scoping import get_manufacturer_or_404, get_material_or_404, get_order_item_or_404

logger = logging.getLogger(__name__)

# Order item status mirrored from its work order.
_ORDER_ITEM_STATUS_BY_WORK_ORDER: dict[str, str] = {
    "completed": "shipped",
    "shipped": "shipped",
    "cancelled": "cancelled",
}
_ORDER_ITEM_DEFAULT_STATUS = "manufacturing"

_CONFLICT_FIELDS = ("quantity", "priority", "manufacturer_id", "instructions")
_ASSIGNABLE_STATUSES = {"pending", "queued", "on_hold"}


def _today() -> date:
    return datetime.now(timezone.utc).date()


def get_work_order_or_404(*, db: Session, work_order_id: UUID, org_id: UUID) -> WorkOrder:
    work_order = db.query(WorkOrder).filter(
        WorkOrder.id == work_order_id,
        WorkOrder.org_id == org_id,
    ).first()
    if not work_order:
        raise NotFoundError(code="WORK_ORDER_NOT_FOUND", message="Work order not found")
    return work_order


def _ensure_open(work_order: WorkOrder) -> None:
    if work_order.status_code in st.WORK_ORDER_CLOSED_STATUSES:
        raise ValidationError(
            code="WORK_ORDER_CLOSED",
            message=f"Work order is {work_order.status_code}",
            details={"status": work_order.status_code},
        )


def ensure_assignable(work_order: WorkOrder) -> WorkOrder:
    if work_order.status_code not in _ASSIGNABLE_STATUSES:
        raise ValidationError(
            code="WORK_ORDER_NOT_ASSIGNABLE",
            message=f"Cannot assign a manufacturer to a work order in status {work_order.status_code}",
            details={"status": work_order.status_code, "allowed": sorted(_ASSIGNABLE_STATUSES)},
        )
    return work_order


def _sync_order_item_status(*, db: Session, work_order: WorkOrder) -> None:
    item = db.query(OrderItem).filter(
        OrderItem.id == work_order.order_item_id,
        OrderItem.org_id == work_order.org_id,
    ).first()
    if item is None:
        return
    item.status_code = _ORDER_ITEM_STATUS_BY_WORK_ORDER.get(work_order.status_code, _ORDER_ITEM_DEFAULT_STATUS)


def order_id_for_work_order(*, db: Session, work_order: WorkOrder) -> UUID | None:
    row = db.query(OrderItem.order_id).filter(
        OrderItem.id == work_order.order_item_id,
        OrderItem.org_id == work_order.org_id,
    ).first()
    return row[0] if row else None


def order_manufacturing_complete(*, db: Session, org_id: UUID, order_id: UUID) -> bool:
    """True when the order has work orders and every one of them is done."""
    statuses = [
        status
        for (status,) in db.query(WorkOrder.status_code)
        .join(OrderItem, OrderItem.id == WorkOrder.order_item_id)
        .filter(
            WorkOrder.org_id == org_id,
            OrderItem.org_id == org_id,
            OrderItem.order_id == order_id,
        )
        .all()
    ]
    return bool(statuses) and all(status in st.WORK_ORDER_DONE_STATUSES for status in statuses)


def create_work_order_use_case(
    *,
    db: Session,
    org_id: UUID,
    data: WorkOrderCreate,
    actor_id: UUID | None = None,
    design_job_id: UUID | None = None,
) -> tuple[WorkOrder, bool]:
    """Create-or-fetch the work order of an order item with its default milestones."""
    item = get_order_item_or_404(db=db, order_item_id=data.order_item_id, org_id=org_id)
    if data.manufacturer_id is not None:
        get_manufacturer_or_404(db=db, manufacturer_id=data.manufacturer_id, org_id=org_id)

    def lookup() -> WorkOrder | None:
        return db.query(WorkOrder).filter(
            WorkOrder.org_id == org_id,
            WorkOrder.order_item_id == item.id,
        ).first()

    def create() -> WorkOrder:
        work_order = WorkOrder(
            id=uuid4(),
            org_id=org_id,
            order_item_id=item.id,
            manufacturer_id=data.manufacturer_id,
            status_code="pending",
            priority=data.priority,
            quantity=data.quantity or item.quantity,
            instructions=data.instructions,
            planned_start_date=data.planned_start_date,
            planned_due_date=data.planned_due_date,
        )
        db.add(work_order)
        db.flush()
        for template in DEFAULT_PRODUCTION_MILESTONES:
            db.add(
                ProductionMilestone(
                    org_id=org_id,
                    work_order_id=work_order.id,
                    milestone_code=template.code,
                    milestone_name=template.name,
                    status="pending",
                )
            )
        payload = {
            "order_item_id": item.id,
            "quantity": work_order.quantity,
            "priority": work_order.priority,
            "manufacturer_id": work_order.manufacturer_id,
        }
        record_event(
            db=db,
            kind=st.WORK_ORDER,
            entity_id=work_order.id,
            org_id=org_id,
            code=WorkOrderEventCode.WORK_ORDER_CREATED,
            actor_id=actor_id,
            payload=payload,
        )
        if design_job_id is not None:
            record_event(
                db=db,
                kind=st.WORK_ORDER,
                entity_id=work_order.id,
                org_id=org_id,
                code=WorkOrderEventCode.WORK_ORDER_AUTO_GENERATED,
                actor_id=actor_id,
                payload={"design_job_id": design_job_id},
            )
        return work_order

    work_order, created = create_or_fetch(db=db, lookup=lookup, create=create)
    if created:
        logger.info("Work order %s created for order item %s", work_order.id, item.id)
    else:
        requested = {name: getattr(data, name) for name in _CONFLICT_FIELDS if name in data.model_fields_set}
        ensure_same_inputs(work_order, code="WORK_ORDER_CONFLICT", **requested)
    return work_order, created


def bulk_generate_work_orders_use_case(
    *,
    db: Session,
    org_id: UUID,
    order_item_ids: Sequence[UUID],
    actor_id: UUID | None = None,
    priority: int | None = None,
) -> BulkOutcome:
    def create_one(order_item_id: UUID) -> WorkOrder:
        fields = {"order_item_id": order_item_id}
        if priority is not None:
            fields["priority"] = priority
        work_order, _created = create_work_order_use_case(
            db=db, org_id=org_id, data=WorkOrderCreate(**fields), actor_id=actor_id
        )
        return work_order

    return run_per_item(db=db, item_ids=order_item_ids, action=create_one)


def generate_work_order_for_design_job(
    *,
    db: Session,
    org_id: UUID,
    design_job_id: UUID,
    actor_id: UUID | None = None,
) -> tuple[WorkOrder, bool]:
    """Work order for the item of an approved design job; the item moves to manufacturing."""
    job = db.query(DesignJob).filter(
        DesignJob.id == design_job_id,
        DesignJob.org_id == org_id,
    ).first()
    if not job:
        raise NotFoundError(code="DESIGN_JOB_NOT_FOUND", message="Design job not found")

    work_order, created = create_work_order_use_case(
        db=db,
        org_id=org_id,
        data=WorkOrderCreate(order_item_id=job.order_item_id, priority=job.priority),
        actor_id=actor_id,
        design_job_id=job.id,
    )
    item = get_order_item_or_404(db=db, order_item_id=job.order_item_id, org_id=org_id)
    if item.status_code != _ORDER_ITEM_DEFAULT_STATUS:
        item.status_code = _ORDER_ITEM_DEFAULT_STATUS
        db.commit()
    return work_order, created


def update_work_order_status_use_case(
    *,
    db: Session,
    org_id: UUID,
    work_order_id: UUID,
    new_status: str,
    actor_id: UUID | None = None,
    notes: str | None = None,
    quality_notes: str | None = None,
) -> WorkOrder:
    work_order = get_work_order_or_404(db=db, work_order_id=work_order_id, org_id=org_id)
    st.ensure_transition(st.WORK_ORDER, work_order.status_code, new_status)

    previous = work_order.status_code
    now = datetime.now(timezone.utc)
    work_order.status_code = new_status
    if new_status == "in_production" and work_order.actual_start_date is None:
        work_order.actual_start_date = now
    if new_status == "completed":
        work_order.actual_end_date = now
        work_order.actual_completion_date = now.date()
    if new_status == "shipped" and work_order.actual_completion_date is None:
        work_order.actual_end_date = now
        work_order.actual_completion_date = now.date()
    if new_status == "on_hold" and notes:
        work_order.delay_reason = notes
    if quality_notes is not None:
        work_order.quality_notes = quality_notes

    record_event(
        db=db,
        kind=st.WORK_ORDER,
        entity_id=work_order.id,
        org_id=org_id,
        code=WorkOrderEventCode.STATUS_UPDATED,
        actor_id=actor_id,
        payload={"from": previous, "to": new_status, "notes": notes},
    )
    _sync_order_item_status(db=db, work_order=work_order)
    db.commit()
    return work_order


def assign_manufacturer_use_case(
    *,
    db: Session,
    org_id: UUID,
    work_order_id: UUID,
    data: ManufacturerAssignment,
    actor_id: UUID | None = None,
) -> tuple[WorkOrder, str]:
    """Assign a manufacturer and move a pending work order to queued.

    Returns the work order and its status before the call.
    """
    work_order = get_work_order_or_404(db=db, work_order_id=work_order_id, org_id=org_id)
    previous_status = ensure_assignable(work_order).status_code

    manufacturer = get_manufacturer_or_404(db=db, manufacturer_id=data.manufacturer_id, org_id=org_id)
    if not manufacturer.is_active:
        raise ValidationError(code="MANUFACTURER_INACTIVE", message="Manufacturer is not active")
    if manufacturer.minimum_order_quantity and work_order.quantity < manufacturer.minimum_order_quantity:
        raise ValidationError(
            code="BELOW_MINIMUM_ORDER_QUANTITY",
            message="Quantity is below the manufacturer's minimum order quantity",
            details={"quantity": work_order.quantity, "minimum": manufacturer.minimum_order_quantity},
        )
    if not data.skip_capacity_check and work_order.manufacturer_id != manufacturer.id:
        snapshots = manufacturer_capacity(db=db, org_id=org_id, manufacturer_id=manufacturer.id)
        if snapshots and not snapshots[0].is_available:
            next_date = snapshots[0].next_available_date
            raise ValidationError(
                code="MANUFACTURER_AT_CAPACITY",
                message="Manufacturer is at capacity",
                details={
                    "workload_score": snapshots[0].workload_score,
                    "next_available_date": next_date.isoformat() if next_date else None,
                },
            )

    start = data.planned_start_date or work_order.planned_start_date or _today()
    due = data.planned_due_date
    if due is None and manufacturer.lead_time_days:
        due = start + timedelta(days=manufacturer.lead_time_days)
    if due is None:
        due = work_order.planned_due_date

    work_order.manufacturer_id = manufacturer.id
    work_order.planned_start_date = start
    work_order.planned_due_date = due
    record_event(
        db=db,
        kind=st.WORK_ORDER,
        entity_id=work_order.id,
        org_id=org_id,
        code=WorkOrderEventCode.ASSIGNED_TO_MANUFACTURER,
        actor_id=actor_id,
        payload={"manufacturer_id": manufacturer.id, "planned_start_date": start, "planned_due_date": due},
    )

    if previous_status == "pending":
        st.ensure_transition(st.WORK_ORDER, previous_status, "queued")
        work_order.status_code = "queued"
        record_event(
            db=db,
            kind=st.WORK_ORDER,
            entity_id=work_order.id,
            org_id=org_id,
            code=WorkOrderEventCode.STATUS_UPDATED,
            actor_id=actor_id,
            payload={"from": previous_status, "to": "queued", "notes": "Assigned to manufacturer"},
        )
        _sync_order_item_status(db=db, work_order=work_order)

    db.commit()
    logger.info("Work order %s assigned to manufacturer %s", work_order.id, manufacturer.id)
    return work_order, previous_status


def report_delay_use_case(
    *,
    db: Session,
    org_id: UUID,
    work_order_id: UUID,
    data: DelayReport,
    actor_id: UUID | None = None,
) -> WorkOrder:
    work_order = get_work_order_or_404(db=db, work_order_id=work_order_id, org_id=org_id)
    _ensure_open(work_order)

    previous_due = work_order.planned_due_date
    new_due = data.new_due_date
    if new_due is None and data.delay_days and previous_due is not None:
        new_due = previous_due + timedelta(days=data.delay_days)

    work_order.delay_reason = data.reason
    if new_due is not None:
        work_order.planned_due_date = new_due
    record_event(
        db=db,
        kind=st.WORK_ORDER,
        entity_id=work_order.id,
        org_id=org_id,
        code=WorkOrderEventCode.PRODUCTION_DELAYED,
        actor_id=actor_id,
        payload={
            "reason": data.reason,
            "delay_days": data.delay_days,
            "previous_due_date": previous_due,
            "new_due_date": new_due,
        },
    )
    db.commit()
    logger.info("Work order %s delayed: %s", work_order.id, data.reason)
    return work_order


def update_production_milestone_use_case(
    *,
    db: Session,
    org_id: UUID,
    work_order_id: UUID,
    data: ProductionMilestoneUpdate,
    actor_id: UUID | None = None,
) -> ProductionMilestone:
    work_order = get_work_order_or_404(db=db, work_order_id=work_order_id, org_id=org_id)
    milestone = db.query(ProductionMilestone).filter(
        ProductionMilestone.work_order_id == work_order.id,
        ProductionMilestone.org_id == org_id,
        ProductionMilestone.milestone_code == data.milestone_code,
    ).first()
    if not milestone:
        raise NotFoundError(code="MILESTONE_NOT_FOUND", message="Production milestone not found")
    if data.status not in PRODUCTION_MILESTONE_STATUSES:
        raise ValidationError(
            code="INVALID_MILESTONE_STATUS",
            message=f"Unknown production milestone status: {data.status}",
        )

    # Idempotent.
    if milestone.status == data.status:
        return milestone
    if milestone.status in ("completed", "skipped"):
        raise ValidationError(
            code="MILESTONE_CLOSED",
            message=f"Milestone {milestone.milestone_code} is already {milestone.status}",
        )

    previous = milestone.status
    milestone.status = data.status
    if data.notes is not None:
        milestone.notes = data.notes
    code = WorkOrderEventCode.MILESTONE_UPDATED
    if data.status == "completed":
        milestone.actual_date = _today()
        milestone.completed_by = actor_id
        code = WorkOrderEventCode.MILESTONE_REACHED

    record_event(
        db=db,
        kind=st.WORK_ORDER,
        entity_id=work_order.id,
        org_id=org_id,
        code=code,
        actor_id=actor_id,
        payload={"milestone_code": milestone.milestone_code, "from": previous, "to": data.status},
    )
    db.commit()
    return milestone


def create_material_requirements_use_case(
    *,
    db: Session,
    org_id: UUID,
    work_order_id: UUID,
    requirements: Sequence[MaterialRequirementCreate],
    actor_id: UUID | None = None,
) -> list[MaterialRequirement]:
    """Add material needs to a work order; needed-by defaults to a buffer before production starts."""
    work_order = get_work_order_or_404(db=db, work_order_id=work_order_id, org_id=org_id)
    _ensure_open(work_order)
    if not requirements:
        raise ValidationError(code="NO_REQUIREMENTS", message="At least one material requirement is required")

    buffer = timedelta(days=settings.MATERIALS_LEAD_BUFFER_DAYS)
    if work_order.planned_start_date is not None:
        default_needed_by = work_order.planned_start_date - buffer
    else:
        default_needed_by = _today() + buffer

    # Every material must resolve before any row is added.
    for requirement in requirements:
        get_material_or_404(db=db, material_id=requirement.material_id, org_id=org_id)

    created: list[MaterialRequirement] = []
    for requirement in requirements:
        row = MaterialRequirement(
            id=uuid4(),
            org_id=org_id,
            work_order_id=work_order.id,
            material_id=requirement.material_id,
            quantity_needed=requirement.quantity_needed,
            quantity_fulfilled=0,
            needed_by_date=requirement.needed_by_date or default_needed_by,
            status="pending",
            notes=requirement.notes,
        )
        db.add(row)
        created.append(row)

    record_event(
        db=db,
        kind=st.WORK_ORDER,
        entity_id=work_order.id,
        org_id=org_id,
        code=WorkOrderEventCode.MATERIAL_REQUIREMENTS_CREATED,
        actor_id=actor_id,
        payload={"requirement_ids": [row.id for row in created]},
    )
    db.commit()
    return created


def has_pending_material_requirements(*, db: Session, org_id: UUID, work_order_id: UUID) -> bool:
    return db.query(MaterialRequirement.id).filter(
        MaterialRequirement.org_id == org_id,
        MaterialRequirement.work_order_id == work_order_id,
        MaterialRequirement.status == "pending",
    ).first() is not None
