"""Public workflow operations.

Every operation runs its primary transition through the entity use-cases
(one transaction: status change, audit event, rows created with it) and then
fires the cascades that transition triggers. Each cascade gets its own
transaction. A cascade failure is rolled back, recorded as a failure event on
the triggering entity and logged. It never changes the primary result.

This module is the only place where design, manufacturing, procurement and
fulfillment logic meet; the entity modules do not import each other.
"""
from __future__ import annotations

import logging
from collections import Counter
from collections.abc import Callable, Mapping, Sequence
from typing import Any, Optional, Union
from uuid import UUID

from sqlalchemy.orm import Session

from ..domain_errors import CascadeFailure, DomainError, ValidationError
from ..schemas import (
    BulkFailureOut,
    BulkResultOut,
    CapacityOut,
    DelayReport,
    DesignJobCreate,
    DesignJobOut,
    DesignReviewRequest,
    EventOut,
    FulfillmentMilestoneOut,
    FulfillmentMilestoneUpdate,
    FulfillmentStatusOut,
    ManufacturerAssignment,
    MaterialInventoryOut,
    MaterialRequirementCreate,
    MaterialRequirementOut,
    ProductionMilestoneOut,
    ProductionMilestoneUpdate,
    PurchaseOrderCreate,
    PurchaseOrderOut,
    ReceivedItem,
    WorkOrderCreate,
    WorkOrderOut,
    parse_input,
)
from ..services import status_transitions as st
from ..services.assignment import (
    BulkFailure,
    BulkOutcome,
    WorkItem,
    agent_states_from_snapshots,
    run_per_item,
    smart_assign,
)
from ..services.audit import (
    DesignJobEventCode,
    WorkOrderEventCode,
    list_events,
    record_event,
    record_event_safely,
)
from ..services.capacity import designer_capacity, manufacturer_capacity
from ..services.inventory import get_inventory
from ..services.scoping import (
    get_designer_or_404,
    get_manufacturer_or_404,
    get_material_or_404,
    get_order_or_404,
)
from . import design_jobs, fulfillment, purchase_orders, work_orders

logger = logging.getLogger(__name__)

DESIGN_STAGE_STATUS = "design"

RequiredSpecializations = Optional[Union[Sequence[str], Mapping[UUID, Sequence[str]]]]


# Cascade plumbing

def _run_cascade(
    *,
    db: Session,
    name: str,
    org_id: UUID,
    kind: str,
    entity_id: UUID,
    failure_code: Union[DesignJobEventCode, WorkOrderEventCode],
    actor_id: UUID | None,
    action: Callable[[], Any],
) -> Any:
    try:
        return action()
    except Exception as exc:
        db.rollback()
        failure = CascadeFailure(name, exc)
        logger.exception("Cascade %s failed for %s %s", name, kind, entity_id)
        record_event_safely(
            db=db,
            kind=kind,
            entity_id=entity_id,
            org_id=org_id,
            code=failure_code,
            actor_id=actor_id,
            payload={"cascade": failure.cascade, "error": str(failure.cause)},
        )
        return None


def _cascade_design_approved(*, db: Session, org_id: UUID, design_job_id: UUID, actor_id: UUID | None) -> None:
    def action():
        work_order, created = work_orders.generate_work_order_for_design_job(
            db=db, org_id=org_id, design_job_id=design_job_id, actor_id=actor_id
        )
        logger.info(
            "Design job %s approved; work order %s %s",
            design_job_id,
            work_order.id,
            "created" if created else "already existed",
        )
        return work_order

    _run_cascade(
        db=db,
        name="auto_generate_work_order",
        org_id=org_id,
        kind=st.DESIGN_JOB,
        entity_id=design_job_id,
        failure_code=DesignJobEventCode.WORK_ORDER_GENERATION_FAILED,
        actor_id=actor_id,
        action=action,
    )


def _cascade_materials_pending(*, db: Session, org_id: UUID, work_order_id: UUID, actor_id: UUID | None) -> None:
    def action():
        if not work_orders.has_pending_material_requirements(db=db, org_id=org_id, work_order_id=work_order_id):
            return []
        generated = purchase_orders.bulk_generate_purchase_orders_use_case(
            db=db, org_id=org_id, work_order_ids=[work_order_id], actor_id=actor_id
        )
        if generated:
            record_event(
                db=db,
                kind=st.WORK_ORDER,
                entity_id=work_order_id,
                org_id=org_id,
                code=WorkOrderEventCode.POS_AUTO_GENERATED,
                actor_id=actor_id,
                payload={
                    "purchase_order_ids": [po.id for po in generated],
                    "po_numbers": [po.po_number for po in generated],
                },
            )
            db.commit()
            logger.info("Generated %d purchase orders for work order %s", len(generated), work_order_id)
        return generated

    _run_cascade(
        db=db,
        name="auto_generate_purchase_orders",
        org_id=org_id,
        kind=st.WORK_ORDER,
        entity_id=work_order_id,
        failure_code=WorkOrderEventCode.PO_GENERATION_FAILED,
        actor_id=actor_id,
        action=action,
    )


def _cascade_manufacturing_completed(*, db: Session, org_id: UUID, work_order_id: UUID, actor_id: UUID | None) -> None:
    def action():
        work_order = work_orders.get_work_order_or_404(db=db, work_order_id=work_order_id, org_id=org_id)
        order_id = work_orders.order_id_for_work_order(db=db, work_order=work_order)
        if order_id is None:
            return False
        if not work_orders.order_manufacturing_complete(db=db, org_id=org_id, order_id=order_id):
            return False
        return fulfillment.mark_ready_for_packaging(
            db=db, org_id=org_id, order_id=order_id, work_order_id=work_order_id, actor_id=actor_id
        )

    _run_cascade(
        db=db,
        name="sync_fulfillment_on_completion",
        org_id=org_id,
        kind=st.WORK_ORDER,
        entity_id=work_order_id,
        failure_code=WorkOrderEventCode.FULFILLMENT_SYNC_FAILED,
        actor_id=actor_id,
        action=action,
    )


def _cascade_received_from_manufacturer(
    *, db: Session, org_id: UUID, work_order_id: UUID, actor_id: UUID | None
) -> None:
    def action():
        work_order = work_orders.get_work_order_or_404(db=db, work_order_id=work_order_id, org_id=org_id)
        order_id = work_orders.order_id_for_work_order(db=db, work_order=work_order)
        if order_id is None:
            return False
        return fulfillment.record_manufacturer_shipment(
            db=db,
            org_id=org_id,
            order_id=order_id,
            work_order_id=work_order.id,
            manufacturer_id=work_order.manufacturer_id,
            quantity=work_order.quantity,
            order_complete=work_orders.order_manufacturing_complete(db=db, org_id=org_id, order_id=order_id),
            actor_id=actor_id,
        )

    _run_cascade(
        db=db,
        name="sync_fulfillment_on_shipment",
        org_id=org_id,
        kind=st.WORK_ORDER,
        entity_id=work_order_id,
        failure_code=WorkOrderEventCode.FULFILLMENT_SYNC_FAILED,
        actor_id=actor_id,
        action=action,
    )


def _cascade_delay(
    *,
    db: Session,
    org_id: UUID,
    work_order_id: UUID,
    reason: str,
    actor_id: UUID | None,
) -> None:
    def action():
        work_order = work_orders.get_work_order_or_404(db=db, work_order_id=work_order_id, org_id=org_id)
        order_id = work_orders.order_id_for_work_order(db=db, work_order=work_order)
        if order_id is None:
            return []
        return fulfillment.block_milestones_for_delay(
            db=db,
            org_id=org_id,
            order_id=order_id,
            work_order_id=work_order_id,
            reason=reason,
            actor_id=actor_id,
        )

    _run_cascade(
        db=db,
        name="block_fulfillment_on_delay",
        org_id=org_id,
        kind=st.WORK_ORDER,
        entity_id=work_order_id,
        failure_code=WorkOrderEventCode.FULFILLMENT_SYNC_FAILED,
        actor_id=actor_id,
        action=action,
    )


def _work_order_cascades(
    *,
    db: Session,
    org_id: UUID,
    work_order_id: UUID,
    previous_status: str | None,
    new_status: str,
    actor_id: UUID | None,
    delay_reason: str | None = None,
) -> None:
    if previous_status == new_status:
        return
    if new_status in st.WORK_ORDER_MATERIALS_PENDING_STATUSES:
        _cascade_materials_pending(db=db, org_id=org_id, work_order_id=work_order_id, actor_id=actor_id)
    # packaging -> shipped skips completed, so both statuses check readiness.
    if new_status in ("completed", "shipped"):
        _cascade_manufacturing_completed(db=db, org_id=org_id, work_order_id=work_order_id, actor_id=actor_id)
    if new_status == "shipped":
        _cascade_received_from_manufacturer(db=db, org_id=org_id, work_order_id=work_order_id, actor_id=actor_id)
    if new_status in st.WORK_ORDER_DELAY_STATUSES:
        _cascade_delay(
            db=db,
            org_id=org_id,
            work_order_id=work_order_id,
            reason=delay_reason or f"Work order {new_status}",
            actor_id=actor_id,
        )


def _bulk_result(outcome: BulkOutcome, out_model) -> BulkResultOut:
    return BulkResultOut(
        succeeded=[out_model.model_validate(row) for row in outcome.succeeded],
        failed=[BulkFailureOut.model_validate(failure) for failure in outcome.failed],
    )


def _requirements_for(required: RequiredSpecializations, item_id: UUID) -> tuple[str, ...]:
    if not required:
        return ()
    if isinstance(required, Mapping):
        return tuple(required.get(item_id, ()))
    return tuple(required)


def _load_candidates(
    item_ids: Sequence[UUID], *, load: Callable[[UUID], Any]
) -> tuple[list, dict[UUID, BulkFailure]]:
    """Load each id once; ids that are missing or cannot be assigned become failures."""
    rows = []
    failures: dict[UUID, BulkFailure] = {}
    for item_id in dict.fromkeys(item_ids):
        try:
            rows.append(load(item_id))
        except DomainError as exc:
            failures[item_id] = BulkFailure(item_id=item_id, code=exc.code, message=exc.message)
    return rows, failures


def _smart_plan(
    *,
    items: Sequence[WorkItem],
    held_by: Sequence[UUID | None],
    snapshots,
    capacity_override: int | None,
):
    # Slots already held by the items being planned are free for this plan.
    released = Counter(agent_id for agent_id in held_by if agent_id is not None)
    states = agent_states_from_snapshots(snapshots, capacity_override=capacity_override, released=released)
    return smart_assign(items, states, capacity_override=capacity_override)


def _run_smart_plan(
    *,
    db: Session,
    item_ids: Sequence[UUID],
    candidate_ids: Sequence[UUID],
    plan,
    failures: dict[UUID, BulkFailure],
    action: Callable[[UUID, Any], Any],
    unplanned_code: str,
    unplanned_message: str,
) -> BulkOutcome:
    picks = {assignment.item_id: assignment for assignment in plan}
    outcome = run_per_item(
        db=db,
        item_ids=[item_id for item_id in candidate_ids if item_id in picks],
        action=lambda item_id: action(item_id, picks[item_id]),
    )
    for item_id in candidate_ids:
        if item_id not in picks:
            failures[item_id] = BulkFailure(item_id=item_id, code=unplanned_code, message=unplanned_message)
    failures.update({failure.item_id: failure for failure in outcome.failed})
    outcome.failed = [failures[item_id] for item_id in dict.fromkeys(item_ids) if item_id in failures]
    return outcome


# Design jobs

def create_design_job(*, db: Session, org_id: UUID, data, actor_id: UUID | None = None) -> DesignJobOut:
    payload = parse_input(DesignJobCreate, data)
    job, _created = design_jobs.create_design_job_use_case(db=db, org_id=org_id, data=payload, actor_id=actor_id)
    return DesignJobOut.model_validate(job)


def bulk_create_design_jobs(
    *,
    db: Session,
    org_id: UUID,
    order_item_ids: Sequence[UUID],
    actor_id: UUID | None = None,
    priority: int | None = None,
) -> BulkResultOut:
    outcome = design_jobs.bulk_create_design_jobs_use_case(
        db=db, org_id=org_id, order_item_ids=order_item_ids, actor_id=actor_id, priority=priority
    )
    return _bulk_result(outcome, DesignJobOut)


def handle_order_item_status_change(
    *,
    db: Session,
    org_id: UUID,
    order_item_id: UUID,
    new_status: str,
    previous_status: str | None = None,
    actor_id: UUID | None = None,
) -> DesignJobOut | None:
    """Entering the design stage creates (or returns) the item's design job."""
    if new_status != DESIGN_STAGE_STATUS or previous_status == DESIGN_STAGE_STATUS:
        return None
    job, created = design_jobs.create_design_job_use_case(
        db=db,
        org_id=org_id,
        data=DesignJobCreate(order_item_id=order_item_id),
        actor_id=actor_id,
        auto_created=True,
    )
    if created:
        logger.info("Auto-created design job %s for order item %s", job.id, order_item_id)
    return DesignJobOut.model_validate(job)


def assign_designer(
    *,
    db: Session,
    org_id: UUID,
    design_job_id: UUID,
    designer_id: UUID,
    actor_id: UUID | None = None,
    notes: str | None = None,
) -> DesignJobOut:
    job = design_jobs.assign_designer_use_case(
        db=db, org_id=org_id, design_job_id=design_job_id, designer_id=designer_id, actor_id=actor_id, notes=notes
    )
    return DesignJobOut.model_validate(job)


def bulk_assign_design_jobs(
    *,
    db: Session,
    org_id: UUID,
    design_job_ids: Sequence[UUID],
    designer_id: UUID | None = None,
    required_specializations: RequiredSpecializations = None,
    capacity_override: int | None = None,
    actor_id: UUID | None = None,
) -> BulkResultOut:
    """Explicit mode when ``designer_id`` is given, smart mode otherwise."""
    if designer_id is not None:
        outcome = run_per_item(
            db=db,
            item_ids=design_job_ids,
            action=lambda job_id: design_jobs.assign_designer_use_case(
                db=db, org_id=org_id, design_job_id=job_id, designer_id=designer_id, actor_id=actor_id
            ),
        )
        return _bulk_result(outcome, DesignJobOut)

    jobs, failures = _load_candidates(
        design_job_ids,
        load=lambda job_id: design_jobs.ensure_assignable(
            design_jobs.get_design_job_or_404(db=db, design_job_id=job_id, org_id=org_id)
        ),
    )
    plan = _smart_plan(
        items=[
            WorkItem(item_id=job.id, required_specializations=_requirements_for(required_specializations, job.id))
            for job in jobs
        ],
        held_by=[job.assignee_designer_id for job in jobs],
        snapshots=designer_capacity(db=db, org_id=org_id),
        capacity_override=capacity_override,
    )

    def assign(job_id: UUID, pick):
        return design_jobs.assign_designer_use_case(
            db=db,
            org_id=org_id,
            design_job_id=job_id,
            designer_id=pick.agent_id,
            actor_id=actor_id,
            score=pick.score,
        )

    outcome = _run_smart_plan(
        db=db,
        item_ids=design_job_ids,
        candidate_ids=[job.id for job in jobs],
        plan=plan,
        failures=failures,
        action=assign,
        unplanned_code="NO_ELIGIBLE_DESIGNER",
        unplanned_message="No designer with free capacity",
    )
    return _bulk_result(outcome, DesignJobOut)


def update_design_job_status(
    *,
    db: Session,
    org_id: UUID,
    design_job_id: UUID,
    new_status: str,
    actor_id: UUID | None = None,
    notes: str | None = None,
) -> DesignJobOut:
    job = design_jobs.update_design_job_status_use_case(
        db=db, org_id=org_id, design_job_id=design_job_id, new_status=new_status, actor_id=actor_id, notes=notes
    )
    result = DesignJobOut.model_validate(job)
    if result.status_code == "approved":
        _cascade_design_approved(db=db, org_id=org_id, design_job_id=result.id, actor_id=actor_id)
    return result


def submit_design_for_review(
    *,
    db: Session,
    org_id: UUID,
    design_job_id: UUID,
    actor_id: UUID | None = None,
    notes: str | None = None,
) -> DesignJobOut:
    job = design_jobs.submit_design_for_review_use_case(
        db=db, org_id=org_id, design_job_id=design_job_id, actor_id=actor_id, notes=notes
    )
    return DesignJobOut.model_validate(job)


def review_design_job(
    *,
    db: Session,
    org_id: UUID,
    design_job_id: UUID,
    review,
    actor_id: UUID | None = None,
) -> DesignJobOut:
    decision = parse_input(DesignReviewRequest, review)
    job = design_jobs.review_design_job_use_case(
        db=db, org_id=org_id, design_job_id=design_job_id, review=decision, actor_id=actor_id
    )
    result = DesignJobOut.model_validate(job)
    if result.status_code == "approved":
        _cascade_design_approved(db=db, org_id=org_id, design_job_id=result.id, actor_id=actor_id)
    return result


# Work orders

def create_work_order(*, db: Session, org_id: UUID, data, actor_id: UUID | None = None) -> WorkOrderOut:
    payload = parse_input(WorkOrderCreate, data)
    work_order, _created = work_orders.create_work_order_use_case(
        db=db, org_id=org_id, data=payload, actor_id=actor_id
    )
    return WorkOrderOut.model_validate(work_order)


def bulk_generate_work_orders(
    *,
    db: Session,
    org_id: UUID,
    order_item_ids: Sequence[UUID],
    actor_id: UUID | None = None,
    priority: int | None = None,
) -> BulkResultOut:
    outcome = work_orders.bulk_generate_work_orders_use_case(
        db=db, org_id=org_id, order_item_ids=order_item_ids, actor_id=actor_id, priority=priority
    )
    return _bulk_result(outcome, WorkOrderOut)


def update_work_order_status(
    *,
    db: Session,
    org_id: UUID,
    work_order_id: UUID,
    new_status: str,
    actor_id: UUID | None = None,
    notes: str | None = None,
    quality_notes: str | None = None,
) -> WorkOrderOut:
    previous = work_orders.get_work_order_or_404(db=db, work_order_id=work_order_id, org_id=org_id).status_code
    work_order = work_orders.update_work_order_status_use_case(
        db=db,
        org_id=org_id,
        work_order_id=work_order_id,
        new_status=new_status,
        actor_id=actor_id,
        notes=notes,
        quality_notes=quality_notes,
    )
    result = WorkOrderOut.model_validate(work_order)
    _work_order_cascades(
        db=db,
        org_id=org_id,
        work_order_id=result.id,
        previous_status=previous,
        new_status=result.status_code,
        actor_id=actor_id,
        delay_reason=result.delay_reason or notes,
    )
    return result


def assign_manufacturer(
    *,
    db: Session,
    org_id: UUID,
    work_order_id: UUID,
    data,
    actor_id: UUID | None = None,
) -> WorkOrderOut:
    assignment = parse_input(ManufacturerAssignment, data)
    work_order, previous = work_orders.assign_manufacturer_use_case(
        db=db, org_id=org_id, work_order_id=work_order_id, data=assignment, actor_id=actor_id
    )
    result = WorkOrderOut.model_validate(work_order)
    _work_order_cascades(
        db=db,
        org_id=org_id,
        work_order_id=result.id,
        previous_status=previous,
        new_status=result.status_code,
        actor_id=actor_id,
    )
    return result


def bulk_assign_work_orders(
    *,
    db: Session,
    org_id: UUID,
    work_order_ids: Sequence[UUID],
    manufacturer_id: UUID | None = None,
    required_specializations: RequiredSpecializations = None,
    capacity_override: int | None = None,
    skip_capacity_check: bool = False,
    actor_id: UUID | None = None,
) -> BulkResultOut:
    """Explicit mode when ``manufacturer_id`` is given, smart mode otherwise."""
    if manufacturer_id is not None:
        outcome = run_per_item(
            db=db,
            item_ids=work_order_ids,
            action=lambda work_order_id: assign_manufacturer(
                db=db,
                org_id=org_id,
                work_order_id=work_order_id,
                data=ManufacturerAssignment(
                    manufacturer_id=manufacturer_id, skip_capacity_check=skip_capacity_check
                ),
                actor_id=actor_id,
            ),
        )
        return BulkResultOut(
            succeeded=outcome.succeeded,
            failed=[BulkFailureOut.model_validate(failure) for failure in outcome.failed],
        )

    candidates, failures = _load_candidates(
        work_order_ids,
        load=lambda work_order_id: work_orders.ensure_assignable(
            work_orders.get_work_order_or_404(db=db, work_order_id=work_order_id, org_id=org_id)
        ),
    )
    plan = _smart_plan(
        items=[
            WorkItem(
                item_id=work_order.id,
                required_specializations=_requirements_for(required_specializations, work_order.id),
                quantity=work_order.quantity,
            )
            for work_order in candidates
        ],
        held_by=[work_order.manufacturer_id for work_order in candidates],
        snapshots=manufacturer_capacity(db=db, org_id=org_id),
        capacity_override=capacity_override,
    )

    # The scheduler already enforced capacity for these picks.
    outcome = _run_smart_plan(
        db=db,
        item_ids=work_order_ids,
        candidate_ids=[work_order.id for work_order in candidates],
        plan=plan,
        failures=failures,
        action=lambda work_order_id, pick: assign_manufacturer(
            db=db,
            org_id=org_id,
            work_order_id=work_order_id,
            data=ManufacturerAssignment(manufacturer_id=pick.agent_id, skip_capacity_check=True),
            actor_id=actor_id,
        ),
        unplanned_code="NO_ELIGIBLE_MANUFACTURER",
        unplanned_message="No manufacturer with free capacity and a matching minimum order quantity",
    )
    return BulkResultOut(
        succeeded=outcome.succeeded,
        failed=[BulkFailureOut.model_validate(failure) for failure in outcome.failed],
    )


def report_delay(
    *,
    db: Session,
    org_id: UUID,
    work_order_id: UUID,
    data,
    actor_id: UUID | None = None,
) -> WorkOrderOut:
    report = parse_input(DelayReport, data)
    work_order = work_orders.report_delay_use_case(
        db=db, org_id=org_id, work_order_id=work_order_id, data=report, actor_id=actor_id
    )
    result = WorkOrderOut.model_validate(work_order)
    _cascade_delay(db=db, org_id=org_id, work_order_id=result.id, reason=report.reason, actor_id=actor_id)
    return result


def update_production_milestone(
    *,
    db: Session,
    org_id: UUID,
    work_order_id: UUID,
    data,
    actor_id: UUID | None = None,
) -> ProductionMilestoneOut:
    update = parse_input(ProductionMilestoneUpdate, data)
    milestone = work_orders.update_production_milestone_use_case(
        db=db, org_id=org_id, work_order_id=work_order_id, data=update, actor_id=actor_id
    )
    return ProductionMilestoneOut.model_validate(milestone)


def create_material_requirements(
    *,
    db: Session,
    org_id: UUID,
    work_order_id: UUID,
    requirements: Sequence,
    actor_id: UUID | None = None,
) -> list[MaterialRequirementOut]:
    """Adding needs to a work order that already waits on materials triggers PO generation."""
    parsed = [parse_input(MaterialRequirementCreate, requirement) for requirement in requirements]
    rows = work_orders.create_material_requirements_use_case(
        db=db, org_id=org_id, work_order_id=work_order_id, requirements=parsed, actor_id=actor_id
    )
    result = [MaterialRequirementOut.model_validate(row) for row in rows]
    work_order = work_orders.get_work_order_or_404(db=db, work_order_id=work_order_id, org_id=org_id)
    if work_order.status_code in st.WORK_ORDER_MATERIALS_PENDING_STATUSES:
        _cascade_materials_pending(db=db, org_id=org_id, work_order_id=work_order_id, actor_id=actor_id)
    return result


# Purchase orders

def create_purchase_order(*, db: Session, org_id: UUID, data, actor_id: UUID | None = None) -> PurchaseOrderOut:
    payload = parse_input(PurchaseOrderCreate, data)
    purchase_order = purchase_orders.create_purchase_order_use_case(
        db=db, org_id=org_id, data=payload, actor_id=actor_id
    )
    return PurchaseOrderOut.model_validate(purchase_order)


def bulk_generate_purchase_orders(
    *,
    db: Session,
    org_id: UUID,
    work_order_ids: Sequence[UUID],
    actor_id: UUID | None = None,
) -> list[PurchaseOrderOut]:
    generated = purchase_orders.bulk_generate_purchase_orders_use_case(
        db=db, org_id=org_id, work_order_ids=work_order_ids, actor_id=actor_id
    )
    return [PurchaseOrderOut.model_validate(purchase_order) for purchase_order in generated]


def approve_purchase_order(
    *,
    db: Session,
    org_id: UUID,
    purchase_order_id: UUID,
    actor_id: UUID | None = None,
    notes: str | None = None,
) -> PurchaseOrderOut:
    purchase_order = purchase_orders.approve_purchase_order_use_case(
        db=db, org_id=org_id, purchase_order_id=purchase_order_id, actor_id=actor_id, notes=notes
    )
    return PurchaseOrderOut.model_validate(purchase_order)


def update_purchase_order_status(
    *,
    db: Session,
    org_id: UUID,
    purchase_order_id: UUID,
    new_status: str,
    actor_id: UUID | None = None,
    notes: str | None = None,
) -> PurchaseOrderOut:
    purchase_order = purchase_orders.update_purchase_order_status_use_case(
        db=db,
        org_id=org_id,
        purchase_order_id=purchase_order_id,
        new_status=new_status,
        actor_id=actor_id,
        notes=notes,
    )
    return PurchaseOrderOut.model_validate(purchase_order)


def receive_purchase_order_items(
    *,
    db: Session,
    org_id: UUID,
    purchase_order_id: UUID,
    items: Sequence,
    actor_id: UUID | None = None,
    notes: str | None = None,
) -> PurchaseOrderOut:
    received = [parse_input(ReceivedItem, item) for item in items]
    purchase_order = purchase_orders.receive_purchase_order_items_use_case(
        db=db,
        org_id=org_id,
        purchase_order_id=purchase_order_id,
        items=received,
        actor_id=actor_id,
        notes=notes,
    )
    return PurchaseOrderOut.model_validate(purchase_order)


def get_material_inventory(*, db: Session, org_id: UUID, material_id: UUID) -> MaterialInventoryOut:
    """Stock of one material; a material never ordered reads as zero."""
    material = get_material_or_404(db=db, material_id=material_id, org_id=org_id)
    row = get_inventory(db=db, org_id=org_id, material_id=material.id)
    if row is None:
        return MaterialInventoryOut(material_id=material.id)
    return MaterialInventoryOut.model_validate(row)


# Fulfillment

def _fulfillment_status(*, db: Session, org_id: UUID, order_id: UUID) -> FulfillmentStatusOut:
    order = get_order_or_404(db=db, order_id=order_id, org_id=org_id)
    milestones = fulfillment.list_milestones(db=db, org_id=org_id, order_id=order.id)
    return FulfillmentStatusOut(
        order_id=order.id,
        fulfillment_status_code=order.fulfillment_status_code,
        milestones=[FulfillmentMilestoneOut.model_validate(row) for row in milestones],
    )


def start_fulfillment(
    *,
    db: Session,
    org_id: UUID,
    order_id: UUID,
    actor_id: UUID | None = None,
    notes: str | None = None,
) -> FulfillmentStatusOut:
    fulfillment.start_fulfillment_use_case(db=db, org_id=org_id, order_id=order_id, actor_id=actor_id, notes=notes)
    return _fulfillment_status(db=db, org_id=org_id, order_id=order_id)


def get_fulfillment_status(*, db: Session, org_id: UUID, order_id: UUID) -> FulfillmentStatusOut:
    return _fulfillment_status(db=db, org_id=org_id, order_id=order_id)


def update_fulfillment_milestone(
    *,
    db: Session,
    org_id: UUID,
    order_id: UUID,
    milestone_code: str,
    data,
    actor_id: UUID | None = None,
) -> FulfillmentMilestoneOut:
    update = parse_input(FulfillmentMilestoneUpdate, data)
    milestone = fulfillment.update_fulfillment_milestone_use_case(
        db=db, org_id=org_id, order_id=order_id, milestone_code=milestone_code, data=update, actor_id=actor_id
    )
    return FulfillmentMilestoneOut.model_validate(milestone)


def update_fulfillment_status(
    *,
    db: Session,
    org_id: UUID,
    order_id: UUID,
    new_status: str,
    actor_id: UUID | None = None,
    notes: str | None = None,
) -> FulfillmentStatusOut:
    fulfillment.update_fulfillment_status_use_case(
        db=db, org_id=org_id, order_id=order_id, new_status=new_status, actor_id=actor_id, notes=notes
    )
    return _fulfillment_status(db=db, org_id=org_id, order_id=order_id)


# Capacity

def get_designer_capacity(
    *,
    db: Session,
    org_id: UUID,
    designer_id: UUID | None = None,
    threshold: float | None = None,
) -> list[CapacityOut]:
    if designer_id is not None:
        get_designer_or_404(db=db, designer_id=designer_id, org_id=org_id)
    snapshots = designer_capacity(
        db=db, org_id=org_id, designer_id=designer_id, include_inactive=designer_id is not None, threshold=threshold
    )
    return [CapacityOut.model_validate(snapshot) for snapshot in snapshots]


def get_manufacturer_capacity(
    *,
    db: Session,
    org_id: UUID,
    manufacturer_id: UUID | None = None,
    threshold: float | None = None,
) -> list[CapacityOut]:
    if manufacturer_id is not None:
        get_manufacturer_or_404(db=db, manufacturer_id=manufacturer_id, org_id=org_id)
    snapshots = manufacturer_capacity(
        db=db,
        org_id=org_id,
        manufacturer_id=manufacturer_id,
        include_inactive=manufacturer_id is not None,
        threshold=threshold,
    )
    return [CapacityOut.model_validate(snapshot) for snapshot in snapshots]


# Audit trail

def get_event_history(*, db: Session, org_id: UUID, kind: str, entity_id: UUID) -> list[EventOut]:
    """Audit events of one design job, work order, purchase order or order fulfillment, oldest first."""
    loaders: dict[str, Callable[[], Any]] = {
        st.DESIGN_JOB: lambda: design_jobs.get_design_job_or_404(db=db, design_job_id=entity_id, org_id=org_id),
        st.WORK_ORDER: lambda: work_orders.get_work_order_or_404(db=db, work_order_id=entity_id, org_id=org_id),
        st.PURCHASE_ORDER: lambda: purchase_orders.get_purchase_order_or_404(
            db=db, purchase_order_id=entity_id, org_id=org_id
        ),
        st.FULFILLMENT: lambda: get_order_or_404(db=db, order_id=entity_id, org_id=org_id),
    }
    if kind not in loaders:
        raise ValidationError(
            code="INVALID_INPUT",
            message="Unknown event stream",
            details={"kind": kind, "allowed": sorted(loaders)},
        )
    loaders[kind]()
    events = list_events(db=db, kind=kind, entity_id=entity_id, org_id=org_id)
    return [EventOut.model_validate(event) for event in events]
