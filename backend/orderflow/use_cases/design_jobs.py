"""Design job lifecycle use-cases."""
from __future__ import annotations

import logging
from collections.abc import Sequence
from uuid import UUID, uuid4

from sqlalchemy.orm import Session

from ..domain_errors import NotFoundError, ValidationError
from ..models import DesignJob
from ..schemas import DesignJobCreate, DesignReviewRequest
from ..services import status_transitions as st
from ..services.assignment import BulkOutcome, run_per_item
from ..services.audit import DesignJobEventCode, record_event
from ..services.idempotency import create_or_fetch, ensure_same_inputs
from ..services.scoping import get_designer_or_404, get_order_item_or_404

logger = logging.getLogger(__name__)

_STATUS_EVENT_CODES: dict[str, DesignJobEventCode] = {
    "submitted_for_review": DesignJobEventCode.DESIGN_SUBMITTED_FOR_REVIEW,
    "under_review": DesignJobEventCode.DESIGN_REVIEW_STARTED,
    "approved": DesignJobEventCode.DESIGN_APPROVED,
    "revision_requested": DesignJobEventCode.REVISION_REQUESTED,
    "rejected": DesignJobEventCode.DESIGN_REJECTED,
    "canceled": DesignJobEventCode.DESIGN_JOB_CANCELLED,
}

_CONFLICT_FIELDS = ("title", "brief", "priority", "assignee_designer_id")


def get_design_job_or_404(*, db: Session, design_job_id: UUID, org_id: UUID) -> DesignJob:
    job = db.query(DesignJob).filter(
        DesignJob.id == design_job_id,
        DesignJob.org_id == org_id,
    ).first()
    if not job:
        raise NotFoundError(code="DESIGN_JOB_NOT_FOUND", message="Design job not found")
    return job


def ensure_assignable(job: DesignJob) -> DesignJob:
    if st.is_terminal(st.DESIGN_JOB, job.status_code):
        raise ValidationError(
            code="DESIGN_JOB_CLOSED",
            message=f"Cannot assign a design job in status {job.status_code}",
        )
    return job


def _ensure_designer_active(*, db: Session, designer_id: UUID, org_id: UUID):
    designer = get_designer_or_404(db=db, designer_id=designer_id, org_id=org_id)
    if not designer.is_active:
        raise ValidationError(
            code="DESIGNER_INACTIVE",
            message="Designer is not active",
            details={"designer_id": str(designer_id)},
        )
    return designer


def _move(
    *,
    db: Session,
    job: DesignJob,
    target: str,
    actor_id: UUID | None,
    notes: str | None = None,
) -> None:
    """Validate and apply one edge, adding its event to the open transaction."""
    st.ensure_transition(st.DESIGN_JOB, job.status_code, target)
    previous = job.status_code
    job.status_code = target
    record_event(
        db=db,
        kind=st.DESIGN_JOB,
        entity_id=job.id,
        org_id=job.org_id,
        code=_STATUS_EVENT_CODES.get(target, DesignJobEventCode.STATUS_UPDATED),
        actor_id=actor_id,
        payload={"from": previous, "to": target, "notes": notes},
    )


def create_design_job_use_case(
    *,
    db: Session,
    org_id: UUID,
    data: DesignJobCreate,
    actor_id: UUID | None = None,
    auto_created: bool = False,
) -> tuple[DesignJob, bool]:
    """Create-or-fetch the design job of an order item."""
    item = get_order_item_or_404(db=db, order_item_id=data.order_item_id, org_id=org_id)
    if data.assignee_designer_id is not None:
        _ensure_designer_active(db=db, designer_id=data.assignee_designer_id, org_id=org_id)

    def lookup() -> DesignJob | None:
        return db.query(DesignJob).filter(
            DesignJob.org_id == org_id,
            DesignJob.order_item_id == item.id,
        ).first()

    def create() -> DesignJob:
        job = DesignJob(
            id=uuid4(),
            org_id=org_id,
            order_item_id=item.id,
            title=data.title or f"Design for {item.name_snapshot or item.id}",
            brief=data.brief,
            priority=data.priority,
            status_code="queued",
        )
        db.add(job)
        db.flush()
        record_event(
            db=db,
            kind=st.DESIGN_JOB,
            entity_id=job.id,
            org_id=org_id,
            code=DesignJobEventCode.DESIGN_JOB_CREATED,
            actor_id=actor_id,
            payload={"order_item_id": item.id, "title": job.title, "auto_created": auto_created},
        )
        if data.assignee_designer_id is not None:
            job.assignee_designer_id = data.assignee_designer_id
            record_event(
                db=db,
                kind=st.DESIGN_JOB,
                entity_id=job.id,
                org_id=org_id,
                code=DesignJobEventCode.DESIGNER_ASSIGNED,
                actor_id=actor_id,
                payload={"designer_id": data.assignee_designer_id, "previous_designer_id": None},
            )
            _move(db=db, job=job, target="assigned", actor_id=actor_id)
        return job

    job, created = create_or_fetch(db=db, lookup=lookup, create=create)
    if created:
        logger.info("Design job %s created for order item %s", job.id, item.id)
    else:
        requested = {name: getattr(data, name) for name in _CONFLICT_FIELDS if name in data.model_fields_set}
        ensure_same_inputs(job, code="DESIGN_JOB_CONFLICT", **requested)
    return job, created


def bulk_create_design_jobs_use_case(
    *,
    db: Session,
    org_id: UUID,
    order_item_ids: Sequence[UUID],
    actor_id: UUID | None = None,
    priority: int | None = None,
) -> BulkOutcome:
    def create_one(order_item_id: UUID) -> DesignJob:
        fields = {"order_item_id": order_item_id}
        if priority is not None:
            fields["priority"] = priority
        job, _created = create_design_job_use_case(
            db=db,
            org_id=org_id,
            data=DesignJobCreate(**fields),
            actor_id=actor_id,
        )
        return job

    return run_per_item(db=db, item_ids=order_item_ids, action=create_one)


def assign_designer_use_case(
    *,
    db: Session,
    org_id: UUID,
    design_job_id: UUID,
    designer_id: UUID,
    actor_id: UUID | None = None,
    notes: str | None = None,
    score: float | None = None,
) -> DesignJob:
    """Assign a designer; a queued job moves to assigned in the same transaction."""
    job = get_design_job_or_404(db=db, design_job_id=design_job_id, org_id=org_id)
    _ensure_designer_active(db=db, designer_id=designer_id, org_id=org_id)
    ensure_assignable(job)

    # Idempotent.
    if job.assignee_designer_id == designer_id:
        return job

    previous_designer = job.assignee_designer_id
    job.assignee_designer_id = designer_id
    record_event(
        db=db,
        kind=st.DESIGN_JOB,
        entity_id=job.id,
        org_id=org_id,
        code=DesignJobEventCode.DESIGNER_ASSIGNED,
        actor_id=actor_id,
        payload={
            "designer_id": designer_id,
            "previous_designer_id": previous_designer,
            "score": score,
            "notes": notes,
        },
    )
    if job.status_code == "queued":
        _move(db=db, job=job, target="assigned", actor_id=actor_id, notes=notes)

    db.commit()
    return job


def update_design_job_status_use_case(
    *,
    db: Session,
    org_id: UUID,
    design_job_id: UUID,
    new_status: str,
    actor_id: UUID | None = None,
    notes: str | None = None,
) -> DesignJob:
    job = get_design_job_or_404(db=db, design_job_id=design_job_id, org_id=org_id)
    if new_status == "assigned" and job.assignee_designer_id is None:
        raise ValidationError(
            code="DESIGNER_REQUIRED",
            message="Assign a designer before moving the job to assigned",
        )
    _move(db=db, job=job, target=new_status, actor_id=actor_id, notes=notes)
    db.commit()
    return job


def submit_design_for_review_use_case(
    *,
    db: Session,
    org_id: UUID,
    design_job_id: UUID,
    actor_id: UUID | None = None,
    notes: str | None = None,
) -> DesignJob:
    return update_design_job_status_use_case(
        db=db,
        org_id=org_id,
        design_job_id=design_job_id,
        new_status="submitted_for_review",
        actor_id=actor_id,
        notes=notes,
    )


def review_outcome(review: DesignReviewRequest) -> str:
    if review.request_revisions:
        return "revision_requested"
    if review.approved:
        return "approved"
    return "rejected"


def review_design_job_use_case(
    *,
    db: Session,
    org_id: UUID,
    design_job_id: UUID,
    review: DesignReviewRequest,
    actor_id: UUID | None = None,
) -> DesignJob:
    """Record a review decision.

    A job still in ``submitted_for_review`` is first moved to ``under_review``;
    both steps are validated up front and committed together.
    """
    job = get_design_job_or_404(db=db, design_job_id=design_job_id, org_id=org_id)
    target = review_outcome(review)

    steps = [target]
    if job.status_code == "submitted_for_review":
        steps = ["under_review", target]
    current = job.status_code
    for step in steps:
        st.ensure_transition(st.DESIGN_JOB, current, step)
        current = step

    for step in steps:
        _move(db=db, job=job, target=step, actor_id=actor_id, notes=review.notes)
    db.commit()
    logger.info("Design job %s reviewed: %s", job.id, target)
    return job
