from __future__ import annotations

from types import SimpleNamespace
from uuid import uuid4

import pytest

from orderflow.domain_errors import DomainError
from orderflow.models import DesignJob, DesignJobEvent, OrderItem, ProductionEvent, WorkOrder
from orderflow.schemas import DesignReviewRequest
from orderflow.services import status_transitions as st
from orderflow.services.audit import list_events
from orderflow.use_cases import orchestrator, work_orders
from orderflow.use_cases.design_jobs import (
    review_design_job_use_case,
    review_outcome,
    update_design_job_status_use_case,
)

from factories import add_designer, add_order


class _QueryStub:
    def __init__(self, *, first_result=None):
        self._first_result = first_result

    def filter(self, *_args, **_kwargs):
        return self

    def first(self):
        return self._first_result


class _SessionStub:
    def __init__(self, *, job):
        self._job = job
        self.added = []
        self.commit_calls = 0

    def query(self, model):
        if model is DesignJob:
            return _QueryStub(first_result=self._job)
        raise AssertionError(f"Unexpected query model: {model}")

    def add(self, obj):
        self.added.append(obj)

    def commit(self):
        self.commit_calls += 1


def _job(*, status="queued", designer_id=None):
    return SimpleNamespace(
        id=uuid4(),
        org_id=uuid4(),
        order_item_id=uuid4(),
        assignee_designer_id=designer_id,
        status_code=status,
        priority=5,
        title="Design for Jersey",
    )


def _codes(events):
    return [event.event_code for event in events]


def test_review_outcome_prefers_revisions_over_approval() -> None:
    assert review_outcome(DesignReviewRequest(approved=True, request_revisions=True)) == "revision_requested"
    assert review_outcome(DesignReviewRequest(approved=True)) == "approved"
    assert review_outcome(DesignReviewRequest(approved=False)) == "rejected"


def test_review_of_submitted_job_passes_through_under_review_in_one_commit() -> None:
    job = _job(status="submitted_for_review")
    db = _SessionStub(job=job)

    result = review_design_job_use_case(
        db=db, org_id=job.org_id, design_job_id=job.id, review=DesignReviewRequest(approved=True, notes="Looks good")
    )

    assert result is job
    assert job.status_code == "approved"
    assert db.commit_calls == 1
    events = [item for item in db.added if isinstance(item, DesignJobEvent)]
    assert _codes(events) == ["DESIGN_REVIEW_STARTED", "DESIGN_APPROVED"]
    assert events[1].payload == {"from": "under_review", "to": "approved", "notes": "Looks good"}


def test_review_of_drafting_job_is_rejected_without_side_effects() -> None:
    job = _job(status="drafting")
    db = _SessionStub(job=job)

    with pytest.raises(DomainError, match="drafting") as exc:
        review_design_job_use_case(
            db=db, org_id=job.org_id, design_job_id=job.id, review=DesignReviewRequest(approved=True)
        )

    assert exc.value.http_status == 400
    assert exc.value.code == "INVALID_STATUS_TRANSITION"
    assert job.status_code == "drafting"
    assert db.added == []
    assert db.commit_calls == 0


def test_moving_to_assigned_requires_a_designer() -> None:
    job = _job(status="queued")
    db = _SessionStub(job=job)

    with pytest.raises(DomainError) as exc:
        update_design_job_status_use_case(db=db, org_id=job.org_id, design_job_id=job.id, new_status="assigned")

    assert exc.value.code == "DESIGNER_REQUIRED"
    assert job.status_code == "queued"
    assert db.commit_calls == 0


def _approve(db, *, org_id, job_id, designer_id):
    orchestrator.assign_designer(db=db, org_id=org_id, design_job_id=job_id, designer_id=designer_id)
    orchestrator.update_design_job_status(db=db, org_id=org_id, design_job_id=job_id, new_status="drafting")
    orchestrator.submit_design_for_review(db=db, org_id=org_id, design_job_id=job_id)
    return orchestrator.review_design_job(db=db, org_id=org_id, design_job_id=job_id, review={"approved": True})


def test_approving_a_design_generates_one_pending_work_order(db, org) -> None:
    item = add_order(db, org_id=org.id, quantity=24).items[0]
    designer = add_designer(db, org_id=org.id, name="Ana")
    job = orchestrator.create_design_job(db=db, org_id=org.id, data={"order_item_id": item.id, "priority": 3})

    approved = _approve(db, org_id=org.id, job_id=job.id, designer_id=designer.id)

    assert approved.status_code == "approved"
    assert _codes(list_events(db=db, kind=st.DESIGN_JOB, entity_id=job.id, org_id=org.id)) == [
        "DESIGN_JOB_CREATED",
        "DESIGNER_ASSIGNED",
        "STATUS_UPDATED",
        "STATUS_UPDATED",
        "DESIGN_SUBMITTED_FOR_REVIEW",
        "DESIGN_REVIEW_STARTED",
        "DESIGN_APPROVED",
    ]

    created = db.query(WorkOrder).filter(WorkOrder.order_item_id == item.id).all()
    assert len(created) == 1
    assert created[0].status_code == "pending"
    assert created[0].quantity == 24
    assert created[0].priority == 3
    assert _codes(list_events(db=db, kind=st.WORK_ORDER, entity_id=created[0].id, org_id=org.id)) == [
        "WORK_ORDER_CREATED",
        "WORK_ORDER_AUTO_GENERATED",
    ]
    assert db.query(OrderItem).filter(OrderItem.id == item.id).one().status_code == "manufacturing"


def test_work_order_failure_does_not_undo_the_approval(db, org, monkeypatch) -> None:
    item = add_order(db, org_id=org.id).items[0]
    designer = add_designer(db, org_id=org.id, name="Ana")
    job = orchestrator.create_design_job(db=db, org_id=org.id, data={"order_item_id": item.id})

    def explode(**_kwargs):
        raise RuntimeError("manufacturing store offline")

    monkeypatch.setattr(work_orders, "generate_work_order_for_design_job", explode)

    approved = _approve(db, org_id=org.id, job_id=job.id, designer_id=designer.id)

    assert approved.status_code == "approved"
    db.expire_all()
    assert db.query(DesignJob).filter(DesignJob.id == job.id).one().status_code == "approved"
    assert db.query(WorkOrder).count() == 0
    assert db.query(ProductionEvent).count() == 0
    failure = list_events(db=db, kind=st.DESIGN_JOB, entity_id=job.id, org_id=org.id)[-1]
    assert failure.event_code == "WORK_ORDER_GENERATION_FAILED"
    assert failure.payload == {"cascade": "auto_generate_work_order", "error": "manufacturing store offline"}


def test_entering_design_stage_creates_the_job_once(db, org) -> None:
    item = add_order(db, org_id=org.id).items[0]

    first = orchestrator.handle_order_item_status_change(
        db=db, org_id=org.id, order_item_id=item.id, new_status="design", previous_status="pending"
    )
    again = orchestrator.handle_order_item_status_change(
        db=db, org_id=org.id, order_item_id=item.id, new_status="design"
    )
    ignored = orchestrator.handle_order_item_status_change(
        db=db, org_id=org.id, order_item_id=item.id, new_status="manufacturing", previous_status="design"
    )

    assert first.id == again.id
    assert first.status_code == "queued"
    assert first.title == "Design for Jersey #1"
    assert ignored is None
    events = list_events(db=db, kind=st.DESIGN_JOB, entity_id=first.id, org_id=org.id)
    assert _codes(events) == ["DESIGN_JOB_CREATED"]
    assert events[0].payload["auto_created"] is True


def test_smart_bulk_assignment_spreads_by_capacity_and_reports_failures(db, org) -> None:
    first = add_designer(db, org_id=org.id, name="A Designer", capacity_limit=2)
    second = add_designer(db, org_id=org.id, name="B Designer", capacity_limit=2)
    items = add_order(db, org_id=org.id, item_count=4).items
    job_ids = [
        orchestrator.create_design_job(db=db, org_id=org.id, data={"order_item_id": item.id}).id
        for item in items[:3]
    ]
    closed = DesignJob(
        org_id=org.id, order_item_id=items[3].id, status_code="approved", title="Already approved"
    )
    db.add(closed)
    db.commit()
    missing_id = uuid4()

    result = orchestrator.bulk_assign_design_jobs(
        db=db, org_id=org.id, design_job_ids=[*job_ids, closed.id, missing_id]
    )

    assert [job.id for job in result.succeeded] == job_ids
    assert [job.assignee_designer_id for job in result.succeeded] == [first.id, first.id, second.id]
    assert all(job.status_code == "assigned" for job in result.succeeded)
    assert [(failure.item_id, failure.code) for failure in result.failed] == [
        (closed.id, "DESIGN_JOB_CLOSED"),
        (missing_id, "DESIGN_JOB_NOT_FOUND"),
    ]


def test_smart_bulk_assignment_reports_items_left_without_capacity(db, org) -> None:
    add_designer(db, org_id=org.id, name="Solo", capacity_limit=1)
    items = add_order(db, org_id=org.id, item_count=2).items
    job_ids = [
        orchestrator.create_design_job(db=db, org_id=org.id, data={"order_item_id": item.id}).id for item in items
    ]

    result = orchestrator.bulk_assign_design_jobs(db=db, org_id=org.id, design_job_ids=job_ids)

    assert [job.id for job in result.succeeded] == job_ids[:1]
    assert [(failure.item_id, failure.code) for failure in result.failed] == [(job_ids[1], "NO_ELIGIBLE_DESIGNER")]


def test_designer_from_another_org_is_not_found(db, org, other_org) -> None:
    item = add_order(db, org_id=org.id).items[0]
    outsider = add_designer(db, org_id=other_org.id, name="Outsider")
    job = orchestrator.create_design_job(db=db, org_id=org.id, data={"order_item_id": item.id})

    with pytest.raises(DomainError) as exc:
        orchestrator.assign_designer(db=db, org_id=org.id, design_job_id=job.id, designer_id=outsider.id)

    assert exc.value.http_status == 404
    assert exc.value.code == "DESIGNER_NOT_FOUND"


def test_invalid_create_input_is_a_validation_error(db, org) -> None:
    with pytest.raises(DomainError) as exc:
        orchestrator.create_design_job(db=db, org_id=org.id, data={"order_item_id": uuid4(), "priority": 11})

    assert exc.value.code == "INVALID_INPUT"
    assert exc.value.details["errors"][0]["loc"] == ["priority"]


def test_bulk_create_is_idempotent_per_item_and_isolates_failures(db, org) -> None:
    items = add_order(db, org_id=org.id, item_count=2).items
    missing_id = uuid4()

    first = orchestrator.bulk_create_design_jobs(
        db=db, org_id=org.id, order_item_ids=[items[0].id, missing_id, items[1].id], priority=2
    )
    again = orchestrator.bulk_create_design_jobs(db=db, org_id=org.id, order_item_ids=[item.id for item in items])

    assert [job.order_item_id for job in first.succeeded] == [items[0].id, items[1].id]
    assert all(job.priority == 2 and job.status_code == "queued" for job in first.succeeded)
    assert [(failure.item_id, failure.code) for failure in first.failed] == [(missing_id, "ORDER_ITEM_NOT_FOUND")]
    assert [job.id for job in again.succeeded] == [job.id for job in first.succeeded]
    assert again.failed == []
    assert db.query(DesignJob).filter(DesignJob.org_id == org.id).count() == 2


def test_smart_bulk_assignment_counts_already_assigned_jobs_once(db, org) -> None:
    designer = add_designer(db, org_id=org.id, name="Solo", capacity_limit=2)
    items = add_order(db, org_id=org.id, item_count=2).items
    job1, job2 = [
        orchestrator.create_design_job(db=db, org_id=org.id, data={"order_item_id": item.id}) for item in items
    ]
    orchestrator.assign_designer(db=db, org_id=org.id, design_job_id=job1.id, designer_id=designer.id)

    result = orchestrator.bulk_assign_design_jobs(db=db, org_id=org.id, design_job_ids=[job1.id, job2.id])

    assert [(job.id, job.assignee_designer_id) for job in result.succeeded] == [
        (job1.id, designer.id),
        (job2.id, designer.id),
    ]
    assert result.failed == []
    assert orchestrator.get_designer_capacity(db=db, org_id=org.id)[0].active_count == 2


def test_smart_bulk_assignment_does_not_spend_capacity_on_missing_jobs(db, org) -> None:
    add_designer(db, org_id=org.id, name="Solo", capacity_limit=1)
    item = add_order(db, org_id=org.id).items[0]
    job = orchestrator.create_design_job(db=db, org_id=org.id, data={"order_item_id": item.id})
    missing_id = uuid4()

    result = orchestrator.bulk_assign_design_jobs(db=db, org_id=org.id, design_job_ids=[missing_id, job.id])

    assert [row.id for row in result.succeeded] == [job.id]
    assert [(failure.item_id, failure.code) for failure in result.failed] == [(missing_id, "DESIGN_JOB_NOT_FOUND")]
