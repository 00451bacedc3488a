from __future__ import annotations

from uuid import uuid4

import pytest

from orderflow.domain_errors import DomainError
from orderflow.services import status_transitions as st
from orderflow.services.audit import list_events
from orderflow.services.milestones import CRITICAL_FULFILLMENT_MILESTONES, DEFAULT_FULFILLMENT_MILESTONES
from orderflow.use_cases import orchestrator

from factories import add_order


def _update(db, org_id, order_id, code, **data):
    return orchestrator.update_fulfillment_milestone(
        db=db, org_id=org_id, order_id=order_id, milestone_code=code, data=data
    )


def test_start_fulfillment_seeds_default_milestones_once(db, org) -> None:
    order = add_order(db, org_id=org.id).order
    actor = uuid4()

    started = orchestrator.start_fulfillment(db=db, org_id=org.id, order_id=order.id, actor_id=actor)
    again = orchestrator.start_fulfillment(db=db, org_id=org.id, order_id=order.id)

    assert started.fulfillment_status_code == "preparation"
    assert [row.milestone_code for row in started.milestones] == [t.code for t in DEFAULT_FULFILLMENT_MILESTONES]
    confirmed = started.milestones[0]
    assert confirmed.status == "completed"
    assert confirmed.completed_by == actor
    assert all(row.status == "pending" for row in started.milestones[1:])
    assert started.milestones[1].milestone_type == "approval_gate"
    assert [row.id for row in again.milestones] == [row.id for row in started.milestones]
    events = list_events(db=db, kind=st.FULFILLMENT, entity_id=order.id, org_id=org.id)
    assert [event.event_code for event in events] == ["FULFILLMENT_STARTED"]


def test_blocking_a_milestone_needs_a_reason(db, org) -> None:
    order = add_order(db, org_id=org.id).order
    orchestrator.start_fulfillment(db=db, org_id=org.id, order_id=order.id)

    with pytest.raises(DomainError) as exc:
        _update(db, org.id, order.id, "SHIPPED", status="blocked")
    assert exc.value.code == "BLOCKED_REASON_REQUIRED"

    blocked = _update(db, org.id, order.id, "SHIPPED", status="blocked", blocked_reason="Carrier strike")
    resumed = _update(db, org.id, order.id, "SHIPPED", status="in_progress")

    assert blocked.blocked_reason == "Carrier strike"
    assert resumed.status == "in_progress"
    assert resumed.blocked_reason is None
    events = list_events(db=db, kind=st.FULFILLMENT, entity_id=order.id, org_id=org.id)
    assert events[1].payload["blocked_reason"] == "Carrier strike"


def test_completed_milestone_is_final(db, org) -> None:
    order = add_order(db, org_id=org.id).order
    orchestrator.start_fulfillment(db=db, org_id=org.id, order_id=order.id)

    with pytest.raises(DomainError) as exc:
        _update(db, org.id, order.id, "ORDER_CONFIRMED", status="in_progress")

    assert exc.value.code == "INVALID_STATUS_TRANSITION"


def test_order_cannot_complete_before_critical_milestones(db, org) -> None:
    order = add_order(db, org_id=org.id).order
    orchestrator.start_fulfillment(db=db, org_id=org.id, order_id=order.id)

    with pytest.raises(DomainError) as exc:
        _update(db, org.id, order.id, "COMPLETED", status="completed")

    assert exc.value.code == "CRITICAL_MILESTONES_INCOMPLETE"
    assert exc.value.details["milestones"] == [
        "Manufacturing Completed",
        "Quality Check Passed",
        "Shipped",
        "Delivered",
    ]


def test_full_fulfillment_walk(db, org) -> None:
    order = add_order(db, org_id=org.id).order
    orchestrator.start_fulfillment(db=db, org_id=org.id, order_id=order.id)
    for status in ("packaging", "ready_to_ship", "shipped", "delivered"):
        orchestrator.update_fulfillment_status(db=db, org_id=org.id, order_id=order.id, new_status=status)

    with pytest.raises(DomainError) as exc:
        orchestrator.update_fulfillment_status(db=db, org_id=org.id, order_id=order.id, new_status="completed")
    assert exc.value.code == "CRITICAL_MILESTONES_INCOMPLETE"

    for code in CRITICAL_FULFILLMENT_MILESTONES:
        _update(db, org.id, order.id, code, status="completed")
    _update(db, org.id, order.id, "COMPLETED", status="completed")
    done = orchestrator.update_fulfillment_status(db=db, org_id=org.id, order_id=order.id, new_status="completed")

    assert done.fulfillment_status_code == "completed"
    with pytest.raises(DomainError) as exc:
        orchestrator.update_fulfillment_status(db=db, org_id=org.id, order_id=order.id, new_status="exception")
    assert exc.value.code == "INVALID_STATUS_TRANSITION"


def test_fulfillment_status_skips_are_rejected(db, org) -> None:
    order = add_order(db, org_id=org.id).order

    with pytest.raises(DomainError) as exc:
        orchestrator.update_fulfillment_status(db=db, org_id=org.id, order_id=order.id, new_status="shipped")

    assert exc.value.details["from"] == "not_started"
    assert exc.value.details["allowed"] == ["preparation"]


def test_unknown_milestone_and_foreign_order_are_not_found(db, org, other_org) -> None:
    order = add_order(db, org_id=org.id).order
    orchestrator.start_fulfillment(db=db, org_id=org.id, order_id=order.id)

    with pytest.raises(DomainError) as exc:
        _update(db, org.id, order.id, "GIFT_WRAPPED", status="completed")
    assert exc.value.code == "FULFILLMENT_MILESTONE_NOT_FOUND"

    with pytest.raises(DomainError) as exc:
        orchestrator.get_fulfillment_status(db=db, org_id=other_org.id, order_id=order.id)
    assert exc.value.code == "ORDER_NOT_FOUND"


def test_status_before_start_has_no_milestones(db, org) -> None:
    order = add_order(db, org_id=org.id).order

    status = orchestrator.get_fulfillment_status(db=db, org_id=org.id, order_id=order.id)

    assert status.fulfillment_status_code == "not_started"
    assert status.milestones == []
