from __future__ import annotations

from datetime import datetime, timedelta, timezone
from types import SimpleNamespace
from uuid import uuid4

import pytest

from orderflow.config import settings
from orderflow.domain_errors import DomainError
from orderflow.services.capacity import (
    build_snapshot,
    designer_capacity,
    effective_capacity_limit,
    is_available,
    manufacturer_capacity,
    next_available_date,
    workload_score,
)
from orderflow.models import DesignJob, WorkOrder
from orderflow.use_cases import orchestrator

from factories import add_designer, add_manufacturer, add_order


def test_effective_capacity_limit_prefers_override_then_agent_then_default() -> None:
    assert effective_capacity_limit(override=3, agent_limit=8) == 3
    assert effective_capacity_limit(override=None, agent_limit=8) == 8
    assert effective_capacity_limit(override=0, agent_limit=None) == settings.DEFAULT_CAPACITY_LIMIT


def test_workload_score_is_clamped_and_zero_capacity_means_full() -> None:
    assert workload_score(0, 10) == 0.0
    assert workload_score(5, 10) == 50.0
    assert workload_score(15, 10) == 100.0
    assert workload_score(1, 0) == 100.0


def test_availability_uses_strict_threshold_and_active_flag() -> None:
    assert is_available(is_active=True, score=89.9, threshold=90.0)
    assert not is_available(is_active=True, score=90.0, threshold=90.0)
    assert not is_available(is_active=False, score=0.0, threshold=90.0)


def test_next_available_date_only_when_saturated() -> None:
    now = datetime(2024, 3, 1, tzinfo=timezone.utc)

    assert next_available_date(score=50.0, threshold=90.0, now=now) is None
    assert next_available_date(score=95.0, threshold=90.0, now=now) == now + timedelta(
        days=settings.NEXT_AVAILABLE_DAYS
    )


def test_build_snapshot_normalizes_specializations() -> None:
    agent = SimpleNamespace(
        id=uuid4(), name="Ana", is_active=True, capacity_limit=4, specializations=[" Embroidery ", "", "SCREEN"]
    )

    snapshot = build_snapshot(agent=agent, active_count=2)

    assert snapshot.capacity_limit == 4
    assert snapshot.workload_score == 50.0
    assert snapshot.is_available
    assert snapshot.next_available_date is None
    assert snapshot.specializations == ("embroidery", "screen")


def test_designer_capacity_counts_only_open_jobs(db, org) -> None:
    designer = add_designer(db, org_id=org.id, name="Ana", capacity_limit=4)
    add_designer(db, org_id=org.id, name="Retired", is_active=False)
    placed = add_order(db, org_id=org.id, item_count=3)
    for item, status in zip(placed.items, ("assigned", "drafting", "approved")):
        db.add(
            DesignJob(
                org_id=org.id,
                order_item_id=item.id,
                assignee_designer_id=designer.id,
                status_code=status,
                title="Job",
            )
        )
    db.commit()

    snapshots = designer_capacity(db=db, org_id=org.id)

    assert [snapshot.name for snapshot in snapshots] == ["Ana"]
    assert snapshots[0].active_count == 2
    assert snapshots[0].workload_score == 50.0


def test_manufacturer_capacity_is_org_scoped(db, org, other_org) -> None:
    mine = add_manufacturer(db, org_id=org.id, name="Mill", capacity_limit=2)
    add_manufacturer(db, org_id=other_org.id, name="Foreign Mill")
    placed = add_order(db, org_id=org.id, item_count=2)
    for item in placed.items:
        db.add(
            WorkOrder(
                org_id=org.id,
                order_item_id=item.id,
                manufacturer_id=mine.id,
                status_code="in_production",
                quantity=5,
            )
        )
    db.commit()

    snapshots = manufacturer_capacity(db=db, org_id=org.id)

    assert [snapshot.agent_id for snapshot in snapshots] == [mine.id]
    assert snapshots[0].workload_score == 100.0
    assert not snapshots[0].is_available
    assert snapshots[0].next_available_date is not None


def test_capacity_reads_list_active_agents_and_scope_lookups(db, org, other_org) -> None:
    busy = add_designer(db, org_id=org.id, name="Busy", capacity_limit=2)
    retired = add_designer(db, org_id=org.id, name="Retired", is_active=False)
    outsider = add_designer(db, org_id=other_org.id, name="Outsider")
    item = add_order(db, org_id=org.id).items[0]
    db.add(
        DesignJob(
            org_id=org.id, order_item_id=item.id, title="Crest", status_code="assigned", assignee_designer_id=busy.id
        )
    )
    db.commit()

    listed = orchestrator.get_designer_capacity(db=db, org_id=org.id)
    single = orchestrator.get_designer_capacity(db=db, org_id=org.id, designer_id=retired.id)

    assert [(row.agent_id, row.active_count, row.workload_score) for row in listed] == [(busy.id, 1, 50.0)]
    assert listed[0].is_available is True
    assert [(row.agent_id, row.is_available) for row in single] == [(retired.id, False)]
    with pytest.raises(DomainError) as exc:
        orchestrator.get_designer_capacity(db=db, org_id=org.id, designer_id=outsider.id)
    assert exc.value.code == "DESIGNER_NOT_FOUND"

    plant = add_manufacturer(db, org_id=org.id, name="Plant", capacity_limit=4)
    manufacturers = orchestrator.get_manufacturer_capacity(db=db, org_id=org.id, threshold=0.0)
    assert [(row.agent_id, row.capacity_limit, row.is_available) for row in manufacturers] == [(plant.id, 4, False)]
