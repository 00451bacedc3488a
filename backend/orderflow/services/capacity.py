"""Workload and availability scoring for designers and manufacturers."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from uuid import UUID

from sqlalchemy import func
from sqlalchemy.orm import Session

from ..config import settings
from ..models import DesignJob, Designer, Manufacturer, WorkOrder
from .status_transitions import DESIGN_JOB_CLOSED_STATUSES, WORK_ORDER_CLOSED_STATUSES


@dataclass(frozen=True)
class CapacitySnapshot:
    agent_id: UUID
    name: str
    is_active: bool
    capacity_limit: int
    active_count: int
    workload_score: float
    is_available: bool
    next_available_date: datetime | None = None
    specializations: tuple[str, ...] = field(default_factory=tuple)
    minimum_order_quantity: int | None = None


def effective_capacity_limit(*, override: int | None = None, agent_limit: int | None = None) -> int:
    """Caller override, else the agent's own limit, else the configured default."""
    for candidate in (override, agent_limit):
        if candidate is not None and candidate > 0:
            return candidate
    return settings.DEFAULT_CAPACITY_LIMIT


def workload_score(active_count: int, capacity_limit: int) -> float:
    if capacity_limit <= 0:
        return 100.0
    return min(100.0, active_count / capacity_limit * 100.0)


def is_available(*, is_active: bool, score: float, threshold: float | None = None) -> bool:
    limit = settings.AVAILABILITY_THRESHOLD if threshold is None else threshold
    return bool(is_active) and score < limit


def next_available_date(
    *,
    score: float,
    threshold: float | None = None,
    now: datetime | None = None,
) -> datetime | None:
    limit = settings.AVAILABILITY_THRESHOLD if threshold is None else threshold
    if score < limit:
        return None
    ts = now or datetime.now(timezone.utc)
    return ts + timedelta(days=settings.NEXT_AVAILABLE_DAYS)


def _normalize_specializations(raw) -> tuple[str, ...]:
    if not raw:
        return ()
    return tuple(str(item).strip().lower() for item in raw if str(item).strip())


def build_snapshot(
    *,
    agent,
    active_count: int,
    capacity_override: int | None = None,
    threshold: float | None = None,
    now: datetime | None = None,
) -> CapacitySnapshot:
    limit = effective_capacity_limit(override=capacity_override, agent_limit=agent.capacity_limit)
    score = workload_score(active_count, limit)
    return CapacitySnapshot(
        agent_id=agent.id,
        name=agent.name,
        is_active=bool(agent.is_active),
        capacity_limit=limit,
        active_count=active_count,
        workload_score=score,
        is_available=is_available(is_active=agent.is_active, score=score, threshold=threshold),
        next_available_date=next_available_date(score=score, threshold=threshold, now=now),
        specializations=_normalize_specializations(agent.specializations),
        minimum_order_quantity=getattr(agent, "minimum_order_quantity", None),
    )


def count_active_design_jobs(*, db: Session, org_id: UUID) -> dict[UUID, int]:
    rows = (
        db.query(DesignJob.assignee_designer_id, func.count(DesignJob.id))
        .filter(
            DesignJob.org_id == org_id,
            DesignJob.assignee_designer_id.isnot(None),
            DesignJob.status_code.notin_(DESIGN_JOB_CLOSED_STATUSES),
        )
        .group_by(DesignJob.assignee_designer_id)
        .all()
    )
    return {agent_id: int(count) for agent_id, count in rows}


def count_active_work_orders(*, db: Session, org_id: UUID) -> dict[UUID, int]:
    rows = (
        db.query(WorkOrder.manufacturer_id, func.count(WorkOrder.id))
        .filter(
            WorkOrder.org_id == org_id,
            WorkOrder.manufacturer_id.isnot(None),
            WorkOrder.status_code.notin_(WORK_ORDER_CLOSED_STATUSES),
        )
        .group_by(WorkOrder.manufacturer_id)
        .all()
    )
    return {agent_id: int(count) for agent_id, count in rows}


def designer_capacity(
    *,
    db: Session,
    org_id: UUID,
    designer_id: UUID | None = None,
    include_inactive: bool = False,
    threshold: float | None = None,
) -> list[CapacitySnapshot]:
    query = db.query(Designer).filter(Designer.org_id == org_id)
    if designer_id is not None:
        query = query.filter(Designer.id == designer_id)
    if not include_inactive:
        query = query.filter(Designer.is_active.is_(True))
    designers = query.order_by(Designer.name.asc(), Designer.id.asc()).all()

    counts = count_active_design_jobs(db=db, org_id=org_id)
    return [
        build_snapshot(agent=designer, active_count=counts.get(designer.id, 0), threshold=threshold)
        for designer in designers
    ]


def manufacturer_capacity(
    *,
    db: Session,
    org_id: UUID,
    manufacturer_id: UUID | None = None,
    include_inactive: bool = False,
    threshold: float | None = None,
) -> list[CapacitySnapshot]:
    query = db.query(Manufacturer).filter(Manufacturer.org_id == org_id)
    if manufacturer_id is not None:
        query = query.filter(Manufacturer.id == manufacturer_id)
    if not include_inactive:
        query = query.filter(Manufacturer.is_active.is_(True))
    manufacturers = query.order_by(Manufacturer.name.asc(), Manufacturer.id.asc()).all()

    counts = count_active_work_orders(db=db, org_id=org_id)
    return [
        build_snapshot(agent=manufacturer, active_count=counts.get(manufacturer.id, 0), threshold=threshold)
        for manufacturer in manufacturers
    ]
