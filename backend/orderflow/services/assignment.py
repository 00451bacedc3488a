"""Bulk assignment of work items to capacity-bounded agents."""

from __future__ import annotations

import logging
from collections.abc import Callable, Iterable, Mapping, Sequence
from dataclasses import dataclass, field
from typing import Any
from uuid import UUID

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from ..domain_errors import DomainError
from .capacity import CapacitySnapshot, effective_capacity_limit, workload_score

logger = logging.getLogger(__name__)

MAX_SKILL_SCORE = 50.0
MAX_WORKLOAD_SCORE = 50.0
NO_REQUIREMENT_SKILL_SCORE = 25.0


@dataclass
class AgentState:
    """Per-call mutable view of an agent; discarded when the call returns."""

    agent_id: UUID
    is_active: bool
    assigned_count: int
    capacity_limit: int
    workload_percent: float
    specializations: frozenset[str] = frozenset()
    name: str = ""
    minimum_quantity: int | None = None

    @property
    def is_eligible(self) -> bool:
        return self.is_active and self.assigned_count < self.capacity_limit

    def accepts(self, item: WorkItem) -> bool:
        if not self.is_eligible:
            return False
        if self.minimum_quantity and item.quantity is not None:
            return item.quantity >= self.minimum_quantity
        return True


@dataclass(frozen=True)
class WorkItem:
    item_id: UUID
    required_specializations: tuple[str, ...] = ()
    quantity: int | None = None


@dataclass(frozen=True)
class Assignment:
    item_id: UUID
    agent_id: UUID
    score: float
    skill_score: float
    workload_score: float
    agent_workload_after: float


@dataclass(frozen=True)
class BulkFailure:
    item_id: UUID
    code: str
    message: str


@dataclass
class BulkOutcome:
    succeeded: list[Any] = field(default_factory=list)
    failed: list[BulkFailure] = field(default_factory=list)


def _normalize(values: Iterable[str] | None) -> frozenset[str]:
    return frozenset(str(v).strip().lower() for v in (values or ()) if str(v).strip())


def agent_states_from_snapshots(
    snapshots: Sequence[CapacitySnapshot],
    *,
    capacity_override: int | None = None,
    released: Mapping[UUID, int] | None = None,
) -> list[AgentState]:
    """Planning view of each agent.

    ``released`` counts, per agent, the items being re-planned in this call that
    the agent already holds; those slots are handed back before planning.
    """
    released = released or {}
    states = []
    for snap in snapshots:
        limit = effective_capacity_limit(override=capacity_override, agent_limit=snap.capacity_limit)
        active_count = max(0, snap.active_count - released.get(snap.agent_id, 0))
        states.append(
            AgentState(
                agent_id=snap.agent_id,
                name=snap.name,
                is_active=snap.is_active,
                assigned_count=active_count,
                capacity_limit=limit,
                workload_percent=workload_score(active_count, limit),
                specializations=_normalize(snap.specializations),
                minimum_quantity=snap.minimum_order_quantity,
            )
        )
    return states


def _copy_state(agent: AgentState, capacity_override: int | None) -> AgentState:
    limit = effective_capacity_limit(override=capacity_override, agent_limit=agent.capacity_limit)
    percent = agent.workload_percent
    if capacity_override is not None:
        percent = workload_score(agent.assigned_count, limit)
    return AgentState(
        agent_id=agent.agent_id,
        name=agent.name,
        is_active=agent.is_active,
        assigned_count=agent.assigned_count,
        capacity_limit=limit,
        workload_percent=percent,
        specializations=_normalize(agent.specializations),
        minimum_quantity=agent.minimum_quantity,
    )


def skill_score(required: Iterable[str], specializations: Iterable[str]) -> float:
    required_set = _normalize(required)
    if not required_set:
        return NO_REQUIREMENT_SKILL_SCORE
    matched = required_set & _normalize(specializations)
    return len(matched) / len(required_set) * MAX_SKILL_SCORE


def workload_component(workload_percent: float) -> float:
    scaled = max(0.0, min(100.0, workload_percent)) / 100.0 * MAX_WORKLOAD_SCORE
    return max(0.0, MAX_WORKLOAD_SCORE - scaled)


def smart_assign(
    items: Sequence[WorkItem],
    agents: Sequence[AgentState],
    *,
    capacity_override: int | None = None,
) -> list[Assignment]:
    """Greedy single pass over ``items`` in input order.

    Workload points come from each agent's load at the start of the call.
    Every pick bumps that agent's assigned count and workload percentage, and
    the bumped count gates eligibility for the following items. Equal scores
    go to the agent listed first. Items with no eligible agent are left out.
    """
    states = [_copy_state(agent, capacity_override) for agent in agents]
    baseline = {state.agent_id: workload_component(state.workload_percent) for state in states}

    assignments: list[Assignment] = []
    for item in items:
        best: AgentState | None = None
        best_score = -1.0
        best_parts = (0.0, 0.0)
        for state in states:
            if not state.accepts(item):
                continue
            skill = skill_score(item.required_specializations, state.specializations)
            load = baseline[state.agent_id]
            total = skill + load
            if total > best_score:
                best, best_score, best_parts = state, total, (skill, load)

        if best is None:
            logger.info("No eligible agent for item %s", item.item_id)
            continue

        best.assigned_count += 1
        best.workload_percent = max(
            best.workload_percent, workload_score(best.assigned_count, best.capacity_limit)
        )
        assignments.append(
            Assignment(
                item_id=item.item_id,
                agent_id=best.agent_id,
                score=best_score,
                skill_score=best_parts[0],
                workload_score=best_parts[1],
                agent_workload_after=best.workload_percent,
            )
        )
    return assignments


def run_per_item(
    *,
    db: Session,
    item_ids: Sequence[UUID],
    action: Callable[[UUID], Any],
) -> BulkOutcome:
    """Run ``action`` for each item, collecting failures instead of aborting."""
    outcome = BulkOutcome()
    for item_id in item_ids:
        try:
            outcome.succeeded.append(action(item_id))
        except DomainError as exc:
            db.rollback()
            outcome.failed.append(BulkFailure(item_id=item_id, code=exc.code, message=exc.message))
        except SQLAlchemyError as exc:
            db.rollback()
            logger.warning("Store error while processing item %s", item_id, exc_info=True)
            outcome.failed.append(BulkFailure(item_id=item_id, code="STORE_ERROR", message=str(exc)))
    return outcome
