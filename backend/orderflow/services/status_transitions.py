"""Status vocabularies and transition graphs for every workflow entity kind."""

from __future__ import annotations

from ..domain_errors import ValidationError


WORK_ORDER = "work_order"
DESIGN_JOB = "design_job"
PURCHASE_ORDER = "purchase_order"
FULFILLMENT = "fulfillment"
FULFILLMENT_MILESTONE = "fulfillment_milestone"

_WORK_ORDER_TRANSITIONS: dict[str, set[str]] = {
    "pending": {"queued", "cancelled"},
    "queued": {"in_production", "on_hold", "cancelled"},
    "in_production": {"quality_check", "completed", "on_hold", "cancelled"},
    "quality_check": {"packaging", "rework", "completed", "on_hold"},
    "rework": {"quality_check", "in_production", "cancelled"},
    "packaging": {"completed", "shipped"},
    "completed": {"shipped"},
    "on_hold": {"queued", "in_production", "cancelled"},
    "shipped": set(),
    "cancelled": set(),
}

_DESIGN_JOB_TRANSITIONS: dict[str, set[str]] = {
    "queued": {"assigned", "canceled"},
    "assigned": {"drafting", "queued", "canceled"},
    "drafting": {"submitted_for_review", "assigned", "canceled"},
    "submitted_for_review": {"under_review", "drafting"},
    "under_review": {"approved", "revision_requested", "rejected"},
    "revision_requested": {"drafting", "canceled"},
    "rejected": {"queued", "canceled"},
    "approved": set(),
    "canceled": set(),
}

_PURCHASE_ORDER_TRANSITIONS: dict[str, set[str]] = {
    "draft": {"pending_approval", "approved", "cancelled"},
    "pending_approval": {"approved", "draft", "cancelled"},
    "approved": {"sent", "cancelled"},
    "sent": {"acknowledged", "on_hold", "cancelled"},
    "acknowledged": {"in_production", "on_hold", "cancelled"},
    "in_production": {"shipped", "on_hold", "cancelled"},
    "shipped": {"delivered", "cancelled"},
    "delivered": {"received", "cancelled"},
    "received": {"completed"},
    "on_hold": {"approved", "sent", "acknowledged", "in_production", "cancelled"},
    "completed": set(),
    "cancelled": set(),
}

_FULFILLMENT_TRANSITIONS: dict[str, set[str]] = {
    "not_started": {"preparation"},
    "preparation": {"packaging", "exception"},
    "packaging": {"ready_to_ship", "exception"},
    "ready_to_ship": {"shipped", "exception"},
    "shipped": {"in_transit", "delivered", "exception"},
    "in_transit": {"delivered", "exception"},
    "delivered": {"completed"},
    "exception": {"preparation", "packaging", "cancelled"},
    "completed": set(),
    "cancelled": set(),
}

_FULFILLMENT_MILESTONE_TRANSITIONS: dict[str, set[str]] = {
    "pending": {"in_progress", "completed", "blocked"},
    "in_progress": {"completed", "blocked"},
    "blocked": {"pending", "in_progress", "completed"},
    "completed": set(),
}

_TRANSITIONS: dict[str, dict[str, set[str]]] = {
    WORK_ORDER: _WORK_ORDER_TRANSITIONS,
    DESIGN_JOB: _DESIGN_JOB_TRANSITIONS,
    PURCHASE_ORDER: _PURCHASE_ORDER_TRANSITIONS,
    FULFILLMENT: _FULFILLMENT_TRANSITIONS,
    FULFILLMENT_MILESTONE: _FULFILLMENT_MILESTONE_TRANSITIONS,
}

ENTITY_KINDS: tuple[str, ...] = tuple(_TRANSITIONS)

# Work order statuses that count as "done" when deciding whether an order is
# ready for packaging. quality_approved is accepted for rows written by older
# clients even though the graph never produces it.
WORK_ORDER_DONE_STATUSES: frozenset[str] = frozenset({"completed", "shipped", "quality_approved"})
WORK_ORDER_MATERIALS_PENDING_STATUSES: frozenset[str] = frozenset({"queued"})
WORK_ORDER_DELAY_STATUSES: frozenset[str] = frozenset({"delayed", "on_hold"})
WORK_ORDER_CLOSED_STATUSES: frozenset[str] = frozenset({"completed", "shipped", "cancelled"})
DESIGN_JOB_CLOSED_STATUSES: frozenset[str] = frozenset({"approved", "canceled", "rejected"})


def statuses(kind: str) -> frozenset[str]:
    """Closed status vocabulary of ``kind`` (empty for unknown kinds)."""
    return frozenset(_TRANSITIONS.get(kind, {}))


def valid_transitions(kind: str, state: str | None) -> frozenset[str]:
    table = _TRANSITIONS.get(kind)
    if table is None or state is None:
        return frozenset()
    return frozenset(table.get(state, set()))


def can_transition(kind: str, current: str | None, target: str | None) -> bool:
    if target is None:
        return False
    return target in valid_transitions(kind, current)


def is_terminal(kind: str, state: str) -> bool:
    table = _TRANSITIONS.get(kind)
    if table is None or state not in table:
        return False
    return not table[state]


def ensure_transition(kind: str, current: str | None, target: str | None) -> str:
    """Return ``target`` or raise ValidationError naming the violated edge."""
    if kind not in _TRANSITIONS:
        raise ValidationError(
            code="UNKNOWN_ENTITY_KIND",
            message=f"Unknown entity kind: {kind}",
        )
    if target not in _TRANSITIONS[kind]:
        raise ValidationError(
            code="UNKNOWN_STATUS",
            message=f"Unknown {kind} status: {target}",
            details={"status": target},
        )
    if not can_transition(kind, current, target):
        allowed = sorted(valid_transitions(kind, current))
        raise ValidationError(
            code="INVALID_STATUS_TRANSITION",
            message=f"Invalid {kind} status transition: {current} -> {target}",
            details={"from": current, "to": target, "allowed": allowed},
        )
    return target
