from __future__ import annotations

import pytest

from orderflow.domain_errors import DomainError
from orderflow.services import status_transitions as st


@pytest.mark.parametrize("kind", st.ENTITY_KINDS)
def test_every_target_is_a_known_status_and_no_self_transitions(kind) -> None:
    known = st.statuses(kind)
    for state in known:
        targets = st.valid_transitions(kind, state)
        assert targets <= known
        assert state not in targets


@pytest.mark.parametrize(
    "kind, terminal",
    [
        (st.WORK_ORDER, {"shipped", "cancelled"}),
        (st.DESIGN_JOB, {"approved", "canceled"}),
        (st.PURCHASE_ORDER, {"completed", "cancelled"}),
        (st.FULFILLMENT, {"completed", "cancelled"}),
        (st.FULFILLMENT_MILESTONE, {"completed"}),
    ],
)
def test_terminal_states_have_no_outgoing_edges(kind, terminal) -> None:
    assert {state for state in st.statuses(kind) if st.is_terminal(kind, state)} == terminal
    for state in terminal:
        assert st.valid_transitions(kind, state) == frozenset()


def test_unknown_kind_or_state_fails_closed() -> None:
    assert st.valid_transitions("invoice", "draft") == frozenset()
    assert st.valid_transitions(st.WORK_ORDER, "teleported") == frozenset()
    assert st.valid_transitions(st.WORK_ORDER, None) == frozenset()
    assert not st.can_transition(st.WORK_ORDER, "teleported", "queued")
    assert not st.can_transition(st.WORK_ORDER, "pending", None)
    assert not st.is_terminal("invoice", "draft")


def test_known_edges() -> None:
    assert st.can_transition(st.WORK_ORDER, "pending", "queued")
    assert not st.can_transition(st.WORK_ORDER, "pending", "completed")
    assert st.can_transition(st.DESIGN_JOB, "under_review", "approved")
    assert not st.can_transition(st.DESIGN_JOB, "submitted_for_review", "approved")
    assert st.can_transition(st.PURCHASE_ORDER, "on_hold", "in_production")
    assert st.can_transition(st.FULFILLMENT, "exception", "cancelled")
    assert st.can_transition(st.FULFILLMENT_MILESTONE, "blocked", "in_progress")


def test_ensure_transition_reports_the_rejected_edge() -> None:
    with pytest.raises(DomainError, match="pending") as exc:
        st.ensure_transition(st.WORK_ORDER, "pending", "completed")

    assert exc.value.http_status == 400
    assert exc.value.code == "INVALID_STATUS_TRANSITION"
    assert exc.value.details["from"] == "pending"
    assert exc.value.details["to"] == "completed"
    assert exc.value.details["allowed"] == ["cancelled", "queued"]


def test_ensure_transition_rejects_unknown_kind_and_target() -> None:
    with pytest.raises(DomainError) as exc:
        st.ensure_transition("invoice", "draft", "sent")
    assert exc.value.code == "UNKNOWN_ENTITY_KIND"

    with pytest.raises(DomainError) as exc:
        st.ensure_transition(st.DESIGN_JOB, "queued", "published")
    assert exc.value.code == "UNKNOWN_STATUS"


def test_ensure_transition_returns_target() -> None:
    assert st.ensure_transition(st.PURCHASE_ORDER, "draft", "pending_approval") == "pending_approval"
