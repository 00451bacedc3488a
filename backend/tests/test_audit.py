from __future__ import annotations

from datetime import date
from decimal import Decimal
from uuid import uuid4

import pytest
from sqlalchemy.exc import OperationalError

from orderflow.domain_errors import DomainError
from orderflow.models import PurchaseOrderEvent
from orderflow.services import status_transitions as st
from orderflow.services.audit import (
    PurchaseOrderEventCode,
    event_model,
    record_event,
    record_event_safely,
)
from orderflow.use_cases import orchestrator

from factories import add_order


class _SessionStub:
    def __init__(self, *, fail_commit=False):
        self.fail_commit = fail_commit
        self.added = []
        self.rollback_calls = 0

    def add(self, obj):
        self.added.append(obj)

    def commit(self):
        if self.fail_commit:
            raise OperationalError("INSERT INTO design_job_events", {}, Exception("database is locked"))

    def rollback(self):
        self.rollback_calls += 1


def test_record_event_serializes_payload_values() -> None:
    db = _SessionStub()
    po_id, supplier_id = uuid4(), uuid4()

    event = record_event(
        db=db,
        kind=st.PURCHASE_ORDER,
        entity_id=po_id,
        org_id=uuid4(),
        code=PurchaseOrderEventCode.PO_CREATED,
        payload={"supplier_id": supplier_id, "total_amount": Decimal("12.50"), "due": date(2024, 5, 1)},
    )

    assert isinstance(event, PurchaseOrderEvent)
    assert db.added == [event]
    assert event.purchase_order_id == po_id
    assert event.event_code == "PO_CREATED"
    assert event.payload == {"supplier_id": str(supplier_id), "total_amount": "12.50", "due": "2024-05-01"}


def test_record_event_rejects_codes_outside_the_stream() -> None:
    db = _SessionStub()

    with pytest.raises(ValueError, match="Unknown work_order event code"):
        record_event(db=db, kind=st.WORK_ORDER, entity_id=uuid4(), org_id=uuid4(), code="PO_CREATED")

    with pytest.raises(ValueError, match="No event stream"):
        event_model(st.FULFILLMENT_MILESTONE)
    assert db.added == []


def test_record_event_safely_swallows_store_errors() -> None:
    db = _SessionStub(fail_commit=True)

    written = record_event_safely(
        db=db,
        kind=st.DESIGN_JOB,
        entity_id=uuid4(),
        org_id=uuid4(),
        code="WORK_ORDER_GENERATION_FAILED",
        payload={"cascade": "auto_generate_work_order", "error": "boom"},
    )

    assert written is False
    assert db.rollback_calls == 1


def test_event_history_is_scoped_and_ordered(db, org, other_org) -> None:
    order = add_order(db, org_id=org.id).order
    orchestrator.start_fulfillment(db=db, org_id=org.id, order_id=order.id)
    orchestrator.update_fulfillment_status(db=db, org_id=org.id, order_id=order.id, new_status="packaging")

    history = orchestrator.get_event_history(db=db, org_id=org.id, kind=st.FULFILLMENT, entity_id=order.id)

    assert [event.event_code for event in history][0] == "FULFILLMENT_STARTED"
    assert history[-1].event_code == "STATUS_UPDATED"
    assert [event.id for event in history] == sorted(event.id for event in history)

    with pytest.raises(DomainError) as exc:
        orchestrator.get_event_history(db=db, org_id=other_org.id, kind=st.FULFILLMENT, entity_id=order.id)
    assert exc.value.code == "ORDER_NOT_FOUND"

    with pytest.raises(DomainError) as exc:
        orchestrator.get_event_history(db=db, org_id=org.id, kind="invoice", entity_id=order.id)
    assert exc.value.code == "INVALID_INPUT"
