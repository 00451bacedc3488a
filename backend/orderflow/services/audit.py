"""Append-only event streams, one table per workflow entity kind."""

from __future__ import annotations

import logging
from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import Any
from uuid import UUID

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from ..models import DesignJobEvent, FulfillmentEvent, ProductionEvent, PurchaseOrderEvent
from . import status_transitions as st

logger = logging.getLogger(__name__)


class DesignJobEventCode(str, Enum):
    # payload: order_item_id, title, auto_created
    DESIGN_JOB_CREATED = "DESIGN_JOB_CREATED"
    # payload: designer_id, previous_designer_id, score
    DESIGNER_ASSIGNED = "DESIGNER_ASSIGNED"
    # payload: from, to, notes
    STATUS_UPDATED = "STATUS_UPDATED"
    DESIGN_SUBMITTED_FOR_REVIEW = "DESIGN_SUBMITTED_FOR_REVIEW"
    DESIGN_REVIEW_STARTED = "DESIGN_REVIEW_STARTED"
    # payload: notes
    DESIGN_APPROVED = "DESIGN_APPROVED"
    REVISION_REQUESTED = "REVISION_REQUESTED"
    DESIGN_REJECTED = "DESIGN_REJECTED"
    DESIGN_JOB_CANCELLED = "DESIGN_JOB_CANCELLED"
    # payload: cascade, error
    WORK_ORDER_GENERATION_FAILED = "WORK_ORDER_GENERATION_FAILED"


class WorkOrderEventCode(str, Enum):
    # payload: order_item_id, quantity, design_job_id
    WORK_ORDER_CREATED = "WORK_ORDER_CREATED"
    WORK_ORDER_AUTO_GENERATED = "WORK_ORDER_AUTO_GENERATED"
    # payload: from, to, notes
    STATUS_UPDATED = "STATUS_UPDATED"
    # payload: manufacturer_id, planned_start_date, planned_due_date
    ASSIGNED_TO_MANUFACTURER = "ASSIGNED_TO_MANUFACTURER"
    # payload: reason, delay_days, new_due_date
    PRODUCTION_DELAYED = "PRODUCTION_DELAYED"
    # payload: milestone_code, status
    MILESTONE_REACHED = "MILESTONE_REACHED"
    # payload: milestone_code, from, to
    MILESTONE_UPDATED = "MILESTONE_UPDATED"
    # payload: requirement_ids
    MATERIAL_REQUIREMENTS_CREATED = "MATERIAL_REQUIREMENTS_CREATED"
    # payload: purchase_order_ids
    POS_AUTO_GENERATED = "POS_AUTO_GENERATED"
    # payload: cascade, error
    PO_GENERATION_FAILED = "PO_GENERATION_FAILED"
    FULFILLMENT_SYNC_FAILED = "FULFILLMENT_SYNC_FAILED"


class PurchaseOrderEventCode(str, Enum):
    # payload: po_number, supplier_id, total_amount, work_order_ids
    PO_CREATED = "PO_CREATED"
    PO_DRAFT_SAVED = "PO_DRAFT_SAVED"
    PO_SUBMITTED_FOR_APPROVAL = "PO_SUBMITTED_FOR_APPROVAL"
    # payload: approved_by, notes
    PO_APPROVED = "PO_APPROVED"
    PO_SENT_TO_SUPPLIER = "PO_SENT_TO_SUPPLIER"
    PO_ACKNOWLEDGED_BY_SUPPLIER = "PO_ACKNOWLEDGED_BY_SUPPLIER"
    PO_ITEMS_SHIPPED = "PO_ITEMS_SHIPPED"
    PO_ITEMS_DELIVERED = "PO_ITEMS_DELIVERED"
    # payload: items (id, quantity_received)
    PO_ITEMS_RECEIVED = "PO_ITEMS_RECEIVED"
    PO_COMPLETED = "PO_COMPLETED"
    PO_CANCELLED = "PO_CANCELLED"
    PO_PUT_ON_HOLD = "PO_PUT_ON_HOLD"


class FulfillmentEventCode(str, Enum):
    # payload: milestone_codes
    FULFILLMENT_STARTED = "FULFILLMENT_STARTED"
    # payload: milestone_code, from, to, blocked_reason
    MILESTONE_UPDATED = "MILESTONE_UPDATED"
    # payload: from, to, notes
    STATUS_UPDATED = "STATUS_UPDATED"
    # payload: work_order_id
    READY_FOR_PACKAGING = "READY_FOR_PACKAGING"
    # payload: work_order_id, reason, blocked_milestones
    MANUFACTURING_DELAYED = "MANUFACTURING_DELAYED"
    # payload: work_order_id, manufacturer_id, quantity
    RECEIVED_FROM_MANUFACTURER = "RECEIVED_FROM_MANUFACTURER"


# kind -> (event model, entity id column, closed code set)
_STREAMS: dict[str, tuple[type, str, type[Enum]]] = {
    st.DESIGN_JOB: (DesignJobEvent, "design_job_id", DesignJobEventCode),
    st.WORK_ORDER: (ProductionEvent, "work_order_id", WorkOrderEventCode),
    st.PURCHASE_ORDER: (PurchaseOrderEvent, "purchase_order_id", PurchaseOrderEventCode),
    st.FULFILLMENT: (FulfillmentEvent, "order_id", FulfillmentEventCode),
}


def _normalize_code(kind: str, code: str | Enum) -> str:
    if kind not in _STREAMS:
        raise ValueError(f"No event stream for entity kind: {kind}")
    code_enum = _STREAMS[kind][2]
    raw = code.value if isinstance(code, Enum) else code
    try:
        return code_enum(raw).value
    except ValueError:
        raise ValueError(f"Unknown {kind} event code: {raw}") from None


def _jsonable(value: Any) -> Any:
    if isinstance(value, dict):
        return {str(key): _jsonable(item) for key, item in value.items()}
    if isinstance(value, (list, tuple, set, frozenset)):
        return [_jsonable(item) for item in value]
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, UUID):
        return str(value)
    if isinstance(value, (date, datetime)):
        return value.isoformat()
    if isinstance(value, Decimal):
        return str(value)
    return value


def event_model(kind: str) -> type:
    if kind not in _STREAMS:
        raise ValueError(f"No event stream for entity kind: {kind}")
    return _STREAMS[kind][0]


def record_event(
    *,
    db: Session,
    kind: str,
    entity_id: UUID,
    org_id: UUID,
    code: str | Enum,
    actor_id: UUID | None = None,
    payload: dict[str, Any] | None = None,
):
    """Add one event row to the caller's transaction and return it.

    The caller commits. Unknown codes raise ValueError before anything is added.
    """
    event_code = _normalize_code(kind, code)
    model, entity_column, _codes = _STREAMS[kind]
    event = model(
        org_id=org_id,
        event_code=event_code,
        actor_user_id=actor_id,
        payload=_jsonable(dict(payload or {})),
        **{entity_column: entity_id},
    )
    db.add(event)
    return event


def record_event_safely(
    *,
    db: Session,
    kind: str,
    entity_id: UUID,
    org_id: UUID,
    code: str | Enum,
    actor_id: UUID | None = None,
    payload: dict[str, Any] | None = None,
) -> bool:
    """Write and commit one event on its own; store failures are logged and swallowed."""
    try:
        record_event(
            db=db,
            kind=kind,
            entity_id=entity_id,
            org_id=org_id,
            code=code,
            actor_id=actor_id,
            payload=payload,
        )
        db.commit()
    except SQLAlchemyError:
        db.rollback()
        logger.warning(
            "Failed to record %s event %s for %s",
            kind,
            code.value if isinstance(code, Enum) else code,
            entity_id,
            exc_info=True,
        )
        return False
    return True


def list_events(*, db: Session, kind: str, entity_id: UUID, org_id: UUID) -> list:
    """Events of one entity ordered by (occurred_at, id)."""
    model = event_model(kind)
    entity_column = _STREAMS[kind][1]
    column = getattr(model, entity_column)
    return (
        db.query(model)
        .filter(column == entity_id, model.org_id == org_id)
        .order_by(model.occurred_at.asc(), model.id.asc())
        .all()
    )
