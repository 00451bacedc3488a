"""Pydantic records crossing the store boundary and operation inputs."""
from pydantic import BaseModel, Field, ConfigDict, ValidationError as PydanticValidationError
from typing import Any, Optional, TypeVar
from datetime import date, datetime
from decimal import Decimal
from uuid import UUID

from .config import settings
from .domain_errors import ValidationError


InputT = TypeVar("InputT", bound=BaseModel)


def parse_input(model: type[InputT], data: Any) -> InputT:
    """Validate operation input; pydantic errors become domain INVALID_INPUT."""
    if isinstance(data, model):
        return data
    try:
        return model.model_validate(data)
    except PydanticValidationError as exc:
        errors = [
            {"loc": [str(part) for part in err["loc"]], "msg": err["msg"], "type": err["type"]}
            for err in exc.errors()
        ]
        raise ValidationError(
            code="INVALID_INPUT",
            message=f"Invalid {model.__name__} input",
            details={"errors": errors},
        ) from exc


# Design job schemas
class DesignJobCreate(BaseModel):
    order_item_id: UUID
    title: Optional[str] = Field(default=None, max_length=255)
    brief: Optional[str] = None
    priority: int = Field(default=settings.DEFAULT_PRIORITY, ge=1, le=10)
    assignee_designer_id: Optional[UUID] = None


class DesignReviewRequest(BaseModel):
    approved: bool
    request_revisions: bool = False
    notes: Optional[str] = None


class DesignJobOut(BaseModel):
    id: UUID
    org_id: UUID
    order_item_id: UUID
    assignee_designer_id: Optional[UUID] = None
    status_code: str
    priority: int
    title: str
    brief: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    model_config = ConfigDict(from_attributes=True)


# Work order schemas
class WorkOrderCreate(BaseModel):
    order_item_id: UUID
    quantity: Optional[int] = Field(default=None, gt=0)
    priority: int = Field(default=settings.DEFAULT_PRIORITY, ge=1, le=10)
    manufacturer_id: Optional[UUID] = None
    instructions: Optional[str] = None
    planned_start_date: Optional[date] = None
    planned_due_date: Optional[date] = None


class ManufacturerAssignment(BaseModel):
    manufacturer_id: UUID
    planned_start_date: Optional[date] = None
    planned_due_date: Optional[date] = None
    skip_capacity_check: bool = False


class DelayReport(BaseModel):
    reason: str = Field(min_length=1)
    delay_days: Optional[int] = Field(default=None, ge=0)
    new_due_date: Optional[date] = None


class ProductionMilestoneUpdate(BaseModel):
    milestone_code: str = Field(min_length=1, max_length=50)
    status: str
    notes: Optional[str] = None


class WorkOrderOut(BaseModel):
    id: UUID
    org_id: UUID
    order_item_id: UUID
    manufacturer_id: Optional[UUID] = None
    status_code: str
    priority: int
    quantity: int
    instructions: Optional[str] = None
    planned_start_date: Optional[date] = None
    planned_due_date: Optional[date] = None
    actual_start_date: Optional[datetime] = None
    actual_end_date: Optional[datetime] = None
    actual_completion_date: Optional[date] = None
    delay_reason: Optional[str] = None
    quality_notes: Optional[str] = None
    model_config = ConfigDict(from_attributes=True)


class ProductionMilestoneOut(BaseModel):
    id: UUID
    work_order_id: UUID
    milestone_code: str
    milestone_name: str
    status: str
    actual_date: Optional[date] = None
    notes: Optional[str] = None
    model_config = ConfigDict(from_attributes=True)


# Material / purchasing schemas
class MaterialRequirementCreate(BaseModel):
    material_id: UUID
    quantity_needed: Decimal = Field(gt=0)
    needed_by_date: Optional[date] = None
    notes: Optional[str] = None


class MaterialRequirementOut(BaseModel):
    id: UUID
    work_order_id: UUID
    material_id: UUID
    quantity_needed: Decimal
    quantity_fulfilled: Decimal
    needed_by_date: Optional[date] = None
    status: str
    model_config = ConfigDict(from_attributes=True)


class PurchaseOrderItemCreate(BaseModel):
    material_name: str = Field(min_length=1, max_length=255)
    quantity: Decimal = Field(gt=0)
    unit_cost: Decimal = Field(default=Decimal("0"), ge=0)
    unit: str = "each"
    material_id: Optional[UUID] = None
    material_requirement_id: Optional[UUID] = None
    description: Optional[str] = None


class PurchaseOrderCreate(BaseModel):
    supplier_id: UUID
    items: list[PurchaseOrderItemCreate] = Field(min_length=1)
    priority: int = Field(default=3, ge=1, le=5)
    currency: str = Field(default="USD", min_length=3, max_length=3)
    approval_threshold: Optional[Decimal] = Field(default=None, ge=0)
    expected_delivery_date: Optional[date] = None
    notes: Optional[str] = None


class ReceivedItem(BaseModel):
    item_id: UUID
    quantity_received: Decimal = Field(ge=0)
    quality_check_passed: Optional[bool] = None
    quality_notes: Optional[str] = None


class PurchaseOrderItemOut(BaseModel):
    id: UUID
    line_number: int
    material_id: Optional[UUID] = None
    material_requirement_id: Optional[UUID] = None
    material_name: str
    quantity: Decimal
    unit: str
    unit_cost: Decimal
    total_cost: Decimal
    quantity_received: Decimal
    quality_check_passed: Optional[bool] = None
    model_config = ConfigDict(from_attributes=True)


class PurchaseOrderOut(BaseModel):
    id: UUID
    org_id: UUID
    po_number: str
    supplier_id: UUID
    status_code: str
    total_amount: Decimal
    approval_threshold: Decimal
    priority: int
    currency: str
    expected_delivery_date: Optional[date] = None
    requested_by: Optional[UUID] = None
    approved_by: Optional[UUID] = None
    approved_at: Optional[datetime] = None
    notes: Optional[str] = None
    items: list[PurchaseOrderItemOut] = []
    model_config = ConfigDict(from_attributes=True)


class MaterialInventoryOut(BaseModel):
    material_id: UUID
    quantity_on_hand: Decimal = Decimal("0")
    quantity_on_order: Decimal = Decimal("0")
    updated_at: Optional[datetime] = None
    model_config = ConfigDict(from_attributes=True)


# Fulfillment schemas
class FulfillmentMilestoneUpdate(BaseModel):
    status: str
    blocked_reason: Optional[str] = None
    notes: Optional[str] = None


class FulfillmentMilestoneOut(BaseModel):
    id: UUID
    order_id: UUID
    milestone_code: str
    milestone_name: str
    milestone_type: str
    status: str
    blocked_reason: Optional[str] = None
    completed_at: Optional[datetime] = None
    completed_by: Optional[UUID] = None
    notes: Optional[str] = None
    model_config = ConfigDict(from_attributes=True)


class FulfillmentStatusOut(BaseModel):
    order_id: UUID
    fulfillment_status_code: str
    milestones: list[FulfillmentMilestoneOut] = []


# Audit / capacity / bulk schemas
class EventOut(BaseModel):
    id: int
    event_code: str
    actor_user_id: Optional[UUID] = None
    payload: dict[str, Any] = {}
    occurred_at: datetime
    model_config = ConfigDict(from_attributes=True)


class CapacityOut(BaseModel):
    agent_id: UUID
    name: str
    is_active: bool
    capacity_limit: int
    active_count: int
    workload_score: float
    is_available: bool
    next_available_date: Optional[datetime] = None
    specializations: list[str] = []
    model_config = ConfigDict(from_attributes=True)


class BulkFailureOut(BaseModel):
    item_id: UUID
    code: str
    message: str
    model_config = ConfigDict(from_attributes=True)


class BulkResultOut(BaseModel):
    """Per-item outcome of a bulk operation; failures never abort the batch."""
    succeeded: list[Any] = []
    failed: list[BulkFailureOut] = []
    model_config = ConfigDict(from_attributes=True)
