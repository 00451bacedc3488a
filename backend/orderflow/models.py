"""SQLAlchemy models for the order-fulfillment workflow."""
from sqlalchemy import (
    JSON, BigInteger, Boolean, Column, Date, DateTime, ForeignKey, Integer,
    Numeric, String, Text, CheckConstraint, Index, UniqueConstraint, Uuid,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
import uuid
from datetime import datetime, timezone
from .database import Base


# JSONB on PostgreSQL, plain JSON elsewhere (tests run on SQLite).
JSONType = JSON().with_variant(JSONB(), "postgresql")
# Monotonic event ids; SQLite only autoincrements INTEGER primary keys.
EventIdType = BigInteger().with_variant(Integer(), "sqlite")


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Organization(Base):
    """Organization model (multi-tenant support)."""
    __tablename__ = "organizations"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    name = Column(String(255), nullable=False)
    code = Column(String(50), unique=True, nullable=False, index=True)
    is_active = Column(Boolean, default=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())


class Order(Base):
    """Customer order; owns the fulfillment status of all its items."""
    __tablename__ = "orders"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    org_id = Column(Uuid, ForeignKey("organizations.id"), index=True, nullable=False)
    code = Column(String(50), nullable=False)
    status_code = Column(String(30), nullable=False, default="new")
    fulfillment_status_code = Column(String(30), nullable=False, default="not_started")
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    __table_args__ = (
        UniqueConstraint("org_id", "code", name="uq_orders_org_code"),
    )

    items = relationship("OrderItem", back_populates="order")


class OrderItem(Base):
    """Line item of an order; the unit that flows through design and manufacturing."""
    __tablename__ = "order_items"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    org_id = Column(Uuid, ForeignKey("organizations.id"), index=True, nullable=False)
    order_id = Column(Uuid, ForeignKey("orders.id"), index=True, nullable=False)
    name_snapshot = Column(String(255), nullable=True)
    quantity = Column(Integer, nullable=False, default=1)
    status_code = Column(String(30), nullable=False, default="pending")
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    __table_args__ = (
        CheckConstraint(quantity > 0, name="chk_order_item_quantity_positive"),
    )

    order = relationship("Order", back_populates="items")


class Designer(Base):
    """Design agent."""
    __tablename__ = "designers"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    org_id = Column(Uuid, ForeignKey("organizations.id"), index=True, nullable=False)
    name = Column(String(255), nullable=False)
    is_active = Column(Boolean, default=True, nullable=False)
    specializations = Column(JSONType, nullable=False, default=list)
    capacity_limit = Column(Integer, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())


class Manufacturer(Base):
    """Manufacturing agent; also acts as material supplier for purchase orders."""
    __tablename__ = "manufacturers"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    org_id = Column(Uuid, ForeignKey("organizations.id"), index=True, nullable=False)
    name = Column(String(255), nullable=False)
    is_active = Column(Boolean, default=True, nullable=False)
    specializations = Column(JSONType, nullable=False, default=list)
    capacity_limit = Column(Integer, nullable=True)
    lead_time_days = Column(Integer, nullable=True)
    minimum_order_quantity = Column(Integer, nullable=True)
    contact_email = Column(String(255), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())


class DesignJob(Base):
    """Design job (one per order item)."""
    __tablename__ = "design_jobs"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    org_id = Column(Uuid, ForeignKey("organizations.id"), index=True, nullable=False)
    order_item_id = Column(Uuid, ForeignKey("order_items.id"), nullable=False)
    assignee_designer_id = Column(Uuid, ForeignKey("designers.id"), index=True, nullable=True)
    status_code = Column(String(30), nullable=False, default="queued", index=True)
    priority = Column(Integer, nullable=False, default=5)
    title = Column(String(255), nullable=False)
    brief = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    __table_args__ = (
        UniqueConstraint("org_id", "order_item_id", name="uq_design_jobs_order_item"),
        CheckConstraint("priority BETWEEN 1 AND 10", name="chk_design_job_priority"),
    )


class WorkOrder(Base):
    """Manufacturing work order (one per order item)."""
    __tablename__ = "work_orders"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    org_id = Column(Uuid, ForeignKey("organizations.id"), index=True, nullable=False)
    order_item_id = Column(Uuid, ForeignKey("order_items.id"), nullable=False)
    manufacturer_id = Column(Uuid, ForeignKey("manufacturers.id"), index=True, nullable=True)
    status_code = Column(String(30), nullable=False, default="pending", index=True)
    priority = Column(Integer, nullable=False, default=5)
    quantity = Column(Integer, nullable=False)
    instructions = Column(Text, nullable=True)
    planned_start_date = Column(Date, nullable=True)
    planned_due_date = Column(Date, nullable=True)
    actual_start_date = Column(DateTime(timezone=True), nullable=True)
    actual_end_date = Column(DateTime(timezone=True), nullable=True)
    actual_completion_date = Column(Date, nullable=True)
    delay_reason = Column(Text, nullable=True)
    quality_notes = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    __table_args__ = (
        UniqueConstraint("org_id", "order_item_id", name="uq_work_orders_order_item"),
        CheckConstraint(quantity > 0, name="chk_work_order_quantity_positive"),
    )

    milestones = relationship("ProductionMilestone", back_populates="work_order")


class ProductionMilestone(Base):
    """Per-work-order production checkpoint."""
    __tablename__ = "production_milestones"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    org_id = Column(Uuid, ForeignKey("organizations.id"), index=True, nullable=False)
    work_order_id = Column(Uuid, ForeignKey("work_orders.id"), index=True, nullable=False)
    milestone_code = Column(String(50), nullable=False)
    milestone_name = Column(String(255), nullable=False)
    status = Column(String(20), nullable=False, default="pending")
    actual_date = Column(Date, nullable=True)
    notes = Column(Text, nullable=True)
    completed_by = Column(Uuid, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    __table_args__ = (
        UniqueConstraint("work_order_id", "milestone_code", name="uq_production_milestone_code"),
        CheckConstraint(
            status.in_(["pending", "in_progress", "completed", "skipped"]),
            name="chk_production_milestone_status",
        ),
    )

    work_order = relationship("WorkOrder", back_populates="milestones")


class Material(Base):
    """Purchasable material."""
    __tablename__ = "materials"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    org_id = Column(Uuid, ForeignKey("organizations.id"), index=True, nullable=False)
    name = Column(String(255), nullable=False)
    sku = Column(String(50), nullable=True)
    unit = Column(String(20), nullable=False, default="each")
    unit_cost = Column(Numeric(12, 2), nullable=False, default=0)
    preferred_supplier_id = Column(Uuid, ForeignKey("manufacturers.id"), nullable=True)

    preferred_supplier = relationship("Manufacturer")


class MaterialInventory(Base):
    """Stock level of one material: what is in the warehouse and what is still on order."""
    __tablename__ = "materials_inventory"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    org_id = Column(Uuid, ForeignKey("organizations.id"), index=True, nullable=False)
    material_id = Column(Uuid, ForeignKey("materials.id"), nullable=False)
    quantity_on_hand = Column(Numeric(12, 2), nullable=False, default=0)
    quantity_on_order = Column(Numeric(12, 2), nullable=False, default=0)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow, onupdate=_utcnow)

    material = relationship("Material")

    __table_args__ = (
        UniqueConstraint("org_id", "material_id", name="uq_materials_inventory_material"),
    )


class MaterialRequirement(Base):
    """Material needed by a work order."""
    __tablename__ = "material_requirements"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    org_id = Column(Uuid, ForeignKey("organizations.id"), index=True, nullable=False)
    work_order_id = Column(Uuid, ForeignKey("work_orders.id"), index=True, nullable=False)
    material_id = Column(Uuid, ForeignKey("materials.id"), nullable=False)
    quantity_needed = Column(Numeric(12, 2), nullable=False)
    quantity_fulfilled = Column(Numeric(12, 2), nullable=False, default=0)
    needed_by_date = Column(Date, nullable=True)
    status = Column(String(20), nullable=False, default="pending", index=True)
    notes = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    __table_args__ = (
        CheckConstraint(
            status.in_(["pending", "ordered", "received", "fulfilled"]),
            name="chk_material_requirement_status",
        ),
    )

    material = relationship("Material")


class PurchaseOrder(Base):
    """Purchase order to a supplier."""
    __tablename__ = "purchase_orders"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    org_id = Column(Uuid, ForeignKey("organizations.id"), index=True, nullable=False)
    po_number = Column(String(30), nullable=False)
    supplier_id = Column(Uuid, ForeignKey("manufacturers.id"), index=True, nullable=False)
    status_code = Column(String(30), nullable=False, default="draft", index=True)
    total_amount = Column(Numeric(14, 2), nullable=False, default=0)
    approval_threshold = Column(Numeric(14, 2), nullable=False, default=1000)
    priority = Column(Integer, nullable=False, default=3)
    currency = Column(String(3), nullable=False, default="USD")
    expected_delivery_date = Column(Date, nullable=True)
    requested_by = Column(Uuid, nullable=True)
    approved_by = Column(Uuid, nullable=True)
    approved_at = Column(DateTime(timezone=True), nullable=True)
    notes = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    __table_args__ = (
        UniqueConstraint("org_id", "po_number", name="uq_purchase_orders_po_number"),
    )

    items = relationship(
        "PurchaseOrderItem",
        back_populates="purchase_order",
        order_by="PurchaseOrderItem.line_number",
    )


class PurchaseOrderItem(Base):
    """Purchase order line."""
    __tablename__ = "purchase_order_items"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    org_id = Column(Uuid, ForeignKey("organizations.id"), index=True, nullable=False)
    purchase_order_id = Column(Uuid, ForeignKey("purchase_orders.id"), index=True, nullable=False)
    material_id = Column(Uuid, ForeignKey("materials.id"), nullable=True)
    material_requirement_id = Column(Uuid, ForeignKey("material_requirements.id"), nullable=True)
    material_name = Column(String(255), nullable=False)
    description = Column(Text, nullable=True)
    quantity = Column(Numeric(12, 2), nullable=False)
    unit = Column(String(20), nullable=False, default="each")
    unit_cost = Column(Numeric(12, 2), nullable=False, default=0)
    total_cost = Column(Numeric(14, 2), nullable=False, default=0)
    quantity_received = Column(Numeric(12, 2), nullable=False, default=0)
    line_number = Column(Integer, nullable=False)
    date_received = Column(DateTime(timezone=True), nullable=True)
    quality_check_passed = Column(Boolean, nullable=True)
    quality_notes = Column(Text, nullable=True)

    purchase_order = relationship("PurchaseOrder", back_populates="items")


class FulfillmentMilestone(Base):
    """Order-level fulfillment checkpoint."""
    __tablename__ = "fulfillment_milestones"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    org_id = Column(Uuid, ForeignKey("organizations.id"), index=True, nullable=False)
    order_id = Column(Uuid, ForeignKey("orders.id"), index=True, nullable=False)
    milestone_code = Column(String(50), nullable=False)
    milestone_name = Column(String(255), nullable=False)
    milestone_type = Column(String(30), nullable=False, default="standard")
    status = Column(String(20), nullable=False, default="pending")
    blocked_reason = Column(Text, nullable=True)
    completed_at = Column(DateTime(timezone=True), nullable=True)
    completed_by = Column(Uuid, nullable=True)
    notes = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    __table_args__ = (
        UniqueConstraint("org_id", "order_id", "milestone_code", name="uq_fulfillment_milestone_code"),
        CheckConstraint(
            status.in_(["pending", "in_progress", "completed", "blocked"]),
            name="chk_fulfillment_milestone_status",
        ),
    )


class DesignJobEvent(Base):
    """Audit stream for design jobs."""
    __tablename__ = "design_job_events"

    id = Column(EventIdType, primary_key=True, autoincrement=True)
    org_id = Column(Uuid, ForeignKey("organizations.id"), index=True, nullable=False)
    design_job_id = Column(Uuid, ForeignKey("design_jobs.id"), nullable=False)
    event_code = Column(String(50), nullable=False, index=True)
    actor_user_id = Column(Uuid, nullable=True)
    payload = Column(JSONType, nullable=False, default=dict)
    occurred_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow)

    __table_args__ = (
        Index("idx_design_job_events_entity", "design_job_id", "occurred_at"),
    )


class ProductionEvent(Base):
    """Audit stream for work orders."""
    __tablename__ = "production_events"

    id = Column(EventIdType, primary_key=True, autoincrement=True)
    org_id = Column(Uuid, ForeignKey("organizations.id"), index=True, nullable=False)
    work_order_id = Column(Uuid, ForeignKey("work_orders.id"), nullable=False)
    event_code = Column(String(50), nullable=False, index=True)
    actor_user_id = Column(Uuid, nullable=True)
    payload = Column(JSONType, nullable=False, default=dict)
    occurred_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow)

    __table_args__ = (
        Index("idx_production_events_entity", "work_order_id", "occurred_at"),
    )


class PurchaseOrderEvent(Base):
    """Audit stream for purchase orders."""
    __tablename__ = "purchase_order_events"

    id = Column(EventIdType, primary_key=True, autoincrement=True)
    org_id = Column(Uuid, ForeignKey("organizations.id"), index=True, nullable=False)
    purchase_order_id = Column(Uuid, ForeignKey("purchase_orders.id"), nullable=False)
    event_code = Column(String(50), nullable=False, index=True)
    actor_user_id = Column(Uuid, nullable=True)
    payload = Column(JSONType, nullable=False, default=dict)
    occurred_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow)

    __table_args__ = (
        Index("idx_purchase_order_events_entity", "purchase_order_id", "occurred_at"),
    )


class FulfillmentEvent(Base):
    """Audit stream for order fulfillment."""
    __tablename__ = "fulfillment_events"

    id = Column(EventIdType, primary_key=True, autoincrement=True)
    org_id = Column(Uuid, ForeignKey("organizations.id"), index=True, nullable=False)
    order_id = Column(Uuid, ForeignKey("orders.id"), nullable=False)
    event_code = Column(String(50), nullable=False, index=True)
    actor_user_id = Column(Uuid, nullable=True)
    payload = Column(JSONType, nullable=False, default=dict)
    occurred_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow)

    __table_args__ = (
        Index("idx_fulfillment_events_entity", "order_id", "occurred_at"),
    )
