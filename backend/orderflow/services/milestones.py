"""Default milestone sets seeded for work orders and order fulfillment."""

from __future__ import annotations

from typing import NamedTuple


class MilestoneTemplate(NamedTuple):
    code: str
    name: str
    milestone_type: str = "standard"


DEFAULT_PRODUCTION_MILESTONES: tuple[MilestoneTemplate, ...] = (
    MilestoneTemplate("materials_prepared", "Materials Prepared"),
    MilestoneTemplate("cutting_completed", "Cutting Completed"),
    MilestoneTemplate("printing_done", "Printing/Decoration Done"),
    MilestoneTemplate("assembly_started", "Assembly Started"),
    MilestoneTemplate("assembly_completed", "Assembly Completed"),
    MilestoneTemplate("quality_check_initial", "Initial Quality Check"),
    MilestoneTemplate("packaging_ready", "Ready for Packaging"),
)

PRODUCTION_MILESTONE_STATUSES: frozenset[str] = frozenset({"pending", "in_progress", "completed", "skipped"})

ORDER_CONFIRMED = "ORDER_CONFIRMED"
DESIGN_APPROVED = "DESIGN_APPROVED"
MATERIALS_RECEIVED = "MATERIALS_RECEIVED"
MANUFACTURING_STARTED = "MANUFACTURING_STARTED"
MANUFACTURING_COMPLETED = "MANUFACTURING_COMPLETED"
QUALITY_CHECK_PASSED = "QUALITY_CHECK_PASSED"
READY_TO_SHIP = "READY_TO_SHIP"
SHIPPED = "SHIPPED"
DELIVERED = "DELIVERED"
COMPLETED = "COMPLETED"

DEFAULT_FULFILLMENT_MILESTONES: tuple[MilestoneTemplate, ...] = (
    MilestoneTemplate(ORDER_CONFIRMED, "Order Confirmed"),
    MilestoneTemplate(DESIGN_APPROVED, "Design Approved", "approval_gate"),
    MilestoneTemplate(MATERIALS_RECEIVED, "Materials Received"),
    MilestoneTemplate(MANUFACTURING_STARTED, "Manufacturing Started"),
    MilestoneTemplate(MANUFACTURING_COMPLETED, "Manufacturing Completed"),
    MilestoneTemplate(QUALITY_CHECK_PASSED, "Quality Check Passed", "quality_gate"),
    MilestoneTemplate(READY_TO_SHIP, "Ready to Ship"),
    MilestoneTemplate(SHIPPED, "Shipped"),
    MilestoneTemplate(DELIVERED, "Delivered"),
    MilestoneTemplate(COMPLETED, "Completed"),
)

# Seeded as already completed when fulfillment starts.
PRECOMPLETED_FULFILLMENT_MILESTONES: frozenset[str] = frozenset({ORDER_CONFIRMED})

# Blocked by a manufacturing delay unless already completed.
DELAY_BLOCKED_MILESTONES: tuple[str, ...] = (MANUFACTURING_COMPLETED, QUALITY_CHECK_PASSED, READY_TO_SHIP)

# Must be completed before the order's fulfillment can be completed.
CRITICAL_FULFILLMENT_MILESTONES: tuple[str, ...] = (MANUFACTURING_COMPLETED, QUALITY_CHECK_PASSED, SHIPPED, DELIVERED)
