"""
Status transition tables

Every status field that moves through a lifecycle (orders, service bookings,
conversations, ad campaigns) is validated here and nowhere else.
"""

from typing import Dict, FrozenSet, Optional

from fastapi import HTTPException

ORDER_TRANSITIONS: Dict[str, FrozenSet[str]] = {
    "pending": frozenset({"processing", "paid", "cancelled", "completed"}),
    "paid": frozenset({"processing", "cancelled", "completed"}),
    "processing": frozenset({"shipped", "cancelled", "completed"}),
    "shipped": frozenset({"delivered"}),
    "delivered": frozenset({"completed"}),
    "completed": frozenset(),
    "cancelled": frozenset(),
}

# statuses a vendor or admin may set through the status endpoint
ORDER_MANAGED_STATUSES = ("pending", "processing", "shipped", "delivered", "cancelled")

# statuses from which the customer may still cancel
CUSTOMER_CANCELLABLE = frozenset({"pending", "processing"})

BOOKING_TRANSITIONS: Dict[str, FrozenSet[str]] = {
    "pending_schedule": frozenset({"scheduled", "cancelled"}),
    "scheduled": frozenset({"in_progress", "cancelled"}),
    "in_progress": frozenset({"completed", "cancelled"}),
    "completed": frozenset(),
    "cancelled": frozenset(),
}

CONVERSATION_TRANSITIONS: Dict[str, FrozenSet[str]] = {
    "open": frozenset({"pending", "closed"}),
    "pending": frozenset({"open", "closed"}),
    "closed": frozenset({"open"}),
}

CAMPAIGN_TRANSITIONS: Dict[str, FrozenSet[str]] = {
    "pending_review": frozenset({"active", "rejected"}),
    "active": frozenset({"paused", "completed"}),
    "paused": frozenset({"active", "completed"}),
    "rejected": frozenset(),
    "completed": frozenset(),
}


class StateMachine:
    def __init__(self, name: str, table: Dict[str, FrozenSet[str]]):
        self.name = name
        self.table = table

    @property
    def states(self):
        return tuple(self.table)

    def can_transition(self, current: Optional[str], target: str) -> bool:
        return target in self.table.get(current or "", frozenset())

    def is_final(self, status: Optional[str]) -> bool:
        return not self.table.get(status or "", frozenset())

    def check(self, current: Optional[str], target: str, message: Optional[str] = None) -> None:
        if target not in self.table:
            raise HTTPException(status_code=400, detail=f"Invalid {self.name} status: {target}")
        if not self.can_transition(current, target):
            raise HTTPException(
                status_code=400,
                detail=message or f"Invalid status transition from {current} to {target}",
            )


orders = StateMachine("order", ORDER_TRANSITIONS)
bookings = StateMachine("booking", BOOKING_TRANSITIONS)
conversations = StateMachine("conversation", CONVERSATION_TRANSITIONS)
campaigns = StateMachine("campaign", CAMPAIGN_TRANSITIONS)


def check_customer_cancel(status: Optional[str]) -> None:
    if status not in CUSTOMER_CANCELLABLE:
        raise HTTPException(status_code=400, detail="Order cannot be cancelled at this stage")
