import pytest
from fastapi import HTTPException

import transitions


def test_order_table():
    assert transitions.orders.can_transition("pending", "processing")
    assert transitions.orders.can_transition("shipped", "delivered")
    assert not transitions.orders.can_transition("shipped", "cancelled")
    assert not transitions.orders.can_transition("delivered", "pending")
    assert transitions.orders.is_final("completed")
    assert transitions.orders.is_final("cancelled")


def test_invalid_transition_message():
    with pytest.raises(HTTPException) as exc:
        transitions.orders.check("delivered", "pending")
    assert exc.value.status_code == 400
    assert exc.value.detail == "Invalid status transition from delivered to pending"


def test_unknown_status():
    with pytest.raises(HTTPException) as exc:
        transitions.bookings.check("scheduled", "teleported")
    assert exc.value.detail == "Invalid booking status: teleported"


def test_custom_message():
    with pytest.raises(HTTPException) as exc:
        transitions.campaigns.check("active", "rejected", "Campaign is not pending review")
    assert exc.value.detail == "Campaign is not pending review"


@pytest.mark.parametrize("status", ["pending", "processing"])
def test_customer_may_cancel_early(status):
    transitions.check_customer_cancel(status)


@pytest.mark.parametrize("status", ["paid", "shipped", "delivered", "completed", "cancelled", None])
def test_customer_cannot_cancel_late(status):
    with pytest.raises(HTTPException) as exc:
        transitions.check_customer_cancel(status)
    assert exc.value.detail == "Order cannot be cancelled at this stage"


def test_closed_conversation_only_reopens():
    assert transitions.conversations.can_transition("closed", "open")
    assert not transitions.conversations.can_transition("closed", "pending")
