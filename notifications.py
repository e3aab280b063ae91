"""
Notification, email, audit and analytics side effects

All of them are fire-and-forget: a failure is logged and never reaches the
request that triggered it.
"""

import logging
from typing import Any, Dict, Optional

from pymongo.database import Database
from pymongo.errors import PyMongoError

from database import utcnow

logger = logging.getLogger(__name__)


NOTIFICATION_TEMPLATES: Dict[str, Dict[str, str]] = {
    # orders
    "order_placed": {"title": "Order Placed", "message": "Your order #{orderId} has been placed successfully", "priority": "medium"},
    "order_confirmed": {"title": "Order Confirmed", "message": "Your order #{orderId} has been confirmed by the vendor", "priority": "medium"},
    "order_shipped": {"title": "Order Shipped", "message": "Your order #{orderId} has been shipped", "priority": "medium"},
    "order_delivered": {"title": "Order Delivered", "message": "Your order #{orderId} has been delivered", "priority": "medium"},
    "order_cancelled": {"title": "Order Cancelled", "message": "Your order #{orderId} has been cancelled", "priority": "high"},
    "order_refunded": {"title": "Refund Processed", "message": "Your refund for order #{orderId} has been processed", "priority": "medium"},
    "product_out_of_stock": {"title": "Product Out of Stock", "message": 'Your product "{productName}" is now out of stock', "priority": "medium"},
    "new_order_received": {"title": "New Order Received", "message": "You have received a new order #{orderId}", "priority": "high"},
    # products and reviews
    "product_pending_approval": {"title": "Product Pending Approval", "message": 'New product "{productName}" is pending approval', "priority": "medium"},
    "new_review": {"title": "New Product Review", "message": 'You received a new review for "{productName}"', "priority": "medium"},
    "review_pending_moderation": {"title": "Review Pending Moderation", "message": "A new review requires moderation", "priority": "medium"},
    # messaging and questions
    "new_message": {"title": "New Message", "message": "You have a new message from {senderName}", "priority": "medium"},
    "new_question": {"title": "New Product Question", "message": 'Someone asked a question about "{productName}"', "priority": "medium"},
    "question_answered": {"title": "Question Answered", "message": 'Your question about "{productName}" was answered', "priority": "medium"},
    # services
    "service_scheduled": {"title": "Service Scheduled", "message": "Your service has been scheduled for {scheduledDate}", "priority": "medium"},
    "service_status_changed": {"title": "Service Updated", "message": "Your service booking is now {status}", "priority": "medium"},
    "service_completed": {"title": "Service Completed", "message": "Your service booking has been completed. Leave a rating!", "priority": "medium"},
    "service_rated": {"title": "New Service Rating", "message": "A customer rated your service {rating} stars", "priority": "low"},
    # advertising
    "campaign_approved": {"title": "Campaign Approved", "message": 'Your campaign "{campaignName}" has been approved and is now live', "priority": "high"},
    "campaign_rejected": {"title": "Campaign Rejected", "message": 'Your campaign "{campaignName}" was rejected. Reason: {reason}', "priority": "high"},
    "campaign_paused": {"title": "Campaign Paused", "message": 'Your campaign "{campaignName}" has been paused', "priority": "medium"},
    "campaign_resumed": {"title": "Campaign Resumed", "message": 'Your campaign "{campaignName}" has been resumed', "priority": "medium"},
    "campaign_completed": {"title": "Campaign Completed", "message": 'Your campaign "{campaignName}" has completed due to budget exhaustion.', "priority": "medium"},
}


class _Blank(dict):
    def __missing__(self, key):
        return ""


def render(kind: str, data: Optional[Dict[str, Any]] = None) -> Dict[str, str]:
    template = NOTIFICATION_TEMPLATES.get(kind)
    if template is None:
        raise KeyError(f"Unknown notification type: {kind}")
    values = _Blank({k: v for k, v in (data or {}).items() if v is not None})
    return {
        "title": template["title"].format_map(values),
        "message": template["message"].format_map(values),
        "priority": template["priority"],
    }


def notify(db: Database, user_id: Optional[str], kind: str, data: Optional[Dict[str, Any]] = None,
           action_url: Optional[str] = None) -> Optional[str]:
    if not user_id:
        return None
    try:
        rendered = render(kind, data)
        result = db["notifications"].insert_one({
            "userId": user_id,
            "type": kind,
            "title": rendered["title"],
            "message": rendered["message"],
            "priority": rendered["priority"],
            "status": "unread",
            "metadata": data or {},
            "actionUrl": action_url,
            "createdAt": utcnow(),
        })
        return str(result.inserted_id)
    except (KeyError, PyMongoError) as exc:
        logger.warning("Failed to send %s notification to %s: %s", kind, user_id, exc)
        return None


def send_email(to: Optional[str], subject: str, html: str) -> bool:
    # no mail provider is wired up; the message is only logged
    if not to:
        return False
    logger.info("Email to %s: %s (%d bytes)", to, subject, len(html))
    return True


def record_audit_log(db: Database, actor_id: Optional[str], action: str,
                     metadata: Optional[Dict[str, Any]] = None) -> None:
    if not action:
        return
    try:
        db["auditLogs"].insert_one({
            "adminId": actor_id,
            "action": action,
            "metadata": {str(k): v for k, v in (metadata or {}).items() if v is not None},
            "createdAt": utcnow(),
        })
    except PyMongoError as exc:
        logger.warning("Unable to record audit log: %s", exc)


def record_event(db: Database, event_type: str, vendor_id: Optional[str], product_id: Optional[str] = None,
                 product_name: Optional[str] = None, user_id: Optional[str] = None) -> None:
    """Store one funnel event (store visit, product view, add to cart, checkout) for vendor analytics."""
    if not vendor_id:
        return
    try:
        db["analyticsEvents"].insert_one({
            "eventType": event_type,
            "vendorId": vendor_id,
            "productId": product_id,
            "productName": product_name,
            "userId": user_id,
            "timestamp": utcnow(),
        })
    except PyMongoError as exc:
        logger.warning("Unable to record %s event: %s", event_type, exc)
