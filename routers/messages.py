import logging
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from pymongo import UpdateOne
from pymongo.database import Database

import transitions
from database import (
    UnitOfWork,
    create_document,
    get_db,
    get_documents,
    get_unit_of_work,
    serialize,
    to_obj_id,
    utcnow,
)
from notifications import notify
from schemas import ConversationCreate, ConversationStatusUpdate, MarkReadRequest, MessageSend

logger = logging.getLogger(__name__)

router = APIRouter()

SENDER_ROLES = ("customer", "vendor")


def _conversation(db: Database, conversation_id: str) -> dict:
    doc = db["conversations"].find_one({"_id": to_obj_id(conversation_id)})
    if not doc:
        raise HTTPException(status_code=404, detail="Conversation not found")
    return doc


def _with_summary(db: Database, conversation: dict, reader_role: str) -> dict:
    """Attach the latest message and the count of unread messages from the other side."""
    conversation_id = str(conversation["_id"])
    other_role = "customer" if reader_role == "vendor" else "vendor"
    last = get_documents(db, "messages", {"conversationId": conversation_id}, 1, sort=[("timestamp", -1)])
    unread = db["messages"].count_documents(
        {"conversationId": conversation_id, "senderRole": other_role, "read": False}
    )
    out = serialize(conversation)
    out["lastMessage"] = serialize(last[0]) if last else None
    out["unreadCount"] = unread
    return out


def _mark_read(uow: UnitOfWork, conversation_id: str, sender_role: str) -> int:
    """Mark every unread message from ``sender_role`` as read as one unit."""
    messages = uow.db["messages"]

    def mark(session):
        unread = messages.find(
            {"conversationId": conversation_id, "senderRole": sender_role, "read": False}, {"_id": 1},
            session=session,
        )
        now = utcnow()
        ops = [UpdateOne({"_id": m["_id"]}, {"$set": {"read": True, "readAt": now}}) for m in unread]
        if ops:
            messages.bulk_write(ops, session=session)
        return len(ops)

    return uow.run(mark)


@router.post("/api/customer/conversations")
def start_conversation(payload: ConversationCreate, db: Database = Depends(get_db)):
    query = {
        "vendorId": payload.vendor_id,
        "customerId": payload.customer_id,
        "status": {"$in": ["open", "pending"]},
    }
    if payload.product_id:
        query["productId"] = payload.product_id
    existing = db["conversations"].find_one(query)
    if existing:
        return {"success": True, "conversationId": str(existing["_id"]), "message": "Using existing conversation"}

    conversation_id = create_document(db, "conversations", {
        "vendorId": payload.vendor_id,
        "vendorName": payload.vendor_name,
        "customerId": payload.customer_id,
        "customerName": payload.customer_name,
        "customerEmail": payload.customer_email,
        "subject": payload.subject,
        "status": "open",
        "priority": "medium",
        "productId": payload.product_id,
        "productName": payload.product_name,
        "orderId": payload.order_id,
    })
    return {"success": True, "conversationId": conversation_id, "message": "Conversation created successfully"}


@router.get("/api/customer/messages")
def customer_conversations(customer_id: Optional[str] = Query(None, alias="customerId"),
                           db: Database = Depends(get_db)):
    if not customer_id:
        raise HTTPException(status_code=400, detail="Customer ID is required")
    docs = get_documents(db, "conversations", {"customerId": customer_id}, sort=[("updatedAt", -1)])
    return {"success": True, "conversations": [_with_summary(db, d, "customer") for d in docs]}


@router.get("/api/customer/messages/{conversation_id}")
def customer_messages(conversation_id: str, customer_id: Optional[str] = Query(None, alias="customerId"),
                      db: Database = Depends(get_db), uow: UnitOfWork = Depends(get_unit_of_work)):
    if not customer_id:
        raise HTTPException(status_code=400, detail="Customer ID is required")
    conversation = _conversation(db, conversation_id)
    if conversation.get("customerId") != customer_id:
        raise HTTPException(status_code=403, detail="Unauthorized access to conversation")
    messages = get_documents(db, "messages", {"conversationId": conversation_id}, sort=[("timestamp", 1)])
    _mark_read(uow, conversation_id, "vendor")
    return {"success": True, "conversation": serialize(conversation), "messages": [serialize(m) for m in messages]}


@router.get("/api/vendor/messages")
def vendor_conversations(vendor_id: Optional[str] = Query(None, alias="vendorId"), status: Optional[str] = None,
                         db: Database = Depends(get_db)):
    if not vendor_id:
        raise HTTPException(status_code=400, detail="Vendor ID is required")
    query = {"vendorId": vendor_id}
    if status:
        query["status"] = status
    docs = get_documents(db, "conversations", query, sort=[("updatedAt", -1)])
    return {"success": True, "conversations": [_with_summary(db, d, "vendor") for d in docs]}


@router.get("/api/vendor/messages/{conversation_id}")
def vendor_messages(conversation_id: str, vendor_id: Optional[str] = Query(None, alias="vendorId"),
                    db: Database = Depends(get_db)):
    conversation = _conversation(db, conversation_id)
    if vendor_id and conversation.get("vendorId") != vendor_id:
        raise HTTPException(status_code=403, detail="Unauthorized access to conversation")
    messages = get_documents(db, "messages", {"conversationId": conversation_id}, sort=[("timestamp", 1)])
    return {"success": True, "conversation": serialize(conversation), "messages": [serialize(m) for m in messages]}


@router.post("/api/vendor/messages/send")
def send_message(payload: MessageSend, db: Database = Depends(get_db)):
    if payload.sender_role not in SENDER_ROLES:
        raise HTTPException(status_code=400, detail="Invalid sender role")
    content = payload.content.strip()
    if not content:
        raise HTTPException(status_code=400, detail="Message content is required")

    conversation = _conversation(db, payload.conversation_id)
    participant = conversation.get("customerId") if payload.sender_role == "customer" else conversation.get("vendorId")
    if participant != payload.sender_id:
        raise HTTPException(status_code=403, detail="Sender is not part of this conversation")

    # a new message always reopens the conversation
    reopen = conversation.get("status") != "open"
    if reopen:
        transitions.conversations.check(conversation.get("status"), "open")

    now = utcnow()
    message_id = create_document(db, "messages", {
        "conversationId": payload.conversation_id,
        "senderId": payload.sender_id,
        "senderName": payload.sender_name,
        "senderRole": payload.sender_role,
        "content": content,
        "read": False,
        "timestamp": now,
    })

    update = {"updatedAt": now}
    if reopen:
        update["status"] = "open"
    db["conversations"].update_one({"_id": conversation["_id"]}, {"$set": update})

    recipient = conversation.get("vendorId") if payload.sender_role == "customer" else conversation.get("customerId")
    notify(db, recipient, "new_message", {"senderName": payload.sender_name,
                                          "conversationId": payload.conversation_id})

    return {"success": True, "messageId": message_id, "message": "Message sent successfully"}


@router.put("/api/vendor/messages/{conversation_id}/read")
def vendor_mark_read(conversation_id: str, payload: Optional[MarkReadRequest] = None,
                     db: Database = Depends(get_db), uow: UnitOfWork = Depends(get_unit_of_work)):
    conversation = _conversation(db, conversation_id)
    if payload and payload.vendor_id and conversation.get("vendorId") != payload.vendor_id:
        raise HTTPException(status_code=403, detail="Unauthorized access to conversation")
    count = _mark_read(uow, conversation_id, "customer")
    return {"success": True, "message": f"Marked {count} messages as read"}


@router.put("/api/vendor/messages/{conversation_id}/status")
def update_conversation_status(conversation_id: str, payload: ConversationStatusUpdate,
                               db: Database = Depends(get_db)):
    conversation = _conversation(db, conversation_id)
    current = conversation.get("status")
    if payload.status != current:
        transitions.conversations.check(current, payload.status)
        db["conversations"].update_one(
            {"_id": conversation["_id"]},
            {"$set": {"status": payload.status, "updatedAt": utcnow()}},
        )
    return {"success": True, "message": f"Conversation status updated to {payload.status}"}
