from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Request
from pymongo.database import Database

from database import get_db, get_documents, serialize, to_obj_id, utcnow
from ratelimit import enforce
from schemas import LoginRequest

router = APIRouter()


@router.post("/api/auth/login")
def login(payload: LoginRequest, request: Request):
    # credentials are checked by the identity provider; this only throttles attempts
    enforce(request, "LOGIN", f"email:{payload.email.strip().lower()}")
    return {"success": True}


@router.get("/api/notifications")
def list_notifications(user_id: Optional[str] = Query(None, alias="userId"),
                       unread_only: bool = Query(False, alias="unreadOnly"), limit: int = 50,
                       db: Database = Depends(get_db)):
    if not user_id:
        raise HTTPException(status_code=400, detail="User ID is required")
    query = {"userId": user_id}
    if unread_only:
        query["status"] = "unread"
    docs = get_documents(db, "notifications", query, limit, sort=[("createdAt", -1)])
    unread = db["notifications"].count_documents({"userId": user_id, "status": "unread"})
    return {"success": True, "notifications": [serialize(d) for d in docs], "unreadCount": unread}


@router.put("/api/notifications/read-all")
def mark_all_read(user_id: Optional[str] = Query(None, alias="userId"), db: Database = Depends(get_db)):
    if not user_id:
        raise HTTPException(status_code=400, detail="User ID is required")
    res = db["notifications"].update_many(
        {"userId": user_id, "status": "unread"},
        {"$set": {"status": "read", "readAt": utcnow()}},
    )
    return {"success": True, "updated": res.modified_count}


@router.put("/api/notifications/{notification_id}/read")
def mark_read(notification_id: str, db: Database = Depends(get_db)):
    res = db["notifications"].update_one(
        {"_id": to_obj_id(notification_id)},
        {"$set": {"status": "read", "readAt": utcnow()}},
    )
    if res.matched_count == 0:
        raise HTTPException(status_code=404, detail="Notification not found")
    return {"success": True}
