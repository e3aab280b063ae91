import time
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from pymongo.database import Database

import transitions
from database import get_db, get_documents, serialize, to_obj_id, utcnow
from notifications import notify
from schemas import BookingStatusUpdate, ScheduleRequest, ServiceMessageCreate

router = APIRouter()


def _booking(db: Database, booking_id: str) -> dict:
    doc = db["serviceBookings"].find_one({"_id": to_obj_id(booking_id)})
    if not doc:
        raise HTTPException(status_code=404, detail="Booking not found")
    return doc


def _move(db: Database, booking: dict, status: str, fields: dict) -> None:
    transitions.bookings.check(booking.get("status"), status)
    update = dict(fields, status=status, updatedAt=utcnow())
    res = db["serviceBookings"].update_one({"_id": booking["_id"], "status": booking.get("status")},
                                           {"$set": update})
    if res.matched_count == 0:
        raise HTTPException(status_code=400, detail="Booking status changed, please retry")


@router.get("/api/vendor/services")
def vendor_bookings(vendor_id: Optional[str] = Query(None, alias="vendorId"), status: Optional[str] = None,
                    db: Database = Depends(get_db)):
    if not vendor_id:
        raise HTTPException(status_code=400, detail="Vendor ID is required")
    query = {"vendorId": vendor_id}
    if status:
        query["status"] = status
    docs = get_documents(db, "serviceBookings", query, sort=[("createdAt", -1)])
    return {"success": True, "bookings": [serialize(d) for d in docs]}


@router.get("/api/customer/services")
def customer_bookings(customer_id: Optional[str] = Query(None, alias="customerId"),
                      db: Database = Depends(get_db)):
    if not customer_id:
        raise HTTPException(status_code=400, detail="Customer ID is required")
    docs = get_documents(db, "serviceBookings", {"customerId": customer_id}, sort=[("createdAt", -1)])
    return {"success": True, "bookings": [serialize(d) for d in docs]}


@router.post("/api/vendor/services/{booking_id}/schedule")
def schedule_booking(booking_id: str, payload: ScheduleRequest, db: Database = Depends(get_db)):
    booking = _booking(db, booking_id)
    if booking.get("vendorId") != payload.vendor_id:
        raise HTTPException(status_code=403, detail="Unauthorized")
    _move(db, booking, "scheduled", {
        "scheduledDate": payload.scheduled_date,
        "scheduledTime": payload.scheduled_time,
        "duration": payload.duration,
        "location": payload.location,
        "address": payload.address,
        "vendorNotes": payload.vendor_notes,
        "scheduledAt": utcnow(),
    })
    notify(db, booking.get("customerId"), "service_scheduled", {"scheduledDate": payload.scheduled_date,
                                                                "bookingId": booking_id})
    return {"success": True, "message": "Service scheduled successfully"}


@router.put("/api/vendor/services/{booking_id}/status")
def update_booking_status(booking_id: str, payload: BookingStatusUpdate, db: Database = Depends(get_db)):
    if payload.status not in transitions.BOOKING_TRANSITIONS:
        raise HTTPException(status_code=400, detail="Invalid status")
    booking = _booking(db, booking_id)
    if booking.get("vendorId") != payload.vendor_id:
        raise HTTPException(status_code=403, detail="Unauthorized")

    fields = {}
    if payload.notes:
        fields["vendorNotes"] = payload.notes
    if payload.status == "in_progress":
        fields["startedAt"] = utcnow()
    elif payload.status == "completed":
        fields["completedAt"] = utcnow()
    elif payload.status == "cancelled":
        fields["cancelledAt"] = utcnow()
    _move(db, booking, payload.status, fields)

    kind = "service_completed" if payload.status == "completed" else "service_status_changed"
    notify(db, booking.get("customerId"), kind,
           {"status": payload.status.replace("_", " "), "bookingId": booking_id})
    return {"success": True, "message": "Service status updated successfully"}


@router.post("/api/services/{booking_id}/messages")
def add_booking_message(booking_id: str, payload: ServiceMessageCreate, db: Database = Depends(get_db)):
    booking = _booking(db, booking_id)
    owner = booking.get("customerId") if payload.sender_type == "customer" else booking.get("vendorId")
    if owner != payload.sender_id:
        raise HTTPException(status_code=403, detail="Unauthorized")

    message_id = f"msg_{int(time.time() * 1000)}"
    db["serviceBookings"].update_one(
        {"_id": booking["_id"]},
        {
            "$push": {"messages": {
                "id": message_id,
                "senderId": payload.sender_id,
                "senderName": payload.sender_name,
                "senderType": payload.sender_type,
                "message": payload.message.strip(),
                "timestamp": utcnow(),
            }},
            "$set": {"updatedAt": utcnow()},
        },
    )
    return {"success": True, "messageId": message_id}
