import logging
from datetime import timedelta
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Request
from pymongo import UpdateOne
from pymongo.database import Database
from pymongo.errors import PyMongoError

import transitions
from database import (
    UnitOfWork,
    as_utc,
    create_document,
    get_db,
    get_documents,
    get_unit_of_work,
    serialize,
    to_obj_id,
    utcnow,
)
from inventory import reduce_inventory, restore_inventory
from notifications import notify, send_email
from payments import PaymentGatewayError, TransactionNotFound, build_download_links, get_payment_gateway, payment_data
from permissions import StaffIdentity, get_staff
from ratelimit import enforce, get_identifier
from schemas import (
    CancelOrderRequest,
    CompleteOrderRequest,
    DigitalDeliveryRequest,
    DownloadTrackRequest,
    Order,
    OrderCreate,
    OrderStatusUpdate,
    VerifyPaymentRequest,
)

logger = logging.getLogger(__name__)

router = APIRouter()

PLATFORM_COMMISSION = 0.15
# order statuses whose digital items may be downloaded
DELIVERABLE_STATUSES = ("paid", "delivered", "completed")


def _get_order(db: Database, order_id: str) -> dict:
    order = db["orders"].find_one({"_id": to_obj_id(order_id)})
    if not order:
        raise HTTPException(status_code=404, detail="Order not found")
    return order


def _vendor_owns(order: dict, vendor_id: Optional[str]) -> bool:
    if not vendor_id:
        return False
    if order.get("vendorId") == vendor_id:
        return True
    return any(item.get("vendorId") == vendor_id for item in order.get("items", []))


def _set_status(db: Database, order: dict, status: str, fields: dict, session=None) -> None:
    """Write a status change only if nobody moved the order in the meantime."""
    update = dict(fields, status=status, updatedAt=utcnow())
    res = db["orders"].update_one({"_id": order["_id"], "status": order.get("status")}, {"$set": update},
                                  session=session)
    if res.matched_count == 0:
        raise HTTPException(status_code=400, detail="Order status changed, please retry")


@router.post("/api/orders", status_code=201)
def create_order(payload: OrderCreate, request: Request, db: Database = Depends(get_db)):
    enforce(request, "ORDER_CREATE", get_identifier(request, payload.user_id))

    computed = sum(item.price * item.quantity for item in payload.items)
    if abs(computed - payload.total) > 0.01:
        raise HTTPException(status_code=400, detail="Order total mismatch")

    items = [item.model_dump(by_alias=True) for item in payload.items]
    reduce_inventory(db, items)

    vendors = sorted({item.vendor_id for item in payload.items if item.vendor_id})
    order = Order(
        user_id=payload.user_id,
        customer_id=payload.user_id,
        customer_name=payload.customer_name,
        customer_email=payload.customer_email,
        vendor_id=vendors[0] if len(vendors) == 1 else None,
        items=payload.items,
        total=round(payload.total, 2),
        shipping_address=payload.shipping_address,
        payment_method=payload.payment_method,
    )
    try:
        order_id = create_document(db, "orders", order)
    except PyMongoError:
        # no order was written, so the stock taken for it goes back
        restore_inventory(db, items)
        raise

    notify(db, payload.user_id, "order_placed", {"orderId": order_id})
    for vendor_id in vendors:
        notify(db, vendor_id, "new_order_received", {"orderId": order_id})

    return {"success": True, "orderId": order_id, "message": "Order created successfully"}


@router.get("/api/orders")
def list_orders(user_id: Optional[str] = Query(None, alias="userId"), limit: Optional[int] = 50,
                db: Database = Depends(get_db)):
    if not user_id:
        raise HTTPException(status_code=400, detail="User ID is required")
    docs = get_documents(db, "orders", {"userId": user_id}, limit, sort=[("createdAt", -1)])
    return {"success": True, "orders": [serialize(d) for d in docs]}


@router.put("/api/orders/{order_id}/cancel")
def cancel_order(order_id: str, payload: CancelOrderRequest, db: Database = Depends(get_db),
                 uow: UnitOfWork = Depends(get_unit_of_work)):
    order = _get_order(db, order_id)
    if order.get("userId") != payload.user_id:
        raise HTTPException(status_code=403, detail="Unauthorized access to order")
    transitions.check_customer_cancel(order.get("status"))

    now = utcnow()

    def cancel(session):
        _set_status(db, order, "cancelled", {
            "paymentStatus": "refunded",
            "cancelledAt": now,
            "cancellationReason": "Cancelled by customer",
        }, session)
        restore_inventory(db, order.get("items", []), session)

    uow.run(cancel)
    for vendor_id in {i.get("vendorId") for i in order.get("items", []) if i.get("vendorId")}:
        notify(db, vendor_id, "order_cancelled", {"orderId": order_id})

    return {"success": True, "message": "Order cancelled successfully"}


@router.patch("/api/orders/{order_id}/status")
def update_order_status(order_id: str, payload: OrderStatusUpdate, db: Database = Depends(get_db),
                        staff: StaffIdentity = Depends(get_staff), uow: UnitOfWork = Depends(get_unit_of_work)):
    if payload.status not in transitions.ORDER_MANAGED_STATUSES:
        raise HTTPException(status_code=400, detail="Invalid status")

    order = _get_order(db, order_id)
    if staff.can("orders.edit"):
        updated_by = staff.admin_id or "admin"
    elif _vendor_owns(order, payload.vendor_id):
        updated_by = payload.vendor_id
    else:
        raise HTTPException(status_code=403, detail="Not authorized to update this order")

    current = order.get("status")
    transitions.orders.check(current, payload.status)

    now = utcnow()
    fields = {"lastUpdatedBy": updated_by}
    if payload.notes:
        fields["statusNotes"] = payload.notes
    if payload.status == "shipped":
        fields["shippedAt"] = now
        if payload.tracking_number:
            fields["trackingNumber"] = payload.tracking_number
    elif payload.status == "delivered":
        fields["deliveredAt"] = now
    elif payload.status == "cancelled":
        fields["cancelledAt"] = now
        fields["cancellationReason"] = payload.cancellation_reason or "Cancelled by vendor"
        if order.get("paymentStatus") == "completed":
            fields["paymentStatus"] = "refund_pending"
    def move(session):
        _set_status(db, order, payload.status, fields, session)
        if payload.status == "cancelled":
            restore_inventory(db, order.get("items", []), session)

    uow.run(move)

    kind = {
        "processing": "order_confirmed",
        "shipped": "order_shipped",
        "delivered": "order_delivered",
        "cancelled": "order_cancelled",
    }.get(payload.status)
    if kind:
        notify(db, order.get("userId"), kind, {"orderId": order_id, "trackingNumber": payload.tracking_number})

    logger.info("Order %s moved %s -> %s by %s", order_id, current, payload.status, updated_by)
    return {
        "success": True,
        "message": f"Order status updated to {payload.status}",
        "order": serialize(db["orders"].find_one({"_id": order["_id"]})),
    }


def _access_expiry(item: dict, now):
    days = item.get("accessDuration") or 0
    return now + timedelta(days=days) if days > 0 else None


def _purchase_record(order: dict, order_id: str, item: dict, now) -> dict:
    return {
        "userId": order.get("userId"),
        "productId": item.get("productId"),
        "orderId": order_id,
        "product": item,
        "purchasedAt": now,
        "accessExpiresAt": _access_expiry(item, now),
        "downloadCount": 0,
        "lastDownloadedAt": None,
    }


def _credit_vendors(db: Database, order: dict) -> None:
    earnings = {}
    for item in order.get("items", []):
        vendor_id = item.get("vendorId")
        if vendor_id:
            earned = item.get("price", 0) * item.get("quantity", 1) * (1 - PLATFORM_COMMISSION)
            earnings[vendor_id] = earnings.get(vendor_id, 0) + earned
    if not earnings:
        return
    now = utcnow()
    db["vendorBalances"].bulk_write([
        UpdateOne(
            {"_id": vendor_id},
            {
                "$inc": {"availableBalance": amount, "totalEarnings": amount},
                "$set": {"updatedAt": now},
                "$setOnInsert": {"vendorId": vendor_id, "pendingBalance": 0, "totalWithdrawn": 0},
            },
            upsert=True,
        )
        for vendor_id, amount in earnings.items()
    ])


@router.post("/api/orders/complete")
def complete_order(payload: CompleteOrderRequest, db: Database = Depends(get_db)):
    order = _get_order(db, payload.order_id)
    current = order.get("status")
    transitions.orders.check(current, "completed")

    now = utcnow()
    _set_status(db, order, "completed", {"paymentReference": payload.payment_reference, "completedAt": now})

    items = order.get("items", [])
    digital = [i for i in items if i.get("type") == "digital"]
    # items already delivered while the order was paid have their purchase record
    delivered = {p.get("productId")
                 for p in db["purchasedProducts"].find({"orderId": payload.order_id}, {"productId": 1})}
    records = [_purchase_record(order, payload.order_id, item, now)
               for item in digital if item.get("productId") not in delivered]
    if records:
        db["purchasedProducts"].insert_many(records)

    services = [i for i in items if i.get("type") == "service"]
    for item in services:
        create_document(db, "serviceBookings", {
            "orderId": payload.order_id,
            "serviceId": item.get("productId"),
            "serviceName": item.get("name"),
            "customerId": order.get("userId"),
            "customerName": order.get("customerName"),
            "vendorId": item.get("vendorId"),
            "price": item.get("price"),
            "status": "pending_schedule",
            "rating": None,
            "messages": [],
        })

    _credit_vendors(db, order)

    if digital:
        names = ", ".join(i.get("name") or i.get("productId") for i in digital)
        send_email(order.get("customerEmail"), "Your Digital Products Are Ready!",
                   f"<p>Your order #{payload.order_id} has been completed.</p><p>{names}</p>")

    return {
        "success": True,
        "message": "Order completed successfully",
        "digitalProductsCount": len(digital),
        "serviceBookingsCount": len(services),
    }


@router.post("/api/payments/verify")
def verify_payment(payload: VerifyPaymentRequest, request: Request, db: Database = Depends(get_db)):
    if not payload.reference:
        raise HTTPException(status_code=400, detail="Payment reference is required")
    gateway = get_payment_gateway(request)

    try:
        data = gateway.verify_transaction(payload.reference)
    except TransactionNotFound:
        raise HTTPException(status_code=404, detail="Transaction not found")
    except PaymentGatewayError as exc:
        logger.error("Payment verification error for %s: %s", payload.reference, exc)
        raise HTTPException(status_code=500, detail="Payment verification failed")

    if data.get("status") != "success":
        raise HTTPException(
            status_code=400,
            detail={"error": "Payment verification failed", "status": data.get("status")},
        )

    # the payment reference is the order id
    order = _get_order(db, payload.reference)
    payment = {
        "paymentStatus": "completed",
        "paymentReference": payload.reference,
        "paymentMethod": "paystack",
        "paidAt": utcnow(),
        "paymentData": payment_data(data),
        "updatedAt": utcnow(),
    }
    # the payment is always recorded; the status only moves where the order table allows it
    moved = False
    current = order.get("status")
    if transitions.orders.can_transition(current, "paid"):
        res = db["orders"].update_one({"_id": order["_id"], "status": current},
                                      {"$set": dict(payment, status="paid")})
        moved = res.matched_count > 0
    if not moved:
        db["orders"].update_one({"_id": order["_id"]}, {"$set": payment})
    order = db["orders"].find_one({"_id": order["_id"]})

    files = [f for item in order.get("items", []) for f in item.get("digitalFiles") or []]
    links = build_download_links(files, 24) if files else []

    send_email(order.get("customerEmail"), "Order Confirmation",
               f"<p>Payment received for order #{payload.reference}.</p>")

    return {
        "success": True,
        "message": "Payment verified successfully",
        "order": serialize(order),
        "downloadLinks": [serialize(link) for link in links],
    }


@router.get("/api/customer/orders")
def customer_orders(user_id: Optional[str] = Query(None, alias="userId"), db: Database = Depends(get_db)):
    if not user_id:
        raise HTTPException(status_code=400, detail="User ID is required")
    docs = get_documents(db, "orders", {"userId": user_id}, sort=[("createdAt", -1)])
    return {"success": True, "orders": [serialize(d) for d in docs]}


@router.get("/api/customer/purchases")
def customer_purchases(user_id: Optional[str] = Query(None, alias="userId"), db: Database = Depends(get_db)):
    if not user_id:
        raise HTTPException(status_code=400, detail="User ID is required")
    now = utcnow()
    purchases = []
    for doc in get_documents(db, "purchasedProducts", {"userId": user_id}, sort=[("purchasedAt", -1)]):
        expires = as_utc(doc.get("accessExpiresAt"))
        item = serialize(doc)
        item["accessExpired"] = bool(expires and expires < now)
        purchases.append(item)
    return {"success": True, "purchases": purchases}


def _order_purchases(db: Database, order: dict, order_id: str) -> list:
    """Purchase records for the order's digital items, created for orders paid but not yet completed."""
    purchases = get_documents(db, "purchasedProducts", {"userId": order.get("userId"), "orderId": order_id})
    if purchases:
        return purchases
    now = utcnow()
    for item in order.get("items", []):
        if item.get("type") != "digital":
            continue
        record = _purchase_record(order, order_id, item, now)
        record["_id"] = db["purchasedProducts"].insert_one(record).inserted_id
        purchases.append(record)
    return purchases


def _can_download(purchase: dict, now) -> bool:
    product = purchase.get("product") or {}
    limit = product.get("downloadLimit") or 0
    if limit > 0 and (purchase.get("downloadCount") or 0) >= limit:
        return False
    expires = as_utc(purchase.get("accessExpiresAt"))
    return not (expires and expires < now)


@router.post("/api/digital-delivery")
def digital_delivery(payload: DigitalDeliveryRequest, db: Database = Depends(get_db)):
    order = _get_order(db, payload.order_id)
    if order.get("userId") != payload.user_id:
        raise HTTPException(status_code=403, detail="Unauthorized access to order")
    if order.get("status") not in DELIVERABLE_STATUSES:
        raise HTTPException(status_code=400,
                            detail=f"Order not yet completed. Current status: {order.get('status')}")

    digital = [p for p in _order_purchases(db, order, payload.order_id)
               if (p.get("product") or {}).get("type") == "digital"]
    with_files = [p for p in digital if p["product"].get("digitalFiles")]
    if not with_files:
        if digital:
            raise HTTPException(status_code=404, detail={
                "error": f"Found {len(digital)} digital product(s) in this order, but none have files uploaded. "
                         "Please contact support to have files added to these products.",
                "products": [{"name": p["product"].get("name"), "id": p.get("productId")} for p in digital],
            })
        raise HTTPException(status_code=404, detail="No digital products found in this order")

    now = utcnow()
    links = []
    for purchase in with_files:
        if not _can_download(purchase, now):
            continue
        product = purchase["product"]
        files = build_download_links(product["digitalFiles"], 24)
        if not files:
            continue
        links.append(serialize({
            "productId": purchase.get("productId"),
            "productName": product.get("name"),
            "purchaseId": str(purchase["_id"]),
            "files": files,
            "downloadLimit": product.get("downloadLimit") or 0,
            "currentDownloads": purchase.get("downloadCount") or 0,
            "accessExpiresAt": purchase.get("accessExpiresAt"),
        }))

    return {
        "success": True,
        "downloadLinks": links,
        "message": f"Generated download links for {len(links)} digital product(s)",
    }


@router.put("/api/digital-delivery")
def track_download(payload: DownloadTrackRequest, db: Database = Depends(get_db)):
    oid = to_obj_id(payload.purchase_id)
    purchase = db["purchasedProducts"].find_one({"_id": oid})
    if not purchase:
        raise HTTPException(status_code=404, detail="Purchase record not found")
    if purchase.get("userId") != payload.user_id:
        raise HTTPException(status_code=403, detail="Unauthorized access")
    db["purchasedProducts"].update_one(
        {"_id": oid},
        {"$inc": {"downloadCount": 1}, "$set": {"lastDownloadedAt": utcnow(), "lastFileId": payload.file_id}},
    )
    return {"success": True, "message": "Download tracked successfully"}


def _vendor_view(order: dict, vendor_id: str) -> dict:
    out = serialize(order)
    items = [i for i in out.get("items", []) if i.get("vendorId") == vendor_id]
    out["items"] = items
    out["vendorTotal"] = round(sum(i.get("price", 0) * i.get("quantity", 1) for i in items), 2)
    return out


@router.get("/api/vendor/orders")
def vendor_orders(vendor_id: Optional[str] = Query(None, alias="vendorId"), status: Optional[str] = None,
                  db: Database = Depends(get_db)):
    if not vendor_id:
        raise HTTPException(status_code=400, detail="Vendor ID is required")
    query = {"items.vendorId": vendor_id}
    if status:
        query["status"] = status
    docs = get_documents(db, "orders", query, sort=[("createdAt", -1)])
    return {"success": True, "orders": [_vendor_view(d, vendor_id) for d in docs]}


@router.get("/api/vendor/orders/{order_id}")
def vendor_order(order_id: str, vendor_id: Optional[str] = Query(None, alias="vendorId"),
                 db: Database = Depends(get_db)):
    order = _get_order(db, order_id)
    if not _vendor_owns(order, vendor_id):
        raise HTTPException(status_code=403, detail="Unauthorized access to order")
    return {"success": True, "order": _vendor_view(order, vendor_id)}


@router.put("/api/vendor/orders/{order_id}")
def vendor_update_order(order_id: str, payload: OrderStatusUpdate, db: Database = Depends(get_db),
                        uow: UnitOfWork = Depends(get_unit_of_work)):
    if not payload.vendor_id:
        raise HTTPException(status_code=400, detail="Vendor ID is required")
    return update_order_status(order_id, payload, db, StaffIdentity(None, None), uow)
