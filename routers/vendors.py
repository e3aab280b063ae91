from datetime import timedelta
from typing import Dict, Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from pymongo.database import Database

from database import as_utc, get_db, get_documents, serialize, utcnow
from notifications import record_event
from schemas import AnalyticsEvent

router = APIRouter()

PROFILE_FIELDS = ("storeName", "phone", "storeDescription", "address", "storeCategory")
SETTINGS_SECTIONS = ("storeInfo", "businessInfo", "paymentSettings", "shippingSettings", "notifications", "policies")
LOW_STOCK = 10
DAYS = ("Mon", "Tue", "Wed", "Thu", "Fri", "Sat", "Sun")


def _require_vendor(vendor_id: Optional[str]) -> str:
    if not vendor_id:
        raise HTTPException(status_code=400, detail="Missing vendorId")
    return vendor_id


@router.get("/api/vendor/profile")
def vendor_profile(vendor_id: Optional[str] = Query(None, alias="vendorId"), db: Database = Depends(get_db)):
    user = db["users"].find_one({"_id": _require_vendor(vendor_id)})
    if not user:
        raise HTTPException(status_code=404, detail="User not found")
    address = user.get("address") or {}
    return {
        "profile": {
            "storeName": user.get("storeName", ""),
            "email": user.get("email", ""),
            "phone": user.get("phone", ""),
            "storeDescription": user.get("storeDescription", ""),
            "address": {
                "addressLine1": address.get("addressLine1", ""),
                "addressLine2": address.get("addressLine2", ""),
                "city": address.get("city", ""),
                "state": address.get("state", ""),
                "zipCode": address.get("zipCode", ""),
                "country": address.get("country", "Nigeria"),
            },
            "storeCategory": user.get("storeCategory", []),
        }
    }


@router.put("/api/vendor/profile")
def update_vendor_profile(payload: dict, db: Database = Depends(get_db)):
    vendor_id = _require_vendor(payload.get("vendorId"))
    update = {k: payload[k] for k in PROFILE_FIELDS if k in payload}
    update["updatedAt"] = utcnow()
    db["users"].update_one({"_id": vendor_id}, {"$set": update}, upsert=True)
    return {"success": True, "message": "Profile updated successfully"}


@router.get("/api/vendor/store-settings")
def store_settings(vendor_id: Optional[str] = Query(None, alias="vendorId"), db: Database = Depends(get_db)):
    doc = db["storeSettings"].find_one({"_id": _require_vendor(vendor_id)})
    if not doc:
        return {"settings": {section: {} for section in SETTINGS_SECTIONS}}
    return {"settings": serialize(doc)}


@router.post("/api/vendor/store-settings")
def save_store_settings(payload: dict, db: Database = Depends(get_db)):
    vendor_id = _require_vendor(payload.get("vendorId"))
    update = {k: v for k, v in payload.items() if k not in ("vendorId", "_id", "id")}
    update.update(vendorId=vendor_id, updatedAt=utcnow())
    db["storeSettings"].update_one({"_id": vendor_id}, {"$set": update}, upsert=True)
    return {"success": True, "message": "Store settings saved successfully"}


def _vendor_items(order: dict, vendor_id: str):
    return [i for i in order.get("items") or [] if i.get("vendorId") == vendor_id]


def _vendor_revenue(order: dict, vendor_id: str) -> float:
    return sum((i.get("price") or 0) * (i.get("quantity") or 1) for i in _vendor_items(order, vendor_id))


@router.get("/api/vendor/stats")
def vendor_stats(vendor_id: Optional[str] = Query(None, alias="vendorId"), db: Database = Depends(get_db)):
    vendor_id = _require_vendor(vendor_id)
    products = get_documents(db, "products", {"vendorId": vendor_id})
    orders = get_documents(db, "orders", {"items.vendorId": vendor_id}, sort=[("createdAt", -1)])

    total_revenue = 0.0
    total_sales = 0
    for order in orders:
        revenue = _vendor_revenue(order, vendor_id)
        if revenue <= 0:
            continue
        total_revenue += revenue
        total_sales += sum(i.get("quantity") or 1 for i in _vendor_items(order, vendor_id))

    today = utcnow().date()
    week_start = today - timedelta(days=6)
    by_day = {}
    for order in orders:
        created = order.get("createdAt")
        if not created or created.date() < week_start:
            continue
        by_day[created.date()] = by_day.get(created.date(), 0) + _vendor_revenue(order, vendor_id)
    sales_data = []
    for offset in range(6, -1, -1):
        day = today - timedelta(days=offset)
        sales_data.append({"date": DAYS[day.weekday()], "sales": by_day.get(day, 0)})

    recent = [serialize({
        "id": str(o["_id"]),
        "customerName": o.get("customerName") or (o.get("shippingAddress") or {}).get("fullName") or "Guest",
        "total": o.get("total", 0),
        "status": o.get("status", "pending"),
        "date": o.get("createdAt"),
        "items": _vendor_items(o, vendor_id),
    }) for o in orders[:5]]

    return {
        "stats": {
            "totalProducts": len(products),
            "activeProducts": sum(1 for p in products if p.get("status") == "active"),
            "lowStockProducts": sum(1 for p in products if p.get("type") == "physical"
                                    and p.get("stock") is not None and p["stock"] < LOW_STOCK),
            "totalRevenue": total_revenue,
            "totalViews": sum((p.get("stats") or {}).get("views", 0) for p in products),
            "totalSales": total_sales,
        },
        "recentOrders": recent,
        "salesData": sales_data,
        "products": [serialize(p) for p in products[:5]],
    }


@router.post("/api/store/{vendor_id}/track-view")
def track_store_view(vendor_id: str, db: Database = Depends(get_db)):
    db["users"].update_one(
        {"_id": vendor_id},
        {"$inc": {"vendorStats.storeViews": 1}, "$set": {"vendorStats.lastViewedAt": utcnow()}},
        upsert=True,
    )
    record_event(db, "store_visit", vendor_id)
    return {"success": True}


# Analytics

FUNNEL_EVENTS = ("store_visit", "product_view", "add_to_cart", "checkout_started")
# orders counted as purchases in the conversion report
PURCHASED_STATUSES = ("completed", "delivered")


@router.post("/api/analytics/events")
def track_event(event: AnalyticsEvent, db: Database = Depends(get_db)):
    record_event(db, event.event_type, event.vendor_id, product_id=event.product_id,
                 product_name=event.product_name, user_id=event.user_id)
    return {"success": True}


def _growth(current: float, previous: float) -> float:
    return (current - previous) / previous * 100 if previous > 0 else 0


def _vendor_orders_between(db: Database, vendor_id: str, start, end=None, statuses=None) -> list:
    created = {"$gte": start}
    if end is not None:
        created["$lt"] = end
    query = {"items.vendorId": vendor_id, "createdAt": created}
    if statuses:
        query["status"] = {"$in": list(statuses)}
    else:
        query["status"] = {"$ne": "cancelled"}
    return get_documents(db, "orders", query, sort=[("createdAt", -1)])


def _event_counts(db: Database, vendor_id: str, since) -> Dict[str, int]:
    return {
        kind: db["analyticsEvents"].count_documents(
            {"vendorId": vendor_id, "eventType": kind, "timestamp": {"$gte": since}})
        for kind in FUNNEL_EVENTS
    }


def _daily_series(days: int, today) -> Dict:
    return {today - timedelta(days=offset): {"revenue": 0.0, "orders": 0} for offset in range(days - 1, -1, -1)}


@router.get("/api/vendor/analytics")
def vendor_analytics(vendor_id: Optional[str] = Query(None, alias="vendorId"), period: int = Query(30, ge=1, le=365),
                     db: Database = Depends(get_db)):
    """Headline sales metrics for the last ``period`` days, compared with the period before it.

    Revenue is the vendor's own item subtotal; cancelled orders are left out.
    """
    vendor_id = _require_vendor(vendor_id)
    now = utcnow()
    start = now - timedelta(days=period)
    products = get_documents(db, "products", {"vendorId": vendor_id})
    orders = _vendor_orders_between(db, vendor_id, start)
    previous = _vendor_orders_between(db, vendor_id, start - timedelta(days=period), start)

    total_revenue = sum(_vendor_revenue(o, vendor_id) for o in orders)
    total_orders = len(orders)
    avg_order_value = total_revenue / total_orders if total_orders else 0
    prev_revenue = sum(_vendor_revenue(o, vendor_id) for o in previous)
    prev_avg = prev_revenue / len(previous) if previous else 0

    events = _event_counts(db, vendor_id, start)
    prev_events = _event_counts(db, vendor_id, start - timedelta(days=period))
    prev_visits = prev_events["store_visit"] - events["store_visit"]

    series = _daily_series(min(period, 30), now.date())
    by_product = {}
    for order in orders:
        day = as_utc(order["createdAt"]).date()
        if day in series:
            series[day]["revenue"] += _vendor_revenue(order, vendor_id)
            series[day]["orders"] += 1
        for item in _vendor_items(order, vendor_id):
            entry = by_product.setdefault(item.get("productId"), {
                "id": item.get("productId"),
                "name": item.get("productName") or item.get("name") or "Unknown",
                "image": item.get("image") or "",
                "sales": 0,
                "revenue": 0.0,
            })
            entry["sales"] += item.get("quantity") or 1
            entry["revenue"] += (item.get("price") or 0) * (item.get("quantity") or 1)
    top_products = sorted(by_product.values(), key=lambda p: p["revenue"], reverse=True)[:5]

    recent = [serialize({
        "id": str(o["_id"]),
        "customerName": o.get("customerName") or (o.get("shippingAddress") or {}).get("fullName") or "Guest",
        "total": _vendor_revenue(o, vendor_id),
        "status": o.get("status", "pending"),
        "date": o.get("createdAt"),
    }) for o in orders[:5]]

    return {
        "success": True,
        "analytics": {
            "totalRevenue": total_revenue,
            "totalOrders": total_orders,
            "avgOrderValue": avg_order_value,
            "storeViews": events["store_visit"],
            "productViews": sum((p.get("stats") or {}).get("views", 0) for p in products),
            "totalProducts": len(products),
            "activeProducts": sum(1 for p in products if p.get("status") == "active"),
            "salesData": [{"date": day.isoformat(), **values} for day, values in series.items()],
            "topProducts": top_products,
            "recentOrders": recent,
            "conversionFunnel": {
                "storeVisits": events["store_visit"],
                "productViews": events["product_view"],
                "addToCart": events["add_to_cart"],
                "checkout": events["checkout_started"],
                "purchase": total_orders,
            },
            "growthMetrics": {
                "revenueGrowth": _growth(total_revenue, prev_revenue),
                "ordersGrowth": _growth(total_orders, len(previous)),
                "avgOrderValueGrowth": _growth(avg_order_value, prev_avg),
                "viewsGrowth": _growth(events["store_visit"], prev_visits),
            },
        },
    }


def _rate(part: int, whole: int) -> float:
    return round(part / whole * 100, 2) if whole else 0


@router.get("/api/vendor/analytics/conversion")
def vendor_conversion(vendor_id: Optional[str] = Query(None, alias="vendorId"), days: int = Query(30, ge=1, le=365),
                      db: Database = Depends(get_db)):
    vendor_id = _require_vendor(vendor_id)
    products = get_documents(db, "products", {"vendorId": vendor_id})
    if not products:
        return {
            "success": True,
            "analytics": {
                "conversionFunnel": {"storeVisits": 0, "productViews": 0, "addToCart": 0, "checkout": 0,
                                     "purchase": 0},
                "conversionRates": {"viewToCart": 0, "cartToCheckout": 0, "checkoutToPurchase": 0,
                                    "overallConversion": 0},
                "topPerformingProducts": [],
                "revenueBySource": {},
                "customerSegments": {},
                "timeSeriesData": [],
            },
        }

    now = utcnow()
    start = now - timedelta(days=days)
    counts = _event_counts(db, vendor_id, start)
    orders = _vendor_orders_between(db, vendor_id, start, statuses=PURCHASED_STATUSES)
    views = get_documents(db, "analyticsEvents",
                          {"vendorId": vendor_id, "eventType": "product_view", "timestamp": {"$gte": start}})
    purchases = len(orders)

    performance = {}
    for view in views:
        entry = performance.setdefault(view.get("productId"), {
            "productId": view.get("productId"),
            "productName": view.get("productName") or "Unknown Product",
            "views": 0,
            "sales": 0,
            "revenue": 0.0,
        })
        entry["views"] += 1

    revenue_by_source = {}
    orders_by_customer = {}
    series = {day: {"views": 0, "orders": 0, "revenue": 0.0} for day in _daily_series(days, now.date())}
    total_revenue = 0.0
    for order in orders:
        revenue = _vendor_revenue(order, vendor_id)
        total_revenue += revenue
        source = order.get("trafficSource") or "direct"
        revenue_by_source[source] = revenue_by_source.get(source, 0) + revenue
        customer = order.get("userId")
        orders_by_customer[customer] = orders_by_customer.get(customer, 0) + 1
        day = as_utc(order["createdAt"]).date()
        if day in series:
            series[day]["orders"] += 1
            series[day]["revenue"] += revenue
        for item in _vendor_items(order, vendor_id):
            entry = performance.get(item.get("productId"))
            if entry:
                entry["sales"] += item.get("quantity") or 1
                entry["revenue"] += (item.get("price") or 0) * (item.get("quantity") or 1)
    for view in views:
        day = as_utc(view["timestamp"]).date()
        if day in series:
            series[day]["views"] += 1

    product_ids = [str(p["_id"]) for p in products]
    ratings = [r.get("rating") or 0 for r in get_documents(
        db, "reviews", {"productId": {"$in": product_ids}, "createdAt": {"$gte": start}})]

    return {
        "success": True,
        "analytics": {
            "conversionFunnel": {
                "storeVisits": counts["store_visit"],
                "productViews": counts["product_view"],
                "addToCart": counts["add_to_cart"],
                "checkout": counts["checkout_started"],
                "purchase": purchases,
            },
            "conversionRates": {
                "viewToCart": _rate(counts["add_to_cart"], counts["product_view"]),
                "cartToCheckout": _rate(counts["checkout_started"], counts["add_to_cart"]),
                "checkoutToPurchase": _rate(purchases, counts["checkout_started"]),
                "overallConversion": _rate(purchases, counts["store_visit"]),
            },
            "topPerformingProducts": sorted(performance.values(), key=lambda p: p["revenue"], reverse=True)[:10],
            "revenueBySource": revenue_by_source,
            "customerSegments": {
                "newCustomers": sum(1 for n in orders_by_customer.values() if n == 1),
                "returningCustomers": sum(1 for n in orders_by_customer.values() if n > 1),
                "averageOrderValue": total_revenue / purchases if purchases else 0,
            },
            "timeSeriesData": [
                {"date": day.isoformat(), **values, "conversion": _rate(values["orders"], values["views"])}
                for day, values in series.items()
            ],
            "customerSatisfaction": {
                "averageRating": round(sum(ratings) / len(ratings), 1) if ratings else 0,
                "totalReviews": len(ratings),
            },
        },
    }
