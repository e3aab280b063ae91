import logging
import re
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Request
from pymongo.database import Database

from database import create_document, get_db, get_documents, serialize, to_obj_id, utcnow
from notifications import notify, record_event
from ratelimit import enforce, get_identifier
from schemas import ProductCreate

logger = logging.getLogger(__name__)

router = APIRouter()

PRODUCT_TYPES = ("physical", "digital", "service")
# fields a vendor may never overwrite through the update endpoint
PROTECTED_FIELDS = ("id", "_id", "vendorId", "createdAt", "stats", "rating", "reviewCount", "ratingTotal",
                    "ratingNeedsReconcile")


def resolve_vendor_name(db: Database, vendor_id: str, fallback: str = "Vendor") -> str:
    vendor = db["users"].find_one({"_id": vendor_id})
    if not vendor:
        return fallback
    email = vendor.get("email") or ""
    return (
        vendor.get("storeName")
        or vendor.get("businessName")
        or vendor.get("displayName")
        or (email.split("@")[0] if email else None)
        or fallback
    )


def default_stats() -> dict:
    return {"views": 0, "sales": 0, "revenue": 0, "rating": 0, "reviewCount": 0}


@router.get("/api/products")
def list_products(request: Request, category: Optional[str] = None, search: Optional[str] = None,
                  limit: Optional[int] = 50, db: Database = Depends(get_db)):
    if search:
        enforce(request, "API_SEARCH")
    query = {"status": "active"}
    if category:
        query["category"] = category
    if search:
        pattern = re.escape(search)
        query["$or"] = [
            {"name": {"$regex": pattern, "$options": "i"}},
            {"description": {"$regex": pattern, "$options": "i"}},
        ]
    docs = get_documents(db, "products", query, limit, sort=[("createdAt", -1)])
    return {"success": True, "products": [serialize(d) for d in docs]}


@router.post("/api/products", status_code=201)
def create_product(product: ProductCreate, request: Request, db: Database = Depends(get_db)):
    enforce(request, "PRODUCT_CREATE", get_identifier(request, product.vendor_id))
    doc = product.model_dump(by_alias=True)
    if product.type != "physical":
        doc["stock"] = None
    doc.update({
        "vendorName": resolve_vendor_name(db, product.vendor_id),
        "status": "pending",
        "rating": 0,
        "reviewCount": 0,
        "ratingTotal": 0,
        "stats": default_stats(),
    })
    product_id = create_document(db, "products", doc)
    return {"success": True, "productId": product_id, "message": "Product submitted for review"}


@router.get("/api/products/{product_id}")
def get_product(product_id: str, db: Database = Depends(get_db)):
    doc = db["products"].find_one({"_id": to_obj_id(product_id)})
    if not doc or doc.get("status") == "archived":
        raise HTTPException(status_code=404, detail="Product not found")
    return {"success": True, "product": serialize(doc)}


@router.post("/api/products/{product_id}/track-view")
def track_product_view(product_id: str, db: Database = Depends(get_db)):
    doc = db["products"].find_one_and_update({"_id": to_obj_id(product_id)}, {"$inc": {"stats.views": 1}},
                                             projection={"vendorId": 1, "name": 1})
    if not doc:
        raise HTTPException(status_code=404, detail="Product not found")
    record_event(db, "product_view", doc.get("vendorId"), product_id=product_id, product_name=doc.get("name"))
    return {"success": True}


# Vendor product management

@router.get("/api/vendor/products")
def vendor_products(vendor_id: Optional[str] = Query(None, alias="vendorId"), status: Optional[str] = None,
                    db: Database = Depends(get_db)):
    if not vendor_id:
        raise HTTPException(status_code=400, detail="Missing vendorId")
    query = {"vendorId": vendor_id}
    if status:
        query["status"] = status
    docs = get_documents(db, "products", query, sort=[("createdAt", -1)])
    return {"success": True, "products": [serialize(d) for d in docs]}


@router.post("/api/vendor/products", status_code=201)
def vendor_create_product(payload: dict, db: Database = Depends(get_db)):
    missing = [f for f in ("vendorId", "name", "price", "category", "type") if not payload.get(f)]
    if missing:
        raise HTTPException(status_code=400, detail=f"Missing required fields: {', '.join(missing)}")
    if payload["type"] not in PRODUCT_TYPES:
        raise HTTPException(status_code=400, detail="Invalid product type")
    try:
        price = float(payload["price"])
        stock = int(payload.get("stock") or 0)
        compare_at = float(payload["compareAtPrice"]) if payload.get("compareAtPrice") else None
        access_duration = int(payload.get("accessDuration") or 0)
        download_limit = int(payload.get("downloadLimit") or 0)
    except (TypeError, ValueError):
        raise HTTPException(status_code=400, detail="Price, stock and limits must be numeric")
    if price <= 0 or stock < 0 or access_duration < 0 or download_limit < 0:
        raise HTTPException(status_code=400, detail="Price must be positive and counts non-negative")

    vendor_id = payload["vendorId"]
    vendor_name = payload.get("vendorName")
    if not vendor_name or vendor_name == "Vendor":
        vendor_name = resolve_vendor_name(db, vendor_id)

    name = payload["name"]
    description = payload.get("description") or ""
    doc = {
        "vendorId": vendor_id,
        "vendorName": vendor_name,
        "name": name,
        "description": description,
        "price": price,
        "compareAtPrice": compare_at,
        "category": payload["category"],
        "subcategory": payload.get("subcategory") or "",
        "images": payload.get("images") or [],
        "stock": stock if payload["type"] == "physical" else None,
        "sku": payload.get("sku") or "",
        "type": payload["type"],
        "digitalFiles": payload.get("digitalFiles") or [],
        "accessDuration": access_duration,
        "downloadLimit": download_limit,
        "variants": payload.get("variants") or [],
        "tags": payload.get("tags") or [],
        "status": payload.get("status") or "active",
        "shippingInfo": payload.get("shippingInfo") or {},
        "seo": {
            "title": payload.get("seoTitle") or name,
            "description": payload.get("seoDescription") or description,
        },
        "rating": 0,
        "reviewCount": 0,
        "ratingTotal": 0,
        "stats": default_stats(),
    }
    product_id = create_document(db, "products", doc)
    if doc["status"] == "pending":
        notify(db, vendor_id, "product_pending_approval", {"productName": name})
    return {"success": True, "productId": product_id, "message": "Product created successfully"}


def _owned_product(db: Database, product_id: str, vendor_id: Optional[str]) -> dict:
    doc = db["products"].find_one({"_id": to_obj_id(product_id)})
    if not doc:
        raise HTTPException(status_code=404, detail="Product not found")
    if vendor_id and doc.get("vendorId") != vendor_id:
        raise HTTPException(status_code=403, detail="Unauthorized access to product")
    return doc


@router.get("/api/vendor/products/{product_id}")
def vendor_get_product(product_id: str, vendor_id: Optional[str] = Query(None, alias="vendorId"),
                       db: Database = Depends(get_db)):
    return {"success": True, "product": serialize(_owned_product(db, product_id, vendor_id))}


def _editable_fields(payload: dict) -> dict:
    """Drop protected fields, including dotted paths into them such as ``stats.views``."""
    update = {}
    for key, value in payload.items():
        parts = key.split(".")
        if any(not part or part.startswith("$") for part in parts):
            raise HTTPException(status_code=400, detail=f"Invalid field name: {key}")
        if parts[0] in PROTECTED_FIELDS:
            continue
        update[key] = value
    return update


@router.put("/api/vendor/products/{product_id}")
def vendor_update_product(product_id: str, payload: dict, request: Request, db: Database = Depends(get_db)):
    doc = _owned_product(db, product_id, payload.get("vendorId"))
    enforce(request, "PRODUCT_UPDATE", get_identifier(request, doc.get("vendorId")))
    update = _editable_fields(payload)
    if "type" in update and update["type"] not in PRODUCT_TYPES:
        raise HTTPException(status_code=400, detail="Invalid product type")
    for field, cast in (("price", float), ("stock", int)):
        if field in update and update[field] is not None:
            try:
                update[field] = cast(update[field])
            except (TypeError, ValueError):
                raise HTTPException(status_code=400, detail=f"{field.capitalize()} must be numeric")
    update["updatedAt"] = utcnow()
    db["products"].update_one({"_id": doc["_id"]}, {"$set": update})
    return {"success": True, "message": "Product updated successfully"}


@router.delete("/api/vendor/products/{product_id}")
def vendor_archive_product(product_id: str, vendor_id: Optional[str] = Query(None, alias="vendorId"),
                           db: Database = Depends(get_db)):
    doc = _owned_product(db, product_id, vendor_id)
    db["products"].update_one(
        {"_id": doc["_id"]},
        {"$set": {"status": "archived", "archivedAt": utcnow(), "updatedAt": utcnow()}},
    )
    return {"success": True, "message": "Product archived successfully"}
