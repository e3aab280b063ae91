import logging
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Request
from pymongo import ReturnDocument
from pymongo.database import Database
from pymongo.errors import DuplicateKeyError

import ratings
from database import create_document, get_db, get_documents, serialize, to_obj_id, utcnow
from notifications import notify
from ratelimit import enforce, get_identifier
from schemas import (
    DigitalRatingCreate,
    HelpfulRequest,
    ProductReviewCreate,
    ReviewCreate,
    ServiceRatingCreate,
)

logger = logging.getLogger(__name__)

router = APIRouter()


def _product(db: Database, product_id: str) -> Optional[dict]:
    return db["products"].find_one({"_id": to_obj_id(product_id)})


def _insert_once(db: Database, collection: str, doc: dict, duplicate_message: str) -> str:
    try:
        return create_document(db, collection, doc)
    except DuplicateKeyError:
        raise HTTPException(status_code=400, detail=duplicate_message)


# Product reviews

@router.get("/api/products/{product_id}/reviews")
def product_reviews(product_id: str, limit: Optional[int] = None, db: Database = Depends(get_db)):
    query = {"productId": product_id, "approved": {"$ne": False}}
    docs = get_documents(db, "reviews", query, limit, sort=[("createdAt", -1)])
    # stats cover every visible review, not just the returned page
    ratings_all = [d.get("rating", 0) for d in db["reviews"].find(query, {"rating": 1})]
    return {
        "success": True,
        "reviews": [serialize(d) for d in docs],
        "stats": ratings.rating_stats(ratings_all),
    }


@router.post("/api/products/{product_id}/reviews", status_code=201)
def create_product_review(product_id: str, payload: ProductReviewCreate, request: Request,
                          db: Database = Depends(get_db)):
    enforce(request, "REVIEW_CREATE", get_identifier(request, payload.user_id))
    product = _product(db, product_id)
    if not product:
        raise HTTPException(status_code=404, detail="Product not found")

    duplicate = "You have already reviewed this product"
    if db["reviews"].find_one({"productId": product_id, "userId": payload.user_id}):
        raise HTTPException(status_code=400, detail=duplicate)

    verified = db["purchasedProducts"].find_one({"productId": product_id, "userId": payload.user_id}) is not None \
        or db["orders"].find_one({"userId": payload.user_id, "items.productId": product_id,
                                  "status": {"$in": ["paid", "delivered", "completed"]}}) is not None

    review_id = _insert_once(db, "reviews", {
        "productId": product_id,
        "productName": payload.product_name or product.get("name"),
        "vendorId": payload.vendor_id,
        "userId": payload.user_id,
        "userName": payload.user_name,
        "rating": payload.rating,
        "title": payload.title.strip(),
        "comment": payload.comment.strip(),
        "verified": verified,
        "helpful": 0,
        "approved": True,
    }, duplicate)

    synced = ratings.record_rating(db, product_id, payload.rating)
    notify(db, payload.vendor_id, "new_review", {"productName": product.get("name"), "rating": payload.rating})

    return {"success": True, "reviewId": review_id, "ratingSynced": synced,
            "message": "Review submitted successfully"}


@router.get("/api/products/{product_id}/reviews/user")
def user_review(product_id: str, user_id: Optional[str] = Query(None, alias="userId"),
                db: Database = Depends(get_db)):
    if not user_id:
        raise HTTPException(status_code=400, detail="User ID is required")
    doc = db["reviews"].find_one({"productId": product_id, "userId": user_id})
    return {"success": True, "review": serialize(doc) if doc else None}


@router.post("/api/products/{product_id}/reviews/{review_id}/helpful")
def mark_review_helpful(product_id: str, review_id: str, payload: HelpfulRequest, db: Database = Depends(get_db)):
    oid = to_obj_id(review_id)
    if not db["reviews"].find_one({"_id": oid, "productId": product_id}):
        raise HTTPException(status_code=404, detail="Review not found")
    _insert_once(db, "reviewHelpful", {"reviewId": review_id, "userId": payload.user_id, "productId": product_id},
                 "You have already marked this review as helpful")
    doc = db["reviews"].find_one_and_update({"_id": oid}, {"$inc": {"helpful": 1}}, projection={"helpful": 1},
                                            return_document=ReturnDocument.AFTER)
    return {"success": True, "helpfulCount": doc.get("helpful", 0)}


# Moderated reviews

@router.get("/api/reviews")
def list_reviews(product_id: Optional[str] = Query(None, alias="productId"), limit: Optional[int] = 100,
                 db: Database = Depends(get_db)):
    if not product_id:
        raise HTTPException(status_code=400, detail="Product ID is required")
    docs = get_documents(db, "reviews", {"productId": product_id, "approved": True}, limit,
                         sort=[("createdAt", -1)])
    return {"success": True, "reviews": [serialize(d) for d in docs]}


@router.post("/api/reviews", status_code=201)
def submit_review(payload: ReviewCreate, request: Request, db: Database = Depends(get_db)):
    enforce(request, "REVIEW_CREATE", get_identifier(request, payload.user_id))
    duplicate = "You have already reviewed this product"
    if db["reviews"].find_one({"productId": payload.product_id, "userId": payload.user_id}):
        raise HTTPException(status_code=400, detail=duplicate)
    review_id = _insert_once(db, "reviews", {
        "productId": payload.product_id,
        "userId": payload.user_id,
        "rating": payload.rating,
        "title": payload.title,
        "comment": payload.comment,
        "helpful": 0,
        "verified": False,
        "approved": False,
    }, duplicate)
    # rating is folded into the product once a moderator approves the review
    return {"success": True, "reviewId": review_id, "message": "Review submitted for moderation"}


# Digital product ratings

@router.post("/api/digital-products/{product_id}/rating", status_code=201)
def rate_digital_product(product_id: str, payload: DigitalRatingCreate, db: Database = Depends(get_db)):
    purchased = db["purchasedProducts"].find_one({"userId": payload.customer_id, "productId": product_id})
    if not purchased:
        raise HTTPException(status_code=403, detail="You can only rate products you have purchased")

    duplicate = "You have already rated this product"
    if db["digitalProductReviews"].find_one({"customerId": payload.customer_id, "productId": product_id}):
        raise HTTPException(status_code=400, detail=duplicate)

    product = _product(db, product_id) or {}
    review_id = _insert_once(db, "digitalProductReviews", {
        "productId": product_id,
        "customerId": payload.customer_id,
        "customerName": payload.customer_name,
        "orderId": payload.order_id or purchased.get("orderId"),
        "productName": product.get("name", "Unknown Product"),
        "vendorId": product.get("vendorId"),
        "rating": payload.rating,
        "review": payload.review or "",
        "helpful": 0,
    }, duplicate)

    synced = ratings.record_rating(db, product_id, payload.rating)
    return {"success": True, "reviewId": review_id, "ratingSynced": synced,
            "message": "Rating submitted successfully"}


@router.get("/api/digital-product-reviews/{product_id}")
def digital_product_reviews(product_id: str, limit: int = 10, db: Database = Depends(get_db)):
    ratings_all = [d.get("rating", 0) for d in db["digitalProductReviews"].find({"productId": product_id},
                                                                              {"rating": 1})]
    docs = get_documents(db, "digitalProductReviews", {"productId": product_id}, limit, sort=[("createdAt", -1)])
    return {"success": True, "reviews": [serialize(d) for d in docs], **ratings.rating_stats(ratings_all)}


# Service ratings

@router.post("/api/services/{booking_id}/rating", status_code=201)
def rate_service(booking_id: str, payload: ServiceRatingCreate, db: Database = Depends(get_db)):
    oid = to_obj_id(booking_id)
    booking = db["serviceBookings"].find_one({"_id": oid})
    if not booking:
        raise HTTPException(status_code=404, detail="Booking not found")
    if booking.get("customerId") != payload.customer_id:
        raise HTTPException(status_code=403, detail="Unauthorized")
    if booking.get("status") != "completed":
        raise HTTPException(status_code=400, detail="Can only rate completed services")
    if booking.get("rating"):
        raise HTTPException(status_code=400, detail="Service already rated")

    now = utcnow()
    res = db["serviceBookings"].update_one(
        {"_id": oid, "status": "completed", "rating": None},
        {"$set": {"rating": payload.rating, "review": payload.review or "", "ratedAt": now, "updatedAt": now}},
    )
    if res.modified_count == 0:
        raise HTTPException(status_code=400, detail="Service already rated")

    service_id = booking.get("serviceId")
    review_id = create_document(db, "serviceReviews", {
        "bookingId": booking_id,
        "serviceId": service_id,
        "serviceName": booking.get("serviceName"),
        "customerId": payload.customer_id,
        "customerName": booking.get("customerName"),
        "vendorId": booking.get("vendorId"),
        "rating": payload.rating,
        "review": payload.review or "",
        "helpful": 0,
    })

    synced = ratings.record_rating(db, service_id, payload.rating) if service_id else False
    notify(db, booking.get("vendorId"), "service_rated", {"rating": payload.rating})
    return {"success": True, "reviewId": review_id, "ratingSynced": synced,
            "message": "Rating submitted successfully"}


@router.get("/api/service-reviews/{service_id}")
def service_reviews(service_id: str, limit: Optional[int] = None, db: Database = Depends(get_db)):
    docs = get_documents(db, "serviceReviews", {"serviceId": service_id}, limit, sort=[("createdAt", -1)])
    return {
        "success": True,
        "reviews": [serialize(d) for d in docs],
        **ratings.rating_stats(d.get("rating", 0) for d in docs),
    }
