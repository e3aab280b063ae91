import logging
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException
from pymongo import UpdateOne
from pymongo.database import Database

import ratings
from database import UnitOfWork, get_db, get_unit_of_work, to_obj_id, utcnow
from notifications import record_audit_log
from permissions import StaffIdentity, get_staff, require_permission
from routers.products import resolve_vendor_name
from schemas import ModerationDecision

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/admin")


@router.post("/fix-vendor-names")
def fix_vendor_names(staff: StaffIdentity = Depends(get_staff), db: Database = Depends(get_db),
                     uow: UnitOfWork = Depends(get_unit_of_work)):
    require_permission(staff, "products.edit")
    products = list(db["products"].find({"vendorName": {"$in": ["Vendor", "", None]}}, {"vendorId": 1}))

    ops = []
    errors = 0
    names = {}
    for product in products:
        vendor_id = product.get("vendorId")
        if not vendor_id:
            errors += 1
            continue
        if vendor_id not in names:
            names[vendor_id] = resolve_vendor_name(db, vendor_id, fallback="Vendor Store")
        ops.append(UpdateOne({"_id": product["_id"]},
                             {"$set": {"vendorName": names[vendor_id], "updatedAt": utcnow()}}))
    if ops:
        uow.run(lambda session: db["products"].bulk_write(ops, session=session))

    record_audit_log(db, staff.admin_id, "products.fix_vendor_names", {"updated": len(ops), "errors": errors})
    return {
        "success": True,
        "message": f"Updated {len(ops)} products. {errors} errors.",
        "updatedCount": len(ops),
        "errorCount": errors,
        "totalProcessed": len(products),
    }


@router.post("/reconcile-ratings")
def reconcile(all_products: bool = False, limit: Optional[int] = None,
              staff: StaffIdentity = Depends(get_staff), db: Database = Depends(get_db)):
    require_permission(staff, "products.edit")
    fixed = ratings.reconcile_ratings(db, only_flagged=not all_products, limit=limit)
    record_audit_log(db, staff.admin_id, "products.reconcile_ratings", {"count": len(fixed)})
    return {"success": True, "reconciled": len(fixed), "productIds": fixed}


@router.patch("/questions/{question_id}")
def moderate_question(question_id: str, payload: ModerationDecision, staff: StaffIdentity = Depends(get_staff),
                      db: Database = Depends(get_db)):
    require_permission(staff, "reviews.approve" if payload.status == "approved" else "reviews.reject")
    res = db["questions"].update_one(
        {"_id": to_obj_id(question_id)},
        {"$set": {"status": payload.status, "moderatedBy": staff.admin_id, "moderationReason": payload.reason,
                  "moderatedAt": utcnow(), "updatedAt": utcnow()}},
    )
    if res.matched_count == 0:
        raise HTTPException(status_code=404, detail="Question not found")
    record_audit_log(db, staff.admin_id, f"questions.{payload.status}", {"questionId": question_id,
                                                                          "reason": payload.reason})
    return {"success": True, "message": f"Question {payload.status}"}


@router.patch("/reviews/{review_id}")
def moderate_review(review_id: str, payload: ModerationDecision, staff: StaffIdentity = Depends(get_staff),
                    db: Database = Depends(get_db)):
    require_permission(staff, "reviews.approve" if payload.status == "approved" else "reviews.reject")
    oid = to_obj_id(review_id)
    review = db["reviews"].find_one({"_id": oid})
    if not review:
        raise HTTPException(status_code=404, detail="Review not found")

    approve = payload.status == "approved"
    now = utcnow()
    # only a change of approval moves the product aggregate
    res = db["reviews"].update_one(
        {"_id": oid, "approved": {"$ne": approve}},
        {"$set": {"approved": approve, "status": payload.status, "moderatedBy": staff.admin_id,
                  "moderationReason": payload.reason, "moderatedAt": now, "updatedAt": now}},
    )
    synced = True
    if res.modified_count:
        if approve:
            synced = ratings.record_rating(db, review["productId"], review.get("rating", 0))
        elif review.get("approved") is not False:
            # a counted rating was withdrawn; the aggregate is rebuilt from the rows
            ratings.mark_for_reconcile(db, review["productId"])
            synced = False

    record_audit_log(db, staff.admin_id, f"reviews.{payload.status}", {"reviewId": review_id,
                                                                        "reason": payload.reason})
    return {"success": True, "message": f"Review {payload.status}", "ratingSynced": synced}
