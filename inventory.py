import logging
from typing import Dict, List, Optional

from bson import ObjectId
from fastapi import HTTPException
from pymongo import UpdateOne
from pymongo.client_session import ClientSession
from pymongo.database import Database
from pymongo.errors import PyMongoError

from notifications import notify

logger = logging.getLogger(__name__)

LOW_STOCK_THRESHOLD = 5


def _stocked_items(items: List[Dict]):
    for item in items:
        if item.get("type", "physical") != "physical":
            continue
        product_id = item.get("productId")
        if not product_id or not ObjectId.is_valid(product_id):
            continue
        yield ObjectId(product_id), int(item.get("quantity", 0))


def reduce_inventory(db: Database, items: List[Dict]) -> None:
    """Take ordered quantities out of stock, all or nothing."""
    taken = []
    for oid, quantity in _stocked_items(items):
        product = db["products"].find_one({"_id": oid}, {"stock": 1, "name": 1, "vendorId": 1})
        if not product or product.get("stock") is None:
            continue
        res = db["products"].update_one(
            {"_id": oid, "stock": {"$gte": quantity}},
            {"$inc": {"stock": -quantity}},
        )
        if res.modified_count == 0:
            if taken:
                db["products"].bulk_write([UpdateOne({"_id": i}, {"$inc": {"stock": q}}) for i, q in taken])
            raise HTTPException(
                status_code=400,
                detail=f"Insufficient stock for {product.get('name', str(oid))}",
            )
        taken.append((oid, quantity))
        remaining = product["stock"] - quantity
        if remaining <= 0:
            notify(db, product.get("vendorId"), "product_out_of_stock", {"productName": product.get("name")})
        elif remaining <= LOW_STOCK_THRESHOLD:
            logger.info("Low stock for product %s: %d left", oid, remaining)


def restore_inventory(db: Database, items: List[Dict], session: Optional[ClientSession] = None) -> bool:
    ops = [UpdateOne({"_id": oid, "stock": {"$exists": True}}, {"$inc": {"stock": quantity}})
           for oid, quantity in _stocked_items(items)]
    if not ops:
        return True
    try:
        db["products"].bulk_write(ops, session=session)
        return True
    except PyMongoError as exc:
        if session is not None:
            # the surrounding transaction rolls back with it
            raise
        logger.error("Failed to restore inventory: %s", exc)
        return False
