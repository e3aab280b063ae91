"""
Rating aggregation

Targets (products, including digital products and services) keep a running
``ratingTotal`` and ``reviewCount``; ``rating`` is derived from the two.
Each new rating is applied with a single atomic ``$inc``. When that step
fails the target is flagged ``ratingNeedsReconcile`` and picked up later by
``reconcile_ratings``.
"""

import logging
import math
from typing import Dict, Iterable, List, Optional

from bson import ObjectId
from pymongo import ReturnDocument, UpdateOne
from pymongo.database import Database
from pymongo.errors import PyMongoError

from database import utcnow

logger = logging.getLogger(__name__)

# review collection, the field in it that points at the rated product, and
# the filter a row must pass to count
REVIEW_SOURCES = {
    "physical": ("reviews", "productId", {"approved": {"$ne": False}}),
    "digital": ("digitalProductReviews", "productId", {}),
    "service": ("serviceReviews", "serviceId", {}),
}


def round_rating(value: float) -> float:
    """Round half up to one decimal place (4.25 -> 4.3)."""
    return math.floor(value * 10 + 0.5) / 10


def rating_stats(ratings: Iterable[int]) -> Dict:
    ratings = [int(r) for r in ratings]
    distribution = {str(star): 0 for star in range(1, 6)}
    for r in ratings:
        if 1 <= r <= 5:
            distribution[str(r)] += 1
    total = len(ratings)
    average = round_rating(sum(ratings) / total) if total else 0
    return {"totalReviews": total, "averageRating": average, "ratingDistribution": distribution}


def _target_filter(target_id) -> Dict:
    if isinstance(target_id, str) and ObjectId.is_valid(target_id):
        return {"_id": ObjectId(target_id)}
    return {"_id": target_id}


def record_rating(db: Database, target_id, rating: int, collection: str = "products") -> bool:
    """Fold one new rating into the target's aggregate.

    Returns False when the aggregate could not be updated; the primary write
    that triggered it stands either way.
    """
    query = _target_filter(target_id)
    try:
        doc = db[collection].find_one_and_update(
            query,
            {"$inc": {"ratingTotal": rating, "reviewCount": 1}},
            return_document=ReturnDocument.AFTER,
        )
        if doc is None:
            logger.warning("Rating target %s not found in %s", target_id, collection)
            return False
        count = doc["reviewCount"]
        average = round_rating(doc["ratingTotal"] / count)
        # only the writer that observed the latest count sets the derived value
        db[collection].update_one(
            dict(query, reviewCount=count),
            {"$set": {"rating": average, "stats.rating": average, "stats.reviewCount": count,
                      "updatedAt": utcnow()}},
        )
        return True
    except PyMongoError as exc:
        logger.warning("Rating sync failed for %s/%s: %s", collection, target_id, exc)
        mark_for_reconcile(db, target_id, collection)
        return False


def mark_for_reconcile(db: Database, target_id, collection: str = "products") -> None:
    try:
        db[collection].update_one(_target_filter(target_id), {"$set": {"ratingNeedsReconcile": True}})
    except PyMongoError as exc:
        logger.error("Could not flag %s/%s for rating reconcile: %s", collection, target_id, exc)


def _source_for(product: Dict):
    return REVIEW_SOURCES.get(product.get("type"), REVIEW_SOURCES["physical"])


def reconcile_ratings(db: Database, only_flagged: bool = True, limit: Optional[int] = None) -> List[str]:
    """Recompute rating aggregates from the review rows.

    Returns the ids of the products that were rewritten.
    """
    query = {"ratingNeedsReconcile": True} if only_flagged else {}
    cursor = db["products"].find(query, {"type": 1})
    if limit:
        cursor = cursor.limit(limit)

    ops = []
    fixed = []
    for product in cursor:
        source, key, counted = _source_for(product)
        rows = db[source].find(dict(counted, **{key: str(product["_id"])}), {"rating": 1})
        ratings = [r.get("rating", 0) for r in rows]
        total = sum(ratings)
        count = len(ratings)
        average = round_rating(total / count) if count else 0
        ops.append(UpdateOne(
            {"_id": product["_id"]},
            {
                "$set": {
                    "ratingTotal": total,
                    "reviewCount": count,
                    "rating": average,
                    "stats.rating": average,
                    "stats.reviewCount": count,
                    "updatedAt": utcnow(),
                },
                "$unset": {"ratingNeedsReconcile": ""},
            },
        ))
        fixed.append(str(product["_id"]))

    if ops:
        db["products"].bulk_write(ops)
    logger.info("Reconciled ratings for %d products", len(fixed))
    return fixed


if __name__ == "__main__":
    from database import connect
    from settings import get_settings

    settings = get_settings()
    logging.basicConfig(level=settings.log_level)
    client, database = connect(settings.database_url, settings.database_name)
    if database is None:
        raise SystemExit("DATABASE_URL is not set")
    try:
        reconcile_ratings(database)
    finally:
        client.close()
