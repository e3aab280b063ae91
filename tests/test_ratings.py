import mongomock
import pytest
from bson import ObjectId
from pymongo.errors import PyMongoError

import ratings


@pytest.fixture
def store():
    return mongomock.MongoClient()["ratings_test"]


def _product(store, **fields):
    doc = {"_id": ObjectId(), "type": "physical", "rating": 0, "reviewCount": 0, "ratingTotal": 0}
    doc.update(fields)
    store["products"].insert_one(doc)
    return doc["_id"]


def test_round_rating_rounds_half_up():
    assert ratings.round_rating(4.25) == 4.3
    assert ratings.round_rating(4.24) == 4.2
    assert ratings.round_rating(5) == 5


def test_rating_stats():
    stats = ratings.rating_stats([5, 4, 4])
    assert stats["totalReviews"] == 3
    assert stats["averageRating"] == 4.3
    assert stats["ratingDistribution"] == {"1": 0, "2": 0, "3": 0, "4": 2, "5": 1}


def test_rating_stats_empty():
    stats = ratings.rating_stats([])
    assert stats["totalReviews"] == 0
    assert stats["averageRating"] == 0


def test_record_rating_keeps_running_mean(store):
    oid = _product(store)
    assert ratings.record_rating(store, str(oid), 5)
    assert ratings.record_rating(store, str(oid), 4)

    doc = store["products"].find_one({"_id": oid})
    assert doc["reviewCount"] == 2
    assert doc["ratingTotal"] == 9
    assert doc["rating"] == 4.5
    assert doc["stats"]["rating"] == 4.5
    assert doc["stats"]["reviewCount"] == 2


def test_record_rating_unknown_target(store):
    assert ratings.record_rating(store, str(ObjectId()), 5) is False


def test_failed_sync_flags_product_and_reconcile_repairs(store, monkeypatch):
    oid = _product(store)
    store["reviews"].insert_many([
        {"productId": str(oid), "userId": "u1", "rating": 5},
        {"productId": str(oid), "userId": "u2", "rating": 2},
    ])

    def broken(*args, **kwargs):
        raise PyMongoError("connection reset")

    monkeypatch.setattr(mongomock.collection.Collection, "find_one_and_update", broken)
    assert ratings.record_rating(store, str(oid), 2) is False
    monkeypatch.undo()

    assert store["products"].find_one({"_id": oid})["ratingNeedsReconcile"] is True

    fixed = ratings.reconcile_ratings(store)
    assert fixed == [str(oid)]
    doc = store["products"].find_one({"_id": oid})
    assert doc["reviewCount"] == 2
    assert doc["rating"] == 3.5
    assert "ratingNeedsReconcile" not in doc


def test_reconcile_skips_rejected_reviews_and_uses_type_source(store):
    physical = _product(store)
    digital = _product(store, type="digital")
    store["reviews"].insert_many([
        {"productId": str(physical), "rating": 5, "approved": True},
        {"productId": str(physical), "rating": 1, "approved": False},
        {"productId": str(physical), "rating": 4},
    ])
    store["digitalProductReviews"].insert_one({"productId": str(digital), "rating": 3})

    fixed = ratings.reconcile_ratings(store, only_flagged=False)

    assert sorted(fixed) == sorted([str(physical), str(digital)])
    assert store["products"].find_one({"_id": physical})["rating"] == 4.5
    assert store["products"].find_one({"_id": digital})["reviewCount"] == 1


def test_reconcile_only_touches_flagged(store):
    flagged = _product(store, ratingNeedsReconcile=True)
    untouched = _product(store, rating=4.0, reviewCount=3, ratingTotal=12)

    assert ratings.reconcile_ratings(store) == [str(flagged)]
    assert store["products"].find_one({"_id": untouched})["rating"] == 4.0
