"""
Fixed-window rate limiting

Counters live in the ``rateLimits`` collection, one document per
(action, identifier) pair, so every worker process shares the same windows.
"""

import logging
import math
import time
from dataclasses import dataclass
from typing import Callable, Dict, Optional

from fastapi import HTTPException, Request
from pymongo import ReturnDocument
from pymongo.database import Database
from pymongo.errors import DuplicateKeyError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RateLimit:
    interval: float  # seconds
    max_requests: int


RATE_LIMITS: Dict[str, RateLimit] = {
    # authentication
    "LOGIN": RateLimit(60, 5),
    "SIGNUP": RateLimit(60, 3),
    "PASSWORD_RESET": RateLimit(60, 3),
    # API
    "API_GENERAL": RateLimit(60, 100),
    "API_SEARCH": RateLimit(60, 30),
    # content
    "PRODUCT_CREATE": RateLimit(60, 10),
    "PRODUCT_UPDATE": RateLimit(60, 20),
    "ORDER_CREATE": RateLimit(60, 5),
    "REVIEW_CREATE": RateLimit(60, 5),
    "MESSAGE_SEND": RateLimit(60, 20),
    # uploads
    "IMAGE_UPLOAD": RateLimit(60, 10),
    # payments
    "PAYMENT_INITIATE": RateLimit(60, 3),
}


@dataclass
class RateLimitResult:
    allowed: bool
    limit: int
    remaining: int
    reset_at: float
    retry_after: Optional[int] = None


class RateLimiter:
    def __init__(self, db: Database, clock: Callable[[], float] = time.time, enabled: bool = True):
        self.collection = db["rateLimits"]
        self.blocked = db["blockedIdentifiers"]
        self.clock = clock
        self.enabled = enabled

    def check(self, identifier: str, action: str, limit: Optional[RateLimit] = None) -> RateLimitResult:
        limit = limit or RATE_LIMITS[action]
        now = self.clock()
        key = f"{action}:{identifier}"

        doc = self.collection.find_one_and_update(
            {"_id": key, "resetAt": {"$gt": now}},
            {"$inc": {"count": 1}},
            return_document=ReturnDocument.AFTER,
        )
        if doc is None:
            doc = self._open_window(key, action, now, limit.interval)

        count = doc["count"]
        reset_at = doc["resetAt"]
        if count > limit.max_requests:
            return RateLimitResult(
                allowed=False,
                limit=limit.max_requests,
                remaining=0,
                reset_at=reset_at,
                retry_after=math.ceil(reset_at - now),
            )
        return RateLimitResult(
            allowed=True,
            limit=limit.max_requests,
            remaining=limit.max_requests - count,
            reset_at=reset_at,
        )

    def _open_window(self, key: str, action: str, now: float, interval: float) -> Dict:
        fresh = {"count": 1, "resetAt": now + interval, "action": action}
        # only an expired window is reset; one another worker opened meanwhile keeps its count
        doc = self.collection.find_one_and_update(
            {"_id": key, "resetAt": {"$lte": now}},
            {"$set": fresh},
            return_document=ReturnDocument.AFTER,
        )
        if doc is not None:
            return doc
        try:
            self.collection.insert_one(dict(fresh, _id=key))
            return dict(fresh, _id=key)
        except DuplicateKeyError:
            return self.collection.find_one_and_update(
                {"_id": key},
                {"$inc": {"count": 1}},
                return_document=ReturnDocument.AFTER,
            )

    def check_adaptive(self, identifier: str, action: str, trust_score: float = 0) -> RateLimitResult:
        """Trusted callers (score 0..100) get up to twice the base allowance."""
        base = RATE_LIMITS[action]
        multiplier = 1 + trust_score / 100
        return self.check(identifier, action, RateLimit(base.interval, math.floor(base.max_requests * multiplier)))

    def reset(self, identifier: str, action: str) -> None:
        self.collection.delete_one({"_id": f"{action}:{identifier}"})

    def cleanup(self) -> int:
        return self.collection.delete_many({"resetAt": {"$lte": self.clock()}}).deleted_count

    def block(self, identifier: str, reason: str = "") -> None:
        self.blocked.update_one(
            {"_id": identifier},
            {"$set": {"reason": reason, "blockedAt": self.clock()}},
            upsert=True,
        )
        logger.warning("Blocked %s: %s", identifier, reason)

    def unblock(self, identifier: str) -> None:
        self.blocked.delete_one({"_id": identifier})

    def is_blocked(self, identifier: str) -> bool:
        return self.blocked.find_one({"_id": identifier}) is not None


def get_client_ip(request: Request) -> Optional[str]:
    headers = request.headers
    for name in ("x-real-ip", "x-forwarded-for", "cf-connecting-ip", "x-client-ip"):
        value = headers.get(name)
        if value:
            return value.split(",")[0].strip()
    if request.client:
        return request.client.host
    return None


def get_identifier(request: Request, user_id: Optional[str] = None) -> str:
    if user_id:
        return f"user:{user_id}"
    ip = get_client_ip(request)
    if ip:
        return f"ip:{ip}"
    return "anonymous"


def get_rate_limiter(request: Request) -> Optional[RateLimiter]:
    return getattr(request.app.state, "rate_limiter", None)


def enforce(request: Request, action: str, identifier: Optional[str] = None) -> None:
    """Raise a 429 when the caller has used up the window for ``action``."""
    limiter = get_rate_limiter(request)
    if limiter is None or not limiter.enabled:
        return
    identifier = identifier or get_identifier(request)
    if limiter.is_blocked(identifier):
        raise HTTPException(status_code=403, detail="Access blocked")
    result = limiter.check(identifier, action)
    if result.allowed:
        return
    logger.info("Rate limit hit for %s on %s", identifier, action)
    raise HTTPException(
        status_code=429,
        detail={
            "error": f"Too many requests. Please try again in {result.retry_after} seconds.",
            "retryAfter": result.retry_after,
        },
        headers={
            "Retry-After": str(result.retry_after),
            "X-RateLimit-Limit": str(result.limit),
            "X-RateLimit-Remaining": "0",
            "X-RateLimit-Reset": str(int(result.reset_at)),
        },
    )
