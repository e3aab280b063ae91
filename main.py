import logging
import os
import time
from contextlib import asynccontextmanager
from typing import Callable, Optional

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from pymongo import MongoClient
from pymongo.errors import PyMongoError

from database import connect, ensure_indexes, supports_transactions
from errors import register_exception_handlers
from payments import PaystackClient
from ratelimit import RateLimiter
from routers import account, admin, ads, messages, orders, products, questions, reviews, services, vendors
from settings import Settings, get_settings

logger = logging.getLogger(__name__)


def create_app(settings: Optional[Settings] = None, client: Optional[MongoClient] = None,
               payment_gateway=None, clock: Callable[[], float] = time.time) -> FastAPI:
    settings = settings or get_settings()
    logging.basicConfig(level=settings.log_level)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        owned = client is None
        if owned:
            mongo, db = connect(settings.database_url, settings.database_name)
        else:
            mongo, db = client, client[settings.database_name]
        if db is None:
            logger.warning("DATABASE_URL is not set; database routes will fail")
        else:
            ensure_indexes(db)
        app.state.db = db
        if settings.mongo_transactions is not None:
            transactions = settings.mongo_transactions and db is not None
        else:
            transactions = owned and mongo is not None and supports_transactions(mongo)
        if db is not None and not transactions:
            logger.warning("MongoDB transactions unavailable; multi-document writes are not atomic")
        app.state.transactions = transactions
        app.state.rate_limiter = RateLimiter(db, clock=clock, enabled=settings.rate_limit_enabled) \
            if db is not None else None

        gateway = payment_gateway
        if gateway is None and settings.paystack_secret_key:
            gateway = PaystackClient(settings.paystack_secret_key, settings.paystack_base_url)
        app.state.payment_gateway = gateway
        try:
            yield
        finally:
            if gateway is not None and payment_gateway is None:
                gateway.close()
            if owned and mongo is not None:
                mongo.close()

    app = FastAPI(title="Marketplace API", lifespan=lifespan)
    app.state.settings = settings

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    register_exception_handlers(app)

    @app.get("/")
    def read_root():
        return {"message": "Marketplace API running"}

    @app.get("/test")
    def test_database(request: Request):
        db = getattr(request.app.state, "db", None)
        response = {
            "backend": "✅ Running",
            "database": "❌ Not Available",
            "database_url": "✅ Set" if settings.database_url else "❌ Not Set",
            "database_name": None,
            "connection_status": "Not Connected",
            "collections": [],
        }
        if db is None:
            return response
        response["database"] = "✅ Available"
        response["database_name"] = db.name
        response["connection_status"] = "Connected"
        try:
            response["collections"] = db.list_collection_names()[:20]
            response["database"] = "✅ Connected & Working"
        except PyMongoError as e:
            response["database"] = f"⚠️ Connected but Error: {str(e)[:80]}"
        return response

    for module in (account, products, orders, reviews, questions, messages, services, vendors, ads, admin):
        app.include_router(module.router)

    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn
    port = int(os.getenv("PORT", 8000))
    uvicorn.run(app, host="0.0.0.0", port=port)
