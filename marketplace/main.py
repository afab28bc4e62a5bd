from contextlib import asynccontextmanager
from decimal import Decimal
from typing import Optional

import structlog
from fastapi import FastAPI, HTTPException, Query, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from marketplace.config import Settings, get_settings
from marketplace.economy import MemoryFundsLedger, MemoryInventory
from marketplace.engine import DEFAULT_PAGE_SIZE, MarketplaceEngine
from marketplace.errors import MarketplaceError
from marketplace.ledger import MemoryTransactionLedger
from marketplace.models import Tier
from marketplace.mongo import MongoConnection, MongoListingStore, MongoTransactionLedger
from marketplace.notify import DiscordWebhookNotifier, LogNotifier, Notifier
from marketplace.observability import configure_logging
from marketplace.pricing import BlackMarketPricing
from marketplace.rotation import RotationScheduler
from marketplace.store import MemoryListingStore

logger = structlog.get_logger(__name__)


class SellRequest(BaseModel):
    seller_id: str
    item_payload: str
    price: Decimal


class PurchaseRequest(BaseModel):
    buyer_id: str
    expected_version: int


def build_notifier(settings: Settings) -> Notifier:
    if not settings.discord_webhook_url:
        return LogNotifier()
    return DiscordWebhookNotifier(
        settings.discord_webhook_url,
        title=settings.discord_embed_title,
        color=settings.discord_embed_color,
        description=settings.discord_embed_description,
    )


def build_services(settings: Settings) -> tuple[MarketplaceEngine, RotationScheduler, Optional[MongoConnection]]:
    """Wire the engine and the rotation job from settings."""
    connection = None
    if settings.store_backend == "mongo":
        connection = MongoConnection(
            settings.mongo_uri,
            settings.mongo_database,
            username=settings.mongo_username,
            password=settings.mongo_password,
            timeout_ms=settings.mongo_timeout_ms,
        )
        connection.ensure_indexes()
        store = MongoListingStore(connection.listings)
        ledger = MongoTransactionLedger(connection.transactions)
    else:
        store = MemoryListingStore()
        ledger = MemoryTransactionLedger()

    notifier = build_notifier(settings)
    engine = MarketplaceEngine(
        store=store,
        funds=MemoryFundsLedger(),
        inventory=MemoryInventory(),
        ledger=ledger,
        notifier=notifier,
        pricing=BlackMarketPricing(buy_discount=settings.buy_discount, sell_bonus=settings.sell_bonus),
    )
    scheduler = RotationScheduler(
        store,
        discount=settings.black_market_discount,
        notifier=notifier,
        interval_seconds=settings.rotation_interval_seconds,
        batch_size=settings.rotation_batch_size,
    )
    return engine, scheduler, connection


def _seed(engine: MarketplaceEngine) -> int:
    from scripts.seed_data import seed
    funds = engine.funds if isinstance(engine.funds, MemoryFundsLedger) else None
    return seed(engine.store, funds)


def create_app(
    settings: Optional[Settings] = None,
    engine: Optional[MarketplaceEngine] = None,
    scheduler: Optional[RotationScheduler] = None,
) -> FastAPI:
    settings = settings or get_settings()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        configure_logging(settings.log_level, settings.log_json)
        connection = None
        if app.state.engine is None:
            app.state.engine, app.state.scheduler, connection = build_services(settings)
        app.state.connection = connection
        if settings.seed_on_startup:
            _seed(app.state.engine)
        if settings.rotation_enabled and app.state.scheduler is not None:
            app.state.scheduler.start()
        yield
        if app.state.scheduler is not None:
            app.state.scheduler.stop()
        if connection is not None:
            connection.close()

    app = FastAPI(
        title="Marketplace Engine",
        version="1.0.0",
        description="Listings, purchases and black-market rotation",
        lifespan=lifespan,
    )
    app.state.settings = settings
    app.state.engine = engine
    app.state.scheduler = scheduler

    @app.exception_handler(MarketplaceError)
    async def marketplace_error_handler(request: Request, exc: MarketplaceError):
        logger.info("request_failed", path=request.url.path, code=exc.code)
        return JSONResponse(status_code=exc.http_status, content=exc.to_response())

    def _engine() -> MarketplaceEngine:
        return app.state.engine

    def _scheduler() -> RotationScheduler:
        if app.state.scheduler is None:
            raise HTTPException(404, "Rotation is not configured")
        return app.state.scheduler

    # ── Listings ─────────────────────────────────────────────────────────────

    @app.get("/api/v1/listings", summary="Browse one tier of listings")
    def browse_listings(
        tier: Tier = Query(default=Tier.NORMAL),
        page: int = Query(default=1, ge=1),
        page_size: int = Query(default=DEFAULT_PAGE_SIZE, ge=1, le=200),
    ):
        return _engine().browse(tier, page, page_size).model_dump(mode="json")

    @app.get("/api/v1/listings/{listing_id}", summary="Get one listing")
    def get_listing(listing_id: str):
        listing = _engine().get_listing(listing_id)
        if listing is None:
            raise HTTPException(404, f"Listing '{listing_id}' not found")
        return listing.model_dump(mode="json")

    @app.post("/api/v1/listings", status_code=201, summary="List an item for sale")
    def sell(body: SellRequest):
        listing = _engine().list_item(body.seller_id, body.item_payload, body.price)
        return listing.model_dump(mode="json")

    @app.post("/api/v1/listings/{listing_id}/purchase", summary="Buy a listing")
    def purchase(listing_id: str, body: PurchaseRequest):
        result = _engine().purchase(listing_id, body.expected_version, body.buyer_id)
        return result.model_dump(mode="json")

    # ── Transactions ─────────────────────────────────────────────────────────

    @app.get("/api/v1/transactions/{participant_id}", summary="Purchase history of a buyer or seller")
    def transaction_history(participant_id: str):
        history = _engine().history(participant_id)
        return {"transactions": [t.model_dump(mode="json") for t in history]}

    # ── Admin ────────────────────────────────────────────────────────────────

    @app.post("/api/v1/admin/rotate", summary="Move listings to the black market now")
    def rotate(batch_size: Optional[int] = Query(default=None, ge=0)):
        return {"rotated": _scheduler().rotate(batch_size)}

    @app.get("/api/v1/admin/rotation", summary="Rotation scheduler status")
    def rotation_status():
        return _scheduler().status().model_dump(mode="json")

    @app.post("/api/v1/admin/seed", summary="Re-seed demo listings")
    def reseed():
        if settings.store_backend != "memory":
            raise HTTPException(409, "Re-seeding is only available on the memory backend")
        engine = _engine()
        engine.store.clear()
        count = _seed(engine)
        return {"status": "seeded", "listings": count}

    @app.get("/api/v1/health", summary="Liveness probe, plus a ping when backed by MongoDB")
    def health():
        connection = getattr(app.state, "connection", None)
        if connection is not None and not connection.ping():
            return JSONResponse(
                status_code=503,
                content={"status": "degraded", "backend": settings.store_backend},
            )
        return {"status": "healthy", "backend": settings.store_backend}

    return app


app = create_app()
