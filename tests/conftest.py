"""Shared fixtures: in-memory store, ledgers and an engine wired to them."""

from datetime import datetime, timedelta, timezone
from decimal import Decimal
from itertools import count

import pytest

from marketplace.economy import MemoryFundsLedger, MemoryInventory
from marketplace.engine import MarketplaceEngine
from marketplace.ledger import MemoryTransactionLedger
from marketplace.models import Listing, ListingDraft, Tier
from marketplace.pricing import BlackMarketPricing
from marketplace.store import MemoryListingStore

NOW = datetime(2026, 1, 1, 12, 0, tzinfo=timezone.utc)


class RecordingNotifier:
    def __init__(self, fail: bool = False) -> None:
        self.fail = fail
        self.purchases = []
        self.rotations = []
        self.alerts = []

    def purchase_completed(self, transaction):
        self.purchases.append(transaction)
        if self.fail:
            raise RuntimeError("webhook down")

    def listing_rotated(self, listing):
        self.rotations.append(listing)
        if self.fail:
            raise RuntimeError("webhook down")

    def operator_alert(self, message, **context):
        self.alerts.append((message, context))


@pytest.fixture
def store() -> MemoryListingStore:
    return MemoryListingStore()


@pytest.fixture
def funds() -> MemoryFundsLedger:
    return MemoryFundsLedger({"B-001": Decimal("500.00"), "B-002": Decimal("20.00")})


@pytest.fixture
def inventory() -> MemoryInventory:
    return MemoryInventory()


@pytest.fixture
def ledger() -> MemoryTransactionLedger:
    return MemoryTransactionLedger()


@pytest.fixture
def notifier() -> RecordingNotifier:
    return RecordingNotifier()


@pytest.fixture
def pricing() -> BlackMarketPricing:
    return BlackMarketPricing(buy_discount=Decimal("1.0"), sell_bonus=Decimal("1.2"))


@pytest.fixture
def engine(store, funds, inventory, ledger, notifier, pricing) -> MarketplaceEngine:
    return MarketplaceEngine(
        store=store,
        funds=funds,
        inventory=inventory,
        ledger=ledger,
        notifier=notifier,
        pricing=pricing,
        clock=lambda: NOW,
    )


@pytest.fixture
def add_listing(store):
    """Create a listing directly in the store and return it as stored."""
    minutes = count()

    def _add(price, seller="S-001", tier=Tier.NORMAL, payload=None) -> Listing:
        n = next(minutes)
        listing_id = store.create(ListingDraft(
            seller_id=seller,
            item_payload=payload or f"item-{n}",
            price=Decimal(str(price)),
            tier=tier,
            created_at=NOW + timedelta(minutes=n),
        ))
        return store.get(listing_id)

    return _add
