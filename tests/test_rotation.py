"""
Unit tests for black-market rotation.
"""

import random
import threading
import time
from decimal import Decimal

import pytest

from marketplace.errors import ListingUnavailable
from marketplace.models import ListingDraft, Tier
from marketplace.rotation import RotationScheduler
from marketplace.store import MemoryListingStore

from conftest import RecordingNotifier


class StaleStore(MemoryListingStore):
    """Reports a version conflict for the listed ids."""

    def __init__(self) -> None:
        super().__init__()
        self.stale: set[str] = set()

    def compare_and_swap(self, listing_id, expected_version, mutate):
        if listing_id in self.stale:
            return False, None
        return super().compare_and_swap(listing_id, expected_version, mutate)


def _draft(price):
    return ListingDraft(seller_id="S-001", item_payload=f"item-{price}", price=Decimal(price))


def make_scheduler(store, discount="0.5", notifier=None, **kwargs):
    return RotationScheduler(
        store,
        discount=Decimal(discount),
        notifier=notifier or RecordingNotifier(),
        rng=random.Random(7),
        **kwargs,
    )


class TestRotate:
    def test_price_halved_and_tier_flipped(self, store, add_listing):
        listing = add_listing(100)
        assert make_scheduler(store).rotate(1) == 1

        rotated = store.get(listing.id)
        assert rotated.tier == Tier.BLACK_MARKET
        assert rotated.price == Decimal("50.00")
        assert rotated.version == listing.version + 1

    def test_rounds_half_up_to_two_places(self, store, add_listing):
        listing = add_listing("10.01")
        make_scheduler(store).rotate(1)
        assert store.get(listing.id).price == Decimal("5.01")

    def test_never_selects_black_market_listings(self, store, add_listing):
        black = [add_listing(80, tier=Tier.BLACK_MARKET) for _ in range(3)]
        normal = [add_listing(40) for _ in range(2)]

        assert make_scheduler(store).rotate(10) == 2

        for listing in black:
            stored = store.get(listing.id)
            assert stored.price == Decimal("80")
            assert stored.version == 0
        for listing in normal:
            assert store.get(listing.id).price == Decimal("20.00")

    def test_bounded_by_batch_size(self, store, add_listing):
        for _ in range(10):
            add_listing(10)
        assert make_scheduler(store).rotate(3) == 3
        assert len(store.get_all(Tier.BLACK_MARKET)) == 3
        assert len(store.get_all(Tier.NORMAL)) == 7

    def test_listing_too_cheap_to_discount_is_skipped(self, store, add_listing):
        cheap = add_listing("0.01")
        for _ in range(5):
            add_listing(100)
        scheduler = make_scheduler(store, discount="0.4", batch_size=6)

        assert scheduler.run_once() == 5
        assert scheduler.status().last_error is None
        stored = store.get(cheap.id)
        assert stored.tier == Tier.NORMAL
        assert stored.price == Decimal("0.01")
        assert stored.version == 0

    def test_empty_store_is_a_no_op(self, store):
        assert make_scheduler(store).rotate(5) == 0

    @pytest.mark.parametrize("batch_size", [0, -1])
    def test_non_positive_batch_size(self, store, add_listing, batch_size):
        add_listing(10)
        assert make_scheduler(store).rotate(batch_size) == 0
        assert store.get_all(Tier.BLACK_MARKET) == []

    def test_default_batch_size_from_constructor(self, store, add_listing):
        for _ in range(4):
            add_listing(10)
        assert make_scheduler(store, batch_size=2).rotate() == 2

    def test_notifier_told_about_each_rotation(self, store, add_listing):
        notifier = RecordingNotifier()
        a = add_listing(10)
        b = add_listing(20)
        make_scheduler(store, notifier=notifier).rotate(5)

        assert {l.id for l in notifier.rotations} == {a.id, b.id}
        assert all(l.tier == Tier.BLACK_MARKET for l in notifier.rotations)

    def test_notifier_failure_does_not_stop_rotation(self, store, add_listing):
        for _ in range(3):
            add_listing(10)
        assert make_scheduler(store, notifier=RecordingNotifier(fail=True)).rotate(3) == 3


class TestConflicts:
    def test_conflicts_are_skipped_and_not_counted(self):
        store = StaleStore()
        ids = [store.create(_draft(price)) for price in (10, 20, 30)]
        store.stale.add(ids[0])

        assert make_scheduler(store).rotate(2) == 2
        assert store.get(ids[0]).tier == Tier.NORMAL
        assert {l.id for l in store.get_all(Tier.BLACK_MARKET)} == set(ids[1:])

    def test_all_conflicting_returns_zero(self):
        store = StaleStore()
        for price in (10, 20):
            store.stale.add(store.create(_draft(price)))
        assert make_scheduler(store).rotate(2) == 0


class TestRaceWithPurchases:
    def test_listing_is_either_bought_or_rotated(self, engine, store, funds, ledger, add_listing):
        funds.credit("B-009", Decimal("100000"))
        listings = [add_listing(10) for _ in range(40)]
        scheduler = make_scheduler(store)
        barrier = threading.Barrier(2)

        def buy_all():
            barrier.wait()
            for listing in listings:
                try:
                    engine.purchase(listing.id, listing.version, "B-009")
                except ListingUnavailable:
                    pass

        def rotate_all():
            barrier.wait()
            scheduler.rotate(len(listings))

        threads = [threading.Thread(target=buy_all), threading.Thread(target=rotate_all)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        bought = {t.listing_id for t in ledger.history("B-009")}
        rotated = {l.id for l in store.get_all(Tier.BLACK_MARKET)}
        assert bought.isdisjoint(rotated)
        assert bought | rotated == {l.id for l in listings}
        assert all(t.price == Decimal("10.00") for t in ledger.history("B-009"))


class TestScheduling:
    def test_run_once_records_status(self, store, add_listing):
        add_listing(10)
        scheduler = make_scheduler(store, batch_size=5)
        assert scheduler.run_once() == 1

        status = scheduler.status()
        assert status.last_rotated == 1
        assert status.last_error is None
        assert status.running is False

    def test_run_once_survives_unavailable_store(self, store, add_listing):
        add_listing(10)
        store.disconnect()
        scheduler = make_scheduler(store)
        assert scheduler.run_once() is None
        assert "not connected" in scheduler.status().last_error

    def test_background_loop_rotates_until_stopped(self, store, add_listing):
        for _ in range(3):
            add_listing(10)
        scheduler = make_scheduler(store, interval_seconds=0.01, batch_size=1)
        scheduler.start()
        try:
            deadline = time.monotonic() + 5
            while len(store.get_all(Tier.BLACK_MARKET)) < 3 and time.monotonic() < deadline:
                time.sleep(0.01)
            assert scheduler.running
        finally:
            scheduler.stop()

        assert not scheduler.running
        assert len(store.get_all(Tier.BLACK_MARKET)) == 3
