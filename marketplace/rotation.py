"""Black-market rotation.

Each run takes one snapshot of normal-tier listings and demotes up to
``batch_size`` of them, picked at random without replacement. A listing that
changed since the snapshot (bought, or rotated by someone else) fails its
version check and is skipped without counting. So is a listing too cheap to
discount (the new price would round to zero). Nothing is carried between
runs.
"""

import random
import threading
from datetime import datetime
from decimal import Decimal
from typing import Callable, Optional

import structlog

from marketplace.errors import StoreUnavailable
from marketplace.models import Listing, RotationStatus, Tier, utcnow
from marketplace.money import apply_multiplier, to_money
from marketplace.notify import LogNotifier, Notifier
from marketplace.store import ListingStore

logger = structlog.get_logger(__name__)


def demote(discount: Decimal) -> Callable[[Listing], Listing]:
    def mutate(listing: Listing) -> Listing:
        return listing.model_copy(update={
            "tier": Tier.BLACK_MARKET,
            "price": apply_multiplier(listing.price, discount),
        })
    return mutate


class RotationScheduler:
    def __init__(
        self,
        store: ListingStore,
        discount: Decimal = Decimal("0.5"),
        notifier: Optional[Notifier] = None,
        interval_seconds: float = 3600,
        batch_size: int = 5,
        rng: Optional[random.Random] = None,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self.store = store
        self.discount = to_money(discount)
        if self.discount <= 0:
            raise ValueError("discount must be positive")
        self.notifier = notifier or LogNotifier()
        self.interval_seconds = interval_seconds
        self.batch_size = batch_size
        self.rng = rng or random.Random()
        self.clock = clock

        self._stop_event: Optional[threading.Event] = None
        self._thread: Optional[threading.Thread] = None
        self._last_run_at: Optional[datetime] = None
        self._last_rotated: Optional[int] = None
        self._last_error: Optional[str] = None

    def rotate(self, batch_size: Optional[int] = None) -> int:
        """Demote up to ``batch_size`` normal listings. Returns how many moved."""
        batch_size = self.batch_size if batch_size is None else batch_size
        if batch_size <= 0:
            return 0

        candidates = self.store.get_all(Tier.NORMAL)
        mutate = demote(self.discount)
        rotated = 0

        while candidates and rotated < batch_size:
            candidate = candidates.pop(self.rng.randrange(len(candidates)))
            try:
                ok, listing = self.store.compare_and_swap(candidate.id, candidate.version, mutate)
            except ValueError as exc:
                logger.warning("rotation_rejected", listing_id=candidate.id, reason=str(exc))
                continue
            if not ok:
                logger.debug("rotation_conflict", listing_id=candidate.id)
                continue
            rotated += 1
            logger.info(
                "listing_rotated",
                listing_id=listing.id,
                seller_id=listing.seller_id,
                old_price=str(candidate.price),
                new_price=str(listing.price),
            )
            try:
                self.notifier.listing_rotated(listing)
            except Exception:
                logger.warning("rotation_notification_failed", listing_id=listing.id, exc_info=True)

        return rotated

    # ── periodic runs ────────────────────────────────────────────────────────

    def run_once(self) -> Optional[int]:
        """One scheduled run. Failures are logged; the schedule keeps going."""
        self._last_run_at = self.clock()
        try:
            count = self.rotate(self.batch_size)
        except StoreUnavailable as exc:
            self._last_error = str(exc)
            logger.warning("rotation_skipped", reason="store_unavailable")
            return None
        except Exception as exc:
            self._last_error = str(exc)
            logger.exception("rotation_failed")
            return None
        self._last_rotated = count
        self._last_error = None
        return count

    def _loop(self, stop_event: threading.Event) -> None:
        logger.info("rotation_scheduler_started", interval_seconds=self.interval_seconds)
        while not stop_event.wait(self.interval_seconds):
            self.run_once()
        logger.info("rotation_scheduler_stopped")

    def start(self) -> None:
        if self._thread is not None and self._thread.is_alive():
            logger.warning("rotation_scheduler_already_running")
            return
        self._stop_event = threading.Event()
        self._thread = threading.Thread(
            target=self._loop,
            args=(self._stop_event,),
            daemon=True,
            name="BlackMarketRotation",
        )
        self._thread.start()

    def stop(self, timeout: float = 5.0) -> None:
        if self._stop_event is not None:
            self._stop_event.set()
        if self._thread is not None and self._thread.is_alive():
            self._thread.join(timeout=timeout)
            if self._thread.is_alive():
                logger.warning("rotation_scheduler_stop_timeout")
        self._stop_event = None
        self._thread = None

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def status(self) -> RotationStatus:
        return RotationStatus(
            running=self.running,
            interval_seconds=self.interval_seconds,
            batch_size=self.batch_size,
            last_run_at=self._last_run_at,
            last_rotated=self._last_rotated,
            last_error=self._last_error,
        )
