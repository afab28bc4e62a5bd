import threading
import uuid
from typing import Callable, Optional, Protocol

from marketplace.errors import InvalidListing, StoreUnavailable
from marketplace.models import Listing, ListingDraft, Tier

Mutation = Callable[[Listing], Listing]


class ListingStore(Protocol):
    def create(self, draft: ListingDraft) -> str: ...

    def get(self, listing_id: str) -> Optional[Listing]: ...

    def get_all(self, tier: Optional[Tier] = None) -> list[Listing]: ...

    def compare_and_swap(
        self, listing_id: str, expected_version: int, mutate: Mutation
    ) -> tuple[bool, Optional[Listing]]: ...

    def delete(self, listing_id: str, expected_version: int) -> bool: ...

    def clear(self) -> None: ...


def validate_draft(draft: ListingDraft) -> None:
    if draft.price <= 0:
        raise InvalidListing(f"Price must be positive, got {draft.price}")
    if not draft.item_payload:
        raise InvalidListing("Item payload must not be empty")


def apply_mutation(current: Listing, mutate: Mutation) -> Listing:
    """Run ``mutate`` on a copy and keep only the fields a listing may change."""
    changed = mutate(current.model_copy())
    if changed.tier == Tier.NORMAL and current.tier == Tier.BLACK_MARKET:
        raise ValueError(f"Listing {current.id} cannot leave the black market")
    if changed.price <= 0:
        raise ValueError(f"Listing {current.id} price must stay positive")
    return current.model_copy(update={
        "price": changed.price,
        "tier": changed.tier,
        "version": current.version + 1,
    })


class MemoryListingStore:
    """In-process listing store.

    Every operation runs under one lock so that the version check and the
    write it guards happen as a single step, the way a single-document update
    does in MongoDB.
    """

    def __init__(self) -> None:
        self.listings: dict[str, Listing] = {}
        self._lock = threading.Lock()
        self._connected = True

    # ── connection ───────────────────────────────────────────────────────────

    def connect(self) -> None:
        self._connected = True

    def disconnect(self) -> None:
        self._connected = False

    def _ensure_connected(self) -> None:
        if not self._connected:
            raise StoreUnavailable("Listing store is not connected")

    # ── writes ────────────────────────────────────────────────────────────────

    def create(self, draft: ListingDraft) -> str:
        validate_draft(draft)
        with self._lock:
            self._ensure_connected()
            listing_id = uuid.uuid4().hex
            self.listings[listing_id] = Listing(id=listing_id, version=0, **draft.model_dump())
            return listing_id

    def compare_and_swap(
        self, listing_id: str, expected_version: int, mutate: Mutation
    ) -> tuple[bool, Optional[Listing]]:
        with self._lock:
            self._ensure_connected()
            current = self.listings.get(listing_id)
            if current is None or current.version != expected_version:
                return False, None
            updated = apply_mutation(current, mutate)
            self.listings[listing_id] = updated
            return True, updated.model_copy()

    def delete(self, listing_id: str, expected_version: int) -> bool:
        with self._lock:
            self._ensure_connected()
            current = self.listings.get(listing_id)
            if current is None or current.version != expected_version:
                return False
            del self.listings[listing_id]
            return True

    def clear(self) -> None:
        with self._lock:
            self._ensure_connected()
            self.listings.clear()

    # ── reads ─────────────────────────────────────────────────────────────────

    def get(self, listing_id: str) -> Optional[Listing]:
        with self._lock:
            self._ensure_connected()
            listing = self.listings.get(listing_id)
            return listing.model_copy() if listing else None

    def get_all(self, tier: Optional[Tier] = None) -> list[Listing]:
        with self._lock:
            self._ensure_connected()
            return [
                l.model_copy() for l in self.listings.values()
                if tier is None or l.tier == tier
            ]
