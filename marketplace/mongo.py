"""MongoDB persistence for listings and the transaction ledger.

Collections:
    listings      one document per open listing, ``version`` guards writes
    transactions  append-only purchase records

Every pymongo ``ConnectionFailure`` (server selection timeouts included) is
raised as ``StoreUnavailable``. Nothing here retries; callers decide.
"""

from contextlib import contextmanager
from typing import Any, Iterator, Optional

import structlog
from bson import ObjectId
from bson.decimal128 import Decimal128
from bson.errors import InvalidId
from pymongo import ASCENDING, MongoClient
from pymongo.collection import Collection
from pymongo.errors import ConnectionFailure

from marketplace.errors import StoreUnavailable
from marketplace.models import Listing, ListingDraft, Tier, Transaction
from marketplace.store import Mutation, apply_mutation, validate_draft

logger = structlog.get_logger(__name__)

LISTINGS = "listings"
TRANSACTIONS = "transactions"


@contextmanager
def _translate_errors(operation: str) -> Iterator[None]:
    try:
        yield
    except ConnectionFailure as exc:
        logger.warning("mongo_unavailable", operation=operation, error=str(exc))
        raise StoreUnavailable(f"MongoDB unavailable during {operation}") from exc


def _object_id(listing_id: str) -> Optional[ObjectId]:
    try:
        return ObjectId(listing_id)
    except (InvalidId, TypeError):
        return None


class MongoConnection:
    """Owns the client; hands out the two collections."""

    def __init__(
        self,
        uri: str = "mongodb://localhost:27017",
        database: str = "marketplace",
        username: Optional[str] = None,
        password: Optional[str] = None,
        timeout_ms: int = 5000,
        client: Optional[MongoClient] = None,
    ) -> None:
        if client is None:
            kwargs: dict[str, Any] = {"serverSelectionTimeoutMS": timeout_ms, "tz_aware": True}
            if username and password:
                kwargs.update(username=username, password=password, authSource=database)
            client = MongoClient(uri, **kwargs)
        self.client = client
        self.database = client[database]
        logger.info("mongo_connected", database=database)

    @property
    def listings(self) -> Collection:
        return self.database[LISTINGS]

    @property
    def transactions(self) -> Collection:
        return self.database[TRANSACTIONS]

    def ensure_indexes(self) -> None:
        with _translate_errors("ensure_indexes"):
            self.listings.create_index([("tier", ASCENDING), ("created_at", ASCENDING)])
            self.transactions.create_index([("buyer_id", ASCENDING)])
            self.transactions.create_index([("seller_id", ASCENDING)])

    def ping(self) -> bool:
        try:
            self.client.admin.command("ping")
        except ConnectionFailure:
            return False
        return True

    def close(self) -> None:
        self.client.close()
        logger.info("mongo_disconnected")


# ── listings ──────────────────────────────────────────────────────────────────

def listing_to_document(draft: ListingDraft) -> dict:
    return {
        "seller_id": draft.seller_id,
        "item_payload": draft.item_payload,
        "price": Decimal128(draft.price),
        "tier": draft.tier.value,
        "created_at": draft.created_at,
        "version": 0,
    }


def _decimal(value: Any):
    return value.to_decimal() if isinstance(value, Decimal128) else value


def document_to_listing(doc: dict) -> Listing:
    return Listing(
        id=str(doc["_id"]),
        seller_id=doc["seller_id"],
        item_payload=doc["item_payload"],
        price=_decimal(doc["price"]),
        tier=Tier(doc["tier"]),
        created_at=doc["created_at"],
        version=doc["version"],
    )


class MongoListingStore:
    def __init__(self, collection: Collection) -> None:
        self.collection = collection

    def create(self, draft: ListingDraft) -> str:
        validate_draft(draft)
        with _translate_errors("create"):
            result = self.collection.insert_one(listing_to_document(draft))
        return str(result.inserted_id)

    def get(self, listing_id: str) -> Optional[Listing]:
        oid = _object_id(listing_id)
        if oid is None:
            return None
        with _translate_errors("get"):
            doc = self.collection.find_one({"_id": oid})
        return document_to_listing(doc) if doc else None

    def get_all(self, tier: Optional[Tier] = None) -> list[Listing]:
        query = {"tier": tier.value} if tier is not None else {}
        with _translate_errors("get_all"):
            return [document_to_listing(d) for d in self.collection.find(query)]

    def compare_and_swap(
        self, listing_id: str, expected_version: int, mutate: Mutation
    ) -> tuple[bool, Optional[Listing]]:
        oid = _object_id(listing_id)
        if oid is None:
            return False, None
        guard = {"_id": oid, "version": expected_version}
        with _translate_errors("compare_and_swap"):
            doc = self.collection.find_one(guard)
            if doc is None:
                return False, None
            updated = apply_mutation(document_to_listing(doc), mutate)
            result = self.collection.update_one(guard, {"$set": {
                "price": Decimal128(updated.price),
                "tier": updated.tier.value,
                "version": updated.version,
            }})
        if result.matched_count == 0:
            return False, None
        return True, updated

    def delete(self, listing_id: str, expected_version: int) -> bool:
        oid = _object_id(listing_id)
        if oid is None:
            return False
        with _translate_errors("delete"):
            result = self.collection.delete_one({"_id": oid, "version": expected_version})
        return result.deleted_count == 1

    def clear(self) -> None:
        with _translate_errors("clear"):
            self.collection.delete_many({})


# ── transactions ──────────────────────────────────────────────────────────────

class MongoTransactionLedger:
    def __init__(self, collection: Collection) -> None:
        self.collection = collection

    def record(self, transaction: Transaction) -> None:
        doc = transaction.model_dump(mode="python")
        doc["_id"] = doc.pop("id")
        doc["tier"] = transaction.tier.value
        doc["price"] = Decimal128(transaction.price)
        doc["seller_credit"] = Decimal128(transaction.seller_credit)
        with _translate_errors("record"):
            self.collection.insert_one(doc)

    def history(self, participant_id: str) -> list[Transaction]:
        query = {"$or": [{"buyer_id": participant_id}, {"seller_id": participant_id}]}
        with _translate_errors("history"):
            docs = list(self.collection.find(query))
        return [
            Transaction(
                id=str(d["_id"]),
                listing_id=d["listing_id"],
                buyer_id=d["buyer_id"],
                seller_id=d["seller_id"],
                item_payload=d["item_payload"],
                price=_decimal(d["price"]),
                seller_credit=_decimal(d["seller_credit"]),
                tier=Tier(d["tier"]),
                timestamp=d["timestamp"],
            )
            for d in docs
        ]
