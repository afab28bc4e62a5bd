from pydantic import BaseModel, ConfigDict, Field
from enum import Enum
from datetime import datetime, timezone
from decimal import Decimal
from typing import Optional


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Tier(str, Enum):
    NORMAL = "normal"
    BLACK_MARKET = "black_market"


class PurchasePhase(str, Enum):
    RESERVE = "reserve"
    FUNDS_CHECK = "funds_check"
    TRANSFER = "transfer"
    DELIVER = "deliver"
    RECORD = "record"


class ListingDraft(BaseModel):
    """Everything needed to create a listing; the store assigns id and version."""

    seller_id: str
    item_payload: str
    price: Decimal
    tier: Tier = Tier.NORMAL
    created_at: datetime = Field(default_factory=utcnow)


class Listing(BaseModel):
    id: str
    seller_id: str
    item_payload: str  # opaque serialized item, never inspected by the engine
    price: Decimal
    tier: Tier = Tier.NORMAL
    created_at: datetime
    version: int = 0

    def to_draft(self) -> ListingDraft:
        return ListingDraft(
            seller_id=self.seller_id,
            item_payload=self.item_payload,
            price=self.price,
            tier=self.tier,
            created_at=self.created_at,
        )


class Transaction(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    listing_id: str
    buyer_id: str
    seller_id: str
    item_payload: str
    price: Decimal          # charged to the buyer
    seller_credit: Decimal  # credited to the seller
    tier: Tier
    timestamp: datetime


# ── Engine results ───────────────────────────────────────────────────────────

class Settlement(BaseModel):
    model_config = ConfigDict(frozen=True)

    listed_price: Decimal
    charged: Decimal
    credited: Decimal


class PurchaseResult(BaseModel):
    transaction: Transaction
    charged: Decimal
    credited: Decimal
    listing: Listing


class Page(BaseModel):
    items: list[Listing]
    page: int
    page_size: int
    total: int
    total_pages: int
    has_next: bool
    has_previous: bool


class RotationStatus(BaseModel):
    running: bool
    interval_seconds: float
    batch_size: int
    last_run_at: Optional[datetime] = None
    last_rotated: Optional[int] = None
    last_error: Optional[str] = None
