"""
Deterministic demo-data generator.

Produces:
  - 3 sellers and 12 buyers
  - 60 listings spread over Jan 2026
    - ~80 % normal tier
    - ~20 % already on the black market (price halved)
  - Buyer balances between 500 and 5 000
  - Item payloads are base64-encoded JSON item stacks
"""

import base64
import json
import random
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from typing import Optional

from marketplace.economy import MemoryFundsLedger
from marketplace.models import ListingDraft, Tier
from marketplace.money import apply_multiplier, round2
from marketplace.store import ListingStore

SEED = 42
START = datetime(2026, 1, 1, tzinfo=timezone.utc)
END   = datetime(2026, 1, 31, 23, 59, 59, tzinfo=timezone.utc)

SELLERS = ["S-001", "S-002", "S-003"]
BUYERS  = [f"B-{n:04d}" for n in range(1, 13)]

MATERIALS = [
    "DIAMOND", "EMERALD", "GOLD_INGOT", "IRON_INGOT", "NETHERITE_SCRAP",
    "ENCHANTED_BOOK", "ELYTRA", "TRIDENT", "BEACON", "SHULKER_BOX",
]


def _rand_dt(rng: random.Random, lo: datetime = START, hi: datetime = END) -> datetime:
    delta = hi - lo
    secs = rng.randint(0, int(delta.total_seconds()))
    return lo + timedelta(seconds=secs)


def encode_item(material: str, amount: int) -> str:
    raw = json.dumps({"material": material, "amount": amount}, sort_keys=True)
    return base64.b64encode(raw.encode()).decode()


def seed(store: ListingStore, funds: Optional[MemoryFundsLedger] = None) -> int:
    rng = random.Random(SEED)

    total   = 60
    n_black = int(total * 0.20)   # 12 already rotated

    for i in range(total):
        price = round2(rng.uniform(5, 1000))
        tier = Tier.NORMAL
        if i < n_black:
            tier = Tier.BLACK_MARKET
            price = apply_multiplier(price, Decimal("0.5"))
        store.create(ListingDraft(
            seller_id=rng.choice(SELLERS),
            item_payload=encode_item(rng.choice(MATERIALS), rng.randint(1, 64)),
            price=price,
            tier=tier,
            created_at=_rand_dt(rng),
        ))

    if funds is not None:
        for buyer in BUYERS:
            funds.set_balance(buyer, round2(rng.uniform(500, 5000)))

    return total
