from decimal import Decimal

from pydantic import BaseModel, ConfigDict, field_validator

from marketplace.models import Listing, Settlement, Tier
from marketplace.money import apply_multiplier, to_money


class BlackMarketPricing(BaseModel):
    """Multipliers applied when a black-market listing is bought.

    ``buy_discount`` scales what the buyer pays, ``sell_bonus`` what the seller
    receives. They are independent; nothing forces buy <= listed <= sell.
    """

    model_config = ConfigDict(frozen=True)

    buy_discount: Decimal = Decimal("1.0")
    sell_bonus: Decimal = Decimal("1.2")

    @field_validator("buy_discount", "sell_bonus", mode="before")
    @classmethod
    def _positive(cls, v):
        v = to_money(v)
        if v <= 0:
            raise ValueError("multiplier must be positive")
        return v


def settle(listing: Listing, pricing: BlackMarketPricing) -> Settlement:
    if listing.tier == Tier.BLACK_MARKET:
        return Settlement(
            listed_price=listing.price,
            charged=apply_multiplier(listing.price, pricing.buy_discount),
            credited=apply_multiplier(listing.price, pricing.sell_bonus),
        )
    return Settlement(listed_price=listing.price, charged=listing.price, credited=listing.price)
