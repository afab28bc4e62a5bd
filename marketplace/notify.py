"""Purchase, rotation and operator notifications.

Notifiers are fire-and-forget from the engine's point of view: the engine
logs and drops any exception they raise.
"""

from typing import Any, Optional, Protocol

import requests
import structlog

from marketplace.errors import NotifierError
from marketplace.models import Listing, Transaction

logger = structlog.get_logger(__name__)

TIME_FORMAT = "%Y-%m-%d %H:%M:%S"

DEFAULT_DESCRIPTION = (
    "A purchase was made: {item} for ${price} at {time} by {buyer} from {seller}"
)


class Notifier(Protocol):
    def purchase_completed(self, transaction: Transaction) -> None: ...

    def listing_rotated(self, listing: Listing) -> None: ...

    def operator_alert(self, message: str, **context: Any) -> None: ...


class LogNotifier:
    """Writes notifications to the structured log only."""

    def purchase_completed(self, transaction: Transaction) -> None:
        logger.info(
            "purchase_notification",
            transaction_id=transaction.id,
            buyer_id=transaction.buyer_id,
            seller_id=transaction.seller_id,
            price=str(transaction.price),
        )

    def listing_rotated(self, listing: Listing) -> None:
        logger.info(
            "rotation_notification",
            listing_id=listing.id,
            seller_id=listing.seller_id,
            price=str(listing.price),
        )

    def operator_alert(self, message: str, **context: Any) -> None:
        logger.critical("operator_alert", alert=message, **context)


def parse_color(value: str) -> int:
    try:
        return int(value.lstrip("#"), 16)
    except ValueError:
        return 0xFFFFFF


class DiscordWebhookNotifier:
    def __init__(
        self,
        webhook_url: str,
        title: str = "Transaction Log",
        color: str = "#00FF00",
        description: str = DEFAULT_DESCRIPTION,
        timeout: float = 10,
        session: Optional[requests.Session] = None,
    ) -> None:
        if not webhook_url:
            raise ValueError("A Discord webhook URL is required")
        self.webhook_url = webhook_url
        self.title = title
        self.color = parse_color(color)
        self.description = description
        self.timeout = timeout
        self.session = session or requests.Session()

    def _post(self, title: str, description: str, color: Optional[int] = None) -> None:
        payload = {"embeds": [{
            "title": title,
            "description": description,
            "color": self.color if color is None else color,
        }]}
        try:
            response = self.session.post(self.webhook_url, json=payload, timeout=self.timeout)
            response.raise_for_status()
        except requests.HTTPError as exc:
            raise NotifierError(
                f"Discord webhook returned error {response.status_code}: {response.text}"
            ) from exc
        except requests.RequestException as exc:
            raise NotifierError(f"Failed to send Discord webhook: {exc}") from exc

    def purchase_completed(self, transaction: Transaction) -> None:
        description = self.description.format(
            item=transaction.item_payload,
            price=transaction.price,
            time=transaction.timestamp.strftime(TIME_FORMAT),
            buyer=transaction.buyer_id,
            seller=transaction.seller_id,
        )
        self._post(self.title, description)

    def listing_rotated(self, listing: Listing) -> None:
        self._post(
            "Black Market",
            f"A listing from {listing.seller_id} moved to the black market at ${listing.price}",
        )

    def operator_alert(self, message: str, **context: Any) -> None:
        details = "\n".join(f"{k}: {v}" for k, v in sorted(context.items()))
        self._post("Operator alert", f"{message}\n{details}".strip(), color=0xFF0000)
