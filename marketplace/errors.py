"""Error hierarchy for the marketplace engine.

Engine errors carry a stable ``code`` and the HTTP status the API adapter
answers with. Collaborator errors (funds ledger, inventory, notifier) are
plain exceptions raised by those clients and translated by the engine.
"""

from typing import Any, Optional

from marketplace.models import PurchasePhase


class MarketplaceError(Exception):
    code = "MARKETPLACE_ERROR"
    http_status = 500

    def __init__(self, message: str, **context: Any) -> None:
        super().__init__(message)
        self.message = message
        self.context = context

    def to_response(self) -> dict:
        return {"error": {"code": self.code, "message": self.message}}


class StoreUnavailable(MarketplaceError):
    code = "STORE_UNAVAILABLE"
    http_status = 503


class VersionConflict(MarketplaceError):
    code = "VERSION_CONFLICT"
    http_status = 409


class ListingUnavailable(VersionConflict):
    """The listing was bought, rotated, or removed since it was read."""

    code = "LISTING_UNAVAILABLE"


class InvalidListing(MarketplaceError):
    code = "INVALID_LISTING"
    http_status = 400


class SelfPurchase(MarketplaceError):
    code = "SELF_PURCHASE"
    http_status = 400


class InsufficientFunds(MarketplaceError):
    code = "INSUFFICIENT_FUNDS"
    http_status = 402


class PaymentFailed(MarketplaceError):
    """The funds ledger failed before any money moved."""

    code = "PAYMENT_FAILED"
    http_status = 502


class TransferFailed(MarketplaceError):
    """Money has moved but a later step failed. Needs an operator."""

    code = "TRANSFER_FAILED"
    http_status = 500

    def __init__(self, message: str, phase: PurchasePhase, **context: Any) -> None:
        super().__init__(message, **context)
        self.phase = phase

    def to_response(self) -> dict:
        body = super().to_response()
        body["error"]["phase"] = self.phase.value
        return body


# ── collaborator errors ───────────────────────────────────────────────────────

class FundsLedgerError(Exception):
    def __init__(self, message: str, account_id: Optional[str] = None) -> None:
        super().__init__(message)
        self.account_id = account_id


class DeliveryError(Exception):
    pass


class NotifierError(Exception):
    pass
