import uuid
from typing import Any, Callable, Optional
from datetime import datetime

import structlog

from marketplace.economy import FundsLedger, Inventory
from marketplace.errors import (
    FundsLedgerError,
    InsufficientFunds,
    InvalidListing,
    ListingUnavailable,
    PaymentFailed,
    SelfPurchase,
    StoreUnavailable,
    TransferFailed,
)
from marketplace.ledger import TransactionLedger
from marketplace.models import (
    Listing,
    ListingDraft,
    Page,
    PurchasePhase,
    PurchaseResult,
    Settlement,
    Tier,
    Transaction,
    utcnow,
)
from marketplace.money import round2
from marketplace.notify import LogNotifier, Notifier
from marketplace.pagination import paginate
from marketplace.pricing import BlackMarketPricing, settle
from marketplace.store import ListingStore

logger = structlog.get_logger(__name__)

DEFAULT_PAGE_SIZE = 45


class MarketplaceEngine:
    """Selling, browsing and buying over a shared listing store.

    The engine keeps no per-call state, so one instance serves any number of
    concurrent buyers. Races on a listing are settled by the store's version
    check alone.
    """

    def __init__(
        self,
        store: ListingStore,
        funds: FundsLedger,
        inventory: Inventory,
        ledger: TransactionLedger,
        notifier: Optional[Notifier] = None,
        pricing: Optional[BlackMarketPricing] = None,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self.store = store
        self.funds = funds
        self.inventory = inventory
        self.ledger = ledger
        self.notifier = notifier or LogNotifier()
        self.pricing = pricing or BlackMarketPricing()
        self.clock = clock

    # ── selling & browsing ───────────────────────────────────────────────────

    def list_item(self, seller_id: str, item_payload: str, price: Any) -> Listing:
        try:
            amount = round2(price)
        except ValueError as exc:
            raise InvalidListing(str(exc)) from exc
        draft = ListingDraft(
            seller_id=seller_id,
            item_payload=item_payload,
            price=amount,
            created_at=self.clock(),
        )
        listing_id = self.store.create(draft)
        logger.info("listing_created", listing_id=listing_id, seller_id=seller_id, price=str(amount))
        return Listing(id=listing_id, version=0, **draft.model_dump())

    def get_listing(self, listing_id: str) -> Optional[Listing]:
        return self.store.get(listing_id)

    def browse(
        self,
        tier: Tier = Tier.NORMAL,
        page: int = 1,
        page_size: int = DEFAULT_PAGE_SIZE,
    ) -> Page:
        snapshot = sorted(self.store.get_all(tier), key=lambda l: (l.created_at, l.id))
        return paginate(snapshot, page_size, page)

    def history(self, participant_id: str) -> list[Transaction]:
        return self.ledger.history(participant_id)

    # ── buying ───────────────────────────────────────────────────────────────

    def purchase(self, listing_id: str, expected_version: int, buyer_id: str) -> PurchaseResult:
        log = logger.bind(listing_id=listing_id, buyer_id=buyer_id, expected_version=expected_version)

        # ── 1. Reserve: deleting the listing is what claims it ──────────────
        listing = self.store.get(listing_id)
        if listing is None or listing.version != expected_version:
            log.info("purchase_conflict", phase=PurchasePhase.RESERVE.value)
            raise ListingUnavailable(f"Listing '{listing_id}' is no longer available")
        if listing.seller_id == buyer_id:
            raise SelfPurchase("You cannot buy your own listing")
        if not self.store.delete(listing_id, expected_version):
            log.info("purchase_conflict", phase=PurchasePhase.RESERVE.value)
            raise ListingUnavailable(f"Listing '{listing_id}' is no longer available")

        settlement = settle(listing, self.pricing)
        log = log.bind(seller_id=listing.seller_id, charged=str(settlement.charged))

        # ── 2. Funds check; the only step with a compensating action ────────
        try:
            balance = self.funds.balance(buyer_id)
        except FundsLedgerError as exc:
            self._restore(listing, log)
            log.warning("purchase_aborted", phase=PurchasePhase.FUNDS_CHECK.value, reason="balance_unreadable")
            raise PaymentFailed(f"Could not read balance: {exc}") from exc
        if balance < settlement.charged:
            restored_id = self._restore(listing, log)
            log.info(
                "purchase_aborted",
                phase=PurchasePhase.FUNDS_CHECK.value,
                reason="insufficient_funds",
                balance=str(balance),
            )
            raise InsufficientFunds(
                f"Balance {balance} does not cover {settlement.charged}",
                balance=balance,
                charged=settlement.charged,
                restored_listing_id=restored_id,
            )

        # ── 3. Transfer ─────────────────────────────────────────────────────
        try:
            self.funds.debit(buyer_id, settlement.charged)
        except FundsLedgerError as exc:
            self._restore(listing, log)
            log.warning("purchase_aborted", phase=PurchasePhase.TRANSFER.value, reason="debit_rejected")
            raise PaymentFailed(f"Debit rejected: {exc}") from exc
        try:
            self.funds.credit(listing.seller_id, settlement.credited)
        except Exception as exc:
            raise self._fatal(PurchasePhase.TRANSFER, exc, listing, buyer_id, settlement, log) from exc

        # ── 4. Deliver ──────────────────────────────────────────────────────
        try:
            self.inventory.deliver(buyer_id, listing.item_payload)
        except Exception as exc:
            raise self._fatal(PurchasePhase.DELIVER, exc, listing, buyer_id, settlement, log) from exc

        # ── 5. Record ───────────────────────────────────────────────────────
        transaction = Transaction(
            id=uuid.uuid4().hex,
            listing_id=listing.id,
            buyer_id=buyer_id,
            seller_id=listing.seller_id,
            item_payload=listing.item_payload,
            price=settlement.charged,
            seller_credit=settlement.credited,
            tier=listing.tier,
            timestamp=self.clock(),
        )
        try:
            self.ledger.record(transaction)
        except Exception as exc:
            raise self._fatal(PurchasePhase.RECORD, exc, listing, buyer_id, settlement, log) from exc

        log.info("purchase_completed", transaction_id=transaction.id, tier=listing.tier.value)
        try:
            self.notifier.purchase_completed(transaction)
        except Exception:
            log.warning("purchase_notification_failed", exc_info=True)

        return PurchaseResult(
            transaction=transaction,
            charged=settlement.charged,
            credited=settlement.credited,
            listing=listing,
        )

    def _restore(self, listing: Listing, log) -> str:
        """Put a reserved listing back after an abort that moved no money."""
        try:
            new_id = self.store.create(listing.to_draft())
        except StoreUnavailable:
            log.critical("listing_restore_failed", item_payload=listing.item_payload)
            self._alert(
                "Reserved listing could not be restored",
                log,
                listing_id=listing.id,
                seller_id=listing.seller_id,
                price=str(listing.price),
            )
            raise
        log.info("listing_restored", restored_id=new_id)
        return new_id

    def _fatal(
        self,
        phase: PurchasePhase,
        exc: Exception,
        listing: Listing,
        buyer_id: str,
        settlement: Settlement,
        log,
    ) -> TransferFailed:
        log.critical("purchase_fatal", phase=phase.value, error=str(exc), exc_info=True)
        context = {
            "listing_id": listing.id,
            "buyer_id": buyer_id,
            "seller_id": listing.seller_id,
            "charged": str(settlement.charged),
            "credited": str(settlement.credited),
        }
        self._alert(f"Purchase failed after funds moved: {exc}", log, phase=phase.value, **context)
        return TransferFailed(
            f"Purchase of '{listing.id}' failed during {phase.value}; an operator has been alerted",
            phase=phase,
            **context,
        )

    def _alert(self, message: str, log, **context: Any) -> None:
        try:
            self.notifier.operator_alert(message, **context)
        except Exception:
            log.error("operator_alert_failed", exc_info=True)
