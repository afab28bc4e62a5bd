import threading
from typing import Protocol

from marketplace.errors import StoreUnavailable
from marketplace.models import Transaction


class TransactionLedger(Protocol):
    def record(self, transaction: Transaction) -> None: ...

    def history(self, participant_id: str) -> list[Transaction]: ...


class MemoryTransactionLedger:
    """Append-only list of completed purchases."""

    def __init__(self) -> None:
        self._transactions: list[Transaction] = []
        self._lock = threading.Lock()
        self._connected = True

    def connect(self) -> None:
        self._connected = True

    def disconnect(self) -> None:
        self._connected = False

    def record(self, transaction: Transaction) -> None:
        with self._lock:
            if not self._connected:
                raise StoreUnavailable("Transaction ledger is not connected")
            self._transactions.append(transaction)

    def history(self, participant_id: str) -> list[Transaction]:
        with self._lock:
            if not self._connected:
                raise StoreUnavailable("Transaction ledger is not connected")
            return [
                t for t in self._transactions
                if participant_id in (t.buyer_id, t.seller_id)
            ]

    def __len__(self) -> int:
        return len(self._transactions)
