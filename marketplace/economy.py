"""External collaborators the purchase engine settles against.

The funds ledger and the inventory live outside the engine's transactional
boundary. The in-memory versions back the demo service and the tests.
"""

import threading
from collections import defaultdict
from decimal import Decimal
from typing import Optional, Protocol

from marketplace.errors import DeliveryError, FundsLedgerError
from marketplace.money import round2

_ZERO = Decimal("0.00")


class FundsLedger(Protocol):
    def balance(self, account_id: str) -> Decimal: ...

    def debit(self, account_id: str, amount: Decimal) -> None: ...

    def credit(self, account_id: str, amount: Decimal) -> None: ...


class Inventory(Protocol):
    def deliver(self, account_id: str, item_payload: str) -> None: ...


class MemoryFundsLedger:
    def __init__(self, balances: Optional[dict[str, Decimal]] = None) -> None:
        self._balances: dict[str, Decimal] = defaultdict(lambda: _ZERO)
        for account_id, amount in (balances or {}).items():
            self._balances[account_id] = round2(amount)
        self._lock = threading.Lock()

    def balance(self, account_id: str) -> Decimal:
        with self._lock:
            return self._balances.get(account_id, _ZERO)

    def set_balance(self, account_id: str, amount: Decimal) -> None:
        """Overwrite an account's balance; used by the demo seeder."""
        amount = round2(amount)
        if amount < 0:
            raise FundsLedgerError(f"Cannot set a negative balance {amount}", account_id)
        with self._lock:
            self._balances[account_id] = amount

    def debit(self, account_id: str, amount: Decimal) -> None:
        if amount < 0:
            raise FundsLedgerError(f"Cannot debit a negative amount {amount}", account_id)
        with self._lock:
            if self._balances.get(account_id, _ZERO) < amount:
                raise FundsLedgerError(
                    f"Account {account_id} cannot cover {amount}", account_id
                )
            self._balances[account_id] -= amount

    def credit(self, account_id: str, amount: Decimal) -> None:
        if amount < 0:
            raise FundsLedgerError(f"Cannot credit a negative amount {amount}", account_id)
        with self._lock:
            self._balances[account_id] += amount


class MemoryInventory:
    def __init__(self) -> None:
        self.items: dict[str, list[str]] = defaultdict(list)
        self._lock = threading.Lock()

    def deliver(self, account_id: str, item_payload: str) -> None:
        if not item_payload:
            raise DeliveryError(f"Nothing to deliver to {account_id}")
        with self._lock:
            self.items[account_id].append(item_payload)
