# balance_service.py
import threading
from typing import Any, Dict, Iterable

from audit_log import AuditLog
from event_hub import EventHub
from ledger import BalanceLedger, InsufficientBalanceError
from logger import get_logger

logger = get_logger(__name__)


class InvalidCoinError(ValueError):
    pass


class BalanceService:
    """
    Every balance change goes through here so the ledger write, the audit
    entry and the broadcast always happen together and in that order.
    Called from the coin worker thread and from admin/payment handlers.
    """

    def __init__(self, ledger: BalanceLedger, audit: AuditLog, hub: EventHub,
                 accepted: Iterable[int] = (1, 5, 10, 20), currency_symbol: str = "₱"):
        self.ledger = ledger
        self.audit = audit
        self.hub = hub
        self.accepted = frozenset(accepted)
        self.currency_symbol = currency_symbol
        # Held from the ledger change through the last broadcast, so observers
        # see balances in the order the ledger produced them.
        self._lock = threading.RLock()

    @property
    def balance(self) -> int:
        return self.ledger.balance

    def credit_coin(self, value: int, *, source: str = "serial") -> int:
        with self._lock:
            balance = self.ledger.credit_coin(value)

            context: Dict[str, Any] = {"coinValue": value, "balance": balance}
            if source != "serial":
                context["source"] = source
            self.audit.append("coin_accepted", f"Accepted coin: {value}", context)

            logger.info(f"[COIN] ✓ Coin accepted: {self.currency_symbol}{value} → new balance: {self.currency_symbol}{balance}")
            self.hub.emit("balance", balance)
            self.hub.emit("coinAccepted", {"value": value, "balance": balance, "source": source})
            return balance

    def insert_test_coin(self, value: Any) -> int:
        """Admin/testing path: credit a coin without hardware."""
        if isinstance(value, bool) or not isinstance(value, int) or value not in self.accepted:
            accepted = ", ".join(str(v) for v in sorted(self.accepted))
            raise InvalidCoinError(f"Invalid coin value. Accepted: {accepted}")
        return self.credit_coin(value, source="test-ui")

    def reset_balance(self) -> int:
        with self._lock:
            previous = self.ledger.reset_balance()
            self.audit.append("balance_reset", "Balance reset from admin/testing.", {
                "previousBalance": previous,
                "newBalance": 0,
            })
            logger.info(f"[LEDGER] Balance reset (was {previous}).")
            self.hub.emit("balance", 0)
            return 0

    def charge_job(self, amount: int, mode: str) -> int:
        """Debit a print/copy job. Raises InsufficientBalanceError."""
        with self._lock:
            try:
                balance = self.ledger.debit(amount)
            except InsufficientBalanceError as e:
                self.audit.append("payment_failed", f"{mode.capitalize()} job failed: insufficient balance.", {
                    "balance": e.balance,
                    "requiredAmount": e.required,
                })
                raise

            self.audit.append("payment_confirmed", f"{mode.capitalize()} job charged.", {
                "mode": mode,
                "chargedAmount": amount,
                "remainingBalance": balance,
            })
            self.hub.emit("balance", balance)
            return balance

    def flush(self) -> bool:
        return self.ledger.flush()

    def snapshot(self) -> Dict[str, Any]:
        return self.ledger.snapshot()
