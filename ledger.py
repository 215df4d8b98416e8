# ledger.py
import json
import os
import threading
from pathlib import Path
from typing import Any, Dict

from logger import get_logger

logger = get_logger(__name__)


class InsufficientBalanceError(ValueError):
    def __init__(self, balance: int, required: int):
        super().__init__(f"Insufficient balance: have {balance}, need {required}")
        self.balance = balance
        self.required = required


class BalanceLedger:
    """
    The kiosk's single balance, persisted as a small JSON document.

    Every mutation holds one lock for increment -> write, so writes reach disk
    in the same order the mutations happened. A failed write keeps the
    in-memory value (money has already been taken) and marks the ledger dirty;
    `flush()` retries and any later successful write also clears it.
    """

    def __init__(self, path: str):
        self.path = Path(path)
        self._lock = threading.Lock()
        self._dirty = False
        self._data: Dict[str, Any] = self._read()

    # ---------- persistence ----------
    def _read(self) -> Dict[str, Any]:
        data = {"balance": 0, "earnings": 0, "coin_stats": {}}
        if not self.path.exists():
            return data
        try:
            with open(self.path, "r", encoding="utf-8") as f:
                stored = json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            logger.error(f"[LEDGER] Could not read {self.path}: {e}. Starting from zero.")
            return data
        if not isinstance(stored, dict):
            logger.error(f"[LEDGER] {self.path} is not a JSON object. Starting from zero.")
            return data

        data["balance"] = max(0, self._as_int(stored.get("balance"), "balance"))
        data["earnings"] = self._as_int(stored.get("earnings"), "earnings")
        stats = stored.get("coin_stats")
        if isinstance(stats, dict):
            for k, v in stats.items():
                count = self._as_int(v, f"coin_stats.{k}")
                if count > 0:
                    data["coin_stats"][str(k)] = count
        return data

    def _as_int(self, value, field_name: str) -> int:
        if value is None:
            return 0
        try:
            return int(value)
        except (TypeError, ValueError):
            logger.error(f"[LEDGER] Ignoring unreadable {field_name}={value!r} in {self.path}.")
            return 0

    def _write(self) -> bool:
        """Atomic replace of the ledger file. Caller holds the lock."""
        tmp = self.path.with_name(self.path.name + ".tmp")
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            with open(tmp, "w", encoding="utf-8") as f:
                json.dump(self._data, f, indent=2)
                f.flush()
                os.fsync(f.fileno())
            os.replace(tmp, self.path)
        except OSError as e:
            if not self._dirty:
                logger.error(f"[LEDGER] Write failed ({e}); keeping balance {self._data['balance']} in memory.")
            self._dirty = True
            return False
        if self._dirty:
            logger.info(f"[LEDGER] Pending balance {self._data['balance']} written to disk.")
        self._dirty = False
        return True

    def flush(self) -> bool:
        """Retry a failed write. True when the file matches memory."""
        with self._lock:
            if not self._dirty:
                return True
            return self._write()

    @property
    def dirty(self) -> bool:
        return self._dirty

    # ---------- reads ----------
    @property
    def balance(self) -> int:
        with self._lock:
            return self._data["balance"]

    def snapshot(self) -> Dict[str, Any]:
        with self._lock:
            stats = dict(self._data["coin_stats"])
            return {
                "balance": self._data["balance"],
                "earnings": self._data["earnings"],
                "coin_stats": stats,
                "coins_accepted": sum(stats.values()),
                "persisted": not self._dirty,
            }

    # ---------- mutations ----------
    def credit_coin(self, value: int) -> int:
        if value <= 0:
            raise ValueError(f"Coin value must be positive, got {value}")
        with self._lock:
            self._data["balance"] += value
            stats = self._data["coin_stats"]
            stats[str(value)] = stats.get(str(value), 0) + 1
            self._write()
            return self._data["balance"]

    def reset_balance(self) -> int:
        """Set the balance to zero. Returns the previous balance."""
        with self._lock:
            previous = self._data["balance"]
            self._data["balance"] = 0
            self._write()
            return previous

    def debit(self, amount: int, *, earn: bool = True) -> int:
        """Take `amount` for a job; it moves into earnings. Returns the new balance."""
        if amount < 0:
            raise ValueError(f"Debit amount cannot be negative, got {amount}")
        with self._lock:
            balance = self._data["balance"]
            if balance < amount:
                raise InsufficientBalanceError(balance, amount)
            self._data["balance"] = balance - amount
            if earn:
                self._data["earnings"] += amount
            self._write()
            return self._data["balance"]
