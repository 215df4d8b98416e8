import json
import sys
from typing import List, Optional

DEFAULT_ACCEPTED_COINS = [1, 5, 10, 20]
DEFAULT_PREFIX_DIGITS = ["1", "2"]


class KioskConfig:
    """A simple class to load and manage application configuration from a JSON file."""
    def __init__(self, config_path='config.json'):
        try:
            with open(config_path, 'r', encoding='utf-8') as f:
                config_data = json.load(f)
        except (FileNotFoundError, json.JSONDecodeError) as e:
            print(f"Error: Could not load or parse {config_path}. {e}")
            print("Please ensure 'config.json' exists and is correctly formatted.")
            sys.exit(1)

        self.config_path = config_path
        self.kiosk_id = config_data.get('kiosk_id', 'kiosk-01')

        # ---- serial block (coin slot board) ----
        serial_cfg = config_data.get("serial") or {}
        self.serial_port_name: Optional[str] = serial_cfg.get("port_name")
        self.serial_baud_rate: int = int(serial_cfg.get("baud_rate", 9600))
        self.serial_retry_interval_s: float = float(serial_cfg.get("retry_interval_s", 5))
        self.serial_max_retries: int = int(serial_cfg.get("max_retries", 12))
        self.serial_poll_ms: int = int(serial_cfg.get("poll_ms", 20))
        self.serial_reconnect_on_loss: bool = bool(serial_cfg.get("reconnect_on_loss", True))

        # ---- coins block ----
        coins = config_data.get("coins") or {}
        self.accepted_coins: List[int] = [int(v) for v in coins.get("accepted", DEFAULT_ACCEPTED_COINS)]
        self.prefix_digits: List[str] = [str(d) for d in coins.get("prefix_digits", DEFAULT_PREFIX_DIGITS)]
        self.continuation_digit: str = str(coins.get("continuation_digit", "0"))
        self.fragment_window_ms: int = int(coins.get("fragment_window_ms", 140))
        self.currency_symbol: str = coins.get("currency_symbol", "₱")

        ledger = config_data.get("ledger") or {}
        self.ledger_path: str = ledger.get("path", "data/ledger.json")
        self.ledger_flush_retry_ms: int = int(ledger.get("flush_retry_ms", 2000))

        audit = config_data.get("audit") or {}
        self.audit_path: str = audit.get("path", "data/admin_log.jsonl")

        problems = self._validate()
        if problems:
            for problem in problems:
                print(f"Error: {problem}")
            print(f"Please fix {config_path} and restart.")
            sys.exit(1)

    def _validate(self) -> List[str]:
        problems = []
        if not self.accepted_coins:
            problems.append("'coins.accepted' must list at least one denomination.")
        if any(v <= 0 for v in self.accepted_coins):
            problems.append("'coins.accepted' values must be positive integers.")
        for digit in self.prefix_digits + [self.continuation_digit]:
            if len(digit) != 1 or not digit.isdigit():
                problems.append(f"'{digit}' is not a single digit (coins.prefix_digits / coins.continuation_digit).")
        if self.fragment_window_ms <= 0:
            problems.append("'coins.fragment_window_ms' must be greater than zero.")
        if self.serial_max_retries < 0:
            problems.append("'serial.max_retries' cannot be negative.")
        if self.serial_retry_interval_s <= 0:
            problems.append("'serial.retry_interval_s' must be greater than zero.")
        return problems

    def to_dict(self) -> dict:
        return {
            "kiosk_id": self.kiosk_id,
            "serial": {
                "port_name": self.serial_port_name,
                "baud_rate": self.serial_baud_rate,
                "retry_interval_s": self.serial_retry_interval_s,
                "max_retries": self.serial_max_retries,
                "poll_ms": self.serial_poll_ms,
                "reconnect_on_loss": self.serial_reconnect_on_loss,
            },
            "coins": {
                "accepted": list(self.accepted_coins),
                "prefix_digits": list(self.prefix_digits),
                "continuation_digit": self.continuation_digit,
                "fragment_window_ms": self.fragment_window_ms,
                "currency_symbol": self.currency_symbol,
            },
            "ledger": {
                "path": self.ledger_path,
                "flush_retry_ms": self.ledger_flush_retry_ms,
            },
            "audit": {
                "path": self.audit_path,
            },
        }
