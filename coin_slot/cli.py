# coin_slot/cli.py
import argparse
import signal
import sys
from PySide6.QtCore import QCoreApplication, QTimer

from audit_log import AuditLog
from balance_service import BalanceService
from event_hub import EventHub
from kiosk_config import KioskConfig
from ledger import BalanceLedger
from .coin_worker import CoinSlotWorker


def _print_event(name: str, payload):
    if name == "coinAccepted":
        print(f"[CREDIT] {payload['value']} (balance {payload['balance']})")
    elif name == "coinParserWarning":
        print(f"[WARN  ] {payload['code']} - {payload['message']}")
    elif name == "serialStatus":
        print("Status:", payload)


def main():
    parser = argparse.ArgumentParser(description="Run the coin slot on its own and print what it sees.")
    parser.add_argument("--config", default="config.json")
    parser.add_argument("--port", help="Override the serial port (default: first enumerated)")
    args = parser.parse_args()

    app = QCoreApplication(sys.argv)

    # Clean Ctrl+C handling for Qt event loop
    signal.signal(signal.SIGINT, signal.SIG_DFL)
    QTimer.singleShot(0, lambda: None)

    config = KioskConfig(args.config)
    if args.port:
        config.serial_port_name = args.port

    audit = AuditLog(config.audit_path)
    hub = EventHub()
    balance = BalanceService(BalanceLedger(config.ledger_path), audit, hub,
                             config.accepted_coins, config.currency_symbol)
    hub.event.connect(_print_event)

    worker = CoinSlotWorker(config, balance, audit, hub)
    worker.error.connect(lambda msg: print("ERROR:", msg))
    worker.started.connect(lambda: print(f"Coin slot ready. Balance {balance.balance}. Insert coins... (Ctrl+C to quit)"))
    worker.stopped.connect(lambda: print("Coin slot stopped."))
    worker.start()

    rc = app.exec()

    # Ensure clean stop if we exit the loop (e.g., Ctrl+C)
    worker.stop()
    audit.close()
    sys.exit(rc)


if __name__ == "__main__":
    main()
