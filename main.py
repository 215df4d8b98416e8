import sys
import argparse
import signal
from typing import Any, Dict, Optional
from PySide6.QtCore import QCoreApplication, QObject, QTimer

from kiosk_config import KioskConfig
from audit_log import AuditLog
from balance_service import BalanceService
from event_hub import EventHub
from ledger import BalanceLedger
from coin_slot.coin_worker import CoinSlotWorker

from logger import get_logger

logger = get_logger(__name__)


class KioskService(QObject):
    """
    Headless kiosk core: ledger, audit log, event hub and the coin slot worker.
    The HTTP layer and the kiosk pages talk to this object only.
    """

    def __init__(self, config: KioskConfig, parent: Optional[QObject] = None):
        super().__init__(parent)
        self.config = config

        self.audit = AuditLog(config.audit_path)
        self.hub = EventHub(self)
        self.ledger = BalanceLedger(config.ledger_path)
        self.balance = BalanceService(self.ledger, self.audit, self.hub,
                                      config.accepted_coins, config.currency_symbol)

        self.hub.event.connect(self._log_event)

        self._coin_worker = CoinSlotWorker(config, self.balance, self.audit, self.hub)
        self._coin_worker.started.connect(lambda: logger.info("[SERIAL] Coin slot reading"))
        self._coin_worker.stopped.connect(lambda: logger.info("[SERIAL] Coin slot stopped"))
        self._coin_worker.error.connect(lambda e: logger.error(f"[SERIAL][ERROR] {e}"))

    def start(self) -> None:
        logger.info(f"STARTING KIOSK {self.config.kiosk_id} (balance {self.balance.balance})")
        self._coin_worker.start()

    def shutdown(self) -> None:
        try:
            self._coin_worker.stop()
        except Exception as ex:
            logger.warning(f"Error during coin slot shutdown: {ex}")
        self.audit.close()

    # ---- admin dashboard surface ----
    def get_serial_status(self) -> Dict[str, Any]:
        return self._coin_worker.get_status()

    def admin_snapshot(self) -> Dict[str, Any]:
        snap = self.balance.snapshot()
        snap["serial"] = self.get_serial_status()
        snap["accepted_coins"] = sorted(self.config.accepted_coins)
        return snap

    def _log_event(self, event_name: str, payload: Any) -> None:
        if event_name == "coinAccepted":
            logger.info(f"[COIN→WEB] {self.config.currency_symbol}{payload['value']} balance={payload['balance']}")
        elif event_name == "coinParserWarning":
            logger.warning(f"[COIN→WEB] warning {payload['code']}: {payload['message']}")
        elif event_name == "serialStatus":
            logger.info(f"[SERIAL][STATUS] {payload}")


if __name__ == "__main__":
    parser = argparse.ArgumentParser()
    parser.add_argument("--config", default="config.json",
                        help="Path to the kiosk configuration file")
    args = parser.parse_args()

    config = KioskConfig(args.config)

    app = QCoreApplication(sys.argv)
    signal.signal(signal.SIGINT, lambda *_: app.quit())
    # Let Python see SIGINT while the Qt loop is idle
    heartbeat = QTimer()
    heartbeat.start(250)
    heartbeat.timeout.connect(lambda: None)

    service = KioskService(config)
    app.aboutToQuit.connect(service.shutdown)
    service.start()

    sys.exit(app.exec())
