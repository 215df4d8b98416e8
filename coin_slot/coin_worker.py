# coin_slot/coin_worker.py
from __future__ import annotations
from typing import Callable, Optional
import serial
from PySide6.QtCore import QMetaObject, QObject, QThread, QTimer, Qt, Signal, Slot

from audit_log import AuditLog
from balance_service import BalanceService
from event_hub import EventHub
from kiosk_config import KioskConfig
from logger import get_logger
from .coin_decoder import CoinDecoder
from .coin_intake import CoinIntake
from .coin_link import CoinSlotLink, ConnectOutcome

logger = get_logger(__name__)


class QtTimerHandle:
    """Single-shot QTimer wrapper; cancel() is safe after firing or a second time."""

    def __init__(self, timer: QTimer):
        self._timer: Optional[QTimer] = timer

    def cancel(self) -> None:
        timer, self._timer = self._timer, None
        if timer is not None:
            timer.stop()
            timer.deleteLater()

    @property
    def active(self) -> bool:
        return self._timer is not None and self._timer.isActive()


class CoinSlotWorker(QObject):
    # ---- Signals you can wire to your UI / logs ----
    started = Signal()
    stopped = Signal()
    status = Signal(dict)          # {'connected':..., 'portPath':..., 'lastError':...}
    error = Signal(str)

    def __init__(self, config: KioskConfig, balance: BalanceService, audit: AuditLog,
                 hub: EventHub, link: Optional[CoinSlotLink] = None,
                 parent: Optional[QObject] = None):
        super().__init__(parent)
        self.config = config
        self.balance = balance
        self.audit = audit
        self.hub = hub

        # Allow DI for tests; otherwise create a real link
        self.link = link or CoinSlotLink(
            port=config.serial_port_name,
            baud=config.serial_baud_rate,
            max_retries=config.serial_max_retries,
        )
        self.link.on_status = self._on_link_status

        self.decoder = CoinDecoder(
            config.accepted_coins,
            prefix_digits=config.prefix_digits,
            continuation_digit=config.continuation_digit,
            window_s=config.fragment_window_ms / 1000.0,
        )
        self.intake = CoinIntake(self.decoder, balance, audit, hub, scheduler=self._schedule)

        self._thread: Optional[QThread] = None
        self._poll_timer: Optional[QTimer] = None
        self._flush_timer: Optional[QTimer] = None
        self._retry_timer: Optional[QTimer] = None
        self._running = False
        self._reconnecting = False

    # ----- Public API (thread-safe from main thread) -----
    def get_status(self) -> dict:
        return self.link.status()

    @Slot()
    def start(self):
        if self._running:
            return
        self._running = True

        # Thread to host the worker (so serial I/O doesn't block the UI)
        self._thread = QThread()
        self.moveToThread(self._thread)
        self._thread.started.connect(self._on_thread_started)
        self._thread.start()

    @Slot()
    def stop(self):
        if not self._running:
            return
        self._running = False
        thread = self._thread
        if thread is not None and thread.isRunning() and QThread.currentThread() is not thread:
            # Timers live on the worker thread; tear them down there.
            QMetaObject.invokeMethod(self, "_shutdown", Qt.ConnectionType.BlockingQueuedConnection)
            thread.quit()
            thread.wait()
        else:
            self._shutdown()
        self._thread = None
        self.stopped.emit()

    # ----- Private: lives on the worker thread -----
    @Slot()
    def _on_thread_started(self):
        self._flush_timer = QTimer(self)
        self._flush_timer.setInterval(self.config.ledger_flush_retry_ms)
        self._flush_timer.timeout.connect(self._flush_ledger)
        self._flush_timer.start()

        self._poll_timer = QTimer(self)
        self._poll_timer.setInterval(max(5, self.config.serial_poll_ms))
        self._poll_timer.timeout.connect(self._poll_once)

        logger.info("[SERIAL] ── Initializing serial connection ──────────────")
        self._attempt_connect(0)

    @Slot()
    def _shutdown(self):
        for timer in (self._poll_timer, self._flush_timer, self._retry_timer):
            if timer is not None:
                timer.stop()
        self._poll_timer = self._flush_timer = self._retry_timer = None
        self.intake.abandon("shutdown")
        self.link.close()
        self.balance.flush()

    def _attempt_connect(self, attempt: int) -> None:
        self._retry_timer = None
        if not self._running:
            return

        outcome = self.link.connect(attempt)
        if outcome is ConnectOutcome.CONNECTED:
            self._reconnecting = False
            port_path = self.link.status()["portPath"]
            logger.info(f"[SERIAL] ✓ Serial port initialized on {port_path}")
            self.audit.append("serial_connected", f"Serial port initialized on {port_path}", {"portPath": port_path})
            self._poll_timer.start()
            self.started.emit()
            return

        retry = outcome is ConnectOutcome.RETRY or (
            self._reconnecting
            and outcome in (ConnectOutcome.FAILED, ConnectOutcome.NO_PORTS)
            and attempt < self.config.serial_max_retries
        )
        if retry:
            self._schedule_connect(attempt + 1)
            return

        last_error = self.link.status()["lastError"]
        self._reconnecting = False
        if outcome is not ConnectOutcome.NO_PORTS:
            self.audit.append(
                "serial_init_error",
                "Error initializing serial port. Continuing without serial connection.",
                {"message": last_error},
            )
        self.error.emit(f"Coin slot unavailable: {last_error}")

    def _schedule_connect(self, attempt: int) -> None:
        interval_ms = int(self.config.serial_retry_interval_s * 1000)
        logger.info(f"[SERIAL] Next connection attempt in {interval_ms / 1000:.0f}s (#{attempt})")
        self._retry_timer = QTimer(self)
        self._retry_timer.setSingleShot(True)
        self._retry_timer.setInterval(interval_ms)
        self._retry_timer.timeout.connect(lambda: self._attempt_connect(attempt))
        self._retry_timer.start()

    @Slot()
    def _poll_once(self):
        if not self._running:
            return
        try:
            lines = self.link.read_lines()
        except (serial.SerialException, OSError) as e:
            self._on_port_lost(e)
            return

        for line in lines:
            try:
                self.intake.feed_line(line)
            except Exception as e:
                # A credit that failed mid-way must not stop the slot from reading.
                logger.exception(f"[COIN] Failed to handle line {line!r}: {e}")
                self.error.emit(f"Coin handling error: {e}")

    def _on_port_lost(self, exc: BaseException) -> None:
        self._poll_timer.stop()
        self.intake.abandon()
        self.link.mark_lost(exc)
        self.error.emit(f"Coin slot port error: {exc}")
        if self.config.serial_reconnect_on_loss and self._running:
            self._reconnecting = True
            self._schedule_connect(1)

    @Slot()
    def _flush_ledger(self):
        if self.balance.ledger.dirty:
            self.balance.flush()

    def _on_link_status(self, st: dict) -> None:
        self.status.emit(st)
        self.hub.emit("serialStatus", st)

    def _schedule(self, delay_s: float, callback: Callable[[], None]) -> QtTimerHandle:
        timer = QTimer(self)
        timer.setSingleShot(True)
        timer.setInterval(max(1, int(round(delay_s * 1000))))
        handle = QtTimerHandle(timer)

        def _fire():
            handle.cancel()
            callback()

        timer.timeout.connect(_fire)
        timer.start()
        return handle
