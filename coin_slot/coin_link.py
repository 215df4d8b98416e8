# coin_slot/coin_link.py
import errno
import threading
from enum import Enum
from typing import Any, Callable, Dict, List, Optional

import serial
from serial.tools import list_ports

from logger import get_logger

logger = get_logger(__name__)


class ConnectionState(str, Enum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    ERROR = "error"


class ConnectOutcome(Enum):
    CONNECTED = "connected"
    RETRY = "retry"          # access denied, attempts left
    GAVE_UP = "gave_up"      # access denied, attempts exhausted
    NO_PORTS = "no_ports"
    FAILED = "failed"        # any other open error


def is_access_denied(exc: BaseException) -> bool:
    """Port held by another program (IDE serial monitor) or missing permissions."""
    if isinstance(exc, PermissionError):
        return True
    if getattr(exc, "errno", None) == errno.EACCES:
        return True
    text = str(exc).lower()
    return "access denied" in text or "access is denied" in text or "permission denied" in text


class CoinSlotLink:
    """
    Line transport to the coin slot board over pyserial.

    Owns the connection state; `status()` is safe to call from any thread.
    Reads are non-blocking: `read_lines()` drains what the driver has buffered
    and returns complete lines only.
    """

    DELIMITER = b"\n"
    MAX_LINE_BYTES = 256   # coin lines are a few digits; longer runs without '\n' are noise

    def __init__(self, *, port: Optional[str] = None, baud: int = 9600,
                 max_retries: int = 12,
                 port_lister: Callable[[], List[Any]] = list_ports.comports,
                 serial_factory: Callable[..., Any] = serial.Serial,
                 on_status: Optional[Callable[[Dict[str, Any]], None]] = None):
        self.port = port
        self.baud = baud
        self.max_retries = max_retries
        self._list_ports = port_lister
        self._open_serial = serial_factory
        self.on_status = on_status

        self.ser = None
        self._buffer = bytearray()
        self._lock = threading.Lock()
        self._state = ConnectionState.DISCONNECTED
        self._port_path: Optional[str] = None
        self._last_error: Optional[str] = None

    # ---------- status surface ----------
    def status(self) -> Dict[str, Any]:
        with self._lock:
            return {
                "connected": self._state is ConnectionState.CONNECTED,
                "portPath": self._port_path,
                "lastError": self._last_error,
            }

    @property
    def state(self) -> ConnectionState:
        with self._lock:
            return self._state

    def _set_state(self, state: ConnectionState, *, error: Optional[str] = None,
                   port_path: Optional[str] = None, keep_error: bool = False) -> None:
        with self._lock:
            self._state = state
            if port_path is not None:
                self._port_path = port_path
            if not keep_error:
                self._last_error = error
        if self.on_status:
            self.on_status(self.status())

    # ---------- lifecycle ----------
    def connect(self, attempt: int = 0) -> ConnectOutcome:
        """
        One acquisition attempt: enumerate, pick a port, open it.
        `attempt` is 0 for the first try and counts retries after that.
        """
        with self._lock:
            self._state = ConnectionState.CONNECTING

        try:
            ports = list(self._list_ports())
        except Exception as e:
            logger.error(f"[SERIAL] ✗ Port enumeration failed: {e}")
            self._set_state(ConnectionState.ERROR, error=str(e))
            return ConnectOutcome.FAILED

        if attempt == 0:
            logger.info(f"[SERIAL] Found {len(ports)} serial port(s):")
            for p in ports:
                logger.info(
                    f"[SERIAL]   → {p.device} (manufacturer: {getattr(p, 'manufacturer', None) or 'unknown'}, "
                    f"vid: {getattr(p, 'vid', None) or 'unknown'}, pid: {getattr(p, 'pid', None) or 'unknown'}, "
                    f"serial: {getattr(p, 'serial_number', None) or 'unknown'})"
                )

        if not ports and not self.port:
            logger.warning("[SERIAL] ✗ No serial ports found. Continuing without serial connection.")
            with self._lock:
                self._port_path = None
            self._set_state(ConnectionState.ERROR, error="No serial ports found.")
            return ConnectOutcome.NO_PORTS

        port_path = self.port or ports[0].device
        retry_note = f" — retry #{attempt}" if attempt > 0 else ""
        logger.info(f"[SERIAL] Selected port: {port_path} (baud: {self.baud}){retry_note}")

        try:
            self.ser = self._open_serial(
                port_path, self.baud,
                bytesize=serial.EIGHTBITS, parity=serial.PARITY_NONE, stopbits=serial.STOPBITS_ONE,
                timeout=0, write_timeout=1.0,
            )
        except (serial.SerialException, OSError, ValueError) as e:
            self.ser = None
            if is_access_denied(e) and attempt < self.max_retries:
                logger.warning(
                    f"[SERIAL] ⚠ Port access denied — retrying (attempt {attempt + 1}/{self.max_retries}). "
                    "Close any serial monitor holding the port."
                )
                self._set_state(ConnectionState.CONNECTING, error=str(e), port_path=port_path)
                return ConnectOutcome.RETRY

            logger.error(f"[SERIAL] ✗ Init error: {e}")
            self._set_state(ConnectionState.ERROR, error=str(e), port_path=port_path)
            if is_access_denied(e):
                logger.error("[SERIAL] ✗ Gave up after retries. Free the port, then restart the service.")
                return ConnectOutcome.GAVE_UP
            return ConnectOutcome.FAILED

        self._buffer.clear()
        try:
            self.ser.reset_input_buffer()
        except (serial.SerialException, OSError):
            pass
        logger.info(f"[SERIAL] ✓ Port opened — coin slot connected on {port_path}")
        self._set_state(ConnectionState.CONNECTED, port_path=port_path)
        return ConnectOutcome.CONNECTED

    def read_lines(self) -> List[str]:
        """Complete lines received since the last call. Raises SerialException on I/O failure."""
        if not self.ser:
            return []
        waiting = self.ser.in_waiting
        if not waiting:
            return []
        self._buffer.extend(self.ser.read(waiting))

        lines: List[str] = []
        while True:
            idx = self._buffer.find(self.DELIMITER)
            if idx < 0:
                break
            raw = bytes(self._buffer[:idx])
            del self._buffer[:idx + 1]
            lines.append(raw.decode("ascii", "ignore").rstrip("\r"))

        if len(self._buffer) > self.MAX_LINE_BYTES:
            logger.warning(f"[SERIAL] Discarding {len(self._buffer)} bytes without a line break.")
            self._buffer.clear()
        return lines

    def mark_lost(self, exc: BaseException) -> None:
        """Runtime I/O error: close the port and record the failure."""
        logger.error(f"[SERIAL] ✗ Port error: {exc}")
        self._close_port()
        self._set_state(ConnectionState.ERROR, error=str(exc))

    def close(self) -> None:
        was_open = self.ser is not None
        self._close_port()
        if was_open:
            logger.info("[SERIAL] ✗ Port closed — coin slot disconnected")
        self._set_state(ConnectionState.DISCONNECTED, keep_error=True)

    def _close_port(self) -> None:
        if self.ser:
            try:
                self.ser.close()
            except (serial.SerialException, OSError):
                pass
            self.ser = None
        self._buffer.clear()
