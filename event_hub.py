# event_hub.py
from typing import Any, Optional
from PySide6.QtCore import QObject, Signal

from logger import get_logger

logger = get_logger(__name__)


class EventHub(QObject):
    """
    Fan-out point for kiosk events. Observers connect to `event` (every
    message) or to the typed signals. Emission is fire-and-forget; receivers
    on other threads get queued delivery.
    """

    event = Signal(str, object)          # (event_name, payload)
    balanceChanged = Signal(int)
    coinAccepted = Signal(dict)          # {'value':..., 'balance':..., 'source':...}
    parserWarning = Signal(dict)         # {'code':..., 'message':...}
    serialStatus = Signal(dict)          # {'connected':..., 'portPath':..., 'lastError':...}

    def __init__(self, parent: Optional[QObject] = None):
        super().__init__(parent)

    def emit(self, event_name: str, payload: Any) -> None:
        if event_name == "balance":
            self.balanceChanged.emit(int(payload))
        elif event_name == "coinAccepted":
            self.coinAccepted.emit(payload)
        elif event_name == "coinParserWarning":
            self.parserWarning.emit(payload)
        elif event_name == "serialStatus":
            self.serialStatus.emit(payload)
        else:
            logger.debug(f"[HUB] untyped event '{event_name}'")
        self.event.emit(event_name, payload)
