# audit_log.py
import json
import logging
import logging.handlers
from datetime import datetime, UTC
from pathlib import Path
from typing import Any, Dict, List, Optional

from logger import get_logger, log_json, MAX_BYTES, BACKUP_COUNT

logger = get_logger(__name__)


class AuditLog:
    """
    Append-only admin log: one JSON object per line, written through a
    dedicated rotating logger so appends never block or raise into callers.
    """

    def __init__(self, path: str):
        self.path = Path(path)
        self.path.parent.mkdir(parents=True, exist_ok=True)

        self._logger = logging.getLogger(f"audit[{self.path.resolve()}]")
        self._logger.setLevel(logging.INFO)
        self._logger.propagate = False
        for handler in list(self._logger.handlers):
            self._logger.removeHandler(handler)
            handler.close()

        handler = logging.handlers.RotatingFileHandler(
            self.path, maxBytes=MAX_BYTES, backupCount=BACKUP_COUNT, encoding="utf-8"
        )
        handler.setFormatter(logging.Formatter("%(message)s"))
        self._logger.addHandler(handler)

    def append(self, event_type: str, message: str, context: Optional[Dict[str, Any]] = None) -> None:
        entry = {
            "ts": datetime.now(UTC).isoformat(timespec="milliseconds"),
            "type": event_type,
            "message": message,
            "context": context or {},
        }
        try:
            log_json(self._logger, logging.INFO, entry)
        except (TypeError, ValueError) as e:
            # Context that cannot be serialized still leaves a trace.
            logger.error(f"[AUDIT] Could not record '{event_type}': {e}")

    def tail(self, limit: int = 50) -> List[Dict[str, Any]]:
        """Latest entries first, from the current (unrotated) file."""
        try:
            with open(self.path, "r", encoding="utf-8") as f:
                lines = f.readlines()
        except OSError:
            return []

        entries: List[Dict[str, Any]] = []
        for line in reversed(lines):
            if len(entries) >= limit:
                break
            try:
                entries.append(json.loads(line))
            except json.JSONDecodeError:
                continue
        return entries

    def close(self) -> None:
        for handler in list(self._logger.handlers):
            self._logger.removeHandler(handler)
            handler.close()
