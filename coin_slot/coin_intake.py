# coin_slot/coin_intake.py
import time
from typing import Callable, Dict, List, Optional, Protocol

from balance_service import BalanceService
from audit_log import AuditLog
from event_hub import EventHub
from logger import get_logger
from .coin_decoder import (
    ArmTimer, CancelTimer, CoinDecoder, Credit, Effect, Fragment, Reject, extract_token,
)

logger = get_logger(__name__)


class TimerHandle(Protocol):
    def cancel(self) -> None: ...


# schedule(delay_s, callback) -> handle; handle.cancel() must be idempotent
Scheduler = Callable[[float, Callable[[], None]], TimerHandle]


class CoinIntake:
    """
    Applies decoder effects: credits go to the balance service, warnings to
    the audit log and the event hub, timers to the injected scheduler.

    Must be driven from a single thread (the coin worker's); every call runs
    its effects to completion before returning.
    """

    def __init__(self, decoder: CoinDecoder, balance: BalanceService, audit: AuditLog,
                 hub: EventHub, scheduler: Scheduler,
                 clock: Callable[[], float] = time.monotonic):
        self.decoder = decoder
        self.balance = balance
        self.audit = audit
        self.hub = hub
        self._schedule = scheduler
        self._clock = clock
        self._timers: Dict[Fragment, TimerHandle] = {}

    # ---------- inputs ----------
    def feed_line(self, raw_line: str) -> List[Effect]:
        logger.debug(f"[SERIAL] Raw data: {raw_line!r}")
        token = extract_token(raw_line)
        if not token:
            return []
        return self.feed_token(token)

    def feed_token(self, token: str) -> List[Effect]:
        logger.info(f'[SERIAL] Token: "{token}"')
        effects = self.decoder.feed(token, self._clock())
        self._apply(effects)
        return effects

    def on_fragment_timeout(self, fragment: Fragment) -> List[Effect]:
        effects = self.decoder.expire(fragment)
        if effects:
            logger.info(f'[SERIAL] Flushing pending "{fragment.prefix}" (reason: timeout)')
        self._apply(effects)
        return effects

    def abandon(self, reason: str = "port_lost") -> List[Effect]:
        """No more tokens will come: resolve any armed fragment immediately."""
        effects = self.decoder.flush(reason)
        if effects:
            logger.info(f'[SERIAL] Flushing pending fragment (reason: {reason})')
        self._apply(effects)
        return effects

    # ---------- effect execution ----------
    def _apply(self, effects: List[Effect]) -> None:
        # Timer state follows the decoder even when a credit or warning below fails.
        for effect in effects:
            if isinstance(effect, ArmTimer):
                self._arm(effect)
            elif isinstance(effect, CancelTimer):
                self._cancel(effect.fragment)

        for effect in effects:
            try:
                if isinstance(effect, Credit):
                    self.balance.credit_coin(effect.value)
                elif isinstance(effect, Reject):
                    self._warn(effect)
            except Exception as e:
                logger.exception(f"[COIN] Failed to apply {effect}: {e}")

    def _arm(self, effect: ArmTimer) -> None:
        fragment = effect.fragment
        logger.info(f'[SERIAL] Pending fragment: "{fragment.prefix}" (waiting {int(effect.delay_s * 1000)}ms)')
        self._timers[fragment] = self._schedule(effect.delay_s, lambda: self.on_fragment_timeout(fragment))

    def _cancel(self, fragment: Fragment) -> None:
        handle: Optional[TimerHandle] = self._timers.pop(fragment, None)
        if handle is not None:
            handle.cancel()

    def _warn(self, reject: Reject) -> None:
        logger.warning(f"[COIN] {reject.code}: {reject.message}")
        self.audit.append("coin_parser_warning", reject.message, {"code": reject.code, **reject.context})
        self.hub.emit("coinParserWarning", {"code": reject.code, "message": reject.message})
