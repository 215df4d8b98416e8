# coin_slot/coin_decoder.py
import re
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional, Union

_NON_DIGITS = re.compile(r"[^0-9]")
_DIGITS = re.compile(r"[0-9]+")


def extract_token(raw_line: str) -> str:
    """Strip everything that is not an ASCII digit. May return ''."""
    return _NON_DIGITS.sub("", raw_line.strip())


# ---------- effects (decoder output, applied in order by CoinIntake) ----------
@dataclass(frozen=True, eq=False)  # identity: two arms of the same digit are distinct
class Fragment:
    prefix: str
    armed_at: float


@dataclass(frozen=True)
class Credit:
    value: int
    token: str


@dataclass(frozen=True)
class Reject:
    code: str
    message: str
    context: Dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class ArmTimer:
    fragment: Fragment
    delay_s: float


@dataclass(frozen=True)
class CancelTimer:
    fragment: Fragment


Effect = Union[Credit, Reject, ArmTimer, CancelTimer]


class CoinDecoder:
    """
    Rebuilds coin events from the digit tokens the coin slot board prints.

    The board sometimes prints a two-digit denomination as two lines ("1" then
    "0"). A prefix digit therefore arms a short window; a continuation digit
    inside the window completes the value, anything else (or the window
    expiring) resolves the prefix on its own.

    The decoder does no I/O. `feed()` and `expire()` return the ordered list
    of effects the caller must apply. It never raises on token content.
    """

    # ---- warning codes ----
    INVALID_COMBINATION = "INVALID_COMBINATION"
    INVALID_FRAGMENT    = "INVALID_FRAGMENT"
    UNSUPPORTED_COIN    = "UNSUPPORTED_COIN"
    NON_NUMERIC         = "NON_NUMERIC"

    def __init__(self, accepted: Iterable[int] = (1, 5, 10, 20), *,
                 prefix_digits: Iterable[str] = ("1", "2"),
                 continuation_digit: str = "0",
                 window_s: float = 0.140):
        self.accepted = frozenset(int(v) for v in accepted)
        self.prefix_digits = frozenset(prefix_digits)
        self.continuation_digit = continuation_digit
        self.window_s = window_s
        self._pending: Optional[Fragment] = None

    # ---------- state ----------
    @property
    def pending(self) -> Optional[Fragment]:
        return self._pending

    @property
    def armed(self) -> bool:
        return self._pending is not None

    # ---------- transitions ----------
    def feed(self, token: str, now: float) -> List[Effect]:
        """Process one token. `now` is a monotonic timestamp in seconds."""
        if not _DIGITS.fullmatch(token):
            # Not a coin value at all; leave any armed fragment untouched.
            return [Reject(self.NON_NUMERIC, f"Ignored serial token '{token}'.", {"token": token})]

        effects: List[Effect] = []
        fragment = self._pending
        if fragment is not None:
            if token == self.continuation_digit or self._is_garbled_pair(fragment, token):
                self._pending = None
                effects.append(CancelTimer(fragment))
                combined = int(fragment.prefix + token)
                if combined in self.accepted:
                    effects.append(Credit(combined, fragment.prefix + token))
                else:
                    effects.append(Reject(
                        self.INVALID_COMBINATION,
                        f"Ignored invalid coin '{combined}'.",
                        {"combined": combined},
                    ))
                return effects

            effects.extend(self._resolve(fragment, "interrupted"))

        effects.extend(self._feed_idle(token, now))
        return effects

    def expire(self, fragment: Fragment) -> List[Effect]:
        """
        Window elapsed for `fragment`. A no-op when that fragment was already
        resolved (continuation, interruption, or an earlier expiry).
        """
        if self._pending is not fragment:
            return []
        return self._resolve(fragment, "timeout")

    def flush(self, reason: str = "port_lost") -> List[Effect]:
        """
        Resolve the armed fragment now, as an expiry would. Used when no more
        tokens can arrive (port lost, shutdown); the prefix was fully received.
        """
        fragment = self._pending
        if fragment is None:
            return []
        return self._resolve(fragment, reason)

    # ---------- internals ----------
    def _is_garbled_pair(self, fragment: Fragment, token: str) -> bool:
        """
        A lone digit after a prefix where neither half is a coin by itself
        ("2" then "9"): report it as one bad two-digit value, not two warnings.
        """
        return (
            len(token) == 1
            and token not in self.prefix_digits
            and int(token) not in self.accepted
            and int(fragment.prefix) not in self.accepted
        )

    def _feed_idle(self, token: str, now: float) -> List[Effect]:
        if token in self.prefix_digits:
            fragment = Fragment(prefix=token, armed_at=now)
            self._pending = fragment
            return [ArmTimer(fragment, self.window_s)]

        value = int(token)
        if value in self.accepted:
            return [Credit(value, token)]
        return [Reject(self.UNSUPPORTED_COIN, f"Ignored unsupported coin '{value}'.", {"value": value})]

    def _resolve(self, fragment: Fragment, reason: str) -> List[Effect]:
        self._pending = None
        effects: List[Effect] = [CancelTimer(fragment)]
        value = int(fragment.prefix)
        if value in self.accepted:
            effects.append(Credit(value, fragment.prefix))
        else:
            effects.append(Reject(
                self.INVALID_FRAGMENT,
                f"Ignored fragment '{fragment.prefix}' ({reason}).",
                {"prefix": fragment.prefix, "reason": reason},
            ))
        return effects
