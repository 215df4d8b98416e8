"""
Tests for CoinIntake: decoder effects applied to the ledger, audit log,
event hub and fragment timers.
"""

import pytest
from unittest.mock import call

from balance_service import BalanceService
from ledger import BalanceLedger
from coin_slot.coin_decoder import CoinDecoder
from coin_slot.coin_intake import CoinIntake


@pytest.fixture
def ledger(tmp_path):
    return BalanceLedger(str(tmp_path / "ledger.json"))


@pytest.fixture
def intake(ledger, audit, hub, scheduler, clock):
    balance = BalanceService(ledger, audit, hub, (1, 5, 10, 20))
    decoder = CoinDecoder((1, 5, 10, 20), prefix_digits=("1", "2"), continuation_digit="0", window_s=0.140)
    return CoinIntake(decoder, balance, audit, hub, scheduler=scheduler, clock=clock)


def hub_events(hub, name):
    return [c.args[1] for c in hub.emit.call_args_list if c.args[0] == name]


def audit_types(audit):
    return [c.args[0] for c in audit.append.call_args_list]


class TestCredits:

    @pytest.mark.parametrize("line,value", [("5\n", 5), ("10\r", 10), ("20", 20)])
    def test_single_line_denomination(self, intake, ledger, hub, line, value):
        intake.feed_line(line)

        assert ledger.balance == value
        assert hub_events(hub, "coinAccepted") == [{"value": value, "balance": value, "source": "serial"}]
        assert hub_events(hub, "balance") == [value]

    def test_fragmented_ten(self, intake, ledger, hub, scheduler, clock):
        intake.feed_line("1")
        clock.advance(0.05)
        intake.feed_line("0")

        assert ledger.balance == 10
        assert len(hub_events(hub, "coinAccepted")) == 1
        assert scheduler.timers[0].cancelled
        assert scheduler.live == []

    def test_prefix_credited_only_after_timeout(self, intake, ledger, scheduler):
        intake.feed_line("1")

        assert ledger.balance == 0
        assert len(scheduler.live) == 1
        assert scheduler.live[0].delay_s == pytest.approx(0.140)

        scheduler.live[0].fire()

        assert ledger.balance == 1

    def test_interruption_orders_prefix_first(self, intake, ledger, hub, scheduler):
        intake.feed_line("1")
        intake.feed_line("5")

        assert ledger.balance == 6
        assert [e["value"] for e in hub_events(hub, "coinAccepted")] == [1, 5]
        assert hub_events(hub, "balance") == [1, 6]
        assert scheduler.timers[0].cancelled

    def test_credit_side_effect_order(self, intake, audit, hub):
        intake.feed_line("20")

        assert audit.append.call_args == call("coin_accepted", "Accepted coin: 20", {"coinValue": 20, "balance": 20})
        names = [c.args[0] for c in hub.emit.call_args_list]
        assert names == ["balance", "coinAccepted"]

    def test_coin_stats_follow_credits(self, intake, ledger, scheduler):
        for line in ("5", "5", "1", "0"):
            intake.feed_line(line)

        stats = ledger.snapshot()["coin_stats"]
        assert stats == {"5": 2, "10": 1}


class TestRejections:

    def test_unsupported_value(self, intake, ledger, audit, hub):
        intake.feed_line("7")

        assert ledger.balance == 0
        warnings = hub_events(hub, "coinParserWarning")
        assert warnings == [{"code": "UNSUPPORTED_COIN", "message": "Ignored unsupported coin '7'."}]
        assert audit_types(audit) == ["coin_parser_warning"]
        assert audit.append.call_args.args[2] == {"code": "UNSUPPORTED_COIN", "value": 7}

    def test_invalid_combination(self, intake, ledger, hub):
        intake.feed_line("2")
        intake.feed_line("9")

        assert ledger.balance == 0
        assert [w["code"] for w in hub_events(hub, "coinParserWarning")] == ["INVALID_COMBINATION"]

    def test_invalid_fragment_timeout(self, intake, ledger, hub, scheduler):
        intake.feed_line("2")
        scheduler.live[0].fire()

        assert ledger.balance == 0
        warnings = hub_events(hub, "coinParserWarning")
        assert warnings == [{"code": "INVALID_FRAGMENT", "message": "Ignored fragment '2' (timeout)."}]

    @pytest.mark.parametrize("line", ["", "\r", "   ", "abc", "\x00"])
    def test_lines_without_digits_are_silent(self, intake, ledger, audit, hub, line):
        assert intake.feed_line(line) == []
        assert ledger.balance == 0
        audit.append.assert_not_called()
        hub.emit.assert_not_called()

    def test_digitless_line_keeps_fragment_armed(self, intake, ledger, scheduler):
        intake.feed_line("1")
        intake.feed_line("noise")
        intake.feed_line("0")

        assert ledger.balance == 10


class TestTimers:

    def test_late_timer_after_continuation_does_nothing(self, intake, ledger, scheduler):
        intake.feed_line("1")
        timer = scheduler.timers[0]
        intake.feed_line("0")

        # Simulate a timer that fired concurrently with the cancel.
        timer.cancelled = False
        timer.fire()

        assert ledger.balance == 10

    def test_abandon_credits_received_prefix(self, intake, ledger, hub, scheduler):
        intake.feed_line("1")
        intake.abandon()

        assert scheduler.timers[0].cancelled
        assert scheduler.live == []
        assert ledger.balance == 1
        assert hub_events(hub, "coinAccepted") == [{"value": 1, "balance": 1, "source": "serial"}]

    def test_abandon_warns_on_invalid_prefix(self, intake, ledger, hub):
        intake.feed_line("2")
        intake.abandon()

        assert ledger.balance == 0
        assert hub_events(hub, "coinParserWarning") == [
            {"code": "INVALID_FRAGMENT", "message": "Ignored fragment '2' (port_lost)."},
        ]

    def test_abandon_when_idle_does_nothing(self, intake, audit, hub):
        assert intake.abandon() == []
        audit.append.assert_not_called()
        hub.emit.assert_not_called()


class TestFailingSideEffects:

    def test_failed_credit_broadcast_keeps_rearmed_timer(self, intake, ledger, hub, scheduler):
        intake.feed_line("1")
        hub.emit.side_effect = RuntimeError("observer gone")

        # "1" interrupts "1": credit the first, arm the second.
        intake.feed_line("1")

        assert ledger.balance == 1
        assert intake.decoder.armed
        assert len(scheduler.live) == 1

        hub.emit.side_effect = None
        scheduler.live[0].fire()

        assert ledger.balance == 2
        assert intake._timers == {}

    def test_failed_warning_does_not_skip_following_credit(self, intake, ledger, audit, scheduler):
        audit.append.side_effect = [OSError("log disk full"), None, None]
        intake.feed_line("2")

        intake.feed_line("5")

        assert ledger.balance == 5

    def test_balance_never_decreases_under_coin_activity(self, intake, ledger, scheduler):
        seen = []
        for line in ["1", "0", "7", "2", "9", "5", "1", "x", "20", "2"]:
            intake.feed_line(line)
            seen.append(ledger.balance)
        for timer in scheduler.live:
            timer.fire()
        seen.append(ledger.balance)

        assert seen == sorted(seen)
        assert ledger.balance == 10 + 5 + 1 + 20
