from datetime import timedelta

from pagewatch.core.types import CheckStatus
from pagewatch.services.change_detector import reconcile, truncate_error
from pagewatch.services.classifier import Blocked, Failed, Ok, SelectorMissing

from .conftest import START, make_monitor


def test_first_value_is_a_baseline():
    outcome = reconcile(make_monitor(), Ok("$10"), pause_threshold=3, now=START)

    assert outcome.change is None
    assert outcome.monitor.current_value == "$10"
    assert outcome.monitor.last_changed is None
    assert outcome.monitor.last_status == CheckStatus.OK
    assert outcome.monitor.last_checked == START


def test_different_value_records_change():
    monitor = make_monitor(current_value="$10")
    later = START + timedelta(hours=1)

    outcome = reconcile(monitor, Ok("$12"), pause_threshold=3, now=later)

    assert outcome.changed
    assert outcome.change.old_value == "$10"
    assert outcome.change.new_value == "$12"
    assert outcome.change.detected_at == later
    assert outcome.monitor.last_changed == later


def test_same_value_is_not_a_change():
    monitor = make_monitor(current_value="$10", last_changed=START)
    outcome = reconcile(monitor, Ok("$10"), pause_threshold=3, now=START + timedelta(hours=1))

    assert outcome.change is None
    assert outcome.monitor.last_changed == START


def test_value_after_history_is_a_change_even_from_null():
    monitor = make_monitor(current_value=None, last_changed=START)
    outcome = reconcile(monitor, Ok("back"), pause_threshold=3, now=START + timedelta(hours=1))

    assert outcome.change.old_value is None
    assert outcome.change.new_value == "back"


def test_empty_string_differs_from_value():
    monitor = make_monitor(current_value="In stock")
    outcome = reconcile(monitor, Ok(""), pause_threshold=3, now=START)

    assert outcome.change.new_value == ""
    assert outcome.monitor.current_value == ""


def test_failure_preserves_value_and_counts():
    monitor = make_monitor(current_value="$10", consecutive_failures=1)

    outcome = reconcile(monitor, SelectorMissing(), pause_threshold=3, now=START)

    assert outcome.change is None
    assert outcome.paused is False
    assert outcome.monitor.current_value == "$10"
    assert outcome.monitor.consecutive_failures == 2
    assert outcome.monitor.last_status == CheckStatus.SELECTOR_MISSING
    assert outcome.monitor.last_error == "Selector not found"


def test_ok_resets_failures():
    monitor = make_monitor(current_value="$10", consecutive_failures=2, last_error="boom")
    outcome = reconcile(monitor, Ok("$10"), pause_threshold=3, now=START)

    assert outcome.monitor.consecutive_failures == 0
    assert outcome.monitor.last_error is None


def test_reaching_threshold_pauses():
    monitor = make_monitor(consecutive_failures=2)

    outcome = reconcile(monitor, Blocked("Captcha"), pause_threshold=3, now=START)

    assert outcome.paused is True
    assert outcome.monitor.active is False
    assert outcome.monitor.pause_reason.startswith("Paused after 3 consecutive failed checks")
    assert "Page blocked: Captcha" in outcome.monitor.pause_reason


def test_paused_monitor_stays_paused():
    monitor = make_monitor(consecutive_failures=5, active=False, pause_reason="Paused earlier")

    outcome = reconcile(monitor, Failed("still down"), pause_threshold=3, now=START)

    assert outcome.paused is False
    assert outcome.monitor.active is False
    assert outcome.monitor.pause_reason == "Paused earlier"
    assert outcome.monitor.consecutive_failures == 6


def test_last_error_is_truncated():
    outcome = reconcile(make_monitor(), Failed("x" * 500), pause_threshold=3, now=START)

    assert len(outcome.monitor.last_error) == 200
    assert truncate_error("short") == "short"
    assert truncate_error(None) is None
