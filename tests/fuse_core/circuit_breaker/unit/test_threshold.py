from __future__ import annotations

from datetime import UTC, datetime
from zoneinfo import ZoneInfo

import pytest

from fuse_core.circuit_breaker import CircuitBreakerConfig, ThresholdCalculator

_STRIPE = CircuitBreakerConfig(
    failure_threshold=50, timeout=45, min_requests=8, peak_threshold=30
)


def _at(hour: int, minute: int = 0) -> datetime:
    return datetime(2024, 3, 4, hour, minute, tzinfo=UTC)


@pytest.mark.parametrize(
    ("now", "expected"),
    [
        (_at(8, 59), 50),
        (_at(9), 30),
        (_at(12, 30), 30),
        (_at(17, 59), 30),
        (_at(18), 50),
        (_at(0), 50),
    ],
)
def test_peak_window_is_inclusive_on_both_hours(now: datetime, expected: int) -> None:
    calculator = ThresholdCalculator({"stripe": _STRIPE})

    assert calculator.effective_threshold("stripe", now) == expected


def test_service_without_peak_threshold_keeps_base_threshold() -> None:
    calculator = ThresholdCalculator(
        {"mailgun": CircuitBreakerConfig(failure_threshold=70)}
    )

    assert calculator.effective_threshold("mailgun", _at(12)) == 70


def test_unknown_service_uses_defaults_without_peak_adjustment() -> None:
    calculator = ThresholdCalculator(
        {"stripe": _STRIPE},
        defaults=CircuitBreakerConfig(failure_threshold=40, peak_threshold=10),
    )

    assert calculator.effective_threshold("twilio", _at(12)) == 40


def test_hours_are_read_in_the_configured_timezone() -> None:
    calculator = ThresholdCalculator(
        {"stripe": _STRIPE}, tz=ZoneInfo("Australia/Brisbane")
    )

    # 23:00 UTC is 09:00 in Brisbane.
    assert calculator.effective_threshold("stripe", _at(23)) == 30
    assert calculator.effective_threshold("stripe", _at(12)) == 50


def test_inverted_peak_window_never_matches() -> None:
    night = CircuitBreakerConfig(peak_threshold=20, peak_start=22, peak_end=2)
    calculator = ThresholdCalculator({"batch": night})

    assert calculator.effective_threshold("batch", _at(23)) == 50
    assert calculator.effective_threshold("batch", _at(1)) == 50


def test_describe_reports_effective_settings() -> None:
    calculator = ThresholdCalculator({"stripe": _STRIPE})

    assert calculator.describe("stripe", _at(10)) == {
        "threshold": 30,
        "timeout": 45,
        "min_requests": 8,
        "is_peak_hours": True,
    }
    assert calculator.describe("unknown", _at(20)) == {
        "threshold": 50,
        "timeout": 60,
        "min_requests": 10,
        "is_peak_hours": False,
    }
