import logging
from datetime import datetime, timedelta, timezone

import pytest

from abtest.engine.activity import (
    find_baseline_variant,
    is_experiment_active,
    is_within_window,
    parse_iso_datetime,
    resolve_inactive_variant,
)
from abtest.engine.errors import NoBaselineError
from abtest.models.schemas.experiment import Variant
from tests.conftest import make_experiment

NOW = datetime(2025, 6, 1, 12, 0, tzinfo=timezone.utc)


def _iso(dt):
    return dt.isoformat()


def test_no_dates_means_active():
    assert is_within_window(None, None, now=NOW)


def test_future_start_is_inactive():
    assert not is_within_window(_iso(NOW + timedelta(hours=1)), None, now=NOW)


def test_past_end_is_inactive():
    assert not is_within_window(None, _iso(NOW - timedelta(seconds=1)), now=NOW)


def test_inside_window_is_active():
    start = _iso(NOW - timedelta(days=1))
    end = _iso(NOW + timedelta(days=1))
    assert is_within_window(start, end, now=NOW)


def test_invalid_date_is_inactive_and_logged(caplog):
    with caplog.at_level(logging.WARNING, logger="abtest.engine.activity"):
        assert not is_within_window("next tuesday", None, now=NOW, experiment_id="exp-9")
    assert "Invalid startDate format for experiment exp-9" in caplog.text


def test_invalid_end_date_is_inactive():
    assert not is_within_window(None, "2025-13-45", now=NOW)


def test_zulu_suffix_and_naive_values_are_utc():
    assert parse_iso_datetime("2025-06-01T12:00:00Z") == NOW
    assert parse_iso_datetime("2025-06-01T12:00:00") == NOW
    assert parse_iso_datetime("garbage") is None


def test_experiment_activity_uses_its_dates():
    experiment = make_experiment(start_date=_iso(NOW + timedelta(hours=1)))
    assert not is_experiment_active(experiment, now=NOW)


def test_baseline_flag_wins():
    variants = [Variant(name="A", weight=0.5), Variant(name="X", weight=0.5, is_baseline=True)]
    assert find_baseline_variant(variants) == "X"


def test_variant_named_baseline_is_used_without_flag():
    variants = [Variant(name="treatment", weight=0.5), Variant(name="Baseline", weight=0.5)]
    assert find_baseline_variant(variants) == "Baseline"


def test_inactive_without_baseline_uses_fallback():
    experiment = make_experiment([("A", 0.5, False), ("B", 0.5, False)])
    assert resolve_inactive_variant(experiment, "control") == "control"


def test_inactive_without_baseline_or_fallback_raises():
    experiment = make_experiment([("A", 0.5, False), ("B", 0.5, False)])
    with pytest.raises(NoBaselineError):
        resolve_inactive_variant(experiment, None)
