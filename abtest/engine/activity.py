import logging
from datetime import datetime, timezone
from typing import Optional, Sequence

from abtest.models.schemas.experiment import Experiment, Variant

from .errors import NoBaselineError

logger = logging.getLogger(__name__)


def parse_iso_datetime(value: str) -> Optional[datetime]:
    """Parses an ISO-8601 timestamp into an aware UTC datetime.

    Returns None when the value is not valid ISO-8601. Naive values are
    taken to be UTC.
    """
    text = value.strip()
    if text.endswith(("Z", "z")):
        text = text[:-1] + "+00:00"
    try:
        parsed = datetime.fromisoformat(text)
    except ValueError:
        return None
    if parsed.tzinfo is None:
        return parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


def is_within_window(
    start_date: Optional[str],
    end_date: Optional[str],
    now: Optional[datetime] = None,
    experiment_id: str = "",
) -> bool:
    """
    Checks an activity window.

    1. No start and no end: active.
    2. Any configured date that is not valid ISO-8601: inactive (logged).
    3. Start in the future: inactive.
    4. End in the past: inactive.
    """
    if not start_date and not end_date:
        return True

    now = now or datetime.now(timezone.utc)
    if now.tzinfo is None:
        now = now.replace(tzinfo=timezone.utc)

    if start_date:
        start = parse_iso_datetime(start_date)
        if start is None:
            logger.warning(
                "Invalid startDate format for experiment %s: %s", experiment_id, start_date
            )
            return False
        if start > now:
            return False

    if end_date:
        end = parse_iso_datetime(end_date)
        if end is None:
            logger.warning(
                "Invalid endDate format for experiment %s: %s", experiment_id, end_date
            )
            return False
        if end < now:
            return False

    return True


def is_experiment_active(experiment: Experiment, now: Optional[datetime] = None) -> bool:
    return is_within_window(
        experiment.start_date, experiment.end_date, now=now, experiment_id=experiment.id
    )


def find_baseline_variant(variants: Sequence[Variant]) -> Optional[str]:
    """The variant flagged as baseline, else one literally named 'baseline'."""
    for variant in variants:
        if variant.is_baseline:
            return variant.name
    for variant in variants:
        if variant.name.lower() == "baseline":
            return variant.name
    return None


def resolve_inactive_variant(experiment: Experiment, fallback: Optional[str]) -> str:
    """Variant served while an experiment is outside its activity window."""
    baseline = find_baseline_variant(experiment.variants)
    if baseline is not None:
        return baseline
    if fallback:
        return fallback
    raise NoBaselineError(
        f"Experiment {experiment.id} is inactive and has no baseline or fallback variant."
    )
