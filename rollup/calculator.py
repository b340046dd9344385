"""
RollupCalculator: turns one group's accumulated values into a RollupResult.

Metric definitions
------------------
average
    Arithmetic mean of the accumulated value list.  An empty list yields
    ``None`` so that "no data" stays distinguishable from "measured zero".

share of universe
    ``group_sum / universe_sum * 100`` where the universe is the share total
    across the brand and every competitor in the same scope.  A zero or
    missing universe degrades to the plain average instead of NaN.

trend
    Samples of the ranking metric are ordered by timestamp and split at the
    midpoint into an older and a newer half; ``delta = mean(newer) -
    mean(older)``.  A ±1 point dead band keeps noise from flipping the
    direction.  Fewer than two samples is always ``neutral`` / ``0``.

presence rate
    Share of distinct collector responses in which the subject was present.

Everything is computed at full precision; ``round_half_away`` is applied only
when a value is written into the result.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any, Iterable, Optional, Sequence

from rollup.aggregator import SHARE, GroupAccumulator
from rollup.models import RollupResult, Trend, TrendDirection
from rollup.normalizer import round_half_away

logger = logging.getLogger(__name__)

DEFAULT_DEAD_BAND = 1.0


def mean(values: Sequence[float]) -> Optional[float]:
    if not values:
        return None
    return sum(values) / len(values)


def as_percent(fraction: Optional[float]) -> Optional[float]:
    return None if fraction is None else fraction * 100.0


def share_of_universe(
    group_sum: float,
    universe_sum: Optional[float],
    fallback_average: Optional[float],
) -> Optional[float]:
    """Percentage of the universe held by a group; fraction inputs, 0–100 output."""
    if not universe_sum:
        return as_percent(fallback_average)
    return group_sum / universe_sum * 100.0


def _aware(value: datetime) -> datetime:
    return value.replace(tzinfo=timezone.utc) if value.tzinfo is None else value


def compute_trend(
    samples: Iterable[Sequence[Any]],
    dead_band: float = DEFAULT_DEAD_BAND,
    now: Optional[datetime] = None,
) -> Trend:
    """
    Two-window trend over ``(timestamp, ..., value)`` samples.

    Samples without a timestamp, or stamped after ``now``, are ignored.
    """
    cutoff = _aware(now) if now is not None else None
    ordered = []
    for index, sample in enumerate(samples):
        timestamp, value = sample[0], sample[-1]
        if timestamp is None:
            continue
        timestamp = _aware(timestamp)
        if cutoff is not None and timestamp > cutoff:
            continue
        ordered.append((timestamp, index, float(value)))

    if len(ordered) < 2:
        return Trend()

    ordered.sort(key=lambda item: (item[0], item[1]))
    midpoint = len(ordered) // 2
    older = [value for _, _, value in ordered[:midpoint]]
    newer = [value for _, _, value in ordered[midpoint:]]
    delta = round(sum(newer) / len(newer) - sum(older) / len(older), 9)

    if delta >= dead_band:
        direction = TrendDirection.UP
    elif delta <= -dead_band:
        direction = TrendDirection.DOWN
    else:
        direction = TrendDirection.NEUTRAL
    return Trend(direction=direction, delta=round_half_away(delta))


def merge(accumulators: Iterable[GroupAccumulator], key: str, label: str) -> GroupAccumulator:
    """Combine several accumulators (e.g. every competitor in a topic) into one."""
    merged = GroupAccumulator(key=key, label=label)
    count = 0
    for count, acc in enumerate(accumulators, start=1):
        merged.share_values.extend(acc.share_values)
        merged.visibility_values.extend(acc.visibility_values)
        merged.sentiment_values.extend(acc.sentiment_values)
        merged.collectors.update(acc.collectors)
        merged.mention_total += acc.mention_total
        merged.row_count += acc.row_count
        merged.query_ids.update(acc.query_ids)
        merged.response_keys.update(acc.response_keys)
        merged.present_response_keys.update(acc.present_response_keys)
        for metric, samples in acc.samples.items():
            for timestamp, _, value in samples:
                merged.add_sample(metric, timestamp, value)
    logger.debug("Merged %d accumulators into %s", count, key)
    return merged


def presence_rate(accumulator: GroupAccumulator, response_universe: Optional[int] = None) -> Optional[float]:
    denominator = response_universe if response_universe is not None else len(accumulator.response_keys)
    if not denominator:
        return None
    return len(accumulator.present_response_keys) / denominator * 100.0


def rollup(
    accumulator: GroupAccumulator,
    now: Optional[datetime] = None,
    *,
    universe_sum: Optional[float] = None,
    trend_metric: str = SHARE,
    dead_band: float = DEFAULT_DEAD_BAND,
    response_universe: Optional[int] = None,
) -> RollupResult:
    """
    Compute the RollupResult for one group.

    Args:
        accumulator: The folded group.
        now: Trend samples stamped after this instant are ignored.
        universe_sum: Share total (fractions) across brand and competitors in
            the same scope; enables ``share_of_universe``.
        trend_metric: Which sample series drives the trend.
        dead_band: Minimum absolute delta for an up/down direction.
        response_universe: Denominator for the presence rate; defaults to the
            responses the group itself saw.
    """
    avg_share = mean(accumulator.share_values)
    avg_visibility = mean(accumulator.visibility_values)
    avg_sentiment = mean(accumulator.sentiment_values)

    universe_pct = None
    if universe_sum is not None:
        universe_pct = share_of_universe(sum(accumulator.share_values), universe_sum, avg_share)

    return RollupResult(
        key=accumulator.key,
        label=accumulator.label,
        share=round_half_away(as_percent(avg_share)),
        visibility=round_half_away(as_percent(avg_visibility)),
        sentiment=round_half_away(avg_sentiment),
        trend=compute_trend(accumulator.samples.get(trend_metric, []), dead_band, now),
        sample_count=accumulator.row_count,
        mentions=accumulator.mention_total,
        collectors=tuple(sorted(accumulator.collectors, key=str.casefold)),
        query_count=len(accumulator.query_ids),
        share_of_universe=round_half_away(universe_pct),
        presence_rate=round_half_away(presence_rate(accumulator, response_universe)),
    )
