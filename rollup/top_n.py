"""
TopNSelector: bounded distributions with a deterministic "Other" bucket.

Entries are ranked by value (descending), ties broken by case-folded label and
then by insertion order, so identical input always yields identical output.
The first ``n`` are kept; the "Other" value is the exact residual
``total - sum(kept)`` and is only emitted when it exceeds a small epsilon.

Percentages are apportioned in tenths of a percent with the largest-remainder
method, so a complete slice set (kept + Other) sums to exactly 100.0 while
each slice stays within 0.1 of its true share.

Colours are assigned by output position from a fixed palette.  The same
entity can therefore change colour between two requests if its rank changed;
that is accepted behaviour.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from typing import Iterable, List, Optional, Sequence, Tuple, Union

from config.settings import RollupConfig
from rollup.models import DistributionSlice
from rollup.normalizer import to_number

logger = logging.getLogger(__name__)

OTHER_LABEL = "Other"
DEFAULT_EPSILON = 1e-6

DISTRIBUTION_COLORS = RollupConfig().palette


@dataclass(frozen=True)
class DistributionEntry:
    label: str
    value: float


EntryLike = Union[DistributionEntry, Tuple[str, float]]


def _ranked(entries: Iterable[EntryLike]) -> List[Tuple[str, float]]:
    items = []
    for index, entry in enumerate(entries):
        if isinstance(entry, DistributionEntry):
            label, raw = entry.label, entry.value
        else:
            label, raw = entry
        value = to_number(raw)
        if value <= 0:
            continue
        items.append((index, str(label), value))
    items.sort(key=lambda item: (-item[2], item[1].casefold(), item[0]))
    return [(label, value) for _, label, value in items]


def apportion(values: Sequence[float], total: float, precision: int = 1) -> List[float]:
    """
    Largest-remainder percentages of ``total``.

    Units of ``10 ** -precision`` percent are floored, then the units still
    missing from the rounded grand total go to the largest remainders
    (earlier positions first on ties).
    """
    if total <= 0 or not values:
        return [0.0 for _ in values]
    scale = 10 ** precision
    exact = [value / total * 100.0 * scale for value in values]
    units = [math.floor(round(x, 9)) for x in exact]
    missing = int(round(sum(exact))) - sum(units)
    by_remainder = sorted(range(len(exact)), key=lambda i: (-(exact[i] - units[i]), i))
    for i in by_remainder[: max(0, missing)]:
        units[i] += 1
    return [unit / scale for unit in units]


def select_top_n(
    entries: Iterable[EntryLike],
    n: int,
    *,
    total: Optional[float] = None,
    palette: Optional[Sequence[str]] = None,
    epsilon: float = DEFAULT_EPSILON,
    other_label: str = OTHER_LABEL,
) -> List[DistributionSlice]:
    """
    Keep the top ``n`` entries and fold the remainder into "Other".

    Args:
        entries: ``(label, value)`` pairs or ``DistributionEntry`` items.
            Non-positive values are ignored.
        n: Number of entries to keep (>= 1).
        total: Universe total; defaults to the sum of all positive entries.
        palette: Colours assigned by output position, cycled.
        epsilon: Minimum residual for an "Other" slice.
    """
    if n < 1:
        raise ValueError(f"n must be >= 1, got {n}")
    colors = list(palette or DISTRIBUTION_COLORS)

    ranked = _ranked(entries)
    entries_total = sum(value for _, value in ranked)
    universe = entries_total if total is None else max(to_number(total), entries_total)
    if universe <= 0:
        return []

    kept = ranked[:n]
    other_value = universe - sum(value for _, value in kept)

    labelled: List[Tuple[str, float, bool]] = [(label, value, False) for label, value in kept]
    if other_value > epsilon:
        labelled.append((other_label, other_value, True))

    percentages = apportion([value for _, value, _ in labelled], universe)
    slices = [
        DistributionSlice(
            label=label,
            percentage=percentage,
            color=colors[position % len(colors)],
            value=value,
            is_other=is_other,
        )
        for position, ((label, value, is_other), percentage) in enumerate(zip(labelled, percentages))
    ]
    logger.debug(
        "Selected %d of %d entries (other=%s)", len(kept), len(ranked), other_value > epsilon,
    )
    return slices
