"""
GroupAggregator: folds raw rows into per-group accumulators.

One aggregator instance handles one grouping dimension:

    scope        every row in a single group (overall brand metrics)
    query        logical query, via ``KeyResolver`` precedence
    topic        topic label (``Uncategorized`` when a row has none)
    collector    collector type
    competitor   competitor name (brand rows are ignored)

Several dimensions run over the same row stream independently; none of them
reads another's intermediate state.  Inside a query/topic/collector/scope
group, brand rows feed the group's own value lists and competitor rows feed a
nested per-competitor accumulator, so callers can report both the
competitor-set average and an individual competitor's breakdown.

Competitor rows whose name matches the tracked brand (case-insensitively) are
self-references and are dropped before keying.
"""

from __future__ import annotations

import bisect
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Dict, Iterable, List, Optional, Set, Tuple

from rollup.keys import KeyResolver
from rollup.models import RawMeasurement
from rollup.normalizer import (
    clean_label,
    normalize_fraction,
    sentiment_to_percent,
    to_optional_number,
)

logger = logging.getLogger(__name__)

UNCATEGORIZED = "Uncategorized"
UNKNOWN_COLLECTOR = "unknown"
SCOPE_KEY = "all"

SHARE = "share"
VISIBILITY = "visibility"
SENTIMENT = "sentiment"


class Dimension(str, Enum):
    SCOPE = "scope"
    QUERY = "query"
    TOPIC = "topic"
    COLLECTOR = "collector"
    COMPETITOR = "competitor"


Sample = Tuple[datetime, int, float]


@dataclass
class GroupAccumulator:
    """Transient per-group state; discarded once rolled up."""
    key: str
    label: str
    share_values: List[float] = field(default_factory=list)
    visibility_values: List[float] = field(default_factory=list)
    sentiment_values: List[float] = field(default_factory=list)
    collectors: Set[str] = field(default_factory=set)
    samples: Dict[str, List[Sample]] = field(default_factory=dict)
    mention_total: int = 0
    row_count: int = 0
    query_ids: Set[str] = field(default_factory=set)
    response_keys: Set[str] = field(default_factory=set)
    present_response_keys: Set[str] = field(default_factory=set)
    competitors: Dict[str, "GroupAccumulator"] = field(default_factory=dict)
    topics: Dict[str, "GroupAccumulator"] = field(default_factory=dict)

    # Descriptive attributes, first non-empty value wins
    query_id: Optional[str] = None
    query_text: Optional[str] = None
    topic: Optional[str] = None

    _sequence: int = 0

    def add_sample(self, metric: str, timestamp: Optional[datetime], value: float) -> None:
        """Insert a (timestamp, value) sample keeping the list time-ordered."""
        if timestamp is None:
            return
        if timestamp.tzinfo is None:
            timestamp = timestamp.replace(tzinfo=timezone.utc)
        self._sequence += 1
        bisect.insort(self.samples.setdefault(metric, []), (timestamp, self._sequence, value))

    def child(self, children: Dict[str, "GroupAccumulator"], label: str) -> "GroupAccumulator":
        key = label.casefold()
        existing = children.get(key)
        if existing is None:
            existing = GroupAccumulator(key=key, label=label)
            children[key] = existing
        return existing

    def remember(self, row: RawMeasurement) -> None:
        if self.query_id is None:
            self.query_id = clean_label(row.query_id)
        if self.query_text is None:
            self.query_text = clean_label(row.query_text)
        if self.topic is None:
            self.topic = clean_label(row.topic)


def collector_label(row: RawMeasurement) -> str:
    return clean_label(row.collector_type) or UNKNOWN_COLLECTOR


def topic_label(row: RawMeasurement) -> str:
    return clean_label(row.topic) or UNCATEGORIZED


def _mentions(row: RawMeasurement, share: Optional[float], visibility: Optional[float]) -> int:
    explicit = to_optional_number(row.mention_count)
    if explicit is not None:
        return max(0, int(explicit))
    # presence implied by a positive measurement counts as one mention
    if (visibility or 0.0) > 0 or (share or 0.0) > 0:
        return 1
    return 0


def _fold_subject(
    accumulator: GroupAccumulator,
    row: RawMeasurement,
    response_key: Optional[str],
) -> None:
    share = normalize_fraction(row.share_value, row.share_scale)
    visibility = normalize_fraction(row.visibility_value, row.visibility_scale)
    sentiment = sentiment_to_percent(row.sentiment_value, row.sentiment_scale)
    if row.is_brand and visibility is None:
        # brand sentiment only means something when the brand was measured
        sentiment = None

    accumulator.row_count += 1
    accumulator.remember(row)
    accumulator.collectors.add(collector_label(row))

    if share is not None:
        accumulator.share_values.append(share)
        accumulator.add_sample(SHARE, row.timestamp, share * 100.0)
    if visibility is not None:
        accumulator.visibility_values.append(visibility)
        accumulator.add_sample(VISIBILITY, row.timestamp, visibility * 100.0)
    if sentiment is not None:
        accumulator.sentiment_values.append(sentiment)
        accumulator.add_sample(SENTIMENT, row.timestamp, sentiment)

    mentions = _mentions(row, share, visibility)
    accumulator.mention_total += mentions

    query_id = clean_label(row.query_id)
    if query_id is not None:
        accumulator.query_ids.add(query_id)
    if response_key is not None:
        accumulator.response_keys.add(response_key)
        if mentions > 0 or (visibility or 0.0) > 0 or (share or 0.0) > 0:
            accumulator.present_response_keys.add(response_key)


def fold(
    accumulator: GroupAccumulator,
    row: RawMeasurement,
    *,
    response_key: Optional[str] = None,
    nest_competitors: bool = True,
    nest_topics: bool = False,
) -> GroupAccumulator:
    """
    Fold one row into ``accumulator`` and return it.

    Brand rows (or any row when ``nest_competitors`` is false) feed the group
    itself; competitor rows feed the nested accumulator for that competitor.
    With ``nest_topics`` the subject's values are also tracked per topic.
    """
    accumulator.collectors.add(collector_label(row))
    if response_key is not None:
        accumulator.response_keys.add(response_key)

    if row.is_brand or not nest_competitors:
        _fold_subject(accumulator, row, response_key)
        if nest_topics:
            _fold_subject(accumulator.child(accumulator.topics, topic_label(row)), row, response_key)
    else:
        name = clean_label(row.subject_name) or ""
        _fold_subject(accumulator.child(accumulator.competitors, name), row, response_key)
    return accumulator


class GroupAggregator:
    """Folds a row stream into accumulators along one dimension."""

    def __init__(
        self,
        dimension: Dimension,
        brand_name: str,
        *,
        competitor_filter: Optional[str] = None,
        key_resolver: Optional[KeyResolver] = None,
    ) -> None:
        self.dimension = Dimension(dimension)
        self.brand_name = brand_name
        self._brand_key = (brand_name or "").strip().casefold()
        self._competitor_filter = (
            competitor_filter.strip().casefold() if competitor_filter and competitor_filter.strip() else None
        )
        self.key_resolver = key_resolver or KeyResolver()
        self.groups: Dict[str, GroupAccumulator] = {}
        self.dropped = 0

    # -- classification -----------------------------------------------------

    def _is_self_reference(self, row: RawMeasurement) -> bool:
        return (
            not row.is_brand
            and bool(self._brand_key)
            and (row.subject_name or "").strip().casefold() == self._brand_key
        )

    def _excluded(self, row: RawMeasurement) -> bool:
        if row.is_brand:
            return self.dimension == Dimension.COMPETITOR
        name = clean_label(row.subject_name)
        if name is None or self._is_self_reference(row):
            return True
        return self._competitor_filter is not None and name.casefold() != self._competitor_filter

    def _group_key(self, row: RawMeasurement) -> Tuple[str, str]:
        if self.dimension == Dimension.SCOPE:
            return SCOPE_KEY, self.brand_name
        if self.dimension == Dimension.QUERY:
            key = self.key_resolver.resolve_key(row)
            label = clean_label(row.query_text) or clean_label(row.query_id) or key
            return key, label
        if self.dimension == Dimension.TOPIC:
            label = topic_label(row)
            return label.casefold(), label
        if self.dimension == Dimension.COLLECTOR:
            label = collector_label(row)
            return label.casefold(), label
        label = clean_label(row.subject_name) or ""
        return label.casefold(), label

    # -- folding ------------------------------------------------------------

    def fold(self, row: RawMeasurement) -> Optional[GroupAccumulator]:
        """Fold ``row`` into its group; returns ``None`` when the row is dropped."""
        if self._excluded(row):
            self.dropped += 1
            logger.debug(
                "Dropped %s row %r from %s dimension",
                row.subject_kind.value, row.subject_name, self.dimension.value,
            )
            return None

        key, label = self._group_key(row)
        accumulator = self.groups.get(key)
        if accumulator is None:
            accumulator = GroupAccumulator(key=key, label=label)
            self.groups[key] = accumulator

        competitor_dim = self.dimension == Dimension.COMPETITOR
        return fold(
            accumulator,
            row,
            response_key=self.key_resolver.response_key(row),
            nest_competitors=not competitor_dim,
            nest_topics=competitor_dim or self.dimension == Dimension.COLLECTOR,
        )

    def fold_all(self, rows: Iterable[RawMeasurement]) -> "GroupAggregator":
        for row in rows:
            self.fold(row)
        logger.debug(
            "%s dimension: %d groups, %d rows dropped",
            self.dimension.value, len(self.groups), self.dropped,
        )
        return self

    def accumulators(self) -> List[GroupAccumulator]:
        """Groups in first-seen order."""
        return list(self.groups.values())
