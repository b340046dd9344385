"""
Rollup engine: one aggregation pass from raw rows to a dashboard payload.

    raw rows -> KeyResolver / Normalizer (per row)
             -> GroupAggregator (per dimension)
             -> RollupCalculator (per group)
             -> TopNSelector (per distribution)
             -> ResponseAssembler (final payload)

``build_report`` is a pure function of its inputs plus the supplied ``now``;
every call constructs fresh aggregators, so no state leaks between requests
for different brands.  ``generate_report`` adds scope validation and the
parallel fetch boundary in front of it.
"""

from __future__ import annotations

import logging
import re
from collections import defaultdict
from dataclasses import replace
from datetime import datetime, time, timedelta, timezone
from typing import Any, Dict, Iterable, List, Optional, Sequence

from config.settings import RollupConfig, Settings, get_settings
from rollup.aggregator import (
    SCOPE_KEY,
    SENTIMENT,
    SHARE,
    UNCATEGORIZED,
    VISIBILITY,
    Dimension,
    GroupAccumulator,
    GroupAggregator,
)
from rollup.assembler import CATEGORY, SOURCE_TYPE, assemble
from rollup.calculator import compute_trend, merge, rollup
from rollup.errors import InvalidScopeError
from rollup.models import (
    Citation,
    CollectorRollup,
    CompetitorRollup,
    DashboardPayload,
    QueryInfo,
    QueryRollup,
    RawMeasurement,
    ReportInputs,
    ReportMetadata,
    ReportRollups,
    ReportScope,
    ResolvedScope,
    RollupResult,
    SourceUsage,
    TopicRollup,
)
from rollup.normalizer import clean_label, parse_timestamp, to_number
from rollup.top_n import select_top_n

logger = logging.getLogger(__name__)

UNCATEGORIZED_SOURCE = "other"

_DATE_ONLY = re.compile(r"^\s*(\d{4}-\d{1,2}-\d{1,2}|\d{1,2}/\d{1,2}/\d{4})\s*$")


# ---------------------------------------------------------------------------
# Scope
# ---------------------------------------------------------------------------

def _utc(value: datetime) -> datetime:
    return value.replace(tzinfo=timezone.utc) if value.tzinfo is None else value.astimezone(timezone.utc)


def resolve_scope(scope: ReportScope, now: datetime, lookback_days: int = 30) -> ResolvedScope:
    """
    Validate a requested scope and fill in the default date range.

    A missing end defaults to ``now``; a missing start to midnight UTC of the
    first day of a ``lookback_days`` window ending on ``end``.

    Raises:
        InvalidScopeError: blank brand id, or end before start.
    """
    brand_id = clean_label(scope.brand_id)
    if brand_id is None:
        raise InvalidScopeError("brand_id is required")

    end = _utc(scope.end) if scope.end is not None else _utc(now)
    if scope.start is not None:
        start = _utc(scope.start)
    else:
        first_day = (end - timedelta(days=max(1, lookback_days) - 1)).date()
        start = datetime.combine(first_day, time.min, tzinfo=timezone.utc)

    if end < start:
        raise InvalidScopeError(
            f"end ({end.isoformat()}) is before start ({start.isoformat()})"
        )

    collectors = tuple(
        label for label in (clean_label(c) for c in scope.collector_filter) if label is not None
    )
    return ResolvedScope(
        brand_id=brand_id,
        start=start,
        end=end,
        collector_filter=collectors,
        competitor_filter=clean_label(scope.competitor_filter),
    )


# ---------------------------------------------------------------------------
# Row preparation
# ---------------------------------------------------------------------------

def _in_range(row: RawMeasurement, scope: ResolvedScope) -> bool:
    if row.timestamp is None:
        return True
    stamp = _utc(row.timestamp)
    return scope.start <= stamp <= scope.end


def prepare_rows(
    measurements: Iterable[RawMeasurement],
    queries: Sequence[QueryInfo],
    scope: ResolvedScope,
) -> List[RawMeasurement]:
    """Apply the collector filter and date range; fill topic/text from the query catalogue."""
    catalogue = {q.query_id: q for q in queries if clean_label(q.query_id)}
    wanted = {c.casefold() for c in scope.collector_filter}

    rows = []
    for row in measurements:
        if wanted and (clean_label(row.collector_type) or "").casefold() not in wanted:
            continue
        if not _in_range(row, scope):
            continue
        info = catalogue.get(clean_label(row.query_id) or "")
        if info is not None and (clean_label(row.topic) is None or clean_label(row.query_text) is None):
            row = replace(
                row,
                topic=clean_label(row.topic) or clean_label(info.topic),
                query_text=clean_label(row.query_text) or clean_label(info.query_text),
            )
        rows.append(row)
    return rows


# ---------------------------------------------------------------------------
# Citations
# ---------------------------------------------------------------------------

def _citation_topics(rows: Sequence[RawMeasurement], queries: Sequence[QueryInfo]) -> Dict[str, str]:
    """Map ``query:<id>`` / ``response:<id>`` to the topic they belong to."""
    topics: Dict[str, str] = {}
    for info in queries:
        query_id, topic = clean_label(info.query_id), clean_label(info.topic)
        if query_id and topic:
            topics[f"query:{query_id}"] = topic
    for row in rows:
        topic = clean_label(row.topic)
        if topic is None:
            continue
        query_id = clean_label(row.query_id)
        response_id = clean_label(row.collector_response_id)
        if query_id:
            topics.setdefault(f"query:{query_id}", topic)
        if response_id:
            topics.setdefault(f"response:{response_id}", topic)
    return topics


def _usage(citation: Citation) -> int:
    return max(0, int(to_number(citation.usage_count)))


def source_type_entries(citations: Iterable[Citation]) -> List[tuple]:
    """Citation usage summed per source category, in first-seen order."""
    totals: Dict[str, float] = {}
    labels: Dict[str, str] = {}
    for citation in citations:
        count = _usage(citation)
        if count <= 0:
            continue
        raw = clean_label(citation.category) or UNCATEGORIZED_SOURCE
        key = raw.casefold()
        labels.setdefault(key, raw[:1].upper() + raw[1:].replace("_", " ").replace("-", " "))
        totals[key] = totals.get(key, 0.0) + count
    return [(labels[key], value) for key, value in totals.items()]


def top_sources_by_topic(
    citations: Iterable[Citation],
    topic_index: Dict[str, str],
    limit: int,
) -> Dict[str, List[SourceUsage]]:
    usage: Dict[str, Dict[str, int]] = defaultdict(dict)
    for citation in citations:
        domain = clean_label(citation.domain)
        count = _usage(citation)
        if domain is None or count <= 0:
            continue
        topic = None
        query_id = clean_label(citation.query_id)
        response_id = clean_label(citation.collector_response_id)
        if query_id:
            topic = topic_index.get(f"query:{query_id}")
        if topic is None and response_id:
            topic = topic_index.get(f"response:{response_id}")
        if topic is None:
            continue
        per_topic = usage[topic.casefold()]
        per_topic[domain] = per_topic.get(domain, 0) + count

    return {
        topic: [
            SourceUsage(domain=domain, usage=count)
            for domain, count in sorted(domains.items(), key=lambda item: (-item[1], item[0]))[:limit]
        ]
        for topic, domains in usage.items()
    }


# ---------------------------------------------------------------------------
# Rollups
# ---------------------------------------------------------------------------

def _ranked_children(
    children: Dict[str, GroupAccumulator],
    now: datetime,
    cfg: RollupConfig,
    limit: Optional[int] = None,
) -> List[RollupResult]:
    results = [rollup(child, now, dead_band=cfg.trend_dead_band) for child in children.values()]
    if limit is not None:
        # ranked highlights only list topics the subject actually appeared in
        results = [r for r in results if (r.visibility or 0) > 0 or (r.share or 0) > 0 or r.mentions > 0]
    results.sort(key=lambda r: (-(r.visibility or 0.0), -(r.share or 0.0), -r.sample_count, r.label.casefold()))
    return results[:limit] if limit is not None else results


def _universe(scope_group: Optional[GroupAccumulator]) -> float:
    if scope_group is None:
        return 0.0
    return sum(scope_group.share_values) + sum(
        sum(child.share_values) for child in scope_group.competitors.values()
    )


def build_rollups(
    rows: Sequence[RawMeasurement],
    brand_name: str,
    now: datetime,
    cfg: RollupConfig,
    *,
    competitor_filter: Optional[str] = None,
    top_sources: Optional[Dict[str, List[SourceUsage]]] = None,
) -> ReportRollups:
    def aggregate(dimension: Dimension) -> GroupAggregator:
        return GroupAggregator(dimension, brand_name, competitor_filter=competitor_filter).fold_all(rows)

    scope_agg = aggregate(Dimension.SCOPE)
    query_agg = aggregate(Dimension.QUERY)
    topic_agg = aggregate(Dimension.TOPIC)
    collector_agg = aggregate(Dimension.COLLECTOR)
    competitor_agg = aggregate(Dimension.COMPETITOR)

    scope_group = scope_agg.groups.get(SCOPE_KEY)
    universe = _universe(scope_group)
    responses = len(scope_group.response_keys) if scope_group else 0
    dead_band = cfg.trend_dead_band

    if scope_group is not None:
        brand = rollup(scope_group, now, universe_sum=universe, dead_band=dead_band)
        brand_trends = {
            metric: compute_trend(scope_group.samples.get(metric, []), dead_band, now)
            for metric in (SHARE, VISIBILITY, SENTIMENT)
        }
    else:
        brand = RollupResult(
            key="all", label=brand_name, share=None, visibility=None, sentiment=None,
            trend=compute_trend([]), sample_count=0,
        )
        brand_trends = {}

    top_sources = top_sources or {}
    topics = []
    for acc in topic_agg.accumulators():
        competitor_set = None
        if acc.competitors:
            combined = merge(acc.competitors.values(), key=f"{acc.key}:competitors", label=acc.label)
            competitor_set = rollup(combined, now, dead_band=dead_band)
        topics.append(TopicRollup(
            result=rollup(acc, now, dead_band=dead_band),
            competitor_set=competitor_set,
            top_sources=top_sources.get(acc.key, []),
        ))

    queries = [
        QueryRollup(
            result=rollup(acc, now, dead_band=dead_band),
            query_id=acc.query_id,
            query_text=acc.query_text or acc.label,
            topic=acc.topic or UNCATEGORIZED,
            competitors=_ranked_children(acc.competitors, now, cfg),
        )
        for acc in query_agg.accumulators()
    ]

    collectors = []
    for acc in collector_agg.accumulators():
        ranked_topics = _ranked_children(acc.topics, now, cfg, limit=1)
        collectors.append(CollectorRollup(
            result=rollup(acc, now, dead_band=dead_band),
            top_topic=ranked_topics[0].label if ranked_topics else None,
        ))

    competitors = [
        CompetitorRollup(
            result=rollup(acc, now, universe_sum=universe, dead_band=dead_band, response_universe=responses),
            top_topics=_ranked_children(acc.topics, now, cfg, limit=cfg.top_topics_per_competitor),
        )
        for acc in competitor_agg.accumulators()
    ]

    logger.info(
        "Rolled up %d rows for %s: %d topics, %d queries, %d collectors, %d competitors",
        len(rows), brand_name, len(topics), len(queries), len(collectors), len(competitors),
    )
    return ReportRollups(
        brand=brand,
        brand_trends=brand_trends,
        topics=topics,
        queries=queries,
        collectors=collectors,
        competitors=competitors,
    )


def build_distributions(
    rows: Sequence[RawMeasurement],
    citations: Sequence[Citation],
    brand_name: str,
    cfg: RollupConfig,
) -> Dict[str, list]:
    """Source-type (citation usage per category) and category (brand visibility per topic)."""
    topic_agg = GroupAggregator(Dimension.TOPIC, brand_name).fold_all(
        row for row in rows if row.is_brand
    )
    category_entries = [(acc.label, sum(acc.visibility_values)) for acc in topic_agg.accumulators()]
    return {
        SOURCE_TYPE: select_top_n(
            source_type_entries(citations), cfg.top_n, palette=cfg.palette, epsilon=cfg.other_epsilon,
        ),
        CATEGORY: select_top_n(
            category_entries, cfg.top_n, palette=cfg.palette, epsilon=cfg.other_epsilon,
        ),
    }


# ---------------------------------------------------------------------------
# Entry points
# ---------------------------------------------------------------------------

def build_report(
    inputs: ReportInputs,
    scope: ReportScope,
    now: datetime,
    settings: Optional[Settings] = None,
) -> DashboardPayload:
    """
    Run one aggregation pass over fully fetched inputs.

    Absence of rows is not an error: the payload comes back with
    ``has_data=False``, empty tables and null scores.
    """
    settings = settings or get_settings()
    cfg = settings.rollup
    now = _utc(now)
    resolved = resolve_scope(scope, now, cfg.lookback_days)
    brand_name = inputs.brand.name

    rows = prepare_rows(inputs.measurements, inputs.queries, resolved)
    if not rows:
        logger.warning(
            "No measurements for brand %s between %s and %s",
            resolved.brand_id, resolved.start.isoformat(), resolved.end.isoformat(),
        )

    citations = list(inputs.citations)
    topic_index = _citation_topics(rows, inputs.queries)
    top_sources = top_sources_by_topic(citations, topic_index, cfg.top_sources_per_topic)

    rollups = build_rollups(
        rows,
        brand_name,
        now,
        cfg,
        competitor_filter=resolved.competitor_filter,
        top_sources=top_sources,
    )
    distributions = build_distributions(rows, citations, brand_name, cfg)

    known = tuple(
        name for name in (clean_label(c) for c in inputs.competitors)
        if name is not None and name.casefold() != brand_name.strip().casefold()
    )
    metadata = ReportMetadata(
        brand_id=resolved.brand_id,
        brand_name=brand_name,
        start=resolved.start,
        end=resolved.end,
        generated_at=now,
        known_competitors=known,
        collector_filter=resolved.collector_filter,
        competitor_filter=resolved.competitor_filter,
        neutral_sentiment=cfg.neutral_sentiment,
    )
    return assemble(rollups, distributions, metadata)


def generate_report(
    scope: ReportScope,
    now: Optional[datetime] = None,
    source: Any = None,
    settings: Optional[Settings] = None,
) -> DashboardPayload:
    """
    Validate ``scope``, fetch every input collection in parallel and build the
    report.

    Raises:
        InvalidScopeError: before any fetch when the scope is invalid, or
            ``UnknownBrandError`` when the brand does not exist.
        FetchFailedError: when any input collection cannot be supplied.
    """
    from data_pipeline.fetcher import fetch_report_inputs

    settings = settings or get_settings()
    now = _utc(now) if now is not None else datetime.now(timezone.utc)
    resolved = resolve_scope(scope, now, settings.rollup.lookback_days)
    inputs = fetch_report_inputs(resolved, source=source, cfg=settings.fetch)
    return build_report(
        inputs,
        replace(scope, start=resolved.start, end=resolved.end),
        now,
        settings,
    )


def parse_scope_dates(start: Optional[str], end: Optional[str]) -> Dict[str, Optional[datetime]]:
    """
    CLI helper: parse optional dates, rejecting unparsable input.

    A date-only end covers that whole day, so ``--start 2026-03-10 --end
    2026-03-10`` selects everything processed on the 10th.
    """
    parsed: Dict[str, Optional[datetime]] = {}
    for name, raw in (("start", start), ("end", end)):
        if raw is None:
            parsed[name] = None
            continue
        value = parse_timestamp(raw)
        if value is None:
            raise InvalidScopeError(f"Invalid {name} date: {raw!r}")
        if name == "end" and _DATE_ONLY.match(raw):
            value = datetime.combine(value.date(), time.max, tzinfo=timezone.utc)
        parsed[name] = value
    return parsed
