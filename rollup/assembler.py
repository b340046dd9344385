"""
ResponseAssembler: composes rollups and distributions into the final payload.

Pure composition: field mapping, default substitution for absent optional
fields (a known competitor with no rows reports zero mentions/share) and final
ordering for stable presentation.  Nothing is recomputed here.

Every table is ordered descending by its primary metric (share of answers),
``None`` last, with an alphabetical tie-break.
"""

from __future__ import annotations

from typing import Dict, Iterable, List, Optional, Sequence, Tuple

from rollup.aggregator import SENTIMENT, SHARE, VISIBILITY
from rollup.models import (
    CollectorRollup,
    CollectorRow,
    CompetitorCell,
    CompetitorRollup,
    CompetitorRow,
    DashboardPayload,
    DistributionSlice,
    QueryRollup,
    QueryRow,
    ReportMetadata,
    ReportRollups,
    RollupResult,
    ScoreCard,
    Standing,
    TopicRollup,
    TopicRow,
    TopicSignal,
    Trend,
)
from rollup.normalizer import truncate_label

SOURCE_TYPE = "source_type"
CATEGORY = "category"
ALL_COMPETITORS = "All competitors"

COLLECTOR_COLORS: Dict[str, str] = {
    "chatgpt": "#0ea5e9",
    "openai-chatgpt": "#0ea5e9",
    "claude": "#6366f1",
    "anthropic": "#6366f1",
    "gemini": "#a855f7",
    "perplexity": "#f97316",
    "deepseek": "#10b981",
    "bing copilot": "#4b5563",
    "bing_copilot": "#4b5563",
    "google aio": "#06b6d4",
    "google_aio": "#06b6d4",
    "grok": "#f43f5e",
    "default": "#64748b",
}


def collector_color(collector: str) -> str:
    normalized = collector.strip().lower()
    prefix = normalized.replace(".", "_").replace("-", "_").split("_")[0]
    return (
        COLLECTOR_COLORS.get(normalized)
        or COLLECTOR_COLORS.get(prefix)
        or COLLECTOR_COLORS["default"]
    )


def _order(metric: Optional[float], label: str) -> Tuple[bool, float, str]:
    return (metric is None, -(metric or 0.0), label.casefold())


def _or_zero(value: Optional[float]) -> float:
    return 0.0 if value is None else value


def _wanted_competitors(metadata: ReportMetadata) -> List[str]:
    """Known competitors to zero-fill, honouring a competitor filter."""
    if metadata.competitor_filter:
        wanted = metadata.competitor_filter.strip().casefold()
        return [name for name in metadata.known_competitors if name.strip().casefold() == wanted]
    return list(metadata.known_competitors)


def _missing(seen: Iterable[str], known: Sequence[str]) -> List[str]:
    seen_keys = {name.strip().casefold() for name in seen}
    missing = []
    for name in known:
        key = name.strip().casefold()
        if key and key not in seen_keys:
            seen_keys.add(key)
            missing.append(name)
    return missing


# ---------------------------------------------------------------------------
# Sections
# ---------------------------------------------------------------------------

def build_scores(rollups: ReportRollups, metadata: ReportMetadata) -> List[ScoreCard]:
    brand = rollups.brand
    trends = rollups.brand_trends
    sentiment = brand.sentiment
    if sentiment is None and brand.sample_count > 0:
        sentiment = metadata.neutral_sentiment
    return [
        ScoreCard("visibility", "Visibility Index", brand.visibility, trends.get(VISIBILITY, Trend())),
        ScoreCard("share_of_answers", "Share of Answers", brand.share, trends.get(SHARE, Trend())),
        ScoreCard("sentiment", "Sentiment Score", sentiment, trends.get(SENTIMENT, Trend())),
        ScoreCard("brand_presence", "Brand Presence", brand.presence_rate),
    ]


def build_standings(rollups: ReportRollups, metadata: ReportMetadata) -> List[Standing]:
    entries = [
        (metadata.brand_name, True, rollups.brand),
    ] + [
        (comp.result.label, False, comp.result) for comp in rollups.competitors
    ]
    rows = [
        (entity, is_brand, result.mentions, _or_zero(result.share), _or_zero(result.share_of_universe),
         _or_zero(result.visibility), result.sentiment)
        for entity, is_brand, result in entries
    ]
    seen = [entity for entity, *_ in rows]
    rows += [(name, False, 0, 0.0, 0.0, 0.0, None) for name in _missing(seen, _wanted_competitors(metadata))]
    rows.sort(key=lambda row: _order(row[3], row[0]))
    return [
        Standing(
            entity=entity,
            is_brand=is_brand,
            rank=rank,
            mentions=mentions,
            share=share,
            share_of_universe=universe,
            visibility=visibility,
            sentiment=sentiment,
        )
        for rank, (entity, is_brand, mentions, share, universe, visibility, sentiment) in enumerate(rows, start=1)
    ]


def _topic_signal(result: RollupResult) -> TopicSignal:
    return TopicSignal(
        topic=truncate_label(result.label, 64),
        share=_or_zero(result.share),
        visibility=_or_zero(result.visibility),
        mentions=result.mentions,
        occurrences=result.sample_count,
    )


def build_competitor_rows(
    competitors: Sequence[CompetitorRollup],
    metadata: ReportMetadata,
) -> List[CompetitorRow]:
    rows = [
        CompetitorRow(
            competitor=comp.result.label,
            mentions=comp.result.mentions,
            share=_or_zero(comp.result.share),
            visibility=_or_zero(comp.result.visibility),
            sentiment=comp.result.sentiment,
            presence_rate=_or_zero(comp.result.presence_rate),
            share_of_universe=_or_zero(comp.result.share_of_universe),
            trend=comp.result.trend,
            collectors=comp.result.collectors,
            top_topics=tuple(_topic_signal(topic) for topic in comp.top_topics),
        )
        for comp in competitors
    ]
    for name in _missing([row.competitor for row in rows], _wanted_competitors(metadata)):
        rows.append(CompetitorRow(
            competitor=name,
            mentions=0,
            share=0.0,
            visibility=0.0,
            sentiment=None,
            presence_rate=0.0,
            share_of_universe=0.0,
            trend=Trend(),
        ))
    rows.sort(key=lambda row: _order(row.share, row.competitor))
    return rows


def build_topic_rows(topics: Sequence[TopicRollup], metadata: ReportMetadata) -> List[TopicRow]:
    competitor_label = metadata.competitor_filter.strip() if metadata.competitor_filter else ALL_COMPETITORS
    rows = []
    for topic in topics:
        result, competitor_set = topic.result, topic.competitor_set
        rows.append(TopicRow(
            topic=result.label,
            share=result.share,
            visibility=result.visibility,
            sentiment=result.sentiment,
            trend=result.trend,
            collectors=result.collectors,
            top_sources=tuple(topic.top_sources),
            query_count=result.query_count,
            sample_count=result.sample_count,
            mentions=result.mentions,
            competitor_label=competitor_label,
            competitor_share=competitor_set.share if competitor_set else None,
            competitor_visibility=competitor_set.visibility if competitor_set else None,
            competitor_sentiment=competitor_set.sentiment if competitor_set else None,
        ))
    rows.sort(key=lambda row: _order(row.share, row.topic))
    return rows


def build_query_rows(queries: Sequence[QueryRollup], metadata: ReportMetadata) -> List[QueryRow]:
    wanted = _wanted_competitors(metadata)
    rows = []
    for query in queries:
        cells = [
            CompetitorCell(
                competitor=comp.label,
                share=_or_zero(comp.share),
                visibility=_or_zero(comp.visibility),
                sentiment=comp.sentiment,
            )
            for comp in query.competitors
        ]
        cells += [
            CompetitorCell(competitor=name, share=0.0, visibility=0.0, sentiment=None)
            for name in _missing([cell.competitor for cell in cells], wanted)
        ]
        cells.sort(key=lambda cell: _order(cell.share, cell.competitor))
        result = query.result
        rows.append(QueryRow(
            query_key=result.key,
            query_id=query.query_id,
            query_text=query.query_text or result.label,
            topic=query.topic,
            brand_share=result.share,
            brand_visibility=result.visibility,
            brand_sentiment=result.sentiment,
            trend=result.trend,
            collectors=result.collectors,
            competitors=tuple(cells),
        ))
    rows.sort(key=lambda row: _order(row.brand_share, row.query_text))
    return rows


def build_collector_rows(collectors: Sequence[CollectorRollup]) -> List[CollectorRow]:
    rows = [
        CollectorRow(
            collector=item.result.label,
            color=collector_color(item.result.label),
            share=item.result.share,
            visibility=item.result.visibility,
            sentiment=item.result.sentiment,
            trend=item.result.trend,
            mentions=item.result.mentions,
            presence_rate=item.result.presence_rate,
            top_topic=item.top_topic,
        )
        for item in collectors
    ]
    rows.sort(key=lambda row: _order(row.share, row.collector))
    return rows


# ---------------------------------------------------------------------------
# Entry point
# ---------------------------------------------------------------------------

def assemble(
    rollups: ReportRollups,
    distributions: Dict[str, Sequence[DistributionSlice]],
    metadata: ReportMetadata,
) -> DashboardPayload:
    """Compose the final payload; an empty scope yields empty tables."""
    has_data = rollups.brand.sample_count > 0 or bool(rollups.competitors)
    if has_data:
        standings = build_standings(rollups, metadata)
        competitors = build_competitor_rows(rollups.competitors, metadata)
    else:
        standings, competitors = [], []

    return DashboardPayload(
        brand_id=metadata.brand_id,
        brand_name=metadata.brand_name,
        start=metadata.start,
        end=metadata.end,
        generated_at=metadata.generated_at,
        has_data=has_data,
        scores=tuple(build_scores(rollups, metadata)),
        standings=tuple(standings),
        competitors=tuple(competitors),
        topics=tuple(build_topic_rows(rollups.topics, metadata)),
        queries=tuple(build_query_rows(rollups.queries, metadata)),
        collectors=tuple(build_collector_rows(rollups.collectors)),
        source_distribution=tuple(distributions.get(SOURCE_TYPE, ())),
        category_distribution=tuple(distributions.get(CATEGORY, ())),
        collector_filter=metadata.collector_filter,
        competitor_filter=metadata.competitor_filter,
    )
