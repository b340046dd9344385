"""
Measurement store: reads the stored per-response measurements, citations,
competitors and query catalogue for one brand, and maps warehouse rows onto
the typed records the rollup engine consumes.

Every stored numeric column has one known scale (see ``IngestionConfig``);
the tag is attached here, once, and never inferred from magnitude later.
"""

from __future__ import annotations

import logging
from typing import Any, List, Mapping, Optional

from config.settings import IngestionConfig, get_settings
from data_pipeline.database import fetch_all, fetch_one
from rollup.models import (
    Brand,
    Citation,
    QueryInfo,
    RawMeasurement,
    ResolvedScope,
    Scale,
    SubjectKind,
)
from rollup.normalizer import clean_label, coerce_scale, parse_timestamp

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Row mapping
# ---------------------------------------------------------------------------

def measurement_from_row(row: Mapping[str, Any], ingestion: Optional[IngestionConfig] = None) -> RawMeasurement:
    """
    Map one ``extracted_positions`` row to a ``RawMeasurement``.

    A row with an empty competitor name is a brand row and reads the
    ``*_brand`` / unsuffixed columns; any other row is a competitor row and
    reads the ``*_competitor`` columns.
    """
    cfg = ingestion or get_settings().ingestion
    competitor = clean_label(row.get("competitor_name"))
    share_scale = coerce_scale(cfg.share_scale, Scale.PERCENT)
    visibility_scale = coerce_scale(cfg.visibility_scale, Scale.FRACTION)
    sentiment_scale = coerce_scale(cfg.sentiment_scale, Scale.BIPOLAR)

    common = dict(
        collector_type=clean_label(row.get("collector_type")) or "",
        query_id=clean_label(row.get("query_id")),
        collector_response_id=clean_label(row.get("collector_result_id")),
        topic=clean_label(row.get("topic")),
        query_text=clean_label(row.get("query_text")),
        share_scale=share_scale,
        visibility_scale=visibility_scale,
        sentiment_scale=sentiment_scale,
        timestamp=parse_timestamp(row.get("processed_at")),
    )

    if competitor is None:
        return RawMeasurement(
            subject_kind=SubjectKind.BRAND,
            subject_name=clean_label(row.get("brand_name")) or "",
            share_value=row.get("share_of_answers_brand"),
            visibility_value=row.get("visibility_index"),
            sentiment_value=row.get("sentiment_score"),
            mention_count=row.get("total_brand_mentions"),
            **common,
        )
    return RawMeasurement(
        subject_kind=SubjectKind.COMPETITOR,
        subject_name=competitor,
        share_value=row.get("share_of_answers_competitor"),
        visibility_value=row.get("visibility_index_competitor"),
        sentiment_value=row.get("sentiment_score_competitor"),
        mention_count=row.get("competitor_mentions"),
        **common,
    )


def citation_from_row(row: Mapping[str, Any]) -> Citation:
    return Citation(
        domain=clean_label(row.get("domain")) or "",
        category=clean_label(row.get("category")),
        usage_count=row.get("usage_count"),
        query_id=clean_label(row.get("query_id")),
        collector_response_id=clean_label(row.get("collector_result_id")),
    )


def query_from_row(row: Mapping[str, Any]) -> QueryInfo:
    return QueryInfo(
        query_id=clean_label(row.get("id")) or "",
        query_text=clean_label(row.get("query_text")) or "",
        topic=clean_label(row.get("topic")),
    )


# ---------------------------------------------------------------------------
# Reads
# ---------------------------------------------------------------------------

def fetch_brand(brand_id: str) -> Optional[Brand]:
    """Return the brand, or None when it does not exist."""
    row = fetch_one("SELECT id, name FROM brands WHERE id = %s", (brand_id,))
    if row is None:
        return None
    return Brand(brand_id=str(row["id"]), name=clean_label(row["name"]) or "")


def fetch_measurements(scope: ResolvedScope) -> List[RawMeasurement]:
    """Brand and competitor measurements processed inside the scope window."""
    sql = """
        SELECT ep.collector_result_id, ep.query_id, ep.collector_type, ep.topic,
               ep.processed_at, ep.brand_name, ep.competitor_name,
               ep.share_of_answers_brand, ep.share_of_answers_competitor,
               ep.visibility_index, ep.visibility_index_competitor,
               ep.sentiment_score, ep.sentiment_score_competitor,
               ep.total_brand_mentions, ep.competitor_mentions,
               gq.query_text
        FROM extracted_positions ep
        LEFT JOIN generated_queries gq ON gq.id = ep.query_id
        WHERE ep.brand_id = %s
          AND ep.processed_at >= %s
          AND ep.processed_at <= %s
    """
    params: List[Any] = [scope.brand_id, scope.start, scope.end]
    if scope.collector_filter:
        sql += " AND ep.collector_type = ANY(%s)"
        params.append(list(scope.collector_filter))
    sql += " ORDER BY ep.processed_at, ep.collector_result_id"

    ingestion = get_settings().ingestion
    rows = [measurement_from_row(row, ingestion) for row in fetch_all(sql, params)]
    logger.info("Fetched %d measurements for brand %s", len(rows), scope.brand_id)
    return rows


def fetch_citations(scope: ResolvedScope) -> List[Citation]:
    rows = fetch_all(
        """
        SELECT c.domain, c.category, c.usage_count,
               c.collector_result_id, c.query_id
        FROM citations c
        WHERE c.brand_id = %s
          AND c.created_at >= %s
          AND c.created_at <= %s
        """,
        (scope.brand_id, scope.start, scope.end),
    )
    return [citation_from_row(row) for row in rows]


def fetch_competitors(scope: ResolvedScope) -> List[str]:
    """Names of the competitors configured for the brand."""
    rows = fetch_all(
        "SELECT competitor_name FROM brand_competitors WHERE brand_id = %s ORDER BY priority NULLS LAST, competitor_name",
        (scope.brand_id,),
    )
    return [name for name in (clean_label(row["competitor_name"]) for row in rows) if name]


def fetch_queries(scope: ResolvedScope) -> List[QueryInfo]:
    """The brand's query catalogue, used to attach topic and text to rows."""
    rows = fetch_all(
        "SELECT id, query_text, topic FROM generated_queries WHERE brand_id = %s",
        (scope.brand_id,),
    )
    return [query_from_row(row) for row in rows]
