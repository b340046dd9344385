"""
Tabular ingestion and export with pandas.

Offline reports read the same column layout the warehouse exposes, exported
as CSV files in one directory:

    measurements.csv   extracted_positions rows (required)
    citations.csv      domain, category, usage_count, collector_result_id, query_id
    competitors.csv    competitor_name
    queries.csv        id, query_text, topic

and a payload can be flattened back into one DataFrame per section.
"""

from __future__ import annotations

import logging
import os
from typing import Any, Dict, List, Optional

import numpy as np
import pandas as pd

from config.settings import IngestionConfig, get_settings
from data_pipeline.measurement_store import citation_from_row, measurement_from_row, query_from_row
from rollup.models import Brand, Citation, DashboardPayload, QueryInfo, RawMeasurement, ReportInputs
from rollup.normalizer import clean_label

logger = logging.getLogger(__name__)

MEASUREMENTS_FILE = "measurements.csv"
CITATIONS_FILE = "citations.csv"
COMPETITORS_FILE = "competitors.csv"
QUERIES_FILE = "queries.csv"

TABLES = (
    "scores",
    "standings",
    "competitors",
    "topics",
    "queries",
    "collectors",
    "source_distribution",
    "category_distribution",
)


def _records(df: pd.DataFrame) -> List[Dict[str, Any]]:
    """DataFrame rows as dicts with NaN/NaT replaced by None."""
    if df.empty:
        return []
    return df.astype(object).where(df.notna(), None).to_dict("records")


def measurements_from_frame(df: pd.DataFrame, ingestion: Optional[IngestionConfig] = None) -> List[RawMeasurement]:
    ingestion = ingestion or get_settings().ingestion
    return [measurement_from_row(row, ingestion) for row in _records(df)]


def citations_from_frame(df: pd.DataFrame) -> List[Citation]:
    return [citation_from_row(row) for row in _records(df)]


def queries_from_frame(df: pd.DataFrame) -> List[QueryInfo]:
    return [q for q in (query_from_row(row) for row in _records(df)) if q.query_id]


def competitors_from_frame(df: pd.DataFrame) -> List[str]:
    if df.empty or "competitor_name" not in df.columns:
        return []
    names = (clean_label(name) for name in df["competitor_name"].tolist())
    return list(dict.fromkeys(name for name in names if name))


def _read_optional(directory: str, name: str) -> pd.DataFrame:
    path = os.path.join(directory, name)
    if not os.path.exists(path):
        logger.info("No %s in %s, treating as empty", name, directory)
        return pd.DataFrame()
    return pd.read_csv(path, dtype=str, keep_default_na=True)


def read_report_inputs(
    directory: str,
    brand_id: str,
    brand_name: Optional[str] = None,
    ingestion: Optional[IngestionConfig] = None,
) -> ReportInputs:
    """
    Load report inputs from a directory of CSV exports.

    ``brand_name`` defaults to the first ``brand_name`` found on a brand row.
    """
    path = os.path.join(directory, MEASUREMENTS_FILE)
    if not os.path.exists(path):
        raise FileNotFoundError(f"{MEASUREMENTS_FILE} not found in {directory}")

    frame = pd.read_csv(path, dtype=str, keep_default_na=True)
    measurements = measurements_from_frame(frame, ingestion)
    if brand_name is None:
        brand_name = next((m.subject_name for m in measurements if m.is_brand and m.subject_name), brand_id)

    inputs = ReportInputs(
        brand=Brand(brand_id=brand_id, name=brand_name),
        measurements=measurements,
        citations=citations_from_frame(_read_optional(directory, CITATIONS_FILE)),
        competitors=competitors_from_frame(_read_optional(directory, COMPETITORS_FILE)),
        queries=queries_from_frame(_read_optional(directory, QUERIES_FILE)),
    )
    logger.info(
        "Loaded %d measurements and %d citations from %s",
        len(inputs.measurements), len(inputs.citations), directory,
    )
    return inputs


# ---------------------------------------------------------------------------
# Export
# ---------------------------------------------------------------------------

def _flatten(value: Any) -> Any:
    if isinstance(value, list):
        if value and all(isinstance(item, dict) for item in value):
            # nested rows, e.g. per-query competitor cells or top sources
            return "; ".join(
                " ".join(str(v) for v in item.values() if v is not None) for item in value
            )
        return ", ".join(str(item) for item in value)
    return value


def payload_tables(payload: DashboardPayload) -> Dict[str, pd.DataFrame]:
    """One DataFrame per payload section; nested trend fields become ``trend_*`` columns."""
    data = payload.as_dict()
    tables: Dict[str, pd.DataFrame] = {}
    for name in TABLES:
        rows = [{key: _flatten(value) for key, value in row.items()} for row in data.get(name, [])]
        frame = pd.json_normalize(rows, sep="_") if rows else pd.DataFrame()
        tables[name] = frame.replace({np.nan: None})
    return tables


def export_tables(payload: DashboardPayload, directory: str) -> List[str]:
    """Write every non-empty payload table as ``<section>.csv``; return the paths."""
    os.makedirs(directory, exist_ok=True)
    written = []
    for name, frame in payload_tables(payload).items():
        if frame.empty:
            continue
        out_path = os.path.join(directory, f"{name}.csv")
        frame.to_csv(out_path, index=False)
        written.append(out_path)
    logger.info("Exported %d tables to %s", len(written), directory)
    return written
