"""
Tests for pandas ingestion and payload export.
"""

from __future__ import annotations

import os
from datetime import datetime, timezone

import numpy as np
import pandas as pd
import pytest

from config.settings import IngestionConfig, Settings
from rollup.engine import build_report
from rollup.frames import (
    competitors_from_frame,
    export_tables,
    measurements_from_frame,
    payload_tables,
    read_report_inputs,
)
from rollup.models import Brand, ReportInputs, ReportScope, SubjectKind

NOW = datetime(2026, 3, 31, 12, tzinfo=timezone.utc)
INGESTION = IngestionConfig(share_scale="percent", visibility_scale="fraction", sentiment_scale="bipolar")


def _measurements_frame():
    return pd.DataFrame(
        {
            "collector_result_id": ["r1", "r2", "r1"],
            "query_id": ["q1", "q1", "q1"],
            "collector_type": ["ChatGPT", "Claude", "ChatGPT"],
            "topic": ["Pricing", "Pricing", "Pricing"],
            "processed_at": ["2026-03-10T09:00:00Z", "2026-03-20T09:00:00Z", "2026-03-10T09:00:00Z"],
            "brand_name": ["Acme", "Acme", "Acme"],
            "competitor_name": [np.nan, np.nan, "Globex"],
            "share_of_answers_brand": ["40", "60", np.nan],
            "share_of_answers_competitor": [np.nan, np.nan, "30"],
            "visibility_index": ["0.5", "0.7", np.nan],
            "visibility_index_competitor": [np.nan, np.nan, "0.4"],
            "sentiment_score": [np.nan, np.nan, np.nan],
            "sentiment_score_competitor": [np.nan, np.nan, np.nan],
        }
    )


class TestIngestion:
    def test_measurements_from_frame(self):
        rows = measurements_from_frame(_measurements_frame(), INGESTION)
        assert [m.subject_kind for m in rows] == [SubjectKind.BRAND, SubjectKind.BRAND, SubjectKind.COMPETITOR]
        assert rows[0].sentiment_value is None
        assert rows[2].subject_name == "Globex"
        assert rows[0].timestamp == datetime(2026, 3, 10, 9, tzinfo=timezone.utc)

    def test_export_timestamps_respect_date_range(self):
        frame = _measurements_frame()
        frame["processed_at"] = ["2026-03-10 09:00:00 UTC", "02/20/2026 09:00", "2026-03-10 09:00:00 UTC"]
        rows = measurements_from_frame(frame, INGESTION)
        assert rows[1].timestamp == datetime(2026, 2, 20, 9, tzinfo=timezone.utc)

        inputs = ReportInputs(brand=Brand("b1", "Acme"), measurements=rows)
        scope = ReportScope(brand_id="b1", start=datetime(2026, 3, 1, tzinfo=timezone.utc))
        payload = build_report(inputs, scope, NOW, Settings())
        scores = {s.key: s.value for s in payload.scores}
        assert scores["share_of_answers"] == 40.0

    def test_empty_frame(self):
        assert measurements_from_frame(pd.DataFrame(), INGESTION) == []

    def test_competitors_deduplicated(self):
        frame = pd.DataFrame({"competitor_name": ["Globex", " Globex ", np.nan, "Initech"]})
        assert competitors_from_frame(frame) == ["Globex", "Initech"]

    def test_read_report_inputs(self, tmp_path):
        _measurements_frame().to_csv(tmp_path / "measurements.csv", index=False)
        pd.DataFrame({"competitor_name": ["Globex", "Initech"]}).to_csv(tmp_path / "competitors.csv", index=False)

        inputs = read_report_inputs(str(tmp_path), "b1", ingestion=INGESTION)
        assert inputs.brand.name == "Acme"
        assert len(inputs.measurements) == 3
        assert inputs.citations == []
        assert inputs.competitors == ["Globex", "Initech"]

        payload = build_report(inputs, ReportScope(brand_id="b1"), NOW, Settings())
        scores = {s.key: s.value for s in payload.scores}
        assert scores["share_of_answers"] == 50.0
        assert scores["visibility"] == 60.0

    def test_missing_measurements_file(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            read_report_inputs(str(tmp_path), "b1")


class TestExport:
    @pytest.fixture
    def payload(self):
        frame = _measurements_frame()
        inputs = ReportInputs(
            brand=Brand("b1", "Acme"),
            measurements=measurements_from_frame(frame, INGESTION),
            competitors=["Globex", "Initech"],
        )
        return build_report(inputs, ReportScope(brand_id="b1"), NOW, Settings())

    def test_payload_tables(self, payload):
        tables = payload_tables(payload)
        standings = tables["standings"]
        assert list(standings["entity"]) == ["Acme", "Globex", "Initech"]
        assert list(standings["rank"]) == [1, 2, 3]
        assert "trend_direction" in tables["topics"].columns
        assert tables["topics"].loc[0, "collectors"] == "ChatGPT, Claude"
        assert tables["source_distribution"].empty

    def test_export_tables(self, payload, tmp_path):
        written = export_tables(payload, str(tmp_path / "out"))
        names = sorted(os.path.basename(path) for path in written)
        assert "standings.csv" in names
        assert "source_distribution.csv" not in names
        reloaded = pd.read_csv(tmp_path / "out" / "competitors.csv")
        assert list(reloaded["competitor"]) == ["Globex", "Initech"]
