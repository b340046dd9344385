"""
Unit tests for aggregation key resolution.
"""

from __future__ import annotations

from datetime import datetime, timezone

from rollup.keys import KEY_PRECEDENCE, KeyResolver
from rollup.models import RawMeasurement, SubjectKind


def _row(query_id=None, response_id=None, collector="ChatGPT", ts=None):
    return RawMeasurement(
        subject_kind=SubjectKind.BRAND,
        subject_name="Acme",
        collector_type=collector,
        query_id=query_id,
        collector_response_id=response_id,
        timestamp=ts,
    )


class TestResolveKey:
    def test_query_id_wins(self):
        assert KeyResolver().resolve_key(_row("q1", "r1")) == "query:q1"

    def test_response_id_fallback(self):
        assert KeyResolver().resolve_key(_row(None, "r1")) == "response:r1"

    def test_blank_query_id_is_absent(self):
        assert KeyResolver().resolve_key(_row("   ", "r1")) == "response:r1"

    def test_synthetic_keys_are_unique_per_row(self):
        resolver = KeyResolver()
        assert resolver.resolve_key(_row()) == "row:1"
        assert resolver.resolve_key(_row()) == "row:2"

    def test_synthetic_counter_is_per_resolver(self):
        KeyResolver().resolve_key(_row())
        assert KeyResolver().resolve_key(_row()) == "row:1"

    def test_same_query_different_responses_share_a_key(self):
        resolver = KeyResolver()
        keys = {resolver.resolve_key(_row("q1", f"r{i}", collector=c)) for i, c in enumerate(["A", "B", "C"])}
        assert keys == {"query:q1"}

    def test_precedence_order(self):
        assert [prefix for prefix, _ in KEY_PRECEDENCE] == ["query", "response"]


class TestResponseKey:
    def test_response_id(self):
        assert KeyResolver().response_key(_row("q1", "r9")) == "response:r9"

    def test_query_collector_timestamp(self):
        ts = datetime(2026, 1, 5, 10, tzinfo=timezone.utc)
        key = KeyResolver().response_key(_row("q1", collector=" ChatGPT ", ts=ts))
        assert key == "query:q1|chatgpt|2026-01-05T10:00:00+00:00"

    def test_synthetic_when_nothing_identifies_the_row(self):
        assert KeyResolver().response_key(_row()).startswith("row:")
