"""
Unit tests for field normalisation.
"""

from __future__ import annotations

import math
from datetime import datetime, timedelta, timezone
from decimal import Decimal

import numpy as np
import pandas as pd
import pytest

from rollup.models import Scale
from rollup.normalizer import (
    clean_label,
    normalize_fraction,
    normalize_sentiment,
    parse_timestamp,
    round_half_away,
    sentiment_to_percent,
    to_number,
    to_optional_number,
    truncate_label,
)


class TestToNumber:
    @pytest.mark.parametrize(
        "raw, expected",
        [
            ("42", 42.0),
            ("1,234.5", 1234.5),
            (" 37 % ", 37.0),
            (7, 7.0),
            (0.25, 0.25),
            (np.float64(0.5), 0.5),
            (np.int64(3), 3.0),
            (Decimal("0.125"), 0.125),
        ],
    )
    def test_parses(self, raw, expected):
        assert to_optional_number(raw) == pytest.approx(expected)

    @pytest.mark.parametrize("raw", [None, "", "   ", "n/a", "abc", True, float("nan"), float("inf"), [1]])
    def test_absent_or_garbage_is_none(self, raw):
        assert to_optional_number(raw) is None

    def test_to_number_default(self):
        assert to_number("garbage") == 0.0
        assert to_number(None, default=-1.0) == -1.0
        assert to_number("12%") == 12.0


class TestNormalizeFraction:
    def test_fraction_passthrough(self):
        assert normalize_fraction(0.4) == pytest.approx(0.4)

    def test_percent_tag_divides(self):
        assert normalize_fraction("37", Scale.PERCENT) == pytest.approx(0.37)
        assert normalize_fraction(37, "percent") == pytest.approx(0.37)

    def test_fraction_tag_never_reinterprets_magnitude(self):
        # 37 tagged as a fraction is out of range, not 37 %
        assert normalize_fraction(37, Scale.FRACTION) == 1.0

    def test_clamped_to_unit_interval(self):
        assert normalize_fraction(-5, Scale.PERCENT) == 0.0
        assert normalize_fraction(250, Scale.PERCENT) == 1.0

    def test_absent_stays_absent(self):
        assert normalize_fraction(None) is None
        assert normalize_fraction("", Scale.PERCENT) is None


class TestSentiment:
    def test_bipolar_row(self):
        assert sentiment_to_percent(0.5) == pytest.approx(75.0)
        assert sentiment_to_percent(-1) == 0.0
        assert sentiment_to_percent(1) == 100.0

    def test_bipolar_clamped(self):
        assert sentiment_to_percent(-2) == 0.0
        assert sentiment_to_percent(3) == 100.0

    def test_percent_row(self):
        assert sentiment_to_percent(80, Scale.PERCENT) == 80.0
        assert sentiment_to_percent(140, Scale.PERCENT) == 100.0

    def test_missing_row_sentiment_is_not_synthesised(self):
        assert sentiment_to_percent(None) is None

    def test_normalize_empty_is_neutral(self):
        assert normalize_sentiment([]) == 50.0
        assert normalize_sentiment([None, "x"]) == 50.0

    @pytest.mark.parametrize("x", [-1.0, -0.3, 0.0, 0.2, 0.9, 1.0])
    def test_normalize_single_value(self, x):
        assert normalize_sentiment([x]) == pytest.approx(((x + 1) / 2) * 100)

    def test_normalize_averages_before_mapping(self):
        assert normalize_sentiment([1, -1]) == pytest.approx(50.0)
        assert normalize_sentiment(["0.5", 0.5]) == pytest.approx(75.0)


class TestRoundHalfAway:
    @pytest.mark.parametrize(
        "value, expected",
        [
            (0.15, 0.2),
            (2.25, 2.3),
            (-0.05, -0.1),
            (59.99999999999999, 60.0),
            (12.34, 12.3),
            (0.04, 0.0),
        ],
    )
    def test_rounding(self, value, expected):
        assert round_half_away(value) == expected

    def test_none_passthrough(self):
        assert round_half_away(None) is None

    def test_no_negative_zero(self):
        result = round_half_away(-0.04)
        assert result == 0.0
        assert math.copysign(1.0, result) == 1.0

    def test_precision(self):
        assert round_half_away(1.005, 2) == 1.01


class TestParseTimestamp:
    def test_zulu_string(self):
        assert parse_timestamp("2026-01-05T10:00:00Z") == datetime(2026, 1, 5, 10, tzinfo=timezone.utc)

    def test_offset_string_converted_to_utc(self):
        parsed = parse_timestamp("2026-01-05T12:00:00+02:00")
        assert parsed == datetime(2026, 1, 5, 10, tzinfo=timezone.utc)
        assert parsed.utcoffset() == timedelta(0)

    def test_naive_datetime_assumed_utc(self):
        assert parse_timestamp(datetime(2026, 1, 5)).tzinfo == timezone.utc

    def test_pandas_timestamp(self):
        assert parse_timestamp(pd.Timestamp("2026-01-05 10:00")) == datetime(2026, 1, 5, 10, tzinfo=timezone.utc)

    @pytest.mark.parametrize("raw", ["2026-03-10 09:00:00 UTC", "03/10/2026 09:00", "2026-03-10 09:00:00"])
    def test_export_formats(self, raw):
        assert parse_timestamp(raw) == datetime(2026, 3, 10, 9, tzinfo=timezone.utc)

    @pytest.mark.parametrize("raw", [None, "", "yesterday", pd.NaT, float("nan"), 12345])
    def test_unparsable(self, raw):
        assert parse_timestamp(raw) is None


class TestLabels:
    def test_clean_label(self):
        assert clean_label("  Pricing ") == "Pricing"
        assert clean_label("   ") is None
        assert clean_label(None) is None
        assert clean_label(float("nan")) is None

    def test_truncate_label(self):
        label = "x" * 60
        truncated = truncate_label(label)
        assert len(truncated) == 52
        assert truncated.endswith("…")
        assert truncate_label("short") == "short"
