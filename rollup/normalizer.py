"""
Normalizer: converts heterogeneous raw fields into canonical numerics.

Raw rows arrive as strings, numbers, numpy scalars or nulls, and each numeric
field carries an explicit ``Scale`` tag set at ingestion:

    fraction   0..1     (canonical internal form for share / visibility)
    percent    0..100
    bipolar    -1..1    (sentiment only)

Nothing in this module raises on bad input.  A malformed value degrades to
``0.0`` (``to_number``) or to ``None`` (``to_optional_number``) so that one
broken row never aborts a whole aggregation pass.

Share and visibility are held internally as fractions and only multiplied by
100 when a percentage-facing metric is assembled.  Sentiment is held per row
on the canonical 0–100 scale.
"""

from __future__ import annotations

import logging
import math
import re
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Iterable, Optional

import numpy as np
import pandas as pd

from rollup.models import Scale

logger = logging.getLogger(__name__)

_STRIP_CHARS = re.compile(r"[,%\s]")

NEUTRAL_SENTIMENT = 50.0


def coerce_scale(scale: Any, default: Scale) -> Scale:
    if isinstance(scale, Scale):
        return scale
    try:
        return Scale(str(scale).strip().lower())
    except ValueError:
        logger.debug("Unknown scale tag %r, using %s", scale, default.value)
        return default


def to_optional_number(raw: Any) -> Optional[float]:
    """Parse ``raw`` into a finite float, or ``None`` when absent/unparsable."""
    if raw is None or isinstance(raw, bool):
        return None
    if isinstance(raw, (np.integer, int)):
        return float(raw)
    if isinstance(raw, (np.floating, float, Decimal)):
        value = float(raw)
        return value if math.isfinite(value) else None
    if isinstance(raw, str):
        sanitized = _STRIP_CHARS.sub("", raw)
        if not sanitized:
            return None
        try:
            value = float(sanitized)
        except ValueError:
            logger.debug("Unparsable numeric field %r", raw)
            return None
        return value if math.isfinite(value) else None
    logger.debug("Unsupported numeric field type %s", type(raw).__name__)
    return None


def to_number(raw: Any, default: float = 0.0) -> float:
    """Like ``to_optional_number`` but degrades to ``default`` instead of None."""
    value = to_optional_number(raw)
    return default if value is None else value


def clamp(value: float, low: float, high: float) -> float:
    return min(high, max(low, value))


def normalize_fraction(raw: Any, scale: Any = Scale.FRACTION) -> Optional[float]:
    """
    Convert a share/visibility field to the canonical 0..1 fraction.

    The scale is never inferred from magnitude: a fraction-tagged ``37`` is
    clamped to ``1.0`` rather than being read as 37 %.
    """
    value = to_optional_number(raw)
    if value is None:
        return None
    if coerce_scale(scale, Scale.FRACTION) == Scale.PERCENT:
        value = value / 100.0
    return clamp(value, 0.0, 1.0)


def sentiment_to_percent(raw: Any, scale: Any = Scale.BIPOLAR) -> Optional[float]:
    """
    Map one row's sentiment onto 0–100.  Absent input stays absent; a
    per-row sentiment is never synthesised.
    """
    value = to_optional_number(raw)
    if value is None:
        return None
    if coerce_scale(scale, Scale.BIPOLAR) == Scale.PERCENT:
        return clamp(value, 0.0, 100.0)
    return clamp(((value + 1.0) / 2.0) * 100.0, 0.0, 100.0)


def normalize_sentiment(values: Iterable[Any], default: float = NEUTRAL_SENTIMENT) -> float:
    """
    Average a list of bipolar (-1..1) sentiment values and map to 0–100.

    Used where an aggregate is required; an empty list yields the neutral
    ``default``.
    """
    parsed = [v for v in (to_optional_number(raw) for raw in values) if v is not None]
    if not parsed:
        return default
    avg_raw = sum(parsed) / len(parsed)
    return clamp(((avg_raw + 1.0) / 2.0) * 100.0, 0.0, 100.0)


def round_half_away(value: Optional[float], precision: int = 1) -> Optional[float]:
    """Round half away from zero.  Only applied at the output boundary."""
    if value is None:
        return None
    factor = 10 ** precision
    # absorb binary representation error (0.15 * 10 == 1.4999999999999998)
    scaled = round(abs(value) * factor, 9)
    rounded = math.floor(scaled + 0.5) / factor
    return math.copysign(rounded, value) if rounded else 0.0


def parse_timestamp(raw: Any) -> Optional[datetime]:
    """
    Parse a timestamp into an aware UTC datetime.

    Strings go through ``pd.to_datetime`` so warehouse exports such as
    ``2026-03-10 09:00:00 UTC`` or ``03/10/2026 09:00`` parse the same way ISO
    instants do.  Naive values are taken as UTC.
    """
    if raw is None or raw is pd.NaT:
        return None
    if isinstance(raw, str):
        text = raw.strip()
        if not text:
            return None
        try:
            raw = pd.to_datetime(text, utc=True)
        except (ValueError, TypeError, OverflowError):
            logger.debug("Unparsable timestamp %r", text)
            return None
    if isinstance(raw, pd.Timestamp):
        if pd.isna(raw):
            return None
        raw = raw.to_pydatetime()
    if not isinstance(raw, datetime):
        return None
    if raw.tzinfo is None:
        return raw.replace(tzinfo=timezone.utc)
    return raw.astimezone(timezone.utc)


def clean_label(raw: Any) -> Optional[str]:
    """Trimmed string, or ``None`` for null/blank/NaN."""
    if raw is None:
        return None
    if isinstance(raw, float) and math.isnan(raw):
        return None
    text = str(raw).strip()
    return text or None


def truncate_label(label: str, max_length: int = 52) -> str:
    if len(label) <= max_length:
        return label
    return f"{label[: max_length - 1]}…"
