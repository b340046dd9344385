"""
KeyResolver: stable aggregation keys for raw rows.

The precedence is an explicit ordered list rather than nullable chaining so
it can be tested as a single function:

    1. logical query id          -> "query:<id>"
    2. collector response id     -> "response:<id>"
    3. synthetic per-pass key    -> "row:<n>"

Rows sharing a query id always fold together ("one query, many collectors"),
whatever their collector response ids.  One resolver is created per
aggregation pass; its synthetic counter never leaks across requests.
"""

from __future__ import annotations

import itertools
from typing import Callable, List, Optional, Tuple

from rollup.models import RawMeasurement
from rollup.normalizer import clean_label

QUERY_PREFIX = "query"
RESPONSE_PREFIX = "response"
SYNTHETIC_PREFIX = "row"

KeyRule = Tuple[str, Callable[[RawMeasurement], Optional[str]]]

KEY_PRECEDENCE: List[KeyRule] = [
    (QUERY_PREFIX, lambda row: clean_label(row.query_id)),
    (RESPONSE_PREFIX, lambda row: clean_label(row.collector_response_id)),
]


class KeyResolver:
    """Total function from a raw row to its group key."""

    def __init__(self) -> None:
        self._counter = itertools.count(1)

    def _synthetic(self) -> str:
        return f"{SYNTHETIC_PREFIX}:{next(self._counter)}"

    def resolve_key(self, row: RawMeasurement) -> str:
        for prefix, extract in KEY_PRECEDENCE:
            value = extract(row)
            if value is not None:
                return f"{prefix}:{value}"
        return self._synthetic()

    def response_key(self, row: RawMeasurement) -> str:
        """
        Identity of the collector response a row came from, used to count
        distinct answers for presence rates.
        """
        response_id = clean_label(row.collector_response_id)
        if response_id is not None:
            return f"{RESPONSE_PREFIX}:{response_id}"
        query_id = clean_label(row.query_id)
        if query_id is not None:
            stamp = row.timestamp.isoformat() if row.timestamp else ""
            collector = (row.collector_type or "").strip().lower()
            return f"{QUERY_PREFIX}:{query_id}|{collector}|{stamp}"
        return self._synthetic()
