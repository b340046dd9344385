"""
Failure taxonomy for a rollup request.

Local data defects (unparsable numbers, missing optional keys) never reach
this module: the normalizer and key resolver absorb them.  The two kinds below
are always raised to the caller, because an "empty" report built from a
partial or invalid input set would be indistinguishable from a brand that
genuinely had no measurements.
"""

from __future__ import annotations

from typing import Optional


class RollupError(Exception):
    """Base class for every failure surfaced by the rollup engine."""


class FetchFailedError(RollupError):
    """The storage collaborator could not supply one of the input collections."""

    def __init__(self, collection: str, cause: Optional[BaseException] = None) -> None:
        message = f"Failed to fetch {collection!r}"
        if cause is not None:
            message = f"{message}: {cause}"
        super().__init__(message)
        self.collection = collection
        self.cause = cause


class InvalidScopeError(RollupError):
    """The requested scope was rejected before aggregation began."""

    def __init__(self, reason: str) -> None:
        super().__init__(reason)
        self.reason = reason


class UnknownBrandError(InvalidScopeError):
    def __init__(self, brand_id: str) -> None:
        super().__init__(f"Unknown brand: {brand_id!r}")
        self.brand_id = brand_id
