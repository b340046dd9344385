"""
Fetch boundary: loads every input collection for one report.

The brand is resolved first (a missing brand is an invalid scope, not an
empty report).  The four remaining collections are independent of each other
and are read in parallel; aggregation only starts once all of them have
arrived.  If any single read raises or outlives the configured timeout the
whole request fails with ``FetchFailedError`` naming that collection, so a
partial input set is never aggregated.

``source`` is anything exposing ``fetch_brand(brand_id)`` plus
``fetch_measurements / fetch_citations / fetch_competitors / fetch_queries``
taking the resolved scope.  It defaults to the warehouse-backed
``data_pipeline.measurement_store``.
"""

from __future__ import annotations

import logging
import time
from concurrent.futures import ThreadPoolExecutor, TimeoutError as FutureTimeout
from typing import Any, Dict, Optional

from config.settings import FetchConfig, get_settings
from rollup.errors import FetchFailedError, UnknownBrandError
from rollup.models import ReportInputs, ResolvedScope

logger = logging.getLogger(__name__)

COLLECTIONS = ("measurements", "citations", "competitors", "queries")


def _default_source():
    from data_pipeline import measurement_store
    return measurement_store


def fetch_report_inputs(
    scope: ResolvedScope,
    source: Any = None,
    cfg: Optional[FetchConfig] = None,
) -> ReportInputs:
    """
    Load the brand and its input collections for ``scope``.

    Raises:
        UnknownBrandError: the brand id does not exist.
        FetchFailedError: any collection failed or timed out.
    """
    source = source or _default_source()
    cfg = cfg or get_settings().fetch

    try:
        brand = source.fetch_brand(scope.brand_id)
    except Exception as exc:
        logger.warning("Fetching brand %s failed: %s", scope.brand_id, exc)
        raise FetchFailedError("brand", exc) from exc
    if brand is None:
        raise UnknownBrandError(scope.brand_id)

    t0 = time.perf_counter()
    results: Dict[str, Any] = {}
    pool = ThreadPoolExecutor(max_workers=max(1, cfg.max_workers), thread_name_prefix="fetch")
    try:
        futures = {
            name: pool.submit(getattr(source, f"fetch_{name}"), scope)
            for name in COLLECTIONS
        }
        deadline = time.monotonic() + cfg.timeout_seconds
        for name, future in futures.items():
            remaining = max(0.0, deadline - time.monotonic())
            try:
                results[name] = future.result(timeout=remaining)
            except FutureTimeout as exc:
                logger.warning("Fetching %s timed out after %.1fs", name, cfg.timeout_seconds)
                raise FetchFailedError(name, exc) from exc
            except Exception as exc:
                logger.warning("Fetching %s failed: %s", name, exc)
                raise FetchFailedError(name, exc) from exc
    finally:
        # do not block on reads that are still running after a failure
        pool.shutdown(wait=False, cancel_futures=True)

    logger.info(
        "Fetched inputs for brand %s in %.2fs (%d measurements, %d citations)",
        brand.name,
        time.perf_counter() - t0,
        len(results["measurements"]),
        len(results["citations"]),
    )
    return ReportInputs(
        brand=brand,
        measurements=list(results["measurements"]),
        citations=list(results["citations"]),
        competitors=list(results["competitors"]),
        queries=list(results["queries"]),
    )
