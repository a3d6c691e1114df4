"""
Query Builder Timeseries Service
================================

**Version**: 1.0.0
**Status**: Active

Orchestrates one query-builder chart request end to end.

WHY THIS FILE EXISTS
--------------------
Each component (drafts, windows, fallback, formulas, merge, comparison) is a
pure-ish building block. This module wires them together for one request and
is the only place that knows the order of operations.

ARCHITECTURE
------------
    request
       │
       ▼
    validate (pydantic) ──── invalid ───► {data: [], error}
       │
       ▼
    ┌────────────── asyncio.gather ───────────────┐
    │ current window               previous window│  (previous only when
    │  per query (gather):          fallback off  │   comparing periods)
    │   draft → spec → fallback                   │
    │  formulas                     formulas      │
    └──────────────────────┬──────────────────────┘
                           ▼
    merge current + merge previous (shifted, " (prev)")
                           ▼
    combine rows → percent change → {data, error: None, debug?}

Errors are data throughout: one failed query never fails the chart.

RELATED FILES
-------------
- querybuilder/timeseries/schema.py: Request/response models
- querybuilder/timeseries/fallback.py: Per-query execution
- querybuilder/routers/query_builder.py: HTTP surface
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field as dataclass_field
from datetime import timedelta
from typing import TYPE_CHECKING, Any, Dict, List, Optional, Sequence, Tuple, Union

from pydantic import ValidationError

from querybuilder.telemetry.sentry import capture_exception
from querybuilder.timeseries.buckets import format_window_time, parse_utc, range_seconds
from querybuilder.timeseries.comparison import append_percent_change_series
from querybuilder.timeseries.diagnostics import (
    count_successful_query_series,
    has_any_series_data,
    no_query_data_message,
)
from querybuilder.timeseries.drafts import build_timeseries_query_spec
from querybuilder.timeseries.errors import ErrorCode, error_message
from querybuilder.timeseries.fallback import ExecuteWindowFn, execute_timeseries_query_with_fallback_using
from querybuilder.timeseries.formula import build_formula_results
from querybuilder.timeseries.merge import (
    combine_rows,
    merge_query_run_results,
    shift_run_results,
    to_display_name_by_id,
)
from querybuilder.timeseries.model import FallbackConfig, FormulaDraft, QueryRunResult
from querybuilder.timeseries.schema import (
    QueryBuilderTimeseriesInput,
    QueryBuilderTimeseriesResponse,
    QueryDraftInput,
)
from querybuilder.timeseries.windows import resolve_fallback_config, resolve_timeseries_bucket_spec

if TYPE_CHECKING:
    from querybuilder.config import Settings

logger = logging.getLogger(__name__)

NO_ENABLED_QUERIES = "No enabled queries to run"
PREVIOUS_SERIES_SUFFIX = " (prev)"


@dataclass
class WindowRun:
    """Results of running every enabled query (and formula) over one window."""
    query_results: List[QueryRunResult] = dataclass_field(default_factory=list)
    all_results: List[QueryRunResult] = dataclass_field(default_factory=list)
    debug: List[Dict[str, Any]] = dataclass_field(default_factory=list)


# =============================================================================
# PER-QUERY EXECUTION
# =============================================================================

async def _run_query(
    query: QueryDraftInput,
    start_time: str,
    end_time: str,
    config: FallbackConfig,
    allow_fallback: bool,
    execute_window: ExecuteWindowFn,
) -> Tuple[QueryRunResult, Dict[str, Any]]:
    """Build, bucket and execute one query. Never raises for query-level failures."""
    built = build_timeseries_query_spec(query.to_draft())
    debug_entry: Dict[str, Any] = {
        "queryId": query.id,
        "queryName": query.name,
        "source": query.data_source,
        "spec": None,
        "attempts": [],
        "fallbackUsed": False,
    }

    if built.query is None:
        return (
            QueryRunResult(
                query_id=query.id,
                query_name=query.name,
                source=query.data_source,
                status="error",
                error=built.error or "Failed to build query",
                error_code=ErrorCode.QUERY_BUILD_FAILED.value,
                warnings=built.warnings,
            ),
            debug_entry,
        )

    spec = resolve_timeseries_bucket_spec(built.query, start_time, end_time)
    outcome = await execute_timeseries_query_with_fallback_using(
        start_time, end_time, spec, config, allow_fallback, execute_window
    )

    debug_entry["spec"] = spec.to_payload()
    debug_entry["attempts"] = [attempt.to_dict() for attempt in outcome.attempts]
    debug_entry["fallbackUsed"] = outcome.fallback_used

    warnings = list(built.warnings)
    last_attempt = outcome.last_attempt
    has_data = has_any_series_data(outcome.points)

    if not has_data and last_attempt is not None and last_attempt.error:
        return (
            QueryRunResult(
                query_id=query.id,
                query_name=query.name,
                source=query.data_source,
                status="error",
                error=last_attempt.error,
                error_code=last_attempt.error_code,
                warnings=warnings,
            ),
            debug_entry,
        )

    if outcome.fallback_used and has_data and last_attempt is not None:
        warnings.append(
            "No data in requested range; used fallback window "
            f"{last_attempt.window.start_time} -> {last_attempt.window.end_time}"
        )

    return (
        QueryRunResult(
            query_id=query.id,
            query_name=query.name,
            source=query.data_source,
            status="success",
            warnings=warnings,
            data=outcome.points,
        ),
        debug_entry,
    )


async def run_query_window(
    start_time: str,
    end_time: str,
    queries: Sequence[QueryDraftInput],
    formulas: Sequence[FormulaDraft],
    config: FallbackConfig,
    allow_fallback: bool,
    execute_window: ExecuteWindowFn,
) -> WindowRun:
    """
    Run all queries concurrently over one window, then evaluate formulas.

    Formulas are only evaluated when at least one query produced series data.
    """
    outcomes = await asyncio.gather(
        *(
            _run_query(query, start_time, end_time, config, allow_fallback, execute_window)
            for query in queries
        )
    )

    query_results = [result for result, _ in outcomes]
    debug = [
        {
            **entry,
            "status": result.status,
            "error": result.error,
            "errorCode": result.error_code,
            "warnings": list(result.warnings),
        }
        for result, entry in outcomes
    ]

    formula_results: List[QueryRunResult] = []
    if count_successful_query_series(query_results) > 0:
        formula_results = build_formula_results(formulas, query_results)

    for result in formula_results:
        debug.append(
            {
                "queryId": result.query_id,
                "queryName": result.query_name,
                "source": result.source,
                "status": result.status,
                "error": result.error,
                "errorCode": result.error_code,
                "warnings": list(result.warnings),
            }
        )

    return WindowRun(
        query_results=query_results,
        all_results=[*query_results, *formula_results],
        debug=debug,
    )


# =============================================================================
# MAIN ENTRY POINT
# =============================================================================

async def get_query_builder_timeseries(
    request: Union[QueryBuilderTimeseriesInput, Dict[str, Any]],
    execute_window: ExecuteWindowFn,
    settings: Optional["Settings"] = None,
) -> QueryBuilderTimeseriesResponse:
    """
    Produce chart rows for a query-builder request.

    PARAMETERS:
        request: Validated input model or its raw dict form
        execute_window: Backend call (start, end, spec) -> rows
        settings: Application settings (defaults to get_settings())

    RETURNS:
        QueryBuilderTimeseriesResponse. Never raises for data problems.

    EXAMPLE:
        response = await get_query_builder_timeseries(
            {"start_time": "2026-01-02 00:00:00", "end_time": "2026-01-02 01:00:00",
             "queries": [{"id": "q-1", "name": "A"}]},
            client.execute_window,
        )
        response.data   # [{"bucket": "2026-01-02T00:00:00.000Z", "A": 12.0}, ...]
    """
    try:
        payload = (
            request
            if isinstance(request, QueryBuilderTimeseriesInput)
            else QueryBuilderTimeseriesInput.model_validate(request)
        )
    except ValidationError as e:
        first = e.errors()[0] if e.errors() else {}
        message = first.get("msg") or "Invalid query-builder request"
        logger.info(f"[QUERY_BUILDER] {ErrorCode.INVALID_REQUEST.value} Invalid request: {message}")
        return QueryBuilderTimeseriesResponse(data=[], error=message)

    enabled_queries = payload.enabled_queries()
    if not enabled_queries:
        return QueryBuilderTimeseriesResponse(data=[], error=NO_ENABLED_QUERIES)

    formulas = [formula.to_draft() for formula in payload.formulas]
    config = resolve_fallback_config(payload.strategy, settings)
    comparison = payload.comparison

    try:
        shift_seconds = range_seconds(payload.start_time, payload.end_time) or 0
        previous_start: Optional[str] = None
        previous_end: Optional[str] = None
        windows = [
            run_query_window(
                payload.start_time, payload.end_time, enabled_queries, formulas, config, True, execute_window
            )
        ]

        if comparison.mode == "previous_period" and shift_seconds > 0:
            shift = timedelta(seconds=shift_seconds)
            previous_start = format_window_time(parse_utc(payload.start_time) - shift)
            previous_end = format_window_time(parse_utc(payload.end_time) - shift)
            # Previous period never uses fallback windows
            windows.append(
                run_query_window(
                    previous_start, previous_end, enabled_queries, formulas, config, False, execute_window
                )
            )

        runs = await asyncio.gather(*windows)
        current = runs[0]
        previous: Optional[WindowRun] = runs[1] if len(runs) > 1 else None

        if count_successful_query_series(current.query_results) == 0:
            return QueryBuilderTimeseriesResponse(data=[], error=no_query_data_message(current.query_results))

        display_name_by_id = to_display_name_by_id(
            [(query.id, query.name, query.legend) for query in enabled_queries]
            + [(formula.id, formula.name, formula.legend) for formula in formulas]
        )
        used_series_names: set = set()
        merged_current = merge_query_run_results(
            current.all_results, display_name_by_id, used_series_names=used_series_names
        )
        merged_tables = [merged_current]

        merged_previous = None
        if previous is not None:
            merged_previous = merge_query_run_results(
                shift_run_results(previous.all_results, shift_seconds),
                display_name_by_id,
                series_suffix=PREVIOUS_SERIES_SUFFIX,
                used_series_names=used_series_names,
            )
            merged_tables.append(merged_previous)

        rows = combine_rows(merged_tables)
        if merged_previous is not None and comparison.include_percent_change:
            append_percent_change_series(
                rows,
                merged_current.series_name_by_stable_key,
                merged_previous.series_name_by_stable_key,
            )

        if not payload.debug:
            return QueryBuilderTimeseriesResponse(data=rows, error=None)

        debug_info = {
            "primaryWindow": {"startTime": payload.start_time, "endTime": payload.end_time},
            "comparison": {
                "mode": comparison.mode,
                "includePercentChange": comparison.include_percent_change,
                "shiftedBySeconds": shift_seconds if shift_seconds > 0 else 0,
                "previousStartTime": previous_start,
                "previousEndTime": previous_end,
            },
            "strategy": config.to_dict(),
            "queries": current.debug,
            "previousQueries": previous.debug if previous is not None else [],
        }
        logger.info(f"[QUERY_BUILDER] Timeseries execution: {debug_info}")
        return QueryBuilderTimeseriesResponse(data=rows, error=None, debug=debug_info)

    except Exception as e:
        logger.exception(f"[QUERY_BUILDER] {ErrorCode.INTERNAL_ERROR.value} Timeseries request failed: {e}")
        capture_exception(
            e,
            extra={
                "error_code": ErrorCode.INTERNAL_ERROR.value,
                "start_time": payload.start_time,
                "end_time": payload.end_time,
            },
        )
        return QueryBuilderTimeseriesResponse(
            data=[],
            error=error_message(e, "Failed to fetch query-builder timeseries"),
        )
