"""
Fallback Executor
=================

Runs one timeseries query over its candidate windows until one returns data.

WHY THIS FILE EXISTS
--------------------
Sparse signals often have nothing in the user's narrow range. Rather than an
empty chart, we retry over wider windows ending at the same time and show the
first one with data (with a warning saying so).

STATE MACHINE
-------------
    windows = [primary, fallback_1, fallback_2, ...]

    for window in windows:                    # strictly sequential
        rows = await execute_window(...)
        rows with series  -> STOP, return rows
        empty rows        -> record attempt, next window
        raised            -> record attempt with error, next window

    exhausted -> last successful rows (or []), full attempt log

Windows are never fanned out in parallel.

RELATED FILES
-------------
- querybuilder/timeseries/windows.py: Builds the candidate windows
- querybuilder/services/query_engine_client.py: Default execute_window
- querybuilder/timeseries/service.py: Calls this once per query
"""

from __future__ import annotations

import logging
from typing import Awaitable, Callable, List

from querybuilder.timeseries.diagnostics import has_any_series_data
from querybuilder.timeseries.errors import ErrorCode, QueryEngineError, error_message
from querybuilder.timeseries.model import (
    BucketRow,
    FallbackAttempt,
    FallbackConfig,
    FallbackOutcome,
    QuerySpec,
)
from querybuilder.timeseries.windows import (
    build_execution_windows,
    resolve_execution_spec_for_window,
)

logger = logging.getLogger(__name__)

ExecuteWindowFn = Callable[[str, str, QuerySpec], Awaitable[List[BucketRow]]]


async def execute_timeseries_query_with_fallback_using(
    start_time: str,
    end_time: str,
    spec: QuerySpec,
    config: FallbackConfig,
    primary_empty_hint: bool,
    execute_window: ExecuteWindowFn,
) -> FallbackOutcome:
    """
    Execute a query over the primary window, then fallback windows.

    PARAMETERS:
        start_time, end_time: Primary range ("YYYY-MM-DD HH:MM:SS", UTC)
        spec: Query spec (bucket may be explicit or auto)
        config: Fallback strategy; the only place it is inspected
        primary_empty_hint: Allow fallback windows at all
        execute_window: Backend call (start, end, resolved_spec) -> rows

    RETURNS:
        FallbackOutcome with the winning rows, whether a fallback window
        produced them, and one FallbackAttempt per window tried.

    EXAMPLE:
        outcome = await execute_timeseries_query_with_fallback_using(
            "2026-01-02 00:00:00", "2026-01-02 01:00:00",
            spec, FallbackConfig(), True, client.execute_window,
        )
        if outcome.fallback_used:
            ...  # surface a warning
    """
    windows = build_execution_windows(start_time, end_time, config, primary_empty_hint)
    attempts: List[FallbackAttempt] = []
    last_points: List[BucketRow] = []

    for window in windows:
        window_spec = resolve_execution_spec_for_window(spec, window)

        try:
            points = await execute_window(window.start_time, window.end_time, window_spec)
        except Exception as exc:
            message = error_message(exc)
            code = exc.code if isinstance(exc, QueryEngineError) else ErrorCode.QUERY_EXECUTION_FAILED
            attempts.append(
                FallbackAttempt(
                    window=window,
                    bucket_seconds=window_spec.bucket_seconds,
                    error=message,
                    error_code=code.value,
                )
            )
            logger.debug(
                f"[FALLBACK] {window.kind} window {window.start_time} -> {window.end_time} "
                f"failed: {message}"
            )
            continue

        points = list(points or [])
        has_series = has_any_series_data(points)
        attempts.append(
            FallbackAttempt(
                window=window,
                bucket_seconds=window_spec.bucket_seconds,
                points=len(points),
                has_series=has_series,
            )
        )
        last_points = points

        if has_series:
            logger.debug(
                f"[FALLBACK] {window.kind} window {window.start_time} -> {window.end_time} "
                f"returned {len(points)} points"
            )
            return FallbackOutcome(
                points=points,
                fallback_used=window.kind == "fallback",
                attempts=attempts,
            )

        logger.debug(
            f"[FALLBACK] {window.kind} window {window.start_time} -> {window.end_time} was empty"
        )

    logger.info(
        f"[FALLBACK] No data after {len(attempts)} window(s) for "
        f"{spec.source}/{spec.metric} ending {end_time}"
    )
    return FallbackOutcome(
        points=last_points,
        fallback_used=any(window.kind == "fallback" for window in windows),
        attempts=attempts,
    )
