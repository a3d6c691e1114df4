"""
Execution Window Planner
========================

Decides WHERE a query runs (which windows) and HOW finely it is bucketed in
each of them.

WHY THIS FILE EXISTS
--------------------
A narrow range ("last hour") often has no data for sparse signals. Instead of
showing an empty chart we retry over wider windows anchored at the same end
time. This module builds that candidate list and resolves the bucket width for
each candidate, so the executor (fallback.py) stays a plain loop.

BUCKET RULES PER WINDOW
-----------------------
- primary:  an explicit bucket_seconds on the spec is kept as-is,
            otherwise auto-sized for the primary range.
- fallback: ALWAYS auto-sized for the fallback window, even when the spec had
            an explicit bucket. A 60s bucket chosen for one hour would mean
            44,640 points over 31 days.

RELATED FILES
-------------
- querybuilder/timeseries/buckets.py: compute_bucket_seconds()
- querybuilder/timeseries/fallback.py: Walks the windows built here
- querybuilder/config.py: Default fallback strategy
"""

from __future__ import annotations

import dataclasses
from datetime import timedelta
from typing import TYPE_CHECKING, Iterable, List, Optional

from querybuilder.timeseries.buckets import compute_bucket_seconds, format_window_time, parse_utc
from querybuilder.timeseries.model import ExecutionWindow, FallbackConfig, QuerySpec

if TYPE_CHECKING:
    from querybuilder.config import Settings
    from querybuilder.timeseries.schema import StrategyInput


def resolve_timeseries_bucket_spec(spec: QuerySpec, start_time: str, end_time: str) -> QuerySpec:
    """
    Fill in an auto bucket width for a timeseries spec.

    Returns the SAME spec object when bucket_seconds is already set (or the
    spec is not a timeseries), otherwise a copy with the auto width.
    """
    if spec.kind != "timeseries" or spec.bucket_seconds:
        return spec

    return dataclasses.replace(spec, bucket_seconds=compute_bucket_seconds(start_time, end_time))


def resolve_execution_spec_for_window(spec: QuerySpec, window: ExecutionWindow) -> QuerySpec:
    """
    Resolve the spec actually sent for one execution window.

    WHAT: Primary windows keep an explicit bucket; fallback windows are always
    re-bucketed for their own (wider) range.
    """
    if spec.kind != "timeseries":
        return spec

    if window.kind != "fallback":
        return resolve_timeseries_bucket_spec(spec, window.start_time, window.end_time)

    return dataclasses.replace(
        spec,
        bucket_seconds=compute_bucket_seconds(window.start_time, window.end_time),
    )


def build_execution_windows(
    start_time: str,
    end_time: str,
    config: FallbackConfig,
    primary_empty_or_failed: bool,
) -> List[ExecutionWindow]:
    """
    Build the ordered list of candidate windows.

    WHAT: The primary window, followed (when allowed) by one fallback window
    per configured width, each anchored at the ORIGINAL end time.

    PARAMETERS:
        start_time, end_time: Primary range ("YYYY-MM-DD HH:MM:SS", UTC)
        config: Fallback strategy
        primary_empty_or_failed: Whether fallback windows may be used at all

    RETURNS:
        [primary, fallback...]; widths above max_fallback_range_seconds are
        dropped, a candidate identical to an earlier window is not repeated.

    EXAMPLE:
        build_execution_windows(
            "2026-01-02 00:00:00", "2026-01-02 01:00:00",
            FallbackConfig(fallback_window_seconds=(86400,)), True,
        )
        # [primary 00:00 -> 01:00, fallback 2026-01-01 01:00:00 -> 2026-01-02 01:00:00]
    """
    windows = [ExecutionWindow(start_time=start_time, end_time=end_time, kind="primary")]

    if not primary_empty_or_failed or not config.enable_empty_range_fallback:
        return windows

    end_dt = parse_utc(end_time)
    if end_dt is None:
        return windows

    seen = {(start_time, end_time)}
    for seconds in config.fallback_window_seconds:
        if seconds > config.max_fallback_range_seconds:
            continue

        window = ExecutionWindow(
            start_time=format_window_time(end_dt - timedelta(seconds=seconds)),
            end_time=format_window_time(end_dt),
            kind="fallback",
        )
        key = (window.start_time, window.end_time)
        if key in seen:
            continue

        seen.add(key)
        windows.append(window)

    return windows


def _normalize_window_seconds(values: Iterable[int]) -> tuple:
    """Positive integer widths, deduplicated and sorted ascending."""
    return tuple(sorted({int(value) for value in values if value and int(value) > 0}))


def resolve_fallback_config(
    overrides: Optional["StrategyInput"] = None,
    settings: Optional["Settings"] = None,
) -> FallbackConfig:
    """
    Merge per-request strategy overrides with the configured defaults.

    PARAMETERS:
        overrides: Request-level strategy (any field may be None)
        settings: Application settings; defaults to get_settings()

    RETURNS:
        FallbackConfig with widths filtered, deduplicated and sorted
    """
    if settings is None:
        from querybuilder.config import get_settings

        settings = get_settings()

    enable = settings.ENABLE_EMPTY_RANGE_FALLBACK
    widths: Iterable[int] = settings.FALLBACK_WINDOW_SECONDS
    cap = settings.MAX_FALLBACK_RANGE_SECONDS

    if overrides is not None:
        if overrides.enable_empty_range_fallback is not None:
            enable = overrides.enable_empty_range_fallback
        if overrides.fallback_window_seconds is not None:
            widths = overrides.fallback_window_seconds
        if overrides.max_fallback_range_seconds is not None:
            cap = overrides.max_fallback_range_seconds

    return FallbackConfig(
        enable_empty_range_fallback=enable,
        fallback_window_seconds=_normalize_window_seconds(widths),
        max_fallback_range_seconds=cap,
    )
