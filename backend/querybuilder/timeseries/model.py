"""
Timeseries Data Model
=====================

**Version**: 1.0.0
**Status**: Active

Value types that flow through the query-builder timeseries engine.

WHY THIS FILE EXISTS
--------------------
Every stage of the engine (window planning, fallback execution, merging,
comparison, formulas) passes the same handful of shapes around. Keeping them
in one module means the stages agree on field names and the tests can build
fixtures without importing the stages themselves.

LIFECYCLE
---------
QuerySpec and FormulaDraft are authored by the UI and passed in per request.
Everything else is ephemeral: created and discarded within one evaluation
pass, never persisted.

RELATED FILES
-------------
- querybuilder/timeseries/windows.py: Resolves QuerySpec per ExecutionWindow
- querybuilder/timeseries/fallback.py: Produces FallbackOutcome
- querybuilder/timeseries/merge.py: Produces MergedTable
- querybuilder/timeseries/formula.py: Consumes FormulaDraft, produces QueryRunResult
"""

from __future__ import annotations

import math
from dataclasses import dataclass, field as dataclass_field
from typing import Any, Dict, List, Literal, Optional, Tuple, Union


WindowKind = Literal["primary", "fallback"]
RunStatus = Literal["success", "error"]

# One chart row: always has "bucket", every other key is a numeric series.
ChartRow = Dict[str, Union[str, float]]


def as_finite_number(value: Any) -> Optional[float]:
    """Coerce a series value to a finite float, or None."""
    try:
        number = float(value)
    except (TypeError, ValueError):
        return None
    return number if math.isfinite(number) else None


# =============================================================================
# QUERY SPEC
# =============================================================================

@dataclass(frozen=True)
class QuerySpec:
    """
    Resolved query sent to the analytics backend.

    WHAT: The backend-facing description of one timeseries query.

    WHY: The UI authors loose drafts; the engine only ever deals with this
    resolved, immutable shape so per-window copies cannot leak into each other.

    PARAMETERS:
        kind: Always "timeseries" for this engine
        source: "traces", "logs" or "metrics"
        metric: Aggregation to compute (count, p95_duration, avg, ...)
        group_by: Breakdown dimension, None for ungrouped
        bucket_seconds: Explicit bucket width, None means "auto"
        filters: Source-specific filters (serviceName, severity, ...)
    """
    source: str
    metric: str
    kind: str = "timeseries"
    group_by: Optional[str] = None
    bucket_seconds: Optional[int] = None
    filters: Optional[Dict[str, Any]] = None

    def to_payload(self) -> Dict[str, Any]:
        """Convert to the camelCase payload the query engine expects."""
        payload: Dict[str, Any] = {
            "kind": self.kind,
            "source": self.source,
            "metric": self.metric,
        }
        if self.group_by is not None:
            payload["groupBy"] = self.group_by
        if self.bucket_seconds is not None:
            payload["bucketSeconds"] = self.bucket_seconds
        if self.filters:
            payload["filters"] = dict(self.filters)
        return payload


# =============================================================================
# EXECUTION WINDOWS & FALLBACK
# =============================================================================

@dataclass(frozen=True)
class ExecutionWindow:
    """
    A (start, end) pair a query is executed over.

    Boundaries are UTC strings in "YYYY-MM-DD HH:MM:SS" form. "primary" is the
    user-requested range, "fallback" an algorithmically widened retry range.
    """
    start_time: str
    end_time: str
    kind: WindowKind = "primary"

    def to_dict(self) -> Dict[str, str]:
        return {
            "startTime": self.start_time,
            "endTime": self.end_time,
            "kind": self.kind,
        }


@dataclass(frozen=True)
class FallbackConfig:
    """
    Empty-range fallback strategy.

    WHAT: Which wider windows to try when the primary window has no data.

    INVARIANT: Each entry in fallback_window_seconds is an independent width
    anchored at the ORIGINAL window's end time (not cumulative).

    PARAMETERS:
        enable_empty_range_fallback: Master switch
        fallback_window_seconds: Candidate widths, tried in order
        max_fallback_range_seconds: Widths above this cap are dropped
    """
    enable_empty_range_fallback: bool = True
    fallback_window_seconds: Tuple[int, ...] = (86400, 7 * 86400, 31 * 86400)
    max_fallback_range_seconds: int = 31 * 86400

    def to_dict(self) -> Dict[str, Any]:
        return {
            "enableEmptyRangeFallback": self.enable_empty_range_fallback,
            "fallbackWindowSeconds": list(self.fallback_window_seconds),
            "maxFallbackRangeSeconds": self.max_fallback_range_seconds,
        }


@dataclass
class BucketRow:
    """One bucket of a timeseries: bucket timestamp plus named series values."""
    bucket: str
    series: Dict[str, float] = dataclass_field(default_factory=dict)

    def has_series(self) -> bool:
        return len(self.series) > 0


@dataclass
class FallbackAttempt:
    """
    One window tried by the fallback executor.

    PARAMETERS:
        window: The window that was executed
        bucket_seconds: Bucket width actually sent for this window
        error: Error message if the call raised, None otherwise
        error_code: ErrorCode value of the failure, None on success
        points: Number of rows the call returned
        has_series: Whether any returned row carried series data
    """
    window: ExecutionWindow
    bucket_seconds: Optional[int]
    error: Optional[str] = None
    error_code: Optional[str] = None
    points: int = 0
    has_series: bool = False

    def to_dict(self) -> Dict[str, Any]:
        result = {
            **self.window.to_dict(),
            "bucketSeconds": self.bucket_seconds,
            "points": self.points,
            "hasSeries": self.has_series,
        }
        if self.error is not None:
            result["error"] = self.error
            result["errorCode"] = self.error_code
        return result


@dataclass
class FallbackOutcome:
    """Result of a primary→fallback search."""
    points: List[BucketRow] = dataclass_field(default_factory=list)
    fallback_used: bool = False
    attempts: List[FallbackAttempt] = dataclass_field(default_factory=list)

    @property
    def last_attempt(self) -> Optional[FallbackAttempt]:
        return self.attempts[-1] if self.attempts else None


# =============================================================================
# RUN RESULTS
# =============================================================================

@dataclass
class QueryRunResult:
    """
    Outcome of running one query (or one formula) for one period.

    WHAT: Errors are carried as data (status/error/warnings) so the UI can
    render partial results instead of failing the whole widget.

    PARAMETERS:
        query_id: Stable id of the query or formula draft
        query_name: Short name ("A", "B", "F1") referenced by formulas
        source: "traces", "logs", "metrics" or "formula"
        status: "success" or "error"
        error: Error message when status is "error"
        error_code: ErrorCode value matching `error`, for debug output
        warnings: Non-fatal notes (fallback used, skipped buckets, ...)
        data: Bucket rows, possibly empty
    """
    query_id: str
    query_name: str
    source: str
    status: RunStatus = "success"
    error: Optional[str] = None
    error_code: Optional[str] = None
    warnings: List[str] = dataclass_field(default_factory=list)
    data: List[BucketRow] = dataclass_field(default_factory=list)

    def is_success(self) -> bool:
        return self.status == "success"


@dataclass
class MergedTable:
    """
    Query results aligned into rows keyed by normalized bucket.

    PARAMETERS:
        series_names: Column names in first-seen order, unique
        rows_by_bucket: Normalized bucket -> row ("bucket" + one key per column)
        series_name_by_stable_key: "{query_id}::{group_key}" -> column name,
            used to pair current and previous period columns
    """
    series_names: List[str] = dataclass_field(default_factory=list)
    rows_by_bucket: Dict[str, ChartRow] = dataclass_field(default_factory=dict)
    series_name_by_stable_key: Dict[str, str] = dataclass_field(default_factory=dict)


# =============================================================================
# FORMULAS
# =============================================================================

@dataclass(frozen=True)
class FormulaDraft:
    """
    User-authored arithmetic over other queries.

    `expression` references queries by their query_name, e.g. "A / B".
    `legend` is the output series name (falls back to `name` when blank).
    """
    id: str
    name: str
    expression: str
    legend: str = ""

    @property
    def series_name(self) -> str:
        return self.legend.strip() or self.name
