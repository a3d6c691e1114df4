"""
Query Draft Builder
===================

**Version**: 1.0.0
**Status**: Active

Translates the query-builder form (a QueryDraft) into a QuerySpec the
analytics backend understands.

WHY THIS FILE EXISTS
--------------------
The form is loose on purpose: free-text WHERE clauses, free-text group by,
free-text step interval. The backend is strict. This module sits between
them and degrades instead of failing wherever it can:

    Bad clause syntax        -> warning, clause ignored
    Unknown filter key       -> warning, filter ignored
    Bad step interval        -> warning, auto bucket
    Unsupported aggregation  -> error (the query cannot run at all)

WHERE CLAUSE
------------
    service.name = "checkout" AND env = prod,staging AND attr.http.route = '/pay'

Clauses are joined with AND (case-insensitive). Values may be double-quoted,
single-quoted or bare (no spaces). Keys are lower-cased.

SOURCES
-------
    traces:  count, avg_duration, p50/p95/p99_duration, error_rate
    logs:    count
    metrics: avg, sum, min, max, count (needs metric name and type)

RELATED FILES
-------------
- querybuilder/timeseries/model.py: QuerySpec
- querybuilder/timeseries/buckets.py: parse_step_shorthand()
- querybuilder/timeseries/service.py: Builds one spec per enabled query
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field as dataclass_field
from typing import Any, Dict, List, Optional, Tuple

from querybuilder.timeseries.buckets import parse_step_shorthand
from querybuilder.timeseries.model import QuerySpec

TRUE_VALUES = {"1", "true", "yes", "y"}
FALSE_VALUES = {"0", "false", "no", "n"}

AGGREGATIONS_BY_SOURCE: Dict[str, Tuple[str, ...]] = {
    "traces": ("count", "avg_duration", "p50_duration", "p95_duration", "p99_duration", "error_rate"),
    "logs": ("count",),
    "metrics": ("avg", "sum", "min", "max", "count"),
}

METRIC_TYPES = ("sum", "gauge", "histogram", "exponential_histogram")

CLAUSE_SPLIT_RE = re.compile(r"\s+AND\s+", re.IGNORECASE)
CLAUSE_RE = re.compile(r"""^([a-zA-Z0-9_.-]+)\s*=\s*(?:"([^"]*)"|'([^']*)'|(\S+))$""")

INVALID_STEP_WARNING = "Invalid step interval ignored; auto interval will be used"


# =============================================================================
# TYPES
# =============================================================================

@dataclass
class QueryDraft:
    """
    One query as edited in the query builder.

    Only the fields that shape the QuerySpec are interpreted here; having,
    order by and limit are carried for the editor and ignored by the engine.
    """
    id: str
    name: str
    enabled: bool = True
    data_source: str = "traces"
    signal_source: str = "default"
    metric_name: str = ""
    metric_type: str = "gauge"
    where_clause: str = ""
    aggregation: str = "count"
    step_interval: str = ""
    order_by_direction: str = "desc"
    add_ons: Dict[str, bool] = dataclass_field(default_factory=lambda: {"group_by": True})
    group_by: str = ""
    having: str = ""
    order_by: str = ""
    limit: str = ""
    legend: str = ""

    @property
    def group_by_enabled(self) -> bool:
        return bool(self.add_ons.get("group_by", False))


@dataclass
class ParsedClause:
    key: str
    value: str


@dataclass
class BuildSpecResult:
    """
    Outcome of building one draft.

    Exactly one of `query` / `error` is set; warnings may accompany either.
    """
    query: Optional[QuerySpec] = None
    warnings: List[str] = dataclass_field(default_factory=list)
    error: Optional[str] = None


# =============================================================================
# PARSING HELPERS
# =============================================================================

def split_csv(value: str) -> List[str]:
    return [item.strip() for item in value.split(",") if item.strip()]


def to_boolean(value: str) -> Optional[bool]:
    normalized = value.strip().lower()
    if normalized in TRUE_VALUES:
        return True
    if normalized in FALSE_VALUES:
        return False
    return None


def parse_where_clause(expression: Optional[str]) -> Tuple[List[ParsedClause], List[str]]:
    """
    Split a WHERE clause into key/value pairs.

    RETURNS:
        (clauses, warnings); unsupported parts become warnings.

    EXAMPLE:
        parse_where_clause('service.name = "checkout" AND severity = ERROR')
        # ([ParsedClause("service.name", "checkout"), ParsedClause("severity", "ERROR")], [])
    """
    trimmed = (expression or "").strip()
    if not trimmed:
        return [], []

    clauses: List[ParsedClause] = []
    warnings: List[str] = []

    for part in (piece.strip() for piece in CLAUSE_SPLIT_RE.split(trimmed)):
        if not part:
            continue

        match = CLAUSE_RE.match(part)
        if not match:
            warnings.append(f"Unsupported clause syntax ignored: {part}")
            continue

        value = next((group for group in match.groups()[1:] if group is not None), "")
        clauses.append(ParsedClause(key=match.group(1).strip().lower(), value=value.strip()))

    return clauses, warnings


# =============================================================================
# PER-SOURCE BUILDERS
# =============================================================================

def _build_traces(
    draft: QueryDraft,
    clauses: List[ParsedClause],
    warnings: List[str],
    bucket_seconds: Optional[int],
) -> BuildSpecResult:
    if draft.aggregation not in AGGREGATIONS_BY_SOURCE["traces"]:
        return BuildSpecResult(warnings=warnings, error=f"Unsupported traces metric: {draft.aggregation}")

    filters: Dict[str, Any] = {}

    for clause in clauses:
        if clause.key in ("service", "service.name"):
            filters["serviceName"] = clause.value
        elif clause.key in ("span", "span.name"):
            filters["spanName"] = clause.value
        elif clause.key in ("deployment.environment", "environment", "env"):
            filters["environments"] = split_csv(clause.value)
        elif clause.key in ("deployment.commit_sha", "commit_sha"):
            filters["commitShas"] = split_csv(clause.value)
        elif clause.key in ("root_only", "root.only"):
            flag = to_boolean(clause.value)
            if flag is None:
                warnings.append(f"Invalid root_only value ignored: {clause.value}")
            else:
                filters["rootSpansOnly"] = flag
        elif clause.key.startswith("attr."):
            if "attributeKey" not in filters:
                filters["attributeKey"] = clause.key[len("attr."):]
                filters["attributeValue"] = clause.value
            else:
                warnings.append(
                    f"Multiple attr.* filters found; only {filters['attributeKey']} is used"
                )
        else:
            warnings.append(f"Unsupported traces filter ignored: {clause.key}")

    group_by: Optional[str] = None
    if draft.group_by_enabled and draft.group_by.strip():
        token = draft.group_by.strip().lower()
        if token in ("service", "service.name"):
            group_by = "service"
        elif token in ("span", "span.name"):
            group_by = "span_name"
        elif token in ("status", "status.code"):
            group_by = "status_code"
        elif token == "http.method":
            group_by = "http_method"
        elif token in ("none", "all"):
            group_by = "none"
        elif token.startswith("attr."):
            attribute_key = token[len("attr."):]
            if not attribute_key:
                warnings.append("Invalid attr.* group by ignored")
            else:
                group_by = "attribute"
                filters.setdefault("attributeKey", attribute_key)
        else:
            warnings.append(f"Unsupported traces group by ignored: {draft.group_by}")

    if group_by == "attribute" and not filters.get("attributeKey"):
        return BuildSpecResult(
            warnings=warnings,
            error="groupBy=attribute requires attr.<key> in Group By or Where clause",
        )

    return BuildSpecResult(
        query=QuerySpec(
            source="traces",
            metric=draft.aggregation,
            group_by=group_by,
            bucket_seconds=bucket_seconds,
            filters=filters or None,
        ),
        warnings=warnings,
    )


def _build_logs(
    draft: QueryDraft,
    clauses: List[ParsedClause],
    warnings: List[str],
    bucket_seconds: Optional[int],
) -> BuildSpecResult:
    if draft.aggregation != "count":
        return BuildSpecResult(warnings=warnings, error="Logs source currently supports only count metric")

    filters: Dict[str, Any] = {}
    for clause in clauses:
        if clause.key in ("service", "service.name"):
            filters["serviceName"] = clause.value
        elif clause.key == "severity":
            filters["severity"] = clause.value
        else:
            warnings.append(f"Unsupported logs filter ignored: {clause.key}")

    group_by: Optional[str] = None
    if draft.group_by_enabled and draft.group_by.strip():
        token = draft.group_by.strip().lower()
        if token in ("service", "service.name"):
            group_by = "service"
        elif token == "severity":
            group_by = "severity"
        elif token in ("none", "all"):
            group_by = "none"
        else:
            warnings.append(f"Unsupported logs group by ignored: {draft.group_by}")

    return BuildSpecResult(
        query=QuerySpec(
            source="logs",
            metric="count",
            group_by=group_by,
            bucket_seconds=bucket_seconds,
            filters=filters or None,
        ),
        warnings=warnings,
    )


def _build_metrics(
    draft: QueryDraft,
    clauses: List[ParsedClause],
    warnings: List[str],
    bucket_seconds: Optional[int],
) -> BuildSpecResult:
    if draft.aggregation not in AGGREGATIONS_BY_SOURCE["metrics"]:
        return BuildSpecResult(warnings=warnings, error=f"Unsupported metrics aggregation: {draft.aggregation}")

    if not draft.metric_name or not draft.metric_type:
        return BuildSpecResult(warnings=warnings, error="Metric source requires metric name and metric type")

    filters: Dict[str, Any] = {"metricName": draft.metric_name, "metricType": draft.metric_type}

    for clause in clauses:
        if clause.key in ("service", "service.name"):
            filters["serviceName"] = clause.value
        elif clause.key == "metric.type":
            if clause.value in METRIC_TYPES:
                filters["metricType"] = clause.value
            else:
                warnings.append(f"Invalid metric.type ignored: {clause.value}")
        else:
            warnings.append(f"Unsupported metrics filter ignored: {clause.key}")

    group_by: Optional[str] = None
    if draft.group_by_enabled and draft.group_by.strip():
        token = draft.group_by.strip().lower()
        if token in ("service", "service.name"):
            group_by = "service"
        elif token in ("none", "all"):
            group_by = "none"
        else:
            warnings.append(f"Unsupported metrics group by ignored: {draft.group_by}")

    return BuildSpecResult(
        query=QuerySpec(
            source="metrics",
            metric=draft.aggregation,
            group_by=group_by,
            bucket_seconds=bucket_seconds,
            filters=filters,
        ),
        warnings=warnings,
    )


_BUILDERS = {
    "traces": _build_traces,
    "logs": _build_logs,
    "metrics": _build_metrics,
}


# =============================================================================
# MAIN ENTRY POINT
# =============================================================================

def build_timeseries_query_spec(draft: QueryDraft) -> BuildSpecResult:
    """
    Build the QuerySpec for one query draft.

    PARAMETERS:
        draft: The query as edited in the builder

    RETURNS:
        BuildSpecResult with either `query` or `error`, plus warnings

    EXAMPLE:
        result = build_timeseries_query_spec(QueryDraft(
            id="q-1", name="A", aggregation="error_rate",
            where_clause='service.name = "checkout"', step_interval="5m",
        ))
        result.query.bucket_seconds   # 300
        result.query.filters          # {"serviceName": "checkout"}
    """
    clauses, warnings = parse_where_clause(draft.where_clause)

    step = (draft.step_interval or "").strip()
    bucket_seconds = parse_step_shorthand(step) if step else None
    if step and bucket_seconds is None:
        warnings.append(INVALID_STEP_WARNING)

    builder = _BUILDERS.get(draft.data_source)
    if builder is None:
        return BuildSpecResult(warnings=warnings, error=f"Unsupported data source: {draft.data_source}")

    return builder(draft, clauses, warnings, bucket_seconds)
