"""
Result Merger
=============

Aligns independently executed query results into one table of chart rows.

WHY THIS FILE EXISTS
--------------------
Each query (and each formula) comes back as its own list of bucket rows, with
its own breakdown keys. The chart needs ONE row per bucket with one column per
line. This module does that alignment.

COLUMN NAMING
-------------
    ungrouped query ("all")          -> "Requests"
    formula named after its legend   -> "Error ratio"
    grouped query                    -> "Errors: checkout", "Errors: billing"

Each column also gets a stable key "{query_id}::{group_key}" so the current
period's "Errors: checkout" can be paired with the previous period's
"Errors: checkout (prev)" for percent-change columns.

ZERO FILL
---------
After merging, every row carries every column; absent cells become 0. This
happens ONLY here, for charting. The formula evaluator never sees zero-filled
values (missing stays missing there).

RELATED FILES
-------------
- querybuilder/timeseries/comparison.py: Consumes series_name_by_stable_key
- querybuilder/timeseries/formula.py: Produces formula results merged here
- querybuilder/timeseries/service.py: Orchestrates merge + combine
"""

from __future__ import annotations

from typing import Dict, Iterable, List, Mapping, Optional, Set, Tuple

from querybuilder.timeseries.buckets import shift_bucket, to_iso_bucket
from querybuilder.timeseries.diagnostics import has_any_series_data
from querybuilder.timeseries.model import BucketRow, ChartRow, MergedTable, QueryRunResult, as_finite_number

ALL_GROUP_KEY = "__all__"
UNNAMED_GROUP = "unnamed"


def _series_descriptor(
    result: QueryRunResult,
    display_name: str,
    raw_group_name: str,
    is_single_entry: bool,
) -> Tuple[str, str]:
    """
    Decide the (stable_group_key, column_label) for one series entry.

    A bucket whose only entry is "all" (ungrouped), or a formula whose only
    entry is named after its display name, collapses to the display name.
    """
    group_name = str(raw_group_name).strip() or UNNAMED_GROUP
    is_all_group = is_single_entry and group_name.lower() == "all"
    is_formula_self_named = (
        is_single_entry
        and result.source == "formula"
        and group_name == display_name
    )

    if is_all_group or is_formula_self_named:
        return ALL_GROUP_KEY, display_name

    return group_name, f"{display_name}: {group_name}"


def _unique_name(base: str, used: Set[str]) -> str:
    """Reserve `base`, or "base (2)", "base (3)"... if already taken."""
    if base not in used:
        used.add(base)
        return base

    counter = 2
    while f"{base} ({counter})" in used:
        counter += 1

    name = f"{base} ({counter})"
    used.add(name)
    return name


def merge_query_run_results(
    results: Iterable[QueryRunResult],
    display_name_by_query_id: Mapping[str, str],
    series_suffix: str = "",
    used_series_names: Optional[Set[str]] = None,
) -> MergedTable:
    """
    Merge query results into rows keyed by normalized bucket.

    WHAT: One column per (query, group), one row per bucket, zero-filled.

    PARAMETERS:
        results: Query and formula results for one period
        display_name_by_query_id: Legend (or name) per query id
        series_suffix: Appended to every column (e.g. " (prev)")
        used_series_names: Names already taken by another table; shared so
            current and previous columns never collide

    RETURNS:
        MergedTable (series_names, rows_by_bucket, series_name_by_stable_key)

    EXAMPLE:
        merged = merge_query_run_results(
            [errors_result, throughput_result],
            {"q-1": "Errors", "q-2": "Throughput"},
        )
        merged.series_names
        # ["Errors: checkout", "Errors: billing", "Throughput: checkout"]
    """
    used = used_series_names if used_series_names is not None else set()
    table = MergedTable()

    for result in results:
        if not result.is_success() or not has_any_series_data(result.data):
            continue

        display_name = display_name_by_query_id.get(result.query_id) or result.query_name

        for point in result.data:
            bucket = to_iso_bucket(point.bucket)
            row = table.rows_by_bucket.setdefault(bucket, {"bucket": bucket})
            is_single_entry = len(point.series) == 1

            for group_name, raw_value in point.series.items():
                value = as_finite_number(raw_value)
                if value is None:
                    continue

                group_key, label = _series_descriptor(result, display_name, group_name, is_single_entry)
                stable_key = f"{result.query_id}::{group_key}"
                series_name = table.series_name_by_stable_key.get(stable_key)

                if series_name is None:
                    series_name = _unique_name(f"{label}{series_suffix}", used)
                    table.series_name_by_stable_key[stable_key] = series_name
                    table.series_names.append(series_name)

                row[series_name] = value

    for row in table.rows_by_bucket.values():
        for series_name in table.series_names:
            if not isinstance(row.get(series_name), (int, float)):
                row[series_name] = 0

    return table


def combine_rows(tables: Iterable[MergedTable]) -> List[ChartRow]:
    """
    Union several merged tables into sorted, fully zero-filled chart rows.

    Used to lay the previous period's columns next to the current period's.
    """
    rows_by_bucket: Dict[str, ChartRow] = {}
    all_series_names: List[str] = []

    for table in tables:
        for series_name in table.series_names:
            if series_name not in all_series_names:
                all_series_names.append(series_name)

        for bucket, row in table.rows_by_bucket.items():
            existing = rows_by_bucket.get(bucket, {"bucket": bucket})
            rows_by_bucket[bucket] = {**existing, **row}

    for row in rows_by_bucket.values():
        for series_name in all_series_names:
            if not isinstance(row.get(series_name), (int, float)):
                row[series_name] = 0

    return [rows_by_bucket[bucket] for bucket in sorted(rows_by_bucket)]


def shift_run_results(results: Iterable[QueryRunResult], offset_seconds: float) -> List[QueryRunResult]:
    """
    Move every bucket of every result by `offset_seconds`.

    WHY: Previous-period results are shifted forward onto the current
    timeline so both periods share bucket keys in the chart.
    """
    shifted: List[QueryRunResult] = []
    for result in results:
        shifted.append(
            QueryRunResult(
                query_id=result.query_id,
                query_name=result.query_name,
                source=result.source,
                status=result.status,
                error=result.error,
                error_code=result.error_code,
                warnings=list(result.warnings),
                data=[
                    BucketRow(bucket=shift_bucket(point.bucket, offset_seconds), series=dict(point.series))
                    for point in result.data
                ],
            )
        )
    return shifted


def to_display_name_by_id(entries: Iterable[Tuple[str, str, str]]) -> Dict[str, str]:
    """Map id -> trimmed legend, or name when the legend is blank."""
    return {entry_id: (legend or "").strip() or name for entry_id, name, legend in entries}
