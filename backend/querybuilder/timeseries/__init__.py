"""
Query-Builder Timeseries Engine
===============================

**Version**: 1.0.0
**Status**: Active

Turns a set of query-builder queries (plus formulas, plus an optional
previous-period comparison) into one table of chart rows.

WHY THIS EXISTS
---------------
Queries are executed independently against the analytics backend. Each one
may come back empty, fail, or use different bucket keys. The chart needs a
single aligned table where missing data is explicit and failures are
reported per query instead of blanking the whole widget.

ARCHITECTURE OVERVIEW
---------------------
```
QueryDraft (drafts.py)
    |
    v
QuerySpec + bucket width (buckets.py, windows.py)
    |
    v
Fallback executor (fallback.py) --> execute_window (services/query_engine_client.py)
    |
    v
QueryRunResult per query
    |
    +--> Formula evaluator (formula.py)
    |
    v
Result merger (merge.py) --> percent change (comparison.py)
    |
    v
Chart rows
```

COMPONENTS
----------
- model.py: Dataclasses shared by every component
- buckets.py: Bucket sizing, normalization and timelines
- windows.py: Primary and fallback execution windows
- fallback.py: Sequential primary -> fallback execution
- merge.py: Alignment of results into chart rows
- comparison.py: Period-over-period percent change
- formula.py: Per-bucket formula evaluation
- diagnostics.py: User-facing summaries of failures
- drafts.py: Query-builder form -> QuerySpec
- schema.py: Request/response models (pydantic)
- service.py: Orchestration of one request
- errors.py: Error taxonomy

USAGE
-----
```python
from querybuilder.timeseries import get_query_builder_timeseries

response = await get_query_builder_timeseries(request, client.execute_window)
```
"""

from querybuilder.timeseries.buckets import (
    build_bucket_timeline,
    compute_bucket_seconds,
    parse_step_shorthand,
    to_iso_bucket,
)
from querybuilder.timeseries.comparison import append_percent_change_series
from querybuilder.timeseries.diagnostics import (
    count_successful_query_series,
    has_any_series_data,
    no_query_data_message,
)
from querybuilder.timeseries.drafts import BuildSpecResult, QueryDraft, build_timeseries_query_spec
from querybuilder.timeseries.errors import ErrorCode, FormulaError, QueryEngineError
from querybuilder.timeseries.fallback import execute_timeseries_query_with_fallback_using
from querybuilder.timeseries.formula import build_formula_results
from querybuilder.timeseries.merge import combine_rows, merge_query_run_results
from querybuilder.timeseries.model import (
    BucketRow,
    ExecutionWindow,
    FallbackAttempt,
    FallbackConfig,
    FallbackOutcome,
    FormulaDraft,
    MergedTable,
    QueryRunResult,
    QuerySpec,
)
from querybuilder.timeseries.service import get_query_builder_timeseries
from querybuilder.timeseries.windows import (
    build_execution_windows,
    resolve_execution_spec_for_window,
    resolve_fallback_config,
    resolve_timeseries_bucket_spec,
)

__all__ = [
    # Types (model.py)
    "QuerySpec",
    "ExecutionWindow",
    "FallbackConfig",
    "BucketRow",
    "FallbackAttempt",
    "FallbackOutcome",
    "QueryRunResult",
    "MergedTable",
    "FormulaDraft",
    # Buckets & windows
    "compute_bucket_seconds",
    "build_bucket_timeline",
    "parse_step_shorthand",
    "to_iso_bucket",
    "resolve_timeseries_bucket_spec",
    "resolve_execution_spec_for_window",
    "build_execution_windows",
    "resolve_fallback_config",
    # Execution
    "execute_timeseries_query_with_fallback_using",
    # Results
    "merge_query_run_results",
    "combine_rows",
    "append_percent_change_series",
    "build_formula_results",
    "has_any_series_data",
    "count_successful_query_series",
    "no_query_data_message",
    # Drafts
    "QueryDraft",
    "BuildSpecResult",
    "build_timeseries_query_spec",
    # Errors
    "ErrorCode",
    "QueryEngineError",
    "FormulaError",
    # Service
    "get_query_builder_timeseries",
]
