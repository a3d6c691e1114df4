"""
Query Builder Request Schema
============================

Pydantic models defining the query-builder timeseries request contract.

Example request:
    {
        "start_time": "2026-01-02 00:00:00",
        "end_time": "2026-01-02 06:00:00",
        "queries": [
            {"id": "q-1", "name": "A", "data_source": "traces", "aggregation": "count"},
            {"id": "q-2", "name": "B", "data_source": "traces", "aggregation": "count",
             "where_clause": "status.code = error"}
        ],
        "formulas": [{"id": "f-1", "name": "F1", "expression": "B / A", "legend": "Error ratio"}],
        "comparison": {"mode": "previous_period", "include_percent_change": true}
    }

Related files:
- querybuilder/timeseries/service.py: Consumes these models
- querybuilder/timeseries/drafts.py: QueryDraft built from QueryDraftInput
- querybuilder/routers/query_builder.py: HTTP surface
"""

from __future__ import annotations

from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, Field, field_validator, model_validator

from querybuilder.timeseries.buckets import WINDOW_DATETIME_RE, parse_utc
from querybuilder.timeseries.drafts import QueryDraft
from querybuilder.timeseries.model import FormulaDraft

DataSource = Literal["traces", "logs", "metrics"]


class QueryDraftInput(BaseModel):
    """One query of the builder. Mirrors QueryDraft."""
    id: str
    name: str
    enabled: bool = True
    data_source: DataSource = "traces"
    signal_source: Literal["default", "meter"] = "default"
    metric_name: str = ""
    metric_type: str = "gauge"
    where_clause: str = ""
    aggregation: str = "count"
    step_interval: str = ""
    order_by_direction: Literal["desc", "asc"] = "desc"
    add_ons: Dict[str, bool] = Field(default_factory=lambda: {"group_by": True})
    group_by: str = ""
    having: str = ""
    order_by: str = ""
    limit: str = ""
    legend: str = ""

    def to_draft(self) -> QueryDraft:
        return QueryDraft(**self.model_dump())


class FormulaInput(BaseModel):
    """A formula over query names, e.g. "A / B"."""
    id: str
    name: str
    expression: str
    legend: str = ""

    def to_draft(self) -> FormulaDraft:
        return FormulaDraft(id=self.id, name=self.name, expression=self.expression, legend=self.legend)


class ComparisonInput(BaseModel):
    """
    Period-over-period comparison.

    - none: current period only
    - previous_period: add "(prev)" series for the window of equal width
      ending at the current start, plus "(%Δ)" series when requested
    """
    mode: Literal["none", "previous_period"] = "none"
    include_percent_change: bool = True


class StrategyInput(BaseModel):
    """
    Per-request overrides of the empty-range fallback strategy.

    Any field left as None uses the configured default (see config.py).
    """
    enable_empty_range_fallback: Optional[bool] = None
    fallback_window_seconds: Optional[List[int]] = None
    max_fallback_range_seconds: Optional[int] = Field(default=None, gt=0)

    @field_validator("fallback_window_seconds")
    @classmethod
    def _positive_widths(cls, v):
        """Widths must be positive seconds."""
        if v is not None and any(width <= 0 for width in v):
            raise ValueError("fallback_window_seconds entries must be positive")
        return v


class QueryBuilderTimeseriesInput(BaseModel):
    """
    Top-level request.

    Validation:
    - start_time / end_time must be "YYYY-MM-DD HH:MM:SS" (UTC)
    - end_time must not be before start_time
    - query names must be unique (case-insensitive); formulas refer to them
    - formula names must be unique and differ from every query name
    """
    start_time: str
    end_time: str
    queries: List[QueryDraftInput] = Field(default_factory=list)
    formulas: List[FormulaInput] = Field(default_factory=list)
    comparison: ComparisonInput = Field(default_factory=ComparisonInput)
    strategy: Optional[StrategyInput] = None
    debug: bool = False

    @field_validator("start_time", "end_time")
    @classmethod
    def _check_time_format(cls, v: str) -> str:
        value = v.strip()
        if not WINDOW_DATETIME_RE.match(value) or parse_utc(value) is None:
            raise ValueError("time must be formatted as 'YYYY-MM-DD HH:MM:SS'")
        return value

    @model_validator(mode="after")
    def _check_range(self):
        start = parse_utc(self.start_time)
        end = parse_utc(self.end_time)
        if start and end and end < start:
            raise ValueError("end_time must be >= start_time")

        names = [query.name.strip().upper() for query in self.queries]
        duplicates = sorted({name for name in names if names.count(name) > 1})
        if duplicates:
            raise ValueError(f"Duplicate query names: {', '.join(duplicates)}")

        formula_names = [formula.name.strip().upper() for formula in self.formulas]
        clashes = sorted({name for name in formula_names if name in names or formula_names.count(name) > 1})
        if clashes:
            raise ValueError(f"Formula names must differ from query and formula names: {', '.join(clashes)}")
        return self

    def enabled_queries(self) -> List[QueryDraftInput]:
        return [query for query in self.queries if query.enabled]


class QueryBuilderTimeseriesResponse(BaseModel):
    """
    Chart rows plus an optional error.

    Errors are data: a failed request still answers with `data=[]` and a
    user-facing `error`. `debug` is only present when the request asked for it.
    """
    data: List[Dict[str, Any]] = Field(default_factory=list)
    error: Optional[str] = None
    debug: Optional[Dict[str, Any]] = None
