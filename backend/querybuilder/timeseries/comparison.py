"""
Comparison Augmenter
====================

Derives period-over-period percent-change columns from paired series.

WHY THIS FILE EXISTS
--------------------
With "compare to previous period" on, the merged rows carry both
"Errors: checkout" and "Errors: checkout (prev)". Users want the change, not
just two lines, so we add "Errors: checkout (%Δ)" next to them.

Pairing uses the stable key "{query_id}::{group_key}" from merge.py, never
the display names, so renamed or disambiguated columns still pair correctly.

DIVISION BY ZERO
----------------
A previous value of 0 has no meaningful percent change. Those rows simply get
no "(%Δ)" cell; NaN and Infinity never reach the chart.

RELATED FILES
-------------
- querybuilder/timeseries/merge.py: Produces series_name_by_stable_key
- querybuilder/timeseries/service.py: Calls this after combine_rows()
"""

import math
from typing import List, Mapping, Optional

from querybuilder.timeseries.model import ChartRow

PERCENT_CHANGE_SUFFIX = " (%Δ)"


def percent_change_series_name(current_series_name: str) -> str:
    return f"{current_series_name}{PERCENT_CHANGE_SUFFIX}"


def _finite(value) -> Optional[float]:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return None
    return float(value) if math.isfinite(value) else None


def append_percent_change_series(
    rows: List[ChartRow],
    current_key_by_pair_id: Mapping[str, str],
    previous_key_by_pair_id: Mapping[str, str],
) -> List[ChartRow]:
    """
    Append "(%Δ)" columns for every series present in both periods.

    WHAT: pct = ((current - previous) / previous) * 100, per row.

    PARAMETERS:
        rows: Combined chart rows, mutated in place
        current_key_by_pair_id: Stable key -> current column name
        previous_key_by_pair_id: Stable key -> previous column name

    RETURNS:
        The same `rows` list, for chaining

    EXAMPLE:
        rows = [{"bucket": "...", "Errors: checkout": 20, "Errors: checkout (prev)": 10}]
        append_percent_change_series(
            rows,
            {"q-1::checkout": "Errors: checkout"},
            {"q-1::checkout": "Errors: checkout (prev)"},
        )
        rows[0]["Errors: checkout (%Δ)"]  # 100.0
    """
    for pair_id, current_series_name in current_key_by_pair_id.items():
        previous_series_name = previous_key_by_pair_id.get(pair_id)
        if not previous_series_name:
            continue

        delta_series_name = percent_change_series_name(current_series_name)
        for row in rows:
            current = _finite(row.get(current_series_name))
            previous = _finite(row.get(previous_series_name))
            if current is None or previous is None or previous == 0:
                continue

            pct = ((current - previous) / previous) * 100
            if math.isfinite(pct):
                row[delta_series_name] = pct

    return rows
