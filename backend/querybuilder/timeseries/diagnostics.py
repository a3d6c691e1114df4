"""Summaries of run results for user-facing error messages."""

from typing import Iterable, List

from querybuilder.timeseries.model import BucketRow, QueryRunResult

NO_QUERY_DATA_MESSAGE = "No query data found in selected time range"


def has_any_series_data(points: Iterable[BucketRow]) -> bool:
    """True when at least one row carries a non-empty series map."""
    return any(point.has_series() for point in points)


def count_successful_query_series(results: List[QueryRunResult]) -> int:
    """
    Count results that produced real data, not just empty bucket shells.

    A result counts when it succeeded and at least one of its rows has a
    non-empty series map.
    """
    return sum(
        1 for result in results
        if result.is_success() and has_any_series_data(result.data)
    )


def no_query_data_message(results: List[QueryRunResult]) -> str:
    """
    Message to show when no query produced usable data.

    Prefers the first failed result's error (e.g. "Timeseries query too
    expensive") over the generic no-data message.
    """
    for result in results:
        if result.status == "error" and result.error:
            return result.error
    return NO_QUERY_DATA_MESSAGE
