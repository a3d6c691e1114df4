"""Tests for the sequential primary -> fallback executor.

WHAT: execute_timeseries_query_with_fallback_using
WHY: The executor decides which window's data the user sees; a failure or
     empty answer in one window must never stop the search early

REFERENCES:
  - querybuilder/timeseries/fallback.py
  - querybuilder/timeseries/windows.py
"""

import pytest

from querybuilder.tests.conftest import RecordingExecutor
from querybuilder.timeseries.errors import QueryEngineError
from querybuilder.timeseries.fallback import execute_timeseries_query_with_fallback_using
from querybuilder.timeseries.model import BucketRow, FallbackConfig, QuerySpec

START = "2026-01-02 00:00:00"
END = "2026-01-02 01:00:00"

DAY_AND_WEEK = FallbackConfig(
    enable_empty_range_fallback=True,
    fallback_window_seconds=(86400, 7 * 86400),
    max_fallback_range_seconds=31 * 86400,
)


def _spec(**kwargs) -> QuerySpec:
    return QuerySpec(source="traces", metric="count", **kwargs)


class TestFallbackSearch:

    @pytest.mark.asyncio
    async def test_empty_then_error_then_data(self):
        """1h -> 24h -> 7d: [], rejection, one point."""
        point = BucketRow(bucket="2026-01-01T00:00:00.000Z", series={"total": 5})
        executor = RecordingExecutor([[], QueryEngineError("Timeseries query too expensive"), [point]])

        outcome = await execute_timeseries_query_with_fallback_using(
            START, END, _spec(), DAY_AND_WEEK, True, executor
        )

        assert [call[2].bucket_seconds for call in executor.calls] == [300, 3600, 86400]
        assert len(outcome.attempts) == 3
        assert "too expensive" in outcome.attempts[1].error
        assert outcome.attempts[1].error_code == "ERR_010"
        assert outcome.attempts[1].to_dict()["errorCode"] == "ERR_010"
        assert outcome.attempts[0].error is None
        assert outcome.points == [point]
        assert outcome.fallback_used is True

    @pytest.mark.asyncio
    async def test_primary_hit_stops_immediately(self):
        point = BucketRow(bucket="2026-01-02 00:00:00", series={"all": 1})
        executor = RecordingExecutor([[point]])

        outcome = await execute_timeseries_query_with_fallback_using(
            START, END, _spec(), DAY_AND_WEEK, True, executor
        )

        assert len(executor.calls) == 1
        assert outcome.fallback_used is False
        assert outcome.attempts[0].has_series is True
        assert outcome.attempts[0].points == 1

    @pytest.mark.asyncio
    async def test_primary_failure_does_not_abort(self):
        """A rejected primary continues to the fallback windows."""
        point = BucketRow(bucket="2026-01-01 12:00:00", series={"all": 3})
        executor = RecordingExecutor([RuntimeError("backend down"), [point]])

        outcome = await execute_timeseries_query_with_fallback_using(
            START, END, _spec(), DAY_AND_WEEK, True, executor
        )

        assert outcome.attempts[0].error == "backend down"
        assert outcome.attempts[0].error_code == "ERR_010"
        assert outcome.points == [point]
        assert outcome.fallback_used is True

    @pytest.mark.asyncio
    async def test_rows_without_series_keep_searching(self):
        """Empty bucket shells are not data."""
        shells = [BucketRow(bucket="2026-01-02 00:00:00", series={})]
        executor = RecordingExecutor([shells, [], []])

        outcome = await execute_timeseries_query_with_fallback_using(
            START, END, _spec(), DAY_AND_WEEK, True, executor
        )

        assert len(executor.calls) == 3
        assert outcome.attempts[0].points == 1
        assert outcome.attempts[0].has_series is False

    @pytest.mark.asyncio
    async def test_exhausted_returns_last_points_and_full_log(self):
        executor = RecordingExecutor([[], [], []])

        outcome = await execute_timeseries_query_with_fallback_using(
            START, END, _spec(), DAY_AND_WEEK, True, executor
        )

        assert outcome.points == []
        assert len(outcome.attempts) == 3
        assert outcome.fallback_used is True
        assert [a.window.kind for a in outcome.attempts] == ["primary", "fallback", "fallback"]

    @pytest.mark.asyncio
    async def test_no_hint_means_primary_only(self):
        executor = RecordingExecutor([[]])

        outcome = await execute_timeseries_query_with_fallback_using(
            START, END, _spec(), DAY_AND_WEEK, False, executor
        )

        assert len(executor.calls) == 1
        assert outcome.fallback_used is False

    @pytest.mark.asyncio
    async def test_explicit_bucket_kept_on_primary_only(self):
        executor = RecordingExecutor([[], [], []])

        await execute_timeseries_query_with_fallback_using(
            START, END, _spec(bucket_seconds=60), DAY_AND_WEEK, True, executor
        )

        assert [call[2].bucket_seconds for call in executor.calls] == [60, 3600, 86400]

    @pytest.mark.asyncio
    async def test_error_without_message_gets_default(self):
        executor = RecordingExecutor([RuntimeError()])

        outcome = await execute_timeseries_query_with_fallback_using(
            START, END, _spec(), DAY_AND_WEEK, False, executor
        )

        assert outcome.attempts[0].error == "Query execution failed"
