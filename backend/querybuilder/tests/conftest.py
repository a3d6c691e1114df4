"""Pytest configuration for query-builder tests

WHAT: Shared factories for run results, query drafts and fake executors
WHY: Most tests need a handful of bucket rows or a scripted backend; building
     them inline hides what each test is actually checking
REFERENCES:
    - querybuilder/timeseries/model.py: BucketRow, QueryRunResult
    - querybuilder/timeseries/fallback.py: execute_window contract
"""

import os
from typing import Callable, Dict, List, Optional

import pytest

from querybuilder.config import Settings, get_settings
from querybuilder.timeseries.model import BucketRow, QueryRunResult, QuerySpec

# Keep tests independent of a developer's .env
os.environ.setdefault("SENTRY_DSN", "")


# ============================================================================
# Factories
# ============================================================================

def make_rows(points: Dict[str, Dict[str, float]]) -> List[BucketRow]:
    """{"2026-01-01 00:00:00": {"all": 1}} -> [BucketRow(...)]"""
    return [BucketRow(bucket=bucket, series=dict(series)) for bucket, series in points.items()]


def make_result(
    query_id: str,
    query_name: str,
    points: Optional[Dict[str, Dict[str, float]]] = None,
    source: str = "traces",
    status: str = "success",
    error: Optional[str] = None,
) -> QueryRunResult:
    return QueryRunResult(
        query_id=query_id,
        query_name=query_name,
        source=source,
        status=status,
        error=error,
        warnings=[],
        data=make_rows(points or {}),
    )


class RecordingExecutor:
    """Scripted execute_window: pops one response per call and records calls.

    Each response is either a list of BucketRow or an Exception to raise.
    """

    def __init__(self, responses: List[object]):
        self.responses = list(responses)
        self.calls: List[tuple] = []

    async def __call__(self, start_time: str, end_time: str, spec: QuerySpec) -> List[BucketRow]:
        self.calls.append((start_time, end_time, spec))
        response = self.responses.pop(0) if self.responses else []
        if isinstance(response, Exception):
            raise response
        return response


# ============================================================================
# Fixtures
# ============================================================================

@pytest.fixture
def settings() -> Settings:
    """Settings with library defaults, no Sentry."""
    return Settings(SENTRY_DSN=None, _env_file=None)


@pytest.fixture
def recording_executor() -> Callable[[List[object]], RecordingExecutor]:
    return RecordingExecutor


@pytest.fixture(autouse=True)
def _clear_settings_cache():
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()
