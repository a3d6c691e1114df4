"""
Query builder router
--------------------
Purpose:
- Serve chart data for the query-builder widget in one call.
- Validation problems and query failures come back as `{data: [], error}`
  with HTTP 200 so the widget can render the message inline.
Design choices:
- The body is taken as a plain dict and validated by the service, so a bad
  request is reported the same way as a failed query.
- The backend executor is a dependency (`get_execute_window`); tests override
  it with an in-memory function.
"""

import logging
from typing import Any, AsyncIterator, Dict

from fastapi import APIRouter, Body, Depends

from querybuilder.config import Settings, get_settings
from querybuilder.services.query_engine_client import QueryEngineClient
from querybuilder.timeseries.fallback import ExecuteWindowFn
from querybuilder.timeseries.schema import QueryBuilderTimeseriesResponse
from querybuilder.timeseries.service import get_query_builder_timeseries

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/query-builder", tags=["query-builder"])


async def get_execute_window(settings: Settings = Depends(get_settings)) -> AsyncIterator[ExecuteWindowFn]:
    """Yield a query engine executor sharing one HTTP client for the request."""
    async with QueryEngineClient(
        settings.QUERY_ENGINE_URL,
        api_key=settings.QUERY_ENGINE_API_KEY,
        timeout=settings.QUERY_ENGINE_TIMEOUT_SECONDS,
    ) as client:
        yield client.execute_window


@router.post(
    "/timeseries",
    response_model=QueryBuilderTimeseriesResponse,
    response_model_exclude_unset=True,
    summary="Query-builder timeseries",
    description="""
    Run the enabled queries of a query-builder widget and return merged chart rows.

    - Empty ranges retry over wider fallback windows (with a warning)
    - Formulas ("A / B") are evaluated per bucket
    - `comparison.mode = "previous_period"` adds "(prev)" and "(%Δ)" series
    """,
)
async def query_builder_timeseries(
    payload: Dict[str, Any] = Body(...),
    execute_window: ExecuteWindowFn = Depends(get_execute_window),
    settings: Settings = Depends(get_settings),
):
    logger.debug(f"[QUERY_BUILDER] Timeseries request with {len(payload.get('queries') or [])} queries")
    return await get_query_builder_timeseries(payload, execute_window, settings)
