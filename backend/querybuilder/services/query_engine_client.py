"""Analytics query engine HTTP client.

WHAT:
    Async adapter executing one QuerySpec over one time window against the
    analytics backend (POST /query-engine/execute).

WHY:
    The timeseries engine only knows an `execute_window(start, end, spec)`
    callable. This class is the production implementation of it; tests swap
    in plain async functions or an httpx.MockTransport.

ERRORS:
    Everything that goes wrong is raised as QueryEngineError carrying the
    backend's own message (e.g. "Timeseries query too expensive"), so the
    fallback executor can record it verbatim.
"""

import logging
from typing import Any, Dict, List, Optional

import httpx

from querybuilder.timeseries.errors import ErrorCode, QueryEngineError
from querybuilder.timeseries.model import BucketRow, QuerySpec, as_finite_number

logger = logging.getLogger(__name__)

EXECUTE_PATH = "/query-engine/execute"
DEFAULT_TIMEOUT_SECONDS = 30.0


class QueryEngineClient:
    """HTTP client for the analytics query engine.

    WHAT: Posts {"startTime", "endTime", "query"} and decodes timeseries rows
    WHY: Single place that knows the backend's wire format

    Usage:
        async with QueryEngineClient("http://localhost:3472", api_key="...") as client:
            rows = await client.execute_window("2026-01-02 00:00:00", "2026-01-02 01:00:00", spec)
    """

    def __init__(
        self,
        base_url: str,
        api_key: Optional[str] = None,
        timeout: float = DEFAULT_TIMEOUT_SECONDS,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        """Initialize the client.

        Args:
            base_url: Backend root URL (e.g. "http://localhost:3472")
            api_key: Sent as a bearer token when set
            timeout: Per-request timeout in seconds
            transport: Custom httpx transport (tests use httpx.MockTransport)
        """
        self.base_url = base_url.rstrip("/")
        self.api_key = api_key
        self.timeout = timeout
        self._transport = transport
        self._client: Optional[httpx.AsyncClient] = None

    def _headers(self) -> Dict[str, str]:
        headers = {"Content-Type": "application/json"}
        if self.api_key:
            headers["Authorization"] = f"Bearer {self.api_key}"
        return headers

    def _build_client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            base_url=self.base_url,
            headers=self._headers(),
            timeout=self.timeout,
            transport=self._transport,
        )

    async def __aenter__(self) -> "QueryEngineClient":
        self._client = self._build_client()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    async def _post(self, payload: Dict[str, Any]) -> httpx.Response:
        if self._client is not None:
            return await self._client.post(EXECUTE_PATH, json=payload)

        async with self._build_client() as client:
            return await client.post(EXECUTE_PATH, json=payload)

    async def execute_window(self, start_time: str, end_time: str, spec: QuerySpec) -> List[BucketRow]:
        """Execute one spec over one window.

        Args:
            start_time: Window start ("YYYY-MM-DD HH:MM:SS", UTC)
            end_time: Window end ("YYYY-MM-DD HH:MM:SS", UTC)
            spec: Fully resolved query spec (bucket already chosen)

        Returns:
            Bucket rows as returned by the backend (series may be empty)

        Raises:
            QueryEngineError: transport failure, non-2xx answer, or a
                non-timeseries result
        """
        payload = {"startTime": start_time, "endTime": end_time, "query": spec.to_payload()}

        try:
            response = await self._post(payload)
        except httpx.TimeoutException as e:
            logger.warning(f"[QUERY_ENGINE] Timeout for {spec.source}/{spec.metric}: {e}")
            raise QueryEngineError(message="Query engine request timed out", code=ErrorCode.QUERY_TIMEOUT) from e
        except httpx.RequestError as e:
            logger.warning(f"[QUERY_ENGINE] Request error for {spec.source}/{spec.metric}: {e}")
            raise QueryEngineError(message=f"Query engine request failed: {e}") from e

        if response.is_error:
            raise self._error_from_response(response)

        try:
            body = response.json()
        except ValueError as e:
            raise QueryEngineError(
                message="Query engine returned invalid JSON",
                code=ErrorCode.UNEXPECTED_RESULT,
                status_code=response.status_code,
            ) from e

        result = body.get("result") if isinstance(body, dict) else None
        if not isinstance(result, dict) or result.get("kind") != "timeseries":
            raise QueryEngineError(
                message="Unexpected non-timeseries result",
                code=ErrorCode.UNEXPECTED_RESULT,
                status_code=response.status_code,
            )

        rows = [
            BucketRow(bucket=str(point.get("bucket", "")), series=self._numeric_series(point.get("series")))
            for point in result.get("data") or []
        ]
        logger.debug(
            f"[QUERY_ENGINE] {spec.source}/{spec.metric} {start_time} -> {end_time}: {len(rows)} rows"
        )
        return rows

    @staticmethod
    def _numeric_series(raw: Any) -> Dict[str, float]:
        """Series values as finite floats; anything else is dropped."""
        series: Dict[str, float] = {}
        for name, value in (raw or {}).items():
            number = as_finite_number(value)
            if number is not None:
                series[str(name)] = number
        return series

    @staticmethod
    def _error_from_response(response: httpx.Response) -> QueryEngineError:
        """Turn a non-2xx answer into QueryEngineError, keeping the backend message."""
        try:
            body = response.json()
        except ValueError:
            body = None

        message = None
        details: Dict[str, Any] = {}
        if isinstance(body, dict):
            message = body.get("message") or body.get("error")
            details = {key: value for key, value in body.items() if key not in ("message", "error")}

        if not message:
            message = f"Query engine request failed with status {response.status_code}"

        error = QueryEngineError(
            message=str(message),
            status_code=response.status_code,
            details=details,
        )
        logger.warning(f"[QUERY_ENGINE] HTTP {response.status_code}: {error.to_dict()}")
        return error
