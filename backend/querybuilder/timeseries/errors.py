"""
Timeseries Error Taxonomy
=========================

**Version**: 1.0.0
**Status**: Active

Error classification for the query-builder timeseries engine.

WHY THIS FILE EXISTS
--------------------
Errors happen at several stages, and most of them must NOT abort the whole
chart:

    1. Build Errors
       - Unsupported aggregation for a data source
       - Missing metric name/type for a metrics query

    2. Execution Errors
       - Backend rejected the query ("Timeseries query too expensive")
       - Transport failures, timeouts
       - Unexpected (non-timeseries) payloads

    3. Formula Errors
       - Unparsable expression, unknown references
       - Division by zero in a bucket

    4. Request Errors
       - Invalid time strings, empty query list

The engine captures all of these as data (status / error / warnings on
QueryRunResult). The exceptions below only exist inside component boundaries:
QueryEngineError is raised by the backend adapter and caught by the fallback
executor; FormulaError is raised by the formula compiler and caught by
build_formula_results().

RELATED FILES
-------------
- querybuilder/services/query_engine_client.py: Raises QueryEngineError
- querybuilder/timeseries/fallback.py: Records execution errors per attempt
- querybuilder/timeseries/formula.py: Raises and handles FormulaError
"""

from dataclasses import dataclass, field as dataclass_field
from enum import Enum
from typing import Any, Dict, Optional


# =============================================================================
# ERROR CLASSIFICATION ENUMS
# =============================================================================

class ErrorCode(Enum):
    """
    Standard error codes for the engine.

    WHAT: Machine-readable codes for logs and debug payloads. Query and
    formula results carry the value as `error_code`; request-level failures
    log it.
    """
    # Build errors
    QUERY_BUILD_FAILED = "ERR_001"

    # Execution errors
    QUERY_EXECUTION_FAILED = "ERR_010"
    QUERY_TIMEOUT = "ERR_011"
    UNEXPECTED_RESULT = "ERR_012"

    # Formula errors
    FORMULA_INVALID = "ERR_020"
    FORMULA_UNKNOWN_REFERENCE = "ERR_021"
    FORMULA_DIVISION_BY_ZERO = "ERR_022"

    # Request errors
    INVALID_REQUEST = "ERR_030"

    # Unknown errors
    INTERNAL_ERROR = "ERR_999"


class FormulaFailureReason(Enum):
    """Why a formula could not produce a value for a bucket."""
    DIVISION_BY_ZERO = "division_by_zero"
    OTHER = "other"


# =============================================================================
# EXCEPTIONS
# =============================================================================

@dataclass(eq=False)
class QueryEngineError(Exception):
    """
    Raised by the analytics backend adapter when a window cannot be executed.

    WHAT: Carries the backend's message verbatim so the fallback executor can
    record it in FallbackAttempt.error.

    ATTRIBUTES:
        message: Backend (or transport) message, shown to users
        code: ErrorCode for classification
        status_code: HTTP status when the backend answered, None otherwise
        details: Extra backend details (e.g. point budget explanation)

    USAGE:
        raise QueryEngineError(
            message="Timeseries query too expensive",
            status_code=400,
            details={"details": ["Requested 3000 points, maximum is 1500"]},
        )
    """
    message: str
    code: ErrorCode = ErrorCode.QUERY_EXECUTION_FAILED
    status_code: Optional[int] = None
    details: Dict[str, Any] = dataclass_field(default_factory=dict)

    def __str__(self) -> str:
        return self.message

    def to_dict(self) -> Dict[str, Any]:
        result: Dict[str, Any] = {
            "code": self.code.value,
            "message": self.message,
        }
        if self.status_code is not None:
            result["status_code"] = self.status_code
        if self.details:
            result["details"] = self.details
        return result


class FormulaError(Exception):
    """
    Raised while compiling or evaluating a formula expression.

    Never escapes build_formula_results(); it is turned into a formula result
    with status "error" or into a skipped-bucket warning.
    """

    def __init__(
        self,
        message: str,
        reason: FormulaFailureReason = FormulaFailureReason.OTHER,
        code: ErrorCode = ErrorCode.FORMULA_INVALID,
    ):
        super().__init__(message)
        self.message = message
        self.reason = reason
        self.code = code

    @property
    def is_division_by_zero(self) -> bool:
        return self.reason == FormulaFailureReason.DIVISION_BY_ZERO


def error_message(exc: BaseException, default: str = "Query execution failed") -> str:
    """
    Extract a user-facing message from any exception.

    Falls back to `default` when the exception has no message.
    """
    message = str(exc).strip()
    return message or default
