"""
Sentry Error Tracking
=====================

Centralized error tracking for the query-builder service.

Related files:
- querybuilder/main.py: Initializes Sentry on app startup
- querybuilder/timeseries/service.py: Captures unexpected failures

Environment Variables:
- SENTRY_DSN: Sentry project DSN (Sentry stays disabled without it)
- ENVIRONMENT: Environment name (production, staging, development)
- RELEASE_VERSION: Release tag (set via CI/CD)
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Optional

import sentry_sdk
from sentry_sdk.integrations.fastapi import FastApiIntegration
from sentry_sdk.integrations.logging import LoggingIntegration

if TYPE_CHECKING:
    from querybuilder.config import Settings

logger = logging.getLogger(__name__)


def init_sentry(settings: Optional["Settings"] = None) -> bool:
    """
    Initialize Sentry SDK for FastAPI.

    Should be called once during application startup.

    Returns:
        True if Sentry was initialized, False when no DSN is configured or
        initialization failed.

    Example:
        from querybuilder.telemetry.sentry import init_sentry

        def create_app():
            init_sentry()
            app = FastAPI()
            ...
    """
    if settings is None:
        from querybuilder.config import get_settings

        settings = get_settings()

    if not settings.SENTRY_DSN:
        return False

    try:
        sentry_sdk.init(
            dsn=settings.SENTRY_DSN,
            environment=settings.ENVIRONMENT,
            integrations=[
                FastApiIntegration(
                    transaction_style="endpoint",  # Use route paths as transaction names
                ),
                LoggingIntegration(
                    level=logging.INFO,        # Capture INFO+ as breadcrumbs
                    event_level=logging.ERROR,  # Send ERROR+ as events
                ),
            ],
            traces_sample_rate=0.1,
            send_default_pii=False,
            release=settings.RELEASE_VERSION,
        )
    except Exception as e:
        logger.error(f"[SENTRY] Failed to initialize: {e}")
        return False

    logger.debug(f"[SENTRY] Initialized for {settings.ENVIRONMENT} environment")
    return True


def capture_exception(exception: BaseException, extra: Optional[dict] = None) -> None:
    """
    Manually capture an exception to Sentry.

    Use this for exceptions that are caught and handled but should still
    be tracked. A no-op (beyond the SDK's own checks) when Sentry is not
    initialized.

    Args:
        exception: The exception to capture
        extra: Additional context to attach to the event

    Example:
        except Exception as exc:
            capture_exception(exc, extra={"start_time": start, "end_time": end})
            return {"data": [], "error": str(exc)}
    """
    try:
        with sentry_sdk.new_scope() as scope:
            for key, value in (extra or {}).items():
                scope.set_extra(key, value)
            sentry_sdk.capture_exception(exception)
    except Exception as e:
        logger.error(f"[SENTRY] Failed to capture exception: {e}")
