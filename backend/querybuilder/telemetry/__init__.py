"""
Telemetry Module
================

Observability for the query-builder service.

Components:
- sentry.py: Error tracking

Usage:
    from querybuilder.telemetry import init_sentry, capture_exception
"""

from querybuilder.telemetry.sentry import capture_exception, init_sentry

__all__ = [
    "init_sentry",
    "capture_exception",
]
