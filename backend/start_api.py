#!/usr/bin/env python3
"""
Query Builder API Startup Script

Starts the query-builder FastAPI server for local development.
"""

import sys

import uvicorn

from querybuilder.config import get_settings


def main():
    """Start the query-builder API server."""
    settings = get_settings()
    print("Starting Query Builder API Server...")
    print(f"   Query engine:  {settings.QUERY_ENGINE_URL}")
    print(f"   Fallback:      {'on' if settings.ENABLE_EMPTY_RANGE_FALLBACK else 'off'} "
          f"{settings.FALLBACK_WINDOW_SECONDS}")
    print("")
    print("Documentation will be available at:")
    print("   Swagger UI:  http://localhost:8000/docs")
    print("   ReDoc:       http://localhost:8000/redoc")
    print("")

    try:
        uvicorn.run(
            "querybuilder.main:app",
            host="0.0.0.0",
            port=8000,
            reload=True,
            reload_dirs=["querybuilder"],
            log_level=settings.LOG_LEVEL.lower(),
        )
    except KeyboardInterrupt:
        print("\nShutting down query-builder API server...")
    except Exception as e:
        print(f"Error starting server: {e}")
        sys.exit(1)


if __name__ == "__main__":
    main()
