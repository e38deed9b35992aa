"""
FastAPI app exposing the monitor snapshot at ``GET /health``.
Every other path is a 404.
"""

import datetime as dt

from fastapi import FastAPI

from dex_monitor.status import StatusReporter


def create_app(reporter: StatusReporter) -> FastAPI:
    app = FastAPI(docs_url=None, redoc_url=None, openapi_url=None)

    @app.get("/health")
    async def health():
        return {
            "status": "ok",
            "timestamp": dt.datetime.now(dt.timezone.utc).isoformat(),
            "monitor": reporter.snapshot(),
        }

    return app
