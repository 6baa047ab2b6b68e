"""Liveness and readiness probes for a running trigger.

``/health`` answers "is the process alive": it stays 200 while the
service is starting or running, even when individual ticks fail, and
carries the tick counters so the failures are visible.  ``/ready``
answers "is the mailbox actually being watched": it turns 503 once
``unready_after_failures`` ticks in a row have failed and recovers on
the next successful tick.
"""

from __future__ import annotations

import time
from typing import TYPE_CHECKING

from fastapi import FastAPI
from fastapi.responses import JSONResponse

from .models import HealthStatus, ServiceStatus

if TYPE_CHECKING:
    from .service import TriggerService

_ALIVE = (ServiceStatus.STARTING, ServiceStatus.RUNNING)


def create_health_app(service: TriggerService) -> FastAPI:
    app = FastAPI(title=f"{service.settings.name} health", docs_url=None, redoc_url=None)

    @app.get("/health")
    async def health() -> JSONResponse:
        status = HealthStatus(
            trigger_name=service.settings.name,
            status=service.status,
            uptime_seconds=time.monotonic() - service.start_time,
            details=service.health_check(),
        )
        return JSONResponse(
            content=status.model_dump(mode="json"),
            status_code=200 if service.status in _ALIVE else 503,
        )

    @app.get("/ready")
    async def ready() -> JSONResponse:
        is_ready = service.is_ready()
        content: dict[str, object] = {
            "ready": is_ready,
            "consecutive_failures": service.stats.consecutive_failures,
        }
        if not is_ready and service.stats.last_error:
            content["last_error"] = service.stats.last_error
        return JSONResponse(content=content, status_code=200 if is_ready else 503)

    return app
