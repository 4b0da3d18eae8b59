"""Application entry point."""

import logging

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from .api import api_router
from .core.config import settings
from .core.errors import SchedulingError
from .core.logging import RequestIDMiddleware, init_logging

logger = logging.getLogger(__name__)


async def scheduling_error_handler(request: Request, exc: SchedulingError) -> JSONResponse:
    """Render domain errors as the ``{success: false, ...}`` envelope."""
    logger.warning(
        "request failed",
        extra={"path": request.url.path, "code": exc.code, "error": exc.message},
    )
    return JSONResponse(exc.to_dict(), status_code=exc.status_code)


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    init_logging(settings.LOG_LEVEL)

    app = FastAPI(title="Staff Scheduler")
    app.add_middleware(RequestIDMiddleware)
    app.add_exception_handler(SchedulingError, scheduling_error_handler)
    app.include_router(api_router)
    return app


app = create_app()
