"""
Main FastAPI application - AutoDrop Multi-Agent Orchestrator.
"""

import math
import os
import structlog
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from autodrop.api.v1 import router as api_v1_router
from autodrop.core.exceptions import AutoDropError, RateLimitExceeded
from autodrop.core.startup import lifespan

# Configure structured logging
structlog.configure(
    processors=[
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.add_log_level,
        structlog.processors.JSONRenderer(),
    ],
    logger_factory=structlog.PrintLoggerFactory(),
)

logger = structlog.get_logger()

# ============================================================================
# FastAPI Application
# ============================================================================

app = FastAPI(
    title="AutoDrop Multi-Agent Orchestrator",
    description="Triage, handoffs, DAG workflows and conversations across dropshipping agents",
    version="1.0.0",
    lifespan=lifespan,
)

# ============================================================================
# Middleware Configuration
# ============================================================================

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# ============================================================================
# Error Handling
# ============================================================================


@app.exception_handler(AutoDropError)
async def autodrop_error_handler(request: Request, exc: AutoDropError):
    if exc.status_code >= 500:
        logger.error("request_failed", path=request.url.path, error=str(exc), error_type=type(exc).__name__)
    else:
        logger.warning("request_rejected", path=request.url.path, error=str(exc), status_code=exc.status_code)

    headers = None
    if isinstance(exc, RateLimitExceeded) and exc.retry_after:
        headers = {"Retry-After": str(max(1, math.ceil(exc.retry_after)))}

    return JSONResponse(status_code=exc.status_code, content={"error": str(exc)}, headers=headers)


@app.exception_handler(StarletteHTTPException)
async def http_error_handler(request: Request, exc: StarletteHTTPException):
    return JSONResponse(status_code=exc.status_code, content={"error": str(exc.detail)})


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError):
    errors = [{"loc": list(error.get("loc", ())), "msg": error.get("msg", "")} for error in exc.errors()]
    message = errors[0]["msg"] if errors else "Invalid request"
    return JSONResponse(status_code=400, content={"error": message, "details": errors})


# ============================================================================
# Mount API Routes
# ============================================================================

# Include all v1 API routes
app.include_router(api_v1_router)

# ============================================================================
# Application Entry Point
# ============================================================================

if __name__ == "__main__":
    import uvicorn

    port = int(os.getenv("PORT", 8000))
    host = os.getenv("HOST", "0.0.0.0")
    reload = os.getenv("RELOAD", "false").lower() == "true"

    logger.info(
        "starting_server",
        host=host,
        port=port,
        reload=reload
    )

    uvicorn.run(
        "main:app" if reload else app,
        host=host,
        port=port,
        reload=reload
    )
