"""
FastAPI application entry point.

This module initializes the FastAPI application, configures middleware,
error handlers and registers the import routers.
"""
import logging
import os
from contextlib import asynccontextmanager
from datetime import datetime

import uvicorn
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware

from .api.dependencies import CORRELATION_HEADER, api_error_response, get_correlation_id
from .api.routers import import_attempts, imports
from .core.config import settings
from .core.errors import NOT_FOUND, UNHANDLED, VALIDATION_ERROR, ImportPipelineError
from .core.logging_config import configure_logging

# Ensure logging is configured before the application starts serving requests.
configure_logging(settings.log_level)

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Manage application lifecycle - startup and shutdown events."""
    if os.getenv("SKIP_DB_INIT") == "1":
        print("SKIP_DB_INIT=1 detected; skipping database bootstrap during startup")
        yield
        return

    try:
        from .db.models import init_import_tables

        print("Initializing database tables...")
        init_import_tables()
        print("\u2713 contacts, companies, licenses, import_attempts, import_issues tables ready")
    except Exception as e:
        print(f"ERROR: Failed to initialize database tables: {e}")
        print("The application cannot start without proper database setup.")
        raise

    yield


app = FastAPI(
    title="CRM Import API",
    version="1.0.0",
    description="CSV and Google Sheets imports for CRM contacts, companies and licenses",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.allowed_origins_list,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
    expose_headers=[CORRELATION_HEADER],
)


@app.middleware("http")
async def correlation_id_middleware(request: Request, call_next):
    """Assign every request a correlation id and echo it on the response."""
    incoming = request.headers.get(CORRELATION_HEADER, "").strip()[:64]
    request.state.correlation_id = incoming or None
    correlation_id = get_correlation_id(request)
    response = await call_next(request)
    response.headers[CORRELATION_HEADER] = correlation_id
    return response


@app.exception_handler(ImportPipelineError)
async def import_pipeline_error_handler(request: Request, exc: ImportPipelineError):
    correlation_id = get_correlation_id(request)
    log = logger.error if exc.status_code >= 500 else logger.warning
    log("[%s] %s %s -> %s: %s", correlation_id, request.method, request.url.path, exc.code, exc.message)
    return api_error_response(request, exc.status_code, exc.code, exc.message, exc.details)


@app.exception_handler(RequestValidationError)
async def request_validation_error_handler(request: Request, exc: RequestValidationError):
    details = [{"loc": list(err["loc"]), "msg": err["msg"], "type": err["type"]} for err in exc.errors()]
    return api_error_response(request, 422, VALIDATION_ERROR, "Invalid request parameters", details)


@app.exception_handler(404)
async def not_found_handler(request: Request, exc: Exception):
    return api_error_response(request, 404, NOT_FOUND, f"No route for {request.method} {request.url.path}")


@app.exception_handler(Exception)
async def unhandled_error_handler(request: Request, exc: Exception):
    correlation_id = get_correlation_id(request)
    logger.exception("[%s] Unhandled error on %s %s", correlation_id, request.method, request.url.path)
    return api_error_response(request, 500, UNHANDLED, "Internal server error")


app.include_router(imports.router)
app.include_router(import_attempts.router)


@app.get("/")
async def root():
    """Root endpoint returning API information."""
    return {
        "message": "CRM Import API",
        "version": "1.0.0"
    }


@app.get("/health")
async def health_check():
    """Health check endpoint for deployment monitoring."""
    return {
        "status": "healthy",
        "timestamp": datetime.now().isoformat(),
        "service": "crm-import-api"
    }


def run() -> None:
    """Serve the API with uvicorn (``crm-import`` console script)."""
    port = int(os.getenv("PORT", "8000"))
    uvicorn.run("crm_import.main:app", host=os.getenv("HOST", "0.0.0.0"), port=port, reload=False)


if __name__ == "__main__":
    run()
