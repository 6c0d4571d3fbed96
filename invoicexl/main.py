"""
FastAPI application entry point.

Configures the application with routes, middleware, and settings.
"""
import logging
import traceback

import structlog
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.gzip import GZipMiddleware
from fastapi.responses import JSONResponse

from invoicexl.api.routes import invoices, monitoring
from invoicexl.config import get_settings
from invoicexl.engine import __version__
from invoicexl.exceptions import InvalidInvoicePayloadError, InvoiceXLError
from invoicexl.middleware.logging import (
    CorrelationIdMiddleware,
    RequestLoggingMiddleware,
    add_correlation_id_processor,
    redact_sensitive_processor,
)

settings = get_settings()

logging.basicConfig(format="%(message)s", level=getattr(logging, settings.log_level.upper(), logging.INFO))

# Configure structured logging
structlog.configure(
    processors=[
        structlog.stdlib.filter_by_level,
        add_correlation_id_processor,
        redact_sensitive_processor,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.UnicodeDecoder(),
        structlog.processors.JSONRenderer(),
    ],
    wrapper_class=structlog.stdlib.BoundLogger,
    context_class=dict,
    logger_factory=structlog.stdlib.LoggerFactory(),
    cache_logger_on_first_use=True,
)

logger = structlog.get_logger(__name__)

app = FastAPI(
    title="InvoiceXL API",
    description="""
## Invoice Evidence-Combination & Reconciliation API

InvoiceXL turns noisy invoice text into line items, adjustments and totals,
each backed by scored evidence and a confidence report.

### Key Features

- **Multi-Strategy Total Finder**: eleven independent strategies vote on the invoice total
- **Line-Item Repair**: quantity, unit price and catch-weight corrections
- **Reconciliation**: printed total priority, synthetic balancing adjustments, salvage search
- **Money Parsing**: currency, parenthetical, trailing-minus and CR forms
    """,
    version=__version__,
    docs_url="/docs",
    redoc_url="/redoc",
    openapi_tags=[
        {"name": "Invoices", "description": "Invoice extraction and total finding"},
        {"name": "Amounts", "description": "Money token parsing"},
        {"name": "Monitoring", "description": "Health checks"},
    ],
)

# Logging middleware (order matters: correlation ID first)
app.add_middleware(RequestLoggingMiddleware)
app.add_middleware(CorrelationIdMiddleware)

# GZip compression for responses > 1KB
app.add_middleware(GZipMiddleware, minimum_size=1000)

app.include_router(invoices.router, prefix="/api/v1", tags=["Invoices"])
app.include_router(monitoring.router, tags=["Monitoring"])


# Global Exception Handlers
@app.exception_handler(InvoiceXLError)
async def invoicexl_exception_handler(request: Request, exc: InvoiceXLError):
    """Handle all InvoiceXL custom exceptions."""
    logger.error(
        "invoicexl_error",
        error_code=exc.error_code,
        message=exc.message,
        details=exc.details,
        path=str(request.url.path),
    )
    return JSONResponse(status_code=exc.http_status, content=exc.to_dict())


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    """Render payload validation failures in the InvoiceXL error format."""
    errors = [
        f"{'.'.join(str(part) for part in err.get('loc', ()))}: {err.get('msg', '')}"
        for err in exc.errors()
    ]
    error = InvalidInvoicePayloadError(errors=errors)
    logger.warning("invalid_payload", path=str(request.url.path), errors=errors)
    return JSONResponse(status_code=error.http_status, content=error.to_dict())


@app.exception_handler(Exception)
async def generic_exception_handler(request: Request, exc: Exception):
    """Handle unexpected exceptions with consistent format."""
    logger.error(
        "unhandled_error",
        error_type=type(exc).__name__,
        message=str(exc),
        path=str(request.url.path),
        traceback=traceback.format_exc(),
    )
    return JSONResponse(
        status_code=500,
        content={
            "error": True,
            "error_code": "IXL-999",
            "message": "An unexpected error occurred. Please try again.",
            "details": {"error_type": type(exc).__name__} if settings.debug else {},
        },
    )


@app.on_event("startup")
async def startup_event() -> None:
    """Log effective configuration on startup."""
    logger.info(
        "Starting InvoiceXL API",
        debug=settings.debug,
        max_text_chars=settings.max_text_chars,
        version=__version__,
    )


@app.on_event("shutdown")
async def shutdown_event() -> None:
    logger.info("Shutting down InvoiceXL API")
