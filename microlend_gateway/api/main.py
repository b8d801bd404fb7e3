"""FastAPI application factory"""

from fastapi import FastAPI, HTTPException, Request
from fastapi.responses import JSONResponse
from prometheus_client import generate_latest, CONTENT_TYPE_LATEST
from starlette.responses import Response

from microlend_gateway.api.middleware import RequestIDMiddleware, MetricsMiddleware
from microlend_gateway.api.v1 import borrowers, loans, offers, repayments
from microlend_gateway.api.v1.schemas import ErrorResponse
from microlend_gateway.domain.exceptions import CreditLimitExceededError, DomainException
from microlend_gateway.infrastructure.observability.logging import setup_logging
from microlend_gateway.config import settings

# Setup structured logging
setup_logging(settings.log_level)


def domain_exception_handler(request: Request, exc: DomainException) -> JSONResponse:
    body = ErrorResponse(code=exc.code, message=exc.message, retryable=exc.retryable)
    if isinstance(exc, CreditLimitExceededError):
        body.available_credit = exc.available_credit

    headers = {"Retry-After": "1"} if exc.retryable else None
    return JSONResponse(
        status_code=exc.http_status,
        content=body.model_dump(mode="json", exclude_none=True),
        headers=headers,
    )


def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
    body = ErrorResponse(
        code=f"HTTP_{exc.status_code}",
        message=str(exc.detail),
        retryable=exc.status_code >= 500,
    )
    return JSONResponse(status_code=exc.status_code, content=body.model_dump(mode="json", exclude_none=True))


def create_app() -> FastAPI:
    """Create and configure FastAPI application"""
    app = FastAPI(
        title="Microlend Gateway",
        description="Credit scoring and USSD loan issuance service",
        version="0.1.0",
        docs_url="/docs",
        redoc_url="/redoc",
    )

    # Add middleware (order matters: last added = first executed)
    app.add_middleware(MetricsMiddleware)
    app.add_middleware(RequestIDMiddleware)

    app.add_exception_handler(DomainException, domain_exception_handler)
    app.add_exception_handler(HTTPException, http_exception_handler)

    # Health check endpoint
    @app.get("/health")
    def health_check():
        return {"status": "ok", "service": settings.service_name}

    # Prometheus metrics endpoint
    @app.get("/metrics")
    def metrics():
        return Response(content=generate_latest(), media_type=CONTENT_TYPE_LATEST)

    # Register API routers
    app.include_router(offers.router, prefix="/v1", tags=["offers"])
    app.include_router(loans.router, prefix="/v1", tags=["loans"])
    app.include_router(repayments.router, prefix="/v1", tags=["repayments"])
    app.include_router(borrowers.router, prefix="/v1", tags=["borrowers"])

    return app


app = create_app()
