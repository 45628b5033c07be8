from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Dict, Optional

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from .config import Settings
from .container import ApplicationContainer, build_container
from .logging import configure_logging
from ..domain.exceptions import (
    AuthenticationError,
    BillingError,
    ConflictError,
    InvalidSignatureError,
    NotFoundError,
    PermissionDeniedError,
    UpstreamError,
    ValidationError,
    WebhookProcessingError,
)
from ..domain.ports.payment_gateway import PaymentGatewayClient
from ..infrastructure.payments.stripe_gateway import StripeGateway
from ..infrastructure.persistence.sqlite import SQLitePersistence
from ..presentation.api.routers import offers as offers_router
from ..presentation.api.routers import payments as payments_router
from ..presentation.api.routers import subscriptions as subscriptions_router

logger = logging.getLogger(__name__)

# Checked in order; subclasses come before their bases.
_ERROR_STATUS = (
    (ValidationError, status.HTTP_400_BAD_REQUEST),
    (InvalidSignatureError, status.HTTP_400_BAD_REQUEST),
    (AuthenticationError, status.HTTP_401_UNAUTHORIZED),
    (PermissionDeniedError, status.HTTP_403_FORBIDDEN),
    (NotFoundError, status.HTTP_404_NOT_FOUND),
    (ConflictError, status.HTTP_409_CONFLICT),
    (UpstreamError, status.HTTP_502_BAD_GATEWAY),
    (WebhookProcessingError, status.HTTP_500_INTERNAL_SERVER_ERROR),
)


def status_for(exc: BillingError) -> int:
    for error_type, status_code in _ERROR_STATUS:
        if isinstance(exc, error_type):
            return status_code
    return status.HTTP_500_INTERNAL_SERVER_ERROR


def create_application(
    settings: Optional[Settings] = None,
    payment_gateway: Optional[PaymentGatewayClient] = None,
) -> FastAPI:
    settings = settings or Settings()

    app = FastAPI(
        title="StudyPass Billing",
        lifespan=_create_lifespan(settings, payment_gateway),
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_allow_origins,
        allow_credentials=False,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(subscriptions_router.router)
    app.include_router(payments_router.router)
    app.include_router(offers_router.router)
    _register_exception_handlers(app)

    @app.get("/health")
    async def health() -> Dict[str, Any]:
        container: ApplicationContainer = app.state.container  # type: ignore[attr-defined]
        return {
            "ok": True,
            "paymentsConfigured": bool(container.settings.stripe_secret_key),
        }

    return app


def _register_exception_handlers(app: FastAPI) -> None:
    @app.exception_handler(BillingError)
    async def billing_error_handler(request: Request, exc: BillingError) -> JSONResponse:
        status_code = status_for(exc)
        if status_code >= 500:
            logger.error("%s %s failed: %s", request.method, request.url.path, exc.message)
        return JSONResponse(
            status_code=status_code,
            content={"error": exc.code, "message": exc.message},
        )

    @app.exception_handler(RequestValidationError)
    async def request_validation_handler(
        request: Request, exc: RequestValidationError
    ) -> JSONResponse:
        details = "; ".join(
            f"{'.'.join(str(part) for part in error['loc'])}: {error['msg']}"
            for error in exc.errors()
        )
        return JSONResponse(
            status_code=status.HTTP_400_BAD_REQUEST,
            content={"error": ValidationError.code, "message": details},
        )

    @app.exception_handler(Exception)
    async def unexpected_error_handler(request: Request, exc: Exception) -> JSONResponse:
        logger.exception("Unhandled error on %s %s", request.method, request.url.path)
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content={"error": "INTERNAL_ERROR", "message": "Internal server error"},
        )


def _create_lifespan(settings: Settings, payment_gateway: Optional[PaymentGatewayClient]):
    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        configure_logging(settings.log_level)
        persistence = SQLitePersistence(settings.database_path)
        gateway = payment_gateway or StripeGateway(
            settings.stripe_secret_key,
            currency=settings.stripe_currency,
            webhook_tolerance=settings.webhook_tolerance_seconds,
        )
        if not settings.stripe_secret_key and payment_gateway is None:
            logger.warning("STRIPE_SECRET_KEY is not set; gateway calls will fail")

        app.state.container = build_container(settings, persistence, gateway)  # type: ignore[attr-defined]
        logger.info("Billing core started with database %s", settings.database_path)

        try:
            yield
        finally:
            persistence.close()

    return lifespan
