"""FastAPI application factory for the EcoPickup pickup lifecycle API."""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from slowapi.errors import RateLimitExceeded

from ecopickup.config import settings
from ecopickup.database.engine import engine
from ecopickup.exceptions import AppException, RateLimitException
from ecopickup.middleware.request_id import RequestIdMiddleware
from ecopickup.modules.pickup.handlers import register_pickup_handlers
from ecopickup.modules.pickup.live_feed import build_pickup_feed
from ecopickup.rate_limit import limiter
from ecopickup.schemas.responses import ErrorBody, ErrorResponse

logger = logging.getLogger(__name__)


def configure_logging() -> None:
    logging.basicConfig(
        level=settings.log_level.upper(),
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    )


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Own the live feed for the process lifetime; release it and the pool on shutdown."""
    app.state.pickup_feed = build_pickup_feed()
    logger.info("Live pickup feed backend: %s", settings.live_feed_backend)
    try:
        yield
    finally:
        await app.state.pickup_feed.close()
        await engine.dispose()


def _envelope(
    request: Request,
    status_code: int,
    code: str,
    message: str,
    details: list | None = None,
    retryable: bool = False,
) -> JSONResponse:
    body = ErrorBody(
        code=code,
        message=message,
        details=details or [],
        retryable=retryable,
        request_id=getattr(request.state, "request_id", "unknown"),
    )
    return JSONResponse(
        status_code=status_code,
        content=ErrorResponse(error=body).model_dump(by_alias=True, exclude_none=True),
    )


def _validation_details(exc: RequestValidationError) -> list[dict]:
    return [
        {"field": ".".join(str(part) for part in err.get("loc", ())), "message": err.get("msg", "")}
        for err in exc.errors()
    ]


def register_exception_handlers(application: FastAPI) -> None:
    """Render every failure as the ``{"error": {...}}`` envelope."""

    @application.exception_handler(AppException)
    async def handle_domain_error(request: Request, exc: AppException) -> JSONResponse:
        if exc.retryable:
            logger.warning("%s on %s: %s", exc.code, request.url.path, exc.message)
        return _envelope(
            request, exc.status_code, exc.code, exc.message, exc.details, exc.retryable
        )

    @application.exception_handler(RequestValidationError)
    async def handle_request_validation(
        request: Request, exc: RequestValidationError
    ) -> JSONResponse:
        return _envelope(
            request, 422, "VALIDATION_ERROR", "Validation failed", _validation_details(exc)
        )

    @application.exception_handler(RateLimitExceeded)
    async def handle_rate_limit(request: Request, exc: RateLimitExceeded) -> JSONResponse:
        return await handle_domain_error(
            request, RateLimitException(f"Rate limit exceeded: {exc.detail}")
        )

    @application.exception_handler(Exception)
    async def handle_unexpected(request: Request, exc: Exception) -> JSONResponse:
        logger.exception("Unhandled error on %s %s", request.method, request.url.path)
        return _envelope(request, 500, "INTERNAL_ERROR", "An unexpected error occurred.")


def create_app() -> FastAPI:
    """Build and configure the FastAPI application."""
    configure_logging()
    register_pickup_handlers()

    application = FastAPI(
        title="EcoPickup API",
        description="Pickup scheduling and lifecycle for the recycling marketplace.",
        version="0.1.0",
        lifespan=lifespan,
        docs_url="/api/docs",
        redoc_url="/api/redoc",
        openapi_url="/api/openapi.json",
    )
    application.state.limiter = limiter

    # Starlette runs the last-added middleware first, so request IDs exist for CORS errors too
    application.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins_list,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    application.add_middleware(RequestIdMiddleware)

    from ecopickup.api.v1 import v1_router

    application.include_router(v1_router)
    register_exception_handlers(application)

    @application.get("/health")
    async def health_check() -> dict:
        return {"status": "ok"}

    return application


app = create_app()
