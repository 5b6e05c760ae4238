"""FastAPI application factory for the METABYTE live chat backend."""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from slowapi.errors import RateLimitExceeded

from src.config import settings
from src.database.engine import engine
from src.exceptions import AppException, RateLimitException, ValidationException
from src.middleware.rate_limit import limiter
from src.middleware.request_id import RequestIdMiddleware
from src.modules.chat.broadcaster import EventBroadcaster
from src.modules.chat.notifications import TelegramNotifier

logging.basicConfig(
    level=settings.log_level.upper(),
    format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """One broadcaster and one lead notifier per process; both are released on shutdown."""
    broadcaster = EventBroadcaster()
    notifier = TelegramNotifier()
    app.state.broadcaster = broadcaster
    app.state.notifier = notifier
    logger.info(
        "Chat event broadcaster started (Telegram notifications %s)",
        "enabled" if notifier.enabled else "disabled",
    )
    try:
        yield
    finally:
        broadcaster.close()
        await notifier.close()
        await engine.dispose()
        logger.info("Chat event broadcaster stopped")


def _error_response(
    request: Request,
    status_code: int,
    code: str,
    message: str,
    details: list | None = None,
) -> JSONResponse:
    """Render the ``{"error": {...}}`` envelope used by every failure."""
    return JSONResponse(
        status_code=status_code,
        content={
            "error": {
                "code": code,
                "message": message,
                "details": details or [],
                "requestId": getattr(request.state, "request_id", "unknown"),
            }
        },
    )


def _register_exception_handlers(application: FastAPI) -> None:
    @application.exception_handler(AppException)
    async def app_exception_handler(request: Request, exc: AppException) -> JSONResponse:
        return _error_response(request, exc.status_code, exc.code, exc.message, exc.details)

    @application.exception_handler(RequestValidationError)
    async def validation_exception_handler(
        request: Request, exc: RequestValidationError
    ) -> JSONResponse:
        # Malformed chat input is a client error reported as 400
        details = [
            {"field": ".".join(str(loc) for loc in err.get("loc", [])), "message": err.get("msg", "")}
            for err in exc.errors()
        ]
        return _error_response(
            request,
            ValidationException.status_code,
            ValidationException.code,
            "Validation failed",
            details,
        )

    @application.exception_handler(RateLimitExceeded)
    async def rate_limit_handler(request: Request, exc: RateLimitExceeded) -> JSONResponse:
        logger.warning("Rate limit hit on %s: %s", request.url.path, exc.detail)
        return _error_response(
            request, RateLimitException.status_code, RateLimitException.code, str(exc.detail)
        )

    @application.exception_handler(Exception)
    async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
        logger.exception("Unhandled exception: %s", exc)
        return _error_response(request, 500, "INTERNAL_ERROR", "An unexpected error occurred.")


def create_app() -> FastAPI:
    """Build and configure the FastAPI application."""
    application = FastAPI(
        title="METABYTE Live Chat API",
        description="Visitor chat with AI replies and live admin takeover.",
        version="0.1.0",
        lifespan=lifespan,
        docs_url="/api/docs",
        redoc_url="/api/redoc",
        openapi_url="/api/openapi.json",
    )
    application.state.limiter = limiter

    # Starlette runs the last-added middleware first: request ids wrap CORS
    application.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins_list,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    application.add_middleware(RequestIdMiddleware)

    from src.api.v1 import v1_router

    application.include_router(v1_router)
    _register_exception_handlers(application)

    @application.get("/health")
    async def health_check(request: Request) -> dict:
        broadcaster = getattr(request.app.state, "broadcaster", None)
        return {
            "status": "ok",
            "streams": broadcaster.listener_count() if broadcaster is not None else 0,
        }

    return application


app = create_app()
