"""
Main FastAPI application entry point.
"""

import logging
import time
from contextlib import asynccontextmanager
from typing import AsyncGenerator, Callable, Optional

import httpx
import structlog
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from aiproxy.core.config import Settings, get_settings
from aiproxy.gateway import (
    GatewayAuthenticator,
    GatewayError,
    RateLimiter,
    TracingMiddleware,
    create_adapters,
    health_router,
    openai_router,
    voice_router,
)
from aiproxy.gateway.errors import NotFoundError
from aiproxy.gateway.services.voice import DeepgramClient

settings = get_settings()

# Configure structured logging
logging.basicConfig(format="%(message)s", level=settings.log.level.upper())

structlog.configure(
    processors=[
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.UnicodeDecoder(),
        structlog.processors.JSONRenderer() if settings.log.format == "json" else structlog.dev.ConsoleRenderer(),
    ],
    context_class=dict,
    logger_factory=structlog.stdlib.LoggerFactory(),
    cache_logger_on_first_use=True,
)

logger = structlog.get_logger(__name__)

ERROR_MESSAGES = {
    405: "method not allowed",
}


def create_app(
    settings: Optional[Settings] = None,
    http_client: Optional[httpx.AsyncClient] = None,
    clock: Callable[[], float] = time.time
) -> FastAPI:
    """
    Build the gateway application.

    Args:
        settings: Configuration (defaults to the cached environment settings)
        http_client: Shared outbound client; created and owned by the app if omitted
        clock: Time source for rate limit windows and the subscription cache
    """
    settings = settings or get_settings()
    tracing = TracingMiddleware()

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
        """
        Application lifespan manager.

        Creates the shared HTTP client, the provider adapters, the rate
        limiter actors and the authenticator; tears them down on shutdown.
        """
        logger.info("Starting application", version=settings.app.app_version, env=settings.app.app_env)

        client = http_client or httpx.AsyncClient(
            timeout=httpx.Timeout(None, connect=settings.providers.upstream_connect_timeout)
        )

        app.state.settings = settings
        app.state.http_client = client
        app.state.adapters = create_adapters(settings.providers, client)
        app.state.rate_limiter = RateLimiter.from_settings(settings.rate_limit, clock=clock)
        app.state.authenticator = GatewayAuthenticator.from_settings(settings.auth, client, clock=clock)
        app.state.deepgram = DeepgramClient.from_settings(settings.deepgram, client)

        # Log important configuration
        logger.info(
            "Configuration loaded",
            app_name=settings.app.app_name,
            providers=[provider.value for provider in app.state.adapters],
            rate_limiting=settings.rate_limit.enabled,
            deepgram=app.state.deepgram.configured,
            cors_origins=settings.app.cors_origins_list,
        )

        yield

        # Shutdown
        logger.info("Shutting down application")
        await app.state.rate_limiter.close()
        if http_client is None:
            await client.aclose()

    app = FastAPI(
        title=settings.app.app_name,
        version=settings.app.app_version,
        description="AI Proxy - OpenAI-compatible edge gateway",
        docs_url="/docs" if settings.app.app_debug else None,
        redoc_url=None,
        lifespan=lifespan,
    )

    # ========================================================================
    # Middleware
    # ========================================================================

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.app.cors_origins_list,
        allow_credentials=False,
        allow_methods=["*"],
        allow_headers=["*"],
        expose_headers=["X-Request-ID", "X-Transcription", "X-Response-Text", "Retry-After"],
    )

    @app.middleware("http")
    async def log_requests(request: Request, call_next):
        """Log all requests and add request ID."""
        request_id = tracing.extract_or_generate_request_id(request.headers)
        request.state.request_id = request_id

        peer = request.client.host if request.client else None
        ctx = tracing.create_context(
            request_id=request_id,
            endpoint=request.url.path,
            client_ip=tracing.extract_client_ip(request.headers, peer),
            user_agent=request.headers.get("user-agent"),
        )

        if settings.log.requests:
            logger.info(
                "Request started",
                method=request.method,
                path=request.url.path,
                request_id=request_id,
                client_ip=ctx.client_ip,
            )

        try:
            response = await call_next(request)
        except Exception as e:
            logger.error(
                "Request failed",
                method=request.method,
                path=request.url.path,
                error=str(e),
                duration_ms=round((time.time() - ctx.start_time) * 1000, 2),
                request_id=request_id,
            )
            raise

        response.headers["X-Request-ID"] = request_id

        if settings.log.requests:
            logger.info(
                "Request completed",
                method=request.method,
                path=request.url.path,
                status_code=response.status_code,
                duration_ms=round((time.time() - ctx.start_time) * 1000, 2),
                request_id=request_id,
            )

        return response

    # ========================================================================
    # Exception Handlers
    # ========================================================================

    @app.exception_handler(GatewayError)
    async def gateway_exception_handler(request: Request, exc: GatewayError):
        """Render gateway errors as {"error": message, ...details}."""
        log = logger.warning if exc.status_code >= 500 else logger.info
        log(
            "Request rejected",
            path=request.url.path,
            status_code=exc.status_code,
            error_type=exc.error_type,
            error=exc.message,
            request_id=getattr(request.state, "request_id", None),
        )
        return JSONResponse(
            status_code=exc.status_code,
            content=exc.to_response_body(),
            headers=exc.response_headers(),
        )

    @app.exception_handler(StarletteHTTPException)
    async def http_exception_handler(request: Request, exc: StarletteHTTPException):
        """Handle HTTP exceptions (unmatched routes and methods)."""
        if exc.status_code == 404:
            return await gateway_exception_handler(request, NotFoundError())

        message = ERROR_MESSAGES.get(exc.status_code, str(exc.detail))
        return JSONResponse(
            status_code=exc.status_code,
            content={"error": message},
            headers=getattr(exc, "headers", None),
        )

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(request: Request, exc: RequestValidationError):
        """Handle validation errors."""
        errors = exc.errors()
        if errors:
            field = ".".join(str(loc) for loc in errors[0]["loc"])
            message = f"Invalid request: {field}: {errors[0]['msg']}"
        else:
            message = "Invalid request"
        return JSONResponse(status_code=400, content={"error": message})

    @app.exception_handler(Exception)
    async def general_exception_handler(request: Request, exc: Exception):
        """Handle general exceptions."""
        logger.error(
            "Unhandled exception",
            path=request.url.path,
            error=str(exc),
            exc_info=exc,
        )
        return JSONResponse(status_code=500, content={"error": "internal error"})

    # ========================================================================
    # Routes
    # ========================================================================

    app.include_router(health_router)
    app.include_router(openai_router)
    app.include_router(voice_router)

    return app


app = create_app()
