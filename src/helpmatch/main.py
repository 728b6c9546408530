"""FastAPI application factory.

Learn: App factory pattern — create_app() returns a configured FastAPI
instance. Lifespan manages startup/shutdown (Redis relay, database).
Middleware, CORS, exception handlers and routers all registered here.
"""

import asyncio
from contextlib import asynccontextmanager

import structlog
from fastapi import FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy.exc import SQLAlchemyError

from helpmatch import __version__
from helpmatch.api import api_router
from helpmatch.config import settings
from helpmatch.realtime.broker import broker
from helpmatch.services.errors import StorageError

logger = structlog.get_logger()


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup and shutdown lifecycle.

    Learn: Anything before `yield` runs at startup, after `yield` at shutdown.
    Redis is optional — without it chat still works inside one process.
    """
    logger.info(
        "helpmatch.starting",
        version=__version__,
        environment=settings.environment,
        port=settings.port,
    )

    from helpmatch.realtime.pubsub import RedisRelay, close_redis, init_redis

    relay_task = None
    try:
        redis = await init_redis()
        broker.relay = RedisRelay(redis, broker)
        relay_task = asyncio.create_task(broker.relay.run())
        logger.info("helpmatch.redis_connected", url=settings.redis_url)
    except Exception as e:
        logger.warning("helpmatch.redis_unavailable", error=str(e))

    yield

    # Shutdown
    logger.info("helpmatch.shutdown")

    if relay_task is not None:
        relay_task.cancel()
        try:
            await relay_task
        except asyncio.CancelledError:
            pass
        except Exception as e:
            logger.warning("helpmatch.relay_stopped", error=str(e))
    broker.relay = None
    broker.reset()

    await close_redis()

    from helpmatch.db.engine import engine
    await engine.dispose()


async def _validation_error_handler(request: Request, exc: RequestValidationError):
    """Malformed bodies are a client error: 400, not FastAPI's default 422."""
    return JSONResponse(status_code=400, content={"detail": jsonable_encoder(exc.errors())})


async def _storage_error_handler(request: Request, exc: Exception):
    logger.error(
        "helpmatch.storage_error",
        path=request.url.path,
        method=request.method,
        error=str(exc),
    )
    return JSONResponse(
        status_code=503,
        content={"detail": "Storage temporarily unavailable. Try again."},
    )


async def _unexpected_error_handler(request: Request, exc: Exception):
    logger.exception("helpmatch.unhandled_error", path=request.url.path, method=request.method)
    return JSONResponse(status_code=500, content={"detail": "Internal server error"})


def create_app() -> FastAPI:
    """Build and return the FastAPI application."""
    app = FastAPI(
        title="HelpMatch",
        description="Help requests, matches and real-time chat between receivers and helpers",
        version=__version__,
        lifespan=lifespan,
    )

    # ── Middleware stack ──────────────────────────────────────
    # Note: Starlette middleware executes in reverse order of registration.
    # Request flow: CORS → RateLimit → Security → RequestId → handler

    from helpmatch.middleware.rate_limit import RateLimitMiddleware
    from helpmatch.middleware.request_id import RequestIdMiddleware
    from helpmatch.middleware.security import SecurityHeadersMiddleware

    app.add_middleware(RequestIdMiddleware)
    app.add_middleware(SecurityHeadersMiddleware)
    app.add_middleware(
        RateLimitMiddleware,
        default_rpm=settings.rate_limit_rpm,
        auth_rpm=settings.rate_limit_auth_rpm,
    )
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # ── Error mapping ─────────────────────────────────────────
    app.add_exception_handler(RequestValidationError, _validation_error_handler)
    app.add_exception_handler(StorageError, _storage_error_handler)
    app.add_exception_handler(SQLAlchemyError, _storage_error_handler)
    app.add_exception_handler(Exception, _unexpected_error_handler)

    # Mount API routes
    app.include_router(api_router)

    # Mount WebSocket route (live chat + request updates)
    from helpmatch.realtime.websocket import router as ws_router
    app.include_router(ws_router)

    return app


# Default app instance (used by uvicorn: helpmatch.main:app)
app = create_app()
