"""FastAPI application entry point."""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse, Response

from notifier.core.broker import RedisQueueBroker
from notifier.core.config import settings
from notifier.core.database import async_session_maker, engine
from notifier.core.exceptions import BrokerConnectionError, ValidationError
from notifier.core.logging import log_error, setup_logging
from notifier.core.metrics import get_metrics, get_metrics_content_type, set_app_info
from notifier.core.middleware import CorrelationIdMiddleware, MetricsMiddleware, RequestLoggingMiddleware
from notifier.core.redis import redis_client
from notifier.core.tracing import setup_tracing, shutdown_tracing
from notifier.modules.consumer.router import router as consumer_router
from notifier.modules.consumer.supervisor import ConsumerSupervisor
from notifier.modules.delivery.channels import default_senders
from notifier.modules.delivery.engine import DispatchEngine
from notifier.modules.delivery.repository import SqlDeliveryLog
from notifier.modules.delivery.router import router as delivery_router
from notifier.modules.preference.cache import PreferenceCache
from notifier.modules.preference.repository import SqlPreferenceStore
from notifier.modules.preference.router import router as preference_router
from notifier.modules.routing.router import router as routing_router
from notifier.modules.routing.service import NotificationPublisher

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Open the broker, wire the pipeline and start consumers; undo on shutdown."""
    broker = RedisQueueBroker(settings.BROKER_URL)
    try:
        await broker.connect()
    except BrokerConnectionError as e:
        # Never serve traffic without the broker
        log_error(logger, "Broker unreachable at startup", e)
        raise

    publisher = NotificationPublisher(
        broker,
        message_ttl=settings.QUEUE_MESSAGE_TTL_SECONDS,
        max_length=settings.QUEUE_MAX_LENGTH,
    )
    await publisher.declare_queues()

    preference_cache = PreferenceCache(
        redis_client,
        SqlPreferenceStore(async_session_maker),
        ttl_seconds=settings.PREFERENCE_CACHE_TTL_SECONDS,
    )
    dispatch_engine = DispatchEngine(
        preference_cache,
        default_senders(settings),
        SqlDeliveryLog(async_session_maker),
        channel_timeout=settings.CHANNEL_SEND_TIMEOUT_SECONDS,
        hint_policy=settings.CHANNEL_HINT_POLICY,
    )
    supervisor = ConsumerSupervisor.from_settings(broker, dispatch_engine, settings)

    app.state.broker = broker
    app.state.publisher = publisher
    app.state.preference_cache = preference_cache
    app.state.dispatch_engine = dispatch_engine
    app.state.supervisor = supervisor

    await supervisor.start_all()
    logger.info("Notification service started", extra={"port": settings.PORT})

    try:
        yield
    finally:
        await supervisor.stop_all(timeout=settings.DISPATCH_TIMEOUT_SECONDS)
        await broker.close()
        await redis_client.aclose()
        await engine.dispose()
        shutdown_tracing()
        logger.info("Notification service stopped")


def _error_body(error: str, message: str) -> dict:
    return {"status": "error", "error": error, "message": message}


def register_exception_handlers(app: FastAPI) -> None:
    @app.exception_handler(ValidationError)
    async def validation_error_handler(request: Request, exc: ValidationError):
        return JSONResponse(status_code=400, content=_error_body(exc.code, exc.message))

    @app.exception_handler(RequestValidationError)
    async def request_validation_handler(request: Request, exc: RequestValidationError):
        details = "; ".join(
            f"{'.'.join(str(part) for part in err['loc'] if part != 'body')}: {err['msg']}"
            for err in exc.errors()
        )
        return JSONResponse(status_code=400, content=_error_body("validation_error", details))

    @app.exception_handler(Exception)
    async def unhandled_error_handler(request: Request, exc: Exception):
        log_error(logger, "Unhandled error", exc, path=request.url.path)
        message = str(exc) if settings.is_development else "Something went wrong"
        return JSONResponse(status_code=500, content=_error_body("internal_error", message))


def create_app(app_lifespan=lifespan) -> FastAPI:
    """Build the application. Tests pass their own lifespan to inject fakes."""
    app = FastAPI(
        title=settings.PROJECT_NAME,
        version=settings.VERSION,
        description="At-least-once notification dispatch over email, SMS and push.",
        openapi_url=f"{settings.API_PREFIX}/openapi.json",
        lifespan=app_lifespan,
    )

    app.add_middleware(RequestLoggingMiddleware)
    app.add_middleware(CorrelationIdMiddleware)
    app.add_middleware(MetricsMiddleware)

    register_exception_handlers(app)

    @app.get("/health", tags=["health"])
    async def health_check(request: Request) -> dict:
        """Liveness plus broker reachability."""
        broker = getattr(request.app.state, "broker", None)
        broker_ok = bool(broker) and await broker.ping()
        return {
            "status": "healthy" if broker_ok else "degraded",
            "broker": "connected" if broker_ok else "disconnected",
            "version": settings.VERSION,
        }

    @app.get("/metrics", tags=["health"])
    async def metrics() -> Response:
        return Response(content=get_metrics(), media_type=get_metrics_content_type())

    # Fixed paths before /notifications/{user_id}
    app.include_router(routing_router, prefix=settings.API_PREFIX)
    app.include_router(preference_router, prefix=settings.API_PREFIX)
    app.include_router(consumer_router, prefix=settings.API_PREFIX)
    app.include_router(delivery_router, prefix=settings.API_PREFIX)

    return app


setup_logging(
    level="DEBUG" if settings.DEBUG else "INFO",
    json_format=True,
    service=settings.PROJECT_NAME,
)

setup_tracing(
    service_name=settings.PROJECT_NAME,
    service_version=settings.VERSION,
    environment=settings.ENVIRONMENT,
    otlp_endpoint=settings.OTLP_ENDPOINT,
    enable_console_export=settings.DEBUG,
)

set_app_info(version=settings.VERSION, environment=settings.ENVIRONMENT)

app = create_app()


if __name__ == "__main__":
    import uvicorn

    uvicorn.run("notifier.main:app", host="0.0.0.0", port=settings.PORT)
