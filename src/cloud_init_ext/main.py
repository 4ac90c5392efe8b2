"""cloud-init-ext service - FastAPI with SQLAlchemy."""

from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager
import time
import uuid

from fastapi import FastAPI, Request, status
from fastapi.responses import JSONResponse
from sqlalchemy.exc import SQLAlchemyError
import structlog
import uvicorn

from . import __version__, routers
from .allocator import AddressAllocator
from .auth import DatabaseCredentialValidator, Unauthorized
from .config import Settings, get_settings
from .database import create_engine, create_schema, create_session_maker
from .errors import PersistenceError
from .logging_config import setup_logging
from .notifications import DiscordWebhookSink
from .orchestrator import ProvisioningOrchestrator
from .playbooks import PlaybookCatalog, PlaybookRunner
from .registry import ClientRegistry

logger = structlog.get_logger(__name__)

VERSION = __version__


def build_orchestrator(settings: Settings, registry: ClientRegistry) -> ProvisioningOrchestrator:
    """Wire the orchestrator from settings.

    Raises MissingPlaybook when a required function has no configured playbook.
    """
    catalog = PlaybookCatalog(settings.playbooks)
    catalog.validate()

    return ProvisioningOrchestrator(
        registry=registry,
        allocator=AddressAllocator(
            network=settings.pool_network,
            first_host=settings.pool_first_host,
            ceiling=settings.pool_ceiling,
        ),
        catalog=catalog,
        runner=PlaybookRunner(
            timeout=settings.playbook_timeout,
            executable=settings.ansible_playbook_bin,
        ),
        sink=DiscordWebhookSink(settings.discord_webhook_url, timeout=settings.notification_timeout),
        credential=settings.ansible_ssh_key,
        max_concurrent_jobs=settings.max_concurrent_jobs,
        max_queued_jobs=settings.max_queued_jobs,
        shutdown_grace_period=settings.shutdown_grace_period,
    )


def create_app(settings: Settings | None = None) -> FastAPI:
    """Build the application. Collaborators are created in the lifespan."""
    settings = settings or get_settings()

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
        setup_logging(
            service_name=settings.service_name,
            log_format=settings.log_format,
            log_level=settings.log_level,
            version=VERSION,
        )
        logger.info("service_starting", port=settings.port)

        engine = create_engine(settings.database_url)
        session_maker = create_session_maker(engine)
        try:
            await create_schema(engine)

            registry = ClientRegistry(session_maker)
            orchestrator = build_orchestrator(settings, registry)

            app.state.registry = registry
            app.state.credential_validator = DatabaseCredentialValidator(session_maker)
            app.state.orchestrator = orchestrator

            await orchestrator.start()
            try:
                yield
            finally:
                await orchestrator.stop()
        finally:
            await engine.dispose()

    app = FastAPI(
        title="cloud-init-ext",
        description="Address allocation and configuration for booting nodes",
        version=VERSION,
        lifespan=lifespan,
    )

    @app.middleware("http")
    async def correlation_middleware(request: Request, call_next):
        # Accept trailing slashes on every route
        path = request.scope["path"]
        if len(path) > 1 and path.endswith("/"):
            request.scope["path"] = path.rstrip("/")

        correlation_id = request.headers.get("X-Correlation-ID", f"req_{uuid.uuid4().hex[:8]}")
        structlog.contextvars.bind_contextvars(
            correlation_id=correlation_id, method=request.method, path=request.url.path
        )

        start = time.time()
        try:
            response = await call_next(request)
            duration_ms = (time.time() - start) * 1000

            if response.status_code >= 500:  # noqa: PLR2004
                logger.error(
                    "http_request_failed",
                    status_code=response.status_code,
                    duration_ms=round(duration_ms, 2),
                )
            else:
                logger.info(
                    "http_request", status_code=response.status_code, duration_ms=round(duration_ms, 2)
                )

            return response
        except Exception as e:
            duration_ms = (time.time() - start) * 1000
            logger.error(
                "http_request_exception",
                error=str(e),
                error_type=type(e).__name__,
                duration_ms=round(duration_ms, 2),
                exc_info=True,
            )
            raise
        finally:
            structlog.contextvars.unbind_contextvars("correlation_id", "method", "path")

    @app.exception_handler(Unauthorized)
    async def unauthorized_handler(request: Request, exc: Unauthorized) -> JSONResponse:
        return JSONResponse(status_code=status.HTTP_401_UNAUTHORIZED, content={"detail": "Unauthorized"})

    @app.exception_handler(PersistenceError)
    @app.exception_handler(SQLAlchemyError)
    async def storage_error_handler(request: Request, exc: Exception) -> JSONResponse:
        logger.error("storage_error", error=str(exc), error_type=type(exc).__name__)
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content={"detail": "An internal error occurred"},
        )

    app.include_router(routers.health.router)
    app.include_router(routers.cloud_init.router, prefix="/v1")
    app.include_router(routers.registered_clients.router, prefix="/v1")

    return app


def run() -> None:
    """Console entry point."""
    settings = get_settings()
    uvicorn.run(create_app(settings), host=settings.host, port=settings.port)


if __name__ == "__main__":
    run()
