"""FastAPI application entry point."""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from taskpod.api.routes import router
from taskpod.config import Settings, get_settings
from taskpod.database.session import Database
from taskpod.errors import (
    ExecutionObservationFailed,
    ExecutionTimedOut,
    PersistenceFailed,
    ProvisioningFailed,
    TaskNotFound,
    TaskPodError,
    ValidationFailed,
)
from taskpod.orchestrator import ExecutionOrchestrator
from taskpod.repository import TaskRepository
from taskpod.units import ExecutionUnitClient, create_unit_client
from taskpod.validator import CommandValidator


logger = logging.getLogger(__name__)

ERROR_STATUS_CODES: dict[type[TaskPodError], int] = {
    ValidationFailed: 400,
    TaskNotFound: 404,
    ProvisioningFailed: 502,
    ExecutionObservationFailed: 502,
    ExecutionTimedOut: 504,
    PersistenceFailed: 500,
}


def configure_logging(settings: Settings) -> None:
    logging.basicConfig(
        level=settings.log_level.upper(),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )


async def taskpod_error_handler(request: Request, exc: TaskPodError) -> JSONResponse:
    """Map the error taxonomy onto HTTP responses."""
    status_code = ERROR_STATUS_CODES.get(type(exc), 500)
    body = {
        "error_code": exc.error_code,
        "category": exc.category,
        "detail": exc.message,
    }
    if isinstance(exc, PersistenceFailed):
        body["execution"] = exc.record.model_dump(mode="json")
    return JSONResponse(status_code=status_code, content=body)


def create_app(
    settings: Settings | None = None,
    unit_client: ExecutionUnitClient | None = None,
) -> FastAPI:
    """Build the application.

    Args:
        settings: Configuration (defaults to environment settings)
        unit_client: Execution unit client to inject; built from settings if None
    """
    settings = settings or get_settings()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Application lifespan handler."""
        # Startup
        logger.info(f"Starting {settings.app_name} v{settings.app_version}")

        db = Database(settings)
        await db.init()
        repository = TaskRepository(db)
        client = unit_client or create_unit_client(settings)

        app.state.settings = settings
        app.state.db = db
        app.state.repository = repository
        app.state.validator = CommandValidator(settings.denied_commands)
        app.state.orchestrator = ExecutionOrchestrator(
            client,
            repository,
            app.state.validator,
            settings=settings,
        )
        logger.info(f"Using {client.backend_name} execution units")

        yield

        # Shutdown
        logger.info("Shutting down...")
        if unit_client is None:
            await client.close()
        await db.close()

    app = FastAPI(
        title=settings.app_name,
        version=settings.app_version,
        description="TaskPod API - run shell tasks in single-use pods",
        lifespan=lifespan,
    )
    app.add_exception_handler(TaskPodError, taskpod_error_handler)
    app.include_router(router)
    return app


def main() -> None:
    import uvicorn

    settings = get_settings()
    configure_logging(settings)
    uvicorn.run(
        "taskpod.api.main:create_app",
        factory=True,
        host=settings.api_host,
        port=settings.api_port,
        reload=settings.debug,
    )


if __name__ == "__main__":
    main()
