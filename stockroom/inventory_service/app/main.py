from contextlib import asynccontextmanager

import uvicorn
from fastapi import FastAPI

from stockroom.common import (
    DEFAULT_APP_NAME,
    ServiceSettings,
    build_app,
    configure_logging,
    create_schema,
    dispose_engines,
    get_session_factory,
    resolve_database_url,
)

from .api.health import router as health_router
from .api.inventory import router as inventory_router
from .api.skus import router as skus_router
from .api.tags import router as tags_router
from .models import Base

SERVICE_NAME = "Inventory Service"
DEFAULT_DATABASE_URL = "sqlite+aiosqlite:///./inventory_service.db"


def create_app(settings: ServiceSettings | None = None) -> FastAPI:
    """Create the Inventory Service FastAPI application."""

    resolved_settings = settings or ServiceSettings()
    if resolved_settings.app_name == DEFAULT_APP_NAME:
        resolved_settings = resolved_settings.model_copy(update={"app_name": SERVICE_NAME})
    configure_logging(resolved_settings)
    database_url = resolve_database_url(resolved_settings, DEFAULT_DATABASE_URL)
    session_factory = get_session_factory(database_url)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        await create_schema(database_url, Base.metadata)
        app.state.session_factory = session_factory
        try:
            yield
        finally:
            app.state.session_factory = None  # type: ignore[assignment]
            await dispose_engines()

    app = build_app(resolved_settings, lifespan=lifespan)
    app.include_router(health_router)
    app.include_router(skus_router)
    app.include_router(inventory_router)
    app.include_router(tags_router)
    return app


app = create_app()


def run() -> None:
    """Serve the module-level app on the configured host and port."""

    settings = app.state.settings
    uvicorn.run(app, host=settings.service_host, port=settings.service_port)


if __name__ == "__main__":
    run()
