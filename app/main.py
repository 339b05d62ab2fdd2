from typing import Optional

from fastapi import FastAPI
from app.settings import get_settings
from app.logging import configure_logging
from app.container import Container, build_container
from app.error_handlers import attach_error_handlers
from api.router import api_router
from infra.db.session import init_db


def create_app(container: Optional[Container] = None) -> FastAPI:
    settings = container.settings if container else get_settings()
    container = container or build_container(settings)
    app = FastAPI(title=settings.APP_NAME)
    app.state.container = container

    @app.on_event("startup")
    async def _on_startup():
        init_db(container.session_factory)
        await container.workers.start()

    @app.on_event("shutdown")
    async def _on_shutdown():
        await container.workers.stop()
        await container.aclose()

    attach_error_handlers(app)
    app.include_router(api_router)
    return app


configure_logging(get_settings())
app = create_app()
