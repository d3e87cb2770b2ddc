from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from fastapi import FastAPI

from dues import __version__
from dues.core.conf import settings
from dues.core.logging import setup_logging
from dues.database.db import async_engine, create_tables
from dues.src.billing.endpoints import billing_router


@asynccontextmanager
async def register_init(app: FastAPI) -> AsyncGenerator[None, None]:
    """Startup and shutdown hooks"""
    await create_tables()
    yield
    await async_engine.dispose()


def register_app() -> FastAPI:
    setup_logging()
    app = FastAPI(
        title=settings.FASTAPI_TITLE,
        version=__version__,
        description=settings.FASTAPI_DESCRIPTION,
        docs_url=settings.FASTAPI_DOCS_URL,
        openapi_url=settings.FASTAPI_OPENAPI_URL,
        lifespan=register_init,
    )
    app.include_router(billing_router, prefix=f'{settings.FASTAPI_API_V1_PATH}/billing')
    return app


app = register_app()
