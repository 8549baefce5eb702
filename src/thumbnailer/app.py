import contextlib
import logging
import typing

import fastapi

from thumbnailer import endpoints, settings, storage, version

LOGGER = logging.getLogger(__name__)


@contextlib.asynccontextmanager
async def fastapi_lifespan(
    *_args: typing.Any, **_kwargs: typing.Any
) -> typing.AsyncIterator[None]:  # pragma: nocover
    """This is invoked by FastAPI for us to control startup and shutdown."""
    config = settings.get_thumbnail_settings()
    await storage.initialize(config.container)
    LOGGER.debug(
        'Startup complete, writing widths %s to %s (webp: %s)',
        config.widths,
        config.container,
        config.webp_support,
    )
    yield
    await storage.aclose()
    LOGGER.debug('Clean shutdown complete')


def create_app() -> fastapi.FastAPI:
    app = fastapi.FastAPI(
        title='Blob Thumbnailer',
        lifespan=fastapi_lifespan,
        version=version,
        redoc_url='/docs',
        docs_url=None,
    )
    for router in endpoints.routers:
        app.include_router(router)
    return app
