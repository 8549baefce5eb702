import fastapi
import typing_extensions

from thumbnailer import version

status_router = fastapi.APIRouter(tags=['Status'])


class StatusResponse(typing_extensions.TypedDict):
    service: str
    version: str
    status: str


@status_router.get('/status')
async def status() -> StatusResponse:
    """Report that the service is up."""
    return StatusResponse(
        service='blob-thumbnailer', version=version, status='ok'
    )
