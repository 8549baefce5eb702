"""Webhook receiving "blob created" notifications."""

import logging
import typing

import fastapi
import typing_extensions

from thumbnailer import events, models, pipeline, renderer, settings, storage

LOGGER = logging.getLogger(__name__)

events_router = fastapi.APIRouter(
    prefix='/events',
    tags=['Events'],
)


class ValidationResponse(typing_extensions.TypedDict):
    validationResponse: str


class EventsResponse(typing_extensions.TypedDict):
    """Response body listing what was done for each blob."""

    processed: list[dict[str, typing.Any]]


def get_pipeline() -> pipeline.Pipeline:
    """Build the pipeline writing to the configured container."""
    config = settings.get_thumbnail_settings()
    return pipeline.Pipeline(config, storage.BucketWriter(config.container))


async def _process(
    blob: models.BlobReference,
    thumbnail_pipeline: pipeline.Pipeline,
) -> models.PipelineResult:
    if blob.container == thumbnail_pipeline.config.container:
        # Writes into the destination container notify us again
        LOGGER.debug('Ignoring %s in destination container', blob.name)
        return models.PipelineResult(source=blob.name, skipped=True)
    LOGGER.info('Event url %s', blob.url or f'{blob.container}/{blob.name}')
    data = await storage.download(blob.container, blob.name)
    return await thumbnail_pipeline.run(blob.name, data)


@events_router.post('/', response_model=None)
async def receive_events(
    payload: typing.Annotated[typing.Any, fastapi.Body()],
    thumbnail_pipeline: typing.Annotated[
        pipeline.Pipeline, fastapi.Depends(get_pipeline)
    ],
) -> EventsResponse | ValidationResponse:
    """Generate thumbnails for every blob in a notification.

    Answers the Event Grid subscription validation handshake. Any
    failure while generating thumbnails is returned as a 500 so the
    sender retries or dead-letters the notification.

    Raises:
        400: The payload is not a known notification format.
        500: Thumbnail generation failed.

    """
    try:
        if not (isinstance(payload, dict) and 'Records' in payload):
            code = events.validation_code(events.parse_events(payload))
            if code is not None:
                LOGGER.info('Validating Event Grid subscription')
                return ValidationResponse(validationResponse=code)
        blobs = events.blob_references(payload)
    except events.InvalidNotification as err:
        raise fastapi.HTTPException(status_code=400, detail=str(err)) from err

    processed = []
    for blob in blobs:
        try:
            result = await _process(blob, thumbnail_pipeline)
        except (renderer.DecodeError, pipeline.VariantsFailed) as err:
            raise fastapi.HTTPException(
                status_code=500, detail=str(err)
            ) from err
        except Exception as err:
            LOGGER.exception(
                'Failed to generate thumbnails for %s', blob.name
            )
            raise fastapi.HTTPException(
                status_code=500,
                detail=f'Failed to generate thumbnails for {blob.name}',
            ) from err
        processed.append(result.summary())
    return EventsResponse(processed=processed)
