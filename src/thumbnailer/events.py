"""Parsing of "blob created" notifications.

Understands Azure Event Grid events (``Microsoft.Storage.BlobCreated``,
including the subscription validation handshake, in either the Event
Grid or CloudEvents schema) and S3 ``ObjectCreated`` notifications.

"""

import logging
import re
import typing
from urllib import parse

import pydantic
import yarl

from thumbnailer import models

LOGGER = logging.getLogger(__name__)

BLOB_CREATED = 'Microsoft.Storage.BlobCreated'
SUBSCRIPTION_VALIDATION = 'Microsoft.EventGrid.SubscriptionValidationEvent'


class InvalidNotification(ValueError):
    """Raised when a notification payload cannot be understood."""


class EventGridEvent(pydantic.BaseModel):
    model_config = pydantic.ConfigDict(extra='ignore', populate_by_name=True)

    id: str | None = None
    event_type: str = pydantic.Field(
        validation_alias=pydantic.AliasChoices('eventType', 'type'),
    )
    subject: str | None = None
    data: dict[str, typing.Any] = pydantic.Field(default_factory=dict)


# Virtual-hosted S3, e.g. bucket.s3.amazonaws.com or
# bucket.s3-us-west-2.amazonaws.com
_S3_VIRTUAL_HOST = re.compile(r'^(?P<bucket>.+?)\.s3[.-]')

# Azurite and the storage emulator put the account before the container
_EMULATOR_BLOB_PORT = 10000


def parse_blob_url(url: str) -> models.BlobReference:
    """Split a blob URL into its container and blob name.

    Understands these forms:

    - ``https://account.blob.core.windows.net/container/dir/name.png``
    - ``https://bucket.s3.amazonaws.com/key`` and the regional
      ``bucket.s3-us-west-2`` / ``bucket.s3.eu-west-1`` host names
    - path style, ``http://localhost:4566/bucket/key``
    - Azurite, ``http://127.0.0.1:10000/devstoreaccount1/container/name``

    Raises:
        InvalidNotification: If no container and name can be found.

    """
    parsed = yarl.URL(url)
    segments = [segment for segment in parsed.parts if segment != '/']
    match = _S3_VIRTUAL_HOST.match(parsed.host or '')
    if match:
        container = match.group('bucket')
    else:
        if parsed.port == _EMULATOR_BLOB_PORT:
            segments = segments[1:]
        if len(segments) >= 2:
            container, segments = segments[0], segments[1:]
        else:
            container = ''
    name = '/'.join(segments)
    if not container or not name:
        raise InvalidNotification(f'Unable to parse blob URL {url!r}')
    return models.BlobReference(container=container, name=name, url=url)


def parse_events(payload: typing.Any) -> list[EventGridEvent]:
    """Validate an Event Grid payload, which may be one event or a list."""
    if isinstance(payload, dict):
        payload = [payload]
    try:
        return pydantic.TypeAdapter(list[EventGridEvent]).validate_python(
            payload
        )
    except pydantic.ValidationError as err:
        raise InvalidNotification(str(err)) from err


def validation_code(events: list[EventGridEvent]) -> str | None:
    """Return the code to echo back for a subscription validation."""
    for event in events:
        if event.event_type == SUBSCRIPTION_VALIDATION:
            return typing.cast(str | None, event.data.get('validationCode'))
    return None


def _s3_records(payload: dict[str, typing.Any]) -> list[models.BlobReference]:
    blobs = []
    for record in payload.get('Records') or []:
        if not str(record.get('eventName', '')).startswith('ObjectCreated'):
            LOGGER.debug('Ignoring S3 event %s', record.get('eventName'))
            continue
        try:
            bucket = record['s3']['bucket']['name']
            key = parse.unquote_plus(record['s3']['object']['key'])
        except (KeyError, TypeError) as err:
            raise InvalidNotification(f'Malformed S3 record: {err}') from err
        blobs.append(models.BlobReference(container=bucket, name=key))
    return blobs


def blob_references(payload: typing.Any) -> list[models.BlobReference]:
    """Return every created blob referenced by a notification payload.

    Events of any other type are ignored.

    Raises:
        InvalidNotification: If the payload is not a known format.

    """
    if isinstance(payload, dict) and 'Records' in payload:
        return _s3_records(payload)

    blobs = []
    for event in parse_events(payload):
        if event.event_type != BLOB_CREATED:
            LOGGER.debug('Ignoring %s event %s', event.event_type, event.id)
            continue
        url = event.data.get('url')
        if not url:
            raise InvalidNotification(f'Event {event.id} has no blob url')
        blobs.append(parse_blob_url(url))
    return blobs
