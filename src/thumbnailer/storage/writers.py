"""Destinations the pipeline writes rendered variants to."""

import asyncio
import logging
import pathlib

from . import client

LOGGER = logging.getLogger(__name__)


class BucketWriter:
    """Writes variants into an S3 bucket with their content type."""

    def __init__(self, container: str) -> None:
        self.container = container

    async def write(self, name: str, data: bytes, content_type: str) -> None:
        storage_client = client.StorageClient.get_instance()
        await storage_client.upload(self.container, name, data, content_type)
        LOGGER.info('Wrote %s/%s (%s)', self.container, name, content_type)


class DirectoryWriter:
    """Writes variants into a local directory, used by the CLI."""

    def __init__(self, directory: pathlib.Path) -> None:
        self.directory = directory

    async def write(self, name: str, data: bytes, content_type: str) -> None:
        path = self.directory / name
        loop = asyncio.get_event_loop()
        await loop.run_in_executor(None, self._write, path, data)
        LOGGER.info('Wrote %s (%s, %d bytes)', path, content_type, len(data))

    @staticmethod
    def _write(path: pathlib.Path, data: bytes) -> None:
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_bytes(data)
