"""Object storage for source images and generated thumbnails.

Provides S3-compatible object storage for reading the created blob
and writing its thumbnail variants.
"""

import logging

from . import client
from .writers import BucketWriter, DirectoryWriter

LOGGER = logging.getLogger(__name__)

__all__ = [
    'BucketWriter',
    'DirectoryWriter',
    'aclose',
    'download',
    'initialize',
]


async def initialize(*buckets: str) -> None:
    """Initialize the storage module.

    Creates the StorageClient singleton and, when configured to, the
    given buckets.

    """
    LOGGER.info('Initializing storage module')
    storage_client = client.StorageClient.get_instance()
    await storage_client.initialize(*buckets)
    LOGGER.info('Storage module initialized')


async def aclose() -> None:
    """Clean up storage module resources."""
    LOGGER.info('Closing storage module')
    if client.StorageClient._instance is not None:
        await client.StorageClient._instance.aclose()
    client.StorageClient._instance = None
    LOGGER.info('Storage module closed')


async def download(bucket: str, key: str) -> bytes | None:
    """Download bytes from S3.

    Args:
        bucket: Source bucket
        key: S3 object key

    Returns:
        File content as bytes, or ``None`` if the object is gone

    """
    storage_client = client.StorageClient.get_instance()
    return await storage_client.download(bucket, key)
