"""S3 client singleton for reading sources and writing thumbnails."""

import asyncio
import logging
import typing

import aioboto3
from botocore import exceptions as botocore_exceptions

from thumbnailer import settings

LOGGER = logging.getLogger(__name__)


class StorageClient:
    """Singleton S3 client for object storage operations.

    Uses aioboto3 for native async S3 operations. Supports both
    real AWS S3 and S3-compatible services like LocalStack.

    """

    _instance: typing.ClassVar[typing.Optional['StorageClient']] = None
    _lock: typing.ClassVar[asyncio.Lock] = asyncio.Lock()

    def __init__(self) -> None:
        self._settings = settings.Storage()
        self._session = aioboto3.Session(
            aws_access_key_id=self._settings.access_key or None,
            aws_secret_access_key=self._settings.secret_key or None,
            region_name=self._settings.region,
        )
        self._initialized = False

    @classmethod
    def get_instance(cls) -> 'StorageClient':
        """Get the singleton StorageClient instance.

        Returns:
            The singleton StorageClient instance.

        """
        if cls._instance is None:
            cls._instance = cls()
        return cls._instance

    async def initialize(self, *buckets: str) -> None:
        """Initialize the storage client.

        Creates any of the given buckets that do not exist when
        ``STORAGE_CREATE_BUCKET_ON_INIT`` is set.

        """
        if self._initialized:
            return

        async with self._lock:
            if self._initialized:
                return

            if self._settings.create_bucket_on_init:
                for bucket in buckets:
                    await self._ensure_bucket(bucket)

            self._initialized = True

    async def aclose(self) -> None:
        """Clean up storage client resources."""
        async with self._lock:
            self._initialized = False
            LOGGER.debug('Storage client closed')

    async def upload(
        self,
        bucket: str,
        key: str,
        data: bytes,
        content_type: str,
    ) -> None:
        """Upload bytes to S3.

        Args:
            bucket: Destination bucket
            key: S3 object key
            data: File content as bytes
            content_type: MIME type of the file

        """
        async with self._s3_client() as s3:
            await s3.put_object(
                Bucket=bucket,
                Key=key,
                Body=data,
                ContentType=content_type,
            )
        LOGGER.debug('Uploaded %s/%s (%d bytes)', bucket, key, len(data))

    async def download(self, bucket: str, key: str) -> bytes | None:
        """Download bytes from S3.

        Args:
            bucket: Source bucket
            key: S3 object key

        Returns:
            File content as bytes, or ``None`` if the object is gone

        """
        async with self._s3_client() as s3:
            try:
                response = await s3.get_object(Bucket=bucket, Key=key)
            except botocore_exceptions.ClientError as err:
                if err.response.get('Error', {}).get('Code') in (
                    'NoSuchKey',
                    '404',
                ):
                    LOGGER.warning('%s/%s does not exist', bucket, key)
                    return None
                raise
            async with response['Body'] as body:
                data: bytes = await body.read()
        LOGGER.debug('Downloaded %s/%s (%d bytes)', bucket, key, len(data))
        return data

    def _s3_client(self) -> typing.Any:
        """Create an S3 client context manager.

        Returns:
            Async context manager yielding an S3 client.

        """
        kwargs: dict[str, typing.Any] = {}
        if self._settings.endpoint_url:
            kwargs['endpoint_url'] = self._settings.endpoint_url
        return self._session.client('s3', **kwargs)

    async def _ensure_bucket(self, bucket: str) -> None:
        """Create the S3 bucket if it does not exist."""
        async with self._s3_client() as s3:
            try:
                await s3.head_bucket(Bucket=bucket)
                LOGGER.debug('Bucket %s already exists', bucket)
            except botocore_exceptions.ClientError:
                params: dict[str, typing.Any] = {'Bucket': bucket}
                if (
                    self._settings.region
                    and self._settings.region != 'us-east-1'
                ):
                    params['CreateBucketConfiguration'] = {
                        'LocationConstraint': self._settings.region,
                    }
                await s3.create_bucket(**params)
                LOGGER.info('Created bucket %s', bucket)
