"""
config/storage.py
S3-compatible object storage (Cloudflare R2 / AWS S3) used for avatar uploads.
Uploads are wrapped in a circuit breaker and retried with exponential backoff.
"""

import logging
from functools import lru_cache
from typing import Optional

import boto3
from botocore.client import Config
from botocore.exceptions import BotoCoreError, ClientError
from pybreaker import CircuitBreaker, CircuitBreakerError
from starlette.concurrency import run_in_threadpool
from tenacity import retry, retry_if_exception_type, stop_after_attempt, wait_exponential

from config.settings import settings

logger = logging.getLogger(__name__)

storage_breaker = CircuitBreaker(
    fail_max=5,          # Open after 5 consecutive failures
    reset_timeout=60,    # Try again after 60 seconds
    name="object-storage",
)


class StorageError(Exception):
    """Raised when the object store rejects or cannot accept an upload."""


class ObjectStorage:
    """Thin wrapper around a boto3 S3 client bound to our public buckets."""

    def __init__(self, client=None):
        self._client = client

    @property
    def client(self):
        if self._client is None:
            self._client = boto3.client(
                "s3",
                aws_access_key_id=settings.S3_ACCESS_KEY_ID or None,
                aws_secret_access_key=settings.S3_SECRET_ACCESS_KEY or None,
                endpoint_url=settings.S3_ENDPOINT_URL or None,
                region_name=settings.S3_REGION,
                config=Config(
                    signature_version="s3v4",
                    s3={"addressing_style": "path"},
                ),
            )
        return self._client

    def public_url(self, bucket: str, key: str) -> str:
        base = settings.S3_PUBLIC_BASE_URL or settings.S3_ENDPOINT_URL
        return f"{base.rstrip('/')}/{bucket}/{key}"

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=0.5, max=4),
        retry=retry_if_exception_type((BotoCoreError, ClientError)),
        reraise=True,
    )
    def _put(self, bucket: str, key: str, body: bytes, content_type: str) -> None:
        storage_breaker.call(
            self.client.put_object,
            Bucket=bucket,
            Key=key,
            Body=body,
            ContentType=content_type,
            CacheControl="public, max-age=3600",
        )

    async def upload(
        self,
        bucket: str,
        key: str,
        body: bytes,
        content_type: str,
    ) -> str:
        """Upload bytes and return the public URL of the stored object."""
        try:
            await run_in_threadpool(self._put, bucket, key, body, content_type)
        except (BotoCoreError, ClientError, CircuitBreakerError) as e:
            logger.error(f"Upload to {bucket}/{key} failed: {e}")
            raise StorageError(str(e)) from e
        return self.public_url(bucket, key)

    async def delete(self, bucket: str, key: str) -> None:
        await run_in_threadpool(self.client.delete_object, Bucket=bucket, Key=key)


@lru_cache()
def _default_storage() -> ObjectStorage:
    return ObjectStorage()


def get_storage() -> ObjectStorage:
    """FastAPI dependency returning the shared storage client."""
    return _default_storage()


def key_from_public_url(url: Optional[str], bucket: str) -> Optional[str]:
    """Recover the object key from a public URL we generated earlier."""
    if not url:
        return None
    marker = f"/{bucket}/"
    if marker not in url:
        return None
    return url.split(marker, 1)[1]
