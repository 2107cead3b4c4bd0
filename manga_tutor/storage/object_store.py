"""S3-compatible object store used to cache generated panel images.

Remote image URLs handed out by the workflow service are short-lived, so each
resolved image is copied into a bucket under a deterministic key derived from
its run identifier and position. Caching is best-effort: every failure is
logged and reported as `None` so the caller keeps the original URL.
"""

import logging
import os
import threading
import time
from dataclasses import dataclass

import boto3
import requests
from botocore.exceptions import BotoCoreError, ClientError

logger = logging.getLogger(__name__)

IMAGE_KEY_PREFIX = "mangas"
DEFAULT_CONTENT_TYPE = "image/png"
FETCH_USER_AGENT = "Mozilla/5.0 (compatible; manga-tutor/1.0)"


def image_key(run_id: str, index: int) -> str:
    """Object key for the image at zero-based `index` of a run."""
    return f"{IMAGE_KEY_PREFIX}/{run_id}_{index + 1}.png"


@dataclass(frozen=True)
class StorageConfig:
    """Bucket settings.

    Relevant environment variables:
        - `STORAGE_ENDPOINT_URL`
        - `STORAGE_ACCESS_KEY_ID`
        - `STORAGE_SECRET_ACCESS_KEY`
        - `STORAGE_BUCKET`
        - `STORAGE_REGION`
        - `STORAGE_PUBLIC_BASE_URL`
        - `STORAGE_FETCH_TIMEOUT_SECONDS`
    """

    endpoint_url: str = os.getenv("STORAGE_ENDPOINT_URL", "").strip()
    access_key_id: str = os.getenv("STORAGE_ACCESS_KEY_ID", "").strip()
    secret_access_key: str = os.getenv("STORAGE_SECRET_ACCESS_KEY", "").strip()
    bucket: str = os.getenv("STORAGE_BUCKET", "manga-images").strip()
    region: str = os.getenv("STORAGE_REGION", "auto").strip()
    public_base_url: str = os.getenv("STORAGE_PUBLIC_BASE_URL", "").strip()
    fetch_timeout_seconds: float = float(os.getenv("STORAGE_FETCH_TIMEOUT_SECONDS", "30"))

    @property
    def has_credentials(self) -> bool:
        return all([self.endpoint_url, self.access_key_id, self.secret_access_key, self.bucket])


class ObjectStore:
    """Best-effort image cache on top of a boto3 S3 client."""

    def __init__(self, config: StorageConfig, s3_client=None):
        """Initialize the store.

        Args:
            config: Bucket settings.
            s3_client: Pre-built boto3 client (tests); built from `config`
                when omitted and credentials are complete.

        Without complete credentials the store stays disabled and every
        `cache_image` call returns `None`.
        """
        self.config = config
        self.s3_client = s3_client

        if self.s3_client is None and config.has_credentials:
            self.s3_client = boto3.client(
                "s3",
                endpoint_url=config.endpoint_url,
                aws_access_key_id=config.access_key_id,
                aws_secret_access_key=config.secret_access_key,
                region_name=config.region,
            )

        if self.s3_client is None:
            logger.warning("Object store disabled: storage credentials not configured")

        # Statistics
        self._stats_lock = threading.Lock()
        self.total_uploads = 0
        self.failed_uploads = 0

    @property
    def enabled(self) -> bool:
        return self.s3_client is not None

    def public_url(self, key: str) -> str:
        if self.config.public_base_url:
            return f"{self.config.public_base_url.rstrip('/')}/{key}"
        return f"{self.config.endpoint_url.rstrip('/')}/{self.config.bucket}/{key}"

    def cache_image(self, source_url: str, key: str) -> str | None:
        """Copy a remote image into the bucket.

        Args:
            source_url: Remote image URL to download.
            key: Destination object key (see `image_key`).

        Returns:
            Public URL of the stored object, or `None` on any failure.
        """
        if not self.enabled:
            return None

        start_time = time.time()

        try:
            response = requests.get(
                source_url,
                headers={"User-Agent": FETCH_USER_AGENT},
                timeout=self.config.fetch_timeout_seconds,
            )
        except requests.exceptions.Timeout:
            logger.error("Image fetch timed out (%ss): %s", self.config.fetch_timeout_seconds, key)
            self._count("failed_uploads")
            return None
        except requests.exceptions.RequestException as err:
            logger.error("Image fetch failed for %s: %s", key, err)
            self._count("failed_uploads")
            return None

        if not response.ok:
            logger.error("Image fetch returned %s for %s", response.status_code, key)
            self._count("failed_uploads")
            return None

        content_type = response.headers.get("content-type") or DEFAULT_CONTENT_TYPE

        try:
            self.s3_client.put_object(
                Bucket=self.config.bucket,
                Key=key,
                Body=response.content,
                ContentType=content_type,
                CacheControl="max-age=3600",
            )
        except (ClientError, BotoCoreError) as err:
            logger.error("Upload to object store failed for %s: %s", key, err)
            self._count("failed_uploads")
            return None

        self._count("total_uploads")
        upload_time_ms = int((time.time() - start_time) * 1000)
        logger.info("Cached image %s (%s bytes, %sms)", key, len(response.content), upload_time_ms)

        return self.public_url(key)

    def _count(self, counter: str) -> None:
        # cache_image runs on several worker threads at once
        with self._stats_lock:
            setattr(self, counter, getattr(self, counter) + 1)

    def get_statistics(self) -> dict:
        with self._stats_lock:
            return {
                "total_uploads": self.total_uploads,
                "failed_uploads": self.failed_uploads,
            }
