import asyncio
import logging
from pathlib import Path
from typing import Optional, Protocol

import boto3
import httpx
from botocore.config import Config

from config import Settings, StorageBackendName

logger = logging.getLogger(__name__)

BLOB_API_VERSION = "7"


class StorageBackend(Protocol):
    """Protocol for durable public object stores."""

    async def put(self, key: str, data: bytes, content_type: str) -> str:
        """Store bytes under key with public read access and return the public URL."""
        ...


class LocalStorage:
    """Local filesystem storage for development."""

    def __init__(self, base_dir: Path, url_prefix: str = "/storage"):
        self.base_dir = Path(base_dir)
        self.url_prefix = url_prefix.rstrip("/")
        self.base_dir.mkdir(parents=True, exist_ok=True)

    def _validate_within_base_dir(self, file_path: Path) -> None:
        base_dir_resolved = self.base_dir.resolve()
        resolved_path = file_path.resolve()
        try:
            resolved_path.relative_to(base_dir_resolved)
        except ValueError:
            raise ValueError("Invalid path: path traversal attempt detected")

    async def put(self, key: str, data: bytes, content_type: str) -> str:
        key = key.lstrip("/")
        file_path = self.base_dir / key

        # SECURITY: Validate path to prevent directory traversal attacks
        self._validate_within_base_dir(file_path)

        file_path.parent.mkdir(parents=True, exist_ok=True)
        await asyncio.to_thread(file_path.write_bytes, data)

        logger.info("Saved file locally: %s (%s)", file_path, content_type)
        return f"{self.url_prefix}/{key}"


class BlobStorage:
    """
    HTTP object store with a Vercel Blob compatible API.

    One PUT to {api_url}/{key} per object; the store answers with JSON
    containing the public URL.
    """

    def __init__(
        self,
        token: str,
        api_url: str = "https://blob.vercel-storage.com",
        client: Optional[httpx.AsyncClient] = None,
        timeout: float = 15.0,
    ):
        if not token:
            raise RuntimeError("BLOB_READ_WRITE_TOKEN is required")
        self._token = token
        self.api_url = api_url.rstrip("/")
        self._client = client
        self.timeout = timeout

    async def _send(self, client: httpx.AsyncClient, key: str, data: bytes, content_type: str) -> httpx.Response:
        return await client.put(
            f"{self.api_url}/{key}",
            content=data,
            headers={
                "Authorization": f"Bearer {self._token}",
                "x-api-version": BLOB_API_VERSION,
                "x-content-type": content_type,
                "x-add-random-suffix": "0",
                "x-access": "public",
            },
            timeout=httpx.Timeout(self.timeout),
        )

    async def put(self, key: str, data: bytes, content_type: str) -> str:
        key = key.lstrip("/")
        if self._client is not None:
            response = await self._send(self._client, key, data, content_type)
        else:
            async with httpx.AsyncClient() as client:
                response = await self._send(client, key, data, content_type)

        if not response.is_success:
            raise RuntimeError(f"Blob store rejected upload with status {response.status_code}")
        try:
            url = response.json().get("url")
        except (ValueError, AttributeError):
            url = None
        if not isinstance(url, str) or not url:
            raise RuntimeError("Blob store response did not include a URL")

        logger.info("Upload successful: key=%s", key)
        return url


class S3Storage:
    """S3 storage for publishing images.

    Supports:
    - AWS S3
    - Cloudflare R2
    - MinIO
    - Any S3-compatible storage

    Objects are written with a public-read ACL and addressed by their
    public URL.
    """

    def __init__(
        self,
        bucket: str,
        *,
        region: str = "us-east-1",
        access_key: str = "",
        secret_key: str = "",
        prefix: str = "",
        endpoint_url: str = "",
        public_url: str = "",
    ):
        if not bucket:
            raise RuntimeError("S3_BUCKET is required")

        self.bucket = bucket
        self.prefix = prefix.strip("/") if prefix else ""
        self.region = region or "us-east-1"
        self.endpoint_url = endpoint_url or None

        if public_url:
            self.public_base_url = public_url.rstrip("/")
        elif self.region == "us-east-1":
            self.public_base_url = f"https://{self.bucket}.s3.amazonaws.com"
        else:
            self.public_base_url = f"https://{self.bucket}.s3.{self.region}.amazonaws.com"

        # Build S3 client with signature version for compatibility
        client_kwargs = {
            "aws_access_key_id": access_key or None,
            "aws_secret_access_key": secret_key or None,
            "region_name": self.region,
            "config": Config(signature_version="s3v4"),
        }
        if self.endpoint_url:
            client_kwargs["endpoint_url"] = self.endpoint_url

        self.client = boto3.client("s3", **client_kwargs)

        logger.info(
            "S3 storage initialized (bucket=%s, prefix=%s, endpoint=%s)",
            self.bucket,
            self.prefix or "<none>",
            self.endpoint_url or "AWS S3",
        )

    @classmethod
    def from_settings(cls, settings: Settings) -> "S3Storage":
        return cls(
            settings.S3_BUCKET,
            region=settings.S3_REGION,
            access_key=settings.S3_ACCESS_KEY_ID,
            secret_key=settings.S3_SECRET_ACCESS_KEY,
            prefix=settings.S3_PREFIX,
            endpoint_url=settings.S3_ENDPOINT_URL,
            public_url=settings.S3_PUBLIC_URL,
        )

    def _build_key(self, key: str) -> str:
        key = key.lstrip("/")
        if self.prefix:
            return f"{self.prefix}/{key}"
        return key

    def _build_public_url(self, s3_key: str) -> str:
        return f"{self.public_base_url}/{s3_key}"

    async def put(self, key: str, data: bytes, content_type: str) -> str:
        s3_key = self._build_key(key)
        params = {
            "Bucket": self.bucket,
            "Key": s3_key,
            "Body": data,
            "ContentType": content_type,
            "ACL": "public-read",
        }

        try:
            logger.info(
                "Uploading to S3: bucket=%s, key=%s, endpoint=%s",
                self.bucket,
                s3_key,
                self.endpoint_url,
            )
            await asyncio.to_thread(self.client.put_object, **params)
        except Exception as e:
            logger.error(
                "S3 upload failed: bucket=%s, key=%s, endpoint=%s, error=%s",
                self.bucket,
                s3_key,
                self.endpoint_url,
                str(e),
            )
            raise

        return self._build_public_url(s3_key)


def get_storage(settings: Settings, client: Optional[httpx.AsyncClient] = None) -> StorageBackend:
    """Build the storage backend selected by settings."""
    if settings.STORAGE_BACKEND == StorageBackendName.LOCAL:
        return LocalStorage(Path(settings.LOCAL_STORAGE_DIR))
    if settings.STORAGE_BACKEND == StorageBackendName.S3:
        return S3Storage.from_settings(settings)
    return BlobStorage(
        settings.BLOB_READ_WRITE_TOKEN,
        api_url=settings.BLOB_API_URL,
        client=client,
        timeout=settings.PUBLISH_TIMEOUT_SECONDS,
    )
