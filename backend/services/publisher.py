import asyncio
import logging
import uuid
from dataclasses import dataclass

import httpx

from services.errors import PublishError, StepTimeout
from services.storage import StorageBackend

logger = logging.getLogger(__name__)

_EXTENSIONS = {
    "image/png": "png",
    "image/jpeg": "jpg",
    "image/webp": "webp",
}


@dataclass(frozen=True)
class PublishedArtifact:
    storage_key: str
    public_url: str


def create_storage_key(prefix: str, content_type: str) -> str:
    """Fresh opaque key; never derived from request content."""
    extension = _EXTENSIONS.get(content_type, "bin")
    prefix = prefix.strip("/")
    name = f"{uuid.uuid4().hex}.{extension}"
    return f"{prefix}/{name}" if prefix else name


class ResultPublisher:
    """
    Writes a finished image to the durable store.

    A failed write is not retried here: a second attempt could produce a
    duplicate billable object.
    """

    def __init__(self, storage: StorageBackend, *, prefix: str = "results", timeout: float = 15.0):
        self._storage = storage
        self.prefix = prefix
        self.timeout = timeout

    async def publish(self, data: bytes, content_type: str = "image/png") -> PublishedArtifact:
        key = create_storage_key(self.prefix, content_type)
        try:
            url = await asyncio.wait_for(
                self._storage.put(key, data, content_type), timeout=self.timeout
            )
        except (asyncio.TimeoutError, httpx.TimeoutException):
            raise StepTimeout(f"Storing the generated image exceeded {self.timeout:g}s")
        except Exception as e:
            logger.error("Publishing %s failed: %s", key, type(e).__name__)
            raise PublishError() from e

        if not url:
            raise PublishError("Storage returned no public URL")
        logger.info("Published generated image (key=%s, %d bytes)", key, len(data))
        return PublishedArtifact(storage_key=key, public_url=url)
