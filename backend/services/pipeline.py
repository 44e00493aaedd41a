"""
Bounded-latency generation pipeline.

normalize -> encode -> [call -> resolve response -> publish]

The bracketed steps run as one unit under a single overall deadline, on top
of the per-attempt, fetch and publish timeouts of the individual steps.
"""

import asyncio
import logging
import time
from typing import Optional

import httpx

from config import PipelineConfig
from services.deadline import run_with_deadline
from services.errors import InputError
from services.image_normalizer import SourceImage, normalize_image, sniff_image_mime_type
from services.prompt import normalize_prompt
from services.publisher import PublishedArtifact, ResultPublisher
from services.request_encoder import (
    EncodedRequest,
    GenerationParameters,
    GenerationRequest,
    encode_request,
)
from services.response_normalizer import parse_response, resolve_outcome
from services.storage import StorageBackend
from services.upstream import UpstreamCaller

logger = logging.getLogger(__name__)

CANONICAL_OUTPUT_TYPE = "image/png"
_PUBLISHABLE_TYPES = frozenset({"image/png", "image/jpeg", "image/webp"})


class GenerationPipeline:
    """One generation request end to end. Holds no per-request state."""

    def __init__(
        self,
        config: PipelineConfig,
        client: httpx.AsyncClient,
        storage: StorageBackend,
        *,
        results_prefix: str = "results",
    ):
        self.config = config
        self._client = client
        self.caller = UpstreamCaller(
            client,
            config.endpoint_url,
            config.api_key,
            attempt_timeout=config.attempt_timeout,
            retry_backoff=config.retry_backoff,
        )
        self.publisher = ResultPublisher(
            storage, prefix=results_prefix, timeout=config.publish_timeout
        )
        self.parameters = GenerationParameters(
            size=config.output_size, model=config.model
        )

    async def prepare(self, prompt: Optional[str], source: Optional[SourceImage]) -> EncodedRequest:
        """Validate inputs, normalize the photo and build the wire payload."""
        prompt = normalize_prompt(prompt)
        if source is None:
            raise InputError("Missing image")

        # Pillow work happens off the event loop so concurrent requests keep flowing.
        normalized = await asyncio.to_thread(
            normalize_image,
            source,
            target_size=self.config.target_size,
            quality=self.config.jpeg_quality,
            max_bytes=self.config.max_source_bytes,
        )
        request = GenerationRequest(
            prompt=prompt, image=normalized, parameters=self.parameters
        )
        return encode_request(request)

    async def _call_and_publish(self, encoded: EncodedRequest) -> PublishedArtifact:
        started = time.monotonic()
        response = await self.caller.call(encoded)
        outcome = parse_response(response)
        image_bytes = await resolve_outcome(
            outcome, self._client, fetch_timeout=self.config.fetch_timeout
        )
        logger.debug(
            "Resolved %s into %d bytes after %.2fs",
            type(outcome).__name__,
            len(image_bytes),
            time.monotonic() - started,
        )

        content_type = sniff_image_mime_type(image_bytes)
        if content_type not in _PUBLISHABLE_TYPES:
            content_type = CANONICAL_OUTPUT_TYPE
        return await self.publisher.publish(image_bytes, content_type)

    async def generate(self, prompt: Optional[str], source: Optional[SourceImage]) -> PublishedArtifact:
        started = time.monotonic()
        encoded = await self.prepare(prompt, source)
        artifact = await run_with_deadline(
            self._call_and_publish(encoded),
            self.config.deadline,
            label="Generation",
        )
        logger.info(
            "Generation completed in %.2fs (key=%s)",
            time.monotonic() - started,
            artifact.storage_key,
        )
        return artifact
