"""
Reduce the two success shapes of the image provider to plain bytes.

A successful edit response carries the image either inline
(``data[0].b64_json``) or as a link to fetch (``data[0].url``). The shape is
resolved once into an explicit outcome type right after the upstream call;
code after that only sees bytes.
"""

import asyncio
import base64
import binascii
import logging
from dataclasses import dataclass
from typing import Any, Union

import httpx

from services.errors import (
    ProtocolError,
    RemoteFetchFailed,
    RemoteFetchTimeout,
    UpstreamContractViolation,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class DirectImage:
    data: bytes


@dataclass(frozen=True)
class RemoteImage:
    url: str


UpstreamOutcome = Union[DirectImage, RemoteImage]


def _first_result(payload: Any) -> dict:
    if not isinstance(payload, dict):
        raise ProtocolError("Image provider response is not a JSON object")
    data = payload.get("data")
    if isinstance(data, list) and data and isinstance(data[0], dict):
        return data[0]
    if isinstance(data, dict):
        return data
    raise UpstreamContractViolation("Image provider response contained no result entries")


def parse_outcome(payload: Any) -> UpstreamOutcome:
    """Classify a decoded JSON body; inline bytes take precedence over a URL."""
    result = _first_result(payload)

    b64 = result.get("b64_json")
    if isinstance(b64, str) and b64:
        try:
            data = base64.b64decode(b64, validate=True)
        except (binascii.Error, ValueError):
            raise ProtocolError("Image provider returned invalid base64 image data")
        if not data:
            raise UpstreamContractViolation("Image provider returned empty image data")
        return DirectImage(data=data)

    url = result.get("url")
    if isinstance(url, str) and url.startswith(("https://", "http://")):
        return RemoteImage(url=url)

    raise UpstreamContractViolation()


def parse_response(response: httpx.Response) -> UpstreamOutcome:
    try:
        payload = response.json()
    except ValueError:
        raise ProtocolError("Image provider response is not valid JSON")
    return parse_outcome(payload)


async def fetch_remote_image(
    client: httpx.AsyncClient, url: str, *, timeout: float
) -> bytes:
    """Download a provider-hosted result with a single bounded attempt."""
    try:
        response = await asyncio.wait_for(
            client.get(url, timeout=httpx.Timeout(timeout), follow_redirects=True),
            timeout=timeout,
        )
    except (asyncio.TimeoutError, httpx.TimeoutException):
        raise RemoteFetchTimeout(f"Generated image download exceeded {timeout:g}s")
    except httpx.TransportError as e:
        logger.warning("Network error downloading generated image: %s", type(e).__name__)
        raise RemoteFetchFailed("Network error downloading generated image")

    if not response.is_success:
        raise RemoteFetchFailed(
            f"Generated image download failed with status {response.status_code}",
            provider_status=response.status_code,
        )
    if not response.content:
        raise RemoteFetchFailed("Generated image download returned no data")
    return response.content


async def resolve_outcome(
    outcome: UpstreamOutcome, client: httpx.AsyncClient, *, fetch_timeout: float
) -> bytes:
    if isinstance(outcome, DirectImage):
        return outcome.data
    if isinstance(outcome, RemoteImage):
        logger.info("Image provider returned a URL; downloading result")
        return await fetch_remote_image(client, outcome.url, timeout=fetch_timeout)
    raise TypeError(f"Unknown upstream outcome: {outcome!r}")
