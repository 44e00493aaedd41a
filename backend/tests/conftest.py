"""
Test fixtures and configuration for pytest.
"""

import base64
import json
import os
import sys
from contextlib import asynccontextmanager
from io import BytesIO
from typing import AsyncGenerator, Callable, Optional

import httpx
import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from PIL import Image

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from config import PipelineConfig
from services.pipeline import GenerationPipeline

PROVIDER_URL = "https://provider.test/v1/images/edits"
REMOTE_RESULT_URL = "https://cdn.provider.test/result.png"
TEST_API_KEY = "sk-test-0123456789abcdef"


# ============== Image helpers ==============


def image_bytes(width: int, height: int, fmt: str = "JPEG", color="blue") -> bytes:
    mode = "RGBA" if fmt == "PNG" and isinstance(color, tuple) and len(color) == 4 else "RGB"
    img = Image.new(mode, (width, height), color=color)
    buffer = BytesIO()
    img.save(buffer, format=fmt)
    return buffer.getvalue()


def data_url(content: bytes, mime: str = "image/jpeg") -> str:
    return f"data:{mime};base64,{base64.b64encode(content).decode('ascii')}"


def broken_png_bytes(width: int = 300, height: int = 200) -> bytes:
    """PNG whose trailing IEND chunk type is mangled; Pillow fails mid-decode."""
    data = bytearray(image_bytes(width, height, "PNG", "red"))
    index = data.rindex(b"IEND")
    data[index + 1] = 0xBC
    return bytes(data)


@pytest.fixture
def sample_jpeg_bytes() -> bytes:
    """512x512 JPEG photo."""
    return image_bytes(512, 512, "JPEG", "gray")


@pytest.fixture
def result_png_bytes() -> bytes:
    """What the provider hands back as the rendered image."""
    return image_bytes(64, 64, "PNG", "green")


# ============== Fakes ==============


class FakeStorage:
    """In-memory durable store recording every write."""

    def __init__(self, fail: bool = False):
        self.fail = fail
        self.objects: dict[str, tuple[bytes, str]] = {}
        self.put_calls = 0

    async def put(self, key: str, data: bytes, content_type: str) -> str:
        self.put_calls += 1
        if self.fail:
            raise RuntimeError("store unavailable")
        self.objects[key] = (data, content_type)
        return f"https://store.test/{key}"


class ScriptedProvider:
    """
    MockTransport handler that answers provider calls from a script.

    Each entry is an httpx.Response or an async callable taking the request.
    GET requests go to ``remote`` (the follow-up download of URL results).
    """

    def __init__(self, script=None, remote=None):
        self.script = list(script or [])
        self.remote = remote
        self.provider_requests: list[httpx.Request] = []
        self.remote_requests: list[httpx.Request] = []

    async def __call__(self, request: httpx.Request) -> httpx.Response:
        if request.method == "GET":
            self.remote_requests.append(request)
            return await self._answer(self.remote, request)
        self.provider_requests.append(request)
        if not self.script:
            raise AssertionError("Unexpected extra provider call")
        return await self._answer(self.script.pop(0), request)

    @staticmethod
    async def _answer(entry, request: httpx.Request) -> httpx.Response:
        if entry is None:
            return httpx.Response(404)
        if isinstance(entry, httpx.Response):
            return entry
        return await entry(request)

    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self)


def b64_response(content: bytes, status_code: int = 200) -> httpx.Response:
    return httpx.Response(
        status_code,
        json={"created": 1, "data": [{"b64_json": base64.b64encode(content).decode("ascii")}]},
    )


def url_response(url: str = REMOTE_RESULT_URL) -> httpx.Response:
    return httpx.Response(200, json={"created": 1, "data": [{"url": url}]})


def error_response(status_code: int, message: str = "provider failure") -> httpx.Response:
    return httpx.Response(
        status_code,
        content=json.dumps({"error": {"message": message}}).encode("utf-8"),
        headers={"Content-Type": "application/json"},
    )


@pytest.fixture
def fake_storage() -> FakeStorage:
    return FakeStorage()


@pytest.fixture
def pipeline_config() -> PipelineConfig:
    """Short timeouts so timing tests finish quickly."""
    return PipelineConfig(
        api_key=TEST_API_KEY,
        endpoint_url=PROVIDER_URL,
        attempt_timeout=0.5,
        retry_backoff=0.0,
        fetch_timeout=0.5,
        publish_timeout=0.5,
        deadline=3.0,
    )


@pytest_asyncio.fixture
async def make_pipeline(pipeline_config, fake_storage) -> AsyncGenerator[Callable[..., GenerationPipeline], None]:
    clients: list[httpx.AsyncClient] = []

    def _make(
        provider: ScriptedProvider,
        *,
        config: Optional[PipelineConfig] = None,
        storage=None,
    ) -> GenerationPipeline:
        client = httpx.AsyncClient(transport=provider.transport())
        clients.append(client)
        return GenerationPipeline(
            config or pipeline_config,
            client,
            storage if storage is not None else fake_storage,
        )

    yield _make

    for client in clients:
        await client.aclose()


# ============== Client Fixtures ==============


@pytest.fixture
def provider() -> ScriptedProvider:
    return ScriptedProvider()


@pytest_asyncio.fixture(scope="function")
async def client(
    provider: ScriptedProvider, pipeline_config: PipelineConfig, fake_storage: FakeStorage
) -> AsyncGenerator[AsyncClient, None]:
    """Test client whose pipeline talks to the scripted provider and fake store."""
    from api.dependencies import get_pipeline_factory
    from main import app

    @asynccontextmanager
    async def open_test_pipeline():
        async with httpx.AsyncClient(transport=provider.transport()) as http_client:
            yield GenerationPipeline(pipeline_config, http_client, fake_storage)

    app.dependency_overrides[get_pipeline_factory] = lambda: open_test_pipeline

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac

    app.dependency_overrides.clear()
