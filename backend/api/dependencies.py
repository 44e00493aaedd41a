from contextlib import asynccontextmanager
from typing import AsyncContextManager, AsyncIterator, Callable

import httpx

import config
from services.pipeline import GenerationPipeline
from services.storage import get_storage

PipelineFactory = Callable[[], AsyncContextManager[GenerationPipeline]]


@asynccontextmanager
async def open_pipeline() -> AsyncIterator[GenerationPipeline]:
    """
    Build a pipeline for one request.

    Each request gets its own HTTP client, closed when the request is done,
    so requests share no mutable state.
    """
    settings = config.get_settings()
    pipeline_config = config.validate_generation_settings(settings)
    async with httpx.AsyncClient() as client:
        storage = get_storage(settings, client=client)
        yield GenerationPipeline(
            pipeline_config,
            client,
            storage,
            results_prefix=settings.RESULTS_PREFIX,
        )


def get_pipeline_factory() -> PipelineFactory:
    """FastAPI dependency; tests override it with a factory using fakes."""
    return open_pipeline
