import logging
from typing import Optional

from fastapi import APIRouter, Depends, File, Form, UploadFile

from api.dependencies import PipelineFactory, get_pipeline_factory
from schemas.common import ErrorResponse
from schemas.generate import GenerateResponse
from services.errors import GenerationError, InputError
from services.image_normalizer import SourceImage, parse_data_url
from services.prompt import build_renovation_prompt, normalize_prompt

logger = logging.getLogger(__name__)

router = APIRouter(tags=["generate"])

_ERROR_RESPONSES = {
    400: {"model": ErrorResponse, "description": "Missing or invalid prompt/image"},
    500: {"model": ErrorResponse, "description": "Configuration or unexpected error"},
    502: {"model": ErrorResponse, "description": "Image provider or storage failure"},
    504: {"model": ErrorResponse, "description": "Generation timed out"},
}


def _resolve_prompt(
    prompt: Optional[str],
    color: Optional[str],
    color_hex: Optional[str],
    finish: Optional[str],
) -> str:
    if prompt and prompt.strip():
        return normalize_prompt(prompt)
    if color and color.strip():
        return build_renovation_prompt(color, color_hex, finish)
    raise InputError("Missing prompt")


async def _resolve_source(base: Optional[str], image: Optional[UploadFile]) -> SourceImage:
    has_upload = image is not None and bool(image.filename)
    has_data_url = bool(base and base.strip())

    if has_upload and has_data_url:
        raise InputError("Send the photo either as 'base' or as 'image', not both")
    if has_data_url:
        return parse_data_url(base)
    if has_upload:
        try:
            content = await image.read()
        except Exception:
            logger.exception("Failed to read uploaded image")
            raise InputError("Failed to read uploaded file")
        return SourceImage(data=content, media_type=image.content_type or "")
    raise InputError("Missing image")


@router.post("/generate-sync", response_model=GenerateResponse, responses=_ERROR_RESPONSES)
async def generate_sync(
    prompt: Optional[str] = Form(None, description="Edit instruction for the photo"),
    base: Optional[str] = Form(None, description="Source photo as a data URL"),
    image: Optional[UploadFile] = File(None, description="Source photo file (PNG, JPG, WEBP)"),
    color: Optional[str] = Form(None, description="Frame color name, used when prompt is empty"),
    color_hex: Optional[str] = Form(None, description="Frame color as #RRGGBB"),
    finish: Optional[str] = Form(None, description="Surface finish, e.g. matte"),
    pipeline_factory: PipelineFactory = Depends(get_pipeline_factory),
):
    """
    Render the "after" photo and return its public URL.

    Inputs are validated before anything is sent to the image provider.
    """
    prompt_text = _resolve_prompt(prompt, color, color_hex, finish)
    source = await _resolve_source(base, image)

    try:
        async with pipeline_factory() as pipeline:
            artifact = await pipeline.generate(prompt_text, source)
    except GenerationError:
        raise
    except Exception:
        logger.exception("Unexpected generation failure")
        raise GenerationError("Generation failed")

    return GenerateResponse(url=artifact.public_url)
