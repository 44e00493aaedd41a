"""
Form payload of image edit requests.

The upstream caller hands ``fields`` and ``files`` to httpx, which frames the
multipart/form-data body and picks its boundary.
"""

from dataclasses import dataclass, field
from typing import Optional

from services.errors import EncodingError
from services.image_normalizer import NormalizedImage

IMAGE_FIELD = "image"


@dataclass(frozen=True)
class GenerationParameters:
    size: str = "1024x1024"
    n: int = 1
    response_format: str = "b64_json"
    model: Optional[str] = None

    def as_fields(self) -> dict[str, str]:
        fields = {}
        if self.model:
            fields["model"] = self.model
        fields["n"] = str(self.n)
        fields["size"] = self.size
        fields["response_format"] = self.response_format
        return fields


@dataclass(frozen=True)
class GenerationRequest:
    prompt: str
    image: NormalizedImage
    parameters: GenerationParameters = field(default_factory=GenerationParameters)


@dataclass(frozen=True)
class EncodedRequest:
    """Scalar form fields plus exactly one image file part."""

    fields: dict[str, str]
    files: dict[str, tuple[str, bytes, str]]


def encode_request(request: GenerationRequest) -> EncodedRequest:
    if not request.image.data:
        raise EncodingError("Normalized image is empty")

    fields = {"prompt": request.prompt}
    fields.update(request.parameters.as_fields())
    image = request.image
    return EncodedRequest(
        fields=fields,
        files={IMAGE_FIELD: (image.filename, image.data, image.media_type)},
    )
