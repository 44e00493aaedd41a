"""
Error taxonomy for the generation pipeline.

Every error carries a short machine-readable ``kind`` and the HTTP status the
API layer answers with. Messages are meant to be safe for clients; anything
derived from provider output is sanitized before it is stored here.
"""

from typing import Optional


class GenerationError(Exception):
    """Base class for all pipeline failures."""

    kind = "internal"
    status_code = 500
    default_message = "Generation failed"

    def __init__(self, message: Optional[str] = None):
        self.message = message or self.default_message
        super().__init__(self.message)


class ConfigurationError(GenerationError):
    kind = "configuration"
    status_code = 500
    default_message = "Service is not configured"


class EncodingError(GenerationError):
    kind = "internal"
    status_code = 500
    default_message = "Failed to encode upstream request"


class InputError(GenerationError):
    kind = "input"
    status_code = 400
    default_message = "Invalid input"


class UnsupportedMediaType(InputError):
    default_message = "Unsupported media type. Upload an image file."


class DecodeError(InputError):
    default_message = "Unsupported or corrupted image file"


class ImageTooLarge(InputError):
    default_message = "Image file is too large"


class UpstreamError(GenerationError):
    """The generation provider answered with a failure after retries."""

    kind = "upstream"
    status_code = 502
    default_message = "Image provider request failed"

    def __init__(
        self,
        message: Optional[str] = None,
        *,
        provider_status: Optional[int] = None,
        attempts: int = 0,
    ):
        super().__init__(message)
        self.provider_status = provider_status
        self.attempts = attempts


class RemoteFetchFailed(UpstreamError):
    default_message = "Failed to download generated image"


class ProtocolError(GenerationError):
    kind = "protocol"
    status_code = 502
    default_message = "Image provider returned an unexpected response"


class UpstreamContractViolation(ProtocolError):
    default_message = "Image provider response contained no image"


class GenerationTimeout(GenerationError):
    kind = "timeout"
    status_code = 504
    default_message = "Timed out while generating image"


class UpstreamTimeout(GenerationTimeout):
    default_message = "Image provider did not respond in time"

    def __init__(self, message: Optional[str] = None, *, attempts: int = 0):
        super().__init__(message)
        self.attempts = attempts


class StepTimeout(GenerationTimeout):
    pass


class RemoteFetchTimeout(RemoteFetchFailed, GenerationTimeout):
    kind = "timeout"
    status_code = 504
    default_message = "Timed out downloading generated image"


class DeadlineExceeded(GenerationTimeout):
    default_message = "Generation exceeded its time budget"


class PublishError(GenerationError):
    kind = "publish"
    status_code = 502
    default_message = "Failed to store generated image"
