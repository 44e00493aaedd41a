from .common import ErrorResponse, HealthResponse
from .generate import GenerateResponse

__all__ = [
    "ErrorResponse",
    "HealthResponse",
    "GenerateResponse",
]
