"""Common schemas used across the API.

This module contains reusable schema components for consistent API responses.
"""

from typing import Optional

from pydantic import BaseModel, Field


class ErrorResponse(BaseModel):
    """
    Standard error response format.

    All API errors use this format for consistency.

    Attributes:
        error: Human-readable error message
        kind: Machine-readable error category for programmatic handling
    """
    error: str = Field(..., description="Human-readable error description")
    kind: str = Field(
        "internal",
        description="Error category: input, upstream, protocol, timeout, publish, configuration, internal",
    )

    model_config = {
        "json_schema_extra": {
            "examples": [
                {
                    "error": "Missing prompt",
                    "kind": "input"
                },
                {
                    "error": "Generation did not finish within 150s",
                    "kind": "timeout"
                }
            ]
        }
    }


class HealthResponse(BaseModel):
    """Health check response."""
    status: str = "healthy"
    mode: str
    storage_backend: str
    upstream_configured: bool
    storage_configured: bool
    version: Optional[str] = None
