from pydantic import BaseModel, Field


class GenerateResponse(BaseModel):
    """Result of a synchronous generation"""

    url: str = Field(..., description="Public URL of the stored rendering")
