"""
Pydantic schemas for health endpoints.
"""

from typing import List

from pydantic import BaseModel


class HealthResponse(BaseModel):
    """Health check response schema."""

    status: str
    version: str
    providers: List[str]
    rate_limiting: bool
