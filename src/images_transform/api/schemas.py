"""Pydantic response schemas for the HTTP API."""

from pydantic import BaseModel


class ErrorResponse(BaseModel):
    """Body returned for every failed request."""

    error: str
    detail: str


class HealthResponse(BaseModel):
    status: str
