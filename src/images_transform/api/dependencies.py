"""FastAPI dependencies resolving the components built in the app lifespan."""

from fastapi import Request

from ..core.artifacts import ArtifactSweeper
from ..core.config import Settings
from ..core.services import ImageProcessingService


def get_app_settings(request: Request) -> Settings:
    return request.app.state.settings


def get_processing_service(request: Request) -> ImageProcessingService:
    return request.app.state.service


def get_sweeper(request: Request) -> ArtifactSweeper:
    return request.app.state.sweeper
