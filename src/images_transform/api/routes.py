"""HTTP routes: image processing and liveness."""

from typing import Optional

from fastapi import APIRouter, Depends, File, Form, UploadFile
from fastapi.responses import FileResponse
from starlette.background import BackgroundTask
from starlette.concurrency import run_in_threadpool

from ..core.artifacts import ArtifactSweeper
from ..core.config import Settings
from ..core.exceptions import OptionsValidationError
from ..core.logging_config import get_logger
from ..core.services import ImageProcessingService
from ..core.validation import validate_options
from .dependencies import get_app_settings, get_processing_service, get_sweeper
from .errors import UploadRejectedError
from .schemas import ErrorResponse, HealthResponse

logger = get_logger("api")

router = APIRouter()

ERROR_RESPONSES = {
    status: {"model": ErrorResponse} for status in (400, 413, 415, 422, 500)
}


async def _read_upload(image: Optional[UploadFile], settings: Settings) -> bytes:
    if image is None:
        raise UploadRejectedError("No image file uploaded", status_code=400)

    content_type = (image.content_type or "").split(";")[0].strip().lower()
    if content_type not in settings.allowed_mime_types:
        raise UploadRejectedError(
            "Invalid file type. Only JPG, PNG, and WebP are allowed.", status_code=415
        )

    # One byte over the cap is enough to know it is too large
    data = await image.read(settings.max_upload_bytes + 1)
    if len(data) > settings.max_upload_bytes:
        raise UploadRejectedError(
            f"File too large. Maximum size is {settings.max_upload_bytes} bytes.",
            status_code=413,
        )
    if not data:
        raise UploadRejectedError("Uploaded file is empty", status_code=400)
    return data


@router.post(
    "/process",
    response_class=FileResponse,
    responses=ERROR_RESPONSES,
    summary="Transform one image",
)
async def process_image(
    image: Optional[UploadFile] = File(None),
    options: Optional[str] = Form(None),
    settings: Settings = Depends(get_app_settings),
    service: ImageProcessingService = Depends(get_processing_service),
    sweeper: ArtifactSweeper = Depends(get_sweeper),
):
    """
    Apply the options to the uploaded image and return the encoded result.

    The output file is deleted after the delivery grace window; the
    periodic sweep removes it if that never happens.
    """
    data = await _read_upload(image, settings)

    plan = validate_options(options)
    if settings.reject_noop_plans and plan.is_noop:
        raise OptionsValidationError("No changes requested", reason="NoopPlan")

    artifact = await run_in_threadpool(
        service.process_to_file, plan, data, image.filename or "upload"
    )

    async def release_output() -> None:
        await sweeper.release(artifact.path, settings.delivery_grace_seconds)

    return FileResponse(
        artifact.path,
        media_type=artifact.image.content_type,
        filename=artifact.download_name,
        background=BackgroundTask(release_output),
    )


@router.get("/health", response_model=HealthResponse)
async def health() -> HealthResponse:
    return HealthResponse(status="ok")
