"""Mapping of service errors to HTTP responses."""

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from ..core.exceptions import ImagesTransformError, InternalError
from ..core.logging_config import get_logger
from .schemas import ErrorResponse

STATUS_BY_KIND = {
    "InvalidOptions": 400,
    "InvalidGeometry": 422,
    "UnsupportedOrCorruptInput": 415,
    "InternalError": 500,
}


class UploadRejectedError(ImagesTransformError):
    """Raised by the transport before the pipeline runs (missing file, MIME, size)."""

    kind = "InvalidUpload"

    def __init__(self, message: str, status_code: int = 400) -> None:
        super().__init__(message)
        self.status_code = status_code


def error_response(exc: ImagesTransformError) -> JSONResponse:
    status_code = getattr(exc, "status_code", None) or STATUS_BY_KIND.get(exc.kind, 500)
    # Internal failures are logged in full but reported generically
    detail = "Image processing failed" if exc.kind == InternalError.kind else str(exc)
    body = ErrorResponse(error=exc.kind, detail=detail)
    return JSONResponse(status_code=status_code, content=body.model_dump())


async def transform_error_handler(request: Request, exc: ImagesTransformError) -> JSONResponse:
    logger = get_logger("api")
    if exc.kind == InternalError.kind:
        logger.error(f"{request.method} {request.url.path} failed: {exc}")
    else:
        logger.info(f"{request.method} {request.url.path} rejected ({exc.kind}): {exc}")
    return error_response(exc)


async def unhandled_error_handler(request: Request, exc: Exception) -> JSONResponse:
    get_logger("api").error(
        f"Unhandled error on {request.method} {request.url.path}: {exc}", exc_info=True
    )
    return error_response(InternalError(str(exc)))


def register_exception_handlers(app: FastAPI) -> None:
    app.add_exception_handler(ImagesTransformError, transform_error_handler)
    app.add_exception_handler(Exception, unhandled_error_handler)
