"""Custom exceptions and error handling utilities for the image transform service."""

from __future__ import annotations

from contextlib import contextmanager
from functools import wraps
from typing import Any, Callable, Iterator, Optional, TypeVar

from .logging_config import get_logger


class ImagesTransformError(Exception):
    """Base exception for all image transform errors."""

    kind = "InternalError"


class OptionsValidationError(ImagesTransformError):
    """Raised when the raw options payload cannot become a ProcessingPlan."""

    kind = "InvalidOptions"

    def __init__(self, message: str, field: str = "", reason: str = "") -> None:
        super().__init__(message)
        self.field = field
        # Finer grained cause, e.g. "InvalidFormat"
        self.reason = reason or "InvalidValue"


class PipelineError(ImagesTransformError):
    """Base class for failures while transforming a single image."""


class InvalidGeometryError(PipelineError):
    """Raised when a crop or resize cannot apply to the actual image."""

    kind = "InvalidGeometry"

    def __init__(self, step: str, message: str) -> None:
        super().__init__(f"{step}: {message}")
        self.step = step


class UnsupportedOrCorruptInputError(PipelineError):
    """Raised when the input bytes cannot be decoded as a supported image."""

    kind = "UnsupportedOrCorruptInput"


class ArtifactError(ImagesTransformError):
    """Raised when a temporary file cannot be created, read or deleted."""

    kind = "InternalError"

    def __init__(self, message: str, path: Optional[str] = None) -> None:
        super().__init__(message)
        self.path = path


class InternalError(ImagesTransformError):
    """Raised for anything unexpected."""

    kind = "InternalError"


F = TypeVar("F", bound=Callable[..., Any])


def with_error_handling(func: F) -> F:
    """Wrap a function so unexpected exceptions surface as InternalError."""

    @wraps(func)
    def wrapper(*args: Any, **kwargs: Any) -> Any:  # type: ignore[override]
        logger = get_logger("errors")
        try:
            return func(*args, **kwargs)
        except ImagesTransformError:
            raise
        except Exception as exc:  # noqa: BLE001
            logger.error(f"Unhandled error in {func.__name__}: {exc}", exc_info=True)
            raise InternalError(str(exc)) from exc

    return wrapper  # type: ignore[return-value]


@contextmanager
def batch_error_handler() -> Iterator[None]:
    """Context manager that normalizes errors raised while processing one batch item."""
    try:
        yield
    except ImagesTransformError:
        raise
    except Exception as exc:  # noqa: BLE001
        raise InternalError(str(exc)) from exc
