# src/images_transform/core/error_handling.py

import functools
import logging
from collections import Counter
from typing import List, Tuple

from PIL import Image, UnidentifiedImageError

from .exceptions import ArtifactError, ImagesTransformError, UnsupportedOrCorruptInputError

# Errors Pillow raises for truncated, malformed or hostile input
PIL_DECODE_ERRORS = (
    UnidentifiedImageError,
    Image.DecompressionBombError,
    SyntaxError,
    ValueError,
    OSError,
)


def translate_image_errors(func):
    """
    A decorator mapping Pillow decode failures to UnsupportedOrCorruptInputError.

    Only wrap functions that decode; an OSError from anything else would be
    misreported as bad input.
    """
    @functools.wraps(func)
    def wrapper(*args, **kwargs):
        logger = logging.getLogger(func.__module__ + '.' + func.__name__)
        try:
            return func(*args, **kwargs)
        except ImagesTransformError:
            raise
        except PIL_DECODE_ERRORS as e:
            logger.warning(f"Could not decode image in '{func.__name__}': {e}")
            raise UnsupportedOrCorruptInputError(f"Cannot decode image: {e}") from e
    return wrapper


def translate_os_errors(func):
    """
    A decorator mapping filesystem failures to ArtifactError.
    """
    @functools.wraps(func)
    def wrapper(*args, **kwargs):
        logger = logging.getLogger(func.__module__ + '.' + func.__name__)
        try:
            return func(*args, **kwargs)
        except ImagesTransformError:
            raise
        except OSError as e:
            logger.error(f"Filesystem error in '{func.__name__}': {e}", exc_info=True)
            raise ArtifactError(f"Artifact operation failed in {func.__name__}: {e}",
                                path=getattr(e, "filename", None)) from e
    return wrapper


class BatchOperationContextManager:
    """
    Collects per-item failures of a batch run and logs one summary on exit.

    Item failures are outcomes, not exceptions: the block keeps going and the
    summary groups them by error kind (the text before the first colon of
    the reason, e.g. "UnsupportedOrCorruptInput").
    """
    def __init__(self, operation_name="Batch"):
        self.operation_name = operation_name
        self.errors: List[Tuple[str, str]] = []
        self.logger = logging.getLogger(f"{__name__}.{type(self).__name__}")

    def __enter__(self):
        self.logger.info(f"{self.operation_name}: started")
        return self

    def add_error(self, error_message, item_identifier: str = "unknown"):
        """Record the failure reason of one item."""
        self.errors.append((item_identifier, str(error_message)))
        self.logger.debug(f"{self.operation_name}: item {item_identifier} failed")

    def failures_by_kind(self) -> Counter:
        return Counter(reason.split(":", 1)[0] for _, reason in self.errors)

    def __exit__(self, exc_type, exc_val, exc_tb):
        if exc_type is not None:
            self.logger.error(
                f"{self.operation_name}: aborted by {exc_type.__name__}: {exc_val}",
                exc_info=(exc_type, exc_val, exc_tb),
            )
        elif self.errors:
            breakdown = ", ".join(f"{count} {kind}" for kind, count in self.failures_by_kind().most_common())
            self.logger.warning(f"{self.operation_name}: {len(self.errors)} item(s) failed ({breakdown})")
            for item_identifier, reason in self.errors:
                self.logger.error(f"  {item_identifier}: {reason}")
        else:
            self.logger.info(f"{self.operation_name}: no failures")
        return False
