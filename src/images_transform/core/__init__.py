"""Core pipeline, artifact lifecycle and batch components."""

from .logging_config import get_logger, setup_logger
from .exceptions import (
    ArtifactError,
    ImagesTransformError,
    InternalError,
    InvalidGeometryError,
    OptionsValidationError,
    PipelineError,
    UnsupportedOrCorruptInputError,
    with_error_handling,
)
from .models import (
    BatchItem,
    BatchOutcome,
    CropRect,
    FilterOptions,
    ImageMetadata,
    ItemOutcome,
    ItemState,
    OutputFormat,
    ProcessedImage,
    ProcessingPlan,
    ResizeOptions,
)
from .validation import OptionsValidator, validate_options
from .pipeline import DEFAULT_QUALITY, TransformationPipeline
from .artifacts import ArtifactStore, ArtifactSweeper
from .services import ImageProcessingService, OutputArtifact
from .batch import BatchCoordinator, BatchItemStore, create_batch_items

__all__ = [
    "get_logger",
    "setup_logger",
    "ArtifactError",
    "ImagesTransformError",
    "InternalError",
    "InvalidGeometryError",
    "OptionsValidationError",
    "PipelineError",
    "UnsupportedOrCorruptInputError",
    "with_error_handling",
    "BatchItem",
    "BatchOutcome",
    "CropRect",
    "FilterOptions",
    "ImageMetadata",
    "ItemOutcome",
    "ItemState",
    "OutputFormat",
    "ProcessedImage",
    "ProcessingPlan",
    "ResizeOptions",
    "OptionsValidator",
    "validate_options",
    "DEFAULT_QUALITY",
    "TransformationPipeline",
    "ArtifactStore",
    "ArtifactSweeper",
    "ImageProcessingService",
    "OutputArtifact",
    "BatchCoordinator",
    "BatchItemStore",
    "create_batch_items",
]
