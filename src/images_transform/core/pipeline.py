"""Ordered transformation pipeline for a single decoded image."""

from typing import Callable, List, Optional, Tuple

from PIL import Image

from .exceptions import InvalidGeometryError, with_error_handling
from .image_utils import (
    FORMAT_INFO,
    PillowImageBackend,
    compute_resize_dimensions,
)
from .models import ProcessedImage, ProcessingPlan, ResizeOptions
from .observability import LogContext, MetricsCollector, StructuredLogger, step_timer
from .protocols import ImageBackendProtocol, LoggerProtocol

DEFAULT_QUALITY = 90

# Refuse to allocate outputs larger than this many pixels
MAX_OUTPUT_PIXELS = 50_000_000

Step = Tuple[str, Callable[[Image.Image], Image.Image]]


class TransformationPipeline:
    """
    Applies a ProcessingPlan to one decoded image.

    Steps run in a fixed order: crop, resize, rotate, grayscale, sepia,
    blur, sharpen, brightness, contrast, background removal, then encode.
    Crop coordinates therefore always refer to the original image, and
    resize and rotation operate on the cropped region. Steps whose plan
    field is absent are skipped.

    The pipeline holds no per-request state and can be shared between
    concurrent workers.
    """

    def __init__(
        self,
        backend: Optional[ImageBackendProtocol] = None,
        default_quality: int = DEFAULT_QUALITY,
        metrics_collector: Optional[MetricsCollector] = None,
        logger: Optional[LoggerProtocol] = None,
    ):
        self._backend = backend or PillowImageBackend()
        self._default_quality = default_quality
        self._metrics_collector = metrics_collector
        self._logger = logger or StructuredLogger("pipeline")

    def decode(self, data: bytes) -> Image.Image:
        """Decode input bytes; raises UnsupportedOrCorruptInputError on failure."""
        return self._backend.decode(data)

    def build_steps(self, plan: ProcessingPlan) -> List[Step]:
        """Return the (name, transform) pairs the plan asks for, in execution order."""
        backend = self._backend
        steps: List[Step] = []

        if plan.crop is not None:
            crop = plan.crop
            steps.append(("crop", lambda img: backend.crop(img, crop)))

        if plan.resize is not None:
            steps.append(("resize", self._resize_step(plan.resize)))

        if plan.rotation:
            rotation = plan.rotation
            steps.append(("rotate", lambda img: backend.rotate(img, rotation)))

        filters = plan.filters
        if filters is not None:
            if filters.grayscale:
                steps.append(("grayscale", backend.grayscale))
            if filters.sepia:
                steps.append(("sepia", backend.sepia))
            if filters.blur:
                radius = filters.blur
                steps.append(("blur", lambda img: backend.blur(img, radius)))
            if filters.sharpen:
                amount = filters.sharpen
                steps.append(("sharpen", lambda img: backend.sharpen(img, amount)))

        if plan.brightness is not None:
            brightness = plan.brightness
            steps.append(("brightness", lambda img: backend.adjust_brightness(img, brightness)))

        if plan.contrast is not None:
            contrast = plan.contrast
            steps.append(("contrast", lambda img: backend.adjust_contrast(img, contrast)))

        if plan.remove_background:
            steps.append(("remove_background", backend.flatten_alpha))

        return steps

    def _resize_step(self, options: ResizeOptions) -> Callable[[Image.Image], Image.Image]:
        def resize(img: Image.Image) -> Image.Image:
            width, height = compute_resize_dimensions(
                img.width,
                img.height,
                options.width,
                options.height,
                options.maintain_aspect_ratio,
            )
            if width * height > MAX_OUTPUT_PIXELS:
                raise InvalidGeometryError(
                    "resize", f"target {width}x{height} exceeds {MAX_OUTPUT_PIXELS} pixels"
                )
            return self._backend.resize(img, width, height)

        return resize

    @with_error_handling
    def run(
        self,
        plan: ProcessingPlan,
        image: Image.Image,
        context: Optional[LogContext] = None,
    ) -> ProcessedImage:
        """
        Run every requested step and encode the result.

        Args:
            plan: Validated processing plan
            image: Decoded source image (from ``decode``)
            context: Log context of the calling request

        Returns:
            ProcessedImage with the encoded bytes and final dimensions

        Raises:
            InvalidGeometryError: If a step cannot apply to the image
            InternalError: For any unexpected failure
        """
        context = context or LogContext(component="pipeline")
        source_format = image.format
        pil_format = plan.resolve_format(source_format)
        quality = plan.quality if plan.quality is not None else self._default_quality

        current = image
        for name, transform in self.build_steps(plan):
            with self._timed(name, context):
                current = transform(current)

        with self._timed("encode", context):
            data = self._backend.encode(current, pil_format, quality)

        extension, content_type = FORMAT_INFO[pil_format]
        self._logger.debug(
            "Pipeline finished",
            context,
            source_format=source_format,
            output_format=pil_format,
            size=f"{current.width}x{current.height}",
            output_bytes=len(data),
        )
        return ProcessedImage(
            data=data,
            format=pil_format,
            extension=extension,
            content_type=content_type,
            width=current.width,
            height=current.height,
        )

    def _timed(self, operation: str, context: LogContext):
        return step_timer(
            operation,
            logger=self._logger,
            metrics_collector=self._metrics_collector,
            context=context,
        )
