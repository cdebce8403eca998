"""Protocol definitions for dependency injection and testability."""

from abc import ABC, abstractmethod
from typing import Any, Callable, List, Optional, Protocol, Tuple

from PIL import Image

from .models import BatchItem, CropRect, ItemOutcome, ProcessedImage, ProcessingPlan


class ImageBackendProtocol(Protocol):
    """Pixel primitives the pipeline relies on."""

    def decode(self, data: bytes) -> Image.Image:
        """Decode image bytes."""
        ...

    def encode(self, img: Image.Image, pil_format: str, quality: int) -> bytes:
        """Encode an image to bytes."""
        ...

    def crop(self, img: Image.Image, rect: CropRect) -> Image.Image: ...

    def resize(self, img: Image.Image, width: int, height: int) -> Image.Image: ...

    def rotate(self, img: Image.Image, degrees: float) -> Image.Image: ...

    def grayscale(self, img: Image.Image) -> Image.Image: ...

    def sepia(self, img: Image.Image) -> Image.Image: ...

    def blur(self, img: Image.Image, radius: float) -> Image.Image: ...

    def sharpen(self, img: Image.Image, amount: float) -> Image.Image: ...

    def adjust_brightness(self, img: Image.Image, factor: float) -> Image.Image: ...

    def adjust_contrast(self, img: Image.Image, factor: float) -> Image.Image: ...

    def flatten_alpha(
        self, img: Image.Image, color: Tuple[int, int, int] = ...
    ) -> Image.Image: ...


class LoggerProtocol(Protocol):
    """Anything that logs a message with an optional LogContext and key=value fields."""

    def debug(self, message: str, context: Any = None, **fields: Any) -> None: ...

    def info(self, message: str, context: Any = None, **fields: Any) -> None: ...

    def warning(self, message: str, context: Any = None, **fields: Any) -> None: ...

    def error(self, message: str, context: Any = None, **fields: Any) -> None: ...


class ProcessingService(ABC):
    """Abstract service running one image through the pipeline."""

    @abstractmethod
    def process_bytes(
        self,
        plan: ProcessingPlan,
        data: bytes,
        filename: str,
        correlation_id: Optional[str] = None,
    ) -> ProcessedImage:
        """Process a single image held in memory."""
        ...


ItemRunner = Callable[[BatchItem], ItemOutcome]


class FanOutStrategy(ABC):
    """Runs one callable over many batch items concurrently and joins them all."""

    @abstractmethod
    async def run_all(
        self, items: List[BatchItem], runner: ItemRunner
    ) -> List[ItemOutcome]:
        """Return one outcome per item, in any order, once every item has settled."""
        ...
