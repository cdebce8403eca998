"""Shared data models for the image transform service."""

import uuid
from enum import Enum
from typing import Annotated, List, Optional

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator

StrictPositiveInt = Annotated[int, Field(strict=True, gt=0)]
StrictNonNegativeInt = Annotated[int, Field(strict=True, ge=0)]
StrictFactor = Annotated[float, Field(strict=True, ge=0.0, le=2.0, allow_inf_nan=False)]

# Pillow format names the encoder can write
ENCODABLE_FORMATS = ("JPEG", "PNG", "WEBP")


class OutputFormat(str, Enum):
    """Formats a plan may ask the encoder for."""

    JPG = "jpg"
    JPEG = "jpeg"
    PNG = "png"
    WEBP = "webp"

    @property
    def pil_name(self) -> str:
        return "JPEG" if self in (OutputFormat.JPG, OutputFormat.JPEG) else self.value.upper()


class ResizeOptions(BaseModel):
    """Target box for a resize; either dimension may be left out."""

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    width: Optional[StrictPositiveInt] = None
    height: Optional[StrictPositiveInt] = None
    maintain_aspect_ratio: bool = Field(
        default=False,
        strict=True,
        validation_alias=AliasChoices("maintainAspectRatio", "maintain_aspect_ratio"),
    )


class CropRect(BaseModel):
    """Crop rectangle in source image coordinates."""

    model_config = ConfigDict(frozen=True)

    x: StrictNonNegativeInt
    y: StrictNonNegativeInt
    width: StrictPositiveInt
    height: StrictPositiveInt

    @property
    def box(self) -> tuple[int, int, int, int]:
        return (self.x, self.y, self.x + self.width, self.y + self.height)


class FilterOptions(BaseModel):
    model_config = ConfigDict(frozen=True)

    grayscale: bool = Field(default=False, strict=True)
    sepia: bool = Field(default=False, strict=True)
    blur: Optional[float] = Field(
        default=None, strict=True, ge=0, le=100, allow_inf_nan=False
    )
    sharpen: Optional[float] = Field(
        default=None, strict=True, ge=0, le=10, allow_inf_nan=False
    )

    @property
    def is_noop(self) -> bool:
        return not (self.grayscale or self.sepia or self.blur or self.sharpen)


class ProcessingPlan(BaseModel):
    """Validated, immutable description of the transformations for one image.

    Field names accept both the camelCase wire names and the attribute
    names. Bounds are enforced here; geometry against the actual image is
    checked by the pipeline.
    """

    model_config = ConfigDict(frozen=True, populate_by_name=True, extra="ignore")

    target_format: Optional[OutputFormat] = Field(
        default=None, validation_alias=AliasChoices("format", "targetFormat", "target_format")
    )
    resize: Optional[ResizeOptions] = None
    crop: Optional[CropRect] = None
    rotation: Optional[float] = Field(default=None, strict=True, allow_inf_nan=False)
    filters: Optional[FilterOptions] = None
    brightness: Optional[StrictFactor] = None
    contrast: Optional[StrictFactor] = None
    remove_background: bool = Field(
        default=False,
        strict=True,
        validation_alias=AliasChoices("removeBackground", "remove_background"),
    )
    quality: Optional[int] = Field(default=None, strict=True, ge=1, le=100)

    @field_validator("resize")
    @classmethod
    def drop_empty_resize(cls, value: Optional[ResizeOptions]) -> Optional[ResizeOptions]:
        """A resize without any dimension requests nothing."""
        if value is not None and value.width is None and value.height is None:
            return None
        return value

    @property
    def is_noop(self) -> bool:
        """True when applying the plan would only re-encode the source."""
        return (
            self.target_format is None
            and self.resize is None
            and self.crop is None
            and not self.rotation
            and (self.filters is None or self.filters.is_noop)
            and self.brightness in (None, 1.0)
            and self.contrast in (None, 1.0)
            and not self.remove_background
            and self.quality is None
        )

    def resolve_format(self, source_format: Optional[str]) -> str:
        """Pillow format to encode to: the requested one, else the source, else PNG."""
        if self.target_format is not None:
            return self.target_format.pil_name
        if source_format in ENCODABLE_FORMATS:
            return source_format
        return "PNG"


class ImageMetadata(BaseModel):
    """Facts about an uploaded image, derived once at ingestion."""

    model_config = ConfigDict(frozen=True)

    filename: str
    width: int
    height: int
    format: str
    size_bytes: int


class ProcessedImage(BaseModel):
    """Encoded output of one pipeline run."""

    data: bytes
    format: str
    extension: str
    content_type: str
    width: int
    height: int


class ItemState(str, Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


class BatchItem(BaseModel):
    """One image in a multi-image submission."""

    id: uuid.UUID = Field(default_factory=uuid.uuid4)
    source_bytes: bytes
    metadata: ImageMetadata
    state: ItemState = ItemState.PENDING
    result: Optional[ProcessedImage] = None
    error_reason: Optional[str] = None

    @property
    def result_bytes(self) -> Optional[bytes]:
        return self.result.data if self.result is not None else None


class ItemOutcome(BaseModel):
    """Tagged result of processing a single batch item."""

    item_id: uuid.UUID
    success: bool = False
    result: Optional[ProcessedImage] = None
    error: str = ""
    processing_time: float = 0.0


class BatchOutcome(BaseModel):
    """Aggregate counts for one batch run."""

    completed_count: int = 0
    failed_count: int = 0
    skipped_count: int = 0
    item_ids: List[uuid.UUID] = Field(default_factory=list)
    processing_time: float = 0.0
