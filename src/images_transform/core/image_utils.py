"""Pixel primitives backed by Pillow.

Every function takes and returns a PIL image in RGB or RGBA mode; decode
normalizes other modes so the transforms never have to care about palettes,
CMYK or single channel images.
"""

import io
from typing import Callable, Optional, Tuple

import numpy as np
from PIL import Image, ImageEnhance, ImageFilter

from .error_handling import translate_image_errors
from .exceptions import InvalidGeometryError, UnsupportedOrCorruptInputError
from .models import CropRect, ImageMetadata

# Pillow format name -> (file extension, content type)
FORMAT_INFO = {
    "JPEG": ("jpg", "image/jpeg"),
    "PNG": ("png", "image/png"),
    "WEBP": ("webp", "image/webp"),
}

LOSSY_FORMATS = {"JPEG", "WEBP"}

WHITE = (255, 255, 255)
TRANSPARENT = (0, 0, 0, 0)

SEPIA_MATRIX = np.array(
    [
        [0.393, 0.769, 0.189],
        [0.349, 0.686, 0.168],
        [0.272, 0.534, 0.131],
    ],
    dtype=np.float32,
)


def has_alpha(img: Image.Image) -> bool:
    return img.mode in ("RGBA", "LA", "PA") or (
        img.mode == "P" and "transparency" in img.info
    )


def normalize_mode(img: Image.Image) -> Image.Image:
    """Convert any decoded mode to RGB, or RGBA when the image carries alpha."""
    target = "RGBA" if has_alpha(img) else "RGB"
    if img.mode == target:
        return img
    return img.convert(target)


@translate_image_errors
def decode_image(data: bytes) -> Image.Image:
    """
    Decode image bytes into a fully loaded, mode-normalized PIL image.

    The source format is kept on the returned image as ``image.format``.

    Raises:
        UnsupportedOrCorruptInputError: If the bytes are not a readable
            JPEG, PNG or WEBP image
    """
    img = Image.open(io.BytesIO(data))
    source_format = img.format
    if source_format not in FORMAT_INFO:
        raise UnsupportedOrCorruptInputError(
            f"Unsupported image format: {source_format or 'unknown'}"
        )
    img.load()
    img = normalize_mode(img)
    img.format = source_format
    return img


@translate_image_errors
def extract_metadata(data: bytes, filename: str) -> ImageMetadata:
    """
    Read dimensions and format without decoding the pixel data.

    Args:
        data: Raw image bytes
        filename: Original file name as uploaded

    Returns:
        ImageMetadata for the upload
    """
    with Image.open(io.BytesIO(data)) as img:
        return ImageMetadata(
            filename=filename,
            width=img.width,
            height=img.height,
            format=(img.format or "unknown").lower(),
            size_bytes=len(data),
        )


def compute_resize_dimensions(
    source_width: int,
    source_height: int,
    width: Optional[int],
    height: Optional[int],
    maintain_aspect_ratio: bool,
) -> Tuple[int, int]:
    """
    Work out the output size of a resize.

    With both dimensions, ``maintain_aspect_ratio`` selects fit-inside
    (scale to fit the box, never exceeding either side) over fill (exact
    box, aspect ignored). With a single dimension the other one follows
    the source aspect ratio in both modes.

    Returns:
        (width, height), each at least 1 pixel
    """
    if width is None and height is None:
        return source_width, source_height

    if width is not None and height is not None:
        if not maintain_aspect_ratio:
            return width, height
        scale = min(width / source_width, height / source_height)
        return (
            min(width, max(1, round(source_width * scale))),
            min(height, max(1, round(source_height * scale))),
        )

    if width is not None:
        return width, max(1, round(source_height * width / source_width))
    return max(1, round(source_width * height / source_height)), height


def crop_image(img: Image.Image, rect: CropRect) -> Image.Image:
    """Extract ``rect``; it must lie entirely inside the image."""
    if rect.x + rect.width > img.width or rect.y + rect.height > img.height:
        raise InvalidGeometryError(
            "crop",
            f"rectangle x={rect.x} y={rect.y} {rect.width}x{rect.height} "
            f"exceeds image bounds {img.width}x{img.height}",
        )
    return img.crop(rect.box)


def resize_image(img: Image.Image, width: int, height: int) -> Image.Image:
    if (width, height) == img.size:
        return img
    return img.resize((width, height), Image.Resampling.LANCZOS)


def rotate_image(img: Image.Image, degrees: float) -> Image.Image:
    """
    Rotate clockwise by ``degrees``.

    Right angles are lossless transposes. Any other angle grows the canvas
    so no corner is cut off; the new area is transparent when the image has
    alpha and white otherwise.
    """
    normalized = degrees % 360
    if normalized == 0:
        return img
    if normalized == 90:
        return img.transpose(Image.Transpose.ROTATE_270)
    if normalized == 180:
        return img.transpose(Image.Transpose.ROTATE_180)
    if normalized == 270:
        return img.transpose(Image.Transpose.ROTATE_90)

    fill = TRANSPARENT if img.mode == "RGBA" else WHITE
    # PIL rotates counter-clockwise
    return img.rotate(-normalized, resample=Image.Resampling.BICUBIC, expand=True, fillcolor=fill)


def _on_color_bands(img: Image.Image, fn: Callable[[Image.Image], Image.Image]) -> Image.Image:
    """Apply ``fn`` to the RGB bands and carry the alpha band over untouched."""
    if img.mode != "RGBA":
        return fn(img)
    alpha = img.getchannel("A")
    result = fn(img.convert("RGB")).convert("RGBA")
    result.putalpha(alpha)
    return result


def grayscale(img: Image.Image) -> Image.Image:
    return _on_color_bands(img, lambda rgb: rgb.convert("L").convert("RGB"))


def _sepia_rgb(rgb: Image.Image) -> Image.Image:
    pixels = np.asarray(rgb, dtype=np.float32)
    toned = pixels @ SEPIA_MATRIX.T
    return Image.fromarray(np.clip(toned, 0, 255).astype(np.uint8))


def sepia(img: Image.Image) -> Image.Image:
    return _on_color_bands(img, _sepia_rgb)


def blur(img: Image.Image, radius: float) -> Image.Image:
    if not radius:
        return img
    return img.filter(ImageFilter.GaussianBlur(radius))


def sharpen(img: Image.Image, amount: float) -> Image.Image:
    if not amount:
        return img
    return _on_color_bands(img, lambda rgb: ImageEnhance.Sharpness(rgb).enhance(1.0 + amount))


def adjust_brightness(img: Image.Image, factor: float) -> Image.Image:
    if factor == 1.0:
        return img
    return _on_color_bands(img, lambda rgb: ImageEnhance.Brightness(rgb).enhance(factor))


def adjust_contrast(img: Image.Image, factor: float) -> Image.Image:
    if factor == 1.0:
        return img
    return _on_color_bands(img, lambda rgb: ImageEnhance.Contrast(rgb).enhance(factor))


def flatten_alpha(img: Image.Image, color: Tuple[int, int, int] = WHITE) -> Image.Image:
    """Composite onto a solid background and drop the alpha band."""
    if img.mode != "RGBA":
        return img if img.mode == "RGB" else img.convert("RGB")
    background = Image.new("RGB", img.size, color)
    background.paste(img, mask=img.getchannel("A"))
    return background


def encode_image(img: Image.Image, pil_format: str, quality: int) -> bytes:
    """
    Encode to ``pil_format``.

    JPEG has no alpha, so RGBA input is flattened onto white first.
    ``quality`` only reaches lossy encoders.
    """
    if pil_format == "JPEG":
        img = flatten_alpha(img)

    save_kwargs = {}
    if pil_format in LOSSY_FORMATS:
        save_kwargs["quality"] = quality

    output_stream = io.BytesIO()
    img.save(output_stream, format=pil_format, **save_kwargs)
    return output_stream.getvalue()


class PillowImageBackend:
    """Pixel library adapter used by the pipeline."""

    decode = staticmethod(decode_image)
    encode = staticmethod(encode_image)
    crop = staticmethod(crop_image)
    resize = staticmethod(resize_image)
    rotate = staticmethod(rotate_image)
    grayscale = staticmethod(grayscale)
    sepia = staticmethod(sepia)
    blur = staticmethod(blur)
    sharpen = staticmethod(sharpen)
    adjust_brightness = staticmethod(adjust_brightness)
    adjust_contrast = staticmethod(adjust_contrast)
    flatten_alpha = staticmethod(flatten_alpha)
