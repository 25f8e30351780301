"""
Image codecs used by the wizard previews, thumbnails and processed uploads.
All functions take and return encoded image bytes.
"""
import io
from typing import Tuple

from PIL import Image, ImageOps

from config import (
    COMPRESSION_INITIAL_QUALITY,
    COMPRESSION_MAX_DIMENSION,
    COMPRESSION_QUALITY_FLOOR,
    COMPRESSION_QUALITY_STEP,
    PREVIEW_MAX_EDGE,
    PREVIEW_QUALITY,
    THUMBNAIL_MAX_HEIGHT,
    THUMBNAIL_MAX_WIDTH,
    THUMBNAIL_QUALITY,
)


def _open_image(image_bytes: bytes) -> Image.Image:
    image = Image.open(io.BytesIO(image_bytes))
    # Honour camera orientation before any resize
    image = ImageOps.exif_transpose(image)
    if image.mode != 'RGB':
        image = image.convert('RGB')
    return image


def _encode_jpeg(image: Image.Image, quality: float) -> bytes:
    output = io.BytesIO()
    image.save(output, format='JPEG', quality=max(1, min(95, int(round(quality * 100)))))
    return output.getvalue()


def _scaled_size(width: int, height: int, max_edge: int) -> Tuple[int, int]:
    longest = max(width, height)
    if longest <= max_edge:
        return width, height
    ratio = max_edge / longest
    return max(1, int(width * ratio)), max(1, int(height * ratio))


def create_preview(
    image_bytes: bytes,
    max_edge: int = PREVIEW_MAX_EDGE,
    quality: float = PREVIEW_QUALITY
) -> bytes:
    """
    Create a bounded-resolution JPEG preview of an uploaded photo.

    Args:
        image_bytes: Encoded source image
        max_edge: Longest edge of the preview in pixels
        quality: JPEG quality in (0, 1]

    Returns:
        bytes: JPEG-encoded preview
    """
    image = _open_image(image_bytes)
    size = _scaled_size(image.width, image.height, max_edge)
    if size != image.size:
        image = image.resize(size, Image.LANCZOS)
    return _encode_jpeg(image, quality)


def generate_thumbnail(
    image_bytes: bytes,
    max_width: int = THUMBNAIL_MAX_WIDTH,
    max_height: int = THUMBNAIL_MAX_HEIGHT,
    quality: float = THUMBNAIL_QUALITY
) -> bytes:
    """
    Generate a JPEG thumbnail keeping the aspect ratio.

    Landscape images are bounded by max_width, portrait and square ones by max_height.
    """
    image = _open_image(image_bytes)
    width, height = image.size

    if width > height:
        if width > max_width:
            height = round(height * (max_width / width))
            width = max_width
    else:
        if height > max_height:
            width = round(width * (max_height / height))
            height = max_height

    if (width, height) != image.size:
        image = image.resize((max(1, width), max(1, height)), Image.LANCZOS)
    return _encode_jpeg(image, quality)


def compress_to_size_limit(
    image_bytes: bytes,
    max_bytes: int,
    initial_quality: float = COMPRESSION_INITIAL_QUALITY
) -> bytes:
    """
    Re-encode an image until it fits in max_bytes.

    Each pass lowers the JPEG quality by one step and shrinks the image, stopping
    at the quality floor. When the floor is reached without fitting, the smallest
    encoding produced is returned with a warning; the result is never larger than
    the input.

    Args:
        image_bytes: Encoded source image
        max_bytes: Byte budget for the output
        initial_quality: Quality of the first pass in (0, 1]

    Returns:
        bytes: Encoded image, at most max_bytes unless the floor was hit
    """
    if len(image_bytes) <= max_bytes:
        return image_bytes

    image = _open_image(image_bytes)
    size = _scaled_size(image.width, image.height, COMPRESSION_MAX_DIMENSION)
    if size != image.size:
        image = image.resize(size, Image.LANCZOS)

    quality = max(COMPRESSION_QUALITY_FLOOR, min(initial_quality, 1.0))
    smallest = image_bytes

    while True:
        encoded = _encode_jpeg(image, quality)
        print(f"Compression pass at quality {quality:.2f}: {len(encoded)} bytes (limit {max_bytes})")
        if len(encoded) < len(smallest):
            smallest = encoded
        if len(encoded) <= max_bytes:
            return encoded
        if quality <= COMPRESSION_QUALITY_FLOOR:
            break

        quality = max(COMPRESSION_QUALITY_FLOOR, round(quality - COMPRESSION_QUALITY_STEP, 2))
        width, height = image.size
        image = image.resize((max(1, int(width * 0.85)), max(1, int(height * 0.85))), Image.LANCZOS)

    print(f"Warning: could not compress below {max_bytes} bytes, returning {len(smallest)} bytes at the quality floor")
    return smallest
