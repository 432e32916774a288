"""
Best-effort image normalization before upload.

Images are scaled down to fit a bounding box and re-encoded at decreasing
quality until they fit a byte budget. Any failure hands the original bytes
back: normalizing is never allowed to block a publish.
"""

import logging
from dataclasses import dataclass
from io import BytesIO

from PIL import Image, ImageOps, UnidentifiedImageError

logger = logging.getLogger(__name__)

QUALITY_STEP = 0.1

_MIME_BY_FORMAT = {
    "JPEG": "image/jpeg",
    "WEBP": "image/webp",
    "PNG": "image/png",
}


@dataclass(frozen=True)
class NormalizerConfig:
    max_width: int = 2000
    max_height: int = 2000
    start_quality: float = 0.9
    floor_quality: float = 0.5
    target_bytes: int = 800 * 1024
    preferred_format: str = "WEBP"


@dataclass(frozen=True)
class NormalizedImage:
    data: bytes
    content_type: str
    width: int | None = None
    height: int | None = None
    # None when the input was passed through untouched
    quality: float | None = None


def fit_within(width: int, height: int, max_width: int, max_height: int) -> tuple[int, int]:
    """Scale (width, height) down into the box, keeping aspect ratio. Never upscales."""
    scale = min(1.0, max_width / width, max_height / height)
    return max(1, round(width * scale)), max(1, round(height * scale))


def _encode(img: Image.Image, fmt: str, quality: float) -> bytes:
    output = BytesIO()
    q = int(max(1, min(95, round(quality * 100))))
    if fmt == "JPEG":
        if img.mode not in ("RGB", "L"):
            img = img.convert("RGB")
        img.save(output, format="JPEG", quality=q, optimize=True, progressive=True)
    elif fmt == "WEBP":
        img.save(output, format="WEBP", quality=q, method=6)
    else:
        img.save(output, format=fmt, optimize=True)
    return output.getvalue()


def _encode_with_fallback(img: Image.Image, fmt: str, quality: float) -> tuple[bytes, str]:
    try:
        data = _encode(img, fmt, quality)
    except (OSError, KeyError, ValueError):
        logger.info("Encoder for %s unavailable, falling back to JPEG", fmt)
    else:
        if data:
            return data, fmt
    return _encode(img, "JPEG", quality), "JPEG"


def normalize(
    data: bytes, content_type: str, config: NormalizerConfig | None = None
) -> NormalizedImage:
    config = config or NormalizerConfig()
    original = NormalizedImage(data=data, content_type=content_type)
    if len(data) <= config.target_bytes:
        return original

    try:
        with Image.open(BytesIO(data)) as opened:
            img = ImageOps.exif_transpose(opened)
            img.load()
        size = fit_within(img.width, img.height, config.max_width, config.max_height)
        if size != img.size:
            img = img.resize(size, Image.Resampling.LANCZOS)

        fmt = config.preferred_format.upper()
        quality = config.start_quality
        encoded, fmt = _encode_with_fallback(img, fmt, quality)
        while len(encoded) > config.target_bytes and quality > config.floor_quality:
            quality = max(config.floor_quality, round(quality - QUALITY_STEP, 2))
            encoded = _encode(img, fmt, quality)
    except (UnidentifiedImageError, OSError, ValueError, Image.DecompressionBombError):
        logger.warning("Image normalization failed; keeping original", exc_info=True)
        return original

    if len(encoded) >= len(data):
        return original
    logger.debug(
        "Normalized %d -> %d bytes (%dx%d %s q=%.2f)",
        len(data), len(encoded), size[0], size[1], fmt, quality,
    )
    return NormalizedImage(
        data=encoded,
        content_type=_MIME_BY_FORMAT.get(fmt, "image/jpeg"),
        width=size[0],
        height=size[1],
        quality=quality,
    )
