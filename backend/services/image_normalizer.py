import base64
import binascii
import logging
from dataclasses import dataclass
from io import BytesIO
from typing import Optional

from PIL import Image, ImageOps, UnidentifiedImageError

from services.errors import DecodeError, ImageTooLarge, InputError, UnsupportedMediaType

logger = logging.getLogger(__name__)

NORMALIZED_MIME_TYPE = "image/jpeg"
DEFAULT_DATA_URL_MIME_TYPE = "image/jpeg"
NEUTRAL_BACKGROUND = (255, 255, 255)

IMAGE_MIME_ALIASES = {
    "image/jpg": "image/jpeg",
    "image/pjpeg": "image/jpeg",
    "image/x-jpg": "image/jpeg",
    "image/x-jpeg": "image/jpeg",
    "image/x-pjpeg": "image/jpeg",
    "image/jpe": "image/jpeg",
    "image/jfif": "image/jpeg",
    "image/x-jfif": "image/jpeg",
    "image/pipeg": "image/jpeg",
    "image/apng": "image/png",
    "image/vnd.mozilla.apng": "image/png",
    "image/x-png": "image/png",
    "image/x-citrix-png": "image/png",
    "image/x-webp": "image/webp",
    "image/x-citrix-webp": "image/webp",
}

# Browsers and proxies send these for files they could not classify.
_UNCLASSIFIED_MIME_TYPES = frozenset({"", "application/octet-stream", "binary/octet-stream"})


@dataclass(frozen=True)
class SourceImage:
    """Raw user photo as received, before any decoding."""

    data: bytes
    media_type: str


@dataclass(frozen=True)
class NormalizedImage:
    """Square, re-encoded image ready to be sent upstream."""

    data: bytes
    size: int
    media_type: str = NORMALIZED_MIME_TYPE
    original_size: tuple[int, int] = (0, 0)

    @property
    def filename(self) -> str:
        return "base.jpg" if self.media_type == "image/jpeg" else "base.png"


def normalize_image_mime_type(claimed_mime_type: str) -> str:
    mime_type = (claimed_mime_type or "").strip()
    if not mime_type:
        return ""

    # Normalize wrappers often seen in malformed multipart headers.
    for _ in range(2):
        if (mime_type.startswith('"') and mime_type.endswith('"')) or (
            mime_type.startswith("'") and mime_type.endswith("'")
        ):
            mime_type = mime_type[1:-1].strip()

    # Some clients/proxies accidentally send comma-joined values.
    if "," in mime_type:
        mime_type = mime_type.split(",", 1)[0].strip()
    if ";" in mime_type:
        mime_type = mime_type.split(";", 1)[0].strip()

    mime_type = mime_type.strip().lower()
    return IMAGE_MIME_ALIASES.get(mime_type, mime_type)


def sniff_image_mime_type(content: bytes) -> Optional[str]:
    """Best-effort MIME sniffing by magic bytes."""
    if not content:
        return None
    if content.startswith(b"\x89PNG\r\n\x1a\n"):
        return "image/png"
    if content.startswith(b"\xff\xd8\xff"):
        return "image/jpeg"
    if len(content) >= 12 and content[:4] == b"RIFF" and content[8:12] == b"WEBP":
        return "image/webp"
    if content[:6] in (b"GIF87a", b"GIF89a"):
        return "image/gif"
    return None


def parse_data_url(value: str) -> SourceImage:
    """
    Decode a ``data:`` URL as produced by ``FileReader.readAsDataURL``.

    The media type defaults to image/jpeg when the header omits it.
    """
    value = (value or "").strip()
    if not value.startswith("data:") or "," not in value:
        raise InputError("Image must be provided as a data URL")

    header, payload = value[5:].split(",", 1)
    params = [p.strip() for p in header.split(";")]
    media_type = normalize_image_mime_type(params[0]) or DEFAULT_DATA_URL_MIME_TYPE

    if "base64" not in (p.lower() for p in params[1:]):
        raise InputError("Image data URL must be base64 encoded")

    try:
        data = base64.b64decode("".join(payload.split()), validate=True)
    except (binascii.Error, ValueError):
        raise InputError("Image data URL contains invalid base64")

    if not data:
        raise InputError("Image data URL is empty")
    return SourceImage(data=data, media_type=media_type)


def check_source_image(source: SourceImage, max_bytes: int) -> str:
    """
    Reject sources that are empty, oversized, or not declared as images.

    Returns the media type the image will be decoded as: sniffed magic bytes
    win over a mismatching declared image type.
    """
    if not source.data:
        raise InputError("Empty image uploaded. Please select a photo.")
    if len(source.data) > max_bytes:
        raise ImageTooLarge(
            f"Image is too large. Max size is {max_bytes // (1024 * 1024)}MB"
        )

    declared = normalize_image_mime_type(source.media_type)
    if declared not in _UNCLASSIFIED_MIME_TYPES and not declared.startswith("image/"):
        raise UnsupportedMediaType(
            f"Unsupported media type '{declared}'. Upload an image file."
        )

    sniffed = sniff_image_mime_type(source.data)
    if sniffed and declared.startswith("image/") and sniffed != declared:
        logger.warning(
            "Declared MIME type mismatch (declared=%s, sniffed=%s); using sniffed MIME",
            declared,
            sniffed,
        )
    return sniffed or declared or "application/octet-stream"


def _flatten_onto_background(img: Image.Image, background: tuple[int, int, int]) -> Image.Image:
    if img.mode == "P" and "transparency" in img.info:
        img = img.convert("RGBA")
    if img.mode in {"RGBA", "LA"}:
        alpha = img.getchannel("A")
        rgb = Image.new("RGB", img.size, background)
        rgb.paste(img.convert("RGB"), mask=alpha)
        return rgb
    return img.convert("RGB")


def cover_geometry(width: int, height: int, target: int) -> tuple[int, int, int, int]:
    """
    Uniform scale so the image covers a target x target square.

    Returns (scaled_width, scaled_height, offset_x, offset_y); offsets are
    zero or negative and center the scaled image on the canvas.
    """
    scale = max(target / width, target / height)
    scaled_w = max(target, int(round(width * scale)))
    scaled_h = max(target, int(round(height * scale)))
    return scaled_w, scaled_h, (target - scaled_w) // 2, (target - scaled_h) // 2


# Pillow reports malformed files with any of these, depending on the plugin
# and on how far decoding got (SyntaxError for broken PNG chunks).
_DECODE_ERRORS = (
    UnidentifiedImageError,
    Image.DecompressionBombError,
    OSError,
    ValueError,
    SyntaxError,
    EOFError,
)


def _render_square(
    data: bytes, target_size: int, quality: int, background: tuple[int, int, int]
) -> tuple[bytes, tuple[int, int]]:
    with Image.open(BytesIO(data)) as img:
        img = ImageOps.exif_transpose(img)
        img = _flatten_onto_background(img, background)

    width, height = img.size
    if width <= 0 or height <= 0:
        raise DecodeError("Invalid image dimensions")

    scaled_w, scaled_h, offset_x, offset_y = cover_geometry(width, height, target_size)
    resampling = getattr(Image, "Resampling", Image)
    resized = img.resize((scaled_w, scaled_h), resampling.LANCZOS)

    canvas = Image.new("RGB", (target_size, target_size), background)
    canvas.paste(resized, (offset_x, offset_y))

    out = BytesIO()
    canvas.save(out, format="JPEG", quality=quality, progressive=False)
    return out.getvalue(), (width, height)


def normalize_image(
    source: SourceImage,
    *,
    target_size: int = 512,
    quality: int = 70,
    max_bytes: int = 10 * 1024 * 1024,
    background: tuple[int, int, int] = NEUTRAL_BACKGROUND,
) -> NormalizedImage:
    """
    Turn an arbitrary photo into a target_size x target_size JPEG.

    - apply EXIF orientation
    - flatten transparency onto the neutral background
    - scale uniformly to cover the square, center, crop the overflow
    """
    check_source_image(source, max_bytes)

    try:
        data, original_size = _render_square(source.data, target_size, quality, background)
    except _DECODE_ERRORS as e:
        logger.info("Failed to decode source image: %s: %s", type(e).__name__, e)
        raise DecodeError()

    logger.debug(
        "Normalized source image %sx%s -> %sx%s (%d bytes)",
        original_size[0],
        original_size[1],
        target_size,
        target_size,
        len(data),
    )
    return NormalizedImage(data=data, size=target_size, original_size=original_size)
