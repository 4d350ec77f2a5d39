"""Image helpers: content sniffing, bounding-box math and color mode fixes."""

import io
import os
from typing import Optional, Tuple

from PIL import Image, UnidentifiedImageError

# Leading signatures; RIFF and ISO-BMFF containers are checked separately.
MAGIC_BYTES = {
    b"\xff\xd8\xff": "jpeg",
    b"\x89PNG\r\n\x1a\n": "png",
    b"GIF87a": "gif",
    b"GIF89a": "gif",
    b"BM": "bmp",
    b"II*\x00": "tiff",
    b"MM\x00*": "tiff",
}

AVIF_BRANDS = (b"avif", b"avis")
HEIF_BRANDS = (b"heic", b"heix", b"hevc", b"hevx", b"heif", b"mif1", b"msf1")

MIME_TO_FORMAT = {
    "image/jpeg": "jpeg",
    "image/jpg": "jpeg",
    "image/pjpeg": "jpeg",
    "image/png": "png",
    "image/gif": "gif",
    "image/webp": "webp",
    "image/avif": "avif",
    "image/heic": "heic",
    "image/heif": "heic",
    "image/bmp": "bmp",
    "image/tiff": "tiff",
}

EXTENSION_TO_FORMAT = {
    ".jpg": "jpeg",
    ".jpeg": "jpeg",
    ".png": "png",
    ".gif": "gif",
    ".webp": "webp",
    ".avif": "avif",
    ".heic": "heic",
    ".heif": "heic",
    ".bmp": "bmp",
    ".tif": "tiff",
    ".tiff": "tiff",
}


def detect_format(data: bytes) -> Optional[str]:
    """
    Detect image format from magic bytes.

    Args:
        data: Raw file content (only the first few dozen bytes are inspected)

    Returns:
        Lowercase format name, or None when the signature is unknown
    """
    for magic, fmt in MAGIC_BYTES.items():
        if data.startswith(magic):
            return fmt

    if len(data) >= 12 and data[:4] == b"RIFF" and data[8:12] == b"WEBP":
        return "webp"

    # ISO-BMFF: 4-byte box size, "ftyp", major brand, minor version, compatible brands
    if len(data) >= 16 and data[4:8] == b"ftyp":
        box_size = int.from_bytes(data[:4], "big")
        brands_end = min(len(data), max(box_size, 16))
        brands = [data[8:12]] + [
            data[i : i + 4] for i in range(16, brands_end - 3, 4)
        ]
        if any(brand in AVIF_BRANDS for brand in brands):
            return "avif"
        if any(brand in HEIF_BRANDS for brand in brands):
            return "heic"

    return None


def format_from_mime(content_type: Optional[str]) -> Optional[str]:
    if not content_type:
        return None
    return MIME_TO_FORMAT.get(content_type.split(";")[0].strip().lower())


def format_from_name(name: Optional[str]) -> Optional[str]:
    if not name:
        return None
    ext = os.path.splitext(name.split("?")[0].split("#")[0])[1].lower()
    return EXTENSION_TO_FORMAT.get(ext)


def resolve_source_format(
    data: bytes,
    content_type: Optional[str] = None,
    name: Optional[str] = None,
) -> Optional[str]:
    """
    Work out the real source format.

    Magic bytes win over the declared content type, which wins over the
    file extension. Extensions on URLs are frequently wrong.
    """
    return detect_format(data) or format_from_mime(content_type) or format_from_name(name)


def read_dimensions(data: bytes) -> Tuple[Optional[int], Optional[int]]:
    """Width and height from the image header, (None, None) when unreadable."""
    try:
        with Image.open(io.BytesIO(data)) as img:
            return img.width, img.height
    except (UnidentifiedImageError, OSError, ValueError, SyntaxError, Image.DecompressionBombError):
        # The transcoder reports undecodable sources per variant.
        return None, None


def fit_within(
    width: int,
    height: int,
    max_width: Optional[int],
    max_height: Optional[int],
) -> Tuple[int, int]:
    """
    Compute the size that fits inside the bounding box without enlarging.

    Args:
        width: Source width
        height: Source height
        max_width: Width ceiling, None for unbounded
        max_height: Height ceiling, None for unbounded

    Returns:
        (width, height) preserving the aspect ratio, never larger than the source
    """
    scale = 1.0
    if max_width and width > max_width:
        scale = min(scale, max_width / width)
    if max_height and height > max_height:
        scale = min(scale, max_height / height)
    if scale >= 1.0:
        return width, height
    return max(1, round(width * scale)), max(1, round(height * scale))


def flatten_alpha(img: Image.Image) -> Image.Image:
    """Convert image to RGB, compositing any transparency onto white."""
    if img.mode in ("RGBA", "LA"):
        background = Image.new("RGB", img.size, (255, 255, 255))
        if img.mode == "LA":
            img = img.convert("RGBA")
        background.paste(img, mask=img.split()[-1])
        return background
    elif img.mode == "P":
        img = img.convert("RGBA")
        background = Image.new("RGB", img.size, (255, 255, 255))
        background.paste(img, mask=img.split()[-1])
        return background
    elif img.mode != "RGB":
        return img.convert("RGB")
    return img


def normalize_mode(img: Image.Image) -> Image.Image:
    """Bring palette and exotic modes into RGB/RGBA for alpha-capable encoders."""
    if img.mode in ("RGB", "RGBA"):
        return img
    if img.mode in ("LA", "PA") or (img.mode == "P" and "transparency" in img.info):
        return img.convert("RGBA")
    return img.convert("RGB")
