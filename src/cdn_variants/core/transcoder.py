"""
PillowTranscoder - decodes source bytes, resizes and re-encodes per variant.
"""

import io
import os
import tempfile
from typing import Optional

from PIL import Image, ImageOps, UnidentifiedImageError

from .exceptions import TranscodeError, TranscodeFailure
from .image_utils import (
    EXTENSION_TO_FORMAT,
    detect_format,
    fit_within,
    flatten_alpha,
    format_from_mime,
    normalize_mode,
)
from .logging_config import get_logger
from .models import ImageFormat, TranscodeResult, VariantConfig
from .protocols import LoggerProtocol

# Sources whose decoders misbehave when resized and re-encoded directly.
INTERMEDIATE_SOURCE_FORMATS = frozenset({"avif"})
INTERMEDIATE_QUALITY = 90

# Detected by signature but not decodable here.
UNDECODABLE_FORMATS = frozenset({"heic"})

QUALITY_STEP = 10
MIN_QUALITY = 10
DOWNSCALE_FACTOR = 0.9
MAX_BUDGET_ATTEMPTS = 10

DECODE_ERRORS = (OSError, SyntaxError, ValueError, Image.DecompressionBombError)
INTERMEDIATE_ERRORS = (TranscodeError,) + DECODE_ERRORS


def _normalize_hint(hint: Optional[str]) -> Optional[str]:
    if not hint:
        return None
    hint = hint.strip().lower()
    if "/" in hint:
        return format_from_mime(hint)
    if hint.startswith("."):
        return EXTENSION_TO_FORMAT.get(hint)
    return "jpeg" if hint == "jpg" else hint


class PillowTranscoder:
    """
    Resizes and re-encodes images with Pillow.

    Resizing fits the image inside the configured bounding box and never
    enlarges it. Quality is passed through to lossy encoders as is; for the
    lossless format it selects the zlib compression level instead.
    """

    def __init__(
        self,
        scratch_dir: Optional[str] = None,
        logger: Optional[LoggerProtocol] = None,
    ):
        self.scratch_dir = scratch_dir
        self.logger = logger or get_logger("transcoder")

    def transcode(
        self,
        data: bytes,
        source_format_hint: Optional[str],
        config: VariantConfig,
        scratch_dir: Optional[str] = None,
    ) -> TranscodeResult:
        """
        Produce one variant from source bytes.

        Args:
            data: Source image bytes
            source_format_hint: Declared format, MIME type or extension; magic
                bytes take precedence when they are recognized
            config: Variant policy
            scratch_dir: Directory for intermediate files, overrides the
                transcoder default

        Returns:
            TranscodeResult with the encoded bytes and output stats

        Raises:
            TranscodeError: decode-failed, encode-failed or unsupported-format
        """
        source_format = detect_format(data) or _normalize_hint(source_format_hint)
        if source_format in UNDECODABLE_FORMATS:
            raise TranscodeError(
                TranscodeFailure.UNSUPPORTED_FORMAT,
                f"no decoder available for {source_format} sources",
            )

        if source_format in INTERMEDIATE_SOURCE_FORMATS:
            image = self._decode_via_intermediate(data, source_format, scratch_dir or self.scratch_dir)
        else:
            image = self._decode(data, source_format)

        image = ImageOps.exif_transpose(image)

        target = fit_within(image.width, image.height, config.max_width, config.max_height)
        if target != image.size:
            self.logger.debug(f"Resizing {image.width}x{image.height} -> {target[0]}x{target[1]}")
            image = image.resize(target, Image.Resampling.LANCZOS)

        return self._encode_within_budget(image, config, original_size=len(data))

    def _decode(self, data: bytes, source_format: Optional[str]) -> Image.Image:
        try:
            image = Image.open(io.BytesIO(data))
            image.load()
            return image
        except UnidentifiedImageError as e:
            reason = (
                TranscodeFailure.DECODE_FAILED
                if source_format
                else TranscodeFailure.UNSUPPORTED_FORMAT
            )
            raise TranscodeError(reason, f"cannot identify image: {e}") from e
        except DECODE_ERRORS as e:
            raise TranscodeError(TranscodeFailure.DECODE_FAILED, str(e)) from e

    def _decode_via_intermediate(
        self, data: bytes, source_format: str, scratch_dir: Optional[str]
    ) -> Image.Image:
        """
        Route a fragile source through a high quality JPEG.

        The JPEG is written to a temporary file first and read back from disk.
        If that path fails the conversion is retried in memory. The temporary
        file is always removed.
        """
        self.logger.info(f"Decoding {source_format} source through intermediate JPEG")
        if scratch_dir:
            os.makedirs(scratch_dir, exist_ok=True)
        fd, temp_path = tempfile.mkstemp(suffix="_intermediate.jpg", dir=scratch_dir)
        os.close(fd)
        try:
            try:
                flatten_alpha(self._decode(data, source_format)).save(
                    temp_path, format="JPEG", quality=INTERMEDIATE_QUALITY
                )
                with Image.open(temp_path) as intermediate:
                    intermediate.load()
                    image = intermediate.copy()
                self.logger.debug("Intermediate conversion through temp file succeeded")
                return image
            except INTERMEDIATE_ERRORS as file_error:
                self.logger.warning(
                    f"Temp file intermediate failed ({file_error}); retrying in memory"
                )

            try:
                buffer = io.BytesIO()
                flatten_alpha(self._decode(data, source_format)).save(
                    buffer, format="JPEG", quality=INTERMEDIATE_QUALITY
                )
                buffer.seek(0)
                image = Image.open(buffer)
                image.load()
                self.logger.debug("Intermediate conversion in memory succeeded")
                return image
            except INTERMEDIATE_ERRORS as memory_error:
                raise TranscodeError(
                    TranscodeFailure.DECODE_FAILED,
                    f"all intermediate conversions failed for {source_format}: {memory_error}",
                ) from memory_error
        finally:
            try:
                if os.path.exists(temp_path):
                    os.remove(temp_path)
            except OSError as cleanup_error:
                self.logger.warning(f"Failed to clean up temp file {temp_path}: {cleanup_error}")

    def _encode(self, image: Image.Image, fmt: ImageFormat, quality: int) -> bytes:
        output = io.BytesIO()
        try:
            if fmt is ImageFormat.JPEG:
                flatten_alpha(image).save(output, format="JPEG", quality=quality, optimize=True)
            elif fmt is ImageFormat.WEBP:
                normalize_mode(image).save(output, format="WEBP", quality=quality, method=4)
            elif fmt is ImageFormat.AVIF:
                normalize_mode(image).save(
                    output, format="AVIF", quality=quality, speed=6, subsampling="4:2:0"
                )
            elif fmt is ImageFormat.PNG:
                compress_level = min(9, max(1, round(quality * 9 / 100)))
                normalize_mode(image).save(output, format="PNG", compress_level=compress_level)
            else:
                raise TranscodeError(TranscodeFailure.UNSUPPORTED_FORMAT, f"unknown target {fmt}")
        except KeyError as e:
            # Pillow raises KeyError when no encoder is registered for a format.
            raise TranscodeError(
                TranscodeFailure.UNSUPPORTED_FORMAT, f"no encoder for {fmt.value}: {e}"
            ) from e
        except (OSError, ValueError) as e:
            raise TranscodeError(TranscodeFailure.ENCODE_FAILED, str(e)) from e
        return output.getvalue()

    def _encode_within_budget(
        self, image: Image.Image, config: VariantConfig, original_size: int
    ) -> TranscodeResult:
        fmt = config.format
        quality = config.quality
        data = self._encode(image, fmt, quality)
        best = (data, image.size, quality)

        attempts = 0
        budget = config.max_output_bytes
        while budget and len(data) > budget and attempts < MAX_BUDGET_ATTEMPTS:
            attempts += 1
            if fmt.lossless:
                new_size = (
                    max(1, int(image.width * DOWNSCALE_FACTOR)),
                    max(1, int(image.height * DOWNSCALE_FACTOR)),
                )
                if new_size == image.size:
                    break
                image = image.resize(new_size, Image.Resampling.LANCZOS)
            else:
                if quality <= MIN_QUALITY:
                    break
                quality = max(MIN_QUALITY, quality - QUALITY_STEP)
            data = self._encode(image, fmt, quality)
            if len(data) < len(best[0]):
                best = (data, image.size, quality)

        data, (width, height), quality = best
        within_budget = not budget or len(data) <= budget
        if not within_budget:
            self.logger.warning(
                f"Could not fit {fmt.value} output into {budget} bytes; smallest attempt is {len(data)} bytes"
            )

        return TranscodeResult(
            data=data,
            format=fmt,
            width=width,
            height=height,
            size=len(data),
            quality=quality,
            original_size=original_size,
            within_budget=within_budget,
        )
