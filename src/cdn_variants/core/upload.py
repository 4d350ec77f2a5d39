"""Upload+optimize service: validate an upload, transcode it, store it locally."""

import os
import uuid
from typing import Any, Dict, Optional

from pydantic import BaseModel, Field, ValidationError

from .exceptions import ImageValidationError, TranscodeError
from .image_utils import format_from_name, resolve_source_format
from .logging_config import get_logger
from .models import ImageFormat, VariantConfig
from .protocols import TranscoderProtocol
from .settings import PipelineSettings


class UploadRequest(BaseModel):
    """Form fields accompanying an uploaded file."""

    filename: str
    content_type: Optional[str] = None
    format: ImageFormat = ImageFormat.WEBP
    quality: Optional[int] = Field(default=None, ge=1, le=100)
    width: Optional[int] = Field(default=None, gt=0)
    height: Optional[int] = Field(default=None, gt=0)


def validate_upload(data: bytes, request: UploadRequest, settings: PipelineSettings) -> str:
    """
    Reject uploads that are empty, too large or of a disallowed type.

    Returns:
        The detected source format

    Raises:
        ImageValidationError: 400 for bad input, 413 for oversized uploads
    """
    if not data:
        raise ImageValidationError("No file provided")
    if len(data) > settings.max_upload_size_bytes:
        raise ImageValidationError(
            f"File too large: {len(data)} bytes exceeds {settings.max_upload_size_mb}MB",
            status_code=413,
        )

    detected = resolve_source_format(data, request.content_type, request.filename)
    mime_type = f"image/{detected}" if detected else request.content_type
    if mime_type not in settings.accepted_mime_types:
        raise ImageValidationError(
            f"Unsupported file type: {mime_type or 'unknown'}. "
            f"Accepted types: {', '.join(settings.accepted_mime_types)}"
        )
    return detected or format_from_name(request.filename) or "unknown"


def optimize_upload(
    data: bytes,
    filename: str,
    settings: PipelineSettings,
    transcoder: TranscoderProtocol,
    content_type: Optional[str] = None,
    format: Any = ImageFormat.WEBP,
    quality: Any = None,
    width: Any = None,
    height: Any = None,
    base_url: str = "",
) -> Dict[str, Any]:
    """
    Optimize one uploaded image into settings.upload_dir.

    Form values arrive as strings and are validated through UploadRequest.
    Missing quality and dimensions fall back to the configured defaults, and
    the output is held to settings.default_max_size_mb.

    Returns:
        {"success": True, "result": {id, format, size, width, height, quality, url}} or
        {"success": False, "message": ..., "status_code": 400 | 413 | 422}
    """
    logger = get_logger("upload")
    try:
        request = UploadRequest(
            filename=filename,
            content_type=content_type,
            format=format or ImageFormat.WEBP,
            quality=quality if quality not in (None, "") else None,
            width=width or None,
            height=height or None,
        )
        source_format = validate_upload(data, request, settings)
    except ValidationError as e:
        errors = "; ".join(
            f"{'.'.join(str(p) for p in err['loc'])}: {err['msg']}" for err in e.errors()
        )
        logger.warning(f"Rejected upload {filename}: {errors}")
        return {"success": False, "message": f"Invalid request: {errors}", "status_code": 400}
    except ImageValidationError as e:
        logger.warning(f"Rejected upload {filename}: {e}")
        return {"success": False, "message": str(e), "status_code": e.status_code}

    # Without explicit dimensions the configured resolution ceiling applies.
    bounded = request.width is not None or request.height is not None
    config = VariantConfig(
        format=request.format,
        quality=request.quality or settings.default_quality,
        max_width=request.width if bounded else settings.default_max_resolution,
        max_height=request.height if bounded else settings.default_max_resolution,
        max_output_bytes=settings.default_max_output_bytes,
    )
    try:
        result = transcoder.transcode(data, source_format, config, scratch_dir=settings.scratch_dir)
    except TranscodeError as e:
        logger.error(f"Failed to process upload {filename}: {e}")
        return {"success": False, "message": f"Image processing failed: {e}", "status_code": 422}

    file_id = uuid.uuid4().hex
    output_name = f"{file_id}{result.format.extension}"
    os.makedirs(settings.upload_dir, exist_ok=True)
    with open(os.path.join(settings.upload_dir, output_name), "wb") as f:
        f.write(result.data)

    logger.info(
        f"Image processed successfully: id={file_id}, format={result.format.value}, size={result.size}"
    )
    upload_dir = os.path.basename(settings.upload_dir.rstrip("/"))
    return {
        "success": True,
        "message": "Image optimized and uploaded successfully",
        "result": {
            "id": file_id,
            "format": result.format.value,
            "size": result.size,
            "width": result.width,
            "height": result.height,
            "quality": result.quality,
            "url": f"{base_url.rstrip('/')}/{upload_dir}/{output_name}",
        },
    }
