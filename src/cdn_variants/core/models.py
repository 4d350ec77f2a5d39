"""Shared data models for the variant pipeline."""

from enum import Enum
from typing import Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field


class ImageFormat(str, Enum):
    """Output formats a variant can be encoded to."""

    WEBP = "webp"
    AVIF = "avif"
    JPEG = "jpeg"
    PNG = "png"

    @property
    def extension(self) -> str:
        return ".jpg" if self is ImageFormat.JPEG else f".{self.value}"

    @property
    def content_type(self) -> str:
        return f"image/{self.value}"

    @property
    def pil_format(self) -> str:
        return self.value.upper()

    @property
    def lossless(self) -> bool:
        return self is ImageFormat.PNG


class VariantConfig(BaseModel):
    """Size and quality policy for one named variant."""

    model_config = ConfigDict(frozen=True)

    format: ImageFormat = ImageFormat.WEBP
    quality: int = Field(default=75, ge=1, le=100)
    max_width: Optional[int] = Field(default=None, gt=0)
    max_height: Optional[int] = Field(default=None, gt=0)
    max_output_bytes: Optional[int] = Field(default=None, gt=0)


DEFAULT_VARIANTS: Dict[str, VariantConfig] = {
    "thumbnail": VariantConfig(quality=100, max_width=200, max_output_bytes=1024 * 1024),
    "full": VariantConfig(quality=75, max_width=1200, max_output_bytes=1024 * 1024),
    "preview": VariantConfig(quality=75, max_width=720, max_output_bytes=1024 * 1024),
}


class SourceImage(BaseModel):
    """Source bytes plus where they came from."""

    identifier: str
    data: bytes = Field(repr=False)
    mime_type: Optional[str] = None
    format: Optional[str] = None
    local_path: Optional[str] = None
    is_remote: bool = False
    width: Optional[int] = None
    height: Optional[int] = None

    @property
    def size(self) -> int:
        return len(self.data)


class TranscodeResult(BaseModel):
    """Encoded variant bytes and the stats describing them."""

    data: bytes = Field(repr=False)
    format: ImageFormat
    width: int
    height: int
    size: int
    quality: int
    original_size: Optional[int] = None
    within_budget: bool = True

    @property
    def compression_ratio(self) -> Optional[float]:
        """Output size as a percentage of the original size."""
        if not self.original_size:
            return None
        return self.size / self.original_size * 100


class ContentKey(BaseModel):
    """Content digest plus the extension of the encoded format."""

    model_config = ConfigDict(frozen=True)

    digest: str
    extension: str = ""

    @property
    def file_name(self) -> str:
        return f"{self.digest}{self.extension}"


class ImageUrls(BaseModel):
    """The three addressable forms of one stored object."""

    cdn_url: str
    direct_url: str
    raw_url: str


class StoredObject(BaseModel):
    """A content key materialized at a storage path."""

    key: ContentKey
    path: str
    existed: bool = False
    urls: ImageUrls


class VariantResult(BaseModel):
    """Outcome of one successfully published variant."""

    name: str
    source: str
    stored: StoredObject
    transcode: TranscodeResult


class VariantError(BaseModel):
    """Itemized failure for one variant."""

    name: str
    source: str
    step: str
    error_type: str
    message: str
    reason: Optional[str] = None


class PipelineResult(BaseModel):
    """Aggregated output of one pipeline run."""

    source: str
    results: Dict[str, VariantResult] = Field(default_factory=dict)
    errors: List[VariantError] = Field(default_factory=list)
    processing_time: float = 0.0

    @property
    def status(self) -> str:
        if not self.errors:
            return "success"
        if self.results:
            return "partial_failure"
        return "failed"

    @property
    def is_partial_failure(self) -> bool:
        return self.status == "partial_failure"

    def summary(self) -> Dict[str, object]:
        """JSON-friendly view without the encoded bytes."""
        return {
            "source": self.source,
            "status": self.status,
            "results": {
                name: {
                    "path": result.stored.path,
                    "existed": result.stored.existed,
                    "cdn_url": result.stored.urls.cdn_url,
                    "direct_url": result.stored.urls.direct_url,
                    "raw_url": result.stored.urls.raw_url,
                    "format": result.transcode.format.value,
                    "width": result.transcode.width,
                    "height": result.transcode.height,
                    "size": result.transcode.size,
                    "original_size": result.transcode.original_size,
                }
                for name, result in self.results.items()
            },
            "errors": [error.model_dump() for error in self.errors],
            "processing_time": self.processing_time,
        }
