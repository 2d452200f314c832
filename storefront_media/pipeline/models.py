"""
Pipeline data model.

Every object here lives only for the duration of a single request; the
public URL in UploadResult is the one value handed back to the caller.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import List, Optional


class ImageFormat(str, Enum):
    """Formats accepted from the decoder."""
    JPEG = "jpeg"
    PNG = "png"
    WEBP = "webp"
    GIF = "gif"


class OutputFormat(str, Enum):
    """The only containers that reach storage."""
    JPEG = "jpeg"
    PNG = "png"
    WEBP = "webp"

    @property
    def content_type(self) -> str:
        return f"image/{self.value}"

    @property
    def extension(self) -> str:
        return ".jpg" if self is OutputFormat.JPEG else f".{self.value}"


@dataclass
class IngestionRequest:
    source_url: str
    product_id: Optional[str] = None
    is_main_image: bool = False


@dataclass
class FetchedImage:
    data: bytes
    declared_content_type: str

    @property
    def byte_length(self) -> int:
        return len(self.data)


@dataclass
class VerifiedImage(FetchedImage):
    width: int = 0
    height: int = 0
    resolved_format: ImageFormat = ImageFormat.JPEG


@dataclass
class TranscodedImage:
    data: bytes
    output_format: OutputFormat
    width: int
    height: int

    @property
    def byte_length(self) -> int:
        return len(self.data)

    @property
    def content_type(self) -> str:
        return self.output_format.content_type


@dataclass
class UploadResult:
    public_url: str
    folder: Optional[str] = None


@dataclass
class DeletionOutcome:
    source_url: str
    deleted: bool
    error: Optional[str] = None


@dataclass
class BatchDeletionReport:
    attempted: int = 0
    deleted_count: int = 0
    errors: List[str] = field(default_factory=list)
    outcomes: List[DeletionOutcome] = field(default_factory=list)

    @classmethod
    def from_outcomes(cls, outcomes: List[DeletionOutcome]) -> "BatchDeletionReport":
        return cls(
            attempted=len(outcomes),
            deleted_count=sum(1 for o in outcomes if o.deleted),
            errors=[o.error or f"Failed to delete image: {o.source_url}" for o in outcomes if not o.deleted],
            outcomes=list(outcomes),
        )
