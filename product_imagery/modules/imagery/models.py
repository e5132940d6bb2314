"""
Imagery Domain Models

Request-scoped value objects shared by the transform gateway, the
background-removal providers, the batch pipeline and the result store:
- UploadedImage: an image received in a multipart request
- ProcessedImage / ProcessedArtifact: transform output and its persisted form
- BackgroundRemovalJob: bookkeeping for one background-removal invocation
"""

import time
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import Optional, Dict, Any


class TransformKind(str, Enum):
    """Operations supported by the transform gateway."""
    RESIZE = "resize"
    ADJUST = "adjust"
    OPTIMIZE = "optimize"
    COMPOSITE_HERO = "composite-hero"
    COMPOSITE_LIFESTYLE = "composite-lifestyle"
    ISOMETRIC = "isometric"
    REMOVE_BACKGROUND = "remove-background"


class JobState(str, Enum):
    """Background-removal job states."""
    RUNNING = "running"
    SUCCEEDED = "succeeded"
    FAILED = "failed"


# Pillow format name -> (file extension, media type)
IMAGE_FORMATS: Dict[str, tuple] = {
    "png": ("png", "image/png"),
    "jpeg": ("jpg", "image/jpeg"),
    "webp": ("webp", "image/webp"),
    "avif": ("avif", "image/avif"),
    "gif": ("gif", "image/gif"),
    "tiff": ("tiff", "image/tiff"),
    "bmp": ("bmp", "image/bmp"),
}


@dataclass
class UploadedImage:
    """Raw upload owned by a single request."""
    content: bytes
    filename: str = "image"
    content_type: str = "application/octet-stream"

    @property
    def size(self) -> int:
        return len(self.content)

    @property
    def extension(self) -> str:
        return Path(self.filename).suffix.lower()


@dataclass
class ProcessedImage:
    """Output of a transform: encoded bytes plus their format."""
    content: bytes
    format: str = "png"

    @property
    def size(self) -> int:
        return len(self.content)

    @property
    def extension(self) -> str:
        return IMAGE_FORMATS.get(self.format, (self.format, None))[0]

    @property
    def media_type(self) -> str:
        return IMAGE_FORMATS.get(self.format, (None, "application/octet-stream"))[1]


@dataclass(frozen=True)
class ProcessedArtifact:
    """A processed image written once to the result store."""
    storage_key: str
    filename: str
    path: str
    size: int
    format: Optional[str] = None


@dataclass
class BackgroundRemovalJob:
    """
    Tracks one background-removal invocation.

    The input/output pair is only populated by the local CLI provider, whose
    intermediate files must be released on every exit path.
    """
    request_id: str
    provider: str
    started_at: datetime = field(default_factory=datetime.utcnow)
    input_path: Optional[Path] = None
    output_path: Optional[Path] = None
    state: JobState = JobState.RUNNING
    elapsed_ms: Optional[int] = None
    timings: Dict[str, int] = field(default_factory=dict)
    _started: float = field(default_factory=time.monotonic, repr=False)

    def mark_succeeded(self):
        self.state = JobState.SUCCEEDED
        self.elapsed_ms = self._elapsed()

    def mark_failed(self):
        self.state = JobState.FAILED
        self.elapsed_ms = self._elapsed()

    def _elapsed(self) -> int:
        return int((time.monotonic() - self._started) * 1000)


@dataclass
class RemovalResult:
    """Image with its background removed plus advisory provider metadata."""
    content: bytes
    provider: str
    metadata: Dict[str, Any] = field(default_factory=dict)
