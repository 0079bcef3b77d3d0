"""
Data models for surface output.

This module contains the data structures shared by the encode pipeline,
the container reader/writer and the output facade: output formats and
settings, capture details, the container trailer and the error hierarchy.
"""

import struct
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Optional, Tuple, Any

from .. import SOFTWARE_NAME, get_version_tuple


class OutputFormat(Enum):
    """Output formats a surface can be written in."""
    BMP = "bmp"
    GIF = "gif"
    JPG = "jpg"
    TIFF = "tiff"
    GREENSHOT = "greenshot"
    PNG = "png"

    @property
    def pil_format(self) -> str:
        """Pillow codec name used to encode the base image."""
        return _PIL_FORMATS[self]

    @property
    def supports_alpha(self) -> bool:
        """Whether the codec keeps an alpha channel."""
        return self in (OutputFormat.PNG, OutputFormat.GREENSHOT)

    @property
    def extension(self) -> str:
        """File extension without the leading dot."""
        return self.value


_PIL_FORMATS = {
    OutputFormat.BMP: "BMP",
    OutputFormat.GIF: "GIF",
    OutputFormat.JPG: "JPEG",
    OutputFormat.TIFF: "TIFF",
    OutputFormat.GREENSHOT: "PNG",
    OutputFormat.PNG: "PNG",
}


@dataclass(frozen=True)
class SurfaceOutputSettings:
    """Per-call output configuration."""

    format: OutputFormat = OutputFormat.PNG
    jpeg_quality: int = 80
    reduce_colors: bool = False
    save_background_only: bool = False
    effects: Tuple[Any, ...] = ()

    def __post_init__(self):
        """Validate quality range and normalize the effects sequence."""
        if not 0 <= self.jpeg_quality <= 100:
            raise ValueError(f"JPEG quality must be between 0 and 100, got {self.jpeg_quality}")
        if not isinstance(self.effects, tuple):
            object.__setattr__(self, "effects", tuple(self.effects))


@dataclass
class CaptureDetails:
    """Information about the capture a surface came from."""

    title: str = ""
    date_time: datetime = field(default_factory=datetime.now)
    filename: Optional[str] = None


# 8-byte little-endian signed blob length
TRAILER_LENGTH_FORMAT = "<q"
TRAILER_LENGTH_SIZE = struct.calcsize(TRAILER_LENGTH_FORMAT)
TRAILER_TAG_SIZE = len(SOFTWARE_NAME) + 5  # "NN.NN"
TRAILER_SIZE = TRAILER_LENGTH_SIZE + TRAILER_TAG_SIZE


def make_trailer_tag(version: Optional[Tuple[int, int]] = None) -> str:
    """
    Build the fixed-width marker written at the very end of a container.

    Args:
        version: (major, minor) pair, defaults to the application version

    Returns:
        Marker such as "Greenshot01.00"
    """
    major, minor = version or get_version_tuple()
    if not (0 <= major <= 99 and 0 <= minor <= 99):
        raise ValueError(f"Version {major}.{minor} does not fit the trailer tag")
    return f"{SOFTWARE_NAME}{major:02d}.{minor:02d}"


@dataclass(frozen=True)
class ContainerTrailer:
    """Footer of a native container: blob length plus marker tag."""

    blob_length: int
    tag: str

    @property
    def blob_offset_from_end(self) -> int:
        """Distance between the blob start and the end of the stream."""
        return self.blob_length + TRAILER_SIZE

    @property
    def version(self) -> Optional[Tuple[int, int]]:
        """Version parsed from the tag, or None when it is not numeric."""
        suffix = self.tag[len(SOFTWARE_NAME):]
        major, _, minor = suffix.partition(".")
        if major.isdigit() and minor.isdigit():
            return int(major), int(minor)
        return None

    def to_bytes(self) -> bytes:
        """Encode the trailer as it appears on disk."""
        return struct.pack(TRAILER_LENGTH_FORMAT, self.blob_length) + self.tag.encode("ascii")

    def to_dict(self) -> dict:
        """Convert to dictionary for display."""
        return {
            'tag': self.tag,
            'blob_length': self.blob_length,
            'version': self.version,
        }


@dataclass
class PreparedImage:
    """Result of the encode pipeline, ready to be handed to the codec."""

    image: Any
    format: OutputFormat
    owned: bool = False
    save_params: dict = field(default_factory=dict)

    def release(self) -> None:
        """Close the image if the pipeline created it."""
        if self.owned and self.image is not None:
            self.image.close()
            self.image = None


class SurfaceOutputError(Exception):
    """Base exception for surface output operations."""
    pass


class NotRecognizedContainerError(SurfaceOutputError):
    """Raised when a file does not end with a container marker."""
    pass


class AlreadyExistsError(SurfaceOutputError):
    """Raised when saving to an existing path without overwrite permission."""

    def __init__(self, full_path: str):
        super().__init__(f"File '{full_path}' already exists.")
        self.full_path = full_path


class CodecUnavailableError(SurfaceOutputError):
    """Raised when no encoder is registered for the requested format."""
    pass


class TransformFailedError(SurfaceOutputError):
    """Raised when an effect or quantization step fails."""
    pass


class MetadataUnsupportedError(SurfaceOutputError):
    """Raised when a codec has no slot for the software-identity tag."""
    pass


class ContainerIOError(SurfaceOutputError):
    """Raised on read, write or seek failures."""
    pass


class ContainerCorruptedError(ContainerIOError):
    """Raised when a container trailer points outside of the file."""
    pass


class NoWriteAccessError(ContainerIOError):
    """Raised when the destination cannot be written."""

    def __init__(self, full_path: str, message: Optional[str] = None):
        super().__init__(message or f"No write access to '{full_path}'")
        self.full_path = full_path
