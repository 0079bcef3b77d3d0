"""
Native container reader and writer.

A native container is a standard PNG followed by the annotation elements
and a trailer:

    [image bytes][elements blob][blob length, int64 LE][tag, e.g. "Greenshot01.00"]

No header announces the blob size, so reading works backwards from the end
of the stream: the tag identifies the file, the 8 bytes before it give the
blob length, and the blob sits directly before the length.
"""

import io
import logging
import struct
from typing import BinaryIO, Optional

from PIL import Image, UnidentifiedImageError, features

from .. import SOFTWARE_NAME
from .encode_pipeline import EncodePipeline
from .surface import Surface
from .surface_models import (
    OutputFormat, SurfaceOutputSettings, ContainerTrailer, PreparedImage,
    TRAILER_LENGTH_FORMAT, TRAILER_LENGTH_SIZE, TRAILER_TAG_SIZE, TRAILER_SIZE,
    make_trailer_tag, NotRecognizedContainerError, ContainerCorruptedError,
    ContainerIOError, CodecUnavailableError
)

logger = logging.getLogger(__name__)


def ensure_codec(output_format: OutputFormat) -> None:
    """
    Make sure Pillow can encode a format.

    Raises:
        CodecUnavailableError: If no encoder is registered
    """
    Image.init()
    if output_format.pil_format not in Image.SAVE:
        raise CodecUnavailableError(f"No {output_format.pil_format} encoder found")
    if output_format is OutputFormat.JPG and not features.check_codec("jpg"):
        raise CodecUnavailableError("No JPG encoder found, this should not happen.")


def needs_buffering(stream: BinaryIO, output_format: OutputFormat) -> bool:
    """Whether PNG output to this stream has to go through a memory buffer."""
    if output_format not in (OutputFormat.PNG, OutputFormat.GREENSHOT):
        return False
    seekable = getattr(stream, "seekable", None)
    return not (callable(seekable) and seekable())


def encode_image(prepared: PreparedImage, stream: BinaryIO) -> None:
    """Write the prepared image to a stream with Pillow."""
    ensure_codec(prepared.format)
    logger.debug("Saving image to stream with format %s and mode %s",
                 prepared.format.pil_format, prepared.image.mode)
    prepared.image.save(stream, format=prepared.format.pil_format, **prepared.save_params)


def write_elements(surface: Surface, stream: BinaryIO,
                   tag: Optional[str] = None) -> ContainerTrailer:
    """
    Append the elements blob and the trailer to a stream.

    The blob, its length and the tag are assembled in one buffer which is
    then written in a single call, so the trailer always ends the stream.

    Returns:
        The trailer that was written
    """
    with io.BytesIO() as buffer:
        bytes_written = surface.save_elements_to_stream(buffer)
        blob_length = buffer.tell()
        if bytes_written != blob_length:
            logger.warning("Elements writer reported %s bytes but wrote %s", bytes_written, blob_length)
        trailer = ContainerTrailer(blob_length=blob_length, tag=tag or make_trailer_tag())
        buffer.write(trailer.to_bytes())
        stream.write(buffer.getvalue())
    return trailer


def read_trailer(stream: BinaryIO) -> ContainerTrailer:
    """
    Read the trailer from the end of a seekable stream.

    Raises:
        NotRecognizedContainerError: If the stream does not end with a marker
        ContainerCorruptedError: If the stored length points outside the stream
    """
    size = stream.seek(0, io.SEEK_END)
    if size < TRAILER_TAG_SIZE:
        raise NotRecognizedContainerError(f"Stream of {size} bytes is too short for a container")

    stream.seek(-TRAILER_TAG_SIZE, io.SEEK_END)
    tag = stream.read(TRAILER_TAG_SIZE).decode("ascii", errors="replace")
    if not tag.startswith(SOFTWARE_NAME):
        raise NotRecognizedContainerError("Stream has no container marker")

    if size < TRAILER_SIZE:
        raise ContainerCorruptedError("Container marker found but the elements length is missing")

    stream.seek(-TRAILER_SIZE, io.SEEK_END)
    raw_length = stream.read(TRAILER_LENGTH_SIZE)
    if len(raw_length) != TRAILER_LENGTH_SIZE:
        raise ContainerCorruptedError("Could not read the elements length")
    (blob_length,) = struct.unpack(TRAILER_LENGTH_FORMAT, raw_length)

    if blob_length < 0 or blob_length + TRAILER_SIZE > size:
        raise ContainerCorruptedError(
            f"Elements length {blob_length} does not fit in a stream of {size} bytes"
        )
    return ContainerTrailer(blob_length=blob_length, tag=tag)


def read_elements_blob(stream: BinaryIO, trailer: ContainerTrailer) -> bytes:
    """Read the elements blob located by a trailer."""
    stream.seek(-trailer.blob_offset_from_end, io.SEEK_END)
    blob = stream.read(trailer.blob_length)
    if len(blob) != trailer.blob_length:
        raise ContainerCorruptedError(
            f"Expected {trailer.blob_length} bytes of elements, got {len(blob)}"
        )
    return blob


def load_container(stream: BinaryIO, surface: Optional[Surface] = None) -> Surface:
    """
    Load a surface from a native container stream.

    Args:
        stream: Seekable binary stream positioned anywhere
        surface: Surface to populate, a new one if None

    Returns:
        The populated surface
    """
    surface = surface if surface is not None else Surface()

    try:
        stream.seek(0)
        # Copy so the image no longer depends on the stream
        with Image.open(stream) as tmp_image:
            tmp_image.load()
            logger.debug("Loaded image with size %sx%s and mode %s",
                         tmp_image.width, tmp_image.height, tmp_image.mode)
            image = tmp_image.copy()
    except (UnidentifiedImageError, OSError) as e:
        raise ContainerIOError(f"Could not decode image: {e}") from e

    try:
        trailer = read_trailer(stream)
        logger.info("Container format: %s", trailer.tag)
        blob = read_elements_blob(stream, trailer)
        try:
            surface.load_elements_from_stream(io.BytesIO(blob))
        except ValueError as e:
            raise ContainerCorruptedError(f"Could not decode elements: {e}") from e
    except OSError as e:
        image.close()
        raise ContainerIOError(f"Could not read container trailer: {e}") from e
    except BaseException:
        image.close()
        raise

    surface.image = image
    return surface


class ContainerWriter:
    """Writes surfaces to streams, appending elements for the native format."""

    def __init__(self, pipeline: Optional[EncodePipeline] = None):
        self.pipeline = pipeline or EncodePipeline()

    def write(self, surface: Surface, settings: SurfaceOutputSettings, stream: BinaryIO) -> None:
        """
        Encode a surface and write it to a stream.

        Args:
            surface: Surface to write
            settings: Output settings
            stream: Destination stream
        """
        use_memory_stream = needs_buffering(stream, settings.format)
        if use_memory_stream:
            logger.warning("Using a memory stream to save to a non-seekable stream")

        prepared = self.pipeline.prepare(surface, settings)
        memory_stream = None
        try:
            target = stream
            if use_memory_stream:
                memory_stream = io.BytesIO()
                target = memory_stream

            encode_image(prepared, target)

            if memory_stream is not None:
                stream.write(memory_stream.getvalue())

            if settings.format is OutputFormat.GREENSHOT:
                trailer = write_elements(surface, stream)
                logger.debug("Wrote %d bytes of elements with marker %s",
                             trailer.blob_length, trailer.tag)
        finally:
            if memory_stream is not None:
                memory_stream.close()
            prepared.release()
