"""
Surface Output for saving and loading surfaces.

This module implements the file-level operations on top of the container
writer and reader: saving to paths with overwrite protection, loading native
containers, save-as with a dialog and temporary files tracked by the
TempFileCache.
"""

import logging
import os
import tempfile
from typing import BinaryIO, Callable, Optional

from .. import DEFAULT_FILENAME_PATTERN
from ..utils import clipboard_helper
from ..utils.filename_helper import (
    make_fq_filename_safe, clean_tmp_filename, random_filename,
    get_filename_from_pattern
)
from ..views import save_dialog
from .container import ContainerWriter, load_container
from .encode_pipeline import EncodePipeline
from .settings_manager import SettingsManager
from .surface import Surface
from .surface_models import (
    OutputFormat, SurfaceOutputSettings, CaptureDetails,
    AlreadyExistsError, NotRecognizedContainerError,
    ContainerIOError, NoWriteAccessError
)
from .temp_file_cache import TempFileCache

logger = logging.getLogger(__name__)

_FORMAT_ALIASES = {
    "jpeg": OutputFormat.JPG,
    "tif": OutputFormat.TIFF,
}


def format_for_filename(full_path: str) -> OutputFormat:
    """
    Get the OutputFormat for a filename.

    Args:
        full_path: File name, can be a complete path

    Returns:
        Matching format, PNG when the extension is unknown
    """
    filename = os.path.basename(full_path)
    extension = filename.rsplit(".", 1)[-1].lower() if "." in filename else ""
    if extension in _FORMAT_ALIASES:
        return _FORMAT_ALIASES[extension]
    try:
        return OutputFormat(extension)
    except ValueError:
        logger.warning("Couldn't parse extension: %s", extension)
        return OutputFormat.PNG


class SurfaceOutput:
    """
    Saves surfaces to streams and files and loads native containers.

    One instance is created at startup and shared by every save call site,
    together with its TempFileCache.
    """

    def __init__(
        self,
        settings_manager: Optional[SettingsManager] = None,
        tmp_file_cache: Optional[TempFileCache] = None,
        choose_path: Optional[Callable[[str], Optional[str]]] = None,
        prompt_settings: Optional[Callable[[SurfaceOutputSettings], SurfaceOutputSettings]] = None,
        notify_error: Optional[Callable[[str], None]] = None,
        copy_to_clipboard: Optional[Callable[[str], bool]] = None
    ):
        """
        Initialize the SurfaceOutput.

        Args:
            settings_manager: Source of the output configuration
            tmp_file_cache: Registry for temporary files
            choose_path: Asks the user for a save path (default: Qt dialog)
            prompt_settings: Lets the user adjust output settings (default: Qt dialog)
            notify_error: Reports an error to the user (default: Qt message box)
            copy_to_clipboard: Puts a path on the clipboard
        """
        self.settings_manager = settings_manager if settings_manager is not None else SettingsManager()
        if tmp_file_cache is None:
            tmp_file_cache = TempFileCache(
                ttl_seconds=self.settings_manager.output.tmp_file_ttl_seconds
            )
        self.tmp_file_cache = tmp_file_cache
        self.choose_path = choose_path or save_dialog.prompt_save_path
        self.prompt_settings = prompt_settings or save_dialog.prompt_output_settings
        self.notify_error = notify_error or save_dialog.show_error
        self.copy_to_clipboard = copy_to_clipboard or clipboard_helper.set_clipboard_text

        # Expired temp files are deleted by the registry's background sweep
        self.tmp_file_cache.start()

    def shutdown(self) -> None:
        """Stop the temp file sweep."""
        self.tmp_file_cache.shutdown()
        logger.debug("SurfaceOutput shut down")

    def create_output_settings(self, output_format: Optional[OutputFormat] = None,
                               **overrides) -> SurfaceOutputSettings:
        """
        Create output settings from the configuration.

        Args:
            output_format: Format to use, the configured default if None
            **overrides: Other SurfaceOutputSettings fields

        Returns:
            SurfaceOutputSettings
        """
        config = self.settings_manager.output
        if output_format is None:
            output_format = OutputFormat(config.format)
        overrides.setdefault("jpeg_quality", config.jpeg_quality)
        return SurfaceOutputSettings(format=output_format, **overrides)

    def save_to_stream(self, surface: Surface, stream: BinaryIO,
                       settings: SurfaceOutputSettings) -> None:
        """
        Save a surface to a stream.

        Args:
            surface: Surface to save
            stream: Destination stream
            settings: Output settings
        """
        pipeline = EncodePipeline(auto_reduce_colors=self.settings_manager.output.auto_reduce_colors)
        ContainerWriter(pipeline).write(surface, settings, stream)

    def save(self, surface: Surface, full_path: str, allow_overwrite: bool,
             settings: SurfaceOutputSettings, copy_path_to_clipboard: bool = False) -> str:
        """
        Save a surface to a file.

        Args:
            surface: Surface to save
            full_path: Destination path, missing directories are created
            allow_overwrite: Whether an existing file may be replaced
            settings: Output settings
            copy_path_to_clipboard: Whether to copy the final path to the clipboard

        Returns:
            Absolute path of the written file

        Raises:
            AlreadyExistsError: If the file exists and overwriting is not allowed
            NoWriteAccessError: If the destination cannot be written
            ContainerIOError: On other write failures
        """
        full_path = make_fq_filename_safe(full_path)
        directory = os.path.dirname(full_path)

        try:
            os.makedirs(directory, exist_ok=True)
        except PermissionError as e:
            raise NoWriteAccessError(full_path) from e
        except OSError as e:
            raise ContainerIOError(f"Could not create directory {directory}: {e}") from e

        if not allow_overwrite and os.path.exists(full_path):
            raise AlreadyExistsError(full_path)

        logger.debug("Saving surface to %s", full_path)
        temp_path = None
        try:
            # Write next to the target and move into place so a failed
            # encode never leaves a partial file behind
            with tempfile.NamedTemporaryFile(
                dir=directory,
                prefix=f".{os.path.basename(full_path)}.",
                suffix=".tmp",
                delete=False
            ) as stream:
                temp_path = stream.name
                self.save_to_stream(surface, stream, settings)
            os.replace(temp_path, full_path)
            temp_path = None
        except PermissionError as e:
            raise NoWriteAccessError(full_path) from e
        except OSError as e:
            raise ContainerIOError(f"Could not write {full_path}: {e}") from e
        finally:
            if temp_path is not None:
                self._discard_partial_file(temp_path)

        if copy_path_to_clipboard:
            self.copy_to_clipboard(full_path)

        return full_path

    @staticmethod
    def _discard_partial_file(path: str) -> None:
        try:
            if os.path.exists(path):
                os.remove(path)
        except OSError as e:
            logger.warning("Could not remove partial file %s: %s", path, e)

    def load_surface(self, full_path: str, surface: Optional[Surface] = None) -> Surface:
        """
        Load a surface from a native container file.

        Args:
            full_path: Path of the file
            surface: Surface to populate, a new one if None

        Returns:
            The populated surface

        Raises:
            ContainerIOError: If the path is empty or the file cannot be read
            NotRecognizedContainerError: If the file is not a native container
        """
        if not full_path:
            raise ContainerIOError("No file name given")

        logger.info("Loading image from file %s", full_path)
        try:
            with open(full_path, "rb") as stream:
                surface = load_container(stream, surface)
        except NotRecognizedContainerError as e:
            raise NotRecognizedContainerError(f"{full_path} is not a Greenshot file!") from e
        except FileNotFoundError as e:
            raise ContainerIOError(f"File not found: {full_path}") from e
        except OSError as e:
            raise ContainerIOError(f"Could not read {full_path}: {e}") from e

        image = surface.image
        logger.info("Information about file %s: %sx%s-%s, %d elements", full_path,
                    image.width, image.height, image.mode, len(surface.elements))
        return surface

    def save_with_dialog(self, surface: Surface,
                         capture_details: Optional[CaptureDetails] = None) -> Optional[str]:
        """
        Save with a dialog asking for the destination.

        Returns:
            Path of the saved file, or None when cancelled or not writable
        """
        config = self.settings_manager.output
        suggested_name = get_filename_from_pattern(
            config.filename_pattern or DEFAULT_FILENAME_PATTERN,
            OutputFormat(config.format),
            capture_details
        )
        path = self.choose_path(os.path.join(config.file_path, suggested_name))
        if not path:
            return None

        settings = self.create_output_settings(format_for_filename(path))
        if config.prompt_quality:
            settings = self.prompt_settings(settings)

        try:
            # The dialog already asked about replacing existing files
            saved_path = self.save(surface, path, True, settings, config.copy_path_to_clipboard)
        except NoWriteAccessError as e:
            logger.error("Save with dialog failed: %s", e)
            self.notify_error(f"Cannot write to {path}, please choose another location.")
            return None

        self.settings_manager.update_setting('output.last_saved_path', saved_path)
        self.settings_manager.save_settings()
        return saved_path

    def save_named_tmp_file(self, surface: Surface, capture_details: Optional[CaptureDetails],
                            settings: SurfaceOutputSettings) -> Optional[str]:
        """
        Save to a temp file named after the configured filename pattern.

        When the temp directory is not writable the user is asked for
        another destination.

        Returns:
            Path to the image file, or None
        """
        pattern = self.settings_manager.output.filename_pattern
        if not pattern or not pattern.strip():
            pattern = DEFAULT_FILENAME_PATTERN

        filename = clean_tmp_filename(get_filename_from_pattern(pattern, settings.format, capture_details))
        tmp_file = os.path.join(tempfile.gettempdir(), filename)
        logger.debug("Creating TMP File: %s", tmp_file)

        try:
            tmp_file = self.save(surface, tmp_file, True, settings, False)
            self.tmp_file_cache.add(tmp_file)
        except Exception as e:
            logger.error("Could not create temp file %s: %s", tmp_file, e, exc_info=True)
            self.notify_error(str(e))
            return self.save_with_dialog(surface, capture_details)

        return tmp_file

    def save_to_tmp_file(self, surface: Surface, settings: SurfaceOutputSettings,
                         destination_path: Optional[str] = None) -> Optional[str]:
        """
        Save to a randomly named temp file.

        Args:
            surface: Surface to save
            settings: Output settings
            destination_path: Directory to use, the system temp dir if None

        Returns:
            Path to the image file, or None when saving failed
        """
        tmp_file = clean_tmp_filename(random_filename(settings.format))
        if destination_path is None:
            destination_path = tempfile.gettempdir()
        tmp_path = os.path.join(destination_path, tmp_file)
        logger.debug("Creating TMP File : %s", tmp_path)

        try:
            tmp_path = self.save(surface, tmp_path, True, settings, False)
            self.tmp_file_cache.add(tmp_path)
        except Exception as e:
            logger.warning("Could not create temp file %s: %s", tmp_path, e, exc_info=True)
            return None

        return tmp_path

    def remove_tmp_files(self) -> int:
        """
        Clean up all created temp files.

        Returns:
            Number of files deleted
        """
        return self.tmp_file_cache.remove_all()
