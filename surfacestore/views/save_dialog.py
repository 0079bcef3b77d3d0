"""
Save dialogs.

Thin PyQt6 prompts used by the output facade when the user has to pick a
destination or a JPEG quality. A QApplication must be running; Qt is only
imported when a prompt is shown.
"""

import logging
from dataclasses import replace
from typing import Optional

from ..models.surface_models import OutputFormat, SurfaceOutputSettings

logger = logging.getLogger(__name__)

FILE_FILTER = ";;".join([
    "PNG (*.png)",
    "Greenshot (*.greenshot)",
    "JPEG (*.jpg)",
    "Bitmap (*.bmp)",
    "GIF (*.gif)",
    "TIFF (*.tiff)",
])


def prompt_save_path(suggested_path: str) -> Optional[str]:
    """
    Ask the user where to save.

    Returns:
        Chosen path, or None when cancelled
    """
    from PyQt6.QtWidgets import QFileDialog

    path, _ = QFileDialog.getSaveFileName(None, "Save as", suggested_path, FILE_FILTER)
    if not path:
        logger.debug("Save dialog cancelled")
        return None
    return path


def prompt_output_settings(settings: SurfaceOutputSettings) -> SurfaceOutputSettings:
    """
    Ask for the JPEG quality when saving as JPEG.

    Returns:
        Settings with the chosen quality, unchanged when cancelled
    """
    if settings.format is not OutputFormat.JPG:
        return settings

    from PyQt6.QtWidgets import QInputDialog

    quality, accepted = QInputDialog.getInt(
        None, "JPEG quality", "Quality (0-100):", settings.jpeg_quality, 0, 100
    )
    if not accepted:
        return settings
    return replace(settings, jpeg_quality=quality)


def show_error(message: str) -> None:
    """Show an error message box."""
    from PyQt6.QtWidgets import QMessageBox

    QMessageBox.critical(None, "Error", message)
