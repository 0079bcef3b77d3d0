"""
Filename helpers for save operations.
"""

import getpass
import logging
import os
import re
import socket
import uuid
from datetime import datetime
from typing import Optional

from ..models.surface_models import OutputFormat, CaptureDetails

logger = logging.getLogger(__name__)

_INVALID_FILENAME_CHARS = re.compile(r'[<>:"/\\|?*\x00-\x1f]')
_NON_WORD_CHARS = re.compile(r'[^\d\w\.]')


def make_filename_safe(filename: str) -> str:
    """Replace characters that are not allowed in file names."""
    return _INVALID_FILENAME_CHARS.sub("_", filename).strip()


def make_fq_filename_safe(full_path: str) -> str:
    """
    Make the file name part of a path safe and return the absolute path.

    Args:
        full_path: Path as entered by the user or built from a pattern

    Returns:
        Absolute path
    """
    directory, filename = os.path.split(os.path.expanduser(full_path))
    return os.path.abspath(os.path.join(directory, make_filename_safe(filename)))


def clean_tmp_filename(filename: str) -> str:
    """
    Reduce a file name to word characters and dots.

    Other characters are replaced by '_' and runs of '_' are collapsed.
    """
    filename = _NON_WORD_CHARS.sub("_", filename)
    return re.sub(r'_+', "_", filename)


def random_filename(output_format: OutputFormat) -> str:
    """Random file name with the format's extension."""
    return f"{uuid.uuid4().hex[:12]}.{output_format.extension}"


def get_filename_from_pattern(pattern: str, output_format: OutputFormat,
                              capture_details: Optional[CaptureDetails] = None) -> str:
    """
    Build a file name from a pattern.

    Supported placeholders: ${capturetime}, ${title}, ${user}, ${hostname}.
    strftime directives are expanded against the capture time.

    Args:
        pattern: Filename pattern
        output_format: Format providing the extension
        capture_details: Details of the capture, None uses the current time

    Returns:
        File name with extension
    """
    details = capture_details or CaptureDetails()
    capture_time = details.date_time or datetime.now()

    try:
        user = getpass.getuser()
    except (KeyError, OSError):
        user = "user"

    replacements = {
        "${capturetime}": capture_time.strftime("%Y-%m-%d %H_%M_%S"),
        "${title}": details.title or "",
        "${user}": user,
        "${hostname}": socket.gethostname(),
    }
    name = pattern
    for placeholder, value in replacements.items():
        name = name.replace(placeholder, value)

    if "%" in name:
        try:
            name = capture_time.strftime(name)
        except ValueError as e:
            logger.warning("Invalid filename pattern %r, using it unexpanded: %s", pattern, e)

    name = make_filename_safe(name) or "capture"
    return f"{name}.{output_format.extension}"
