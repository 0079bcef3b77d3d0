"""
SurfaceStore

Saves and loads screenshot surfaces (a raster image plus an editable layer of
annotation elements) in a container format that generic image viewers still
open as a plain picture.
"""

from pathlib import Path

__version__ = "1.0.0"
__author__ = "SurfaceStore Team"
__description__ = "Screenshot surface container format and output pipeline"

# Application metadata
APP_NAME = "SurfaceStore"
APP_VERSION = __version__
APP_AUTHOR = __author__
APP_DESCRIPTION = __description__

# Written into codec metadata and used as the container marker prefix
SOFTWARE_NAME = "Greenshot"


def get_version_tuple() -> tuple:
    """
    Get the (major, minor) pair of the application version.

    Returns:
        Tuple of two ints
    """
    parts = APP_VERSION.split(".")
    major = int(parts[0]) if parts and parts[0].isdigit() else 0
    minor = int(parts[1]) if len(parts) > 1 and parts[1].isdigit() else 0
    return major, minor


def get_app_data_dir() -> str:
    """
    Get the application data directory for storing configuration and logs.

    On Windows, this uses %APPDATA%\\SurfaceStore
    On other platforms, this uses the user's home directory .config/SurfaceStore

    Returns:
        Path to the application data directory as a string
    """
    import os

    if os.name == 'nt':  # Windows
        appdata = os.getenv('APPDATA')
        if appdata:
            return str(Path(appdata) / APP_NAME)
        else:
            return str(Path.home() / f".{APP_NAME.lower()}")
    else:
        xdg_config = os.getenv('XDG_CONFIG_HOME')
        if xdg_config:
            return str(Path(xdg_config) / APP_NAME)
        else:
            return str(Path.home() / ".config" / APP_NAME)


# Configuration constants
DEFAULT_LOG_LEVEL = "INFO"
DEFAULT_SETTINGS_FILE = str(Path(get_app_data_dir()) / "settings.json")
DEFAULT_FILENAME_PATTERN = "greenshot ${capturetime}"
DEFAULT_TMP_FILE_TTL_SECONDS = 10 * 60 * 60
