"""
Clipboard access through the running Qt application.
"""

import logging

logger = logging.getLogger(__name__)


def set_clipboard_text(text: str) -> bool:
    """
    Put text on the system clipboard.

    Needs a running QGuiApplication (or QApplication).

    Returns:
        True if the clipboard was updated
    """
    from PyQt6.QtGui import QGuiApplication

    if QGuiApplication.instance() is None:
        logger.warning("No Qt application running, cannot copy to clipboard")
        return False

    clipboard = QGuiApplication.clipboard()
    if clipboard is None:
        logger.warning("Clipboard not available")
        return False

    clipboard.setText(text)
    logger.debug("Copied %s to clipboard", text)
    return True
