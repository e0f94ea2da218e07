"""
Clipboard sinks used to expose a secret for a limited time.
"""

import os
import shutil
import logging
import subprocess
from typing import List, Optional, Sequence, Tuple

from . import config
from .exceptions import ClipboardError, DependencyMissingError

logger = logging.getLogger(__name__)


class ClipboardSink:
    """Something that can hold one text value and be emptied again."""

    name = "abstract"

    def set_text(self, text: str) -> None:
        raise NotImplementedError

    def clear(self) -> None:
        raise NotImplementedError


class CommandClipboard(ClipboardSink):
    """Clipboard driven through a platform tool (wl-copy, xclip, xsel, pbcopy, clip)."""

    def __init__(self, command: Sequence[str], timeout: int = config.CLIPBOARD_COMMAND_TIMEOUT_SECONDS):
        self.command = list(command)
        self.timeout = timeout
        self.name = os.path.basename(self.command[0])

    @classmethod
    def detect(cls, candidates: Optional[List[Tuple[str, List[str]]]] = None) -> "CommandClipboard":
        """
        Pick the first clipboard tool found on PATH.

        Raises:
            DependencyMissingError: If none of the candidates is installed
        """
        for executable, args in candidates or config.CLIPBOARD_COMMANDS:
            path = shutil.which(executable)
            if path:
                logger.debug(f"Using clipboard tool {path}")
                return cls([path] + list(args))
        raise DependencyMissingError(
            "Clipboard tool not found. Please install wl-clipboard, xclip or xsel (Linux) or use macOS"
        )

    def _write(self, data: bytes) -> None:
        # xclip and friends fork a child that keeps serving the selection; it
        # inherits any pipe we hand it, so stdout/stderr must not be captured.
        try:
            result = subprocess.run(
                self.command, input=data, stdout=subprocess.DEVNULL,
                stderr=subprocess.DEVNULL, timeout=self.timeout,
            )
        except FileNotFoundError:
            raise DependencyMissingError(f"Clipboard tool {self.command[0]} disappeared") from None
        except subprocess.TimeoutExpired:
            raise ClipboardError(f"{self.name} did not respond within {self.timeout} seconds") from None
        if result.returncode != 0:
            raise ClipboardError(f"Failed to copy to clipboard ({self.name} exited with {result.returncode})")

    def set_text(self, text: str) -> None:
        self._write(text.encode("utf-8"))

    def clear(self) -> None:
        self._write(b"")


class QtClipboard(ClipboardSink):
    """
    Clipboard of a running Qt application.

    The selection only lives as long as the QApplication that owns it.
    """

    name = "qt"

    def __init__(self, app=None):
        try:
            from PyQt5.QtWidgets import QApplication
        except ImportError:
            raise DependencyMissingError("PyQt5 is not installed; cannot use the qt clipboard") from None
        self.app = app or QApplication.instance() or QApplication([config.APP_NAME])

    def set_text(self, text: str) -> None:
        clipboard = self.app.clipboard()
        if clipboard is None:
            raise ClipboardError("Qt clipboard is not available")
        clipboard.setText(text)

    def clear(self) -> None:
        clipboard = self.app.clipboard()
        if clipboard is None:
            raise ClipboardError("Qt clipboard is not available")
        clipboard.clear()

    def text(self) -> str:
        return self.app.clipboard().text()


def get_clipboard(backend: str = "auto") -> ClipboardSink:
    """
    Return the sink for backend ("auto", "command" or "qt").

    "auto" prefers a command line tool, since its selection outlives this
    process, and falls back to Qt.
    """
    if backend == "command":
        return CommandClipboard.detect()
    if backend == "qt":
        return QtClipboard()
    try:
        return CommandClipboard.detect()
    except DependencyMissingError:
        logger.debug("No clipboard tool on PATH, trying Qt")
        try:
            return QtClipboard()
        except DependencyMissingError:
            raise DependencyMissingError(
                "Clipboard tool not found. Please install wl-clipboard, xclip or xsel (Linux), "
                "use macOS, or install PyQt5"
            ) from None
