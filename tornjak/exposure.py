"""
Time-bounded exposure of secrets on the clipboard.

Every exposure gets a generation number from a monotonic counter. A scheduled
revocation only clears the clipboard if its generation is still the newest
one, so an old timer can never wipe a secret copied after it was started.
"""

import os
import sys
import time
import logging
import platform
import threading
import subprocess
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import Callable, List, Optional

from . import config
from .clipboard import ClipboardSink
from .exceptions import ClipboardError, StorageIOError
from .utils import ensure_private_dir, file_lock, set_owner_only

logger = logging.getLogger(__name__)

Revoke = Callable[[int], bool]


class GenerationCounter:
    """In-process monotonic exposure counter."""

    def __init__(self):
        self._value = 0
        self._lock = threading.RLock()

    def locked(self):
        """Hold the counter so a check or bump and the clipboard change happen together."""
        return self._lock

    def advance(self) -> int:
        with self._lock:
            self._value += 1
            return self._value

    def current(self) -> int:
        with self._lock:
            return self._value


class FileGenerationCounter:
    """Exposure counter persisted in a file so separate processes share it."""

    def __init__(self, path: str):
        self.path = path
        self._held = False

    @property
    def lock_path(self) -> str:
        return self.path + config.LOCK_FILE_SUFFIX

    def _read(self) -> int:
        try:
            with open(self.path, "r", encoding="ascii") as f:
                return int(f.read().strip() or 0)
        except FileNotFoundError:
            return 0
        except ValueError:
            logger.warning(f"Exposure state {self.path} is unreadable, starting over")
            return 0

    @contextmanager
    def locked(self):
        """
        Hold the exclusive state lock for the duration of the block.

        Other processes cannot bump or check the generation meanwhile. Nested
        calls on the same counter reuse the lock already held.
        """
        if self._held:
            yield
            return
        ensure_private_dir(os.path.dirname(self.path))
        with file_lock(self.lock_path):
            self._held = True
            try:
                yield
            finally:
                self._held = False

    def advance(self) -> int:
        with self.locked():
            value = self._read() + 1
            try:
                with open(self.path, "w", encoding="ascii") as f:
                    f.write(str(value))
                set_owner_only(self.path)
            except OSError as e:
                raise StorageIOError(f"Failed to update exposure state {self.path}: {e}") from e
            return value

    def current(self) -> int:
        if self._held:
            return self._read()
        if not os.path.exists(self.path):
            return 0
        with file_lock(self.lock_path, exclusive=False):
            return self._read()


class ThreadScheduler:
    """Runs the revocation on a threading.Timer inside this process."""

    def __init__(self, daemon: bool = False):
        self.daemon = daemon

    def schedule(self, delay: float, token: int, revoke: Revoke):
        timer = threading.Timer(delay, revoke, args=(token,))
        timer.daemon = self.daemon
        timer.start()
        return timer


class _SpawnedRevoker:
    def __init__(self, process: subprocess.Popen):
        self.process = process

    def cancel(self) -> None:
        if self.process.poll() is None:
            self.process.terminate()


class DetachedScheduler:
    """
    Hands the revocation to a background ``python -m tornjak.revoke`` process.

    The child compares its generation against the shared state file when it
    wakes up, so it must be paired with a FileGenerationCounter.
    """

    def __init__(self, state_path: str, clipboard_backend: str = "command",
                 python: Optional[str] = None):
        self.state_path = state_path
        self.clipboard_backend = clipboard_backend
        self.python = python or sys.executable

    def command(self, delay: float, token: int) -> List[str]:
        return [
            self.python, "-m", "tornjak.revoke",
            "--state", self.state_path,
            "--generation", str(token),
            "--delay", str(delay),
            "--clipboard", self.clipboard_backend,
        ]

    def schedule(self, delay: float, token: int, revoke: Revoke):
        kwargs = {}
        if platform.system() == "Windows":
            kwargs["creationflags"] = subprocess.DETACHED_PROCESS | subprocess.CREATE_NEW_PROCESS_GROUP
        else:
            kwargs["start_new_session"] = True
        try:
            process = subprocess.Popen(
                self.command(delay, token),
                stdin=subprocess.DEVNULL, stdout=subprocess.DEVNULL, stderr=subprocess.DEVNULL,
                close_fds=True, **kwargs,
            )
        except OSError as e:
            raise ClipboardError(f"Failed to schedule clipboard clearing: {e}") from e
        logger.debug(f"Spawned revoker pid={process.pid} for generation {token}")
        return _SpawnedRevoker(process)


class _QtTimerHandle:
    def __init__(self, timer):
        self.timer = timer

    def cancel(self) -> None:
        self.timer.stop()


class QtScheduler:
    """Runs the revocation from a QTimer on the Qt event loop."""

    def schedule(self, delay: float, token: int, revoke: Revoke):
        from PyQt5.QtCore import QTimer

        timer = QTimer()
        timer.setSingleShot(True)
        timer.timeout.connect(lambda: revoke(token))
        timer.start(int(delay * 1000))
        return _QtTimerHandle(timer)


@dataclass
class ExposureHandle:
    """A secret currently on the clipboard and when it will be cleared."""
    service: str
    generation: int
    ttl: float
    expires_at: float
    _manager: "ExposureManager" = field(repr=False, compare=False)

    def remaining(self) -> float:
        return max(0.0, self.expires_at - time.time())

    def revoke_now(self) -> bool:
        """Clear the clipboard immediately if this exposure is still current."""
        return self._manager.revoke(self.generation)


class ExposureManager:
    """Puts secrets on a sink and takes them off again after a TTL."""

    def __init__(self, sink: ClipboardSink, counter=None, scheduler=None):
        self.sink = sink
        self.counter = counter or GenerationCounter()
        self.scheduler = scheduler or ThreadScheduler()
        self._pending = None
        self._lock = threading.RLock()

    def expose(self, secret: str, ttl: float, service: str = "") -> ExposureHandle:
        """
        Copy secret to the sink and schedule its removal.

        The previous in-process revocation, if any, is cancelled; a revocation
        living elsewhere is defused by the generation bump. If the removal
        cannot be scheduled the sink is cleared again before the error propagates.
        """
        with self._lock, self.counter.locked():
            if self._pending is not None:
                self._pending.cancel()
                self._pending = None
            token = self.counter.advance()
            self.sink.set_text(secret)
            try:
                self._pending = self.scheduler.schedule(ttl, token, self._revoke_scheduled)
            except Exception:
                logger.error(f"Could not schedule clipboard clearing for {service or 'service'}, clearing now")
                self.sink.clear()
                raise
        logger.info(f"Exposed secret for {service or 'service'} on {self.sink.name}, generation {token}, clearing in {ttl}s")
        return ExposureHandle(service, token, ttl, time.time() + ttl, self)

    def revoke(self, token: int) -> bool:
        """
        Clear the sink if token is still the newest exposure.

        The generation check and the clear run under the counter's lock, so a
        newer exposure from another process cannot slip in between.

        Returns:
            True if the sink was cleared, False for a stale token
        """
        with self._lock, self.counter.locked():
            current = self.counter.current()
            if current != token:
                logger.info(f"Skipping stale clipboard clear (generation {token}, current {current})")
                return False
            self.sink.clear()
            if self._pending is not None:
                self._pending.cancel()
                self._pending = None
        logger.info(f"Clipboard cleared (generation {token})")
        return True

    def _revoke_scheduled(self, token: int) -> bool:
        try:
            return self.revoke(token)
        except ClipboardError as e:
            logger.error(f"Failed to clear clipboard: {e}")
            return False
