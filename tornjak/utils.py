import platform
import os
import stat
import time
import logging
from contextlib import contextmanager
from typing import Optional

from . import config
from .exceptions import StoreLockedError, StorageIOError

logger = logging.getLogger(__name__)

if platform.system() == "Windows":
    import msvcrt
    try:
        import win32security
        import win32api
        import win32con
        import win32file
        WINDOWS_SECURITY_AVAILABLE = True
    except ImportError:
        logger.warning("pywin32 not fully installed, cannot set Windows file permissions securely.")
        WINDOWS_SECURITY_AVAILABLE = False
else:
    import fcntl
    WINDOWS_SECURITY_AVAILABLE = False


def wipe(buffer: Optional[bytearray]) -> None:
    """Zero a mutable buffer in place. Immutable objects are left alone."""
    if isinstance(buffer, bytearray):
        for i in range(len(buffer)):
            buffer[i] = 0


def _set_windows_file_permissions(filepath: str) -> bool:
    """
    Sets restrictive permissions on a file for Windows, granting full control
    only to the current user/owner and removing access for others.
    """
    if not WINDOWS_SECURITY_AVAILABLE:
        logger.warning(f"Skipping Windows file permission setting for {filepath}: pywin32 not available.")
        return False

    try:
        current_user_name = win32api.GetUserName()
        current_user_sid, _, _ = win32security.LookupAccountName(None, current_user_name)

        dacl = win32security.ACL()
        dacl.AddAccessAllowedAce(
            win32security.ACL_REVISION,
            win32con.GENERIC_READ | win32con.GENERIC_WRITE,
            current_user_sid
        )

        file_handle = win32file.CreateFile(
            filepath,
            win32con.WRITE_DAC,
            win32file.FILE_SHARE_READ | win32file.FILE_SHARE_WRITE | win32file.FILE_SHARE_DELETE,
            None,
            win32con.OPEN_EXISTING,
            win32con.FILE_ATTRIBUTE_NORMAL,
            None
        )
        try:
            win32security.SetSecurityInfo(
                file_handle,
                win32security.SE_FILE_OBJECT,
                win32security.DACL_SECURITY_INFORMATION | win32security.PROTECTED_DACL_SECURITY_INFORMATION,
                None,
                None,
                dacl,
                None
            )
        finally:
            win32file.CloseHandle(file_handle)
    except win32api.error as e:
        if e.winerror == 5:  # Access is denied
            logger.warning(f"Could not harden permissions for {filepath}: access is denied.")
            return True
        logger.error(f"Failed to set Windows file permissions for {filepath}: {e}")
        return False
    return True


def set_owner_only(filepath: str) -> bool:
    """Set file to be readable/writable by owner only."""
    if platform.system() == "Windows":
        return _set_windows_file_permissions(filepath)
    os.chmod(filepath, stat.S_IRUSR | stat.S_IWUSR)  # 600
    return True


def ensure_private_dir(path: str) -> None:
    """Create a directory (and parents) readable by the owner only."""
    if not os.path.isdir(path):
        os.makedirs(path, mode=0o700, exist_ok=True)
        logger.debug(f"Created directory {path}")


def fsync_directory(path: str) -> None:
    """Flush a directory entry so a rename inside it survives a crash. No-op on Windows."""
    if platform.system() == "Windows":
        return
    fd = os.open(path, os.O_RDONLY)
    try:
        os.fsync(fd)
    finally:
        os.close(fd)


def _try_lock(fd: int, exclusive: bool) -> bool:
    if platform.system() == "Windows":
        # msvcrt has no shared locks; every lock is exclusive.
        try:
            msvcrt.locking(fd, msvcrt.LK_NBLCK, 1)
            return True
        except OSError:
            return False
    flags = (fcntl.LOCK_EX if exclusive else fcntl.LOCK_SH) | fcntl.LOCK_NB
    try:
        fcntl.flock(fd, flags)
        return True
    except BlockingIOError:
        return False


def _unlock(fd: int) -> None:
    if platform.system() == "Windows":
        os.lseek(fd, 0, os.SEEK_SET)
        msvcrt.locking(fd, msvcrt.LK_UNLCK, 1)
    else:
        fcntl.flock(fd, fcntl.LOCK_UN)


@contextmanager
def file_lock(lock_path: str, exclusive: bool = True, timeout: float = config.LOCK_TIMEOUT_SECONDS):
    """
    Hold an advisory lock on lock_path for the duration of the block.

    Args:
        lock_path: Path of the lock file; created if missing, never deleted
        exclusive: Exclusive (writer) lock if True, shared (reader) lock otherwise
        timeout: Seconds to keep retrying before giving up

    Raises:
        StoreLockedError: If the lock could not be acquired within timeout
        StorageIOError: If the lock file cannot be opened
    """
    try:
        fd = os.open(lock_path, os.O_RDWR | os.O_CREAT, 0o600)
    except OSError as e:
        raise StorageIOError(f"Cannot open lock file {lock_path}: {e.strerror}") from e

    try:
        deadline = time.monotonic() + timeout
        while not _try_lock(fd, exclusive):
            if time.monotonic() >= deadline:
                raise StoreLockedError(
                    f"Store is locked by another process ({lock_path}); try again later"
                )
            time.sleep(config.LOCK_POLL_INTERVAL_SECONDS)
        logger.debug(f"Acquired {'exclusive' if exclusive else 'shared'} lock {lock_path}")
        try:
            yield
        finally:
            _unlock(fd)
            logger.debug(f"Released lock {lock_path}")
    finally:
        os.close(fd)
