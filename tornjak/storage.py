"""
Encrypted storage of credential records.

The store file is only ever replaced whole: every change decrypts the current
file, applies a mutation in memory, encrypts the result and renames a freshly
written temp file over the original.
"""

import os
import logging
import tempfile
from typing import Callable, List, Optional

from . import codec
from . import config
from .codec import CredentialRecord
from .crypto import CryptoGateway
from .exceptions import StorageIOError, StoreNotFoundError
from .utils import ensure_private_dir, file_lock, fsync_directory, set_owner_only, wipe

logger = logging.getLogger(__name__)

Mutator = Callable[[List[CredentialRecord]], List[CredentialRecord]]


class StorageManager:
    """Owns the encrypted store file and the only code path that writes it."""

    def __init__(self, filepath: str, gateway: CryptoGateway, force_reprompt: bool = True,
                 lock_timeout: float = config.LOCK_TIMEOUT_SECONDS):
        """
        Initialize storage manager.
        Args:
            filepath: Path to the encrypted storage file
            gateway: Crypto gateway used for every encrypt/decrypt
            force_reprompt: Drop cached key material before each decrypt
            lock_timeout: Seconds to wait for the store lock
        """
        self.filepath = os.path.abspath(filepath)
        self.gateway = gateway
        self.force_reprompt = force_reprompt
        self.lock_timeout = lock_timeout

    @property
    def lock_path(self) -> str:
        return self.filepath + config.LOCK_FILE_SUFFIX

    def exists(self) -> bool:
        return os.path.exists(self.filepath)

    def _read_blob(self) -> bytes:
        try:
            with open(self.filepath, "rb") as f:
                return f.read()
        except OSError as e:
            raise StorageIOError(f"Failed to read password file {self.filepath}: {e.strerror}") from e

    def _decrypt_records(self) -> List[CredentialRecord]:
        blob = self._read_blob()
        if self.force_reprompt:
            self.gateway.invalidate_cached_credential()
        plaintext = self.gateway.decrypt(blob)
        try:
            return codec.deserialize(plaintext)
        finally:
            wipe(plaintext)

    def load_entries(self) -> List[CredentialRecord]:
        """
        Decrypt and return all records without modifying the store.

        Raises:
            StoreNotFoundError: If the store file does not exist
        """
        if not self.exists():
            raise StoreNotFoundError(self.filepath)
        with file_lock(self.lock_path, exclusive=False, timeout=self.lock_timeout):
            if not self.exists():
                raise StoreNotFoundError(self.filepath)
            return self._decrypt_records()

    def apply_transaction(self, mutator: Mutator) -> List[CredentialRecord]:
        """
        Run one read-decrypt-mutate-encrypt-replace cycle under an exclusive lock.

        A missing store starts out empty. The on-disk file is only touched by
        the final rename, so any failure leaves the previous file in place.

        Args:
            mutator: Receives a copy of the current records, returns the new records

        Returns:
            The records that were written
        """
        ensure_private_dir(os.path.dirname(self.filepath))
        with file_lock(self.lock_path, exclusive=True, timeout=self.lock_timeout):
            scratch: Optional[bytearray] = None
            try:
                current = self._decrypt_records() if self.exists() else []
                updated = mutator(list(current))
                if updated == current and self.exists():
                    logger.debug("Transaction made no changes, password file left as is")
                    return updated
                scratch = codec.serialize(updated)
                blob = self.gateway.encrypt(scratch)
                self._replace_file(blob)
                logger.info(f"Password file {self.filepath} updated ({len(updated)} record(s))")
                return updated
            finally:
                wipe(scratch)

    def _replace_file(self, blob: bytes) -> None:
        directory = os.path.dirname(self.filepath)
        tmp_path = None
        try:
            fd, tmp_path = tempfile.mkstemp(
                dir=directory, prefix="." + os.path.basename(self.filepath) + ".", suffix=".tmp"
            )
            with os.fdopen(fd, "wb") as f:
                f.write(blob)
                f.flush()
                os.fsync(f.fileno())
            if not set_owner_only(tmp_path):
                logger.warning(f"Failed to set secure file permissions for {tmp_path}")
            os.replace(tmp_path, self.filepath)
            tmp_path = None
            fsync_directory(directory)
        except OSError as e:
            logger.error(f"Error saving password file {self.filepath}: {e}")
            raise StorageIOError(f"Failed to write password file {self.filepath}: {e.strerror or e}") from e
        finally:
            if tmp_path is not None and os.path.exists(tmp_path):
                os.remove(tmp_path)

    def add_entry(self, service: str, username: str, secret: str) -> CredentialRecord:
        """Append a record, creating the store on first use."""
        record = CredentialRecord(service, username, secret).validate()
        self.apply_transaction(lambda records: records + [record])
        return record

    def delete_entries(self, service: str) -> int:
        """
        Remove every record for service.

        Returns:
            Number of records removed (0 is not an error)
        """
        if not self.exists():
            raise StoreNotFoundError(self.filepath)
        codec.validate_service(service)
        removed = []

        def drop(records):
            kept = [r for r in records if r.service != service]
            removed.append(len(records) - len(kept))
            return kept

        self.apply_transaction(drop)
        return removed[0]
