"""
Error hierarchy for the credential store.

Messages are shown to the user as-is, so they must never contain a secret.
"""


class TornjakError(Exception):
    """Base class for every error reported by Tornjak."""


class DependencyMissingError(TornjakError):
    """A required external tool (gpg, clipboard utility) is not available."""


class ValidationError(TornjakError):
    """User input or configuration is not acceptable."""


class EncryptionError(TornjakError):
    """The store could not be encrypted, e.g. no unique recipient key."""


class KeyNotConfiguredError(EncryptionError):
    """No usable encryption identity exists."""


class DecryptionError(TornjakError):
    """Wrong or missing key, cancelled passphrase prompt, or a corrupt blob."""


class CorruptStoreError(TornjakError):
    """The decrypted store could not be parsed."""

    def __init__(self, message: str, line_number: int = 0):
        self.line_number = line_number
        super().__init__(message)


class NotFoundError(TornjakError):
    """No record matches the requested service."""

    def __init__(self, service: str):
        self.service = service
        super().__init__(f"No password found for service: {service}")


class StoreNotFoundError(TornjakError):
    """The encrypted store file does not exist yet."""

    def __init__(self, path: str):
        self.path = path
        super().__init__(f"No password file found at {path}")


class StorageIOError(TornjakError, OSError):
    """Filesystem failure while reading or replacing the store."""


class StoreLockedError(StorageIOError):
    """Another process holds the store lock."""


class ClipboardError(TornjakError):
    """The clipboard rejected the value."""
