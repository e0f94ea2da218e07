"""
Read-only access to the store: service listing and clipboard retrieval.
"""

import logging
from typing import List, Tuple

from . import codec
from . import config
from .exceptions import NotFoundError
from .exposure import ExposureHandle, ExposureManager
from .storage import StorageManager

logger = logging.getLogger(__name__)


class CredentialRetriever:
    """Looks up credentials and stages secrets on the clipboard."""

    def __init__(self, storage: StorageManager, exposure: ExposureManager,
                 ttl: float = config.CLIPBOARD_CLEAR_TIMEOUT_DEFAULT_SECONDS):
        self.storage = storage
        self.exposure = exposure
        self.ttl = ttl

    def retrieve(self, service: str) -> Tuple[str, ExposureHandle]:
        """
        Copy the password of the first record for service to the clipboard.

        Returns:
            (username, handle) where handle describes the pending clipboard wipe

        Raises:
            StoreNotFoundError: If there is no store yet
            NotFoundError: If no record matches service exactly
        """
        codec.validate_service(service)
        for record in self.storage.load_entries():
            if record.service == service:
                handle = self.exposure.expose(record.secret, self.ttl, service=service)
                return record.username, handle
        raise NotFoundError(service)

    def list_services(self) -> List[str]:
        """Distinct service names, sorted."""
        return sorted({record.service for record in self.storage.load_entries()})
