import os
import logging
import datetime

from .utils import ensure_private_dir, set_owner_only

logger = logging.getLogger(__name__)


class AuditLog:
    """Append-only record of security-relevant actions. Never receives secrets."""

    def __init__(self, path: str):
        self.path = path

    def log_action(self, action: str, details: str) -> None:
        timestamp = datetime.datetime.now().isoformat()
        try:
            ensure_private_dir(os.path.dirname(self.path))
            new_file = not os.path.exists(self.path)
            with open(self.path, 'a', encoding='utf-8') as f:
                f.write(f"{timestamp} | {action} | {details}\n")
            if new_file:
                set_owner_only(self.path)
        except OSError as e:
            logger.warning(f"Could not write audit log {self.path}: {e}")
