"""
Shared test fixtures: an in-memory crypto gateway, clipboard and scheduler.
"""

import base64

import pytest

from tornjak import config
from tornjak.clipboard import ClipboardSink
from tornjak.crypto import CryptoGateway
from tornjak.exceptions import DecryptionError, EncryptionError, KeyNotConfiguredError
from tornjak.exposure import ExposureManager, GenerationCounter
from tornjak.storage import StorageManager


class FakeGateway(CryptoGateway):
    """Reversible stand-in for gpg with switchable faults."""

    name = "fake"

    def __init__(self, identities=("AAAAAAAAAAAAAAAA",)):
        self.identities = list(identities)
        self.fail_encrypt = False
        self.fail_decrypt = False
        self.invalidations = 0
        self.decrypts = 0
        self.encrypts = 0
        self.returned_plaintexts = []

    def check_available(self):
        return None

    def resolve_recipient(self):
        if not self.identities:
            raise KeyNotConfiguredError("No key")
        if len(self.identities) > 1:
            raise EncryptionError("Ambiguous key selection")
        return self.identities[0]

    def encrypt(self, plaintext):
        recipient = self.resolve_recipient()
        if self.fail_encrypt:
            raise EncryptionError("Failed to encrypt password file")
        self.encrypts += 1
        return b"FAKE:" + recipient.encode() + b":" + base64.b64encode(bytes(plaintext)[::-1])

    def decrypt(self, blob):
        self.decrypts += 1
        if self.fail_decrypt or not blob.startswith(b"FAKE:"):
            raise DecryptionError("Failed to decrypt password file")
        payload = blob.split(b":", 2)[2]
        plaintext = bytearray(base64.b64decode(payload)[::-1])
        self.returned_plaintexts.append(plaintext)
        return plaintext

    def invalidate_cached_credential(self):
        self.invalidations += 1


class MemoryClipboard(ClipboardSink):
    name = "memory"

    def __init__(self):
        self.text = ""
        self.history = []

    def set_text(self, text):
        self.text = text
        self.history.append(text)

    def clear(self):
        self.text = ""
        self.history.append("")


class _ManualTimer:
    def __init__(self, delay, token, revoke):
        self.delay = delay
        self.token = token
        self.revoke = revoke
        self.cancelled = False

    def cancel(self):
        self.cancelled = True

    def fire(self, force=False):
        """Run the revocation; force=True ignores cancellation like a detached process would."""
        if self.cancelled and not force:
            return None
        return self.revoke(self.token)


class ManualScheduler:
    """Scheduler whose timers only run when a test fires them."""

    def __init__(self):
        self.timers = []

    def schedule(self, delay, token, revoke):
        timer = _ManualTimer(delay, token, revoke)
        self.timers.append(timer)
        return timer


@pytest.fixture
def gateway():
    return FakeGateway()


@pytest.fixture
def store_path(tmp_path):
    return str(tmp_path / "store" / "passwords.gpg")


@pytest.fixture
def storage(store_path, gateway):
    return StorageManager(store_path, gateway, lock_timeout=0.3)


@pytest.fixture
def clipboard():
    return MemoryClipboard()


@pytest.fixture
def scheduler():
    return ManualScheduler()


@pytest.fixture
def exposure(clipboard, scheduler):
    return ExposureManager(clipboard, GenerationCounter(), scheduler)


@pytest.fixture
def clean_env(monkeypatch, tmp_path):
    """Remove TORNJAK_* variables and point the state directory at tmp_path."""
    for key in ("STORE", "CLIPBOARD_TIMEOUT", "BACKEND", "KEY_FILE", "RECIPIENT",
                "CLIPBOARD", "FORCE_REPROMPT", "HOME"):
        monkeypatch.delenv(config.ENV_PREFIX + key, raising=False)
    monkeypatch.setenv(config.ENV_PREFIX + "HOME", str(tmp_path / "home"))
