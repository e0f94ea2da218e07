"""
Cryptographic gateways for the credential store.

A gateway encrypts the whole serialized store to a single recipient identity
and decrypts it back. Two implementations exist: GnuPG through its command
line tools, and an RSA key file handled with the cryptography library.
"""

import os
import shutil
import struct
import getpass
import hashlib
import logging
import subprocess
from dataclasses import dataclass, field
from typing import Callable, List, Optional

from cryptography.exceptions import InvalidTag, UnsupportedAlgorithm
from cryptography.hazmat.backends import default_backend
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import padding, rsa
from cryptography.hazmat.primitives.ciphers import Cipher, algorithms, modes

from . import config
from .exceptions import (
    DecryptionError,
    DependencyMissingError,
    EncryptionError,
    KeyNotConfiguredError,
)
from .utils import wipe

logger = logging.getLogger(__name__)


class CryptoGateway:
    """Contract shared by all gateways."""

    name = "abstract"

    def check_available(self) -> None:
        """Raise DependencyMissingError if the backing capability is absent."""
        raise NotImplementedError

    def resolve_recipient(self) -> str:
        """
        Return the one identity the store is encrypted to.

        Raises:
            KeyNotConfiguredError: If there is no candidate identity
            EncryptionError: If more than one identity qualifies
        """
        raise NotImplementedError

    def encrypt(self, plaintext) -> bytes:
        raise NotImplementedError

    def decrypt(self, blob: bytes) -> bytearray:
        raise NotImplementedError

    def invalidate_cached_credential(self) -> None:
        """Forget unlocked key material so the next decrypt prompts again."""
        raise NotImplementedError


@dataclass
class GpgSecretKey:
    """A secret key as reported by ``gpg --list-secret-keys --with-colons``."""
    keyid: str
    fingerprint: str = ""
    uids: List[str] = field(default_factory=list)

    def matches(self, selector: str) -> bool:
        wanted = selector.strip()
        if wanted.startswith("0x"):
            wanted = wanted[2:]
        upper = wanted.upper()
        if self.keyid.upper().endswith(upper) or (self.fingerprint and self.fingerprint.upper().endswith(upper)):
            return True
        lowered = wanted.lower()
        return any(lowered in uid.lower() for uid in self.uids)


def parse_secret_keys(listing: str) -> List[GpgSecretKey]:
    """Parse the colon-delimited secret key listing of gpg."""
    keys: List[GpgSecretKey] = []
    expect_fpr = False
    for line in listing.splitlines():
        fields = line.split(":")
        record = fields[0]
        if record == "sec":
            keys.append(GpgSecretKey(keyid=fields[4]))
            expect_fpr = True
        elif record == "ssb":
            expect_fpr = False
        elif record == "fpr" and expect_fpr and keys:
            keys[-1].fingerprint = fields[9]
            expect_fpr = False
        elif record == "uid" and keys and len(fields) > 9:
            keys[-1].uids.append(fields[9])
    return keys


class GpgGateway(CryptoGateway):
    """Encrypts to the user's GnuPG secret key and decrypts through gpg-agent."""

    name = "gpg"

    def __init__(self, recipient: Optional[str] = None, binary: str = config.GPG_BINARY,
                 agent_binary: str = config.GPG_CONNECT_AGENT_BINARY,
                 timeout: int = config.GPG_TIMEOUT_SECONDS):
        self.recipient = recipient
        self.binary = binary
        self.agent_binary = agent_binary
        self.timeout = timeout

    def _run(self, args: List[str], error_cls, failure: str, input: Optional[bytes] = None):
        try:
            return subprocess.run(args, input=input, capture_output=True, timeout=self.timeout)
        except FileNotFoundError:
            raise DependencyMissingError(f"{args[0]} is not installed. Please install GnuPG first") from None
        except subprocess.TimeoutExpired:
            raise error_cls(f"{failure}: {args[0]} did not respond within {self.timeout} seconds") from None

    @staticmethod
    def _stderr(result) -> str:
        return result.stderr.decode("utf-8", errors="replace").strip()

    def check_available(self) -> None:
        if shutil.which(self.binary) is None:
            raise DependencyMissingError("GPG is not installed. Please install it first")

    def list_secret_keys(self) -> List[GpgSecretKey]:
        result = self._run(
            [self.binary, "--batch", "--list-secret-keys", "--with-colons"],
            EncryptionError, "Failed to list GPG keys",
        )
        if result.returncode != 0:
            logger.debug(f"gpg --list-secret-keys failed: {self._stderr(result)}")
            raise EncryptionError("Failed to list GPG keys")
        return parse_secret_keys(result.stdout.decode("utf-8", errors="replace"))

    def resolve_recipient(self) -> str:
        keys = self.list_secret_keys()
        if self.recipient:
            keys = [k for k in keys if k.matches(self.recipient)]
        if not keys:
            if self.recipient:
                raise KeyNotConfiguredError(f"No GPG secret key matches recipient {self.recipient!r}")
            raise KeyNotConfiguredError(
                "No GPG key found. Please create one first by running: gpg --full-generate-key"
            )
        if len(keys) > 1:
            ids = ", ".join(k.keyid for k in keys)
            raise EncryptionError(
                f"Ambiguous key selection: {len(keys)} secret keys qualify ({ids}). "
                f"Set {config.ENV_PREFIX}RECIPIENT or pass --recipient to choose one"
            )
        logger.debug(f"Resolved GPG recipient {keys[0].keyid}")
        return keys[0].keyid

    def encrypt(self, plaintext) -> bytes:
        recipient = self.resolve_recipient()
        result = self._run(
            [self.binary, "--batch", "--yes", "--quiet", "--trust-model", "always",
             "--encrypt", "--recipient", recipient, "--output", "-"],
            EncryptionError, "Failed to encrypt password file",
            input=bytes(plaintext),
        )
        if result.returncode != 0 or not result.stdout:
            logger.debug(f"gpg --encrypt failed: {self._stderr(result)}")
            raise EncryptionError("Failed to encrypt password file")
        return result.stdout

    def decrypt(self, blob: bytes) -> bytearray:
        result = self._run(
            [self.binary, "--use-agent", "--quiet", "--decrypt"],
            DecryptionError, "Failed to decrypt password file",
            input=blob,
        )
        if result.returncode != 0:
            logger.debug(f"gpg --decrypt failed: {self._stderr(result)}")
            raise DecryptionError("Failed to decrypt password file")
        return bytearray(result.stdout)

    def invalidate_cached_credential(self) -> None:
        result = self._run(
            [self.agent_binary, "RELOADAGENT", "/bye"],
            DecryptionError, "Failed to reset GPG agent",
        )
        if result.returncode != 0:
            logger.debug(f"gpg-connect-agent failed: {self._stderr(result)}")
            raise DecryptionError("Failed to reset GPG agent")
        logger.debug("gpg-agent reloaded, cached passphrases dropped")


def prompt_passphrase(path: str) -> str:
    """Ask for the private key passphrase on the terminal."""
    try:
        return getpass.getpass(config.PASSPHRASE_PROMPT.format(path=path))
    except (EOFError, KeyboardInterrupt):
        raise DecryptionError("Passphrase prompt cancelled") from None


class KeyFileGateway(CryptoGateway):
    """
    Hybrid RSA-OAEP / AES-256-GCM encryption to a PEM key pair.

    The public key is read from ``<key>.pub`` when present, otherwise derived
    from the private key. The private key may be passphrase protected; it is
    kept only until invalidate_cached_credential() is called.
    """

    name = "keyfile"

    VERSION = config.KEYFILE_FORMAT_VERSION
    MAGIC_BYTES = config.KEYFILE_MAGIC_BYTES

    def __init__(self, key_path: str, passphrase_callback: Optional[Callable[[str], str]] = None):
        self.key_path = key_path
        self.passphrase_callback = passphrase_callback or prompt_passphrase
        self.backend = default_backend()
        self._private_key = None

    @property
    def public_key_path(self) -> str:
        return self.key_path + ".pub"

    def check_available(self) -> None:
        # The cryptography library is a hard dependency; nothing external to probe.
        return None

    def _load_private_key(self):
        if self._private_key is not None:
            return self._private_key
        if not os.path.exists(self.key_path):
            raise KeyNotConfiguredError(f"No private key found at {self.key_path}")
        with open(self.key_path, "rb") as f:
            pem = f.read()
        try:
            key = serialization.load_pem_private_key(pem, password=None, backend=self.backend)
        except TypeError:
            passphrase = bytearray(self.passphrase_callback(self.key_path).encode("utf-8"))
            try:
                key = serialization.load_pem_private_key(pem, password=bytes(passphrase), backend=self.backend)
            except (ValueError, TypeError):
                raise DecryptionError(f"Wrong passphrase for {self.key_path}") from None
            finally:
                wipe(passphrase)
        except (ValueError, UnsupportedAlgorithm):
            raise KeyNotConfiguredError(f"{self.key_path} is not a usable PEM private key") from None
        if not isinstance(key, rsa.RSAPrivateKey):
            raise KeyNotConfiguredError(f"{self.key_path} must hold an RSA private key")
        self._private_key = key
        return key

    def _load_public_key(self):
        if os.path.exists(self.public_key_path):
            with open(self.public_key_path, "rb") as f:
                try:
                    key = serialization.load_pem_public_key(f.read(), backend=self.backend)
                except (ValueError, UnsupportedAlgorithm):
                    raise KeyNotConfiguredError(f"{self.public_key_path} is not a usable PEM public key") from None
            if not isinstance(key, rsa.RSAPublicKey):
                raise KeyNotConfiguredError(f"{self.public_key_path} must hold an RSA public key")
            return key
        return self._load_private_key().public_key()

    def _peek_public_key(self):
        """Public half of an unprotected private key, or None if it needs a passphrase."""
        with open(self.key_path, "rb") as f:
            pem = f.read()
        try:
            key = serialization.load_pem_private_key(pem, password=None, backend=self.backend)
        except TypeError:
            return None
        except (ValueError, UnsupportedAlgorithm):
            raise KeyNotConfiguredError(f"{self.key_path} is not a usable PEM private key") from None
        if not isinstance(key, rsa.RSAPrivateKey):
            raise KeyNotConfiguredError(f"{self.key_path} must hold an RSA private key")
        return key.public_key()

    def resolve_recipient(self) -> str:
        if not os.path.exists(self.key_path) and not os.path.exists(self.public_key_path):
            raise KeyNotConfiguredError(f"No private key found at {self.key_path}")
        if os.path.exists(self.public_key_path) or self._private_key is not None:
            public_key = self._load_public_key()
        else:
            public_key = self._peek_public_key()
            if public_key is None:
                # Protected key and no .pub: the transaction unlocks it once when it needs it.
                logger.debug(f"{self.key_path} is passphrase protected, deferring unlock")
                return os.path.basename(self.key_path)
        der = public_key.public_bytes(
            serialization.Encoding.DER, serialization.PublicFormat.SubjectPublicKeyInfo
        )
        return hashlib.sha256(der).hexdigest()[:16].upper()

    @staticmethod
    def _oaep():
        return padding.OAEP(mgf=padding.MGF1(algorithm=hashes.SHA256()), algorithm=hashes.SHA256(), label=None)

    def encrypt(self, plaintext) -> bytes:
        public_key = self._load_public_key()
        data_key = bytearray(os.urandom(config.AES_KEY_SIZE))
        try:
            nonce = os.urandom(config.NONCE_SIZE)
            encryptor = Cipher(algorithms.AES(bytes(data_key)), modes.GCM(nonce), backend=self.backend).encryptor()
            ciphertext = encryptor.update(bytes(plaintext)) + encryptor.finalize()
            wrapped = public_key.encrypt(bytes(data_key), self._oaep())
        except ValueError as e:
            raise EncryptionError(f"Failed to encrypt password file: {e}") from None
        finally:
            wipe(data_key)

        out = bytearray(self.MAGIC_BYTES)
        out += struct.pack("<I", self.VERSION)
        for part in (wrapped, nonce, encryptor.tag, ciphertext):
            out += struct.pack("<I", len(part))
            out += part
        return bytes(out)

    def _split(self, blob: bytes):
        if blob[:4] != self.MAGIC_BYTES:
            raise DecryptionError("Password file is corrupt or was not written by the key-file backend")
        try:
            version = struct.unpack_from("<I", blob, 4)[0]
            if version != self.VERSION:
                raise DecryptionError(f"Unsupported password file version {version}")
            offset = 8
            parts = []
            for _ in range(4):
                size = struct.unpack_from("<I", blob, offset)[0]
                offset += 4
                part = blob[offset:offset + size]
                if len(part) != size:
                    raise DecryptionError("Password file is truncated")
                parts.append(part)
                offset += size
        except struct.error:
            raise DecryptionError("Password file is truncated") from None
        return parts

    def decrypt(self, blob: bytes) -> bytearray:
        wrapped, nonce, tag, ciphertext = self._split(blob)
        private_key = self._load_private_key()
        try:
            data_key = bytearray(private_key.decrypt(wrapped, self._oaep()))
        except ValueError:
            raise DecryptionError("Failed to decrypt password file: key does not match") from None
        try:
            decryptor = Cipher(algorithms.AES(bytes(data_key)), modes.GCM(nonce, tag), backend=self.backend).decryptor()
            return bytearray(decryptor.update(ciphertext) + decryptor.finalize())
        except (InvalidTag, ValueError):
            raise DecryptionError("Failed to decrypt password file: authentication failed") from None
        finally:
            wipe(data_key)

    def invalidate_cached_credential(self) -> None:
        if self._private_key is not None:
            logger.debug("Dropping unlocked private key")
        self._private_key = None


def create_gateway(settings, passphrase_callback=None) -> CryptoGateway:
    """Build the gateway selected by settings.backend."""
    if settings.backend == "keyfile":
        return KeyFileGateway(settings.key_file, passphrase_callback=passphrase_callback)
    return GpgGateway(recipient=settings.recipient)
