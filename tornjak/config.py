"""
Configuration constants for the Tornjak credential store.
"""

import os
from dataclasses import dataclass
from typing import Mapping, Optional

from .exceptions import ValidationError

# Application Metadata
APP_VERSION = "1.0.0"  # Use: Current version of the application. Type: str. Range: Semantic versioning string (e.g., "1.0.0")
APP_NAME = "tornjak"  # Use: Program name shown in usage and log output. Type: str. Range: Any valid string.

# Store Settings
DEFAULT_STORE_DIR = os.path.join(os.path.expanduser("~"), ".password-store")  # Use: Directory holding the encrypted store. Type: str. Range: Any writable directory path.
DEFAULT_STORE_FILE = "passwords.gpg"  # Use: Default filename of the encrypted store. Type: str. Range: Any valid filename.
LOCK_FILE_SUFFIX = ".lock"  # Use: Suffix appended to the store path to form the lock file path. Type: str. Range: Any valid filename suffix.
LOCK_TIMEOUT_SECONDS = 10.0  # Use: How long a transaction waits for the store lock before giving up. Type: float. Range: Positive number.
LOCK_POLL_INTERVAL_SECONDS = 0.1  # Use: Delay between attempts to acquire the store lock. Type: float. Range: Positive number, well below LOCK_TIMEOUT_SECONDS.
FIELD_SEPARATOR = ":"  # Use: Separator between service, username and secret in the plaintext store. Type: str. Range: Single character.

# Crypto Settings
DEFAULT_BACKEND = "gpg"  # Use: Crypto gateway used when none is configured. Type: str. Range: One of BACKENDS.
BACKENDS = ("gpg", "keyfile")  # Use: Supported crypto gateways. Type: tuple[str]. Range: Fixed.
GPG_BINARY = "gpg"  # Use: Name of the GnuPG executable looked up on PATH. Type: str. Range: Any executable name.
GPG_CONNECT_AGENT_BINARY = "gpg-connect-agent"  # Use: Name of the executable used to reload gpg-agent. Type: str. Range: Any executable name.
GPG_TIMEOUT_SECONDS = 120  # Use: Timeout for a single gpg invocation, including the passphrase prompt. Type: int. Range: Positive integer.
KEYFILE_MAGIC_BYTES = b"TJK1"  # Use: Header identifying a blob written by the key-file gateway. Type: bytes. Range: Exactly 4 bytes.
KEYFILE_FORMAT_VERSION = 1  # Use: Version of the key-file blob layout. Type: int. Range: Positive integer.
AES_KEY_SIZE = 32  # Use: Size of the per-blob AES-256-GCM key in bytes. Type: int. Range: 16, 24 or 32.
NONCE_SIZE = 12  # Use: Size of the AES-GCM nonce in bytes. Type: int. Range: 12 bytes is the recommended size for GCM.
PASSPHRASE_PROMPT = "Passphrase for {path}: "  # Use: Prompt shown when the key-file gateway unlocks its private key. Type: str. Range: Format string with a {path} field.

# Clipboard Settings
CLIPBOARD_CLEAR_TIMEOUT_DEFAULT_SECONDS = 45  # Use: Default time after which an exposed secret is cleared from the clipboard. Type: int. Range: CLIPBOARD_CLEAR_TIMEOUT_MIN_SECONDS to CLIPBOARD_CLEAR_TIMEOUT_MAX_SECONDS.
CLIPBOARD_CLEAR_TIMEOUT_MIN_SECONDS = 5  # Use: Minimum configurable clipboard clear timeout. Type: int. Range: Positive integer.
CLIPBOARD_CLEAR_TIMEOUT_MAX_SECONDS = 600  # Use: Maximum configurable clipboard clear timeout. Type: int. Range: Positive integer.
CLIPBOARD_BACKENDS = ("auto", "command", "qt")  # Use: Supported exposure sinks. Type: tuple[str]. Range: Fixed.
CLIPBOARD_COMMANDS = [  # Use: Clipboard tools tried in order, as (executable, set-arguments). Type: list[tuple[str, list[str]]]. Range: Executables that read the new content from stdin.
    ("wl-copy", []),
    ("xclip", ["-selection", "clipboard"]),
    ("xsel", ["--clipboard", "--input"]),
    ("pbcopy", []),
    ("clip", []),
]
CLIPBOARD_COMMAND_TIMEOUT_SECONDS = 10  # Use: Timeout for a single clipboard tool invocation. Type: int. Range: Positive integer.

# File and Directory Names
CONFIG_DIR_NAME = ".tornjak"  # Use: Name of the hidden directory in the user's home holding Tornjak state. Type: str. Range: Any valid directory name.
DEFAULT_KEY_FILE = "key.pem"  # Use: Default private key filename for the key-file gateway. Type: str. Range: Any valid filename.
AUDIT_LOG_DIR = "logs"  # Use: Subdirectory of the state directory holding the audit log. Type: str. Range: Any valid directory name.
AUDIT_LOG_FILE = "audit.log"  # Use: Filename for the security audit log. Type: str. Range: Any valid filename.
EXPOSURE_STATE_FILE = "exposure.gen"  # Use: File holding the current clipboard exposure generation. Type: str. Range: Any valid filename.

# Logging
LOG_FORMAT = "%(asctime)s - %(levelname)s - %(name)s - %(message)s"  # Use: Format passed to logging.basicConfig. Type: str. Range: Any logging format string.

ENV_PREFIX = "TORNJAK_"

_TRUE_VALUES = ("1", "true", "yes", "on")
_FALSE_VALUES = ("0", "false", "no", "off")


@dataclass(frozen=True)
class Settings:
    """Runtime settings, resolved from the environment and CLI flags."""
    store_path: str
    clipboard_timeout: int = CLIPBOARD_CLEAR_TIMEOUT_DEFAULT_SECONDS
    backend: str = DEFAULT_BACKEND
    key_file: Optional[str] = None
    recipient: Optional[str] = None
    clipboard: str = "auto"
    force_reprompt: bool = True
    home: str = ""

    @property
    def audit_log_path(self) -> str:
        return os.path.join(self.home, AUDIT_LOG_DIR, AUDIT_LOG_FILE)

    @property
    def exposure_state_path(self) -> str:
        return os.path.join(self.home, EXPOSURE_STATE_FILE)


def default_home() -> str:
    return os.path.join(os.path.expanduser("~"), CONFIG_DIR_NAME)


def validate_timeout(value) -> int:
    """Parse and range-check a clipboard timeout given in seconds."""
    try:
        seconds = int(value)
    except (TypeError, ValueError):
        raise ValidationError(f"Clipboard timeout must be an integer number of seconds, got {value!r}")
    if not CLIPBOARD_CLEAR_TIMEOUT_MIN_SECONDS <= seconds <= CLIPBOARD_CLEAR_TIMEOUT_MAX_SECONDS:
        raise ValidationError(
            f"Clipboard timeout must be between {CLIPBOARD_CLEAR_TIMEOUT_MIN_SECONDS} "
            f"and {CLIPBOARD_CLEAR_TIMEOUT_MAX_SECONDS} seconds, got {seconds}"
        )
    return seconds


def _parse_bool(name: str, value: str) -> bool:
    lowered = value.strip().lower()
    if lowered in _TRUE_VALUES:
        return True
    if lowered in _FALSE_VALUES:
        return False
    raise ValidationError(f"{name} must be a boolean (1/0, true/false), got {value!r}")


def _choice(name: str, value: str, choices) -> str:
    if value not in choices:
        raise ValidationError(f"{name} must be one of {', '.join(choices)}, got {value!r}")
    return value


def load_settings(env: Optional[Mapping[str, str]] = None, **overrides) -> Settings:
    """
    Build Settings from environment variables, then apply explicit overrides.

    Args:
        env: Mapping to read TORNJAK_* variables from (defaults to os.environ)
        overrides: Values that take precedence over the environment; None values are ignored

    Returns:
        A validated Settings instance
    """
    if env is None:
        env = os.environ

    def get(key: str) -> Optional[str]:
        value = overrides.get(key)
        if value is not None:
            return value
        value = env.get(ENV_PREFIX + key.upper())
        return value if value else None

    home = os.path.expanduser(get("home") or default_home())
    store_path = os.path.expanduser(get("store") or os.path.join(DEFAULT_STORE_DIR, DEFAULT_STORE_FILE))
    key_file = get("key_file")

    timeout = get("clipboard_timeout")
    force = get("force_reprompt")
    if isinstance(force, str):
        force = _parse_bool(ENV_PREFIX + "FORCE_REPROMPT", force)

    return Settings(
        store_path=os.path.abspath(store_path),
        clipboard_timeout=validate_timeout(timeout) if timeout is not None else CLIPBOARD_CLEAR_TIMEOUT_DEFAULT_SECONDS,
        backend=_choice("backend", get("backend") or DEFAULT_BACKEND, BACKENDS),
        key_file=os.path.expanduser(key_file) if key_file else os.path.join(home, DEFAULT_KEY_FILE),
        recipient=get("recipient"),
        clipboard=_choice("clipboard", get("clipboard") or "auto", CLIPBOARD_BACKENDS),
        force_reprompt=True if force is None else bool(force),
        home=home,
    )
