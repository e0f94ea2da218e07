"""
Plaintext encoding of the credential store.

One record per line, ``service:username:secret``. Service and username may not
contain the separator or a line break; the secret may contain the separator
since only the first two are significant.
"""

import logging
from dataclasses import dataclass
from typing import Iterable, List

from . import config
from .exceptions import CorruptStoreError, ValidationError

logger = logging.getLogger(__name__)

SEPARATOR = config.FIELD_SEPARATOR
_LINE_BREAKS = ("\n", "\r")


@dataclass(frozen=True)
class CredentialRecord:
    """A single stored credential."""
    service: str
    username: str
    secret: str

    def __repr__(self) -> str:
        return f"CredentialRecord(service={self.service!r}, username={self.username!r}, secret='***')"

    def check_encodable(self) -> "CredentialRecord":
        """Check the record can be encoded unambiguously. Returns self."""
        validate_service(self.service)
        if any(ch in self.username for ch in (SEPARATOR,) + _LINE_BREAKS):
            raise ValidationError(f"Username may not contain '{SEPARATOR}' or line breaks")
        if any(ch in self.secret for ch in _LINE_BREAKS):
            raise ValidationError("Password may not contain line breaks")
        return self

    def validate(self) -> "CredentialRecord":
        """Check a new record before it is added. Returns self."""
        if not self.secret:
            raise ValidationError("Password may not be empty")
        return self.check_encodable()


def validate_service(service: str) -> str:
    if not service:
        raise ValidationError("Service name may not be empty")
    if any(ch in service for ch in (SEPARATOR,) + _LINE_BREAKS):
        raise ValidationError(f"Service name may not contain '{SEPARATOR}' or line breaks")
    return service


def serialize(records: Iterable[CredentialRecord]) -> bytearray:
    """
    Encode records into a fresh buffer.

    The caller owns the returned bytearray and is expected to wipe it.
    """
    out = bytearray()
    for record in records:
        record.check_encodable()
        out += SEPARATOR.join((record.service, record.username, record.secret)).encode("utf-8")
        out += b"\n"
    return out


def deserialize(data) -> List[CredentialRecord]:
    """
    Decode a plaintext store.

    Raises:
        CorruptStoreError: On invalid UTF-8 or a line without three fields.
            The message names the line number only, never its content.
    """
    try:
        text = data.decode("utf-8")
    except UnicodeDecodeError as e:
        raise CorruptStoreError(f"Password store is not valid UTF-8 (byte offset {e.start})") from None

    lines = text.split("\n")
    if lines[-1] == "":
        lines.pop()

    records = []
    for number, line in enumerate(lines, start=1):
        if line.endswith("\r"):
            line = line[:-1]
        fields = line.split(SEPARATOR, 2)
        if len(fields) != 3 or not fields[0]:
            raise CorruptStoreError(f"Password store line {number} is malformed", line_number=number)
        records.append(CredentialRecord(*fields))
    logger.debug(f"Decoded {len(records)} record(s)")
    return records
