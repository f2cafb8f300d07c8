# Vault - Persisted Record Format
#
# The single record written to disk, and the exact shape of a backup file:
#   {version, salt, iterations, ct, iv}   (binary fields base64-encoded)
#
# Older records are upgraded step by step through _MIGRATIONS when read.

import json
import logging
from dataclasses import dataclass, replace
from typing import Any, Callable, Dict, Union

from .codec import decode_binary, decode_text, encode_binary
from .encryption import EncryptionService
from .exceptions import DecodeError, MalformedRecordError

logger = logging.getLogger(__name__)

CURRENT_VERSION = 1
DEFAULT_ITERATIONS = EncryptionService.PBKDF2_ITERATIONS


def _upgrade_v0(raw: Dict[str, Any]) -> Dict[str, Any]:
    """Records written before versioning: no version field, iterations optional."""
    upgraded = dict(raw)
    if upgraded.get("iterations") in (None, 0):
        upgraded["iterations"] = DEFAULT_ITERATIONS
    upgraded["version"] = 1
    return upgraded


# source version -> function producing the next version's dict
_MIGRATIONS: Dict[int, Callable[[Dict[str, Any]], Dict[str, Any]]] = {
    0: _upgrade_v0,
}


def migrate(raw: Dict[str, Any]) -> Dict[str, Any]:
    """Upgrade a raw record dict to CURRENT_VERSION.

    Raises:
        MalformedRecordError: Unknown, invalid or future version
    """
    version = raw.get("version", 0)
    if isinstance(version, bool) or not isinstance(version, int) or version < 0:
        raise MalformedRecordError(f"Invalid record version: {version!r}")
    if version > CURRENT_VERSION:
        raise MalformedRecordError(
            f"Record version {version} is newer than supported version {CURRENT_VERSION}"
        )

    while version < CURRENT_VERSION:
        step = _MIGRATIONS.get(version)
        if step is None:
            raise MalformedRecordError(f"No migration from record version {version}")
        raw = step(raw)
        logger.info(f"Migrated vault record from version {version} to {raw['version']}")
        version = raw["version"]

    return raw


@dataclass(frozen=True)
class PersistedRecord:
    """Encrypted vault record: key derivation recipe plus the sealed entries."""

    version: int
    salt: bytes
    iterations: int
    ciphertext: bytes
    nonce: bytes

    def with_envelope(self, ciphertext: bytes, nonce: bytes) -> "PersistedRecord":
        """Copy with a new ciphertext/nonce; salt, iterations and version are kept."""
        return replace(self, ciphertext=ciphertext, nonce=nonce)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "version": self.version,
            "salt": encode_binary(self.salt),
            "iterations": self.iterations,
            "ct": encode_binary(self.ciphertext),
            "iv": encode_binary(self.nonce),
        }

    def to_json(self) -> str:
        return json.dumps(self.to_dict(), indent=2)

    @classmethod
    def from_dict(cls, raw: Any) -> "PersistedRecord":
        """
        Validate and decode a record dict (upgrading older versions).

        Raises:
            MalformedRecordError: Missing fields, bad encoding or bad sizes
        """
        if not isinstance(raw, dict):
            raise MalformedRecordError("Vault record must be a JSON object")

        raw = migrate(raw)

        missing = [name for name in ("salt", "ct", "iv") if name not in raw]
        if missing:
            raise MalformedRecordError(f"Vault record is missing fields: {', '.join(missing)}")

        iterations = raw.get("iterations")
        # Missing or zero work factor falls back to the default, whatever the version
        if iterations is None or (type(iterations) is int and iterations == 0):
            iterations = DEFAULT_ITERATIONS
        if isinstance(iterations, bool) or not isinstance(iterations, int) or iterations < 1:
            raise MalformedRecordError(f"Invalid iteration count: {iterations!r}")

        try:
            salt = decode_binary(raw["salt"])
            ciphertext = decode_binary(raw["ct"])
            nonce = decode_binary(raw["iv"])
        except DecodeError as e:
            raise MalformedRecordError(f"Vault record has undecodable fields: {e}") from e

        if len(salt) != EncryptionService.SALT_LENGTH:
            raise MalformedRecordError(f"Salt must be {EncryptionService.SALT_LENGTH} bytes")
        if len(nonce) != EncryptionService.NONCE_LENGTH:
            raise MalformedRecordError(f"Nonce must be {EncryptionService.NONCE_LENGTH} bytes")

        return cls(
            version=raw["version"],
            salt=salt,
            iterations=iterations,
            ciphertext=ciphertext,
            nonce=nonce,
        )

    @classmethod
    def from_json(cls, data: Union[str, bytes]) -> "PersistedRecord":
        """Parse a record from file contents (text or raw bytes)."""
        try:
            if isinstance(data, (bytes, bytearray)):
                data = decode_text(bytes(data))
            raw = json.loads(data)
        except (DecodeError, json.JSONDecodeError) as e:
            raise MalformedRecordError(f"Vault record is not valid JSON: {e}") from e
        return cls.from_dict(raw)
