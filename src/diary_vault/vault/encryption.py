# Vault - Encryption Service
#
# Password + salt -> encryption key (PBKDF2-HMAC-SHA256)
# Entry collection encryption (AES-256-GCM, fresh nonce per seal)
# Decryption doubles as the password check: there is no stored verifier

import os
import json
from typing import Any, Tuple

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.kdf.pbkdf2 import PBKDF2HMAC
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.ciphers.aead import AESGCM
from cryptography.hazmat.backends import default_backend

from .codec import decode_text, encode_password, encode_text
from .exceptions import AuthenticationError, DecodeError, DerivationError


class DerivedKey:
    """
    In-memory AES-256 key derived from the diary password.

    The raw bytes live in a mutable buffer so that wipe() can zero them
    deterministically on lock. The key cannot be printed, pickled or
    copied; only EncryptionService reads the material.
    """

    __slots__ = ("_material", "_wiped")

    def __init__(self, material: bytes):
        self._material = bytearray(material)
        self._wiped = False

    @property
    def is_wiped(self) -> bool:
        return self._wiped

    def wipe(self) -> None:
        """Zero the key bytes in place. Safe to call more than once."""
        for i in range(len(self._material)):
            self._material[i] = 0
        self._wiped = True

    def _cipher(self) -> AESGCM:
        if self._wiped:
            raise DerivationError("Key has been wiped")
        return AESGCM(bytes(self._material))

    def __repr__(self) -> str:
        return f"<DerivedKey wiped={self._wiped}>"

    def __reduce__(self):
        raise TypeError("DerivedKey cannot be serialized")


class EncryptionService:
    """
    Handles key derivation and envelope encryption for the diary vault.

    Flow:
    1. User enters the diary password
    2. PBKDF2 derives a 256-bit key from password + vault salt
    3. AES-256-GCM seals the whole entry collection as JSON
    4. Every seal uses a fresh random nonce
    """

    # PBKDF2 parameters
    PBKDF2_ITERATIONS = 150_000
    KEY_LENGTH = 32  # 256 bits for AES-256
    SALT_LENGTH = 16  # 128-bit salt
    NONCE_LENGTH = 12  # 96-bit nonce for GCM (recommended)

    @staticmethod
    def derive_key(password: str, salt: bytes, iterations: int = PBKDF2_ITERATIONS) -> DerivedKey:
        """
        Derive the vault key from the password using PBKDF2-SHA256.

        Deterministic: the same password, salt and iterations always give
        the same key. Any string is an acceptable password.

        Args:
            password: The diary password
            salt: 16-byte salt stored with the vault
            iterations: Work factor stored with the vault

        Returns:
            DerivedKey usable only with seal() / open()

        Raises:
            DerivationError: If salt or iterations are invalid
        """
        if not isinstance(password, str):
            raise DerivationError("Password must be a string")
        if not isinstance(salt, (bytes, bytearray)) or len(salt) != EncryptionService.SALT_LENGTH:
            raise DerivationError(
                f"Salt must be {EncryptionService.SALT_LENGTH} bytes"
            )
        # bool is an int subclass; True would otherwise mean one iteration
        if isinstance(iterations, bool) or not isinstance(iterations, int) or iterations < 1:
            raise DerivationError(f"Iterations must be a positive integer, got {iterations!r}")

        kdf = PBKDF2HMAC(
            algorithm=hashes.SHA256(),
            length=EncryptionService.KEY_LENGTH,
            salt=bytes(salt),
            iterations=iterations,
            backend=default_backend()
        )

        return DerivedKey(kdf.derive(encode_password(password)))

    @staticmethod
    def generate_salt() -> bytes:
        """Generate cryptographically random salt."""
        return os.urandom(EncryptionService.SALT_LENGTH)

    @staticmethod
    def seal(key: DerivedKey, payload: Any) -> Tuple[bytes, bytes]:
        """
        Serialize payload to JSON and encrypt it with AES-256-GCM.

        Args:
            key: Key from derive_key
            payload: Any JSON-serializable value

        Returns:
            Tuple of (ciphertext, nonce)
            Both needed for decryption
        """
        plaintext = encode_text(json.dumps(payload, ensure_ascii=False))

        # Must be unique per encryption under the same key
        nonce = os.urandom(EncryptionService.NONCE_LENGTH)
        ciphertext = key._cipher().encrypt(nonce, plaintext, None)

        return ciphertext, nonce

    @staticmethod
    def open(key: DerivedKey, ciphertext: bytes, nonce: bytes) -> Any:
        """
        Verify and decrypt a sealed payload.

        Raises:
            AuthenticationError: Wrong key, or ciphertext/nonce tampered with
            DecodeError: Authenticated plaintext is not UTF-8 JSON
        """
        if len(nonce) != EncryptionService.NONCE_LENGTH:
            raise AuthenticationError("Nonce has the wrong length")

        try:
            plaintext = key._cipher().decrypt(nonce, ciphertext, None)
        except InvalidTag as e:
            raise AuthenticationError("Ciphertext failed authentication") from e

        try:
            return json.loads(decode_text(plaintext))
        except json.JSONDecodeError as e:
            raise DecodeError(f"Decrypted payload is not valid JSON: {e}") from e
