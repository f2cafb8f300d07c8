# Vault - Codec
#
# Bytes <-> text helpers used by the record format and the envelope.
# Binary fields are stored as standard base64 text; text is UTF-8.

import base64
import binascii

from .exceptions import DecodeError


def encode_binary(data: bytes) -> str:
    """Encode binary data as base64 text for storage."""
    return base64.b64encode(data).decode('ascii')


def decode_binary(data: str) -> bytes:
    """Decode base64 text produced by encode_binary."""
    if not isinstance(data, str):
        raise DecodeError(f"Expected base64 text, got {type(data).__name__}")
    try:
        return base64.b64decode(data.encode('ascii'), validate=True)
    except (binascii.Error, UnicodeEncodeError) as e:
        raise DecodeError(f"Invalid base64 data: {e}") from e


def encode_text(text: str) -> bytes:
    return text.encode('utf-8')


def encode_password(password: str) -> bytes:
    """UTF-8 encode a password, turning lone surrogates into U+FFFD.

    Browsers' TextEncoder does the same, so any string derives a key.
    """
    text = password.encode('utf-16-le', 'surrogatepass').decode('utf-16-le', 'replace')
    return text.encode('utf-8')


def decode_text(data: bytes) -> str:
    """Decode UTF-8 bytes, raising DecodeError on invalid sequences."""
    try:
        return data.decode('utf-8')
    except UnicodeDecodeError as e:
        raise DecodeError(f"Invalid UTF-8 data: {e}") from e
