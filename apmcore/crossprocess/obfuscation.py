"""Reversible key-based header obfuscation (XOR with a repeating key, base64)."""

from __future__ import annotations

import base64
import binascii

from ..errors import ObfuscationError


def obfuscate(plaintext: str, key: str) -> str:
    """Obfuscate ``plaintext`` with the connection's encoding key."""

    return base64.standard_b64encode(_xor(plaintext.encode("utf-8"), key)).decode("ascii")


def deobfuscate(encoded: str, key: str) -> str:
    """Reverse :func:`obfuscate`; raises ``ObfuscationError`` on bad input."""

    if not encoded:
        raise ObfuscationError("Empty value cannot be deobfuscated")
    try:
        raw = base64.b64decode(encoded.encode("ascii"), validate=True)
    except (binascii.Error, UnicodeEncodeError, ValueError) as exc:
        raise ObfuscationError(f"Value is not valid base64: {exc}") from exc
    try:
        return _xor(raw, key).decode("utf-8")
    except UnicodeDecodeError as exc:
        raise ObfuscationError("Deobfuscated value is not valid UTF-8") from exc


def _xor(data: bytes, key: str) -> bytes:
    key_bytes = key.encode("utf-8")
    if not key_bytes:
        raise ObfuscationError("Encoding key is empty")
    size = len(key_bytes)
    return bytes(byte ^ key_bytes[index % size] for index, byte in enumerate(data))


__all__ = ["deobfuscate", "obfuscate"]
