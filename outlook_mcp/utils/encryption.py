"""AES-256-GCM sealing of token records at rest.

Only used when ``TOKEN_ENCRYPTION_KEY`` is configured. A sealed record is a
small JSON-safe envelope ``{"iv": <hex>, "ciphertext": <hex>}`` that replaces
the plaintext record inside the token cache file.
"""

from __future__ import annotations

import json
import os

from cryptography.hazmat.primitives.ciphers.aead import AESGCM

from outlook_mcp.utils.errors import ConfigurationError, TokenError

KEY_SIZE_BYTES = 32
IV_SIZE_BYTES = 12  # 96-bit nonce recommended for GCM
HEX_KEY_LENGTH = KEY_SIZE_BYTES * 2


def key_from_hex(hex_key: str) -> bytes:
    """Decode a 64-character hex string into a 256-bit key.

    Raises:
        ConfigurationError: If the string has the wrong length or is not hex.
    """
    hex_key = hex_key.strip()
    if len(hex_key) != HEX_KEY_LENGTH:
        raise ConfigurationError(
            f"TOKEN_ENCRYPTION_KEY must be {HEX_KEY_LENGTH} hex characters",
            details={"actual_length": len(hex_key)},
        )
    try:
        return bytes.fromhex(hex_key)
    except ValueError as e:
        raise ConfigurationError(
            "TOKEN_ENCRYPTION_KEY contains non-hexadecimal characters"
        ) from e


def seal(data: dict[str, object], key: bytes) -> dict[str, str]:
    """Serialize ``data`` as JSON and encrypt it with a fresh IV."""
    iv = os.urandom(IV_SIZE_BYTES)
    try:
        ciphertext = AESGCM(key).encrypt(iv, json.dumps(data).encode("utf-8"), None)
    except Exception as e:
        raise TokenError(
            "Failed to encrypt token record",
            details={"error_type": type(e).__name__},
        ) from e
    return {"iv": iv.hex(), "ciphertext": ciphertext.hex()}


def unseal(envelope: dict[str, str], key: bytes) -> dict[str, object]:
    """Reverse :func:`seal`.

    Raises:
        TokenError: If the envelope is malformed, was tampered with, or was
            sealed under a different key.
    """
    try:
        iv = bytes.fromhex(envelope["iv"])
        ciphertext = bytes.fromhex(envelope["ciphertext"])
        plaintext = AESGCM(key).decrypt(iv, ciphertext, None)
        data: dict[str, object] = json.loads(plaintext.decode("utf-8"))
        return data
    except (KeyError, TypeError, ValueError) as e:
        raise TokenError(
            "Sealed token record is malformed",
            details={"error_type": type(e).__name__},
        ) from e
    except Exception as e:
        raise TokenError(
            "Failed to decrypt token record - wrong key or corrupted data",
            details={"error_type": type(e).__name__},
        ) from e


def is_sealed(value: object) -> bool:
    """Return True if ``value`` looks like an envelope produced by :func:`seal`."""
    return isinstance(value, dict) and set(value) == {"iv", "ciphertext"}


__all__ = [
    "key_from_hex",
    "seal",
    "unseal",
    "is_sealed",
]
