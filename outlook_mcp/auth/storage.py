"""File-based token cache keyed by identity.

All records live in a single JSON object on disk::

    {"user@example.com": {"access_token": "...", "expires_at": "...", ...}}

The whole file is read on every access and rewritten atomically on every
write (temp file + rename), so there are no partial reads. There is no
cross-process locking: two processes sharing one cache file race with
last-write-wins semantics.

Security considerations:
- The cache directory is created with mode 0700 and the file with 0600
- When an encryption key is configured each record is sealed with
  AES-256-GCM before it is written
"""

from __future__ import annotations

import json
import logging
import os
import tempfile
from pathlib import Path
from typing import Any

from pydantic import ValidationError

from outlook_mcp.auth.models import TokenRecord
from outlook_mcp.utils.encryption import is_sealed, key_from_hex, seal, unseal
from outlook_mcp.utils.errors import TokenError

logger = logging.getLogger(__name__)


class TokenStore:
    """Durable per-identity token persistence.

    Reads never raise for a missing, corrupt, or invalid record; such a
    record is reported as absent, exactly like an identity that never
    authenticated. Only an unreadable cache file (permissions, I/O errors)
    raises :class:`TokenError`.

    Example:
        >>> store = TokenStore(Path("/tmp/tokens.json"))
        >>> store.put("user@example.com", record)
        >>> store.get("user@example.com").access_token
        'eyJ0eXAi...'
    """

    def __init__(self, path: Path, encryption_key: str | None = None) -> None:
        """Initialize the store.

        Args:
            path: Location of the JSON cache file. Its directory is created on
                the first write.
            encryption_key: Optional 64-character hex key. When set, records are
                sealed at rest.
        """
        self._path = Path(path)
        self._key = key_from_hex(encryption_key) if encryption_key else None
        logger.debug(
            "TokenStore using %s (encrypted=%s)", self._path, self._key is not None
        )

    @property
    def path(self) -> Path:
        return self._path

    # -------------------------------------------------------------------------
    # Whole-store access
    # -------------------------------------------------------------------------

    def _read_all(self) -> dict[str, Any]:
        try:
            raw = self._path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return {}
        except OSError as e:
            logger.error("Cannot read token cache %s: %s", self._path, e)
            raise TokenError(
                "Token cache file is not readable",
                details={"path": str(self._path), "error": str(e)},
            ) from e

        if not raw.strip():
            return {}
        try:
            data = json.loads(raw)
        except json.JSONDecodeError as e:
            logger.warning("Token cache %s is not valid JSON, ignoring it: %s", self._path, e)
            return {}
        if not isinstance(data, dict):
            logger.warning("Token cache %s is not a JSON object, ignoring it", self._path)
            return {}
        return data

    def _write_all(self, data: dict[str, Any]) -> None:
        directory = self._path.parent
        try:
            directory.mkdir(mode=0o700, parents=True, exist_ok=True)
            fd, tmp_name = tempfile.mkstemp(
                dir=directory, prefix=f".{self._path.name}.", suffix=".tmp"
            )
            try:
                with os.fdopen(fd, "w", encoding="utf-8") as handle:
                    json.dump(data, handle, indent=2)
                os.chmod(tmp_name, 0o600)
                os.replace(tmp_name, self._path)
            except BaseException:
                Path(tmp_name).unlink(missing_ok=True)
                raise
        except OSError as e:
            logger.error("Failed to write token cache %s: %s", self._path, e)
            raise TokenError(
                "Failed to write token cache",
                details={"path": str(self._path), "error": str(e)},
            ) from e

    # -------------------------------------------------------------------------
    # Record encoding
    # -------------------------------------------------------------------------

    def _encode(self, record: TokenRecord) -> dict[str, Any]:
        data = record.model_dump(mode="json")
        if self._key is not None:
            return seal(data, self._key)
        return data

    def _decode(self, user_id: str, value: Any) -> TokenRecord | None:
        try:
            if is_sealed(value):
                if self._key is None:
                    logger.warning(
                        "Token for %s is encrypted but no key is configured", user_id
                    )
                    return None
                value = unseal(value, self._key)
            return TokenRecord.model_validate(value)
        except (TokenError, ValidationError) as e:
            logger.warning("Ignoring unusable token record for %s: %s", user_id, e)
            return None

    # -------------------------------------------------------------------------
    # Public API
    # -------------------------------------------------------------------------

    def get(self, user_id: str) -> TokenRecord | None:
        """Return the record for ``user_id`` or None if absent or unusable.

        Raises:
            TokenError: If the cache file exists but cannot be read.
        """
        value = self._read_all().get(user_id)
        if value is None:
            logger.debug("No token found for %s", user_id)
            return None
        return self._decode(user_id, value)

    def put(self, user_id: str, record: TokenRecord) -> None:
        """Insert or replace the record for ``user_id``.

        Raises:
            TokenError: If the identity is empty, the record has no access
                token, or the cache cannot be written.
        """
        if not user_id:
            raise TokenError("User ID is required")
        if not record.access_token:
            raise TokenError(
                "Refusing to persist a token record without an access token",
                details={"user_id": user_id},
            )

        data = self._read_all()
        data[user_id] = self._encode(record)
        self._write_all(data)
        logger.info("Token saved for %s", user_id)

    def delete(self, user_id: str) -> bool:
        """Remove the record for ``user_id``.

        Returns:
            True if a record was removed, False if none existed.
        """
        data = self._read_all()
        if user_id not in data:
            logger.debug("No token to delete for %s", user_id)
            return False
        del data[user_id]
        self._write_all(data)
        logger.info("Token deleted for %s", user_id)
        return True

    def exists(self, user_id: str) -> bool:
        """True if a usable record is cached for ``user_id``."""
        return self.get(user_id) is not None

    def list_identities(self) -> set[str]:
        """Return every identity with a usable cached record."""
        data = self._read_all()
        return {
            user_id
            for user_id, value in data.items()
            if self._decode(user_id, value) is not None
        }


__all__ = [
    "TokenStore",
]
