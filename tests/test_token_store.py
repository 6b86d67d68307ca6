"""Tests for the file-based token store."""

from __future__ import annotations

import json
import stat
from collections.abc import Callable
from pathlib import Path

import pytest

from outlook_mcp.auth.models import TokenRecord
from outlook_mcp.auth.storage import TokenStore
from outlook_mcp.utils.errors import TokenError

HEX_KEY = "0f" * 32


class TestTokenStore:
    """Tests for plaintext persistence."""

    def test_get_missing_file_returns_none(self, token_store: TokenStore) -> None:
        assert token_store.get("user@example.com") is None
        assert token_store.list_identities() == set()

    def test_put_then_get(
        self, token_store: TokenStore, make_record: Callable[..., TokenRecord]
    ) -> None:
        record = make_record(access_token="abc")
        token_store.put("user@example.com", record)

        loaded = token_store.get("user@example.com")
        assert loaded == record
        assert token_store.exists("user@example.com")

    def test_put_replaces_existing_record(
        self, token_store: TokenStore, make_record: Callable[..., TokenRecord]
    ) -> None:
        token_store.put("user@example.com", make_record(access_token="old"))
        token_store.put("user@example.com", make_record(access_token="new"))

        assert token_store.get("user@example.com").access_token == "new"  # type: ignore[union-attr]

    def test_records_are_keyed_by_identity(
        self, token_store: TokenStore, make_record: Callable[..., TokenRecord]
    ) -> None:
        token_store.put("a@example.com", make_record(access_token="a"))
        token_store.put("b@example.com", make_record(access_token="b"))

        assert token_store.list_identities() == {"a@example.com", "b@example.com"}
        assert token_store.get("a@example.com").access_token == "a"  # type: ignore[union-attr]

    def test_file_is_owner_only(
        self, token_store: TokenStore, make_record: Callable[..., TokenRecord]
    ) -> None:
        token_store.put("user@example.com", make_record())

        mode = stat.S_IMODE(token_store.path.stat().st_mode)
        assert mode == 0o600

    def test_no_temp_files_left_behind(
        self, token_store: TokenStore, make_record: Callable[..., TokenRecord]
    ) -> None:
        token_store.put("user@example.com", make_record())
        token_store.put("user@example.com", make_record())

        assert [p.name for p in token_store.path.parent.iterdir()] == ["tokens.json"]

    def test_delete(
        self, token_store: TokenStore, make_record: Callable[..., TokenRecord]
    ) -> None:
        token_store.put("user@example.com", make_record())

        assert token_store.delete("user@example.com") is True
        assert token_store.get("user@example.com") is None
        assert token_store.delete("user@example.com") is False

    def test_put_requires_identity(
        self, token_store: TokenStore, make_record: Callable[..., TokenRecord]
    ) -> None:
        with pytest.raises(TokenError):
            token_store.put("", make_record())


class TestTokenStoreCorruption:
    """Corrupt or invalid data reads as absent."""

    def test_corrupt_json_reads_as_empty(self, token_store: TokenStore) -> None:
        token_store.path.write_text("{not json")

        assert token_store.get("user@example.com") is None
        assert token_store.list_identities() == set()

    def test_non_object_json_reads_as_empty(self, token_store: TokenStore) -> None:
        token_store.path.write_text("[1, 2, 3]")
        assert token_store.list_identities() == set()

    def test_invalid_record_reads_as_absent(
        self, token_store: TokenStore, make_record: Callable[..., TokenRecord]
    ) -> None:
        token_store.put("good@example.com", make_record())
        data = json.loads(token_store.path.read_text())
        data["bad@example.com"] = {"access_token": "", "expires_at": "yesterday"}
        token_store.path.write_text(json.dumps(data))

        assert token_store.get("bad@example.com") is None
        assert token_store.list_identities() == {"good@example.com"}

    def test_corrupt_file_is_overwritten_on_put(
        self, token_store: TokenStore, make_record: Callable[..., TokenRecord]
    ) -> None:
        token_store.path.write_text("garbage")
        token_store.put("user@example.com", make_record())

        assert token_store.list_identities() == {"user@example.com"}

    def test_unreadable_cache_raises(self, tmp_path: Path) -> None:
        directory = tmp_path / "tokens.json"
        directory.mkdir()
        store = TokenStore(directory)

        with pytest.raises(TokenError, match="not readable"):
            store.get("user@example.com")


class TestEncryptedTokenStore:
    """Tests for records sealed at rest."""

    def test_sealed_records_round_trip(
        self, tmp_path: Path, make_record: Callable[..., TokenRecord]
    ) -> None:
        store = TokenStore(tmp_path / "tokens.json", encryption_key=HEX_KEY)
        record = make_record(access_token="very-secret")
        store.put("user@example.com", record)

        assert "very-secret" not in store.path.read_text()
        assert store.get("user@example.com") == record

    def test_sealed_record_without_key_reads_as_absent(
        self, tmp_path: Path, make_record: Callable[..., TokenRecord]
    ) -> None:
        path = tmp_path / "tokens.json"
        TokenStore(path, encryption_key=HEX_KEY).put("user@example.com", make_record())

        assert TokenStore(path).get("user@example.com") is None

    def test_sealed_record_with_other_key_reads_as_absent(
        self, tmp_path: Path, make_record: Callable[..., TokenRecord]
    ) -> None:
        path = tmp_path / "tokens.json"
        TokenStore(path, encryption_key=HEX_KEY).put("user@example.com", make_record())

        assert TokenStore(path, encryption_key="1e" * 32).list_identities() == set()
