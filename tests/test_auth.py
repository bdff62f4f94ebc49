"""Tests for sender authentication by API key."""

import re

import pytest

from timecapsule import auth
from timecapsule.auth import (
    AuthError,
    Sender,
    authenticate,
    check_sender_name,
    issue_key,
    key_lookup,
)
from timecapsule.db import find_key_by_lookup, list_api_keys, revoke_key


class TestKeyShape:
    def test_lookup_of_well_formed_key(self):
        assert key_lookup("tcap_a1b2c3d4_" + "e5" * 16) == "a1b2c3d4"

    @pytest.mark.parametrize(
        "raw_key",
        [
            "",
            "not_a_valid_key",
            "tcap_live_a1b2c3d4e5f6a1b2c3d4e5f6a1b2c3d4",
            "tcap_A1B2C3D4_" + "e5" * 16,
            "tcap_a1b2c3d4_" + "e5" * 15,
            "tcap_a1b2c3d4_" + "e5" * 16 + "x",
        ],
    )
    def test_malformed_keys_have_no_lookup(self, raw_key):
        assert key_lookup(raw_key) is None


class TestSenderNames:
    @pytest.mark.parametrize("name", ["alice", "bob.smith", "ops@example.org", "a" * 64, "x-1_2"])
    def test_accepted(self, name):
        assert check_sender_name(name) == name

    @pytest.mark.parametrize("name", ["", "a" * 65, "with space", "-leading", "emoji☃"])
    def test_rejected(self, name):
        with pytest.raises(ValueError, match="Invalid sender name"):
            check_sender_name(name)


class TestIssueKey:
    async def test_key_layout_and_storage(self, db):
        raw_key = await issue_key(db, name="alice", rate_limit=5)

        assert re.fullmatch(r"tcap_[0-9a-f]{8}_[0-9a-f]{32}", raw_key)
        keys = await list_api_keys(db)
        assert len(keys) == 1
        assert keys[0]["name"] == "alice"
        assert keys[0]["key_lookup"] == key_lookup(raw_key)
        assert keys[0]["rate_limit"] == 5

    async def test_only_hash_is_stored(self, db):
        raw_key = await issue_key(db, name="alice")
        record = await find_key_by_lookup(db, key_lookup(raw_key))

        assert record["key_hash"] != raw_key
        assert record["key_hash"].startswith("$argon2")

    async def test_keys_are_unique(self, db):
        keys = {await issue_key(db, name="alice") for _ in range(5)}
        assert len(keys) == 5

    async def test_bad_name_stores_nothing(self, db):
        with pytest.raises(ValueError):
            await issue_key(db, name="no spaces allowed")
        assert await list_api_keys(db) == []


class TestAuthenticate:
    async def test_resolves_sender(self, db):
        raw_key = await issue_key(db, name="alice")
        sender = await authenticate(db, raw_key)

        assert isinstance(sender, Sender)
        assert sender.name == "alice"
        assert sender.key_lookup == key_lookup(raw_key)

    async def test_bearer_scheme(self, db):
        raw_key = await issue_key(db, name="alice")
        sender = await authenticate(db, f"Bearer {raw_key}")
        assert sender.name == "alice"

    async def test_two_keys_one_sender(self, db):
        first = await issue_key(db, name="alice")
        second = await issue_key(db, name="alice")

        a = await authenticate(db, first)
        b = await authenticate(db, second)
        assert a.name == b.name == "alice"
        assert a.key_id != b.key_id

    async def test_updates_last_used(self, db):
        raw_key = await issue_key(db, name="alice")
        lookup = key_lookup(raw_key)
        assert (await find_key_by_lookup(db, lookup))["last_used_at"] is None

        await authenticate(db, raw_key)
        assert (await find_key_by_lookup(db, lookup))["last_used_at"] is not None

    async def test_malformed_key(self, db):
        with pytest.raises(AuthError, match="Unauthorized") as exc_info:
            await authenticate(db, "not_a_valid_key")
        assert exc_info.value.rate_limited is False

    async def test_unknown_lookup(self, db):
        with pytest.raises(AuthError, match="Unauthorized"):
            await authenticate(db, "tcap_00000000_" + "0" * 32)

    async def test_wrong_secret(self, db):
        raw_key = await issue_key(db, name="alice")
        bad_key = raw_key[:-1] + ("0" if raw_key[-1] != "0" else "1")
        with pytest.raises(AuthError, match="Unauthorized"):
            await authenticate(db, bad_key)

    async def test_revoked_key(self, db):
        raw_key = await issue_key(db, name="alice")
        assert await revoke_key(db, key_lookup(raw_key)) is True
        with pytest.raises(AuthError):
            await authenticate(db, raw_key)

    async def test_every_failure_costs_one_verify(self, db, monkeypatch):
        calls = []
        original = auth._hash_matches

        def counting(raw_key, key_hash):
            calls.append(key_hash)
            return original(raw_key, key_hash)

        monkeypatch.setattr(auth, "_hash_matches", counting)
        for attempt in ("garbage", "tcap_00000000_" + "0" * 32):
            with pytest.raises(AuthError):
                await authenticate(db, attempt)

        assert len(calls) == 2


class TestRateLimiting:
    async def test_rate_limit_enforced(self, db):
        raw_key = await issue_key(db, name="limited", rate_limit=3)

        for _ in range(3):
            await authenticate(db, raw_key)

        with pytest.raises(AuthError, match="Rate limit") as exc_info:
            await authenticate(db, raw_key)
        assert exc_info.value.rate_limited is True

    async def test_different_keys_independent_limits(self, db):
        key1 = await issue_key(db, name="key1", rate_limit=2)
        key2 = await issue_key(db, name="key2", rate_limit=2)

        await authenticate(db, key1)
        await authenticate(db, key1)

        sender = await authenticate(db, key2)
        assert sender.name == "key2"
