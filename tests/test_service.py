"""Tests for the capsule service against a real database."""

import asyncio

import pytest

from timecapsule.capsule.errors import (
    AlreadyClaimed,
    AlreadyInitialized,
    EmptyMessage,
    FieldTooLong,
    InvalidPassword,
    MalformedHash,
    NotFound,
    StillLocked,
    UnlockTimeNotInFuture,
)
from timecapsule.config import Settings
from timecapsule.db import get_capsule
from timecapsule.service import CapsuleService

from .conftest import EMAIL_HASH, MESSAGE, NOW, PASSWORD_HASH, WRONG_HASH


async def _create(service: CapsuleService, **overrides):
    params = {
        "sender": "alice",
        "encrypted_message": MESSAGE,
        "unlock_timestamp": NOW + 3600,
        "recipient_email_hash": EMAIL_HASH,
        "password_hash": PASSWORD_HASH,
        "password_hint": "Votre couleur préférée",
        "message_title": "Ma première capsule de test",
    }
    params.update(overrides)
    return await service.create(**params)


class TestCreate:
    async def test_create_persists(self, service, db):
        capsule_id, capsule = await _create(service)

        stored = await get_capsule(db, capsule_id)
        assert stored == capsule
        assert stored.created_at == NOW
        assert stored.sender == "alice"

    async def test_create_with_chosen_address(self, service):
        capsule_id, _ = await _create(service, capsule_id="my-capsule")
        assert capsule_id == "my-capsule"

    async def test_chosen_address_already_used(self, service, db):
        await _create(service, capsule_id="my-capsule")

        with pytest.raises(AlreadyInitialized):
            await _create(service, capsule_id="my-capsule", message_title="Second")

        assert (await get_capsule(db, "my-capsule")).message_title == "Ma première capsule de test"
        assert [e.kind for e in await service.events("my-capsule")] == ["created"]

    @pytest.mark.parametrize("unlock", [NOW, NOW - 100])
    async def test_rejected_creation_persists_nothing(self, service, db, unlock):
        with pytest.raises(UnlockTimeNotInFuture):
            await _create(service, capsule_id="never", unlock_timestamp=unlock)

        assert await get_capsule(db, "never") is None

    async def test_empty_message(self, service):
        with pytest.raises(EmptyMessage):
            await _create(service, encrypted_message=b"")

    async def test_limits_come_from_settings(self, db, clock, tmp_path):
        settings = Settings(db_path=tmp_path / "x.db", max_title_length=4)
        service = CapsuleService(db, settings, clock)
        with pytest.raises(FieldTooLong, match="Title is too long"):
            await _create(service, message_title="Too long")

    async def test_created_event(self, service):
        capsule_id, _ = await _create(service)

        events = await service.events(capsule_id)
        assert len(events) == 1
        assert events[0].kind == "created"
        assert events[0].actor == "alice"
        assert events[0].timestamp == NOW


class TestInfo:
    async def test_info(self, service):
        capsule_id, _ = await _create(service)

        info = await service.info(capsule_id)
        assert info.message_title == "Ma première capsule de test"
        assert info.is_claimed is False

    async def test_info_not_found(self, service):
        with pytest.raises(NotFound):
            await service.info("missing")

    async def test_events_not_found(self, service):
        with pytest.raises(NotFound):
            await service.events("missing")


class TestRetrieve:
    async def test_end_to_end(self, service, clock):
        capsule_id, _ = await _create(service)

        # Immediately: locked, whatever hash is presented
        for presented in (PASSWORD_HASH, WRONG_HASH, "junk"):
            with pytest.raises(StillLocked):
                await service.retrieve(capsule_id, presented)

        clock.advance(3601)

        with pytest.raises(InvalidPassword):
            await service.retrieve(capsule_id, WRONG_HASH)
        assert (await service.info(capsule_id)).is_claimed is False

        assert await service.retrieve(capsule_id, PASSWORD_HASH) == MESSAGE
        assert (await service.info(capsule_id)).is_claimed is True

    async def test_malformed_hash_after_unlock(self, service, clock):
        capsule_id, _ = await _create(service)
        clock.advance(3600)

        with pytest.raises(MalformedHash):
            await service.retrieve(capsule_id, "b" * 10)

    async def test_repeat_retrieval(self, service, clock):
        capsule_id, _ = await _create(service)
        clock.advance(3600)

        assert await service.retrieve(capsule_id, PASSWORD_HASH) == MESSAGE
        assert await service.retrieve(capsule_id, PASSWORD_HASH) == MESSAGE
        assert (await service.info(capsule_id)).is_claimed is True

        # Only the first retrieval records a claim
        kinds = [e.kind for e in await service.events(capsule_id)]
        assert kinds == ["created", "claimed"]

    async def test_single_use_policy(self, db, clock, tmp_path):
        settings = Settings(db_path=tmp_path / "x.db", claim_policy="single_use")
        service = CapsuleService(db, settings, clock)
        capsule_id, _ = await _create(service)
        clock.advance(3600)

        assert await service.retrieve(capsule_id, PASSWORD_HASH) == MESSAGE
        with pytest.raises(AlreadyClaimed):
            await service.retrieve(capsule_id, PASSWORD_HASH)

    async def test_concurrent_retrievals_single_use(self, db, clock, tmp_path):
        settings = Settings(db_path=tmp_path / "x.db", claim_policy="single_use")
        service = CapsuleService(db, settings, clock)
        capsule_id, _ = await _create(service)
        clock.advance(3600)

        results = await asyncio.gather(
            service.retrieve(capsule_id, PASSWORD_HASH),
            service.retrieve(capsule_id, PASSWORD_HASH),
            return_exceptions=True,
        )

        assert results.count(MESSAGE) == 1
        refused = [r for r in results if isinstance(r, BaseException)]
        assert len(refused) == 1
        assert isinstance(refused[0], AlreadyClaimed)
        kinds = [e.kind for e in await service.events(capsule_id)]
        assert kinds == ["created", "claimed"]

    async def test_concurrent_retrievals_repeatable(self, service, clock):
        capsule_id, _ = await _create(service)
        clock.advance(3600)

        results = await asyncio.gather(
            *(service.retrieve(capsule_id, PASSWORD_HASH) for _ in range(3))
        )

        assert results == [MESSAGE, MESSAGE, MESSAGE]
        kinds = [e.kind for e in await service.events(capsule_id)]
        assert kinds == ["created", "claimed"]

    async def test_retrieve_not_found(self, service):
        with pytest.raises(NotFound):
            await service.retrieve("missing", PASSWORD_HASH)

    async def test_clock_read_once_per_operation(self, db, settings, clock):
        calls = []

        class CountingClock:
            def now(self):
                calls.append(1)
                return clock.now()

        service = CapsuleService(db, settings, CountingClock())
        capsule_id, _ = await _create(service)
        assert len(calls) == 1

        with pytest.raises(StillLocked):
            await service.retrieve(capsule_id, PASSWORD_HASH)
        assert len(calls) == 2


class TestListForSender:
    async def test_lists_only_own_capsules(self, service):
        await _create(service, capsule_id="a1")
        await _create(service, capsule_id="a2", unlock_timestamp=NOW + 10)
        await _create(service, capsule_id="b1", sender="bob")

        listed = await service.list_for_sender("alice")
        assert [c.capsule_id for c in listed] == ["a2", "a1"]
