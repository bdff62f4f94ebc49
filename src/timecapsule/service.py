"""Capsule service: binds the pure capsule core to storage and the clock."""

import logging

import aiosqlite

from . import db as db_ops
from .capsule import (
    AlreadyClaimed,
    Capsule,
    CapsuleError,
    CapsuleEvent,
    CapsuleInfo,
    NotFound,
    UserCapsuleInfo,
    create_capsule,
    get_capsule_info,
    retrieve_message,
)
from .clock import Clock, SystemClock
from .config import Settings

logger = logging.getLogger(__name__)


class CapsuleService:
    """Runs capsule operations against a database connection.

    Each operation reads the clock once on entry and uses that value for
    every comparison it makes.
    """

    def __init__(self, db: aiosqlite.Connection, settings: Settings, clock: Clock | None = None):
        self.db = db
        self.settings = settings
        self.clock = clock or SystemClock()

    async def create(
        self,
        sender: str,
        encrypted_message: bytes,
        unlock_timestamp: int,
        recipient_email_hash: str,
        password_hash: str,
        password_hint: str = "",
        message_title: str = "",
        capsule_id: str | None = None,
    ) -> tuple[str, Capsule]:
        """Validate and persist a new capsule.

        If ``capsule_id`` is given it must be a fresh address; otherwise one
        is allocated.

        Returns:
            Tuple of (capsule_id, capsule)
        """
        now = self.clock.now()
        slot_initialized = False
        if capsule_id is None:
            capsule_id = db_ops.allocate_capsule_id()
        else:
            slot_initialized = await db_ops.capsule_exists(self.db, capsule_id)

        try:
            capsule = create_capsule(
                encrypted_message=encrypted_message,
                unlock_timestamp=unlock_timestamp,
                recipient_email_hash=recipient_email_hash,
                password_hash=password_hash,
                password_hint=password_hint,
                message_title=message_title,
                sender=sender,
                now=now,
                slot_initialized=slot_initialized,
                limits=self.settings.field_limits,
            )
            await db_ops.insert_capsule(self.db, capsule_id, capsule)
        except CapsuleError as e:
            logger.info(f"[CAPSULE] Rejected creation by '{sender}': {e.code}")
            raise

        logger.info(
            f"[CAPSULE] Created {capsule_id} by '{sender}' "
            f"(unlocks at {unlock_timestamp}, {len(encrypted_message)} bytes)"
        )
        return capsule_id, capsule

    async def _load(self, capsule_id: str) -> Capsule:
        capsule = await db_ops.get_capsule(self.db, capsule_id)
        if capsule is None:
            raise NotFound(f"Time capsule {capsule_id} not found")
        return capsule

    async def info(self, capsule_id: str) -> CapsuleInfo:
        """Public status of a capsule."""
        return get_capsule_info(await self._load(capsule_id))

    async def retrieve(self, capsule_id: str, password_hash: str) -> bytes:
        """Release a capsule's payload if the gate allows it.

        The claim flag is written only after every check has passed, and
        only by the first caller to get there. Concurrent retrievals that
        both read an unclaimed record record one ``claimed`` event; under
        the single-use policy the slower one gets AlreadyClaimed.
        """
        now = self.clock.now()
        capsule = await self._load(capsule_id)

        try:
            payload = retrieve_message(
                capsule,
                password_hash,
                now,
                single_use=self.settings.single_use,
            )
        except CapsuleError as e:
            logger.info(f"[GATE] Refused retrieval of {capsule_id}: {e.code}")
            raise

        if await db_ops.claim_capsule(self.db, capsule_id, now):
            logger.info(f"[GATE] Capsule {capsule_id} claimed")
        elif self.settings.single_use:
            logger.info(f"[GATE] Refused retrieval of {capsule_id}: {AlreadyClaimed.code}")
            raise AlreadyClaimed()
        else:
            logger.debug(f"[GATE] Capsule {capsule_id} retrieved again")

        return payload

    async def list_for_sender(self, sender: str) -> list[UserCapsuleInfo]:
        """All capsules created by a sender."""
        return await db_ops.list_capsules_by_sender(self.db, sender)

    async def events(self, capsule_id: str) -> list[CapsuleEvent]:
        """Lifecycle events for a capsule."""
        await self._load(capsule_id)
        return await db_ops.list_events(self.db, capsule_id)
