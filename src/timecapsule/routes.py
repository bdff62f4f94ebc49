"""Capsule API routes."""

from fastapi import APIRouter, HTTPException, Request
from fastapi.responses import JSONResponse

from .auth import AuthError, Sender, authenticate
from .capsule import (
    AlreadyClaimed,
    AlreadyInitialized,
    CapsuleError,
    CapsuleInfo,
    InvalidPassword,
    NotFound,
    StillLocked,
)
from .models import CapsuleCreated, CapsuleIn, RetrieveIn, RetrieveOut, encode_payload
from .service import CapsuleService

ERROR_STATUS = {
    NotFound: 404,
    StillLocked: 423,
    InvalidPassword: 403,
    AlreadyClaimed: 409,
    AlreadyInitialized: 409,
}


def error_status(error: CapsuleError) -> int:
    """HTTP status for a capsule error. Input errors map to 422."""
    return ERROR_STATUS.get(type(error), 422)


async def capsule_error_handler(request: Request, exc: CapsuleError) -> JSONResponse:
    return JSONResponse(
        status_code=error_status(exc),
        content={"detail": str(exc), "code": exc.code},
    )


def create_router() -> APIRouter:
    """Create the capsule API router."""
    router = APIRouter()

    def _service(request: Request) -> CapsuleService:
        state = request.app.state
        return CapsuleService(state.db, state.settings, state.clock)

    async def _sender(request: Request) -> Sender:
        header = request.headers.get("Authorization")
        if not header:
            raise HTTPException(401, "Unauthorized")
        try:
            return await authenticate(request.app.state.db, header)
        except AuthError as e:
            raise HTTPException(429 if e.rate_limited else 401, str(e)) from e

    @router.get("/health")
    async def health():
        """Health check (no auth required)."""
        return {"status": "ok", "service": "timecapsule"}

    @router.post("/capsules", status_code=201)
    async def create(request: Request, body: CapsuleIn) -> CapsuleCreated:
        """Create a capsule. The API key's name becomes the sender."""
        sender = await _sender(request)
        capsule_id, capsule = await _service(request).create(
            sender=sender.name,
            encrypted_message=body.encrypted_message,
            unlock_timestamp=body.unlock_timestamp,
            recipient_email_hash=body.recipient_email_hash,
            password_hash=body.password_hash,
            password_hint=body.password_hint,
            message_title=body.message_title,
            capsule_id=body.capsule_id,
        )
        return CapsuleCreated(
            capsule_id=capsule_id,
            created_at=capsule.created_at,
            unlock_timestamp=capsule.unlock_timestamp,
        )

    @router.get("/capsules")
    async def list_mine(request: Request):
        """List the caller's capsules."""
        sender = await _sender(request)
        capsules = await _service(request).list_for_sender(sender.name)
        return {"capsules": capsules, "count": len(capsules)}

    @router.get("/capsules/{capsule_id}")
    async def info(request: Request, capsule_id: str) -> CapsuleInfo:
        """Public capsule status."""
        return await _service(request).info(capsule_id)

    @router.post("/capsules/{capsule_id}/retrieve")
    async def retrieve(request: Request, capsule_id: str, body: RetrieveIn) -> RetrieveOut:
        """Release the ciphertext after unlock to a caller with the right hash."""
        payload = await _service(request).retrieve(capsule_id, body.password_hash)
        return RetrieveOut(capsule_id=capsule_id, encrypted_message=encode_payload(payload))

    @router.get("/capsules/{capsule_id}/events")
    async def events(request: Request, capsule_id: str):
        """Lifecycle events for a capsule."""
        events = await _service(request).events(capsule_id)
        return {"events": events, "count": len(events)}

    return router
