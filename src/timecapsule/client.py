"""HTTP client for a remote capsule server."""

import base64
import logging

import httpx

from .capsule import CapsuleInfo, UserCapsuleInfo
from .capsule.errors import ERRORS_BY_CODE
from .models import encode_payload

logger = logging.getLogger(__name__)


class CapsuleClient:
    """Talks to the capsule API and maps error bodies back to capsule errors."""

    def __init__(
        self,
        base_url: str,
        api_key: str | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
        timeout: float = 30,
    ):
        self.base_url = base_url.rstrip("/")
        self.headers = {"Content-Type": "application/json"}
        if api_key:
            self.headers["Authorization"] = f"Bearer {api_key}"
        self.transport = transport
        self.timeout = timeout

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            base_url=self.base_url,
            headers=self.headers,
            transport=self.transport,
            timeout=self.timeout,
        )

    @staticmethod
    def _raise_for_error(resp: httpx.Response) -> None:
        """Raise the capsule error named in the body, else the HTTP error."""
        if resp.is_success:
            return
        try:
            body = resp.json()
        except ValueError:
            body = {}
        error_cls = ERRORS_BY_CODE.get(body.get("code")) if isinstance(body, dict) else None
        if error_cls is not None:
            logger.debug(f"[CLIENT] {resp.request.url} rejected: {error_cls.code}")
            raise error_cls(body.get("detail"))
        resp.raise_for_status()

    async def health(self) -> dict:
        """GET /health."""
        async with self._client() as client:
            resp = await client.get("/health")
            resp.raise_for_status()
            return resp.json()

    async def create(
        self,
        encrypted_message: bytes,
        unlock_timestamp: int,
        recipient_email_hash: str,
        password_hash: str,
        password_hint: str = "",
        message_title: str = "",
        capsule_id: str | None = None,
    ) -> str:
        """POST /capsules. Returns the new capsule id."""
        payload = {
            "encrypted_message": encode_payload(encrypted_message),
            "unlock_timestamp": unlock_timestamp,
            "recipient_email_hash": recipient_email_hash,
            "password_hash": password_hash,
            "password_hint": password_hint,
            "message_title": message_title,
        }
        if capsule_id is not None:
            payload["capsule_id"] = capsule_id

        async with self._client() as client:
            resp = await client.post("/capsules", json=payload)
            self._raise_for_error(resp)
            return resp.json()["capsule_id"]

    async def info(self, capsule_id: str) -> CapsuleInfo:
        """GET /capsules/{id}."""
        async with self._client() as client:
            resp = await client.get(f"/capsules/{capsule_id}")
            self._raise_for_error(resp)
            return CapsuleInfo(**resp.json())

    async def retrieve(self, capsule_id: str, password_hash: str) -> bytes:
        """POST /capsules/{id}/retrieve. Returns the ciphertext."""
        async with self._client() as client:
            resp = await client.post(
                f"/capsules/{capsule_id}/retrieve",
                json={"password_hash": password_hash},
            )
            self._raise_for_error(resp)
            return base64.b64decode(resp.json()["encrypted_message"])

    async def list_mine(self) -> list[UserCapsuleInfo]:
        """GET /capsules for the client's API key."""
        async with self._client() as client:
            resp = await client.get("/capsules")
            self._raise_for_error(resp)
            return [UserCapsuleInfo(**c) for c in resp.json().get("capsules", [])]

