from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, List, Optional

import httpx

from shared.config.stream import ApiSettings
from shared.logging.logger import get_logger

log = get_logger("rooms.client")


class RoomsApiError(Exception):
    """Raised when a rooms API call fails or returns an unsuccessful envelope."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


@dataclass(frozen=True)
class Room:
    room_id: str
    name: str
    description: str = ""
    league: str = ""
    kickoff_time: str = ""
    stadium: str = ""
    created_at: str = ""
    active_users: int = 0

    @classmethod
    def from_payload(cls, payload: Dict[str, Any]) -> "Room":
        if not isinstance(payload, dict) or not payload.get("id"):
            raise RoomsApiError("Room entry missing id")

        try:
            active_users = int(payload.get("active_users") or 0)
        except (TypeError, ValueError):
            active_users = 0

        return cls(
            room_id=str(payload["id"]),
            name=str(payload.get("name") or ""),
            description=str(payload.get("description") or ""),
            league=str(payload.get("league") or ""),
            kickoff_time=str(payload.get("kickoff_time") or ""),
            stadium=str(payload.get("stadium") or ""),
            created_at=str(payload.get("created_at") or ""),
            active_users=active_users,
        )


@dataclass(frozen=True)
class JoinedRoom:
    room_id: str
    user_id: str
    user_name: str


@dataclass(frozen=True)
class SentMessage:
    message_id: str
    room_id: str


class RoomsClient:
    """
    Request/response client for the rooms API.

    Every endpoint answers with {status, success, message, data}; a
    non-2xx status or success=false raises RoomsApiError.

    Sent messages are not rendered from the send response. They reach
    the UI through the room stream like everyone else's.
    """

    def __init__(
        self,
        api: ApiSettings,
        *,
        client: Optional[httpx.AsyncClient] = None,
    ):
        self.api = api
        self._client = client or httpx.AsyncClient(
            headers={
                "Accept": "application/json",
                "Content-Type": "application/json",
            },
            timeout=api.timeout_seconds,
            follow_redirects=True,
        )
        self._client_owned = client is None

    # ------------------------------------------------------------
    # Endpoints
    # ------------------------------------------------------------

    async def list_rooms(self) -> List[Room]:
        data = await self._request("GET", self.api.rooms_url())

        rooms = data.get("rooms") if isinstance(data, dict) else None
        if not isinstance(rooms, list):
            raise RoomsApiError("Rooms response missing 'rooms' array")

        out: List[Room] = []
        for entry in rooms:
            try:
                out.append(Room.from_payload(entry))
            except RoomsApiError:
                log.warning("Skipping invalid room entry")
        return out

    async def join_room(self, room_id: str, user_id: str, user_name: str) -> JoinedRoom:
        data = await self._request(
            "POST",
            self.api.join_url(room_id),
            json={"user_id": user_id, "user_name": user_name},
        )
        log.info(f"[{room_id}] Joined room as {user_name}")
        return JoinedRoom(
            room_id=str(data.get("room_id") or room_id),
            user_id=str(data.get("user_id") or user_id),
            user_name=str(data.get("user_name") or user_name),
        )

    async def send_message(
        self,
        room_id: str,
        user_id: str,
        user_name: str,
        body: str,
    ) -> SentMessage:
        if not body.strip():
            raise ValueError("message body is required")

        data = await self._request(
            "POST",
            self.api.messages_url(room_id),
            json={"user_id": user_id, "user_name": user_name, "message": body},
        )

        message_id = data.get("message_id")
        if not message_id:
            raise RoomsApiError("Send response missing message_id")

        log.debug(f"[{room_id}] Message accepted (id={message_id})")
        return SentMessage(message_id=str(message_id), room_id=str(data.get("room_id") or room_id))

    # ------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------

    async def _request(self, method: str, url: str, **kwargs: Any) -> Dict[str, Any]:
        try:
            r = await self._client.request(method, url, **kwargs)
        except httpx.HTTPError as e:
            log.error(f"Rooms API {method} {url} failed: {e}")
            raise RoomsApiError(f"{method} {url} failed: {e}") from e

        try:
            envelope = r.json()
        except ValueError:
            envelope = None

        if not isinstance(envelope, dict):
            log.error(
                f"Rooms API invalid response [{r.status_code}] "
                f"(url={url}, content-type={r.headers.get('content-type')})"
            )
            raise RoomsApiError(
                f"{method} {url} returned a non-JSON response", status_code=r.status_code
            )

        if r.status_code >= 400 or not envelope.get("success", False):
            message = str(envelope.get("message") or f"HTTP {r.status_code}")
            log.error(f"Rooms API {method} {url} rejected [{r.status_code}]: {message}")
            raise RoomsApiError(message, status_code=r.status_code)

        data = envelope.get("data")
        return data if isinstance(data, dict) else {}

    async def aclose(self) -> None:
        if self._client_owned:
            await self._client.aclose()


__all__ = ["JoinedRoom", "Room", "RoomsApiError", "RoomsClient", "SentMessage"]
