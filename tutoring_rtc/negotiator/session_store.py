"""Client for the session metadata endpoints (``/api/session/{id}``)."""
from __future__ import annotations

import asyncio
from datetime import datetime
from typing import Any, Dict, Optional
from urllib.parse import quote

import aiohttp
from pydantic import BaseModel, ConfigDict, Field, ValidationError

from ..config import settings
from ..errors import SignalingError
from ..events import SessionRole, SessionStatus
from ..logging_config import get_logger

logger = get_logger(__name__)


class SessionInfo(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    id: str
    status: SessionStatus
    start_time: datetime = Field(alias="startTime")
    duration: Optional[int] = None
    notes: str = ""
    volunteer_name: str = Field(default="Unknown Volunteer", alias="volunteerName")
    senior_name: str = Field(default="Unknown Senior", alias="seniorName")
    help_topic: str = Field(default="General Help", alias="helpTopic")
    is_volunteer: bool = Field(default=False, alias="isVolunteer")
    is_senior: bool = Field(default=False, alias="isSenior")

    @property
    def role(self) -> SessionRole:
        if self.is_volunteer:
            return SessionRole.VOLUNTEER
        if self.is_senior:
            return SessionRole.SENIOR
        raise ValueError(f"caller is not a participant of session {self.id}")


class SessionStoreClient:
    def __init__(
        self,
        user_id: str,
        base_url: str = settings.base_url,
        timeout: float = settings.http_timeout,
        http_session: Optional[aiohttp.ClientSession] = None,
    ) -> None:
        self.user_id = user_id
        self._base = base_url.rstrip("/")
        self._timeout = aiohttp.ClientTimeout(total=timeout)
        self._http = http_session
        self._owns_http = http_session is None

    def _session(self) -> aiohttp.ClientSession:
        if self._http is None or self._http.closed:
            self._http = aiohttp.ClientSession(timeout=self._timeout)
            self._owns_http = True
        return self._http

    def _url(self, session_id: str) -> str:
        return f"{self._base}/api/session/{quote(session_id, safe='')}"

    async def _request(self, method: str, session_id: str, **kwargs: Any) -> Dict[str, Any]:
        try:
            async with self._session().request(
                method, self._url(session_id), headers={"X-User-Id": self.user_id}, **kwargs
            ) as resp:
                data = await resp.json(content_type=None)
                if resp.status != 200:
                    message = (data or {}).get("message") or (data or {}).get("error") or "unknown error"
                    raise SignalingError(f"{method} session {session_id} failed ({resp.status}): {message}", resp.status)
                return data
        except (aiohttp.ClientError, asyncio.TimeoutError, ValueError) as exc:
            raise SignalingError(f"{method} session {session_id} failed: {exc!r}") from exc

    async def get_session(self, session_id: str) -> SessionInfo:
        data = await self._request("GET", session_id)
        try:
            return SessionInfo.model_validate(data)
        except ValidationError as exc:
            raise SignalingError(f"unexpected session payload: {exc.errors()}") from exc

    async def update_session(
        self,
        session_id: str,
        *,
        status: Optional[SessionStatus] = None,
        notes: Optional[str] = None,
        duration: Optional[int] = None,
    ) -> Dict[str, Any]:
        body: Dict[str, Any] = {}
        if status is not None:
            body["status"] = status.value
        if notes:
            body["notes"] = notes
        if duration is not None:
            body["duration"] = duration
        logger.info(f"🔄 Updating session {session_id}: {body}")
        return await self._request("PATCH", session_id, json=body)

    async def close(self) -> None:
        if self._owns_http and self._http is not None and not self._http.closed:
            await self._http.close()
        self._http = None
