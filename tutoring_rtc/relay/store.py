import asyncio
import json
import logging
import uuid
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field

from ..config import settings
from ..events import SessionStatus


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def iso(ts: datetime) -> str:
    # Fixed width so timestamps order correctly as plain strings
    return ts.astimezone(timezone.utc).strftime("%Y-%m-%dT%H:%M:%S.%fZ")


class SignalStore:
    """Last ``history_size`` signals of every session, stamped on arrival.

    Timestamps are strictly increasing within a session, so a ``since``
    watermark never hides a signal that arrived in the same microsecond.
    """

    def __init__(self, history_size: int = settings.signal_history_size):
        self.history_size = history_size
        self.lock = asyncio.Lock()
        self.signals: Dict[str, List[Dict[str, Any]]] = {}
        self._last: Dict[str, datetime] = {}

    async def add(self, session_id: str, signal: Dict[str, Any]) -> Dict[str, Any]:
        async with self.lock:
            now = utc_now()
            last = self._last.get(session_id)
            if last is not None and now <= last:
                now = last + timedelta(microseconds=1)
            self._last[session_id] = now

            stored = {**signal, "sessionId": session_id, "timestamp": iso(now)}
            history = self.signals.setdefault(session_id, [])
            history.append(stored)
            if len(history) > self.history_size:
                del history[: len(history) - self.history_size]
            return stored

    def since(self, session_id: str, since: Optional[str] = None) -> List[Dict[str, Any]]:
        history = self.signals.get(session_id, [])
        if not since:
            return list(history)
        return [s for s in history if s["timestamp"] > since]

    async def clear(self, session_id: str) -> None:
        async with self.lock:
            self.signals.pop(session_id, None)
            self._last.pop(session_id, None)


class SessionRecord(BaseModel):
    id: str = Field(default_factory=lambda: uuid.uuid4().hex)
    status: SessionStatus = SessionStatus.SCHEDULED
    start_time: datetime = Field(default_factory=utc_now)
    duration: Optional[int] = None
    notes: str = ""
    volunteer_id: Optional[str] = None
    volunteer_name: Optional[str] = None
    senior_id: str
    senior_name: Optional[str] = None
    updated_at: datetime = Field(default_factory=utc_now)

    def role_of(self, user_id: Optional[str]) -> Optional[str]:
        if user_id and user_id == self.volunteer_id:
            return "volunteer"
        if user_id and user_id == self.senior_id:
            return "senior"
        return None

    @property
    def help_topic(self) -> str:
        if "topic:" in self.notes:
            topic = self.notes.split("topic:", 1)[1].split("\n", 1)[0].strip()
            if topic:
                return topic
        return "General Help"


class SessionRegistry:
    """Tutoring session metadata, optionally persisted to a JSON file."""

    def __init__(self, status_file: Optional[Path] = None):
        self.status_file = status_file
        self.lock = asyncio.Lock()
        self.sessions: Dict[str, SessionRecord] = {}

        # load persisted sessions at startup
        if self.status_file is not None and self.status_file.exists():
            try:
                raw = json.loads(self.status_file.read_text())
                self.sessions = {k: SessionRecord.model_validate(v) for k, v in raw.items()}
            except (OSError, ValueError) as exc:
                logging.error(f"Could not load sessions from {self.status_file}: {exc!r}")
                self.sessions = {}

    async def save(self):
        """Write all sessions to the status file (atomic replace)."""
        if self.status_file is None:
            return
        async with self.lock:
            payload = {k: v.model_dump(mode="json") for k, v in self.sessions.items()}
            self.status_file.parent.mkdir(parents=True, exist_ok=True)
            tmp_path = self.status_file.with_suffix(".tmp")
            tmp_path.write_text(json.dumps(payload, ensure_ascii=False, indent=2))
            tmp_path.replace(self.status_file)

    async def create(self, record: SessionRecord) -> SessionRecord:
        async with self.lock:
            self.sessions[record.id] = record
        await self.save()
        return record

    def get(self, session_id: str) -> Optional[SessionRecord]:
        return self.sessions.get(session_id)

    async def update(self, session_id: str, **fields: Any) -> Optional[SessionRecord]:
        async with self.lock:
            record = self.sessions.get(session_id)
            if record is None:
                return None
            changes = {k: v for k, v in fields.items() if v is not None}
            changes["updated_at"] = utc_now()
            record = record.model_copy(update=changes)
            self.sessions[session_id] = record
        await self.save()
        return record
