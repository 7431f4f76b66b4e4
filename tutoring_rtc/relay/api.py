"""FastAPI application: signaling relay and session metadata for tutoring calls."""

from datetime import datetime
from json import JSONDecodeError
from typing import Any, Dict, Optional

from fastapi import FastAPI, Header, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ConfigDict, Field, ValidationError
from starlette.middleware.cors import CORSMiddleware
from starlette.responses import Response

from ..config import settings
from ..events import SessionStatus
from ..logging_config import get_logger
from ..negotiator.signals import parse_signal
from ..negotiator.util import elapsed_minutes
from .store import SessionRecord, SessionRegistry, SignalStore

logger = get_logger(__name__)


def error_response(status_code: int, code: str, message: str) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content={
            "type": "error",
            "code": code,
            "message": message,
        },
    )


class CreateSessionRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    id: Optional[str] = None
    senior_id: str = Field(alias="seniorId")
    senior_name: Optional[str] = Field(default=None, alias="seniorName")
    volunteer_id: Optional[str] = Field(default=None, alias="volunteerId")
    volunteer_name: Optional[str] = Field(default=None, alias="volunteerName")
    start_time: Optional[datetime] = Field(default=None, alias="startTime")
    status: SessionStatus = SessionStatus.SCHEDULED
    topic: Optional[str] = None


class UpdateSessionRequest(BaseModel):
    status: Optional[SessionStatus] = None
    notes: Optional[str] = None
    duration: Optional[int] = None


def session_payload(record: SessionRecord, user_id: Optional[str]) -> Dict[str, Any]:
    role = record.role_of(user_id)
    return {
        "id": record.id,
        "status": record.status.value,
        "startTime": record.start_time.isoformat(),
        "duration": elapsed_minutes(record.start_time)
        if record.status is SessionStatus.IN_PROGRESS else record.duration,
        "notes": record.notes,
        "volunteerName": record.volunteer_name or "Unknown Volunteer",
        "seniorName": record.senior_name or "Unknown Senior",
        "helpTopic": record.help_topic,
        "isVolunteer": role == "volunteer",
        "isSenior": role == "senior",
    }


def create_app(
    signal_store: Optional[SignalStore] = None,
    registry: Optional[SessionRegistry] = None,
) -> FastAPI:
    signals = signal_store or SignalStore(settings.signal_history_size)
    sessions = registry or SessionRegistry(settings.session_store_path)

    app = FastAPI(title="Tutoring Signaling Relay")
    app.state.signals = signals
    app.state.sessions = sessions

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.exception_handler(JSONDecodeError)
    async def json_decode_error_handler(request: Request, exc: JSONDecodeError):
        return error_response(400, "INVALID_JSON", "Request body is not valid JSON.")

    @app.exception_handler(RequestValidationError)
    async def validation_error_handler(request: Request, exc: RequestValidationError):
        logger.info(f"Rejected request to {request.url.path}: {exc.errors()}")
        return error_response(400, "INVALID_REQUEST", "Request validation failed.")

    @app.get("/health")
    async def health():
        return Response(status_code=200)

    # ───────────────────────── Signal relay ────────────────────────────
    @app.post("/api/session/{session_id}/signal")
    async def post_signal(session_id: str, request: Request):
        try:
            body = await request.json()
        except JSONDecodeError:
            return error_response(400, "INVALID_JSON", "Request body is not valid JSON.")
        if not isinstance(body, dict):
            return error_response(400, "INVALID_SIGNAL", "Signal must be a JSON object.")
        try:
            parse_signal({**body, "sessionId": session_id})
        except ValidationError as exc:
            logger.info(f"Invalid signal for session {session_id}: {exc.errors()}")
            return error_response(400, "INVALID_SIGNAL", "Signal failed validation.")

        stored = await signals.add(session_id, body)
        logger.info(f"📡 Received signal for session {session_id}: {stored['type']} from {stored.get('sender')}")
        return {"success": True, "message": "Signal stored successfully", "timestamp": stored["timestamp"]}

    @app.get("/api/session/{session_id}/signal")
    async def get_signals(session_id: str, since: Optional[str] = None):
        return {"signals": signals.since(session_id, since), "success": True}

    # ───────────────────────── Session metadata ────────────────────────
    @app.post("/api/session")
    async def create_session(data: CreateSessionRequest):
        fields: Dict[str, Any] = {
            "senior_id": data.senior_id,
            "senior_name": data.senior_name,
            "volunteer_id": data.volunteer_id,
            "volunteer_name": data.volunteer_name,
            "status": data.status,
            "notes": f"topic: {data.topic}" if data.topic else "",
        }
        if data.id:
            if sessions.get(data.id) is not None:
                return error_response(409, "SESSION_EXISTS", "Session already exists.")
            fields["id"] = data.id
        if data.start_time:
            fields["start_time"] = data.start_time
        record = await sessions.create(SessionRecord(**fields))
        logger.info(f"🗓️ Session {record.id} created")
        return JSONResponse(status_code=201, content=record.model_dump(mode="json"))

    @app.get("/api/session/{session_id}")
    async def get_session(session_id: str, x_user_id: Optional[str] = Header(default=None)):
        if not x_user_id:
            return error_response(401, "UNAUTHORIZED", "Unauthorized.")
        record = sessions.get(session_id)
        if record is None:
            return error_response(404, "SESSION_NOT_FOUND", "Session not found.")
        if record.status.is_closed:
            return error_response(410, "SESSION_ENDED", "This session has ended and is no longer accessible.")
        if record.role_of(x_user_id) is None:
            return error_response(403, "FORBIDDEN", "Unauthorized to view this session.")
        return session_payload(record, x_user_id)

    @app.patch("/api/session/{session_id}")
    async def update_session(
        session_id: str,
        data: UpdateSessionRequest,
        x_user_id: Optional[str] = Header(default=None),
    ):
        if not x_user_id:
            return error_response(401, "UNAUTHORIZED", "Unauthorized.")
        record = sessions.get(session_id)
        if record is None:
            return error_response(404, "SESSION_NOT_FOUND", "Session not found.")
        if record.role_of(x_user_id) is None:
            return error_response(403, "FORBIDDEN", "Not authorized to update this session.")

        logger.info(f"🔄 Updating session {session_id}: {data.model_dump(exclude_none=True)}")
        record = await sessions.update(
            session_id,
            status=data.status,
            notes=data.notes or None,
            duration=data.duration,
        )
        if record.status is SessionStatus.COMPLETED:
            await signals.clear(session_id)
            logger.info(f"✅ Session {session_id} marked COMPLETED")
        return {"message": "Session updated successfully", "session": record.model_dump(mode="json")}

    return app


app = create_app()
