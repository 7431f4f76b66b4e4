"""
Headless call participant.

Joins one tutoring session: fetches its metadata, derives the caller's role,
runs the negotiator until interrupted or the connection reaches a terminal
state, then marks the session completed.
"""

from __future__ import annotations

import argparse
import asyncio
import signal
from typing import Optional

from .config import Settings, settings
from .errors import MediaAcquisitionError, SignalingError
from .events import NegotiatorEvents, SessionStatus
from .logging_config import get_logger, setup_default_logging
from .negotiator import SessionNegotiator
from .negotiator.session_store import SessionStoreClient
from .negotiator.transport import SignalingClient
from .negotiator.util import elapsed_minutes

logger = get_logger(__name__)


async def watch_events(negotiator: SessionNegotiator, stop: asyncio.Event) -> None:
    """Log negotiator events; sets ``stop`` once the connection is over."""
    while True:
        event, payload = await negotiator.events.get()
        logger.info(f"Event {event.name}: {payload}")
        if event is NegotiatorEvents.CONNECTION_STATE and payload.is_terminal:
            logger.info(f"Connection {payload.value}, leaving the call")
            stop.set()
        elif event is NegotiatorEvents.CALL_ENDED:
            stop.set()


async def run_call(session_id: str, user_id: str, notes: Optional[str] = None, config: Settings = settings) -> int:
    store = SessionStoreClient(user_id, base_url=config.base_url, timeout=config.http_timeout)
    try:
        try:
            info = await store.get_session(session_id)
            role = info.role
        except (SignalingError, ValueError) as exc:
            logger.error(f"❌ Cannot join session {session_id}: {exc}")
            return 1

        logger.info(
            f"Joining session {info.id} ({info.help_topic}) as {role.value}: "
            f"{info.volunteer_name} ↔ {info.senior_name}"
        )
        client = SignalingClient(session_id, role.value, base_url=config.base_url, timeout=config.http_timeout)
        stop = asyncio.Event()
        loop = asyncio.get_running_loop()
        for signame in ("SIGINT", "SIGTERM"):
            try:
                loop.add_signal_handler(getattr(signal, signame), stop.set)
            except (NotImplementedError, AttributeError):
                pass

        async with client, SessionNegotiator(session_id, role, client, config=config) as negotiator:
            try:
                await negotiator.start_call()
            except MediaAcquisitionError as exc:
                logger.error(f"❌ Could not access camera or microphone: {exc}")
                return 2
            if info.status is not SessionStatus.IN_PROGRESS:
                try:
                    await store.update_session(session_id, status=SessionStatus.IN_PROGRESS)
                except SignalingError as exc:
                    logger.warning(f"Could not mark session {session_id} in progress: {exc}")
            watcher = asyncio.create_task(watch_events(negotiator, stop))
            try:
                await stop.wait()
            finally:
                watcher.cancel()
                await negotiator.end_call()

        try:
            await store.update_session(
                session_id,
                status=SessionStatus.COMPLETED,
                notes=notes,
                duration=elapsed_minutes(info.start_time),
            )
        except SignalingError as exc:
            logger.error(f"❌ Could not mark session {session_id} completed: {exc}")
            return 3
        return 0
    finally:
        await store.close()


def parse_args(argv: Optional[list[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Join a tutoring video session")
    parser.add_argument("--session", required=True, help="session id to join")
    parser.add_argument("--user", required=True, help="participant user id")
    parser.add_argument("--base-url", default=settings.base_url, help="relay / session store base URL")
    parser.add_argument("--notes", default=None, help="notes stored on the session when the call ends")
    return parser.parse_args(argv)


def run(argv: Optional[list[str]] = None) -> None:
    args = parse_args(argv)
    setup_default_logging()
    config = settings.model_copy(update={"base_url": args.base_url})
    try:
        code = asyncio.run(run_call(args.session, args.user, notes=args.notes, config=config))
    except KeyboardInterrupt:
        logger.info("Call interrupted by user.")
        code = 130
    raise SystemExit(code)


if __name__ == "__main__":
    run()
