"""HTTP polling signaling transport.

The relay is a dumb store keyed by session id: signals are POSTed to
``/api/session/{id}/signal`` and fetched with ``GET ...?since=<timestamp>``.
"""
from __future__ import annotations

import asyncio
import contextlib
from typing import Awaitable, Callable, Dict, List, Optional
from urllib.parse import quote

import aiohttp
from pydantic import ValidationError

from ..config import settings
from ..errors import SignalingError
from ..logging_config import get_logger
from .signals import Signal, parse_signal

logger = get_logger(__name__)

SignalHandler = Callable[[Signal], Awaitable[None]]


class SignalingClient:
    """Relay client for one session and one participant."""

    def __init__(
        self,
        session_id: str,
        sender: str,
        base_url: str = settings.base_url,
        timeout: float = settings.http_timeout,
        http_session: Optional[aiohttp.ClientSession] = None,
    ) -> None:
        self.session_id = session_id
        self.sender = sender
        self._url = f"{base_url.rstrip('/')}/api/session/{quote(session_id, safe='')}/signal"
        self._timeout = aiohttp.ClientTimeout(total=timeout)
        self._http = http_session
        self._owns_http = http_session is None

    def _session(self) -> aiohttp.ClientSession:
        if self._http is None or self._http.closed:
            self._http = aiohttp.ClientSession(timeout=self._timeout)
            self._owns_http = True
        return self._http

    async def send_signal(self, signal: Signal) -> bool:
        """POST one signal. Fire-and-forget: failures are logged, never raised."""
        signal.session_id = self.session_id
        signal.sender = self.sender
        body = signal.to_wire()
        body.pop("timestamp", None)
        try:
            async with self._session().post(self._url, json=body) as resp:
                if resp.status != 200:
                    message = await resp.text()
                    logger.error(f"❌ Signal {signal.type} rejected by relay ({resp.status}): {message}")
                    return False
        except (aiohttp.ClientError, asyncio.TimeoutError) as exc:
            logger.error(f"❌ Error sending {signal.type} signal: {exc!r}")
            return False
        logger.debug(f"📤 Sent {signal.type} for session {self.session_id}")
        return True

    async def fetch_signals(self, since: Optional[str] = None) -> List[Signal]:
        """Signals newer than ``since``. Malformed entries are skipped."""
        params = {"since": since} if since else None
        try:
            async with self._session().get(self._url, params=params) as resp:
                if resp.status != 200:
                    raise SignalingError(f"relay answered {resp.status}: {await resp.text()}", resp.status)
                data = await resp.json()
        except (aiohttp.ClientError, asyncio.TimeoutError, ValueError) as exc:
            raise SignalingError(f"could not fetch signals: {exc!r}") from exc

        signals: List[Signal] = []
        for item in data.get("signals") or []:
            try:
                signals.append(parse_signal(item))
            except ValidationError as exc:
                logger.warning(f"Dropping malformed signal {item!r}: {exc.errors()}")
        return signals

    async def close(self) -> None:
        if self._owns_http and self._http is not None and not self._http.closed:
            await self._http.close()
        self._http = None

    async def __aenter__(self) -> "SignalingClient":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.close()


class SignalPoller:
    """Cancellable loop that feeds relay signals to a handler in arrival order.

    The watermark is the timestamp of the last signal handled; it only moves
    past a signal once its handler returned. A failing signal is retried on
    the following ticks and dropped after ``max_attempts`` failures.
    """

    def __init__(
        self,
        client: SignalingClient,
        handler: SignalHandler,
        interval: float = settings.signal_poll_interval,
        max_attempts: int = settings.signal_max_attempts,
    ) -> None:
        self._client = client
        self._handler = handler
        self._interval = interval
        self._max_attempts = max_attempts
        self._attempts: Dict[str, int] = {}
        self._task: Optional[asyncio.Task] = None
        self.watermark: Optional[str] = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        if self.running:
            return
        self._task = asyncio.create_task(self._run(), name=f"signal-poller-{self._client.session_id}")
        logger.info(f"📡 Signal polling started for session {self._client.session_id}")

    async def stop(self) -> None:
        task, self._task = self._task, None
        if task is None:
            return
        task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await task
        logger.info(f"📡 Signal polling stopped for session {self._client.session_id}")

    def _advance(self, timestamp: Optional[str]) -> None:
        if timestamp is None:
            return
        self._attempts.pop(timestamp, None)
        if self.watermark is None or timestamp > self.watermark:
            self.watermark = timestamp

    async def poll_once(self) -> int:
        """Fetch and handle one batch; returns the number of signals handled."""
        try:
            signals = await self._client.fetch_signals(self.watermark)
        except SignalingError as exc:
            logger.error(f"❌ Error polling signals: {exc}")
            return 0

        handled = 0
        for signal in signals:
            if signal.timestamp is not None and self.watermark is not None and signal.timestamp <= self.watermark:
                continue
            if signal.sender == self._client.sender:
                self._advance(signal.timestamp)
                continue
            try:
                await self._handler(signal)
            except Exception as exc:  # noqa: BLE001
                key = signal.timestamp or ""
                attempts = self._attempts.get(key, 0) + 1
                if attempts < self._max_attempts:
                    self._attempts[key] = attempts
                    logger.warning(f"⚠️ Handling {signal.type} failed (attempt {attempts}), retrying next tick: {exc!r}")
                    break
                logger.error(f"❌ Dropping {signal.type} after {attempts} failed attempts: {exc!r}")
            else:
                handled += 1
            self._advance(signal.timestamp)
        return handled

    async def _run(self) -> None:
        while True:
            await self.poll_once()
            await asyncio.sleep(self._interval)
