#!/usr/bin/env python3
"""Launcher for the tutoring signaling relay.

The application lives in ``tutoring_rtc.relay.api``; this file keeps the
short invocation path working::

    uvicorn signaling_server:app --host 0.0.0.0 --port 8080
"""
from tutoring_rtc.config import settings
from tutoring_rtc.logging_config import setup_default_logging, get_logger

setup_default_logging()
logger = get_logger(__name__)

# Re-export FastAPI application instance
from tutoring_rtc.relay import app  # noqa: E402  (import after logging setup)


if __name__ == "__main__":  # pragma: no cover
    import uvicorn
    if settings.https:
        logger.info(f"Starting secure signaling relay → https://localhost:{settings.port}")
        uvicorn.run(
            "tutoring_rtc.relay.api:app",
            host=settings.host,
            port=settings.port,
            reload=False,
            access_log=True,
            ssl_keyfile=settings.ssl_key,
            ssl_certfile=settings.ssl_cert,
            loop="asyncio"
        )
    else:
        logger.info(f"Starting signaling relay → http://localhost:{settings.port}")
        uvicorn.run(
            "tutoring_rtc.relay.api:app",
            host=settings.host,
            port=settings.port,
            reload=False,
            access_log=True,
            loop="asyncio"
        )
