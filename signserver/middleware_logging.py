# signserver/middleware_logging.py
from __future__ import annotations
from typing import Callable
import logging
import time

from fastapi import FastAPI, Request
from starlette.middleware.base import BaseHTTPMiddleware

logger = logging.getLogger("signserver.request")

LOG_FORMAT = "%(asctime)s | %(levelname)s | %(name)s | %(message)s"


def configure_logging(level: str = "INFO") -> None:
    logging.basicConfig(level=getattr(logging, level.upper(), logging.INFO), format=LOG_FORMAT)


def _job_fields(request: Request) -> str:
    """job_id/bytes recorded on request.state by the signing routes, "-" when absent."""
    state = request.state
    job_id = getattr(state, "job_id", None)
    upload = getattr(state, "upload_bytes", None)
    return "job_id=%s bytes=%s" % (
        "-" if job_id is None else job_id,
        "-" if upload is None else upload,
    )


class RequestLogMiddleware(BaseHTTPMiddleware):
    """One line per request: who asked, for which job, how it ended."""

    async def dispatch(self, request: Request, call_next: Callable):
        started = time.perf_counter()
        who = request.client.host if request.client else "-"
        try:
            response = await call_next(request)
        except Exception:
            logger.exception(
                "client=%s %s %s status=500 %s elapsed_ms=%.1f unhandled",
                who, request.method, request.url.path, _job_fields(request),
                (time.perf_counter() - started) * 1000.0,
            )
            raise

        level = logging.WARNING if response.status_code >= 500 else logging.INFO
        logger.log(
            level,
            "client=%s %s %s status=%d %s elapsed_ms=%.1f",
            who, request.method, request.url.path, response.status_code, _job_fields(request),
            (time.perf_counter() - started) * 1000.0,
        )
        return response


def register_request_logging(app: FastAPI) -> None:
    app.add_middleware(RequestLogMiddleware)
