# signserver/security.py
import hmac
import logging
from fastapi import Request

from signserver.core.errors import AuthError

REQUEST_KEY_HEADER = "X-Request-Key"

logger = logging.getLogger("signserver.auth")


def require_request_key(request: Request) -> None:
    expected = request.app.state.settings.REQUEST_KEY
    given = request.headers.get(REQUEST_KEY_HEADER, "")
    if not expected or not hmac.compare_digest(given.encode(), expected.encode()):
        client = request.client.host if request.client else "-"
        logger.warning("client=%s path=%s unauthorized request", client, request.url.path)
        raise AuthError("unauthorized")
