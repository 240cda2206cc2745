import logging
import secrets
from collections import OrderedDict, defaultdict

from fastapi import HTTPException, Request, Response
from starlette.requests import HTTPConnection

from convo.config import settings

logger = logging.getLogger(__name__)

SESSION_COOKIE = "convo_session"
NONCE_HEADER = "X-Nonce"
INVALID_NONCE = "invalid or expired security token"


class NonceRegistry:
    """single-use nonces per browser session; oldest dropped past the limit"""

    def __init__(self, limit: int | None = None):
        self.limit = limit or settings.nonce_limit
        self._nonces: dict[str, OrderedDict[str, None]] = defaultdict(OrderedDict)

    def issue(self, session_id: str) -> str:
        nonce = secrets.token_hex(16)
        pending = self._nonces[session_id]
        pending[nonce] = None
        while len(pending) > self.limit:
            pending.popitem(last=False)
        return nonce

    def consume(self, session_id: str, nonce: str | None) -> bool:
        pending = self._nonces.get(session_id)
        if not nonce or not pending or nonce not in pending:
            return False
        del pending[nonce]
        return True

    def clear(self):
        self._nonces.clear()


registry = NonceRegistry()


def session_id(request: Request, response: Response | None = None) -> str:
    sid = request.cookies.get(SESSION_COOKIE)
    if not sid:
        sid = secrets.token_urlsafe(24)
        if response is not None:
            response.set_cookie(SESSION_COOKIE, sid, httponly=True, samesite="strict")
    return sid


def nonce_valid(conn: HTTPConnection, nonce: str | None) -> bool:
    """consume nonce for the connection's session; always True when checks are off"""
    if not settings.nonce_check_enabled:
        return True
    sid = conn.cookies.get(SESSION_COOKIE)
    return bool(sid) and registry.consume(sid, nonce)


def origin_allowed(conn: HTTPConnection) -> bool:
    """browsers always send Origin on websockets; other clients may omit it"""
    origin = conn.headers.get("origin")
    return origin is None or origin in settings.cors_origins


async def require_nonce(request: Request):
    """dependency for mutating endpoints; fails closed"""
    if not nonce_valid(request, request.headers.get(NONCE_HEADER)):
        logger.warning("rejected %s %s: missing or stale nonce", request.method, request.url.path)
        raise HTTPException(403, INVALID_NONCE)
