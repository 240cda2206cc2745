from fastapi import APIRouter, Depends, Response
from pydantic import BaseModel
from starlette.requests import HTTPConnection

from convo.config import settings
from convo.services.security import require_nonce

router = APIRouter()

OPENROUTER_COOKIE = "openrouter_api_key"
GROQ_COOKIE = "groq_api_key"
KEY_MAX_AGE = 60 * 60 * 24 * 30


def openrouter_key(conn: HTTPConnection) -> str:
    """browser-supplied key wins over the server's own"""
    return conn.cookies.get(OPENROUTER_COOKIE) or settings.openrouter_api_key


def groq_key(conn: HTTPConnection) -> str:
    return conn.cookies.get(GROQ_COOKIE) or settings.groq_api_key


class SaveKeysBody(BaseModel):
    openrouter_api_key: str | None = None
    groq_api_key: str | None = None


@router.post("/keys", dependencies=[Depends(require_nonce)])
async def save_keys(body: SaveKeysBody, response: Response):
    messages = []
    for cookie, label, value in (
        (OPENROUTER_COOKIE, "OpenRouter", body.openrouter_api_key),
        (GROQ_COOKIE, "Groq", body.groq_api_key),
    ):
        if value is None:
            continue
        value = value.strip()
        if value:
            response.set_cookie(cookie, value, max_age=KEY_MAX_AGE, path="/", secure=True, httponly=True)
            messages.append(f"{label} API key saved")
        else:
            response.delete_cookie(cookie, path="/", secure=True, httponly=True)
            messages.append(f"{label} API key cleared")
    return {"success": True, "messages": messages}
