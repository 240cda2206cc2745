from fastapi import APIRouter, Request, Response

from convo.services.security import registry, session_id

router = APIRouter()


@router.get("/nonce")
async def get_nonce(request: Request, response: Response):
    sid = session_id(request, response)
    return {"success": True, "nonce": registry.issue(sid)}
