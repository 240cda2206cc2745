from fastapi import APIRouter, Depends, HTTPException
from fastapi.responses import FileResponse

from convo.errors import InvalidConversationId, ShareExpired, SharedNotFound
from convo.models.share import AudioCheck, AudioManifestResponse, ShareRequest, ShareResult, SharedView
from convo.services.security import require_nonce
from convo.services.sharing import get_shared, share_conversation
from convo.storage import conversations

router = APIRouter()


def _checked_id(conversation_id: str) -> str:
    try:
        return conversations.sanitize_id(conversation_id)
    except InvalidConversationId as e:
        raise HTTPException(400, str(e))


@router.post("/api/share", dependencies=[Depends(require_nonce)])
async def share(body: ShareRequest) -> ShareResult:
    if not body.conversation_id:
        raise HTTPException(400, "Missing conversation ID")
    conversation_id = _checked_id(body.conversation_id)
    return share_conversation(conversation_id, body.data)


@router.get("/api/conversations/{conversation_id}/audio/check")
async def check_audio(conversation_id: str) -> AudioCheck:
    conversation_id = _checked_id(conversation_id)
    clips = conversations.list_audio_manifest(conversation_id)
    return AudioCheck(has_audio=bool(clips), audio_files=len(clips))


@router.get("/api/conversations/{conversation_id}/audio")
async def list_audio(conversation_id: str) -> AudioManifestResponse:
    conversation_id = _checked_id(conversation_id)
    return AudioManifestResponse(audio_files=conversations.list_audio_manifest(conversation_id))


@router.get("/conversations/{conversation_id}/audio/{filename}")
async def serve_clip(conversation_id: str, filename: str):
    conversation_id = _checked_id(conversation_id)
    path = conversations.audio_file(conversation_id, filename)
    if path is None:
        raise HTTPException(404, "audio file not found")
    return FileResponse(path, media_type="audio/mpeg", filename=filename)


@router.get("/api/shared/{conversation_id}")
async def shared_conversation(conversation_id: str) -> SharedView:
    try:
        return get_shared(conversation_id)
    except InvalidConversationId as e:
        raise HTTPException(400, str(e))
    except ShareExpired as e:
        raise HTTPException(410, str(e))
    except SharedNotFound as e:
        raise HTTPException(404, str(e))
