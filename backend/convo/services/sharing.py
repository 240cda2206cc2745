import logging
from datetime import datetime, timedelta, timezone

from convo.config import settings
from convo.errors import ShareExpired, SharedNotFound, StorageFailure
from convo.models.conversation import Transcript
from convo.models.share import ShareResult, SharedView
from convo.storage import conversations

logger = logging.getLogger(__name__)


def share_url(conversation_id: str) -> str:
    return f"{settings.site_url.rstrip('/')}/shared/{conversation_id}"


def share_conversation(conversation_id: str, transcript: Transcript | None = None) -> ShareResult:
    """persist the transcript (when given) and publish it with an expiry"""
    conversation_id = conversations.sanitize_id(conversation_id)
    if transcript is not None:
        if transcript.conversation_id != conversation_id:
            transcript = transcript.model_copy(update={"conversation_id": conversation_id})
        conversations.save(transcript)
    elif conversations.load(conversation_id) is None:
        raise StorageFailure(f"Conversation not found: {conversation_id}")

    now = datetime.now(timezone.utc)
    record = conversations.mark_shared(
        conversation_id, expires_at=now + timedelta(days=settings.share_ttl_days), shared_at=now,
    )
    logger.info("shared %s until %s (audio: %s)", conversation_id, record.expires_at.isoformat(), record.has_audio)
    return ShareResult(share_url=share_url(conversation_id), expires_at=record.expires_at)


def get_shared(conversation_id: str, now: datetime | None = None) -> SharedView:
    conversation_id = conversations.sanitize_id(conversation_id)
    now = now or datetime.now(timezone.utc)

    record = conversations.load_shared_records().get(conversation_id)
    if record is None:
        raise SharedNotFound("The shared conversation you are trying to access does not exist or has been removed.")
    expires_at = record.expires_at if record.expires_at.tzinfo else record.expires_at.replace(tzinfo=timezone.utc)
    if expires_at < now:
        raise ShareExpired("The shared conversation you are trying to access has expired.")

    transcript = conversations.load(conversation_id)
    if transcript is None:
        raise SharedNotFound("The data for this conversation is missing or has been removed.")

    record = conversations.refresh_has_audio(record)
    return SharedView(transcript=transcript, has_audio=record.has_audio, expires_at=record.expires_at)
