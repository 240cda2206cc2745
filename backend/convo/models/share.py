from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel

from convo.models.conversation import AudioClip, Transcript


class SharedRecord(BaseModel):
    conversation_id: str
    shared_at: datetime
    expires_at: datetime
    has_audio: bool = False


class ShareRequest(BaseModel):
    conversation_id: str
    data: Transcript | None = None


class ShareResult(BaseModel):
    success: bool = True
    share_url: str
    expires_at: datetime


class AudioCheck(BaseModel):
    success: bool = True
    has_audio: bool
    audio_files: int = 0


class AudioManifestResponse(BaseModel):
    success: bool = True
    audio_files: list[AudioClip] = []


class SharedView(BaseModel):
    transcript: Transcript
    has_audio: bool = False
    expires_at: datetime


class SweepReport(BaseModel):
    expired_shares: int = 0
    removed: int = 0
    kept: int = 0
