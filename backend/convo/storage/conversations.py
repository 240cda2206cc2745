"""flat-file conversation store.

layout under settings.data_dir:
    conversations/<id>/conversation.json   whole transcript, rewritten on save
    conversations/<id>/audio/message_<n>.mp3
    conversations/<id>/audio/manifest.json turn_index -> filename
    data/shared_conversations.json         share tracker keyed by id
"""
import json
import logging
import os
import re
import shutil
import tempfile
from datetime import datetime, timedelta, timezone
from pathlib import Path

from pydantic import ValidationError

from convo.config import settings
from convo.errors import InvalidConversationId, StorageFailure
from convo.models.conversation import AudioClip, Transcript
from convo.models.share import SharedRecord, SweepReport

logger = logging.getLogger(__name__)

_UNSAFE = re.compile(r"[^a-zA-Z0-9_]")
_LEGACY_INDEX = re.compile(r"_(\d+)")
_CLIP_NAME = re.compile(r"^[a-zA-Z0-9_]+\.mp3$")

CONVERSATION_FILE = "conversation.json"
MANIFEST_FILE = "manifest.json"


def sanitize_id(conversation_id: str) -> str:
    cleaned = _UNSAFE.sub("", conversation_id or "")
    if not cleaned or cleaned != conversation_id:
        raise InvalidConversationId(f"invalid conversation id: {conversation_id!r}")
    return cleaned


def conversation_dir(conversation_id: str) -> Path:
    return Path(settings.conversations_dir) / sanitize_id(conversation_id)


def audio_dir(conversation_id: str) -> Path:
    return conversation_dir(conversation_id) / "audio"


def clip_uri(conversation_id: str, filename: str) -> str:
    return f"/conversations/{conversation_id}/audio/{filename}"


def _write_json(path: Path, payload) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp_path = tempfile.mkstemp(dir=path.parent, suffix=".tmp")
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            json.dump(payload, f, indent=2)
        os.replace(tmp_path, path)
    except BaseException:
        if os.path.exists(tmp_path):
            os.unlink(tmp_path)
        raise


def _read_json(path: Path):
    with open(path, encoding="utf-8") as f:
        return json.load(f)


# --- transcripts ---

def save(transcript: Transcript) -> None:
    path = conversation_dir(transcript.conversation_id) / CONVERSATION_FILE
    try:
        _write_json(path, transcript.model_dump(mode="json"))
    except OSError as e:
        raise StorageFailure(f"failed to save conversation {transcript.conversation_id}: {e}") from e
    logger.info("saved conversation %s (%d turns)", transcript.conversation_id, len(transcript.turns))


def load(conversation_id: str) -> Transcript | None:
    path = conversation_dir(conversation_id) / CONVERSATION_FILE
    if not path.is_file():
        return None
    try:
        return Transcript.model_validate(_read_json(path))
    except (OSError, ValueError, ValidationError) as e:
        raise StorageFailure(f"failed to read conversation {conversation_id}: {e}") from e


# --- audio ---

def _read_manifest(conversation_id: str) -> dict[int, str] | None:
    path = audio_dir(conversation_id) / MANIFEST_FILE
    if not path.is_file():
        return None
    try:
        raw = _read_json(path)
    except (OSError, ValueError) as e:
        raise StorageFailure(f"failed to read audio manifest for {conversation_id}: {e}") from e
    return {int(k): v for k, v in raw.get("clips", {}).items()}


def save_audio_clip(conversation_id: str, turn_index: int, content: bytes) -> AudioClip:
    if not content:
        raise StorageFailure("refusing to store an empty audio clip")
    directory = audio_dir(conversation_id)
    filename = f"message_{turn_index}.mp3"
    try:
        directory.mkdir(parents=True, exist_ok=True)
        (directory / filename).write_bytes(content)
        clips = _read_manifest(conversation_id) or {}
        clips[turn_index] = filename
        _write_json(
            directory / MANIFEST_FILE,
            {"clips": {str(k): v for k, v in sorted(clips.items())}},
        )
    except OSError as e:
        raise StorageFailure(f"failed to save audio for {conversation_id}: {e}") from e
    logger.info("saved clip %s for conversation %s (%d bytes)", filename, conversation_id, len(content))
    return AudioClip(turn_index=turn_index, filename=filename, uri=clip_uri(conversation_id, filename))


def list_audio_manifest(conversation_id: str) -> list[AudioClip]:
    """clips in turn order; [] when the conversation has no audio"""
    directory = audio_dir(conversation_id)
    if not directory.is_dir():
        return []

    clips = _read_manifest(conversation_id)
    if clips is None:
        # directories written before manifests existed; unindexed files belong to no turn
        clips = {}
        for path in sorted(directory.glob("*.mp3")):
            m = _LEGACY_INDEX.search(path.stem)
            if m is None:
                logger.warning("skipping unindexed clip %s in %s", path.name, conversation_id)
                continue
            clips.setdefault(int(m.group(1)), path.name)

    return [
        AudioClip(turn_index=idx, filename=name, uri=clip_uri(conversation_id, name))
        for idx, name in sorted(clips.items())
        if (directory / name).is_file()
    ]


def has_audio(conversation_id: str) -> bool:
    directory = audio_dir(conversation_id)
    return directory.is_dir() and any(directory.glob("*.mp3"))


def audio_file(conversation_id: str, filename: str) -> Path | None:
    if not _CLIP_NAME.match(filename):
        return None
    path = audio_dir(conversation_id) / filename
    return path if path.is_file() else None


# --- sharing ---

def load_shared_records() -> dict[str, SharedRecord]:
    path = Path(settings.shared_tracker_path)
    if not path.is_file():
        return {}
    try:
        raw = _read_json(path) or {}
        return {cid: SharedRecord.model_validate(info) for cid, info in raw.items()}
    except (OSError, ValueError, ValidationError) as e:
        raise StorageFailure(f"failed to read shared tracker: {e}") from e


def _save_shared_records(records: dict[str, SharedRecord]) -> None:
    try:
        _write_json(
            Path(settings.shared_tracker_path),
            {cid: r.model_dump(mode="json") for cid, r in records.items()},
        )
    except OSError as e:
        raise StorageFailure(f"failed to write shared tracker: {e}") from e


def mark_shared(conversation_id: str, expires_at: datetime, shared_at: datetime | None = None) -> SharedRecord:
    transcript = load(conversation_id)
    if transcript is None:
        raise StorageFailure(f"conversation not found: {conversation_id}")

    shared_at = shared_at or datetime.now(timezone.utc)
    transcript.shared = True
    transcript.shared_at = shared_at
    transcript.expires_at = expires_at
    save(transcript)

    record = SharedRecord(
        conversation_id=conversation_id,
        shared_at=shared_at,
        expires_at=expires_at,
        has_audio=has_audio(conversation_id),
    )
    records = load_shared_records()
    records[conversation_id] = record
    _save_shared_records(records)
    return record


def refresh_has_audio(record: SharedRecord) -> SharedRecord:
    if record.has_audio or not has_audio(record.conversation_id):
        return record
    records = load_shared_records()
    updated = record.model_copy(update={"has_audio": True})
    records[record.conversation_id] = updated
    _save_shared_records(records)
    return updated


# --- cleanup ---

def _as_utc(value: datetime) -> datetime:
    return value if value.tzinfo else value.replace(tzinfo=timezone.utc)


def _created_at(conversation_file: Path, data: dict) -> datetime:
    stamp = data.get("created_at")
    if not stamp:
        first = (data.get("turns") or data.get("messages") or [{}])[0]
        stamp = first.get("timestamp")
    if stamp:
        try:
            return _as_utc(datetime.fromisoformat(stamp))
        except ValueError:
            logger.warning("unparseable timestamp %r in %s", stamp, conversation_file)
    return datetime.fromtimestamp(conversation_file.stat().st_mtime, tz=timezone.utc)


def _expired(stamp: str | None, now: datetime) -> bool:
    if not stamp:
        return False
    try:
        return _as_utc(datetime.fromisoformat(stamp)) < now
    except ValueError:
        return False


def sweep(
    now: datetime | None = None,
    max_age_days: int | None = None,
    dry_run: bool = False,
) -> SweepReport:
    """drop expired shares, then delete unshared conversations older than max_age_days"""
    now = now or datetime.now(timezone.utc)
    max_age = timedelta(days=max_age_days if max_age_days is not None else settings.unshared_max_age_days)
    report = SweepReport()

    records = load_shared_records()
    expired = [cid for cid, r in records.items() if _as_utc(r.expires_at) < now]
    for cid in expired:
        del records[cid]
        logger.info("removed expired share for conversation %s", cid)
    report.expired_shares = len(expired)
    if expired and not dry_run:
        _save_shared_records(records)

    root = Path(settings.conversations_dir)
    if not root.is_dir():
        logger.warning("conversations directory not found: %s", root)
        return report

    for folder in sorted(root.iterdir()):
        if not folder.is_dir():
            continue
        conversation_file = folder / CONVERSATION_FILE
        if not conversation_file.is_file():
            logger.warning("no %s in %s, skipping", CONVERSATION_FILE, folder.name)
            continue
        try:
            data = _read_json(conversation_file)
        except (OSError, ValueError) as e:
            logger.warning("unreadable conversation %s: %s", folder.name, e)
            continue

        is_shared = data.get("shared") is True or folder.name in records
        share_expired = folder.name in expired or _expired(data.get("expires_at"), now)
        age = now - _created_at(conversation_file, data)

        if share_expired:
            reason = "expired share"
        elif not is_shared and age > max_age:
            reason = f"unshared, age {age.total_seconds() / 86400:.1f} days"
        else:
            report.kept += 1
            continue

        if dry_run:
            logger.info("would remove conversation %s (%s)", folder.name, reason)
        else:
            shutil.rmtree(folder)
            logger.info("removed conversation %s (%s)", folder.name, reason)
        report.removed += 1

    logger.info(
        "cleanup complete: %d expired shares, %d removed, %d kept",
        report.expired_shares, report.removed, report.kept,
    )
    return report
