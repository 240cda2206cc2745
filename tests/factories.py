"""Shared builders for test data."""

from convo.models.conversation import (
    AgentConfig,
    AudioClip,
    ConversationSettings,
    Direction,
    Participant,
    Transcript,
)


def agents(tts: bool = False) -> dict[Participant, AgentConfig]:
    return {
        Participant.AI1: AgentConfig(name="Alice", model="openai/gpt-4o", prompt="You are curious.",
                                     tts_enabled=tts, voice="Arista-PlayAI"),
        Participant.AI2: AgentConfig(name="Bob", model="anthropic/claude-3-sonnet", prompt="You are terse.",
                                     tts_enabled=tts, voice="Angelo-PlayAI"),
    }


def make_transcript(conversation_id: str, *texts: str) -> Transcript:
    transcript = Transcript(
        conversation_id=conversation_id,
        settings=ConversationSettings(direction=Direction.AI1_TO_AI2, agents=agents()),
    )
    speakers = [Participant.AI1, Participant.AI2]
    for i, text in enumerate(texts):
        transcript.append(speakers[i % 2], text, model="openai/gpt-4o")
    return transcript


def clips(*turn_indices: int) -> list[AudioClip]:
    return [
        AudioClip(turn_index=i, filename=f"message_{i}.mp3", uri=f"/conversations/c/audio/message_{i}.mp3")
        for i in turn_indices
    ]


MP3_BYTES = b"ID3" + b"\x00" * 512
