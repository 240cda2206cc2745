from __future__ import annotations

import enum
from datetime import datetime, timezone

from pydantic import BaseModel, ConfigDict, Field, model_validator


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Participant(str, enum.Enum):
    HUMAN = "human"
    AI1 = "ai1"
    AI2 = "ai2"

    @property
    def default_name(self) -> str:
        return {"human": "Human", "ai1": "AI-1", "ai2": "AI-2"}[self.value]

    @property
    def counterpart(self) -> Participant:
        if self is Participant.HUMAN:
            raise ValueError("human has no counterpart agent")
        return Participant.AI2 if self is Participant.AI1 else Participant.AI1


class Direction(str, enum.Enum):
    HUMAN_TO_AI1 = "human-to-ai1"
    HUMAN_TO_AI2 = "human-to-ai2"
    AI1_TO_AI2 = "ai1-to-ai2"
    AI2_TO_AI1 = "ai2-to-ai1"

    @property
    def speaker(self) -> Participant:
        return _ENDPOINTS[self][0]

    @property
    def receiver(self) -> Participant:
        return _ENDPOINTS[self][1]

    @property
    def human_initiated(self) -> bool:
        return self.speaker is Participant.HUMAN


_ENDPOINTS = {
    Direction.HUMAN_TO_AI1: (Participant.HUMAN, Participant.AI1),
    Direction.HUMAN_TO_AI2: (Participant.HUMAN, Participant.AI2),
    Direction.AI1_TO_AI2: (Participant.AI1, Participant.AI2),
    Direction.AI2_TO_AI1: (Participant.AI2, Participant.AI1),
}


class AgentConfig(BaseModel):
    name: str = ""
    model: str = ""
    prompt: str = ""
    tts_enabled: bool = False
    voice: str = ""
    max_tokens: int = 150
    temperature: float = 0.7


class ConversationSettings(BaseModel):
    direction: Direction = Direction.AI1_TO_AI2
    agents: dict[Participant, AgentConfig] = Field(
        default_factory=lambda: {Participant.AI1: AgentConfig(), Participant.AI2: AgentConfig()}
    )

    def agent(self, participant: Participant) -> AgentConfig:
        return self.agents.get(participant) or AgentConfig()

    def display_name(self, participant: Participant) -> str:
        if participant is Participant.HUMAN:
            return participant.default_name
        return self.agent(participant).name or participant.default_name


class Turn(BaseModel):
    model_config = ConfigDict(frozen=True)

    speaker: Participant
    text: str
    model: str | None = None
    timestamp: datetime = Field(default_factory=_utcnow)
    index: int


class Notice(BaseModel):
    """system-level transcript entry; never indexed, never sent to a model"""
    model_config = ConfigDict(frozen=True)

    text: str
    after_index: int = -1
    timestamp: datetime = Field(default_factory=_utcnow)


class Transcript(BaseModel):
    conversation_id: str
    settings: ConversationSettings = Field(default_factory=ConversationSettings)
    turns: list[Turn] = []
    notices: list[Notice] = []
    created_at: datetime = Field(default_factory=_utcnow)
    shared: bool = False
    shared_at: datetime | None = None
    expires_at: datetime | None = None

    @model_validator(mode="after")
    def _contiguous_indices(self) -> Transcript:
        for position, turn in enumerate(self.turns):
            if turn.index != position:
                raise ValueError(f"turn at position {position} has index {turn.index}")
        return self

    def append(self, speaker: Participant, text: str, model: str | None = None) -> Turn:
        turn = Turn(speaker=speaker, text=text, model=model, index=len(self.turns))
        self.turns.append(turn)
        return turn

    def add_notice(self, text: str) -> Notice:
        notice = Notice(text=text, after_index=len(self.turns) - 1)
        self.notices.append(notice)
        return notice

    def has_turn(self, index: int) -> bool:
        return 0 <= index < len(self.turns)


class AudioClip(BaseModel):
    turn_index: int
    filename: str
    uri: str = ""
