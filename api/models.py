from typing import Any

from pydantic import BaseModel, model_validator

from processors.challenge import AIFeedback, Challenge


class StartSessionRequest(BaseModel):
    lesson_id: str | None = None
    challenges: list[Challenge] | None = None
    difficulty_level: str | None = None

    @model_validator(mode="after")
    def _one_source(self) -> "StartSessionRequest":
        if (self.lesson_id is None) == (self.challenges is None):
            raise ValueError("Provide exactly one of lesson_id or challenges.")
        return self


class ChallengeView(BaseModel):
    id: str
    kind: str
    prompt: str
    audio_url: str | None = None
    image_url: str | None = None
    options: list[str] | None = None
    hint: str | None = None
    points: int


class SessionResponse(BaseModel):
    session_id: str
    current_index: int
    total_challenges: int
    points: int
    completed: bool
    submission_status: str | None = None
    recording_state: str
    challenge: ChallengeView | None = None
    stats: dict[str, Any]


class SubmitAnswerRequest(BaseModel):
    answer: str | list[str] | list[list[str]] | None = None
    audio_base64: str | None = None


class SubmissionResponse(BaseModel):
    correct: bool
    points_earned: int
    total_points: int
    grading: str
    degraded: bool
    message: str | None = None
    explanation: str | None = None
    feedback: AIFeedback | None = None


class AdvanceResponse(BaseModel):
    completed: bool
    current_index: int
    challenge: ChallengeView | None = None
