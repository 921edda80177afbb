import logging
from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator

logger = logging.getLogger(__name__)


class ChallengeKind(str, Enum):
    MULTIPLE_CHOICE = "multiple_choice"
    FILL_BLANK = "fill_blank"
    TRANSLATION = "translation"
    LISTENING = "listening"
    SPEAKING = "speaking"
    MATCH_PAIRS = "match_pairs"
    SENTENCE_ORDER = "sentence_order"


AI_GRADED_KINDS = frozenset({ChallengeKind.TRANSLATION, ChallengeKind.SPEAKING})
SEQUENCE_ANSWER_KINDS = frozenset({ChallengeKind.MATCH_PAIRS, ChallengeKind.SENTENCE_ORDER})


class Challenge(BaseModel):
    """A single exercise, read-only once loaded from the repository."""

    model_config = ConfigDict(frozen=True)

    id: str
    kind: ChallengeKind
    prompt: str
    audio_url: Optional[str] = None
    image_url: Optional[str] = None
    options: Optional[tuple[str, ...]] = None
    correct_answer: str | tuple[str, ...]
    hint: Optional[str] = None
    explanation: Optional[str] = None
    points: int = Field(default=10, gt=0)
    difficulty_level: Optional[str] = None

    @model_validator(mode="after")
    def _check_answer_shape(self) -> "Challenge":
        is_sequence = isinstance(self.correct_answer, tuple)
        if self.kind in SEQUENCE_ANSWER_KINDS and not is_sequence:
            raise ValueError(f"{self.kind.value} challenges need a list as correct_answer")
        if self.kind is ChallengeKind.SPEAKING and is_sequence:
            raise ValueError("speaking challenges need the expected text as correct_answer")
        if is_sequence and not self.correct_answer:
            raise ValueError("correct_answer must not be empty")
        return self

    @property
    def is_ai_graded(self) -> bool:
        return self.kind in AI_GRADED_KINDS

    @property
    def accepted_answers(self) -> tuple[str, ...]:
        """Every acceptable text answer, for kinds compared as plain text."""
        if isinstance(self.correct_answer, tuple):
            return self.correct_answer
        return (self.correct_answer,)


class AIFeedback(BaseModel):
    """What an AI evaluation (or its fallback) said about a submission."""

    scores: dict[str, float]
    is_acceptable: bool
    partial_credit: int = Field(ge=0)
    message: str = ""
    explanation: str = ""
    suggestions: list[str] = []
    transcribed_text: Optional[str] = None
    problematic_words: list[str] = []
    degraded: bool = False


class GradingSource(str, Enum):
    DETERMINISTIC = "deterministic"
    AI = "ai"
    FALLBACK = "fallback"


class GradedResult(BaseModel):
    correct: bool
    points_earned: int = Field(ge=0)
    feedback: Optional[AIFeedback] = None
    grading: GradingSource = GradingSource.DETERMINISTIC


class SubmissionStatus(str, Enum):
    UNANSWERED = "unanswered"
    SUBMITTED = "submitted"
    GRADED = "graded"


class SubmissionState(BaseModel):
    """Transient per-challenge answer state held by a session."""

    status: SubmissionStatus = SubmissionStatus.UNANSWERED
    answer: Any = None
    audio_payload: Optional[bytes] = None
    result: Optional[GradedResult] = None
    attempts: int = 0
    points_credited: int = 0

    @property
    def feedback(self) -> Optional[AIFeedback]:
        return self.result.feedback if self.result else None

    @property
    def is_correct(self) -> Optional[bool]:
        return self.result.correct if self.result else None

    def mark_submitted(self, answer: Any, audio_payload: Optional[bytes] = None) -> None:
        self.status = SubmissionStatus.SUBMITTED
        self.answer = answer
        self.audio_payload = audio_payload
        self.attempts += 1

    def mark_graded(self, result: GradedResult) -> None:
        self.status = SubmissionStatus.GRADED
        self.result = result

    def reset(self) -> None:
        """Back to unanswered. Attempts and credited points are kept."""
        self.status = SubmissionStatus.UNANSWERED
        self.answer = None
        self.audio_payload = None
        self.result = None
