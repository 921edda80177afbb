import asyncio
import logging
from collections.abc import Sequence
from enum import Enum, auto
from typing import Any, Callable, Iterable, Optional

from processors.audio import AudioCapture, AudioCaptureState
from processors.challenge import (
    Challenge,
    ChallengeKind,
    GradedResult,
    SubmissionState,
    SubmissionStatus,
)
from processors.errors import ContractViolation, SessionClosed
from processors.game_logic.session_stats import SessionStats
from processors.game_logic.validation_dispatcher import DEFAULT_DIFFICULTY_LEVEL, ValidationDispatcher

logger = logging.getLogger(__name__)

AnswerListener = Callable[[bool, int], None]
CompleteListener = Callable[[], None]


class SessionPhase(Enum):
    ACTIVE = auto()
    COMPLETED = auto()
    CLOSED = auto()


class SessionController:
    """Walks a learner through an ordered list of challenges.

    One challenge is graded at a time: ``submit()`` for the current challenge must
    resolve before anything else is submitted. ``on_answer(correct, points)`` fires
    once per graded submission and ``on_complete()`` once, when ``advance()`` moves
    past the last challenge. ``aclose()`` tears the session down: grading in flight
    is cancelled and the microphone is released.

    Points credited for a challenge never exceed its point value, so a retried
    challenge can only top up what earlier attempts earned. The credited amount is
    what ``on_answer`` reports and what the returned result carries.
    """

    def __init__(
        self,
        challenges: Sequence[Challenge],
        dispatcher: ValidationDispatcher,
        *,
        audio: Optional[AudioCapture] = None,
        on_answer: Optional[AnswerListener] = None,
        on_complete: Optional[CompleteListener] = None,
        difficulty_level: str = DEFAULT_DIFFICULTY_LEVEL,
        retryable_kinds: Iterable[ChallengeKind] = tuple(ChallengeKind),
    ):
        if not challenges:
            raise ContractViolation("A practice session needs at least one challenge.")
        self.challenges = challenges
        self.dispatcher = dispatcher
        self.audio = audio
        self.on_answer = on_answer
        self.on_complete = on_complete
        self.difficulty_level = difficulty_level
        self.retryable_kinds = frozenset(retryable_kinds)

        self.submissions = [SubmissionState() for _ in challenges]
        self.current_index = 0
        self.points = 0
        self.phase = SessionPhase.ACTIVE
        self.stats = SessionStats(total_challenges=len(challenges))
        self._grading_task: Optional[asyncio.Task] = None

    def __len__(self) -> int:
        return len(self.challenges)

    @property
    def is_complete(self) -> bool:
        return self.phase is SessionPhase.COMPLETED

    @property
    def is_closed(self) -> bool:
        return self.phase is SessionPhase.CLOSED

    @property
    def is_grading(self) -> bool:
        return self._grading_task is not None

    @property
    def current_challenge(self) -> Optional[Challenge]:
        if self.current_index >= len(self.challenges):
            return None
        return self.challenges[self.current_index]

    @property
    def current_submission(self) -> Optional[SubmissionState]:
        if self.current_index >= len(self.submissions):
            return None
        return self.submissions[self.current_index]

    def _require_active(self, operation: str) -> None:
        if self.phase is SessionPhase.CLOSED:
            raise ContractViolation(f"{operation}() called on a closed session.")
        if self.phase is SessionPhase.COMPLETED:
            raise ContractViolation(f"{operation}() called on a completed session.")
        if self._grading_task is not None:
            raise ContractViolation(f"{operation}() called while an answer is being graded.")

    def _take_answer(self, challenge: Challenge, answer: Any) -> tuple[Any, Optional[bytes], bool]:
        """Checks the answer's shape; returns (answer, audio payload, from capture)."""
        if challenge.kind is ChallengeKind.SPEAKING:
            if answer is None:
                if self.audio is None or self.audio.state is not AudioCaptureState.STOPPED:
                    raise ContractViolation("Record and stop an answer before submitting a speaking challenge.")
                return None, self.audio.payload, True
            if isinstance(answer, (bytes, bytearray)):
                return None, bytes(answer), False
            raise ContractViolation("A speaking answer must be an audio recording.")
        if answer is None:
            raise ContractViolation("An answer is required.")
        if challenge.kind is ChallengeKind.TRANSLATION:
            if not isinstance(answer, str) or not answer.strip():
                raise ContractViolation("A translation must be non-empty text.")
        return answer, None, False

    async def submit(self, answer: Any = None) -> GradedResult:
        self._require_active("submit")
        challenge = self.current_challenge
        submission = self.current_submission
        if submission.status is not SubmissionStatus.UNANSWERED:
            raise ContractViolation(
                f"Challenge {challenge.id} is already {submission.status.value}; retry() it first."
            )

        answer, audio_payload, from_capture = self._take_answer(challenge, answer)
        submission.mark_submitted(answer, audio_payload)

        async def grade(_payload: Optional[bytes] = None) -> GradedResult:
            return await self.dispatcher.submit(challenge, submission, self.difficulty_level)

        self._grading_task = asyncio.create_task(self.audio.analyze(grade) if from_capture else grade())
        try:
            result = await self._grading_task
        except asyncio.CancelledError:
            if self.phase is SessionPhase.CLOSED:
                raise SessionClosed(f"Session closed while challenge {challenge.id} was being graded.") from None
            submission.reset()
            raise
        except Exception:
            logger.error(f"Grading challenge {challenge.id} failed.", exc_info=True)
            submission.reset()
            raise
        finally:
            self._grading_task = None

        if self.phase is SessionPhase.CLOSED:
            raise SessionClosed(f"Session closed while challenge {challenge.id} was being graded.")

        credited = min(result.points_earned, challenge.points - submission.points_credited)
        credited = max(credited, 0)
        result = result.model_copy(update={"points_earned": credited})
        submission.points_credited += credited
        submission.mark_graded(result)
        self.points += credited
        self.stats.record(result, credited)
        if self.on_answer is not None:
            self.on_answer(result.correct, credited)
        return result

    async def retry(self) -> None:
        self._require_active("retry")
        challenge = self.current_challenge
        submission = self.current_submission
        if submission.status is not SubmissionStatus.GRADED or submission.is_correct:
            raise ContractViolation("Only an incorrectly answered challenge can be retried.")
        if challenge.kind not in self.retryable_kinds:
            raise ContractViolation(f"{challenge.kind.value} challenges cannot be retried.")
        submission.reset()
        if self.audio is not None:
            await self.audio.discard()
        self.stats.record_retry()
        logger.info(f"Retrying challenge {challenge.id} (attempt {submission.attempts + 1}).")

    async def advance(self) -> bool:
        """Moves to the next challenge. Returns True once the session is complete."""
        self._require_active("advance")
        if self.current_submission.status is not SubmissionStatus.GRADED:
            raise ContractViolation("advance() is only allowed after the current challenge is graded.")
        if self.audio is not None:
            if self.audio.is_recording:
                raise ContractViolation("Stop or discard the recording before moving on.")
            await self.audio.discard()

        self.current_index += 1
        if self.current_index < len(self.challenges):
            return False

        self.phase = SessionPhase.COMPLETED
        self.stats.finish()
        logger.info(f"Session complete: {self.points} points, {self.stats.accuracy}% accuracy.")
        if self.on_complete is not None:
            self.on_complete()
        return True

    async def aclose(self) -> None:
        """Ends the session early, or cleans up after it completed."""
        if self.phase is SessionPhase.CLOSED:
            return
        self.phase = SessionPhase.CLOSED
        task = self._grading_task
        if task is not None and not task.done():
            logger.info("Cancelling grading still in flight.")
            task.cancel()
        if self.audio is not None:
            await self.audio.aclose()
        self.stats.finish()
        position = min(self.current_index + 1, len(self.challenges))
        logger.info(f"Session closed at challenge {position}/{len(self.challenges)}.")

    async def __aenter__(self) -> "SessionController":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.aclose()
