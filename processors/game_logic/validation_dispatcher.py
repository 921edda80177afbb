import logging
from typing import Awaitable, Callable

from processors import validators
from processors.answer_evaluator import AnswerEvaluatorProcessor
from processors.challenge import (
    AIFeedback,
    Challenge,
    ChallengeKind,
    GradedResult,
    GradingSource,
    SubmissionState,
)

logger = logging.getLogger(__name__)

DEFAULT_DIFFICULTY_LEVEL = "intermediate"

Grader = Callable[[Challenge, SubmissionState, str], Awaitable[GradedResult]]


class ValidationDispatcher:
    """Routes a submission to the grader for its challenge kind.

    Translation and speaking go to the AI evaluator; every other kind is checked
    locally. Whether the submission may be graded at all is the caller's business.
    """

    def __init__(self, answer_evaluator: AnswerEvaluatorProcessor):
        self.answer_evaluator = answer_evaluator
        self._graders: dict[ChallengeKind, Grader] = {
            ChallengeKind.TRANSLATION: self._grade_translation,
            ChallengeKind.SPEAKING: self._grade_speaking,
        }
        for kind in validators.VALIDATORS:
            self._graders[kind] = self._grade_deterministic

    async def submit(
        self,
        challenge: Challenge,
        submission: SubmissionState,
        difficulty_level: str = DEFAULT_DIFFICULTY_LEVEL,
    ) -> GradedResult:
        grader = self._graders[challenge.kind]
        result = await grader(challenge, submission, challenge.difficulty_level or difficulty_level)
        logger.info(
            f"Challenge {challenge.id} ({challenge.kind.value}) graded by {result.grading.value}: "
            f"correct={result.correct} points={result.points_earned}"
        )
        return result

    async def _grade_deterministic(
        self, challenge: Challenge, submission: SubmissionState, difficulty_level: str
    ) -> GradedResult:
        correct = validators.validate(challenge.kind, submission.answer, challenge.correct_answer)
        return GradedResult(
            correct=correct,
            points_earned=challenge.points if correct else 0,
            grading=GradingSource.DETERMINISTIC,
        )

    async def _grade_translation(
        self, challenge: Challenge, submission: SubmissionState, difficulty_level: str
    ) -> GradedResult:
        score = await self.answer_evaluator.evaluate_translation(
            challenge.prompt,
            submission.answer,
            challenge.id,
            difficulty_level,
            canonical_answers=challenge.accepted_answers,
            max_points=challenge.points,
        )
        feedback = AIFeedback(
            scores={
                "semantic": score.semantic_score,
                "fluency": score.fluency_score,
                "fidelity": score.fidelity_score,
                "overall": score.overall_score,
            },
            is_acceptable=score.is_acceptable,
            partial_credit=score.partial_credit,
            message=score.message,
            explanation=score.explanation or (challenge.explanation or ""),
            suggestions=score.suggestions,
            degraded=score.degraded,
        )
        return self._from_feedback(challenge, feedback)

    async def _grade_speaking(
        self, challenge: Challenge, submission: SubmissionState, difficulty_level: str
    ) -> GradedResult:
        score = await self.answer_evaluator.evaluate_pronunciation(
            submission.audio_payload,
            challenge.correct_answer,
            challenge.id,
            difficulty_level,
            max_points=challenge.points,
        )
        feedback = AIFeedback(
            scores={
                "pronunciation": score.pronunciation_score,
                "fluency": score.fluency_score,
                "clarity": score.clarity_score,
                "overall": score.overall_score,
            },
            is_acceptable=score.is_acceptable,
            partial_credit=score.partial_credit,
            message=score.feedback,
            explanation=challenge.explanation or "",
            suggestions=score.suggestions,
            transcribed_text=score.transcribed_text,
            problematic_words=score.problematic_words,
            degraded=score.degraded,
        )
        return self._from_feedback(challenge, feedback)

    @staticmethod
    def _from_feedback(challenge: Challenge, feedback: AIFeedback) -> GradedResult:
        return GradedResult(
            correct=feedback.is_acceptable,
            points_earned=min(feedback.partial_credit, challenge.points),
            feedback=feedback,
            grading=GradingSource.FALLBACK if feedback.degraded else GradingSource.AI,
        )
