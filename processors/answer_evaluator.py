import asyncio
import base64
import json
import logging
from typing import Any, Optional, Protocol

from genai_processors import processor
from genai_processors import streams
from genai_processors.content_api import ProcessorPart
from pydantic import BaseModel, Field, ValidationError

from processors.errors import ContractViolation, DailyLimitReached, ServiceError
from processors.validators import clean_text

logger = logging.getLogger(__name__)

FALLBACK_NOTE = "AI evaluation was unavailable"
DAILY_LIMIT_NOTE = "You have used all of today's AI analyses"


class EvaluationService(Protocol):
    async def evaluate_translation(self, request: dict[str, Any]) -> dict[str, Any]: ...

    async def evaluate_pronunciation(self, request: dict[str, Any], audio: bytes) -> dict[str, Any]: ...

    async def aclose(self) -> None: ...


class TranslationScore(BaseModel):
    semantic_score: float = Field(ge=0, le=100)
    fluency_score: float = Field(ge=0, le=100)
    fidelity_score: float = Field(ge=0, le=100)
    overall_score: float = Field(ge=0, le=100)
    is_acceptable: bool
    partial_credit: int = Field(ge=0)
    message: str = ""
    explanation: str = ""
    suggestions: list[str] = []
    degraded: bool = False


class PronunciationScore(BaseModel):
    transcribed_text: str = ""
    pronunciation_score: float = Field(ge=0, le=100)
    fluency_score: float = Field(ge=0, le=100)
    clarity_score: float = Field(ge=0, le=100)
    overall_score: float = Field(ge=0, le=100)
    is_acceptable: bool
    partial_credit: int = Field(ge=0)
    feedback: str = ""
    problematic_words: list[str] = []
    suggestions: list[str] = []
    degraded: bool = False


def _flatten_response(data: dict[str, Any]) -> dict[str, Any]:
    """Accepts both the flat contract and the ``{ai_analysis, feedback}`` envelope."""
    analysis = data.get("ai_analysis")
    if not isinstance(analysis, dict):
        return data
    flat = dict(analysis)
    feedback = data.get("feedback")
    if isinstance(feedback, dict):
        flat.setdefault("message", feedback.get("message", ""))
        flat.setdefault("feedback", feedback.get("message", ""))
        flat.setdefault("explanation", feedback.get("explanation", ""))
        flat.setdefault("suggestions", feedback.get("suggestions", []))
        flat.setdefault("problematic_words", feedback.get("problematic_words", []))
    elif isinstance(feedback, str):
        flat.setdefault("feedback", feedback)
    if "points_earned" in data and "partial_credit" not in flat:
        flat["partial_credit"] = data["points_earned"]
    return flat


class AnswerEvaluatorProcessor(processor.Processor):
    """Scores translations and pronunciations through the evaluation service.

    Input parts carry a JSON request with a ``kind`` of ``translation`` or
    ``speaking``; the output part is the JSON of a ``TranslationScore`` or
    ``PronunciationScore``. Any failure of the service (unreachable, timed out,
    error status, malformed body) is absorbed: the processor answers with a
    deterministic score flagged ``degraded``.
    """

    def __init__(self, service: Optional[EvaluationService] = None, timeout: float = 15.0):
        self.service = service
        self.timeout = timeout
        if service is None:
            logger.warning("No evaluation service configured. AI-graded answers will use the fallback.")

    async def call(
        self,
        input_stream: streams.AsyncIterable[ProcessorPart]
    ) -> streams.AsyncIterable[ProcessorPart]:
        input_json = ""
        async for part in input_stream:
            if part.text:
                input_json += part.text

        try:
            input_data = json.loads(input_json)
            kind = input_data["kind"]
        except (json.JSONDecodeError, KeyError) as e:
            logger.error(f"Error processing input for evaluation: {e}")
            yield ProcessorPart(json.dumps({"error": "Invalid input format."}))
            return

        if kind == "translation":
            score = await self._score_translation(input_data)
        elif kind == "speaking":
            score = await self._score_pronunciation(input_data)
        else:
            yield ProcessorPart(json.dumps({"error": f"Unsupported evaluation kind: {kind}"}))
            return
        yield ProcessorPart(score.model_dump_json())

    async def _ask_service(self, kind: str, request: dict[str, Any], audio: bytes = b"") -> dict[str, Any]:
        if self.service is None:
            raise ServiceError("No evaluation service configured.")
        if kind == "translation":
            call = self.service.evaluate_translation(request)
        else:
            call = self.service.evaluate_pronunciation(request, audio)
        return _flatten_response(await asyncio.wait_for(call, timeout=self.timeout))

    async def _score_translation(self, request: dict[str, Any]) -> TranslationScore:
        max_points = request["max_points"]
        try:
            data = await self._ask_service("translation", request)
            score = TranslationScore.model_validate({**data, "degraded": False})
        except asyncio.TimeoutError:
            logger.warning(f"Translation evaluation for challenge {request['challenge_id']} timed out after {self.timeout}s.")
            return self._translation_fallback(request)
        except ValidationError as e:
            logger.warning(f"Malformed translation evaluation for challenge {request['challenge_id']}: {e}")
            return self._translation_fallback(request)
        except DailyLimitReached as e:
            logger.warning(f"Translation evaluation for challenge {request['challenge_id']} refused: {e}")
            return self._translation_fallback(request, note=DAILY_LIMIT_NOTE)
        except Exception as e:
            logger.warning(f"Translation evaluation for challenge {request['challenge_id']} failed: {e}")
            return self._translation_fallback(request)

        logger.info(
            f"Translation evaluated for challenge {request['challenge_id']}: "
            f"overall={score.overall_score} acceptable={score.is_acceptable}"
        )
        return score.model_copy(update={"partial_credit": min(score.partial_credit, max_points)})

    async def _score_pronunciation(self, request: dict[str, Any]) -> PronunciationScore:
        max_points = request["max_points"]
        audio = base64.b64decode(request["audio_base64"])
        try:
            data = await self._ask_service("speaking", request, audio)
            score = PronunciationScore.model_validate({**data, "degraded": False})
        except asyncio.TimeoutError:
            logger.warning(f"Pronunciation evaluation for challenge {request['challenge_id']} timed out after {self.timeout}s.")
            return self._pronunciation_fallback(request, audio)
        except ValidationError as e:
            logger.warning(f"Malformed pronunciation evaluation for challenge {request['challenge_id']}: {e}")
            return self._pronunciation_fallback(request, audio)
        except DailyLimitReached as e:
            logger.warning(f"Pronunciation evaluation for challenge {request['challenge_id']} refused: {e}")
            return self._pronunciation_fallback(request, audio, note=DAILY_LIMIT_NOTE)
        except Exception as e:
            logger.warning(f"Pronunciation evaluation for challenge {request['challenge_id']} failed: {e}")
            return self._pronunciation_fallback(request, audio)

        logger.info(
            f"Pronunciation evaluated for challenge {request['challenge_id']}: "
            f"overall={score.overall_score} acceptable={score.is_acceptable}"
        )
        return score.model_copy(update={"partial_credit": min(score.partial_credit, max_points)})

    def _translation_fallback(self, request: dict[str, Any], note: str = FALLBACK_NOTE) -> TranslationScore:
        accepted = {clean_text(answer) for answer in request["canonical_answers"]}
        is_correct = clean_text(request["user_translation"]) in accepted
        score = 100 if is_correct else 0
        if is_correct:
            message = f"Correct! ({note}, your answer was compared with the expected translation.)"
        else:
            message = f"Not quite. The expected translation is: {request['canonical_answers'][0]} ({note}.)"
        return TranslationScore(
            semantic_score=score,
            fluency_score=score,
            fidelity_score=score,
            overall_score=score,
            is_acceptable=is_correct,
            partial_credit=request["max_points"] if is_correct else 0,
            message=message,
            explanation=f"{note}; graded by exact comparison instead.",
            suggestions=[],
            degraded=True,
        )

    def _pronunciation_fallback(self, request: dict[str, Any], audio: bytes, note: str = FALLBACK_NOTE) -> PronunciationScore:
        has_audio = bool(audio)
        score = 100 if has_audio else 0
        return PronunciationScore(
            transcribed_text="",
            pronunciation_score=score,
            fluency_score=score,
            clarity_score=score,
            overall_score=score,
            is_acceptable=has_audio,
            partial_credit=request["max_points"] if has_audio else 0,
            feedback=f"{note}; your recording was accepted without scoring.",
            problematic_words=[],
            suggestions=[],
            degraded=True,
        )

    async def _run(self, input_data: dict[str, Any]) -> dict[str, Any]:
        response_json = ""
        input_stream = streams.stream_content([ProcessorPart(json.dumps(input_data))])
        async for part in self(input_stream):
            if part.text:
                response_json += part.text
        data = json.loads(response_json)
        if "error" in data:
            raise ContractViolation(data["error"])
        return data

    async def evaluate_translation(
        self,
        source_text: str,
        user_translation: str,
        challenge_id: str,
        difficulty_level: str,
        *,
        canonical_answers: tuple[str, ...] | list[str],
        max_points: int,
    ) -> TranslationScore:
        if not user_translation or not user_translation.strip():
            raise ContractViolation("A translation must not be empty.")
        data = await self._run({
            "kind": "translation",
            "source_text": source_text,
            "user_translation": user_translation,
            "challenge_id": challenge_id,
            "difficulty_level": difficulty_level,
            "canonical_answers": list(canonical_answers),
            "max_points": max_points,
        })
        return TranslationScore.model_validate(data)

    async def evaluate_pronunciation(
        self,
        audio_payload: Optional[bytes],
        expected_text: str,
        challenge_id: str,
        difficulty_level: str,
        *,
        max_points: int,
        mimetype: str = "audio/webm",
    ) -> PronunciationScore:
        if audio_payload is None:
            raise ContractViolation("Pronunciation needs a recorded audio payload.")
        data = await self._run({
            "kind": "speaking",
            "audio_base64": base64.b64encode(audio_payload).decode("ascii"),
            "mimetype": mimetype,
            "expected_text": expected_text,
            "challenge_id": challenge_id,
            "difficulty_level": difficulty_level,
            "max_points": max_points,
        })
        return PronunciationScore.model_validate(data)

    async def aclose(self) -> None:
        if self.service is not None:
            await self.service.aclose()
