import pytest

from conftest import PRONUNCIATION_RESPONSE, TRANSLATION_RESPONSE, FakeEvaluationService
from processors.answer_evaluator import DAILY_LIMIT_NOTE, FALLBACK_NOTE, AnswerEvaluatorProcessor
from processors.errors import ContractViolation, DailyLimitReached, ServiceError


async def translate(evaluator, user_translation="I like apples", **kwargs):
    kwargs.setdefault("canonical_answers", ("I like apples",))
    kwargs.setdefault("max_points", 10)
    return await evaluator.evaluate_translation(
        "Eu gosto de maçãs.", user_translation, "basics-1-06", "intermediate", **kwargs
    )


@pytest.mark.asyncio
async def test_translation_scored_by_service(evaluator, fake_service):
    score = await translate(evaluator)

    assert score.degraded is False
    assert score.overall_score == 79
    assert score.is_acceptable is True
    assert score.partial_credit == 8
    assert score.message == "Good translation!"
    request = fake_service.translation_requests[0]
    assert request["user_translation"] == "I like apples"
    assert request["challenge_id"] == "basics-1-06"
    assert request["difficulty_level"] == "intermediate"


@pytest.mark.asyncio
async def test_partial_credit_is_capped_at_challenge_points():
    service = FakeEvaluationService(translation={**TRANSLATION_RESPONSE, "partial_credit": 25})
    evaluator = AnswerEvaluatorProcessor(service)

    score = await translate(evaluator, max_points=10)

    assert score.partial_credit == 10


@pytest.mark.asyncio
async def test_wrapped_service_response_is_understood():
    wrapped = {
        "success": True,
        "ai_analysis": {
            "semantic_score": 60,
            "fluency_score": 55,
            "fidelity_score": 50,
            "overall_score": 55,
            "is_acceptable": False,
        },
        "feedback": {
            "message": "Almost there.",
            "suggestions": ["Check the verb."],
            "problematic_words": [],
        },
        "points_earned": 4,
    }
    evaluator = AnswerEvaluatorProcessor(FakeEvaluationService(translation=wrapped))

    score = await translate(evaluator, "I likes apple")

    assert score.degraded is False
    assert score.is_acceptable is False
    assert score.partial_credit == 4
    assert score.message == "Almost there."
    assert score.suggestions == ["Check the verb."]


@pytest.mark.asyncio
async def test_unreachable_service_falls_back_to_comparison(unreachable_service):
    evaluator = AnswerEvaluatorProcessor(unreachable_service)

    score = await translate(evaluator, "  i like APPLES! ")

    assert score.degraded is True
    assert score.is_acceptable is True
    assert score.partial_credit == 10
    assert score.overall_score == 100
    assert FALLBACK_NOTE in score.explanation


@pytest.mark.asyncio
async def test_fallback_rejects_wrong_translation(unreachable_service):
    evaluator = AnswerEvaluatorProcessor(unreachable_service)

    score = await translate(evaluator, "I like oranges")

    assert score.degraded is True
    assert score.is_acceptable is False
    assert score.partial_credit == 0
    assert "I like apples" in score.message


@pytest.mark.asyncio
async def test_slow_service_times_out_into_fallback():
    service = FakeEvaluationService(delay=1.0)
    evaluator = AnswerEvaluatorProcessor(service, timeout=0.05)

    score = await translate(evaluator)

    assert score.degraded is True
    assert score.is_acceptable is True


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "response",
    [
        {**TRANSLATION_RESPONSE, "overall_score": 150},
        {**TRANSLATION_RESPONSE, "partial_credit": -1},
        {"message": "no scores at all"},
    ],
)
async def test_malformed_payload_falls_back(response):
    evaluator = AnswerEvaluatorProcessor(FakeEvaluationService(translation=response))

    score = await translate(evaluator)

    assert score.degraded is True


@pytest.mark.asyncio
async def test_service_error_falls_back():
    evaluator = AnswerEvaluatorProcessor(FakeEvaluationService(error=ServiceError("HTTP 500")))

    score = await translate(evaluator)

    assert score.degraded is True


@pytest.mark.asyncio
async def test_without_service_every_answer_uses_fallback():
    evaluator = AnswerEvaluatorProcessor(None)

    score = await translate(evaluator, "I like apples")

    assert score.degraded is True
    assert score.partial_credit == 10
    await evaluator.aclose()


@pytest.mark.asyncio
@pytest.mark.parametrize("blank", ["", "   "])
async def test_empty_translation_is_rejected_locally(evaluator, fake_service, blank):
    with pytest.raises(ContractViolation):
        await translate(evaluator, blank)
    assert fake_service.translation_requests == []


@pytest.mark.asyncio
async def test_pronunciation_sends_recorded_audio(evaluator, fake_service):
    score = await evaluator.evaluate_pronunciation(
        b"\x00\x01\x02", "Good morning, how are you?", "basics-1-07", "beginner", max_points=10
    )

    assert score.degraded is False
    assert score.transcribed_text == PRONUNCIATION_RESPONSE["transcribed_text"]
    assert score.problematic_words == ["morning"]
    assert score.partial_credit == 9
    request, audio = fake_service.pronunciation_requests[0]
    assert audio == b"\x00\x01\x02"
    assert request["expected_text"] == "Good morning, how are you?"
    assert request["difficulty_level"] == "beginner"


@pytest.mark.asyncio
async def test_pronunciation_fallback_accepts_any_recording(unreachable_service):
    evaluator = AnswerEvaluatorProcessor(unreachable_service)

    recorded = await evaluator.evaluate_pronunciation(b"\x00\x01", "Hello", "s1", "beginner", max_points=10)
    silent = await evaluator.evaluate_pronunciation(b"", "Hello", "s1", "beginner", max_points=10)

    assert recorded.degraded and recorded.is_acceptable and recorded.partial_credit == 10
    assert silent.degraded and not silent.is_acceptable and silent.partial_credit == 0


@pytest.mark.asyncio
async def test_pronunciation_without_audio_is_rejected(evaluator, fake_service):
    with pytest.raises(ContractViolation):
        await evaluator.evaluate_pronunciation(None, "Hello", "s1", "beginner", max_points=10)
    assert fake_service.pronunciation_requests == []


@pytest.mark.asyncio
async def test_aclose_closes_service(evaluator, fake_service):
    await evaluator.aclose()
    assert fake_service.closed is True


@pytest.mark.asyncio
async def test_daily_limit_is_explained_in_the_fallback():
    service = FakeEvaluationService(error=DailyLimitReached("HTTP 429"))
    evaluator = AnswerEvaluatorProcessor(service)

    translation = await translate(evaluator, "I like oranges")
    pronunciation = await evaluator.evaluate_pronunciation(b"\x00", "Hello", "s1", "beginner", max_points=10)

    assert translation.degraded is True
    assert DAILY_LIMIT_NOTE in translation.message
    assert DAILY_LIMIT_NOTE in translation.explanation
    assert pronunciation.degraded is True
    assert DAILY_LIMIT_NOTE in pronunciation.feedback
