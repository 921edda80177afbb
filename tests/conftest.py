import asyncio

import pytest

from processors.answer_evaluator import AnswerEvaluatorProcessor
from processors.audio import AudioCapture
from processors.challenge import Challenge
from processors.errors import TransportFailure
from processors.game_logic.validation_dispatcher import ValidationDispatcher
from processors.mock_streaming_audio import MockMicrophone


def make_challenge(kind, correct_answer, **kwargs):
    kwargs.setdefault("id", f"{kind}-1")
    kwargs.setdefault("prompt", f"A {kind} challenge")
    kwargs.setdefault("points", 10)
    return Challenge(kind=kind, correct_answer=correct_answer, **kwargs)


TRANSLATION_RESPONSE = {
    "semantic_score": 82,
    "fluency_score": 75,
    "fidelity_score": 80,
    "overall_score": 79,
    "is_acceptable": True,
    "partial_credit": 8,
    "message": "Good translation!",
    "explanation": "Meaning is preserved.",
    "suggestions": ["Use the article 'the'."],
}

PRONUNCIATION_RESPONSE = {
    "transcribed_text": "good morning how are you",
    "pronunciation_score": 88,
    "fluency_score": 80,
    "clarity_score": 90,
    "overall_score": 86,
    "is_acceptable": True,
    "partial_credit": 9,
    "feedback": "Clear pronunciation.",
    "problematic_words": ["morning"],
    "suggestions": ["Stress the first syllable of 'morning'."],
}


class FakeEvaluationService:
    """Records requests and answers with canned responses or errors."""

    def __init__(self, translation=None, pronunciation=None, *, error=None, delay=0.0):
        self.translation = TRANSLATION_RESPONSE if translation is None else translation
        self.pronunciation = PRONUNCIATION_RESPONSE if pronunciation is None else pronunciation
        self.error = error
        self.delay = delay
        self.translation_requests = []
        self.pronunciation_requests = []
        self.closed = False
        self.started = asyncio.Event()

    async def _respond(self, response):
        self.started.set()
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error is not None:
            raise self.error
        return response

    async def evaluate_translation(self, request):
        self.translation_requests.append(request)
        return await self._respond(self.translation)

    async def evaluate_pronunciation(self, request, audio):
        self.pronunciation_requests.append((request, audio))
        return await self._respond(self.pronunciation)

    async def aclose(self):
        self.closed = True


@pytest.fixture
def fake_service():
    return FakeEvaluationService()


@pytest.fixture
def unreachable_service():
    return FakeEvaluationService(error=TransportFailure("connection refused"))


@pytest.fixture
def evaluator(fake_service):
    return AnswerEvaluatorProcessor(fake_service, timeout=1.0)


@pytest.fixture
def dispatcher(evaluator):
    return ValidationDispatcher(evaluator)


@pytest.fixture
def microphone():
    return MockMicrophone(interval=0.005)


@pytest.fixture
def capture(microphone):
    return AudioCapture(microphone, max_duration=5.0)
