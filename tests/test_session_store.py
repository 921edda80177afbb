import asyncio
import json
import pathlib

import pytest

from conftest import make_challenge
from processors.audio import AudioCaptureState
from processors.challenge import ChallengeKind
from processors.mock_streaming_audio import MockMicrophone
from session_store import ChallengeRepository, LessonNotFound, SessionNotFound, SessionRegistry

LESSONS_DIR = pathlib.Path(__file__).resolve().parent.parent / "lessons"


def test_bundled_lesson_loads():
    repository = ChallengeRepository(str(LESSONS_DIR))

    challenges = repository.get_lesson("basics-1")

    assert len(challenges) == 7
    assert {c.kind for c in challenges} == set(ChallengeKind)
    assert repository.get_lesson("basics-1") is challenges
    assert "basics-1" in repository.list_lessons()


def test_lesson_as_plain_list(tmp_path):
    lesson = [{"id": "q1", "kind": "fill_blank", "prompt": "I ___ tea.", "correct_answer": "like"}]
    (tmp_path / "tea.json").write_text(json.dumps(lesson), encoding="utf-8")
    repository = ChallengeRepository(str(tmp_path))

    challenges = repository.get_lesson("tea")

    assert challenges[0].kind is ChallengeKind.FILL_BLANK
    assert repository.list_lessons() == ["tea"]


@pytest.mark.parametrize("lesson_id", ["missing", "../secrets", "", ".hidden"])
def test_unknown_or_unsafe_lesson_ids(tmp_path, lesson_id):
    repository = ChallengeRepository(str(tmp_path))
    with pytest.raises(LessonNotFound):
        repository.get_lesson(lesson_id)


def test_missing_directory_lists_nothing(tmp_path):
    assert ChallengeRepository(str(tmp_path / "nope")).list_lessons() == []


@pytest.mark.asyncio
async def test_registry_wires_session_callbacks(dispatcher):
    registry = SessionRegistry(dispatcher, lambda: MockMicrophone(interval=0.005), max_recording_seconds=5)
    challenge = make_challenge(ChallengeKind.MULTIPLE_CHOICE, "dog", options=("cat", "dog"))

    live = registry.create([challenge])
    assert registry.get(live.session_id) is live
    assert len(registry) == 1
    assert live.controller.difficulty_level == "intermediate"
    assert live.controller.audio.max_duration == 5

    await live.controller.submit("dog")
    await live.controller.advance()

    assert live.answers == [(True, 10)]
    assert live.completed_signals == 1


@pytest.mark.asyncio
async def test_ending_a_session_releases_its_microphone(dispatcher):
    registry = SessionRegistry(dispatcher, lambda: MockMicrophone(interval=0.005))
    live = registry.create(
        [make_challenge(ChallengeKind.SPEAKING, "Hello")], difficulty_level="advanced"
    )
    assert live.controller.difficulty_level == "advanced"
    await live.controller.audio.start()

    ended = await registry.end(live.session_id)

    assert ended is live
    assert live.microphone.acquired_count == 0
    assert live.controller.audio.state is AudioCaptureState.IDLE
    assert live.completed_signals == 0
    with pytest.raises(SessionNotFound):
        registry.get(live.session_id)
    with pytest.raises(SessionNotFound):
        await registry.end(live.session_id)


@pytest.mark.asyncio
async def test_close_all(dispatcher):
    registry = SessionRegistry(dispatcher, MockMicrophone)
    sessions = [registry.create([make_challenge(ChallengeKind.FILL_BLANK, "like")]) for _ in range(3)]

    await registry.close_all()

    assert len(registry) == 0
    assert all(live.controller.is_closed for live in sessions)


@pytest.mark.asyncio
async def test_completed_sessions_expire(dispatcher):
    registry = SessionRegistry(dispatcher, MockMicrophone, completed_session_ttl=0.01)
    live = registry.create([make_challenge(ChallengeKind.FILL_BLANK, "like")])
    await live.controller.submit("like")
    await live.controller.advance()
    assert registry.get(live.session_id) is live

    await asyncio.sleep(0.05)

    assert len(registry) == 0
    assert live.controller.is_closed
    with pytest.raises(SessionNotFound):
        registry.get(live.session_id)


@pytest.mark.asyncio
async def test_ending_a_completed_session_cancels_its_expiry(dispatcher):
    registry = SessionRegistry(dispatcher, MockMicrophone, completed_session_ttl=0.01)
    live = registry.create([make_challenge(ChallengeKind.FILL_BLANK, "like")])
    await live.controller.submit("like")
    await live.controller.advance()

    await registry.end(live.session_id)
    await asyncio.sleep(0.05)

    assert len(registry) == 0
