import asyncio
import json
import logging
import os
import uuid
from typing import Callable, Optional

from pydantic import TypeAdapter, ValidationError

from processors.audio import AudioCapture
from processors.challenge import Challenge
from processors.game_logic.session_controller import SessionController
from processors.game_logic.validation_dispatcher import DEFAULT_DIFFICULTY_LEVEL, ValidationDispatcher

logger = logging.getLogger(__name__)

_challenge_list = TypeAdapter(list[Challenge])


class LessonNotFound(LookupError):
    pass


class SessionNotFound(LookupError):
    pass


class ChallengeRepository:
    """Reads lessons (ordered challenge lists) from JSON files in a directory.

    A lesson file is either a JSON list of challenges or an object with a
    ``challenges`` list. Lessons are parsed once and cached.
    """

    def __init__(self, directory: str):
        self.directory = directory
        self._cache: dict[str, tuple[Challenge, ...]] = {}

    def _path(self, lesson_id: str) -> str:
        if not lesson_id or os.path.basename(lesson_id) != lesson_id or lesson_id.startswith("."):
            raise LessonNotFound(f"Invalid lesson id: {lesson_id!r}")
        return os.path.join(self.directory, f"{lesson_id}.json")

    def get_lesson(self, lesson_id: str) -> tuple[Challenge, ...]:
        if lesson_id in self._cache:
            return self._cache[lesson_id]
        path = self._path(lesson_id)
        try:
            with open(path, "r", encoding="utf-8") as f:
                data = json.load(f)
        except FileNotFoundError:
            raise LessonNotFound(f"Lesson not found: {lesson_id}") from None
        except json.JSONDecodeError as e:
            logger.error(f"Could not parse lesson file {path}: {e}")
            raise
        if isinstance(data, dict):
            data = data.get("challenges", [])
        try:
            challenges = tuple(_challenge_list.validate_python(data))
        except ValidationError:
            logger.error(f"Lesson file {path} contains invalid challenges.", exc_info=True)
            raise
        self._cache[lesson_id] = challenges
        logger.info(f"Loaded lesson {lesson_id} with {len(challenges)} challenges.")
        return challenges

    def list_lessons(self) -> list[str]:
        if not os.path.isdir(self.directory):
            return []
        return sorted(name[:-5] for name in os.listdir(self.directory) if name.endswith(".json"))


class LiveSession:
    """A running session plus the microphone that feeds its recordings."""

    def __init__(self, session_id: str, controller: SessionController, microphone):
        self.session_id = session_id
        self.controller = controller
        self.microphone = microphone
        self.answers: list[tuple[bool, int]] = []
        self.completed_signals = 0


class SessionRegistry:
    """In-memory table of the sessions currently being played.

    A session leaves the table when it is ended, or ``completed_session_ttl``
    seconds after it completes.
    """

    def __init__(
        self,
        dispatcher: ValidationDispatcher,
        microphone_factory: Callable[[], object],
        *,
        max_recording_seconds: float = 30.0,
        default_difficulty_level: str = DEFAULT_DIFFICULTY_LEVEL,
        completed_session_ttl: float = 300.0,
    ):
        self.dispatcher = dispatcher
        self.microphone_factory = microphone_factory
        self.max_recording_seconds = max_recording_seconds
        self.default_difficulty_level = default_difficulty_level
        self.completed_session_ttl = completed_session_ttl
        self._sessions: dict[str, LiveSession] = {}
        self._expiry: dict[str, asyncio.TimerHandle] = {}
        self._expiring: set[asyncio.Task] = set()

    def __len__(self) -> int:
        return len(self._sessions)

    def create(self, challenges, difficulty_level: Optional[str] = None) -> LiveSession:
        session_id = uuid.uuid4().hex
        microphone = self.microphone_factory()
        live: Optional[LiveSession] = None

        def on_answer(correct: bool, points: int) -> None:
            live.answers.append((correct, points))
            logger.info(f"Session {session_id}: answer graded correct={correct} points={points}")

        def on_complete() -> None:
            live.completed_signals += 1
            logger.info(f"Session {session_id}: complete.")
            self._schedule_expiry(session_id)

        controller = SessionController(
            challenges,
            self.dispatcher,
            audio=AudioCapture(microphone, max_duration=self.max_recording_seconds),
            on_answer=on_answer,
            on_complete=on_complete,
            difficulty_level=difficulty_level or self.default_difficulty_level,
        )
        live = LiveSession(session_id, controller, microphone)
        self._sessions[session_id] = live
        logger.info(f"Started session {session_id} with {len(challenges)} challenges.")
        return live

    def _schedule_expiry(self, session_id: str) -> None:
        loop = asyncio.get_running_loop()
        self._expiry[session_id] = loop.call_later(self.completed_session_ttl, self._expire, session_id)

    def _expire(self, session_id: str) -> None:
        self._expiry.pop(session_id, None)
        if session_id not in self._sessions:
            return
        logger.info(f"Session {session_id}: expired {self.completed_session_ttl}s after completion.")
        task = asyncio.get_running_loop().create_task(self.end(session_id))
        self._expiring.add(task)
        task.add_done_callback(self._expiring.discard)

    def get(self, session_id: str) -> LiveSession:
        try:
            return self._sessions[session_id]
        except KeyError:
            raise SessionNotFound(f"Session not found: {session_id}") from None

    async def end(self, session_id: str) -> LiveSession:
        live = self._sessions.pop(session_id, None)
        if live is None:
            raise SessionNotFound(f"Session not found: {session_id}")
        handle = self._expiry.pop(session_id, None)
        if handle is not None:
            handle.cancel()
        await live.controller.aclose()
        return live

    async def close_all(self) -> None:
        for session_id in list(self._sessions):
            await self.end(session_id)
