import base64
import binascii
import logging
from typing import Optional

from fastapi import APIRouter, HTTPException, Response

import context
from api.models import (
    AdvanceResponse,
    ChallengeView,
    SessionResponse,
    StartSessionRequest,
    SubmissionResponse,
    SubmitAnswerRequest,
)
from processors.challenge import Challenge
from session_store import LessonNotFound, LiveSession, SessionNotFound

router = APIRouter()
logger = logging.getLogger(__name__)


@router.get("/favicon.ico", include_in_schema=False)
async def favicon():
    return Response(status_code=204)


def _registry():
    if context.session_registry is None:
        raise HTTPException(status_code=503, detail="Practice engine not available.")
    return context.session_registry


def _live_session(session_id: str) -> LiveSession:
    try:
        return _registry().get(session_id)
    except SessionNotFound:
        raise HTTPException(status_code=404, detail="Session not found.") from None


def _challenge_view(challenge: Optional[Challenge]) -> Optional[ChallengeView]:
    if challenge is None:
        return None
    return ChallengeView(
        id=challenge.id,
        kind=challenge.kind.value,
        prompt=challenge.prompt,
        audio_url=challenge.audio_url,
        image_url=challenge.image_url,
        options=list(challenge.options) if challenge.options is not None else None,
        hint=challenge.hint,
        points=challenge.points,
    )


def _session_response(live: LiveSession) -> SessionResponse:
    controller = live.controller
    submission = controller.current_submission
    return SessionResponse(
        session_id=live.session_id,
        current_index=controller.current_index,
        total_challenges=len(controller),
        points=controller.points,
        completed=controller.is_complete,
        submission_status=submission.status.value if submission else None,
        recording_state=controller.audio.state.value,
        challenge=_challenge_view(controller.current_challenge),
        stats=controller.stats.summary(controller.current_index),
    )


@router.get("/lessons", response_model=list[str])
async def list_lessons_endpoint():
    if context.challenge_repository is None:
        return []
    return context.challenge_repository.list_lessons()


@router.post("/sessions", response_model=SessionResponse, status_code=201)
async def start_session_endpoint(body: StartSessionRequest):
    registry = _registry()
    if body.lesson_id is not None:
        if context.challenge_repository is None:
            raise HTTPException(status_code=503, detail="Challenge repository not available.")
        try:
            challenges = context.challenge_repository.get_lesson(body.lesson_id)
        except LessonNotFound:
            raise HTTPException(status_code=404, detail="Lesson not found.") from None
    else:
        challenges = tuple(body.challenges)

    live = registry.create(challenges, difficulty_level=body.difficulty_level)
    return _session_response(live)


@router.get("/sessions/{session_id}", response_model=SessionResponse)
async def get_session_endpoint(session_id: str):
    return _session_response(_live_session(session_id))


@router.post("/sessions/{session_id}/submit", response_model=SubmissionResponse)
async def submit_answer_endpoint(session_id: str, body: SubmitAnswerRequest):
    live = _live_session(session_id)
    controller = live.controller

    answer = body.answer
    if body.audio_base64 is not None:
        try:
            answer = base64.b64decode(body.audio_base64, validate=True)
        except (binascii.Error, ValueError):
            raise HTTPException(status_code=422, detail="audio_base64 is not valid base64.") from None

    challenge = controller.current_challenge
    result = await controller.submit(answer)
    feedback = result.feedback
    return SubmissionResponse(
        correct=result.correct,
        points_earned=result.points_earned,
        total_points=controller.points,
        grading=result.grading.value,
        degraded=bool(feedback and feedback.degraded),
        message=feedback.message if feedback else None,
        explanation=(feedback.explanation if feedback else None) or challenge.explanation,
        feedback=feedback,
    )


@router.post("/sessions/{session_id}/retry", response_model=SessionResponse)
async def retry_endpoint(session_id: str):
    live = _live_session(session_id)
    await live.controller.retry()
    return _session_response(live)


@router.post("/sessions/{session_id}/advance", response_model=AdvanceResponse)
async def advance_endpoint(session_id: str):
    live = _live_session(session_id)
    completed = await live.controller.advance()
    return AdvanceResponse(
        completed=completed,
        current_index=live.controller.current_index,
        challenge=_challenge_view(live.controller.current_challenge),
    )


@router.delete("/sessions/{session_id}", response_model=SessionResponse)
async def end_session_endpoint(session_id: str):
    try:
        live = await _registry().end(session_id)
    except SessionNotFound:
        raise HTTPException(status_code=404, detail="Session not found.") from None
    return _session_response(live)
