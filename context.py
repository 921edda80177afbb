# context.py
from processors.answer_evaluator import AnswerEvaluatorProcessor
from processors.game_logic.validation_dispatcher import ValidationDispatcher
from session_store import ChallengeRepository, SessionRegistry

# Global engine components, set up during application lifespan
answer_evaluator: AnswerEvaluatorProcessor | None = None
dispatcher: ValidationDispatcher | None = None
challenge_repository: ChallengeRepository | None = None
session_registry: SessionRegistry | None = None
