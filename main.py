import os
import logging
import uvicorn
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from dotenv import load_dotenv

from api import http_routes, websocket_routes
import context
from processors.answer_evaluator import AnswerEvaluatorProcessor
from processors.errors import ContractViolation, SessionClosed
from processors.evaluation_service import EvaluationServiceClient
from processors.game_logic.validation_dispatcher import ValidationDispatcher
from processors.gemini_judge import GeminiTranslationJudge
from processors.mock_streaming_audio import MockMicrophone
from processors.streaming_audio import StreamingMicrophone
from session_store import ChallengeRepository, SessionRegistry

# --- Configuration ---
load_dotenv()


def _env_flag(name: str) -> bool:
    return os.getenv(name, "false").lower() == "true"


# Configure logging with a specific format
log_level = logging.DEBUG if _env_flag("DEBUG_MODE") else logging.INFO
logging.basicConfig(
    level=log_level,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)
logger = logging.getLogger(__name__)

# Suppress verbose logging from Uvicorn and other libraries in non-debug mode
if not _env_flag("DEBUG_MODE"):
    logging.getLogger("uvicorn").setLevel(logging.WARNING)
    logging.getLogger("asyncio").setLevel(logging.WARNING)
    logging.getLogger("websockets").setLevel(logging.WARNING)
    logging.getLogger("genai_processors").setLevel(logging.INFO)
    logging.getLogger("httpx").setLevel(logging.WARNING)
else:
    logging.getLogger("genai_processors").setLevel(logging.DEBUG)
    logging.getLogger("httpx").setLevel(logging.DEBUG)


# --- Constants ---
GEMINI_DEFAULT_MODELS = "gemini-2.5-flash,gemini-1.5-flash"


def create_evaluation_service():
    """Picks the evaluation backend from the environment, or None for fallback-only."""
    api_url = os.getenv("EVALUATION_API_URL")
    timeout = float(os.getenv("EVALUATION_TIMEOUT_SECONDS", "15"))
    if api_url:
        logger.info(f"Using evaluation service at {api_url}.")
        return EvaluationServiceClient(
            api_url,
            api_token=os.getenv("EVALUATION_API_TOKEN"),
            timeout=timeout,
        )
    if os.getenv("GEMINI_API_KEY"):
        models = [m.strip() for m in os.getenv("GEMINI_MODELS", GEMINI_DEFAULT_MODELS).split(",") if m.strip()]
        logger.info(f"No EVALUATION_API_URL set; judging translations with Gemini models {models}.")
        return GeminiTranslationJudge(models, os.getenv("GEMINI_API_KEY"))
    logger.warning("Neither EVALUATION_API_URL nor GEMINI_API_KEY is set; AI grading will use the fallback.")
    return None


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info("="*20 + " Application Lifespan Start " + "="*20)
    dev_mode = _env_flag("DEV_MODE")
    logger.info(f"Running in {'DEV' if dev_mode else 'PROD'} mode.")

    # --- Processor Initialization ---
    logger.info("Initializing core processors...")
    try:
        context.answer_evaluator = AnswerEvaluatorProcessor(
            create_evaluation_service(),
            timeout=float(os.getenv("EVALUATION_TIMEOUT_SECONDS", "15")),
        )
        context.dispatcher = ValidationDispatcher(context.answer_evaluator)
        context.challenge_repository = ChallengeRepository(os.getenv("CHALLENGES_DIR", "lessons"))
        context.session_registry = SessionRegistry(
            context.dispatcher,
            MockMicrophone if dev_mode else StreamingMicrophone,
            max_recording_seconds=float(os.getenv("MAX_RECORDING_SECONDS", "30")),
            default_difficulty_level=os.getenv("DEFAULT_DIFFICULTY_LEVEL", "intermediate"),
            completed_session_ttl=float(os.getenv("COMPLETED_SESSION_TTL_SECONDS", "300")),
        )
        logger.info("Core processors initialized successfully.")
    except Exception as e:
        logger.critical(f"Failed to initialize core processors: {e}", exc_info=True)
        raise

    logger.info("Application startup complete.")
    yield

    # --- Lifespan Shutdown ---
    logger.info("="*20 + " Application Lifespan Shutdown " + "="*20)
    await context.session_registry.close_all()
    await context.answer_evaluator.aclose()
    context.session_registry = None
    context.dispatcher = None
    context.answer_evaluator = None
    context.challenge_repository = None
    logger.info("Application shutdown complete.")


async def contract_violation_handler(request: Request, exc: ContractViolation):
    logger.warning(f"Contract violation on {request.url.path}: {exc}")
    return JSONResponse(status_code=409, content={"detail": str(exc)})


async def session_closed_handler(request: Request, exc: SessionClosed):
    return JSONResponse(status_code=410, content={"detail": str(exc)})


def create_app():
    app = FastAPI(lifespan=lifespan)

    app.add_exception_handler(ContractViolation, contract_violation_handler)
    app.add_exception_handler(SessionClosed, session_closed_handler)

    app.include_router(http_routes.router)
    app.include_router(websocket_routes.router)

    return app

app = create_app()

if __name__ == "__main__":
    uvicorn.run(
        "main:app",
        host="0.0.0.0",
        port=8080,
        reload=_env_flag("DEV_MODE"),
        log_level=logging.getLevelName(logger.getEffectiveLevel()).lower(),
    )
