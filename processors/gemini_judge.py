import json
import logging
from typing import Any, Dict

from genai_processors import streams
from genai_processors.content_api import ProcessorPart
from genai_processors.core import genai_model

from processors.errors import ServiceError, TransportFailure

logger = logging.getLogger(__name__)


class GeminiTranslationJudge:
    """Stands in for the translation evaluation service using a Gemini model.

    Produces the same response contract as the remote service. Pronunciation is not
    supported and always raises ``ServiceError`` so the caller falls back.
    """

    def __init__(self, model_names: list[str], api_key: str):
        if not api_key:
            raise ValueError("GEMINI_API_KEY not found in environment variables.")
        self.model_names = model_names
        self.api_key = api_key
        self.prompt = '''You are a strict but encouraging language tutor grading a translation exercise.
Difficulty level: {difficulty_level}.
Source text: '{source_text}'.
Learner translation: '{user_translation}'.
Score the translation from 0 to 100 on three axes: semantic accuracy, fluency and fidelity to the source, then give an overall score.
Decide whether the translation is acceptable for the difficulty level and award partial credit between 0 and {max_points} points.
Respond ONLY with a JSON object in the format:
{{"semantic_score": 0, "fluency_score": 0, "fidelity_score": 0, "overall_score": 0, "is_acceptable": false, "partial_credit": 0, "message": "short feedback", "explanation": "why", "suggestions": ["..."]}}.
Do not add any other text or formatting.'''

    async def evaluate_translation(self, request: Dict[str, Any]) -> Dict[str, Any]:
        formatted_prompt = self.prompt.format(
            difficulty_level=request["difficulty_level"],
            source_text=request["source_text"],
            user_translation=request["user_translation"],
            max_points=request["max_points"],
        )
        logger.debug(f"--- GenAI-Processor REQUEST (translation judge) ---\nPROMPT: {formatted_prompt}\n")

        last_error: Exception | None = None
        for model_name in self.model_names:
            try:
                response = ""
                model = genai_model.GenaiModel(model_name=model_name, api_key=self.api_key)
                async for part in model(streams.stream_content([ProcessorPart(formatted_prompt)])):
                    if part.text:
                        response += part.text
                logger.debug(f"--- GenAI-Processor RESPONSE (model: {model_name}) ---\nRESPONSE: {response}\n")
            except Exception as e:
                logger.warning(f"Translation judge call failed for model {model_name}: {e}")
                last_error = e
                continue

            cleaned_response = response.strip().replace("```json", "").replace("```", "")
            try:
                data = json.loads(cleaned_response)
            except json.JSONDecodeError as e:
                logger.warning(f"Model {model_name} returned non-JSON judgement.")
                last_error = e
                continue
            if isinstance(data, dict):
                return data
            last_error = ServiceError(f"Model {model_name} returned {type(data).__name__}, not an object")

        raise TransportFailure(f"All translation judge models failed: {last_error}")

    async def evaluate_pronunciation(self, request: Dict[str, Any], audio: bytes) -> Dict[str, Any]:
        raise ServiceError("Pronunciation scoring is not available from the Gemini judge.")

    async def aclose(self) -> None:
        return None
