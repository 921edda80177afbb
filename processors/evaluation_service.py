import logging
from typing import Any, Dict, Optional

import httpx

from processors.errors import DailyLimitReached, ServiceError, TransportFailure

logger = logging.getLogger(__name__)

TRANSLATION_PATH = "/practice/validate-ai-translation/"
PRONUNCIATION_PATH = "/practice/analyze-ai-pronunciation/"


class EvaluationServiceClient:
    """HTTP adapter for the translation and pronunciation evaluation services.

    Raises ``TransportFailure`` when the service cannot be reached and
    ``ServiceError`` when it answers with an error status or a body that is not a
    JSON object. Interpreting the body is left to the caller.
    """

    def __init__(
        self,
        base_url: str,
        *,
        api_token: Optional[str] = None,
        timeout: float = 15.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        headers = {"Accept": "application/json"}
        if api_token:
            headers["Authorization"] = f"Bearer {api_token}"
        self._client = httpx.AsyncClient(
            base_url=base_url.rstrip("/"),
            headers=headers,
            timeout=timeout,
            transport=transport,
        )

    async def evaluate_translation(self, request: Dict[str, Any]) -> Dict[str, Any]:
        payload = {
            "source_text": request["source_text"],
            "user_translation": request["user_translation"],
            "challenge_id": request["challenge_id"],
            "difficulty_level": request["difficulty_level"],
        }
        return await self._post(TRANSLATION_PATH, json=payload)

    async def evaluate_pronunciation(self, request: Dict[str, Any], audio: bytes) -> Dict[str, Any]:
        data = {
            "expected_text": request["expected_text"],
            "difficulty_level": request["difficulty_level"],
            "challenge_id": request["challenge_id"],
        }
        files = {"audio_file": ("recording.webm", audio, request.get("mimetype", "audio/webm"))}
        return await self._post(PRONUNCIATION_PATH, data=data, files=files)

    async def _post(self, path: str, **kwargs: Any) -> Dict[str, Any]:
        try:
            r = await self._client.post(path, **kwargs)
            r.raise_for_status()
        except httpx.HTTPStatusError as http_err:
            status = http_err.response.status_code
            if status == 429:
                logger.warning("Evaluation service reports the daily AI analysis limit is reached.")
                raise DailyLimitReached(f"Daily AI analysis limit reached on {path}") from http_err
            raise ServiceError(f"Evaluation service returned HTTP {status} for {path}") from http_err
        except httpx.TimeoutException as timeout_err:
            raise TransportFailure(f"Evaluation service timed out on {path}") from timeout_err
        except httpx.RequestError as net_err:
            raise TransportFailure(f"Evaluation service unreachable: {net_err}") from net_err
        try:
            data = r.json()
        except ValueError as err:
            raise ServiceError(f"Evaluation service returned non-JSON body for {path}") from err
        if not isinstance(data, dict):
            raise ServiceError(f"Unexpected evaluation response: {r.text}")
        if data.get("success") is False:
            raise ServiceError(f"Evaluation service reported failure: {data.get('error', 'unknown error')}")
        return data

    async def aclose(self) -> None:
        await self._client.aclose()
