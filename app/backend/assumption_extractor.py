import json
import logging
import os
import time
from typing import Any, Callable, List, Optional

from openai import APIError

from .errors import EmptyModelResponse, ExtractionUnavailable, MalformedModelResponse
from .llm_client import CompletionClient, default_max_output_tokens
from .prompts.assumptions import ASSUMPTIONS_PROMPT_VERSION, SYSTEM_PROMPT, build_user_prompt


logger = logging.getLogger("uvicorn.error")

DEFAULT_MAX_ATTEMPTS = 3
DEFAULT_BACKOFF_SECONDS = 2.0
MAX_LOGGED_CONTENT_CHARS = 500


def _truncate(text: str, max_chars: int = MAX_LOGGED_CONTENT_CHARS) -> str:
    value = (text or "").strip()
    if len(value) <= max_chars:
        return value
    return value[: max_chars - 3] + "..."


def strict_shape_enabled() -> bool:
    raw = os.getenv("ASSUMPTIONS_STRICT_SHAPE", "")
    return raw.strip().lower() in {"1", "true", "yes", "y", "on"}


def select_assumption_records(payload: Any, *, allow_first_array_field: bool = True) -> Optional[List[Any]]:
    """Pick the record array out of a parsed model response.

    Order: an ``assumptions`` field, the payload itself when it is already a
    list, then (unless disabled) the first field holding a list. Returns
    ``None`` when nothing array-shaped is found.
    """
    if isinstance(payload, dict) and isinstance(payload.get("assumptions"), list):
        return payload["assumptions"]
    if isinstance(payload, list):
        return payload
    if allow_first_array_field and isinstance(payload, dict):
        for value in payload.values():
            if isinstance(value, list):
                return value
    return None


class AssumptionExtractionClient:
    def __init__(
        self,
        completion_client: CompletionClient,
        *,
        max_attempts: int = DEFAULT_MAX_ATTEMPTS,
        backoff_seconds: float = DEFAULT_BACKOFF_SECONDS,
        max_output_tokens: Optional[int] = None,
        allow_first_array_field: Optional[bool] = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self._completion_client = completion_client
        self._max_attempts = max(1, max_attempts)
        self._backoff_seconds = backoff_seconds
        self._max_output_tokens = max_output_tokens or default_max_output_tokens()
        if allow_first_array_field is None:
            allow_first_array_field = not strict_shape_enabled()
        self._allow_first_array_field = allow_first_array_field
        self._sleep = sleep

    def _request(self, deck_text: str, deck_id: int):
        user_prompt = build_user_prompt(deck_text)
        for attempt in range(1, self._max_attempts + 1):
            try:
                return self._completion_client.complete(
                    system_prompt=SYSTEM_PROMPT,
                    user_prompt=user_prompt,
                    max_tokens=self._max_output_tokens,
                    json_mode=True,
                )
            except APIError as exc:
                logger.warning(
                    "deck_id=%s llm_attempt_failed attempt=%s/%s error=%s",
                    deck_id,
                    attempt,
                    self._max_attempts,
                    exc,
                )
                if attempt == self._max_attempts:
                    raise ExtractionUnavailable(
                        f"AI service unavailable after {self._max_attempts} attempts: {exc}"
                    ) from exc
                self._sleep(self._backoff_seconds * attempt)
        raise ExtractionUnavailable("AI service returned no response.")

    def extract(self, deck_text: str, deck_id: int) -> List[Any]:
        result = self._request(deck_text, deck_id)

        content = (result.content or "").strip()
        if not content:
            raise EmptyModelResponse(f"No response from AI. Finish reason: {result.finish_reason}")
        if result.finish_reason == "length":
            logger.warning("deck_id=%s llm_truncated chars=%s", deck_id, len(content))

        logger.info(
            "deck_id=%s llm_response prompt_version=%s chars=%s finish_reason=%s",
            deck_id,
            ASSUMPTIONS_PROMPT_VERSION,
            len(content),
            result.finish_reason,
        )

        try:
            payload = json.loads(content)
        except json.JSONDecodeError as exc:
            excerpt = _truncate(content)
            logger.error("deck_id=%s llm_invalid_json content=%s", deck_id, excerpt)
            raise MalformedModelResponse("AI returned invalid JSON response.", content=excerpt) from exc

        records = select_assumption_records(payload, allow_first_array_field=self._allow_first_array_field)
        if records is None:
            keys = sorted(payload.keys()) if isinstance(payload, dict) else type(payload).__name__
            logger.error("deck_id=%s llm_unexpected_shape keys=%s", deck_id, keys)
            return []
        return records
