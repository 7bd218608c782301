import os
from dataclasses import dataclass
from typing import Any, Optional, Protocol

from openai import APIStatusError, OpenAI


DEFAULT_BASE_URL = "https://api.openai.com/v1"
DEFAULT_MODEL = "gpt-5-mini"
DEFAULT_TIMEOUT_SECONDS = 120.0
DEFAULT_MAX_OUTPUT_TOKENS = 8192


@dataclass
class ChatCompletionResult:
    content: str
    finish_reason: Optional[str] = None


class CompletionClient(Protocol):
    def complete(
        self,
        *,
        system_prompt: str,
        user_prompt: str,
        max_tokens: int,
        json_mode: bool = True,
    ) -> ChatCompletionResult:
        pass


def _get_api_key() -> str:
    api_key = os.getenv("OPENAI_API_KEY", "").strip()
    if not api_key:
        raise RuntimeError(
            "Missing OPENAI_API_KEY. Set it before uploading decks "
            '(example: export OPENAI_API_KEY="YOUR_KEY_HERE").'
        )
    return api_key


def default_max_output_tokens() -> int:
    return int(os.getenv("LLM_MAX_OUTPUT_TOKENS", str(DEFAULT_MAX_OUTPUT_TOKENS)))


def _extract_content(value: Any) -> str:
    if isinstance(value, str):
        return value
    if isinstance(value, list):
        parts = []
        for item in value:
            if isinstance(item, dict):
                text = item.get("text")
                if text:
                    parts.append(str(text))
        return "\n".join(parts).strip()
    return str(value or "").strip()


def _is_response_format_unsupported(exc: APIStatusError) -> bool:
    message = (getattr(exc, "message", "") or str(exc)).lower()
    return "response_format" in message or "json_object" in message


class OpenAIChatClient:
    """Chat completions against any OpenAI-compatible endpoint.

    Provider errors (``openai.APIError`` and subclasses) propagate unchanged
    so callers can decide which ones are worth retrying.
    """

    def __init__(
        self,
        *,
        model: Optional[str] = None,
        base_url: Optional[str] = None,
        timeout_seconds: Optional[float] = None,
    ) -> None:
        self.model = model or os.getenv("LLM_MODEL", DEFAULT_MODEL).strip() or DEFAULT_MODEL
        self.base_url = base_url or os.getenv("OPENAI_BASE_URL", DEFAULT_BASE_URL).strip() or DEFAULT_BASE_URL
        if timeout_seconds is None:
            timeout_seconds = float(os.getenv("LLM_TIMEOUT_SECONDS", str(DEFAULT_TIMEOUT_SECONDS)))
        self.timeout_seconds = timeout_seconds

    def _build_client(self) -> OpenAI:
        return OpenAI(base_url=self.base_url, api_key=_get_api_key(), timeout=self.timeout_seconds)

    def complete(
        self,
        *,
        system_prompt: str,
        user_prompt: str,
        max_tokens: int,
        json_mode: bool = True,
    ) -> ChatCompletionResult:
        client = self._build_client()
        request_kwargs = {
            "model": self.model,
            "messages": [
                {"role": "system", "content": system_prompt},
                {"role": "user", "content": user_prompt},
            ],
            "max_completion_tokens": max_tokens,
        }

        if json_mode:
            try:
                response = client.chat.completions.create(
                    **request_kwargs,
                    response_format={"type": "json_object"},
                )
            except APIStatusError as exc:
                if exc.status_code != 400 or not _is_response_format_unsupported(exc):
                    raise
                response = client.chat.completions.create(**request_kwargs)
        else:
            response = client.chat.completions.create(**request_kwargs)

        choice = response.choices[0] if response.choices else None
        if choice is None:
            return ChatCompletionResult(content="", finish_reason=None)
        return ChatCompletionResult(
            content=_extract_content(choice.message.content),
            finish_reason=choice.finish_reason,
        )
