"""
Description Providers for SceneCast

Thin async clients for vision chat models. Each provider turns the chat
messages built by the formatter into a single Completion, raising:

- RateLimitError for a recognised provider rate-limit signal
- EmptyResponseError when the model returned no text
- ProviderError for every other failure

Usage:
    from scenecast.llm_client import create_provider

    provider = create_provider(settings)   # None when no key is configured
    completion = await provider.complete(messages)
"""

import asyncio
import logging
from dataclasses import dataclass
from functools import partial
from typing import Any, Dict, List, Optional, Protocol

import openai
import requests

from .config import Settings
from .exceptions import EmptyResponseError, ProviderError, RateLimitError
from .frames import strip_data_url

logger = logging.getLogger(__name__)

# OpenAI reports both throttling and exhausted billing as HTTP 429;
# only the former clears up by waiting.
NON_TRANSIENT_429_CODES = {"insufficient_quota"}


@dataclass
class Completion:
    """Single text completion."""
    text: str
    tokens: Optional[int] = None
    model: str = ""


class DescriptionProvider(Protocol):
    async def complete(self, messages: List[Dict[str, Any]]) -> Completion:
        ...


# ============================================================================
# Rate-limit classification
# ============================================================================

def _error_body(err: Any) -> Dict[str, Any]:
    """Provider error payload ({"type", "code", ...}) when one is attached."""
    body = getattr(err, "body", None)
    if body is None:
        body = getattr(err, "error", None)
    if isinstance(body, dict):
        inner = body.get("error")
        return inner if isinstance(inner, dict) else body
    return {}


def is_rate_limit_error(err: BaseException) -> bool:
    """Default predicate for errors that deserve backoff and retry.

    Recognises RateLimitError, OpenAI's token rate-limit payload
    ({"type": "tokens", "code": "rate_limit_exceeded"}) and HTTP 429
    responses that are not quota exhaustion.
    """
    if isinstance(err, RateLimitError):
        return True

    body = _error_body(err)
    code = body.get("code") or getattr(err, "code", None)
    if code in NON_TRANSIENT_429_CODES:
        return False
    if code == "rate_limit_exceeded":
        return True

    status = getattr(err, "status_code", None) or getattr(err, "status", None)
    return status == 429


# ============================================================================
# OpenAI
# ============================================================================

class OpenAIProvider:
    """OpenAI chat completions with image input."""

    def __init__(
        self,
        api_key: str,
        model: str = "gpt-4o",
        max_tokens: int = 150,
        temperature: float = 0.7,
        timeout: float = 30.0,
        client: Optional[Any] = None,
    ):
        self.model = model
        self.max_tokens = max_tokens
        self.temperature = temperature
        # Retries are owned by the description queue.
        self._client = client or openai.AsyncOpenAI(api_key=api_key, timeout=timeout, max_retries=0)

    async def complete(self, messages: List[Dict[str, Any]]) -> Completion:
        try:
            response = await self._client.chat.completions.create(
                model=self.model,
                messages=messages,
                max_tokens=self.max_tokens,
                temperature=self.temperature,
            )
        except openai.RateLimitError as e:
            if not is_rate_limit_error(e):
                raise ProviderError(f"OpenAI quota exhausted: {e}") from e
            raise RateLimitError(str(e)) from e
        except openai.OpenAIError as e:
            raise ProviderError(f"OpenAI request failed: {e}") from e

        choices = getattr(response, "choices", None) or []
        if not choices:
            raise EmptyResponseError("OpenAI returned no choices")

        text = (choices[0].message.content or "").strip()
        if not text:
            raise EmptyResponseError("OpenAI returned an empty description")

        usage = getattr(response, "usage", None)
        return Completion(
            text=text,
            tokens=getattr(usage, "total_tokens", None),
            model=getattr(response, "model", self.model),
        )


# ============================================================================
# Ollama
# ============================================================================

class OllamaProvider:
    """Ollama /api/chat over a pooled requests session.

    requests is blocking, so calls run in the loop's default executor.
    """

    def __init__(
        self,
        url: str = "http://localhost:11434",
        model: str = "llava:7b",
        max_tokens: int = 150,
        temperature: float = 0.7,
        timeout: float = 30.0,
        session: Optional[requests.Session] = None,
    ):
        self.url = url.rstrip("/")
        self.model = model
        self.max_tokens = max_tokens
        self.temperature = temperature
        self.timeout = timeout

        self._session = session or requests.Session()
        self._session.headers.update({"Content-Type": "application/json"})

    @staticmethod
    def convert_messages(messages: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
        """OpenAI-style content parts -> Ollama text + images."""
        converted = []
        for message in messages:
            content = message["content"]
            if isinstance(content, str):
                converted.append({"role": message["role"], "content": content})
                continue

            texts, images = [], []
            for part in content:
                if part.get("type") == "text":
                    texts.append(part["text"])
                elif part.get("type") == "image_url":
                    images.append(strip_data_url(part["image_url"]["url"]))

            entry = {"role": message["role"], "content": "\n".join(texts)}
            if images:
                entry["images"] = images
            converted.append(entry)
        return converted

    def _post(self, payload: Dict[str, Any]) -> requests.Response:
        return self._session.post(f"{self.url}/api/chat", json=payload, timeout=self.timeout)

    async def complete(self, messages: List[Dict[str, Any]]) -> Completion:
        payload = {
            "model": self.model,
            "messages": self.convert_messages(messages),
            "stream": False,
            "options": {
                "num_predict": self.max_tokens,
                "temperature": self.temperature,
            },
        }

        loop = asyncio.get_running_loop()
        try:
            response = await loop.run_in_executor(None, partial(self._post, payload))
        except requests.exceptions.RequestException as e:
            raise ProviderError(f"Ollama request failed: {e}") from e

        if response.status_code == 429:
            raise RateLimitError("Ollama rate limit (HTTP 429)")
        if not response.ok:
            raise ProviderError(f"HTTP {response.status_code}: {response.text[:200]}")

        try:
            data = response.json()
        except ValueError as e:
            raise ProviderError(f"Malformed Ollama response: {e}") from e

        text = ((data.get("message") or {}).get("content") or "").strip()
        if not text:
            logger.warning(f"Ollama returned empty response. Raw data: {str(data)[:200]}")
            raise EmptyResponseError("Ollama returned an empty description")

        tokens = None
        if "eval_count" in data or "prompt_eval_count" in data:
            tokens = int(data.get("prompt_eval_count", 0)) + int(data.get("eval_count", 0))
        return Completion(text=text, tokens=tokens, model=data.get("model", self.model))


def create_provider(settings: Settings) -> Optional[DescriptionProvider]:
    """Provider for the configured backend, or None when it cannot be used.

    A missing OpenAI key is not an error: every description then comes
    from the template formatter.
    """
    if not settings.has_provider:
        logger.warning("No LLM credentials configured. Detailed descriptions will be disabled.")
        return None

    if settings.provider == "ollama":
        return OllamaProvider(
            url=settings.ollama_url,
            model=settings.resolved_model,
            max_tokens=settings.max_tokens,
            temperature=settings.temperature,
            timeout=settings.timeout,
        )

    return OpenAIProvider(
        api_key=settings.api_key,
        model=settings.resolved_model,
        max_tokens=settings.max_tokens,
        temperature=settings.temperature,
        timeout=settings.timeout,
    )
