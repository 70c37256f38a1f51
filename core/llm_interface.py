# core/llm_interface.py
"""
Handles all direct interactions with the text-completion service: the
generator protocol the pipeline depends on, an OpenAI-compatible HTTP
implementation with bounded concurrency and retries, response cleaning,
and token counting helpers.

Licensed under the Apache License, Version 2.0 (the "License");
you may not use this file except in compliance with the License.
You may obtain a copy of the License at

    http://www.apache.org/licenses/LICENSE-2.0

Unless required by applicable law or agreed to in writing, software
distributed under the License is distributed on an "AS IS" BASIS,
WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
See the License for the specific language governing permissions and
limitations under the License.
"""

# Standard library imports
import asyncio
import functools
import json
import re

# Type hints
from typing import Any, Protocol, runtime_checkable

# Third-party imports
import httpx
import structlog
import tiktoken

# Local imports
from config import ModelAssignments, settings

from core.errors import (
    AuthenticationError,
    ContentFilteredError,
    ProviderError,
    ProviderUnavailableError,
    RateLimitError,
)
from core.retry import RetryPolicy
from core.usage import UsageLedger

logger = structlog.get_logger(__name__)

_CONTENT_POLICY_MARKERS = ("content_filter", "content policy", "content_policy", "safety")


@runtime_checkable
class TextGenerator(Protocol):
    """Anything that turns a prompt into generated text."""

    async def generate(
        self,
        prompt: str,
        *,
        system_instruction: str | None = None,
        response_schema: dict[str, Any] | None = None,
        temperature: float | None = None,
        top_p: float | None = None,
        top_k: int | None = None,
        task: str | None = None,
    ) -> str: ...


# Token parameter handling
def _completion_token_param(api_base: str) -> str:
    """Return the token count parameter expected by the provider."""
    if "api.openai.com" in api_base or "api.anthropic.com" in api_base:
        return "max_completion_tokens"
    return "max_tokens"


@functools.lru_cache(maxsize=settings.TOKENIZER_CACHE_SIZE)
def _get_tokenizer(model_name: str) -> tiktoken.Encoding | None:
    """Return a tiktoken encoder for ``model_name`` or the default encoding."""
    try:
        try:
            return tiktoken.encoding_for_model(model_name)
        except KeyError:
            logger.debug(
                "No direct tiktoken encoding for '%s'. Using default '%s'.",
                model_name,
                settings.TIKTOKEN_DEFAULT_ENCODING,
            )
            return tiktoken.get_encoding(settings.TIKTOKEN_DEFAULT_ENCODING)
    except (KeyError, ValueError, OSError) as exc:
        logger.error(
            "Tokenizer unavailable for '%s'; using character heuristic: %s",
            model_name,
            exc,
        )
        return None


def count_tokens(text: str, model_name: str) -> int:
    """Count tokens with tiktoken, falling back to a chars-per-token estimate."""
    if not text:
        return 0
    encoder = _get_tokenizer(model_name)
    if encoder:
        return len(encoder.encode(text, allowed_special="all"))
    return int(len(text) / settings.FALLBACK_CHARS_PER_TOKEN)


def classify_http_error(status_code: int, body: str) -> ProviderError:
    """Map an HTTP failure to the provider error taxonomy."""
    snippet = body[:200]
    message = f"HTTP {status_code}: {snippet}"
    lowered = body.lower()
    if status_code in (401, 403) or "invalid api key" in lowered:
        return AuthenticationError(message, status_code=status_code)
    if status_code == 429:
        return RateLimitError(message, status_code=status_code)
    if status_code == 408 or status_code >= 500:
        return ProviderUnavailableError(message, status_code=status_code)
    if status_code == 400 and any(m in lowered for m in _CONTENT_POLICY_MARKERS):
        return ContentFilteredError(message, status_code=status_code)
    return ProviderError(message, status_code=status_code, retryable=False)


def clean_model_response(text: str) -> str:
    """Strip reasoning blocks, code fences and chatty boilerplate from a response."""
    if not isinstance(text, str):
        logger.warning(
            "clean_model_response received non-string input: %s", type(text)
        )
        return ""

    cleaned_text = text
    for tag_name in (
        "think",
        "thought",
        "thinking",
        "reasoning",
        "rationale",
        "reflection",
        "analysis",
        "no_think",
    ):
        cleaned_text = re.sub(
            rf"<\s*{tag_name}\s*>.*?<\s*/\s*{tag_name}\s*>",
            "",
            cleaned_text,
            flags=re.DOTALL | re.IGNORECASE,
        )
        cleaned_text = re.sub(
            rf"<\s*/?\s*{tag_name}\s*/?\s*>", "", cleaned_text, flags=re.IGNORECASE
        )

    cleaned_text = re.sub(
        r"```(?:[a-zA-Z0-9_-]+)?\s*(.*?)\s*```",
        r"\1",
        cleaned_text,
        flags=re.DOTALL,
    )

    leading_patterns = [
        r"^\s*(Okay,\s*)?(Sure,\s*)?(Here's|Here is)\s+(the|your)\s+[\w\s]+?:\s*",
        r"^\s*(?:Output|Result|Response|Answer)\s*:\s*",
        r"^\s*(?:好的[，,。]?\s*)?以下是[^\n：:]{0,30}[：:]\s*",
        r"^\s*(?:输出|结果)\s*[：:]\s*",
    ]
    trailing_patterns = [
        r"\s*Let me know if you (need|have) any(thing else| other questions| further revisions| adjustments)\b.*?\.?[^\w\n]*$",
        r"\s*I hope this (meets your expectations|helps|is what you were looking for)\b.*?\.?[^\w\n]*$",
        r"\s*如(?:果)?(?:需要|有)(?:任何)?(?:修改|调整|其他需求)[^\n]*$",
    ]
    for pattern_str in leading_patterns:
        while True:
            new_text = re.sub(
                pattern_str, "", cleaned_text, count=1, flags=re.IGNORECASE
            ).strip()
            if new_text == cleaned_text:
                break
            cleaned_text = new_text
    for pattern_str in trailing_patterns:
        cleaned_text = re.sub(
            pattern_str, "", cleaned_text, count=1, flags=re.IGNORECASE | re.MULTILINE
        ).strip()

    final_text = cleaned_text.strip()
    final_text = re.sub(r"\n\s*\n(\s*\n)+", "\n\n", final_text)
    return final_text


class OpenAICompatibleGenerator:
    """``TextGenerator`` backed by an OpenAI-compatible ``/chat/completions`` API."""

    def __init__(
        self,
        assignments: ModelAssignments | None = None,
        *,
        api_base: str = settings.OPENAI_API_BASE,
        api_key: str = settings.OPENAI_API_KEY,
        timeout: float = settings.HTTPX_TIMEOUT,
        max_concurrency: int = settings.MAX_CONCURRENT_LLM_CALLS,
        retry_policy: RetryPolicy | None = None,
        client: httpx.AsyncClient | None = None,
        auto_clean_response: bool = True,
    ) -> None:
        self.assignments = assignments or settings.model_assignments()
        self.api_base = api_base.rstrip("/")
        self.api_key = api_key
        # Use a single async client for all requests to reuse connections
        self._client = client or httpx.AsyncClient(timeout=timeout)
        self._semaphore = asyncio.Semaphore(max_concurrency)
        self.retry_policy = retry_policy or RetryPolicy.from_settings()
        self.auto_clean_response = auto_clean_response
        self.usage = UsageLedger()
        self.request_count = 0
        logger.info(
            "OpenAICompatibleGenerator initialized with a concurrency limit of %s.",
            max_concurrency,
        )

    async def aclose(self) -> None:
        """Close the underlying HTTP client."""
        await self._client.aclose()

    def _build_payload(
        self,
        prompt: str,
        *,
        system_instruction: str | None,
        response_schema: dict[str, Any] | None,
        temperature: float | None,
        top_p: float | None,
        top_k: int | None,
        task: str | None,
    ) -> dict[str, Any]:
        profile = self.assignments.for_task(task) if task else None
        model_name = profile.model if profile else settings.NARRATOR_MODEL
        messages: list[dict[str, str]] = []
        if system_instruction:
            messages.append({"role": "system", "content": system_instruction})
        messages.append({"role": "user", "content": prompt})

        payload: dict[str, Any] = {
            "model": model_name,
            "messages": messages,
            "temperature": temperature
            if temperature is not None
            else (profile.temperature if profile else 0.7),
            "top_p": top_p
            if top_p is not None
            else (profile.top_p if profile else settings.LLM_TOP_P),
            _completion_token_param(self.api_base): (
                profile.max_tokens
                if profile and profile.max_tokens
                else settings.MAX_GENERATION_TOKENS
            ),
            "stream": False,
        }
        effective_top_k = top_k if top_k is not None else (profile.top_k if profile else None)
        if effective_top_k is not None:
            payload["top_k"] = effective_top_k
        if response_schema is not None:
            payload["response_format"] = {
                "type": "json_schema",
                "json_schema": {"name": task or "response", "schema": response_schema},
            }
        return payload

    async def _post_non_streaming(
        self, payload: dict[str, Any]
    ) -> tuple[str, dict[str, int] | None]:
        """Send one chat completion request and translate failures."""
        headers = {
            "Authorization": f"Bearer {self.api_key}",
            "Content-Type": "application/json",
        }
        self.request_count += 1
        try:
            response = await self._client.post(
                f"{self.api_base}/chat/completions", json=payload, headers=headers
            )
        except httpx.TimeoutException as exc:
            raise ProviderUnavailableError(f"Request timed out: {exc}") from exc
        except httpx.RequestError as exc:
            raise ProviderUnavailableError(f"Request error: {exc}") from exc

        if response.is_error:
            raise classify_http_error(response.status_code, response.text)

        try:
            data = response.json()
        except json.JSONDecodeError as exc:
            raise ProviderError(
                f"Invalid JSON body from provider: {response.text[:200]}",
                status_code=response.status_code,
            ) from exc

        choices = data.get("choices") or []
        if not choices:
            logger.error(
                "LLM ('%s') invalid response structure - missing choices: %s",
                payload["model"],
                str(data)[:200],
            )
            return "", data.get("usage")
        choice = choices[0]
        if choice.get("finish_reason") == "content_filter":
            raise ContentFilteredError(
                "Provider filtered the completion", status_code=response.status_code
            )
        message = choice.get("message") or {}
        return message.get("content") or "", data.get("usage")

    def _log_llm_usage(self, model_name: str, usage_data: dict[str, int] | None) -> None:
        if usage_data and isinstance(usage_data, dict):
            logger.info(
                "LLM ('%s') Usage - Prompt: %s tk, Comp: %s tk, Total: %s tk",
                model_name,
                usage_data.get("prompt_tokens", "N/A"),
                usage_data.get("completion_tokens", "N/A"),
                usage_data.get("total_tokens", "N/A"),
            )
        else:
            logger.debug("LLM ('%s') response missing 'usage' information.", model_name)

    async def generate(
        self,
        prompt: str,
        *,
        system_instruction: str | None = None,
        response_schema: dict[str, Any] | None = None,
        temperature: float | None = None,
        top_p: float | None = None,
        top_k: int | None = None,
        task: str | None = None,
    ) -> str:
        if not prompt or not prompt.strip():
            raise ValueError("generate() requires a non-empty prompt")

        payload = self._build_payload(
            prompt,
            system_instruction=system_instruction,
            response_schema=response_schema,
            temperature=temperature,
            top_p=top_p,
            top_k=top_k,
            task=task,
        )
        model_name = payload["model"]
        logger.debug(
            "Calling LLM '%s' for task '%s'. Prompt tokens (est.): %s. Temp: %s",
            model_name,
            task,
            count_tokens(prompt, model_name),
            payload["temperature"],
        )

        async with self._semaphore:
            text, usage = await self.retry_policy.run(
                lambda: self._post_non_streaming(payload),
                description=f"LLM call ({task or model_name})",
            )

        self._log_llm_usage(model_name, usage)
        self.usage.record(task or model_name, usage)
        if self.auto_clean_response:
            text = clean_model_response(text)
        return text
