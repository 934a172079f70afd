"""Async language-model client on top of LiteLLM.

Any provider LiteLLM understands (Groq, OpenAI, Anthropic, Gemini, Ollama)
is reached through one ``acomplete`` call. Every call passes through the
shared LLM rate limiter; identical prompts are answered from the response
cache. Provider 429s back off exponentially and do not use up the
ordinary retry budget.
"""

import asyncio
import json
import logging
import re
from typing import Any

import litellm

from crmflow.cache import ResponseCache, stable_hash
from crmflow.limits import RateLimiter

logger = logging.getLogger(__name__)

litellm.suppress_debug_info = True

_MAX_BACKOFF = 60.0
_OPEN_FENCE_RE = re.compile(r"^```[\w-]*[ \t]*\n?")
_CLOSE_FENCE_RE = re.compile(r"\n?```[ \t]*$")


class LLMClient:
    """Cached, rate-limited completions with usage accounting."""

    def __init__(
        self,
        model: str,
        limiter: RateLimiter | None = None,
        cache: ResponseCache | None = None,
        max_retries: int = 3,
        rate_limit_retries: int = 8,
        rate_limit_base_wait: float = 5.0,
        timeout: int = 120,
    ):
        self.model = model
        self.limiter = limiter or RateLimiter(40, name="llm")
        self.cache = cache
        self.max_retries = max_retries
        self.rate_limit_retries = rate_limit_retries
        self.rate_limit_base_wait = rate_limit_base_wait
        self.timeout = timeout
        self.call_count = 0
        self.prompt_tokens = 0
        self.completion_tokens = 0
        self.total_cost_usd = 0.0

    def _record_usage(self, response: Any) -> None:
        usage = getattr(response, "usage", None)
        if usage is not None:
            self.prompt_tokens += getattr(usage, "prompt_tokens", 0) or 0
            self.completion_tokens += getattr(usage, "completion_tokens", 0) or 0
        try:
            cost = litellm.completion_cost(completion_response=response)
        except Exception as e:
            logger.debug(f"No pricing for {self.model}: {e}")
            return
        self.total_cost_usd += cost or 0.0

    def _backoff(self, hits: int) -> float:
        return min(self.rate_limit_base_wait * 2 ** (hits - 1), _MAX_BACKOFF)

    async def _attempt(self, messages: list[dict], temperature: float, extra: dict[str, Any]) -> str:
        """One provider round trip. Returns the raw text, possibly empty."""
        await self.limiter.wait()
        self.call_count += 1
        response = await litellm.acompletion(
            model=self.model,
            messages=messages,
            temperature=temperature,
            timeout=self.timeout,
            **extra,
        )
        self._record_usage(response)
        return response.choices[0].message.content or ""

    async def acomplete(
        self,
        system_prompt: str,
        user_prompt: str,
        temperature: float = 0.1,
        json_mode: bool = False,
    ) -> str:
        """Return the model's text for one prompt pair.

        Raises:
            RuntimeError: When the retry budget (or the rate-limit budget)
                is exhausted
        """
        key = f"completion:{stable_hash(self.model, system_prompt, user_prompt, temperature, json_mode)}"
        if self.cache is not None:
            cached = self.cache.get(key)
            if cached is not None:
                logger.debug(f"LLM cache hit ({self.model})")
                return cached

        messages = [{"role": "user", "content": user_prompt}]
        if system_prompt:
            messages.insert(0, {"role": "system", "content": system_prompt})
        extra: dict[str, Any] = {"response_format": {"type": "json_object"}} if json_mode else {}

        failures = 0
        throttled = 0
        last_error = ""
        while failures < self.max_retries:
            try:
                text = await self._attempt(messages, temperature, extra)
            except litellm.RateLimitError as exc:
                throttled += 1
                if throttled > self.rate_limit_retries:
                    raise RuntimeError(
                        f"{self.model} still rate limited after {throttled} attempts"
                    ) from exc
                delay = self._backoff(throttled)
                logger.warning(
                    f"{self.model} rate limited, backing off {delay:.0f}s "
                    f"({throttled}/{self.rate_limit_retries})"
                )
                await asyncio.sleep(delay)
                continue
            except litellm.Timeout:
                last_error = "timed out"
            except Exception as e:
                last_error = str(e) or type(e).__name__
            else:
                if text.strip():
                    if self.cache is not None:
                        self.cache.set(key, text)
                    return text
                last_error = "empty response"

            failures += 1
            logger.warning(f"LLM attempt {failures}/{self.max_retries} failed: {last_error}")
            if failures < self.max_retries:
                await asyncio.sleep(1)

        raise RuntimeError(f"LLM call failed after {failures} attempts: {last_error}")

    async def acomplete_json(self, system_prompt: str, user_prompt: str, temperature: float = 0.1) -> Any:
        """``acomplete`` in JSON mode, parsed.

        Raises:
            RuntimeError: On call failure
            ValueError: If the response holds no recoverable JSON
        """
        text = await self.acomplete(system_prompt, user_prompt, temperature=temperature, json_mode=True)
        return parse_llm_json(text)


def _first_balanced_object(text: str) -> str | None:
    start = text.find("{")
    if start < 0:
        return None
    depth = 0
    for pos in range(start, len(text)):
        if text[pos] == "{":
            depth += 1
        elif text[pos] == "}":
            depth -= 1
            if depth == 0:
                return text[start : pos + 1]
    return None


def parse_llm_json(text: str) -> Any:
    """Recover a JSON object or array from model output.

    Tries, in order: the text with code fences removed, the span from the
    first opening bracket to the last closing one, and the first balanced
    ``{...}`` (for prose that contains stray brackets).

    Raises:
        ValueError: If none of those parse
    """
    cleaned = _CLOSE_FENCE_RE.sub("", _OPEN_FENCE_RE.sub("", text.strip())).strip()

    candidates = [cleaned]
    starts = [i for i in (cleaned.find("{"), cleaned.find("[")) if i >= 0]
    end = max(cleaned.rfind("}"), cleaned.rfind("]"))
    if starts and end > min(starts):
        candidates.append(cleaned[min(starts) : end + 1])
    balanced = _first_balanced_object(cleaned)
    if balanced:
        candidates.append(balanced)

    for candidate in candidates:
        try:
            return json.loads(candidate)
        except json.JSONDecodeError:
            continue
    raise ValueError(f"Could not parse JSON from LLM response: {cleaned[:200]}...")


def parse_llm_json_or(text: str, default: Any) -> Any:
    """``parse_llm_json`` that returns ``default`` instead of raising."""
    try:
        return parse_llm_json(text)
    except ValueError as e:
        logger.warning(str(e))
        return default
