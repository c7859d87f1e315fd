"""Sentinel — Reasoning Provider Client & Model Chain.

Talks to an OpenAI-compatible chat-completions endpoint over httpx. Every
agent goes through ModelChain: primary model, caller fallback, then the
generic fallback list, stopping at the first success. Errors are split into
ModelUnavailableError (try the next model) and LLMFatalError (stop).
"""

import json
import logging
import re
from dataclasses import dataclass, field
from typing import Any, Generic, Optional, Protocol, Sequence, TypeVar

import httpx

from collectors.base_collector import BaseCollector

logger = logging.getLogger("sentinel.agent")

OPENAI_BASE_URL = "https://api.openai.com/v1"

DEFAULT_FALLBACK_MODELS = ("gpt-4o-mini", "gpt-4.1-mini", "o1-mini")

# Credential failures: no other model will do better
FATAL_STATUSES = {401, 403}

T = TypeVar("T")


# ─── Errors ────────────────────────────────────────

class LLMError(Exception):
    """Base class for reasoning-provider failures."""


class ModelUnavailableError(LLMError):
    """This model cannot serve the request right now; the next one might."""


class LLMFatalError(LLMError):
    """No model will succeed (bad credentials, forbidden)."""


class ModelChainExhaustedError(LLMError):
    """Every model in the chain failed."""


class JSONExtractionError(LLMError):
    """The model text contained no parseable JSON payload."""


# ─── Parse boundary ────────────────────────────────

@dataclass(frozen=True)
class ParseResult(Generic[T]):
    """Tagged outcome of validating untyped model output."""
    value: Optional[T] = None
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.error is None

    @classmethod
    def success(cls, value: T) -> "ParseResult[T]":
        return cls(value=value)

    @classmethod
    def failure(cls, error: str) -> "ParseResult[T]":
        return cls(error=error)


_BRACKETS = {"object": ("{", "}"), "array": ("[", "]")}


def _outermost(text: str, opener: str, closer: str) -> Optional[Any]:
    start = text.find(opener)
    end = text.rfind(closer)
    if start < 0 or end <= start:
        return None
    try:
        return json.loads(text[start:end + 1])
    except json.JSONDecodeError:
        return None


def extract_json(text: str, shape: str = "object") -> Any:
    """Parse JSON from model text, tolerating surrounding prose or fences.

    Tries a direct parse first, then the outermost bracket pair of the
    expected shape, then the other shape.
    """
    text = (text or "").strip()
    try:
        return json.loads(text)
    except json.JSONDecodeError:
        pass

    other = "array" if shape == "object" else "object"
    for candidate in (shape, other):
        parsed = _outermost(text, *_BRACKETS[candidate])
        if parsed is not None:
            return parsed
    raise JSONExtractionError("Model did not return JSON payload.")


def safe_array(value: Any) -> list[str]:
    """Truthy entries of a list as strings; anything else becomes []."""
    if not isinstance(value, list):
        return []
    return [str(v) for v in value if v]


def safe_object_array(value: Any) -> list[dict]:
    if not isinstance(value, list):
        return []
    return [v for v in value if isinstance(v, dict)]


# ─── Provider client ───────────────────────────────

def is_reasoning_model(model: str) -> bool:
    """o-series models take reasoning_effort instead of temperature."""
    return bool(re.match(r"^o\d", model or "", re.IGNORECASE))


def user_message(prompt: str) -> list[dict]:
    return [{"role": "user", "content": prompt}]


class Completer(Protocol):
    async def complete(
        self,
        messages: list[dict],
        model: str,
        reasoning_effort: str = "medium",
    ) -> str:
        ...


class ReasoningClient(BaseCollector):
    """Chat-completions client for the reasoning provider."""

    def __init__(
        self,
        api_key: str,
        base_url: str = OPENAI_BASE_URL,
        timeout: float = 60.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        super().__init__(name="reasoning", timeout=timeout, transport=transport)
        self.api_key = api_key
        self.base_url = base_url.rstrip("/")

    @property
    def configured(self) -> bool:
        return bool(self.api_key)

    async def complete(
        self,
        messages: list[dict],
        model: str,
        reasoning_effort: str = "medium",
    ) -> str:
        payload: dict[str, Any] = {"model": model, "messages": messages}
        if is_reasoning_model(model):
            payload["reasoning_effort"] = reasoning_effort
        else:
            payload["temperature"] = 0.2

        try:
            resp = await self.post_json(
                f"{self.base_url}/chat/completions",
                payload,
                headers={"Authorization": f"Bearer {self.api_key}"},
            )
        except httpx.HTTPError as e:
            raise ModelUnavailableError(f"{model}: transport error: {e!r}") from e

        if resp.status_code >= 400:
            raise self._classify(model, resp)

        try:
            data = resp.json()
            content = data["choices"][0]["message"]["content"]
        except (ValueError, KeyError, IndexError, TypeError) as e:
            raise ModelUnavailableError(f"{model}: malformed completion envelope") from e
        return (content or "").strip()

    @staticmethod
    def _classify(model: str, resp: httpx.Response) -> LLMError:
        code = ""
        try:
            code = (resp.json().get("error") or {}).get("code") or ""
        except (ValueError, AttributeError):
            pass
        detail = f"{model}: HTTP {resp.status_code} {code}".strip()
        if resp.status_code in FATAL_STATUSES:
            return LLMFatalError(detail)
        return ModelUnavailableError(detail)


# ─── Model chain ───────────────────────────────────

@dataclass(frozen=True)
class ModelChain:
    """Ordered, de-duplicated list of models to try."""
    primary: str
    fallback: Optional[str] = None
    generic: Sequence[str] = field(default_factory=lambda: DEFAULT_FALLBACK_MODELS)

    def models(self) -> list[str]:
        chain = []
        for model in (self.primary, self.fallback, *self.generic):
            name = str(model or "").strip()
            if name and name not in chain:
                chain.append(name)
        return chain

    async def run(
        self,
        llm: Completer,
        messages: list[dict],
        reasoning_effort: str = "medium",
    ) -> str:
        """Return the first successful completion along the chain."""
        last_error: Optional[LLMError] = None
        for model in self.models():
            try:
                return await llm.complete(messages, model=model, reasoning_effort=reasoning_effort)
            except ModelUnavailableError as e:
                logger.warning("[llm] Model %s unavailable (%s), falling back to next...", model, e)
                last_error = e
        raise ModelChainExhaustedError(f"All models failed: {self.models()}") from last_error
