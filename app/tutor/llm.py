"""
Vocab Tutor — LLM Abstraction Layer
One port (TutorLLM), three providers: OpenAI, Ollama, and an offline mock.

Every provider failure leaves this module as UpstreamError or
UpstreamTimeout, so callers never see SDK or httpx exception types.
Nothing here touches the database.
"""

import asyncio
import json
import logging
import time
from dataclasses import dataclass, asdict
from typing import Optional, Protocol

import httpx
from openai import AsyncOpenAI, APIStatusError, APITimeoutError, OpenAIError

from app.config import (
    OPENAI_API_KEY, LLM_MODEL, LLM_MAX_TOKENS, LLM_TEMPERATURE, LLM_OPENER_TEMPERATURE,
    LLM_PROVIDER, OLLAMA_BASE_URL, OLLAMA_MODEL,
    LLM_CONNECT_TIMEOUT, LLM_READ_TIMEOUT, LLM_TOTAL_TIMEOUT,
    LLM_MAX_RETRIES, LLM_RETRY_BASE_DELAY, LLM_RETRY_MAX_DELAY, LLM_BODY_SNIPPET_CHARS,
)
from app.errors import UpstreamError, UpstreamTimeout, snip
from app.state.session import SessionSnapshot
from app.tutor.prompts import build_opener_prompt, build_reply_prompt, as_chat_messages

logger = logging.getLogger(__name__)


@dataclass
class LLMPing:
    ok: bool
    provider: str
    latency_ms: Optional[int] = None
    details: Optional[str] = None
    reason: Optional[str] = None
    http_status: Optional[int] = None

    def to_dict(self) -> dict:
        return asdict(self)


class TutorLLM(Protocol):
    provider_name: str

    async def generate_opener(self, topic: str, vocab: list[str], level: Optional[str] = None) -> str: ...

    async def tutor_reply(
        self,
        snapshot: SessionSnapshot,
        student_text: str,
        used: list[str],
        missing: list[str],
    ) -> str: ...

    async def ping(self) -> LLMPing: ...

    async def aclose(self) -> None: ...


def _elapsed_ms(start: float) -> int:
    return int((time.perf_counter() - start) * 1000)


def _timeout() -> httpx.Timeout:
    return httpx.Timeout(LLM_READ_TIMEOUT, connect=LLM_CONNECT_TIMEOUT)


# ─── OpenAI ──────────────────────────────────────────────────────────────────

class OpenAIChatLLM:
    """Chat completions through the official SDK. The SDK owns retries."""

    provider_name = "openai"

    def __init__(
        self,
        api_key: str = OPENAI_API_KEY,
        model: str = LLM_MODEL,
        client: Optional[AsyncOpenAI] = None,
    ):
        self.model = model
        self._client = client or AsyncOpenAI(
            api_key=api_key,
            timeout=httpx.Timeout(LLM_TOTAL_TIMEOUT, connect=LLM_CONNECT_TIMEOUT, read=LLM_READ_TIMEOUT),
            max_retries=LLM_MAX_RETRIES,
        )

    async def _complete(self, prompt: str, temperature: float) -> str:
        start = time.perf_counter()
        try:
            response = await self._client.chat.completions.create(
                model=self.model,
                messages=as_chat_messages(prompt),
                max_tokens=LLM_MAX_TOKENS,
                temperature=temperature,
            )
        except APITimeoutError as e:
            logger.error(f"LLM timeout after {_elapsed_ms(start)}ms")
            raise UpstreamTimeout(self.provider_name) from e
        except APIStatusError as e:
            logger.error(f"LLM HTTP {e.status_code} after {_elapsed_ms(start)}ms")
            raise UpstreamError(
                self.provider_name,
                status=e.status_code,
                body_snippet=snip(e.response.text, LLM_BODY_SNIPPET_CHARS),
            ) from e
        except OpenAIError as e:
            logger.error(f"LLM error after {_elapsed_ms(start)}ms: {e}")
            raise UpstreamError(self.provider_name, message=f"Upstream request failed ({self.provider_name})") from e

        if not response.choices:
            raise UpstreamError(self.provider_name, message="Upstream returned no choices")
        text = (response.choices[0].message.content or "").strip()
        logger.info(f"LLM response: {_elapsed_ms(start)}ms, {len(text)} chars")
        return text

    async def generate_opener(self, topic: str, vocab: list[str], level: Optional[str] = None) -> str:
        return await self._complete(build_opener_prompt(topic, vocab, level), LLM_OPENER_TEMPERATURE)

    async def tutor_reply(self, snapshot, student_text, used, missing) -> str:
        prompt = build_reply_prompt(snapshot, student_text, used, missing)
        return await self._complete(prompt, LLM_TEMPERATURE)

    async def ping(self) -> LLMPing:
        start = time.perf_counter()
        try:
            await self._client.models.retrieve(self.model)
        except APIStatusError as e:
            return LLMPing(ok=False, provider=self.provider_name, reason=f"HTTP {e.status_code}", http_status=e.status_code)
        except OpenAIError as e:
            return LLMPing(ok=False, provider=self.provider_name, reason=str(e) or type(e).__name__)
        return LLMPing(ok=True, provider=self.provider_name, latency_ms=_elapsed_ms(start), details=f"model {self.model} available")

    async def aclose(self) -> None:
        await self._client.close()


# ─── Ollama ──────────────────────────────────────────────────────────────────

class OllamaLLM:
    """
    Local models over the Ollama HTTP API.

    /api/generate may answer with NDJSON (one JSON object per line, each
    carrying a piece of "response"); chunks are concatenated in order.
    429, 5xx and timeouts are retried up to `max_retries` times with a
    linear backoff capped at LLM_RETRY_MAX_DELAY.
    """

    provider_name = "ollama"

    def __init__(
        self,
        base_url: str = OLLAMA_BASE_URL,
        model: str = OLLAMA_MODEL,
        client: Optional[httpx.AsyncClient] = None,
        max_retries: int = LLM_MAX_RETRIES,
        retry_base_delay: float = LLM_RETRY_BASE_DELAY,
        total_timeout: float = LLM_TOTAL_TIMEOUT,
    ):
        self.base_url = base_url.rstrip("/")
        self.model = model
        self.max_retries = max_retries
        self.retry_base_delay = retry_base_delay
        self.total_timeout = total_timeout
        self._client = client or httpx.AsyncClient(timeout=_timeout())

    def _backoff(self, attempt: int) -> float:
        return min(self.retry_base_delay * attempt, LLM_RETRY_MAX_DELAY)

    async def _post(self, path: str, payload: dict) -> httpx.Response:
        url = f"{self.base_url}{path}"
        attempt = 0
        while True:
            try:
                resp = await asyncio.wait_for(
                    self._client.post(url, json=payload, headers={"Accept": "application/json"}),
                    timeout=self.total_timeout,
                )
            except (httpx.TimeoutException, asyncio.TimeoutError) as e:
                if attempt < self.max_retries:
                    attempt += 1
                    logger.warning(f"Ollama timeout, retry {attempt}/{self.max_retries}")
                    await asyncio.sleep(self._backoff(attempt))
                    continue
                raise UpstreamTimeout(self.provider_name) from e
            except httpx.HTTPError as e:
                raise UpstreamError(
                    self.provider_name,
                    message=f"Upstream request failed ({self.provider_name}): {type(e).__name__}",
                ) from e

            if resp.status_code == 429 or resp.status_code >= 500:
                if attempt < self.max_retries:
                    attempt += 1
                    logger.warning(f"Ollama HTTP {resp.status_code}, retry {attempt}/{self.max_retries}")
                    await asyncio.sleep(self._backoff(attempt))
                    continue

            if resp.is_success:
                return resp

            logger.error(f"Ollama HTTP {resp.status_code} on {path}")
            raise UpstreamError(
                self.provider_name,
                status=resp.status_code,
                body_snippet=snip(resp.text, LLM_BODY_SNIPPET_CHARS),
            )

    async def _generate(self, prompt: str) -> str:
        start = time.perf_counter()
        resp = await self._post("/api/generate", {"model": self.model, "prompt": prompt, "stream": False})
        text = parse_ndjson_response(resp.text)
        logger.info(f"LLM response: {_elapsed_ms(start)}ms, {len(text)} chars")
        return text

    async def generate_opener(self, topic: str, vocab: list[str], level: Optional[str] = None) -> str:
        return await self._generate(build_opener_prompt(topic, vocab, level))

    async def tutor_reply(self, snapshot, student_text, used, missing) -> str:
        return await self._generate(build_reply_prompt(snapshot, student_text, used, missing))

    async def ping(self) -> LLMPing:
        """Checks /api/tags answers and that our model is pulled."""
        start = time.perf_counter()
        try:
            resp = await self._client.get(f"{self.base_url}/api/tags", headers={"Accept": "application/json"})
        except httpx.HTTPError as e:
            return LLMPing(ok=False, provider=self.provider_name, reason=str(e) or type(e).__name__)

        if not resp.is_success:
            return LLMPing(ok=False, provider=self.provider_name, reason=f"HTTP {resp.status_code}", http_status=resp.status_code)

        try:
            models = resp.json().get("models") or []
            has_model = any(m.get("name") == self.model for m in models)
        except (ValueError, AttributeError):
            has_model = False

        if not has_model:
            return LLMPing(
                ok=False,
                provider=self.provider_name,
                reason=f"Model not found in Ollama: {self.model}",
                http_status=resp.status_code,
            )
        return LLMPing(ok=True, provider=self.provider_name, latency_ms=_elapsed_ms(start), details="tags ok, model available")

    async def aclose(self) -> None:
        await self._client.aclose()


def parse_ndjson_response(raw: str) -> str:
    """Concatenate the "response" pieces of an Ollama NDJSON body. Bad lines are skipped."""
    out = []
    for line in raw.splitlines():
        line = line.strip()
        if not line:
            continue
        try:
            obj = json.loads(line)
        except json.JSONDecodeError:
            continue
        chunk = obj.get("response") if isinstance(obj, dict) else None
        if chunk:
            out.append(chunk)
    return "".join(out).strip()


# ─── Mock (offline, deterministic) ───────────────────────────────────────────

class MockLLM:
    """
    No network. Replies depend only on the inputs, so tests can assert on them.
    Counts calls so tests can check a replay never reached the provider.
    """

    provider_name = "mock"

    def __init__(self, opener: Optional[str] = None):
        self.opener = opener
        self.opener_calls = 0
        self.reply_calls = 0

    async def generate_opener(self, topic: str, vocab: list[str], level: Optional[str] = None) -> str:
        self.opener_calls += 1
        if self.opener is not None:
            return self.opener
        return f"Let's talk about {topic}. What do you like most about it?"

    async def tutor_reply(self, snapshot, student_text, used, missing) -> str:
        self.reply_calls += 1
        if missing:
            return f"Thanks for sharing! Tell me more about {snapshot.topic}."
        return "Great, you used every word! What else would you add?"

    async def ping(self) -> LLMPing:
        return LLMPing(ok=True, provider=self.provider_name, latency_ms=0, details="mock")

    async def aclose(self) -> None:
        return None


# ─── Provider Factory ────────────────────────────────────────────────────────

_providers = {
    "mock": MockLLM,
    "openai": OpenAIChatLLM,
    "ollama": OllamaLLM,
}


def build_llm(provider: str = LLM_PROVIDER) -> TutorLLM:
    """Construct the configured provider. Called once by the app lifespan."""
    provider_cls = _providers.get(provider)
    if not provider_cls:
        raise ValueError(f"Unknown LLM provider: {provider}")
    logger.info(f"LLM provider: {provider}")
    return provider_cls()
