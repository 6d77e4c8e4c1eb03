import asyncio
import json
import logging
import os
import random
import weakref
from dataclasses import dataclass, field
from typing import Any

from openai import APIConnectionError, APIStatusError, APITimeoutError, AsyncOpenAI, RateLimitError

from app.core.settings import settings

logger = logging.getLogger(__name__)


class LLMDisabledError(RuntimeError):
    pass


DEFAULT_LLM_CONCURRENCY = 20
_LLM_SEMAPHORES: "weakref.WeakKeyDictionary[asyncio.AbstractEventLoop, asyncio.Semaphore]" = weakref.WeakKeyDictionary()

RETRYABLE_STATUS = {408, 409, 425, 429, 500, 502, 503, 504}


def _get_llm_semaphore() -> asyncio.Semaphore:
    loop = asyncio.get_running_loop()
    sem = _LLM_SEMAPHORES.get(loop)
    if sem is None:
        limit = int(os.getenv("LLM_CONCURRENCY", str(DEFAULT_LLM_CONCURRENCY)) or str(DEFAULT_LLM_CONCURRENCY))
        sem = asyncio.Semaphore(max(1, limit))
        _LLM_SEMAPHORES[loop] = sem
    return sem


def _estimate_tokens_from_messages(messages: list[dict[str, Any]]) -> int:
    total = 0
    for m in messages or []:
        c = m.get("content")
        text = c if isinstance(c, str) else json.dumps(c, default=str)
        if text:
            total += max(1, int(len(text) / 4))
    return total


@dataclass(frozen=True)
class LLMResult:
    text: str
    model: str
    usage: dict[str, int | None] = field(default_factory=dict)


class MessageLLM:
    def __init__(
        self,
        api_key: str,
        base_url: str | None,
        model: str,
        temperature: float,
        client: Any | None = None,
    ) -> None:
        if client is None:
            import httpx

            kwargs: dict[str, Any] = {"api_key": api_key}
            if base_url:
                kwargs["base_url"] = base_url
            kwargs["http_client"] = httpx.AsyncClient(
                limits=httpx.Limits(max_connections=200, max_keepalive_connections=50),
                timeout=httpx.Timeout(60.0),
            )
            client = AsyncOpenAI(**kwargs)
        self._client = client
        self._model = model
        self._temperature = temperature

    @property
    def model(self) -> str:
        return self._model

    async def _chat_completion(self, *, messages: list[dict[str, Any]], purpose: str = "") -> Any:
        sem = _get_llm_semaphore()
        async with sem:
            max_retries = max(1, int(os.getenv("LLM_MAX_RETRIES", "4") or "4"))
            base_sleep_s = float(os.getenv("LLM_RETRY_BASE_S", "0.7") or "0.7")

            for attempt in range(1, max_retries + 1):
                try:
                    response = await self._client.chat.completions.create(
                        model=self._model,
                        messages=messages,
                        temperature=self._temperature,
                    )
                except APIStatusError as e:
                    status = getattr(e, "status_code", None)
                    if status == 402:
                        raise LLMDisabledError("LLM provider reports insufficient credits")
                    if status in RETRYABLE_STATUS and attempt < max_retries:
                        sleep_s = base_sleep_s * (2 ** (attempt - 1)) + random.random() * 0.25
                        logger.warning("llm.retry model=%s purpose=%s status=%s attempt=%s", self._model, purpose, status, attempt)
                        await asyncio.sleep(min(15.0, sleep_s))
                        continue
                    raise
                except (APIConnectionError, APITimeoutError, RateLimitError):
                    if attempt < max_retries:
                        sleep_s = base_sleep_s * (2 ** (attempt - 1)) + random.random() * 0.25
                        logger.warning("llm.retry model=%s purpose=%s attempt=%s", self._model, purpose, attempt)
                        await asyncio.sleep(min(15.0, sleep_s))
                        continue
                    raise

                usage = getattr(response, "usage", None)
                logger.info(
                    "llm.request_done model=%s purpose=%s messages=%s est_prompt_tokens=%s prompt_tokens=%s completion_tokens=%s",
                    self._model,
                    purpose or "",
                    len(messages or []),
                    _estimate_tokens_from_messages(messages),
                    getattr(usage, "prompt_tokens", None),
                    getattr(usage, "completion_tokens", None),
                )
                return response

            raise RuntimeError("LLM call failed")

    async def generate(self, prompt: str, *, system_prompt: str = "", purpose: str = "") -> LLMResult:
        messages: list[dict[str, Any]] = []
        if system_prompt:
            messages.append({"role": "system", "content": system_prompt})
        messages.append({"role": "user", "content": prompt})

        response = await self._chat_completion(messages=messages, purpose=purpose)
        choices = getattr(response, "choices", None) or []
        text = ""
        if choices:
            text = (getattr(choices[0].message, "content", None) or "").strip()
        if not text:
            raise RuntimeError("LLM returned an empty message")

        usage = getattr(response, "usage", None)
        prompt_tokens = getattr(usage, "prompt_tokens", None)
        completion_tokens = getattr(usage, "completion_tokens", None)
        return LLMResult(
            text=text,
            model=getattr(response, "model", None) or self._model,
            usage={
                "prompt_tokens": (int(prompt_tokens) if prompt_tokens is not None else None),
                "completion_tokens": (int(completion_tokens) if completion_tokens is not None else None),
            },
        )


def get_llm_client() -> MessageLLM:
    if settings.llm_api_key is None:
        raise LLMDisabledError("LLM is not configured")
    if not settings.llm_model:
        raise LLMDisabledError("LLM model is not configured. Set the LLM_MODEL environment variable.")
    return MessageLLM(
        api_key=settings.llm_api_key,
        base_url=settings.llm_base_url,
        model=settings.llm_model,
        temperature=settings.llm_temperature,
    )
