"""
Structured-output request queue: single funnel for every LLM call.

Calls are serialized (LLM_MAX_CONCURRENCY), the OpenAI SDK runs in a worker thread,
responses are repaired (json_repair) and validated against the requested pydantic model.
Gateway pages, timeouts and dropped TLS connections are retried here with exponential
backoff; a provider rate limit surfaces as RateLimitError for the job-level retry.
"""
import asyncio
import re
import time
from typing import Any, Awaitable, Callable, Dict, Optional, Type

import openai
from pydantic import BaseModel, ValidationError

from tourism_director.config import Settings, get_settings
from tourism_director.exceptions import (
    ConfigurationError,
    GatewayError,
    RateLimitError,
    RequestError,
    RequestTimeoutError,
    SslError,
)
from tourism_director.logging_config import get_logger
from tourism_director.services.json_repair import repair_json

logger = get_logger(__name__)

# (attempts, base delay seconds); delay = base * 2 ** (attempt - 1)
RETRY_POLICIES: Dict[Type[RequestError], tuple] = {
    GatewayError: (3, 5),
    RequestTimeoutError: (3, 10),
    SslError: (3, 5),
}

GATEWAY_STATUS_CODES = (502, 503, 504)
GATEWAY_PATTERNS = re.compile(r"502|503|504|cloudflare|bad gateway|gateway time-?out", re.IGNORECASE)
SSL_PATTERNS = re.compile(r"ssl|eof occurred|unexpected eof|connection reset", re.IGNORECASE)

SYSTEM_PROMPT = (
    "You are a travel content expert for a tourism platform. "
    "When a JSON schema is given, return ONLY valid JSON matching it, no markdown or explanation."
)


def is_gateway_error_content(content: Optional[str]) -> bool:
    """HTML error page from a CDN in place of a model answer."""
    if not content or "<" not in content or ">" not in content:
        return False
    return bool(GATEWAY_PATTERNS.search(content))


class RequestQueue:
    """Only place that talks to the LLM provider; every prompt goes through request()."""

    def __init__(
        self,
        settings: Optional[Settings] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        settings = settings or get_settings()
        self.api_key = settings.openai_api_key
        self.model = settings.openai_model
        self.timeout_seconds = settings.openai_timeout_seconds
        self.max_retries = settings.openai_max_retries
        self.temperature = settings.openai_temperature
        self._semaphore = asyncio.Semaphore(max(1, settings.llm_max_concurrency))
        self._sleep = sleep
        self._client: Any = None

    def _get_client(self):  # noqa: ANN201
        """Lazy init OpenAI client. Missing key is a configuration error, not a request error."""
        if not self.api_key:
            raise ConfigurationError("OPENAI_API_KEY is not configured")
        if self._client is None:
            self._client = openai.OpenAI(
                api_key=self.api_key,
                timeout=float(self.timeout_seconds),
                max_retries=self.max_retries,
            )
        return self._client

    async def request(
        self,
        prompt: str,
        schema: Optional[Type[BaseModel]] = None,
        context: str = "request_queue",
    ) -> Any:
        """
        Send prompt; return validated schema instance (or raw text without schema).
        Raises ConfigurationError, RateLimitError or RequestError (context attached).
        """
        client = self._get_client()
        async with self._semaphore:
            attempt = 0
            while True:
                attempt += 1
                try:
                    content = await self._complete(client, prompt, schema, context)
                    return self.parse_response(content, schema, context)
                except (GatewayError, RequestTimeoutError, SslError) as e:
                    attempts, base_delay = RETRY_POLICIES[type(e)]
                    if attempt >= attempts:
                        logger.warning("request_queue.retries_exhausted", context=context, kind=type(e).__name__, attempts=attempt, error=str(e))
                        raise
                    delay = base_delay * (2 ** (attempt - 1))
                    logger.warning("request_queue.retrying", context=context, kind=type(e).__name__, attempt=attempt, delay_seconds=delay)
                    await self._sleep(delay)

    async def _complete(
        self,
        client: Any,
        prompt: str,
        schema: Optional[Type[BaseModel]],
        context: str,
    ) -> str:
        """One provider call, provider exceptions translated into the RequestError family."""
        kwargs: Dict[str, Any] = {
            "model": self.model,
            "messages": [
                {"role": "system", "content": SYSTEM_PROMPT},
                {"role": "user", "content": prompt},
            ],
            "temperature": self.temperature,
        }
        if schema is not None:
            kwargs["response_format"] = {
                "type": "json_schema",
                "json_schema": {
                    "name": schema.__name__[:64],
                    "schema": schema.model_json_schema(),
                    "strict": True,
                },
            }
        start = time.perf_counter()
        try:
            resp = await asyncio.to_thread(client.chat.completions.create, **kwargs)
        except openai.RateLimitError as e:
            raise RateLimitError(f"Rate limit exceeded: {e}", context=context) from e
        except (openai.AuthenticationError, openai.PermissionDeniedError) as e:
            raise ConfigurationError(f"OpenAI rejected credentials: {e}") from e
        except openai.APITimeoutError as e:
            raise RequestTimeoutError(f"Request timed out: {e}", context=context) from e
        except openai.APIConnectionError as e:
            if SSL_PATTERNS.search(str(e)):
                raise SslError(f"SSL error: {e}", context=context) from e
            raise RequestError(f"Connection error: {e}", context=context) from e
        except openai.APIStatusError as e:
            if e.status_code in GATEWAY_STATUS_CODES or is_gateway_error_content(str(e)):
                raise GatewayError(f"Gateway error {e.status_code}", context=context) from e
            raise RequestError(f"Provider error {e.status_code}: {e}", context=context) from e
        except openai.OpenAIError as e:
            raise RequestError(str(e), context=context) from e

        latency_ms = (time.perf_counter() - start) * 1000
        content = (resp.choices[0].message.content or "").strip() if resp.choices else ""
        if is_gateway_error_content(content):
            raise GatewayError("Gateway error page in response body", context=context)
        logger.info("request_queue.success", context=context, model=self.model, latency_ms=round(latency_ms))
        return content

    def parse_response(
        self,
        content: Any,
        schema: Optional[Type[BaseModel]],
        context: str,
    ) -> Any:
        """dict -> validated as is; text -> raw without schema, repaired + validated with one."""
        if schema is None:
            return content
        data = content if isinstance(content, dict) else repair_json(content or "")
        try:
            return schema.model_validate(data)
        except ValidationError as e:
            logger.warning("request_queue.schema_invalid", context=context, errors=e.error_count())
            raise RequestError(f"Response does not match {schema.__name__}: {e}", context=context) from e
