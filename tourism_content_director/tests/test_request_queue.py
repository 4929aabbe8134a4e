"""
Request queue:
- parse_response: dict validated as is, text repaired then validated, schema mismatch -> RequestError.
- gateway errors retried with exponential backoff, then re-raised.
- rate limit surfaces at once; missing key is a ConfigurationError.
- provider exceptions translated into the RequestError family.
"""
from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock

import httpx
import openai
import pytest
from pydantic import BaseModel

from tourism_director.config import Settings
from tourism_director.exceptions import (
    ConfigurationError,
    GatewayError,
    RateLimitError,
    RequestError,
)
from tourism_director.services.request_queue import RequestQueue, is_gateway_error_content


class CityAnswer(BaseModel):
    name: str
    population: int


def _queue(api_key: str = "sk-test") -> tuple:
    sleep = AsyncMock()
    queue = RequestQueue(settings=Settings(OPENAI_API_KEY=api_key), sleep=sleep)
    return queue, sleep


def _completion(content: str) -> SimpleNamespace:
    return SimpleNamespace(choices=[SimpleNamespace(message=SimpleNamespace(content=content))])


def _status_error(cls, status: int):
    response = httpx.Response(status, request=httpx.Request("POST", "https://api.openai.com/v1/chat/completions"))
    return cls("provider says no", response=response, body=None)


def test_parse_response_accepts_dict_and_repaired_text() -> None:
    queue, _ = _queue()

    from_dict = queue.parse_response({"name": "Mostar", "population": 105000}, CityAnswer, "t")
    from_text = queue.parse_response('```json\n{"name": "Mostar", "population": 105000,}\n```', CityAnswer, "t")

    assert from_dict == from_text == CityAnswer(name="Mostar", population=105000)
    assert queue.parse_response("plain text", None, "t") == "plain text"


def test_parse_response_schema_mismatch_is_request_error() -> None:
    queue, _ = _queue()
    with pytest.raises(RequestError) as exc:
        queue.parse_response('{"name": "Mostar"}', CityAnswer, "cities")
    assert exc.value.context == "cities"


@pytest.mark.asyncio
async def test_gateway_error_retried_then_succeeds() -> None:
    queue, sleep = _queue()
    queue._complete = AsyncMock(side_effect=[GatewayError("502"), '{"name": "Jajce", "population": 27000}'])

    answer = await queue.request("prompt", CityAnswer, context="cities")

    assert answer.name == "Jajce"
    assert queue._complete.await_count == 2
    sleep.assert_awaited_once_with(5)


@pytest.mark.asyncio
async def test_gateway_error_exhausted_after_three_attempts() -> None:
    queue, sleep = _queue()
    queue._complete = AsyncMock(side_effect=GatewayError("502"))

    with pytest.raises(GatewayError):
        await queue.request("prompt", CityAnswer)

    assert queue._complete.await_count == 3
    assert [c.args[0] for c in sleep.await_args_list] == [5, 10]


@pytest.mark.asyncio
async def test_rate_limit_not_retried_here() -> None:
    queue, sleep = _queue()
    queue._complete = AsyncMock(side_effect=RateLimitError("slow down"))

    with pytest.raises(RateLimitError):
        await queue.request("prompt", CityAnswer)

    assert queue._complete.await_count == 1
    sleep.assert_not_awaited()


@pytest.mark.asyncio
async def test_missing_api_key_is_configuration_error() -> None:
    queue, _ = _queue(api_key="")
    with pytest.raises(ConfigurationError):
        await queue.request("prompt", CityAnswer)


@pytest.mark.asyncio
async def test_complete_returns_content_and_sends_json_schema() -> None:
    queue, _ = _queue()
    client = MagicMock()
    client.chat.completions.create.return_value = _completion(' {"name": "Tuzla", "population": 110000} ')

    content = await queue._complete(client, "prompt", CityAnswer, "cities")

    assert content == '{"name": "Tuzla", "population": 110000}'
    kwargs = client.chat.completions.create.call_args.kwargs
    assert kwargs["response_format"]["json_schema"]["name"] == "CityAnswer"
    assert kwargs["messages"][1] == {"role": "user", "content": "prompt"}


@pytest.mark.asyncio
async def test_complete_translates_provider_errors() -> None:
    queue, _ = _queue()
    client = MagicMock()

    client.chat.completions.create.side_effect = _status_error(openai.RateLimitError, 429)
    with pytest.raises(RateLimitError):
        await queue._complete(client, "p", None, "c")

    client.chat.completions.create.side_effect = _status_error(openai.AuthenticationError, 401)
    with pytest.raises(ConfigurationError):
        await queue._complete(client, "p", None, "c")

    client.chat.completions.create.side_effect = _status_error(openai.InternalServerError, 503)
    with pytest.raises(GatewayError):
        await queue._complete(client, "p", None, "c")


@pytest.mark.asyncio
async def test_gateway_page_in_body_is_gateway_error() -> None:
    queue, _ = _queue()
    client = MagicMock()
    client.chat.completions.create.return_value = _completion("<html><h1>502 Bad Gateway</h1>cloudflare</html>")

    with pytest.raises(GatewayError):
        await queue._complete(client, "p", None, "c")


def test_is_gateway_error_content() -> None:
    assert is_gateway_error_content("<html>504 Gateway Time-out</html>")
    assert not is_gateway_error_content('{"status": 502}')
    assert not is_gateway_error_content(None)
