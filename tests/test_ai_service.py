import json

import httpx
import pytest

from app.core.exceptions import UpstreamUnavailable
from app.services.ai_service import AIProvider, AIService, parse_json_object

PRIMARY = AIProvider(name="deepseek", url="https://primary.test/chat/completions", api_key="k1", model="p-model")
FALLBACK = AIProvider(name="openai", url="https://fallback.test/chat/completions", api_key="k2", model="f-model")


def completion(content):
    return httpx.Response(200, json={"choices": [{"message": {"content": content}}]})


def service_with(handler, primary=PRIMARY, fallback=FALLBACK):
    service = AIService(primary=primary, fallback=fallback)
    service._client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return service


async def test_primary_answer_is_used():
    calls = []

    def handler(request):
        calls.append(request.url.host)
        return completion('{"intent": "LOG_SALE"}')

    service = service_with(handler)
    assert await service.chat_json([{"role": "user", "content": "sold rice"}]) == {"intent": "LOG_SALE"}
    assert calls == ["primary.test"]
    await service.close()


async def test_request_asks_for_a_json_object():
    bodies = []

    def handler(request):
        bodies.append(json.loads(request.content))
        return completion("{}")

    service = service_with(handler)
    await service.chat_json([{"role": "user", "content": "x"}], temperature=0.1)

    assert bodies[0]["model"] == "p-model"
    assert bodies[0]["temperature"] == 0.1
    assert bodies[0]["response_format"] == {"type": "json_object"}
    await service.close()


@pytest.mark.parametrize("primary_response", [
    httpx.Response(503, text="overloaded"),
    completion("Sure! Here is the JSON you asked for"),
    completion('["not", "an", "object"]'),
    httpx.Response(200, json={"unexpected": True}),
])
async def test_one_fallback_attempt_on_primary_failure(primary_response):
    calls = []

    def handler(request):
        calls.append(request.url.host)
        if request.url.host == "primary.test":
            return primary_response
        return completion('{"intent": "CHECK_STOCK"}')

    service = service_with(handler)
    assert await service.chat_json([{"role": "user", "content": "stock?"}]) == {"intent": "CHECK_STOCK"}
    assert calls == ["primary.test", "fallback.test"]
    await service.close()


async def test_both_providers_failing_raises_upstream_unavailable():
    calls = []

    def handler(request):
        calls.append(request.url.host)
        raise httpx.ConnectError("down", request=request)

    service = service_with(handler)
    with pytest.raises(UpstreamUnavailable):
        await service.chat_json([{"role": "user", "content": "hi"}])
    assert calls == ["primary.test", "fallback.test"]
    await service.close()


async def test_unconfigured_providers_make_no_requests():
    def handler(request):
        raise AssertionError("no request expected")

    unconfigured = AIProvider(name="none", url="https://unused.test", api_key=None, model="m")
    service = service_with(handler, primary=unconfigured, fallback=unconfigured)

    with pytest.raises(UpstreamUnavailable):
        await service.chat_text([{"role": "user", "content": "tip?"}])
    await service.close()


async def test_chat_text_strips_whitespace():
    service = service_with(lambda request: completion("  Track every sale daily.\n"))

    assert await service.chat_text([{"role": "user", "content": "tip"}]) == "Track every sale daily."
    await service.close()


def test_parse_json_object_is_strict():
    assert parse_json_object('{"a": 1}') == {"a": 1}
    for bad in ("", "null", "[1]", "```json {}```", None):
        with pytest.raises(ValueError):
            parse_json_object(bad)
