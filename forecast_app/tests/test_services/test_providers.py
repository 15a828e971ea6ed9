import json
import re

import httpx
import pytest

from forecast_app.config import Settings
from forecast_app.services.providers import (
    DeepSeekProvider,
    GeminiProvider,
    GroqProvider,
    HuggingFaceProvider,
    MistralProvider,
    after_think,
    build_providers,
)

GEMINI_URL = re.compile(r"^https://generativelanguage\.googleapis\.com/v1beta/models/.*:generateContent$")


def chat_completion(content):
    return {
        "id": "chatcmpl-1",
        "object": "chat.completion",
        "created": 1700000000,
        "model": "test-model",
        "choices": [
            {
                "index": 0,
                "message": {"role": "assistant", "content": content},
                "finish_reason": "stop",
            }
        ],
    }


def test_after_think_removes_think_tags():
    text_with_think = """
    <think>Checking the weather...</think>
    <think>Considering the outfit</think>
    {"summary": "Sunny"}
    """
    assert after_think(text_with_think) == '{"summary": "Sunny"}'
    assert after_think("No tags here. ") == "No tags here."
    assert after_think("Advice<think>final analysis</think>") == ""


def test_provider_names():
    assert MistralProvider("k").name == "Mistral AI"
    assert DeepSeekProvider("k").name == "DeepSeek"
    assert GeminiProvider("k").name == "Gemini"


@pytest.mark.asyncio
async def test_openai_compatible_provider_returns_text(respx_mock, snapshot):
    route = respx_mock.post("https://api.groq.com/openai/v1/chat/completions").mock(
        return_value=httpx.Response(200, json=chat_completion("Expect rain this afternoon."))
    )
    provider = GroqProvider(api_key="fake_groq_key", temperature=0.7)

    result = await provider.generate(snapshot, "test prompt")

    assert result == "Expect rain this afternoon."
    assert route.call_count == 1

    request = route.calls.last.request
    assert request.headers["authorization"] == "Bearer fake_groq_key"
    body = json.loads(request.content)
    assert body["model"] == "llama-3.1-8b-instant"
    assert body["messages"] == [{"role": "user", "content": "test prompt"}]
    assert body["temperature"] == 0.7


@pytest.mark.asyncio
async def test_huggingface_provider_strips_reasoning(respx_mock, snapshot):
    respx_mock.post("https://router.huggingface.co/v1/chat/completions").mock(
        return_value=httpx.Response(200, json=chat_completion('<think>hmm</think>\n{"summary": "ok"}'))
    )

    result = await HuggingFaceProvider(api_key="hf_key").generate(snapshot, "prompt")

    assert result == '{"summary": "ok"}'


@pytest.mark.asyncio
@pytest.mark.parametrize("status", [400, 401, 500])
async def test_openai_compatible_provider_returns_none_on_error(respx_mock, snapshot, status):
    route = respx_mock.post("https://api.mistral.ai/v1/chat/completions").mock(
        return_value=httpx.Response(status, json={"error": {"message": "nope"}})
    )

    result = await MistralProvider(api_key="fake_mistral_key").generate(snapshot, "prompt")

    assert result is None
    # single attempt, no retries
    assert route.call_count == 1


@pytest.mark.asyncio
async def test_openai_compatible_provider_returns_none_on_network_error(respx_mock, snapshot):
    respx_mock.post("https://api.deepseek.com/chat/completions").mock(
        side_effect=httpx.ConnectError("Network fail")
    )

    assert await DeepSeekProvider(api_key="k").generate(snapshot, "prompt") is None


@pytest.mark.asyncio
async def test_provider_without_key_returns_empty_string(snapshot):
    # no HTTP mock: any request would fail the test
    assert await MistralProvider(api_key=None).generate(snapshot, "prompt") == ""
    assert await GeminiProvider(api_key="").generate(snapshot, "prompt") == ""


@pytest.mark.asyncio
async def test_gemini_provider_returns_text(mock_aioresponse, snapshot):
    mock_aioresponse.post(
        GEMINI_URL,
        payload={"candidates": [{"content": {"parts": [{"text": ' {"summary": "Warm"} '}]}}]},
    )
    provider = GeminiProvider(api_key="gemini_key", temperature=0.5)

    result = await provider.generate(snapshot, "prompt")

    assert result == '{"summary": "Warm"}'
    (method, url), request_calls = next(iter(mock_aioresponse.requests.items()))
    assert method == "POST"
    assert str(url).endswith("/models/gemini-2.0-flash:generateContent")
    kwargs = request_calls[0].kwargs
    assert kwargs["headers"]["x-goog-api-key"] == "gemini_key"
    assert kwargs["json"]["contents"][0]["parts"][0]["text"] == "prompt"
    assert kwargs["json"]["generationConfig"]["temperature"] == 0.5


@pytest.mark.asyncio
async def test_gemini_provider_returns_none_on_error(mock_aioresponse, snapshot):
    mock_aioresponse.post(GEMINI_URL, status=400, body="bad request")

    assert await GeminiProvider(api_key="gemini_key").generate(snapshot, "prompt") is None


@pytest.mark.asyncio
async def test_gemini_provider_returns_none_on_unexpected_payload(mock_aioresponse, snapshot):
    mock_aioresponse.post(GEMINI_URL, payload={"candidates": []})

    assert await GeminiProvider(api_key="gemini_key").generate(snapshot, "prompt") is None


def test_build_providers_follows_configured_order():
    config = Settings(
        _env_file=None,
        AI_PROVIDER_ORDER="gemini, groq,unknown,Mistral",
        GROQ_API_KEY="g",
        GEMINI_API_KEY="m",
        AI_TEMPERATURE=0.3,
    )

    providers = build_providers(config)

    assert [p.name for p in providers] == ["Gemini", "Groq", "Mistral AI"]
    assert providers[0].api_key == "m"
    assert providers[1].api_key == "g"
    assert providers[2].api_key == ""
    assert providers[1].temperature == 0.3


def test_build_providers_keeps_provider_specific_temperature():
    config = Settings(_env_file=None, AI_PROVIDER_ORDER="huggingface", AI_TEMPERATURE=0.9)

    (provider,) = build_providers(config)

    assert provider.temperature == 0.6


@pytest.mark.asyncio
async def test_reasoning_only_completion_is_an_error(respx_mock, snapshot):
    respx_mock.post("https://router.huggingface.co/v1/chat/completions").mock(
        return_value=httpx.Response(200, json=chat_completion("<think>I could not decide</think>   "))
    )

    assert await HuggingFaceProvider(api_key="hf_key").generate(snapshot, "prompt") is None


@pytest.mark.asyncio
async def test_gemini_blank_text_is_an_error(mock_aioresponse, snapshot):
    mock_aioresponse.post(GEMINI_URL, payload={"candidates": [{"content": {"parts": [{"text": "  \n"}]}}]})

    assert await GeminiProvider(api_key="gemini_key").generate(snapshot, "prompt") is None
