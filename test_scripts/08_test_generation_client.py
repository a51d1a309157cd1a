#!/usr/bin/env python3
"""
Test: Text Generation Client
Purpose: Verify provider dispatch, credential handling and error mapping

Tests:
- Missing credentials raise ProviderNotConfigured
- Unsupported providers are rejected
- Gemini REST request/response mapping (httpx mock transport)
- OpenAI and Anthropic SDK request/response mapping
- Timeouts and HTTP errors map to generation errors
- Credential updates reset cached provider handles
"""

import asyncio
import json
import sys
from types import SimpleNamespace

import httpx

from fixtures import (
    run_tests, isolated_settings, assert_equal, assert_true, assert_in, assert_raises_async
)

from autodrop.adapters.llm import (
    DEFAULT_ANTHROPIC_SYSTEM_PROMPT,
    LANGUAGE_INSTRUCTIONS,
    CredentialStore,
    TextGenerationClient,
)
from autodrop.core.exceptions import GenerationFailed, GenerationTimeout, ProviderNotConfigured
from autodrop.models.schemas import GenerationOptions, Language, Provider


GEMINI_BASE = "https://gemini.test/v1beta"


def make_client(timeout_seconds=5.0, **keys) -> TextGenerationClient:
    return TextGenerationClient(
        CredentialStore(isolated_settings(**keys)),
        timeout_seconds=timeout_seconds,
        gemini_base_url=GEMINI_BASE,
    )


def mock_gemini(client: TextGenerationClient, handler):
    """Swap the Gemini HTTP handle for one backed by a mock transport"""
    client._gemini = httpx.AsyncClient(
        base_url=GEMINI_BASE,
        params={"key": "AIza-test"},
        transport=httpx.MockTransport(handler),
    )


class FakeOpenAI:
    def __init__(self, content="openai says hi"):
        self.requests = []
        self.content = content
        self.closed = False
        self.chat = SimpleNamespace(completions=SimpleNamespace(create=self.create))

    async def create(self, **kwargs):
        self.requests.append(kwargs)
        message = SimpleNamespace(content=self.content)
        return SimpleNamespace(
            choices=[SimpleNamespace(message=message)] if self.content is not None else [],
            usage=SimpleNamespace(prompt_tokens=7, completion_tokens=3, total_tokens=10),
            model=kwargs["model"],
        )

    async def close(self):
        self.closed = True


class FakeAnthropic:
    def __init__(self):
        self.requests = []
        self.closed = False
        self.messages = SimpleNamespace(create=self.create)

    async def create(self, **kwargs):
        self.requests.append(kwargs)
        return SimpleNamespace(
            content=[SimpleNamespace(type="text", text="claude says hi")],
            usage=SimpleNamespace(input_tokens=5, output_tokens=4),
            model=kwargs["model"],
        )

    async def close(self):
        self.closed = True


async def test_provider_not_configured():
    """Every provider without a key raises ProviderNotConfigured"""
    client = make_client()

    for provider in Provider:
        error = await assert_raises_async(
            ProviderNotConfigured, client.generate(provider, "any-model", "hello")
        )
        assert_equal(error.provider, provider.value)
        assert_in(f"{provider.value.upper()}_API_KEY is not configured", str(error))
        assert_equal(error.status_code, 503)


async def test_unsupported_provider():
    client = make_client()

    error = await assert_raises_async(GenerationFailed, client.generate("mistral", "m", "hello"))

    assert_equal(str(error), "Unsupported AI provider: mistral")


async def test_gemini_request_mapping():
    """Gemini calls POST generateContent with the merged prompt"""
    seen = {}

    def handler(request: httpx.Request):
        seen["path"] = request.url.path
        seen["key"] = request.url.params.get("key")
        seen["body"] = json.loads(request.content)
        return httpx.Response(200, json={
            "candidates": [{"content": {"parts": [{"text": "gemini "}, {"text": "reply"}]}}],
            "usageMetadata": {"promptTokenCount": 11, "candidatesTokenCount": 2, "totalTokenCount": 13},
        })

    client = make_client(gemini_api_key="AIza-test")
    mock_gemini(client, handler)

    result = await client.generate(
        Provider.GEMINI,
        "gemini-pro",
        "Find trending toys",
        system_prompt="You research products.",
        options=GenerationOptions(temperature=0.2, max_tokens=50, language=Language.AR),
    )

    assert_equal(seen["path"], "/v1beta/models/gemini-pro:generateContent")
    assert_equal(seen["key"], "AIza-test")
    text = seen["body"]["contents"][0]["parts"][0]["text"]
    assert_true(text.startswith("You research products.\n\nUser: Find trending toys"))
    assert_true(text.endswith(LANGUAGE_INSTRUCTIONS[Language.AR]))
    assert_equal(seen["body"]["generationConfig"], {"temperature": 0.2, "maxOutputTokens": 50})

    assert_equal(result.content, "gemini reply")
    assert_equal(result.provider, Provider.GEMINI)
    assert_equal(result.usage.total_tokens, 13)
    await client.aclose()


async def test_gemini_http_error():
    """Non-2xx responses surface as GenerationFailed"""
    client = make_client(gemini_api_key="AIza-test")
    mock_gemini(client, lambda request: httpx.Response(500, json={"error": "boom"}))

    error = await assert_raises_async(GenerationFailed, client.generate(Provider.GEMINI, "gemini-pro", "hi"))

    assert_true(str(error).startswith("AI generation failed:"))
    assert_equal(error.provider, "gemini")
    await client.aclose()


async def test_gemini_empty_candidates():
    client = make_client(gemini_api_key="AIza-test")
    mock_gemini(client, lambda request: httpx.Response(200, json={"candidates": []}))

    error = await assert_raises_async(GenerationFailed, client.generate(Provider.GEMINI, "gemini-pro", "hi"))

    assert_in("No response generated from Gemini", str(error))
    await client.aclose()


async def test_timeout():
    """Calls exceeding the timeout raise GenerationTimeout"""

    async def slow(request):
        await asyncio.sleep(1.0)
        return httpx.Response(200, json={})

    client = make_client(timeout_seconds=0.05, gemini_api_key="AIza-test")
    mock_gemini(client, slow)

    error = await assert_raises_async(GenerationTimeout, client.generate(Provider.GEMINI, "gemini-pro", "hi"))

    assert_true(isinstance(error, GenerationFailed), "Timeouts are generation failures")
    assert_equal(error.status_code, 504)
    await client.aclose()


async def test_openai_mapping():
    """System prompt carries the language instruction"""
    client = make_client(openai_api_key="sk-test")
    fake = FakeOpenAI()
    client._openai = fake

    result = await client.generate(
        Provider.OPENAI, "gpt-4o-mini", "hello",
        system_prompt="Be nice.",
        options=GenerationOptions(language=Language.BOTH),
    )

    messages = fake.requests[0]["messages"]
    assert_equal(messages[0]["role"], "system")
    assert_equal(messages[0]["content"], f"Be nice.\n\n{LANGUAGE_INSTRUCTIONS[Language.BOTH]}")
    assert_equal(messages[1], {"role": "user", "content": "hello"})
    assert_equal(result.content, "openai says hi")
    assert_equal(result.usage.total_tokens, 10)


async def test_openai_empty_reply():
    client = make_client(openai_api_key="sk-test")
    client._openai = FakeOpenAI(content=None)

    await assert_raises_async(GenerationFailed, client.generate(Provider.OPENAI, "gpt-4o-mini", "hello"))


async def test_anthropic_mapping():
    """Anthropic gets a default system prompt and summed usage"""
    client = make_client(anthropic_api_key="sk-ant-test")
    fake = FakeAnthropic()
    client._anthropic = fake

    result = await client.generate(Provider.ANTHROPIC, "claude-3-sonnet", "hello")

    request = fake.requests[0]
    assert_equal(request["system"], DEFAULT_ANTHROPIC_SYSTEM_PROMPT)
    assert_equal(request["messages"], [{"role": "user", "content": "hello"}])
    assert_equal(result.content, "claude says hi")
    assert_equal(result.usage.total_tokens, 9)
    assert_equal(result.provider, Provider.ANTHROPIC)


async def test_credentials_layering_and_reset():
    """Stored keys win over settings; updates drop cached handles"""
    credentials = CredentialStore(isolated_settings(openai_api_key="sk-from-env"))
    client = TextGenerationClient(credentials, timeout_seconds=5.0)

    assert_equal(credentials.get(Provider.OPENAI), "sk-from-env")
    first = client._get_openai()
    assert_true(client._get_openai() is first, "Handle is cached")

    await credentials.update({Provider.OPENAI: "sk-runtime", Provider.GEMINI: None})
    assert_equal(credentials.get(Provider.OPENAI), "sk-runtime")
    assert_true(client._openai is None, "Update resets cached handles")
    assert_true(not credentials.is_configured(Provider.GEMINI))

    await credentials.update({Provider.OPENAI: ""})
    assert_equal(credentials.get(Provider.OPENAI), "sk-from-env", "Empty string clears the stored key")
    assert_equal(credentials.stored(Provider.OPENAI), None)


async def test_key_update_closes_old_handles():
    """Replaced provider handles are closed, not just dropped"""
    client = make_client(gemini_api_key="AIza-env")
    gemini = client._get_gemini()
    openai = FakeOpenAI()
    client._openai = openai
    assert_true(not gemini.is_closed)

    await client.credentials.update({Provider.GEMINI: "AIza-runtime"})

    assert_true(gemini.is_closed, "Old Gemini connection pool is closed")
    assert_true(openai.closed, "Old OpenAI client is closed")
    assert_true(client._gemini is None)

    replacement = client._get_gemini()
    assert_true(replacement is not gemini)
    assert_equal(replacement.params.get("key"), "AIza-runtime")
    await client.aclose()
    assert_true(replacement.is_closed)


async def main():
    """Run all generation client tests"""
    return await run_tests("Text Generation Client Tests", [
        ("Provider not configured", test_provider_not_configured),
        ("Unsupported provider", test_unsupported_provider),
        ("Gemini request mapping", test_gemini_request_mapping),
        ("Gemini HTTP error", test_gemini_http_error),
        ("Gemini empty candidates", test_gemini_empty_candidates),
        ("Timeout", test_timeout),
        ("OpenAI mapping", test_openai_mapping),
        ("OpenAI empty reply", test_openai_empty_reply),
        ("Anthropic mapping", test_anthropic_mapping),
        ("Credentials layering and reset", test_credentials_layering_and_reset),
        ("Key update closes old handles", test_key_update_closes_old_handles),
    ])


if __name__ == "__main__":
    exit_code = asyncio.run(main())
    sys.exit(exit_code)
