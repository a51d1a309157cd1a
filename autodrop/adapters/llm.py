"""
Text generation client for the supported LLM providers.

OpenAI and Anthropic are called through their async SDKs; Gemini through the
generateContent REST endpoint over httpx. Provider handles are created lazily
from the credential store and cached until the credentials change.
"""

import asyncio
import time
from typing import Awaitable, Callable, Dict, List, Optional

import httpx
import structlog
from anthropic import AsyncAnthropic
from openai import AsyncOpenAI

from autodrop.config.settings import Settings, settings as default_settings
from autodrop.core.exceptions import GenerationFailed, GenerationTimeout, ProviderNotConfigured
from autodrop.models.schemas import GenerationOptions, GenerationResult, Language, Provider, Usage

logger = structlog.get_logger()

# Appended to the system prompt (OpenAI/Anthropic) or the prompt (Gemini)
LANGUAGE_INSTRUCTIONS = {
    Language.EN: "",
    Language.AR: "Always respond in Arabic (العربية).",
    Language.BOTH: "Provide responses in both English and Arabic.",
}

DEFAULT_ANTHROPIC_SYSTEM_PROMPT = "You are a helpful AI assistant."


class CredentialStore:
    """
    Provider API keys set at runtime, layered over the environment settings.

    Keys stored here win over SETTINGS values. Listeners are notified whenever
    the stored keys change so cached provider handles can be closed and dropped.
    """

    def __init__(self, config: Optional[Settings] = None):
        self._config = config or default_settings
        self._keys: Dict[Provider, str] = {}
        self._listeners: List[Callable[[], Awaitable[None]]] = []

    def add_listener(self, listener: Callable[[], Awaitable[None]]):
        self._listeners.append(listener)

    def get(self, provider: Provider) -> Optional[str]:
        """Resolve the key for a provider (stored key first, then settings)"""
        stored = self._keys.get(provider)
        if stored:
            return stored
        return getattr(self._config, f"{provider.value}_api_key", None)

    def stored(self, provider: Provider) -> Optional[str]:
        return self._keys.get(provider)

    def is_configured(self, provider: Provider) -> bool:
        return bool(self.get(provider))

    async def update(self, keys: Dict[Provider, Optional[str]]):
        """
        Store or clear keys. A None value leaves the key untouched; an empty
        string clears it.
        """
        changed = False
        for provider, key in keys.items():
            if key is None:
                continue
            if key:
                self._keys[provider] = key
            else:
                self._keys.pop(provider, None)
            changed = True

        if changed:
            logger.info("api_keys_updated", providers=[p.value for p, k in keys.items() if k is not None])
            for listener in self._listeners:
                await listener()


class TextGenerationClient:
    """
    Single entry point for text generation across providers.

    Every call is bounded by the configured timeout and never retried.
    Provider and network errors surface as GenerationFailed; missing
    credentials surface as ProviderNotConfigured.
    """

    def __init__(
        self,
        credentials: Optional[CredentialStore] = None,
        timeout_seconds: Optional[float] = None,
        gemini_base_url: Optional[str] = None,
    ):
        self.credentials = credentials or CredentialStore()
        self.timeout_seconds = timeout_seconds or default_settings.generation_timeout_seconds
        self.gemini_base_url = (gemini_base_url or default_settings.gemini_api_base_url).rstrip("/")

        self._openai: Optional[AsyncOpenAI] = None
        self._anthropic: Optional[AsyncAnthropic] = None
        self._gemini: Optional[httpx.AsyncClient] = None

        self.credentials.add_listener(self.reset_clients)

    # ========================================================================
    # Client handles
    # ========================================================================

    def _require_key(self, provider: Provider) -> str:
        key = self.credentials.get(provider)
        if not key:
            raise ProviderNotConfigured(provider.value)
        return key

    def _get_openai(self) -> AsyncOpenAI:
        if self._openai is None:
            self._openai = AsyncOpenAI(api_key=self._require_key(Provider.OPENAI))
            logger.debug("provider_client_created", provider="openai")
        return self._openai

    def _get_anthropic(self) -> AsyncAnthropic:
        if self._anthropic is None:
            self._anthropic = AsyncAnthropic(api_key=self._require_key(Provider.ANTHROPIC))
            logger.debug("provider_client_created", provider="anthropic")
        return self._anthropic

    def _get_gemini(self) -> httpx.AsyncClient:
        if self._gemini is None:
            key = self._require_key(Provider.GEMINI)
            self._gemini = httpx.AsyncClient(
                base_url=self.gemini_base_url,
                params={"key": key},
                timeout=self.timeout_seconds,
            )
            logger.debug("provider_client_created", provider="gemini")
        return self._gemini

    async def reset_clients(self):
        """Close and drop cached provider handles so the next call re-reads credentials"""
        handles = [client for client in (self._openai, self._anthropic, self._gemini) if client is not None]
        self._openai = None
        self._anthropic = None
        self._gemini = None

        for client in handles:
            if isinstance(client, httpx.AsyncClient):
                await client.aclose()
            else:
                await client.close()
        logger.info("provider_clients_reset", closed=len(handles))

    async def aclose(self):
        """Close the underlying HTTP connections"""
        await self.reset_clients()

    # ========================================================================
    # Generation
    # ========================================================================

    async def generate(
        self,
        provider,
        model: str,
        prompt: str,
        system_prompt: Optional[str] = None,
        options: Optional[GenerationOptions] = None,
    ) -> GenerationResult:
        """
        Generate text with the given provider and model.

        Args:
            provider: Provider enum member (or its string value)
            model: Provider model name
            prompt: User prompt
            system_prompt: Optional system instructions
            options: Temperature, max tokens and response language

        Returns:
            GenerationResult with content, usage, model and provider

        Raises:
            ProviderNotConfigured: If the provider has no API key
            GenerationTimeout: If the call exceeds the configured timeout
            GenerationFailed: On any other provider or network error
        """
        try:
            provider = Provider(provider)
        except ValueError:
            raise GenerationFailed(f"Unsupported AI provider: {provider}")

        options = options or GenerationOptions()
        start = time.monotonic()

        logger.info(
            "calling_provider",
            provider=provider.value,
            model=model,
            prompt_length=len(prompt),
            language=options.language.value,
        )

        try:
            result = await asyncio.wait_for(
                self._dispatch(provider, model, prompt, system_prompt, options),
                timeout=self.timeout_seconds,
            )
        except ProviderNotConfigured:
            logger.warning("provider_not_configured", provider=provider.value)
            raise
        except GenerationFailed as e:
            logger.error("generation_failed", provider=provider.value, model=model, error=str(e))
            raise
        except asyncio.TimeoutError:
            logger.error(
                "generation_timeout",
                provider=provider.value,
                model=model,
                timeout_seconds=self.timeout_seconds,
            )
            raise GenerationTimeout(
                f"AI generation failed: {provider.value} did not respond within {self.timeout_seconds}s",
                provider=provider.value,
            )
        except Exception as e:
            logger.error(
                "generation_failed",
                provider=provider.value,
                model=model,
                error=str(e),
                error_type=type(e).__name__,
            )
            raise GenerationFailed(f"AI generation failed: {e}", provider=provider.value) from e

        logger.info(
            "generation_completed",
            provider=provider.value,
            model=result.model,
            total_tokens=result.usage.total_tokens,
            duration_ms=round((time.monotonic() - start) * 1000),
        )
        return result

    async def _dispatch(
        self,
        provider: Provider,
        model: str,
        prompt: str,
        system_prompt: Optional[str],
        options: GenerationOptions,
    ) -> GenerationResult:
        if provider == Provider.OPENAI:
            return await self._generate_openai(model, prompt, system_prompt, options)
        if provider == Provider.ANTHROPIC:
            return await self._generate_anthropic(model, prompt, system_prompt, options)
        return await self._generate_gemini(model, prompt, system_prompt, options)

    @staticmethod
    def _with_language(text: str, language: Language) -> str:
        instruction = LANGUAGE_INSTRUCTIONS[language]
        if not instruction:
            return text
        if not text:
            return instruction
        return f"{text}\n\n{instruction}"

    async def _generate_openai(
        self, model: str, prompt: str, system_prompt: Optional[str], options: GenerationOptions
    ) -> GenerationResult:
        client = self._get_openai()

        messages = []
        final_system_prompt = self._with_language(system_prompt or "", options.language)
        if final_system_prompt:
            messages.append({"role": "system", "content": final_system_prompt})
        messages.append({"role": "user", "content": prompt})

        completion = await client.chat.completions.create(
            model=model or "gpt-4",
            messages=messages,
            temperature=options.temperature,
            max_tokens=options.max_tokens,
        )

        choice = completion.choices[0] if completion.choices else None
        if not choice or not choice.message or not choice.message.content:
            raise GenerationFailed("AI generation failed: No response generated from OpenAI", provider="openai")

        usage = completion.usage
        return GenerationResult(
            content=choice.message.content,
            usage=Usage(
                prompt_tokens=usage.prompt_tokens if usage else 0,
                completion_tokens=usage.completion_tokens if usage else 0,
                total_tokens=usage.total_tokens if usage else 0,
            ),
            model=completion.model or model,
            provider=Provider.OPENAI,
        )

    async def _generate_anthropic(
        self, model: str, prompt: str, system_prompt: Optional[str], options: GenerationOptions
    ) -> GenerationResult:
        client = self._get_anthropic()

        final_system_prompt = self._with_language(
            system_prompt or DEFAULT_ANTHROPIC_SYSTEM_PROMPT, options.language
        )

        message = await client.messages.create(
            model=model or "claude-3-sonnet-20240229",
            max_tokens=options.max_tokens,
            temperature=options.temperature,
            system=final_system_prompt,
            messages=[{"role": "user", "content": prompt}],
        )

        text_blocks = [block.text for block in message.content if getattr(block, "type", None) == "text"]
        if not text_blocks or not "".join(text_blocks):
            raise GenerationFailed(
                "AI generation failed: Unexpected response type from Anthropic", provider="anthropic"
            )

        input_tokens = message.usage.input_tokens
        output_tokens = message.usage.output_tokens
        return GenerationResult(
            content="".join(text_blocks),
            usage=Usage(
                prompt_tokens=input_tokens,
                completion_tokens=output_tokens,
                total_tokens=input_tokens + output_tokens,
            ),
            model=message.model or model,
            provider=Provider.ANTHROPIC,
        )

    async def _generate_gemini(
        self, model: str, prompt: str, system_prompt: Optional[str], options: GenerationOptions
    ) -> GenerationResult:
        client = self._get_gemini()
        model = model or "gemini-pro"

        full_prompt = f"{system_prompt}\n\nUser: {prompt}" if system_prompt else prompt
        full_prompt = self._with_language(full_prompt, options.language)

        response = await client.post(
            f"/models/{model}:generateContent",
            json={
                "contents": [{"role": "user", "parts": [{"text": full_prompt}]}],
                "generationConfig": {
                    "temperature": options.temperature,
                    "maxOutputTokens": options.max_tokens,
                },
            },
        )
        response.raise_for_status()
        data = response.json()

        candidates = data.get("candidates") or []
        parts = candidates[0].get("content", {}).get("parts", []) if candidates else []
        content = "".join(part.get("text", "") for part in parts)
        if not content:
            raise GenerationFailed("AI generation failed: No response generated from Gemini", provider="gemini")

        usage = data.get("usageMetadata", {})
        return GenerationResult(
            content=content,
            usage=Usage(
                prompt_tokens=usage.get("promptTokenCount", 0),
                completion_tokens=usage.get("candidatesTokenCount", 0),
                total_tokens=usage.get("totalTokenCount", 0),
            ),
            model=model,
            provider=Provider.GEMINI,
        )
