"""Raw text generation and provider key management endpoints."""

import structlog
from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse

from autodrop.api.v1.dependencies import get_system
from autodrop.config.security import mask_api_key, validate_api_key_format
from autodrop.config.settings import settings
from autodrop.core.exceptions import InvalidInput, ProviderNotConfigured
from autodrop.models.schemas import (
    ApiKeysStatus,
    ApiKeysUpdate,
    GenerateRequest,
    GenerateResponse,
    Provider,
    Usage,
)

router = APIRouter(tags=["ai"])
logger = structlog.get_logger()

PROVIDER_LABELS = {
    Provider.GEMINI: "Gemini",
    Provider.OPENAI: "OpenAI",
    Provider.ANTHROPIC: "Anthropic",
}


@router.post("/api/ai/generate", response_model=GenerateResponse)
async def generate(request: GenerateRequest, system = Depends(get_system)):
    """
    Generate text with an explicit provider and model.

    Answers 503 with a `fallback` payload when the provider has no key.
    """
    try:
        result = await system.client.generate(
            request.provider,
            request.model,
            request.prompt,
            system_prompt=request.system_prompt,
            options=request.options,
        )
    except ProviderNotConfigured as e:
        return JSONResponse(
            status_code=e.status_code,
            content={
                "success": False,
                "error": str(e),
                "fallback": {
                    "content": settings.fallback_message,
                    "usage": Usage().model_dump(),
                    "model": request.model,
                    "provider": request.provider.value,
                },
            },
        )
    return GenerateResponse(response=result)


@router.get("/api/settings/api-keys", response_model=ApiKeysStatus)
async def get_api_keys(system = Depends(get_system)):
    """Masked view of runtime-stored keys and which providers are usable"""
    credentials = system.credentials
    return ApiKeysStatus(
        gemini=mask_api_key(credentials.stored(Provider.GEMINI)),
        openai=mask_api_key(credentials.stored(Provider.OPENAI)),
        anthropic=mask_api_key(credentials.stored(Provider.ANTHROPIC)),
        configured={provider.value: credentials.is_configured(provider) for provider in Provider},
    )


@router.post("/api/settings/api-keys")
async def update_api_keys(keys: ApiKeysUpdate, system = Depends(get_system)):
    """
    Store provider keys at runtime.

    Keys are checked against their provider prefix; storing them drops the
    cached provider clients after closing them.
    """
    updates = {}
    for provider in Provider:
        key = getattr(keys, provider.value)
        if key and not validate_api_key_format(provider.value, key):
            raise InvalidInput(f"Invalid {PROVIDER_LABELS[provider]} API key format")
        updates[provider] = key

    await system.credentials.update(updates)
    return {"success": True, "message": "API keys updated successfully"}
