"""
Centralized configuration management using Pydantic Settings.
Validates environment variables on startup and provides typed config access.
"""

from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import Field
from typing import Optional


class Settings(BaseSettings):
    """
    Application settings with validation.
    Loads from environment variables with fallback to .env file.
    """

    # LLM Provider Credentials (optional - agents degrade to a fallback message)
    openai_api_key: Optional[str] = None
    anthropic_api_key: Optional[str] = None
    gemini_api_key: Optional[str] = None
    gemini_api_base_url: str = Field(
        default="https://generativelanguage.googleapis.com/v1beta",
        description="Base URL for the Gemini generateContent REST API"
    )

    # Generation Configuration
    generation_timeout_seconds: float = Field(
        default=60.0,
        description="Upper bound for a single provider call"
    )
    default_temperature: float = 0.7
    default_max_tokens: int = 1000
    fallback_message: str = Field(
        default=(
            "I'm currently unable to process your request because the AI service "
            "isn't configured. Please configure the API keys in Settings > API Keys "
            "to enable AI functionality."
        ),
        description="Reply used when a provider has no credentials"
    )

    # Agent Invocation Limits
    rate_limit_requests_per_minute: int = 30
    rate_limit_window_seconds: float = 60.0
    max_input_chars: int = 4000

    # Conversation Configuration
    conversation_fanout_max_depth: int = 1
    conversation_idempotency_cache_size: int = 1000

    # Event Bus / Activity Feed Configuration
    event_bus_max_queue_size: int = 1000
    event_bus_max_retries: int = 3
    activity_feed_size: int = 200

    # Supabase (optional agent registry and chat log backend)
    supabase_url: Optional[str] = None
    supabase_key: Optional[str] = None
    supabase_timeout_seconds: float = 10.0

    # Retry Configuration (external stores only)
    max_retry_attempts: int = 3
    retry_initial_wait_seconds: float = 1.0
    retry_max_wait_seconds: float = 10.0

    # Environment
    environment: str = "development"
    debug: bool = False
    host: str = "0.0.0.0"
    port: int = 8000

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore"
    )

    @property
    def supabase_enabled(self) -> bool:
        """Supabase is used only when both URL and key are set"""
        return bool(self.supabase_url and self.supabase_key and self.supabase_url.startswith("http"))

    def is_production(self) -> bool:
        """Check if running in production"""
        return self.environment.lower() == "production"

    def validate_critical_config(self):
        """
        Validate critical configuration on startup.
        Raises ValueError if critical config is impossible to run with.
        """
        import structlog
        logger = structlog.get_logger()

        errors = []

        if self.generation_timeout_seconds <= 0:
            errors.append("GENERATION_TIMEOUT_SECONDS must be positive")

        if self.rate_limit_requests_per_minute <= 0:
            errors.append("RATE_LIMIT_REQUESTS_PER_MINUTE must be positive")

        if self.conversation_fanout_max_depth < 1:
            errors.append("CONVERSATION_FANOUT_MAX_DEPTH must be at least 1")

        if self.conversation_idempotency_cache_size < 1:
            errors.append("CONVERSATION_IDEMPOTENCY_CACHE_SIZE must be at least 1")

        # Missing provider keys are not fatal - agents answer with the fallback message
        for provider, key in (
            ("openai", self.openai_api_key),
            ("anthropic", self.anthropic_api_key),
            ("gemini", self.gemini_api_key),
        ):
            if not key:
                logger.warning(
                    "provider_not_configured",
                    provider=provider,
                    message=f"{provider.upper()}_API_KEY not set - {provider} agents will use the fallback reply"
                )

        if not self.supabase_enabled:
            logger.warning(
                "supabase_not_configured",
                message="SUPABASE_URL/SUPABASE_KEY not set - using in-memory agent directory and chat log"
            )

        if errors:
            raise ValueError(f"Configuration errors: {', '.join(errors)}")


# Global settings instance
settings = Settings()
