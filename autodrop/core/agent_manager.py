"""
Production agent invocation path.

Every direct message to a registered agent goes through here: rate limiting,
status checks, input sanitisation, generation with the agent's configured
provider, the chat audit log and metrics.
"""

import time
from collections import deque
from typing import Callable, Deque, Dict, Optional

import structlog

from autodrop.adapters.agent_directory import AgentDirectory
from autodrop.adapters.chat_log import ChatLogStore
from autodrop.adapters.llm import TextGenerationClient
from autodrop.config.security import sanitize_input
from autodrop.config.settings import settings
from autodrop.core.exceptions import (
    AgentUnavailable,
    InvalidInput,
    ProviderNotConfigured,
    RateLimitExceeded,
    UnknownAgent,
)
from autodrop.models.schemas import AgentStatus, GenerationOptions, Language

logger = structlog.get_logger()


class SlidingWindowRateLimiter:
    """
    Per-key limit of N requests within a trailing time window.

    Keys whose window empties are forgotten.
    """

    def __init__(
        self,
        max_requests: int = None,
        window_seconds: float = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.max_requests = max_requests or settings.rate_limit_requests_per_minute
        self.window_seconds = window_seconds or settings.rate_limit_window_seconds
        self._clock = clock
        self._requests: Dict[str, Deque[float]] = {}

    def tracked_keys(self) -> int:
        """Number of keys with requests inside the window"""
        return len(self._requests)

    def _prune(self, key: str, now: float) -> Deque[float]:
        requests = self._requests.get(key, deque())
        while requests and now - requests[0] >= self.window_seconds:
            requests.popleft()
        if not requests:
            self._requests.pop(key, None)
        return requests

    def check(self, key: str) -> bool:
        """Record a request for `key` if it fits in the window"""
        now = self._clock()
        requests = self._prune(key, now)
        if len(requests) >= self.max_requests:
            return False
        requests.append(now)
        self._requests[key] = requests
        return True

    def retry_after(self, key: str) -> float:
        """Seconds until the oldest request in the window expires"""
        requests = self._requests.get(key)
        if not requests:
            return 0.0
        return max(0.0, self.window_seconds - (self._clock() - requests[0]))


class AgentManager:
    """Invokes registered agents on behalf of users and other components"""

    def __init__(
        self,
        directory: AgentDirectory,
        client: TextGenerationClient,
        chat_log: ChatLogStore,
        rate_limiter: Optional[SlidingWindowRateLimiter] = None,
        fallback_message: Optional[str] = None,
    ):
        self.directory = directory
        self.client = client
        self.chat_log = chat_log
        self.rate_limiter = rate_limiter if rate_limiter is not None else SlidingWindowRateLimiter()
        self.fallback_message = fallback_message or settings.fallback_message
        self._started_at = time.monotonic()

    async def process_message(
        self,
        agent_id: str,
        message: str,
        user_id: str = "anonymous",
        language: Language = Language.EN,
    ) -> str:
        """
        Send a message to an agent and return its reply.

        Args:
            agent_id: Registered agent id
            message: Raw user text (sanitised before use)
            user_id: Caller identity for the audit log
            language: Response language

        Returns:
            The agent's reply, or the fallback message if its provider is not configured

        Raises:
            UnknownAgent: Agent is not registered
            RateLimitExceeded: Too many requests for this agent in the window
            AgentUnavailable: Agent is not active
            InvalidInput: Message is empty after sanitisation
            GenerationFailed: Provider call failed
        """
        start = time.monotonic()
        language = Language(language)

        try:
            agent = await self.directory.get_agent(agent_id)
            if agent is None:
                raise UnknownAgent(agent_id)

            if not self.rate_limiter.check(agent_id):
                raise RateLimitExceeded(agent_id, retry_after=self.rate_limiter.retry_after(agent_id))

            if agent.status != AgentStatus.ACTIVE:
                raise AgentUnavailable(agent_id, agent.status.value)

            sanitized = sanitize_input(message)
            if not sanitized:
                raise InvalidInput("Message cannot be empty")

            try:
                result = await self.client.generate(
                    agent.config.provider,
                    agent.config.model,
                    sanitized,
                    system_prompt=agent.config.system_prompt,
                    options=GenerationOptions(
                        temperature=agent.config.temperature,
                        max_tokens=agent.config.max_tokens,
                        language=language,
                    ),
                )
            except ProviderNotConfigured:
                elapsed_ms = round((time.monotonic() - start) * 1000)
                self.chat_log.record(
                    agent_id=agent_id,
                    user_id=user_id,
                    message=sanitized,
                    response=self.fallback_message,
                    language=language.value,
                    metadata={
                        "model": "fallback",
                        "provider": agent.config.provider.value,
                        "response_time": elapsed_ms,
                        "fallback": True,
                    },
                )
                logger.warning("agent_fallback_reply", agent_id=agent_id, provider=agent.config.provider.value)
                return self.fallback_message

            elapsed_ms = round((time.monotonic() - start) * 1000)
            self.chat_log.record(
                agent_id=agent_id,
                user_id=user_id,
                message=sanitized,
                response=result.content,
                language=language.value,
                metadata={
                    "model": result.model,
                    "provider": result.provider.value,
                    "usage": result.usage.model_dump(),
                    "response_time": elapsed_ms,
                },
            )
            await self.directory.update_metrics(agent_id, success=True, response_time_ms=elapsed_ms)

            logger.info(
                "agent_message_processed",
                agent_id=agent_id,
                user_id=user_id,
                response_time_ms=elapsed_ms,
            )
            return result.content

        except Exception as e:
            logger.error(
                "agent_message_failed",
                agent_id=agent_id,
                user_id=user_id,
                error=str(e),
                error_type=type(e).__name__,
            )
            await self.directory.update_metrics(agent_id, success=False)
            raise

    async def health_check(self) -> dict:
        """Liveness summary: active agent count and uptime"""
        agents = await self.directory.list_agents()
        return {
            "status": "healthy",
            "agents": len([a for a in agents if a.status == AgentStatus.ACTIVE]),
            "uptime_seconds": round(time.monotonic() - self._started_at, 3),
        }
