#!/usr/bin/env python3
"""
Test: Agent Manager
Purpose: Verify the production invocation path for registered agents

Tests:
- Sliding window rate limiting
- Input sanitisation and empty messages
- Unknown and inactive agents
- Metrics and chat log side effects
- Chat log writes never delay the reply
- Unknown agents and expired windows leave no limiter state
- Fallback reply for unconfigured providers
- Agent registry updates and security helpers
"""

import asyncio
import sys

from fixtures import (
    run_tests, FakeGenerationClient, isolated_settings,
    assert_equal, assert_true, assert_false, assert_in, assert_not_in, assert_raises_async
)

from autodrop.adapters.agent_directory import AgentDirectory, default_agents, running_average
from autodrop.adapters.chat_log import ChatLogStore
from autodrop.adapters.llm import CredentialStore, TextGenerationClient
from autodrop.config.security import mask_api_key, sanitize_input, validate_api_key_format
from autodrop.core.agent_manager import AgentManager, SlidingWindowRateLimiter
from autodrop.core.exceptions import (
    AgentUnavailable,
    GenerationFailed,
    InvalidInput,
    RateLimitExceeded,
    UnknownAgent,
)
from autodrop.models.schemas import AgentConfigUpdate, AgentStatus, Language, Provider


class FakeClock:
    def __init__(self):
        self.now = 1000.0

    def __call__(self):
        return self.now


def make_manager(client=None, rate_limiter=None, fallback_message=None):
    directory = AgentDirectory(agents=default_agents())
    chat_log = ChatLogStore()
    manager = AgentManager(
        directory,
        client or FakeGenerationClient(default_reply="Happy to help!"),
        chat_log,
        rate_limiter=rate_limiter or SlidingWindowRateLimiter(max_requests=100, window_seconds=60),
        fallback_message=fallback_message,
    )
    return manager, directory, chat_log


def test_sliding_window():
    """N requests per window, then the oldest must expire"""
    clock = FakeClock()
    limiter = SlidingWindowRateLimiter(max_requests=2, window_seconds=60, clock=clock)

    assert_true(limiter.check("marketing"))
    clock.now += 10
    assert_true(limiter.check("marketing"))
    assert_false(limiter.check("marketing"), "Third request in window is rejected")
    assert_true(limiter.check("analytics"), "Limits are per agent")
    assert_equal(limiter.retry_after("marketing"), 50.0)

    clock.now += 50
    assert_true(limiter.check("marketing"), "Oldest request expired")

    clock.now += 120
    assert_equal(limiter.retry_after("analytics"), 0.0)
    assert_true(limiter.check("analytics"))
    assert_equal(limiter.tracked_keys(), 2, "Both agents have live windows")
    limiter._prune("marketing", clock.now)
    assert_equal(limiter.tracked_keys(), 1, "Empty windows are forgotten")


async def test_rate_limit_rejects():
    clock = FakeClock()
    manager, directory, _ = make_manager(
        rate_limiter=SlidingWindowRateLimiter(max_requests=1, window_seconds=60, clock=clock)
    )

    await manager.process_message("customer-service", "first")
    error = await assert_raises_async(RateLimitExceeded, manager.process_message("customer-service", "second"))

    assert_equal(error.status_code, 429)
    assert_equal(str(error), "Rate limit exceeded. Please try again later.")
    assert_equal(error.retry_after, 60.0)


async def test_successful_message():
    """Replies are logged and metrics updated"""
    client = FakeGenerationClient(default_reply="Your order ships tomorrow.")
    manager, directory, chat_log = make_manager(client=client)
    before = (await directory.get_agent("order-management")).metrics

    reply = await manager.process_message("order-management", "When does it ship?", user_id="u-1", language=Language.AR)

    assert_equal(reply, "Your order ships tomorrow.")
    call = client.calls[0]
    assert_equal(call["provider"], Provider.OPENAI)
    assert_equal(call["model"], "gpt-4o")
    assert_equal(call["system_prompt"], "You are an order management specialist for AutoDrop platform.")
    assert_equal(call["options"].max_tokens, 800)
    assert_equal(call["options"].language, Language.AR)

    after = (await directory.get_agent("order-management")).metrics
    assert_equal(after.total_requests, before.total_requests + 1)
    assert_equal(after.successful_requests, before.successful_requests + 1)
    assert_equal(after.failed_requests, before.failed_requests)

    history = await chat_log.history("order-management")
    assert_equal(len(history), 1)
    assert_equal(history[0]["user_id"], "u-1")
    assert_equal(history[0]["response"], "Your order ships tomorrow.")
    assert_equal(history[0]["language"], "ar")
    assert_equal(history[0]["metadata"]["model"], "gpt-4o")


class GatedChatLog(ChatLogStore):
    """Chat log whose writes wait until released"""

    def __init__(self):
        super().__init__()
        self.release = asyncio.Event()

    async def save_message(self, **entry):
        await self.release.wait()
        return await super().save_message(**entry)


async def test_chat_log_does_not_delay_reply():
    """The reply returns while the audit write is still pending"""
    chat_log = GatedChatLog()
    manager = AgentManager(
        AgentDirectory(agents=default_agents()),
        FakeGenerationClient(default_reply="Shipped."),
        chat_log,
        rate_limiter=SlidingWindowRateLimiter(max_requests=100, window_seconds=60),
    )

    reply = await asyncio.wait_for(manager.process_message("order-management", "Status?"), timeout=1.0)

    assert_equal(reply, "Shipped.")
    assert_equal(chat_log.pending, 1)

    chat_log.release.set()
    history = await chat_log.history("order-management")
    assert_equal(len(history), 1)
    assert_equal(history[0]["response"], "Shipped.")
    assert_equal(chat_log.pending, 0)


async def test_sanitises_input():
    """Script blocks and tags are stripped before the provider sees them"""
    client = FakeGenerationClient()
    manager, _, _ = make_manager(client=client)

    await manager.process_message("marketing", "<b>Hello</b><script>alert('x')</script> there")

    assert_equal(client.calls[0]["prompt"], "Hello there")


async def test_empty_message_rejected():
    client = FakeGenerationClient()
    manager, directory, _ = make_manager(client=client)

    await assert_raises_async(InvalidInput, manager.process_message("marketing", "<script>x</script>   "))

    assert_equal(len(client.calls), 0)
    metrics = (await directory.get_agent("marketing")).metrics
    assert_equal(metrics.failed_requests, 13 + 1)


async def test_unknown_and_inactive_agents():
    manager, directory, _ = make_manager()

    await assert_raises_async(UnknownAgent, manager.process_message("legal", "hi"))
    assert_equal(manager.rate_limiter.tracked_keys(), 0, "Unknown ids never reach the rate limiter")

    await directory.set_status("analytics", AgentStatus.MAINTENANCE)
    error = await assert_raises_async(AgentUnavailable, manager.process_message("analytics", "hi"))
    assert_equal(str(error), "Agent analytics is currently maintenance")


async def test_generation_failure_counts():
    def boom(call):
        raise GenerationFailed("AI generation failed: bad gateway")

    manager, directory, chat_log = make_manager(client=FakeGenerationClient(responder=boom))

    await assert_raises_async(GenerationFailed, manager.process_message("customer-service", "hi"))

    metrics = (await directory.get_agent("customer-service")).metrics
    assert_equal(metrics.failed_requests, 49 + 1)
    assert_equal(len(await chat_log.history("customer-service")), 0)


async def test_fallback_when_unconfigured():
    """No provider key: fallback reply, logged, no error"""
    client = TextGenerationClient(CredentialStore(isolated_settings()), timeout_seconds=5.0)
    manager, _, chat_log = make_manager(client=client, fallback_message="Please add API keys.")

    reply = await manager.process_message("marketing", "Write a tagline")

    assert_equal(reply, "Please add API keys.")
    history = await chat_log.history("marketing")
    assert_equal(history[0]["metadata"]["fallback"], True)
    assert_equal(history[0]["metadata"]["provider"], "anthropic")


async def test_health_check():
    manager, directory, _ = make_manager()
    await directory.set_status("analytics", AgentStatus.INACTIVE)

    health = await manager.health_check()

    assert_equal(health["status"], "healthy")
    assert_equal(health["agents"], 4)
    assert_true(health["uptime_seconds"] >= 0)


async def test_directory_config_update():
    """Partial config updates keep untouched fields"""
    directory = AgentDirectory(agents=default_agents())

    updated = await directory.update_config(
        "marketing", AgentConfigUpdate(provider=Provider.OPENAI, model="gpt-4o-mini")
    )

    assert_equal(updated.config.provider, Provider.OPENAI)
    assert_equal(updated.config.model, "gpt-4o-mini")
    assert_equal(updated.config.max_tokens, 2000)
    await assert_raises_async(UnknownAgent, directory.update_config("legal", AgentConfigUpdate(model="x")))


def test_running_average():
    assert_equal(running_average(0, 120, 1), 120)
    assert_equal(running_average(100, 200, 2), 150)
    assert_equal(running_average(850, 850, 1248), 850)


def test_security_helpers():
    assert_equal(sanitize_input("  <i>hi</i>  "), "hi")
    assert_equal(len(sanitize_input("x" * 10, max_chars=4)), 4)
    assert_equal(mask_api_key("sk-abcdefghijkl"), "sk-abcde...")
    assert_equal(mask_api_key(None), "")
    assert_true(validate_api_key_format("anthropic", "sk-ant-123"))
    assert_true(validate_api_key_format("gemini", "AIzaXYZ"))
    assert_false(validate_api_key_format("openai", "pk-123"))
    assert_false(validate_api_key_format("mistral", "sk-123"))
    assert_not_in("<", sanitize_input("<div>ok</div>"))
    assert_in("ok", sanitize_input("<div>ok</div>"))


async def main():
    """Run all agent manager tests"""
    return await run_tests("Agent Manager Tests", [
        ("Sliding window", test_sliding_window),
        ("Rate limit rejects", test_rate_limit_rejects),
        ("Successful message", test_successful_message),
        ("Chat log does not delay reply", test_chat_log_does_not_delay_reply),
        ("Sanitises input", test_sanitises_input),
        ("Empty message rejected", test_empty_message_rejected),
        ("Unknown and inactive agents", test_unknown_and_inactive_agents),
        ("Generation failure counts", test_generation_failure_counts),
        ("Fallback when unconfigured", test_fallback_when_unconfigured),
        ("Health check", test_health_check),
        ("Directory config update", test_directory_config_update),
        ("Running average", test_running_average),
        ("Security helpers", test_security_helpers),
    ])


if __name__ == "__main__":
    exit_code = asyncio.run(main())
    sys.exit(exit_code)
