"""
Test fixtures and helper utilities for standalone test scripts.
Provides a scripted generation client, isolated system setup and assertion
helpers.
"""

import sys
import os
import asyncio
from datetime import datetime
from typing import Callable, List, Optional

# Add parent directory to path for imports
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from autodrop.adapters.agent_directory import AgentDirectory, default_agents
from autodrop.adapters.chat_log import ChatLogStore
from autodrop.adapters.llm import CredentialStore
from autodrop.agent_layer.agent import AgentProfile
from autodrop.agent_layer.orchestrator import MultiAgentSystem
from autodrop.agent_layer.team import DEFAULT_PROFILES
from autodrop.config.settings import Settings
from autodrop.core.agent_manager import SlidingWindowRateLimiter
from autodrop.core.event_bus import EventBus
from autodrop.models.schemas import GenerationOptions, GenerationResult, Provider, Usage


# ============================================================================
# Color codes for terminal output
# ============================================================================

GREEN = '\033[92m'
RED = '\033[91m'
YELLOW = '\033[93m'
BLUE = '\033[94m'
CYAN = '\033[96m'
RESET = '\033[0m'


# ============================================================================
# Test output helpers
# ============================================================================

def print_test_header(test_name):
    """Print formatted test header"""
    print(f"\n{'='*70}")
    print(f"{CYAN}Running: {test_name}{RESET}")
    print(f"{'='*70}\n")


def print_pass(test_name):
    """Print test pass message"""
    print(f"{GREEN}✓ PASS{RESET}: {test_name}")


def print_fail(test_name, error):
    """Print test failure message with error details"""
    print(f"{RED}✗ FAIL{RESET}: {test_name}")
    print(f"{RED}  Error: {error}{RESET}")


def print_info(message):
    """Print informational message"""
    print(f"{BLUE}ℹ {message}{RESET}")


def print_summary(tests_passed, tests_failed):
    """Print test summary"""
    print(f"\n{'='*70}")
    total = tests_passed + tests_failed
    if tests_failed == 0:
        print(f"{GREEN}✓ ALL TESTS PASSED{RESET}: {tests_passed}/{total}")
    else:
        print(f"{RED}✗ SOME TESTS FAILED{RESET}: {tests_passed} passed, {tests_failed} failed")
    print(f"{'='*70}\n")


async def run_tests(title, tests):
    """Run (name, coroutine function) pairs and print a summary; returns an exit code"""
    print_test_header(title)

    tests_passed = 0
    tests_failed = 0

    for test_name, test_func in tests:
        try:
            result = test_func()
            if asyncio.iscoroutine(result):
                await result
            print_pass(test_name)
            tests_passed += 1
        except Exception as e:
            print_fail(test_name, str(e))
            import traceback
            traceback.print_exc()
            tests_failed += 1

    print_summary(tests_passed, tests_failed)
    return 0 if tests_failed == 0 else 1


# ============================================================================
# Scripted generation client
# ============================================================================

def isolated_settings(**overrides) -> Settings:
    """Settings that ignore the environment's provider keys and .env file"""
    values = {
        "openai_api_key": None,
        "anthropic_api_key": None,
        "gemini_api_key": None,
        "supabase_url": None,
        "supabase_key": None,
    }
    values.update(overrides)
    return Settings(_env_file=None, **values)


class FakeGenerationClient:
    """
    Stand-in for TextGenerationClient.

    Replies come from `responder(call)` where `call` is a dict with provider,
    model, prompt, system_prompt and options. The responder may return a
    string or raise. Every call is recorded.
    """

    def __init__(
        self,
        responder: Optional[Callable[[dict], str]] = None,
        default_reply: str = "Acknowledged.",
        delay: float = 0.0,
    ):
        self.responder = responder
        self.default_reply = default_reply
        self.delay = delay
        self.credentials = CredentialStore(isolated_settings())
        self.calls: List[dict] = []
        self.in_flight = 0
        self.max_in_flight = 0
        self.closed = False

    async def generate(
        self,
        provider,
        model: str,
        prompt: str,
        system_prompt: Optional[str] = None,
        options: Optional[GenerationOptions] = None,
    ) -> GenerationResult:
        call = {
            "provider": Provider(provider),
            "model": model,
            "prompt": prompt,
            "system_prompt": system_prompt or "",
            "options": options or GenerationOptions(),
        }
        self.calls.append(call)

        self.in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight)
        try:
            if self.delay:
                await asyncio.sleep(self.delay)
            content = self.responder(call) if self.responder else self.default_reply
        finally:
            self.in_flight -= 1

        return GenerationResult(
            content=content,
            usage=Usage(prompt_tokens=len(prompt), completion_tokens=len(content), total_tokens=len(prompt) + len(content)),
            model=model,
            provider=call["provider"],
        )

    async def aclose(self):
        self.closed = True

    def calls_for(self, marker: str) -> List[dict]:
        """Calls whose system prompt or prompt contains `marker`"""
        return [c for c in self.calls if marker in c["system_prompt"] or marker in c["prompt"]]


def role_profile(agent_id: str, name: Optional[str] = None) -> AgentProfile:
    """Minimal persona whose instructions start with ROLE:<agent_id>"""
    return AgentProfile(agent_id=agent_id, name=name or f"Agent {agent_id}", instructions=f"ROLE:{agent_id}")


def reply_for(call: dict) -> Optional[str]:
    """Agent id encoded by role_profile, if any"""
    system_prompt = call["system_prompt"]
    if system_prompt.startswith("ROLE:"):
        return system_prompt.split()[0][len("ROLE:"):]
    return None


# ============================================================================
# Event bus helpers
# ============================================================================

class EventCollector:
    """Helper class to collect events for testing"""

    def __init__(self):
        self.events = []

    async def handler(self, data: dict):
        """Event handler that collects events"""
        self.events.append(data)

    def get_events(self):
        """Get collected events"""
        return self.events

    def clear(self):
        """Clear collected events"""
        self.events = []

    def count(self):
        """Get count of collected events"""
        return len(self.events)

    def find_event(self, **kwargs):
        """Find event matching criteria"""
        for event in self.events:
            match = True
            for key, value in kwargs.items():
                if event.get(key) != value:
                    match = False
                    break
            if match:
                return event
        return None


# ============================================================================
# Test context managers
# ============================================================================

class SystemContext:
    """
    Context manager that builds an isolated multi-agent system.

    Uses the scripted client, an in-memory directory seeded with the default
    agents and a running event bus.
    """

    def __init__(
        self,
        client: Optional[FakeGenerationClient] = None,
        profiles=None,
        rate_limiter: Optional[SlidingWindowRateLimiter] = None,
        start_event_bus: bool = True,
    ):
        self.client = client or FakeGenerationClient()
        self.profiles = profiles if profiles is not None else DEFAULT_PROFILES
        self.rate_limiter = rate_limiter or SlidingWindowRateLimiter(max_requests=1000, window_seconds=60)
        self.start_event_bus = start_event_bus
        self.event_bus = None
        self.system = None

    async def __aenter__(self):
        """Setup test environment"""
        self.event_bus = EventBus()
        if self.start_event_bus:
            await self.event_bus.start()

        self.system = MultiAgentSystem.create(
            client=self.client,
            event_bus=self.event_bus,
            directory=AgentDirectory(agents=default_agents()),
            chat_log=ChatLogStore(),
            profiles=self.profiles,
            rate_limiter=self.rate_limiter,
        )
        await self.system.initialize()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        """Cleanup test environment"""
        if self.event_bus:
            await self.event_bus.stop()

    def collect(self, event_type) -> EventCollector:
        """Subscribe a fresh collector to an event type"""
        collector = EventCollector()
        self.event_bus.subscribe(event_type, collector.handler)
        return collector

    async def settle(self):
        """Wait for queued events to be handled"""
        await self.event_bus.wait_until_idle()


# ============================================================================
# Assertion helpers
# ============================================================================

def assert_equal(actual, expected, message=""):
    """Assert two values are equal"""
    if actual != expected:
        raise AssertionError(
            f"{message}\nExpected: {expected}\nActual: {actual}"
        )


def assert_not_equal(actual, expected, message=""):
    """Assert two values are not equal"""
    if actual == expected:
        raise AssertionError(
            f"{message}\nExpected values to be different, but both are: {actual}"
        )


def assert_true(condition, message=""):
    """Assert condition is true"""
    if not condition:
        raise AssertionError(f"{message}\nExpected: True\nActual: False")


def assert_false(condition, message=""):
    """Assert condition is false"""
    if condition:
        raise AssertionError(f"{message}\nExpected: False\nActual: True")


def assert_in(item, container, message=""):
    """Assert item is in container"""
    if item not in container:
        raise AssertionError(
            f"{message}\nExpected {item} to be in {container}"
        )


def assert_not_in(item, container, message=""):
    """Assert item is not in container"""
    if item in container:
        raise AssertionError(
            f"{message}\nExpected {item} to not be in {container}"
        )


def assert_raises(exception_type, func, *args, **kwargs):
    """Assert function raises specific exception"""
    try:
        func(*args, **kwargs)
    except exception_type:
        return
    except Exception as e:
        raise AssertionError(
            f"Expected {exception_type.__name__} to be raised, but got {type(e).__name__}: {e}"
        )
    raise AssertionError(
        f"Expected {exception_type.__name__} to be raised, but no exception was raised"
    )


async def assert_raises_async(exception_type, coro):
    """Assert async function raises specific exception; returns the exception"""
    try:
        await coro
    except exception_type as e:
        return e
    except Exception as e:
        raise AssertionError(
            f"Expected {exception_type.__name__} to be raised, but got {type(e).__name__}: {e}"
        )
    raise AssertionError(
        f"Expected {exception_type.__name__} to be raised, but no exception was raised"
    )


# ============================================================================
# Timing helpers
# ============================================================================

class PerformanceTimer:
    """Context manager for timing operations"""

    def __init__(self):
        self.start_time = None
        self.end_time = None
        self.duration_ms = None

    def __enter__(self):
        """Start timer"""
        self.start_time = datetime.now()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        """Stop timer"""
        self.end_time = datetime.now()
        duration = self.end_time - self.start_time
        self.duration_ms = duration.total_seconds() * 1000

    def get_duration_ms(self):
        """Get duration in milliseconds"""
        return self.duration_ms
