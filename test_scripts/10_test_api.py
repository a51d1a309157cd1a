#!/usr/bin/env python3
"""
Test: JSON API
Purpose: Exercise every endpoint through the FastAPI application

Tests:
- Health, metrics and activity
- Agent registry, chat, rate limiting and history
- Workflow lifecycle (create, execute, failure, status, templates, cross-agent)
- Conversations, idempotent messages and inquiry routing
- Handoffs
- Raw generation and API key settings
"""

import asyncio
import sys
from contextlib import contextmanager

from fastapi.testclient import TestClient

from fixtures import (
    run_tests, FakeGenerationClient, isolated_settings,
    assert_equal, assert_true, assert_in
)

from main import app
from autodrop.adapters.agent_directory import AgentDirectory, default_agents
from autodrop.adapters.chat_log import ChatLogStore
from autodrop.adapters.llm import CredentialStore, TextGenerationClient
from autodrop.agent_layer.orchestrator import MultiAgentSystem
from autodrop.core.agent_manager import SlidingWindowRateLimiter


@contextmanager
def api_client(client=None, max_requests=1000):
    """Run the app with an isolated system backed by `client`"""
    with TestClient(app) as http:
        generation_client = client or FakeGenerationClient()
        app.state.system = MultiAgentSystem.create(
            client=generation_client,
            event_bus=app.state.event_bus,
            directory=AgentDirectory(agents=default_agents()),
            chat_log=ChatLogStore(),
            rate_limiter=SlidingWindowRateLimiter(max_requests=max_requests, window_seconds=60),
        )
        http.portal.call(app.state.system.initialize)
        yield http, app.state.system


def analytics_fails(call):
    if "business analytics specialist" in call["system_prompt"]:
        raise RuntimeError("analytics backend down")
    return "ok"


# ============================================================================
# Health / agents
# ============================================================================

def test_health_and_metrics():
    with api_client() as (http, _):
        response = http.get("/health")
        assert_equal(response.status_code, 200)
        body = response.json()
        assert_equal(body["status"], "healthy")
        assert_equal(body["agents"], 5)
        assert_equal(body["version"], "1.0.0")

        metrics = http.get("/metrics").json()
        assert_in("event_bus", metrics)
        assert_equal(metrics["workflows"]["total"], 0)

        activity = http.get("/api/activity").json()
        assert_true(isinstance(activity["events"], list))


def test_agent_endpoints():
    with api_client(FakeGenerationClient(default_reply="Hi there!")) as (http, system):
        agents = http.get("/api/agents").json()
        assert_equal(len(agents), 5)

        missing = http.get("/api/agents/legal")
        assert_equal(missing.status_code, 404)
        assert_equal(missing.json(), {"error": "Agent legal not found"})

        chat = http.post("/api/agents/marketing/chat", json={"message": "Tagline please", "user_id": "u-7"})
        assert_equal(chat.status_code, 200)
        assert_equal(chat.json()["response"], "Hi there!")
        assert_equal(chat.json()["agent_id"], "marketing")

        history = http.get("/api/agents/marketing/history").json()
        assert_equal(len(history["messages"]), 1)
        assert_equal(history["messages"][0]["user_id"], "u-7")

        updated = http.put("/api/agents/marketing/config", json={"model": "gpt-4o-mini", "provider": "openai"})
        assert_equal(updated.status_code, 200)
        assert_equal(updated.json()["config"]["model"], "gpt-4o-mini")
        assert_equal(system.agents["marketing"].profile.model, "gpt-4o-mini", "Persona follows registry")

        invalid = http.put("/api/agents/marketing/config", json={"temperature": 5})
        assert_equal(invalid.status_code, 400)


def test_rate_limited_chat():
    with api_client(max_requests=1) as (http, _):
        assert_equal(http.post("/api/agents/analytics/chat", json={"message": "one"}).status_code, 200)

        limited = http.post("/api/agents/analytics/chat", json={"message": "two"})
        assert_equal(limited.status_code, 429)
        assert_equal(limited.json(), {"error": "Rate limit exceeded. Please try again later."})
        assert_in("retry-after", limited.headers)


# ============================================================================
# Workflows
# ============================================================================

def test_workflow_lifecycle():
    with api_client() as (http, _):
        created = http.post("/api/workflows", json={
            "name": "Launch",
            "steps": [
                {"agent_id": "product-research", "action": "find"},
                {"agent_id": "marketing", "action": "write", "dependencies": ["step_1"]},
            ],
        })
        assert_equal(created.status_code, 200)
        workflow = created.json()
        assert_equal(workflow["status"], "draft")

        executed = http.post(f"/api/workflows/{workflow['id']}/execute")
        assert_equal(executed.status_code, 200)
        assert_equal(executed.json()["status"], "completed")
        assert_equal(executed.json()["steps"][1]["output"]["response"], "Acknowledged.")

        again = http.post(f"/api/workflows/{workflow['id']}/execute")
        assert_equal(again.status_code, 409)

        listed = http.get("/api/workflows", params={"status": "completed"}).json()
        assert_equal(listed["total"], 1)

        assert_equal(http.get("/api/workflows/workflow_missing").status_code, 404)


def test_workflow_failure_and_validation():
    with api_client(FakeGenerationClient(responder=analytics_fails)) as (http, _):
        workflow = http.post("/api/workflows", json={
            "name": "Report",
            "steps": [
                {"id": "collect", "agent_id": "customer-service", "action": "collect"},
                {"id": "analyse", "agent_id": "analytics", "action": "analyse", "dependencies": ["collect"]},
            ],
        }).json()

        executed = http.post(f"/api/workflows/{workflow['id']}/execute")
        assert_equal(executed.status_code, 200, "Step failures are reported in the body")
        body = executed.json()
        assert_equal(body["status"], "failed")
        assert_equal(body["error"]["step_id"], "analyse")
        assert_equal(body["steps"][0]["status"], "completed")

        dangling = http.post("/api/workflows", json={
            "name": "Broken",
            "steps": [{"agent_id": "marketing", "action": "x", "dependencies": ["ghost"]}],
        })
        assert_equal(dangling.status_code, 400)

        empty = http.post("/api/workflows", json={"name": "Empty", "steps": []})
        assert_equal(empty.status_code, 400)
        assert_in("error", empty.json())


def test_workflow_status_and_templates():
    with api_client() as (http, _):
        templates = http.post("/api/workflows/templates")
        assert_equal(templates.status_code, 200)
        assert_equal(len(templates.json()), 2)

        workflow_id = templates.json()[0]["id"]
        paused = http.put(f"/api/workflows/{workflow_id}/status", json={"status": "paused"})
        assert_equal(paused.json()["status"], "paused")

        blocked = http.post(f"/api/workflows/{workflow_id}/execute")
        assert_equal(blocked.status_code, 409)

        forced = http.put(f"/api/workflows/{workflow_id}/status", json={"status": "completed"})
        assert_equal(forced.status_code, 409)


def test_cross_agent_workflows():
    with api_client(FakeGenerationClient(default_reply="step done")) as (http, system):
        research = http.post(
            "/api/workflows/cross-agent/product-research-to-marketing", json={"query": "yoga mats"}
        )
        assert_equal(research.status_code, 200)
        assert_equal(research.json()["workflow"], "product-research-to-marketing")
        assert_in("**Marketing Phase:**", research.json()["report"])

        order = http.post(
            "/api/workflows/cross-agent/order-to-customer-service",
            json={"order": {"id": "A1", "customer": {"email": "a@b.c"}}},
        )
        assert_equal(order.status_code, 200)
        assert_in("**Customer Communication:**", order.json()["report"])

        unknown = http.post("/api/workflows/cross-agent/teleport", json={})
        assert_equal(unknown.status_code, 400)

        missing_query = http.post("/api/workflows/cross-agent/product-research-to-marketing", json={})
        assert_equal(missing_query.status_code, 400)
        assert_equal(missing_query.json(), {"error": "query: Field required"})

        bad_order = http.post("/api/workflows/cross-agent/order-to-customer-service", json={"order": "A1"})
        assert_equal(bad_order.status_code, 400)
        assert_in("order", bad_order.json()["error"])

        handoffs = http.get("/api/handoffs").json()
        assert_equal([h["to_agent"] for h in handoffs], ["marketing", "customer-service"])


# ============================================================================
# Conversations / routing / handoffs
# ============================================================================

def test_conversation_endpoints():
    with api_client() as (http, _):
        created = http.post("/api/conversations", json={
            "participants": ["customer-service", "marketing"],
            "topic": "Holiday promo",
            "initial_message": "Let's plan",
        })
        assert_equal(created.status_code, 200)
        conversation_id = created.json()["id"]

        headers = {"Idempotency-Key": "retry-1"}
        body = {"sender_agent_id": "customer-service", "content": "Ideas for December?"}
        first = http.post(f"/api/conversations/{conversation_id}/messages", json=body, headers=headers)
        second = http.post(f"/api/conversations/{conversation_id}/messages", json=body, headers=headers)

        assert_equal(first.status_code, 200)
        assert_equal(len(first.json()["messages"]), 3)
        assert_equal(len(second.json()["messages"]), 3, "Retry is not delivered twice")

        status = http.put(f"/api/conversations/{conversation_id}/status", json={"status": "completed"})
        assert_equal(status.json()["status"], "completed")

        assert_equal(http.get("/api/conversations").json()["total"], 1)
        assert_equal(http.get("/api/conversations/conv_missing").status_code, 404)

        blank = http.post(
            f"/api/conversations/{conversation_id}/messages",
            json={"sender_agent_id": "marketing", "content": "   "},
        )
        assert_equal(blank.status_code, 400)


def test_inquiry_routing():
    client = FakeGenerationClient(
        default_reply="TARGET_AGENT: order-management\nCONTEXT: Refund status\nPRIORITY: high\nREASONING: Order issue"
    )
    with api_client(client) as (http, _):
        response = http.post("/api/route", json={"inquiry": "Where is my refund?"})

        assert_equal(response.status_code, 200)
        body = response.json()
        assert_equal(body["routing"]["target_agent"], "order-management")
        assert_equal(body["routing"]["priority"], "high")

        conversation = http.get(f"/api/conversations/{body['conversation_id']}").json()
        assert_equal(conversation["participants"], ["customer-service", "order-management"])

        empty = http.post("/api/route", json={"inquiry": ""})
        assert_equal(empty.status_code, 400)


def test_handoff_endpoints():
    with api_client(FakeGenerationClient(default_reply="On it.")) as (http, _):
        response = http.post("/api/handoffs", json={
            "from_agent": "customer-service",
            "to_agent": "order-management",
            "context": "Customer wants to change address",
            "data": {"order_id": "O-1"},
        })
        assert_equal(response.status_code, 200)
        assert_equal(response.json(), {
            "response": "On it.",
            "from_agent": "customer-service",
            "to_agent": "order-management",
        })

        missing = http.post("/api/handoffs", json={"from_agent": "a", "to_agent": "legal", "context": "x"})
        assert_equal(missing.status_code, 404)

        assert_equal(len(http.get("/api/handoffs").json()), 1)


# ============================================================================
# Raw generation / API keys
# ============================================================================

def test_generate_and_api_keys():
    client = TextGenerationClient(CredentialStore(isolated_settings()), timeout_seconds=5.0)
    with api_client(client) as (http, _):
        unconfigured = http.post("/api/ai/generate", json={"provider": "openai", "model": "gpt-4o", "prompt": "hi"})
        assert_equal(unconfigured.status_code, 503)
        body = unconfigured.json()
        assert_equal(body["success"], False)
        assert_in("OPENAI_API_KEY is not configured", body["error"])
        assert_equal(body["fallback"]["provider"], "openai")

        status = http.get("/api/settings/api-keys").json()
        assert_equal(status["configured"], {"openai": False, "anthropic": False, "gemini": False})

        rejected = http.post("/api/settings/api-keys", json={"anthropic": "sk-wrong"})
        assert_equal(rejected.status_code, 400)
        assert_equal(rejected.json(), {"error": "Invalid Anthropic API key format"})

        accepted = http.post("/api/settings/api-keys", json={"openai": "sk-test-1234567890"})
        assert_equal(accepted.status_code, 200)

        status = http.get("/api/settings/api-keys").json()
        assert_equal(status["openai"], "sk-test-...")
        assert_equal(status["configured"]["openai"], True)


async def main():
    """Run all API tests"""
    return await run_tests("API Tests", [
        ("Health and metrics", test_health_and_metrics),
        ("Agent endpoints", test_agent_endpoints),
        ("Rate limited chat", test_rate_limited_chat),
        ("Workflow lifecycle", test_workflow_lifecycle),
        ("Workflow failure and validation", test_workflow_failure_and_validation),
        ("Workflow status and templates", test_workflow_status_and_templates),
        ("Cross-agent workflows", test_cross_agent_workflows),
        ("Conversation endpoints", test_conversation_endpoints),
        ("Inquiry routing", test_inquiry_routing),
        ("Handoff endpoints", test_handoff_endpoints),
        ("Generate and API keys", test_generate_and_api_keys),
    ])


if __name__ == "__main__":
    exit_code = asyncio.run(main())
    sys.exit(exit_code)
