#!/usr/bin/env python3
"""
Test: Supabase Backend
Purpose: Verify the PostgREST client and the stores that sit on top of it

Tests:
- select/insert/update request mapping (httpx mock transport)
- Rejected requests raise SupabaseError without retrying
- Transport errors are retried until the attempt limit
- Agent directory loads, caches and writes through Supabase
- A failed metrics write is logged and never raised
- Chat log inserts and reads chat_messages
"""

import asyncio
import json
import sys

import httpx
from structlog.testing import capture_logs
from tenacity import wait_none

from fixtures import (
    run_tests, assert_equal, assert_true, assert_in, assert_raises_async
)

from autodrop.adapters.agent_directory import AgentDirectory
from autodrop.adapters.chat_log import ChatLogStore
from autodrop.adapters.supabase import SupabaseClient, SupabaseError
from autodrop.config.settings import settings
from autodrop.models.schemas import AgentConfigUpdate, AgentStatus


SUPABASE_URL = "https://sb.test"
SUPABASE_KEY = "service-key"


def agent_row(agent_id: str, name: str, created_at: str = "2024-01-01T00:00:00+00:00") -> dict:
    return {
        "id": agent_id,
        "name": name,
        "type": agent_id,
        "status": "active",
        "config": {
            "model": "gpt-4o",
            "provider": "openai",
            "temperature": 0.5,
            "max_tokens": 800,
            "system_prompt": f"You are the {name}.",
            "language": "both",
        },
        "metrics": {
            "total_requests": 10,
            "successful_requests": 9,
            "failed_requests": 1,
            "avg_response_time": 500,
            "uptime_percentage": 99.0,
        },
        "created_at": created_at,
        "updated_at": created_at,
    }


class FakePostgrest:
    """Scripted PostgREST endpoint recording every request"""

    def __init__(self, rows=None):
        self.rows = {"agents": list(rows or []), "chat_messages": []}
        self.requests = []
        self.fail_with = {}  # method -> status code
        self.connect_failures = 0

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)

        if self.connect_failures:
            self.connect_failures -= 1
            raise httpx.ConnectError("connection refused", request=request)

        if request.method in self.fail_with:
            return httpx.Response(self.fail_with[request.method], text="backend unavailable")

        table = request.url.path.rsplit("/", 1)[-1]
        params = request.url.params

        if request.method == "GET":
            rows = self.rows[table]
            if "id" in params:
                rows = [row for row in rows if f"eq.{row['id']}" == params["id"]]
            if "agent_id" in params:
                rows = [row for row in rows if f"eq.{row['agent_id']}" == params["agent_id"]]
            if "limit" in params:
                rows = rows[:int(params["limit"])]
            return httpx.Response(200, json=rows)

        body = json.loads(request.content)
        if request.method == "POST":
            stored = {"id": f"row-{len(self.rows[table]) + 1}", **body}
            self.rows[table].append(stored)
            return httpx.Response(201, json=[stored])

        updated = []
        for row in self.rows[table]:
            if f"eq.{row['id']}" == params.get("id"):
                row.update(body)
                updated.append(row)
        return httpx.Response(200, json=updated)

    def calls(self, method: str):
        return [r for r in self.requests if r.method == method]

    def client(self) -> SupabaseClient:
        return SupabaseClient(
            url=SUPABASE_URL, key=SUPABASE_KEY, transport=httpx.MockTransport(self.handler)
        )


# ============================================================================
# Client
# ============================================================================

async def test_select_mapping():
    """select sends auth headers, equality filters, order and limit"""
    backend = FakePostgrest([agent_row("analytics", "Analytics Agent")])
    client = backend.client()

    rows = await client.select("agents", filters={"id": "analytics"}, order="created_at.desc", limit=1)

    assert_equal(len(rows), 1)
    assert_equal(rows[0]["name"], "Analytics Agent")

    request = backend.requests[0]
    assert_equal(request.url.host, "sb.test")
    assert_equal(request.url.path, "/rest/v1/agents")
    assert_equal(request.url.params["select"], "*")
    assert_equal(request.url.params["id"], "eq.analytics")
    assert_equal(request.url.params["order"], "created_at.desc")
    assert_equal(request.url.params["limit"], "1")
    assert_equal(request.headers["apikey"], SUPABASE_KEY)
    assert_equal(request.headers["authorization"], f"Bearer {SUPABASE_KEY}")
    assert_true("prefer" not in request.headers, "Reads do not ask for a representation")


async def test_insert_and_update_mapping():
    """insert/update ask for the stored representation and return it"""
    backend = FakePostgrest([agent_row("marketing", "Marketing Agent")])
    client = backend.client()

    stored = await client.insert("chat_messages", {"agent_id": "marketing", "message": "hi"})
    assert_equal(stored["id"], "row-1")
    assert_equal(stored["message"], "hi")

    post = backend.calls("POST")[0]
    assert_equal(post.headers["prefer"], "return=representation")
    assert_equal(json.loads(post.content), {"agent_id": "marketing", "message": "hi"})

    updated = await client.update("agents", {"id": "marketing"}, {"status": "inactive"})
    assert_equal(len(updated), 1)
    assert_equal(updated[0]["status"], "inactive")

    patch = backend.calls("PATCH")[0]
    assert_equal(patch.url.params["id"], "eq.marketing")
    assert_equal(patch.headers["prefer"], "return=representation")
    assert_equal(json.loads(patch.content), {"status": "inactive"})


async def test_rejected_request_not_retried():
    """HTTP errors raise SupabaseError after a single attempt"""
    backend = FakePostgrest()
    backend.fail_with["GET"] = 400
    client = backend.client()

    error = await assert_raises_async(SupabaseError, client.select("agents"))

    assert_in("Failed to fetch agents: HTTP 400", str(error))
    assert_equal(len(backend.requests), 1, "Rejected requests are not retried")


async def test_transport_error_retried():
    """A connection failure is retried and the next attempt succeeds"""
    backend = FakePostgrest([agent_row("analytics", "Analytics Agent")])
    backend.connect_failures = 1
    client = backend.client()

    select = SupabaseClient.select.retry_with(wait=wait_none())
    rows = await select(client, "agents")

    assert_equal(len(rows), 1)
    assert_equal(len(backend.requests), 2, "One failed attempt plus one retry")


async def test_transport_error_exhausts_attempts():
    """Persistent connection failures are re-raised after the attempt limit"""
    backend = FakePostgrest()
    backend.connect_failures = settings.max_retry_attempts + 5
    client = backend.client()

    insert = SupabaseClient.insert.retry_with(wait=wait_none())
    await assert_raises_async(httpx.ConnectError, insert(client, "chat_messages", {"message": "hi"}))

    assert_equal(len(backend.requests), settings.max_retry_attempts)


# ============================================================================
# Agent directory
# ============================================================================

async def test_directory_loads_and_caches():
    """load() fills the cache; cache misses fetch a single row by id"""
    backend = FakePostgrest([
        agent_row("customer-service", "Customer Service Agent", "2024-02-01T00:00:00+00:00"),
        agent_row("analytics", "Analytics Agent"),
    ])
    directory = AgentDirectory(supabase=backend.client())

    assert_equal(directory.backend, "supabase")
    assert_equal(len(await directory.list_agents()), 0, "No default seeds with a backend")

    loaded = await directory.load()
    assert_equal(loaded, 2)
    assert_equal(backend.requests[0].url.params["order"], "created_at.desc")

    agent = await directory.get_agent("customer-service")
    assert_equal(agent.name, "Customer Service Agent")
    assert_equal(len(backend.calls("GET")), 1, "Cached agents are served without a request")

    # Registered after load
    backend.rows["agents"].append(agent_row("marketing", "Marketing Agent"))
    agent = await directory.get_agent("marketing")
    assert_equal(agent.id, "marketing")

    lookup = backend.calls("GET")[1]
    assert_equal(lookup.url.params["id"], "eq.marketing")
    assert_equal(lookup.url.params["limit"], "1")

    await directory.get_agent("marketing")
    assert_equal(len(backend.calls("GET")), 2, "Fetched agents are cached")

    assert_true(await directory.get_agent("ghost") is None)


async def test_directory_writes_through():
    """Config and status changes are written to Supabase before the cache"""
    backend = FakePostgrest([agent_row("analytics", "Analytics Agent")])
    directory = AgentDirectory(supabase=backend.client())
    await directory.load()

    agent = await directory.update_config("analytics", AgentConfigUpdate(temperature=0.2))
    assert_equal(agent.config.temperature, 0.2)
    assert_equal(agent.config.model, "gpt-4o", "Untouched fields are kept")

    patch = backend.calls("PATCH")[0]
    assert_equal(patch.url.params["id"], "eq.analytics")
    body = json.loads(patch.content)
    assert_equal(body["config"]["temperature"], 0.2)
    assert_equal(body["config"]["max_tokens"], 800)
    assert_in("updated_at", body)

    await directory.set_status("analytics", AgentStatus.MAINTENANCE)
    assert_equal(json.loads(backend.calls("PATCH")[1].content)["status"], "maintenance")
    assert_equal((await directory.get_agent("analytics")).status, AgentStatus.MAINTENANCE)


async def test_failed_metrics_write_logged():
    """A rejected metrics write is logged; the cached metrics still advance"""
    backend = FakePostgrest([agent_row("analytics", "Analytics Agent")])
    directory = AgentDirectory(supabase=backend.client())
    await directory.load()
    backend.fail_with["PATCH"] = 500

    with capture_logs() as logs:
        metrics = await directory.update_metrics("analytics", success=True, response_time_ms=700)

    assert_equal(metrics.total_requests, 11)
    assert_equal(metrics.successful_requests, 10)
    assert_equal((await directory.get_agent("analytics")).metrics.total_requests, 11)
    assert_equal(len(backend.calls("PATCH")), 1)

    failures = [entry for entry in logs if entry["event"] == "agent_metrics_write_failed"]
    assert_equal(len(failures), 1)
    assert_equal(failures[0]["agent_id"], "analytics")
    assert_equal(failures[0]["log_level"], "error")
    assert_in("HTTP 500", failures[0]["error"])


# ============================================================================
# Chat log
# ============================================================================

async def test_chat_log_round_trip():
    """Saved exchanges go to chat_messages; history filters by agent"""
    backend = FakePostgrest()
    chat_log = ChatLogStore(supabase=backend.client())

    message_id = await chat_log.save_message(
        agent_id="marketing", user_id="user-1", message="Write a tagline", response="Buy now"
    )
    assert_equal(message_id, "row-1")

    row = json.loads(backend.calls("POST")[0].content)
    assert_equal(row["agent_id"], "marketing")
    assert_equal(row["language"], "en")
    assert_equal(row["metadata"], {})
    assert_in("timestamp", row)

    chat_log.record(agent_id="analytics", user_id="user-1", message="Revenue?", response="Up 5%")
    history = await chat_log.history("marketing", limit=10)

    assert_equal(chat_log.pending, 0, "history waits for scheduled writes")
    assert_equal([entry["response"] for entry in history], ["Buy now"])

    lookup = backend.calls("GET")[0]
    assert_equal(lookup.url.params["agent_id"], "eq.marketing")
    assert_equal(lookup.url.params["order"], "timestamp.desc")
    assert_equal(lookup.url.params["limit"], "10")


async def test_chat_log_failed_insert():
    """A rejected insert is logged and returns None"""
    backend = FakePostgrest()
    backend.fail_with["POST"] = 503
    chat_log = ChatLogStore(supabase=backend.client())

    with capture_logs() as logs:
        message_id = await chat_log.save_message(
            agent_id="marketing", user_id="user-1", message="hi", response="hello"
        )

    assert_true(message_id is None)
    assert_in("chat_message_save_failed", [entry["event"] for entry in logs])


async def main():
    """Run all Supabase backend tests"""
    return await run_tests("Supabase Backend Tests", [
        ("Select mapping", test_select_mapping),
        ("Insert and update mapping", test_insert_and_update_mapping),
        ("Rejected request not retried", test_rejected_request_not_retried),
        ("Transport error retried", test_transport_error_retried),
        ("Transport error exhausts attempts", test_transport_error_exhausts_attempts),
        ("Directory loads and caches", test_directory_loads_and_caches),
        ("Directory writes through", test_directory_writes_through),
        ("Failed metrics write logged", test_failed_metrics_write_logged),
        ("Chat log round trip", test_chat_log_round_trip),
        ("Chat log failed insert", test_chat_log_failed_insert),
    ])


if __name__ == "__main__":
    exit_code = asyncio.run(main())
    sys.exit(exit_code)
