"""Tests for the MCP tool surface."""

import pytest
from fastmcp import Client

from hybrid.mcp_server import MCPServerApp


@pytest.fixture
def mcp_server(service):
    app = MCPServerApp(service=service, mcp_server_name="test-hybrid")
    return app.mcp


def _data(result):
    return getattr(result, "data", None) or getattr(result, "structured", None) \
        or getattr(result, "structured_content", None)


@pytest.mark.asyncio
async def test_tools_registered(mcp_server):
    async with Client(mcp_server) as client:
        names = {t.name for t in await client.list_tools()}
    assert names == {"retrieve_context", "record_message", "remember", "forget", "list_memories"}


@pytest.mark.asyncio
async def test_remember_then_retrieve(mcp_server):
    async with Client(mcp_server) as client:
        saved = _data(await client.call_tool(
            "remember", {"user_id": "u1", "content": "user's favorite color is blue"}
        ))
        assert saved["ok"] is True
        assert saved["results"]["id"].startswith("mem_")
        assert saved["results"]["tier"] == "tier1"

        data = _data(await client.call_tool(
            "retrieve_context", {"query": "what's my favorite color", "thread_id": "t1", "user_id": "u1"}
        ))

    assert data["ok"] is True
    assert "[memory]" in data["results"]["context"]
    assert data["results"]["layer_breakdown"]["memory"] == 1
    assert data["results"]["total_tokens"] <= data["results"]["token_budget"]


@pytest.mark.asyncio
async def test_retrieve_rejects_empty_query(mcp_server):
    async with Client(mcp_server) as client:
        data = _data(await client.call_tool(
            "retrieve_context", {"query": "   ", "thread_id": "t1", "user_id": "u1"}
        ))
    assert data["ok"] is False
    assert "query" in data["error"]


@pytest.mark.asyncio
async def test_retrieve_rejects_non_positive_budget(mcp_server):
    async with Client(mcp_server) as client:
        data = _data(await client.call_tool(
            "retrieve_context", {"query": "hi", "thread_id": "t1", "user_id": "u1", "token_budget": 0}
        ))
    assert data["ok"] is False


@pytest.mark.asyncio
async def test_record_message_validates_role(mcp_server):
    async with Client(mcp_server) as client:
        bad = _data(await client.call_tool(
            "record_message", {"thread_id": "t1", "user_id": "u1", "role": "robot", "content": "beep"}
        ))
        good = _data(await client.call_tool(
            "record_message", {"thread_id": "t1", "user_id": "u1", "role": "user", "content": "hello"}
        ))
    assert bad["ok"] is False
    assert good["ok"] is True
    assert good["results"]["role"] == "user"


@pytest.mark.asyncio
async def test_remember_validates_priority(mcp_server):
    async with Client(mcp_server) as client:
        data = _data(await client.call_tool(
            "remember", {"user_id": "u1", "content": "x", "priority": 1.5}
        ))
    assert data["ok"] is False
    assert "priority" in data["error"]


@pytest.mark.asyncio
async def test_forget_unknown_memory(mcp_server):
    async with Client(mcp_server) as client:
        data = _data(await client.call_tool("forget", {"user_id": "u1", "memory_id": "mem_missing"}))
    assert data["ok"] is False
    assert "not found" in data["error"]


@pytest.mark.asyncio
async def test_list_and_forget(mcp_server):
    async with Client(mcp_server) as client:
        saved = _data(await client.call_tool("remember", {"user_id": "u1", "content": "likes jazz"}))
        memory_id = saved["results"]["id"]

        listed = _data(await client.call_tool("list_memories", {"user_id": "u1"}))
        assert [m["id"] for m in listed["results"]] == [memory_id]

        forgotten = _data(await client.call_tool("forget", {"user_id": "u1", "memory_id": memory_id}))
        assert forgotten["results"]["deleted"] is True

        listed = _data(await client.call_tool("list_memories", {"user_id": "u1"}))
        assert listed["results"] == []


@pytest.mark.asyncio
async def test_list_memories_limit_bounds(mcp_server):
    async with Client(mcp_server) as client:
        data = _data(await client.call_tool("list_memories", {"user_id": "u1", "limit": 0}))
    assert data["ok"] is False
