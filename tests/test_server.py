"""Tests for the operator MCP server."""

from __future__ import annotations

import json

import pytest
from fastmcp import Client

from dockyard.bootstrap import open_runtime
from dockyard.server import create_server

from conftest import FakeDispatcher, FakeProbe


def _data(result) -> dict:
    """Extract parsed JSON from CallToolResult."""
    return json.loads(result.content[0].text)


@pytest.fixture
async def runtime(config, dispatcher: FakeDispatcher, probe: FakeProbe):
    rt = await open_runtime(config, dispatcher=dispatcher, probe=probe)
    yield rt
    await rt.close()


@pytest.fixture
async def client(config, runtime):
    server = create_server(config, runtime=runtime)
    async with Client(server) as c:
        yield c


@pytest.fixture
async def deployed(runtime, alice):
    return await runtime.engine.create_and_deploy(
        alice, repo_url="https://github.com/alice/demo", project_name="demo"
    )


async def test_list_tools(client: Client):
    tools = await client.list_tools()
    assert {t.name for t in tools} == {"dy_project", "dy_env"}


async def test_list_projects_as_operator(client: Client, deployed):
    data = _data(await client.call_tool("dy_project", {"action": "list", "lang": "ru"}))
    assert data["_v"] == "1.0"
    assert data["count"] == 1
    assert data["projects"][0]["statusLabel"] == "Сборка"


async def test_get_project(client: Client, deployed):
    data = _data(await client.call_tool("dy_project", {"action": "get", "project_id": "demo"}))
    assert data["id"] == "demo"
    assert data["status"] == "building"
    assert "envVars" in data


async def test_get_requires_project_id(client: Client):
    data = _data(await client.call_tool("dy_project", {"action": "get"}))
    assert "project_id is required" in data["error"]


async def test_get_missing_project(client: Client):
    data = _data(await client.call_tool("dy_project", {"action": "get", "project_id": "ghost"}))
    assert "not found" in data["error"]


async def test_redeploy_and_activity(client: Client, deployed, dispatcher: FakeDispatcher):
    data = _data(await client.call_tool("dy_project", {"action": "redeploy", "project_id": "demo"}))
    assert data["status"] == "building"
    assert len(dispatcher.calls) == 2

    activity = _data(
        await client.call_tool("dy_project", {"action": "activity", "project_id": "demo"})
    )
    assert activity["count"] >= 3


async def test_settings(client: Client, deployed):
    data = _data(await client.call_tool("dy_project", {
        "action": "settings",
        "project_id": "demo",
        "autodeploy": False,
        "env_vars": "A=1",
    }))
    assert data["autodeploy"] is False

    empty = _data(await client.call_tool("dy_project", {"action": "settings", "project_id": "demo"}))
    assert empty["error"] == "Nothing to change"


async def test_delete(client: Client, deployed, runtime):
    data = _data(await client.call_tool("dy_project", {"action": "delete", "project_id": "demo"}))
    assert data["deleted"] == "demo"
    assert await runtime.store.get_project("demo") is None


async def test_env_parse_and_render(client: Client):
    parsed = _data(await client.call_tool("dy_env", {
        "action": "parse",
        "content": '{"A": "1", "B": "2"}',
        "filename": "vars.json",
    }))
    assert parsed["count"] == 2

    rendered = _data(await client.call_tool("dy_env", {"action": "render", "content": "A=1"}))
    assert rendered["dotenv"] == "A=1"
    assert rendered["dispatch"] == '[{"key":"A","value":"1"}]'

    bad = _data(await client.call_tool("dy_env", {"action": "parse", "content": "oops"}))
    assert "Line 1" in bad["error"]


async def test_status_resource(client: Client, deployed):
    contents = await client.read_resource("dy://status")
    data = json.loads(contents[0].text)
    assert data["store"]["projects"] == 1
    assert data["operator"] == "operator@localhost"
