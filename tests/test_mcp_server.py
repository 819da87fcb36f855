"""Tests for the agentvault MCP server — tool listing and calls."""

import json

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient

from agentvault.ledger import LedgerAdapter
from agentvault.mcp_server import MCP_TOOLS, VaultMCPServer, create_mcp_app
from agentvault.secret_store import SecretStore, Vault, generate_key
from agentvault.vault import ActionRegistry


async def whoami(token, params):
    return {"user": "octocat", "token": token}


@pytest.fixture
def server(tmp_path):
    vault = Vault(tmp_path / "vault.json", SecretStore.from_hex(generate_key()))
    actions = ActionRegistry()
    actions.register("whoami", whoami)
    return VaultMCPServer(vault, LedgerAdapter(), actions)


@pytest_asyncio.fixture
async def client(server):
    app = create_mcp_app(server, use_lifespan=False)
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as c:
        yield c


def _payload(result):
    return json.loads(result["content"][0]["text"])


@pytest_asyncio.fixture
async def credential(server):
    issued = await server.ledger.issue_credential("agent-secret", "agent-1")
    return {"agentId": "agent-1", "agentSecret": "agent-secret",
            "commitment": issued.credential_hash}


class TestToolDefinitions:
    def test_tool_names(self):
        names = [t["name"] for t in MCP_TOOLS]
        assert names == ["store_secret", "request_secret_access", "list_secrets", "get_stats"]

    def test_schemas(self):
        for tool in MCP_TOOLS:
            assert tool["description"]
            assert tool["inputSchema"]["type"] == "object"
            for req in tool["inputSchema"]["required"]:
                assert req in tool["inputSchema"]["properties"]


class TestHandleCall:
    @pytest.mark.asyncio
    async def test_store_and_list(self, server):
        stored = await server.handle_call("store_secret", {
            "name": "github", "value": "ghp_secret", "provider": "github"})
        assert "isError" not in stored
        assert _payload(stored)["secretId"].startswith("secret_")

        listed = _payload(await server.handle_call("list_secrets", {}))
        assert [s["name"] for s in listed["secrets"]] == ["github"]
        assert "ghp_secret" not in json.dumps(listed)

    @pytest.mark.asyncio
    async def test_access_success_is_scrubbed(self, server, credential):
        await server.handle_call("store_secret", {"name": "gh", "value": "ghp_secret",
                                                  "provider": "github"})
        result = await server.handle_call("request_secret_access", {
            "secretName": "gh", "action": "whoami", **credential})
        assert "isError" not in result
        payload = _payload(result)
        assert payload["success"] is True
        assert payload["result"]["user"] == "octocat"
        assert "ghp_secret" not in result["content"][0]["text"]

    @pytest.mark.asyncio
    async def test_access_denied_is_error(self, server, credential):
        await server.handle_call("store_secret", {"name": "gh", "value": "ghp_secret",
                                                  "provider": "github"})
        result = await server.handle_call("request_secret_access", {
            **credential, "agentSecret": "wrong", "secretName": "gh", "action": "whoami"})
        assert result["isError"] is True
        assert _payload(result)["error"] == "UNAUTHORIZED"
        stats = _payload(await server.handle_call("get_stats"))
        assert stats["blockedAttempts"] == 1

    @pytest.mark.asyncio
    async def test_unknown_tool(self, server):
        result = await server.handle_call("drop_tables", {})
        assert result["isError"] is True
        assert "Unknown tool" in _payload(result)["error"]

    @pytest.mark.asyncio
    async def test_missing_argument(self, server):
        result = await server.handle_call("store_secret", {"name": "x"})
        assert result["isError"] is True
        assert _payload(result)["error"] == "Missing argument: value"

    @pytest.mark.asyncio
    async def test_validation_error(self, server):
        result = await server.handle_call("store_secret", {"name": "", "value": "v"})
        assert result["isError"] is True

    @pytest.mark.asyncio
    async def test_arguments_must_be_object(self, server):
        result = await server.handle_call("store_secret", ["x"])
        assert result["isError"] is True
        assert _payload(result)["error"] == "Arguments must be an object"
        assert len(server.vault) == 0

    @pytest.mark.asyncio
    async def test_params_must_be_object(self, server, credential):
        server.vault.put("gh", "TOKEN", provider="github")
        result = await server.handle_call("request_secret_access", {
            "secretName": "gh", **credential, "action": "whoami", "params": ["a"]})
        assert result["isError"] is True
        assert _payload(result)["error"] == "params must be an object"


class TestHTTP:
    @pytest.mark.asyncio
    async def test_health(self, client):
        resp = await client.get("/health")
        assert resp.json()["status"] == "ok"

    @pytest.mark.asyncio
    async def test_list_tools_get_and_post(self, client):
        for method in (client.get, client.post):
            resp = await method("/mcp/tools")
            assert len(resp.json()["tools"]) == 4

    @pytest.mark.asyncio
    async def test_call(self, client):
        resp = await client.post("/mcp/call", json={"name": "get_stats", "arguments": {}})
        assert resp.status_code == 200
        assert _payload(resp.json())["source"] == "simulated"

    @pytest.mark.asyncio
    async def test_call_invalid_json(self, client):
        resp = await client.post("/mcp/call", content=b"{nope",
                                 headers={"Content-Type": "application/json"})
        assert resp.status_code == 400

    @pytest.mark.asyncio
    async def test_call_non_object(self, client):
        resp = await client.post("/mcp/call", json=[1, 2])
        assert resp.status_code == 400

    @pytest.mark.asyncio
    async def test_call_list_arguments(self, client):
        resp = await client.post("/mcp/call", json={"name": "store_secret", "arguments": ["x"]})
        assert resp.status_code == 200
        assert resp.json()["isError"] is True
