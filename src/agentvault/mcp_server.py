"""
agentvault MCP Server — Model Context Protocol tools for the secret vault.

Agents store secrets and run actions with them without ever seeing them:

    store_secret           - encrypt a secret into the vault
    request_secret_access  - prove a credential, then run an action with a secret
    list_secrets           - names and providers only
    get_stats              - ledger counters

Usage:
    agentvault-mcp [--port 8080]
"""

from __future__ import annotations

import argparse
import json
from contextlib import asynccontextmanager
from typing import Any, Optional

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from agentvault import __version__
from agentvault.config import Settings
from agentvault.errors import AgentVaultError, ValidationError
from agentvault.ledger import LedgerAdapter
from agentvault.secret_store import SecretStore, Vault
from agentvault.security import apply_security, logger
from agentvault.vault import ActionRegistry, VaultGate

MCP_TOOLS = [
    {
        "name": "store_secret",
        "description": "Store a new secret in the encrypted vault.",
        "inputSchema": {
            "type": "object",
            "properties": {
                "name": {"type": "string", "description": "Secret name"},
                "value": {"type": "string", "description": "Secret value (will be encrypted)"},
                "provider": {"type": "string", "description": "Provider name (e.g. 'github')"},
                "service_url": {"type": "string", "description": "Service the secret belongs to"},
            },
            "required": ["name", "value", "provider"],
        },
    },
    {
        "name": "request_secret_access",
        "description": "Prove a credential and run an action with a vault secret. "
                       "The secret itself is never returned.",
        "inputSchema": {
            "type": "object",
            "properties": {
                "secretName": {"type": "string", "description": "Name of the vault secret"},
                "agentId": {"type": "string", "description": "Agent the credential was issued to"},
                "agentSecret": {"type": "string", "description": "Agent credential secret"},
                "commitment": {"type": "string", "description": "Credential commitment"},
                "action": {"type": "string", "description": "Action to run, e.g. github_get_user"},
                "params": {"type": "object", "description": "Action parameters"},
            },
            "required": ["secretName", "agentSecret", "commitment", "action"],
        },
    },
    {
        "name": "list_secrets",
        "description": "List secrets in the vault (names and providers, never values).",
        "inputSchema": {"type": "object", "properties": {}, "required": []},
    },
    {
        "name": "get_stats",
        "description": "Get credential contract statistics.",
        "inputSchema": {"type": "object", "properties": {}, "required": []},
    },
]


def _text(result: Any, is_error: bool = False) -> dict:
    out: dict[str, Any] = {"content": [{"type": "text", "text": json.dumps(result, indent=2, default=str)}]}
    if is_error:
        out["isError"] = True
    return out


class VaultMCPServer:
    """Tool handlers over a vault and a ledger adapter."""

    def __init__(self, vault: Vault, ledger: LedgerAdapter,
                 actions: Optional[ActionRegistry] = None):
        self.vault = vault
        self.ledger = ledger
        self.gate = VaultGate(vault, ledger, actions)

    def list_tools(self) -> dict:
        return {"tools": MCP_TOOLS}

    async def handle_call(self, tool_name: str, arguments: Any = None) -> dict:
        handlers = {
            "store_secret": self._store_secret,
            "request_secret_access": self._request_secret_access,
            "list_secrets": self._list_secrets,
            "get_stats": self._get_stats,
        }
        handler = handlers.get(tool_name)
        if handler is None:
            return _text({"error": f"Unknown tool: {tool_name}"}, is_error=True)
        if arguments is None:
            arguments = {}
        if not isinstance(arguments, dict):
            return _text({"error": "Arguments must be an object"}, is_error=True)
        try:
            result = await handler(arguments)
        except KeyError as e:
            return _text({"error": f"Missing argument: {e.args[0]}"}, is_error=True)
        except AgentVaultError as e:
            return _text({"error": e.message}, is_error=True)
        return _text(result, is_error=result.get("success") is False)

    async def _store_secret(self, args: dict) -> dict:
        secret = self.vault.put(args["name"], args["value"],
                                provider=args.get("provider", ""),
                                service_url=args.get("service_url", ""))
        return {"success": True, "secretId": secret.id}

    async def _request_secret_access(self, args: dict) -> dict:
        params = args.get("params") or {}
        if not isinstance(params, dict):
            raise ValidationError("params must be an object")
        return await self.gate.request_secret_access(
            secret_name=args["secretName"],
            agent_id=args.get("agentId", ""),
            agent_secret=args["agentSecret"],
            commitment=args["commitment"],
            action=args["action"],
            params=params,
        )

    async def _list_secrets(self, _args: dict) -> dict:
        return {"secrets": self.vault.names()}

    async def _get_stats(self, _args: dict) -> dict:
        return (await self.ledger.get_stats()).to_dict()


def create_mcp_app(server: VaultMCPServer, use_lifespan: bool = True) -> FastAPI:
    @asynccontextmanager
    async def lifespan(app: FastAPI):
        await server.ledger.initialize()
        logger.info("agentvault MCP server started", extra={"secrets": len(server.vault)})
        yield
        await server.ledger.close()

    app = FastAPI(title="agentvault MCP", version=__version__,
                  lifespan=lifespan if use_lifespan else None)
    apply_security(app)

    @app.get("/health")
    async def health():
        return {"status": "ok", "protocol": "agentvault-mcp", "version": __version__}

    @app.get("/mcp/tools")
    @app.post("/mcp/tools")
    async def tools():
        return server.list_tools()

    @app.post("/mcp/call")
    async def call(request: Request):
        try:
            body = await request.json()
        except ValueError:
            return JSONResponse(status_code=400, content={"error": "Invalid JSON body"})
        if not isinstance(body, dict):
            return JSONResponse(status_code=400, content={"error": "Body must be an object"})
        return await server.handle_call(body.get("name", ""), body.get("arguments"))

    return app


def build_server(settings: Optional[Settings] = None, simulated: bool = False) -> VaultMCPServer:
    settings = settings or Settings.from_env()
    vault = Vault(settings.vault_path, SecretStore.from_hex(settings.vault_key))
    ledger = LedgerAdapter.from_settings(settings, simulated_only=simulated)
    return VaultMCPServer(vault, ledger)


def main(argv: Optional[list[str]] = None) -> None:
    import uvicorn

    parser = argparse.ArgumentParser(description="agentvault MCP Server")
    parser.add_argument("--host", default="0.0.0.0")
    parser.add_argument("--port", type=int, default=8080)
    parser.add_argument("--simulated", action="store_true", help="Never contact the contract bridge")
    args = parser.parse_args(argv)

    settings = Settings.from_env()
    app = create_mcp_app(build_server(settings, simulated=args.simulated))
    print(f"🔐 agentvault MCP Server running on port {args.port}")
    print("   Tools: /mcp/tools | Call: /mcp/call | Health: /health")
    uvicorn.run(app, host=args.host, port=args.port, log_level=settings.log_level.lower())


if __name__ == "__main__":
    main()
