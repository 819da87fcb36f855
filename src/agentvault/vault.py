"""
agentvault.vault — Verify-then-act access to vault secrets.

An agent never receives a secret. It proves it holds a credential, names a
secret and an action, and gets back the action's result:

    REQUESTED -> AUTHORIZING -> VERIFIED -> EXECUTING -> RETURNED
                             -> DENIED   -> BLOCK_LOGGED

A denied request does not reveal whether the named secret exists. The
decrypted value lives only inside the action call and is scrubbed from the
result before it is returned.
"""

from __future__ import annotations

import logging
from typing import Any, Awaitable, Callable, Optional

import httpx

from agentvault.errors import AgentVaultError, ValidationError
from agentvault.ledger import LedgerAdapter
from agentvault.secret_store import Vault

logger = logging.getLogger("agentvault.vault")

UNAUTHORIZED = "UNAUTHORIZED"
SECRET_NOT_FOUND = "SECRET_NOT_FOUND"
UNKNOWN_ACTION = "UNKNOWN_ACTION"
OPERATION_FAILED = "OPERATION_FAILED"

REDACTED = "[REDACTED]"

Action = Callable[[str, dict], Awaitable[Any]]


class ActionRegistry:
    """Named async actions that receive the decrypted secret and request params."""

    def __init__(self):
        self._actions: dict[str, Action] = {}

    def register(self, name: str, fn: Action) -> None:
        if not name:
            raise ValueError("action name is required")
        self._actions[name] = fn

    def get(self, name: str) -> Optional[Action]:
        return self._actions.get(name)

    def names(self) -> list[str]:
        return sorted(self._actions)

    def __contains__(self, name: str) -> bool:
        return name in self._actions


class GitHubActions:
    """GitHub REST calls authenticated with a vault token."""

    BASE_URL = "https://api.github.com"

    def __init__(self, base_url: str = BASE_URL, timeout: float = 15.0,
                 transport: Optional[httpx.AsyncBaseTransport] = None):
        self.base_url = base_url
        self.timeout = timeout
        self._transport = transport

    async def _get(self, token: str, path: str) -> Any:
        async with httpx.AsyncClient(base_url=self.base_url, timeout=self.timeout,
                                     transport=self._transport) as client:
            resp = await client.get(path, headers={
                "Authorization": f"Bearer {token}",
                "Accept": "application/vnd.github.v3+json",
                "User-Agent": "agentvault/0.1",
            })
        resp.raise_for_status()
        return resp.json()

    async def get_user(self, token: str, params: dict) -> Any:
        return await self._get(token, "/user")

    async def list_repos(self, token: str, params: dict) -> Any:
        repos = await self._get(token, "/user/repos")
        limit = params.get("limit")
        if isinstance(repos, list) and limit:
            repos = repos[: int(limit)]
        return repos

    def register(self, registry: ActionRegistry) -> ActionRegistry:
        registry.register("github_get_user", self.get_user)
        registry.register("github_list_repos", self.list_repos)
        return registry


def default_actions(transport: Optional[httpx.AsyncBaseTransport] = None) -> ActionRegistry:
    return GitHubActions(transport=transport).register(ActionRegistry())


def scrub(value: Any, secret: str) -> Any:
    """Replace every occurrence of ``secret`` inside strings of a JSON-like value."""
    if not secret:
        return value
    if isinstance(value, str):
        return value.replace(secret, REDACTED)
    if isinstance(value, dict):
        return {scrub(k, secret): scrub(v, secret) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [scrub(v, secret) for v in value]
    return value


def _error(code: str) -> dict:
    return {"success": False, "error": code}


class VaultGate:
    def __init__(self, vault: Vault, ledger: LedgerAdapter,
                 actions: Optional[ActionRegistry] = None):
        self.vault = vault
        self.ledger = ledger
        self.actions = actions or default_actions()

    async def _deny(self, secret_name: str, agent_id: str) -> dict:
        tx_hash = await self.ledger.report_blocked()
        logger.warning("Vault access denied",
                       extra={"event": "auth_failure", "agent_id": agent_id,
                              "secret_name": secret_name, "tx_hash": tx_hash})
        return _error(UNAUTHORIZED)

    async def request_secret_access(self, secret_name: str, agent_id: str,
                                    agent_secret: str, commitment: str,
                                    action: str, params: Optional[dict] = None) -> dict:
        """Authorize the agent, then run ``action`` with the named secret."""
        try:
            auth = await self.ledger.verify_authorization(agent_secret, commitment, agent_id)
        except ValidationError:
            return await self._deny(secret_name, agent_id)
        if not auth.verified:
            return await self._deny(secret_name, agent_id)

        record = self.vault.get(secret_name)
        if record is None:
            return _error(SECRET_NOT_FOUND)

        fn = self.actions.get(action)
        if fn is None:
            return _error(UNKNOWN_ACTION)

        try:
            plaintext = self.vault.reveal(record)
        except AgentVaultError as e:
            logger.error("Vault secret unreadable",
                         extra={"secret_name": secret_name, "error": type(e).__name__})
            return _error(OPERATION_FAILED)

        try:
            result = await fn(plaintext, dict(params or {}))
        except Exception as e:
            # str(e) may embed the secret (e.g. a URL); log the type only.
            logger.warning("Vault action failed",
                           extra={"action": action, "secret_name": secret_name,
                                  "error": type(e).__name__})
            return {**_error(OPERATION_FAILED), "action": action}

        logger.info("Vault action executed",
                    extra={"action": action, "secret_name": secret_name,
                           "agent_id": agent_id, "mode": auth.mode})
        return {
            "success": True,
            "action": action,
            "result": scrub(result, plaintext),
            "mode": auth.mode,
        }
