"""Tests for agentvault.vault — verify-then-act secret access."""

import logging

import httpx
import pytest
import pytest_asyncio

from agentvault.ledger import MODE_SIMULATED, LedgerAdapter
from agentvault.secret_store import SecretStore, Vault, generate_key
from agentvault.vault import (
    OPERATION_FAILED,
    REDACTED,
    SECRET_NOT_FOUND,
    UNAUTHORIZED,
    UNKNOWN_ACTION,
    ActionRegistry,
    GitHubActions,
    VaultGate,
    default_actions,
    scrub,
)

TOKEN = "ghp_supersecrettoken123"


async def echo(secret, params):
    return {"saw": secret, "params": params}


async def explode(secret, params):
    raise RuntimeError(f"request to https://x/?token={secret} failed")


@pytest.fixture
def ledger():
    return LedgerAdapter()


@pytest.fixture
def vault(tmp_path):
    v = Vault(tmp_path / "vault.json", SecretStore.from_hex(generate_key()))
    v.put("github", TOKEN, provider="github")
    return v


@pytest.fixture
def gate(vault, ledger):
    actions = ActionRegistry()
    actions.register("echo", echo)
    actions.register("explode", explode)
    return VaultGate(vault, ledger, actions)


@pytest_asyncio.fixture
async def credential(ledger):
    issued = await ledger.issue_credential("agent-secret", "agent-1")
    return "agent-1", "agent-secret", issued.credential_hash


@pytest.mark.asyncio
async def test_success_scrubs_secret(gate, credential, ledger, caplog):
    caplog.set_level(logging.DEBUG, logger="agentvault")
    agent_id, secret, commitment = credential
    result = await gate.request_secret_access("github", agent_id, secret, commitment,
                                              "echo", {"x": 1})
    assert result["success"] is True
    assert result["action"] == "echo"
    assert result["mode"] == MODE_SIMULATED
    assert result["result"] == {"saw": REDACTED, "params": {"x": 1}}
    assert TOKEN not in repr(result)
    assert (await ledger.get_stats()).successful_auth == 1
    assert "Vault action executed" in caplog.text
    assert TOKEN not in caplog.text


@pytest.mark.asyncio
async def test_bad_credential_unauthorized_without_leak(gate, credential, ledger, caplog):
    caplog.set_level(logging.DEBUG, logger="agentvault")
    agent_id, _, commitment = credential
    for name in ("github", "does-not-exist"):
        result = await gate.request_secret_access(name, agent_id, "wrong", commitment, "echo")
        assert result == {"success": False, "error": UNAUTHORIZED}
    stats = await ledger.get_stats()
    assert stats.blocked_attempts == 2
    assert stats.successful_auth == 0
    assert TOKEN not in caplog.text


@pytest.mark.asyncio
async def test_empty_secret_unauthorized(gate, credential):
    agent_id, _, commitment = credential
    result = await gate.request_secret_access("github", agent_id, "", commitment, "echo")
    assert result["error"] == UNAUTHORIZED


@pytest.mark.asyncio
async def test_unknown_secret(gate, credential):
    agent_id, secret, commitment = credential
    result = await gate.request_secret_access("nope", agent_id, secret, commitment, "echo")
    assert result == {"success": False, "error": SECRET_NOT_FOUND}


@pytest.mark.asyncio
async def test_unknown_action(gate, credential):
    agent_id, secret, commitment = credential
    result = await gate.request_secret_access("github", agent_id, secret, commitment, "rm_rf")
    assert result == {"success": False, "error": UNKNOWN_ACTION}


@pytest.mark.asyncio
async def test_action_failure(gate, credential, caplog):
    agent_id, secret, commitment = credential
    result = await gate.request_secret_access("github", agent_id, secret, commitment, "explode")
    assert result == {"success": False, "error": OPERATION_FAILED, "action": "explode"}
    assert TOKEN not in caplog.text


@pytest.mark.asyncio
async def test_undecryptable_secret(tmp_path, ledger, credential):
    path = tmp_path / "vault.json"
    Vault(path, SecretStore.from_hex(generate_key())).put("github", TOKEN)
    other_key = Vault(path, SecretStore.from_hex(generate_key()))
    actions = ActionRegistry()
    actions.register("echo", echo)
    gate = VaultGate(other_key, ledger, actions)
    agent_id, secret, commitment = credential
    result = await gate.request_secret_access("github", agent_id, secret, commitment, "echo")
    assert result["error"] == OPERATION_FAILED


@pytest.mark.asyncio
async def test_fail_closed_ledger(vault, credential):
    ledger = LedgerAdapter(fallback_verify=False)
    gate = VaultGate(vault, ledger, ActionRegistry())
    agent_id, secret, commitment = credential
    result = await gate.request_secret_access("github", agent_id, secret, commitment, "echo")
    assert result["error"] == UNAUTHORIZED


# ─── Actions ───────────────────────────────────────────────────────

def test_registry():
    reg = ActionRegistry()
    reg.register("b", echo)
    reg.register("a", echo)
    assert reg.names() == ["a", "b"]
    assert "a" in reg
    assert reg.get("zzz") is None
    with pytest.raises(ValueError):
        reg.register("", echo)


def test_default_actions():
    assert default_actions().names() == ["github_get_user", "github_list_repos"]


def test_scrub_nested():
    value = {"url": f"https://x/{TOKEN}", "items": [TOKEN, 3, (TOKEN,)], TOKEN: None}
    cleaned = scrub(value, TOKEN)
    assert TOKEN not in repr(cleaned)
    assert cleaned["items"][1] == 3
    assert scrub("plain", "") == "plain"


def _github_transport(seen):
    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        if request.headers.get("Authorization") != f"Bearer {TOKEN}":
            return httpx.Response(401, json={"message": "Bad credentials"})
        if request.url.path == "/user":
            return httpx.Response(200, json={"login": "octocat", "id": 1})
        if request.url.path == "/user/repos":
            return httpx.Response(200, json=[{"name": f"repo{i}"} for i in range(5)])
        return httpx.Response(404, json={})
    return httpx.MockTransport(handler)


@pytest.mark.asyncio
async def test_github_get_user():
    seen = []
    gh = GitHubActions(transport=_github_transport(seen))
    assert (await gh.get_user(TOKEN, {}))["login"] == "octocat"
    assert seen[0].url.host == "api.github.com"


@pytest.mark.asyncio
async def test_github_list_repos_limit():
    gh = GitHubActions(transport=_github_transport([]))
    repos = await gh.list_repos(TOKEN, {"limit": 2})
    assert [r["name"] for r in repos] == ["repo0", "repo1"]


@pytest.mark.asyncio
async def test_github_through_gate(vault, ledger, credential):
    gate = VaultGate(vault, ledger, default_actions(transport=_github_transport([])))
    agent_id, secret, commitment = credential
    result = await gate.request_secret_access("github", agent_id, secret, commitment,
                                              "github_get_user")
    assert result["success"] is True
    assert result["result"]["login"] == "octocat"


@pytest.mark.asyncio
async def test_github_bad_token_is_operation_failed(tmp_path, ledger, credential):
    v = Vault(tmp_path / "v.json", SecretStore.from_hex(generate_key()))
    v.put("github", "ghp_revoked")
    gate = VaultGate(v, ledger, default_actions(transport=_github_transport([])))
    agent_id, secret, commitment = credential
    result = await gate.request_secret_access("github", agent_id, secret, commitment,
                                              "github_get_user")
    assert result["error"] == OPERATION_FAILED
