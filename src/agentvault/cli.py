#!/usr/bin/env python3
"""
agentvault CLI — Talk to the credential contract and the local vault.

Uses the contract bridge when it is reachable and the simulated ledger
otherwise (``--simulated`` forces the latter).

Commands:
    issue          - Issue a credential for a fresh random secret
    verify         - Prove knowledge of a secret for a commitment
    capability     - Prove read/write/execute capability
    revoke         - Record a credential revocation
    stats          - Ledger counters
    report-blocked - Record a blocked attempt
    vault          - put / list / access secrets in the encrypted vault
    keygen         - Generate an AGENTVAULT_VAULT_KEY
    menu           - Interactive numbered menu
"""

import argparse
import asyncio
import json
import secrets
import sys
from typing import Any, Awaitable, Callable, Optional

from agentvault.config import Settings
from agentvault.errors import AgentVaultError, ValidationError
from agentvault.ledger import LedgerAdapter
from agentvault.secret_store import SecretStore, Vault, generate_key
from agentvault.vault import VaultGate


def _output(data: dict, args: argparse.Namespace, human_fn=None):
    """Output data as JSON or pretty-printed."""
    if getattr(args, "json", False):
        print(json.dumps(data, indent=2, default=str))
    elif human_fn:
        human_fn(data)
    else:
        print(json.dumps(data, indent=2, default=str))


def _settings(args: argparse.Namespace) -> Settings:
    settings = Settings.from_env()
    if getattr(args, "bridge_url", None):
        settings.bridge_url = args.bridge_url
    return settings


def _ledger(args: argparse.Namespace) -> LedgerAdapter:
    return LedgerAdapter.from_settings(_settings(args),
                                       simulated_only=getattr(args, "simulated", False))


def _run(args: argparse.Namespace, fn: Callable[[LedgerAdapter], Awaitable[Any]]):
    async def runner():
        ledger = _ledger(args)
        await ledger.initialize()
        try:
            return await fn(ledger)
        finally:
            await ledger.close()
    return asyncio.run(runner())


def _open_vault(args: argparse.Namespace) -> Vault:
    settings = _settings(args)
    path = getattr(args, "vault_path", None) or settings.vault_path
    return Vault(path, SecretStore.from_hex(settings.vault_key))


# ─── Ledger operations (shared by subcommands and the menu) ───────

async def do_issue(ledger: LedgerAdapter, agent_id: str, agent_secret: Optional[str] = None) -> dict:
    agent_secret = agent_secret or secrets.token_hex(32)
    issued = await ledger.issue_credential(agent_secret, agent_id)
    return {
        "agent_id": agent_id,
        "agent_secret": agent_secret,
        "commitment": issued.credential_hash,
        "tx_hash": issued.tx_hash,
        "mode": issued.mode,
    }


async def do_verify(ledger: LedgerAdapter, agent_secret: str, commitment: str,
                    agent_id: str, capability: Optional[str] = None) -> dict:
    if capability:
        auth = await ledger.verify_capability(agent_secret, commitment, agent_id, capability)
    else:
        auth = await ledger.verify_authorization(agent_secret, commitment, agent_id)
    result = auth.to_dict()
    if capability:
        result["capability"] = capability
    return result


async def do_stats(ledger: LedgerAdapter) -> dict:
    return (await ledger.get_stats()).to_dict()


def _print_stats(d: dict):
    print(f"📊 Ledger statistics ({d['source']})")
    print(f"   🎫 Credentials issued:  {d['totalCredentials']}")
    print(f"   ✅ Successful auth:     {d['successfulAuth']}")
    print(f"   🚫 Blocked attempts:    {d['blockedAttempts']}")
    print(f"   ⚠️  Revocations:         {d['totalRevocations']}")
    print(f"   📖 Read auth:           {d['totalReadAuth']}")
    print(f"   ✏️  Write auth:          {d['totalWriteAuth']}")
    print(f"   ⚡ Execute auth:        {d['totalExecuteAuth']}")


def _print_verify(d: dict):
    label = f"{d['capability'].upper()} CAPABILITY" if d.get("capability") else "AUTHORIZATION"
    if d["verified"]:
        print(f"✅ {label} VERIFIED ({d['mode']})")
        print(f"   TX Hash: {d['tx_hash']}")
    else:
        print(f"❌ {label} REJECTED ({d['mode']})")


# ─── Commands ──────────────────────────────────────────────────────

def cmd_issue(args):
    """Issue a credential for a new random secret."""
    result = _run(args, lambda ledger: do_issue(ledger, args.agent_id, args.secret))

    def human(d):
        print(f"✅ Credential issued ({d['mode']})")
        print(f"   Agent:      {d['agent_id']}")
        print(f"   Commitment: {d['commitment']}")
        print(f"   TX Hash:    {d['tx_hash']}")
        print(f"   Secret:     {d['agent_secret']}")
        print("   ⚠️  Save this secret! It is needed to prove authorization.")

    _output(result, args, human)
    return result


def cmd_verify(args):
    result = _run(args, lambda ledger: do_verify(ledger, args.secret, args.commitment, args.agent_id))
    _output(result, args, _print_verify)
    return result


def cmd_capability(args):
    result = _run(args, lambda ledger: do_verify(
        ledger, args.secret, args.commitment, args.agent_id, capability=args.capability))
    _output(result, args, _print_verify)
    return result


def cmd_revoke(args):
    async def go(ledger):
        return {"commitment": args.commitment, "tx_hash": await ledger.revoke_credential(args.commitment)}

    result = _run(args, go)
    _output(result, args, lambda d: print(f"✅ Revocation recorded\n   TX Hash: {d['tx_hash']}"))
    return result


def cmd_stats(args):
    result = _run(args, do_stats)
    _output(result, args, _print_stats)
    return result


def cmd_report_blocked(args):
    async def go(ledger):
        return {"tx_hash": await ledger.report_blocked()}

    result = _run(args, go)
    _output(result, args, lambda d: print(f"🚫 Blocked attempt recorded\n   TX Hash: {d['tx_hash']}"))
    return result


def cmd_keygen(args):
    result = {"vault_key": generate_key()}

    def human(d):
        print("🔑 New vault key (export it, never commit it):")
        print(f"   export AGENTVAULT_VAULT_KEY={d['vault_key']}")

    _output(result, args, human)
    return result


def _parse_params(values: Optional[list[str]]) -> dict:
    params = {}
    for item in values or []:
        key, sep, value = item.partition("=")
        if not sep or not key:
            raise ValidationError(f"--param must be key=value, got '{item}'")
        params[key] = value
    return params


def cmd_vault(args):
    vault = _open_vault(args)

    if args.vault_command == "put":
        secret = vault.put(args.name, args.value, provider=args.provider,
                           service_url=args.service_url)
        result = {"success": True, "secret": secret.public_dict()}
        _output(result, args, lambda d: print(f"📥 Stored secret '{d['secret']['name']}' "
                                              f"({d['secret']['id']})"))
        return result

    if args.vault_command == "list":
        result = {"secrets": vault.names()}

        def human(d):
            if not d["secrets"]:
                print("Vault is empty")
            for s in d["secrets"]:
                print(f"🔒 {s['name']:<24} {s['provider'] or '-':<10} {s['id']}")

        _output(result, args, human)
        return result

    if args.vault_command == "access":
        params = _parse_params(args.param)

        async def go(ledger):
            gate = VaultGate(vault, ledger)
            return await gate.request_secret_access(
                args.name, args.agent_id, args.secret, args.commitment, args.action, params)

        result = _run(args, go)

        def human(d):
            if d["success"]:
                print(f"✅ {d['action']} succeeded ({d.get('mode')})")
                print(json.dumps(d["result"], indent=2, default=str))
            else:
                print(f"❌ Access failed: {d['error']}")

        _output(result, args, human)
        return result

    raise AgentVaultError("Specify a vault subcommand: put, list or access")


# ─── Interactive menu ──────────────────────────────────────────────

MENU = """
═══════════════════════════════════════════
  agentvault — credential contract console
═══════════════════════════════════════════
1. Issue Credential
2. Verify Authorization
3. Prove READ Capability
4. Prove WRITE Capability
5. Prove EXECUTE Capability
6. Revoke Credential
7. View Ledger Statistics
8. Report Blocked Attempt
0. Exit
"""


async def run_menu(ledger: LedgerAdapter, agent_id: str = "cli-agent",
                   input_fn: Callable[[str], str] = input) -> list[dict]:
    """Numbered menu loop. Returns the results of each action, for testing.

    Secret and commitment prompts default to the last issued credential.
    """
    results: list[dict] = []
    last: dict = {}

    def ask_credential() -> tuple[str, str]:
        secret = input_fn("Agent secret [last issued]: ").strip() or last.get("agent_secret", "")
        commitment = input_fn("Expected commitment [last issued]: ").strip() or last.get("commitment", "")
        return secret, commitment

    while True:
        print(MENU)
        choice = input_fn("Select an option: ").strip()
        try:
            if choice == "1":
                secret = input_fn("Agent secret (Enter for random): ").strip() or None
                last = await do_issue(ledger, agent_id, secret)
                results.append(last)
                print(f"✅ Credential issued ({last['mode']})")
                print(f"   Secret:     {last['agent_secret']}")
                print(f"   Commitment: {last['commitment']}")
                print(f"   TX Hash:    {last['tx_hash']}")
            elif choice in ("2", "3", "4", "5"):
                capability = {"3": "read", "4": "write", "5": "execute"}.get(choice)
                secret, commitment = ask_credential()
                r = await do_verify(ledger, secret, commitment, agent_id, capability)
                results.append(r)
                _print_verify(r)
            elif choice == "6":
                if input_fn("Are you sure you want to revoke? (yes/no): ").strip().lower() != "yes":
                    print("Revocation cancelled")
                    continue
                commitment = (input_fn("Commitment [last issued]: ").strip()
                              or last.get("commitment", ""))
                r = {"tx_hash": await ledger.revoke_credential(commitment)}
                results.append(r)
                print(f"✅ Revocation recorded\n   TX Hash: {r['tx_hash']}")
            elif choice == "7":
                r = await do_stats(ledger)
                results.append(r)
                _print_stats(r)
            elif choice == "8":
                r = {"tx_hash": await ledger.report_blocked()}
                results.append(r)
                print(f"🚫 Blocked attempt recorded\n   TX Hash: {r['tx_hash']}")
            elif choice == "0":
                print("👋 Goodbye!")
                return results
            else:
                print("Invalid option. Please try again.")
        except AgentVaultError as e:
            print(f"❌ Failed: {e.message}")


def cmd_menu(args):
    results = _run(args, lambda ledger: run_menu(ledger, agent_id=args.agent_id))
    return {"results": results}


# ─── Parser ────────────────────────────────────────────────────────

def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="agentvault",
        description="agentvault — zero-knowledge credentials for AI agents",
    )
    parser.add_argument("--json", action="store_true", help="Output as JSON")
    parser.add_argument("--simulated", action="store_true",
                        help="Never contact the contract bridge")
    parser.add_argument("--bridge-url", help="Contract bridge URL (default: $AGENTVAULT_BRIDGE_URL)")
    sub = parser.add_subparsers(dest="command", help="Available commands")

    p = sub.add_parser("issue", help="Issue a credential")
    p.add_argument("--agent-id", default="cli-agent", help="Agent id bound into the commitment")
    p.add_argument("--secret", help="Use this secret instead of a random one")

    p = sub.add_parser("verify", help="Verify authorization")
    p.add_argument("secret", help="Agent secret")
    p.add_argument("commitment", help="Expected commitment")
    p.add_argument("--agent-id", default="cli-agent")

    p = sub.add_parser("capability", help="Prove a capability")
    p.add_argument("capability", choices=["read", "write", "execute"])
    p.add_argument("secret", help="Agent secret")
    p.add_argument("commitment", help="Expected commitment")
    p.add_argument("--agent-id", default="cli-agent")

    p = sub.add_parser("revoke", help="Record a credential revocation")
    p.add_argument("commitment", help="Commitment of the credential to revoke")

    sub.add_parser("stats", help="Ledger statistics")
    sub.add_parser("report-blocked", help="Record a blocked attempt")
    sub.add_parser("keygen", help="Generate a vault encryption key")

    p = sub.add_parser("vault", help="Encrypted vault operations")
    p.add_argument("--vault-path", help="Vault file (default: $AGENTVAULT_VAULT_PATH)")
    vsub = p.add_subparsers(dest="vault_command", help="Vault subcommands")

    vp = vsub.add_parser("put", help="Store a secret")
    vp.add_argument("name")
    vp.add_argument("value")
    vp.add_argument("--provider", default="")
    vp.add_argument("--service-url", default="")

    vsub.add_parser("list", help="List secret names")

    vp = vsub.add_parser("access", help="Run an action with a secret after authorization")
    vp.add_argument("name", help="Secret name")
    vp.add_argument("--action", required=True, help="e.g. github_get_user")
    vp.add_argument("--secret", required=True, help="Agent secret")
    vp.add_argument("--commitment", required=True, help="Credential commitment")
    vp.add_argument("--agent-id", default="cli-agent")
    vp.add_argument("--param", action="append", help="Action parameter key=value")

    p = sub.add_parser("menu", help="Interactive menu")
    p.add_argument("--agent-id", default="cli-agent")

    return parser


def main(argv: Optional[list[str]] = None) -> Optional[dict]:
    """CLI entry point. Returns result dict for testing."""
    parser = build_parser()
    args = parser.parse_args(argv)

    if not args.command:
        parser.print_help()
        sys.exit(1)

    commands = {
        "issue": cmd_issue,
        "verify": cmd_verify,
        "capability": cmd_capability,
        "revoke": cmd_revoke,
        "stats": cmd_stats,
        "report-blocked": cmd_report_blocked,
        "keygen": cmd_keygen,
        "vault": cmd_vault,
        "menu": cmd_menu,
    }

    try:
        return commands[args.command](args)
    except AgentVaultError as e:
        print(f"❌ Error: {e.message}", file=sys.stderr)
        sys.exit(1)
    except FileNotFoundError as e:
        print(f"❌ File not found: {e}", file=sys.stderr)
        sys.exit(1)


def run() -> None:
    """Console-script entry point; the result dict is only for tests."""
    main()


if __name__ == "__main__":
    run()
