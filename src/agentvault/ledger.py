"""
agentvault.ledger — Client for the zero-knowledge credential contract.

The contract runs behind a contract bridge (an HTTP sidecar that wraps the
network SDK). Each operation is a named circuit call:

    issueCredential(secret)                   -> txHash, commitment
    proveAuthorization(secret, commitment)    -> txHash, or rejection
    prove{Read,Write,Execute}Auth(secret, commitment)
    reportBlocked()                           -> txHash
    revokeCredential(commitment)              -> txHash

When the bridge is unreachable the adapter serves the call from a
SimulatedLedger. Simulated verification is a plaintext hash comparison, not
a zero-knowledge proof; every result therefore carries ``mode`` so callers
can tell which path produced it, and ``fallback_verify=False`` makes the
simulated path refuse verification entirely.
"""

from __future__ import annotations

import hashlib
import hmac
import json
import logging
import threading
import time
from dataclasses import dataclass, asdict
from pathlib import Path
from typing import Any, Optional

import httpx

from agentvault.circuit_breaker import CircuitBreaker, CircuitOpenError
from agentvault.errors import AgentVaultError, ExternalSubsystemError, ValidationError

logger = logging.getLogger("agentvault.ledger")

MODE_CONTRACT = "contract"
MODE_SIMULATED = "simulated"
MODE_UNAVAILABLE = "unavailable"

BRIDGE_SERVICE = "contract-bridge"

CAPABILITY_CIRCUITS = {
    "read": "proveReadAuth",
    "write": "proveWriteAuth",
    "execute": "proveExecuteAuth",
}

# HMAC key for simulated proof blobs. Not a secret: simulated proofs prove nothing.
_SIMULATED_PROOF_KEY = b"midnight-zk-proof"


class CircuitRejectedError(AgentVaultError):
    """The contract evaluated the circuit and rejected it (e.g. wrong secret)."""
    status = 403


# ─── Result types ─────────────────────────────────────────────────

@dataclass
class IssuedCredential:
    tx_hash: str
    credential_hash: str
    zk_proof: str
    mode: str


@dataclass
class Authorization:
    verified: bool
    tx_hash: str
    mode: str

    def to_dict(self) -> dict:
        return asdict(self)


@dataclass
class LedgerStats:
    """Public ledger counters. Every field only ever grows."""
    total_credentials: int = 0
    successful_auth: int = 0
    blocked_attempts: int = 0
    total_revocations: int = 0
    total_read_auth: int = 0
    total_write_auth: int = 0
    total_execute_auth: int = 0
    source: str = MODE_SIMULATED

    _KEYS = {
        "total_credentials": "totalCredentials",
        "successful_auth": "successfulAuth",
        "blocked_attempts": "blockedAttempts",
        "total_revocations": "totalRevocations",
        "total_read_auth": "totalReadAuth",
        "total_write_auth": "totalWriteAuth",
        "total_execute_auth": "totalExecuteAuth",
    }

    def to_dict(self) -> dict:
        d = {camel: getattr(self, attr) for attr, camel in self._KEYS.items()}
        d["source"] = self.source
        return d

    @classmethod
    def from_state(cls, state: dict, source: str = MODE_CONTRACT) -> "LedgerStats":
        """Build from a bridge ``/state`` snapshot; counters may be ``{"value": n}``."""
        values = {}
        for attr, camel in cls._KEYS.items():
            raw = state.get(camel, 0)
            if isinstance(raw, dict):
                raw = raw.get("value", 0)
            values[attr] = max(int(raw or 0), 0)
        return cls(source=source, **values)


def commitment_for(agent_id: str, agent_secret: str) -> str:
    """Commitment used by the simulated ledger: sha256("agent_id:secret")."""
    return hashlib.sha256(f"{agent_id}:{agent_secret}".encode()).hexdigest()


def _proof_blob(circuit: str, proof: Optional[str] = None, simulated: bool = False) -> str:
    blob: dict[str, Any] = {"type": "zk-snark", "circuit": circuit,
                            "timestamp": int(time.time() * 1000)}
    if proof is not None:
        blob["proof"] = proof
    if simulated:
        blob["simulated"] = True
    return json.dumps(blob)


# ─── Bridge connection ────────────────────────────────────────────

class LedgerConnection:
    """Owns the HTTP client to the contract bridge.

    Create one per process, ``await initialize()`` at startup and ``await
    close()`` at shutdown (or use ``async with``). Pass ``transport`` to talk
    to an in-process fake bridge.
    """

    def __init__(
        self,
        bridge_url: str,
        timeout: float = 30.0,
        deployment_path: Optional[str] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        breaker: Optional[CircuitBreaker] = None,
    ):
        self.bridge_url = bridge_url.rstrip("/")
        self.timeout = timeout
        self.deployment_path = deployment_path
        self._transport = transport
        self.breaker = breaker or CircuitBreaker(
            failure_threshold=3,
            recovery_timeout=30.0,
            failure_types=(ExternalSubsystemError,),
        )
        self.deployment: dict = {}
        self._client: Optional[httpx.AsyncClient] = None

    @property
    def initialized(self) -> bool:
        return self._client is not None

    @property
    def contract_address(self) -> Optional[str]:
        return self.deployment.get("contractAddress")

    async def initialize(self) -> None:
        if self._client is not None:
            return
        self.deployment = load_deployment(self.deployment_path)
        self._client = httpx.AsyncClient(
            base_url=self.bridge_url,
            timeout=self.timeout,
            transport=self._transport,
        )
        logger.info("Ledger connection initialized",
                    extra={"bridge": self.bridge_url, "contract": self.contract_address})

    async def close(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    async def __aenter__(self) -> "LedgerConnection":
        await self.initialize()
        return self

    async def __aexit__(self, *exc) -> None:
        await self.close()

    async def _request(self, method: str, path: str, **kwargs) -> dict:
        if self._client is None:
            raise ExternalSubsystemError("Ledger connection is not initialized")
        try:
            resp = await self._client.request(method, path, **kwargs)
        except httpx.HTTPError as e:
            raise ExternalSubsystemError(f"Contract bridge unreachable: {type(e).__name__}") from e
        if resp.status_code >= 500:
            raise ExternalSubsystemError(f"Contract bridge error {resp.status_code}")
        try:
            body = resp.json()
        except ValueError:
            raise ExternalSubsystemError("Contract bridge returned invalid JSON")
        if resp.status_code >= 400:
            reason = body.get("error") if isinstance(body, dict) else None
            raise CircuitRejectedError(reason or f"Circuit rejected ({resp.status_code})")
        return body

    async def _guarded(self, method: str, path: str, **kwargs) -> dict:
        try:
            return await self.breaker.call(
                BRIDGE_SERVICE, lambda: self._request(method, path, **kwargs))
        except CircuitOpenError as e:
            raise ExternalSubsystemError(str(e)) from e

    async def call_circuit(self, circuit: str, *args: str) -> dict:
        """Submit a circuit call. Returns the bridge body (``txHash`` etc.)."""
        return await self._guarded("POST", f"/circuits/{circuit}", json={"args": list(args)})

    async def get_state(self) -> dict:
        return await self._guarded("GET", "/state")

    async def health(self) -> bool:
        """True if the bridge answers ``/health`` with status ok. Never raises."""
        if self._client is None or self.breaker.is_open(BRIDGE_SERVICE):
            return False
        try:
            body = await self._guarded("GET", "/health")
        except AgentVaultError:
            return False
        return body.get("status") == "ok"


def load_deployment(path: Optional[str]) -> dict:
    """Read the deployment record; a missing or unreadable file yields {}."""
    if not path:
        return {}
    p = Path(path)
    if not p.exists():
        return {}
    try:
        return json.loads(p.read_text())
    except (OSError, ValueError) as e:
        logger.warning("Could not read deployment record %s: %s", path, e)
        return {}


# ─── Simulated ledger ─────────────────────────────────────────────

class SimulatedLedger:
    """In-process stand-in for the contract: hashes plus counters."""

    def __init__(self):
        self._stats = LedgerStats(source=MODE_SIMULATED)
        self._lock = threading.Lock()

    @staticmethod
    def tx_hash(circuit: str, secret: str = "") -> str:
        digest = hashlib.sha256(f"{circuit}:{secret}:{int(time.time() * 1000)}".encode())
        return "0x" + digest.hexdigest()

    def issue(self, agent_secret: str, agent_id: str) -> IssuedCredential:
        proof = hmac.new(_SIMULATED_PROOF_KEY, agent_secret.encode(), hashlib.sha256).hexdigest()
        with self._lock:
            self._stats.total_credentials += 1
        return IssuedCredential(
            tx_hash=self.tx_hash("issueCredential", agent_secret),
            credential_hash=commitment_for(agent_id, agent_secret),
            zk_proof=_proof_blob("issueCredential", proof=proof, simulated=True),
            mode=MODE_SIMULATED,
        )

    def verify(self, agent_secret: str, expected_commitment: str, agent_id: str,
               circuit: str = "proveAuthorization") -> Authorization:
        # Credentials issued through the bridge commit to sha256(secret).
        candidates = (
            commitment_for(agent_id, agent_secret),
            hashlib.sha256(agent_secret.encode()).hexdigest(),
        )
        verified = any(hmac.compare_digest(c, expected_commitment or "") for c in candidates)
        if not verified:
            return Authorization(verified=False, tx_hash="failed", mode=MODE_SIMULATED)
        with self._lock:
            self._stats.successful_auth += 1
            if circuit == CAPABILITY_CIRCUITS["read"]:
                self._stats.total_read_auth += 1
            elif circuit == CAPABILITY_CIRCUITS["write"]:
                self._stats.total_write_auth += 1
            elif circuit == CAPABILITY_CIRCUITS["execute"]:
                self._stats.total_execute_auth += 1
        return Authorization(verified=True, tx_hash=self.tx_hash(circuit, agent_secret),
                             mode=MODE_SIMULATED)

    def report_blocked(self) -> str:
        with self._lock:
            self._stats.blocked_attempts += 1
        return self.tx_hash("reportBlocked")

    def revoke(self, commitment: str) -> str:
        with self._lock:
            self._stats.total_revocations += 1
        return self.tx_hash("revokeCredential", commitment)

    def stats(self) -> LedgerStats:
        with self._lock:
            return LedgerStats(**asdict(self._stats))


# ─── Adapter ──────────────────────────────────────────────────────

class LedgerAdapter:
    """Contract calls with simulated fallback.

    Args:
        connection: Bridge connection, or None to always use the simulation.
        simulated: Fallback ledger (a fresh one if omitted).
        fallback_verify: If False, verification never falls back; it returns
            ``verified=False`` with mode ``unavailable`` instead.
    """

    def __init__(
        self,
        connection: Optional[LedgerConnection] = None,
        simulated: Optional[SimulatedLedger] = None,
        fallback_verify: bool = True,
    ):
        self.connection = connection
        self.simulated = simulated or SimulatedLedger()
        self.fallback_verify = fallback_verify

    @classmethod
    def from_settings(cls, settings, transport: Optional[httpx.AsyncBaseTransport] = None,
                      simulated_only: bool = False) -> "LedgerAdapter":
        connection = None
        if not simulated_only:
            connection = LedgerConnection(
                settings.bridge_url,
                timeout=settings.bridge_timeout,
                deployment_path=settings.deployment_path,
                transport=transport,
            )
        return cls(connection, fallback_verify=settings.fallback_verify)

    async def initialize(self) -> None:
        if self.connection is not None:
            await self.connection.initialize()

    async def close(self) -> None:
        if self.connection is not None:
            await self.connection.close()

    @property
    def deployment(self) -> dict:
        return self.connection.deployment if self.connection is not None else {}

    def _fallback(self, op: str, error: Exception) -> None:
        logger.warning("Contract unavailable for %s, using simulated ledger: %s", op, error,
                       extra={"event": "ledger_fallback", "operation": op})

    async def issue_credential(self, agent_secret: str, agent_id: str) -> IssuedCredential:
        if not agent_secret:
            raise ValidationError("agent_secret must be non-empty")
        if self.connection is not None:
            try:
                body = await self.connection.call_circuit("issueCredential", agent_secret)
                commitment = body.get("commitment") or hashlib.sha256(agent_secret.encode()).hexdigest()
                return IssuedCredential(
                    tx_hash=body.get("txHash") or "pending",
                    credential_hash=commitment,
                    zk_proof=_proof_blob("issueCredential"),
                    mode=MODE_CONTRACT,
                )
            except (ExternalSubsystemError, CircuitRejectedError) as e:
                self._fallback("issueCredential", e)
        return self.simulated.issue(agent_secret, agent_id)

    async def _prove(self, circuit: str, agent_secret: str, expected_commitment: str,
                     agent_id: str) -> Authorization:
        if not agent_secret:
            raise ValidationError("agent_secret must be non-empty")
        if self.connection is not None:
            try:
                body = await self.connection.call_circuit(circuit, agent_secret, expected_commitment)
                return Authorization(verified=True, tx_hash=body.get("txHash") or "pending",
                                     mode=MODE_CONTRACT)
            except CircuitRejectedError as e:
                logger.info("Circuit %s rejected: %s", circuit, e.message)
                return Authorization(verified=False, tx_hash="failed", mode=MODE_CONTRACT)
            except ExternalSubsystemError as e:
                if not self.fallback_verify:
                    logger.warning("Contract unavailable for %s and fallback verification "
                                   "is disabled", circuit, extra={"event": "ledger_fail_closed"})
                    return Authorization(verified=False, tx_hash="unavailable",
                                         mode=MODE_UNAVAILABLE)
                self._fallback(circuit, e)
        elif not self.fallback_verify:
            return Authorization(verified=False, tx_hash="unavailable", mode=MODE_UNAVAILABLE)
        return self.simulated.verify(agent_secret, expected_commitment, agent_id, circuit)

    async def verify_authorization(self, agent_secret: str, expected_commitment: str,
                                   agent_id: str = "") -> Authorization:
        return await self._prove("proveAuthorization", agent_secret, expected_commitment, agent_id)

    async def verify_capability(self, agent_secret: str, expected_commitment: str,
                                agent_id: str, capability: str) -> Authorization:
        circuit = CAPABILITY_CIRCUITS.get(capability)
        if circuit is None:
            raise ValidationError(f"Unknown capability: {capability}")
        return await self._prove(circuit, agent_secret, expected_commitment, agent_id)

    async def report_blocked(self) -> str:
        if self.connection is not None:
            try:
                body = await self.connection.call_circuit("reportBlocked")
                return body.get("txHash") or "pending"
            except (ExternalSubsystemError, CircuitRejectedError) as e:
                self._fallback("reportBlocked", e)
        return self.simulated.report_blocked()

    async def revoke_credential(self, commitment: str) -> str:
        if not commitment:
            raise ValidationError("commitment must be non-empty")
        if self.connection is not None:
            try:
                body = await self.connection.call_circuit("revokeCredential", commitment)
                return body.get("txHash") or "pending"
            except (ExternalSubsystemError, CircuitRejectedError) as e:
                self._fallback("revokeCredential", e)
        return self.simulated.revoke(commitment)

    async def get_stats(self) -> LedgerStats:
        if self.connection is not None:
            try:
                return LedgerStats.from_state(await self.connection.get_state())
            except (ExternalSubsystemError, CircuitRejectedError) as e:
                self._fallback("state", e)
        return self.simulated.stats()

    async def is_available(self) -> bool:
        if self.connection is None:
            return False
        return await self.connection.health()

    async def mode(self) -> str:
        return MODE_CONTRACT if await self.is_available() else MODE_SIMULATED
