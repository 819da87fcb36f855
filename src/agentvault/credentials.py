"""
agentvault.credentials — Issue, verify and revoke agent credentials.

Glues the ledger adapter to the relational store. The agent secret is
generated here, handed to the ledger, returned to the caller exactly once
and never written to any table: only its commitment and an 8-character hint
persist.

Ledger calls happen before a transaction is opened, so a slow bridge never
holds a database connection.
"""

from __future__ import annotations

import logging
import secrets
import uuid
from dataclasses import dataclass, asdict

from agentvault.database import Database
from agentvault.errors import NotFoundError, PersistenceError, ValidationError
from agentvault.ledger import IssuedCredential, LedgerAdapter

logger = logging.getLogger("agentvault.credentials")


@dataclass
class MidnightCredential:
    """Result of issuance. ``agent_secret`` is shown to the caller once."""
    credential_hash: str
    zk_proof: str
    tx_hash: str
    agent_secret: str
    credential_id: str
    mode: str

    def to_dict(self) -> dict:
        return asdict(self)

    def public_dict(self) -> dict:
        """Fields returned by the API on agent creation."""
        return {
            "tx_hash": self.tx_hash,
            "credential_hash": self.credential_hash,
            "credential_id": self.credential_id,
            "agent_secret": self.agent_secret,
            "mode": self.mode,
        }


class CredentialService:
    def __init__(self, db: Database, ledger: LedgerAdapter):
        self.db = db
        self.ledger = ledger

    async def _record(self, conn, agent_id: str, issued: IssuedCredential,
                      expiry_days: int) -> dict:
        cred = await self.db.create_credential(
            agent_id=agent_id,
            credential_hash=issued.credential_hash,
            zk_proof=issued.zk_proof,
            tx_hash=issued.tx_hash,
            expiry_days=expiry_days,
            metadata={"issued_via": issued.mode, "fingerprint": issued.credential_hash[:12]},
            conn=conn,
        )
        await self.db.create_audit_log(
            action="credential_issued",
            result="success",
            agent_id=agent_id,
            resource=f"{issued.mode}_contract",
            tx_hash=issued.tx_hash,
            metadata={"credential_hash": issued.credential_hash, "mode": issued.mode},
            conn=conn,
        )
        return cred

    @staticmethod
    def _credential(cred: dict, issued: IssuedCredential, agent_secret: str) -> MidnightCredential:
        return MidnightCredential(
            credential_hash=issued.credential_hash,
            zk_proof=issued.zk_proof,
            tx_hash=issued.tx_hash,
            agent_secret=agent_secret,
            credential_id=cred["id"],
            mode=issued.mode,
        )

    async def issue_agent_credential(self, agent_id: str) -> MidnightCredential:
        """Generate a secret, commit it on the ledger and record the credential.

        The credential row and its ``credential_issued`` audit row are written
        in one transaction. A database failure raises PersistenceError and
        leaves neither row behind.
        """
        agent = await self.db.get_agent(agent_id)
        if agent is None:
            raise NotFoundError(f"Agent {agent_id} not found")

        agent_secret = secrets.token_hex(32)
        issued = await self.ledger.issue_credential(agent_secret, agent_id)
        try:
            async with self.db.transaction() as conn:
                cred = await self._record(conn, agent_id, issued,
                                          agent["credential_expiry_days"])
        except PersistenceError:
            logger.error("Failed to persist credential", extra={"agent_id": agent_id})
            raise

        logger.info("Credential issued",
                    extra={"agent_id": agent_id, "credential_id": cred["id"], "mode": issued.mode})
        return self._credential(cred, issued, agent_secret)

    async def provision_agent(self, name: str, **fields) -> tuple[dict, MidnightCredential]:
        """Create an agent together with its first credential, atomically."""
        if not name:
            raise ValidationError("Agent name is required")
        agent_id = str(uuid.uuid4())
        agent_secret = secrets.token_hex(32)
        issued = await self.ledger.issue_credential(agent_secret, agent_id)

        async with self.db.transaction() as conn:
            await self.db.create_agent(name=name, agent_id=agent_id, conn=conn, **fields)
            cred = await self._record(conn, agent_id, issued,
                                      fields.get("credential_expiry_days") or 365)
            agent = await self.db.get_agent(agent_id, conn=conn)

        logger.info("Agent provisioned",
                    extra={"agent_id": agent_id, "credential_id": cred["id"], "mode": issued.mode})
        return agent, self._credential(cred, issued, agent_secret)

    async def verify_agent_authorization(self, credential_id: str, agent_secret: str) -> bool:
        """True iff the secret opens the credential's commitment.

        Missing or inactive credentials return False without a ledger call.
        Every ledger verdict is recorded as a proof verification; a failed one
        is also reported as blocked. Database errors fail closed.
        """
        if not agent_secret:
            raise ValidationError("agent_secret is required")
        try:
            credential = await self.db.get_credential(credential_id)
            if credential is None or credential["status"] != "active":
                return False

            auth = await self.ledger.verify_authorization(
                agent_secret, credential["credential_hash"], credential["agent_id"])

            await self.db.create_proof_verification(
                credential_id=credential_id,
                verification_result=auth.verified,
                zk_proof=credential["zk_proof"],
                tx_hash=auth.tx_hash,
                error_message=None if auth.verified else "authorization rejected",
                metadata={"verification_method": auth.mode},
            )

            if auth.verified:
                await self.db.create_audit_log(
                    action="authorization_verified",
                    result="success",
                    agent_id=credential["agent_id"],
                    resource=credential_id,
                    tx_hash=auth.tx_hash,
                    metadata={"mode": auth.mode},
                )
            else:
                blocked_tx = await self.ledger.report_blocked()
                await self.db.create_audit_log(
                    action="authorization_failed",
                    result="blocked",
                    agent_id=credential["agent_id"],
                    resource=credential_id,
                    tx_hash=blocked_tx,
                    metadata={"mode": auth.mode},
                )
                logger.warning("Authorization blocked",
                               extra={"event": "auth_failure", "credential_id": credential_id})
            return auth.verified
        except PersistenceError as e:
            logger.error("Verification failed closed: %s", e.message,
                         extra={"credential_id": credential_id})
            return False

    async def revoke_agent_credential(self, credential_id: str) -> dict:
        credential = await self.db.get_credential(credential_id)
        if credential is None:
            raise NotFoundError(f"Credential {credential_id} not found")
        if credential["status"] == "revoked":
            return credential

        tx_hash = await self.ledger.revoke_credential(credential["credential_hash"])
        async with self.db.transaction() as conn:
            await self.db.set_credential_status(credential_id, "revoked", conn=conn)
            await self.db.create_audit_log(
                action="credential_revoked",
                result="success",
                agent_id=credential["agent_id"],
                resource=credential_id,
                tx_hash=tx_hash,
                conn=conn,
            )
            updated = await self.db.get_credential(credential_id, conn=conn)
        logger.info("Credential revoked", extra={"credential_id": credential_id})
        return updated
