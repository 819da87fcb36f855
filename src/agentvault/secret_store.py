"""
agentvault.secret_store — AES-256-CBC encryption of small secrets at rest.

Every call to ``encrypt`` draws a fresh 16-byte IV. The key is process
configuration (``AGENTVAULT_VAULT_KEY``) and is never written next to the
ciphertext it protects: the vault file holds ciphertexts and IVs only.

Usage:
    store = SecretStore.from_hex(os.environ["AGENTVAULT_VAULT_KEY"])
    ciphertext, iv = store.encrypt("ghp_...")
    store.decrypt(ciphertext, iv)  # "ghp_..."

    vault = Vault(".vault-secrets.json", store)
    vault.put("github-api", "ghp_...", provider="github")
"""

from __future__ import annotations

import base64
import binascii
import json
import logging
import os
import secrets
import uuid
from dataclasses import dataclass, asdict
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional

from cryptography.hazmat.primitives import padding
from cryptography.hazmat.primitives.ciphers import Cipher, algorithms, modes

from agentvault.errors import DecryptionError, ValidationError

__all__ = ["SecretStore", "Vault", "VaultSecret", "generate_key"]

logger = logging.getLogger("agentvault.secret_store")

KEY_BYTES = 32
IV_BYTES = 16


def generate_key() -> str:
    """Return a new random AES-256 key as 64 hex characters."""
    return secrets.token_hex(KEY_BYTES)


class SecretStore:
    """Symmetric encryption with a single process-wide key."""

    def __init__(self, key: bytes):
        if len(key) != KEY_BYTES:
            raise ValidationError(f"Vault key must be {KEY_BYTES} bytes, got {len(key)}")
        self._key = bytes(key)

    @classmethod
    def from_hex(cls, key_hex: Optional[str]) -> "SecretStore":
        if not key_hex:
            raise ValidationError("AGENTVAULT_VAULT_KEY is not set")
        try:
            return cls(bytes.fromhex(key_hex))
        except ValueError:
            raise ValidationError("AGENTVAULT_VAULT_KEY must be hex-encoded")

    def encrypt(self, plaintext: str) -> tuple[str, str]:
        """Encrypt ``plaintext``. Returns (base64 ciphertext, hex iv)."""
        iv = os.urandom(IV_BYTES)
        padder = padding.PKCS7(algorithms.AES.block_size).padder()
        padded = padder.update(plaintext.encode("utf-8")) + padder.finalize()
        encryptor = Cipher(algorithms.AES(self._key), modes.CBC(iv)).encryptor()
        ciphertext = encryptor.update(padded) + encryptor.finalize()
        return base64.b64encode(ciphertext).decode("ascii"), iv.hex()

    def decrypt(self, ciphertext: str, iv: str) -> str:
        """Inverse of ``encrypt``. Raises DecryptionError on any mismatch."""
        try:
            raw = base64.b64decode(ciphertext, validate=True)
            iv_bytes = bytes.fromhex(iv)
            decryptor = Cipher(algorithms.AES(self._key), modes.CBC(iv_bytes)).decryptor()
            padded = decryptor.update(raw) + decryptor.finalize()
            unpadder = padding.PKCS7(algorithms.AES.block_size).unpadder()
            data = unpadder.update(padded) + unpadder.finalize()
            return data.decode("utf-8")
        except (ValueError, binascii.Error, UnicodeDecodeError) as e:
            raise DecryptionError(f"Unable to decrypt secret: {type(e).__name__}") from None


# ─── Vault file ────────────────────────────────────────────────────

@dataclass
class VaultSecret:
    """Encrypted vault entry as persisted on disk."""
    id: str
    name: str
    encrypted_value: str
    iv: str
    provider: str = ""
    service_url: str = ""
    created_at: str = ""

    def to_dict(self) -> dict:
        return asdict(self)

    def public_dict(self) -> dict:
        """Metadata safe to show a caller: no ciphertext, no iv."""
        return {
            "id": self.id,
            "name": self.name,
            "provider": self.provider,
            "service_url": self.service_url,
            "created_at": self.created_at,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "VaultSecret":
        return cls(
            id=data["id"],
            name=data["name"],
            encrypted_value=data["encrypted_value"],
            iv=data["iv"],
            provider=data.get("provider", ""),
            service_url=data.get("service_url", ""),
            created_at=data.get("created_at", ""),
        )


class Vault:
    """Named encrypted secrets in a JSON file: ``{"secrets": [...]}``."""

    def __init__(self, path: str | os.PathLike, store: SecretStore):
        self.path = Path(path)
        self._store = store
        self._secrets: dict[str, VaultSecret] = {}
        self.load()

    def load(self) -> None:
        if not self.path.exists():
            self._secrets = {}
            self.save()
            return
        data = json.loads(self.path.read_text())
        if "masterKey" in data:
            logger.warning("Ignoring key material found in vault file %s", self.path)
        self._secrets = {
            s["name"]: VaultSecret.from_dict(s) for s in data.get("secrets", [])
        }

    def save(self) -> None:
        payload = {"secrets": [s.to_dict() for s in self._secrets.values()]}
        self.path.write_text(json.dumps(payload, indent=2))

    def put(self, name: str, value: str, provider: str = "",
            service_url: str = "") -> VaultSecret:
        """Encrypt and store ``value`` under ``name``, replacing any previous entry."""
        if not name:
            raise ValidationError("Secret name is required")
        if not value:
            raise ValidationError("Secret value is required")
        encrypted, iv = self._store.encrypt(value)
        secret = VaultSecret(
            id=f"secret_{uuid.uuid4().hex[:12]}",
            name=name,
            encrypted_value=encrypted,
            iv=iv,
            provider=provider,
            service_url=service_url,
            created_at=datetime.now(timezone.utc).isoformat(),
        )
        self._secrets[name] = secret
        self.save()
        logger.info("Secret stored", extra={"secret_name": name, "provider": provider})
        return secret

    def get(self, name: str) -> Optional[VaultSecret]:
        return self._secrets.get(name)

    def reveal(self, secret: VaultSecret) -> str:
        """Decrypt in memory. Callers must not return or log the result."""
        return self._store.decrypt(secret.encrypted_value, secret.iv)

    def names(self) -> list[dict]:
        return [s.public_dict() for s in self._secrets.values()]

    def __len__(self) -> int:
        return len(self._secrets)

    def __contains__(self, name: str) -> bool:
        return name in self._secrets
