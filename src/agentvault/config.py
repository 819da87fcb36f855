"""
agentvault.config — Process configuration read from environment variables.

    DATABASE_URL                 postgresql://... (asyncpg) or an SQLite path
    AGENTVAULT_BRIDGE_URL        contract bridge base URL
    AGENTVAULT_BRIDGE_TIMEOUT    seconds per bridge call
    AGENTVAULT_FALLBACK_VERIFY   "false" makes simulated verification fail closed
    AGENTVAULT_VAULT_KEY         64 hex chars (AES-256 key), never stored on disk
    AGENTVAULT_VAULT_PATH        encrypted vault JSON file
    AGENTVAULT_DEPLOYMENT_PATH   deployment record JSON file
    AGENTVAULT_NETWORK           network name shown in stats
    AGENTVAULT_PRODUCTION        set to enable secure cookies and hide /docs
    LOG_LEVEL                    structured log level
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Mapping, Optional

DEFAULT_DATABASE_URL = "sqlite:///agentvault.db"
DEFAULT_BRIDGE_URL = "http://127.0.0.1:6301"

_TRUTHY = {"1", "true", "yes", "on"}


def _flag(value: Optional[str], default: bool) -> bool:
    if value is None or value == "":
        return default
    return value.strip().lower() in _TRUTHY


@dataclass
class Settings:
    database_url: str = DEFAULT_DATABASE_URL
    bridge_url: str = DEFAULT_BRIDGE_URL
    bridge_timeout: float = 30.0
    fallback_verify: bool = True
    vault_key: Optional[str] = None
    vault_path: str = ".vault-secrets.json"
    deployment_path: str = "deployment.json"
    network: str = "testnet"
    production: bool = False
    log_level: str = "INFO"

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> "Settings":
        env = os.environ if environ is None else environ
        return cls(
            database_url=env.get("DATABASE_URL") or DEFAULT_DATABASE_URL,
            bridge_url=env.get("AGENTVAULT_BRIDGE_URL") or DEFAULT_BRIDGE_URL,
            bridge_timeout=float(env.get("AGENTVAULT_BRIDGE_TIMEOUT") or 30.0),
            fallback_verify=_flag(env.get("AGENTVAULT_FALLBACK_VERIFY"), True),
            vault_key=env.get("AGENTVAULT_VAULT_KEY") or None,
            vault_path=env.get("AGENTVAULT_VAULT_PATH") or ".vault-secrets.json",
            deployment_path=env.get("AGENTVAULT_DEPLOYMENT_PATH") or "deployment.json",
            network=env.get("AGENTVAULT_NETWORK") or "testnet",
            production=_flag(env.get("AGENTVAULT_PRODUCTION"), False),
            log_level=env.get("LOG_LEVEL") or "INFO",
        )
