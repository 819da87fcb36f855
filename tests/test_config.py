"""Tests for agentvault.config — environment-driven settings."""

from agentvault.config import DEFAULT_BRIDGE_URL, DEFAULT_DATABASE_URL, Settings


def test_defaults():
    s = Settings.from_env({})
    assert s.database_url == DEFAULT_DATABASE_URL
    assert s.bridge_url == DEFAULT_BRIDGE_URL
    assert s.bridge_timeout == 30.0
    assert s.fallback_verify is True
    assert s.vault_key is None
    assert s.vault_path == ".vault-secrets.json"
    assert s.deployment_path == "deployment.json"
    assert s.network == "testnet"
    assert s.production is False
    assert s.log_level == "INFO"


def test_overrides():
    s = Settings.from_env({
        "DATABASE_URL": "postgresql://u:p@db/agentvault",
        "AGENTVAULT_BRIDGE_URL": "http://bridge:9000",
        "AGENTVAULT_BRIDGE_TIMEOUT": "5",
        "AGENTVAULT_FALLBACK_VERIFY": "false",
        "AGENTVAULT_VAULT_KEY": "ab" * 32,
        "AGENTVAULT_PRODUCTION": "1",
        "AGENTVAULT_NETWORK": "mainnet",
    })
    assert s.database_url.startswith("postgresql://")
    assert s.bridge_url == "http://bridge:9000"
    assert s.bridge_timeout == 5.0
    assert s.fallback_verify is False
    assert s.vault_key == "ab" * 32
    assert s.production is True
    assert s.network == "mainnet"


def test_flag_parsing():
    for value in ("true", "YES", "on", "1"):
        assert Settings.from_env({"AGENTVAULT_PRODUCTION": value}).production is True
    for value in ("false", "0", "no"):
        assert Settings.from_env({"AGENTVAULT_FALLBACK_VERIFY": value}).fallback_verify is False
    assert Settings.from_env({"AGENTVAULT_FALLBACK_VERIFY": ""}).fallback_verify is True


def test_reads_process_environment(monkeypatch):
    monkeypatch.setenv("AGENTVAULT_NETWORK", "devnet")
    assert Settings.from_env().network == "devnet"
