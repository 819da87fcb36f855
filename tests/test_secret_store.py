"""Tests for agentvault.secret_store — AES-256-CBC secrets and the vault file."""

import json

import pytest

from agentvault.errors import DecryptionError, ValidationError
from agentvault.secret_store import SecretStore, Vault, generate_key


@pytest.fixture
def store():
    return SecretStore.from_hex(generate_key())


@pytest.fixture
def vault(tmp_path, store):
    return Vault(tmp_path / "vault.json", store)


# ─── SecretStore ───────────────────────────────────────────────────

class TestSecretStore:
    def test_roundtrip(self, store):
        ct, iv = store.encrypt("ghp_example_token")
        assert store.decrypt(ct, iv) == "ghp_example_token"

    def test_roundtrip_unicode(self, store):
        ct, iv = store.encrypt("pässwörd 🔐")
        assert store.decrypt(ct, iv) == "pässwörd 🔐"

    def test_fresh_iv_per_call(self, store):
        ct1, iv1 = store.encrypt("same")
        ct2, iv2 = store.encrypt("same")
        assert iv1 != iv2
        assert ct1 != ct2
        assert len(bytes.fromhex(iv1)) == 16

    def test_ciphertext_hides_plaintext(self, store):
        ct, _ = store.encrypt("plain-secret")
        assert "plain-secret" not in ct

    def test_wrong_key_fails(self, store):
        ct, iv = store.encrypt("hello world")
        other = SecretStore.from_hex(generate_key())
        with pytest.raises(DecryptionError):
            other.decrypt(ct, iv)

    def test_corrupted_ciphertext_fails(self, store):
        with pytest.raises(DecryptionError):
            store.decrypt("not base64!!", "00" * 16)

    def test_bad_iv_fails(self, store):
        ct, _ = store.encrypt("hello")
        with pytest.raises(DecryptionError):
            store.decrypt(ct, "zz")

    def test_generate_key(self):
        key = generate_key()
        assert len(key) == 64
        assert generate_key() != key

    def test_missing_key(self):
        with pytest.raises(ValidationError):
            SecretStore.from_hex("")

    def test_non_hex_key(self):
        with pytest.raises(ValidationError):
            SecretStore.from_hex("xyz" * 20)

    def test_short_key(self):
        with pytest.raises(ValidationError):
            SecretStore(b"short")


# ─── Vault file ────────────────────────────────────────────────────

class TestVault:
    def test_creates_file(self, tmp_path, store):
        path = tmp_path / "new.json"
        Vault(path, store)
        assert json.loads(path.read_text()) == {"secrets": []}

    def test_put_and_reveal(self, vault):
        secret = vault.put("github", "ghp_abc", provider="github")
        assert secret.id.startswith("secret_")
        assert "github" in vault
        assert vault.reveal(vault.get("github")) == "ghp_abc"

    def test_file_never_holds_plaintext_or_key(self, tmp_path, store):
        path = tmp_path / "v.json"
        v = Vault(path, store)
        v.put("api", "super-secret-value")
        raw = path.read_text()
        assert "super-secret-value" not in raw
        assert "masterKey" not in raw

    def test_replace_existing_name(self, vault):
        vault.put("api", "one")
        vault.put("api", "two")
        assert len(vault) == 1
        assert vault.reveal(vault.get("api")) == "two"

    def test_reload(self, tmp_path, store):
        path = tmp_path / "v.json"
        Vault(path, store).put("api", "value", provider="p", service_url="https://x")
        again = Vault(path, store)
        assert again.get("api").service_url == "https://x"
        assert again.reveal(again.get("api")) == "value"

    def test_names_are_metadata_only(self, vault):
        vault.put("api", "value", provider="p")
        (item,) = vault.names()
        assert item["name"] == "api"
        assert "encrypted_value" not in item
        assert "iv" not in item

    def test_get_missing(self, vault):
        assert vault.get("nope") is None

    def test_empty_name_or_value(self, vault):
        with pytest.raises(ValidationError):
            vault.put("", "v")
        with pytest.raises(ValidationError):
            vault.put("n", "")

    def test_ignores_legacy_key_field(self, tmp_path, store):
        path = tmp_path / "legacy.json"
        path.write_text(json.dumps({"masterKey": "ab" * 32, "secrets": []}))
        v = Vault(path, store)
        assert len(v) == 0
