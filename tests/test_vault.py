"""Tests for the encrypted password store."""

import json
import os
import stat
import threading

import pytest

from bakker_api import vault as vault_module
from bakker_api.errors import ConfigurationError, DecryptionError
from bakker_api.vault import CredentialVault, seal, secret_digest, unseal

from conftest import SECRET


@pytest.fixture
def vault_path(tmp_path):
    return str(tmp_path / "config" / "passwords.json")


class TestSealing:
    """Test the on-disk blob format."""

    def test_blob_fields_are_hex(self):
        """Test every field of the blob is hex with the expected sizes."""
        blob = seal(SECRET, {"prod": "hunter2"})
        assert set(blob) == {"secretHash", "salt", "iv", "authTag", "encrypted"}
        assert blob["secretHash"] == secret_digest(SECRET)
        assert len(bytes.fromhex(blob["salt"])) == 16
        assert len(bytes.fromhex(blob["iv"])) == 12
        assert len(bytes.fromhex(blob["authTag"])) == 16

    def test_reencrypting_changes_salt_and_iv(self):
        """Test two seals of the same map differ but decrypt to the same plaintext."""
        first = seal(SECRET, {"prod": "hunter2"})
        second = seal(SECRET, {"prod": "hunter2"})
        assert first["salt"] != second["salt"]
        assert first["iv"] != second["iv"]
        assert unseal(SECRET, first) == unseal(SECRET, second) == {"prod": "hunter2"}

    def test_wrong_secret_is_rejected(self):
        blob = seal(SECRET, {"prod": "hunter2"})
        with pytest.raises(DecryptionError):
            unseal("another secret", blob)

    def test_tampered_ciphertext_is_rejected(self):
        """Test a flipped ciphertext byte fails authentication."""
        blob = seal(SECRET, {"prod": "hunter2"})
        data = bytearray(bytes.fromhex(blob["encrypted"]))
        data[0] ^= 0xFF
        blob["encrypted"] = bytes(data).hex()
        with pytest.raises(DecryptionError):
            unseal(SECRET, blob)


class TestCredentialVault:
    """Test the vault operations."""

    def test_set_then_get(self, vault_path, queue):
        vault = CredentialVault(vault_path, SECRET, queue)
        vault.set("prod", "hunter2")
        assert vault.get("prod") == "hunter2"
        assert vault.get("staging") is None
        assert vault.list() == {"prod"}

    def test_survives_new_instance(self, vault_path, queue):
        """Test passwords are readable by a fresh vault on the same file."""
        CredentialVault(vault_path, SECRET, queue).set("prod", "hunter2")

        reopened = CredentialVault(vault_path, SECRET, queue)
        assert reopened.get("prod") == "hunter2"

    def test_file_is_private_and_has_no_plaintext(self, vault_path, queue):
        vault = CredentialVault(vault_path, SECRET, queue)
        vault.set("prod", "hunter2")

        assert stat.S_IMODE(os.stat(vault_path).st_mode) == 0o600
        with open(vault_path) as f:
            content = f.read()
        assert "hunter2" not in content
        assert "prod" not in content

    def test_rewrite_changes_salt_and_iv(self, vault_path, queue):
        vault = CredentialVault(vault_path, SECRET, queue)
        vault.set("prod", "hunter2")
        with open(vault_path) as f:
            before = json.load(f)

        vault.set("staging", "swordfish")
        with open(vault_path) as f:
            after = json.load(f)

        assert before["salt"] != after["salt"]
        assert before["iv"] != after["iv"]
        assert vault.get("prod") == "hunter2"
        assert vault.get("staging") == "swordfish"

    def test_concurrent_sets_keep_every_entry(self, vault_path, queue):
        """Test parallel writers never drop each other's passwords."""
        vault = CredentialVault(vault_path, SECRET, queue)
        barrier = threading.Barrier(8)

        def store(index):
            barrier.wait()
            vault.set(f"db{index}", f"password{index}")

        threads = [threading.Thread(target=store, args=(i,)) for i in range(8)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join(timeout=60)

        assert vault.list() == {f"db{i}" for i in range(8)}
        reopened = CredentialVault(vault_path, SECRET, queue)
        assert all(reopened.get(f"db{i}") == f"password{i}" for i in range(8))

    def test_delete(self, vault_path, queue):
        vault = CredentialVault(vault_path, SECRET, queue)
        vault.set("prod", "hunter2")
        vault.set("staging", "swordfish")

        vault.delete("prod")
        assert vault.get("prod") is None
        assert vault.list() == {"staging"}

    def test_disabled_without_secret(self, vault_path, queue):
        """Test a vault without a secret reads empty and refuses writes."""
        vault = CredentialVault(vault_path, None, queue)
        assert vault.get("prod") is None
        assert vault.list() == set()
        assert vault.status().enabled is False
        with pytest.raises(ConfigurationError):
            vault.set("prod", "hunter2")
        with pytest.raises(ConfigurationError):
            vault.delete("prod")
        assert not os.path.exists(vault_path)

    def test_wrong_secret_never_returns_a_password(self, vault_path, queue):
        CredentialVault(vault_path, SECRET, queue).set("prod", "hunter2")

        vault = CredentialVault(vault_path, "wrong secret", queue)
        assert vault.get("prod") is None
        assert vault.list() == set()
        assert vault.status().decryption_failing is True

    def test_failing_vault_refuses_writes_and_keeps_file(self, vault_path, queue):
        """Test a write under the wrong secret raises and leaves the store untouched."""
        CredentialVault(vault_path, SECRET, queue).set("prod", "hunter2")
        with open(vault_path) as f:
            original = f.read()

        vault = CredentialVault(vault_path, "wrong secret", queue)
        with pytest.raises(DecryptionError):
            vault.set("staging", "swordfish")

        with open(vault_path) as f:
            assert f.read() == original
        assert CredentialVault(vault_path, SECRET, queue).get("prod") == "hunter2"

    def test_file_removed_while_reading_is_empty(self, vault_path, queue, monkeypatch):
        """Test a store deleted under a reader counts as empty, not as a decryption failure."""
        vault = CredentialVault(vault_path, SECRET, queue)
        vault.set("prod", "hunter2")

        def removed(*args, **kwargs):
            raise FileNotFoundError(vault_path)

        monkeypatch.setattr(vault_module, "open", removed, raising=False)
        assert vault.list() == set()
        assert vault.decryption_failing is False

        monkeypatch.undo()
        assert vault.get("prod") == "hunter2"

    def test_failure_is_sticky_until_reset(self, vault_path, queue):
        os.makedirs(os.path.dirname(vault_path))
        with open(vault_path, "w") as f:
            f.write("not json")

        vault = CredentialVault(vault_path, SECRET, queue)
        assert vault.status().decryption_failing is True
        with pytest.raises(DecryptionError):
            vault.set("prod", "hunter2")

        vault.reset()
        assert not os.path.exists(vault_path)
        assert vault.status().decryption_failing is False
        vault.set("prod", "hunter2")
        assert vault.get("prod") == "hunter2"
