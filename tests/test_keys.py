"""Tests for the personal key ring."""

from __future__ import annotations

import stat

import pytest
import yaml

from conftest import PASSWORDS, TEST_KEY_SIZE
from shh.crypto import public_key_from_pem
from shh.errors import ConfigNotFound, StateError, StorageError, WrongPassword
from shh.keys import DEFAULT_PORT, KeyRing, UserConfig


@pytest.fixture
def empty_ring(tmp_path) -> KeyRing:
    return KeyRing(tmp_path / "home", key_size=TEST_KEY_SIZE)


class TestUserConfig:

    def test_default_port(self):
        assert UserConfig(username="alice").port == DEFAULT_PORT == 8080

    def test_rejects_empty_username(self):
        with pytest.raises(ValueError):
            UserConfig(username="")

    def test_rejects_bad_port(self):
        with pytest.raises(ValueError):
            UserConfig(username="alice", port=70000)


class TestCreate:

    def test_writes_files(self, empty_ring):
        empty_ring.create("alice", "pw", port=9000)
        assert empty_ring.exists()
        assert empty_ring.public_key_file.exists()
        data = yaml.safe_load(empty_ring.config_file.read_text())
        assert data == {"username": "alice", "port": 9000}

    def test_private_key_is_owner_only(self, empty_ring):
        empty_ring.create("alice", "pw")
        mode = stat.S_IMODE(empty_ring.private_key_file.stat().st_mode)
        assert mode == 0o600

    def test_refuses_to_overwrite(self, empty_ring):
        empty_ring.create("alice", "pw")
        with pytest.raises(StateError, match="shh rotate"):
            empty_ring.create("alice", "pw2")

    def test_check_absent_on_fresh_home(self, empty_ring):
        empty_ring.check_absent()


class TestRead:

    def test_load_config(self, keyrings):
        config = keyrings["alice"].load_config()
        assert config.username == "alice"

    def test_load_config_missing(self, empty_ring):
        with pytest.raises(ConfigNotFound, match="gen-keys"):
            empty_ring.load_config()

    def test_load_config_malformed(self, empty_ring):
        empty_ring.home.mkdir(parents=True)
        empty_ring.config_file.write_text("port: [not, a, port]\n")
        with pytest.raises(StateError, match="bad config"):
            empty_ring.load_config()

    def test_public_key_pem(self, keyrings):
        public_key_from_pem(keyrings["alice"].public_key_pem())

    def test_public_key_missing(self, empty_ring):
        with pytest.raises(ConfigNotFound):
            empty_ring.public_key_pem()

    def test_unlock(self, keyrings):
        keys = keyrings["alice"].unlock(PASSWORDS["alice"])
        assert keys.public_pem == keyrings["alice"].public_key_pem()

    def test_unlock_wrong_password(self, keyrings):
        with pytest.raises(WrongPassword):
            keyrings["alice"].unlock("nope")

    def test_unlock_without_keys(self, empty_ring):
        with pytest.raises(ConfigNotFound):
            empty_ring.unlock("pw")


class TestStaging:
    """The file dance used by key rotation."""

    def test_stage_and_install(self, keyrings):
        ring = keyrings["alice"]
        staged = ring.stage("new-pw")
        assert (ring.staging_dir / "id_rsa").exists()

        ring.backup()
        ring.install_staged()
        ring.remove_backup()
        ring.discard_staged()

        assert ring.public_key_pem() == staged.public_pem
        ring.unlock("new-pw")
        assert not ring.staging_dir.exists()
        assert not (ring.home / "id_rsa.bak").exists()

    def test_stage_refuses_existing_dir(self, keyrings):
        ring = keyrings["alice"]
        ring.staging_dir.mkdir()
        with pytest.raises(StorageError, match="exists"):
            ring.stage("new-pw")

    def test_restore_backup(self, keyrings):
        ring = keyrings["alice"]
        original = ring.public_key_pem()
        ring.stage("new-pw")
        ring.backup()
        ring.install_staged()

        ring.restore_backup()
        ring.discard_staged()

        assert ring.public_key_pem() == original
        ring.unlock(PASSWORDS["alice"])
        assert not (ring.home / "id_rsa.pub.bak").exists()
