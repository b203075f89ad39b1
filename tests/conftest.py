"""Shared test fixtures for shh."""

from __future__ import annotations

import shutil
import socket
from pathlib import Path

import pytest

from shh.keys import KeyRing
from shh.operations import Project, init_project
from shh.password import PasswordSource

# Small keys keep the suite fast; production keys are 4096 bits.
TEST_KEY_SIZE = 2048

PASSWORDS = {
    "alice": "alice-secret",
    "bob": "bob-secret",
    "carol": "carol-secret",
}


def find_free_port() -> int:
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as s:
        s.bind(("127.0.0.1", 0))
        return s.getsockname()[1]


def no_editor(path: Path) -> None:
    """Editor that saves the file untouched."""


@pytest.fixture(scope="session")
def keyring_templates(tmp_path_factory) -> Path:
    """Generate one key pair per test user, once per session."""
    base = tmp_path_factory.mktemp("homes")
    for name, password in PASSWORDS.items():
        KeyRing(base / name, key_size=TEST_KEY_SIZE).create(name, password, port=find_free_port())
    return base


@pytest.fixture
def keyrings(tmp_path: Path, keyring_templates: Path) -> dict[str, KeyRing]:
    """Per-test copies of the session key rings (rotation mutates them)."""
    rings = {}
    for name in PASSWORDS:
        home = tmp_path / "homes" / name
        shutil.copytree(keyring_templates / name, home)
        rings[name] = KeyRing(home, key_size=TEST_KEY_SIZE)
    return rings


@pytest.fixture
def project_dir(tmp_path: Path) -> Path:
    directory = tmp_path / "project"
    directory.mkdir()
    return directory


@pytest.fixture
def manifest_path(project_dir: Path, keyrings: dict[str, KeyRing]) -> Path:
    """A project initialized by alice with bob and carol added."""
    path = init_project(project_dir, keyrings["alice"])
    project = Project(path, keyrings["alice"])
    for name in ("bob", "carol"):
        project.add_user(name, keyrings[name].public_key_pem())
    return path


@pytest.fixture
def as_user(manifest_path: Path, keyrings: dict[str, KeyRing]):
    """Build a Project acting as the given user, with a scripted password."""

    def _as(name: str, editor=no_editor, password: str | None = None) -> Project:
        pw = password or PASSWORDS[name]
        passwords = PasswordSource(None, prompter=lambda prompt: pw)
        return Project(manifest_path, keyrings[name], passwords, editor)

    return _as
