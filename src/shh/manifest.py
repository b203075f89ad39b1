"""
Loading, locating and atomically persisting the `.shh` manifest.

The file is key-sorted, indented JSON with a trailing newline so that
two collaborators touching different users or secrets produce small,
mergeable diffs.
"""

from __future__ import annotations

import json
import logging
import os
from pathlib import Path
from typing import Optional

from pydantic import ValidationError

from . import MANIFEST_NAME
from .errors import ManifestNotFound, ManifestParseError, StateError, StorageError
from .models import Manifest

logger = logging.getLogger("shh.manifest")


def encode(manifest: Manifest) -> str:
    """Deterministic text encoding of a manifest."""
    data = manifest.model_dump(mode="json")
    return json.dumps(data, indent=2, sort_keys=True) + "\n"


def decode(text: str) -> Manifest:
    """Parse manifest text.

    Raises:
        ManifestParseError: On invalid JSON or a shape that violates the model.
    """
    try:
        return Manifest.model_validate_json(text)
    except ValidationError as exc:
        raise ManifestParseError(f"parse manifest: {exc.errors()[0]['msg']}") from exc


def load(path: Path) -> Manifest:
    """Read and decode the manifest at ``path``.

    Raises:
        ManifestNotFound: If the file does not exist.
        ManifestParseError: If it cannot be decoded.
    """
    try:
        text = path.read_text(encoding="utf-8")
    except FileNotFoundError as exc:
        raise ManifestNotFound(f"missing {path}, run `shh init`") from exc
    except UnicodeDecodeError as exc:
        raise ManifestParseError(f"parse manifest: {exc}") from exc
    except OSError as exc:
        raise StorageError(f"read {path}: {exc}") from exc
    return decode(text)


def persist(manifest: Manifest, path: Path) -> None:
    """Atomically write the manifest.

    The encoded text goes to a hidden temp file in the same directory
    which is then renamed over ``path``; readers see either the old or
    the new file, never a partial one.

    Raises:
        StorageError: If the write or rename fails. ``path`` is untouched.
    """
    data = encode(manifest)
    tmp_path = path.with_name(f".{path.name}.{os.getpid()}.tmp")
    try:
        with open(tmp_path, "w", encoding="utf-8") as fh:
            fh.write(data)
            fh.flush()
            os.fsync(fh.fileno())
        if path.exists():
            os.chmod(tmp_path, path.stat().st_mode & 0o777)
        os.replace(tmp_path, path)
    except OSError as exc:
        tmp_path.unlink(missing_ok=True)
        raise StorageError(f"encode to {path}: {exc}") from exc
    logger.debug("Wrote manifest %s (%d users)", path, len(manifest.keys))


def find(start: Optional[Path] = None, name: str = MANIFEST_NAME) -> Path:
    """Walk from ``start`` up to the filesystem root looking for the manifest.

    Raises:
        ManifestNotFound: If no directory on the way up has one.
    """
    current = (start or Path.cwd()).resolve()
    for directory in (current, *current.parents):
        candidate = directory / name
        if candidate.is_file():
            return candidate
    raise ManifestNotFound(f"missing {name}, run `shh init`")


def create(path: Path, username: str, public_key_pem: str) -> Manifest:
    """Write a new manifest whose only user is ``username``.

    Raises:
        StateError: If ``path`` already exists.
    """
    if path.exists():
        raise StateError(f"{path.name} already exists")
    manifest = Manifest().with_user_added(username, public_key_pem)
    persist(manifest, path)
    logger.info("Initialized %s for %s", path, username)
    return manifest
