"""Runs the user's $EDITOR on a plaintext file."""

from __future__ import annotations

import logging
import os
import shlex
import subprocess
from pathlib import Path
from typing import Callable

from .errors import StorageError, UsageError

logger = logging.getLogger("shh.editor")

Editor = Callable[[Path], None]


def run_editor(path: Path) -> None:
    """Open ``path`` in ``$EDITOR`` and wait for it to exit.

    Raises:
        UsageError: If ``$EDITOR`` is not set.
        StorageError: If the editor cannot start or exits non-zero.
    """
    command = os.environ.get("EDITOR", "").strip()
    if not command:
        raise UsageError("must set $EDITOR")
    argv = shlex.split(command) + [str(path)]
    logger.debug("Running editor %s", argv[0])
    try:
        subprocess.run(argv, check=True)
    except (OSError, subprocess.CalledProcessError) as exc:
        raise StorageError(f"editor: {exc}") from exc


def require_editor() -> None:
    """Fail early when no editor is configured.

    Raises:
        UsageError: If ``$EDITOR`` is not set.
    """
    if not os.environ.get("EDITOR", "").strip():
        raise UsageError("must set $EDITOR")
