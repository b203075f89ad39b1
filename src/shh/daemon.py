"""
shh daemon: keeps the unlocking password in memory for a while.

Runs in the foreground (``shh serve``), listening on 127.0.0.1 only.
Other shh commands ask it for the password instead of prompting.

Endpoints:
    GET  /             cached password (empty body when nothing is cached)
    POST /             cache the request body as the password (400 if empty)
    GET  /reset-timer  restart the expiry window and return the password
    POST /reset-timer  restart the expiry window
    GET  /ping         liveness check

The password is dropped when the window (one hour by default) runs out
without a reset. Each connection is handled on its own thread under a
socket timeout; request handling and expiry share one lock.
"""

from __future__ import annotations

import logging
import os
import signal
import threading
import time
import urllib.error
import urllib.request
from http.server import BaseHTTPRequestHandler, ThreadingHTTPServer
from pathlib import Path
from typing import Callable, Optional

from . import CONFIG_HOME
from .errors import DaemonUnreachable, StorageError
from .keys import DEFAULT_PORT

logger = logging.getLogger("shh.daemon")

DEFAULT_TTL = 3600.0
DEFAULT_CHECK_INTERVAL = 5.0
PID_FILE = "daemon.pid"
LOG_DIR = "logs"
HOST = "127.0.0.1"
CLIENT_TIMEOUT = 3
REQUEST_TIMEOUT = 5.0


class DaemonConfig:
    """Configuration for the daemon process.

    Attributes:
        home: Personal configuration directory.
        port: Loopback port to listen on.
        ttl: Seconds a password stays cached without a reset.
        check_interval: Seconds between expiry checks.
        request_timeout: Socket timeout for one client connection.
        log_file: Path for daemon log output.
    """

    def __init__(
        self,
        home: Optional[Path] = None,
        port: int = DEFAULT_PORT,
        ttl: float = DEFAULT_TTL,
        check_interval: float = DEFAULT_CHECK_INTERVAL,
        request_timeout: float = REQUEST_TIMEOUT,
    ):
        self.home = (home or Path(CONFIG_HOME)).expanduser()
        self.port = port
        self.ttl = ttl
        self.check_interval = check_interval
        self.request_timeout = request_timeout

        log_dir = self.home / LOG_DIR
        log_dir.mkdir(parents=True, exist_ok=True)
        self.log_file = log_dir / "daemon.log"


class CacheState:
    """The cached password and its expiry deadline.

    All access is lock-protected. ``clock`` is injectable so tests can
    move time forward.
    """

    def __init__(self, ttl: float = DEFAULT_TTL, clock: Callable[[], float] = time.monotonic):
        self._lock = threading.Lock()
        self._clock = clock
        self.ttl = ttl
        self._password = ""
        self._deadline: Optional[float] = None

    def get(self) -> str:
        """Return the password, or an empty string when nothing is cached."""
        with self._lock:
            self._expire_locked()
            return self._password

    def set(self, password: str) -> None:
        """Cache ``password`` and start a fresh window.

        Raises:
            ValueError: If ``password`` is empty.
        """
        if not password:
            raise ValueError("empty body")
        with self._lock:
            self._password = password
            self._deadline = self._clock() + self.ttl

    def reset_timer(self) -> str:
        """Restart the window without changing the password; return it."""
        with self._lock:
            self._expire_locked()
            if self._password:
                self._deadline = self._clock() + self.ttl
            return self._password

    def expire(self) -> bool:
        """Drop the password if its window has passed.

        Returns:
            True if a password was dropped.
        """
        with self._lock:
            return self._expire_locked()

    def _expire_locked(self) -> bool:
        if self._deadline is not None and self._clock() >= self._deadline:
            self._password = ""
            self._deadline = None
            logger.info("Cached password expired")
            return True
        return False


def make_handler(
    state: CacheState, timeout: float = REQUEST_TIMEOUT
) -> type[BaseHTTPRequestHandler]:
    """Build the request handler class bound to ``state``.

    ``timeout`` bounds every socket read, so a silent or truncated client
    only ties up its own connection thread.
    """
    handler_timeout = timeout

    class CacheHandler(BaseHTTPRequestHandler):
        """HTTP handler for the password cache."""

        # StreamRequestHandler applies this to the connection socket
        timeout = handler_timeout

        def do_GET(self):
            if self.path == "/ping":
                self._respond(200)
            elif self.path == "/reset-timer":
                self._respond(200, state.reset_timer().encode("utf-8"))
            elif self.path == "/":
                self._respond(200, state.get().encode("utf-8"))
            else:
                self._respond(404, b"not found")

        def do_POST(self):
            try:
                body = self._read_body()
            except ValueError:
                self._respond(400, b"bad content length")
                return
            if self.path == "/reset-timer":
                state.reset_timer()
                self._respond(200)
            elif self.path == "/":
                try:
                    state.set(body.decode("utf-8"))
                except (ValueError, UnicodeDecodeError) as exc:
                    self._respond(400, str(exc).encode("utf-8"))
                    return
                logger.info("Password cached for %.0fs", state.ttl)
                self._respond(200)
            else:
                self._respond(404, b"not found")

        def _read_body(self) -> bytes:
            length = int(self.headers.get("Content-Length") or 0)
            if length < 0:
                raise ValueError(f"negative content length: {length}")
            return self.rfile.read(length) if length else b""

        def _respond(self, status: int, body: bytes = b"") -> None:
            self.send_response(status)
            self.send_header("Content-Type", "text/plain; charset=utf-8")
            self.send_header("Content-Length", str(len(body)))
            self.end_headers()
            self.wfile.write(body)

        def log_message(self, format, *args):
            logger.debug("API: %s", format % args)

    return CacheHandler


class DaemonService:
    """The password-cache daemon process.

    Runs the loopback HTTP server and an expiry worker that share one
    :class:`CacheState`.

    Args:
        config: Daemon configuration.
        state: Optional pre-built state (tests inject a fake clock here).
    """

    def __init__(self, config: DaemonConfig, state: Optional[CacheState] = None):
        self.config = config
        self.state = state or CacheState(ttl=config.ttl)
        self._stop_event = threading.Event()
        self._threads: list[threading.Thread] = []
        self._server: Optional[ThreadingHTTPServer] = None

    @property
    def port(self) -> int:
        """The bound port (differs from config when it asked for port 0)."""
        if self._server is not None:
            return self._server.server_address[1]
        return self.config.port

    def start(self, install_signals: bool = True, log_to_file: bool = True) -> None:
        """Bind the API, write the PID file and start the workers.

        Raises:
            StorageError: If the port cannot be bound.
        """
        if log_to_file:
            self._setup_logging()
        if install_signals:
            self._setup_signals()

        try:
            self._server = ThreadingHTTPServer(
                (HOST, self.config.port),
                make_handler(self.state, self.config.request_timeout),
            )
        except OSError as exc:
            raise StorageError(f"listen on {HOST}:{self.config.port}: {exc}") from exc
        self._write_pid()

        workers = [
            ("api", self._server.serve_forever),
            ("expiry", self._expiry_loop),
        ]
        for name, target in workers:
            t = threading.Thread(target=target, name=f"daemon-{name}", daemon=True)
            t.start()
            self._threads.append(t)

        logger.info(
            "Daemon started: PID %d on http://%s:%d ttl=%ds",
            os.getpid(),
            HOST,
            self.port,
            self.config.ttl,
        )

    def stop(self) -> None:
        """Stop serving and wait for the workers."""
        logger.info("Daemon stopping...")
        self._stop_event.set()

        if self._server:
            self._server.shutdown()
            self._server.server_close()

        for t in self._threads:
            t.join(timeout=5)

        self._remove_pid()
        logger.info("Daemon stopped.")

    def run_forever(self) -> None:
        """Block until stop is signaled."""
        try:
            while not self._stop_event.is_set():
                self._stop_event.wait(timeout=1)
        except KeyboardInterrupt:
            pass
        finally:
            self.stop()

    def _expiry_loop(self) -> None:
        """Periodically drop the password once its window has passed."""
        while not self._stop_event.wait(timeout=self.config.check_interval):
            self.state.expire()

    def _setup_logging(self) -> None:
        """Add the daemon log file to the root logger."""
        handler = logging.FileHandler(self.config.log_file)
        handler.setFormatter(
            logging.Formatter("%(asctime)s [%(name)s] %(levelname)s: %(message)s")
        )
        root = logging.getLogger()
        root.addHandler(handler)
        root.setLevel(logging.INFO)

    def _setup_signals(self) -> None:
        for sig in (signal.SIGTERM, signal.SIGINT):
            signal.signal(sig, self._handle_signal)

    def _handle_signal(self, signum, frame):
        logger.info("Received signal %s, stopping", signal.Signals(signum).name)
        self._stop_event.set()

    def _write_pid(self) -> None:
        pid_path = self.config.home / PID_FILE
        pid_path.parent.mkdir(parents=True, exist_ok=True)
        pid_path.write_text(str(os.getpid()), encoding="utf-8")

    def _remove_pid(self) -> None:
        pid_path = self.config.home / PID_FILE
        if pid_path.exists():
            pid_path.unlink()


def read_pid(home: Optional[Path] = None) -> Optional[int]:
    """Read the daemon PID, cleaning up a stale PID file.

    Returns:
        PID as int, or None if not running.
    """
    home = (home or Path(CONFIG_HOME)).expanduser()
    pid_path = home / PID_FILE
    if not pid_path.exists():
        return None
    try:
        pid = int(pid_path.read_text(encoding="utf-8").strip())
        os.kill(pid, 0)
        return pid
    except (ValueError, ProcessLookupError, PermissionError):
        pid_path.unlink(missing_ok=True)
        return None


def is_running(home: Optional[Path] = None) -> bool:
    return read_pid(home) is not None


# ---------------------------------------------------------------------------
# Client side
# ---------------------------------------------------------------------------

def _request(port: int, path: str, data: Optional[bytes] = None) -> bytes:
    url = f"http://{HOST}:{port}{path}"
    req = urllib.request.Request(url, data=data, method="POST" if data is not None else "GET")
    if data is not None:
        req.add_header("Content-Type", "text/plain")
    try:
        with urllib.request.urlopen(req, timeout=CLIENT_TIMEOUT) as resp:
            return resp.read()
    except urllib.error.HTTPError as exc:
        detail = exc.read().decode("utf-8", "replace")
        raise DaemonUnreachable(f"daemon answered {exc.code} on {path}: {detail}") from exc
    except (urllib.error.URLError, OSError) as exc:
        raise DaemonUnreachable(
            f"daemon not reachable on port {port}, run `shh serve`"
        ) from exc


def ping(port: int) -> bool:
    """True if a daemon answers on ``port``."""
    try:
        _request(port, "/ping")
        return True
    except DaemonUnreachable:
        return False


def fetch_password(port: int, reset_timer: bool = True) -> str:
    """Ask the daemon for the cached password.

    With ``reset_timer`` the lookup also extends the cache window.

    Returns:
        The password, or an empty string when nothing is cached.

    Raises:
        DaemonUnreachable: If no daemon answers.
    """
    body = _request(port, "/reset-timer" if reset_timer else "/")
    return body.decode("utf-8")


def push_password(port: int, password: str) -> None:
    """Cache ``password`` in the daemon.

    Raises:
        DaemonUnreachable: If no daemon answers or it rejects the body.
    """
    _request(port, "/", data=password.encode("utf-8"))

