"""Daemon management - start/stop the webhook server.

The daemon runs uvicorn serving the FastAPI app (``cascade.web``) with the
event worker running as a background task.

Singleton enforcement uses two complementary mechanisms:

1. **PID file** (``daemon.pid``) - human-readable, used for
   ``stop_daemon`` and ``is_running``.
2. **``fcntl.flock()``** (``daemon.lock``) - advisory exclusive lock held
   for the lifetime of the server process.  Two servers sharing one home
   directory would run two workers against the same working copies; the
   lock refuses the second one.  The OS releases the lock when the process
   exits, even on SIGKILL.

Functions:
    start_daemon(hc_home, port, ...) - start in foreground or background
    stop_daemon(hc_home) - read PID file, send SIGTERM
    is_running(hc_home) - check if the daemon PID is alive
"""

import fcntl
import logging
import os
import signal
import subprocess
import sys
import time
from pathlib import Path

from cascade.logging_setup import configure_logging
from cascade.paths import daemon_lock_path, daemon_pid_path, log_file_path

logger = logging.getLogger(__name__)

# Kept open for the lifetime of the foreground process so flock() holds.
_lock_fd: int | None = None


def _acquire_lock(hc_home: Path) -> int:
    """Acquire an exclusive lock on the daemon lock file.

    Returns the file descriptor (must be kept open for the lock to hold).
    Raises ``RuntimeError`` if another daemon already holds the lock.
    """
    lock_path = daemon_lock_path(hc_home)
    lock_path.parent.mkdir(parents=True, exist_ok=True)
    fd = os.open(str(lock_path), os.O_CREAT | os.O_RDWR, 0o644)
    try:
        fcntl.flock(fd, fcntl.LOCK_EX | fcntl.LOCK_NB)
    except OSError:
        os.close(fd)
        raise RuntimeError(
            "Another cascade daemon is already running "
            "(could not acquire exclusive lock)."
        )
    os.ftruncate(fd, 0)
    os.lseek(fd, 0, os.SEEK_SET)
    os.write(fd, f"{os.getpid()}\n".encode())
    return fd


def _release_lock(fd: int) -> None:
    """Release the daemon lock."""
    if fd < 0:
        return
    try:
        fcntl.flock(fd, fcntl.LOCK_UN)
    except (OSError, ValueError):
        pass
    try:
        os.close(fd)
    except (OSError, ValueError):
        pass


def is_running(hc_home: Path) -> tuple[bool, int | None]:
    """Check if the daemon is running.

    Returns (alive, pid). If pid file is missing or stale, returns (False, None).
    """
    pid_path = daemon_pid_path(hc_home)
    if not pid_path.exists():
        return False, None
    try:
        pid = int(pid_path.read_text().strip())
    except (ValueError, OSError):
        return False, None

    try:
        os.kill(pid, 0)
        return True, pid
    except OSError:
        # Stale PID file
        pid_path.unlink(missing_ok=True)
        return False, None


def start_daemon(
    hc_home: Path,
    port: int | None = None,
    foreground: bool = False,
) -> int | None:
    """Start the webhook server.

    If *foreground* is True, runs uvicorn in the current process (blocking)
    while holding the daemon lock.  Otherwise, spawns a background
    ``cascade start --foreground`` subprocess and writes its PID.

    *port* overrides the configured listen port.  Returns the PID of the
    spawned process (or None if foreground).
    """
    hc_home.mkdir(parents=True, exist_ok=True)

    # A background child finds its own PID already written by the parent.
    alive, existing_pid = is_running(hc_home)
    if alive and existing_pid != os.getpid():
        raise RuntimeError(f"Daemon already running with PID {existing_pid}")

    env = os.environ.copy()
    env["CASCADE_HOME"] = str(hc_home)
    if port is not None:
        env["PORT"] = str(port)

    if foreground:
        global _lock_fd
        _lock_fd = _acquire_lock(hc_home)

        os.environ.update(env)
        # A spawned child has stderr redirected into cascade.log already.
        configure_logging(hc_home, console=sys.stderr.isatty())
        import uvicorn
        from cascade.config import load_settings

        settings = load_settings(hc_home)
        pid_path = daemon_pid_path(hc_home)
        pid_path.write_text(str(os.getpid()))

        try:
            uvicorn.run(
                "cascade.web:create_app",
                factory=True,
                host="0.0.0.0",
                port=settings.port,
                log_level="info",
                timeout_graceful_shutdown=15,
            )
        finally:
            pid_path.unlink(missing_ok=True)
            if _lock_fd is not None:
                _release_lock(_lock_fd)
                _lock_fd = None
        return None

    cmd = [sys.executable, "-m", "cascade.cli", "start", "--foreground"]

    stderr_fh = open(log_file_path(hc_home), "a")  # noqa: SIM115 - kept open for subprocess lifetime
    proc = subprocess.Popen(
        cmd,
        env=env,
        stdout=subprocess.DEVNULL,
        stderr=stderr_fh,
        start_new_session=True,
    )

    daemon_pid_path(hc_home).write_text(str(proc.pid))
    logger.info("Daemon started with PID %d", proc.pid)
    return proc.pid


def stop_daemon(hc_home: Path, timeout: float = 15.0) -> bool:
    """Stop the running daemon.

    Sends SIGTERM and waits up to *timeout* seconds for the process to exit.
    If still alive after timeout, sends SIGKILL.

    Returns True if a daemon was stopped, False if none was running.
    """
    alive, pid = is_running(hc_home)
    if not alive or pid is None:
        logger.info("No running daemon found")
        return False

    pid_path = daemon_pid_path(hc_home)
    try:
        os.kill(pid, signal.SIGTERM)
        logger.info("Sent SIGTERM to daemon PID %d", pid)
    except OSError as e:
        logger.warning("Failed to kill daemon PID %d: %s", pid, e)
        pid_path.unlink(missing_ok=True)
        return False

    start_time = time.time()
    while time.time() - start_time < timeout:
        try:
            os.kill(pid, 0)
            time.sleep(0.1)
        except OSError:
            logger.info("Daemon stopped (%.1fs)", time.time() - start_time)
            pid_path.unlink(missing_ok=True)
            return True

    # A cascade run cannot be interrupted; a stuck git call keeps the
    # process alive past SIGTERM.
    logger.warning("Daemon did not stop after %.1fs - sending SIGKILL", timeout)
    try:
        os.kill(pid, signal.SIGKILL)
    except OSError as e:
        logger.warning("Failed to SIGKILL daemon PID %d: %s", pid, e)

    pid_path.unlink(missing_ok=True)
    return True
