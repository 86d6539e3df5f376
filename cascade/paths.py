"""Centralized path computations for the cascade service.

All state lives under a single home directory (``~/.cascade`` by default).
The ``CASCADE_HOME`` environment variable overrides the default.

Layout::

    ~/.cascade/
      config.yaml        # optional settings (see cascade.config)
      cascade.log        # rotated log
      daemon.pid
      daemon.lock
      clones/
        <repo uuid>/     # one persistent working copy per repository
"""

import os
import re
from pathlib import Path

_DEFAULT_HOME = Path.home() / ".cascade"


def home(override: Path | None = None) -> Path:
    """Return the cascade home directory.

    Resolution order:
    1. *override* argument (used in tests)
    2. ``CASCADE_HOME`` environment variable
    3. ``~/.cascade``
    """
    if override is not None:
        return override
    env = os.environ.get("CASCADE_HOME")
    if env:
        return Path(env)
    return _DEFAULT_HOME


def config_path(hc_home: Path) -> Path:
    return hc_home / "config.yaml"


def log_file_path(hc_home: Path) -> Path:
    return hc_home / "cascade.log"


def daemon_pid_path(hc_home: Path) -> Path:
    return hc_home / "daemon.pid"


def daemon_lock_path(hc_home: Path) -> Path:
    """Daemon lock file for ``fcntl.flock()``."""
    return hc_home / "daemon.lock"


def clones_dir(hc_home: Path) -> Path:
    return hc_home / "clones"


def checkout_path(workdir: Path, repo_uuid: str) -> Path:
    """Working copy for a repository, keyed by its unique id.

    Bitbucket ids look like ``{0f1e...}``; braces and any other
    path-unfriendly characters are dropped.
    """
    key = re.sub(r"[^\w\-.]", "", repo_uuid).strip(".") or "repo"
    return workdir / key
