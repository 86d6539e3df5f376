"""Process configuration, read once at startup.

Settings come from ``<home>/config.yaml`` (all keys optional) and are then
overridden by environment variables::

    port: 5000                  # PORT
    token: s3cret               # TOKEN
    username: bot               # BITBUCKET_USERNAME
    password: app-password      # BITBUCKET_PASSWORD
    workdir: /var/lib/cascade   # CASCADE_WORKDIR
    stable_branch: master       # CASCADE_STABLE_BRANCH
    queue_size: 100
    api_url: https://api.bitbucket.org/2.0
    api_timeout: 30
    author_name: Cascade Merge
    author_email: cascade-merge@localhost

The resulting ``Settings`` value is passed into constructors; nothing else
reads the environment.
"""

import os
from dataclasses import dataclass, field
from pathlib import Path

import yaml

from cascade.bitbucket import DEFAULT_API_URL
from cascade.branches import DEFAULT_STABLE_NAME
from cascade.paths import clones_dir, config_path, home as _default_home
from cascade.repo import Author, Credentials

DEFAULT_PORT = 5000
DEFAULT_QUEUE_SIZE = 100

_ENV_KEYS = {
    "PORT": "port",
    "TOKEN": "token",
    "BITBUCKET_USERNAME": "username",
    "BITBUCKET_PASSWORD": "password",
    "CASCADE_WORKDIR": "workdir",
    "CASCADE_STABLE_BRANCH": "stable_branch",
}


@dataclass(frozen=True)
class Settings:
    home: Path
    port: int = DEFAULT_PORT
    token: str = field(default="", repr=False)
    username: str = ""
    password: str = field(default="", repr=False)
    workdir: Path | None = None
    queue_size: int = DEFAULT_QUEUE_SIZE
    stable_branch: str = DEFAULT_STABLE_NAME
    api_url: str = DEFAULT_API_URL
    api_timeout: float = 30.0
    author_name: str = "Cascade Merge"
    author_email: str = "cascade-merge@localhost"

    @property
    def clone_root(self) -> Path:
        return self.workdir or clones_dir(self.home)

    @property
    def credentials(self) -> Credentials | None:
        if not self.username:
            return None
        return Credentials(self.username, self.password)

    @property
    def author(self) -> Author:
        return Author(self.author_name, self.author_email)


def _read(hc_home: Path) -> dict:
    """Read config.yaml, returning empty dict if missing."""
    cp = config_path(hc_home)
    if cp.exists():
        return yaml.safe_load(cp.read_text()) or {}
    return {}


def load_settings(hc_home: Path | None = None, environ: dict[str, str] | None = None) -> Settings:
    """Build ``Settings`` from config.yaml plus environment overrides.

    Raises ``ValueError`` for values of the wrong type (e.g. a non-numeric
    port).
    """
    hc_home = _default_home(hc_home)
    env = os.environ if environ is None else environ

    data = {k: v for k, v in _read(hc_home).items() if k in Settings.__dataclass_fields__}
    for var, key in _ENV_KEYS.items():
        if env.get(var):
            data[key] = env[var]
    data.pop("home", None)

    if "port" in data:
        data["port"] = int(data["port"])
    if "queue_size" in data:
        data["queue_size"] = int(data["queue_size"])
        if data["queue_size"] < 1:
            raise ValueError("queue_size must be at least 1")
    if "api_timeout" in data:
        data["api_timeout"] = float(data["api_timeout"])
    if data.get("workdir"):
        data["workdir"] = Path(data["workdir"]).expanduser()
    for key in ("token", "username", "password"):
        if key in data:
            data[key] = str(data[key] or "")

    return Settings(home=hc_home, **data)
