"""Process-wide logging for the webhook server and the ``run`` command.

Log lines carry the repository being processed, taken from the ``log_repo``
context variable that the worker sets at the start of each event.  Lines
emitted outside an event show ``-``.

The server writes to ``<home>/cascade.log`` (rotated).  Console output is
added only when someone is watching: a background daemon already has its
stderr redirected into the same log file.
"""

import contextvars
import logging
import logging.handlers
from pathlib import Path

from cascade.paths import log_file_path

log_repo: contextvars.ContextVar[str] = contextvars.ContextVar("log_repo", default="-")

LOG_FORMAT = "%(asctime)s [%(repo)s] %(levelname)s: %(message)s"
LOG_DATE_FORMAT = "%Y-%m-%d %H:%M:%S"

_configured = False


class _RepoFilter(logging.Filter):
    def filter(self, record: logging.LogRecord) -> bool:
        record.repo = log_repo.get()  # type: ignore[attr-defined]
        return True


def _attach(root: logging.Logger, handler: logging.Handler, level: int) -> None:
    handler.setLevel(level)
    handler.setFormatter(logging.Formatter(LOG_FORMAT, datefmt=LOG_DATE_FORMAT))
    handler.addFilter(_RepoFilter())
    root.addHandler(handler)


def configure_logging(
    hc_home: Path | None = None,
    *,
    level: int = logging.INFO,
    max_bytes: int = 10 * 1024 * 1024,
    backup_count: int = 5,
    console: bool = True,
) -> None:
    """Install the root handlers.  Only the first call in a process counts.

    *hc_home* enables the rotated log file; *console* adds a stderr handler.
    """
    global _configured
    if _configured:
        return
    _configured = True

    root = logging.getLogger()
    root.setLevel(level)

    if hc_home is not None:
        hc_home.mkdir(parents=True, exist_ok=True)
        rotating = logging.handlers.RotatingFileHandler(
            str(log_file_path(hc_home)), maxBytes=max_bytes, backupCount=backup_count,
        )
        _attach(root, rotating, level)
    if console:
        _attach(root, logging.StreamHandler(), level)
