"""Cascade construction - which branches a merge flows into, and in what order.

A cascade is the forward path a change travels after it lands on a branch::

    develop -> release/1.0 -> release/1.2 -> release/2.0 -> master

The development branch comes first, release branches follow in ascending
version order, and the stable branch is always the last step.  When a pull
request is merged into ``release/1.0`` the cascade starts immediately
*after* it (``release/1.0`` is the merge source, never a target).
"""

import logging
from dataclasses import dataclass
from typing import Iterator, Protocol

from cascade.version import version_key

logger = logging.getLogger(__name__)

DEFAULT_DEVELOPMENT_NAME = "develop"
DEFAULT_RELEASE_PREFIX = "release/"
DEFAULT_STABLE_NAME = "master"


@dataclass(frozen=True)
class CascadeOptions:
    """Branch naming rules for one repository."""

    development_name: str = DEFAULT_DEVELOPMENT_NAME
    release_prefix: str = DEFAULT_RELEASE_PREFIX
    stable_name: str = DEFAULT_STABLE_NAME


class Cascade:
    """Ordered branch names with a forward-only cursor."""

    def __init__(self, branches: list[str] | None = None):
        self.branches: list[str] = list(branches or [])
        self.current = 0

    def append(self, name: str) -> None:
        """Add *name* at the end.  Duplicates are not filtered."""
        self.branches.append(name)

    def slice(self, start: str) -> None:
        """Drop everything up to and including *start*.

        If *start* is not in the cascade, nothing is dropped.
        """
        if start in self.branches:
            self.branches = self.branches[self.branches.index(start) + 1:]

    def next(self) -> str | None:
        """Return the next branch and advance, or None once exhausted."""
        if self.current >= len(self.branches):
            return None
        name = self.branches[self.current]
        self.current += 1
        return name

    def __iter__(self) -> Iterator[str]:
        while (name := self.next()) is not None:
            yield name

    def __len__(self) -> int:
        return len(self.branches)

    def __repr__(self) -> str:
        return f"Cascade({self.branches!r}, current={self.current})"


class RemoteBranchSource(Protocol):
    def remote_branches(self) -> list[str]: ...


def order_branches(
    names: list[str],
    options: CascadeOptions,
    start_branch: str,
) -> list[str]:
    """Compute the cascade for *start_branch* from a set of branch names.

    Steps:
    1. The branch named exactly ``development_name`` takes the first slot;
       names starting with ``release_prefix`` are release candidates;
       everything else is ignored.
    2. Releases are sorted by the version after the prefix.
    3. The list is truncated to start right after *start_branch* (or kept
       whole if *start_branch* is not in it).
    4. ``stable_name`` is moved to (or appended at) the end.
    """
    development: list[str] = []
    releases: list[str] = []
    for name in names:
        if name == options.development_name:
            development.append(name)
        elif name.startswith(options.release_prefix):
            releases.append(name)

    prefix_len = len(options.release_prefix)
    releases.sort(key=lambda n: version_key(n[prefix_len:]))

    cascade = Cascade(development + releases)
    cascade.slice(start_branch)

    ordered = [b for b in cascade.branches if b != options.stable_name]
    ordered.append(options.stable_name)
    return ordered


def build_cascade(
    client: RemoteBranchSource,
    options: CascadeOptions,
    start_branch: str,
) -> Cascade:
    """Build the cascade for *start_branch* from the client's remote branches.

    Errors raised while enumerating branches propagate unchanged.
    """
    names = client.remote_branches()
    logger.debug("Remote branches: %s", names)
    cascade = Cascade(order_branches(names, options, start_branch))
    logger.info("Cascade from %s: %s", start_branch, " -> ".join(cascade.branches))
    return cascade
