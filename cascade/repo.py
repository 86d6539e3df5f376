"""Repository client - one local clone driven through the ``git`` CLI.

The client owns a single working copy bound to one remote (``origin``) and
one credential pair.  It exposes the branch-sync primitives a cascade run
needs:

- ``remove_local_branches()`` - forget every local branch but the stable one,
  so checkouts always rebuild from the current remote tips.
- ``fetch()`` - ``git fetch --prune origin``.
- ``checkout(name)`` - create (if needed) and force-checkout a local branch
  tracking ``origin/<name>``.
- ``reset(name)`` - hard-reset to ``origin/<name>``, discarding local-only
  state (including a merge left half-done by an earlier conflict).
- ``merge(source, destination)`` - merge analysis, then a real two-parent
  merge commit authored as the source tip's author.
- ``push(name)`` - push a single branch ref.
- ``commit(message, *paths)`` - stage, write tree, chain a commit to HEAD.

Credentials are never stored in the repository config.  Each transport
command (clone, fetch, push) gets them as a one-shot
``http.extraHeader`` passed through the environment, so they are
re-presented on every call and never appear in the process arguments.

Every failure raises a ``cascade.errors`` exception carrying git's stderr.
"""

import base64
import enum
import logging
import os
import subprocess
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path

from cascade.branches import DEFAULT_STABLE_NAME
from cascade.errors import (
    BranchError,
    CheckoutError,
    CommitError,
    FetchError,
    InitError,
    MergeAnalysisError,
    MergeConflictError,
    MergeError,
    PushError,
)

logger = logging.getLogger(__name__)

REMOTE_NAME = "origin"
LOCAL_PREFIX = "refs/heads/"
REMOTE_PREFIX = f"refs/remotes/{REMOTE_NAME}/"

GIT_TIMEOUT = 300  # seconds, per git invocation


@dataclass(frozen=True)
class Credentials:
    """Username/password pair handed to git transport only."""

    username: str
    password: str = field(repr=False)

    def auth_header(self) -> str:
        token = base64.b64encode(f"{self.username}:{self.password}".encode()).decode()
        return f"Authorization: Basic {token}"


@dataclass(frozen=True)
class Author:
    """Identity used for commits created by ``commit()``."""

    name: str = "Cascade Merge"
    email: str = "cascade-merge@localhost"


@dataclass(frozen=True)
class BranchRef:
    """A branch short name and whether it is a remote-tracking branch."""

    name: str
    remote: bool = field(default=False, compare=False)


class InitMode(enum.Enum):
    """How ``open_or_clone`` obtained the working copy."""

    OPENED = "opened"
    CLONED = "cloned"


def _run_git(
    args: list[str],
    cwd: str | Path | None,
    env: dict[str, str] | None = None,
    timeout: float = GIT_TIMEOUT,
) -> subprocess.CompletedProcess:
    """Helper to run a git command."""
    full_env = None
    if env:
        full_env = os.environ.copy()
        full_env.update(env)
    return subprocess.run(
        ["git"] + args,
        cwd=str(cwd) if cwd is not None else None,
        capture_output=True,
        text=True,
        timeout=timeout,
        env=full_env,
    )


# Never let git block on an interactive credential prompt.
_NO_PROMPT = {"GIT_TERMINAL_PROMPT": "0"}


def _transport_env(credentials: Credentials | None) -> dict[str, str]:
    """Environment for one clone, fetch or push presenting *credentials*.

    The header travels as ``GIT_CONFIG_*`` variables (git >= 2.31), not as a
    ``-c`` argument, so it never shows up in the process argv.
    """
    env = dict(_NO_PROMPT)
    if credentials is not None:
        env.update({
            "GIT_CONFIG_COUNT": "1",
            "GIT_CONFIG_KEY_0": "http.extraHeader",
            "GIT_CONFIG_VALUE_0": credentials.auth_header(),
        })
    return env


def _is_repository(path: Path) -> bool:
    if not (path / ".git").exists():
        return False
    result = _run_git(["rev-parse", "--git-dir"], cwd=path)
    return result.returncode == 0


class RepositoryClient:
    """Branch-sync primitives over one local clone."""

    def __init__(
        self,
        path: Path,
        credentials: Credentials | None = None,
        author: Author | None = None,
        stable_name: str = DEFAULT_STABLE_NAME,
    ):
        self.path = Path(path)
        self.credentials = credentials
        self.author = author or Author()
        self.stable_name = stable_name

    def __repr__(self) -> str:
        return f"RepositoryClient({str(self.path)!r})"

    # ------------------------------------------------------------------
    # Construction
    # ------------------------------------------------------------------

    @classmethod
    def open_or_clone(
        cls,
        path: Path,
        url: str,
        credentials: Credentials | None = None,
        author: Author | None = None,
        stable_name: str = DEFAULT_STABLE_NAME,
    ) -> tuple["RepositoryClient", InitMode]:
        """Open the repository at *path*, or clone *url* into it.

        Returns the client and whether it was opened or freshly cloned.
        Raises ``InitError`` if *path* or *url* is empty, or if the clone
        fails.
        """
        if not url or not str(path):
            raise InitError("invalid client options", f"path={path!r} url={url!r}")

        path = Path(path)
        client = cls(path, credentials=credentials, author=author, stable_name=stable_name)
        if _is_repository(path):
            logger.info("Opened existing repository at %s", path)
            return client, InitMode.OPENED

        path.parent.mkdir(parents=True, exist_ok=True)
        result = _run_git(
            ["clone", url, str(path)],
            cwd=None,
            env=_transport_env(credentials),
        )
        if result.returncode != 0:
            raise InitError(f"cannot initialize repository at {url}", result.stderr)
        logger.info("Cloned %s into %s", url, path)
        return client, InitMode.CLONED

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def _git(self, args: list[str], env: dict[str, str] | None = None) -> subprocess.CompletedProcess:
        return _run_git(args, cwd=self.path, env=env)

    def _ref_exists(self, ref: str) -> bool:
        return self._git(["rev-parse", "--verify", "--quiet", ref]).returncode == 0

    def _list_refs(self, prefix: str) -> list[str]:
        result = self._git(["for-each-ref", "--format=%(refname)", prefix])
        if result.returncode != 0:
            raise BranchError(f"cannot list branches under {prefix}", result.stderr)
        return [line[len(prefix):] for line in result.stdout.splitlines() if line.startswith(prefix)]

    def branches(self, remote: bool = False) -> list[BranchRef]:
        """List local (or ``origin`` remote-tracking) branches, sorted by name."""
        prefix = REMOTE_PREFIX if remote else LOCAL_PREFIX
        names = self._list_refs(prefix)
        if remote:
            names = [n for n in names if n != "HEAD"]
        return [BranchRef(n, remote=remote) for n in names]

    def remote_branches(self) -> list[str]:
        """Short names of the ``origin`` remote-tracking branches."""
        return [b.name for b in self.branches(remote=True)]

    def local_branches(self) -> list[str]:
        return [b.name for b in self.branches(remote=False)]

    def rev_parse(self, ref: str) -> str:
        """Resolve *ref* to a commit SHA.  Raises ``BranchError``."""
        result = self._git(["rev-parse", "--verify", f"{ref}^{{commit}}"])
        if result.returncode != 0:
            raise BranchError(f"cannot resolve {ref}", result.stderr)
        return result.stdout.strip()

    def current_branch(self) -> str | None:
        """Name of the checked-out branch, or None when HEAD is detached."""
        result = self._git(["symbolic-ref", "--quiet", "--short", "HEAD"])
        if result.returncode != 0:
            return None
        return result.stdout.strip()

    # ------------------------------------------------------------------
    # Branch sync primitives
    # ------------------------------------------------------------------

    def remove_local_branches(self) -> None:
        """Delete every local branch except the stable branch.

        HEAD is detached first so the branch currently checked out can be
        deleted too.  Raises ``BranchError`` on the first failed deletion.
        """
        if self._ref_exists("HEAD"):
            result = self._git(["checkout", "--force", "--detach"])
            if result.returncode != 0:
                raise BranchError("cannot detach HEAD", result.stderr)

        for name in self.local_branches():
            if name == self.stable_name:
                continue
            result = self._git(["branch", "-D", name])
            if result.returncode != 0:
                raise BranchError(f"cannot delete local branch {name}", result.stderr)
            logger.debug("Deleted local branch %s", name)

    def fetch(self) -> None:
        """Fetch ``origin`` with pruning of deleted branches."""
        result = self._git(
            ["fetch", "--prune", REMOTE_NAME],
            env=_transport_env(self.credentials),
        )
        if result.returncode != 0:
            raise FetchError(f"cannot fetch {REMOTE_NAME}", result.stderr)

    def checkout(self, branch_name: str) -> None:
        """Check out *branch_name*, creating it from ``origin`` if needed.

        A missing local branch is created from the remote tip with its
        upstream set, or from the current HEAD commit when there is no
        remote counterpart.  The checkout is forced: local differences are
        disposable and the incoming tree wins.
        """
        remote_ref = f"{REMOTE_PREFIX}{branch_name}"
        if not self._ref_exists(f"{LOCAL_PREFIX}{branch_name}"):
            if self._ref_exists(remote_ref):
                args = ["branch", "--track", branch_name, f"{REMOTE_NAME}/{branch_name}"]
            else:
                args = ["branch", branch_name, "HEAD"]
            result = self._git(args)
            if result.returncode != 0:
                raise CheckoutError(f"cannot create local branch {branch_name}", result.stderr)

        result = self._git(["checkout", "--force", branch_name])
        if result.returncode != 0:
            raise CheckoutError(f"cannot checkout {branch_name}", result.stderr)

    def reset(self, branch_name: str) -> None:
        """Hard-reset the checked-out branch to ``origin/<branch_name>``."""
        remote_ref = f"{REMOTE_PREFIX}{branch_name}"
        if not self._ref_exists(remote_ref):
            raise BranchError(f"no remote branch {REMOTE_NAME}/{branch_name}")
        result = self._git(["reset", "--hard", remote_ref])
        if result.returncode != 0:
            raise BranchError(f"cannot reset {branch_name}", result.stderr)

    def _conflicted_paths(self) -> list[str]:
        result = self._git(["diff", "--name-only", "--diff-filter=U"])
        return [p for p in result.stdout.splitlines() if p]

    def _author_env(self, commit: str) -> dict[str, str]:
        """Author and committer env vars copied from *commit*'s author."""
        result = self._git(["log", "-1", "--format=%an%x00%ae%x00%aI", commit])
        if result.returncode != 0:
            raise MergeError(f"cannot read author of {commit}", result.stderr)
        name, email, date = result.stdout.rstrip("\n").split("\x00")
        return {
            "GIT_AUTHOR_NAME": name,
            "GIT_AUTHOR_EMAIL": email,
            "GIT_AUTHOR_DATE": date,
            "GIT_COMMITTER_NAME": name,
            "GIT_COMMITTER_EMAIL": email,
            "GIT_COMMITTER_DATE": date,
        }

    def merge(self, source_branch: str, destination_branch: str) -> bool:
        """Merge local *source_branch* into the checked-out *destination_branch*.

        Returns False when the destination already contains the source
        (nothing to do), True when a merge commit was created.

        Raises:
            MergeAnalysisError: the histories are unrelated.
            MergeConflictError: the merge left unmerged paths.  The merge
                state is left in place; the next ``reset()`` discards it.
            MergeError: any other merge failure.
        """
        logger.info("Merging %s into %s", source_branch, destination_branch)
        source_sha = self.rev_parse(f"{LOCAL_PREFIX}{source_branch}")
        head_sha = self.rev_parse("HEAD")

        if source_sha == head_sha:
            logger.info("%s is up to date with %s", destination_branch, source_branch)
            return False

        base = self._git(["merge-base", head_sha, source_sha])
        if base.returncode != 0 or not base.stdout.strip():
            raise MergeAnalysisError(
                f"{source_branch} and {destination_branch} have no common history",
            )
        if base.stdout.strip() == source_sha:
            logger.info("%s already contains %s", destination_branch, source_branch)
            return False

        env = self._author_env(source_sha)
        result = self._git(
            ["merge", "--no-ff", "--no-commit", "--no-edit", source_sha],
            env=env,
        )
        conflicts = self._conflicted_paths()
        if conflicts:
            raise MergeConflictError(
                f"merging {source_branch} into {destination_branch} resulted in conflicts",
                conflicts,
            )
        if result.returncode != 0:
            raise MergeError(
                f"cannot merge {source_branch} into {destination_branch}",
                result.stderr + result.stdout,
            )

        message = f"Automatic merge {source_branch} into {destination_branch}"
        result = self._git(["commit", "--no-verify", "-m", message], env=env)
        if result.returncode != 0:
            raise MergeError(
                f"cannot commit merge of {source_branch} into {destination_branch}",
                result.stderr + result.stdout,
            )
        logger.info("Merged %s into %s", source_branch, destination_branch)
        return True

    def push(self, branch_name: str) -> None:
        """Push the local branch to ``origin`` under ``refs/heads/``."""
        refspec = f"{LOCAL_PREFIX}{branch_name}:{LOCAL_PREFIX}{branch_name}"
        result = self._git(
            ["push", REMOTE_NAME, refspec],
            env=_transport_env(self.credentials),
        )
        if result.returncode != 0:
            raise PushError(f"cannot push {branch_name}", result.stderr)
        logger.info("Pushed %s", branch_name)

    def commit(self, message: str, *paths: str) -> str:
        """Stage *paths* and commit them on top of HEAD.

        Creates a root commit when HEAD is unborn.  Uses the configured
        author for both author and committer, dated now.  Returns the new
        commit SHA.
        """
        if paths:
            result = self._git(["add", "--"] + list(paths))
            if result.returncode != 0:
                raise CommitError("cannot stage paths", result.stderr)

        tree = self._git(["write-tree"])
        if tree.returncode != 0:
            raise CommitError("cannot write tree", tree.stderr)

        args = ["commit-tree", "-m", message]
        if self._ref_exists("HEAD"):
            args += ["-p", "HEAD"]
        args.append(tree.stdout.strip())

        now = datetime.now(timezone.utc).isoformat()
        env = {
            "GIT_AUTHOR_NAME": self.author.name,
            "GIT_AUTHOR_EMAIL": self.author.email,
            "GIT_AUTHOR_DATE": now,
            "GIT_COMMITTER_NAME": self.author.name,
            "GIT_COMMITTER_EMAIL": self.author.email,
            "GIT_COMMITTER_DATE": now,
        }
        created = self._git(args, env=env)
        if created.returncode != 0:
            raise CommitError("cannot create commit", created.stderr)
        sha = created.stdout.strip()

        result = self._git(["update-ref", "-m", f"commit: {message}", "HEAD", sha])
        if result.returncode != 0:
            raise CommitError("cannot update HEAD", result.stderr)
        return sha
