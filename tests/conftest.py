"""Shared test fixtures for cascade tests.

Git fixtures use real repositories in ``tmp_path``: a bare ``origin`` plus
a "seed" clone used to push upstream changes, laid out as::

    master, develop, release/1.0, release/1.2   (all from one root commit)
"""

import subprocess
from dataclasses import dataclass
from pathlib import Path

import pytest

from cascade.config import Settings
from cascade.repo import RepositoryClient

GIT_IDENTITY = ["-c", "user.name=Test", "-c", "user.email=test@test.com"]

STANDARD_BRANCHES = ["develop", "release/1.0", "release/1.2"]


def git(cwd: Path, *args: str) -> str:
    """Run a git command in *cwd* and return its stripped stdout."""
    result = subprocess.run(
        ["git", *GIT_IDENTITY, *args],
        cwd=str(cwd),
        capture_output=True,
        text=True,
        check=True,
    )
    return result.stdout.strip()


@dataclass
class RemoteRepo:
    """A bare origin plus a seed clone for pushing upstream changes."""

    bare: Path
    seed: Path

    @property
    def url(self) -> str:
        return str(self.bare)

    def create_branch(self, name: str, start: str = "master") -> None:
        git(self.seed, "branch", name, start)
        git(self.seed, "push", "origin", name)

    def delete_branch(self, name: str) -> None:
        git(self.seed, "push", "origin", "--delete", name)

    def commit(
        self,
        branch: str,
        filename: str,
        content: str,
        message: str | None = None,
        author: str | None = None,
    ) -> str:
        """Commit *content* to *filename* on *branch* and push it."""
        git(self.seed, "fetch", "origin")
        git(self.seed, "checkout", "-B", branch, f"origin/{branch}")
        (self.seed / filename).write_text(content)
        git(self.seed, "add", filename)
        args = ["commit", "-m", message or f"Update {filename} on {branch}"]
        if author:
            args += ["--author", author]
        git(self.seed, *args)
        git(self.seed, "push", "origin", branch)
        return git(self.seed, "rev-parse", "HEAD")

    def create_orphan_branch(self, name: str, filename: str, content: str) -> None:
        """Push a branch sharing no history with the others."""
        git(self.seed, "checkout", "--orphan", name)
        git(self.seed, "rm", "-rf", "--quiet", ".")
        (self.seed / filename).write_text(content)
        git(self.seed, "add", filename)
        git(self.seed, "commit", "-m", f"Orphan {name}")
        git(self.seed, "push", "origin", name)
        git(self.seed, "checkout", "--force", "master")

    def tip(self, branch: str) -> str:
        return git(self.bare, "rev-parse", f"refs/heads/{branch}")

    def parents(self, branch: str) -> list[str]:
        return git(self.bare, "log", "-1", "--format=%P", f"refs/heads/{branch}").split()

    def show(self, branch: str, path: str) -> str:
        return git(self.bare, "show", f"refs/heads/{branch}:{path}")

    def log_format(self, branch: str, fmt: str) -> str:
        return git(self.bare, "log", "-1", f"--format={fmt}", f"refs/heads/{branch}")


@pytest.fixture
def remote(tmp_path) -> RemoteRepo:
    """A remote with master, develop, release/1.0 and release/1.2."""
    bare = tmp_path / "origin.git"
    subprocess.run(
        ["git", "init", "--bare", "-b", "master", str(bare)],
        capture_output=True, check=True,
    )

    seed = tmp_path / "seed"
    seed.mkdir()
    git(seed, "init", "-b", "master")
    (seed / "README.md").write_text("# Test repo\n")
    git(seed, "add", ".")
    git(seed, "commit", "-m", "Initial commit")
    git(seed, "remote", "add", "origin", str(bare))
    git(seed, "push", "origin", "master")

    repo = RemoteRepo(bare=bare, seed=seed)
    for name in STANDARD_BRANCHES:
        repo.create_branch(name)
    return repo


@pytest.fixture
def client(remote, tmp_path) -> RepositoryClient:
    """A repository client over a fresh clone of *remote*."""
    c, _ = RepositoryClient.open_or_clone(tmp_path / "work", remote.url)
    return c


@pytest.fixture
def settings(tmp_path) -> Settings:
    return Settings(home=tmp_path / "home", workdir=tmp_path / "clones", token="s3cret")
