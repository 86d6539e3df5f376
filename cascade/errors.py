"""Error taxonomy for cascade runs.

Every failure raised by the repository client or the Bitbucket API client
is a ``CascadeError`` subclass, so the merge engine can stop at the exact
step that failed and report it without catching unrelated bugs.
"""


class CascadeError(Exception):
    """Base class for all expected cascade failures."""

    def __init__(self, message: str, detail: str = ""):
        super().__init__(message)
        self.message = message
        self.detail = detail.strip()

    def __str__(self) -> str:
        if self.detail:
            return f"{self.message}: {self.detail}"
        return self.message


class InitError(CascadeError):
    """The local repository could neither be opened nor cloned."""


class FetchError(CascadeError):
    """Fetching from the remote failed (transport or authentication)."""


class BranchError(CascadeError):
    """A local branch could not be deleted, resolved or reset."""


class CommitError(BranchError):
    """Writing a tree or commit failed."""


class CheckoutError(CascadeError):
    """A branch could not be created or checked out."""


class MergeError(CascadeError):
    """The merge command itself failed."""


class MergeAnalysisError(MergeError):
    """The two histories need something other than a normal merge."""


class MergeConflictError(MergeError):
    """The merge left unmerged paths in the index."""

    def __init__(self, message: str, paths: list[str] | None = None):
        self.paths = list(paths or [])
        super().__init__(message, ", ".join(self.paths))


class PushError(CascadeError):
    """The remote rejected the push, or the transport failed."""


class RemoteAPIError(CascadeError):
    """A hosting API call failed or returned an unusable body."""
