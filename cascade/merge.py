"""Cascade merge engine - replay a merged branch into every later branch.

``cascade_merge()`` runs one end-to-end cascade on a repository client:

1. Remove local branches (except stable) and fetch with pruning, so every
   checkout below starts from the current remote tips.
2. Build the cascade for the trigger branch.
3. Check out and reset the trigger branch; it is the first merge source.
4. For each target in the cascade: checkout, reset to ``origin``, merge the
   current source into it, push, and make the target the next source.

The run is linear.  Target N+1 is merged from the
just-updated target N, not from the original trigger, so a change flows
hop by hop and every branch receives it exactly once.

Failure handling:
- The first failing step stops the run.  Nothing is retried and no
  alternate strategy is attempted.
- ``cascade_merge()`` never raises for expected failures; it returns a
  ``CascadeMergeState`` naming the source/target pair that was in flight so
  the caller can open a remediation pull request for exactly that hop.
- Re-running after a failure is safe: every branch is reset to its remote
  tip before it is touched, and targets that already contain the source
  are no-ops.
"""

import logging
import subprocess
from dataclasses import dataclass

from cascade.branches import CascadeOptions, build_cascade
from cascade.errors import CascadeError
from cascade.repo import RepositoryClient

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CascadeMergeState:
    """Outcome of one cascade run.

    ``error`` is None on total success.  Otherwise ``source_branch`` and
    ``target_branch`` identify the failing hop; ``target_branch`` is None
    when the run failed before any target was chosen (sync, build, or
    trigger checkout).
    """

    source_branch: str
    target_branch: str | None = None
    error: Exception | None = None

    @property
    def success(self) -> bool:
        return self.error is None

    def __str__(self) -> str:
        if self.success:
            return f"cascade from {self.source_branch} succeeded"
        hop = f"{self.source_branch} -> {self.target_branch or '?'}"
        return f"cascade failed at {hop}: {self.error}"


def cascade_merge(
    client: RepositoryClient,
    branch_name: str,
    options: CascadeOptions | None = None,
) -> CascadeMergeState:
    """Cascade *branch_name* forward through every later branch.

    *options* defaults to ``CascadeOptions()`` (``develop`` / ``release/`` /
    ``master``).  Returns a ``CascadeMergeState``; never raises for git or
    subprocess failures.
    """
    if options is None:
        options = CascadeOptions()

    source = branch_name
    target: str | None = None
    try:
        client.remove_local_branches()
        client.fetch()
        cascade = build_cascade(client, options, branch_name)

        client.checkout(source)
        client.reset(source)

        for target in cascade:
            client.checkout(target)
            client.reset(target)
            client.merge(source, target)
            client.push(target)
            source = target
    except (CascadeError, OSError, subprocess.SubprocessError) as exc:
        logger.warning("Cascade stopped at %s -> %s: %s", source, target or "?", exc)
        return CascadeMergeState(source_branch=source, target_branch=target, error=exc)

    logger.info("Cascade from %s completed", branch_name)
    return CascadeMergeState(source_branch=branch_name, target_branch=source)
