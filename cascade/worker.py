"""Event worker - the single consumer of the webhook event queue.

The HTTP handler only enqueues.  One ``EventWorker.run()`` task drains a
bounded ``asyncio.Queue`` and processes events strictly one at a time, so
at most one cascade run touches the local working copies at any moment.
A full queue makes ``enqueue()`` wait (backpressure, nothing is dropped).

Per event (``process()``, executed in a worker thread via
``asyncio.to_thread`` so git and API I/O never block the event loop):

1. Resolve the clone URL and cascade options from Bitbucket.  Either
   failing skips only this event.
2. Skip ordinary development merges: the destination is on the
   development track and not on the release track.
3. Open (or clone) the repository's working copy; clients are cached per
   repository uuid and reused across events.
4. Run the cascade.  On failure, open a pull request from the failing
   source to the failing target so a human can resolve the conflict.

There is no per-repository locking: the single consumer makes it
unnecessary.  Running several consumers would need a mutex per repository
uuid.
"""

import asyncio
import logging
from typing import Callable

from cascade.bitbucket import BitbucketClient
from cascade.config import Settings
from cascade.errors import InitError, RemoteAPIError
from cascade.events import PullRequestEvent
from cascade.logging_setup import log_repo
from cascade.merge import CascadeMergeState, cascade_merge
from cascade.paths import checkout_path
from cascade.repo import RepositoryClient

logger = logging.getLogger(__name__)

FAILURE_PR_TITLE = "Automatic merge failure"
FAILURE_PR_DESCRIPTION = "There was a merge conflict automatically merging this branch"

ApiFactory = Callable[[str, str], BitbucketClient]


class EventWorker:
    """Bounded event queue plus the logic to process one event."""

    def __init__(self, settings: Settings, api_factory: ApiFactory | None = None):
        self.settings = settings
        self.queue: asyncio.Queue[PullRequestEvent] = asyncio.Queue(maxsize=settings.queue_size)
        self._api_factory = api_factory or self._default_api
        self._clients: dict[str, RepositoryClient] = {}

    def _default_api(self, owner: str, repo_slug: str) -> BitbucketClient:
        return BitbucketClient(
            self.settings.username,
            self.settings.password,
            owner,
            repo_slug,
            api_url=self.settings.api_url,
            timeout=self.settings.api_timeout,
        )

    async def enqueue(self, event: PullRequestEvent) -> None:
        """Queue *event*, waiting while the queue is full."""
        await self.queue.put(event)
        logger.info(
            "Queued merge into %s on %s (%d pending)",
            event.destination_branch, event.repository.name, self.queue.qsize(),
        )

    async def run(self) -> None:
        """Consume events forever, one at a time."""
        logger.info("Event worker started (queue size %d)", self.settings.queue_size)
        while True:
            event = await self.queue.get()
            try:
                await asyncio.to_thread(self.process, event)
            except asyncio.CancelledError:
                raise
            except Exception:
                logger.exception("Unexpected error processing event for %s", event.repository.name)
            finally:
                self.queue.task_done()

    def _client_for(self, event: PullRequestEvent, url: str) -> RepositoryClient:
        key = event.repository.uuid
        client = self._clients.get(key)
        if client is not None and not (client.path / ".git").exists():
            logger.warning("Working copy %s disappeared, cloning again", client.path)
            client = None
        if client is None:
            client, mode = RepositoryClient.open_or_clone(
                checkout_path(self.settings.clone_root, key),
                url,
                credentials=self.settings.credentials,
                author=self.settings.author,
                stable_name=self.settings.stable_branch,
            )
            logger.info("Working copy for %s %s at %s", event.repository.name, mode.value, client.path)
            self._clients[key] = client
        return client

    def process(self, event: PullRequestEvent) -> CascadeMergeState | None:
        """Handle one event.  Returns the cascade outcome, or None if skipped."""
        repo = event.repository
        log_repo.set(repo.full_name or repo.name)
        api = self._api_factory(repo.owner.uuid, repo.slug)

        try:
            url = api.get_clone_url("https")
        except RemoteAPIError as exc:
            logger.error("Cannot read clone url of %s (owner=%s): %s", repo.name, repo.owner.uuid, exc)
            return None

        try:
            options = api.get_cascade_options(self.settings.stable_branch)
        except RemoteAPIError as exc:
            logger.error("Cannot detect cascade options for %s, check branching model: %s", repo.name, exc)
            return None

        destination = event.destination_branch
        if (destination.startswith(options.development_name)
                and not destination.startswith(options.release_prefix)):
            logger.info("Merge into %s is a development merge, not cascading", destination)
            return None

        try:
            client = self._client_for(event, url)
        except InitError as exc:
            logger.error("Failed to initialize git repository for %s: %s", repo.name, exc)
            return None

        state = cascade_merge(client, destination, options)
        if state.success:
            logger.info("Cascade from %s on %s succeeded", destination, repo.name)
            return state

        if state.target_branch is None:
            logger.error("Cascade from %s could not start: %s", destination, state.error)
            return state

        try:
            pr = api.create_pull_request(
                FAILURE_PR_TITLE,
                FAILURE_PR_DESCRIPTION,
                state.source_branch,
                state.target_branch,
            )
        except RemoteAPIError as exc:
            logger.error(
                "Could not create a pull request from %s to %s on %s: %s",
                state.source_branch, state.target_branch, repo.name, exc,
            )
        else:
            logger.warning(
                "Error merging cascade from %s to %s, caused by %s. Created pull request #%d: %s",
                state.source_branch, state.target_branch, state.error, pr.id, pr.link,
            )
        return state
