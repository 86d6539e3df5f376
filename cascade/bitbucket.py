"""Bitbucket Cloud API client - the hosting collaborator of the worker.

Only three calls are needed:

- ``get_clone_url()`` - the webhook payload does not carry a clone URL.
- ``get_cascade_options()`` - development branch name and release prefix
  come from the repository's branching model.
- ``create_pull_request()`` - hands a failed cascade hop to a human.

Every failure (transport, HTTP status, unexpected body) raises
``RemoteAPIError``.  Nothing is retried.
"""

import logging
from dataclasses import dataclass
from typing import Any
from urllib.parse import quote

import requests

from cascade.branches import DEFAULT_STABLE_NAME, CascadeOptions
from cascade.errors import RemoteAPIError

logger = logging.getLogger(__name__)

DEFAULT_API_URL = "https://api.bitbucket.org/2.0"


def _obj(value: Any) -> dict:
    """*value* if it is a JSON object, else an empty dict."""
    return value if isinstance(value, dict) else {}


def _objects(value: Any) -> list[dict]:
    """The JSON objects in *value* if it is a list, else nothing."""
    if not isinstance(value, list):
        return []
    return [v for v in value if isinstance(v, dict)]


@dataclass(frozen=True)
class PullRequest:
    """A pull request created on the hosting side."""

    id: int
    link: str


class BitbucketClient:
    """Basic-auth client scoped to one repository."""

    def __init__(
        self,
        username: str,
        password: str,
        owner: str,
        repo_slug: str,
        *,
        api_url: str = DEFAULT_API_URL,
        timeout: float = 30.0,
        session: requests.Session | None = None,
    ):
        self.owner = owner
        self.repo_slug = repo_slug
        self._api_url = api_url.rstrip("/")
        self._timeout = timeout
        self._session = session or requests.Session()
        self._session.auth = (username, password)

    def __repr__(self) -> str:
        return f"BitbucketClient({self.owner!r}, {self.repo_slug!r})"

    @property
    def _repo_url(self) -> str:
        return (
            f"{self._api_url}/repositories/"
            f"{quote(self.owner, safe='')}/{quote(self.repo_slug, safe='')}"
        )

    def _request(self, method: str, url: str, **kwargs: Any) -> dict:
        try:
            resp = self._session.request(method, url, timeout=self._timeout, **kwargs)
            resp.raise_for_status()
            data = resp.json()
        except requests.HTTPError as exc:
            body = exc.response.text[:500] if exc.response is not None else ""
            raise RemoteAPIError(f"{method} {url} failed: {exc}", body) from exc
        except requests.RequestException as exc:
            raise RemoteAPIError(f"{method} {url} failed", str(exc)) from exc
        except ValueError as exc:
            raise RemoteAPIError(f"{method} {url} returned invalid JSON", str(exc)) from exc
        if not isinstance(data, dict):
            raise RemoteAPIError(f"{method} {url} returned an unexpected body", type(data).__name__)
        return data

    def get_clone_url(self, *protocols: str) -> str:
        """Return the clone URL for the first matching protocol.

        Links are scanned in the order the API returns them; with no
        *protocols* the first link wins.
        """
        repo = self._request("GET", self._repo_url)
        for link in _objects(_obj(repo.get("links")).get("clone")):
            href, name = link.get("href"), link.get("name")
            if not href:
                continue
            if not protocols or name in protocols:
                return href
        full_name = repo.get("full_name") or f"{self.owner}/{self.repo_slug}"
        raise RemoteAPIError(f"cannot determine clone url of {full_name}")

    def get_cascade_options(self, stable_name: str = DEFAULT_STABLE_NAME) -> CascadeOptions:
        """Read development name and release prefix from the branching model."""
        model = self._request("GET", f"{self._repo_url}/branching-model")
        development = _obj(model.get("development")).get("name")
        for branch_type in _objects(model.get("branch_types")):
            if branch_type.get("kind") == "release" and development:
                return CascadeOptions(
                    development_name=development,
                    release_prefix=branch_type.get("prefix", ""),
                    stable_name=stable_name,
                )
        raise RemoteAPIError(f"cannot inspect branching model on {self.repo_slug}")

    def create_pull_request(
        self,
        title: str,
        description: str,
        source_branch: str,
        destination_branch: str,
    ) -> PullRequest:
        """Open a pull request from *source_branch* into *destination_branch*."""
        body = {
            "title": title,
            "description": description,
            "source": {"branch": {"name": source_branch}},
            "destination": {"branch": {"name": destination_branch}},
        }
        data = self._request("POST", f"{self._repo_url}/pullrequests", json=body)
        try:
            return PullRequest(
                id=int(data["id"]),
                link=_obj(_obj(data.get("links")).get("html")).get("href", ""),
            )
        except (KeyError, TypeError, ValueError) as exc:
            raise RemoteAPIError("unexpected pull request response", str(exc)) from exc
