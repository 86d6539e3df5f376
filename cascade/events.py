"""Webhook payload models (Bitbucket ``pullrequest:fulfilled``).

Only the fields the worker needs are declared; everything else in the
payload is ignored.
"""

from pydantic import BaseModel, ConfigDict, Field


class _Payload(BaseModel):
    model_config = ConfigDict(extra="ignore", populate_by_name=True)


class Owner(_Payload):
    uuid: str


class Repository(_Payload):
    name: str
    uuid: str
    owner: Owner
    full_name: str | None = None

    @property
    def slug(self) -> str:
        """Repository slug for API paths (from ``full_name`` when present)."""
        if self.full_name and "/" in self.full_name:
            return self.full_name.split("/", 1)[1]
        return self.name


class BranchName(_Payload):
    name: str


class Endpoint(_Payload):
    branch: BranchName


class PullRequestInfo(_Payload):
    source: Endpoint
    destination: Endpoint


class PullRequestEvent(_Payload):
    repository: Repository
    pull_request: PullRequestInfo = Field(alias="pullrequest")

    @property
    def destination_branch(self) -> str:
        return self.pull_request.destination.branch.name

    @property
    def source_branch(self) -> str:
        return self.pull_request.source.branch.name
