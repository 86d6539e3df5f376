"""Tests for cascade.bitbucket with a mocked requests session."""

from unittest.mock import MagicMock

import pytest
import requests

from cascade.bitbucket import BitbucketClient, PullRequest
from cascade.branches import CascadeOptions
from cascade.errors import RemoteAPIError

API = "https://api.example.test/2.0"


def _response(payload=None, status=200):
    resp = MagicMock()
    resp.status_code = status
    resp.json.return_value = payload
    resp.text = str(payload)
    if status >= 400:
        resp.raise_for_status.side_effect = requests.HTTPError(f"{status} Error", response=resp)
    return resp


def _client(*responses, owner="{owner-1}", slug="widgets"):
    session = MagicMock()
    session.request.side_effect = list(responses)
    client = BitbucketClient("bot", "app-pass", owner, slug, api_url=API + "/", session=session)
    return client, session


REPO = {
    "full_name": "acme/widgets",
    "links": {
        "clone": [
            {"name": "ssh", "href": "git@bitbucket.org:acme/widgets.git"},
            {"name": "https", "href": "https://bot@bitbucket.org/acme/widgets.git"},
        ],
    },
}


class TestCloneUrl:
    def test_picks_requested_protocol(self):
        client, session = _client(_response(REPO))
        assert client.get_clone_url("https") == "https://bot@bitbucket.org/acme/widgets.git"
        method, url = session.request.call_args.args
        assert method == "GET"
        assert url == f"{API}/repositories/%7Bowner-1%7D/widgets"

    def test_without_protocol_first_link_wins(self):
        client, _ = _client(_response(REPO))
        assert client.get_clone_url() == "git@bitbucket.org:acme/widgets.git"

    def test_no_matching_link(self):
        client, _ = _client(_response(REPO))
        with pytest.raises(RemoteAPIError, match="cannot determine clone url of acme/widgets"):
            client.get_clone_url("svn")

    def test_uses_basic_auth(self):
        client, session = _client(_response(REPO))
        assert session.auth == ("bot", "app-pass")
        assert "app-pass" not in repr(client)


class TestCascadeOptions:
    def test_reads_branching_model(self):
        model = {
            "development": {"name": "develop"},
            "branch_types": [
                {"kind": "feature", "prefix": "feature/"},
                {"kind": "release", "prefix": "release/"},
            ],
        }
        client, session = _client(_response(model))
        assert client.get_cascade_options("main") == CascadeOptions("develop", "release/", "main")
        assert session.request.call_args.args[1].endswith("/widgets/branching-model")

    def test_missing_release_type(self):
        model = {"development": {"name": "develop"}, "branch_types": [{"kind": "hotfix", "prefix": "hotfix/"}]}
        client, _ = _client(_response(model))
        with pytest.raises(RemoteAPIError, match="cannot inspect branching model"):
            client.get_cascade_options()

    def test_missing_development_branch(self):
        model = {"branch_types": [{"kind": "release", "prefix": "release/"}]}
        client, _ = _client(_response(model))
        with pytest.raises(RemoteAPIError):
            client.get_cascade_options()


class TestCreatePullRequest:
    def test_posts_branches(self):
        created = {"id": 7, "links": {"html": {"href": "https://bitbucket.org/acme/widgets/pull-requests/7"}}}
        client, session = _client(_response(created))

        pr = client.create_pull_request("Automatic merge failure", "conflict", "release/1.0", "release/1.2")

        assert pr == PullRequest(7, "https://bitbucket.org/acme/widgets/pull-requests/7")
        call = session.request.call_args
        assert call.args == ("POST", f"{API}/repositories/%7Bowner-1%7D/widgets/pullrequests")
        assert call.kwargs["json"] == {
            "title": "Automatic merge failure",
            "description": "conflict",
            "source": {"branch": {"name": "release/1.0"}},
            "destination": {"branch": {"name": "release/1.2"}},
        }

    def test_unexpected_body(self):
        client, _ = _client(_response({"links": {}}))
        with pytest.raises(RemoteAPIError, match="unexpected pull request response"):
            client.create_pull_request("t", "d", "a", "b")


class TestErrors:
    def test_http_status_is_remote_error(self):
        client, _ = _client(_response({"error": {"message": "Forbidden"}}, status=403))
        with pytest.raises(RemoteAPIError) as exc_info:
            client.get_clone_url("https")
        assert "Forbidden" in exc_info.value.detail

    def test_transport_failure_is_remote_error(self):
        client, _ = _client(requests.ConnectionError("unreachable"))
        with pytest.raises(RemoteAPIError, match="GET"):
            client.get_cascade_options()

    def test_invalid_json(self):
        resp = _response()
        resp.json.side_effect = ValueError("Expecting value")
        client, _ = _client(resp)
        with pytest.raises(RemoteAPIError, match="invalid JSON"):
            client.get_clone_url()

    def test_json_array_body(self):
        client, _ = _client(_response([{"name": "https"}]))
        with pytest.raises(RemoteAPIError, match="unexpected body"):
            client.get_clone_url("https")

    def test_null_links(self):
        client, _ = _client(_response({"full_name": "acme/widgets", "links": None}))
        with pytest.raises(RemoteAPIError, match="cannot determine clone url"):
            client.get_clone_url("https")

    def test_odd_branching_model_shapes(self):
        model = {"development": "develop", "branch_types": {"kind": "release"}}
        client, _ = _client(_response(model))
        with pytest.raises(RemoteAPIError, match="cannot inspect branching model"):
            client.get_cascade_options()

    def test_pull_request_with_null_links(self):
        client, _ = _client(_response({"id": 9, "links": None}))
        assert client.create_pull_request("t", "d", "a", "b") == PullRequest(9, "")
