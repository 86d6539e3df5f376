"""Tests for cascade.merge - end-to-end cascade runs against a real remote."""

import subprocess
from unittest.mock import patch

from cascade.branches import CascadeOptions
from cascade.errors import FetchError, MergeConflictError, PushError
from cascade.merge import CascadeMergeState, cascade_merge


class TestCascadeMergeState:
    def test_success_when_no_error(self):
        state = CascadeMergeState("release/1.0", "master")
        assert state.success
        assert "succeeded" in str(state)

    def test_failure_names_hop(self):
        state = CascadeMergeState("release/1.0", "release/1.2", MergeConflictError("conflict", ["a.txt"]))
        assert not state.success
        assert "release/1.0 -> release/1.2" in str(state)


class TestCascadeScenarios:
    def test_happy_path(self, remote, client):
        """release/1.0 -> release/1.2 -> master, both pushed."""
        fix = remote.commit("release/1.0", "fix.txt", "fix\n")
        old_12 = remote.tip("release/1.2")
        old_master = remote.tip("master")
        old_develop = remote.tip("develop")

        state = cascade_merge(client, "release/1.0", CascadeOptions())

        assert state.success, str(state)
        assert state.source_branch == "release/1.0"
        assert state.target_branch == "master"

        assert remote.parents("release/1.2") == [old_12, fix]
        assert remote.log_format("release/1.2", "%s") == "Automatic merge release/1.0 into release/1.2"
        # master is merged from the updated release/1.2, not from release/1.0
        assert remote.parents("master") == [old_master, remote.tip("release/1.2")]
        assert remote.log_format("master", "%s") == "Automatic merge release/1.2 into master"
        assert remote.show("master", "fix.txt") == "fix"
        # earlier branches are untouched
        assert remote.tip("develop") == old_develop
        assert remote.tip("release/1.0") == fix

    def test_from_development_reaches_every_branch(self, remote, client):
        remote.create_branch("release/1.10")
        remote.commit("develop", "feature.txt", "feature\n")

        state = cascade_merge(client, "develop")

        assert state.success, str(state)
        for branch in ["release/1.0", "release/1.2", "release/1.10", "master"]:
            assert remote.show(branch, "feature.txt") == "feature"
        assert remote.log_format("release/1.10", "%s") == "Automatic merge release/1.2 into release/1.10"
        assert remote.log_format("master", "%s") == "Automatic merge release/1.10 into master"

    def test_rerun_is_idempotent(self, remote, client):
        remote.commit("release/1.0", "fix.txt", "fix\n")
        assert cascade_merge(client, "release/1.0").success
        tips = {b: remote.tip(b) for b in ["release/1.2", "master"]}

        state = cascade_merge(client, "release/1.0")

        assert state.success
        assert {b: remote.tip(b) for b in tips} == tips

    def test_conflict_stops_at_failing_hop(self, remote, client):
        remote.commit("release/1.0", "README.md", "release 1.0 wording\n")
        remote.commit("release/1.2", "README.md", "release 1.2 wording\n")
        old_12 = remote.tip("release/1.2")
        old_master = remote.tip("master")

        state = cascade_merge(client, "release/1.0")

        assert not state.success
        assert state.source_branch == "release/1.0"
        assert state.target_branch == "release/1.2"
        assert isinstance(state.error, MergeConflictError)
        assert remote.tip("release/1.2") == old_12
        assert remote.tip("master") == old_master

    def test_conflict_on_second_hop_keeps_first(self, remote, client):
        remote.commit("release/1.2", "notes.txt", "1.2 notes\n")
        remote.commit("master", "notes.txt", "master notes\n")
        fix = remote.commit("release/1.0", "fix.txt", "fix\n")

        state = cascade_merge(client, "release/1.0")

        assert (state.source_branch, state.target_branch) == ("release/1.2", "master")
        assert fix in remote.parents("release/1.2")

    def test_recovers_after_previous_conflict(self, remote, client):
        remote.commit("release/1.0", "README.md", "release 1.0 wording\n")
        remote.commit("release/1.2", "README.md", "release 1.2 wording\n")
        assert not cascade_merge(client, "release/1.0").success

        # A human resolves the conflict upstream; the next run picks it up.
        remote.commit("release/1.2", "README.md", "release 1.0 wording\n")
        remote.commit("release/1.0", "fix.txt", "fix\n")
        state = cascade_merge(client, "release/1.0")
        assert state.success, str(state)
        assert remote.show("master", "fix.txt") == "fix"

    def test_failure_before_any_target(self, client, tmp_path):
        client._git(["remote", "set-url", "origin", str(tmp_path / "gone.git")])
        state = cascade_merge(client, "release/1.0")
        assert not state.success
        assert isinstance(state.error, FetchError)
        assert state.source_branch == "release/1.0"
        assert state.target_branch is None

    def test_push_failure_names_target(self, remote, client):
        remote.commit("release/1.0", "fix.txt", "fix\n")
        with patch.object(client, "push", side_effect=PushError("rejected")):
            state = cascade_merge(client, "release/1.0")
        assert (state.source_branch, state.target_branch) == ("release/1.0", "release/1.2")
        assert isinstance(state.error, PushError)

    def test_subprocess_timeout_is_reported(self, remote, client):
        with patch.object(client, "fetch", side_effect=subprocess.TimeoutExpired(["git"], 1)):
            state = cascade_merge(client, "release/1.0")
        assert not state.success
        assert state.target_branch is None
