"""Tests for the command line and the scheduled sync job."""

from __future__ import annotations

import json
from unittest.mock import MagicMock

import pytest

from connectors.bitbucket import cli, scheduler
from connectors.bitbucket.client import BitbucketClient
from connectors.bitbucket.config import BitbucketConfig, ConnectorConfig, SchedulerConfig
from connectors.bitbucket.connector import Connector
from connectors.bitbucket.errors import CancelledError, TransportError
from connectors.bitbucket.models import ResourceType
from tests.fakes import ALICE, API_REPO_ID, BOB, CAROL, WS, FakeBitbucket

CONFIG = ConnectorConfig(
    bitbucket=BitbucketConfig(token="t"),
    scheduler=SchedulerConfig(max_retries=2),
)


@pytest.fixture
def wired(monkeypatch, client: BitbucketClient, fake: FakeBitbucket) -> FakeBitbucket:
    monkeypatch.setattr(cli, "load_config", lambda: CONFIG)
    monkeypatch.setattr(cli, "configure_logging", lambda level="INFO": None)
    monkeypatch.setattr(cli, "build_connector", lambda config, cancel_event=None: Connector(client))
    return fake


class TestCommands:
    def test_validate(self, wired: FakeBitbucket, capsys) -> None:
        assert cli.main(["validate"]) == 0
        assert "user:{me} (1 workspaces)" in capsys.readouterr().out
        assert wired.closed

    def test_sync_to_file(self, wired: FakeBitbucket, tmp_path) -> None:
        out = tmp_path / "sync.jsonl"
        assert cli.main(["sync", "--output", str(out)]) == 0
        kinds = {json.loads(line)["kind"] for line in out.read_text().splitlines()}
        assert kinds == {"resource", "entitlement", "grant"}

    def test_grant_group_membership(self, wired: FakeBitbucket) -> None:
        code = cli.main([
            "grant",
            "--entitlement", f"user_group:{WS}:ops:member",
            "--principal-id", BOB["uuid"],
        ])
        assert code == 0
        assert BOB["uuid"] in [m["uuid"] for m in wired.group_members[(WS, "ops")]]

    def test_grant_to_group_principal(self, wired: FakeBitbucket) -> None:
        code = cli.main([
            "grant",
            "--entitlement", f"repository:{API_REPO_ID}:write",
            "--principal-type", "user_group",
            "--principal-id", f"{WS}:devs",
        ])
        assert code == 0
        records = wired.permissions[("repository", WS, "{r-api}", "groups")]
        assert records["devs"]["permission"] == "write"

    def test_precondition_is_only_a_warning(self, wired: FakeBitbucket) -> None:
        code = cli.main([
            "grant",
            "--entitlement", f"user_group:{WS}:ops:member",
            "--principal-id", CAROL["uuid"],
        ])
        assert code == 0
        assert wired.mutating_calls() == []

    def test_revoke(self, wired: FakeBitbucket) -> None:
        code = cli.main([
            "revoke",
            "--entitlement", f"user_group:{WS}:devs:member",
            "--principal-id", ALICE["uuid"],
        ])
        assert code == 0
        assert [m["uuid"] for m in wired.group_members[(WS, "devs")]] == [BOB["uuid"]]

    @pytest.mark.parametrize(
        "entitlement_id",
        [
            "repository:not-a-repo:write",
            f"repository:{API_REPO_ID}:create-repo",
            f"workspace:{WS}:member",
        ],
    )
    def test_rejected_requests_exit_nonzero(self, wired: FakeBitbucket, entitlement_id: str) -> None:
        assert cli.main(["grant", "-e", entitlement_id, "-p", ALICE["uuid"]]) == 1
        assert wired.mutating_calls() == []

    def test_bad_config(self, monkeypatch) -> None:
        def broken():
            raise ValueError("no credentials")

        monkeypatch.setattr(cli, "load_config", broken)
        monkeypatch.setattr(cli, "configure_logging", lambda level="INFO": None)
        assert cli.main(["validate"]) == 1

    def test_entitlement_from_id(self) -> None:
        target = cli.entitlement_from_id(f"repository:{API_REPO_ID}:admin")
        assert target.resource.resource_type is ResourceType.REPOSITORY
        assert target.resource.parent_id == API_REPO_ID.rsplit(":", 1)[0]
        assert target.slug == "admin"


class TestScheduledSync:
    def test_job_is_registered(self) -> None:
        sched = scheduler.build_scheduler(CONFIG, MagicMock())
        jobs = sched.get_jobs()
        assert [j.id for j in jobs] == ["bitbucket_sync"]
        assert jobs[0].max_instances == 1

    def test_retries_then_succeeds(self, monkeypatch) -> None:
        attempts = []

        def flaky(config, output_path, cancel_event):
            attempts.append(output_path)
            if len(attempts) == 1:
                raise TransportError("503", 503)
            return {}

        monkeypatch.setattr(cli, "run_full_sync", flaky)
        event = MagicMock()
        event.wait.return_value = False
        scheduler.run_sync(CONFIG, event)

        assert len(attempts) == 2
        event.wait.assert_called_once_with(scheduler.BACKOFF_BASE_SECONDS)

    def test_gives_up_after_max_retries(self, monkeypatch) -> None:
        def failing(config, output_path, cancel_event):
            raise TransportError("503", 503)

        monkeypatch.setattr(cli, "run_full_sync", failing)
        event = MagicMock()
        event.wait.return_value = False
        with pytest.raises(TransportError):
            scheduler.run_sync(CONFIG, event)
        assert event.wait.call_count == 2

    def test_cancellation_stops_quietly(self, monkeypatch) -> None:
        def cancelled(config, output_path, cancel_event):
            raise CancelledError("stop")

        monkeypatch.setattr(cli, "run_full_sync", cancelled)
        event = MagicMock()
        scheduler.run_sync(CONFIG, event)
        event.wait.assert_not_called()
