"""Tests for the HTTP client: query params, error mapping, rate limiting, cancellation."""

from __future__ import annotations

import threading
from unittest.mock import MagicMock

import pytest
import requests

from connectors.bitbucket.client import BitbucketClient, parse_page_from_url, query_params
from connectors.bitbucket.errors import (
    BadRequestError,
    CancelledError,
    InvalidArgumentError,
    NotFoundError,
    PermissionDeniedError,
    TransportError,
    UnauthenticatedError,
    error_for_status,
    is_permission_denied,
)
from connectors.bitbucket.ids import ProjectId
from tests.fakes import API, API_V1, WS, FakeBitbucket, FakeResponse


def _mock_session(*responses) -> MagicMock:
    session = MagicMock()
    session.headers = {}
    session.request.side_effect = list(responses)
    return session


class TestQueryParams:
    def test_links_are_always_stripped(self) -> None:
        params = query_params()
        assert params == {"fields": "-links,-*.links,-*.*.links"}

    def test_all_params(self) -> None:
        params = query_params(25, "3", 'project.uuid="{p}"', ("-*.owner",))
        assert params["pagelen"] == "25"
        assert params["page"] == "3"
        assert params["q"] == 'project.uuid="{p}"'
        assert params["fields"].endswith(",-*.owner")

    def test_page_from_next_link(self) -> None:
        assert parse_page_from_url(f"{API}/workspaces?pagelen=1&page=7") == "7"
        assert parse_page_from_url("") == ""
        assert parse_page_from_url(f"{API}/workspaces") == ""


class TestErrorMapping:
    @pytest.mark.parametrize(
        "status,exc_type",
        [
            (400, BadRequestError),
            (422, BadRequestError),
            (401, UnauthenticatedError),
            (403, PermissionDeniedError),
            (404, NotFoundError),
            (500, TransportError),
            (503, TransportError),
        ],
    )
    def test_status_classes(self, status: int, exc_type: type) -> None:
        assert isinstance(error_for_status(status, "boom"), exc_type)

    def test_bad_request_is_an_invalid_argument(self) -> None:
        assert isinstance(error_for_status(400, "boom"), InvalidArgumentError)

    def test_server_errors_are_retryable(self) -> None:
        assert error_for_status(502, "boom").retryable is True
        assert error_for_status(404, "boom").retryable is False

    def test_permission_denied_by_message(self) -> None:
        """An unclassified error mentioning status 403 counts as a denial."""
        assert is_permission_denied(RuntimeError("request failed with status 403"))
        assert not is_permission_denied(RuntimeError("request failed with status 404"))
        assert not is_permission_denied(NotFoundError("status 403 in a 404 body", 404))

    def test_upstream_message_and_status_are_kept(self, client: BitbucketClient) -> None:
        with pytest.raises(NotFoundError) as excinfo:
            client.get_workspace("nope")
        assert excinfo.value.status_code == 404
        assert "workspace nope not found" in str(excinfo.value)
        assert "status 404" in str(excinfo.value)

    def test_connection_error_becomes_transport_error(self) -> None:
        session = _mock_session(requests.ConnectionError("refused"))
        client = BitbucketClient(API, API_V1, session=session)
        with pytest.raises(TransportError) as excinfo:
            client.get_current_user()
        assert excinfo.value.retryable


class TestRateLimit:
    def test_retries_429_then_succeeds(self, monkeypatch) -> None:
        sleeps: list[float] = []
        monkeypatch.setattr("connectors.bitbucket.client.time.sleep", sleeps.append)
        session = _mock_session(
            FakeResponse(429, headers={"Retry-After": "2"}),
            FakeResponse(429),
            FakeResponse(200, {"type": "user", "uuid": "{me}"}),
        )
        client = BitbucketClient(API, API_V1, session=session, max_retries=3)

        assert client.get_current_user()["uuid"] == "{me}"
        assert sleeps == [2.0, 2.0]
        assert session.request.call_count == 3

    def test_gives_up_after_max_retries(self, monkeypatch) -> None:
        monkeypatch.setattr("connectors.bitbucket.client.time.sleep", lambda _: None)
        session = _mock_session(*[FakeResponse(429) for _ in range(3)])
        client = BitbucketClient(API, API_V1, session=session, max_retries=2)

        with pytest.raises(TransportError) as excinfo:
            client.get_current_user()
        assert excinfo.value.status_code == 429
        assert session.request.call_count == 3


class TestCancellation:
    def test_no_request_once_cancelled(self) -> None:
        event = threading.Event()
        event.set()
        session = _mock_session()
        client = BitbucketClient(API, API_V1, session=session, cancel_event=event)

        with pytest.raises(CancelledError):
            client.get_current_user()
        session.request.assert_not_called()

    def test_backoff_wait_is_interrupted(self) -> None:
        event = MagicMock()
        event.is_set.return_value = False
        event.wait.return_value = True
        session = _mock_session(FakeResponse(429))
        client = BitbucketClient(API, API_V1, session=session, cancel_event=event)

        with pytest.raises(CancelledError):
            client.get_current_user()
        assert session.request.call_count == 1


class TestEndpoints:
    def test_members_are_unwrapped(self, client: BitbucketClient) -> None:
        page = client.get_workspace_members(WS, 2)
        assert [u["display_name"] for u in page.values] == ["Alice Doe", "Bob Roe"]
        assert page.next_page == "2"

    def test_repositories_are_filtered_by_project(
        self, client: BitbucketClient, fake: FakeBitbucket
    ) -> None:
        page = client.get_project_repos(WS, "{p-core}", 50)
        assert sorted(r["name"] for r in page.values) == ["api", "worker"]
        _, _, params, _ = fake.calls[-1]
        assert params["q"] == 'project.uuid="{p-core}"'

    def test_add_member_sends_empty_body(self, client: BitbucketClient, fake: FakeBitbucket) -> None:
        client.add_user_to_group(WS, "ops", "{u-alice}")
        method, url, _, body = fake.calls[-1]
        assert method == "PUT"
        assert url == f"{API_V1}/groups/%7Bws-acme%7D/ops/members/%7Bu-alice%7D"
        assert body == {}

    def test_permission_urls(self, client: BitbucketClient, fake: FakeBitbucket) -> None:
        project = ProjectId(WS, "{p-core}", "CORE")
        client.update_permission(project, "users", "{u-bob}", "read")
        method, url, _, body = fake.calls[-1]
        assert method == "PUT"
        assert url.endswith("/workspaces/%7Bws-acme%7D/projects/CORE/permissions-config/users/%7Bu-bob%7D")
        assert body == {"permission": "read"}
        assert client.get_permission(project, "users", "{u-bob}")["permission"] == "read"
