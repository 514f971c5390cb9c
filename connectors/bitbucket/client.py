"""Bitbucket Cloud REST client: workspaces, projects, repositories, groups, permissions."""

from __future__ import annotations

import logging
import threading
import time
from typing import Any, NamedTuple, Optional, Union
from urllib.parse import parse_qs, quote, urlsplit

import requests
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry

from connectors.bitbucket.auth import AuthOption, build_auth
from connectors.bitbucket.config import BitbucketConfig
from connectors.bitbucket.errors import CancelledError, TransportError, error_for_status
from connectors.bitbucket.ids import ProjectId, RepositoryId

logger = logging.getLogger("bitbucket.client")

# Strip hypermedia links from every response to keep payloads small
DEFAULT_FIELDS = ("-links", "-*.links", "-*.*.links")

GROUPS = "groups"
USERS = "users"


class ListPage(NamedTuple):
    values: list[dict]
    next_page: str


def parse_page_from_url(url: str) -> str:
    """Pull the ``page`` query parameter out of a ``next`` link."""
    if not url:
        return ""
    pages = parse_qs(urlsplit(url).query).get("page")
    return pages[0] if pages else ""


def query_params(
    limit: int = 0,
    page: str = "",
    search: str = "",
    fields: tuple[str, ...] = (),
) -> dict[str, str]:
    params: dict[str, str] = {}
    if limit:
        params["pagelen"] = str(limit)
    if page:
        params["page"] = page
    if search:
        params["q"] = search
    params["fields"] = ",".join(DEFAULT_FIELDS + fields)
    return params


def _segment(value: str) -> str:
    return quote(value, safe="")


class BitbucketClient:
    """Thin typed wrapper over ``requests.Session``.

    Non-success statuses become the exceptions in ``errors``. 429 answers are
    retried here with exponential back-off; 502/503/504 are retried by the
    urllib3 adapter mounted on sessions this class creates itself.
    """

    def __init__(
        self,
        base_url: str = "https://api.bitbucket.org/2.0",
        v1_base_url: str = "https://api.bitbucket.org/1.0",
        auth: Optional[AuthOption] = None,
        session: Optional[requests.Session] = None,
        timeout: float = 30.0,
        max_retries: int = 3,
        cancel_event: Optional[threading.Event] = None,
    ) -> None:
        self._base = base_url.rstrip("/")
        self._v1_base = v1_base_url.rstrip("/")
        self._timeout = timeout
        self._max_retries = max_retries
        self._cancel_event = cancel_event

        if session is None:
            session = requests.Session()
            retry = Retry(
                total=max_retries,
                backoff_factor=1,
                status_forcelist=[502, 503, 504],
                allowed_methods=["GET", "PUT", "DELETE"],
                raise_on_status=False,
            )
            adapter = HTTPAdapter(max_retries=retry)
            session.mount("https://", adapter)
            session.mount("http://", adapter)
        self._session = session
        self._session.headers.update({
            "Accept": "application/json",
            "Content-Type": "application/json",
        })
        if auth is not None:
            auth.apply(self._session)

    @classmethod
    def from_config(
        cls,
        config: BitbucketConfig,
        cancel_event: Optional[threading.Event] = None,
        session: Optional[requests.Session] = None,
    ) -> "BitbucketClient":
        return cls(
            base_url=config.api_base_url,
            v1_base_url=config.api_v1_base_url,
            auth=build_auth(config),
            session=session,
            timeout=config.request_timeout,
            max_retries=config.max_retries,
            cancel_event=cancel_event,
        )

    def close(self) -> None:
        self._session.close()

    # ------------------------------------------------------------------
    # Transport
    # ------------------------------------------------------------------

    def _check_cancelled(self) -> None:
        if self._cancel_event is not None and self._cancel_event.is_set():
            raise CancelledError("bitbucket-connector: operation cancelled")

    def _rate_limit_sleep(self, attempt: int, retry_after: Optional[str] = None) -> None:
        """Exponential backoff sleep for rate limiting, interrupted by cancellation."""
        delay = 1.0 * (2 ** attempt)
        if retry_after and retry_after.isdigit():
            delay = float(retry_after)
        delay = min(delay, 60.0)  # cap at 60s
        logger.warning("Rate limited, sleeping %.1fs (attempt %d)", delay, attempt)
        if self._cancel_event is not None:
            if self._cancel_event.wait(delay):
                raise CancelledError("bitbucket-connector: operation cancelled")
        else:
            time.sleep(delay)

    def _request(
        self,
        method: str,
        url: str,
        params: Optional[dict[str, str]] = None,
        body: Any = None,
    ) -> Any:
        attempt = 0
        while True:
            self._check_cancelled()
            logger.debug("API %s %s params=%s", method, url, params)
            try:
                resp = self._session.request(
                    method, url, params=params, json=body, timeout=self._timeout
                )
            except requests.RequestException as exc:
                raise TransportError(f"{method} {url}: {exc}") from exc

            if resp.status_code == 429:
                if attempt >= self._max_retries:
                    raise TransportError(
                        f"{method} {url}: rate limit exceeded after {attempt} retries", 429
                    )
                self._rate_limit_sleep(attempt, resp.headers.get("Retry-After"))
                attempt += 1
                continue

            if resp.status_code >= 300:
                raise error_for_status(resp.status_code, self._error_message(method, url, resp))

            if method == "DELETE" or resp.status_code == 204 or not resp.text:
                return None
            try:
                return resp.json()
            except ValueError as exc:
                raise TransportError(f"{method} {url}: response is not JSON") from exc

    @staticmethod
    def _error_message(method: str, url: str, resp: requests.Response) -> str:
        detail = ""
        try:
            payload = resp.json()
        except ValueError:
            payload = None
        if isinstance(payload, dict) and isinstance(payload.get("error"), dict):
            detail = payload["error"].get("message", "")
        message = f"{method} {url}: request failed with status {resp.status_code}"
        return f"{message}: {detail}" if detail else message

    def get(self, url: str, params: Optional[dict[str, str]] = None) -> Any:
        return self._request("GET", url, params=params)

    def put(self, url: str, body: Any = None, params: Optional[dict[str, str]] = None) -> Any:
        return self._request("PUT", url, params=params, body=body)

    def delete(self, url: str, params: Optional[dict[str, str]] = None) -> None:
        self._request("DELETE", url, params=params)

    def _get_page(self, url: str, params: dict[str, str]) -> ListPage:
        data = self.get(url, params) or {}
        return ListPage(data.get("values", []), parse_page_from_url(data.get("next", "")))

    # ------------------------------------------------------------------
    # Users and workspaces
    # ------------------------------------------------------------------

    def get_current_user(self) -> dict:
        """The user or team the credentials belong to."""
        return self.get(f"{self._base}/user", query_params())

    def get_workspaces(self, limit: int, page: str = "") -> ListPage:
        return self._get_page(f"{self._base}/workspaces", query_params(limit, page))

    def get_all_workspaces(self, page_size: int = 50) -> list[dict]:
        """Follow workspace pages to exhaustion."""
        workspaces: list[dict] = []
        page = ""
        while True:
            batch = self.get_workspaces(page_size, page)
            workspaces.extend(batch.values)
            page = batch.next_page
            if not page:
                return workspaces

    def get_workspace(self, workspace_id: str) -> dict:
        return self.get(f"{self._base}/workspaces/{_segment(workspace_id)}", query_params())

    def get_workspace_members(self, workspace_id: str, limit: int, page: str = "") -> ListPage:
        """Workspace members, unwrapped to their user objects."""
        result = self._get_page(
            f"{self._base}/workspaces/{_segment(workspace_id)}/members",
            query_params(limit, page, fields=("-*.workspace",)),
        )
        return ListPage([m.get("user", {}) for m in result.values], result.next_page)

    def get_workspace_projects(self, workspace_id: str, limit: int, page: str = "") -> ListPage:
        return self._get_page(
            f"{self._base}/workspaces/{_segment(workspace_id)}/projects",
            query_params(limit, page, fields=("-*.workspace", "-*.owner")),
        )

    def get_project_repos(
        self, workspace_id: str, project_id: str, limit: int, page: str = ""
    ) -> ListPage:
        return self._get_page(
            f"{self._base}/repositories/{_segment(workspace_id)}",
            query_params(
                limit,
                page,
                search=f'project.uuid="{project_id}"',
                fields=("-*.workspace", "-*.owner"),
            ),
        )

    # ------------------------------------------------------------------
    # User groups (only exposed by the 1.0 API, unpaginated)
    # ------------------------------------------------------------------

    def get_workspace_user_groups(self, workspace_id: str) -> list[dict]:
        return self.get(f"{self._v1_base}/groups/{_segment(workspace_id)}") or []

    def get_user_group_members(self, workspace_id: str, group_slug: str) -> list[dict]:
        return self.get(
            f"{self._v1_base}/groups/{_segment(workspace_id)}/{_segment(group_slug)}/members"
        ) or []

    def add_user_to_group(self, workspace_id: str, group_slug: str, user_id: str) -> None:
        # the endpoint insists on a JSON body, even an empty one
        self.put(
            f"{self._v1_base}/groups/{_segment(workspace_id)}/{_segment(group_slug)}"
            f"/members/{_segment(user_id)}",
            body={},
        )

    def remove_user_from_group(self, workspace_id: str, group_slug: str, user_id: str) -> None:
        self.delete(
            f"{self._v1_base}/groups/{_segment(workspace_id)}/{_segment(group_slug)}"
            f"/members/{_segment(user_id)}"
        )

    # ------------------------------------------------------------------
    # Explicit project / repository permissions
    # ------------------------------------------------------------------

    def _permissions_url(
        self,
        target: Union[ProjectId, RepositoryId],
        kind: str,
        principal: Optional[str] = None,
    ) -> str:
        if isinstance(target, RepositoryId):
            base = (
                f"{self._base}/repositories/{_segment(target.workspace_id)}"
                f"/{_segment(target.repository_id)}"
            )
        else:
            base = (
                f"{self._base}/workspaces/{_segment(target.workspace_id)}"
                f"/projects/{_segment(target.project_key)}"
            )
        url = f"{base}/permissions-config/{kind}"
        return f"{url}/{_segment(principal)}" if principal else url

    @staticmethod
    def _permission_fields(kind: str) -> tuple[str, ...]:
        return ("-*.*.workspace", "-*.*.owner") if kind == GROUPS else ()

    def list_permissions(
        self,
        target: Union[ProjectId, RepositoryId],
        kind: str,
        limit: int,
        page: str = "",
    ) -> ListPage:
        """Explicit group (``kind="groups"``) or user permissions on a project or repository."""
        return self._get_page(
            self._permissions_url(target, kind),
            query_params(limit, page, fields=self._permission_fields(kind)),
        )

    def get_permission(
        self, target: Union[ProjectId, RepositoryId], kind: str, principal: str
    ) -> dict:
        return self.get(
            self._permissions_url(target, kind, principal),
            query_params(fields=self._permission_fields(kind)),
        )

    def update_permission(
        self,
        target: Union[ProjectId, RepositoryId],
        kind: str,
        principal: str,
        permission: str,
    ) -> None:
        self.put(self._permissions_url(target, kind, principal), body={"permission": permission})

    def delete_permission(
        self, target: Union[ProjectId, RepositoryId], kind: str, principal: str
    ) -> None:
        self.delete(self._permissions_url(target, kind, principal))
