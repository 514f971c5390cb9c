"""Work out which workspaces a set of credentials can sync.

Workspace/team access tokens are pinned to a single workspace. User
credentials (app passwords, OAuth consumers) see every workspace the user
belongs to; those are narrowed to the configured slugs and then probed,
because the API has no endpoint that reports what the caller may read.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Iterable

from connectors.bitbucket.client import BitbucketClient
from connectors.bitbucket.errors import (
    InvalidArgumentError,
    NoAuthenticatedWorkspacesError,
    is_permission_denied,
)

logger = logging.getLogger("bitbucket.scope")

DISCOVERY_PAGE_SIZE = 50


class ScopeKind(str, Enum):
    USER = "user"
    WORKSPACE = "workspace"


@dataclass(frozen=True)
class Scope:
    kind: ScopeKind
    identity: str
    workspace_ids: tuple[str, ...]

    @classmethod
    def for_workspace(cls, workspace_id: str) -> "Scope":
        return cls(ScopeKind.WORKSPACE, workspace_id, (workspace_id,))

    @property
    def is_workspace_scoped(self) -> bool:
        return self.kind is ScopeKind.WORKSPACE

    def includes(self, workspace_id: str) -> bool:
        return workspace_id in self.workspace_ids

    def __str__(self) -> str:
        return f"{self.kind.value}:{self.identity}"


def should_include_workspace(allowed: frozenset[str], slug: str) -> bool:
    # nothing selected means every workspace
    return not allowed or slug in allowed


class ScopeResolver:
    def __init__(self, client: BitbucketClient) -> None:
        self.client = client

    def resolve(self, allowed_slugs: Iterable[str] = ()) -> Scope:
        """One current-user lookup, then discovery for user-level credentials."""
        identity = self.client.get_current_user()
        identity_type = identity.get("type")
        identity_id = identity.get("uuid", "")

        if identity_type == "team":
            scope = Scope.for_workspace(identity_id)
            logger.info("Credentials are workspace scoped", extra={"workspace_id": identity_id})
            return scope
        if identity_type != "user":
            raise InvalidArgumentError(
                f"bitbucket-connector: unsupported user type: {identity_type}"
            )

        workspace_ids = self.discover(frozenset(allowed_slugs))
        logger.info(
            "Resolved %d workspaces for user %s",
            len(workspace_ids),
            identity.get("username") or identity_id,
            extra={"records": len(workspace_ids)},
        )
        return Scope(ScopeKind.USER, identity_id, workspace_ids)

    def discover(self, allowed: frozenset[str]) -> tuple[str, ...]:
        workspace_ids: list[str] = []
        for workspace in self.client.get_all_workspaces(DISCOVERY_PAGE_SIZE):
            if not should_include_workspace(allowed, workspace.get("slug", "")):
                continue
            if self.check_permissions(workspace):
                workspace_ids.append(workspace["uuid"])

        if not workspace_ids:
            raise NoAuthenticatedWorkspacesError(
                "bitbucket-connector: no authenticated workspaces found"
            )
        return tuple(workspace_ids)

    def check_permissions(self, workspace: dict) -> bool:
        """Probe the three listings every workspace sync needs.

        A 403 on any of them excludes the workspace; any other failure is
        raised to the caller.
        """
        workspace_id = workspace["uuid"]
        probes = (
            ("userGroups", lambda: self.client.get_workspace_user_groups(workspace_id)),
            ("users", lambda: self.client.get_workspace_members(workspace_id, 1)),
            ("projects", lambda: self.client.get_workspace_projects(workspace_id, 1)),
        )
        for obj, probe in probes:
            try:
                probe()
            except Exception as exc:
                if not is_permission_denied(exc):
                    raise
                logger.error(
                    "missing permission to list %s in workspace %s, excluding it: %s",
                    obj,
                    workspace.get("slug"),
                    exc,
                    extra={"workspace": workspace.get("slug"), "workspace_id": workspace_id},
                )
                return False
        return True
