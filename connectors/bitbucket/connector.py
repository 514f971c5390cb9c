"""Inbound facade: the operations the governance engine calls."""

from __future__ import annotations

import logging
import threading
from typing import Optional

import requests

from connectors.bitbucket.client import BitbucketClient
from connectors.bitbucket.config import BitbucketConfig
from connectors.bitbucket.entitlements import EntitlementResolver
from connectors.bitbucket.errors import ConnectorError
from connectors.bitbucket.models import Entitlement, Grant, Resource, ResourceType
from connectors.bitbucket.mutator import GrantMutator
from connectors.bitbucket.scope import Scope, ScopeResolver
from connectors.bitbucket.walker import DEFAULT_PAGE_SIZE, ResourceWalker

logger = logging.getLogger("bitbucket.connector")

PREFIX = "bitbucket-connector:"


class Connector:
    """Wires the client to the scope resolver, walker, resolver and mutator."""

    def __init__(
        self,
        client: BitbucketClient,
        workspaces: tuple[str, ...] = (),
        page_size: int = DEFAULT_PAGE_SIZE,
    ) -> None:
        self.client = client
        self.workspaces = tuple(workspaces)
        self.scope_resolver = ScopeResolver(client)
        self.walker = ResourceWalker(client, page_size)
        self.resolver = EntitlementResolver(client, page_size)
        self.mutator = GrantMutator(client)

    @classmethod
    def from_config(
        cls,
        config: BitbucketConfig,
        cancel_event: Optional[threading.Event] = None,
        session: Optional[requests.Session] = None,
    ) -> "Connector":
        client = BitbucketClient.from_config(config, cancel_event=cancel_event, session=session)
        return cls(client, tuple(config.workspaces), config.page_size)

    def close(self) -> None:
        self.client.close()

    @staticmethod
    def metadata() -> dict[str, str]:
        return {
            "display_name": "Bitbucket",
            "description": "Connector syncing Bitbucket workspaces, projects, repositories, "
            "user groups and users",
        }

    @staticmethod
    def resource_types() -> list[ResourceType]:
        return list(ResourceType)

    def validate(self) -> Scope:
        """Resolve the credential scope; every failure carries the connector prefix."""
        try:
            scope = self.scope_resolver.resolve(self.workspaces)
        except ConnectorError as exc:
            message = str(exc)
            if not message.startswith(PREFIX):
                message = f"{PREFIX} failed to validate credentials: {message}"
            raise type(exc)(message, *self._status_args(exc)) from exc
        self.resolver.reset()
        logger.info(
            "Validated credentials, scope %s",
            scope,
            extra={"records": len(scope.workspace_ids)},
        )
        return scope

    @staticmethod
    def _status_args(exc: ConnectorError) -> tuple:
        status_code = getattr(exc, "status_code", None)
        return (status_code,) if status_code is not None else ()

    def list_resources(
        self,
        scope: Scope,
        resource_type: ResourceType,
        parent_id: Optional[str] = None,
        page_token: str = "",
    ) -> tuple[list[Resource], str]:
        return self.walker.list(scope, resource_type, parent_id, page_token)

    def list_entitlements(self, resource: Resource) -> list[Entitlement]:
        return self.resolver.entitlements_for(resource)

    def list_grants(self, resource: Resource, page_token: str = "") -> tuple[list[Grant], str]:
        return self.resolver.grants(resource, page_token)

    def grant(self, principal: Resource, entitlement: Entitlement) -> None:
        self.mutator.grant(principal, entitlement)

    def revoke(self, grant: Grant) -> None:
        self.mutator.revoke(grant)
