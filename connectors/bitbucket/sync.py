"""Full sync: walk every resource, entitlement and grant into a JSON-lines sink."""

from __future__ import annotations

import json
import logging
import time
import uuid
from collections import Counter
from typing import Iterator, Optional, TextIO

from connectors.bitbucket.connector import Connector
from connectors.bitbucket.models import Resource, ResourceType
from connectors.bitbucket.scope import Scope

logger = logging.getLogger("bitbucket.sync")

# Child types listed under each parent type, in sync order
CHILD_TYPES: dict[ResourceType, tuple[ResourceType, ...]] = {
    ResourceType.WORKSPACE: (ResourceType.PROJECT, ResourceType.USER_GROUP, ResourceType.USER),
    ResourceType.PROJECT: (ResourceType.REPOSITORY,),
}


class SyncRunner:
    """Drives the connector page by page, the way the governance engine does."""

    def __init__(self, connector: Connector, sink: TextIO) -> None:
        self.connector = connector
        self.sink = sink
        self.counts: Counter[str] = Counter()

    def sync(self) -> dict[str, int]:
        """Run the full sync. Returns {entity_type: records_written}."""
        self.counts = Counter()
        scope = self.connector.validate()
        for workspace in self._pages(scope, ResourceType.WORKSPACE, None):
            self._sync_tree(scope, workspace)
        return dict(self.counts)

    def sync_with_tracking(self) -> dict[str, int]:
        """Wrap sync() with a run id, timing and outcome logging."""
        run_id = str(uuid.uuid4())
        started = time.monotonic()
        logger.info("Sync started", extra={"run_id": run_id})
        try:
            results = self.sync()
        except Exception as exc:
            logger.error(
                "Sync failed: %s",
                exc,
                extra={"run_id": run_id, "duration_s": round(time.monotonic() - started, 3)},
            )
            raise
        total = sum(results.values())
        logger.info(
            "Sync complete",
            extra={
                "records": total,
                "run_id": run_id,
                "duration_s": round(time.monotonic() - started, 3),
            },
        )
        return results

    def _pages(
        self, scope: Scope, resource_type: ResourceType, parent_id: Optional[str]
    ) -> Iterator[Resource]:
        token = ""
        while True:
            resources, token = self.connector.list_resources(
                scope, resource_type, parent_id, token
            )
            yield from resources
            if not token:
                return

    def _sync_tree(self, scope: Scope, resource: Resource) -> None:
        self._sync_resource(resource)
        for child_type in CHILD_TYPES.get(resource.resource_type, ()):
            for child in self._pages(scope, child_type, resource.id):
                self._sync_tree(scope, child)

    def _sync_resource(self, resource: Resource) -> None:
        self._write("resource", resource.to_dict())
        for entitlement in self.connector.list_entitlements(resource):
            self._write("entitlement", entitlement.to_dict())

        token = ""
        while True:
            grants, token = self.connector.list_grants(resource, token)
            for grant in grants:
                self._write("grant", grant.to_dict())
            if not token:
                break
        logger.debug(
            "Synced resource",
            extra={"resource_type": resource.resource_type.value, "resource_id": resource.id},
        )

    def _write(self, kind: str, record: dict) -> None:
        self.sink.write(json.dumps({"kind": kind, **record}, default=str) + "\n")
        self.counts[kind] += 1
