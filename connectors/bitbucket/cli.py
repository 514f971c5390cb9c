"""CLI entry point: validate, sync, scheduler, grant, revoke."""

from __future__ import annotations

import argparse
import logging
import sys
import threading
from typing import Optional

from connectors.bitbucket.config import ConnectorConfig, load_config
from connectors.bitbucket.connector import Connector
from connectors.bitbucket.entitlements import entitlement as build_entitlement
from connectors.bitbucket.errors import ConnectorError, PreconditionError
from connectors.bitbucket.ids import GroupId, ProjectId, RepositoryId
from connectors.bitbucket.logging_config import configure_logging
from connectors.bitbucket.models import (
    Entitlement,
    Grant,
    Resource,
    ResourceType,
    parse_entitlement_id,
)
from connectors.bitbucket.sync import SyncRunner

logger = logging.getLogger("bitbucket.cli")

PRINCIPAL_CHOICES = [ResourceType.USER.value, ResourceType.USER_GROUP.value]


def build_connector(
    config: ConnectorConfig, cancel_event: Optional[threading.Event] = None
) -> Connector:
    return Connector.from_config(config.bitbucket, cancel_event=cancel_event)


def run_full_sync(
    config: ConnectorConfig,
    output_path: Optional[str] = None,
    cancel_event: Optional[threading.Event] = None,
) -> dict[str, int]:
    """Sync everything into ``output_path`` (stdout when unset)."""
    connector = build_connector(config, cancel_event)
    try:
        if output_path:
            with open(output_path, "w", encoding="utf-8") as sink:
                return SyncRunner(connector, sink).sync_with_tracking()
        return SyncRunner(connector, sys.stdout).sync_with_tracking()
    finally:
        connector.close()


# ----------------------------------------------------------------------
# Rebuilding resources from ids given on the command line
# ----------------------------------------------------------------------


def _parent_of(resource_type: ResourceType, resource_id: str) -> Optional[str]:
    """Check the id's shape and return its parent id."""
    if resource_type is ResourceType.PROJECT:
        return ProjectId.parse(resource_id).workspace_id
    if resource_type is ResourceType.REPOSITORY:
        return RepositoryId.parse(resource_id).project.compose()
    if resource_type is ResourceType.USER_GROUP:
        return GroupId.parse(resource_id).workspace_id
    return None


def resource_from_id(resource_type: ResourceType, resource_id: str) -> Resource:
    return Resource(
        id=resource_id,
        display_name=resource_id,
        resource_type=resource_type,
        parent_id=_parent_of(resource_type, resource_id),
    )


def entitlement_from_id(entitlement_id: str) -> Entitlement:
    resource_type, resource_id, slug = parse_entitlement_id(entitlement_id)
    return build_entitlement(resource_from_id(resource_type, resource_id), slug)


def _principal(args: argparse.Namespace) -> Resource:
    return resource_from_id(ResourceType(args.principal_type), args.principal_id)


# ----------------------------------------------------------------------
# Commands
# ----------------------------------------------------------------------


def cmd_validate(args: argparse.Namespace, config: ConnectorConfig) -> int:
    """Check the credentials and print the resolved scope."""
    connector = build_connector(config)
    try:
        scope = connector.validate()
    finally:
        connector.close()
    print(f"{scope} ({len(scope.workspace_ids)} workspaces)")
    return 0


def cmd_sync(args: argparse.Namespace, config: ConnectorConfig) -> int:
    """Run a one-shot full sync."""
    results = run_full_sync(config, args.output or config.output_path)
    logger.info("Sync results: %s", results)
    return 0


def cmd_scheduler(args: argparse.Namespace, config: ConnectorConfig) -> int:
    """Start the APScheduler-based scheduling loop."""
    from connectors.bitbucket.scheduler import start_scheduler

    start_scheduler(config)
    return 0


def cmd_grant(args: argparse.Namespace, config: ConnectorConfig) -> int:
    target = entitlement_from_id(args.entitlement)
    principal = _principal(args)
    connector = build_connector(config)
    try:
        connector.grant(principal, target)
    finally:
        connector.close()
    return 0


def cmd_revoke(args: argparse.Namespace, config: ConnectorConfig) -> int:
    grant = Grant(entitlement_from_id(args.entitlement), _principal(args))
    connector = build_connector(config)
    try:
        connector.revoke(grant)
    finally:
        connector.close()
    return 0


def _add_provisioning_args(parser: argparse.ArgumentParser) -> None:
    parser.add_argument(
        "--entitlement", "-e",
        required=True,
        help="Entitlement id, e.g. repository:<ws>:<project>:<KEY>:<repo>:write",
    )
    parser.add_argument(
        "--principal-type", "-t",
        choices=PRINCIPAL_CHOICES,
        default=ResourceType.USER.value,
        help="Principal type (default: user)",
    )
    parser.add_argument(
        "--principal-id", "-p",
        required=True,
        help="User uuid, or <workspace>:<group slug> for a user group",
    )


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="bitbucket-connector",
        description="Bitbucket Cloud access-review connector",
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    validate_parser = subparsers.add_parser("validate", help="Validate credentials and scope")
    validate_parser.set_defaults(func=cmd_validate)

    sync_parser = subparsers.add_parser("sync", help="Run one-shot full sync")
    sync_parser.add_argument(
        "--output", "-o",
        default=None,
        help="JSON-lines output file (default: SYNC_OUTPUT_PATH or stdout)",
    )
    sync_parser.set_defaults(func=cmd_sync)

    sched_parser = subparsers.add_parser("scheduler", help="Start scheduled sync loop")
    sched_parser.set_defaults(func=cmd_scheduler)

    grant_parser = subparsers.add_parser("grant", help="Grant an entitlement to a principal")
    _add_provisioning_args(grant_parser)
    grant_parser.set_defaults(func=cmd_grant)

    revoke_parser = subparsers.add_parser("revoke", help="Revoke an entitlement from a principal")
    _add_provisioning_args(revoke_parser)
    revoke_parser.set_defaults(func=cmd_revoke)

    return parser


def main(argv: Optional[list[str]] = None) -> int:
    """Main CLI entry point."""
    args = build_parser().parse_args(argv)
    try:
        config = load_config()
    except ValueError as exc:
        configure_logging()
        logger.error("Invalid configuration: %s", exc)
        return 1
    configure_logging(config.log_level)

    try:
        return args.func(args, config)
    except PreconditionError as exc:
        logger.warning("%s", exc)
        return 0
    except ConnectorError as exc:
        logger.error("%s", exc)
        return 1
