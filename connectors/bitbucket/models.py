"""Normalized resource / entitlement / grant model handed to the governance engine."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Optional

from connectors.bitbucket.errors import InvalidResourceIdError


class ResourceType(str, Enum):
    WORKSPACE = "workspace"
    PROJECT = "project"
    REPOSITORY = "repository"
    USER_GROUP = "user_group"
    USER = "user"

    @property
    def display_name(self) -> str:
        return {
            ResourceType.WORKSPACE: "Workspace",
            ResourceType.PROJECT: "Project",
            ResourceType.REPOSITORY: "Repository",
            ResourceType.USER_GROUP: "UserGroup",
            ResourceType.USER: "User",
        }[self]


class EntitlementKind(str, Enum):
    ASSIGNMENT = "assignment"
    PERMISSION = "permission"


MEMBER = "member"
REPOSITORY_ASSIGNMENT = "repository"

ROLE_READ = "read"
ROLE_WRITE = "write"
ROLE_CREATE_REPO = "create-repo"
ROLE_ADMIN = "admin"
ROLE_NONE = "none"

PROJECT_ROLES: tuple[str, ...] = (ROLE_READ, ROLE_WRITE, ROLE_CREATE_REPO, ROLE_ADMIN)
REPOSITORY_ROLES: tuple[str, ...] = (ROLE_READ, ROLE_WRITE, ROLE_ADMIN)

# Permission roles that can be read from and written to the permissions-config API.
PERMISSION_ROLES: dict[ResourceType, tuple[str, ...]] = {
    ResourceType.PROJECT: PROJECT_ROLES,
    ResourceType.REPOSITORY: REPOSITORY_ROLES,
}

# Binary membership entitlements: slug -> principal types that may hold it.
ASSIGNMENTS: dict[ResourceType, dict[str, tuple[ResourceType, ...]]] = {
    ResourceType.WORKSPACE: {MEMBER: (ResourceType.USER,)},
    ResourceType.PROJECT: {REPOSITORY_ASSIGNMENT: (ResourceType.REPOSITORY,)},
    ResourceType.USER_GROUP: {MEMBER: (ResourceType.USER,)},
}

PERMISSION_GRANTEES: tuple[ResourceType, ...] = (ResourceType.USER, ResourceType.USER_GROUP)


def vocabulary(resource_type: ResourceType) -> tuple[str, ...]:
    """Every entitlement slug a resource of this type exposes, in display order."""
    return tuple(ASSIGNMENTS.get(resource_type, {})) + PERMISSION_ROLES.get(resource_type, ())


@dataclass(frozen=True)
class Resource:
    id: str
    display_name: str
    resource_type: ResourceType
    parent_id: Optional[str] = None
    profile: dict[str, Any] = field(default_factory=dict, compare=False, hash=False)

    def to_dict(self) -> dict[str, Any]:
        """Wire shape: list-valued profile entries become comma-joined strings."""
        profile = {
            k: ",".join(str(v) for v in val) if isinstance(val, (list, tuple)) else val
            for k, val in self.profile.items()
        }
        return {
            "id": self.id,
            "display_name": self.display_name,
            "resource_type": self.resource_type.value,
            "parent_id": self.parent_id,
            "profile": profile,
        }


@dataclass(frozen=True)
class Entitlement:
    resource: Resource
    slug: str
    kind: EntitlementKind
    grantable_to: tuple[ResourceType, ...]
    display_name: str = ""
    description: str = ""

    @property
    def id(self) -> str:
        return f"{self.resource.resource_type.value}:{self.resource.id}:{self.slug}"

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "resource_id": self.resource.id,
            "resource_type": self.resource.resource_type.value,
            "slug": self.slug,
            "kind": self.kind.value,
            "grantable_to": [t.value for t in self.grantable_to],
            "display_name": self.display_name,
            "description": self.description,
        }


@dataclass(frozen=True)
class Grant:
    entitlement: Entitlement
    principal: Resource
    access_path: str = "direct"
    via_group_id: Optional[str] = None

    @property
    def id(self) -> str:
        return (
            f"{self.entitlement.id}:{self.principal.resource_type.value}"
            f":{self.principal.id}"
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "entitlement_id": self.entitlement.id,
            "principal_type": self.principal.resource_type.value,
            "principal_id": self.principal.id,
            "access_path": self.access_path,
            "via_group_id": self.via_group_id,
        }


def parse_entitlement_id(entitlement_id: str) -> tuple[ResourceType, str, str]:
    """Split ``type:resource_id:slug`` back into its parts.

    The resource id itself may contain separators (composite ids), so only
    the first and last segments are peeled off.
    """
    parts = entitlement_id.split(":")
    if len(parts) < 3 or not all(parts):
        raise InvalidResourceIdError(
            f"bitbucket-connector: invalid entitlement id: {entitlement_id!r}"
        )
    try:
        resource_type = ResourceType(parts[0])
    except ValueError:
        raise InvalidResourceIdError(
            f"bitbucket-connector: unknown resource type in entitlement id: {entitlement_id!r}"
        ) from None
    return resource_type, ":".join(parts[1:-1]), parts[-1]
