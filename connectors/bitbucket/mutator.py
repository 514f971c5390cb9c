"""Apply grant and revoke requests upstream."""

from __future__ import annotations

import logging
from typing import Union

from connectors.bitbucket.client import GROUPS, USERS, BitbucketClient
from connectors.bitbucket.errors import (
    AlreadyGrantedError,
    InvalidArgumentError,
    NotCurrentlyGrantedError,
    NotFoundError,
    ProvisioningNotSupportedError,
    UnsupportedPrincipalError,
    UnsupportedRoleError,
)
from connectors.bitbucket.ids import GroupId, ProjectId, RepositoryId
from connectors.bitbucket.models import (
    MEMBER,
    REPOSITORY_ASSIGNMENT,
    ROLE_NONE,
    Entitlement,
    Grant,
    Resource,
    ResourceType,
    vocabulary,
)

logger = logging.getLogger("bitbucket.mutator")

# Assignments with no upstream endpoint to change them.
_READ_ONLY_ASSIGNMENTS = {
    (ResourceType.WORKSPACE, MEMBER),
    (ResourceType.PROJECT, REPOSITORY_ASSIGNMENT),
}


class GrantMutator:
    def __init__(self, client: BitbucketClient) -> None:
        self.client = client

    def grant(self, principal: Resource, entitlement: Entitlement) -> None:
        self._validate(principal, entitlement)
        resource = entitlement.resource
        if resource.resource_type is ResourceType.USER_GROUP:
            self._add_member(principal, entitlement)
            return

        target = self._target(resource)
        kind, key = self._principal_key(principal, target.workspace_id)
        current = self._current_permission(target, kind, key)
        if current != ROLE_NONE:
            logger.warning(
                "%s %s already has %s permission on %s, overwriting with %s",
                principal.resource_type.value,
                principal.id,
                current,
                resource.id,
                entitlement.slug,
                extra=self._log_extra(principal, entitlement),
            )
        self.client.update_permission(target, kind, key, entitlement.slug)
        logger.info("Granted %s", entitlement.id, extra=self._log_extra(principal, entitlement))

    def revoke(self, grant: Grant) -> None:
        principal, entitlement = grant.principal, grant.entitlement
        self._validate(principal, entitlement)
        resource = entitlement.resource
        if resource.resource_type is ResourceType.USER_GROUP:
            self._remove_member(principal, entitlement)
            return

        target = self._target(resource)
        kind, key = self._principal_key(principal, target.workspace_id)
        current = self._current_permission(target, kind, key)
        if current != entitlement.slug:
            logger.warning(
                "%s %s has %s permission on %s, not %s; removing it anyway",
                principal.resource_type.value,
                principal.id,
                current,
                resource.id,
                entitlement.slug,
                extra=self._log_extra(principal, entitlement),
            )
        try:
            self.client.delete_permission(target, kind, key)
        except NotFoundError:
            logger.info(
                "Permission already absent upstream",
                extra=self._log_extra(principal, entitlement),
            )
            return
        logger.info("Revoked %s", entitlement.id, extra=self._log_extra(principal, entitlement))

    # ------------------------------------------------------------------
    # Validation
    # ------------------------------------------------------------------

    @staticmethod
    def _validate(principal: Resource, entitlement: Entitlement) -> None:
        resource_type = entitlement.resource.resource_type
        if entitlement.slug not in vocabulary(resource_type):
            raise UnsupportedRoleError(
                f"bitbucket-connector: unsupported {resource_type.value} role: {entitlement.slug}"
            )
        if principal.resource_type not in entitlement.grantable_to:
            raise UnsupportedPrincipalError(
                f"bitbucket-connector: {entitlement.slug} on a {resource_type.value} "
                f"cannot be granted to a {principal.resource_type.value}"
            )
        if (resource_type, entitlement.slug) in _READ_ONLY_ASSIGNMENTS:
            raise ProvisioningNotSupportedError(
                f"bitbucket-connector: provisioning {resource_type.value} "
                f"{entitlement.slug} is not supported"
            )
        if principal.resource_type not in (ResourceType.USER, ResourceType.USER_GROUP):
            raise UnsupportedPrincipalError(
                f"bitbucket-connector: unsupported principal type: {principal.resource_type.value}"
            )

    @staticmethod
    def _target(resource: Resource) -> Union[ProjectId, RepositoryId]:
        if resource.resource_type is ResourceType.PROJECT:
            return ProjectId.parse(resource.id)
        if resource.resource_type is ResourceType.REPOSITORY:
            return RepositoryId.parse(resource.id)
        raise InvalidArgumentError(
            f"bitbucket-connector: {resource.resource_type.value} has no permissions"
        )

    @staticmethod
    def _principal_key(principal: Resource, workspace_id: str) -> tuple[str, str]:
        if principal.resource_type is ResourceType.USER:
            return USERS, principal.id
        group_id = GroupId.parse(principal.id)
        if group_id.workspace_id != workspace_id:
            raise InvalidArgumentError(
                f"bitbucket-connector: user group {principal.id} "
                f"does not belong to workspace {workspace_id}"
            )
        return GROUPS, group_id.slug

    def _current_permission(
        self, target: Union[ProjectId, RepositoryId], kind: str, key: str
    ) -> str:
        try:
            record = self.client.get_permission(target, kind, key)
        except NotFoundError:
            return ROLE_NONE
        return (record or {}).get("permission") or ROLE_NONE

    # ------------------------------------------------------------------
    # Group membership
    # ------------------------------------------------------------------

    def _is_member(self, group_id: GroupId, user_id: str) -> bool:
        members = self.client.get_user_group_members(group_id.workspace_id, group_id.slug)
        return any(m.get("uuid") == user_id for m in members)

    def _add_member(self, principal: Resource, entitlement: Entitlement) -> None:
        group_id = GroupId.parse(entitlement.resource.id)
        if self._is_member(group_id, principal.id):
            raise AlreadyGrantedError(
                f"bitbucket-connector: user {principal.id} is already a member "
                f"of group {group_id.slug}"
            )
        self.client.add_user_to_group(group_id.workspace_id, group_id.slug, principal.id)
        logger.info("Granted %s", entitlement.id, extra=self._log_extra(principal, entitlement))

    def _remove_member(self, principal: Resource, entitlement: Entitlement) -> None:
        group_id = GroupId.parse(entitlement.resource.id)
        if not self._is_member(group_id, principal.id):
            raise NotCurrentlyGrantedError(
                f"bitbucket-connector: user {principal.id} is not a member "
                f"of group {group_id.slug}"
            )
        self.client.remove_user_from_group(group_id.workspace_id, group_id.slug, principal.id)
        logger.info("Revoked %s", entitlement.id, extra=self._log_extra(principal, entitlement))

    @staticmethod
    def _log_extra(principal: Resource, entitlement: Entitlement) -> dict:
        return {
            "resource_type": entitlement.resource.resource_type.value,
            "resource_id": entitlement.resource.id,
            "principal_id": principal.id,
            "entitlement": entitlement.slug,
        }
