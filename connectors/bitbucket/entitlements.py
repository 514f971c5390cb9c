"""Entitlements and grants for each resource type.

Project and repository grants come from several upstream listings walked
one after another under a single page token. Group permissions on a project
are also expanded into the group's members, so a user can be reached both
through a group and directly; the resolver remembers what it has emitted for
a resource until that resource's walk finishes and drops the repeats.

A page's grants are only remembered once the page is returned, so retrying a
token after an upstream error yields the same page again. An empty token
starts the walk over. A direct user permission wins over the same role held
through a group: the group expansion skips members whose direct permission
on the project already carries that role, and the user phase reports them.
"""

from __future__ import annotations

import logging
from typing import Optional, Union

from connectors.bitbucket import pagination
from connectors.bitbucket.client import GROUPS, USERS, BitbucketClient
from connectors.bitbucket.errors import UnsupportedRoleError
from connectors.bitbucket.ids import GroupId, ProjectId, RepositoryId
from connectors.bitbucket.models import (
    ASSIGNMENTS,
    MEMBER,
    PERMISSION_GRANTEES,
    PERMISSION_ROLES,
    REPOSITORY_ASSIGNMENT,
    Entitlement,
    EntitlementKind,
    Grant,
    Resource,
    ResourceType,
    vocabulary,
)
from connectors.bitbucket.walker import (
    DEFAULT_PAGE_SIZE,
    repository_resource,
    user_group_resource,
    user_resource,
)

logger = logging.getLogger("bitbucket.entitlements")

GrantPage = tuple[list[Grant], str]
EmittedKey = tuple[str, str]


def _describe(resource: Resource, slug: str) -> tuple[str, str]:
    type_name = resource.resource_type.display_name
    if slug == MEMBER:
        return (
            f"{resource.display_name} {type_name} {slug.title()}",
            f"Member of the {resource.display_name} {type_name.lower()} in Bitbucket",
        )
    if slug == REPOSITORY_ASSIGNMENT:
        return (
            f"{resource.display_name} {type_name} {slug}",
            f"Repository belonging to the {resource.display_name} project in Bitbucket",
        )
    return (
        f"{resource.display_name} {type_name} {slug}",
        f"{slug.title()} access to {resource.display_name} {type_name.lower()} in Bitbucket",
    )


def entitlement(resource: Resource, slug: str) -> Entitlement:
    """Build one entitlement of ``resource`` from the fixed vocabulary."""
    assignments = ASSIGNMENTS.get(resource.resource_type, {})
    if slug in assignments:
        kind, grantable_to = EntitlementKind.ASSIGNMENT, assignments[slug]
    elif slug in PERMISSION_ROLES.get(resource.resource_type, ()):
        kind, grantable_to = EntitlementKind.PERMISSION, PERMISSION_GRANTEES
    else:
        raise UnsupportedRoleError(
            f"bitbucket-connector: unsupported {resource.resource_type.value} role: {slug}"
        )
    display_name, description = _describe(resource, slug)
    return Entitlement(
        resource=resource,
        slug=slug,
        kind=kind,
        grantable_to=grantable_to,
        display_name=display_name,
        description=description,
    )


class _PageBuilder:
    """Grants for one page, checked against what earlier pages emitted."""

    def __init__(self, resource: Resource, emitted: set[EmittedKey]) -> None:
        self.resource = resource
        self.emitted = emitted
        self.keys: set[EmittedKey] = set()
        self.grants: list[Grant] = []

    def add(self, slug: str, principal: Resource, via_group: Optional[Resource] = None) -> None:
        key = (slug, principal.id)
        if key in self.emitted or key in self.keys:
            return
        self.keys.add(key)
        self.grants.append(
            Grant(
                entitlement=entitlement(self.resource, slug),
                principal=principal,
                access_path="group" if via_group is not None else "direct",
                via_group_id=via_group.id if via_group is not None else None,
            )
        )


class EntitlementResolver:
    def __init__(self, client: BitbucketClient, page_size: int = DEFAULT_PAGE_SIZE) -> None:
        self.client = client
        self.page_size = page_size
        # (resource id, entitlement slug or "") -> keys returned so far in that walk
        self._emitted: dict[tuple[str, str], set[EmittedKey]] = {}

    def reset(self) -> None:
        self._emitted.clear()

    def entitlements_for(self, resource: Resource) -> list[Entitlement]:
        return [entitlement(resource, slug) for slug in vocabulary(resource.resource_type)]

    def grants_for(
        self, resource: Resource, target: Entitlement, page_token: str = ""
    ) -> GrantPage:
        grants, next_token = self._walk(resource, page_token, target.slug)
        return [g for g in grants if g.entitlement.slug == target.slug], next_token

    def grants(self, resource: Resource, page_token: str = "") -> GrantPage:
        """One page of every grant on ``resource``."""
        return self._walk(resource, page_token, "")

    def _walk(self, resource: Resource, page_token: str, walk: str) -> GrantPage:
        key = (resource.id, walk)
        if not page_token:
            self._emitted.pop(key, None)
        page = _PageBuilder(resource, self._emitted.get(key, set()))

        resource_type = resource.resource_type
        if resource_type is ResourceType.WORKSPACE:
            next_token = self._workspace_members(page, page_token)
        elif resource_type is ResourceType.USER_GROUP:
            next_token = self._group_members(page, page_token)
        elif resource_type is ResourceType.PROJECT:
            next_token = self._project_grants(page, page_token)
        elif resource_type is ResourceType.REPOSITORY:
            next_token = self._repository_grants(page, page_token)
        else:
            return [], ""

        if next_token:
            self._emitted.setdefault(key, set()).update(page.keys)
        else:
            self._emitted.pop(key, None)
        logger.debug(
            "Resolved %d grants",
            len(page.grants),
            extra={
                "resource_type": resource_type.value,
                "resource_id": resource.id,
                "entitlement": walk or None,
                "records": len(page.grants),
            },
        )
        return page.grants, next_token

    # ------------------------------------------------------------------
    # Memberships
    # ------------------------------------------------------------------

    def _workspace_members(self, page: _PageBuilder, page_token: str) -> str:
        workspace_id = page.resource.id
        cursor = pagination.start(page_token, ResourceType.USER)
        listing = self.client.get_workspace_members(
            workspace_id, self.page_size, cursor.current_page_cursor
        )
        for user in listing.values:
            page.add(MEMBER, user_resource(user, workspace_id))
        return cursor.next_token(listing.next_page)

    def _group_members(self, page: _PageBuilder, page_token: str) -> str:
        group_id = GroupId.parse(page.resource.id)
        cursor = pagination.start(page_token, ResourceType.USER)
        for user in self.client.get_user_group_members(group_id.workspace_id, group_id.slug):
            page.add(MEMBER, user_resource(user, group_id.workspace_id))
        return cursor.next_token("")

    # ------------------------------------------------------------------
    # Project / repository permissions
    # ------------------------------------------------------------------

    def _project_grants(self, page: _PageBuilder, page_token: str) -> str:
        project_id = ProjectId.parse(page.resource.id)
        cursor = pagination.decode(page_token)
        if not cursor:
            cursor.push_phases(ResourceType.REPOSITORY, ResourceType.USER_GROUP, ResourceType.USER)

        phase = cursor.current_frame_type
        if phase is ResourceType.REPOSITORY:
            listing = self.client.get_project_repos(
                project_id.workspace_id,
                project_id.project_id,
                self.page_size,
                cursor.current_page_cursor,
            )
            for repo in listing.values:
                page.add(REPOSITORY_ASSIGNMENT, repository_resource(repo, project_id))
        elif phase is ResourceType.USER_GROUP:
            listing = self.client.list_permissions(
                project_id, GROUPS, self.page_size, cursor.current_page_cursor
            )
            self._group_permissions(page, project_id, listing.values, expand=True)
        elif phase is ResourceType.USER:
            listing = self.client.list_permissions(
                project_id, USERS, self.page_size, cursor.current_page_cursor
            )
            self._user_permissions(page, project_id.workspace_id, listing.values)
        else:
            return ""
        return cursor.next_token(listing.next_page)

    def _repository_grants(self, page: _PageBuilder, page_token: str) -> str:
        repository_id = RepositoryId.parse(page.resource.id)
        cursor = pagination.decode(page_token)
        if not cursor:
            cursor.push_phases(ResourceType.USER_GROUP, ResourceType.USER)

        phase = cursor.current_frame_type
        if phase is ResourceType.USER_GROUP:
            listing = self.client.list_permissions(
                repository_id, GROUPS, self.page_size, cursor.current_page_cursor
            )
            self._group_permissions(page, repository_id, listing.values, expand=False)
        elif phase is ResourceType.USER:
            listing = self.client.list_permissions(
                repository_id, USERS, self.page_size, cursor.current_page_cursor
            )
            self._user_permissions(page, repository_id.workspace_id, listing.values)
        else:
            return ""
        return cursor.next_token(listing.next_page)

    def _group_permissions(
        self,
        page: _PageBuilder,
        target: Union[ProjectId, RepositoryId],
        records: list[dict],
        expand: bool,
    ) -> None:
        roles = PERMISSION_ROLES[page.resource.resource_type]
        workspace_id = target.workspace_id
        direct: Optional[set[EmittedKey]] = None
        for record in records:
            role = record.get("permission")
            if role not in roles:
                continue
            group = user_group_resource(record["group"], workspace_id)
            page.add(role, group)
            if not expand:
                continue
            if direct is None:
                direct = self._direct_user_roles(target)
            members = self.client.get_user_group_members(
                workspace_id, group.profile["user_group_slug"]
            )
            for user in members:
                if (role, user["uuid"]) in direct:
                    continue
                page.add(role, user_resource(user, workspace_id), via_group=group)

    def _direct_user_roles(self, target: Union[ProjectId, RepositoryId]) -> set[EmittedKey]:
        """Every (role, user id) pair granted directly on ``target``."""
        found: set[EmittedKey] = set()
        cursor = ""
        while True:
            listing = self.client.list_permissions(target, USERS, self.page_size, cursor)
            for record in listing.values:
                user = record.get("user") or {}
                if user.get("uuid"):
                    found.add((record.get("permission"), user["uuid"]))
            cursor = listing.next_page
            if not cursor:
                return found

    def _user_permissions(
        self,
        page: _PageBuilder,
        workspace_id: str,
        records: list[dict],
    ) -> None:
        roles = PERMISSION_ROLES[page.resource.resource_type]
        for record in records:
            role = record.get("permission")
            if role not in roles:
                continue
            page.add(role, user_resource(record["user"], workspace_id))
