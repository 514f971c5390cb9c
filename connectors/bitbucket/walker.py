"""Page-at-a-time listing of each resource type."""

from __future__ import annotations

import logging
from typing import Optional

from connectors.bitbucket import pagination
from connectors.bitbucket.client import BitbucketClient
from connectors.bitbucket.ids import GroupId, ProjectId, RepositoryId
from connectors.bitbucket.models import Resource, ResourceType
from connectors.bitbucket.scope import Scope

logger = logging.getLogger("bitbucket.walker")

DEFAULT_PAGE_SIZE = 50


# ----------------------------------------------------------------------
# Record -> Resource mapping
# ----------------------------------------------------------------------


def workspace_resource(workspace: dict) -> Resource:
    return Resource(
        id=workspace["uuid"],
        display_name=workspace.get("slug") or workspace.get("name", ""),
        resource_type=ResourceType.WORKSPACE,
        profile={
            "workspace_id": workspace["uuid"],
            "workspace_slug": workspace.get("slug"),
            "workspace_name": workspace.get("name"),
        },
    )


def project_resource(project: dict, workspace_id: str) -> Resource:
    project_id = ProjectId(workspace_id, project["uuid"], project["key"])
    return Resource(
        id=project_id.compose(),
        display_name=project.get("name", project["key"]),
        resource_type=ResourceType.PROJECT,
        parent_id=workspace_id,
        profile={
            "project_id": project["uuid"],
            "project_name": project.get("name"),
            "project_key": project["key"],
        },
    )


def repository_resource(repository: dict, project_id: ProjectId) -> Resource:
    repository_id = RepositoryId(project_id, repository["uuid"])
    return Resource(
        id=repository_id.compose(),
        display_name=repository.get("full_name") or repository.get("name", ""),
        resource_type=ResourceType.REPOSITORY,
        parent_id=project_id.compose(),
        profile={
            "repository_id": repository["uuid"],
            "repository_name": repository.get("name"),
            "repository_full_name": repository.get("full_name"),
        },
    )


def user_group_resource(group: dict, workspace_id: str) -> Resource:
    profile = {
        "user_group_name": group.get("name"),
        "user_group_slug": group["slug"],
        "user_group_permission": group.get("permission"),
    }
    members = [m["uuid"] for m in group.get("members") or [] if m.get("uuid")]
    if members:
        profile["user_group_members"] = members
    return Resource(
        id=GroupId(workspace_id, group["slug"]).compose(),
        display_name=group.get("name") or group["slug"],
        resource_type=ResourceType.USER_GROUP,
        parent_id=workspace_id,
        profile=profile,
    )


def user_resource(user: dict, workspace_id: Optional[str] = None) -> Resource:
    display_name = user.get("display_name") or user.get("nickname") or user["uuid"]
    names = display_name.split(" ", 1)
    return Resource(
        id=user["uuid"],
        display_name=display_name,
        resource_type=ResourceType.USER,
        parent_id=workspace_id,
        profile={
            "first_name": names[0],
            "last_name": names[1] if len(names) > 1 else "",
            "login": user.get("username") or user.get("nickname"),
            "user_id": user["uuid"],
        },
    )


# ----------------------------------------------------------------------
# Listing
# ----------------------------------------------------------------------


class ResourceWalker:
    """One upstream page per call; the returned token resumes the walk."""

    def __init__(self, client: BitbucketClient, page_size: int = DEFAULT_PAGE_SIZE) -> None:
        self.client = client
        self.page_size = page_size

    def list(
        self,
        scope: Scope,
        resource_type: ResourceType,
        parent_id: Optional[str] = None,
        page_token: str = "",
    ) -> tuple[list[Resource], str]:
        if resource_type is ResourceType.WORKSPACE:
            resources, next_token = self.list_workspaces(scope, page_token)
        # every other type hangs off a parent; the engine also asks at the root
        elif parent_id is None:
            return [], ""
        elif resource_type is ResourceType.PROJECT:
            resources, next_token = self.list_projects(parent_id, page_token)
        elif resource_type is ResourceType.REPOSITORY:
            resources, next_token = self.list_repositories(parent_id, page_token)
        elif resource_type is ResourceType.USER_GROUP:
            resources, next_token = self.list_user_groups(parent_id, page_token)
        elif resource_type is ResourceType.USER:
            resources, next_token = self.list_users(parent_id, page_token)
        else:
            raise ValueError(f"unhandled resource type: {resource_type.value}")

        logger.debug(
            "Listed %d %s resources",
            len(resources),
            resource_type.value,
            extra={
                "resource_type": resource_type.value,
                "resource_id": parent_id,
                "records": len(resources),
            },
        )
        return resources, next_token

    def list_workspaces(self, scope: Scope, page_token: str) -> tuple[list[Resource], str]:
        cursor = pagination.start(page_token, ResourceType.WORKSPACE)
        if scope.is_workspace_scoped:
            workspace = self.client.get_workspace(scope.identity)
            return [workspace_resource(workspace)], cursor.next_token("")

        page = self.client.get_workspaces(self.page_size, cursor.current_page_cursor)
        resources = [
            workspace_resource(w) for w in page.values if scope.includes(w.get("uuid", ""))
        ]
        return resources, cursor.next_token(page.next_page)

    def list_projects(self, workspace_id: str, page_token: str) -> tuple[list[Resource], str]:
        cursor = pagination.start(page_token, ResourceType.PROJECT)
        page = self.client.get_workspace_projects(
            workspace_id, self.page_size, cursor.current_page_cursor
        )
        resources = [project_resource(p, workspace_id) for p in page.values]
        return resources, cursor.next_token(page.next_page)

    def list_repositories(self, project_id: str, page_token: str) -> tuple[list[Resource], str]:
        parent = ProjectId.parse(project_id)
        cursor = pagination.start(page_token, ResourceType.REPOSITORY)
        page = self.client.get_project_repos(
            parent.workspace_id, parent.project_id, self.page_size, cursor.current_page_cursor
        )
        resources = [repository_resource(r, parent) for r in page.values]
        return resources, cursor.next_token(page.next_page)

    def list_user_groups(self, workspace_id: str, page_token: str) -> tuple[list[Resource], str]:
        cursor = pagination.start(page_token, ResourceType.USER_GROUP)
        groups = self.client.get_workspace_user_groups(workspace_id)
        resources = [user_group_resource(g, workspace_id) for g in groups]
        return resources, cursor.next_token("")

    def list_users(self, workspace_id: str, page_token: str) -> tuple[list[Resource], str]:
        cursor = pagination.start(page_token, ResourceType.USER)
        page = self.client.get_workspace_members(
            workspace_id, self.page_size, cursor.current_page_cursor
        )
        resources = [user_resource(u, workspace_id) for u in page.values]
        return resources, cursor.next_token(page.next_page)
