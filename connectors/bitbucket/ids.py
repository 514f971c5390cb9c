"""Composite resource ids.

Projects, repositories and user groups are only unique inside their
workspace, so the id handed to the governance engine carries the whole
ancestor chain joined by ``:``. Bitbucket ids are ``{uuid}`` strings or
slugs and never contain the separator.
"""

from __future__ import annotations

from typing import NamedTuple

from connectors.bitbucket.errors import InvalidResourceIdError

SEPARATOR = ":"


def _join(kind: str, parts: tuple[str, ...]) -> str:
    for part in parts:
        if not part or SEPARATOR in part:
            raise InvalidResourceIdError(
                f"bitbucket-connector: invalid {kind} id component: {part!r}"
            )
    return SEPARATOR.join(parts)


def _split(kind: str, composed: str, count: int) -> list[str]:
    parts = composed.split(SEPARATOR)
    if len(parts) != count or not all(parts):
        raise InvalidResourceIdError(
            f"bitbucket-connector: invalid {kind} resource id {composed!r}: "
            f"expected {count} segments, got {len(parts)}"
        )
    return parts


class ProjectId(NamedTuple):
    workspace_id: str
    project_id: str
    project_key: str

    def compose(self) -> str:
        return _join("project", tuple(self))

    @classmethod
    def parse(cls, composed: str) -> "ProjectId":
        return cls(*_split("project", composed, 3))


class RepositoryId(NamedTuple):
    project: ProjectId
    repository_id: str

    @property
    def workspace_id(self) -> str:
        return self.project.workspace_id

    def compose(self) -> str:
        return _join("repository", tuple(self.project) + (self.repository_id,))

    @classmethod
    def parse(cls, composed: str) -> "RepositoryId":
        workspace_id, project_id, project_key, repository_id = _split(
            "repository", composed, 4
        )
        return cls(ProjectId(workspace_id, project_id, project_key), repository_id)


class GroupId(NamedTuple):
    workspace_id: str
    slug: str

    def compose(self) -> str:
        return _join("user group", tuple(self))

    @classmethod
    def parse(cls, composed: str) -> "GroupId":
        return cls(*_split("user group", composed, 2))
