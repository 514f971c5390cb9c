"""Tests for page-token encoding and the phase stack."""

from __future__ import annotations

import json

import pytest

from connectors.bitbucket import pagination
from connectors.bitbucket.errors import InvalidTokenError
from connectors.bitbucket.models import ResourceType
from connectors.bitbucket.pagination import Cursor, PageFrame


class TestCodec:
    def test_empty_token_is_a_fresh_cursor(self) -> None:
        assert not pagination.decode("")
        assert pagination.encode(Cursor()) == ""

    def test_encode_decode(self) -> None:
        cursor = Cursor([PageFrame(ResourceType.USER), PageFrame(ResourceType.USER_GROUP, "3")])
        token = pagination.encode(cursor)
        assert json.loads(token) == {
            "states": [
                {"type": "user", "cursor": ""},
                {"type": "user_group", "cursor": "3"},
            ]
        }
        decoded = pagination.decode(token)
        assert decoded.frames == cursor.frames
        assert decoded.current_frame_type is ResourceType.USER_GROUP
        assert decoded.current_page_cursor == "3"

    @pytest.mark.parametrize(
        "token",
        [
            "not json",
            "[]",
            '{"states": "x"}',
            '{"states": [{"type": "team", "cursor": ""}]}',
            '{"states": [{"type": "user", "cursor": 5}]}',
        ],
    )
    def test_malformed_tokens(self, token: str) -> None:
        with pytest.raises(InvalidTokenError):
            pagination.decode(token)


class TestPhases:
    def test_first_phase_is_current(self) -> None:
        cursor = Cursor()
        cursor.push_phases(ResourceType.REPOSITORY, ResourceType.USER_GROUP, ResourceType.USER)
        assert cursor.current_frame_type is ResourceType.REPOSITORY
        assert len(cursor) == 3

    def test_advance_replaces_then_pops(self) -> None:
        """A next cursor stays in the phase; an empty one moves to the next phase."""
        cursor = Cursor()
        cursor.push_phases(ResourceType.USER_GROUP, ResourceType.USER)

        token = cursor.next_token("2")
        resumed = pagination.decode(token)
        assert resumed.current_frame_type is ResourceType.USER_GROUP
        assert resumed.current_page_cursor == "2"

        resumed.advance("")
        assert resumed.current_frame_type is ResourceType.USER
        assert resumed.current_page_cursor == ""

        assert resumed.next_token("") == ""

    def test_start_pushes_initial_frame_only_when_fresh(self) -> None:
        fresh = pagination.start("", ResourceType.PROJECT)
        assert fresh.frames == (PageFrame(ResourceType.PROJECT),)

        token = pagination.encode(Cursor([PageFrame(ResourceType.PROJECT, "4")]))
        resumed = pagination.start(token, ResourceType.PROJECT)
        assert resumed.frames == (PageFrame(ResourceType.PROJECT, "4"),)
