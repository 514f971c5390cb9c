"""Shared fixtures: the real client wired to the in-memory Bitbucket."""

from __future__ import annotations

import logging

import pytest

from connectors.bitbucket.client import BitbucketClient
from connectors.bitbucket.connector import Connector
from tests.fakes import API, API_V1, FakeBitbucket, acme


@pytest.fixture(autouse=True)
def _capturable_logs():
    """Undo configure_logging() so caplog sees connector records."""
    logger = logging.getLogger("bitbucket")
    logger.handlers.clear()
    logger.propagate = True
    logger.setLevel(logging.NOTSET)
    yield


@pytest.fixture
def fake() -> FakeBitbucket:
    return acme()


@pytest.fixture
def client(fake: FakeBitbucket) -> BitbucketClient:
    return BitbucketClient(API, API_V1, session=fake, max_retries=0)


@pytest.fixture
def connector(client: BitbucketClient) -> Connector:
    return Connector(client)
