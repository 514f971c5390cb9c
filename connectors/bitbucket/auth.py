"""Credential schemes applied to the HTTP session before the first API call."""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod

import requests
from requests.auth import HTTPBasicAuth

from connectors.bitbucket.config import BitbucketConfig
from connectors.bitbucket.errors import TransportError, UnauthenticatedError

logger = logging.getLogger("bitbucket.auth")


class AuthOption(ABC):
    @abstractmethod
    def apply(self, session: requests.Session) -> None:
        """Install credentials on ``session``."""


class BearerAuth(AuthOption):
    def __init__(self, token: str) -> None:
        self._token = token

    def apply(self, session: requests.Session) -> None:
        session.headers["Authorization"] = f"Bearer {self._token}"


class BasicAuth(AuthOption):
    def __init__(self, username: str, password: str) -> None:
        self._username = username
        self._password = password

    def apply(self, session: requests.Session) -> None:
        session.auth = HTTPBasicAuth(self._username, self._password)


class OAuth2ClientCredentials(AuthOption):
    """Exchange an OAuth consumer key/secret for an access token, once."""

    def __init__(
        self,
        client_id: str,
        client_secret: str,
        login_url: str,
        timeout: float = 30.0,
    ) -> None:
        self._client_id = client_id
        self._client_secret = client_secret
        self._login_url = login_url
        self._timeout = timeout

    def fetch_token(self, session: requests.Session) -> str:
        try:
            resp = session.post(
                self._login_url,
                data={"grant_type": "client_credentials"},
                auth=HTTPBasicAuth(self._client_id, self._client_secret),
                timeout=self._timeout,
            )
        except requests.RequestException as exc:
            raise TransportError(f"bitbucket-connector: login request failed: {exc}") from exc

        if resp.status_code != 200:
            raise UnauthenticatedError(
                f"bitbucket-connector: failed to login: status {resp.status_code}",
                resp.status_code,
            )
        token = resp.json().get("access_token")
        if not token:
            raise UnauthenticatedError("bitbucket-connector: login response has no access_token")
        logger.info("Obtained OAuth access token via client credentials")
        return token

    def apply(self, session: requests.Session) -> None:
        session.headers["Authorization"] = f"Bearer {self.fetch_token(session)}"


def build_auth(config: BitbucketConfig) -> AuthOption:
    """Pick the credential scheme: access token, then app password, then OAuth consumer."""
    if config.token:
        return BearerAuth(config.token)
    if config.username and config.app_password:
        return BasicAuth(config.username, config.app_password)
    if config.consumer_key and config.consumer_secret:
        return OAuth2ClientCredentials(
            config.consumer_key,
            config.consumer_secret,
            config.login_url,
            timeout=config.request_timeout,
        )
    raise ValueError(
        "either an access token, username and app password or "
        "consumer key and secret must be provided"
    )
