"""Configuration via environment variables (or a local .env file).

Exactly one credential set is used, picked in this order:
  - BITBUCKET_TOKEN                                  (workspace/project access token)
  - BITBUCKET_USERNAME + BITBUCKET_APP_PASSWORD      (user app password)
  - BITBUCKET_CONSUMER_KEY + BITBUCKET_CONSUMER_SECRET (OAuth consumer)
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from typing import Optional

from dotenv import load_dotenv

DEFAULT_API_BASE_URL = "https://api.bitbucket.org/2.0"
DEFAULT_API_V1_BASE_URL = "https://api.bitbucket.org/1.0"
DEFAULT_LOGIN_URL = "https://bitbucket.org/site/oauth2/access_token"


@dataclass(frozen=True)
class BitbucketConfig:
    token: Optional[str] = None
    username: Optional[str] = None
    app_password: Optional[str] = None
    consumer_key: Optional[str] = None
    consumer_secret: Optional[str] = None
    # Workspace slugs to sync; empty means every workspace the user can read
    workspaces: list[str] = field(default_factory=list)
    api_base_url: str = DEFAULT_API_BASE_URL
    api_v1_base_url: str = DEFAULT_API_V1_BASE_URL
    login_url: str = DEFAULT_LOGIN_URL
    page_size: int = 50
    request_timeout: float = 30.0
    max_retries: int = 3

    def validate(self) -> None:
        """Raise ValueError unless one complete credential set is present."""
        if bool(self.username) != bool(self.app_password):
            raise ValueError("BITBUCKET_USERNAME and BITBUCKET_APP_PASSWORD must be set together")
        if bool(self.consumer_key) != bool(self.consumer_secret):
            raise ValueError(
                "BITBUCKET_CONSUMER_KEY and BITBUCKET_CONSUMER_SECRET must be set together"
            )
        if not (self.token or self.username or self.consumer_key):
            raise ValueError(
                "either an access token, username and app password or "
                "consumer key and secret must be provided"
            )
        if self.page_size < 1:
            raise ValueError("BITBUCKET_PAGE_SIZE must be a positive integer")


@dataclass(frozen=True)
class SchedulerConfig:
    sync_interval_min: int = 60
    misfire_grace_time: int = 300
    max_retries: int = 3


@dataclass(frozen=True)
class ConnectorConfig:
    bitbucket: BitbucketConfig
    scheduler: SchedulerConfig = field(default_factory=SchedulerConfig)
    output_path: Optional[str] = None  # None = stdout
    log_level: str = "INFO"


def _split_list(raw: str) -> list[str]:
    return [s.strip() for s in raw.split(",") if s.strip()]


def load_config() -> ConnectorConfig:
    """Load configuration from environment variables, reading .env first if present."""
    load_dotenv()

    bitbucket = BitbucketConfig(
        token=os.environ.get("BITBUCKET_TOKEN") or None,
        username=os.environ.get("BITBUCKET_USERNAME") or None,
        app_password=os.environ.get("BITBUCKET_APP_PASSWORD") or None,
        consumer_key=os.environ.get("BITBUCKET_CONSUMER_KEY") or None,
        consumer_secret=os.environ.get("BITBUCKET_CONSUMER_SECRET") or None,
        workspaces=_split_list(os.environ.get("BITBUCKET_WORKSPACES", "")),
        api_base_url=os.environ.get("BITBUCKET_API_BASE_URL", DEFAULT_API_BASE_URL),
        api_v1_base_url=os.environ.get("BITBUCKET_API_V1_BASE_URL", DEFAULT_API_V1_BASE_URL),
        login_url=os.environ.get("BITBUCKET_LOGIN_URL", DEFAULT_LOGIN_URL),
        page_size=int(os.environ.get("BITBUCKET_PAGE_SIZE", "50")),
        request_timeout=float(os.environ.get("BITBUCKET_REQUEST_TIMEOUT", "30")),
        max_retries=int(os.environ.get("BITBUCKET_MAX_RETRIES", "3")),
    )
    bitbucket.validate()

    scheduler = SchedulerConfig(
        sync_interval_min=int(os.environ.get("SYNC_INTERVAL_MIN", "60")),
        misfire_grace_time=int(os.environ.get("SYNC_MISFIRE_GRACE_TIME", "300")),
        max_retries=int(os.environ.get("SYNC_MAX_RETRIES", "3")),
    )

    return ConnectorConfig(
        bitbucket=bitbucket,
        scheduler=scheduler,
        output_path=os.environ.get("SYNC_OUTPUT_PATH") or None,
        log_level=os.environ.get("LOG_LEVEL", "INFO"),
    )
