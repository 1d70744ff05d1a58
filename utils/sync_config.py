"""
Configuration for the inventory sync engine.

Every tunable the engine uses lives on ``SyncConfig``; the defaults match the
behaviour of the deployed console. ``SyncConfig.from_env`` reads overrides from
the environment (and a ``.env`` file when present).
"""

import os
from typing import Any, Dict, Optional

from dotenv import load_dotenv
from pydantic import BaseModel, Field, model_validator

ENV_PREFIX = "SYNC_"


class SyncConfig(BaseModel):
    # Paging
    page_size: int = Field(default=20000, gt=0)
    max_page_size: int = Field(default=20000, gt=0)
    facet_page_size: int = Field(default=1000, gt=0)

    # Timeouts (seconds)
    request_timeout: float = Field(default=15.0, gt=0)
    count_timeout: float = Field(default=10.0, gt=0)

    # Retry policy
    max_retries: int = Field(default=3, ge=1)
    backoff_base: float = Field(default=1.0, ge=0)
    backoff_cap: float = Field(default=8.0, ge=0)
    abort_threshold: int = Field(default=3, ge=1)

    # Used when the count probe fails. Deployment-specific, not a property of the data.
    fallback_estimate: int = Field(default=300000, ge=0)

    # Record source
    supabase_url: Optional[str] = None
    supabase_key: Optional[str] = None
    table: str = "inventory"
    api_base_url: Optional[str] = None
    api_token: Optional[str] = None

    @model_validator(mode="after")
    def check_page_size(self) -> "SyncConfig":
        if self.page_size > self.max_page_size:
            raise ValueError(
                f"page_size ({self.page_size}) exceeds max_page_size ({self.max_page_size})"
            )
        return self

    def backoff_delay(self, failures: int) -> float:
        """Delay before retrying a page that has failed ``failures`` times"""
        return min(self.backoff_cap, self.backoff_base * (2 ** max(failures - 1, 0)))

    @classmethod
    def from_env(cls, env_file: Optional[str] = None, **overrides: Any) -> "SyncConfig":
        """
        Build a config from environment variables.

        Args:
            env_file: Optional path to a .env file (defaults to python-dotenv's lookup)
            **overrides: Values that win over the environment

        Returns:
            SyncConfig: Validated configuration
        """
        load_dotenv(env_file)

        values: Dict[str, Any] = {
            "supabase_url": os.getenv("SUPABASE_URL"),
            "supabase_key": os.getenv("SUPABASE_SERVICE_ROLE_KEY") or os.getenv("SUPABASE_ANON_KEY"),
            "api_base_url": os.getenv("INVENTORY_API_URL"),
            "api_token": os.getenv("INVENTORY_API_TOKEN"),
        }
        if os.getenv("INVENTORY_TABLE"):
            values["table"] = os.getenv("INVENTORY_TABLE")

        for field in (
            "page_size",
            "max_page_size",
            "facet_page_size",
            "request_timeout",
            "count_timeout",
            "max_retries",
            "backoff_base",
            "backoff_cap",
            "abort_threshold",
            "fallback_estimate",
        ):
            raw = os.getenv(f"{ENV_PREFIX}{field.upper()}")
            if raw not in (None, ""):
                values[field] = raw

        values.update(overrides)
        return cls(**{key: value for key, value in values.items() if value is not None})
