"""Service settings loaded from environment variables."""

from __future__ import annotations

import os
from dataclasses import dataclass
from functools import lru_cache

DEFAULT_WHATSAPP_API_VERSION = "v20.0"


def _env_int(name: str, default: int) -> int:
    raw = os.environ.get(name, "")
    if not raw:
        return default
    try:
        return int(raw)
    except ValueError:
        raise RuntimeError(f"{name} must be an integer, got {raw!r}") from None


def _env_float(name: str, default: float) -> float:
    raw = os.environ.get(name, "")
    if not raw:
        return default
    try:
        return float(raw)
    except ValueError:
        raise RuntimeError(f"{name} must be a number, got {raw!r}") from None


@dataclass(frozen=True)
class Settings:
    """Runtime settings shared by the public app and the delivery worker.

    Attributes:
        tasks_backend: Queue backend ("inline" or "cloud_tasks").
        whatsapp_api_version: Graph API version used in the send URL.
        send_timeout_seconds: Bound on each provider call.
        test_token_prefix: Access tokens starting with this never hit the network.
        delivery_max_attempts: Attempts per delivery job, first try included.
        delivery_backoff_seconds: Base of the exponential retry delay.
        meta_verify_token: Token expected on the webhook verification handshake.
    """

    tasks_backend: str = "inline"
    whatsapp_api_version: str = DEFAULT_WHATSAPP_API_VERSION
    send_timeout_seconds: float = 10.0
    test_token_prefix: str = "mock_"
    delivery_max_attempts: int = 5
    delivery_backoff_seconds: float = 2.0
    meta_verify_token: str = ""

    @classmethod
    def from_env(cls) -> Settings:
        return cls(
            tasks_backend=os.environ.get("TASKS_BACKEND", "inline"),
            whatsapp_api_version=os.environ.get(
                "WHATSAPP_API_VERSION", DEFAULT_WHATSAPP_API_VERSION
            ),
            send_timeout_seconds=_env_float("WHATSAPP_SEND_TIMEOUT", 10.0),
            test_token_prefix=os.environ.get("WHATSAPP_TEST_TOKEN_PREFIX", "mock_"),
            delivery_max_attempts=_env_int("DELIVERY_MAX_ATTEMPTS", 5),
            delivery_backoff_seconds=_env_float("DELIVERY_BACKOFF_SECONDS", 2.0),
            meta_verify_token=os.environ.get("META_VERIFY_TOKEN", ""),
        )


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Settings for this process, read once at first use."""
    return Settings.from_env()
