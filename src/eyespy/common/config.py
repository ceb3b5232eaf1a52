from __future__ import annotations

import os
from argparse import ArgumentParser, Namespace
from collections.abc import Sequence
from urllib.parse import urlparse

from pydantic import BaseModel, ConfigDict, Field


def _env(key: str, default: str) -> str:
    return os.getenv(key, default)


class ClientConfig(BaseModel, Namespace):
    """Unified EyeSpy client configuration, compliant with Namespace."""

    model_config = ConfigDict(arbitrary_types_allowed=True, validate_assignment=True)

    def __init__(self, **kwargs):
        # Satisfy both BaseModel and Namespace
        BaseModel.__init__(self, **kwargs)
        Namespace.__init__(self)

    # REST API
    api_url: str = "http://localhost:8080/api"
    request_timeout: float = Field(default=30.0, gt=0)
    cache_ttl: float = Field(default=60.0, ge=0)

    # Real-time channel
    mqtt_url: str | None = "mqtt://localhost:1883"
    topic_prefix: str = "eyespy"
    reconnect_delay: float = Field(default=1.0, gt=0)
    reconnect_attempts: int = Field(default=10, ge=0)
    connect_timeout: float = Field(default=20.0, gt=0)

    # Collection behaviour
    page_size: int = Field(default=20, gt=0)
    poll_interval: float = Field(default=5.0, gt=0)
    always_poll: bool = False
    refresh_delay: float = Field(default=2.0, ge=0)
    log_watchdog_delay: float = Field(default=5.0, gt=0)

    log_level: str = "info"

    @property
    def mqtt_enabled(self) -> bool:
        return bool(self.mqtt_url)

    def mqtt_endpoint(self) -> tuple[str, int]:
        """Split mqtt_url into (host, port)."""
        if not self.mqtt_url:
            raise ValueError("MQTT is disabled")
        parsed = urlparse(self.mqtt_url)
        if not parsed.hostname:
            raise ValueError(f"Invalid MQTT URL: {self.mqtt_url}")
        return parsed.hostname, parsed.port or 1883

    @classmethod
    def build_parser(cls) -> ArgumentParser:
        parser = ArgumentParser(prog="eyespy", description="EyeSpy face search client")
        parser.add_argument(
            "--api-url",
            default=_env("EYESPY_API_URL", "http://localhost:8080/api"),
            help="EyeSpy REST API base URL",
        )
        parser.add_argument(
            "--mqtt-url",
            default=_env("EYESPY_MQTT_URL", "mqtt://localhost:1883"),
            help="Real-time event broker URL (e.g. mqtt://localhost:1883), empty to disable",
        )
        parser.add_argument(
            "--topic-prefix",
            default=_env("EYESPY_TOPIC_PREFIX", "eyespy"),
            help="Topic prefix used for real-time rooms",
        )
        parser.add_argument("--request-timeout", type=float, default=30.0)
        parser.add_argument("--page-size", type=int, default=20)
        parser.add_argument("--poll-interval", type=float, default=5.0)
        parser.add_argument(
            "--always-poll",
            action="store_true",
            help="Keep polling even while the real-time channel is connected",
        )
        parser.add_argument(
            "--log-level",
            default=_env("EYESPY_LOG_LEVEL", "info"),
            choices=["critical", "error", "warning", "info", "debug", "trace"],
        )
        return parser

    @classmethod
    def from_cli_args(
        cls, argv: Sequence[str] | None = None, parser: ArgumentParser | None = None
    ) -> tuple[ClientConfig, Namespace]:
        """Parse CLI arguments and return the config plus the raw namespace.

        The raw namespace carries any sub-command arguments the caller added
        to the parser.
        """
        parser = parser or cls.build_parser()
        args = parser.parse_args(argv)

        config_dict = {
            name: value for name, value in vars(args).items() if name in cls.model_fields
        }
        if config_dict.get("mqtt_url") == "":
            config_dict["mqtt_url"] = None

        return cls.model_validate(config_dict), args
