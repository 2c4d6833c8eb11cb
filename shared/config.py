"""
Service configuration read from environment variables.

Every recognized option has a dotted name (``bus.groupId``) and an
environment variable (``NOTIFY_BUS_GROUP_ID``). Unset or empty variables
fall back to the defaults below.
"""

import os
import re
from typing import Any, Mapping, Optional

from pydantic import BaseModel, Field, ValidationError


ENV_PREFIX = "NOTIFY_"


class ConfigError(ValueError):
    """Raised when a configuration value cannot be parsed."""


class BusSettings(BaseModel):
    brokers: list[str] = Field(default_factory=list, description="Kafka bootstrap servers; empty = in-memory bus")
    group_id: str = "notification-service"
    topic: str = "order-events"
    partitions: int = Field(default=3, ge=1, description="Partition count of the in-memory bus")


class TransportSettings(BaseModel):
    listen: str = "0.0.0.0:8083"
    max_sessions: int = Field(default=10_000, ge=1)
    send_queue: int = Field(default=128, ge=1)
    send_timeout_ms: int = Field(default=50, ge=0)
    drop_threshold: int = Field(default=3, ge=1)

    @property
    def host(self) -> str:
        return self.listen.rsplit(":", 1)[0] or "0.0.0.0"

    @property
    def port(self) -> int:
        return int(self.listen.rsplit(":", 1)[1])


class OutboundSettings(BaseModel):
    timeout_ms: int = Field(default=250, ge=0)


class Settings(BaseModel):
    """All settings of the notification service."""
    application: str = "notification-service"
    version: str = "1.0.0"
    bus: BusSettings = Field(default_factory=BusSettings)
    transport: TransportSettings = Field(default_factory=TransportSettings)
    outbound: OutboundSettings = Field(default_factory=OutboundSettings)


# dotted option name -> (section, field)
OPTIONS: dict[str, tuple[str, str]] = {
    "bus.brokers": ("bus", "brokers"),
    "bus.groupId": ("bus", "group_id"),
    "bus.topic": ("bus", "topic"),
    "bus.partitions": ("bus", "partitions"),
    "transport.listen": ("transport", "listen"),
    "transport.maxSessions": ("transport", "max_sessions"),
    "transport.sendQueue": ("transport", "send_queue"),
    "transport.sendTimeoutMs": ("transport", "send_timeout_ms"),
    "transport.dropThreshold": ("transport", "drop_threshold"),
    "outbound.timeoutMs": ("outbound", "timeout_ms"),
}


def env_name(option: str) -> str:
    """``transport.maxSessions`` -> ``NOTIFY_TRANSPORT_MAX_SESSIONS``."""
    snake = re.sub(r"(?<!^)(?=[A-Z])", "_", option.replace(".", "_"))
    return ENV_PREFIX + snake.upper()


def _parse(option: str, raw: str) -> Any:
    if option == "bus.brokers":
        return [b.strip() for b in raw.split(",") if b.strip()]
    if option == "transport.listen":
        host, sep, port = raw.rpartition(":")
        if not sep or not port.isdigit():
            raise ConfigError(f"{option} must be host:port, got {raw!r}")
        return raw
    return raw


def load_settings(environ: Optional[Mapping[str, str]] = None) -> Settings:
    """
    Build Settings from environment variables.

    Args:
        environ: Mapping to read from (defaults to ``os.environ``)

    Raises:
        ConfigError: If a value is malformed or out of range
    """
    if environ is None:
        environ = os.environ

    sections: dict[str, dict[str, Any]] = {"bus": {}, "transport": {}, "outbound": {}}
    for option, (section, field_name) in OPTIONS.items():
        raw = environ.get(env_name(option))
        if raw is None or raw == "":
            continue
        sections[section][field_name] = _parse(option, raw)

    try:
        return Settings(
            bus=BusSettings(**sections["bus"]),
            transport=TransportSettings(**sections["transport"]),
            outbound=OutboundSettings(**sections["outbound"]),
        )
    except ValidationError as e:
        raise ConfigError(str(e)) from e
