"""Provides broker, exchange and queue configuration for publishers and consumers."""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from typing import Any, Dict, Mapping, Optional

EXCHANGE_TYPES = ("direct", "topic", "fanout", "headers")


@dataclass(frozen=True)
class QueueOptions:
    """Encapsulates queue declaration options.

    The dead-letter and TTL fields are shortcuts for the matching ``x-*`` queue
    arguments. Entries in ``arguments`` win over the shortcuts when both are set.
    """

    durable: bool = True
    exclusive: bool = False
    auto_delete: bool = False
    dead_letter_exchange: Optional[str] = None
    dead_letter_routing_key: Optional[str] = None
    message_ttl: Optional[int] = None
    arguments: Mapping[str, Any] = field(default_factory=dict)

    def declare_arguments(self) -> Optional[Dict[str, Any]]:
        declared: Dict[str, Any] = {}
        if self.dead_letter_exchange is not None:
            declared["x-dead-letter-exchange"] = self.dead_letter_exchange
        if self.dead_letter_routing_key is not None:
            declared["x-dead-letter-routing-key"] = self.dead_letter_routing_key
        if self.message_ttl is not None:
            declared["x-message-ttl"] = self.message_ttl
        declared.update(self.arguments)
        return declared or None


@dataclass(frozen=True)
class RabbitMQConfig:
    """Connection target plus the topology a connection declares on open.

    When both ``exchange`` and ``queue`` are set, the queue is bound to the
    exchange with ``routing_key``.
    """

    url: str = ""
    queue: Optional[str] = None
    exchange: Optional[str] = None
    exchange_type: str = "direct"
    routing_key: str = ""
    prefetch_count: Optional[int] = None
    queue_options: QueueOptions = field(default_factory=QueueOptions)

    def __post_init__(self) -> None:
        if self.exchange_type not in EXCHANGE_TYPES:
            raise ValueError(
                f"Unsupported exchange type {self.exchange_type!r}; "
                f"expected one of {', '.join(EXCHANGE_TYPES)}."
            )
        if self.prefetch_count is not None and self.prefetch_count < 0:
            raise ValueError("prefetch_count must not be negative.")

    @classmethod
    def from_env(cls, prefix: str = "RABBITMQ_", **overrides: Any) -> "RabbitMQConfig":
        """Build a config from ``<prefix>URL``, ``<prefix>QUEUE`` and friends."""

        def env(name: str) -> Optional[str]:
            value = os.getenv(prefix + name, "").strip()
            return value or None

        prefetch = env("PREFETCH_COUNT")
        values: Dict[str, Any] = {
            "url": env("URL") or "",
            "queue": env("QUEUE"),
            "exchange": env("EXCHANGE"),
            "exchange_type": env("EXCHANGE_TYPE") or "direct",
            "routing_key": env("ROUTING_KEY") or "",
            "prefetch_count": int(prefetch) if prefetch else None,
        }
        values.update(overrides)
        return cls(**values)
