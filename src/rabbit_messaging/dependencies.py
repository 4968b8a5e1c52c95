"""Factories used to wire publishers and consumers."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Callable

from rabbit_messaging.codec import JSONMessageCodec
from rabbit_messaging.config import RabbitMQConfig
from rabbit_messaging.connection import RabbitMQConnection
from rabbit_messaging.contracts import IMessageCodec, IRabbitMQConnection


@dataclass(frozen=True)
class MessagingDependencies:
    """Bundles the factories a publisher or consumer builds its collaborators with."""

    make_connection: Callable[[RabbitMQConfig], IRabbitMQConnection] = field(
        default=lambda config: RabbitMQConnection(config)
    )
    make_codec: Callable[[], IMessageCodec] = field(default=lambda: JSONMessageCodec())
