"""Messaging package providing RabbitMQ connectivity, publishing and consuming."""

from .codec import JSONMessageCodec
from .config import QueueOptions, RabbitMQConfig
from .connection import AsyncChannel, RabbitMQConnection
from .consumer import MessageHandler, RabbitMQConsumer
from .contracts import IMessageCodec, IRabbitMQConnection
from .dependencies import MessagingDependencies
from .events import EventMetadata, UserCreatedEvent, UserDeletedEvent, UserEvent
from .logger import configure_logging, logger_factory
from .options import ConsumeOptions, PublishOptions
from .publisher import RabbitMQPublisher

__all__ = [
    "AsyncChannel",
    "ConsumeOptions",
    "EventMetadata",
    "IMessageCodec",
    "IRabbitMQConnection",
    "JSONMessageCodec",
    "MessageHandler",
    "MessagingDependencies",
    "PublishOptions",
    "QueueOptions",
    "RabbitMQConfig",
    "RabbitMQConnection",
    "RabbitMQConsumer",
    "RabbitMQPublisher",
    "UserCreatedEvent",
    "UserDeletedEvent",
    "UserEvent",
    "configure_logging",
    "logger_factory",
]
