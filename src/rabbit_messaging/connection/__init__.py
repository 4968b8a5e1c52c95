"""RabbitMQ connection and channel management."""

from .async_channel import AsyncChannel
from .rabbitmq_connection import RabbitMQConnection

__all__ = ["AsyncChannel", "RabbitMQConnection"]
