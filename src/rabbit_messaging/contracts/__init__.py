"""Contract interfaces for rabbit messaging."""

from .message_codec_interface import IMessageCodec
from .rabbitmq_connection_interface import IRabbitMQConnection

__all__ = [
    "IMessageCodec",
    "IRabbitMQConnection",
]
