"""RabbitMQ consumer for queue message processing."""

from .rabbitmq_consumer import MessageHandler, RabbitMQConsumer

__all__ = ["MessageHandler", "RabbitMQConsumer"]
