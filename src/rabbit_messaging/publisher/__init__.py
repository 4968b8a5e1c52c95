"""RabbitMQ publisher for queue and exchange targets."""

from .rabbitmq_publisher import RabbitMQPublisher

__all__ = ["RabbitMQPublisher"]
