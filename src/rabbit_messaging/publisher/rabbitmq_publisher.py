"""RabbitMQ publisher for queue and exchange targets."""

from __future__ import annotations

from typing import Any, Mapping, Optional

import pika
from pika import DeliveryMode

from rabbit_messaging.config import RabbitMQConfig
from rabbit_messaging.connection import AsyncChannel
from rabbit_messaging.dependencies import MessagingDependencies
from rabbit_messaging.logger import logger_factory
from rabbit_messaging.options import PublishOptions


class RabbitMQPublisher:
    """Sends encoded messages to the configured queue or exchange."""

    def __init__(
        self,
        config: RabbitMQConfig,
        *,
        dependencies: Optional[MessagingDependencies] = None,
    ) -> None:
        if not config.queue and not config.exchange:
            raise ValueError("Either queue or exchange must be configured")

        deps = dependencies or MessagingDependencies()
        self.config = config
        self.codec = deps.make_codec()
        self.connection = deps.make_connection(config)
        self.logger = logger_factory(__name__).child(component="RabbitMQPublisher")

    async def publish(self, message: Any, options: Optional[PublishOptions] = None) -> bool:
        """Send ``message`` straight to the configured queue.

        Returns True once the message is handed to the connection for sending.
        """
        options = options or PublishOptions()
        queue = self.config.queue
        lg = self.logger.child(
            method="publish", queue=queue, correlation_id=options.correlation_id
        )
        if not queue:
            raise ValueError("No queue configured for this publisher")

        lg.debug("Publishing message to queue %s", queue)

        async def send(channel: AsyncChannel) -> bool:
            try:
                result = channel.basic_publish(
                    exchange="",
                    routing_key=queue,
                    body=self.codec.encode(message),
                    properties=self._properties(options),
                )
            except Exception as exc:
                lg.error("Failed to publish message: %s", exc, exc_info=True)
                raise
            lg.debug("Message published successfully")
            return result

        return await self.connection.with_channel(send)

    async def publish_to_exchange(
        self,
        message: Any,
        routing_key: str = "",
        options: Optional[PublishOptions] = None,
    ) -> None:
        options = options or PublishOptions()
        exchange = self.config.exchange
        lg = self.logger.child(
            method="publish_to_exchange",
            exchange=exchange,
            routing_key=routing_key,
            correlation_id=options.correlation_id,
            message_type=message.get("type") if isinstance(message, Mapping) else None,
        )
        lg.debug("Publishing message to exchange")

        if not exchange:
            lg.error("No exchange configured for this publisher")
            raise ValueError("No exchange configured for this publisher")

        async def send(channel: AsyncChannel) -> None:
            try:
                body = self.codec.encode(message)
                lg.debug("Serialized message for publishing", context={"message_size": len(body)})
                channel.basic_publish(
                    exchange=exchange,
                    routing_key=routing_key,
                    body=body,
                    properties=self._properties(options),
                )
            except Exception as exc:
                lg.error("Failed to publish message to exchange: %s", exc, exc_info=True)
                raise
            lg.debug("Message successfully published to exchange")

        try:
            await self.connection.with_channel(send)
        except Exception as exc:
            lg.error("Channel operation failed during publish: %s", exc)
            raise

    async def close(self) -> None:
        lg = self.logger.child(
            method="close", queue=self.config.queue, exchange=self.config.exchange
        )
        lg.debug("Closing publisher connection")
        try:
            await self.connection.close()
        except Exception as exc:
            lg.error("Failed to close publisher connection: %s", exc)
            raise
        lg.debug("Publisher connection closed successfully")

    def _properties(self, options: PublishOptions) -> pika.BasicProperties:
        delivery_mode = DeliveryMode.Persistent if options.persistent else DeliveryMode.Transient
        return pika.BasicProperties(
            content_type=self.codec.content_type,
            delivery_mode=delivery_mode.value,
            headers=dict(options.headers) if options.headers is not None else None,
            correlation_id=options.correlation_id,
        )
