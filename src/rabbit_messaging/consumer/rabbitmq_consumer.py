"""RabbitMQ consumer with per-message acknowledgement."""

from __future__ import annotations

import asyncio
import inspect
from typing import Any, Awaitable, Callable, Optional, Set, Union

from pika.channel import Channel
from pika.frame import Method
from pika.spec import Basic, BasicProperties

from rabbit_messaging.config import RabbitMQConfig
from rabbit_messaging.connection import AsyncChannel
from rabbit_messaging.dependencies import MessagingDependencies
from rabbit_messaging.logger import logger_factory
from rabbit_messaging.options import ConsumeOptions

MessageHandler = Callable[[Any], Union[Awaitable[None], None]]


class RabbitMQConsumer:
    """Delivers decoded messages from the configured queue to a handler.

    A message is acked after the handler returns and nacked without requeue
    when decoding or the handler fails. Each delivery is handled in its own
    task, so handlers may overlap up to the prefetch count.
    """

    def __init__(
        self,
        config: RabbitMQConfig,
        *,
        dependencies: Optional[MessagingDependencies] = None,
    ) -> None:
        if not config.queue:
            raise ValueError("Queue must be configured for consumer")

        deps = dependencies or MessagingDependencies()
        self.config = config
        self.queue: str = config.queue
        self.codec = deps.make_codec()
        self.connection = deps.make_connection(config)
        self.consumer_tag: Optional[str] = None
        self._channel: Optional[AsyncChannel] = None
        self.logger = logger_factory(__name__).child(component="RabbitMQConsumer")
        self._tasks: Set[asyncio.Task] = set()

    async def consume(
        self, handler: MessageHandler, options: Optional[ConsumeOptions] = None
    ) -> str:
        """Register ``handler`` on the queue and return the consumer tag."""
        options = options or ConsumeOptions()
        queue = self.queue
        lg = self.logger.child(method="consume", queue=queue)

        async def register(channel: AsyncChannel) -> str:
            if self.config.prefetch_count:
                lg.debug("Setting prefetch count to %s", self.config.prefetch_count)
                await channel.basic_qos(prefetch_count=self.config.prefetch_count)

            if channel is not self._channel:
                channel.add_on_cancel_callback(self._on_broker_cancel)
                channel.add_on_close_callback(self._on_channel_closed)
                self._channel = channel

            def on_message(
                _channel: Channel,
                method: Basic.Deliver,
                properties: BasicProperties,
                body: bytes,
            ) -> None:
                self._dispatch(channel, handler, options, method, properties, body)

            consumer_tag = await channel.basic_consume(
                queue=queue,
                on_message_callback=on_message,
                auto_ack=options.no_ack,
                consumer_tag=options.consumer_tag,
            )
            self.consumer_tag = consumer_tag
            lg.info("Consumer started with tag: %s", consumer_tag)
            return consumer_tag

        return await self.connection.with_channel(register)

    async def cancel(self, consumer_tag: Optional[str] = None) -> None:
        target = consumer_tag or self.consumer_tag
        lg = self.logger.child(method="cancel", consumer_tag=target, queue=self.config.queue)

        if not target:
            lg.warning("Attempted to cancel consumer with no active consumer tag")
            return

        lg.debug("Attempting to cancel consumer")

        async def send_cancel(channel: AsyncChannel) -> None:
            try:
                await channel.basic_cancel(consumer_tag=target)
            except Exception as exc:
                lg.error("Failed to cancel consumer on channel: %s", exc)
                raise
            if self.consumer_tag == target:
                self.consumer_tag = None
            lg.info("Successfully cancelled consumer")

        try:
            await self.connection.with_channel(send_cancel)
        except Exception as exc:
            lg.error("Channel operation failed during consumer cancellation: %s", exc)
            raise

    async def close(self) -> None:
        lg = self.logger.child(
            method="close",
            queue=self.config.queue,
            has_active_consumer=self.consumer_tag is not None,
        )
        lg.debug("Closing consumer connection")
        try:
            if self.consumer_tag:
                lg.debug("Active consumer %s found, cancelling first", self.consumer_tag)
                await self.cancel()
            await self.connection.close()
        except Exception as exc:
            lg.error("Failed to close consumer connection: %s", exc)
            raise
        self.consumer_tag = None
        lg.info("Consumer connection closed successfully")

    def _on_broker_cancel(self, method_frame: Method) -> None:
        # the broker-side equivalent of a null delivery: nothing to handle
        consumer_tag = method_frame.method.consumer_tag
        self.logger.warning("Consumer cancelled by broker", context={"consumer_tag": consumer_tag})
        if self.consumer_tag == consumer_tag:
            self.consumer_tag = None

    def _on_channel_closed(self, channel: AsyncChannel, reason: BaseException) -> None:
        if channel is not self._channel:
            return
        self._channel = None
        if self.consumer_tag is not None:
            self.logger.info(
                "Consumer stopped with its channel: %s",
                reason,
                context={"consumer_tag": self.consumer_tag},
            )
            self.consumer_tag = None

    def _dispatch(
        self,
        channel: AsyncChannel,
        handler: MessageHandler,
        options: ConsumeOptions,
        method: Basic.Deliver,
        properties: BasicProperties,
        body: bytes,
    ) -> None:
        task = asyncio.ensure_future(
            self._handle_delivery(channel, handler, options, method, properties, body)
        )
        self._tasks.add(task)
        task.add_done_callback(self._on_task_done)

    async def _handle_delivery(
        self,
        channel: AsyncChannel,
        handler: MessageHandler,
        options: ConsumeOptions,
        method: Basic.Deliver,
        properties: BasicProperties,
        body: bytes,
    ) -> None:
        message_logger = logger_factory(__name__, properties.correlation_id).child(
            queue=self.config.queue, delivery_tag=method.delivery_tag
        )
        try:
            message = self.codec.decode(body)
            message_logger.debug("Processing message: %s", message)
            result = handler(message)
            if inspect.isawaitable(result):
                await result
            self._settle(channel, method.delivery_tag, succeeded=True, no_ack=options.no_ack)
        except Exception as exc:
            message_logger.error("Error processing message: %s", exc, exc_info=True)
            self._settle(channel, method.delivery_tag, succeeded=False, no_ack=options.no_ack)
            if not options.no_ack:
                message_logger.debug("Message negatively acknowledged")
            return

        if not options.no_ack:
            message_logger.debug("Message acknowledged")

    @staticmethod
    def _settle(
        channel: AsyncChannel, delivery_tag: int, *, succeeded: bool, no_ack: bool
    ) -> None:
        if no_ack:
            return
        if succeeded:
            channel.basic_ack(delivery_tag)
        else:
            channel.basic_nack(delivery_tag, requeue=False)

    def _on_task_done(self, task: asyncio.Task) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            self.logger.error("Failed to settle message: %s", exc, exc_info=exc)

