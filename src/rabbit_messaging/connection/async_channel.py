"""Awaitable facade over a callback-driven pika channel."""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Callable, Dict, List, Optional, Set

from pika.channel import Channel
from pika.frame import Method
from pika.spec import Basic, BasicProperties

OnMessageCallback = Callable[[Channel, Basic.Deliver, BasicProperties, bytes], None]
OnCloseCallback = Callable[["AsyncChannel", BaseException], None]


class AsyncChannel:
    """Wraps a pika ``Channel`` opened on an asyncio connection.

    Synchronous RPC methods (declare, bind, qos, consume, cancel) become
    coroutines that resolve when the broker replies. If the channel closes
    first, every pending call fails with the close reason.
    """

    def __init__(self, channel: Channel) -> None:
        self._channel = channel
        self._pending: Set[asyncio.Future] = set()
        self._close_waiter: Optional[asyncio.Future] = None
        self._close_callbacks: List[OnCloseCallback] = []
        self._cancelling: Dict[str, asyncio.Future] = {}
        self.logger = logging.getLogger(__name__)
        channel.add_on_close_callback(self._on_channel_closed)

    @property
    def channel_number(self) -> int:
        return self._channel.channel_number

    @property
    def is_open(self) -> bool:
        return bool(self._channel.is_open)

    def add_on_close_callback(self, callback: OnCloseCallback) -> None:
        self._close_callbacks.append(callback)

    def add_on_cancel_callback(self, callback: Callable[[Method], None]) -> None:
        """Register ``callback`` for broker-initiated consumer cancellation."""
        self._channel.add_on_cancel_callback(callback)

    def _on_channel_closed(self, _channel: Channel, reason: BaseException) -> None:
        self.logger.debug("Channel %s closed: %s", self.channel_number, reason)

        waiter, self._close_waiter = self._close_waiter, None
        if waiter is not None and not waiter.done():
            waiter.set_result(None)

        pending, self._pending = self._pending, set()
        for future in pending:
            if not future.done():
                future.set_exception(reason)

        for callback in list(self._close_callbacks):
            callback(self, reason)

    async def _rpc(self, method: Callable[..., Any], **kwargs: Any) -> Method:
        future: asyncio.Future = asyncio.get_running_loop().create_future()

        def on_reply(frame: Method) -> None:
            if not future.done():
                future.set_result(frame)

        self._pending.add(future)
        future.add_done_callback(self._pending.discard)
        try:
            method(callback=on_reply, **kwargs)
        except Exception:
            future.cancel()
            raise
        return await future

    async def exchange_declare(
        self, exchange: str, exchange_type: str = "direct", durable: bool = True
    ) -> Method:
        return await self._rpc(
            self._channel.exchange_declare,
            exchange=exchange,
            exchange_type=exchange_type,
            durable=durable,
        )

    async def queue_declare(
        self,
        queue: str,
        durable: bool = True,
        exclusive: bool = False,
        auto_delete: bool = False,
        arguments: Optional[Dict[str, Any]] = None,
    ) -> Method:
        return await self._rpc(
            self._channel.queue_declare,
            queue=queue,
            durable=durable,
            exclusive=exclusive,
            auto_delete=auto_delete,
            arguments=arguments,
        )

    async def queue_bind(self, queue: str, exchange: str, routing_key: str = "") -> Method:
        return await self._rpc(
            self._channel.queue_bind,
            queue=queue,
            exchange=exchange,
            routing_key=routing_key,
        )

    async def basic_qos(self, prefetch_count: int) -> Method:
        return await self._rpc(self._channel.basic_qos, prefetch_count=prefetch_count)

    async def basic_consume(
        self,
        queue: str,
        on_message_callback: OnMessageCallback,
        auto_ack: bool = False,
        consumer_tag: Optional[str] = None,
    ) -> str:
        """Start a consumer and return the tag confirmed by the broker."""
        frame = await self._rpc(
            self._channel.basic_consume,
            queue=queue,
            on_message_callback=on_message_callback,
            auto_ack=auto_ack,
            consumer_tag=consumer_tag,
        )
        return frame.method.consumer_tag

    async def basic_cancel(self, consumer_tag: str) -> Optional[Method]:
        """Cancel a consumer and wait for the broker to confirm.

        pika never replies for a tag it does not know, so an unknown tag returns
        None straight away. A second cancel of the same tag waits on the first.
        """
        pending = self._cancelling.get(consumer_tag)
        if pending is not None:
            return await asyncio.shield(pending)

        if consumer_tag not in self._channel.consumer_tags:
            self.logger.warning(
                "Channel %s has no consumer %s, nothing to cancel",
                self.channel_number,
                consumer_tag,
            )
            return None

        future = asyncio.ensure_future(
            self._rpc(self._channel.basic_cancel, consumer_tag=consumer_tag)
        )
        self._cancelling[consumer_tag] = future
        try:
            return await asyncio.shield(future)
        finally:
            if self._cancelling.get(consumer_tag) is future:
                del self._cancelling[consumer_tag]

    def basic_publish(
        self,
        exchange: str,
        routing_key: str,
        body: bytes,
        properties: Optional[BasicProperties] = None,
    ) -> bool:
        """Queue a message for sending.

        Returns True once the frame is handed to the connection. Without
        publisher confirms there is no broker acknowledgement to wait for.
        """
        self._channel.basic_publish(
            exchange=exchange,
            routing_key=routing_key,
            body=body,
            properties=properties,
        )
        return True

    def basic_ack(self, delivery_tag: int) -> None:
        self._channel.basic_ack(delivery_tag=delivery_tag)

    def basic_nack(self, delivery_tag: int, requeue: bool = False) -> None:
        self._channel.basic_nack(delivery_tag=delivery_tag, requeue=requeue)

    async def close(self) -> None:
        if not self._channel.is_open:
            return

        waiter = asyncio.get_running_loop().create_future()
        self._close_waiter = waiter
        self._channel.close()
        await waiter
