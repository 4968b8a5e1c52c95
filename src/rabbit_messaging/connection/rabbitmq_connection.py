"""RabbitMQ connection management."""

from __future__ import annotations

import asyncio
import os
from types import TracebackType
from typing import Awaitable, Callable, Optional, Tuple, Type, TypeVar

import pika
from pika.adapters.asyncio_connection import AsyncioConnection
from pika.channel import Channel
from pika.connection import Parameters
from pika.exceptions import AMQPConnectionError, ChannelClosedByClient, ConnectionClosedByClient

from rabbit_messaging.config import RabbitMQConfig
from rabbit_messaging.contracts import IRabbitMQConnection
from rabbit_messaging.logger import ContextLogger, logger_factory

from .async_channel import AsyncChannel

T = TypeVar("T")


class RabbitMQConnection(IRabbitMQConnection):
    """Lazily opens one asyncio connection and one shared channel.

    The first ``get_channel`` call connects, opens the channel and declares the
    configured exchange, queue and binding. Concurrent callers share that single
    attempt. A connection that closes or errors later only resets the state;
    the next ``get_channel`` call connects again.
    """

    def __init__(self, config: RabbitMQConfig) -> None:
        url = (config.url or os.getenv("RABBITMQ_URL") or "").strip()
        if not url:
            raise ValueError(
                "RabbitMQ URL must be provided via config or RABBITMQ_URL environment variable."
            )

        try:
            self._parameters: Parameters = pika.URLParameters(url)
        except ValueError as exc:
            raise ValueError(f"Invalid RabbitMQ URL provided: {url}") from exc

        self.config = config
        self.rabbitmq_url = url
        self.connection: Optional[AsyncioConnection] = None
        self.channel: Optional[AsyncChannel] = None
        self._connection_closed: Optional[asyncio.Future] = None
        self._pending: Optional[asyncio.Future] = None
        self.logger: ContextLogger = logger_factory(__name__).child(
            component="RabbitMQConnection"
        )

    async def get_channel(self) -> AsyncChannel:
        log_context = {
            "has_connection": self.connection is not None,
            "has_channel": self.channel is not None,
            "has_pending_connection": self._pending is not None,
        }
        self.logger.debug("Getting RabbitMQ channel...", context=log_context)

        if self.connection is None or self.channel is None:
            if self._pending is None:
                self.logger.debug("Starting new connection attempt", context=log_context)
                self._pending = asyncio.ensure_future(self._initialize())
            try:
                await asyncio.shield(self._pending)
            except Exception as exc:
                self.logger.error(
                    "Error while waiting for connection: %s",
                    exc,
                    context=log_context,
                )
                raise

        if self.channel is None:
            self.logger.error("Channel not available after initialization", context=log_context)
            raise RuntimeError("Channel initialization failed")

        return self.channel

    async def with_channel(self, fn: Callable[[AsyncChannel], Awaitable[T]]) -> T:
        channel = await self.get_channel()
        return await fn(channel)

    async def close(self) -> None:
        channel = self.channel
        connection = self.connection
        closed = self._connection_closed
        try:
            self.logger.debug("Closing RabbitMQ connection...")
            if channel is not None:
                await channel.close()
            if connection is not None and connection.is_open:
                connection.close()
                if closed is not None:
                    await closed
            self.logger.info("RabbitMQ connection closed successfully")
        except Exception as exc:
            self.logger.error("Error closing RabbitMQ connection: %s", exc, exc_info=True)
        finally:
            self._cleanup()

    async def _initialize(self) -> None:
        lg = self.logger.child(method="initialize")
        this_attempt = asyncio.current_task()
        connection: Optional[AsyncioConnection] = None
        closed: Optional[asyncio.Future] = None
        try:
            lg.debug("Connecting to RabbitMQ at %s:%s", self._parameters.host, self._parameters.port)
            connection, closed = await self._open_connection()
            channel = await self._open_channel(connection, closed)
            channel.add_on_close_callback(self._on_channel_closed)
            await self._declare_topology(channel, lg)
        except Exception as exc:
            lg.error("Failed to initialize RabbitMQ connection: %s", exc)
            await self._discard(connection, closed)
            if self._pending is this_attempt:
                self._cleanup()
            raise

        if self._pending is not this_attempt:
            # close() ran while connecting; drop this generation
            lg.warning("Connection attempt superseded, discarding it")
            await self._discard(connection, closed)
            return

        self.connection = connection
        self.channel = channel
        self._connection_closed = closed
        lg.info("RabbitMQ connection established")

    async def _declare_topology(self, channel: AsyncChannel, lg: ContextLogger) -> None:
        config = self.config
        if config.exchange:
            lg.debug("Asserting exchange %s", config.exchange)
            await channel.exchange_declare(
                exchange=config.exchange,
                exchange_type=config.exchange_type or "direct",
                durable=True,
            )

        if config.queue:
            options = config.queue_options
            lg.debug("Asserting queue %s", config.queue)
            await channel.queue_declare(
                queue=config.queue,
                durable=options.durable,
                exclusive=options.exclusive,
                auto_delete=options.auto_delete,
                arguments=options.declare_arguments(),
            )

            if config.exchange:
                lg.debug("Binding queue %s to exchange %s", config.queue, config.exchange)
                await channel.queue_bind(
                    queue=config.queue,
                    exchange=config.exchange,
                    routing_key=config.routing_key or "",
                )

    async def _open_connection(self) -> Tuple[AsyncioConnection, asyncio.Future]:
        loop = asyncio.get_running_loop()
        opened: asyncio.Future = loop.create_future()
        closed: asyncio.Future = loop.create_future()

        def on_open(connection: AsyncioConnection) -> None:
            if not opened.done():
                opened.set_result(connection)

        def on_open_error(_connection: AsyncioConnection, error: object) -> None:
            if not opened.done():
                if not isinstance(error, BaseException):
                    error = AMQPConnectionError(error)
                opened.set_exception(error)

        def on_close(connection: AsyncioConnection, reason: BaseException) -> None:
            if not opened.done():
                opened.set_exception(reason)
            if not closed.done():
                closed.set_result(reason)
            self._on_connection_closed(connection, reason)

        AsyncioConnection(
            parameters=self._parameters,
            on_open_callback=on_open,
            on_open_error_callback=on_open_error,
            on_close_callback=on_close,
            custom_ioloop=loop,
        )
        return await opened, closed

    @staticmethod
    async def _open_channel(
        connection: AsyncioConnection, closed: asyncio.Future
    ) -> AsyncChannel:
        opened: asyncio.Future = asyncio.get_running_loop().create_future()

        def on_open(channel: Channel) -> None:
            if not opened.done():
                opened.set_result(channel)

        connection.channel(on_open_callback=on_open)
        await asyncio.wait({opened, closed}, return_when=asyncio.FIRST_COMPLETED)
        if not opened.done():
            opened.cancel()
            raise closed.result()
        return AsyncChannel(opened.result())

    async def _discard(
        self, connection: Optional[AsyncioConnection], closed: Optional[asyncio.Future]
    ) -> None:
        if connection is None or not connection.is_open:
            return
        try:
            connection.close()
            if closed is not None:
                await closed
        except Exception as exc:
            self.logger.warning("Error discarding RabbitMQ connection: %s", exc)

    def _on_connection_closed(self, connection: AsyncioConnection, reason: BaseException) -> None:
        if connection is not self.connection:
            return
        if isinstance(reason, ConnectionClosedByClient):
            self.logger.info("RabbitMQ connection closed")
        else:
            self.logger.error("RabbitMQ connection error: %s", reason)
        self._cleanup()

    def _on_channel_closed(self, channel: AsyncChannel, reason: BaseException) -> None:
        if channel is not self.channel or isinstance(reason, ChannelClosedByClient):
            return
        if isinstance(reason, AMQPConnectionError):
            # the connection close callback runs next and resets state
            return
        self.logger.warning("RabbitMQ channel closed unexpectedly: %s", reason)
        connection = self.connection
        self._cleanup()
        if connection is not None and connection.is_open:
            connection.close()

    def _cleanup(self) -> None:
        self.logger.debug("Resetting connection state")
        self.connection = None
        self.channel = None
        self._connection_closed = None
        self._pending = None

    async def __aenter__(self) -> RabbitMQConnection:
        await self.get_channel()
        return self

    async def __aexit__(
        self,
        exc_type: Optional[Type[BaseException]],
        exc_val: Optional[BaseException],
        exc_tb: Optional[TracebackType],
    ) -> None:
        await self.close()
