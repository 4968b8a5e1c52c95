"""Shared fixtures: an in-memory stand-in for pika's asyncio connection.

``FakeBroker.connect`` has the ``AsyncioConnection`` constructor signature and
answers every channel call through the event loop, the way pika does, so the
async wrappers run unchanged on top of it.
"""

from __future__ import annotations

import asyncio
import itertools
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional, Tuple

import pika
import pytest
from pika.exceptions import (
    ChannelClosedByClient,
    ChannelWrongStateError,
    ConnectionClosedByBroker,
    ConnectionClosedByClient,
    ConnectionWrongStateError,
)
from pika.frame import Method
from pika.spec import Basic, Exchange, Queue


@dataclass
class PublishedMessage:
    exchange: str
    routing_key: str
    body: bytes
    properties: pika.BasicProperties


class FakePikaChannel:
    def __init__(self, connection: "FakeAsyncioConnection", channel_number: int) -> None:
        self.connection = connection
        self.broker = connection.broker
        self.channel_number = channel_number
        self.is_open = True
        self.calls: List[Tuple[str, Dict[str, Any]]] = []
        self.acks: List[int] = []
        self.nacks: List[Tuple[int, bool]] = []
        self._close_callbacks: List[Callable[..., None]] = []
        self._cancel_callbacks: List[Callable[..., None]] = []
        self._close_reported = False

    @property
    def is_closed(self) -> bool:
        return not self.is_open

    @property
    def consumer_tags(self) -> List[str]:
        return [tag for tag, (channel, _, _) in self.broker.consumers.items() if channel is self]

    def calls_named(self, name: str) -> List[Dict[str, Any]]:
        return [kwargs for call, kwargs in self.calls if call == name]

    def add_on_close_callback(self, callback: Callable[..., None]) -> None:
        self._close_callbacks.append(callback)

    def add_on_cancel_callback(self, callback: Callable[..., None]) -> None:
        self._cancel_callbacks.append(callback)

    def _reply(self, name: str, reply: Any, callback: Optional[Callable[..., None]]) -> None:
        failure = self.broker.fail_rpc.get(name)
        if failure is not None:
            self.is_open = False
            self.broker.loop.call_soon(self._report_closed, failure)
            return
        if callback is not None:
            self.broker.loop.call_soon(callback, Method(self.channel_number, reply))

    def exchange_declare(self, exchange, exchange_type="direct", durable=False, callback=None, **kwargs):
        self.calls.append(
            ("exchange_declare", {"exchange": exchange, "exchange_type": exchange_type, "durable": durable})
        )
        self.broker.exchanges[exchange] = str(exchange_type)
        self._reply("exchange_declare", Exchange.DeclareOk(), callback)

    def queue_declare(
        self,
        queue,
        durable=False,
        exclusive=False,
        auto_delete=False,
        arguments=None,
        callback=None,
        **kwargs,
    ):
        self.calls.append(
            (
                "queue_declare",
                {
                    "queue": queue,
                    "durable": durable,
                    "exclusive": exclusive,
                    "auto_delete": auto_delete,
                    "arguments": arguments,
                },
            )
        )
        self.broker.backlog.setdefault(queue, [])
        self._reply("queue_declare", Queue.DeclareOk(queue=queue, message_count=0, consumer_count=0), callback)

    def queue_bind(self, queue, exchange, routing_key=None, callback=None, **kwargs):
        self.calls.append(("queue_bind", {"queue": queue, "exchange": exchange, "routing_key": routing_key}))
        self.broker.bindings.append((exchange, queue, routing_key or ""))
        self._reply("queue_bind", Queue.BindOk(), callback)

    def basic_qos(self, prefetch_count=0, callback=None, **kwargs):
        self.calls.append(("basic_qos", {"prefetch_count": prefetch_count}))
        self._reply("basic_qos", Basic.QosOk(), callback)

    def basic_consume(
        self, queue, on_message_callback, auto_ack=False, consumer_tag=None, callback=None, **kwargs
    ):
        tag = consumer_tag or f"ctag{self.channel_number}.{next(self.broker.tag_counter)}"
        self.calls.append(
            ("basic_consume", {"queue": queue, "auto_ack": auto_ack, "consumer_tag": consumer_tag})
        )
        self._reply("basic_consume", Basic.ConsumeOk(consumer_tag=tag), callback)
        if self.is_open:
            self.broker.consumers[tag] = (self, queue, on_message_callback)
            self.broker.loop.call_soon(self.broker.drain_backlog, queue)
        return tag

    def basic_cancel(self, consumer_tag="", callback=None):
        self.calls.append(("basic_cancel", {"consumer_tag": consumer_tag}))
        if consumer_tag not in self.consumer_tags:
            # pika logs "consumer not found" and never replies
            return
        self.broker.consumers.pop(consumer_tag, None)
        self._reply("basic_cancel", Basic.CancelOk(consumer_tag=consumer_tag), callback)

    def basic_publish(self, exchange, routing_key, body, properties=None, mandatory=False):
        if not self.is_open:
            raise ChannelWrongStateError("Channel is closed.")
        self.calls.append(("basic_publish", {"exchange": exchange, "routing_key": routing_key}))
        self.broker.route(exchange, routing_key, body, properties or pika.BasicProperties())

    def basic_ack(self, delivery_tag=0, multiple=False):
        self.acks.append(delivery_tag)

    def basic_nack(self, delivery_tag=0, multiple=False, requeue=True):
        self.nacks.append((delivery_tag, requeue))

    def close(self, reply_code=0, reply_text="Normal shutdown"):
        if not self.is_open:
            raise ChannelWrongStateError("Channel is closed.")
        self.calls.append(("close", {}))
        self.is_open = False
        self.broker.loop.call_soon(self._report_closed, ChannelClosedByClient(reply_code, reply_text))

    def cancel_from_broker(self, consumer_tag: str) -> None:
        self.broker.consumers.pop(consumer_tag, None)
        for callback in list(self._cancel_callbacks):
            callback(Method(self.channel_number, Basic.Cancel(consumer_tag=consumer_tag)))

    def _report_closed(self, reason: BaseException) -> None:
        self.is_open = False
        if self._close_reported:
            return
        self._close_reported = True
        for tag in self.consumer_tags:
            del self.broker.consumers[tag]
        for callback in list(self._close_callbacks):
            callback(self, reason)


class FakeAsyncioConnection:
    def __init__(
        self,
        broker: "FakeBroker",
        parameters=None,
        on_open_callback=None,
        on_open_error_callback=None,
        on_close_callback=None,
        custom_ioloop=None,
    ) -> None:
        self.broker = broker
        self.parameters = parameters
        self.is_open = False
        self.channels: List[FakePikaChannel] = []
        self._on_close = on_close_callback
        broker.loop = custom_ioloop or asyncio.get_running_loop()
        if broker.fail_connect is not None:
            broker.loop.call_soon(on_open_error_callback, self, broker.fail_connect)
        else:
            broker.loop.call_soon(self._open, on_open_callback)

    @property
    def is_closed(self) -> bool:
        return not self.is_open

    def _open(self, callback: Callable[..., None]) -> None:
        self.is_open = True
        callback(self)

    def channel(self, channel_number=None, on_open_callback=None):
        channel = FakePikaChannel(self, len(self.channels) + 1)
        self.channels.append(channel)
        self.broker.loop.call_soon(on_open_callback, channel)
        return channel

    def close(self, reply_code=200, reply_text="Normal shutdown"):
        if not self.is_open:
            raise ConnectionWrongStateError("Connection is closed.")
        self._shutdown(ConnectionClosedByClient(reply_code, reply_text))

    def drop(self, reason: Optional[BaseException] = None) -> None:
        """Simulate the broker closing the connection."""
        self._shutdown(reason or ConnectionClosedByBroker(320, "CONNECTION_FORCED"))

    def _shutdown(self, reason: BaseException) -> None:
        self.is_open = False
        for channel in self.channels:
            channel.is_open = False
            self.broker.loop.call_soon(channel._report_closed, reason)
        self.broker.loop.call_soon(self._on_close, self, reason)


class FakeBroker:
    def __init__(self) -> None:
        self.loop: Optional[asyncio.AbstractEventLoop] = None
        self.connections: List[FakeAsyncioConnection] = []
        self.fail_connect: Optional[BaseException] = None
        self.fail_rpc: Dict[str, BaseException] = {}
        self.exchanges: Dict[str, str] = {}
        self.bindings: List[Tuple[str, str, str]] = []
        self.backlog: Dict[str, List[Tuple[bytes, pika.BasicProperties]]] = {}
        self.consumers: Dict[str, Tuple[FakePikaChannel, str, Callable[..., None]]] = {}
        self.published: List[PublishedMessage] = []
        self.tag_counter = itertools.count(1)
        self.delivery_tags = itertools.count(1)

    def connect(self, **kwargs: Any) -> FakeAsyncioConnection:
        connection = FakeAsyncioConnection(self, **kwargs)
        self.connections.append(connection)
        return connection

    @property
    def channel(self) -> FakePikaChannel:
        return self.connections[-1].channels[-1]

    def route(self, exchange: str, routing_key: str, body: bytes, properties: pika.BasicProperties) -> None:
        self.published.append(PublishedMessage(exchange, routing_key, body, properties))
        if exchange == "":
            targets = [routing_key]
        else:
            fanout = self.exchanges.get(exchange) == "fanout"
            targets = [
                queue
                for bound_exchange, queue, key in self.bindings
                if bound_exchange == exchange and (fanout or key == routing_key)
            ]
        for queue in targets:
            self.backlog.setdefault(queue, []).append((body, properties))
            self.loop.call_soon(self.drain_backlog, queue)

    def drain_backlog(self, queue: str) -> None:
        consumers = [
            (tag, channel, callback)
            for tag, (channel, bound_queue, callback) in self.consumers.items()
            if bound_queue == queue and channel.is_open
        ]
        if not consumers:
            return
        tag, channel, callback = consumers[0]
        pending, self.backlog[queue] = self.backlog.get(queue, []), []
        for body, properties in pending:
            method = Basic.Deliver(
                consumer_tag=tag,
                delivery_tag=next(self.delivery_tags),
                routing_key=queue,
            )
            callback(channel, method, properties, body)

    async def drain(self, rounds: int = 20) -> None:
        """Let scheduled callbacks and the tasks they spawn run."""
        for _ in range(rounds):
            await asyncio.sleep(0)


@pytest.fixture
def fake_broker(monkeypatch: pytest.MonkeyPatch) -> FakeBroker:
    broker = FakeBroker()
    monkeypatch.setattr(
        "rabbit_messaging.connection.rabbitmq_connection.AsyncioConnection",
        broker.connect,
    )
    return broker
