"""Defines the contract for RabbitMQ connections."""

from __future__ import annotations

from abc import ABC, abstractmethod
from types import TracebackType
from typing import TYPE_CHECKING, Awaitable, Callable, Optional, Type, TypeVar

if TYPE_CHECKING:
    from rabbit_messaging.connection.async_channel import AsyncChannel

T = TypeVar("T")


class IRabbitMQConnection(ABC):
    """Represents a RabbitMQ connection that lends out a ready channel."""

    @abstractmethod
    async def get_channel(self) -> AsyncChannel:
        """Return the open channel, connecting and declaring topology first if needed."""

    @abstractmethod
    async def with_channel(self, fn: Callable[[AsyncChannel], Awaitable[T]]) -> T:
        """Run ``fn`` with the open channel and return its result."""

    @abstractmethod
    async def close(self) -> None:
        """Close the channel and connection, resetting to a disconnected state."""

    @abstractmethod
    async def __aenter__(self) -> IRabbitMQConnection:
        """Enter a managed connection context."""

    @abstractmethod
    async def __aexit__(
        self,
        exc_type: Optional[Type[BaseException]],
        exc_val: Optional[BaseException],
        exc_tb: Optional[TracebackType],
    ) -> None:
        """Exit a managed connection context."""
