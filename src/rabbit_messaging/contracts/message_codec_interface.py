"""Defines the contract for encoding and decoding message bodies."""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any


class IMessageCodec(ABC):
    """Converts payloads to and from AMQP message bodies."""

    content_type: str = "application/octet-stream"

    @abstractmethod
    def encode(self, message: Any) -> bytes:
        """Serialize a payload into message body bytes."""

    @abstractmethod
    def decode(self, payload: bytes) -> Any:
        """Convert raw message body bytes back into a payload."""
