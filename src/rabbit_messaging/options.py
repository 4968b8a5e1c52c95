"""Per-call options for publishing and consuming."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Mapping, Optional


@dataclass(frozen=True)
class PublishOptions:
    """Message properties applied to a single publish."""

    persistent: bool = True
    correlation_id: Optional[str] = None
    headers: Optional[Mapping[str, Any]] = None


@dataclass(frozen=True)
class ConsumeOptions:
    """Registration options for a consumer.

    With ``no_ack`` the broker settles deliveries itself, so the consumer never
    acks or nacks.
    """

    no_ack: bool = False
    consumer_tag: Optional[str] = None
