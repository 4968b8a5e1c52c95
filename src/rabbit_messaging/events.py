"""Payload contracts for the user events exchanged over the broker.

These describe message bodies only; the transport does not validate them.
"""

from __future__ import annotations

from datetime import datetime
from typing import Literal, TypedDict, Union


class EventMetadata(TypedDict, total=False):
    timestamp: Union[datetime, str]
    source: str
    correlationId: str


class UserCreatedData(TypedDict):
    userId: str
    email: str
    name: str


class UserDeletedData(TypedDict):
    userId: str


class _UserCreatedEvent(TypedDict):
    type: Literal["USER_CREATED"]
    data: UserCreatedData


class UserCreatedEvent(_UserCreatedEvent, total=False):
    metadata: EventMetadata


class _UserDeletedEvent(TypedDict):
    type: Literal["USER_DELETED"]
    data: UserDeletedData


class UserDeletedEvent(_UserDeletedEvent, total=False):
    metadata: EventMetadata


UserEvent = Union[UserCreatedEvent, UserDeletedEvent]
