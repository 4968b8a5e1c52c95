"""JSON implementation of the message codec."""

from __future__ import annotations

import json
from datetime import date, datetime
from typing import Any

from rabbit_messaging.contracts import IMessageCodec


def _encode_default(value: Any) -> Any:
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    raise TypeError(f"Object of type {type(value).__name__} is not JSON serializable")


class JSONMessageCodec(IMessageCodec):
    """Encodes payloads as compact UTF-8 JSON."""

    content_type = "application/json"

    def encode(self, message: Any) -> bytes:
        try:
            text = json.dumps(
                message,
                ensure_ascii=False,
                separators=(",", ":"),
                default=_encode_default,
            )
        except (TypeError, ValueError) as exc:
            raise ValueError("Failed to encode message payload as JSON.") from exc
        return text.encode("utf-8")

    def decode(self, payload: bytes) -> Any:
        try:
            return json.loads(payload.decode("utf-8"))
        except UnicodeDecodeError as exc:
            raise ValueError("Message payload is not valid UTF-8.") from exc
        except json.JSONDecodeError as exc:
            raise ValueError("Failed to decode message payload as JSON.") from exc
