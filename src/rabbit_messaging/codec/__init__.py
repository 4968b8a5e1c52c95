"""Message body codecs."""

from .json_message_codec import JSONMessageCodec

__all__ = ["JSONMessageCodec"]
