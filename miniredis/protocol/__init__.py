"""Protocol module for Mini-Redis."""

from .commands import CommandType, Deferred
from .resp import decode, encode, encode_request, parse_frame, parse_reply

__all__ = [
    "CommandType",
    "Deferred",
    "decode",
    "encode",
    "encode_request",
    "parse_frame",
    "parse_reply",
]
