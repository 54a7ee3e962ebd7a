"""
RESP Codec Module

Converts between wire bytes and Python values for the Redis serialization
protocol (RESP2).

Request Format (client -> server):
    *<n>\r\n
    $<len1>\r\n<arg1 bytes>\r\n
    ...
    $<lenN>\r\n<argN bytes>\r\n

Reply Encoding (Python value -> wire):
    None                   -> $-1\r\n
    str starting "+"/"-"   -> emitted verbatim plus \r\n (simple string / error)
    other str              -> $<utf-8 byte length>\r\n<bytes>\r\n
    bytes                  -> $<len>\r\n<bytes>\r\n (never treated as a sigil)
    int                    -> :<value>\r\n
    list / tuple           -> *<count>\r\n followed by each element
    anything else          -> -ERR unsupported response type\r\n

Handlers rely on the sigil rule to return pre-built replies such as "+OK"
without them being wrapped as bulk strings.
"""

from typing import Any, List, Sequence, Tuple, Union

from ..config.settings import settings
from ..errors import IncompleteFrameError, ProtocolError

CRLF = b"\r\n"
NULL_BULK = b"$-1\r\n"
UNSUPPORTED_TYPE = b"-ERR unsupported response type\r\n"

Buffer = Union[bytes, bytearray]


def _read_line(data: Buffer, pos: int) -> Tuple[bytes, int]:
    """Return the line starting at pos (without CRLF) and the offset after it."""
    limit = settings.MAX_INLINE_LENGTH
    end = data.find(CRLF, pos)
    if end == -1:
        # limit + 1 bytes may still be a full line whose "\n" is in flight
        if len(data) - pos > limit + 1:
            raise ProtocolError(f"line exceeds {limit} bytes without CRLF")
        raise IncompleteFrameError("missing CRLF terminator")
    if end - pos > limit:
        raise ProtocolError(f"line exceeds {limit} bytes")
    return bytes(data[pos:end]), end + 2


def _parse_length(raw: bytes, what: str) -> int:
    if not raw.isdigit():
        raise ProtocolError(f"invalid {what} length {raw!r}")
    if len(raw) > len(str(settings.MAX_BULK_LENGTH)):
        raise ProtocolError(f"{what} length exceeds limit")
    length = int(raw)
    if length > settings.MAX_BULK_LENGTH:
        raise ProtocolError(f"{what} length {length} exceeds limit")
    return length


def _expect_marker(data: Buffer, pos: int, marker: bytes) -> None:
    if pos >= len(data):
        raise IncompleteFrameError(f"expected '{marker.decode()}'")
    found = bytes(data[pos:pos + 1])
    if found != marker:
        raise ProtocolError(f"expected '{marker.decode()}', got {found!r}")


def parse_frame(data: Buffer, pos: int = 0) -> Tuple[List[bytes], int]:
    """
    Parse one request frame starting at pos.

    Args:
        data: Buffer holding zero or more complete frames
        pos: Offset of the frame to parse

    Returns:
        (args, end) where args is the list of byte strings and end is the
        offset just past the frame.

    Raises:
        IncompleteFrameError: The buffer ends before the frame is complete
        ProtocolError: The frame is malformed

    Examples:
        >>> parse_frame(b"*1\\r\\n$4\\r\\nPING\\r\\n")
        ([b'PING'], 14)
    """
    _expect_marker(data, pos, b"*")
    header, pos = _read_line(data, pos)
    count = _parse_length(header[1:], "multibulk")

    args = []
    for _ in range(count):
        _expect_marker(data, pos, b"$")
        header, pos = _read_line(data, pos)
        length = _parse_length(header[1:], "bulk")

        end = pos + length
        if len(data) < end + 2:
            # Any bytes already present past the payload must still be CRLF
            tail = bytes(data[end:end + 2])
            if tail and not CRLF.startswith(tail):
                raise ProtocolError("bulk string not terminated by CRLF")
            raise IncompleteFrameError(f"expected {length} bytes of bulk data")
        if bytes(data[end:end + 2]) != CRLF:
            raise ProtocolError("bulk string not terminated by CRLF")

        args.append(bytes(data[pos:end]))
        pos = end + 2

    return args, pos


def decode(data: Buffer) -> List[bytes]:
    """
    Decode a buffer holding exactly one request.

    A truncated buffer surfaces as IncompleteFrameError, which is a
    ProtocolError. Bytes left over after the request are rejected too.
    """
    args, end = parse_frame(data)
    if end != len(data):
        raise ProtocolError(f"{len(data) - end} unexpected trailing bytes")
    return args


def encode(value: Any) -> bytes:
    """
    Encode a reply value to wire bytes.

    Examples:
        >>> encode("+OK")
        b'+OK\\r\\n'
        >>> encode(b"hello")
        b'$5\\r\\nhello\\r\\n'
        >>> encode([b"a", 1, None])
        b'*3\\r\\n$1\\r\\na\\r\\n:1\\r\\n$-1\\r\\n'
    """
    if value is None:
        return NULL_BULK

    if isinstance(value, str):
        if value[:1] in ("+", "-"):
            return value.encode("utf-8") + CRLF
        return _encode_bulk(value.encode("utf-8"))

    if isinstance(value, (bytes, bytearray)):
        return _encode_bulk(bytes(value))

    # bool is an int subclass but has no RESP integer meaning
    if isinstance(value, int) and not isinstance(value, bool):
        return b":%d\r\n" % value

    if isinstance(value, (list, tuple)):
        parts = [b"*%d\r\n" % len(value)]
        parts.extend(encode(item) for item in value)
        return b"".join(parts)

    return UNSUPPORTED_TYPE


def _encode_bulk(payload: bytes) -> bytes:
    return b"$%d\r\n%s\r\n" % (len(payload), payload)


def encode_request(args: Sequence[Union[str, bytes]]) -> bytes:
    """
    Encode a command as an array of bulk strings, the way clients send it.

    Unlike encode(), strings are never interpreted as simple strings here.
    """
    parts = [b"*%d\r\n" % len(args)]
    for arg in args:
        if isinstance(arg, str):
            arg = arg.encode("utf-8")
        parts.append(_encode_bulk(bytes(arg)))
    return b"".join(parts)


def parse_reply(data: Buffer, pos: int = 0) -> Tuple[Any, int]:
    """
    Parse one reply value starting at pos.

    Simple strings and errors come back as str with their sigil kept
    ("+OK", "-ERR ..."), so encode() reproduces the original bytes.

    Returns:
        (value, end)

    Raises:
        IncompleteFrameError: More bytes are needed
        ProtocolError: Unknown type marker or malformed length
    """
    if pos >= len(data):
        raise IncompleteFrameError("empty reply")

    line, after = _read_line(data, pos)
    marker, body = line[:1], line[1:]

    if marker in (b"+", b"-"):
        return line.decode("utf-8"), after

    if marker == b":":
        try:
            return int(body), after
        except ValueError:
            raise ProtocolError(f"invalid integer reply {body!r}") from None

    if marker == b"$":
        if body == b"-1":
            return None, after
        length = _parse_length(body, "bulk")
        end = after + length
        if len(data) < end + 2:
            raise IncompleteFrameError(f"expected {length} bytes of bulk data")
        if bytes(data[end:end + 2]) != CRLF:
            raise ProtocolError("bulk string not terminated by CRLF")
        return bytes(data[after:end]), end + 2

    if marker == b"*":
        if body == b"-1":
            return None, after
        count = _parse_length(body, "multibulk")
        items = []
        for _ in range(count):
            item, after = parse_reply(data, after)
            items.append(item)
        return items, after

    raise ProtocolError(f"unknown reply type {marker!r}")
