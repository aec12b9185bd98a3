"""
Relay wire protocol.

One request per TCP connection. Lines are terminated by "\\n"; blobs are
length-prefixed so ciphertext may contain any byte value:

    SEND request:   SEND\\n <recipient_id>\\n <len>\\n <len raw bytes>
    SEND response:  OK\\n
    FETCH request:  FETCH\\n <recipient_id>\\n
    FETCH response: (<len>\\n <len raw bytes>)* END\\n
    errors:         ERR unknown op\\n | ERR bad frame\\n
"""

import asyncio
from enum import Enum
from dataclasses import dataclass
from typing import Optional

from .errors import FramingError, UnknownOperation

OP_SEND = "SEND"
OP_FETCH = "FETCH"
OPERATIONS = (OP_SEND, OP_FETCH)

REPLY_OK = b"OK\n"
REPLY_END = b"END\n"
ERR_PREFIX = "ERR"
ERR_UNKNOWN_OP = b"ERR unknown op\n"
ERR_BAD_FRAME = b"ERR bad frame\n"

DEFAULT_MAX_LINE = 1024
DEFAULT_MAX_FRAME_SIZE = 1024 * 1024


class RequestState(Enum):
    """Per-connection parser states."""
    AWAIT_OP = "await_op"
    AWAIT_RECIPIENT = "await_recipient"
    AWAIT_BLOB = "await_blob"
    RESPOND = "respond"


@dataclass
class Request:
    """A fully parsed relay request."""
    op: str
    recipient_id: str
    blob: Optional[bytes] = None


def encode_frame(blob: bytes) -> bytes:
    """Length-prefix a blob."""
    return str(len(blob)).encode('ascii') + b"\n" + bytes(blob)


def encode_send(recipient_id: str, blob: bytes) -> bytes:
    validate_recipient_id(recipient_id)
    return f"{OP_SEND}\n{recipient_id}\n".encode('ascii') + encode_frame(blob)


def encode_fetch(recipient_id: str) -> bytes:
    validate_recipient_id(recipient_id)
    return f"{OP_FETCH}\n{recipient_id}\n".encode('ascii')


def validate_recipient_id(recipient_id: str, max_line: int = DEFAULT_MAX_LINE) -> str:
    """Recipient IDs are non-empty printable ASCII without whitespace."""
    if not recipient_id:
        raise FramingError("Empty recipient ID")
    if len(recipient_id) > max_line:
        raise FramingError("Recipient ID too long")
    if not recipient_id.isascii() or not recipient_id.isprintable():
        raise FramingError("Recipient ID must be printable ASCII")
    if any(c.isspace() for c in recipient_id):
        raise FramingError("Recipient ID must not contain whitespace")
    return recipient_id


async def read_line(reader: asyncio.StreamReader, max_line: int = DEFAULT_MAX_LINE) -> str:
    """Read one "\\n"-terminated ASCII line without its terminator."""
    try:
        raw = await reader.readuntil(b"\n")
    except asyncio.IncompleteReadError as e:
        raise FramingError(f"Connection closed mid-line ({len(e.partial)} bytes read)") from None
    except asyncio.LimitOverrunError:
        raise FramingError("Line exceeds stream buffer limit") from None

    line = raw[:-1]
    if line.endswith(b"\r"):
        line = line[:-1]
    if len(line) > max_line:
        raise FramingError(f"Line too long ({len(line)} > {max_line} bytes)")
    try:
        return line.decode('ascii')
    except UnicodeDecodeError:
        raise FramingError("Line is not ASCII") from None


def parse_length(line: str, max_frame_size: int = DEFAULT_MAX_FRAME_SIZE) -> int:
    """Parse a frame length header."""
    if not line.isdigit() or not line.isascii():
        raise FramingError(f"Invalid frame length {line[:32]!r}")
    length = int(line)
    if length > max_frame_size:
        raise FramingError(f"Frame of {length} bytes exceeds limit of {max_frame_size}")
    return length


async def read_frame(
    reader: asyncio.StreamReader,
    max_frame_size: int = DEFAULT_MAX_FRAME_SIZE,
    max_line: int = DEFAULT_MAX_LINE,
) -> bytes:
    """Read one length-prefixed blob."""
    length = parse_length(await read_line(reader, max_line), max_frame_size)
    try:
        return await reader.readexactly(length)
    except asyncio.IncompleteReadError as e:
        raise FramingError(
            f"Connection closed mid-frame ({len(e.partial)} of {length} bytes)"
        ) from None


async def read_request(
    reader: asyncio.StreamReader,
    max_frame_size: int = DEFAULT_MAX_FRAME_SIZE,
    max_line: int = DEFAULT_MAX_LINE,
) -> Request:
    """
    Parse a single request from a connection.

    Raises:
        FramingError: malformed line, recipient ID or blob frame
        UnknownOperation: op line is not SEND or FETCH
    """
    state = RequestState.AWAIT_OP
    op = recipient_id = None
    blob = None

    while state is not RequestState.RESPOND:
        if state is RequestState.AWAIT_OP:
            op = (await read_line(reader, max_line)).strip()
            state = RequestState.AWAIT_RECIPIENT

        elif state is RequestState.AWAIT_RECIPIENT:
            recipient_id = (await read_line(reader, max_line)).strip()
            if op not in OPERATIONS:
                raise UnknownOperation(op)
            validate_recipient_id(recipient_id, max_line)
            state = RequestState.AWAIT_BLOB if op == OP_SEND else RequestState.RESPOND

        elif state is RequestState.AWAIT_BLOB:
            blob = await read_frame(reader, max_frame_size, max_line)
            state = RequestState.RESPOND

    return Request(op=op, recipient_id=recipient_id, blob=blob)
