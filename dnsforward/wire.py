"""Length-prefixed DNS messages over stream transports (TCP, TLS)."""

from __future__ import annotations

import logging
import socket
import struct
from typing import Any, Optional

import dns.message

from .dnscontext import MAX_MSG_SIZE
from .neterrors import is_epipe

logger = logging.getLogger(__name__)

_PREFIX = struct.Struct(">H")


class MessageTooLargeError(ValueError):
    """A DNS message is larger than 64 KiB."""

    def __init__(self, message: str = "dns message is too large") -> None:
        super().__init__(message)


def _read_exact(stream: Any, size: int, what: str) -> bytes:
    chunks = []
    remaining = size
    while remaining > 0:
        if hasattr(stream, "recv"):
            chunk = stream.recv(remaining)
        else:
            chunk = stream.read(remaining)
        if not chunk:
            got = size - remaining
            raise EOFError(f"reading {what}: unexpected EOF after {got} of {size} bytes")
        chunks.append(chunk)
        remaining -= len(chunk)
    return b"".join(chunks)


def read_prefixed(stream: Any) -> bytes:
    """Read a DNS message preceded by its 2-byte big-endian length.

    stream is a socket or a binary file-like object.  Raises EOFError if the
    stream ends early.
    """
    (length,) = _PREFIX.unpack(_read_exact(stream, _PREFIX.size, "len"))
    if length > MAX_MSG_SIZE:
        raise MessageTooLargeError()
    return _read_exact(stream, length, "msg")


def write_prefixed(data: bytes, stream: Any) -> None:
    """Write data preceded by its 2-byte big-endian length."""
    if len(data) > MAX_MSG_SIZE:
        raise MessageTooLargeError()
    packet = _PREFIX.pack(len(data)) + bytes(data)
    if hasattr(stream, "sendall"):
        stream.sendall(packet)
    else:
        stream.write(packet)


def _log_with_non_crit(err: BaseException, msg: str) -> None:
    if isinstance(err, (EOFError, ConnectionResetError, ConnectionAbortedError)) or is_epipe(
        err
    ):
        logger.debug("connection is closed: %s: %s", msg, err)
    elif isinstance(err, (socket.timeout, TimeoutError)):
        logger.debug("connection timed out: %s: %s", msg, err)
    else:
        logger.error("%s: %s", msg, err)


def read_dns_request(stream: Any) -> Optional[dns.message.Message]:
    """Read one DNS request from stream.

    Returns None, after logging the reason, if no valid request could be
    read, which means the connection should be dropped.
    """
    try:
        packet = read_prefixed(stream)
    except (EOFError, OSError, MessageTooLargeError) as exc:
        _log_with_non_crit(exc, "reading msg")
        return None

    try:
        return dns.message.from_wire(packet)
    except Exception as exc:  # noqa: BLE001
        logger.error("handling tcp; unpacking msg: %s", exc)
        return None