"""Detection of recursive requests in DNS forwarding."""

from __future__ import annotations

import struct
import threading
import time

import dns.message
from cachetools import LRUCache

from .netutils import MAX_DOMAIN_NAME_LEN

RECURSION_TTL = 1.0
"""How long, in seconds, a sent request is remembered."""

CACHED_RECURRENT_REQ_NUM = 1000
"""The maximum number of remembered requests."""

_SIGNATURE_LEN = 2 * 2 + MAX_DOMAIN_NAME_LEN


def msg_to_signature(msg: dns.message.Message) -> bytes:
    """Return the signature of msg: its ID, question type and question name."""
    q = msg.question[0]
    name = q.name.to_text().encode("ascii", errors="replace")[:MAX_DOMAIN_NAME_LEN]
    sig = struct.pack(">HH", msg.id, q.rdtype) + name
    return sig.ljust(_SIGNATURE_LEN, b"\x00")


class RecursionDetector:
    """Remembers recently sent requests to detect them coming back."""

    def __init__(
        self, ttl: float = RECURSION_TTL, max_count: int = CACHED_RECURRENT_REQ_NUM
    ) -> None:
        self.ttl = ttl
        self._recent: LRUCache = LRUCache(maxsize=max_count)
        self._lock = threading.Lock()

    def check(self, msg: dns.message.Message) -> bool:
        """Whether msg was sent by the server recently."""
        if not msg.question:
            return False
        key = msg_to_signature(msg)
        with self._lock:
            expire = self._recent.get(key)
        if expire is None:
            return False
        return time.monotonic_ns() < expire

    def add(self, msg: dns.message.Message) -> None:
        """Remember msg if it has a question."""
        now = time.monotonic_ns()
        if not msg.question:
            return
        key = msg_to_signature(msg)
        with self._lock:
            self._recent[key] = now + int(self.ttl * 1_000_000_000)

    def clear(self) -> None:
        """Forget every remembered request."""
        with self._lock:
            self._recent.clear()