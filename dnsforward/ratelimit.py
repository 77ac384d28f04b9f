"""Per-subnet request rate limiting."""

from __future__ import annotations

import ipaddress
import threading
import time
from collections import deque
from typing import Deque, Iterable, Union

from cachetools import TTLCache

BUCKET_TTL = 3600.0
"""How long a subnet's limiter is kept, in seconds."""

_MAX_BUCKETS = 1 << 62

Address = Union[str, ipaddress.IPv4Address, ipaddress.IPv6Address]


class RateLimiter:
    """Allows at most limit events within any sliding window of interval seconds."""

    def __init__(self, limit: int, interval: float) -> None:
        if limit < 1:
            raise ValueError(f"limit must be positive, got {limit}")
        self.limit = limit
        self.interval = interval
        self._times: Deque[float] = deque()
        self._lock = threading.Lock()

    def try_acquire(self) -> bool:
        """Record an event and return True, or return False if over the limit."""
        with self._lock:
            now = time.monotonic()
            if len(self._times) < self.limit:
                self._times.append(now)
                return True
            if now - self._times[0] < self.interval:
                return False
            self._times.popleft()
            self._times.append(now)
            return True


def _unmap(addr: Address) -> Union[ipaddress.IPv4Address, ipaddress.IPv6Address]:
    ip = ipaddress.ip_address(addr)
    if isinstance(ip, ipaddress.IPv6Address) and ip.ipv4_mapped is not None:
        return ip.ipv4_mapped
    return ip


class IPRateLimiter:
    """Limits requests per second from each client subnet."""

    def __init__(
        self,
        ratelimit: int,
        whitelist: Iterable[Address],
        subnet_len_ipv4: int,
        subnet_len_ipv6: int,
    ) -> None:
        self.ratelimit = ratelimit
        self.whitelist = frozenset(ipaddress.ip_address(a) for a in whitelist)
        self.subnet_len_ipv4 = subnet_len_ipv4
        self.subnet_len_ipv6 = subnet_len_ipv6
        self._buckets: TTLCache = TTLCache(maxsize=_MAX_BUCKETS, ttl=BUCKET_TTL)
        self._lock = threading.Lock()

    def _limiter_for(self, key: str) -> RateLimiter:
        with self._lock:
            limiter = self._buckets.get(key)
            if limiter is None:
                limiter = RateLimiter(self.ratelimit, 1.0)
                self._buckets[key] = limiter
            return limiter

    def is_ratelimited(self, addr: Address) -> bool:
        """Whether a request from addr exceeds its subnet's rate limit."""
        if self.ratelimit <= 0:
            return False

        ip = _unmap(addr)
        if ip in self.whitelist:
            return False

        bits = self.subnet_len_ipv4 if ip.version == 4 else self.subnet_len_ipv6
        key = str(ipaddress.ip_network((ip, bits), strict=False).network_address)
        return not self._limiter_for(key).try_acquire()