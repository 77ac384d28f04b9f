"""Background refresh of expired cached responses."""

from __future__ import annotations

import logging
import threading
from typing import Callable, Set

from .dnscontext import DNSContext

logger = logging.getLogger(__name__)


class OptimisticResolver:
    """Resolves expired cached requests, one at a time per key."""

    def __init__(
        self,
        reply_from_upstream: Callable[[DNSContext], bool],
        cache_resp: Callable[[DNSContext], None],
    ) -> None:
        self.reply_from_upstream = reply_from_upstream
        self.cache_resp = cache_resp
        self._in_flight: Set[str] = set()
        self._lock = threading.Lock()

    def resolve_once(self, dctx: DNSContext, key: bytes) -> bool:
        """Resolve dctx and cache the result unless key is already being resolved.

        Returns True if this call performed the resolution.  dctx must not be
        used elsewhere concurrently.
        """
        key_hex = key.hex()
        with self._lock:
            if key_hex in self._in_flight:
                return False
            self._in_flight.add(key_hex)

        try:
            try:
                ok = self.reply_from_upstream(dctx)
            except Exception as exc:  # noqa: BLE001
                logger.debug("resolving request for optimistic cache: %s", exc)
                ok = False
            if ok:
                self.cache_resp(dctx)
        except Exception:  # noqa: BLE001
            logger.exception("optimistic resolution failed")
        finally:
            with self._lock:
                self._in_flight.discard(key_hex)
        return True