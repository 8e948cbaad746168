"""Connectivity monitoring.

ConnectivityMonitor is the manual signal (set by the host application or by
tests). HttpConnectivityMonitor probes a health URL with httpx and caches
the answer for a short window so that back-to-back sync passes do not pay
for a round trip each.
"""

import logging
import time
from typing import Callable, Dict, Optional

import httpx

from carryzone.config import Settings
from carryzone.observable import StateChannel, Subscription

logger = logging.getLogger(__name__)


class ConnectivityMonitor:
    """Online/offline signal.

    Observers receive the current value on subscription and then only
    changes (consecutive identical values are dropped).
    """

    def __init__(self, online: bool = True):
        self._state: StateChannel[bool] = StateChannel(online, name="connectivity", distinct=True)

    def is_online(self) -> bool:
        return self._state.value

    def set_online(self, online: bool) -> None:
        if online != self._state.value:
            logger.info(f"Connectivity changed: {'online' if online else 'offline'}")
        self._state.publish(online)

    def observe(self, callback: Callable[[bool], None]) -> Subscription:
        return self._state.subscribe(callback)


class HttpConnectivityMonitor(ConnectivityMonitor):
    """Connectivity signal derived from probing an HTTP endpoint.

    Any HTTP response below 500 counts as reachable (an unauthenticated probe
    of a REST root may legitimately answer 401). Transport errors and
    timeouts count as offline.

    Args:
        url: Endpoint to probe.
        timeout: Probe timeout in seconds.
        cache_ttl: Seconds during which the last probe result is reused.
        headers: Extra request headers (e.g. the Supabase ``apikey``).
        client: Optional httpx.Client to reuse.
    """

    def __init__(
        self,
        url: str,
        timeout: float = 5.0,
        cache_ttl: float = 30.0,
        headers: Optional[Dict[str, str]] = None,
        client: Optional[httpx.Client] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        super().__init__(online=False)
        self.url = url
        self.timeout = timeout
        self.cache_ttl = cache_ttl
        self._headers = headers or {}
        self._client = client
        self._clock = clock
        self._last_check: Optional[float] = None

    @classmethod
    def from_settings(cls, settings: Settings) -> Optional["HttpConnectivityMonitor"]:
        """Build a probe for the configured backend, or None without one."""
        url = settings.resolve_health_url()
        if not url:
            return None
        headers = {"apikey": settings.supabase_key} if settings.supabase_key else {}
        return cls(
            url,
            timeout=settings.connectivity_timeout,
            cache_ttl=settings.connectivity_cache_ttl,
            headers=headers,
        )

    def is_online(self) -> bool:
        """Check if the backend is reachable, probing when the cache expired."""
        now = self._clock()
        if self._last_check is not None and now - self._last_check < self.cache_ttl:
            return self._state.value
        online = self.probe()
        self._last_check = now
        self.set_online(online)
        return online

    def invalidate(self) -> None:
        """Force the next is_online() call to probe."""
        self._last_check = None

    def probe(self) -> bool:
        try:
            if self._client is not None:
                response = self._client.get(self.url, headers=self._headers, timeout=self.timeout)
            else:
                response = httpx.get(self.url, headers=self._headers, timeout=self.timeout)
        except (httpx.HTTPError, httpx.InvalidURL) as e:
            logger.debug(f"Connectivity check failed: {e}", exc_info=True)
            return False
        if response.status_code >= 500:
            logger.debug(f"Connectivity check got status {response.status_code}")
            return False
        return True
