"""
Per-zone run exclusion within one process.

The remote changelist is a single shared resource per zone, so only one
run per zone may be in flight. Runs for different zones never contend.
A zone's lock exists only while a run holds it or waits for it.
"""

import logging
import threading
from contextlib import contextmanager
from typing import Dict, Iterator, List, Optional

from ..errors import ZoneBusyError
from ..utils.validators import sanitize_fqdn

logger = logging.getLogger(__name__)


class ZoneLockRegistry:
    def __init__(self):
        self._guard = threading.Lock()
        # zone -> [lock, number of holders and waiters]
        self._locks: Dict[str, List] = {}

    def _checkout(self, key: str) -> threading.Lock:
        with self._guard:
            entry = self._locks.setdefault(key, [threading.Lock(), 0])
            entry[1] += 1
            return entry[0]

    def _checkin(self, key: str) -> None:
        with self._guard:
            entry = self._locks[key]
            entry[1] -= 1
            if entry[1] == 0:
                del self._locks[key]

    def is_locked(self, zone: str) -> bool:
        with self._guard:
            entry = self._locks.get(sanitize_fqdn(zone))
            return entry is not None and entry[0].locked()

    @contextmanager
    def hold(
        self,
        zone: str,
        blocking: bool = True,
        timeout: Optional[float] = None,
    ) -> Iterator[None]:
        """
        Hold the zone for the duration of the block.

        Raises ZoneBusyError when ``blocking`` is False and the zone is in
        use, or when ``timeout`` passes before it is released.
        """
        key = sanitize_fqdn(zone)
        lock = self._checkout(key)
        try:
            if not blocking:
                acquired = lock.acquire(blocking=False)
            elif timeout is not None:
                acquired = lock.acquire(timeout=timeout)
            else:
                acquired = lock.acquire()
        except BaseException:
            self._checkin(key)
            raise

        if not acquired:
            self._checkin(key)
            raise ZoneBusyError(f"Another change run is in flight for zone {zone}", status=409)

        logger.debug(f"Zone {zone} locked")
        try:
            yield
        finally:
            lock.release()
            self._checkin(key)
            logger.debug(f"Zone {zone} released")
