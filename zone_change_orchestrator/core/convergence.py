"""
Convergence Poller - Waits for a submitted change to reach every server

The control plane has no push notification for activation, so the poller
reads the zone status on a fixed interval until the activation is ACTIVE or
FAILED, or until the deadline passes (TIMEOUT).
"""

import logging
import time
from typing import Callable, Dict, Optional

from ..errors import TransientError
from ..providers.dns_client import EdgeDNSClient
from ..utils.cancellation import CancellationToken, ensure_token
from .models import ActivationState, PropagationStatus, SubmissionHandle

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[PropagationStatus], None]

_STATE_MAP = {
    "NEW": ActivationState.PENDING,
    "PENDING": ActivationState.PENDING,
    "ACTIVE": ActivationState.ACTIVE,
    "FAILED": ActivationState.FAILED,
    "ERROR": ActivationState.FAILED,
}


class ConvergencePoller:
    """Polls zone activation status for one submission at a time."""

    def __init__(
        self,
        client: EdgeDNSClient,
        poll_interval: float = 10.0,
        default_deadline: float = 300.0,
        max_consecutive_errors: int = 3,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.client = client
        self.poll_interval = poll_interval
        self.default_deadline = default_deadline
        self.max_consecutive_errors = max_consecutive_errors
        self.clock = clock

    def await_convergence(
        self,
        handle: SubmissionHandle,
        deadline: Optional[float] = None,
        token: Optional[CancellationToken] = None,
        on_progress: Optional[ProgressCallback] = None,
    ) -> PropagationStatus:
        """
        Poll until ACTIVE, FAILED or the deadline (seconds from now).

        Percentage and servers-updated never decrease across the polls of
        one call; a lower reading is treated as a stale read and the
        previous high-water mark is kept.
        """
        token = ensure_token(token)
        deadline = self.default_deadline if deadline is None else deadline
        remaining = token.remaining()
        if remaining is not None:
            deadline = min(deadline, remaining)
        end = self.clock() + deadline

        best = PropagationStatus(ActivationState.PENDING)
        consecutive_errors = 0

        while True:
            token.check()
            try:
                raw = self.client.get_zone_status(handle.zone)
                consecutive_errors = 0
            except TransientError as e:
                consecutive_errors += 1
                if consecutive_errors >= self.max_consecutive_errors:
                    logger.error(
                        f"Failed to get zone status for {handle.zone} after "
                        f"{consecutive_errors} attempts: {e}"
                    )
                    raise
                logger.warning(f"Zone status read failed for {handle.zone}: {e}")
            else:
                best = self._merge(best, raw)
                logger.info(
                    f"Zone {handle.zone} activation {best.state.value} "
                    f"({best.percentage:g}% propagated, request {handle.request_id})"
                )
                if on_progress is not None:
                    on_progress(best)
                if best.state == ActivationState.ACTIVE:
                    return best
                if best.state == ActivationState.FAILED:
                    logger.error(f"Zone {handle.zone} activation failed: {best.message}")
                    return best

            remaining = end - self.clock()
            if remaining <= 0:
                logger.warning(
                    f"Timeout waiting for zone {handle.zone} activation after {deadline:g}s"
                )
                return PropagationStatus(
                    ActivationState.TIMEOUT,
                    best.percentage,
                    best.servers_updated,
                    best.total_servers,
                    f"Still pending after {deadline:g}s",
                )
            token.wait(min(self.poll_interval, remaining))

    @staticmethod
    def _merge(previous: PropagationStatus, raw: Dict) -> PropagationStatus:
        state = _STATE_MAP.get(str(raw.get("activationState", "")).upper())
        if state is None:
            logger.warning(f"Unknown activation state {raw.get('activationState')!r}, treating as PENDING")
            state = ActivationState.PENDING

        propagation = raw.get("propagationStatus") or {}
        percentage = propagation.get("percentage")
        if percentage is None:
            percentage = 100.0 if state == ActivationState.ACTIVE else previous.percentage
        try:
            percentage = min(max(float(percentage), 0.0), 100.0)
        except (TypeError, ValueError):
            logger.warning(
                f"Unreadable propagation percentage {percentage!r}, "
                f"keeping {previous.percentage:g}%"
            )
            percentage = previous.percentage
        if percentage < previous.percentage:
            logger.debug(
                f"Ignoring propagation regression {percentage:g}% < {previous.percentage:g}%"
            )

        servers_updated = _count(propagation.get("serversUpdated"), previous.servers_updated)
        total_servers = _count(propagation.get("totalServers"), previous.total_servers)

        return PropagationStatus(
            state=state,
            percentage=max(percentage, previous.percentage),
            servers_updated=max(servers_updated, previous.servers_updated),
            total_servers=max(total_servers, previous.total_servers),
            message=raw.get("message") or previous.message,
        )


def _count(value, previous: int) -> int:
    if value is None:
        return previous
    try:
        return int(value or 0)
    except (TypeError, ValueError):
        logger.warning(f"Unreadable server count {value!r}, keeping {previous}")
        return previous
