"""
Rollback Controller - Reverts a submitted change

The inverse of every forward mutation is staged in a fresh changelist, in
reverse order, and submitted through the same coordinator as the forward
change. A rollback that cannot be applied leaves the zone indeterminate and
is reported for manual intervention, never retried beyond the coordinator's
own bounded retries.
"""

import logging
from typing import List, Optional

from ..errors import OrchestrationError, RollbackFailed
from ..utils.cancellation import CancellationToken
from .convergence import ConvergencePoller
from .models import ActivationState, OrchestrationRun, Outcome
from .mutations import Mutation
from .staging import StagingManager
from .submission import SubmissionCoordinator

logger = logging.getLogger(__name__)


def build_inverse(mutations: List[Mutation]) -> List[Mutation]:
    """Inverse mutations, last forward change undone first."""
    return [mutation.inverse() for mutation in reversed(mutations)]


class RollbackController:
    def __init__(
        self,
        staging: StagingManager,
        coordinator: SubmissionCoordinator,
        poller: Optional[ConvergencePoller] = None,
        rollback_deadline: float = 120.0,
    ):
        self.staging = staging
        self.coordinator = coordinator
        self.poller = poller
        self.rollback_deadline = rollback_deadline

    def rollback(
        self,
        run: OrchestrationRun,
        token: Optional[CancellationToken] = None,
    ) -> Outcome:
        zone = run.zone.name
        logger.warning(f"Rolling back {len(run.mutations)} changes on {zone} (run {run.run_id})")

        try:
            inverse = build_inverse(run.mutations)
            area = self.staging.prepare(zone, owner=f"{run.run_id}:rollback", token=token)
            self.staging.stage_all(area, inverse, token)
            handle = self.coordinator.submit(
                area, f"Rollback of run {run.run_id}: {run.comment}".strip(), token
            )
            run.rollback_submission = handle

            if self.poller is not None:
                status = self.poller.await_convergence(
                    handle, deadline=self.rollback_deadline, token=token
                )
                if status.state == ActivationState.FAILED:
                    raise RollbackFailed(
                        f"Rollback activation failed for {zone}: {status.message}"
                    )
                if status.state == ActivationState.TIMEOUT:
                    logger.warning(
                        f"Rollback for {zone} submitted but not yet active "
                        f"({status.percentage:g}% propagated)"
                    )
        except OrchestrationError as e:
            failure = e if isinstance(e, RollbackFailed) else RollbackFailed(
                f"Rollback of {zone} failed: {e}", cause=e
            )
            run.rollback_error = failure
            logger.critical(
                f"Zone {zone} is in an indeterminate state and requires manual "
                f"intervention (run {run.run_id}): {failure}"
            )
            run.finish(Outcome.ROLLBACK_FAILED)
            return run.outcome

        logger.info(f"Rollback submitted for {zone} (Request ID: {handle.request_id})")
        run.finish(Outcome.ROLLED_BACK)
        return run.outcome
