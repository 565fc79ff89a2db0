"""
Zone Change Orchestrator - Runs one change through its whole lifecycle

A run holds the zone exclusively, validates its mutations, captures the
values they overwrite, stages them in a fresh changelist, submits it, waits
for convergence and finally checks public resolution. Every failure after
submission is answered with a rollback; failures before it leave nothing
behind but a discarded changelist.
"""

import logging
import time
from typing import Callable, Dict, Iterable, List, Optional, Tuple

from ..errors import (
    ActivationFailed,
    AmbiguousState,
    ConflictError,
    ConvergenceTimeout,
    NotFound,
    OrchestrationError,
    ResolutionUnverified,
    RunCancelled,
    ValidationError,
    ZoneBusyError,
)
from ..providers.dns_client import EdgeDNSClient
from ..utils.cancellation import CancellationToken
from ..utils.config import OrchestrationSettings
from ..utils.retry import call_with_retry
from ..utils.validators import sanitize_fqdn, validate_zone_name
from .convergence import ConvergencePoller, ProgressCallback
from .locks import ZoneLockRegistry
from .models import ActivationState, OrchestrationRun, Outcome, PropagationStatus, Zone
from .mutations import Mutation, Operation, validate_mutation
from .rollback import RollbackController
from .staging import StagingManager
from .submission import SubmissionCoordinator
from .verification import ResolutionVerifier

logger = logging.getLogger(__name__)


class ZoneChangeOrchestrator:
    """Coordinates staging, submission, convergence, verification and rollback."""

    def __init__(
        self,
        client: EdgeDNSClient,
        settings: Optional[OrchestrationSettings] = None,
        verifier: Optional[ResolutionVerifier] = None,
        locks: Optional[ZoneLockRegistry] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.client = client
        self.settings = settings or OrchestrationSettings()
        self.verifier = verifier
        self.locks = locks or ZoneLockRegistry()
        self.clock = clock

        self.staging = StagingManager(
            client, self.settings.retry, self.settings.conflict_retries
        )
        self.coordinator = SubmissionCoordinator(
            client,
            self.settings.retry,
            bypass_safety_checks=self.settings.bypass_safety_checks,
            skip_sign_and_serve_safety_check=self.settings.skip_sign_and_serve_safety_check,
        )
        self.poller = ConvergencePoller(
            client,
            poll_interval=self.settings.poll_interval,
            default_deadline=self.settings.convergence_deadline,
            max_consecutive_errors=self.settings.max_poll_errors,
            clock=clock,
        )
        self.rollback_controller = RollbackController(
            self.staging,
            self.coordinator,
            self.poller if self.settings.wait_for_rollback else None,
            self.settings.rollback_deadline,
        )

    def execute(
        self,
        zone: str,
        mutations: Iterable[Mutation],
        comment: str = "",
        deadline: Optional[float] = None,
        verify: Optional[bool] = None,
        fail_fast: bool = False,
        token: Optional[CancellationToken] = None,
        on_progress: Optional[ProgressCallback] = None,
    ) -> OrchestrationRun:
        """
        Apply ``mutations`` to ``zone`` as one atomic change.

        Args:
            zone: Zone name
            mutations: Ordered mutations; all are submitted together
            comment: Changelist submission comment
            deadline: Overall run deadline in seconds (bounds convergence)
            verify: Check public resolution after activation (defaults to settings)
            fail_fast: Fail immediately when another run holds the zone
            token: Cancellation token; a fresh one is created from ``deadline``
            on_progress: Called with every propagation status read

        Returns:
            The finished OrchestrationRun. Errors are reported on the run,
            never raised.
        """
        zone_name = sanitize_fqdn(zone)
        if token is None:
            token = CancellationToken(timeout=deadline, clock=self.clock)
        if verify is None:
            verify = self.settings.verify

        run = OrchestrationRun(zone=Zone(zone_name), mutations=list(mutations), comment=comment)
        logger.info(
            f"Starting run {run.run_id} on {zone_name} with {len(run.mutations)} changes"
        )

        try:
            with self.locks.hold(
                zone_name, blocking=not fail_fast, timeout=self.settings.lock_timeout
            ):
                self._run(run, token, verify, on_progress)
        except ZoneBusyError as e:
            logger.error(f"Run {run.run_id} not started: {e}")
            run.error = e
            run.finish(Outcome.FAILED)

        logger.info(f"Run {run.run_id} on {zone_name} finished: {run.outcome.value}")
        return run

    def validate(
        self,
        zone: str,
        mutations: Iterable[Mutation],
        token: Optional[CancellationToken] = None,
    ) -> List[Dict]:
        """
        Stage ``mutations`` and have the control plane validate them without
        applying anything. The changelist is always discarded afterwards.

        Returns the validation warnings; raises ValidationError on errors.
        """
        zone_name = sanitize_fqdn(zone)
        run = OrchestrationRun(zone=Zone(zone_name), mutations=list(mutations))
        with self.locks.hold(zone_name, timeout=self.settings.lock_timeout):
            self._check_mutations(run)
            self._read_zone(run, token)
            run.mutations = self._capture_prior_state(run, token)
            try:
                self._stage(run, token)
                return self.coordinator.validate(run.staging_area, token)
            finally:
                self._discard_quietly(run, token or CancellationToken())

    def _run(
        self,
        run: OrchestrationRun,
        token: CancellationToken,
        verify: bool,
        on_progress: Optional[ProgressCallback],
    ) -> None:
        try:
            self._check_mutations(run)
            self._read_zone(run, token)
            run.mutations = self._capture_prior_state(run, token)
            self._stage(run, token)
            run.submission = self.coordinator.submit(run.staging_area, run.comment, token)
        except AmbiguousState as e:
            logger.error(f"Submission outcome unknown for {run.zone.name}: {e}")
            run.error = e
            self._rollback(run, token)
            return
        except OrchestrationError as e:
            self._fail_unsubmitted(run, e, token)
            return

        try:
            status = self.poller.await_convergence(
                run.submission, token=token, on_progress=self._progress(run, on_progress)
            )
        except OrchestrationError as e:
            logger.error(f"Lost track of activation for {run.zone.name}: {e}")
            run.error = e
            self._rollback(run, token)
            return

        self._record_status(run, status)

        if status.state == ActivationState.FAILED:
            run.error = ActivationFailed(
                f"Activation failed for {run.zone.name}: {status.message or 'no reason given'}"
            )
            self._rollback(run, token)
            return

        if status.state == ActivationState.TIMEOUT:
            timeout = ConvergenceTimeout(
                f"Zone {run.zone.name} not active after waiting "
                f"({status.percentage:g}% propagated)"
            )
            if self.settings.rollback_on_timeout:
                run.error = timeout
                self._rollback(run, token)
                return
            run.warnings.append(timeout)
            logger.warning(f"{timeout}; leaving the change in place")
            run.finish(Outcome.SUCCEEDED)
            return

        if verify and self.verifier is not None:
            try:
                run.verified = self._verify(run, token)
            except RunCancelled as e:
                run.error = e
                self._rollback(run, token)
                return

            if not run.verified:
                unverified = ResolutionUnverified(
                    f"Resolution of the changed records in {run.zone.name} could not be confirmed"
                )
                if self.settings.rollback_on_unverified:
                    run.error = unverified
                    self._rollback(run, token)
                    return
                run.warnings.append(unverified)
                logger.warning(str(unverified))

        run.finish(Outcome.SUCCEEDED)

    def _check_mutations(self, run: OrchestrationRun) -> None:
        if not validate_zone_name(run.zone.name):
            raise ValidationError(f"Invalid zone name '{run.zone.name}'")
        if not run.mutations:
            raise ValidationError(f"No changes given for zone {run.zone.name}")
        for mutation in run.mutations:
            validate_mutation(mutation, run.zone.name)

    def _read_zone(self, run: OrchestrationRun, token: Optional[CancellationToken]) -> None:
        zone = run.zone.name
        try:
            raw = call_with_retry(
                lambda: self.client.get_zone_status(zone),
                self.settings.retry,
                f"Read status of zone {zone}",
                token,
            )
        except NotFound as e:
            raise ValidationError(f"Zone {zone} does not exist", status=404) from e

        status = ConvergencePoller._merge(PropagationStatus(ActivationState.PENDING), raw)
        run.zone.activation_state = status.state
        run.zone.propagation_percentage = status.percentage
        if status.state == ActivationState.PENDING:
            logger.warning(f"Zone {zone} still has an activation in progress")

    def _capture_prior_state(
        self, run: OrchestrationRun, token: Optional[CancellationToken]
    ) -> List[Mutation]:
        """
        Fill in the values each REPLACE or DELETE overwrites.

        A record touched earlier in the same run is taken from the run's own
        mutations instead of the control plane.
        """
        zone = run.zone.name
        planned: Dict[Tuple[str, str], Tuple[Tuple[str, ...], Optional[int]]] = {}
        captured = []

        for mutation in run.mutations:
            if mutation.key in planned:
                values, ttl = planned[mutation.key]
                if not values and mutation.operation != Operation.ADD:
                    raise ValidationError(
                        f"{mutation.describe()} targets a record deleted earlier in this run"
                    )
                if mutation.operation != Operation.ADD:
                    mutation = mutation.with_prior_state(values, ttl)
            elif not mutation.has_prior_state:
                mutation = self._lookup_prior_state(zone, mutation, token)

            captured.append(mutation)
            planned[mutation.key] = (mutation.expected_values, mutation.ttl)

        return captured

    def _lookup_prior_state(
        self, zone: str, mutation: Mutation, token: Optional[CancellationToken]
    ) -> Mutation:
        name, record_type = mutation.key
        try:
            recordset = call_with_retry(
                lambda: self.client.get_recordset(zone, name, record_type),
                self.settings.retry,
                f"Read {name} {record_type}",
                token,
            )
        except NotFound as e:
            raise ValidationError(
                f"Cannot {mutation.operation.value} {name} {record_type}: "
                f"no such record in zone {zone}",
                status=404,
            ) from e

        return mutation.with_prior_state(recordset.get("rdata") or [], recordset.get("ttl"))

    def _stage(self, run: OrchestrationRun, token: Optional[CancellationToken]) -> None:
        """Claim a changelist and stage every mutation, reclaiming it on conflicts."""
        rounds = self.settings.conflict_retries + 1
        for round_number in range(1, rounds + 1):
            run.staging_area = self.staging.prepare(run.zone.name, owner=run.run_id, token=token)
            try:
                self.staging.stage_all(run.staging_area, run.mutations, token)
                return
            except ConflictError as e:
                if round_number >= rounds:
                    raise
                logger.warning(
                    f"Changelist for {run.zone.name} changed underneath run {run.run_id} "
                    f"(round {round_number}/{rounds}): {e}; restaging"
                )

    def _fail_unsubmitted(
        self,
        run: OrchestrationRun,
        error: OrchestrationError,
        token: CancellationToken,
    ) -> None:
        logger.error(f"Run {run.run_id} on {run.zone.name} failed before submission: {error}")
        run.error = error
        if run.staging_area is not None:
            self._discard_quietly(
                run, token.recovery(self.settings.cancellation_rollback_deadline)
            )
        run.finish(Outcome.FAILED)

    def _discard_quietly(self, run: OrchestrationRun, token: CancellationToken) -> None:
        if run.staging_area is None:
            return
        try:
            self.staging.discard(run.staging_area, token)
        except OrchestrationError as e:
            logger.warning(f"Could not discard changelist for {run.zone.name}: {e}")

    def _rollback(self, run: OrchestrationRun, token: CancellationToken) -> None:
        if token.done:
            logger.warning(
                f"Run {run.run_id} interrupted after submission; rolling back within "
                f"{self.settings.cancellation_rollback_deadline:g}s"
            )
        self.rollback_controller.rollback(
            run, token.recovery(self.settings.cancellation_rollback_deadline)
        )

    def _verify(self, run: OrchestrationRun, token: CancellationToken) -> bool:
        final: Dict[Tuple[str, str], Mutation] = {}
        for mutation in run.mutations:
            final[mutation.key] = mutation

        verified = True
        for (name, record_type), mutation in final.items():
            if not self.verifier.verify(
                name, record_type, mutation.expected_values, zone=run.zone.name, token=token
            ):
                verified = False
        return verified

    @staticmethod
    def _progress(
        run: OrchestrationRun, on_progress: Optional[ProgressCallback]
    ) -> ProgressCallback:
        def update(status: PropagationStatus) -> None:
            ZoneChangeOrchestrator._record_status(run, status)
            if on_progress is not None:
                on_progress(status)

        return update

    @staticmethod
    def _record_status(run: OrchestrationRun, status: PropagationStatus) -> None:
        run.status = status
        run.zone.activation_state = status.state
        run.zone.propagation_percentage = status.percentage


def build_orchestrator(
    client: EdgeDNSClient,
    settings: Optional[OrchestrationSettings] = None,
    resolver=None,
    locks: Optional[ZoneLockRegistry] = None,
    clock: Callable[[], float] = time.monotonic,
) -> ZoneChangeOrchestrator:
    """Wire an orchestrator and its resolution verifier from ``settings``."""
    settings = settings or OrchestrationSettings()
    verifier = ResolutionVerifier(
        nameservers=settings.nameservers,
        attempts=settings.verify_attempts,
        backoff=settings.verify_backoff,
        timeout=settings.verify_timeout,
        use_authoritative=settings.use_authoritative,
        resolver=resolver,
    )
    return ZoneChangeOrchestrator(client, settings, verifier, locks, clock)
