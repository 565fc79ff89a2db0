"""
Submission Coordinator - Submits a staged changelist as one unit

The control plane applies a changelist entirely or not at all. The
coordinator retries transient failures with bounded backoff and, when the
outcome of a submission cannot be established, reports AmbiguousState
instead of guessing.
"""

import logging
import uuid
from typing import List, Optional

from ..errors import (
    AmbiguousState,
    APIError,
    NotFound,
    RunCancelled,
    SubmissionFailed,
    TransientError,
    ValidationError,
)
from ..providers.dns_client import EdgeDNSClient
from ..utils.cancellation import CancellationToken, ensure_token
from ..utils.retry import RetryPolicy, call_with_retry
from .models import StagingArea, SubmissionHandle

logger = logging.getLogger(__name__)


class SubmissionCoordinator:
    """Submits staging areas and records their tracking handles."""

    def __init__(
        self,
        client: EdgeDNSClient,
        retry_policy: Optional[RetryPolicy] = None,
        bypass_safety_checks: bool = False,
        skip_sign_and_serve_safety_check: bool = False,
    ):
        self.client = client
        self.retry_policy = retry_policy or RetryPolicy()
        self.bypass_safety_checks = bypass_safety_checks
        self.skip_sign_and_serve_safety_check = skip_sign_and_serve_safety_check

    def submit(
        self,
        area: StagingArea,
        comment: str,
        token: Optional[CancellationToken] = None,
    ) -> SubmissionHandle:
        """
        Submit every mutation staged in ``area``.

        Raises:
            ValidationError: the staging area is empty or the API rejected it
            SubmissionFailed: retries exhausted and the changelist is still pending
            AmbiguousState: the changelist may already have been applied
        """
        token = ensure_token(token)
        if not area.mutations and area.submission is None:
            raise ValidationError(
                f"The changelist for zone {area.zone} is empty. Add changes before submitting."
            )

        comment = comment or f"Submitting pending changes for {area.zone}"
        attempt = 1
        maybe_applied = False
        last_error: Optional[TransientError] = None

        while True:
            self._pause(token, 0, area, maybe_applied, last_error)
            try:
                response = self.client.submit_changelist(
                    area.zone,
                    comment,
                    bypass_safety_checks=self.bypass_safety_checks,
                    skip_sign_and_serve_safety_check=self.skip_sign_and_serve_safety_check,
                )
            except NotFound as e:
                if area.submission is not None:
                    logger.info(
                        f"Changelist for {area.zone} already submitted "
                        f"(request {area.submission.request_id})"
                    )
                    return area.submission
                if maybe_applied:
                    raise AmbiguousState(
                        f"Changelist for {area.zone} vanished after a failed submit attempt; "
                        f"it may have been applied",
                        cause=last_error or e,
                    ) from e
                raise SubmissionFailed(
                    f"No pending changelist exists for zone {area.zone}", cause=e
                ) from e
            except TransientError as e:
                last_error = e
                maybe_applied = True
                if attempt >= self.retry_policy.max_attempts:
                    break
                delay = self.retry_policy.delay(attempt, e.retry_after)
                logger.warning(
                    f"Submit for {area.zone} failed (attempt {attempt}/"
                    f"{self.retry_policy.max_attempts}): {e}; retrying in {delay:.1f}s"
                )
                self._pause(token, delay, area, maybe_applied, last_error)
                attempt += 1
                continue

            handle = SubmissionHandle(
                request_id=response.get("requestId") or uuid.uuid4().hex,
                zone=area.zone,
                change_tag=response.get("changeTag") or area.change_tag,
            )
            area.submission = handle
            logger.info(
                f"Changelist submitted for {area.zone} (Request ID: {handle.request_id}, "
                f"{len(area.mutations)} changes)"
            )
            return handle

        return self._resolve_exhausted(area, attempt, last_error, token)

    @staticmethod
    def _pause(
        token: CancellationToken,
        delay: float,
        area: StagingArea,
        maybe_applied: bool,
        last_error: Optional[TransientError],
    ) -> None:
        """Wait on ``token``; a cancel after an attempt that may have applied is ambiguous."""
        try:
            token.wait(delay)
        except RunCancelled as e:
            if not maybe_applied:
                raise
            raise AmbiguousState(
                f"Run stopped while retrying the submit for {area.zone}; "
                f"the change may have been applied",
                cause=last_error,
            ) from e

    def _resolve_exhausted(
        self,
        area: StagingArea,
        attempts: int,
        last_error: Optional[TransientError],
        token: CancellationToken,
    ) -> SubmissionHandle:
        """Decide between SubmissionFailed and AmbiguousState after retries ran out."""
        try:
            call_with_retry(
                lambda: self.client.get_changelist(area.zone),
                self.retry_policy,
                f"Confirm changelist for {area.zone}",
                token,
            )
        except NotFound:
            if area.submission is not None:
                return area.submission
            raise AmbiguousState(
                f"Submit for {area.zone} failed {attempts} times and the changelist is gone; "
                f"the change may have been applied",
                cause=last_error,
            )
        except APIError as e:
            raise AmbiguousState(
                f"Submit for {area.zone} failed {attempts} times and the changelist "
                f"could not be read back: {e}",
                cause=last_error,
            ) from e
        except RunCancelled as e:
            raise AmbiguousState(
                f"Run stopped before the changelist for {area.zone} could be read back "
                f"after {attempts} failed submits; the change may have been applied",
                cause=last_error,
            ) from e

        raise SubmissionFailed(
            f"Failed to submit changelist for {area.zone} after {attempts} attempts: {last_error}",
            cause=last_error,
        )

    def validate(
        self,
        area: StagingArea,
        token: Optional[CancellationToken] = None,
    ) -> List[dict]:
        """
        Ask the control plane to validate the staged changes without applying them.

        Returns the validation warnings; raises ValidationError listing the
        errors when there are any.
        """
        response = call_with_retry(
            lambda: self.client.submit_changelist(
                area.zone,
                f"Validating pending changes for {area.zone}",
                bypass_safety_checks=self.bypass_safety_checks,
                skip_sign_and_serve_safety_check=self.skip_sign_and_serve_safety_check,
                validate_only=True,
            ),
            self.retry_policy,
            f"Validate changelist for {area.zone}",
            token,
        )

        result = response.get("validationResult") or {}
        errors = result.get("errors") or []
        warnings = result.get("warnings") or []

        for warning in warnings:
            logger.warning(f"Validation warning for {area.zone}: {warning.get('field')}: {warning.get('message')}")

        if errors:
            details = "; ".join(f"{e.get('field')}: {e.get('message')}" for e in errors)
            raise ValidationError(f"Validation failed for {area.zone}: {details}", body=errors)

        logger.info(f"Changelist for {area.zone} passed validation")
        return warnings
