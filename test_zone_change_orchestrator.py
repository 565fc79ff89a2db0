#!/usr/bin/env python3
"""
Test suite for the zone change orchestrator

End-to-end runs against the in-memory control plane: success, failure
before submission, rollback after submission, cancellation and zone
exclusion.
"""

import unittest
from unittest.mock import Mock

from zone_change_orchestrator.core.locks import ZoneLockRegistry
from zone_change_orchestrator.core.models import ActivationState, Outcome
from zone_change_orchestrator.core.mutations import Mutation
from zone_change_orchestrator.core.orchestrator import build_orchestrator
from zone_change_orchestrator.errors import (
    ActivationFailed,
    AmbiguousState,
    ConvergenceTimeout,
    NotFound,
    ResolutionUnverified,
    RunCancelled,
    SubmissionFailed,
    TransientError,
    ValidationError,
    ZoneBusyError,
)
from zone_change_orchestrator.providers.dns_client import EdgeDNSClient
from zone_change_orchestrator.providers.mock_provider import MockControlPlane
from zone_change_orchestrator.utils.cancellation import CancellationToken
from zone_change_orchestrator.utils.config import OrchestrationSettings
from zone_change_orchestrator.utils.retry import RetryPolicy

ZONE = "example.com"

WWW = {"name": "www.example.com", "type": "A", "ttl": 300, "rdata": ["192.0.2.1"]}
MAIL = {"name": "mail.example.com", "type": "A", "ttl": 600, "rdata": ["192.0.2.25"]}


def fast_settings(**overrides) -> OrchestrationSettings:
    """Settings without real waiting."""
    settings = OrchestrationSettings(
        poll_interval=0,
        convergence_deadline=5,
        rollback_deadline=5,
        cancellation_rollback_deadline=5,
        retry=RetryPolicy(base_delay=0, max_delay=0),
        verify_attempts=2,
        verify_backoff=0,
    )
    for key, value in overrides.items():
        setattr(settings, key, value)
    return settings


class TickClock:
    """Monotonic clock that advances one second every time it is read."""

    def __init__(self):
        self.now = 0.0

    def __call__(self):
        self.now += 1.0
        return self.now


class CancelOnBackoffToken(CancellationToken):
    """Token that is cancelled the first time anything backs off on it."""

    def wait(self, seconds):
        if seconds > 0:
            self.cancel("operator abort")
        super().wait(seconds)


class OrchestratorTestCase(unittest.TestCase):
    def setUp(self):
        """Set up test fixtures."""
        self.control_plane = MockControlPlane()
        self.control_plane.add_zone(ZONE, [WWW, MAIL])
        self.original = sorted(
            self.control_plane.live_recordsets(ZONE), key=lambda rs: (rs["name"], rs["type"])
        )
        self.client = EdgeDNSClient(self.control_plane)

    def orchestrator(self, resolver=None, locks=None, clock=None, **overrides):
        kwargs = {}
        if clock is not None:
            kwargs["clock"] = clock
        return build_orchestrator(
            self.client,
            fast_settings(**overrides),
            resolver=resolver or self.control_plane.resolver(),
            locks=locks,
            **kwargs,
        )

    def live(self):
        return sorted(
            self.control_plane.live_recordsets(ZONE), key=lambda rs: (rs["name"], rs["type"])
        )

    def assertZoneUnchanged(self):
        self.assertEqual(self.live(), self.original)

    def assertNoChangelistLeft(self):
        self.assertEqual(self.control_plane.changelists, {})


class TestSuccessfulRuns(OrchestratorTestCase):
    def test_propagation_to_active_succeeds(self):
        """A run that propagates 30% then 100% succeeds and verifies."""
        self.control_plane.script_activation(
            ZONE,
            [
                {"activationState": "PENDING", "propagationStatus": {"percentage": 30}},
                {"activationState": "ACTIVE", "propagationStatus": {"percentage": 100}},
            ],
        )
        progress = []

        run = self.orchestrator().execute(
            ZONE,
            [Mutation.add("api.example.com", "A", ["192.0.2.20"])],
            "Add api",
            on_progress=lambda status: progress.append(status.percentage),
        )

        self.assertEqual(run.outcome, Outcome.SUCCEEDED)
        self.assertIsNone(run.error)
        self.assertTrue(run.verified)
        self.assertEqual(run.status.state, ActivationState.ACTIVE)
        self.assertEqual(run.status.percentage, 100)
        self.assertEqual(progress, [30, 100])
        self.assertEqual(run.zone.propagation_percentage, 100)
        self.assertEqual(
            self.control_plane.live_recordset(ZONE, "api.example.com", "A")["rdata"],
            ["192.0.2.20"],
        )
        self.assertEqual(self.control_plane.submissions[0]["comment"], "Add api")
        self.assertIsNone(run.rollback_submission)
        self.assertNoChangelistLeft()

    def test_all_mutations_submitted_together(self):
        """Every mutation of a run ends up in a single submission."""
        run = self.orchestrator().execute(
            ZONE,
            [
                Mutation.add("api.example.com", "A", ["192.0.2.20"]),
                Mutation.replace("www.example.com", "A", ["192.0.2.2"]),
                Mutation.delete("mail.example.com", "A"),
            ],
            "Batch",
        )

        self.assertEqual(run.outcome, Outcome.SUCCEEDED)
        self.assertEqual(len(self.control_plane.submissions), 1)
        self.assertEqual(
            [change["op"] for change in self.control_plane.submissions[0]["changes"]],
            ["ADD", "EDIT", "DELETE"],
        )
        self.assertIsNone(self.control_plane.live_recordset(ZONE, "mail.example.com", "A"))

    def test_prior_state_is_captured(self):
        """REPLACE and DELETE remember the live values they overwrite."""
        run = self.orchestrator().execute(
            ZONE,
            [
                Mutation.replace("www.example.com", "A", ["192.0.2.2"]),
                Mutation.delete("mail.example.com", "A"),
            ],
        )

        replace, delete = run.mutations
        self.assertEqual(replace.previous_values, ("192.0.2.1",))
        self.assertEqual(replace.previous_ttl, 300)
        self.assertEqual(delete.previous_values, ("192.0.2.25",))
        self.assertEqual(delete.previous_ttl, 600)

    def test_stale_changelist_is_discarded(self):
        """A changelist left over by another run is discarded before staging."""
        self.client.create_changelist(ZONE)
        self.client.add_change(
            ZONE, {"name": "old.example.com", "type": "A", "op": "ADD", "ttl": 60, "rdata": ["192.0.2.99"]}
        )

        run = self.orchestrator().execute(
            ZONE, [Mutation.add("api.example.com", "A", ["192.0.2.20"])]
        )

        self.assertEqual(run.outcome, Outcome.SUCCEEDED)
        self.assertEqual(self.control_plane.count_requests("DELETE", "/changelists/"), 1)
        submitted = self.control_plane.submissions[0]["changes"]
        self.assertEqual([change["name"] for change in submitted], ["api.example.com"])
        self.assertIsNone(self.control_plane.live_recordset(ZONE, "old.example.com", "A"))

    def test_staging_conflict_restages(self):
        """A changelist that disappears while staging is reclaimed and restaged."""
        self.control_plane.inject_fault("POST", "/add-change", NotFound("gone", status=404))

        run = self.orchestrator().execute(
            ZONE, [Mutation.add("api.example.com", "A", ["192.0.2.20"])]
        )

        self.assertEqual(run.outcome, Outcome.SUCCEEDED)
        self.assertEqual(self.control_plane.count_requests("POST", "/add-change"), 2)
        self.assertEqual(len(self.control_plane.submissions[0]["changes"]), 1)

    def test_timeout_without_rollback_is_a_warning(self):
        """With rollback on timeout disabled, a slow activation stays in place."""
        self.control_plane.script_activation(
            ZONE, [{"activationState": "PENDING", "propagationStatus": {"percentage": 40}}]
        )

        run = self.orchestrator(clock=TickClock(), rollback_on_timeout=False).execute(
            ZONE, [Mutation.add("api.example.com", "A", ["192.0.2.20"])]
        )

        self.assertEqual(run.outcome, Outcome.SUCCEEDED)
        self.assertEqual(run.status.state, ActivationState.TIMEOUT)
        self.assertEqual(run.status.percentage, 40)
        self.assertIsInstance(run.warnings[0], ConvergenceTimeout)
        self.assertIsNone(run.verified)
        self.assertIsNotNone(self.control_plane.live_recordset(ZONE, "api.example.com", "A"))

    def test_unverified_resolution_is_a_warning(self):
        """Resolvers that keep answering old data leave a warning on a successful run."""
        resolver = Mock()
        resolver.resolve.return_value = ["192.0.2.1"]

        run = self.orchestrator(resolver=resolver).execute(
            ZONE, [Mutation.replace("www.example.com", "A", ["192.0.2.2"])]
        )

        self.assertEqual(run.outcome, Outcome.SUCCEEDED)
        self.assertFalse(run.verified)
        self.assertIsInstance(run.warnings[0], ResolutionUnverified)
        self.assertEqual(resolver.resolve.call_count, 2)

    def test_verification_can_be_skipped(self):
        """verify=False never queries a resolver."""
        resolver = Mock()

        run = self.orchestrator(resolver=resolver).execute(
            ZONE, [Mutation.add("api.example.com", "A", ["192.0.2.20"])], verify=False
        )

        self.assertEqual(run.outcome, Outcome.SUCCEEDED)
        self.assertIsNone(run.verified)
        resolver.resolve.assert_not_called()

    def test_verify_only_final_state_per_record(self):
        """A record touched twice in one run is verified against its last mutation."""
        run = self.orchestrator().execute(
            ZONE,
            [
                Mutation.add("api.example.com", "A", ["192.0.2.20"]),
                Mutation.replace("api.example.com", "A", ["192.0.2.21"]),
            ],
        )

        self.assertEqual(run.outcome, Outcome.SUCCEEDED)
        self.assertTrue(run.verified)
        self.assertEqual(run.mutations[1].previous_values, ("192.0.2.20",))


class TestFailuresBeforeSubmission(OrchestratorTestCase):
    def test_invalid_mutation_fails_without_remote_calls(self):
        """A malformed mutation fails the run before anything is staged."""
        run = self.orchestrator().execute(
            ZONE, [Mutation.add("api.example.com", "A", ["not-an-address"])]
        )

        self.assertEqual(run.outcome, Outcome.FAILED)
        self.assertIsInstance(run.error, ValidationError)
        self.assertEqual(self.control_plane.requests, [])

    def test_name_outside_zone_fails(self):
        run = self.orchestrator().execute(
            ZONE, [Mutation.add("api.example.org", "A", ["192.0.2.20"])]
        )

        self.assertEqual(run.outcome, Outcome.FAILED)
        self.assertIn("not within zone", str(run.error))

    def test_unknown_zone_fails(self):
        run = self.orchestrator().execute(
            "missing.example", [Mutation.add("a.missing.example", "A", ["192.0.2.20"])]
        )

        self.assertEqual(run.outcome, Outcome.FAILED)
        self.assertIsInstance(run.error, ValidationError)

    def test_delete_of_missing_record_fails(self):
        run = self.orchestrator().execute(ZONE, [Mutation.delete("nope.example.com", "A")])

        self.assertEqual(run.outcome, Outcome.FAILED)
        self.assertIsInstance(run.error, ValidationError)
        self.assertIsNone(run.staging_area)
        self.assertEqual(self.control_plane.count_requests("POST", "/changelists"), 0)

    def test_transient_submit_failures_exhaust_retries(self):
        """Five transient submit failures fail the run; nothing is applied or rolled back."""
        self.control_plane.inject_fault(
            "POST", "/submit", TransientError("service unavailable", status=503), times=5
        )

        run = self.orchestrator().execute(
            ZONE, [Mutation.add("api.example.com", "A", ["192.0.2.20"])]
        )

        self.assertEqual(run.outcome, Outcome.FAILED)
        self.assertIsInstance(run.error, SubmissionFailed)
        self.assertIsInstance(run.error.cause, TransientError)
        self.assertEqual(self.control_plane.count_requests("POST", "/submit"), 5)
        self.assertEqual(self.control_plane.submissions, [])
        self.assertIsNone(run.rollback_submission)
        self.assertZoneUnchanged()
        self.assertNoChangelistLeft()

    def test_rejected_submission_fails(self):
        """A changelist the control plane rejects is discarded, not rolled back."""
        run = self.orchestrator().execute(
            ZONE, [Mutation.add("www.example.com", "A", ["192.0.2.7"])]
        )

        self.assertEqual(run.outcome, Outcome.FAILED)
        self.assertIsInstance(run.error, ValidationError)
        self.assertZoneUnchanged()
        self.assertNoChangelistLeft()

    def test_cancelled_before_submission(self):
        token = CancellationToken()
        token.cancel("operator abort")

        run = self.orchestrator().execute(
            ZONE, [Mutation.add("api.example.com", "A", ["192.0.2.20"])], token=token
        )

        self.assertEqual(run.outcome, Outcome.FAILED)
        self.assertIsInstance(run.error, RunCancelled)
        self.assertEqual(self.control_plane.count_requests("POST", "/submit"), 0)

    def test_busy_zone_fails_fast(self):
        """A second run on a zone that is in use fails immediately with fail_fast."""
        locks = ZoneLockRegistry()
        orchestrator = self.orchestrator(locks=locks)

        with locks.hold(ZONE):
            run = orchestrator.execute(
                ZONE, [Mutation.add("api.example.com", "A", ["192.0.2.20"])], fail_fast=True
            )

        self.assertEqual(run.outcome, Outcome.FAILED)
        self.assertIsInstance(run.error, ZoneBusyError)
        self.assertEqual(self.control_plane.requests, [])

    def test_other_zones_are_not_blocked(self):
        self.control_plane.add_zone("example.net", [])
        locks = ZoneLockRegistry()
        orchestrator = self.orchestrator(locks=locks)

        with locks.hold(ZONE):
            run = orchestrator.execute(
                "example.net",
                [Mutation.add("api.example.net", "A", ["192.0.2.20"])],
                fail_fast=True,
            )

        self.assertEqual(run.outcome, Outcome.SUCCEEDED)


class TestRollback(OrchestratorTestCase):
    def test_failed_activation_rolls_back(self):
        """Activation FAILED with 'quota exceeded' rolls the change back."""
        self.control_plane.script_activation(
            ZONE,
            [
                {"activationState": "PENDING", "propagationStatus": {"percentage": 30}},
                {"activationState": "FAILED", "message": "quota exceeded"},
            ],
        )

        run = self.orchestrator().execute(
            ZONE,
            [
                Mutation.add("api.example.com", "A", ["192.0.2.20"]),
                Mutation.replace("www.example.com", "A", ["192.0.2.2"]),
                Mutation.delete("mail.example.com", "A"),
            ],
        )

        self.assertEqual(run.outcome, Outcome.ROLLED_BACK)
        self.assertIsInstance(run.error, ActivationFailed)
        self.assertIn("quota exceeded", str(run.error))
        self.assertIsNotNone(run.rollback_submission)
        self.assertZoneUnchanged()
        self.assertNoChangelistLeft()

        rollback_changes = self.control_plane.submissions[1]["changes"]
        self.assertEqual([c["op"] for c in rollback_changes], ["ADD", "EDIT", "DELETE"])
        self.assertEqual(
            [c["name"] for c in rollback_changes],
            ["mail.example.com", "www.example.com", "api.example.com"],
        )

    def test_ambiguous_submission_rolls_back(self):
        """A submit whose response is lost after it was applied is rolled back."""
        self.control_plane.inject_fault(
            "POST", "/submit", TransientError("connection reset"), after_apply=True
        )

        run = self.orchestrator().execute(
            ZONE, [Mutation.replace("www.example.com", "A", ["192.0.2.2"])]
        )

        self.assertEqual(run.outcome, Outcome.ROLLED_BACK)
        self.assertIsInstance(run.error, AmbiguousState)
        self.assertIsNone(run.submission)
        self.assertZoneUnchanged()

    def test_timeout_rolls_back(self):
        self.control_plane.script_activation(
            ZONE, [{"activationState": "PENDING", "propagationStatus": {"percentage": 40}}]
        )

        run = self.orchestrator(clock=TickClock()).execute(
            ZONE, [Mutation.add("api.example.com", "A", ["192.0.2.20"])]
        )

        self.assertEqual(run.outcome, Outcome.ROLLED_BACK)
        self.assertIsInstance(run.error, ConvergenceTimeout)
        self.assertZoneUnchanged()

    def test_unverified_resolution_rolls_back_when_configured(self):
        resolver = Mock()
        resolver.resolve.return_value = ["192.0.2.1"]

        run = self.orchestrator(resolver=resolver, rollback_on_unverified=True).execute(
            ZONE, [Mutation.replace("www.example.com", "A", ["192.0.2.2"])]
        )

        self.assertEqual(run.outcome, Outcome.ROLLED_BACK)
        self.assertIsInstance(run.error, ResolutionUnverified)
        self.assertZoneUnchanged()

    def test_status_read_errors_roll_back(self):
        """Three consecutive status read failures after submission trigger rollback."""
        self.control_plane.script_activation(
            ZONE, [{"activationState": "PENDING", "propagationStatus": {"percentage": 10}}]
        )

        def fail_status_reads(status):
            self.control_plane.inject_fault(
                "GET", "/status", TransientError("timeout"), times=3
            )

        run = self.orchestrator().execute(
            ZONE,
            [Mutation.add("api.example.com", "A", ["192.0.2.20"])],
            on_progress=fail_status_reads,
        )

        self.assertEqual(run.outcome, Outcome.ROLLED_BACK)
        self.assertIsInstance(run.error, TransientError)
        self.assertZoneUnchanged()

    def test_cancellation_after_submission_rolls_back(self):
        """Cancelling while waiting for convergence still reverts the change."""
        self.control_plane.script_activation(
            ZONE, [{"activationState": "PENDING", "propagationStatus": {"percentage": 20}}]
        )
        token = CancellationToken()

        run = self.orchestrator().execute(
            ZONE,
            [Mutation.add("api.example.com", "A", ["192.0.2.20"])],
            token=token,
            on_progress=lambda status: token.cancel("operator abort"),
        )

        self.assertEqual(run.outcome, Outcome.ROLLED_BACK)
        self.assertIsInstance(run.error, RunCancelled)
        self.assertZoneUnchanged()

    def test_cancellation_after_lost_submit_response_rolls_back(self):
        """A cancel while retrying a submit that was applied still reverts it."""
        self.control_plane.inject_fault(
            "POST",
            "/submit",
            TransientError("service unavailable", status=503),
            after_apply=True,
        )
        token = CancelOnBackoffToken()

        run = self.orchestrator(retry=RetryPolicy(base_delay=0.2, max_delay=0.2)).execute(
            ZONE,
            [Mutation.add("new.example.com", "A", ["192.0.2.9"])],
            token=token,
        )

        self.assertEqual(run.outcome, Outcome.ROLLED_BACK)
        self.assertIsInstance(run.error, AmbiguousState)
        self.assertIsInstance(run.error.__cause__, RunCancelled)
        self.assertIsNone(self.control_plane.live_recordset(ZONE, "new.example.com", "A"))
        self.assertEqual(len(self.control_plane.submissions), 2)
        self.assertZoneUnchanged()
        self.assertNoChangelistLeft()

    def test_failed_rollback_requires_manual_intervention(self):
        """A rollback the control plane rejects ends the run as ROLLBACK_FAILED."""
        self.control_plane.script_activation(
            ZONE, [{"activationState": "FAILED", "message": "quota exceeded"}]
        )

        def reject_next_submit(status):
            self.control_plane.inject_fault(
                "POST", "/submit", ValidationError("rejected", status=400)
            )

        run = self.orchestrator().execute(
            ZONE,
            [Mutation.add("api.example.com", "A", ["192.0.2.20"])],
            on_progress=reject_next_submit,
        )

        self.assertEqual(run.outcome, Outcome.ROLLBACK_FAILED)
        self.assertTrue(run.requires_manual_intervention)
        self.assertIsInstance(run.error, ActivationFailed)
        self.assertIsNotNone(run.rollback_error)
        self.assertIsNotNone(self.control_plane.live_recordset(ZONE, "api.example.com", "A"))

    def test_summary_reports_rollback(self):
        self.control_plane.script_activation(
            ZONE, [{"activationState": "FAILED", "message": "quota exceeded"}]
        )

        run = self.orchestrator().execute(
            ZONE, [Mutation.add("api.example.com", "A", ["192.0.2.20"])], "Add api"
        )
        summary = run.summary()

        self.assertEqual(summary["outcome"], "ROLLED_BACK")
        self.assertEqual(summary["zone"], ZONE)
        self.assertIsNotNone(summary["rollback_request_id"])
        self.assertEqual(summary["mutations"], ["ADD api.example.com 300 A 192.0.2.20"])


class TestValidateOnly(OrchestratorTestCase):
    def test_validate_reports_errors_and_discards(self):
        with self.assertRaises(ValidationError):
            self.orchestrator().validate(
                ZONE, [Mutation.add("www.example.com", "A", ["192.0.2.7"])]
            )

        self.assertZoneUnchanged()
        self.assertNoChangelistLeft()

    def test_validate_passes(self):
        warnings = self.orchestrator().validate(
            ZONE, [Mutation.add("api.example.com", "A", ["192.0.2.20"])]
        )

        self.assertEqual(warnings, [])
        self.assertEqual(self.control_plane.submissions, [])
        self.assertNoChangelistLeft()


if __name__ == "__main__":
    unittest.main()
