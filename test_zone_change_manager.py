#!/usr/bin/env python3
"""
Test suite for change planning, CSV input, configuration and the CLI

This module tests the record manager's diffing, the CSV parser, the
configuration loader, the zone change manager and the zone-change command.
"""

import os
import tempfile
import unittest
from unittest.mock import patch

import yaml

from zone_change_orchestrator.cli.main import EXIT_CODES, main
from zone_change_orchestrator.core.change_manager import ZoneChangeManager
from zone_change_orchestrator.core.models import Outcome
from zone_change_orchestrator.core.mutations import Operation
from zone_change_orchestrator.core.record_manager import RecordManager
from zone_change_orchestrator.errors import ValidationError
from zone_change_orchestrator.parsers.csv import CSVParser
from zone_change_orchestrator.providers.mock_provider import MockControlPlane
from zone_change_orchestrator.utils.config import (
    OrchestrationSettings,
    get_default_config,
    load_config,
)

ZONE = "example.com"

LIVE = [
    {"name": "example.com", "type": "SOA", "ttl": 86400, "rdata": ["ns1.example.com. hostmaster.example.com. 1 3600 600 604800 300"]},
    {"name": "example.com", "type": "NS", "ttl": 86400, "rdata": ["ns1.example.com."]},
    {"name": "www.example.com", "type": "A", "ttl": 300, "rdata": ["192.0.2.1"]},
    {"name": "mail.example.com", "type": "A", "ttl": 300, "rdata": ["192.0.2.25"]},
    {"name": "txt.example.com", "type": "TXT", "ttl": 300, "rdata": ['"hello"']},
]


def test_config(zones=None):
    """Configuration for the mock control plane without real waiting."""
    return {
        "default_provider": "mock",
        "dns_providers": {"mock": {"zones": zones or {}}},
        "orchestration": {
            "poll_interval": 0,
            "convergence_deadline": 5,
            "rollback_deadline": 5,
            "retry": {"base_delay": 0, "max_delay": 0},
        },
        "verification": {"enabled": True, "attempts": 1, "backoff": 0},
        "logging": {"level": "INFO", "file": None},
    }


class TestRecordManager(unittest.TestCase):
    def setUp(self):
        self.record_manager = RecordManager()

    def test_plan_changes(self):
        desired = [
            {"name": "www.example.com", "type": "A", "ttl": 300, "rdata": ["192.0.2.1"]},
            {"name": "mail.example.com", "type": "A", "ttl": 300, "rdata": ["192.0.2.26"]},
            {"name": "api.example.com", "type": "A", "ttl": 60, "rdata": ["192.0.2.20"]},
        ]

        changes = self.record_manager.plan_changes(LIVE, desired, ZONE)

        self.assertEqual([r["name"] for r in changes["adds"]], ["api.example.com"])
        self.assertEqual([r["name"] for r in changes["replaces"]], ["mail.example.com"])
        self.assertEqual([r["name"] for r in changes["no_changes"]], ["www.example.com"])
        self.assertEqual(changes["deletes"], [])
        self.assertEqual(changes["total_changes"], 2)

        replace = [m for m in changes["mutations"] if m.operation == Operation.REPLACE][0]
        self.assertEqual(replace.previous_values, ("192.0.2.25",))
        self.assertEqual(replace.previous_ttl, 300)

    def test_ttl_change_is_a_replace(self):
        desired = [{"name": "www.example.com", "type": "A", "ttl": 60, "rdata": ["192.0.2.1"]}]

        changes = self.record_manager.plan_changes(LIVE, desired, ZONE)

        self.assertEqual(len(changes["replaces"]), 1)

    def test_values_compare_as_sets(self):
        live = [{"name": "www.example.com", "type": "A", "ttl": 300, "rdata": ["192.0.2.1", "192.0.2.2"]}]
        desired = [{"name": "WWW.example.com.", "type": "a", "ttl": 300, "rdata": ["192.0.2.2", "192.0.2.1"]}]

        changes = self.record_manager.plan_changes(live, desired, ZONE)

        self.assertEqual(changes["total_changes"], 0)

    def test_prune_deletes_missing_records_but_not_apex_records(self):
        desired = [{"name": "www.example.com", "type": "A", "ttl": 300, "rdata": ["192.0.2.1"]}]

        changes = self.record_manager.plan_changes(LIVE, desired, ZONE, prune=True)

        deleted = sorted(r["name"] for r in changes["deletes"])
        self.assertEqual(deleted, ["mail.example.com", "txt.example.com"])
        for mutation in changes["mutations"]:
            self.assertEqual(mutation.operation, Operation.DELETE)
            self.assertTrue(mutation.previous_values)

    def test_rejects_names_outside_zone(self):
        desired = [{"name": "www.example.org", "type": "A", "ttl": 300, "rdata": ["192.0.2.1"]}]

        with self.assertRaises(ValidationError):
            self.record_manager.plan_changes(LIVE, desired, ZONE)

    def test_rejects_duplicates(self):
        desired = [
            {"name": "www.example.com", "type": "A", "ttl": 300, "rdata": ["192.0.2.1"]},
            {"name": "www.example.com.", "type": "A", "ttl": 300, "rdata": ["192.0.2.2"]},
        ]

        errors = self.record_manager.validate_records(desired)

        self.assertEqual(len(errors), 1)
        self.assertIn("Duplicate", errors[0])
        with self.assertRaises(ValidationError):
            self.record_manager.plan_changes(LIVE, desired, ZONE)

    def test_ignores_live_records_outside_zone(self):
        live = LIVE + [{"name": "www.example.org", "type": "A", "ttl": 300, "rdata": ["192.0.2.9"]}]

        changes = self.record_manager.plan_changes(live, [], ZONE, prune=True)

        self.assertNotIn("www.example.org", [r["name"] for r in changes["deletes"]])


class TestCSVParser(unittest.TestCase):
    def write_csv(self, content):
        handle = tempfile.NamedTemporaryFile("w", suffix=".csv", delete=False)
        handle.write(content)
        handle.close()
        self.addCleanup(os.unlink, handle.name)
        return handle.name

    def test_parse(self):
        path = self.write_csv(
            "name,type,ttl,rdata\n"
            "www.example.com,A,300,192.0.2.1|192.0.2.2\n"
            "_acme-challenge.example.com,txt,60,\"token\"\n"
            "*.example.com,CNAME,,www.example.com.\n"
        )

        records = CSVParser(path).parse()

        self.assertEqual(
            records,
            [
                {"name": "www.example.com", "type": "A", "ttl": 300, "rdata": ["192.0.2.1", "192.0.2.2"]},
                {"name": "_acme-challenge.example.com", "type": "TXT", "ttl": 60, "rdata": ["token"]},
                {"name": "*.example.com", "type": "CNAME", "ttl": 300, "rdata": ["www.example.com."]},
            ],
        )

    def test_invalid_rows_are_skipped(self):
        path = self.write_csv(
            "Name,Type,TTL,RData\n"
            "www.example.com,A,300,192.0.2.1\n"
            "invalidname,A,300,192.0.2.2\n"
            "api.example.com,BOGUS,300,x\n"
            "api.example.com,A,abc,192.0.2.3\n"
            "api.example.com,A,300,\n"
            "api.example.com,A,300,999.0.2.3\n"
        )

        records = CSVParser(path).parse()

        self.assertEqual([r["name"] for r in records], ["www.example.com"])

    def test_missing_columns(self):
        path = self.write_csv("FQDN,IPv4\nwww.example.com,192.0.2.1\n")

        with self.assertRaises(ValueError):
            CSVParser(path).parse()

    def test_missing_file(self):
        with self.assertRaises(FileNotFoundError):
            CSVParser("/nonexistent/records.csv").parse()


class TestConfiguration(unittest.TestCase):
    def test_missing_file_uses_defaults(self):
        self.assertEqual(load_config("/nonexistent/config.yaml"), get_default_config())

    def test_load_yaml(self):
        with tempfile.NamedTemporaryFile("w", suffix=".yaml", delete=False) as f:
            yaml.dump(test_config(), f)
        self.addCleanup(os.unlink, f.name)

        self.assertEqual(load_config(f.name)["default_provider"], "mock")

    def test_malformed_yaml_exits(self):
        with tempfile.NamedTemporaryFile("w", suffix=".yaml", delete=False) as f:
            f.write("orchestration: [unclosed\n")
        self.addCleanup(os.unlink, f.name)

        with self.assertRaises(SystemExit):
            load_config(f.name)

    def test_settings_from_config(self):
        settings = OrchestrationSettings.from_config(
            {
                "orchestration": {
                    "poll_interval": 2,
                    "rollback_on_timeout": False,
                    "retry": {"max_attempts": 3},
                },
                "verification": {"nameservers": ["192.0.2.53"], "enabled": False},
            }
        )

        self.assertEqual(settings.poll_interval, 2.0)
        self.assertFalse(settings.rollback_on_timeout)
        self.assertEqual(settings.retry.max_attempts, 3)
        self.assertEqual(settings.nameservers, ["192.0.2.53"])
        self.assertFalse(settings.verify)
        self.assertEqual(settings.convergence_deadline, 300.0)


class TestZoneChangeManager(unittest.TestCase):
    def setUp(self):
        self.control_plane = MockControlPlane({"zones": {ZONE: LIVE}})
        self.manager = ZoneChangeManager(test_config(), transport=self.control_plane)

    def test_process_records_applies_changes(self):
        desired = [
            {"name": "www.example.com", "type": "A", "ttl": 300, "rdata": ["192.0.2.2"]},
            {"name": "api.example.com", "type": "A", "ttl": 300, "rdata": ["192.0.2.20"]},
        ]

        outcome = self.manager.process_records(desired, ZONE, comment="sync")

        self.assertEqual(outcome, Outcome.SUCCEEDED)
        self.assertEqual(
            self.control_plane.live_recordset(ZONE, "www.example.com", "A")["rdata"],
            ["192.0.2.2"],
        )
        self.assertTrue(self.manager.runs[0].verified)
        self.assertEqual(self.control_plane.submissions[0]["comment"], "sync")

    def test_process_records_is_idempotent(self):
        desired = [{"name": "www.example.com", "type": "A", "ttl": 300, "rdata": ["192.0.2.2"]}]

        self.manager.process_records(desired, ZONE)
        outcome = self.manager.process_records(desired, ZONE)

        self.assertEqual(outcome, Outcome.SUCCEEDED)
        self.assertEqual(len(self.control_plane.submissions), 1)

    def test_dry_run_writes_plan(self):
        desired = [{"name": "api.example.com", "type": "A", "ttl": 300, "rdata": ["192.0.2.20"]}]
        with tempfile.TemporaryDirectory() as tmp:
            output_file = os.path.join(tmp, "plan.txt")

            outcome = self.manager.process_records(
                desired, ZONE, dry_run=True, output_file=output_file
            )

            with open(output_file) as f:
                plan = f.read()

        self.assertEqual(outcome, Outcome.SUCCEEDED)
        self.assertIn("RECORDS TO ADD", plan)
        self.assertIn("api.example.com", plan)
        self.assertEqual(self.control_plane.submissions, [])
        self.assertEqual(self.control_plane.count_requests("POST", "/changelists"), 0)

    def test_failed_activation_is_rolled_back(self):
        self.control_plane.script_activation(
            ZONE, [{"activationState": "FAILED", "message": "quota exceeded"}]
        )
        desired = [{"name": "api.example.com", "type": "A", "ttl": 300, "rdata": ["192.0.2.20"]}]

        outcome = self.manager.process_records(desired, ZONE)

        self.assertEqual(outcome, Outcome.ROLLED_BACK)
        self.assertIsNone(self.control_plane.live_recordset(ZONE, "api.example.com", "A"))

    def test_planning_error_fails(self):
        desired = [{"name": "www.example.org", "type": "A", "ttl": 300, "rdata": ["192.0.2.1"]}]

        self.assertEqual(self.manager.process_records(desired, ZONE), Outcome.FAILED)

    def test_process_zones_concurrently(self):
        self.control_plane.add_zone("example.net", [])
        batches = {
            ZONE: [{"name": "api.example.com", "type": "A", "ttl": 300, "rdata": ["192.0.2.20"]}],
            "example.net": [{"name": "api.example.net", "type": "A", "ttl": 300, "rdata": ["192.0.2.21"]}],
        }

        outcomes = self.manager.process_zones(batches, comment="bulk")

        self.assertEqual(outcomes, {ZONE: Outcome.SUCCEEDED, "example.net": Outcome.SUCCEEDED})
        self.assertEqual(len(self.control_plane.submissions), 2)


class TestCLI(unittest.TestCase):
    def setUp(self):
        self.tmp = tempfile.TemporaryDirectory()
        self.addCleanup(self.tmp.cleanup)
        self.config_path = os.path.join(self.tmp.name, "config.yaml")
        with open(self.config_path, "w") as f:
            yaml.dump(test_config({ZONE: LIVE}), f)

    def run_cli(self, *args):
        with self.assertRaises(SystemExit) as raised:
            main(["--config", self.config_path, "--zone", ZONE, *args])
        return raised.exception.code

    def test_exit_codes(self):
        self.assertEqual(
            EXIT_CODES,
            {
                Outcome.SUCCEEDED: 0,
                Outcome.FAILED: 1,
                Outcome.ROLLED_BACK: 2,
                Outcome.ROLLBACK_FAILED: 3,
            },
        )

    def test_single_add(self):
        self.assertEqual(self.run_cli("--name", "api.example.com", "--rdata", "192.0.2.20"), 0)

    def test_single_delete_of_missing_record_fails(self):
        self.assertEqual(self.run_cli("--name", "nope.example.com", "--op", "DELETE"), 1)

    def test_csv(self):
        csv_path = os.path.join(self.tmp.name, "records.csv")
        with open(csv_path, "w") as f:
            f.write("name,type,ttl,rdata\nwww.example.com,A,300,192.0.2.2\n")

        self.assertEqual(self.run_cli("--csv", csv_path, "--no-verify"), 0)
        self.assertEqual(self.run_cli("--csv", csv_path, "--dry-run"), 0)
        self.assertEqual(self.run_cli("--csv", csv_path, "--validate"), 0)

    def test_output_file_requires_dry_run(self):
        self.assertEqual(self.run_cli("--name", "api.example.com", "--output-file", "x.txt"), 1)

    def test_missing_csv(self):
        self.assertEqual(self.run_cli("--csv", "/nonexistent/records.csv"), 1)

    def test_validate_single_change(self):
        self.assertEqual(
            self.run_cli("--name", "api.example.com", "--rdata", "192.0.2.20", "--validate"), 0
        )

    @patch("zone_change_orchestrator.cli.main.ZoneChangeManager")
    def test_rolled_back_exit_code(self, manager_class):
        manager_class.return_value.apply_mutations.return_value.outcome = Outcome.ROLLED_BACK

        self.assertEqual(self.run_cli("--name", "api.example.com", "--rdata", "192.0.2.20"), 2)


if __name__ == "__main__":
    unittest.main()
