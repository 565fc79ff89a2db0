"""
Step definitions for Zone Change Orchestrator scenarios.
"""

import csv

from behave import given, then, when

from zone_change_orchestrator.cli.main import main
from zone_change_orchestrator.core.models import ActivationState, Outcome
from zone_change_orchestrator.errors import ValidationError
from zone_change_orchestrator.parsers.csv import CSVParser


def _write_csv(context, filename, records):
    context.csv_file = context.test_data_dir / filename
    with open(context.csv_file, "w", newline="") as f:
        writer = csv.DictWriter(f, fieldnames=["name", "type", "ttl", "rdata"])
        writer.writeheader()
        for record in records:
            writer.writerow(
                {
                    "name": record["name"],
                    "type": record["type"],
                    "ttl": record["ttl"],
                    "rdata": "|".join(record["rdata"]),
                }
            )


def _process(context, **kwargs):
    try:
        records = CSVParser(str(context.csv_file)).parse()
        context.result = context.zone_manager.process_records(
            records, context.zone, show_progress=False, **kwargs
        )
    except Exception as e:
        context.error = str(e)
        context.result = None


@given("a zone change manager for the mock control plane")
def step_impl(context):
    """Check the manager built for the scenario."""
    assert context.zone_manager is not None
    assert context.zone_manager.dns_client.transport is context.control_plane


@given("I have a CSV file with new DNS records")
def step_impl(context):
    """Create a CSV file with new DNS records."""
    context.csv_records = [
        {"name": "www.example.com", "type": "A", "ttl": 300, "rdata": ["192.0.2.10"]},
        {"name": "api.example.com", "type": "A", "ttl": 60, "rdata": ["192.0.2.20", "192.0.2.21"]},
        {"name": "_acme-challenge.example.com", "type": "TXT", "ttl": 60, "rdata": ["token-value"]},
    ]
    _write_csv(context, "new_records.csv", context.csv_records)


@given("I have a CSV file with DNS record changes")
def step_impl(context):
    """Create a CSV file that changes an existing record."""
    context.csv_records = [
        {"name": "www.example.com", "type": "A", "ttl": 120, "rdata": ["192.0.2.11"]},
    ]
    _write_csv(context, "changes.csv", context.csv_records)


@given("I have a CSV file with only the api record")
def step_impl(context):
    """Create a CSV file that leaves www out."""
    context.csv_records = [
        {"name": "api.example.com", "type": "A", "ttl": 300, "rdata": ["192.0.2.20"]},
    ]
    _write_csv(context, "api_only.csv", context.csv_records)


@given("I have a CSV file with valid and invalid DNS records")
def step_impl(context):
    """Create a CSV file mixing valid and invalid rows."""
    context.csv_records = [
        {"name": "api.example.com", "type": "A", "ttl": 300, "rdata": ["192.0.2.20"]},
    ]
    context.csv_file = context.test_data_dir / "invalid_records.csv"
    with open(context.csv_file, "w", newline="") as f:
        f.write("name,type,ttl,rdata\n")
        f.write("api.example.com,A,300,192.0.2.20\n")
        f.write("invalid,A,300,192.0.2.21\n")
        f.write("bad.example.com,A,300,999.999.999.999\n")
        f.write("odd.example.com,BOGUS,300,x\n")


@given("activation takes several polls to reach every server")
def step_impl(context):
    """Report PENDING a few times before ACTIVE."""
    context.control_plane.script_activation(
        context.zone,
        [
            {"activationState": "PENDING", "propagationStatus": {"percentage": 0}},
            {"activationState": "PENDING", "propagationStatus": {"percentage": 30}},
            {"activationState": "PENDING", "propagationStatus": {"percentage": 80}},
            {"activationState": "ACTIVE", "propagationStatus": {"percentage": 100}},
        ],
    )


@given("the activation of the next submission fails")
def step_impl(context):
    """Make the next submission's activation fail."""
    context.control_plane.script_activation(
        context.zone, [{"activationState": "FAILED", "message": "quota exceeded"}]
    )


@when("I process the CSV file")
def step_impl(context):
    """Plan and apply the CSV file."""
    _process(context)


@when("I process the CSV file with pruning")
def step_impl(context):
    """Plan and apply the CSV file, deleting records it leaves out."""
    _process(context, prune=True)


@when("I process the same CSV file again")
def step_impl(context):
    """Apply the same CSV file a second time."""
    _process(context)


@when("I run the zone change manager in dry run mode")
def step_impl(context):
    """Plan the CSV file without applying it."""
    context.plan_file = context.test_data_dir / "plan.txt"
    _process(context, dry_run=True, output_file=str(context.plan_file))


@when('I process the CSV file for zone "{zone}"')
def step_impl(context, zone):
    """Apply the CSV file to another zone."""
    context.zone = zone
    _process(context)


@when("I apply the changes while every rollback submission is rejected")
def step_impl(context):
    """Drive the orchestrator directly so the fault lands after the first submission."""
    records = CSVParser(str(context.csv_file)).parse()
    changes = context.zone_manager.record_manager.plan_changes(
        context.control_plane.live_recordsets(context.zone), records, context.zone
    )

    def reject_later_submissions(status):
        if status.state == ActivationState.FAILED and not context.control_plane.faults:
            context.control_plane.inject_fault(
                "POST", "/submit", ValidationError("frozen", status=400), times=10
            )

    context.run = context.zone_manager.orchestrator.execute(
        context.zone,
        changes["mutations"],
        "scenario",
        on_progress=reject_later_submissions,
    )
    context.result = context.run.outcome


@when('I run the zone-change command to add "{name}" with value "{value}"')
def step_impl(context, name, value):
    """Run the CLI against the scenario configuration file."""
    _run_cli(
        context,
        "--zone", context.zone, "--name", name, "--rdata", value,
    )


@when('I run the zone-change command to delete "{name}"')
def step_impl(context, name):
    """Run the CLI to delete a record."""
    _run_cli(context, "--zone", context.zone, "--name", name, "--op", "DELETE")


def _run_cli(context, *args):
    try:
        main(["--config", str(context.test_config_file), *args])
    except SystemExit as e:
        context.exit_code = e.code


@then('the run should end with outcome "{outcome}"')
def step_impl(context, outcome):
    """Check the final outcome."""
    assert context.error is None, f"Processing raised: {context.error}"
    assert context.result == Outcome(outcome), f"Expected {outcome}, got {context.result}"


@then("the zone should contain the records from the CSV file")
def step_impl(context):
    """Every CSV record is live with its TTL and values."""
    for record in context.csv_records:
        live = context.control_plane.live_recordset(context.zone, record["name"], record["type"])
        assert live is not None, f"{record['name']} {record['type']} is missing"
        assert sorted(live["rdata"]) == sorted(record["rdata"]), live
        assert live["ttl"] == record["ttl"], live


@then("the new records should resolve")
def step_impl(context):
    """Check the run verified resolution."""
    run = context.zone_manager.runs[-1]
    assert run.verified is True, run.summary()


@then("no changelist should be left for the zone")
def step_impl(context):
    """Check the staging area was released."""
    assert context.zone not in context.control_plane.changelists


@then("the zone should be unchanged")
def step_impl(context):
    """Live records equal the initial records."""
    live = sorted(
        (r["name"], r["type"], r["ttl"], tuple(sorted(r["rdata"])))
        for r in context.control_plane.live_recordsets(context.zone)
    )
    initial = sorted(
        (r["name"], r["type"], r["ttl"], tuple(sorted(r["rdata"])))
        for r in context.initial_records
    )
    assert live == initial, live


@then("{count:d} changelist should have been submitted")
@then("{count:d} changelists should have been submitted")
def step_impl(context, count):
    """Count submissions seen by the control plane."""
    submitted = len(context.control_plane.submissions)
    assert submitted == count, f"Expected {count} submissions, got {submitted}"


@then("the run should have waited for full propagation")
def step_impl(context):
    """The final status is ACTIVE at 100% after several polls."""
    run = context.zone_manager.runs[-1]
    assert run.status.state == ActivationState.ACTIVE
    assert run.status.percentage == 100
    assert context.control_plane.count_requests("GET", "/status") >= 4


@then('"{name}" should have value "{value}"')
def step_impl(context, name, value):
    """Check one A record."""
    live = context.control_plane.live_recordset(context.zone, name, "A")
    assert live is not None and live["rdata"] == [value], live


@then('"{name}" should not exist')
def step_impl(context, name):
    """Check an A record is gone."""
    assert context.control_plane.live_recordset(context.zone, name, "A") is None


@then("the SOA and NS records should still exist")
def step_impl(context):
    """Apex records survive pruning."""
    for record_type in ("SOA", "NS"):
        assert context.control_plane.live_recordset(context.zone, context.zone, record_type)


@then("the dry run plan should list the changes")
def step_impl(context):
    """Check the plan file content."""
    plan = context.plan_file.read_text()
    for record in context.csv_records:
        if record["name"] != "www.example.com":
            assert record["name"] in plan, plan
    assert "RECORDS TO ADD" in plan


@then("only the valid records should be applied")
def step_impl(context):
    """Invalid rows never reached the zone."""
    assert context.control_plane.live_recordset(context.zone, "api.example.com", "A")
    assert context.control_plane.live_recordset(context.zone, "bad.example.com", "A") is None
    submitted = context.control_plane.submissions[0]["changes"]
    assert [change["name"] for change in submitted] == ["api.example.com"]


@then("the zone should require manual intervention")
def step_impl(context):
    """A failed rollback is reported as such."""
    assert context.run.requires_manual_intervention
    assert context.run.rollback_error is not None


@then("the command should exit with code {code:d}")
def step_impl(context, code):
    """Check the CLI exit status."""
    assert context.exit_code == code, f"Expected exit code {code}, got {context.exit_code}"


@then("the run summary should name the activation failure")
def step_impl(context):
    """The error in the summary carries the control plane message."""
    summary = context.zone_manager.runs[-1].summary()
    assert "quota exceeded" in summary["error"], summary

