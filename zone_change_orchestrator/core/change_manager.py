"""
Zone Change Manager - Plans and applies record changes for one or more zones

This module wires the control-plane client, change planning and the
orchestrator together from configuration, and reports plans and run outcomes
on the console.
"""

import logging
import time
from concurrent.futures import ThreadPoolExecutor
from datetime import datetime
from typing import Callable, Dict, List, Optional

from rich.console import Console
from rich.progress import BarColumn, Progress, SpinnerColumn, TextColumn
from rich.table import Table

from ..errors import OrchestrationError
from ..providers.base_provider import ControlPlaneTransport
from ..providers.dns_client import build_client
from ..providers.mock_provider import MockControlPlane
from ..utils.cancellation import CancellationToken
from ..utils.config import OrchestrationSettings
from .models import OrchestrationRun, Outcome, PropagationStatus
from .mutations import Mutation
from .orchestrator import build_orchestrator
from .record_manager import RecordManager

# Initialize rich console and logger
console = Console()
logger = logging.getLogger(__name__)

OUTCOME_STYLES = {
    Outcome.SUCCEEDED: "green",
    Outcome.FAILED: "red",
    Outcome.ROLLED_BACK: "yellow",
    Outcome.ROLLBACK_FAILED: "bold red",
}


class ZoneChangeManager:
    """Main zone change class that drives planning and orchestration."""

    def __init__(
        self,
        config: Dict,
        transport: Optional[ControlPlaneTransport] = None,
        resolver=None,
        clock: Callable[[], float] = time.monotonic,
    ):
        """Initialize the zone change manager from a configuration dictionary."""
        self.config = config
        self.settings = OrchestrationSettings.from_config(config)
        self.dns_client = build_client(config, transport=transport)

        # The mock control plane is not visible to real resolvers
        if resolver is None and isinstance(self.dns_client.transport, MockControlPlane):
            resolver = self.dns_client.transport.resolver()

        self.record_manager = RecordManager(self.dns_client)
        self.orchestrator = build_orchestrator(
            self.dns_client, self.settings, resolver=resolver, clock=clock
        )
        self.runs: List[OrchestrationRun] = []

    def process_records(
        self,
        records: List[Dict],
        zone: str,
        dry_run: bool = False,
        output_file: Optional[str] = None,
        comment: str = "",
        prune: bool = False,
        verify: Optional[bool] = None,
        deadline: Optional[float] = None,
        fail_fast: bool = False,
        token: Optional[CancellationToken] = None,
        show_progress: bool = True,
    ) -> Outcome:
        """Plan the desired records against the live zone and apply the difference."""
        try:
            console.print(f"[green]Fetching current records for {zone}...[/green]")
            current_records = self.record_manager.fetch_current(zone)
            console.print(
                f"[blue]Found {len(current_records)} existing recordsets[/blue]"
            )

            changes = self.record_manager.plan_changes(
                current_records, records, zone, prune=prune
            )
        except (OrchestrationError, ValueError) as e:
            logger.error(f"Error planning changes for {zone}: {e}")
            console.print(f"[red]Error: {e}[/red]")
            return Outcome.FAILED

        self._display_changes_summary(changes)

        if dry_run:
            console.print("[yellow]DRY RUN MODE - No changes will be applied[/yellow]")

            # Save dry run output to file if specified
            if output_file:
                self._save_dry_run_output(changes, zone, output_file)
                console.print(f"[green]Dry run output saved to: {output_file}[/green]")

            return Outcome.SUCCEEDED

        if changes["total_changes"] == 0:
            console.print("[green]No changes required - zone records are up to date[/green]")
            return Outcome.SUCCEEDED

        self._show_changes(changes)
        run = self.apply_mutations(
            zone,
            changes["mutations"],
            comment=comment,
            verify=verify,
            deadline=deadline,
            fail_fast=fail_fast,
            token=token,
            show_progress=show_progress,
        )
        return run.outcome

    def apply_mutations(
        self,
        zone: str,
        mutations: List[Mutation],
        comment: str = "",
        verify: Optional[bool] = None,
        deadline: Optional[float] = None,
        fail_fast: bool = False,
        token: Optional[CancellationToken] = None,
        show_progress: bool = True,
    ) -> OrchestrationRun:
        """Run the orchestrator for ``mutations`` and report the outcome."""
        comment = comment or f"zone-change: {len(mutations)} changes"

        if show_progress:
            with Progress(
                SpinnerColumn(),
                TextColumn("[progress.description]{task.description}"),
                BarColumn(),
                TextColumn("{task.percentage:>3.0f}%"),
                console=console,
            ) as progress:
                task = progress.add_task(f"Applying changes to {zone}...", total=100)

                def on_progress(status: PropagationStatus) -> None:
                    progress.update(
                        task,
                        completed=status.percentage,
                        description=f"{zone}: {status.state.value}",
                    )

                run = self.orchestrator.execute(
                    zone,
                    mutations,
                    comment,
                    deadline=deadline,
                    verify=verify,
                    fail_fast=fail_fast,
                    token=token,
                    on_progress=on_progress,
                )
        else:
            run = self.orchestrator.execute(
                zone,
                mutations,
                comment,
                deadline=deadline,
                verify=verify,
                fail_fast=fail_fast,
                token=token,
            )

        self.runs.append(run)
        self._display_run(run)
        return run

    def process_zones(
        self,
        batches: Dict[str, List[Dict]],
        comment: str = "",
        prune: bool = False,
        max_workers: Optional[int] = None,
    ) -> Dict[str, Outcome]:
        """Process independent zones concurrently; each zone is its own run."""
        if not batches:
            return {}

        workers = max_workers or min(len(batches), 8)
        logger.info(f"Processing {len(batches)} zones with {workers} workers")

        with ThreadPoolExecutor(max_workers=workers) as executor:
            futures = {
                zone: executor.submit(
                    self.process_records,
                    records,
                    zone,
                    comment=comment,
                    prune=prune,
                    show_progress=False,
                )
                for zone, records in batches.items()
            }
            return {zone: future.result() for zone, future in futures.items()}

    def _display_changes_summary(self, changes: Dict):
        """Display a summary of planned changes."""
        table = Table(title="Zone Changes Summary")
        table.add_column("Operation", style="cyan")
        table.add_column("Count", style="magenta")
        table.add_column("Details", style="white")

        for label, key in (
            ("Add", "adds"),
            ("Replace", "replaces"),
            ("Delete", "deletes"),
            ("No Change", "no_changes"),
        ):
            if changes[key]:
                table.add_row(
                    label,
                    str(len(changes[key])),
                    ", ".join(f"{r['name']} {r['type']}" for r in changes[key]),
                )

        console.print(table)
        console.print(f"\n[bold]Total changes: {changes['total_changes']}[/bold]")

    def _show_changes(self, changes: Dict):
        """Print every mutation about to be submitted."""
        console.print(
            f"\n[bold]About to submit {changes['total_changes']} changes[/bold]"
        )
        for mutation in changes["mutations"]:
            console.print(f"  {mutation.describe()}")

    def _display_run(self, run: OrchestrationRun):
        """Display the outcome of a run."""
        summary = run.summary()
        style = OUTCOME_STYLES.get(run.outcome, "white")

        table = Table(title=f"Run {run.run_id}")
        table.add_column("Field", style="cyan")
        table.add_column("Value", style="white")
        table.add_row("Zone", summary["zone"])
        table.add_row("Outcome", f"[{style}]{summary['outcome']}[/{style}]")
        if summary["request_id"]:
            table.add_row("Request ID", summary["request_id"])
        if summary["activation_state"]:
            table.add_row(
                "Activation",
                f"{summary['activation_state']} ({summary['propagation']:g}%)",
            )
        if summary["verified"] is not None:
            table.add_row("Verified", "yes" if summary["verified"] else "no")
        if summary["error"]:
            table.add_row("Error", summary["error"])
        for warning in summary["warnings"]:
            table.add_row("Warning", warning)
        if summary["rollback_request_id"]:
            table.add_row("Rollback Request ID", summary["rollback_request_id"])
        if summary["rollback_error"]:
            table.add_row("Rollback Error", summary["rollback_error"])
        console.print(table)

        if run.requires_manual_intervention:
            console.print(
                f"[bold red]Zone {run.zone.name} requires manual intervention[/bold red]"
            )

    def _save_dry_run_output(self, changes: Dict, zone: str, output_file: str):
        """Save dry run output to a file."""
        try:
            with open(output_file, "w") as f:
                f.write("=" * 60 + "\n")
                f.write("ZONE CHANGE ORCHESTRATOR - DRY RUN SUMMARY\n")
                f.write("=" * 60 + "\n\n")

                f.write(f"Zone: {zone}\n")
                f.write(f"Total Changes: {changes['total_changes']}\n")
                f.write(f"Timestamp: {datetime.now().strftime('%Y-%m-%d %H:%M:%S')}\n\n")

                for title, marker, key in (
                    ("RECORDS TO ADD", "+", "adds"),
                    ("RECORDS TO REPLACE", "~", "replaces"),
                    ("RECORDS TO DELETE", "-", "deletes"),
                    ("RECORDS WITH NO CHANGES", "=", "no_changes"),
                ):
                    if not changes.get(key):
                        continue
                    f.write(f"{title}:\n")
                    f.write("-" * (len(title) + 1) + "\n")
                    for record in changes[key]:
                        values = ", ".join(record["rdata"])
                        f.write(
                            f"  {marker} {record['name']:<30} {record['type']:<6} -> {values}\n"
                        )
                    f.write("\n")

                f.write("=" * 60 + "\n")
                f.write("END OF DRY RUN SUMMARY\n")
                f.write("=" * 60 + "\n")

            logger.info(f"Dry run output saved to: {output_file}")
        except OSError as e:
            logger.error(f"Failed to save dry run output to {output_file}: {e}")
            console.print(
                f"[red]Warning: Failed to save dry run output to {output_file}: {e}[/red]"
            )
