"""
Command line interface for release automation

    dmv-release serve                      Run the HTTP service
    dmv-release submit ID [ID ...]         Stream a batch from a running service
    dmv-release submit --sync ID [ID ...]  Run a batch and print the summary
    dmv-release status ID [ID ...]         Show stored release status
"""

import argparse
import asyncio
import sys
from pathlib import Path
from typing import Optional

import httpx
from rich import box
from rich.console import Console
from rich.markup import escape
from rich.panel import Panel
from rich.progress import Progress, BarColumn, TextColumn, TimeElapsedColumn
from rich.table import Table

from .exceptions import ReleaseServiceError
from .logging_config import configure_logging
from .models.progress_event import EventKind, ProgressEvent, ReleaseOutcome, SYSTEM_VEHICLE_ID
from .models.vehicle_job import ReleaseStatus, VehicleReleaseJob
from .services.automation.confirmation import is_placeholder
from .services.stream_consumer import ReleaseStreamConsumer
from .settings import get_settings

DEFAULT_SERVER = "http://127.0.0.1:8000"

STATUS_STYLES = {
    ReleaseStatus.SUBMITTED: "[green]submitted[/green]",
    ReleaseStatus.FAILED: "[red]failed[/red]",
    ReleaseStatus.PROCESSING: "[yellow]processing[/yellow]",
    ReleaseStatus.PENDING: "[blue]pending[/blue]",
}


class CLIHandler:
    """CLI Handler Class"""

    def __init__(self, console: Optional[Console] = None):
        self.console = console or Console()
        self.consumer: Optional[ReleaseStreamConsumer] = None

    def create_argument_parser(self) -> argparse.ArgumentParser:
        parser = argparse.ArgumentParser(
            description="DMV Release of Liability automation",
            prog="dmv-release",
            formatter_class=argparse.RawDescriptionHelpFormatter
        )
        parser.add_argument(
            "--verbose",
            action="store_true",
            help="Enable debug logging"
        )
        subparsers = parser.add_subparsers(dest="command", required=True)

        serve = subparsers.add_parser("serve", help="Run the release HTTP service")
        serve.add_argument("--host", default="127.0.0.1", help="Bind address (default: 127.0.0.1)")
        serve.add_argument("--port", type=int, default=8000, help="Bind port (default: 8000)")

        submit = subparsers.add_parser("submit", help="Submit vehicles for release")
        submit.add_argument("vehicle_ids", nargs="+", help="Vehicle ids to submit")
        submit.add_argument("--server", default=DEFAULT_SERVER, help=f"Service URL (default: {DEFAULT_SERVER})")
        submit.add_argument("--sync", action="store_true", help="Wait for the summary instead of streaming")
        submit.add_argument("--save-screenshots", type=Path, metavar="DIR",
                            help="Write received screenshots to this directory")

        status = subparsers.add_parser("status", help="Show stored release status")
        status.add_argument("vehicle_ids", nargs="+", help="Vehicle ids to look up")
        status.add_argument("--server", default=DEFAULT_SERVER, help=f"Service URL (default: {DEFAULT_SERVER})")

        return parser

    # =================== Commands ===================

    def serve(self, host: str, port: int) -> int:
        import uvicorn

        from .api import create_app

        uvicorn.run(create_app(), host=host, port=port, log_config=None)
        return 0

    async def submit(self, server: str, vehicle_ids: list[str], screenshot_dir: Optional[Path] = None) -> int:
        with Progress(
            TextColumn("[progress.description]{task.description}"),
            BarColumn(),
            TextColumn("[progress.percentage]{task.percentage:>3.0f}%"),
            TextColumn("({task.completed}/{task.total})"),
            TimeElapsedColumn(),
            console=self.console
        ) as progress:
            overall_task = progress.add_task("Releasing vehicles", total=len(vehicle_ids))

            def on_event(event: ProgressEvent):
                self._print_event(progress.console, event)
                progress.update(overall_task, completed=len(self.consumer.completed) + len(self.consumer.failed))

            self.consumer = ReleaseStreamConsumer(server, on_event=on_event)
            await self.consumer.submit(vehicle_ids)
            progress.update(overall_task, completed=len(vehicle_ids))

        consumer = self.consumer
        self.console.print(Panel(
            f"Submitted: {len(consumer.completed)}\nFailed: {len(consumer.failed)}\n"
            f"Not processed: {len(vehicle_ids) - len(consumer.completed) - len(consumer.failed)}",
            title=consumer.status_message or "Batch finished",
            box=box.ROUNDED,
            style="green" if not consumer.failed and not consumer.system_error else "yellow",
        ))
        if consumer.jobs:
            self.console.print(self._jobs_table(consumer.jobs))

        if screenshot_dir:
            written = consumer.save_screenshots(screenshot_dir)
            self.console.print(f"[dim]Saved {len(written)} screenshot(s) to {screenshot_dir}[/dim]")

        return 0 if not consumer.failed and not consumer.system_error else 1

    async def submit_sync(self, server: str, vehicle_ids: list[str]) -> int:
        self.consumer = ReleaseStreamConsumer(server)
        with self.console.status("Waiting for the batch to finish..."):
            outcomes = await self.consumer.submit_sync(vehicle_ids)
        self.console.print(self._outcomes_table(outcomes))
        return 0 if all(outcome.success for outcome in outcomes) else 1

    async def status(self, server: str, vehicle_ids: list[str]) -> int:
        jobs = await ReleaseStreamConsumer(server).refresh(vehicle_ids)
        if not jobs:
            self.console.print("[yellow]No matching vehicles found[/yellow]")
            return 1
        self.console.print(self._jobs_table(jobs))
        return 0

    def cancel(self):
        """Stop following the stream after Ctrl+C"""
        if self.consumer is not None:
            self.consumer.cancel()
            self.console.print(f"\n[yellow]{self.consumer.status_message}[/yellow]")
        else:
            self.console.print("\n[yellow]Operation cancelled by user[/yellow]")

    # =================== Rendering ===================

    @staticmethod
    def _print_event(console: Console, event: ProgressEvent):
        message = escape(event.message)
        step = f"[{event.step_index}/{event.total_steps}] " if event.step_index else ""
        if event.vehicle_id == SYSTEM_VEHICLE_ID:
            console.print(f"[red]Batch error: {message}[/red]")
        elif event.kind == EventKind.COMPLETE:
            console.print(f"[green]{event.vehicle_id}: {message}[/green]")
        elif event.kind == EventKind.ERROR:
            console.print(f"[red]{event.vehicle_id}: {step}{message}[/red]")
        elif event.kind == EventKind.SCREENSHOT:
            console.print(f"[cyan]{event.vehicle_id}: {step}{message} (screenshot)[/cyan]")
        else:
            console.print(f"[dim]{event.vehicle_id}: {step}{message}[/dim]")

    @staticmethod
    def _confirmation_cell(code: Optional[str]) -> str:
        if not code:
            return "-"
        if is_placeholder(code):
            return f"{escape(code)} [yellow](needs reconciliation)[/yellow]"
        return escape(code)

    @staticmethod
    def _jobs_table(jobs: list[VehicleReleaseJob]) -> Table:
        table = Table(title="Release status", box=box.ROUNDED)
        table.add_column("Vehicle", style="cyan")
        table.add_column("Description")
        table.add_column("Status", justify="center")
        table.add_column("Confirmation", style="magenta")
        table.add_column("Submitted", style="dim")

        for job in jobs:
            table.add_row(
                job.id,
                job.description or "-",
                STATUS_STYLES.get(job.release_status, job.release_status.value),
                CLIHandler._confirmation_cell(job.confirmation_code),
                job.submitted_at.isoformat(timespec="seconds") if job.submitted_at else "-",
            )
        return table

    @staticmethod
    def _outcomes_table(outcomes: list[ReleaseOutcome]) -> Table:
        table = Table(title="Release results", box=box.ROUNDED)
        table.add_column("Vehicle", style="cyan")
        table.add_column("Result", justify="center")
        table.add_column("Confirmation / Error")

        for outcome in outcomes:
            if outcome.success:
                table.add_row(outcome.vehicle_id, "[green]submitted[/green]", outcome.confirmation_number or "-")
            else:
                table.add_row(outcome.vehicle_id, "[red]failed[/red]", outcome.error or "-")
        return table

    def run(self, args: argparse.Namespace) -> int:
        if args.command == "serve":
            return self.serve(args.host, args.port)
        if args.command == "submit":
            if args.sync:
                return asyncio.run(self.submit_sync(args.server, args.vehicle_ids))
            return asyncio.run(self.submit(args.server, args.vehicle_ids, args.save_screenshots))
        if args.command == "status":
            return asyncio.run(self.status(args.server, args.vehicle_ids))
        raise ValueError(f"Unknown command: {args.command}")


def main(argv: Optional[list[str]] = None):
    """CLI main entry point"""
    cli_handler = CLIHandler()
    parser = cli_handler.create_argument_parser()
    args = parser.parse_args(argv)

    settings = get_settings()
    configure_logging("DEBUG" if args.verbose else settings.log_level)

    try:
        sys.exit(cli_handler.run(args))
    except KeyboardInterrupt:
        cli_handler.cancel()
        sys.exit(130)
    except ReleaseServiceError as e:
        cli_handler.console.print(f"[red]{e.message}[/red]")
        sys.exit(1)
    except httpx.HTTPError as e:
        cli_handler.console.print(f"[red]Could not reach the release service: {e}[/red]")
        sys.exit(1)


if __name__ == "__main__":
    main()
