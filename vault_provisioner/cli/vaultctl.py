#!/usr/bin/env python3
"""
Vault Control CLI - Command Line Interface for the Vault Provisioner.

Provides commands for inviting and confirming members, inspecting the
organization and collection policy, running the retention policy and
starting the API server or scheduler.
"""

import logging
import time
from typing import Optional

import click
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from ..config import Settings, load_settings
from ..errors import VaultProvisionerError
from ..engine.policy_mapper import PolicyMapper
from ..models import MemberStatus, RetentionSummary, UserFacingResult
from ..service import ProvisioningService

# Setup logging
logging.basicConfig(level=logging.INFO, format='%(asctime)s - %(name)s - %(levelname)s - %(message)s')
logger = logging.getLogger(__name__)

# Rich console for pretty output
console = Console()

LEVEL_STYLE = {"success": "green", "info": "blue", "warning": "yellow", "error": "red"}


class VaultController:
    """Main controller for CLI operations; builds the service on first use."""

    def __init__(self, config_path: Optional[str] = None, mock_mode: bool = True):
        self.settings: Settings = load_settings(config_path, mock_mode=mock_mode)
        self._service: Optional[ProvisioningService] = None

    @property
    def service(self) -> ProvisioningService:
        if self._service is None:
            missing = self.settings.missing_required()
            if missing:
                raise click.ClickException(f"Missing required configuration: {', '.join(missing)}")
            self._service = ProvisioningService(self.settings)
            mode = "mock" if self.settings.mock_mode else "live"
            console.print(f"[green]Vault Provisioner initialized ({mode} mode)[/green]")
        return self._service


@click.group()
@click.option('--config', '-c', help='Path to JSON configuration file')
@click.option('--mock/--real', default=True, help='Use mock mode (default) or real API connections')
@click.pass_context
def cli(ctx, config, mock):
    """Vault Provisioner - vault membership automation."""
    ctx.ensure_object(dict)
    ctx.obj['controller'] = VaultController(config, mock)


@cli.command()
@click.argument('email')
@click.option('--operator', default='cli', help='Operator recorded in the audit trail')
@click.pass_context
def provision(ctx, email, operator):
    """Invite EMAIL to the vault, or resend a pending invitation."""
    result = ctx.obj['controller'].service.provision_access(email, operator=operator)
    display_result(result)


@cli.command()
@click.argument('email')
@click.option('--operator', default='cli', help='Operator recorded in the audit trail')
@click.pass_context
def confirm(ctx, email, operator):
    """Confirm EMAIL once they have accepted their invitation."""
    result = ctx.obj['controller'].service.confirm_access(email, operator=operator)
    display_result(result)


@cli.command()
@click.option('--status', type=click.Choice([s.name.lower() for s in MemberStatus]), help='Filter by status')
@click.option('--limit', default=50, help='Maximum number of members to show')
@click.pass_context
def members(ctx, status, limit):
    """List vault organization members."""
    status_filter = MemberStatus[status.upper()] if status else None

    try:
        records = ctx.obj['controller'].service.list_members(status_filter)
    except VaultProvisionerError as e:
        raise click.ClickException(f"Could not list members: {e}") from e

    if not records:
        console.print("[yellow]No members found[/yellow]")
        return

    table = Table(title=f"Members ({len(records)})")
    table.add_column("Email", style="cyan")
    table.add_column("Name")
    table.add_column("Status", style="green")
    table.add_column("Type")
    table.add_column("2FA")
    table.add_column("Last Active")

    for member in records[:limit]:
        table.add_row(
            member.email,
            member.name or "",
            member.status.label,
            member.type.name.lower(),
            "yes" if member.two_factor_enabled else "no",
            member.last_active.strftime("%Y-%m-%d") if member.last_active else "never",
        )

    console.print(table)


@cli.command()
@click.argument('role')
@click.pass_context
def policy(ctx, role):
    """Show the collections ROLE would receive."""
    settings = ctx.obj['controller'].settings
    grants = PolicyMapper(settings.vault.policy_file).resolve_grants(role)

    table = Table(title=f"Collections for '{role}'")
    table.add_column("Collection", style="cyan")
    table.add_column("ID")
    table.add_column("Read Only")
    table.add_column("Hide Passwords")

    for grant in grants:
        table.add_row(grant.name, grant.collection_id,
                      "yes" if grant.read_only else "no",
                      "yes" if grant.hide_passwords else "no")

    console.print(table)


@cli.command()
@click.option('--dry-run/--execute', default=True, help='Only report (default) or actually delete members')
@click.pass_context
def retention(ctx, dry_run):
    """Run the retention policy once."""
    if not dry_run:
        click.confirm("This will delete vault members. Continue?", abort=True)

    summary = ctx.obj['controller'].service.run_retention(dry_run=dry_run)
    display_retention_summary(summary)


@cli.command()
@click.option('--email', help='Filter by member email')
@click.option('--limit', default=50, help='Maximum number of records to show')
@click.pass_context
def audit(ctx, email, limit):
    """Show the audit trail."""
    records = ctx.obj['controller'].service.audit_logger.get_events(user_email=email, limit=limit)
    if not records:
        console.print("[yellow]No audit records found[/yellow]")
        return

    table = Table(title="Audit Trail")
    table.add_column("Timestamp", style="cyan")
    table.add_column("Operator")
    table.add_column("Action", style="green")
    table.add_column("Email")
    table.add_column("Success")
    table.add_column("Error")

    for record in records:
        table.add_row(
            record.timestamp.strftime("%Y-%m-%d %H:%M:%S"),
            record.operator,
            record.action,
            record.user_email,
            "✓" if record.success else "✗",
            record.error_message or "",
        )

    console.print(table)


@cli.command()
@click.pass_context
def schedule(ctx):
    """Run the retention scheduler in the foreground."""
    scheduler = ctx.obj['controller'].service.build_scheduler()
    scheduler.start()

    for job in scheduler.status()["jobs"]:
        console.print(f"[blue]{job['name']}[/blue] next run: {job['next_run_time']}")
    console.print("[blue]Press Ctrl+C to stop[/blue]")

    try:
        while True:
            time.sleep(1)
    except KeyboardInterrupt:
        console.print("[yellow]Scheduler stopped[/yellow]")
    finally:
        scheduler.stop()


@cli.command()
@click.option('--port', default=8000, help='Port to run the API server on')
@click.option('--host', default='127.0.0.1', help='Host to bind the API server to')
@click.pass_context
def serve(ctx, port, host):
    """Start the Vault Provisioner API server."""
    from ..api import server

    server.service = ctx.obj['controller'].service

    console.print(f"[green]Starting Vault Provisioner API server on {host}:{port}[/green]")
    console.print("[blue]Press Ctrl+C to stop[/blue]")

    try:
        server.start_server(host=host, port=port, reload=False)
    except KeyboardInterrupt:
        console.print("[yellow]Server stopped[/yellow]")


def display_result(result: UserFacingResult):
    """Display a workflow reply."""
    style = LEVEL_STYLE.get(result.level, "white")
    console.print(Panel.fit(f"[bold {style}]{result.title}[/bold {style}]\n{result.description}"))


def display_retention_summary(summary: RetentionSummary):
    """Display a retention run summary."""
    if summary.skipped:
        console.print("[yellow]Retention run skipped: another run is in progress[/yellow]")
        return

    table = Table(title="Retention Run" + (" (dry run)" if summary.dry_run else ""))
    table.add_column("Email", style="cyan")
    table.add_column("Reason", style="magenta")

    for verdict in summary.pending_deletions:
        table.add_row(verdict.email, verdict.reason.value)

    console.print(table)
    console.print(f"Members: {summary.total_users}")
    if summary.dry_run:
        console.print(f"Would delete: {len(summary.pending_deletions)}")
    else:
        console.print(f"Deleted: {summary.deleted}")

    if summary.errors:
        console.print("[red]Errors:[/red]")
        for error in summary.errors:
            console.print(f"  - {error}")


def main():
    cli(obj={})


if __name__ == "__main__":
    main()
