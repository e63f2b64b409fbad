#!/usr/bin/env python3
"""
Broker Control CLI - Command Line Interface for boundary-secrets.

Provides commands for writing the cluster configuration and roles, issuing
credentials, managing their leases, and viewing the audit log.
"""

import logging
from pathlib import Path
from typing import Any, Dict, Optional

import click
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from ..backend import Backend, Operation, Request, build_backend
from ..errors import BrokerError
from ..models import AuditEvent
from ..settings import load_settings

logger = logging.getLogger(__name__)

DEFAULT_CLI_STORAGE = Path.home() / ".boundary-secrets" / "state.json"

# Rich console for pretty output
console = Console()


class BrokerController:
    """Main controller for broker operations."""

    def __init__(self, config_path: Optional[str] = None, mock_mode: Optional[bool] = None,
                 storage_file: Optional[str] = None):
        """Initialize the broker controller."""
        self.settings = load_settings(config_path, overrides={
            "mock_mode": mock_mode,
            "storage_file": storage_file,
        })
        if not self.settings.get("storage_file"):
            # CLI invocations are separate processes; keep state on disk between them
            self.settings["storage_file"] = str(DEFAULT_CLI_STORAGE)

        logging.basicConfig(
            level=getattr(logging, str(self.settings["log_level"]).upper(), logging.INFO),
            format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        )

        self._backend: Optional[Backend] = None

    @property
    def backend(self) -> Backend:
        if self._backend is None:
            self._backend = build_backend(self.settings)
        return self._backend

    def handle(self, operation: Operation, path: str, data: Optional[Dict[str, Any]] = None):
        return self.backend.handle_request(Request(operation=operation, path=path, data=data or {}))


def _fail(ctx: click.Context, message: str, error: Exception):
    console.print(f"[red]{message}: {error}[/red]")
    ctx.exit(1)


@click.group()
@click.option('--config', '-c', help='Path to settings file (YAML or JSON)')
@click.option('--mock/--real', default=None, help='Use the in-memory mock cluster or the real Boundary API')
@click.option('--storage', help='Path to the JSON state file')
@click.pass_context
def cli(ctx, config, mock, storage):
    """boundary-secrets Control CLI - dynamic Boundary credentials"""
    ctx.ensure_object(dict)
    ctx.obj['controller'] = BrokerController(config, mock, storage)


@cli.group()
def config():
    """Manage the cluster configuration."""


@config.command('write')
@click.option('--addr', required=True, help='Boundary controller URL')
@click.option('--login-name', required=True, help='Admin login name')
@click.option('--password', prompt=True, hide_input=True, help='Admin password')
@click.option('--auth-method-id', required=True, help='Password auth method ID')
@click.pass_context
def config_write(ctx, addr, login_name, password, auth_method_id):
    """Write (replace) the cluster configuration."""
    controller = ctx.obj['controller']
    try:
        controller.handle(Operation.UPDATE, "config", {
            "addr": addr,
            "login_name": login_name,
            "password": password,
            "auth_method_id": auth_method_id,
        })
    except BrokerError as e:
        _fail(ctx, "Error writing config", e)
    console.print(f"[green]✓ Configuration written for {addr}[/green]")


@config.command('show')
@click.pass_context
def config_show(ctx):
    """Show the cluster configuration."""
    controller = ctx.obj['controller']
    try:
        response = controller.handle(Operation.READ, "config")
    except BrokerError as e:
        _fail(ctx, "Error reading config", e)

    table = Table(title="Configuration")
    table.add_column("Field", style="cyan")
    table.add_column("Value", style="magenta")
    for key, value in response.data.items():
        table.add_row(key, str(value))
    console.print(table)


@config.command('delete')
@click.pass_context
def config_delete(ctx):
    """Delete the cluster configuration."""
    controller = ctx.obj['controller']
    controller.handle(Operation.DELETE, "config")
    console.print("[yellow]Configuration deleted[/yellow]")


@cli.group()
def role():
    """Manage roles."""


@role.command('write')
@click.argument('name')
@click.option('--login-name', required=True, help='Login name template or fixed value')
@click.option('--scope-id', default='global', show_default=True, help='Scope for created users')
@click.option('--exact-login-name', is_flag=True, help='Use the login name verbatim')
@click.option('--ttl', default=0, help='Lease TTL in seconds (0 uses the default)')
@click.option('--max-ttl', default=0, help='Maximum lease TTL in seconds (0 uses the default)')
@click.pass_context
def role_write(ctx, name, login_name, scope_id, exact_login_name, ttl, max_ttl):
    """Create or overwrite a role."""
    controller = ctx.obj['controller']
    try:
        controller.handle(Operation.UPDATE, f"role/{name}", {
            "login_name": login_name,
            "scope_id": scope_id,
            "exact_login_name": exact_login_name,
            "ttl": ttl,
            "max_ttl": max_ttl,
        })
    except BrokerError as e:
        _fail(ctx, f"Error writing role {name}", e)
    console.print(f"[green]✓ Role {name} written[/green]")


@role.command('show')
@click.argument('name')
@click.pass_context
def role_show(ctx, name):
    """Show a role."""
    controller = ctx.obj['controller']
    try:
        response = controller.handle(Operation.READ, f"role/{name}")
    except BrokerError as e:
        _fail(ctx, f"Error reading role {name}", e)

    table = Table(title=f"Role {name}")
    table.add_column("Field", style="cyan")
    table.add_column("Value", style="magenta")
    for key, value in response.data.items():
        table.add_row(key, str(value))
    console.print(table)


@role.command('list')
@click.pass_context
def role_list(ctx):
    """List roles."""
    controller = ctx.obj['controller']
    try:
        response = controller.handle(Operation.LIST, "role/")
    except BrokerError as e:
        _fail(ctx, "Error listing roles", e)

    names = response.data["keys"]
    if not names:
        console.print("[yellow]No roles found[/yellow]")
        return
    for name in names:
        console.print(name)


@role.command('delete')
@click.argument('name')
@click.pass_context
def role_delete(ctx, name):
    """Delete a role. Issued credentials are not affected."""
    controller = ctx.obj['controller']
    try:
        controller.handle(Operation.DELETE, f"role/{name}")
    except BrokerError as e:
        _fail(ctx, f"Error deleting role {name}", e)
    console.print(f"[yellow]Role {name} deleted[/yellow]")


@cli.command()
@click.argument('role_name')
@click.pass_context
def creds(ctx, role_name):
    """Issue a credential under a role."""
    controller = ctx.obj['controller']
    try:
        response = controller.handle(Operation.READ, f"creds/{role_name}")
    except BrokerError as e:
        _fail(ctx, f"Error issuing credential for {role_name}", e)

    data = response.data
    console.print(Panel.fit(
        f"[bold blue]{data['login_name']}[/bold blue]\n{data['password']}",
        title="Credential",
    ))

    table = Table()
    table.add_column("Field", style="cyan")
    table.add_column("Value", style="magenta")
    for key in ("auth_method_id", "account_id", "user_id", "lease_id", "lease_duration", "renewable"):
        table.add_row(key, str(data[key]))
    console.print(table)


@cli.group()
def lease():
    """Manage credential leases."""


@lease.command('list')
@click.pass_context
def lease_list(ctx):
    """List outstanding leases."""
    controller = ctx.obj['controller']
    leases = controller.backend.list_leases()

    if not leases:
        console.print("[yellow]No outstanding leases[/yellow]")
        return

    table = Table(title=f"Leases ({len(leases)})")
    table.add_column("Lease ID", style="cyan")
    table.add_column("Account", style="green")
    table.add_column("User", style="blue")
    table.add_column("Expires", style="yellow")
    table.add_column("Expired", style="red")

    for item in leases:
        table.add_row(
            item.lease_id,
            item.envelope.account_id,
            item.envelope.user_id,
            item.expires_at.strftime("%Y-%m-%d %H:%M:%S"),
            "✗" if item.is_expired else "",
        )
    console.print(table)


@lease.command('renew')
@click.argument('lease_id')
@click.option('--increment', type=int, help='Requested TTL in seconds')
@click.pass_context
def lease_renew(ctx, lease_id, increment):
    """Renew a lease."""
    controller = ctx.obj['controller']
    try:
        granted = controller.backend.renew_lease(lease_id, increment)
    except BrokerError as e:
        _fail(ctx, f"Error renewing {lease_id}", e)
    console.print(f"[green]✓ Lease {lease_id} renewed for {granted}s[/green]")


@lease.command('revoke')
@click.argument('lease_id')
@click.pass_context
def lease_revoke(ctx, lease_id):
    """Revoke a lease, deleting its account and user."""
    controller = ctx.obj['controller']
    try:
        controller.backend.revoke_lease(lease_id)
    except BrokerError as e:
        _fail(ctx, f"Error revoking {lease_id}", e)
    console.print(f"[green]✓ Lease {lease_id} revoked[/green]")


@lease.command('tidy')
@click.pass_context
def lease_tidy(ctx):
    """Revoke every expired lease."""
    controller = ctx.obj['controller']
    result = controller.backend.tidy_leases()

    console.print(f"Revoked: {len(result['revoked'])}")
    if result['failed']:
        console.print(f"[red]Failed ({len(result['failed'])}):[/red]")
        for lease_id in result['failed']:
            console.print(f"  - {lease_id}")
        ctx.exit(1)


@cli.command()
@click.option('--account-id', help='Filter by account ID')
@click.option('--event-type', type=click.Choice([e.value for e in AuditEvent]), help='Filter by event type')
@click.option('--limit', default=50, help='Maximum number of records to show')
@click.pass_context
def audit(ctx, account_id, event_type, limit):
    """Show the audit log."""
    controller = ctx.obj['controller']
    audit_logger = controller.backend.engine.audit_logger
    if audit_logger is None:
        console.print("[yellow]Audit logging is disabled[/yellow]")
        return

    records = audit_logger.get_events(
        account_id=account_id,
        event_type=AuditEvent(event_type) if event_type else None,
        limit=limit,
    )
    if not records:
        console.print("[yellow]No audit records found[/yellow]")
        return

    table = Table(title="Audit Log")
    table.add_column("Timestamp", style="cyan")
    table.add_column("Event", style="green")
    table.add_column("Role", style="yellow")
    table.add_column("Account", style="magenta")
    table.add_column("User", style="blue")
    table.add_column("Success", style="red")

    for record in records:
        table.add_row(
            record.timestamp.strftime("%Y-%m-%d %H:%M:%S"),
            record.event_type.value,
            record.role_name or "",
            record.account_id or "",
            record.user_id or "",
            "✓" if record.success else "✗",
        )
    console.print(table)


@cli.command()
@click.option('--port', type=int, help='Port to run the API server on')
@click.option('--host', help='Host to bind the API server to')
@click.pass_context
def serve(ctx, port, host):
    """Start the boundary-secrets API server."""
    from ..api import server

    controller = ctx.obj['controller']
    host = host or controller.settings["host"]
    port = port or controller.settings["port"]

    server.configure(controller.backend)
    console.print(f"[green]Starting boundary-secrets API server on {host}:{port}[/green]")
    console.print("[blue]Press Ctrl+C to stop[/blue]")

    try:
        server.uvicorn.run(server.app, host=host, port=port, log_level="info")
    except KeyboardInterrupt:
        console.print("[yellow]Server stopped[/yellow]")


def main():
    cli(obj={})


if __name__ == "__main__":
    main()
