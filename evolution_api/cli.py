"""Click CLI for checking gateway connections and instances."""

from __future__ import annotations

import json
import logging

import click

from evolution_api.client.connections import ConnectionRegistry
from evolution_api.client.executor import EvolutionClient
from evolution_api.client.rate_limiter import RateLimiter
from evolution_api.config import EvolutionSettings, load_settings_file, settings_from_env
from evolution_api.errors import ConfigurationError, ConnectionNotFoundError, EvolutionApiError
from evolution_api.models import InstanceStatus
from evolution_api.webhook.payload import first_present


@click.group()
@click.option("--config", "config_path", default=None, help="Path to a JSON settings file.")
@click.option("--verbose", is_flag=True, help="Log requests and responses to stderr.")
@click.pass_context
def cli(ctx: click.Context, config_path: str | None, verbose: bool) -> None:
    """Evolution API gateway tools."""
    ctx.ensure_object(dict)
    if verbose:
        logging.basicConfig(level=logging.DEBUG)
    try:
        settings = load_settings_file(config_path) if config_path else settings_from_env()
    except (FileNotFoundError, ConfigurationError) as exc:
        raise click.ClickException(str(exc)) from exc
    ctx.obj["settings"] = settings
    ctx.obj["registry"] = ConnectionRegistry(settings)


def _client(ctx: click.Context, connection: str | None = None) -> EvolutionClient:
    settings: EvolutionSettings = ctx.obj["settings"]
    client = EvolutionClient(
        ctx.obj["registry"],
        RateLimiter.null(),
        logging_settings=settings.logging,
        transport=ctx.obj.get("transport"),
    )
    if connection:
        client.connection(connection)
    return client


@cli.command()
@click.pass_context
def connections(ctx: click.Context) -> None:
    """List configured connections (API keys are never printed)."""
    registry: ConnectionRegistry = ctx.obj["registry"]
    output = []
    for name in sorted(registry.list_available()):
        try:
            server_url: str | None = registry.resolve(name).server_url
        except EvolutionApiError:
            server_url = None
        output.append({"name": name, "server_url": server_url, "active": name == registry.active_name})
    click.echo(json.dumps(output, indent=2))


@cli.command()
@click.option("--connection", default=None, help="Only check this connection.")
@click.pass_context
def health(ctx: click.Context, connection: str | None) -> None:
    """Ping each connection's gateway."""
    registry: ConnectionRegistry = ctx.obj["registry"]
    names = [connection] if connection else sorted(registry.list_available())
    report: dict[str, str] = {}
    for name in names:
        try:
            client = _client(ctx, name)
        except (ConfigurationError, ConnectionNotFoundError):
            report[name] = "misconfigured"
            continue
        report[name] = "ok" if client.ping() else "unreachable"
    click.echo(json.dumps(report, indent=2))
    if any(status != "ok" for status in report.values()):
        ctx.exit(1)


@cli.command("instance-status")
@click.argument("instance")
@click.option("--connection", default=None, help="Connection to query.")
@click.pass_context
def instance_status(ctx: click.Context, instance: str, connection: str | None) -> None:
    """Show the connection state of a gateway instance."""
    try:
        client = _client(ctx, connection).instance(instance)
        result = client.get("instance/connectionState/{instance}")
    except EvolutionApiError as exc:
        raise click.ClickException(exc.message) from exc
    state = first_present(result.data, ("instance.state", "state"), "", expect=str)
    status = InstanceStatus.from_api(state)
    click.echo(json.dumps({"instance": instance, "state": state or None, "status": status.value}))
