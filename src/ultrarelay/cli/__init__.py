import rich_click as click
from rich.console import Console

from ultrarelay import __version__
from ultrarelay.cli.client import service_call, APIClient


@click.group()
@click.version_option(__version__)
def cli():
    """
    Command-line tool for controlling ultrarelay service.
    """
    pass


def _send(client: APIClient, console: Console, command: str):
    command_type = client.send_command(command)
    console.print(f"Command [bold]{command}[/bold] accepted ({command_type.value})")


@cli.command()
@service_call
def on(client: APIClient, console: Console):
    """Force the relay on until `auto` is sent"""
    _send(client, console, 'on')


@cli.command()
@service_call
def off(client: APIClient, console: Console):
    """Force the relay off until `auto` is sent"""
    _send(client, console, 'off')


@cli.command()
@service_call
def auto(client: APIClient, console: Console):
    """Return the relay to distance controlled mode"""
    _send(client, console, 'auto')


@cli.command()
@service_call
def status(client: APIClient, console: Console):
    """Print current relay and control status"""
    console.print(client.send_get_status())


if __name__ == "__main__":
    cli()
