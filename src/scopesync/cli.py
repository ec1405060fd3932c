import logging
from typing import Callable

import click

from . import presets
from .mock import MockResourceManager
from .scope import DEFAULT_RESOURCE, Oscilloscope
from .sync import SUBSYSTEMS
from .transport import DEFAULT_TIMEOUT_MS


def _scope(ctx: click.Context) -> Oscilloscope:
    """Connected Oscilloscope for this invocation; exits 1 if none is reachable."""
    scope: Oscilloscope = ctx.obj
    if not scope.is_connected and not scope.connect():
        raise click.ClickException(f"cannot connect: {scope.last_error or 'no instrument found'}")
    return scope


def _print_setup(scope: Oscilloscope) -> None:
    for name in SUBSYSTEMS:
        click.echo(f"{name:<9} {scope.mirror(name).snapshot()}")


@click.group()
@click.option("--resource", "-r", envvar="SCOPESYNC_RESOURCE", default=DEFAULT_RESOURCE,
              show_default=True, help="VISA resource name of the oscilloscope")
@click.option("--timeout-ms", default=DEFAULT_TIMEOUT_MS, type=int, show_default=True,
              help="I/O timeout per request")
@click.option("--mock", is_flag=True, help="Talk to a simulated DS1000Z instead of hardware")
@click.option("--verbose", "-v", count=True, help="-v for info, -vv for the I/O trace")
@click.pass_context
def cli(ctx, resource, timeout_ms, mock, verbose):
    """scopesync - keep a Rigol DS1000Z's settings in sync over USB."""
    level = {0: logging.WARNING, 1: logging.INFO}.get(verbose, logging.DEBUG)
    logging.basicConfig(level=level, format="%(levelname)s %(name)s: %(message)s")
    rm = MockResourceManager() if mock else None
    if mock:
        resource = rm.address
    ctx.obj = Oscilloscope(resource, timeout_ms=timeout_ms, rm=rm)
    ctx.call_on_close(ctx.obj.close)


@cli.command("list")
@click.pass_obj
def list_cmd(scope: Oscilloscope):
    """List DS1000Z oscilloscopes on the USB bus."""
    found = scope.find_scopes()
    if not found:
        raise click.ClickException("no Rigol DS1000Z found")
    for r in found:
        click.echo(r)


@cli.command()
@click.pass_context
def pull(ctx):
    """Read channel, trigger and timebase settings from the instrument."""
    scope = _scope(ctx)
    ok = scope.pull_all()
    click.echo(f"device    {scope.device_info.model} {scope.device_info.serial}")
    _print_setup(scope)
    if not ok:
        raise click.ClickException("some settings could not be read")


@cli.command("set")
@click.argument("subsystem", type=click.Choice(SUBSYSTEMS, case_sensitive=False))
@click.argument("field")
@click.argument("value")
@click.pass_context
def set_cmd(ctx, subsystem, field, value):
    """Set one FIELD of SUBSYSTEM, e.g. `set channel1 vertical_offset 1.5`."""
    scope = _scope(ctx)
    if not scope.pull_all():
        # ranges come from the mirrored state, which may now be stale
        raise click.ClickException(
            f"could not read the current settings, {subsystem}.{field} left unchanged")
    if not scope.push(subsystem, field, value):
        raise click.ClickException(f"could not set {subsystem}.{field} to {value}")
    click.echo(f"{subsystem}.{field} = {scope.mirror(subsystem).get(field)}")


@cli.command()
@click.argument("name")
@click.pass_context
def preset(ctx, name):
    """Apply a named system preset."""
    if presets.get_preset(name) is None:
        raise click.ClickException(
            f"unknown preset {name!r}, choose from: {', '.join(presets.preset_names())}")
    scope = _scope(ctx)
    if not scope.apply_preset(name):
        raise click.ClickException(f"preset {name} applied only partially")
    _print_setup(scope)


@cli.command("presets")
def presets_cmd():
    """List the available system presets."""
    for name in presets.preset_names():
        doc = presets.get_preset(name)
        click.echo(f"{name:<18} {doc.channel1.vertical_scale:g} V/div, "
                   f"{doc.timebase.main_scale:g} s/div, trigger {doc.trigger.sweep}")


@cli.command("export")
@click.argument("path", type=click.Path(dir_okay=False, writable=True))
@click.pass_context
def export_cmd(ctx, path):
    """Save the instrument's current setup to a JSON file."""
    scope = _scope(ctx)
    if not scope.export_setup(path):
        raise click.ClickException(f"could not write {path}")
    click.echo(f"Setup saved to {path}")


@cli.command("import")
@click.argument("path", type=click.Path(exists=True, dir_okay=False))
@click.option("--push", is_flag=True, help="Send the loaded setup to the instrument")
@click.pass_context
def import_cmd(ctx, path, push):
    """Load a setup file; with --push, apply it to the instrument."""
    scope = _scope(ctx) if push else ctx.obj
    if not scope.import_setup(path, push=push):
        raise click.ClickException(f"could not {'apply' if push else 'load'} {path}")
    _print_setup(scope)


def _verb(name: str, method: str, help_text: str) -> None:
    @click.pass_context
    def command(ctx):
        scope = _scope(ctx)
        action: Callable[[], bool] = getattr(scope, method)
        if not action():
            raise click.ClickException(f"{name} failed: {scope.last_error}")

    command.__doc__ = help_text
    cli.command(name)(command)


_verb("run", "run", "Start continuous acquisition.")
_verb("stop", "stop", "Stop acquisition.")
_verb("single", "single", "Arm a single acquisition.")
_verb("clear", "clear", "Clear the waveforms on screen.")
_verb("autoscale", "autoscale", "Let the instrument autoscale.")
_verb("force", "force_trigger", "Force a trigger event.")


def main():
    cli()


if __name__ == "__main__":
    main()
