from __future__ import annotations

import logging
from typing import Dict, Optional, Tuple

import click

from .commands import COMMAND_TABLES, Protocol
from .config import BridgeConfig, ChannelConfig, load_config
from .discovery import candidate_ports
from .service import BridgeService

_PROTOCOLS = click.Choice([p.value for p in Protocol], case_sensitive=False)
_CLI_CHANNEL = "cli"


def _parse_params(items: Tuple[str, ...]) -> Dict[str, str]:
    # key=value pairs; numbers stay strings and are parsed by the codec (0x.. accepted)
    params: Dict[str, str] = {}
    for item in items:
        key, sep, value = item.partition("=")
        if not sep or not key.strip():
            raise click.ClickException(f"Invalid parameter {item!r}, expected key=value")
        params[key.strip()] = value.strip()
    return params


def _build_service(ctx: click.Context, channel: Optional[str], port: Optional[str], protocol: str,
                   baudrate: Optional[int], timeout: Optional[float], cart: Optional[int]) -> Tuple[BridgeService, str]:
    config: BridgeConfig = ctx.obj["config"]
    if channel and port:
        raise click.ClickException("Use only one of --channel or --port")
    if channel:
        if channel not in config.channels:
            raise click.ClickException(f"Channel {channel!r} not found in {ctx.obj['config_path']}")
        return BridgeService.from_config(config), channel
    if not port:
        raise click.ClickException("Specify a channel with -C/--channel or a port with -p/--port")
    settings = dict(port=port, protocol=protocol, baudrate=baudrate, response_timeout=timeout or config.response_timeout,
                    open_timeout=config.open_timeout)
    if cart is not None:
        settings["cart_address"] = cart
    try:
        channel_config = ChannelConfig(**settings)
    except ValueError as e:
        raise click.ClickException(str(e))
    service = BridgeService(scan_timeout=config.scan_timeout, settle_delay=config.settle_delay)
    service.register_channel(_CLI_CHANNEL, channel_config)
    return service, _CLI_CHANNEL


def _echo_result(result) -> None:
    if not result.success:
        raise click.ClickException(f"{result.error_code}: {result.error}")
    click.echo(f"Command: {result.command}")
    click.echo(f"Reply ({len(result.raw)} bytes): {result.raw_hex or '(empty)'}")
    click.echo(f"Decoded: {result.value}")
    click.echo(f"Duration: {result.duration * 1000:.0f} ms")


@click.group()
@click.option("-c", "--config", "config_path", default="config.toml", show_default=True,
              help="TOML file with channel definitions")
@click.option("-v", "--verbose", is_flag=True, help="Debug logging, including frame dumps")
@click.pass_context
def main(ctx: click.Context, config_path: str, verbose: bool) -> None:
    """Control Sony 9-pin VTRs and FlexiCart robots over serial links."""
    logging.basicConfig(level=logging.DEBUG if verbose else logging.WARNING,
                        format="%(asctime)s %(levelname)s %(name)s: %(message)s")
    try:
        config = load_config(config_path)
    except ValueError as e:
        raise click.ClickException(str(e))
    ctx.obj = {"config": config, "config_path": config_path}


@main.command()
@click.argument("command")
@click.option("-C", "--channel", help="Channel id from the config file")
@click.option("-p", "--port", help="Serial port (e.g., /dev/ttyRP0, COM3) when no channel is given")
@click.option("-P", "--protocol", type=_PROTOCOLS, default=Protocol.FLEXICART.value, show_default=True,
              help="Protocol spoken on --port")
@click.option("-b", "--baudrate", type=int, help="Baud rate (protocol default if omitted)")
@click.option("-t", "--timeout", type=float, help="Response timeout in seconds")
@click.option("--cart", type=int, help="FlexiCart cart address")
@click.option("-s", "--slot", type=int, help="Slot number for slot commands")
@click.option("-x", "--param", "params", multiple=True, help="Extra parameter as key=value, repeatable")
@click.pass_context
def send(ctx: click.Context, command: str, channel: Optional[str], port: Optional[str], protocol: str,
         baudrate: Optional[int], timeout: Optional[float], cart: Optional[int], slot: Optional[int],
         params: Tuple[str, ...]) -> None:
    """Send one COMMAND and print the decoded reply.

    Examples:

      # Move cart 1 to slot 7
      broadcast-serial-bridge send move_to_slot -p /dev/ttyRP1 -s 7

      # Cue a VTR from the config file
      broadcast-serial-bridge send cue_up_with_data -C vtr-1 -x timecode=01:00:00:00
    """
    parameters = _parse_params(params)
    if slot is not None:
        parameters["slot"] = str(slot)
    service, channel_id = _build_service(ctx, channel, port, protocol, baudrate, timeout, cart)
    with service:
        _echo_result(service.submit_request(channel_id, command, parameters))


@main.command()
@click.option("-C", "--channel", help="Channel id from the config file")
@click.option("-p", "--port", help="Serial port of a VTR when no channel is given")
@click.option("-b", "--baudrate", type=int, help="Baud rate (protocol default if omitted)")
@click.option("-t", "--timeout", type=float, help="Response timeout in seconds")
@click.pass_context
def status(ctx: click.Context, channel: Optional[str], port: Optional[str], baudrate: Optional[int],
           timeout: Optional[float]) -> None:
    """Print transport status and timecode of a VTR."""
    service, channel_id = _build_service(ctx, channel, port, Protocol.SONY9PIN.value, baudrate, timeout, None)
    with service:
        _echo_result(service.query_status(channel_id))


@main.command()
@click.argument("candidates", nargs=-1)
@click.option("-P", "--protocol", type=_PROTOCOLS, default=Protocol.SONY9PIN.value, show_default=True,
              help="Protocol used to probe unregistered ports")
@click.option("-t", "--timeout", type=float, help="Probe timeout in seconds")
@click.option("--settle", type=float, help="Delay between probes in seconds")
@click.pass_context
def scan(ctx: click.Context, candidates: Tuple[str, ...], protocol: str, timeout: Optional[float],
         settle: Optional[float]) -> None:
    """Probe CANDIDATES (channel ids or ports) one by one.

    Without CANDIDATES, configured channels are scanned, or the likely
    serial ports of this machine when none are configured.
    """
    config: BridgeConfig = ctx.obj["config"]
    try:
        service = BridgeService.from_config(
            config,
            scan_timeout=timeout or config.scan_timeout,
            settle_delay=config.settle_delay if settle is None else settle,
            scan_protocol=Protocol(protocol),
        )
    except ValueError as e:
        raise click.ClickException(str(e))
    targets = list(candidates) or list(config.channels) or candidate_ports()
    if not targets:
        raise click.ClickException("No candidates to scan")
    with service:
        report = service.scan_channels(targets)
    for r in report.results:
        mark = "✓" if r.responding else "✗"
        line = f"{mark} {r.channel_id}: {r.diagnosis.value} ({r.duration * 1000:.0f} ms)"
        if r.responding:
            line += f" {r.raw_hex}"
        elif r.error:
            line += f" - {r.error}"
        click.echo(line)
    summary = report.summary()
    click.echo(f"{summary['responding']}/{summary['total']} responding, "
               f"{summary['exists']} present, {summary['accessible']} accessible")


@main.command("commands")
@click.option("-P", "--protocol", type=_PROTOCOLS, help="Only list this protocol")
def list_commands(protocol: Optional[str]) -> None:
    """List the known commands."""
    protocols = [Protocol(protocol)] if protocol else list(Protocol)
    for p in protocols:
        click.echo(f"{p.value}:")
        for spec in COMMAND_TABLES[p].values():
            extra = [n for n in (spec.control_param,) + spec.params if n]
            args = f" [{', '.join(extra)}]" if extra else ""
            click.echo(f"  {spec.name:<22}{spec.description}{args}")


if __name__ == "__main__":
    main()
