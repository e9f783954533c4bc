"""
Bafang Firmware Flasher CLI

Command-line interface for flashing Bafang controllers and displays over CAN.
"""

import sys
import time
import logging
import threading
from datetime import datetime
from pathlib import Path
from typing import List, Optional

import typer
from rich.console import Console
from rich.panel import Panel
from rich.table import Table
from rich.logging import RichHandler
from rich.progress import Progress, BarColumn, TextColumn, TimeElapsedColumn

from bafang_fw_flasher.core.config import BusSettings, TransferConfig
from bafang_fw_flasher.core.firmware import load_firmware
from bafang_fw_flasher.core.results import TransferOutcome
from bafang_fw_flasher.models import (
    Variant,
    fallback_profile,
    get_profile,
    list_profiles,
    parse_variant,
)
from bafang_fw_flasher.protocol import (
    CanTransport,
    FirmwareError,
    SimulatedController,
    Transport,
)
from bafang_fw_flasher.protocol.frame_codec import build_outgoing_id, format_spaced_hex
from bafang_fw_flasher.protocol.fw_transfer import FwTransferEngine
from bafang_fw_flasher.sniffer import DEFAULT_FILTERED_IDS, FrameSniffer

logger = logging.getLogger("bafang_fw_flasher")

LOG_FILE_FORMAT = "[%(asctime)s]\t[%(levelname)s]\t%(message)s"
EXIT_FAILED = 1
EXIT_CANCELLED = 130

# Setup Rich console
console = Console()

app = typer.Typer(help="🔧 Bafang Firmware Flasher - CAN bus firmware upload")


def setup_logging(
    verbose: bool = False,
    log_dir: Optional[Path] = None,
) -> Optional[Path]:
    """
    Configure the package logger for one command.

    Console output goes through RichHandler. When log_dir is given, every
    record (DEBUG included) is also written to log-YYYY-MM-DD-HH-MM-SS.log.

    Returns:
        Path of the log file, if one was opened
    """
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()

    logger.setLevel(logging.DEBUG)
    console_handler = RichHandler(console=console, rich_tracebacks=True, show_path=False)
    console_handler.setLevel(logging.DEBUG if verbose else logging.INFO)
    logger.addHandler(console_handler)

    if log_dir is None:
        return None

    log_dir.mkdir(parents=True, exist_ok=True)
    log_path = log_dir / f"log-{datetime.now():%Y-%m-%d-%H-%M-%S}.log"
    file_handler = logging.FileHandler(log_path, encoding="utf-8")
    file_handler.setLevel(logging.DEBUG)
    file_handler.setFormatter(logging.Formatter(LOG_FILE_FORMAT, datefmt="%H:%M:%S"))
    logger.addHandler(file_handler)
    return log_path


def print_header(text: str) -> None:
    """Print fancy header."""
    console.print(Panel(text, expand=False, style="bold blue"))


def print_success(text: str) -> None:
    """Print success message."""
    console.print(f"✓ {text}", style="green")


def print_warning(text: str) -> None:
    """Print warning message."""
    console.print(f"⚠️  {text}", style="yellow")


def print_error(text: str) -> None:
    """Print error message."""
    console.print(f"❌ {text}", style="red")


def parse_variant_option(value: str) -> Variant:
    """Typer-friendly variant parsing."""
    try:
        return parse_variant(value)
    except ValueError as e:
        raise typer.BadParameter(str(e))


def build_transport(
    variant: Variant,
    simulate: bool,
    interface: Optional[str],
    channel: Optional[str],
    bitrate: Optional[int],
) -> Transport:
    """CAN transport from options/environment, or a simulated controller."""
    if simulate:
        return SimulatedController(respond_to=[variant])
    settings = BusSettings.from_env(interface, channel, bitrate)
    return CanTransport(
        interface=settings.interface,
        channel=settings.channel,
        bitrate=settings.bitrate,
    )


def print_outcome(outcome: TransferOutcome) -> None:
    table = Table(title="Transfer Results")
    table.add_column("Property", style="cyan")
    table.add_column("Value", style="green")

    table.add_row("Status", outcome.status.name)
    table.add_row("Variant", outcome.variant or "-")
    table.add_row("Chunks", f"{outcome.chunk_count:,}")
    table.add_row("Phase", outcome.phase or "-")
    if outcome.reason:
        table.add_row("Reason", outcome.reason)
    table.add_row("Elapsed", f"{outcome.elapsed:.1f}s")

    console.print(table)


@app.command()
def ports() -> None:
    """List serial ports (slcan and other serial CAN adapters)."""
    print_header("Available Serial Ports")

    try:
        import serial.tools.list_ports

        ports_list = list(serial.tools.list_ports.comports())

        if not ports_list:
            print_warning("No serial ports found")
            return

        table = Table(title="Serial Ports")
        table.add_column("Port", style="cyan")
        table.add_column("Device", style="magenta")
        table.add_column("Description", style="green")

        for port in ports_list:
            table.add_row(port.device, port.name or "-", port.description or "-")

        console.print(table)
    except ImportError:
        print_error("pyserial not installed: pip install pyserial")


@app.command("list-profiles")
def list_profiles_cmd() -> None:
    """List supported controller generations and their CAN identifiers."""
    print_header("Supported Device Profiles")

    for profile in list_profiles():
        window = (
            f"{profile.ack_window} from {profile.ack_window_start}"
            if profile.is_windowed
            else "every chunk"
        )
        prelude = (
            f"{profile.prelude_command_id} / {profile.prelude_ack_id}"
            if profile.prelude_command_id
            else "-"
        )

        table = Table(title=f"{profile.variant.value} ({profile.family.value})")
        table.add_column("Field", style="cyan", no_wrap=True)
        table.add_column("Value", style="green", overflow="fold")
        table.add_row("Description", profile.description)
        table.add_row("Ready req/ack", f"{profile.ready_request_id} / {profile.ready_ack_id}")
        table.add_row("Length req/ack", f"{profile.first_package_id} / {profile.first_package_ack_id}")
        table.add_row("Prelude req/ack", prelude)
        table.add_row("Chunk markers", ", ".join(profile.chunk_prefixes))
        table.add_row("Ack window", window)
        table.add_row("Fallback", profile.fallback.value if profile.fallback else "-")
        console.print(table)


@app.command()
def inspect(
    firmware: Path = typer.Argument(..., help="Path to firmware image"),
    variant: str = typer.Option("NEW_MOTOR", "--variant", "-v", help="Device variant"),
) -> None:
    """Show how a firmware image would be transferred."""
    print_header("Firmware Image")
    profile = get_profile(parse_variant_option(variant))

    try:
        image = load_firmware(firmware)
    except FirmwareError as e:
        print_error(str(e))
        raise typer.Exit(code=EXIT_FAILED)

    table = Table(title=firmware.name)
    table.add_column("Property", style="cyan")
    table.add_column("Value", style="green")

    table.add_row("File size", f"{image.total_size:,} bytes")
    table.add_row("Header", format_spaced_hex(image.header))
    table.add_row("Payload", f"{image.payload_size:,} bytes")
    table.add_row("Chunks", f"{image.chunk_count:,}")
    table.add_row(
        "Length frame",
        f"{build_outgoing_id(profile, profile.first_package_id)} {image.length_payload_hex}",
    )
    if image.chunk_count:
        table.add_row(
            "Ready request",
            f"{build_outgoing_id(profile, profile.ready_request_id)} "
            f"{image.ready_request_payload(profile.ready_marker)}",
        )
        checkpoints = profile.window_checkpoints(image.chunk_count)
        table.add_row("Ack checkpoints", str(len(checkpoints)) if profile.is_windowed else "every chunk")

    console.print(table)


@app.command()
def flash(
    firmware: Path = typer.Argument(..., help="Path to firmware image"),
    variant: str = typer.Option(..., "--variant", "-v", help="NEW_MOTOR, OLD_MOTOR, HMI or DPC18"),
    interface: Optional[str] = typer.Option(None, "--interface", "-i", help="python-can interface (env BAFANG_CAN_INTERFACE)"),
    channel: Optional[str] = typer.Option(None, "--channel", "-c", help="CAN channel (env BAFANG_CAN_CHANNEL)"),
    bitrate: Optional[int] = typer.Option(None, "--bitrate", "-b", help="Bus bitrate (env BAFANG_CAN_BITRATE)"),
    timeout_ms: int = typer.Option(10000, "--timeout-ms", help="Per-phase acknowledgment timeout"),
    simulate: bool = typer.Option(False, "--simulate", help="Rehearse against a simulated controller"),
    yes: bool = typer.Option(False, "--yes", "-y", help="Skip the confirmation prompt"),
    log_dir: Path = typer.Option(Path("logs"), "--log-dir", help="Directory for the session log file"),
    no_log_file: bool = typer.Option(False, "--no-log-file", help="Do not write a log file"),
    verbose: bool = typer.Option(False, "--verbose", help="Show every frame on the console"),
) -> None:
    """
    Flash a firmware image to a controller or display.

    Steps:
    1. Announce host readiness and complete the handshake
    2. Announce the payload length
    3. Stream the payload in 8-byte chunks
    4. Wait for the final confirmation and close the upgrade
    """
    print_header("Flash Firmware")
    selected = parse_variant_option(variant)
    log_path = setup_logging(verbose, None if no_log_file else log_dir)

    try:
        image = load_firmware(firmware)
    except FirmwareError as e:
        print_error(str(e))
        raise typer.Exit(code=EXIT_FAILED)

    profile = get_profile(selected)
    console.print(f"Firmware: {firmware} ({image.payload_size:,} byte payload, {image.chunk_count:,} chunks)")
    console.print(f"Variant: {profile.variant.value} ({profile.description})")
    alternate = fallback_profile(profile)
    if alternate is not None:
        console.print(f"Fallback: {alternate.variant.value}")
    if log_path:
        console.print(f"Log file: {log_path}")
    if simulate:
        print_warning("Simulation mode: no frames leave this machine")

    if not yes and not typer.confirm("Start flashing? Do not power off the device during the transfer"):
        raise typer.Abort()

    try:
        config = TransferConfig().with_session_timeout_ms(timeout_ms)
    except ValueError as e:
        raise typer.BadParameter(str(e))

    transport = build_transport(selected, simulate, interface, channel, bitrate)
    if not transport.connect():
        print_error("Cannot open CAN adapter")
        raise typer.Exit(code=EXIT_FAILED)

    try:
        with Progress(
            TextColumn("[{task.description}]"),
            BarColumn(),
            TextColumn("[{task.percentage:.0f}%]"),
            TimeElapsedColumn(),
            console=console,
        ) as progress:
            task = progress.add_task("Flashing", total=100)
            engine = FwTransferEngine(
                transport,
                config=config,
                progress_sink=lambda value: progress.update(task, completed=value),
            )
            outcome = run_cancellable(engine, image, selected)
    finally:
        transport.disconnect()

    print_outcome(outcome)
    if outcome.ok:
        print_success("Firmware flashed successfully!")
        return
    if outcome.cancelled:
        print_warning("Transfer cancelled")
        raise typer.Exit(code=EXIT_CANCELLED)
    print_error(f"Flash failed in {outcome.phase}: {outcome.reason}")
    raise typer.Exit(code=EXIT_FAILED)


def run_cancellable(engine: FwTransferEngine, image, variant: Variant) -> TransferOutcome:
    """
    Run a transfer in a worker thread so Ctrl+C turns into engine.cancel().
    """
    result = {}

    def worker() -> None:
        result["outcome"] = engine.run_transfer(image, variant)

    thread = threading.Thread(target=worker, name="fw-transfer", daemon=True)
    thread.start()
    while thread.is_alive():
        try:
            thread.join(timeout=0.2)
        except KeyboardInterrupt:
            console.print("\n[yellow]Cancelling, waiting for the session to stop...[/yellow]")
            engine.cancel()
    return result["outcome"]


@app.command()
def sniff(
    interface: Optional[str] = typer.Option(None, "--interface", "-i", help="python-can interface (env BAFANG_CAN_INTERFACE)"),
    channel: Optional[str] = typer.Option(None, "--channel", "-c", help="CAN channel (env BAFANG_CAN_CHANNEL)"),
    bitrate: Optional[int] = typer.Option(None, "--bitrate", "-b", help="Bus bitrate (env BAFANG_CAN_BITRATE)"),
    filter_ids: Optional[List[str]] = typer.Option(None, "--filter", "-f", help="Identifier to hide (repeatable)"),
    no_default_filter: bool = typer.Option(False, "--no-default-filter", help="Show display status frames too"),
    duration: float = typer.Option(0.0, "--duration", help="Stop after N seconds (0 = until Ctrl+C)"),
    log_dir: Path = typer.Option(Path("logs"), "--log-dir", help="Directory for the session log file"),
    no_log_file: bool = typer.Option(False, "--no-log-file", help="Do not write a log file"),
) -> None:
    """Log bus traffic, folding repeated frames."""
    print_header("CAN Sniffer")
    log_path = setup_logging(False, None if no_log_file else log_dir)
    if log_path:
        console.print(f"Log file: {log_path}")

    hidden = set() if no_default_filter else set(DEFAULT_FILTERED_IDS)
    hidden.update(filter_ids or [])

    settings = BusSettings.from_env(interface, channel, bitrate)
    transport = CanTransport(
        interface=settings.interface,
        channel=settings.channel,
        bitrate=settings.bitrate,
    )
    if not transport.connect():
        print_error("Cannot open CAN adapter")
        raise typer.Exit(code=EXIT_FAILED)

    sniffer = FrameSniffer(transport, filtered_ids=hidden)
    sniffer.start()
    console.print("[dim]Press Ctrl+C to stop[/dim]")
    deadline = time.monotonic() + duration if duration > 0 else None
    try:
        while deadline is None or time.monotonic() < deadline:
            time.sleep(0.2)
    except KeyboardInterrupt:
        console.print()
    finally:
        sniffer.stop()
        transport.disconnect()

    print_success(f"Captured {len(sniffer.entries)} log lines")


def main() -> None:
    """Main entry point."""
    try:
        app()
    except KeyboardInterrupt:
        console.print("\n[yellow]Operation cancelled by user[/yellow]")
        sys.exit(EXIT_CANCELLED)


if __name__ == "__main__":
    main()
