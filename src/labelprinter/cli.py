"""
Command-Line Interface for P-touch USB label printers.

Usage:
    labelprinter devices          - List attached printers
    labelprinter status           - Show tape and error state
    labelprinter print IMAGE      - Print an image
    labelprinter preview IMAGE    - Save the bitmap that would be printed
"""

import asyncio
import logging
import re
import sys
from pathlib import Path
from typing import Optional

import click
import usb.core

from .cache import clear_cache, load_cached_printer, save_printer
from .config import ConfigError, PrinterTimings, load_allow_list
from .devices import DeviceRegistry, enumerate_usb_devices
from .events import DeviceEventSource, LibusbPermissionBroker
from .image import DitherMode, ImageSizeError, ImageTransformer
from .manager import ConnectionManager
from .printer import LabelPrinter, PrintRequest
from .responses import LabelSize, PhaseType, PrinterStatus
from .results import (
    CommunicationError,
    OpenSuccess,
    PrintDeviceError,
    PrintStatusError,
    PrintSuccess,
    QueryDeviceError,
    QuerySuccess,
)

# USB bus and device address: BBB:AAA
DEVICE_KEY_PATTERN = re.compile(r"^\d{3}:\d{3}$")

COMMUNICATION_MESSAGES = {
    CommunicationError.NO_PRINTER: "No supported printer found",
    CommunicationError.PERMISSION_DENIED: "Permission denied (check udev rules for the printer)",
    CommunicationError.CONNECTION_NULL: "Not connected to a printer",
    CommunicationError.USB_SETUP: "Could not set up the USB interface",
    CommunicationError.TRANSFER: "USB transfer failed",
    CommunicationError.PARSING: "Unexpected status response from printer",
    CommunicationError.TIMEOUT: "Printer did not finish in time",
    CommunicationError.GENERIC: "Communication error",
}

PRINT_STATUS_MESSAGES = {
    PrintStatusError.CONFIG_NULL: "Nothing to print",
    PrintStatusError.LABEL_SIZE_UNKNOWN: "No tape detected",
    PrintStatusError.LABEL_SIZE_MISMATCH: "Tape changed since the last status query",
    PrintStatusError.DEVICE_ERROR: "Printer reported an error",
}


def validate_device_key(ctx, param, value):
    """Validate a device key given as BBB:AAA (USB bus and address).

    Raises:
        click.BadParameter: If the key format is invalid
    """
    if value is None:
        return None
    if DEVICE_KEY_PATTERN.match(value):
        return value
    raise click.BadParameter(
        f"Invalid device '{value}'. Expected BBB:AAA, as listed by 'labelprinter devices'"
    )


def describe_status(status: PrinterStatus) -> list[str]:
    """Human readable lines for a status block."""
    try:
        phase = PhaseType(status.phase_type).name.lower()
    except ValueError:
        phase = f"0x{status.phase_type:02x}"
    lines = [f"Tape: {status.label_size}", f"Phase: {phase}"]
    errors = status.errors()
    if errors:
        lines.append(f"Errors: {', '.join(errors)}")
    return lines


def describe_error(result) -> str:
    """Message for a failed open, query or print result."""
    error = getattr(result, "error", None)
    if isinstance(error, CommunicationError):
        return COMMUNICATION_MESSAGES[error]
    if isinstance(result, PrintDeviceError):
        message = PRINT_STATUS_MESSAGES[result.error]
        if result.status is not None and result.status.has_error:
            message += f": {', '.join(result.status.errors())}"
        return message
    if isinstance(result, QueryDeviceError):
        return f"Printer reported an error: {', '.join(result.status.errors())}"
    return f"Unexpected result: {result}"


def load_registry(device_key: Optional[str] = None) -> DeviceRegistry:
    """Enumerate allowed printers and select one.

    An explicit device key wins; otherwise the cached last printer is
    preferred when it is still attached.
    """
    try:
        allow_list = load_allow_list()
    except ConfigError as e:
        click.echo(f"Configuration error: {e}", err=True)
        sys.exit(1)

    registry = DeviceRegistry(allow_list, enumerate_devices=enumerate_usb_devices)
    try:
        state = registry.refresh()
    except usb.core.NoBackendError:
        click.echo("No USB backend available; install libusb.", err=True)
        sys.exit(1)

    if device_key is not None:
        if device_key not in state.available:
            click.echo(f"Printer {device_key} not found.", err=True)
            sys.exit(1)
        registry.select(device_key)
        return registry

    cached = load_cached_printer()
    if cached is not None:
        device = state.available.get(cached.key)
        if device is not None and cached.matches(device):
            registry.select(cached.key)

    return registry


def create_manager(registry: DeviceRegistry) -> ConnectionManager:
    """Build a connection manager for the selected printer."""
    events = DeviceEventSource()
    return ConnectionManager(
        registry,
        LibusbPermissionBroker(events),
        events,
        timings=PrinterTimings(),
        printer_factory=LabelPrinter.for_device,
    )


@click.group()
@click.option("--debug/--no-debug", default=False, help="Enable debug output")
@click.pass_context
def main(ctx, debug):
    """P-touch USB Label Printer CLI."""
    ctx.ensure_object(dict)
    ctx.obj["debug"] = debug
    logging.basicConfig(
        level=logging.DEBUG if debug else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


@main.command()
@click.option("--forget", is_flag=True, help="Forget the last used printer first")
def devices(forget):
    """List attached printers.

    The printer marked with * is the one other commands use when no
    --device is given.
    """
    if forget and clear_cache():
        click.echo("Forgot the last used printer.")

    registry = load_registry()
    state = registry.state

    if not state.available:
        click.echo("No printers found.")
        return

    click.echo(f"Found {len(state.available)} printer(s):\n")
    for key, device in state.available.items():
        marker = "*" if key == state.selected else " "
        click.echo(f" {marker} {device}")


@main.command()
@click.option(
    "--device",
    "-d",
    callback=validate_device_key,
    help="Printer as BBB:AAA (if omitted, uses the last or first printer)",
)
def status(device):
    """Show the loaded tape and any printer errors."""
    registry = load_registry(device)
    manager = create_manager(registry)

    async def _status():
        try:
            click.echo(f"Connecting to {registry.selected_device or 'printer'}...")
            result = await manager.request_permission_and_open()
            if not isinstance(result, OpenSuccess):
                click.echo(f"Failed to connect: {describe_error(result)}", err=True)
                sys.exit(1)

            result = manager.snapshot.last_query
            if isinstance(result, QuerySuccess):
                for line in describe_status(result.status):
                    click.echo(line)
            elif isinstance(result, QueryDeviceError):
                for line in describe_status(result.status):
                    click.echo(line)
                sys.exit(1)
            else:
                click.echo(f"Status query failed: {describe_error(result)}", err=True)
                sys.exit(1)
        finally:
            await manager.close()

    asyncio.run(_status())


@main.command("print")
@click.argument("image", type=click.Path(exists=True, dir_okay=False))
@click.option(
    "--device",
    "-d",
    callback=validate_device_key,
    help="Printer as BBB:AAA (if omitted, uses the last or first printer)",
)
@click.option("--copies", type=click.IntRange(min=1), default=1, help="Number of copies")
@click.option(
    "--dither",
    type=click.Choice([mode.value for mode in DitherMode]),
    default=DitherMode.FLOYD_STEINBERG.value,
    help="Black and white conversion (default: floyd-steinberg)",
)
@click.option(
    "--threshold",
    type=click.FloatRange(0.0, 1.0),
    default=ImageTransformer.DEFAULT_THRESHOLD,
    help="Cut-off for --dither none (0-1, default 0.5)",
)
def print_image(image, device, copies, dither, threshold):
    """Print an image file.

    The image is scaled to the height of the loaded tape.
    """
    try:
        source = ImageTransformer().load(image)
    except ImageSizeError as e:
        click.echo(f"Image error: {e}", err=True)
        sys.exit(1)

    registry = load_registry(device)
    manager = create_manager(registry)

    async def _print():
        try:
            selected = registry.selected_device
            click.echo(f"Connecting to {selected or 'printer'}...")
            result = await manager.request_permission_and_open()
            if not isinstance(result, OpenSuccess):
                click.echo(f"Failed to connect: {describe_error(result)}", err=True)
                sys.exit(1)

            label_size = manager.resolved_label_size
            query = manager.snapshot.last_query
            if isinstance(query, QueryDeviceError):
                click.echo(describe_error(query), err=True)
                sys.exit(1)
            if not isinstance(query, QuerySuccess):
                click.echo(f"Status query failed: {describe_error(query)}", err=True)
                sys.exit(1)

            request = PrintRequest(
                image=source,
                label_size=label_size,
                copies=copies,
                dither=DitherMode(dither),
                threshold=threshold,
            )

            click.echo(f"Printing {image} on {label_size} tape...")
            result = await manager.print(request)

            if isinstance(result, PrintSuccess):
                click.echo("Print complete!")
                if selected is not None:
                    save_printer(selected)
            else:
                click.echo(f"Print failed: {describe_error(result)}", err=True)
                sys.exit(1)
        finally:
            await manager.close()

    asyncio.run(_print())


@main.command()
@click.argument("image", type=click.Path(exists=True, dir_okay=False))
@click.option(
    "--label-size",
    type=click.Choice(["6", "9", "12", "18", "24"]),
    default="12",
    help="Tape width in mm (default 12)",
)
@click.option(
    "--dither",
    type=click.Choice([mode.value for mode in DitherMode]),
    default=DitherMode.FLOYD_STEINBERG.value,
    help="Black and white conversion (default: floyd-steinberg)",
)
@click.option(
    "--threshold",
    type=click.FloatRange(0.0, 1.0),
    default=ImageTransformer.DEFAULT_THRESHOLD,
    help="Cut-off for --dither none (0-1, default 0.5)",
)
@click.option(
    "--output",
    "-o",
    type=click.Path(dir_okay=False),
    help="Output PNG (default: IMAGE-preview.png)",
)
def preview(image, label_size, dither, threshold, output):
    """Save the bitmap that would be printed, without a printer."""
    size = LabelSize.from_mm(int(label_size))
    transformer = ImageTransformer()

    try:
        source = transformer.load(image)
        bitmap = transformer.transform(
            source, size, dither=DitherMode(dither), threshold=threshold
        )
    except (ImageSizeError, ValueError) as e:
        click.echo(f"Image error: {e}", err=True)
        sys.exit(1)

    if output is None:
        path = Path(image)
        output = path.with_name(f"{path.stem}-preview.png")

    bitmap.save(output, format="PNG")
    click.echo(f"Saved {bitmap.width}x{bitmap.height} preview for {size} tape to {output}")


if __name__ == "__main__":
    main()
