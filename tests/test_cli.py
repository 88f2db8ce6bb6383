"""Tests for CLI functionality."""

from unittest.mock import AsyncMock, MagicMock

import click
import pytest
from click.testing import CliRunner
from PIL import Image

from labelprinter.cache import CachedPrinter
from labelprinter.cli import DEVICE_KEY_PATTERN, main, validate_device_key
from labelprinter.config import DEFAULT_ALLOW_LIST, ConfigError
from labelprinter.devices import Device
from labelprinter.image import DitherMode
from labelprinter.manager import PrinterSnapshot
from labelprinter.responses import LabelSize, parse_query_response
from labelprinter.results import (
    CommunicationError,
    OpenCommunicationError,
    OpenSuccess,
    PrintCommunicationError,
    PrintDeviceError,
    PrintStatusError,
    PrintSuccess,
    QueryCommunicationError,
)


class TestDeviceKeyValidation:
    """Test CLI device key validation."""

    def test_valid_key(self):
        assert validate_device_key(None, None, "001:005") == "001:005"

    def test_none_returns_none(self):
        assert validate_device_key(None, None, None) is None

    @pytest.mark.parametrize("value", ["1:5", "001-005", "AA:BB:CC:DD:EE:FF", "001:0055"])
    def test_invalid_key_raises_bad_parameter(self, value):
        assert not DEVICE_KEY_PATTERN.match(value)
        with pytest.raises(click.BadParameter, match="Expected BBB:AAA"):
            validate_device_key(None, None, value)


@pytest.fixture
def runner():
    """Create CLI test runner."""
    return CliRunner()


@pytest.fixture
def attached(mocker):
    """Patch USB enumeration and config; returns the list of attached devices."""
    devices = [Device(0x04F9, 0x2061, 1, 5), Device(0x04F9, 0x2062, 1, 7)]
    mocker.patch("labelprinter.cli.enumerate_usb_devices", side_effect=lambda: list(devices))
    mocker.patch("labelprinter.cli.load_allow_list", return_value=DEFAULT_ALLOW_LIST)
    mocker.patch("labelprinter.cli.load_cached_printer", return_value=None)
    return devices


@pytest.fixture
def manager(mocker, status_block):
    """Replace the connection manager with a scripted one."""
    fake = MagicMock()
    fake.request_permission_and_open = AsyncMock(return_value=OpenSuccess())
    fake.print = AsyncMock(return_value=PrintSuccess())
    fake.close = AsyncMock()
    fake.resolved_label_size = LabelSize.MM12
    fake.snapshot = PrinterSnapshot(
        state=MagicMock(), last_query=parse_query_response(status_block(label_mm=12))
    )
    mocker.patch("labelprinter.cli.create_manager", return_value=fake)
    return fake


@pytest.fixture
def image_file(tmp_path):
    path = tmp_path / "label.png"
    Image.new("RGB", (120, 64), "white").save(path)
    return path


class TestCLIDeviceValidation:
    """Test commands reject invalid device keys."""

    def test_status_rejects_invalid_device(self, runner):
        result = runner.invoke(main, ["status", "--device", "bad"])
        assert result.exit_code != 0
        assert "Invalid device" in result.output

    def test_print_rejects_invalid_device(self, runner, image_file):
        result = runner.invoke(main, ["print", str(image_file), "--device", "1:2"])
        assert result.exit_code != 0
        assert "Invalid device" in result.output

    def test_unknown_device(self, runner, attached, manager):
        result = runner.invoke(main, ["status", "--device", "009:009"])
        assert result.exit_code == 1
        assert "Printer 009:009 not found" in result.output
        manager.request_permission_and_open.assert_not_called()


class TestDevicesCommand:
    """Test listing printers."""

    def test_lists_printers(self, runner, attached):
        result = runner.invoke(main, ["devices"])

        assert result.exit_code == 0
        assert "Found 2 printer(s)" in result.output
        assert "* [001:005] 04f9:2061" in result.output
        assert "  [001:007] 04f9:2062" in result.output

    def test_cached_printer_is_selected(self, runner, attached, mocker):
        mocker.patch(
            "labelprinter.cli.load_cached_printer",
            return_value=CachedPrinter("001:007", 0x04F9, 0x2062, 0.0),
        )

        result = runner.invoke(main, ["devices"])

        assert "* [001:007]" in result.output

    def test_cached_printer_with_other_ids_ignored(self, runner, attached, mocker):
        """A different printer now at the cached address is not preferred."""
        mocker.patch(
            "labelprinter.cli.load_cached_printer",
            return_value=CachedPrinter("001:007", 0x04F9, 0x2061, 0.0),
        )

        result = runner.invoke(main, ["devices"])

        assert "* [001:005]" in result.output

    def test_disallowed_devices_hidden(self, runner, attached):
        attached.append(Device(0x046D, 0xC31C, 1, 2))

        result = runner.invoke(main, ["devices"])

        assert "046d" not in result.output

    def test_forget_clears_cache(self, runner, attached, mocker):
        clear = mocker.patch("labelprinter.cli.clear_cache", return_value=True)

        result = runner.invoke(main, ["devices", "--forget"])

        assert result.exit_code == 0
        assert "Forgot the last used printer." in result.output
        clear.assert_called_once_with()

    def test_no_printers(self, runner, attached):
        attached.clear()
        result = runner.invoke(main, ["devices"])
        assert result.exit_code == 0
        assert "No printers found." in result.output

    def test_config_error(self, runner, attached, mocker):
        mocker.patch("labelprinter.cli.load_allow_list", side_effect=ConfigError("bad vendor_id"))
        result = runner.invoke(main, ["devices"])
        assert result.exit_code == 1
        assert "Configuration error: bad vendor_id" in result.output


class TestStatusCommand:
    """Test the status command."""

    def test_shows_tape_and_phase(self, runner, attached, manager):
        result = runner.invoke(main, ["status"])

        assert result.exit_code == 0
        assert "Tape: 12mm" in result.output
        assert "Phase: editing" in result.output
        manager.close.assert_awaited_once()

    def test_open_failure(self, runner, attached, manager):
        manager.request_permission_and_open.return_value = OpenCommunicationError(
            CommunicationError.PERMISSION_DENIED
        )

        result = runner.invoke(main, ["status"])

        assert result.exit_code == 1
        assert "Permission denied" in result.output
        manager.close.assert_awaited_once()

    def test_device_error(self, runner, attached, manager, status_block):
        manager.snapshot = PrinterSnapshot(
            state=MagicMock(),
            last_query=parse_query_response(status_block(label_mm=0, error1=0x01, error2=0x10)),
        )

        result = runner.invoke(main, ["status"])

        assert result.exit_code == 1
        assert "Tape: unknown" in result.output
        assert "Errors: no media, cover open" in result.output


class TestPrintCommand:
    """Test the print command."""

    def test_print_success(self, runner, attached, manager, image_file, mocker):
        save = mocker.patch("labelprinter.cli.save_printer")

        result = runner.invoke(main, ["print", str(image_file), "--copies", "2"])

        assert result.exit_code == 0, result.output
        assert "on 12mm tape" in result.output
        assert "Print complete!" in result.output
        request = manager.print.await_args.args[0]
        assert request.copies == 2
        assert request.label_size is LabelSize.MM12
        assert request.dither is DitherMode.FLOYD_STEINBERG
        save.assert_called_once_with(Device(0x04F9, 0x2061, 1, 5))

    def test_threshold_options(self, runner, attached, manager, image_file, mocker):
        mocker.patch("labelprinter.cli.save_printer")

        result = runner.invoke(
            main,
            ["print", str(image_file), "--dither", "none", "--threshold", "0.3", "--device", "001:007"],
        )

        assert result.exit_code == 0, result.output
        request = manager.print.await_args.args[0]
        assert request.dither is DitherMode.NONE
        assert request.threshold == 0.3

    def test_print_timeout(self, runner, attached, manager, image_file, mocker):
        save = mocker.patch("labelprinter.cli.save_printer")
        manager.print.return_value = PrintCommunicationError(CommunicationError.TIMEOUT)

        result = runner.invoke(main, ["print", str(image_file)])

        assert result.exit_code == 1
        assert "Print failed: Printer did not finish in time" in result.output
        save.assert_not_called()
        manager.close.assert_awaited_once()

    def test_print_without_tape(self, runner, attached, manager, image_file):
        manager.resolved_label_size = LabelSize.UNKNOWN
        manager.print.return_value = PrintDeviceError(PrintStatusError.LABEL_SIZE_UNKNOWN)

        result = runner.invoke(main, ["print", str(image_file)])

        assert result.exit_code == 1
        assert "No tape detected" in result.output

    def test_print_stops_on_device_error(self, runner, attached, manager, image_file, status_block):
        manager.snapshot = PrinterSnapshot(
            state=MagicMock(),
            last_query=parse_query_response(status_block(error2=0x10)),
        )

        result = runner.invoke(main, ["print", str(image_file)])

        assert result.exit_code == 1
        assert "cover open" in result.output
        manager.print.assert_not_called()

    def test_print_stops_on_query_failure(self, runner, attached, manager, image_file):
        manager.resolved_label_size = LabelSize.UNKNOWN
        manager.snapshot = PrinterSnapshot(
            state=MagicMock(),
            last_query=QueryCommunicationError(CommunicationError.PARSING),
        )

        result = runner.invoke(main, ["print", str(image_file)])

        assert result.exit_code == 1
        assert "Status query failed: Unexpected status response from printer" in result.output
        assert "No tape detected" not in result.output
        manager.print.assert_not_called()

    def test_rejects_zero_copies(self, runner, image_file):
        result = runner.invoke(main, ["print", str(image_file), "--copies", "0"])
        assert result.exit_code != 0

    def test_missing_image(self, runner):
        result = runner.invoke(main, ["print", "/nonexistent/label.png"])
        assert result.exit_code != 0


class TestPreviewCommand:
    """Test the preview command."""

    def test_writes_bitmap(self, runner, image_file, tmp_path):
        output = tmp_path / "out.png"

        result = runner.invoke(
            main, ["preview", str(image_file), "--label-size", "24", "--output", str(output)]
        )

        assert result.exit_code == 0, result.output
        with Image.open(output) as bitmap:
            assert bitmap.mode == "1"
            assert bitmap.size == (240, 128)

    def test_default_output_name(self, runner, image_file):
        result = runner.invoke(main, ["preview", str(image_file)])

        assert result.exit_code == 0, result.output
        preview = image_file.with_name("label-preview.png")
        with Image.open(preview) as bitmap:
            assert bitmap.size == (120, 64)

    def test_rejects_unsupported_label_size(self, runner, image_file):
        result = runner.invoke(main, ["preview", str(image_file), "--label-size", "36"])
        assert result.exit_code != 0
