"""Tests for the driver probe: nvidia-smi, modinfo and Windows registry decoding."""

from __future__ import annotations

from unittest.mock import MagicMock, patch

import pytest

from cudascope.engine.models import DriverRecord
from cudascope.errors import DriverDetectionError, ParseError
from cudascope.hardware.driver import (
    decode_windows_driver_version,
    detect_driver,
    detect_via_modinfo,
    detect_via_nvidia_smi,
    parse_modinfo_version,
    parse_nvidia_smi_driver,
)

# ---------------------------------------------------------------------------
# Fixtures: canned system responses
# ---------------------------------------------------------------------------


@pytest.fixture
def smi_header():
    return (
        "Mon Jan 15 10:30:00 2024\n"
        "+---------------------------------------------------------------------------------------+\n"
        "| NVIDIA-SMI 535.129.03             Driver Version: 535.129.03   CUDA Version: 12.2     |\n"
        "|-----------------------------------------+----------------------+----------------------+\n"
    )


@pytest.fixture
def modinfo_output():
    return (
        "filename:       /lib/modules/6.5.0-14-generic/updates/dkms/nvidia.ko\n"
        "firmware:       nvidia/535.129.03/gsp_tu10x.bin\n"
        "version:        535.129.03\n"
        "license:        NVIDIA\n"
    )


def _completed(stdout: str = "", returncode: int = 0) -> MagicMock:
    result = MagicMock()
    result.returncode = returncode
    result.stdout = stdout
    result.stderr = ""
    return result


# ===========================================================================
# Parsers
# ===========================================================================


class TestParsers:
    def test_nvidia_smi_header(self, smi_header):
        assert parse_nvidia_smi_driver(smi_header) == ("535.129.03", "12.2")

    def test_nvidia_smi_without_cuda_field(self):
        assert parse_nvidia_smi_driver("Driver Version: 470.82.01\n") == ("470.82.01", None)

    def test_nvidia_smi_garbage(self):
        with pytest.raises(ParseError):
            parse_nvidia_smi_driver("NVIDIA-SMI has failed")

    def test_modinfo(self, modinfo_output):
        assert parse_modinfo_version(modinfo_output) == "535.129.03"

    def test_modinfo_without_version(self):
        with pytest.raises(ParseError):
            parse_modinfo_version("filename: nvidia.ko\n")


class TestWindowsDecoding:
    @pytest.mark.parametrize(
        ("raw", "expected"),
        [
            ("31.0.15.3623", "536.23"),
            ("32.0.15.6094", "560.94"),
            ("30.0.14.7141", "471.41"),
            ("27.21.14.5671", "456.71"),
        ],
    )
    def test_decode(self, raw, expected):
        assert decode_windows_driver_version(raw) == expected

    def test_too_short(self):
        with pytest.raises(ParseError):
            decode_windows_driver_version("1.2")


# ===========================================================================
# Detectors
# ===========================================================================


class TestDetectors:
    def test_nvidia_smi_uses_reported_cuda_version(self, smi_header, registry):
        with patch("subprocess.run", return_value=_completed(smi_header)):
            record = detect_via_nvidia_smi(registry)

        assert record.version == "535.129.03"
        assert record.max_toolkit_version == "12.2"
        assert record.source == "nvidia-smi"
        assert record.supports_toolkit_version("12.1")
        assert not record.supports_toolkit_version("12.4")

    def test_nvidia_smi_falls_back_to_registry(self, registry):
        with patch("subprocess.run", return_value=_completed("Driver Version: 550.54.14\n")):
            record = detect_via_nvidia_smi(registry)
        assert record.max_toolkit_version == "12.4"

    def test_modinfo_maps_through_registry(self, modinfo_output, registry):
        with patch("subprocess.run", return_value=_completed(modinfo_output)):
            record = detect_via_modinfo(registry)
        assert record.version == "535.129.03"
        assert record.max_toolkit_version == "12.2"
        assert record.source == "modinfo"


class TestDetectDriver:
    def test_falls_back_to_second_source(self, modinfo_output, registry):
        def mock_run(cmd, **kwargs):
            if cmd[0] == "nvidia-smi":
                raise FileNotFoundError
            return _completed(modinfo_output)

        with patch("subprocess.run", side_effect=mock_run):
            record = detect_driver(registry, strategies=[detect_via_nvidia_smi, detect_via_modinfo])

        assert record is not None
        assert record.source == "modinfo"

    def test_no_source_returns_none(self, registry):
        with patch("subprocess.run", side_effect=FileNotFoundError):
            assert detect_driver(registry, strategies=[detect_via_nvidia_smi, detect_via_modinfo]) is None

    def test_nonzero_exit_counts_as_absent(self, registry):
        with patch("subprocess.run", return_value=_completed("", returncode=9)):
            assert detect_driver(registry, strategies=[detect_via_nvidia_smi]) is None

    def test_detection_error_from_custom_strategy(self, registry):
        def broken(reg, timeout):
            raise DriverDetectionError("no")

        fixed = DriverRecord(version="550.54.14", max_toolkit_version="12.4")
        assert detect_driver(registry, strategies=[broken, lambda r, t: fixed]) is fixed
