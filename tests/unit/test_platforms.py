"""Tests for platform selection and probe sets."""

from __future__ import annotations

from pathlib import Path
from unittest.mock import patch

import pytest

from cudascope.engine.models import WslRecord
from cudascope.errors import UnsupportedPlatformError
from cudascope.hardware.compiler import detect_clang, detect_gcc, detect_msvc
from cudascope.hardware.driver import (
    detect_via_modinfo,
    detect_via_nvidia_smi,
    detect_via_windows_registry,
)
from cudascope.hardware.gpu import query_lspci, query_nvidia_smi, query_wmic
from cudascope.hardware.platforms import (
    PROBE_NAMES,
    LinuxPlatform,
    Platform,
    WindowsPlatform,
    get_platform,
)
from cudascope.settings import Settings


class TestGetPlatform:
    def test_linux(self):
        assert isinstance(get_platform("linux"), LinuxPlatform)

    def test_windows(self):
        assert isinstance(get_platform("win32"), WindowsPlatform)

    def test_unsupported(self):
        with pytest.raises(UnsupportedPlatformError, match="darwin"):
            get_platform("darwin")


class TestProbes:
    @pytest.mark.parametrize("platform", [LinuxPlatform(), WindowsPlatform()])
    def test_every_probe_present(self, platform, registry):
        probes = platform.probes(registry, Settings())
        assert tuple(probes) == PROBE_NAMES
        assert all(callable(p) for p in probes.values())

    def test_generic_platform_skips_os_specific_probes(self, registry):
        probes = Platform().probes(registry, Settings())
        assert probes["wsl"]() is None
        assert probes["visual_studio"]() is None

    def test_linux_wsl_probe(self, registry):
        record = WslRecord(is_wsl=False)
        with patch("cudascope.hardware.platforms.detect_wsl", return_value=record):
            probes = LinuxPlatform().probes(registry, Settings())
            assert probes["wsl"]() is record
        assert probes["visual_studio"]() is None

    def test_windows_visual_studio_probe_gets_timeout(self, registry):
        with patch(
            "cudascope.hardware.platforms.detect_visual_studio", return_value=None
        ) as detect:
            probes = WindowsPlatform().probes(registry, Settings(command_timeout=3.0))
            probes["visual_studio"]()
        detect.assert_called_once_with(timeout=3.0)

    def test_storage_probe_uses_install_path(self, registry, tmp_path):
        with patch("cudascope.hardware.platforms.check_storage") as check:
            LinuxPlatform().probes(registry, Settings(install_path=tmp_path))["storage"]()
        check.assert_called_once_with(tmp_path)


class TestPlatformStrategies:
    def test_linux_strategies(self):
        platform = LinuxPlatform()
        assert platform.gpu_strategies == (query_nvidia_smi, query_lspci)
        assert platform.driver_strategies == (detect_via_nvidia_smi, detect_via_modinfo)
        assert platform.compiler_strategies == (detect_gcc, detect_clang)
        assert platform.windows is False

    def test_windows_strategies(self):
        platform = WindowsPlatform()
        assert platform.gpu_strategies == (query_nvidia_smi, query_wmic)
        assert platform.driver_strategies == (detect_via_nvidia_smi, detect_via_windows_registry)
        assert platform.compiler_strategies == (detect_msvc,)
        assert platform.windows is True

    def test_probes_pass_platform_strategies(self, registry):
        platform = WindowsPlatform()
        with (
            patch("cudascope.hardware.platforms.detect_gpus", return_value=[]) as gpus,
            patch("cudascope.hardware.platforms.detect_driver", return_value=None) as driver,
            patch("cudascope.hardware.platforms.detect_compilers", return_value=[]) as compilers,
        ):
            probes = platform.probes(registry, Settings(command_timeout=2.0))
            probes["gpus"]()
            probes["driver"]()
            probes["compilers"]()
        gpus.assert_called_once_with(registry, platform.gpu_strategies, timeout=2.0)
        driver.assert_called_once_with(registry, platform.driver_strategies, timeout=2.0)
        compilers.assert_called_once_with(platform.compiler_strategies, timeout=2.0)

    @pytest.mark.parametrize(
        "platform, windows", [(LinuxPlatform(), False), (WindowsPlatform(), True)]
    )
    def test_file_layout_flag(self, platform, windows, registry):
        with (
            patch("cudascope.hardware.platforms.detect_security") as security,
            patch("cudascope.hardware.platforms.scan_installations") as scan,
        ):
            probes = platform.probes(registry, Settings(command_timeout=2.0))
            probes["security"]()
            probes["installations"]()
        security.assert_called_once_with(windows=windows)
        scan.assert_called_once_with(timeout=2.0, windows=windows)


class TestPlatformDistro:
    def test_linux_reads_release_files(self):
        with patch("cudascope.hardware.platforms.detect_linux_distro") as detect:
            LinuxPlatform().detect_distro(4.0)
        detect.assert_called_once_with(timeout=4.0)

    def test_windows_distro(self):
        with patch("cudascope.hardware.platforms.detect_windows_distro") as detect:
            WindowsPlatform().detect_distro(4.0)
        detect.assert_called_once_with()

    def test_generic_platform_has_no_distro_probe(self):
        with pytest.raises(UnsupportedPlatformError):
            Platform().detect_distro(1.0)


class TestDefaultInstallPath:
    def test_linux(self):
        assert LinuxPlatform().default_install_path() == Path("/usr/local/cuda")

    def test_windows(self):
        with patch.dict("os.environ", {"ProgramFiles": "D:\\Apps"}):
            path = WindowsPlatform().default_install_path()
        assert path == Path("D:\\Apps") / "NVIDIA GPU Computing Toolkit" / "CUDA"

    def test_storage_probe_defaults_to_platform_path(self, registry):
        with patch("cudascope.hardware.platforms.check_storage") as check:
            LinuxPlatform().probes(registry, Settings())["storage"]()
        check.assert_called_once_with(Path("/usr/local/cuda"))
