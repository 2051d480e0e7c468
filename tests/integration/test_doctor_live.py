"""Live integration tests that probe the machine running the suite.

These tests run real nvidia-smi / compiler / filesystem probes and are
skipped unless CUDASCOPE_LIVE_TESTS is set:

    CUDASCOPE_LIVE_TESTS=1 pytest tests/integration -m integration -v
"""

from __future__ import annotations

import os
import sys

import pytest

from cudascope.engine.doctor import generate_report
from cudascope.engine.models import CompatibilityStatus, SystemReport
from cudascope.engine.report import format_report_console, format_report_json
from cudascope.settings import Settings

pytestmark = [
    pytest.mark.integration,
    pytest.mark.skipif(
        not os.environ.get("CUDASCOPE_LIVE_TESTS"),
        reason="CUDASCOPE_LIVE_TESTS not set",
    ),
    pytest.mark.skipif(
        not (sys.platform.startswith("linux") or sys.platform == "win32"),
        reason="probes exist for Linux and Windows only",
    ),
]


@pytest.fixture()
def settings(tmp_path):
    return Settings(registry_cache_path=tmp_path / "registry.json")


class TestLiveDoctor:
    def test_sequential_report(self, settings):
        report = generate_report(settings=settings)

        assert isinstance(report, SystemReport)
        assert report.status in set(CompatibilityStatus)
        assert report.system_info.distro.name
        if report.status == CompatibilityStatus.INCOMPATIBLE:
            assert report.errors

    def test_parallel_report_agrees_on_hardware(self, settings):
        sequential = generate_report(settings=settings)
        parallel = generate_report(settings=settings.model_copy(update={"parallel": True}))

        assert parallel.system_info.gpu == sequential.system_info.gpu
        assert parallel.system_info.distro == sequential.system_info.distro

    def test_report_renders(self, settings):
        report = generate_report(settings=settings)

        assert "Overall status" in format_report_console(report)
        restored = SystemReport.model_validate_json(format_report_json(report))
        assert restored.status == report.status
