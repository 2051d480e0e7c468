"""Tests for `cudascope registry` commands."""

from __future__ import annotations

from datetime import datetime, timezone
from unittest.mock import MagicMock, patch

import pytest
import requests
from typer.testing import CliRunner

from cudascope.cli import app

runner = CliRunner()


@pytest.fixture
def cache_env(tmp_path):
    return {"CUDASCOPE_REGISTRY_CACHE_PATH": str(tmp_path / "registry.json")}


class TestLookup:
    def test_known_gpu(self, cache_env):
        result = runner.invoke(app, ["registry", "lookup", "GeForce RTX 4090"], env=cache_env)
        assert result.exit_code == 0
        assert (
            "GeForce RTX 4090: Ada Lovelace, compute capability 8.9, minimum driver 520.00"
            in result.output
        )

    def test_unknown_gpu(self, cache_env):
        result = runner.invoke(app, ["registry", "lookup", "Voodoo5 5500"], env=cache_env)
        assert result.exit_code == 1
        assert "Voodoo5 5500: not in registry" in result.output

    def test_driver_mapping(self, cache_env):
        result = runner.invoke(
            app, ["registry", "lookup", "Tesla T4", "--driver", "535.129.03"], env=cache_env
        )
        assert result.exit_code == 0
        assert "Driver 535.129.03: CUDA up to 12.2" in result.output

    def test_driver_too_old(self, cache_env):
        result = runner.invoke(app, ["registry", "lookup", "Tesla T4", "-d", "340.108"], env=cache_env)
        assert "Driver 340.108: too old for any known CUDA toolkit" in result.output


class TestRefresh:
    def test_newer_remote_is_cached(self, cache_env, registry, tmp_path):
        newer = registry.model_copy(
            update={"last_updated": datetime(2030, 1, 1, tzinfo=timezone.utc)}
        )
        response = MagicMock()
        response.text = newer.model_dump_json()

        with patch("requests.get", return_value=response) as get:
            result = runner.invoke(
                app,
                ["registry", "refresh", "--url", "https://example.test/registry.json"],
                env=cache_env,
            )

        assert result.exit_code == 0
        assert "Registry updated to 2030-01-01 from https://example.test/registry.json" in result.output
        assert get.call_args[0][0] == "https://example.test/registry.json"
        assert (tmp_path / "registry.json").exists()

    def test_remote_not_newer(self, cache_env, registry, tmp_path):
        response = MagicMock()
        response.text = registry.model_dump_json()

        with patch("requests.get", return_value=response):
            result = runner.invoke(
                app, ["registry", "refresh", "--url", "https://example.test/r.json"], env=cache_env
            )

        assert result.exit_code == 0
        assert "Registry already up to date" in result.output
        assert not (tmp_path / "registry.json").exists()

    def test_network_failure(self, cache_env):
        with patch("requests.get", side_effect=requests.exceptions.ConnectionError("down")):
            result = runner.invoke(
                app, ["registry", "refresh", "--url", "https://example.test/r.json"], env=cache_env
            )
        assert result.exit_code == 1
        assert "registry refresh failed" in result.output

    def test_default_url_from_environment(self, cache_env, registry):
        response = MagicMock()
        response.text = registry.model_dump_json()
        env = dict(cache_env, CUDASCOPE_REGISTRY_URL="https://mirror.test/registry.json")

        with patch("requests.get", return_value=response) as get:
            runner.invoke(app, ["registry", "refresh"], env=env)

        assert get.call_args[0][0] == "https://mirror.test/registry.json"
