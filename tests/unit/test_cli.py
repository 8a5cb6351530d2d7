"""Tests for the command line interface."""

import pytest
import respx
from conftest import KEV_URL
from httpx import Response
from typer.testing import CliRunner

from cvesync import __version__
from cvesync.cli import app
from cvesync.models.sync import ResumeState, SyncProgress
from cvesync.sync import ResumeStateStore

runner = CliRunner()


@pytest.fixture
def cli_settings(mock_settings, monkeypatch):
    monkeypatch.setattr("cvesync.cli.get_settings", lambda: mock_settings)
    return mock_settings


def test_version():
    result = runner.invoke(app, ["--version"])

    assert result.exit_code == 0
    assert __version__ in result.output


def test_config(cli_settings):
    result = runner.invoke(app, ["config"])

    assert result.exit_code == 0
    assert "5 req/0.05s" in result.output


def test_status_without_checkpoint(cli_settings):
    result = runner.invoke(app, ["status"])

    assert result.exit_code == 0
    assert "No interrupted sync" in result.output


def test_status_with_checkpoint(cli_settings):
    ResumeStateStore(cli_settings.sync.state_file).save(
        ResumeState(
            sync_id=1700000000000,
            start_time=1700000000000,
            progress=SyncProgress(total=200, processed=50, successful=50),
            timestamp=1700000000000,
        )
    )

    result = runner.invoke(app, ["status"])

    assert result.exit_code == 0
    assert "1700000000000" in result.output
    assert "50/200" in result.output


def test_sync_rejects_conflicting_modes(cli_settings):
    result = runner.invoke(app, ["sync", "--full", "--incremental", "--dry-run"])

    assert result.exit_code == 2
    assert "exclusive" in result.output


@respx.mock
def test_kev_by_vendor(cli_settings, sample_kev_response):
    respx.get(KEV_URL).mock(return_value=Response(200, json=sample_kev_response))

    result = runner.invoke(app, ["kev", "--vendor", "another"])

    assert result.exit_code == 0
    assert "CVE-2024-12346" in result.output
    assert "CVE-2024-12345" not in result.output


@respx.mock
def test_kev_recent_without_matches(cli_settings, sample_kev_response):
    respx.get(KEV_URL).mock(return_value=Response(200, json=sample_kev_response))

    result = runner.invoke(app, ["kev", "--days", "7"])

    assert result.exit_code == 0
    assert "No matching KEV entries" in result.output


@respx.mock
def test_kev_catalog_unavailable(cli_settings):
    respx.get(KEV_URL).mock(return_value=Response(404))

    result = runner.invoke(app, ["kev"])

    assert result.exit_code == 1
    assert "Failed to load KEV catalog" in result.output


def test_kev_rejects_conflicting_filters(cli_settings):
    result = runner.invoke(app, ["kev", "--vendor", "a", "--ransomware"])

    assert result.exit_code == 2
    assert "only one" in result.output
