"""
Tests for the CLI.
"""

import asyncio

import pytest
from typer.testing import CliRunner

from sitewatch import __version__
from sitewatch.cli.main import app
from sitewatch.cli.sites import format_duration, parse_duration, parse_header
from sitewatch.store import get_site_store

runner = CliRunner()


@pytest.fixture
def data_file(tmp_path, monkeypatch):
    path = tmp_path / "sites.json"
    monkeypatch.setenv("SITEWATCH_DATA_PATH", str(path))
    return path


class TestHelpers:
    """Tests for argument parsing helpers."""

    @pytest.mark.parametrize(
        "value,default_unit,expected",
        [
            ("30s", "m", 30_000),
            ("10m", "m", 600_000),
            ("1h", "m", 3_600_000),
            ("1d", "m", 86_400_000),
            ("500ms", "s", 500),
            ("15", "m", 900_000),
            ("2", "s", 2_000),
            ("1.5m", "m", 90_000),
        ],
    )
    def test_parse_duration(self, value: str, default_unit: str, expected: int) -> None:
        assert parse_duration(value, default_unit) == expected

    @pytest.mark.parametrize("value", ["", "abc", "0s", "-5m"])
    def test_parse_duration_rejects(self, value: str) -> None:
        with pytest.raises(ValueError):
            parse_duration(value)

    @pytest.mark.parametrize(
        "ms,expected",
        [(500, "500ms"), (30_000, "30s"), (600_000, "10m"), (5_400_000, "1h 30m"), (90_000_000, "1d 1h")],
    )
    def test_format_duration(self, ms: int, expected: str) -> None:
        assert format_duration(ms) == expected

    def test_parse_header(self) -> None:
        header = parse_header("Authorization: Bearer a:b")
        assert header.key == "Authorization"
        assert header.value == "Bearer a:b"

    def test_parse_header_rejects(self) -> None:
        with pytest.raises(ValueError):
            parse_header("no separator")


class TestCommands:
    """Tests for CLI commands against a temporary data file."""

    def test_version(self) -> None:
        result = runner.invoke(app, ["--version"])

        assert result.exit_code == 0
        assert __version__ in result.output

    def test_add_list_disable_remove(self, data_file) -> None:
        result = runner.invoke(
            app,
            ["site", "add", "https://example.com", "--name", "Example", "-t", "prod", "-i", "5m"],
        )
        assert result.exit_code == 0, result.output
        assert "Site added" in result.output
        assert data_file.exists()

        result = runner.invoke(app, ["site", "list"])
        assert result.exit_code == 0
        assert "Total: 1 sites" in result.output

        result = runner.invoke(app, ["site", "list", "-t", "staging"])
        assert "No sites found" in result.output

        site = asyncio.run(get_site_store().list_sites())[0]
        assert site.check_interval_ms == 300_000

        result = runner.invoke(app, ["site", "disable", site.id[:8]])
        assert result.exit_code == 0
        assert "disabled" in result.output

        result = runner.invoke(app, ["site", "remove", site.id, "--force"])
        assert result.exit_code == 0
        assert "Site removed" in result.output

    def test_term_search_needs_term(self, data_file) -> None:
        result = runner.invoke(app, ["site", "add", "https://example.com", "-m", "term_search"])

        assert result.exit_code == 1
        assert "--term" in result.output

    def test_invalid_mode(self, data_file) -> None:
        result = runner.invoke(app, ["site", "add", "https://example.com", "-m", "ping"])

        assert result.exit_code == 1
        assert "Invalid validation mode" in result.output

    def test_show_unknown_site(self, data_file) -> None:
        result = runner.invoke(app, ["site", "show", "nope"])

        assert result.exit_code == 1
        assert "Site not found" in result.output
