"""Test the pnotes command line against a temporary storage directory"""

import pytest
from click.testing import CliRunner

from playlist_notes import __version__
from playlist_notes.adapters.demo import DEMO_PLAYLIST_TITLE
from playlist_notes.cli import cli, format_ms


@pytest.fixture
def runner(monkeypatch, temp_dir):
    monkeypatch.setenv("PLAYLIST_NOTES_STORAGE_DIR", str(temp_dir / "data"))
    monkeypatch.delenv("SPOTIFY_CLIENT_ID", raising=False)
    monkeypatch.delenv("SPOTIFY_CLIENT_SECRET", raising=False)
    monkeypatch.chdir(temp_dir)
    return CliRunner()


def invoke(runner, *args):
    return runner.invoke(cli, list(args), obj={})


class TestFormatMs:
    """Test format_ms"""
    
    def test_values(self):
        """Test minute:second formatting"""
        assert format_ms(None) == ""
        assert format_ms(0) == "0:00"
        assert format_ms(130000) == "2:10"


class TestCli:
    """Test pnotes commands"""
    
    def test_version(self, runner):
        """Test --version"""
        result = invoke(runner, "--version")
        assert result.exit_code == 0
        assert __version__ in result.output
    
    def test_show_empty(self, runner):
        """Test show before any import"""
        result = invoke(runner, "show")
        assert result.exit_code == 0
        assert "No playlist loaded" in result.output
    
    def test_demo_is_read_only(self, runner):
        """Test loading the demo and trying to tag it"""
        result = invoke(runner, "demo")
        assert result.exit_code == 0
        assert DEMO_PLAYLIST_TITLE in result.output
        
        result = invoke(runner, "show")
        assert "[read-only]" in result.output
        assert "Rubber Band" in result.output
        
        result = invoke(runner, "tag", "30qGwfY1Vuc4Xbdswn3cjF", "jazz")
        assert result.exit_code == 0
        assert "read-only" in result.output
    
    def test_unsupported_import(self, runner):
        """Test errors exit with status 1"""
        result = invoke(runner, "import", "https://example.com/list")
        assert result.exit_code == 1
        assert "Unsupported playlist URL" in result.output
    
    def test_missing_config_file(self, runner, temp_dir):
        """Test an explicit missing config file"""
        result = invoke(runner, "--config", str(temp_dir / "missing.yaml"), "show")
        assert result.exit_code == 1
        assert "Configuration error" in result.output
    
    def test_recover_without_snapshot(self, runner):
        """Test recover when nothing is pending"""
        result = invoke(runner, "recover")
        assert result.exit_code == 0
        assert "Nothing to recover" in result.output
        result = invoke(runner, "recover", "--backup")
        assert "No backup available" in result.output
