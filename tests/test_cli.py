import pytest
from click.testing import CliRunner

from erp_mcp.cli import cli


def test_help_lists_commands():
    result = CliRunner().invoke(cli, ["--help"])

    assert result.exit_code == 0
    assert "stdio" in result.output
    assert "http" in result.output


def test_missing_configuration_exits_with_hint(monkeypatch: pytest.MonkeyPatch, tmp_path):
    monkeypatch.chdir(tmp_path)
    monkeypatch.delenv("SUPABASE_PROJECT_URL", raising=False)
    monkeypatch.delenv("SUPABASE_BEARER_TOKEN", raising=False)

    result = CliRunner().invoke(cli, ["stdio"])

    assert result.exit_code == 1
    assert "SUPABASE_PROJECT_URL" in result.output
    assert "SUPABASE_BEARER_TOKEN" in result.output
