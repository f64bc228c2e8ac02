import logging
import os

from bye_bye_flag.cli.main import cli


class TestMainCLI:
    """Smoke tests for main CLI functionality."""

    def test_cli_help(self, cli_runner):
        """Test that CLI shows help."""
        result = cli_runner.invoke(cli, ['--help'])
        assert result.exit_code == 0
        assert 'bye-bye-flag' in result.output
        assert 'Commands:' in result.output

    def test_cli_no_args(self, cli_runner):
        """Test CLI with no arguments shows usage."""
        result = cli_runner.invoke(cli, [])
        assert result.exit_code in (0, 2)
        assert 'Usage:' in result.output

    def test_cli_invalid_command(self, cli_runner):
        """Test CLI with invalid command."""
        result = cli_runner.invoke(cli, ['invalid-command'])
        assert result.exit_code != 0
        assert 'No such command' in result.output

    def test_cli_commands(self, cli_runner):
        """Test that every command is registered."""
        result = cli_runner.invoke(cli, ['--help'])

        for cmd in ['run', 'remove', 'test-setup']:
            assert cmd in result.output

    def test_verbose_enables_debug(self, cli_runner):
        """Test that --verbose switches the root logger to DEBUG."""
        result = cli_runner.invoke(cli, ['--verbose', 'run', '--help'])
        assert result.exit_code == 0
        assert logging.getLogger().level == logging.DEBUG

    def test_version(self, cli_runner):
        result = cli_runner.invoke(cli, ['--version'])
        assert result.exit_code == 0
        assert '0.1.0' in result.output

    def test_env_file_loaded(self, cli_runner, tmp_path, monkeypatch):
        """Test that .env in the working directory supplies a missing API key."""
        (tmp_path / '.env').write_text('POSTHOG_API_KEY=phx_from_file\n')
        monkeypatch.chdir(tmp_path)
        monkeypatch.setenv('POSTHOG_API_KEY', 'unset')
        monkeypatch.delenv('POSTHOG_API_KEY')

        result = cli_runner.invoke(cli, ['run', '--help'])

        assert result.exit_code == 0
        assert os.environ['POSTHOG_API_KEY'] == 'phx_from_file'

    def test_env_file_does_not_override(self, cli_runner, tmp_path, monkeypatch):
        """Test that the process environment wins over .env."""
        (tmp_path / '.env').write_text('POSTHOG_API_KEY=phx_from_file\n')
        monkeypatch.chdir(tmp_path)
        monkeypatch.setenv('POSTHOG_API_KEY', 'phx_from_env')

        cli_runner.invoke(cli, ['run', '--help'])

        assert os.environ['POSTHOG_API_KEY'] == 'phx_from_env'
