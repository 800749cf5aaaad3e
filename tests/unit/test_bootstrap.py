"""Tests for startup directory creation and the command line entry point."""

from pathlib import Path
from unittest.mock import patch

import pytest

from hlsrelay.bootstrap import bootstrap_directories, ensure_directory
from hlsrelay.config import HLSRelayConfig
from hlsrelay.exceptions import FatalBootstrapError
from hlsrelay.main import main, parse_args, resolve_config


@pytest.mark.unit
class TestEnsureDirectory:

    def test_creates_nested(self, tmp_path: Path):
        target = tmp_path / "a" / "b" / "streams"

        assert ensure_directory(target) == target
        assert target.is_dir()

    def test_existing_directory_is_fine(self, tmp_path: Path):
        assert ensure_directory(tmp_path) == tmp_path

    def test_file_in_the_way(self, tmp_path: Path):
        blocker = tmp_path / "streams"
        blocker.write_text("not a directory")

        with pytest.raises(FatalBootstrapError) as exc_info:
            ensure_directory(blocker)

        assert exc_info.value.path == blocker
        assert "Failed to create directory" in str(exc_info.value)


@pytest.mark.unit
def test_bootstrap_directories(relay_config: HLSRelayConfig):
    output_dir, log_dir = bootstrap_directories(relay_config)

    assert output_dir.is_dir()
    assert log_dir.is_dir()
    assert str(output_dir) == relay_config.paths.output_dir


@pytest.mark.unit
class TestCommandLine:

    def test_flags(self):
        args = parse_args(["-p", "8080", "-s", "3000", "-n", "4", "-i", "10.0.0.5"])

        assert args.port == 8080
        assert args.start_port == 3000
        assert args.count == 4
        assert args.ip == "10.0.0.5"

    def test_flags_override_config(self, tmp_path: Path):
        args = parse_args(["-n", "2", "-c", str(tmp_path / "missing.yaml")])
        config = resolve_config(args)

        assert config.channels.count == 2
        assert config.server.port == 3002
        assert config.channels.udp_base_port == 2220

    def test_unset_flags_keep_file_values(self, temp_config_file: Path):
        config = resolve_config(parse_args(["-c", str(temp_config_file)]))

        assert config.server.port == 9000
        assert config.channels.count == 4

    def test_bootstrap_failure_exits(self, tmp_path: Path):
        blocker = tmp_path / "streams"
        blocker.write_text("")
        config_file = tmp_path / "config.yaml"
        config_file.write_text(
            f"paths:\n  output_dir: \"{blocker}\"\n  log_dir: \"{tmp_path / 'logs'}\"\n"
        )

        with patch("hlsrelay.utils.logging_setup.setup_logging"), \
                patch("uvicorn.run") as mock_run:
            with pytest.raises(SystemExit) as exc_info:
                main(["-c", str(config_file)])

        assert exc_info.value.code == 1
        mock_run.assert_not_called()

    def test_starts_server(self, tmp_path: Path):
        config_file = tmp_path / "config.yaml"
        config_file.write_text(
            f"paths:\n  output_dir: \"{tmp_path / 'streams'}\"\n"
            f"  log_dir: \"{tmp_path / 'logs'}\"\n"
        )

        with patch("hlsrelay.utils.logging_setup.setup_logging"), \
                patch("uvicorn.run") as mock_run:
            main(["-c", str(config_file), "-p", "4000", "-n", "0"])

        mock_run.assert_called_once()
        assert mock_run.call_args.kwargs["port"] == 4000
        assert (tmp_path / "streams").is_dir()
