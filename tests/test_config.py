"""Configuration from the environment, dotenv files and the command line."""

from __future__ import annotations

from pathlib import Path

import pytest

from long_cloud_run.__main__ import build_parser, load_config
from long_cloud_run.config import Config, PollSettings, parse_exit_codes


class TestPollSettings:
    def test_defaults(self):
        poll = PollSettings()
        assert poll.initial_interval == 5.0
        assert poll.max_interval == 300.0
        assert poll.max_elapsed_time == 3600.0
        assert poll.multiplier == 1.5
        assert poll.randomization_factor == 0.5

    @pytest.mark.parametrize(
        "kwargs",
        [
            {"initial_interval": 0},
            {"initial_interval": 10, "max_interval": 5},
            {"max_elapsed_time": 0},
            {"multiplier": 0.5},
            {"randomization_factor": 1.0},
        ],
    )
    def test_rejects_invalid(self, kwargs):
        with pytest.raises(ValueError):
            PollSettings(**kwargs)


class TestParseExitCodes:
    def test_list(self):
        assert parse_exit_codes("0, 3,4") == frozenset({0, 3, 4})

    def test_garbage(self):
        with pytest.raises(ValueError):
            parse_exit_codes("0,x")

    def test_empty(self):
        with pytest.raises(ValueError):
            parse_exit_codes(" , ")


class TestConfigFromEnv:
    def test_defaults(self, clean_env, tmp_path: Path):
        config = Config.from_env(tmp_path / "missing.env")
        assert config.port == 8080
        assert config.host == "0.0.0.0"
        assert config.poll == PollSettings()
        assert config.show_output is True
        assert config.can_fail is False
        assert config.allowed_exit_codes == frozenset({0})
        assert config.exit_on_failure is True
        assert config.drain_timeout == 1.0

    def test_environment_values(self, clean_env):
        clean_env.setenv("PORT", "9000")
        clean_env.setenv("POLL_INTERVAL", "2s")
        clean_env.setenv("MAX_POLL_INTERVAL", "1m")
        clean_env.setenv("MAX_ELAPSED_TIME", "2h")
        clean_env.setenv("SHOW_OUTPUT", "false")
        clean_env.setenv("CAN_FAIL", "yes")
        clean_env.setenv("ALLOWED_EXIT_CODES", "0,2")
        clean_env.setenv("LOG_LEVEL", "debug")

        config = Config.from_env()

        assert config.port == 9000
        assert config.poll.initial_interval == 2.0
        assert config.poll.max_interval == 60.0
        assert config.poll.max_elapsed_time == 7200.0
        assert config.show_output is False
        assert config.can_fail is True
        assert config.allowed_exit_codes == frozenset({0, 2})
        assert config.log_level == "DEBUG"

    def test_dotenv_file(self, clean_env, tmp_path: Path):
        env_file = tmp_path / ".env"
        env_file.write_text("PORT=9191\nMAX_ELAPSED_TIME=90m\n")

        config = Config.from_env(env_file)

        assert config.port == 9191
        assert config.poll.max_elapsed_time == 5400.0

    def test_invalid_boolean(self, clean_env):
        clean_env.setenv("SHOW_OUTPUT", "maybe")
        with pytest.raises(ValueError, match="SHOW_OUTPUT"):
            Config.from_env()

    def test_command_spec(self):
        config = Config(show_output=False, can_fail=True, allowed_exit_codes=frozenset({0, 9}))
        spec = config.command_spec("backup", ["--full", "/data"])
        assert spec.name == "backup"
        assert spec.args == ("--full", "/data")
        assert spec.argv == ["backup", "--full", "/data"]
        assert spec.show_output is False
        assert spec.can_fail is True
        assert spec.allowed_exit_codes == frozenset({0, 9})


class TestCommandLine:
    def test_command_and_remainder_args(self, clean_env, tmp_path: Path):
        args = build_parser().parse_args(
            ["--env-file", str(tmp_path / "none.env"), "gsutil", "-m", "rsync", "-r", "a", "b"]
        )
        assert args.command == "gsutil"
        assert args.args == ["-m", "rsync", "-r", "a", "b"]

    def test_flags_override_environment(self, clean_env, tmp_path: Path):
        clean_env.setenv("SHOW_OUTPUT", "true")
        clean_env.setenv("PORT", "9000")
        args = build_parser().parse_args([
            "--env-file", str(tmp_path / "none.env"),
            "--port", "8081",
            "--max-elapsed", "10m",
            "--poll-interval", "1s",
            "--no-show-output",
            "--allowed-exit-codes", "0,2",
            "--no-exit-on-failure",
            "job.sh",
        ])

        config = load_config(args)

        assert config.port == 8081
        assert config.poll.max_elapsed_time == 600.0
        assert config.poll.initial_interval == 1.0
        assert config.poll.max_interval == 300.0
        assert config.show_output is False
        assert config.allowed_exit_codes == frozenset({0, 2})
        assert config.exit_on_failure is False
        assert config.can_fail is False

    def test_invalid_duration_is_usage_error(self):
        with pytest.raises(SystemExit):
            build_parser().parse_args(["--max-elapsed", "soon", "job.sh"])

    def test_command_is_required(self):
        with pytest.raises(SystemExit):
            build_parser().parse_args([])
