"""Tests for the process entry point."""

from http_test_server.app.cli import main, run


class TestMain:

    def test_invalid_configuration_exits_with_error(self, capsys):
        assert main(["--address", "no-port"]) == 1
        assert "address must be host:port" in capsys.readouterr().err

    def test_missing_bucket_parameters_exit_with_error(self, capsys):
        assert main(["--rate_limit_behavior", "HARD"]) == 1
        assert "rate_limit_bucket_fill_interval" in capsys.readouterr().err


class TestRun:

    def test_invalid_expression_exits_before_listening(self, settings_factory, tmp_path, capsys):
        summary_path = tmp_path / "summary.json"
        summary_path.write_text("{}")
        settings = settings_factory(error_expression="500 +", summary_path=summary_path)

        assert run(settings) == 1
        assert "could not use expression '500 +'" in capsys.readouterr().err
        # Nothing was started, so the old summary is left alone
        assert summary_path.exists()
