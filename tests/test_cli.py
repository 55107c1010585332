import logging

from dicom_sync import cli
from dicom_sync.context import RunStatistics

ARGS = ["index.db", "SAVE", "pacs.example.org", "104", "PACS", "11112", "SYNC"]


def _args(save_folder, *extra):
    return [str(save_folder / "index.db"), str(save_folder)] + ARGS[2:] + list(extra)


def test_defaults():
    args = cli.build_parser().parse_args(ARGS)
    assert (args.retrieve, args.query, args.transfer_syntax, args.level, args.associations) == \
        ("MOVE", "ALL", "UNCOMPRESSED", "INSTANCE", "NEW")
    assert args.remote_port == 104
    assert args.local_port == 11112


def test_keywords_case_insensitive(save_folder):
    args = cli.build_parser().parse_args(_args(save_folder, "get", "selective", "any", "instance", "reuse"))
    settings = cli.settings_from_args(args)
    assert settings.use_get is True
    assert settings.query == "selective"
    assert settings.any_transfer_syntax is True
    assert settings.retrieve_study is False
    assert settings.reuse_associations is True
    assert settings.remote.ae_title == "PACS"
    assert settings.local.port == 11112


def test_command_line_tunables_override(save_folder):
    args = cli.build_parser().parse_args(
        _args(save_folder, "--poll-interval", "1.5", "--inactivity-timeout", "20", "--no-wait"))
    settings = cli.settings_from_args(args)
    assert settings.poll_interval == 1.5
    assert settings.inactivity_timeout == 20.0
    assert settings.wait_for_quiescence is False


def test_usage_error_exits_zero():
    assert cli.main(["too", "few"]) == 0


def test_get_with_study_exits_zero_without_running(save_folder, monkeypatch, caplog):
    monkeypatch.setattr(cli, "synchronize", lambda settings: settings.validate())
    with caplog.at_level(logging.ERROR):
        assert cli.main(_args(save_folder, "GET", "ALL", "UNCOMPRESSED", "STUDY")) == 0
    assert "STUDY level retrieval can only be used with MOVE not GET" in caplog.text


def test_unexpected_failure_exits_zero(save_folder, monkeypatch):
    def explode(settings):
        raise RuntimeError("boom")

    monkeypatch.setattr(cli, "synchronize", explode)
    assert cli.main(_args(save_folder)) == 0


def test_statistics_printed(save_folder, monkeypatch, capsys):
    stats = RunStatistics()
    stats.received = 5
    stats.valid = 4
    stats.unrequested = 1
    monkeypatch.setattr(cli, "synchronize", lambda settings: stats)

    assert cli.main(_args(save_folder)) == 0

    out = capsys.readouterr().out
    assert "DICOM Synchronization Tool" in out
    assert "Received:            5" in out
    assert "Unrequested:         1" in out
