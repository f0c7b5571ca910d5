import pytest
from auditlog import cli


def test_unknown_policy_rejected(capsys):
    with pytest.raises(SystemExit):
        cli.main(["run", "--retention-policy", "newest"])
    assert "invalid choice" in capsys.readouterr().err


def test_flags_override_environment(monkeypatch):
    monkeypatch.setenv("POSTGRES_URL", "postgresql+psycopg2://u:p@db/logs")
    monkeypatch.setenv("MAX_LOG_AGE_SECONDS", "45")
    monkeypatch.setenv("CLEANUP_INTERVAL_SECONDS", "2.5")
    seen = {}
    monkeypatch.setattr(cli, "cmd_sweep", lambda args: seen.update(s=cli._settings(args)))

    cli.main(["sweep", "--max-log-age-seconds", "90", "--policy", "all"])

    s = seen["s"]
    assert s.max_log_age_seconds == 90
    assert s.cleanup_interval_seconds == 2.5
    assert s.retention_policy.value == "all"
    assert s.postgres_url == "postgresql+psycopg2://u:p@db/logs"
