import json

from typer.testing import CliRunner

from linkmeta import cli
from linkmeta.workflows import doctor
from linkmeta.workflows.errors import BlockedURLError, FetchError

runner = CliRunner()


def _clear_linkmeta_env(monkeypatch):
    for name in (
        "LINKMETA_FETCH_TIMEOUT",
        "LINKMETA_MAX_BODY_BYTES",
        "LINKMETA_TMDB_RATE_LIMIT",
        "LINKMETA_OMDB_DAILY_LIMIT",
    ):
        monkeypatch.delenv(name, raising=False)


def test_environment_warnings_invalid_values(monkeypatch):
    _clear_linkmeta_env(monkeypatch)
    monkeypatch.setenv("LINKMETA_FETCH_TIMEOUT", "soon")
    monkeypatch.setenv("LINKMETA_MAX_BODY_BYTES", "-1")
    monkeypatch.setenv("LINKMETA_OMDB_DAILY_LIMIT", "0")
    codes = [item.get("code") for item in doctor.collect_environment_warnings()]
    assert codes == ["invalid_fetch_timeout", "invalid_max_body_bytes", "rate_limit_disabled"]


def test_environment_warnings_clean(monkeypatch):
    _clear_linkmeta_env(monkeypatch)
    monkeypatch.setenv("LINKMETA_FETCH_TIMEOUT", "2.5")
    assert doctor.collect_environment_warnings() == []


def test_doctor_report_redacts_keys(monkeypatch):
    _clear_linkmeta_env(monkeypatch)
    monkeypatch.setenv("TMDB_API_KEY", "abcd1234efgh5678")
    monkeypatch.delenv("OMDB_API_KEY", raising=False)
    report = doctor.build_doctor_report()
    checks = {check["name"]: check for check in report["checks"]}
    assert checks["TMDB_API_KEY"]["value"] == "abcd...5678"
    assert checks["OMDB_API_KEY"]["status"] == "missing"
    # missing API keys are informational only
    assert report["ok"] == (checks["lxml"]["status"] == "ok")
    text = doctor.format_doctor_report(report)
    assert text.startswith("linkmeta doctor\n")
    assert "abcd1234efgh5678" not in text


def test_redact_value():
    assert doctor.redact_value("short") == "*****"
    assert doctor.redact_value("") == ""


def test_cli_help_and_find():
    result = runner.invoke(cli.app, [])
    assert result.exit_code == 0
    assert "linkmeta resolve <url>" in result.output

    result = runner.invoke(cli.app, ["--find", "tmdb"])
    assert result.exit_code == 0
    assert "env TMDB_API_KEY" in result.output
    assert "check-url" not in result.output


def test_cli_doctor_flag_fails_on_env_warning(monkeypatch):
    _clear_linkmeta_env(monkeypatch)
    monkeypatch.setenv("LINKMETA_MAX_BODY_BYTES", "lots")
    result = runner.invoke(cli.app, ["--doctor"])
    assert result.exit_code == 2
    assert "invalid_max_body_bytes" in result.output


def test_cli_check_url_rejects_localhost():
    result = runner.invoke(cli.app, ["check-url", "http://localhost:8080/admin"])
    assert result.exit_code == cli.EXIT_REJECTED
    assert "rejected (blocked)" in result.output


def test_cli_resolve_json(monkeypatch):
    async def fake_resolve(url, section_type):
        assert section_type == "movie"
        return {"title": "The Matrix", "provider": "imdb"}

    monkeypatch.setattr(cli, "_resolve", fake_resolve)
    result = runner.invoke(cli.app, ["resolve", "https://www.imdb.com/title/tt0133093/", "--section-type", "movie", "--json"])
    assert result.exit_code == 0
    assert json.loads(result.output) == {"title": "The Matrix", "provider": "imdb"}


def test_cli_resolve_summary(monkeypatch):
    async def fake_resolve(url, section_type):
        return {"title": "Song", "provider": "bandcamp", "embed_url": "https://bandcamp.com/EmbeddedPlayer/track=1/"}

    monkeypatch.setattr(cli, "_resolve", fake_resolve)
    result = runner.invoke(cli.app, ["resolve", "https://a.bandcamp.com/track/song"])
    assert result.exit_code == 0
    assert result.output.splitlines()[0] == "provider: bandcamp"
    assert "embed_url: https://bandcamp.com/EmbeddedPlayer/track=1/" in result.output


def test_cli_resolve_exit_codes(monkeypatch):
    errors = iter([BlockedURLError("blocked ip: 10.0.0.1"), FetchError("fetch url: reset")])

    async def fake_resolve(url, section_type):
        raise next(errors)

    monkeypatch.setattr(cli, "_resolve", fake_resolve)
    blocked = runner.invoke(cli.app, ["resolve", "http://10.0.0.1/"])
    failed = runner.invoke(cli.app, ["resolve", "https://example.com/"])
    assert blocked.exit_code == cli.EXIT_REJECTED
    assert failed.exit_code == cli.EXIT_FETCH_FAILED
