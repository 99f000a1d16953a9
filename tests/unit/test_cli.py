"""Unit tests for the command-line interface."""

import json
import logging

import pytest

from shelfwatch import cli
from shelfwatch.config import settings
from shelfwatch.infrastructure.http_fetcher import FetchResponse

PRODUCT_PAGE = "<html><span id='productTitle'>Kettle</span></html>"
CAPTCHA_PAGE = "<html><title>Robot Check</title><p>Enter the characters you see below</p></html>"


@pytest.fixture(autouse=True)
def isolated_settings(tmp_path, monkeypatch):
    """Keep state files in tmp_path and undo the CLI's logging setup."""
    monkeypatch.setattr(settings, "STATE_DIR", str(tmp_path / "state"))
    monkeypatch.setattr(settings, "CATALOG_PATH", None)
    yield
    root = logging.getLogger()
    for handler in list(root.handlers):
        root.removeHandler(handler)
    root.setLevel(logging.WARNING)


def run_cli(*args):
    return cli.main(["--log-level", "ERROR", *args])


def write_body(tmp_path, text, name="body.html"):
    path = tmp_path / name
    path.write_text(text)
    return str(path)


class FakeHttpFetcher:
    """Stands in for HttpFetcher; serves one status for every request."""

    status = 200
    body = PRODUCT_PAGE

    def __init__(self, **kwargs):
        pass

    async def issue(self, url, headers=None):
        return FetchResponse(status_code=self.status, body=self.body, elapsed_ms=150.0, final_url=url)

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc, tb):
        return None


class TestCatalogCommand:
    """Tests for `shelfwatch catalog`."""

    def test_json_listing(self, capsys):
        run_cli("catalog", "--output", "json")
        data = json.loads(capsys.readouterr().out)

        assert len(data) == 18
        assert {entry["id"] for entry in data} >= {"increase_delays", "vpn_recommendation"}

    def test_category_filter(self, capsys):
        run_cli("catalog", "--category", "request_delays")
        out = capsys.readouterr().out

        assert "increase_delays" in out
        assert "vpn_recommendation" not in out

    def test_invalid_catalog_exits(self, tmp_path, monkeypatch, capsys):
        bad = tmp_path / "bad.yaml"
        bad.write_text("solutions:\n  - id: broken\n")
        monkeypatch.setattr(settings, "CATALOG_PATH", str(bad))

        with pytest.raises(SystemExit) as exc_info:
            run_cli("catalog")

        assert exc_info.value.code == 2
        assert "Error:" in capsys.readouterr().out


class TestClassifyCommand:
    """Tests for `shelfwatch classify`."""

    def test_json_verdict(self, tmp_path, capsys):
        body = write_body(tmp_path, CAPTCHA_PAGE)

        run_cli("classify", body, "--platform", "amazon", "-o", "json")
        data = json.loads(capsys.readouterr().out)

        assert data["is_blocked"] is True
        assert data["detection_type"] == "captcha"
        assert data["platform"] == "amazon"

    def test_text_verdict(self, tmp_path, capsys):
        body = write_body(tmp_path, PRODUCT_PAGE)

        run_cli("classify", body, "--platform", "walmart", "--status", "200")
        out = capsys.readouterr().out

        assert "Clean response from walmart" in out

    def test_output_file(self, tmp_path, capsys):
        body = write_body(tmp_path, "")
        target = tmp_path / "verdict.json"

        run_cli("classify", body, "--platform", "amazon", "--status", "429", "-o", "json", "-f", str(target))

        assert "Results written to" in capsys.readouterr().out
        assert json.loads(target.read_text())["detection_type"] == "rate_limit"

    def test_missing_body_file(self, tmp_path):
        with pytest.raises(SystemExit) as exc_info:
            run_cli("classify", str(tmp_path / "missing.html"), "--platform", "amazon")

        assert exc_info.value.code == 1


class TestSuggestCommand:
    """Tests for `shelfwatch suggest`."""

    def test_json_suggestions(self, tmp_path, capsys):
        body = write_body(tmp_path, "")

        run_cli("suggest", body, "--platform", "amazon", "--status", "429", "-o", "json")
        data = json.loads(capsys.readouterr().out)

        assert data["detection"]["detection_type"] == "rate_limit"
        recommended = [s["solution_id"] for s in data["suggestions"]["recommended"]]
        assert "increase_delays" in recommended

    def test_desktop_flag(self, tmp_path, capsys):
        body = write_body(tmp_path, "")

        run_cli("suggest", body, "--platform", "amazon", "--status", "403", "--desktop", "-o", "json")
        data = json.loads(capsys.readouterr().out)

        ids = {s["solution_id"] for group in data["suggestions"].values() for s in group}
        assert "enable_proxy_rotation" in ids

    def test_text_suggestions(self, tmp_path, capsys):
        body = write_body(tmp_path, CAPTCHA_PAGE)

        run_cli("suggest", body, "--platform", "amazon")
        out = capsys.readouterr().out

        assert "BLOCKED on amazon: captcha" in out
        assert "IMMEDIATE" in out
        assert "CAPTCHA Detection & Notification" in out


class TestCheckCommand:
    """Tests for `shelfwatch check` with a stubbed fetcher."""

    def test_clean_fetch(self, monkeypatch, capsys):
        monkeypatch.setattr(cli, "HttpFetcher", FakeHttpFetcher)

        run_cli("check", "https://www.amazon.com/dp/B000TEST", "--platform", "amazon", "-o", "json")
        data = json.loads(capsys.readouterr().out)

        assert data["state"] == "succeeded"
        assert data["attempts"] == 1
        assert data["request_stats"]["amazon"]["success_count"] == 1

    def test_blocked_fetch_exits_nonzero(self, monkeypatch, capsys):
        blocked = type("BlockedFetcher", (FakeHttpFetcher,), {"status": 429, "body": ""})
        monkeypatch.setattr(cli, "HttpFetcher", blocked)

        with pytest.raises(SystemExit) as exc_info:
            run_cli("check", "https://www.walmart.com/ip/1", "--platform", "walmart", "--max-attempts", "1")

        out = capsys.readouterr().out
        assert exc_info.value.code == 1
        assert "exhausted after 1 attempt(s)" in out
        assert "WALMART:" in out


class TestMain:
    """Tests for argument handling."""

    def test_no_command_prints_help(self, capsys):
        run_cli()
        assert "usage" in capsys.readouterr().out.lower()

    def test_unknown_platform_is_rejected(self, tmp_path):
        body = write_body(tmp_path, "")
        with pytest.raises(SystemExit) as exc_info:
            run_cli("classify", body, "--platform", "target")

        assert exc_info.value.code == 2
