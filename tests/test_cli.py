"""Tests for the command line interface."""

import pytest
from typer.testing import CliRunner

from songbook.access import AccessState, KeyStore
from songbook.cli import app

from conftest import BLUE_MOON, YESTERDAY


runner = CliRunner()


@pytest.fixture
def invoke(data_root):
    def _invoke(*args, input=None):
        return runner.invoke(app, ["--data-root", str(data_root), *args], input=input)
    return _invoke


@pytest.fixture
def song_file(tmp_path):
    path = tmp_path / "yesterday.chopro"
    path.write_text(YESTERDAY, encoding="utf-8")
    return path


def _last_line(result):
    return result.output.strip().splitlines()[-1]


class TestSongCommands:

    def test_add_prints_id(self, invoke, song_file, data_root):
        result = invoke("add", str(song_file))
        assert result.exit_code == 0, result.output
        assert _last_line(result) == "yesterday-the-beatles"
        assert (data_root / "songs" / "yesterday-the-beatles.song").read_text() == YESTERDAY

    def test_add_from_stdin(self, invoke):
        result = invoke("add", "-", input=BLUE_MOON)
        assert result.exit_code == 0, result.output
        assert _last_line(result) == "blue-moon-of-kentucky-bill-monroe"

    def test_add_missing_file(self, invoke, tmp_path):
        result = invoke("add", str(tmp_path / "nope.chopro"))
        assert result.exit_code == 1

    def test_add_invalid_song(self, invoke, tmp_path):
        path = tmp_path / "bad.chopro"
        path.write_text("{title: Only}\n")
        result = invoke("add", str(path))
        assert result.exit_code == 1
        assert "400" in result.output

    def test_get(self, invoke, song_file):
        invoke("add", str(song_file))
        result = invoke("get", "yesterday-the-beatles")
        assert result.exit_code == 0
        assert result.output == YESTERDAY

    def test_get_html_transposed(self, invoke, song_file):
        invoke("add", str(song_file))
        result = invoke("get", "yesterday-the-beatles", "--type", "text/html", "--transpose", "2")
        assert result.exit_code == 0
        assert 'itemprop="musicalKey">G</span>' in result.output

    def test_get_unknown_type(self, invoke):
        result = invoke("get", "anything", "--type", "application/pdf")
        assert result.exit_code == 1

    def test_get_missing(self, invoke):
        result = invoke("get", "no-such-song")
        assert result.exit_code == 1
        assert "404" in result.output

    def test_update(self, invoke, song_file, tmp_path):
        invoke("add", str(song_file))
        changed = tmp_path / "changed.chopro"
        changed.write_text(YESTERDAY.replace("troubles", "worries"))
        result = invoke("update", "yesterday-the-beatles", str(changed))
        assert result.exit_code == 0
        assert "worries" in invoke("get", "yesterday-the-beatles").output

    def test_remove(self, invoke, song_file):
        invoke("add", str(song_file))
        result = invoke("remove", "yesterday-the-beatles")
        assert result.exit_code == 0
        assert invoke("get", "yesterday-the-beatles").exit_code == 1


class TestSearchAndIndex:

    def test_search(self, invoke, song_file):
        invoke("add", str(song_file))
        result = invoke("search", "yesterday")
        assert result.exit_code == 0
        assert result.output.startswith("yesterday-the-beatles\tYesterday\tThe Beatles")

    def test_search_lists_all(self, invoke, song_file):
        invoke("add", str(song_file))
        assert invoke("search").output.count("\n") == 1

    def test_search_bad_syntax(self, invoke):
        result = invoke("search", "(oops")
        assert result.exit_code == 1
        assert "Wrong query syntax" in result.output

    def test_reindex(self, invoke, song_file):
        invoke("add", str(song_file))
        result = invoke("reindex")
        assert result.exit_code == 0
        assert "Reindexed 1 songs" in result.output


class TestKeys:

    def test_commands_leave_activation_pending(self, invoke, song_file, data_root):
        assert invoke("search").exit_code == 0
        assert invoke("add", str(song_file)).exit_code == 0
        assert invoke("reindex").exit_code == 0
        assert AccessState(KeyStore(data_root)).pending_activation
        assert "not yet activated" in invoke("keys").output

    def test_show(self, invoke, data_root):
        result = invoke("keys")
        assert result.exit_code == 0
        admin = KeyStore(data_root).load_keys().admin
        assert f"administrator: {admin}" in result.output
        assert "reading is open" in result.output

    def test_regenerate(self, invoke, data_root):
        invoke("keys")
        before = KeyStore(data_root).load_keys().admin
        result = invoke("keys", "--regenerate")
        assert result.exit_code == 0
        after = KeyStore(data_root).load_keys().admin
        assert after != before
        assert f"administrator: {after}" in result.output

    def test_user_key(self, invoke, data_root):
        assert invoke("keys", "--user", "reader").exit_code == 0
        assert KeyStore(data_root).load_keys().user == "reader"
        assert invoke("keys", "--clear-user").exit_code == 0
        assert KeyStore(data_root).load_keys().user is None

    def test_conflicting_options(self, invoke):
        assert invoke("keys", "--user", "x", "--clear-user").exit_code == 1


def test_serve_runs_uvicorn(invoke, monkeypatch):
    calls = {}

    def fake_run(app, host, port, log_level):
        calls.update(app=app, host=host, port=port, log_level=log_level)

    monkeypatch.setattr("uvicorn.run", fake_run)
    result = invoke("serve", "--port", "9999")
    assert result.exit_code == 0, result.output
    assert calls["port"] == 9999
    assert calls["host"] == "localhost"
    assert calls["app"].state.songbook is not None
