"""Tests for the HTTP transport."""

import pytest
from fastapi.testclient import TestClient

from songbook.server import SESSION_COOKIE, create_app

from conftest import BLUE_MOON, YESTERDAY


@pytest.fixture
def client(songbook):
    with TestClient(create_app(songbook)) as client:
        yield client


def _admin(songbook):
    return {"key": songbook.admin_key}


class TestSongRoutes:

    def test_create_and_read(self, client, songbook):
        response = client.post("/songs", content=YESTERDAY, params=_admin(songbook))
        assert response.status_code == 201
        assert response.text == "yesterday-the-beatles"

        response = client.get("/songs/yesterday-the-beatles")
        assert response.status_code == 200
        assert response.text == YESTERDAY
        assert response.headers["content-type"].startswith("text/song")

    def test_trailing_slash_create(self, client, songbook):
        response = client.post("/songs/", content=BLUE_MOON, params=_admin(songbook))
        assert response.status_code == 201

    def test_read_negotiates(self, client, songbook):
        client.post("/songs", content=YESTERDAY, params=_admin(songbook))
        response = client.get("/songs/yesterday-the-beatles", headers={"Accept": "text/html"})
        assert response.headers["content-type"].startswith("text/html")
        assert 'class="song-chord"' in response.text

        response = client.get("/songs/yesterday-the-beatles", headers={"Accept": "text/plain"})
        assert response.headers["content-type"].startswith("text/plain")
        assert response.text == YESTERDAY

    def test_transpose(self, client, songbook):
        client.post("/songs", content=YESTERDAY, params=_admin(songbook))
        response = client.get("/songs/yesterday-the-beatles", params={"transpose": 2})
        assert "{key: G}" in response.text

    def test_update_and_delete(self, client, songbook):
        client.post("/songs", content=YESTERDAY, params=_admin(songbook))
        changed = YESTERDAY.replace("troubles", "worries")

        response = client.put("/songs/yesterday-the-beatles", content=changed)
        assert response.status_code == 200
        assert client.get("/songs/yesterday-the-beatles").text == changed

        response = client.delete("/songs/yesterday-the-beatles")
        assert response.status_code == 200
        assert client.get("/songs/yesterday-the-beatles").status_code == 404

    def test_missing_song(self, client):
        assert client.get("/songs/no-such-song").status_code == 404

    def test_malformed_id(self, client):
        assert client.get("/songs/Not_A_Slug").status_code == 400

    def test_invalid_song(self, client, songbook):
        response = client.post("/songs", content="{title: Only}\n", params=_admin(songbook))
        assert response.status_code == 400

    def test_non_utf8_body(self, client, songbook):
        response = client.post("/songs", content=b"\xff\xfe", params=_admin(songbook))
        assert response.status_code == 400


class TestSearchRoutes:

    @pytest.fixture(autouse=True)
    def songs(self, client, songbook):
        client.post("/songs", content=YESTERDAY, params=_admin(songbook))
        client.post("/songs", content=BLUE_MOON, params=_admin(songbook))

    def test_home_lists_all(self, client):
        response = client.get("/", headers={"Accept": "text/plain"})
        assert response.status_code == 200
        assert len(response.text.splitlines()) == 2

    def test_search_path(self, client):
        response = client.get("/search/kentucky")
        assert response.text.startswith("blue-moon-of-kentucky-bill-monroe\t")

    def test_search_query_param(self, client):
        response = client.get("/search", params={"q": "yesterday"})
        assert response.text.startswith("yesterday-the-beatles\t")

    def test_search_html(self, client):
        response = client.get("/search/kentucky", headers={"Accept": "text/html"})
        assert '<a href="/songs/blue-moon-of-kentucky-bill-monroe">' in response.text

    def test_bad_query(self, client):
        response = client.get("/search/(unbalanced")
        assert response.status_code == 400
        assert response.text.startswith("Wrong query syntax")


class TestSessionKey:

    def test_query_key_promoted_to_cookie(self, client, songbook):
        response = client.get("/", params=_admin(songbook))
        assert response.cookies.get(SESSION_COOKIE) == songbook.admin_key
        assert "Max-Age" in response.headers["set-cookie"]

        # The cookie alone now authorizes mutations
        response = client.post("/songs", content=YESTERDAY)
        assert response.status_code == 201

    def test_cookie_not_reset_when_unchanged(self, client, songbook):
        client.get("/", params=_admin(songbook))
        response = client.get("/", params=_admin(songbook))
        assert "set-cookie" not in response.headers

    def test_forbidden_without_key(self, client):
        response = client.post("/songs", content=YESTERDAY)
        assert response.status_code == 403
        response = client.get("/admin/index/reset")
        assert response.status_code == 403

    def test_user_key_required_for_reads(self, client, songbook):
        songbook.access.state.set_user_key("reader")
        assert client.get("/").status_code == 403
        assert client.get("/", params={"key": "reader"}).status_code == 200
        # Promoted cookie keeps working
        assert client.get("/").status_code == 200


class TestAdminAndHeaders:

    def test_reset_reindexes(self, client, songbook):
        client.post("/songs", content=YESTERDAY, params=_admin(songbook))
        response = client.get("/admin/index/reset", headers={"Accept": "text/plain"})
        assert response.status_code == 200
        assert response.text == "1"

    def test_unknown_command(self, client, songbook):
        response = client.get("/admin/index/explode", params=_admin(songbook))
        assert response.status_code == 400

    def test_unknown_command_needs_admin(self, client):
        assert client.get("/admin/index/explode").status_code == 403

    def test_forbidden_page_hides_admin_key(self, client, songbook):
        songbook.access.state.set_user_key("reader")
        response = client.get("/", headers={"Accept": "text/html"})
        assert response.status_code == 403
        assert songbook.admin_key not in response.text
        response = client.get("/songs/anything", params={"key": "wrong"},
                              headers={"Accept": "text/html"})
        assert response.status_code == 403
        assert songbook.admin_key not in response.text

    def test_origin_echoed(self, client):
        response = client.get("/", headers={"Origin": "http://example.org"})
        assert response.headers["access-control-allow-origin"] == "http://example.org"

    def test_no_origin_no_cors_header(self, client):
        assert "access-control-allow-origin" not in client.get("/").headers

    def test_activation_alert_in_html(self, client, songbook):
        response = client.get("/", headers={"Accept": "text/html"})
        assert songbook.admin_key in response.text

        client.get("/", params=_admin(songbook))
        client.cookies.clear()
        response = client.get("/", headers={"Accept": "text/html"})
        assert songbook.admin_key not in response.text


def test_static_files_from_web_root(tmp_path, songbook):
    web = tmp_path / "web"
    web.mkdir()
    (web / "style.css").write_text("body { color: black; }")
    songbook.config.web = str(web)
    with TestClient(create_app(songbook)) as client:
        response = client.get("/style.css")
        assert response.status_code == 200
        assert "color: black" in response.text
        # Routes still take precedence
        assert client.get("/search").status_code == 200
