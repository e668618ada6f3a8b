"""Tests for songbook.toml handling and environment overrides."""

import logging

import pytest

from songbook.config import (
    CONFIG_FILENAME,
    DEFAULT_PORT,
    SongbookConfig,
    apply_env_overrides,
    get_data_root,
    load_config,
    load_or_create_config,
    resolve_config,
    save_config,
)


class TestConfigFile:

    def test_created_with_defaults(self, tmp_path):
        config = load_or_create_config(tmp_path)
        assert (tmp_path / CONFIG_FILENAME).exists()
        assert config.port == DEFAULT_PORT
        assert config.host == "localhost"
        assert config.songs_root == tmp_path / "songs"
        assert config.index_dir == tmp_path / "index"

    def test_round_trip(self, tmp_path):
        config = SongbookConfig(data_root=tmp_path, host="0.0.0.0", port=9000,
                                songs="/srv/songs", log_level="DEBUG")
        save_config(config)
        loaded = load_config(tmp_path)
        assert loaded.host == "0.0.0.0"
        assert loaded.port == 9000
        assert loaded.songs_root.as_posix() == "/srv/songs"
        assert loaded.log_level == "DEBUG"
        assert loaded.created == config.created

    def test_existing_file_not_overwritten(self, tmp_path):
        (tmp_path / CONFIG_FILENAME).write_text('[server]\nport = 1234\n')
        assert load_or_create_config(tmp_path).port == 1234
        assert "1234" in (tmp_path / CONFIG_FILENAME).read_text()

    def test_newer_version_rejected(self, tmp_path):
        (tmp_path / CONFIG_FILENAME).write_text('[store]\nversion = 99\n')
        with pytest.raises(ValueError, match="newer"):
            load_config(tmp_path)

    def test_bad_port_rejected(self, tmp_path):
        (tmp_path / CONFIG_FILENAME).write_text('[server]\nport = "http"\n')
        with pytest.raises(ValueError):
            load_config(tmp_path)

    def test_missing(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            load_config(tmp_path)


class TestEnvironment:

    def test_data_root(self):
        assert get_data_root({}).as_posix() == "data"
        assert get_data_root({"DATA_ROOT": "/var/songbook"}).as_posix() == "/var/songbook"

    def test_overrides(self, tmp_path):
        config = SongbookConfig(data_root=tmp_path)
        apply_env_overrides(config, {
            "SONGS_ROOT": "/songs", "WEB_ROOT": "/web", "PORT": "9090", "HOST": "example.org",
        })
        assert config.songs_root.as_posix() == "/songs"
        assert config.web_root.as_posix() == "/web"
        assert config.port == 9090
        assert config.host == "example.org"

    def test_hostname_fallback(self, tmp_path):
        config = apply_env_overrides(SongbookConfig(data_root=tmp_path), {"HOSTNAME": "box"})
        assert config.host == "box"
        config = apply_env_overrides(SongbookConfig(data_root=tmp_path),
                                     {"HOSTNAME": "box", "HOST": "explicit"})
        assert config.host == "explicit"

    def test_non_numeric_port_ignored(self, tmp_path, caplog):
        with caplog.at_level(logging.WARNING, logger="songbook.config"):
            config = apply_env_overrides(SongbookConfig(data_root=tmp_path, port=7000), {"PORT": "abc"})
        assert config.port == 7000
        assert "non-numeric PORT 'abc'" in caplog.text

    def test_overrides_not_persisted(self, tmp_path):
        config = resolve_config(tmp_path, {"PORT": "9090"})
        assert config.port == 9090
        assert load_config(tmp_path).port == DEFAULT_PORT

    def test_resolve_uses_data_root_env(self, tmp_path):
        root = tmp_path / "elsewhere"
        config = resolve_config(None, {"DATA_ROOT": str(root)})
        assert config.data_root == root
        assert (root / CONFIG_FILENAME).exists()
