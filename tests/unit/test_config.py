"""Tests for config.py: layered client configuration."""

from __future__ import annotations

from pathlib import Path

import pytest

from wirekvs.config import (
    ClientConfig,
    Credentials,
    SyncConfig,
    get_config,
    get_wirekvs_dir,
    reset_config,
)


def _write_config(directory: Path, text: str) -> Path:
    directory.mkdir(parents=True, exist_ok=True)
    path = directory / "config.toml"
    path.write_text(text, encoding="utf-8")
    return path


# ── SyncConfig ───────────────────────────────────────────────────


class TestSyncConfigDefaults:
    def test_defaults(self) -> None:
        config = SyncConfig()
        assert config.api_base_url == "https://kvs.wireway.ch/v2"
        assert config.events_base_url == "wss://kvs.wireway.ch/events"
        assert config.backoff_base == 1.0
        assert config.backoff_cap == 60.0
        assert config.give_up_after == 10
        assert config.subscriber_queue_size == 100

    def test_defaults_are_valid(self) -> None:
        config = SyncConfig()
        assert config.validate() is config

    @pytest.mark.parametrize(
        "overrides",
        [
            {"request_timeout": 0},
            {"heartbeat_interval": -1},
            {"backoff_cap": 0},
            {"backoff_multiplier": 0.5},
            {"backoff_jitter": 1.0},
            {"backoff_jitter": -0.1},
            {"give_up_after": -1},
            {"subscriber_queue_size": 0},
        ],
    )
    def test_validate_rejects(self, overrides: dict) -> None:
        with pytest.raises(ValueError):
            SyncConfig(**overrides).validate()


class TestSyncConfigFromDict:
    def test_round_trip_of_overrides(self) -> None:
        config = SyncConfig.from_dict({"backoff_cap": 5, "subscriber_queue_size": "7"})
        assert config.backoff_cap == 5.0
        assert isinstance(config.backoff_cap, float)
        assert config.subscriber_queue_size == 7

    def test_unknown_keys_ignored(self) -> None:
        assert SyncConfig.from_dict({"nonsense": 1}) == SyncConfig()

    def test_invalid_values_ignored(self, caplog: pytest.LogCaptureFixture) -> None:
        config = SyncConfig.from_dict({"connect_timeout": "soon"})
        assert config.connect_timeout == SyncConfig().connect_timeout
        assert "connect_timeout" in caplog.text

    def test_to_dict(self) -> None:
        data = SyncConfig().to_dict()
        assert data["heartbeat_interval"] == 15.0
        assert set(data) >= {"api_base_url", "give_up_after"}


class TestSyncConfigEnv:
    def test_env_overrides(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("WIREKVS_API_URL", "http://localhost:8000/v2")
        monkeypatch.setenv("WIREKVS_BACKOFF_CAP", "12.5")
        monkeypatch.setenv("WIREKVS_GIVE_UP_AFTER", "0")
        monkeypatch.setenv("WIREKVS_QUEUE_SIZE", "8")

        config = SyncConfig.from_env()

        assert config.api_base_url == "http://localhost:8000/v2"
        assert config.backoff_cap == 12.5
        assert config.give_up_after == 0
        assert config.subscriber_queue_size == 8

    def test_no_env_returns_same_instance(self) -> None:
        config = SyncConfig(backoff_base=3.0)
        assert config.with_env() is config

    def test_env_wins_over_existing_values(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("WIREKVS_CONNECT_TIMEOUT", "2")
        config = SyncConfig(connect_timeout=20.0, backoff_base=3.0).with_env()
        assert config.connect_timeout == 2.0
        assert config.backoff_base == 3.0


# ── Credentials ──────────────────────────────────────────────────


class TestCredentials:
    def test_from_dict(self) -> None:
        creds = Credentials.from_dict({"token": "t", "database_id": "d", "access_key": "k"})
        assert (creds.token, creds.database_id, creds.access_key) == ("t", "d", "k")

    def test_env_overrides(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("WIREKVS_ACCESS_KEY", "from-env")
        creds = Credentials(database_id="d", access_key="from-file").with_env()
        assert creds.database_id == "d"
        assert creds.access_key == "from-env"


# ── ClientConfig ─────────────────────────────────────────────────


class TestClientConfigLoad:
    def test_missing_file_gives_defaults(self, tmp_path: Path) -> None:
        config = ClientConfig.load(tmp_path / "nothing-here")
        assert config.sync == SyncConfig()
        assert config.credentials == Credentials()

    def test_reads_toml_tables(self, tmp_path: Path) -> None:
        _write_config(
            tmp_path,
            '[sync]\nbackoff_cap = 30\nheartbeat_interval = 5.0\n\n'
            '[credentials]\ndatabase_id = "db-1"\naccess_key = "secret"\n',
        )

        config = ClientConfig.load(tmp_path)

        assert config.sync.backoff_cap == 30.0
        assert config.sync.heartbeat_interval == 5.0
        assert config.credentials.database_id == "db-1"
        assert config.credentials.access_key == "secret"

    def test_env_beats_file(self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
        _write_config(tmp_path, '[sync]\nbackoff_cap = 30\n[credentials]\ntoken = "file"\n')
        monkeypatch.setenv("WIREKVS_BACKOFF_CAP", "4")
        monkeypatch.setenv("WIREKVS_TOKEN", "env")

        config = ClientConfig.load(tmp_path)

        assert config.sync.backoff_cap == 4.0
        assert config.credentials.token == "env"

    def test_corrupt_file_falls_back(
        self, tmp_path: Path, caplog: pytest.LogCaptureFixture
    ) -> None:
        _write_config(tmp_path, "[sync\nthis is not toml")

        config = ClientConfig.load(tmp_path)

        assert config.sync == SyncConfig()
        assert "Failed to read" in caplog.text

    def test_default_dir_from_env(self, tmp_path: Path) -> None:
        # WIREKVS_DIR is pointed at tmp_path / "wirekvs" by the autouse fixture
        assert get_wirekvs_dir() == tmp_path / "wirekvs"
        _write_config(tmp_path / "wirekvs", '[credentials]\ntoken = "t"\n')
        assert ClientConfig.load().credentials.token == "t"


class TestConfigSingleton:
    def test_cached_until_reset(self, tmp_path: Path) -> None:
        first = get_config()
        assert get_config() is first

        _write_config(tmp_path / "wirekvs", '[credentials]\ntoken = "new"\n')
        assert get_config().credentials.token is None

        reset_config()
        assert get_config().credentials.token == "new"

    def test_home_default(self, monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
        monkeypatch.delenv("WIREKVS_DIR")
        monkeypatch.setattr(Path, "home", lambda: tmp_path)
        assert get_wirekvs_dir() == tmp_path / ".wirekvs"
