import json

import pytest

from oddsave.config import AppConfig, ConfigStore, DEFAULT_MAX_BACKUPS, load_config, save_config


def test_app_config_default():
    config = AppConfig()
    assert config.save_path is None
    assert not config.auto_launch_game
    assert not config.auto_close
    assert config.max_backups_per_game == DEFAULT_MAX_BACKUPS == 100


def test_load_config_missing_file_gives_defaults(tmp_path):
    assert load_config(str(tmp_path / "missing.json")) == AppConfig()


def test_save_and_load_round_trip(tmp_path):
    path = str(tmp_path / "config.json")
    config = AppConfig(save_path="TestPath", auto_launch_game=True, auto_close=False, max_backups_per_game=200)

    save_config(config, path)

    with open(path) as f:
        data = json.load(f)
    assert data == {"save_path": "TestPath", "auto_launch_game": True,
                    "auto_close": False, "max_backups_per_game": 200}
    assert load_config(path) == config


def test_load_config_merges_older_files_with_defaults(tmp_path):
    path = tmp_path / "config.json"
    path.write_text(json.dumps({"save_path": "C:\\Saves", "theme": "dark"}))

    config = load_config(str(path))

    assert config.save_path == "C:\\Saves"
    assert config.max_backups_per_game == DEFAULT_MAX_BACKUPS


def test_load_config_broken_file_gives_defaults(tmp_path):
    path = tmp_path / "config.json"
    path.write_text("{not json")

    assert load_config(str(path)) == AppConfig()


@pytest.mark.parametrize("raw, expected", [(-5, 0), ("12", 12), ("lots", DEFAULT_MAX_BACKUPS)])
def test_max_backups_is_sanitized(raw, expected):
    assert AppConfig.from_dict({"max_backups_per_game": raw}).max_backups_per_game == expected


def test_config_store_update_persists_before_swapping(tmp_path):
    path = str(tmp_path / "config.json")
    store = ConfigStore(path)

    updated = store.update(max_backups_per_game=3, auto_close=True)

    assert updated.max_backups_per_game == 3
    assert store.max_backups_per_game == 3
    assert load_config(path).auto_close is True


def test_config_store_keeps_old_value_when_save_fails(tmp_path):
    store = ConfigStore(str(tmp_path / "no-such-dir" / "config.json"), AppConfig())

    with pytest.raises(OSError):
        store.update(max_backups_per_game=7)

    assert store.get().max_backups_per_game == DEFAULT_MAX_BACKUPS


def test_config_store_returns_copies(tmp_path):
    store = ConfigStore(str(tmp_path / "config.json"), AppConfig())
    config = store.get()
    config.save_path = "elsewhere"

    assert store.get().save_path is None
