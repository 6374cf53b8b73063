from __future__ import annotations

from pathlib import Path

import pytest

from doorctl.core.errors import SettingsValidationError
from doorctl.core.model import Settings
from doorctl.core.settings import SettingsStore, load_settings, save_settings, settings_path


def _write_settings(path: Path, content: str) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(content, encoding="utf-8")


@pytest.fixture
def config_home(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> Path:
    monkeypatch.setenv("XDG_CONFIG_HOME", str(tmp_path / "cfg"))
    return tmp_path / "cfg"


def test_missing_file_yields_defaults(config_home: Path) -> None:
    assert load_settings() == Settings()
    assert settings_path() == config_home / "doorctl" / "config.yaml"


def test_load_settings_normalizes_values(config_home: Path) -> None:
    _write_settings(
        config_home / "doorctl" / "config.yaml",
        """
target_name: DoorLock
auto_connect: false
auto_auth: yes
pin: 0123
auth_delay_s: 0.5
event_log_size: 50
""",
    )

    settings = load_settings()
    assert settings.target_name == "DoorLock"
    assert settings.auto_connect is False
    assert settings.auto_auth is True
    assert settings.pin == "0123"
    assert settings.auth_delay_s == 0.5
    assert settings.event_log_size == 50
    assert settings.recover_on_discovery_failure is False


def test_unknown_keys_rejected(config_home: Path) -> None:
    _write_settings(config_home / "doorctl" / "config.yaml", "target: DoorLock\n")

    with pytest.raises(SettingsValidationError):
        load_settings()


def test_duplicate_yaml_keys_rejected(config_home: Path) -> None:
    _write_settings(
        config_home / "doorctl" / "config.yaml",
        """
pin: "1111"
pin: "2222"
""",
    )

    with pytest.raises(SettingsValidationError):
        load_settings()


def test_bad_values_rejected(config_home: Path) -> None:
    _write_settings(config_home / "doorctl" / "config.yaml", "auto_connect: maybe\n")
    with pytest.raises(SettingsValidationError):
        load_settings()

    _write_settings(config_home / "doorctl" / "config.yaml", "event_log_size: 0\n")
    with pytest.raises(SettingsValidationError):
        load_settings()


def test_non_mapping_root_rejected(config_home: Path) -> None:
    _write_settings(config_home / "doorctl" / "config.yaml", "- a\n- b\n")
    with pytest.raises(SettingsValidationError):
        load_settings()


def test_save_and_reload_keeps_pin_as_text(config_home: Path) -> None:
    path = save_settings(Settings(target_name="DoorLock", pin="0042", auto_auth=False))

    assert path == config_home / "doorctl" / "config.yaml"
    reloaded = load_settings()
    assert reloaded.pin == "0042"
    assert reloaded.auto_auth is False
    assert reloaded.target_name == "DoorLock"


def test_store_update_is_validated_and_visible_to_readers(config_home: Path) -> None:
    store = SettingsStore(Settings())
    reader = store

    store.update(target_name="DoorLock", pin=1234)
    assert reader().target_name == "DoorLock"
    assert reader().pin == "1234"

    with pytest.raises(SettingsValidationError):
        store.update(connect_timeout_s="-1")
    assert store.current.connect_timeout_s == 10.0
