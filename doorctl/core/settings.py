"""Settings loading, validation, and persistence for doorctl."""

from __future__ import annotations

import json
import logging
import os
from dataclasses import asdict, fields, replace
from importlib import resources
from pathlib import Path
from typing import Any

import yaml
from jsonschema import ValidationError, validators

from doorctl.core.errors import SettingsLoadError, SettingsValidationError
from doorctl.core.model import Settings

LOGGER = logging.getLogger(__name__)

SETTINGS_KEYS = tuple(f.name for f in fields(Settings))
_MAX_EVENT_LOG_SIZE = 100_000


class ScalarStringLoader(yaml.SafeLoader):
    """YAML loader that rejects duplicate keys and keeps scalars as strings.

    PINs such as ``0123`` must not turn into integers (or octal), so bool, int
    and float resolution is disabled and values are normalized per key.
    """


ScalarStringLoader.yaml_implicit_resolvers = {
    key: list(value) for key, value in yaml.SafeLoader.yaml_implicit_resolvers.items()
}

for first_char, mappings in list(ScalarStringLoader.yaml_implicit_resolvers.items()):
    ScalarStringLoader.yaml_implicit_resolvers[first_char] = [
        (tag, regexp)
        for tag, regexp in mappings
        if tag not in {"tag:yaml.org,2002:bool", "tag:yaml.org,2002:int", "tag:yaml.org,2002:float"}
    ]


def _construct_mapping(loader: ScalarStringLoader, node: yaml.Node, deep: bool = False) -> dict[str, Any]:
    mapping: dict[str, Any] = {}
    for key_node, value_node in node.value:
        key = loader.construct_object(key_node, deep=deep)
        if key in mapping:
            raise SettingsValidationError(f"Duplicate key '{key}' in YAML document")
        mapping[key] = loader.construct_object(value_node, deep=deep)
    return mapping


ScalarStringLoader.add_constructor(
    yaml.resolver.BaseResolver.DEFAULT_MAPPING_TAG,
    _construct_mapping,
)


def _load_schema_validator() -> Any:
    schema_text = resources.files("doorctl.schemas").joinpath("settings.schema.json").read_text(
        encoding="utf-8"
    )
    schema = json.loads(schema_text)
    validator_cls = validators.validator_for(schema)
    validator_cls.check_schema(schema)
    return validator_cls(schema)


def settings_path() -> Path:
    xdg_config = Path(os.environ.get("XDG_CONFIG_HOME", Path.home() / ".config"))
    return xdg_config / "doorctl" / "config.yaml"


def _read_yaml(path: Path) -> dict[str, Any]:
    try:
        content = path.read_text(encoding="utf-8")
    except OSError as exc:
        raise SettingsLoadError(f"Could not read settings file {path}: {exc}") from exc

    try:
        loaded = yaml.load(content, Loader=ScalarStringLoader)
    except yaml.YAMLError as exc:
        raise SettingsValidationError(f"Invalid YAML in {path}: {exc}") from exc

    if loaded is None:
        return {}
    if not isinstance(loaded, dict):
        raise SettingsValidationError(f"Settings file {path} must contain a mapping at root")
    return loaded


def _normalize_bool(value: Any, *, context: str) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, str):
        lowered = value.strip().lower()
        if lowered in {"true", "yes", "on", "1"}:
            return True
        if lowered in {"false", "no", "off", "0"}:
            return False
    raise SettingsValidationError(f"{context} must be boolean true/false")


def _normalize_float(value: Any, *, context: str, minimum: float = 0.0) -> float:
    try:
        number = float(value)
    except (TypeError, ValueError) as exc:
        raise SettingsValidationError(f"{context} must be a number") from exc
    if number < minimum:
        raise SettingsValidationError(f"{context} must be >= {minimum}")
    return number


def _normalize_int(value: Any, *, context: str, minimum: int, maximum: int) -> int:
    if isinstance(value, bool):
        raise SettingsValidationError(f"{context} must be an integer")
    try:
        number = int(value)
    except (TypeError, ValueError) as exc:
        raise SettingsValidationError(f"{context} must be an integer") from exc
    if not minimum <= number <= maximum:
        raise SettingsValidationError(f"{context} must be between {minimum} and {maximum}")
    return number


def _normalize_value(key: str, value: Any) -> Any:
    context = f"settings.{key}"
    if key in {"auto_connect", "auto_auth", "recover_on_discovery_failure"}:
        return _normalize_bool(value, context=context)
    if key in {"auth_delay_s", "connect_timeout_s"}:
        return _normalize_float(value, context=context)
    if key == "event_log_size":
        return _normalize_int(value, context=context, minimum=1, maximum=_MAX_EVENT_LOG_SIZE)
    if key in {"target_name", "pin"}:
        return str(value).strip()
    raise SettingsValidationError(f"Unknown setting '{key}'. Known: {', '.join(SETTINGS_KEYS)}")


def build_settings(doc: dict[str, Any], *, base: Settings | None = None, source: object = "<memory>") -> Settings:
    validator = _load_schema_validator()
    try:
        validator.validate(doc)
    except ValidationError as exc:
        path = ".".join(str(p) for p in exc.path)
        where = f" ({path})" if path else ""
        raise SettingsValidationError(f"Schema validation failed for {source}{where}: {exc.message}") from exc

    changes = {key: _normalize_value(key, value) for key, value in doc.items() if value is not None}
    return replace(base or Settings(), **changes)


def load_settings(path: Path | None = None) -> Settings:
    path = path or settings_path()
    if not path.exists():
        LOGGER.debug("No settings file at %s; using defaults", path)
        return Settings()
    return build_settings(_read_yaml(path), source=path)


def save_settings(settings: Settings, path: Path | None = None) -> Path:
    path = path or settings_path()
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(yaml.safe_dump(asdict(settings), sort_keys=False), encoding="utf-8")
    except OSError as exc:
        raise SettingsLoadError(f"Could not write settings file {path}: {exc}") from exc
    return path


class SettingsStore:
    """Holds the current settings; readers always see the latest value."""

    def __init__(self, settings: Settings | None = None, *, path: Path | None = None) -> None:
        self.path = path
        self._current = settings if settings is not None else load_settings(path)

    @property
    def current(self) -> Settings:
        return self._current

    def __call__(self) -> Settings:
        return self._current

    def update(self, **changes: Any) -> Settings:
        self._current = build_settings(changes, base=self._current)
        return self._current

    def save(self) -> Path:
        return save_settings(self._current, self.path)
