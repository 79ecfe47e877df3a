"""Config store: config file (master over env) + admin-pushed overrides."""
import json
import logging
import threading
from pathlib import Path
from typing import Any, Iterable, Optional

import yaml
from pydantic import ValidationError as PydanticValidationError

logger = logging.getLogger(__name__)

MASK = "***"


class ConfigUpdateError(ValueError):
    """Rejected override: unknown key or a value the Settings model refuses."""
    pass


def _read_config_file(path: Path) -> dict[str, Any]:
    """Read a YAML or JSON config file into a flat dict. Missing or unreadable files give {}."""
    if not path.exists():
        logger.debug("Config file not found: %s (optional; using env/defaults)", path)
        return {}
    try:
        raw = path.read_text()
    except OSError as e:
        logger.warning("Could not read config file %s: %s", path, e)
        return {}
    suffix = path.suffix.lower()
    try:
        if suffix in (".yaml", ".yml"):
            data = yaml.safe_load(raw)
        elif suffix == ".json":
            data = json.loads(raw)
        else:
            logger.warning("Config file must be .yaml, .yml, or .json: %s", path)
            return {}
    except (yaml.YAMLError, json.JSONDecodeError) as e:
        logger.warning("Invalid config file %s: %s", path, e)
        return {}
    if data is None:
        return {}
    if not isinstance(data, dict):
        logger.warning("Config file must contain a mapping; got %s", type(data).__name__)
        return {}
    return data


class ConfigStore:
    """
    Settings built from env, an optional config file and runtime overrides.

    Precedence: overrides > config file > env > defaults. Overrides are how
    operators move marketplace knobs (swap rate, KYC trade limit, deposit
    bounds) without a restart; a rejected override never replaces the
    current settings.
    """

    def __init__(self, SettingsCls: type, config_file_path: Optional[str] = None):
        self._SettingsCls = SettingsCls
        self._file_path: Optional[Path] = None
        if config_file_path:
            self._file_path = Path(config_file_path).expanduser().resolve()
        self._overrides: dict[str, Any] = {}
        self._current: Optional[Any] = None
        self._lock = threading.RLock()

    def _file_dict(self) -> dict[str, Any]:
        return _read_config_file(self._file_path) if self._file_path else {}

    def _build(self, overrides: dict[str, Any]) -> Any:
        # Env and .env are read by the Settings class itself; file and overrides win over them
        return self._SettingsCls(**{**self._file_dict(), **overrides})

    def load_initial(self) -> None:
        """Build settings once at startup."""
        with self._lock:
            if self._file_path and self._file_path.exists():
                logger.info("Loaded config file (master over env): %s", self._file_path)
            self._current = self._build(self._overrides)

    def get_settings(self) -> Any:
        """Current Settings instance, loading on first use."""
        with self._lock:
            if self._current is None:
                self.load_initial()
            return self._current

    def update(self, overrides: dict[str, Any]) -> list[str]:
        """Validate and apply overrides; returns the keys that changed. Raises ConfigUpdateError."""
        unknown = sorted(set(overrides) - set(self._SettingsCls.model_fields))
        if unknown:
            raise ConfigUpdateError(f"Unknown config keys: {', '.join(unknown)}")
        with self._lock:
            current = self.get_settings()
            try:
                rebuilt = self._build({**self._overrides, **overrides})
            except PydanticValidationError as e:
                logger.warning("Config update rejected; keeping previous config: %s", e)
                raise ConfigUpdateError(str(e)) from e
            changed = [k for k in sorted(overrides) if getattr(current, k) != getattr(rebuilt, k)]
            self._overrides.update(overrides)
            self._current = rebuilt
        return changed

    def reload_from_file(self) -> None:
        """Re-read the config file and reapply saved overrides. Keeps previous on a bad file."""
        with self._lock:
            try:
                self._current = self._build(self._overrides)
            except PydanticValidationError as e:
                logger.warning("Config reload rejected; keeping previous config: %s", e)
                raise ConfigUpdateError(str(e)) from e

    def clear_overrides(self) -> None:
        """Drop pushed overrides and reset to config file + env."""
        with self._lock:
            self._overrides.clear()
            self._current = self._build({})

    def overrides(self) -> dict[str, Any]:
        with self._lock:
            return dict(self._overrides)

    def snapshot(self, secret_fields: Iterable[str] = ()) -> dict[str, Any]:
        """Current settings as a JSON-safe dict with secrets masked."""
        data = self.get_settings().model_dump(mode="json")
        for name in secret_fields:
            if data.get(name):
                data[name] = MASK
        return data
