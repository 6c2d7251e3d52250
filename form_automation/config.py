"""
Configuration management for Form Automation
"""
import json
import logging
import os
from dataclasses import dataclass, fields
from pathlib import Path
from typing import Any, Dict, Mapping, Optional

logger = logging.getLogger(__name__)

ENV_PREFIX = "FORM_AUTOMATION_"


@dataclass
class Settings:
    """Runtime knobs for the worker, the browser and the dashboard.

    Durations are in seconds.
    """

    headless: bool = True
    slow_mo_ms: float = 0.0
    navigation_timeout: float = 60.0
    navigation_attempts: int = 3
    navigation_retry_delay: float = 2.0
    field_wait_timeout: float = 5.0
    settle_delay: float = 0.3
    success_timeout: float = 15.0
    upload_timeout: float = 300.0
    submit_settle_delay: float = 2.0
    final_delay: float = 2.0
    host: str = "127.0.0.1"
    port: int = 3000
    upload_dir: str = "uploads"
    log_level: str = "INFO"

    def to_dict(self) -> Dict[str, Any]:
        return {f.name: getattr(self, f.name) for f in fields(self)}


def _coerce(name: str, raw: Any, kind: type) -> Any:
    if kind is bool:
        if isinstance(raw, bool):
            return raw
        text = str(raw).strip().lower()
        if text in ("1", "true", "yes", "on"):
            return True
        if text in ("0", "false", "no", "off"):
            return False
        raise ValueError(f"{name}: expected a boolean, got {raw!r}")
    try:
        return kind(raw)
    except (TypeError, ValueError):
        raise ValueError(f"{name}: expected {kind.__name__}, got {raw!r}") from None


def _find_config_file(config_path: Optional[str]) -> Optional[Path]:
    if config_path is None:
        # Try multiple locations
        possible_paths = [
            Path("config/settings.json"),
            Path("settings.json"),
            Path(__file__).parent.parent / "config" / "settings.json",
        ]
    else:
        possible_paths = [Path(config_path)]

    for path in possible_paths:
        if path.exists():
            return path
    if config_path is not None:
        raise FileNotFoundError(config_path)
    return None


def load_settings(
    config_path: Optional[str] = None,
    environ: Optional[Mapping[str, str]] = None,
) -> Settings:
    """Build :class:`Settings` from defaults, a JSON file and the environment.

    Environment variables (``FORM_AUTOMATION_<FIELD>``) win over the JSON
    file, which wins over the defaults.
    """
    environ = os.environ if environ is None else environ
    types = {f.name: type(f.default) for f in fields(Settings)}
    values: Dict[str, Any] = {}

    path = _find_config_file(config_path)
    if path is not None:
        logger.info("Loading settings from %s", path)
        with open(path, "r", encoding="utf-8") as f:
            data = json.load(f)
        for key, raw in data.items():
            if key not in types:
                logger.warning("Ignoring unknown setting %r in %s", key, path)
                continue
            values[key] = _coerce(key, raw, types[key])

    for name, kind in types.items():
        env_name = ENV_PREFIX + name.upper()
        if env_name in environ:
            values[name] = _coerce(env_name, environ[env_name], kind)

    settings = Settings(**values)
    if settings.navigation_attempts < 1:
        raise ValueError("navigation_attempts must be at least 1")
    return settings
