"""Persistent tikzview settings stored as JSON in ~/.tikzview.cfg."""

from __future__ import annotations

import json
import logging
from dataclasses import asdict, dataclass, fields
from pathlib import Path

logger = logging.getLogger(__name__)

CONFIG_FILE_NAME = ".tikzview.cfg"


@dataclass
class TikzViewSettings:
    """User settings.

    Defaults:
        invert_colors_in_dark_mode: True
        render_timeout_seconds: 30.0 (0 disables the timeout)
        tikzjax_path: "" (search the usual locations)
    """
    invert_colors_in_dark_mode: bool = True
    render_timeout_seconds: float = 30.0
    tikzjax_path: str = ""


def config_file_path() -> Path:
    return Path.home() / CONFIG_FILE_NAME


def _coerce(value, default):
    if isinstance(default, bool):
        return value if isinstance(value, bool) else default
    if isinstance(default, float):
        if isinstance(value, (int, float)) and not isinstance(value, bool):
            return float(value)
        return default
    if isinstance(default, str):
        return value if isinstance(value, str) else default
    return default


def load_settings(path: Path | None = None) -> TikzViewSettings:
    """Read settings, falling back to defaults for anything missing or invalid."""
    cfg_path = path if path is not None else config_file_path()
    settings = TikzViewSettings()
    try:
        payload = json.loads(cfg_path.read_text(encoding="utf-8"))
    except FileNotFoundError:
        return settings
    except (OSError, ValueError) as exc:
        logger.warning("ignoring unreadable settings file %s: %s", cfg_path, exc)
        return settings
    if not isinstance(payload, dict):
        return settings

    for item in fields(TikzViewSettings):
        if item.name in payload:
            default = getattr(settings, item.name)
            setattr(settings, item.name, _coerce(payload[item.name], default))
    return settings


def save_settings(settings: TikzViewSettings, path: Path | None = None) -> bool:
    cfg_path = path if path is not None else config_file_path()
    try:
        cfg_path.write_text(json.dumps(asdict(settings), indent=2, sort_keys=True) + "\n", encoding="utf-8")
    except OSError as exc:
        # Persistence is best-effort; unwritable home directories happen.
        logger.warning("could not write settings to %s: %s", cfg_path, exc)
        return False
    return True
