"""Configuration helpers for the overlay manager."""
from __future__ import annotations

import copy
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, List
from urllib.parse import urlparse

import yaml
from PIL import ImageColor
from croniter import croniter

from core.errors import ConfigError

_DEFAULT_CONFIG_PATH = Path("config.yaml")

DEFAULTS: Dict[str, Any] = {
    "plex": {"url": "", "token": ""},
    "maintainerr": {"url": ""},
    "paths": {
        "assets": "assets",
        "backups": "backups",
        "temp": "temp",
        "fonts": "fonts",
        "state_db": "state/overlay_state.sqlite",
        "logs": "logs",
    },
    "overlay": {
        "font_name": "AvenirNextLTPro-Bold",
        "font_color": "#FFFFFF",
        "font_transparency": 1.0,
        "back_color": "#B20710",
        "back_transparency": 1.0,
        "font_size": 65,
        "padding": 15,
        "back_radius": 20,
        "horizontal_offset": 0,
        "horizontal_align": "center",
        "vertical_offset": 0,
        "vertical_align": "bottom",
        "back_width": 1920,
        "back_height": 100,
        "text_mode": "date",
        "text": "Leaving",
        "uppercase": True,
        "date_format": "%b {day}",
        "day_suffix": True,
        "days_left_max_unit": "week",
        "days_left_min_unit": "day",
        "days_left_precision": 1,
    },
    "behavior": {
        "reapply_overlays": False,
        "overlay_show_seasons": False,
        "overlay_season_episodes": False,
        "manage_kometa_label": False,
        "kometa_label": "Overlay",
        "restore_only": False,
        "collections_filter": [],
        "sort_collections": False,
        "sort_direction": "asc",
    },
    "schedule": {"cron": "30 * * * *", "run_on_startup": True},
    "logging": {"level": "INFO"},
}

_PATH_KEYS = ("assets", "backups", "temp", "fonts", "state_db", "logs")


def _merge(base: Dict[str, Any], override: Dict[str, Any]) -> Dict[str, Any]:
    merged = copy.deepcopy(base)
    for key, value in (override or {}).items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = _merge(merged[key], value)
        else:
            merged[key] = value
    return merged


def load_config(path: str | Path = _DEFAULT_CONFIG_PATH) -> Dict[str, Any]:
    """Load configuration from YAML, fill in defaults and resolve relative paths."""
    path = Path(path)
    try:
        with path.open("r", encoding="utf-8") as fh:
            raw = yaml.safe_load(fh) or {}
    except FileNotFoundError as e:
        raise ConfigError([f"Config file not found: {path}"]) from e
    except yaml.YAMLError as e:
        raise ConfigError([f"Config file {path} is not valid YAML: {e}"]) from e

    if not isinstance(raw, dict):
        raise ConfigError([f"Config file {path} must contain a mapping"])

    return build_config(raw, base_dir=path.resolve().parent)


def build_config(raw: Dict[str, Any], base_dir: Path | str = ".") -> Dict[str, Any]:
    config = _merge(DEFAULTS, raw)
    base_dir = Path(base_dir)
    paths = config["paths"]
    for key in _PATH_KEYS:
        value = Path(str(paths[key])).expanduser()
        paths[key] = value if value.is_absolute() else (base_dir / value)
    return config


def validate_config(config: Dict[str, Any]) -> None:
    """Raise ConfigError listing every problem found; return quietly when usable."""
    problems: List[str] = []
    plex = config.get("plex", {})
    behavior = config.get("behavior", {})
    overlay = config.get("overlay", {})

    _check_url(plex.get("url"), "plex.url", problems)
    if not plex.get("token"):
        problems.append("plex.token must be provided.")
    if not behavior.get("restore_only"):
        _check_url(config.get("maintainerr", {}).get("url"), "maintainerr.url", problems)

    for key in ("font_color", "back_color"):
        try:
            ImageColor.getrgb(str(overlay.get(key)))
        except ValueError:
            problems.append(f"overlay.{key} '{overlay.get(key)}' is not a valid color string.")

    for key in ("font_transparency", "back_transparency"):
        if not _is_number(overlay.get(key)) or not 0.0 <= float(overlay[key]) <= 1.0:
            problems.append(f"overlay.{key} must be between 0.0 and 1.0.")

    if not _is_number(overlay.get("font_size")) or not 0 < float(overlay["font_size"]) <= 500:
        problems.append("overlay.font_size must be greater than 0 and at most 500.")

    for key in ("padding", "back_radius", "horizontal_offset", "vertical_offset", "back_width", "back_height"):
        if not _is_number(overlay.get(key)):
            problems.append(f"overlay.{key} must be a number.")
    for key in ("back_width", "back_height", "padding", "back_radius"):
        if _is_number(overlay.get(key)) and float(overlay[key]) < 0:
            problems.append(f"overlay.{key} must not be negative.")

    _check_choice(overlay.get("horizontal_align"), ("left", "center", "right"), "overlay.horizontal_align", problems)
    _check_choice(overlay.get("vertical_align"), ("top", "center", "bottom"), "overlay.vertical_align", problems)
    _check_choice(overlay.get("text_mode"), ("date", "days_left"), "overlay.text_mode", problems)
    _check_choice(overlay.get("days_left_max_unit"), ("day", "week"), "overlay.days_left_max_unit", problems)
    _check_choice(overlay.get("days_left_min_unit"), ("day", "week"), "overlay.days_left_min_unit", problems)
    if str(overlay.get("days_left_min_unit")).lower() == "week" and str(overlay.get("days_left_max_unit")).lower() == "day":
        problems.append("overlay.days_left_min_unit must not be larger than overlay.days_left_max_unit.")
    precision = overlay.get("days_left_precision")
    if not isinstance(precision, int) or isinstance(precision, bool) or precision < 1:
        problems.append("overlay.days_left_precision must be a whole number of at least 1.")
    _check_choice(behavior.get("sort_direction"), ("asc", "desc"), "behavior.sort_direction", problems)

    try:
        datetime(2024, 1, 1).strftime(str(overlay.get("date_format")).replace("{day}", "1"))
    except ValueError:
        problems.append(f"overlay.date_format '{overlay.get('date_format')}' is not a valid date format.")

    if not isinstance(behavior.get("collections_filter"), list):
        problems.append("behavior.collections_filter must be a list of collection titles.")

    cron = config.get("schedule", {}).get("cron")
    if not isinstance(cron, str) or not croniter.is_valid(cron):
        problems.append(f"schedule.cron '{cron}' is not a valid cron expression.")

    fonts = Path(config["paths"]["fonts"])
    if not fonts.is_dir():
        problems.append(f"paths.fonts does not exist. Path: {fonts}")

    if problems:
        raise ConfigError(problems)


def _check_url(url: Any, name: str, problems: List[str]) -> None:
    if not url:
        problems.append(f"{name} must be provided.")
        return
    parsed = urlparse(str(url))
    if parsed.scheme not in ("http", "https") or not parsed.netloc:
        problems.append(f"{name} is not a properly formatted URL.")


def _check_choice(value: Any, choices: tuple, name: str, problems: List[str]) -> None:
    if str(value).lower() not in choices:
        problems.append(f"{name} '{value}' must be one of: {', '.join(choices)}.")


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)
