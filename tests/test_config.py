from __future__ import annotations

from pathlib import Path

import pytest
import yaml

from core.config import build_config, load_config, validate_config
from core.errors import ConfigError


def _write(tmp_path: Path, data: dict) -> Path:
    (tmp_path / "fonts").mkdir(exist_ok=True)
    path = tmp_path / "config.yaml"
    path.write_text(yaml.safe_dump(data), encoding="utf-8")
    return path


def _valid() -> dict:
    return {
        "plex": {"url": "http://plex:32400", "token": "secret"},
        "maintainerr": {"url": "http://maintainerr:6246"},
    }


def test_defaults_are_merged_and_paths_resolved(tmp_path: Path) -> None:
    config = load_config(_write(tmp_path, {**_valid(), "overlay": {"font_size": 80}}))

    assert config["overlay"]["font_size"] == 80
    assert config["overlay"]["back_color"] == "#B20710"
    assert config["behavior"]["kometa_label"] == "Overlay"
    assert config["paths"]["assets"] == tmp_path / "assets"
    assert config["paths"]["state_db"] == tmp_path / "state" / "overlay_state.sqlite"
    validate_config(config)


def test_absolute_paths_are_kept(tmp_path: Path) -> None:
    config = build_config({"paths": {"assets": "/kometa/assets"}}, base_dir=tmp_path)

    assert config["paths"]["assets"] == Path("/kometa/assets")


def test_missing_file_is_a_config_error(tmp_path: Path) -> None:
    with pytest.raises(ConfigError):
        load_config(tmp_path / "nope.yaml")


def test_invalid_yaml_is_a_config_error(tmp_path: Path) -> None:
    path = tmp_path / "config.yaml"
    path.write_text("plex: [unclosed", encoding="utf-8")

    with pytest.raises(ConfigError):
        load_config(path)


def test_every_problem_is_reported(tmp_path: Path) -> None:
    raw = {
        "plex": {"url": "plex:32400", "token": ""},
        "overlay": {
            "back_color": "not-a-colour",
            "font_transparency": 1.5,
            "font_size": 0,
            "horizontal_align": "middle",
            "text_mode": "countdown",
            "days_left_min_unit": "month",
            "days_left_precision": 0,
        },
        "behavior": {"sort_direction": "sideways", "collections_filter": "Leaving Soon"},
        "schedule": {"cron": "every hour"},
    }
    config = load_config(_write(tmp_path, raw))

    with pytest.raises(ConfigError) as excinfo:
        validate_config(config)

    problems = " ".join(excinfo.value.problems)
    for key in (
        "plex.url", "plex.token", "maintainerr.url", "overlay.back_color", "overlay.font_transparency",
        "overlay.font_size", "overlay.horizontal_align", "overlay.text_mode", "overlay.days_left_min_unit",
        "overlay.days_left_precision", "behavior.sort_direction",
        "behavior.collections_filter", "schedule.cron",
    ):
        assert key in problems


def test_restore_only_does_not_need_maintainerr(tmp_path: Path) -> None:
    raw = {"plex": _valid()["plex"], "behavior": {"restore_only": True}}

    validate_config(load_config(_write(tmp_path, raw)))


def test_missing_font_directory_is_reported(tmp_path: Path) -> None:
    config = build_config(_valid(), base_dir=tmp_path)

    with pytest.raises(ConfigError, match="paths.fonts"):
        validate_config(config)
