"""User settings for annotation display, authorship and timing."""

import json
from pathlib import Path
from typing import Literal

from pydantic import BaseModel, Field, ValidationError

from annotated.aggregate import FilterPolicy
from annotated.atomic_write import atomic_write_json

SETTINGS_FILENAME = ".annotated.json"

SortMode = Literal["line", "oldest", "newest"]


class Settings(BaseModel):
    """Workspace settings, stored as JSON next to the annotated documents."""

    default_author: str = Field(default="unknown", min_length=1, max_length=200)
    hide_resolved_by_default: bool = True
    show_gutter_indicators: bool = True
    max_comments_in_popup: int = Field(default=3, ge=1)
    default_sort_mode: SortMode = "line"
    debounce_seconds: float = Field(default=2.0, gt=0, description="Live tracker quiet period")
    self_save_hold_seconds: float = Field(
        default=2.0, ge=0, description="How long self-originated writes are ignored"
    )
    relocation_radius: int = Field(default=50, ge=0)

    def filter_policy(self) -> FilterPolicy:
        return FilterPolicy(hide_resolved=self.hide_resolved_by_default)


def settings_path(root: Path) -> Path:
    return root / SETTINGS_FILENAME


def load_settings(path: Path) -> Settings:
    """
    Load settings, filling unspecified fields with defaults.

    Args:
        path: Settings JSON file

    Returns:
        Settings (all defaults when the file does not exist)

    Raises:
        ValueError: If the file is not valid JSON or has invalid values
    """
    if not path.exists():
        return Settings()
    try:
        with open(path, encoding="utf-8") as f:
            data = json.load(f)
    except json.JSONDecodeError as e:
        raise ValueError(f"Invalid JSON in settings file {path}: {e}") from e
    if not isinstance(data, dict):
        raise ValueError(f"Settings file {path} must contain a JSON object")
    try:
        return Settings.model_validate(data)
    except ValidationError as e:
        raise ValueError(f"Invalid settings in {path}: {e}") from e


def save_settings(settings: Settings, path: Path) -> None:
    atomic_write_json(settings.model_dump(mode="json"), path)
