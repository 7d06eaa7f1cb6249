"""Persisted keyscope settings and per-invocation overrides."""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any

from pydantic import BaseModel, ValidationError

from keyscope.config.models import AppSettings
from keyscope.paths import settings_path
from keyscope.runtime_logging import get_runtime_logger


def section_names() -> tuple[str, ...]:
    """Top-level settings groups addressable as ``<section>.<field>``."""
    return tuple(
        name
        for name, field in AppSettings.model_fields.items()
        if isinstance(field.annotation, type) and issubclass(field.annotation, BaseModel)
    )


def apply_overrides(settings: AppSettings, section: str, **values: Any) -> AppSettings:
    """Return ``settings`` with non-``None`` values replacing fields of one section.

    Only the touched section is re-validated.
    """
    changes = {key: value for key, value in values.items() if value is not None}
    if not changes:
        return settings
    return _replace_fields(settings, section, changes)


def _replace_fields(settings: AppSettings, section: str, changes: dict[str, Any]) -> AppSettings:
    current: BaseModel = getattr(settings, section)
    unknown = sorted(set(changes) - set(type(current).model_fields))
    if unknown:
        raise KeyError(f"Unknown setting path: {section}.{unknown[0]}")
    replaced = type(current).model_validate({**current.model_dump(), **changes})
    return settings.model_copy(update={section: replaced})


class SettingsStore:
    """JSON settings file in the platformdirs config directory."""

    def __init__(self, path: Path | None = None) -> None:
        self.path = path or settings_path()
        self.logger = get_runtime_logger()

    def load(self) -> AppSettings:
        if not self.path.exists():
            settings = AppSettings()
            self.save(settings)
            return settings

        raw = self.path.read_text(encoding="utf-8")
        try:
            return AppSettings.model_validate(json.loads(raw))
        except (json.JSONDecodeError, ValidationError) as exc:
            backup = self.path.with_suffix(".corrupt.json")
            backup.write_text(raw, encoding="utf-8")
            self.logger.warning("settings.corrupt", path=str(self.path), backup=str(backup), error=str(exc))
            settings = AppSettings()
            self.save(settings)
            return settings

    def save(self, settings: AppSettings) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        payload = json.dumps(settings.model_dump(mode="json"), indent=2, sort_keys=True)
        self.path.write_text(f"{payload}\n", encoding="utf-8")

    def update(self, dotted_key: str, value: Any) -> AppSettings:
        """Set ``<section>.<field>`` after validating it against that section's model.

        Nothing is written when the value is rejected.
        """
        section, _, name = dotted_key.partition(".")
        if section not in section_names() or not name or "." in name:
            raise KeyError(f"Unknown setting path: {dotted_key}")

        updated = _replace_fields(self.load(), section, {name: value})
        self.save(updated)
        self.logger.info("settings.updated", key=dotted_key, section=section)
        return updated
