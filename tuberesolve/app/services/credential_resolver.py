from __future__ import annotations

import logging
from pathlib import Path
from typing import Any, cast

import yaml

from tuberesolve.app.models.contracts import Credential

LOGGER = logging.getLogger("tuberesolve.credentials")

OVERRIDE_KEY = "api_key"


class CredentialResolver:
    def __init__(self, *, override: str | None, default: str | None) -> None:
        self._override = _normalize_optional_text(override)
        self._default = _normalize_optional_text(default)

    def resolve(self) -> Credential:
        if self._override is not None:
            return Credential(value=self._override, source="override")
        if self._default is not None:
            return Credential(value=self._default, source="default")
        return Credential.none()


def load_credential_override(path: Path) -> str | None:
    if not path.is_file():
        return None
    try:
        raw = path.read_text(encoding="utf-8")
    except OSError:
        LOGGER.warning("credential override unreadable path=%s", path, exc_info=True)
        return None
    try:
        parsed = yaml.safe_load(raw)
    except yaml.YAMLError:
        LOGGER.warning("credential override is not valid yaml path=%s", path)
        return None
    if not isinstance(parsed, dict):
        return None
    data = cast(dict[Any, Any], parsed)
    return _normalize_optional_text(data.get(OVERRIDE_KEY))


def save_credential_override(path: Path, value: str) -> None:
    normalized = _normalize_optional_text(value)
    if normalized is None:
        raise ValueError("Credential override must not be empty.")
    path.parent.mkdir(parents=True, exist_ok=True)
    with open(path, "w", encoding="utf-8") as handle:
        yaml.safe_dump({OVERRIDE_KEY: normalized}, handle)


def clear_credential_override(path: Path) -> bool:
    if not path.exists():
        return False
    path.unlink()
    return True


def _normalize_optional_text(value: Any) -> str | None:
    if not isinstance(value, str):
        return None
    stripped = value.strip()
    if stripped:
        return stripped
    return None
