from __future__ import annotations

import json
from pathlib import Path
from typing import Any, Optional

import yaml


def _check_version(payload: Any, expected_version: Optional[Any], key: str, source: Path) -> Any:
    if expected_version is None or not isinstance(payload, dict):
        return payload
    version = payload.get(key)
    if version is None:
        return payload
    if str(version) != str(expected_version):
        raise ValueError(f"{source.name}: version mismatch, expected {expected_version}, got {version}")
    return payload


def load_json_fixture(path: Path, expected_version: Optional[str] = None) -> Any:
    payload = json.loads(path.read_text(encoding="utf-8"))
    return _check_version(payload, expected_version, "_fixture_version", path)


def load_fixture(base_dir: Path, name: str, expected_version: Optional[str] = None) -> Any:
    return load_json_fixture(base_dir / name, expected_version=expected_version)


def load_versioned_yaml(path: Path, expected_version: Optional[Any] = None) -> Any:
    with path.open("r", encoding="utf-8") as handle:
        payload = yaml.safe_load(handle) or {}
    return _check_version(payload, expected_version, "version", path)


__all__ = ["load_fixture", "load_json_fixture", "load_versioned_yaml"]
