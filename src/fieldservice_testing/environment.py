"""Read-only view over environment variables.

Mode detection and configuration never read ``os.environ`` directly; they
receive an ``EnvironmentView``. Runs build one from the process environment
layered over the env files; unit tests build one from a plain dict.

Layers, lowest first:
- `.env.defaults`: catalog of every key with its default (version-controlled)
- `.env`: local overrides, any subset of the keys
- the process environment

Each file is read from the repo root and then from the working directory.
"""
from __future__ import annotations

import os
import re
from functools import lru_cache
from pathlib import Path
from typing import Dict, Iterator, List, Mapping, Optional, Tuple

from fieldservice_testing.errors import ConfigurationError

REPO_ROOT = Path(__file__).resolve().parent.parent.parent

ENV_FILES = (".env.defaults", ".env")

_TRUE_VALUES = {"1", "true", "yes", "on"}
_FALSE_VALUES = {"0", "false", "no", "off"}
_KEY = re.compile(r"^[A-Z][A-Z0-9_]*$")


def read_env_file(path: Path) -> Dict[str, str]:
    """Parse ``KEY=value`` lines.

    Blank lines and ``#`` comments are skipped, an ``export`` prefix is
    allowed and one pair of matching quotes around the value is removed.

    Raises:
        ConfigurationError: A line is not ``KEY=value`` or the key is not
            an upper-case variable name
    """
    values: Dict[str, str] = {}
    for number, raw in enumerate(path.read_text(encoding="utf-8").splitlines(), start=1):
        line = raw.strip()
        if not line or line.startswith("#"):
            continue
        if line.startswith("export "):
            line = line[len("export "):].lstrip()
        key, separator, value = line.partition("=")
        key = key.strip()
        if not separator or not _KEY.match(key):
            raise ConfigurationError(f"{path}:{number}: expected KEY=value, got {raw.strip()!r}", key=key or None)
        value = value.strip()
        if len(value) >= 2 and value[0] in ("\"", "'") and value[-1] == value[0]:
            value = value[1:-1]
        values[key] = value
    return values


def search_dirs() -> Tuple[Path, ...]:
    dirs = [REPO_ROOT]
    try:
        cwd = Path.cwd()
    except OSError:
        # working directory was removed under us
        return tuple(dirs)
    if cwd.resolve() != REPO_ROOT.resolve():
        dirs.append(cwd)
    return tuple(dirs)


@lru_cache(maxsize=8)
def load_env_files(dirs: Tuple[Path, ...]) -> Dict[str, str]:
    """Merge every env file found in ``dirs``, `.env.defaults` before `.env`."""
    merged: Dict[str, str] = {}
    for name in ENV_FILES:
        for directory in dirs:
            path = directory / name
            if path.is_file():
                merged.update(read_env_file(path))
    return merged


class EnvironmentView(Mapping[str, str]):
    """Immutable snapshot of configuration variables with typed getters."""

    def __init__(self, values: Optional[Mapping[str, str]] = None) -> None:
        self._values: Dict[str, str] = dict(values or {})

    @classmethod
    def from_process(cls, include_files: bool = True, dirs: Optional[Tuple[Path, ...]] = None) -> "EnvironmentView":
        """Snapshot ``os.environ`` over the env files found in ``dirs``."""
        values: Dict[str, str] = dict(load_env_files(dirs or search_dirs())) if include_files else {}
        values.update(os.environ)
        return cls(values)

    def with_overrides(self, **overrides: Optional[str]) -> "EnvironmentView":
        """Return a new view; ``None`` values remove the key."""
        values = dict(self._values)
        for key, value in overrides.items():
            if value is None:
                values.pop(key, None)
            else:
                values[key] = value
        return EnvironmentView(values)

    # ---- Mapping protocol --------------------------------------------------
    def __getitem__(self, key: str) -> str:
        return self._values[key]

    def __iter__(self) -> Iterator[str]:
        return iter(self._values)

    def __len__(self) -> int:
        return len(self._values)

    def __repr__(self) -> str:
        return f"EnvironmentView({len(self._values)} keys)"

    # ---- typed getters -------------------------------------------------------
    def get(self, key: str, default: Optional[str] = None) -> Optional[str]:  # type: ignore[override]
        """Return the value, treating empty strings as unset."""
        value = self._values.get(key)
        if value is None or value.strip() == "":
            return default
        return value.strip()

    def get_bool(self, key: str, default: bool = False) -> bool:
        value = self.get(key)
        if value is None:
            return default
        lowered = value.lower()
        if lowered in _TRUE_VALUES:
            return True
        if lowered in _FALSE_VALUES:
            return False
        raise ConfigurationError(f"{key} must be a boolean, got {value!r}", key=key, value=value)

    def get_int(self, key: str, default: int) -> int:
        value = self.get(key)
        if value is None:
            return default
        try:
            return int(value)
        except ValueError:
            raise ConfigurationError(f"{key} must be an integer, got {value!r}", key=key, value=value)

    def get_float(self, key: str, default: float) -> float:
        value = self.get(key)
        if value is None:
            return default
        try:
            return float(value)
        except ValueError:
            raise ConfigurationError(f"{key} must be a number, got {value!r}", key=key, value=value)

    def get_list(self, key: str, default: Optional[List[str]] = None, separator: str = ",") -> List[str]:
        value = self.get(key)
        if value is None:
            return list(default or [])
        return [item.strip() for item in value.split(separator) if item.strip()]
