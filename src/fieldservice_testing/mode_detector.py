"""Decide which mode a scenario runs in.

Detection is a pure function of the scenario tags and an ``EnvironmentView``.
Precedence: TEST_MODE override, then the scenario tag, then the ambient
APP_ENV, then ISOLATED.
"""
from __future__ import annotations

import logging
from typing import Iterable, Optional, Set

from fieldservice_testing.environment import EnvironmentView
from fieldservice_testing.errors import AmbiguousModeError, ConfigurationError
from fieldservice_testing.models import ModeDetectionResult, TestMode

logger = logging.getLogger(__name__)

OVERRIDE_KEY = "TEST_MODE"
DUAL_TARGET_KEY = "DUAL_MODE_TARGET"
AMBIENT_KEY = "APP_ENV"

_AMBIENT_MODES = {
    "production": TestMode.PRODUCTION,
    "prod": TestMode.PRODUCTION,
    "test": TestMode.ISOLATED,
    "testing": TestMode.ISOLATED,
    "isolated": TestMode.ISOLATED,
    "ci": TestMode.ISOLATED,
    "local": TestMode.ISOLATED,
}


def mode_tags(tags: Iterable[str]) -> Set[TestMode]:
    """Return the modes named by ``tags``; other tags are ignored."""
    found: Set[TestMode] = set()
    for tag in tags:
        try:
            found.add(TestMode.parse(tag))
        except ValueError:
            continue
    return found


class ModeDetector:
    def detect(self, tags: Iterable[str], env: EnvironmentView) -> TestMode:
        return self.detect_with_source(tags, env).mode

    def detect_with_source(
        self,
        tags: Iterable[str],
        env: EnvironmentView,
        scenario: Optional[str] = None,
    ) -> ModeDetectionResult:
        """Detect the declared mode and report which rule decided it.

        Raises:
            AmbiguousModeError: More than one distinct mode tag
            ConfigurationError: TEST_MODE names no mode
        """
        tags = list(tags)
        tagged = mode_tags(tags)
        if len(tagged) > 1:
            raise AmbiguousModeError([f"@{mode.value}" for mode in tagged], scenario=scenario)
        tag_mode = next(iter(tagged)) if tagged else None

        override = self._parse_env_mode(env, OVERRIDE_KEY)
        if override is not None:
            if override is TestMode.DUAL and tag_mode is not None:
                return ModeDetectionResult(tag_mode, "tags")
            return ModeDetectionResult(override, "environment")

        if tag_mode is not None:
            return ModeDetectionResult(tag_mode, "tags")

        ambient = env.get(AMBIENT_KEY)
        if ambient is not None:
            ambient_mode = _AMBIENT_MODES.get(ambient.lower())
            if ambient_mode is not None:
                return ModeDetectionResult(ambient_mode, "ambient")

        reason = "no TEST_MODE, mode tag or recognised APP_ENV"
        logger.warning("[MODE] %s for %s, defaulting to isolated", reason, scenario or "scenario")
        return ModeDetectionResult(TestMode.ISOLATED, "default", fallback_reason=reason)

    def resolve(self, tags: Iterable[str], env: EnvironmentView, scenario: Optional[str] = None) -> TestMode:
        """Return the concrete mode to execute in (never DUAL)."""
        mode = self.detect_with_source(tags, env, scenario=scenario).mode
        if mode.is_concrete:
            return mode

        target = self._parse_env_mode(env, DUAL_TARGET_KEY)
        if target is not None:
            if not target.is_concrete:
                raise ConfigurationError(
                    f"{DUAL_TARGET_KEY} must be isolated or production, got {target.value!r}",
                    key=DUAL_TARGET_KEY,
                    value=target.value,
                )
            return target

        ambient = env.get(AMBIENT_KEY)
        if ambient is not None and ambient.lower() in _AMBIENT_MODES:
            return _AMBIENT_MODES[ambient.lower()]
        return TestMode.ISOLATED

    @staticmethod
    def is_compatible(mode: TestMode, tags: Iterable[str]) -> bool:
        """False when a scenario tagged for one concrete mode runs in the other."""
        tagged = mode_tags(tags)
        if not tagged or TestMode.DUAL in tagged or mode is TestMode.DUAL:
            return True
        return mode in tagged

    @staticmethod
    def fallback_mode(mode: TestMode) -> Optional[TestMode]:
        if mode is TestMode.ISOLATED:
            return None
        return TestMode.ISOLATED

    @staticmethod
    def _parse_env_mode(env: EnvironmentView, key: str) -> Optional[TestMode]:
        value = env.get(key)
        if value is None:
            return None
        try:
            return TestMode.parse(value)
        except ValueError:
            raise ConfigurationError(
                f"{key} must be one of isolated, production, dual; got {value!r}",
                key=key,
                value=value,
            )
