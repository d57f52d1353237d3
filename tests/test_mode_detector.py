"""
Mode detection tests.

Precedence: TEST_MODE override > scenario tag > APP_ENV > isolated fallback.
Detection is pure: the same tags and environment always give the same mode.
"""
import logging

import pytest

from fieldservice_testing.errors import AmbiguousModeError, ConfigurationError
from fieldservice_testing.mode_detector import ModeDetector
from fieldservice_testing.models import TestMode


@pytest.fixture
def detector():
    return ModeDetector()


class TestPrecedence:
    def test_override_beats_tag(self, detector, make_env):
        env = make_env(TEST_MODE="production")
        assert detector.detect(["@isolated"], env) is TestMode.PRODUCTION

    def test_tag_used_without_override(self, detector, make_env):
        assert detector.detect(["@production"], make_env()) is TestMode.PRODUCTION
        assert detector.detect(["isolated"], make_env()) is TestMode.ISOLATED

    def test_tags_are_case_insensitive(self, detector, make_env):
        assert detector.detect(["@Production"], make_env()) is TestMode.PRODUCTION

    def test_non_mode_tags_are_ignored(self, detector, make_env):
        env = make_env(APP_ENV="production")
        result = detector.detect_with_source(["@smoke", "@customers"], env)
        assert result.mode is TestMode.PRODUCTION
        assert result.source == "ambient"

    @pytest.mark.parametrize("value, expected", [
        ("production", TestMode.PRODUCTION),
        ("prod", TestMode.PRODUCTION),
        ("test", TestMode.ISOLATED),
        ("ci", TestMode.ISOLATED),
        ("local", TestMode.ISOLATED),
    ])
    def test_ambient_environment(self, detector, make_env, value, expected):
        assert detector.detect([], make_env(APP_ENV=value)) is expected

    def test_fallback_is_isolated_with_warning(self, detector, make_env, caplog):
        with caplog.at_level(logging.WARNING, logger="fieldservice_testing.mode_detector"):
            result = detector.detect_with_source([], make_env(APP_ENV="staging"))
        assert result.mode is TestMode.ISOLATED
        assert result.source == "default"
        assert result.fallback_reason
        assert "defaulting to isolated" in caplog.text

    def test_dual_override_narrowed_by_tag(self, detector, make_env):
        env = make_env(TEST_MODE="dual")
        assert detector.detect(["@production"], env) is TestMode.PRODUCTION
        assert detector.detect([], env) is TestMode.DUAL

    def test_detection_is_deterministic(self, detector, make_env):
        env = make_env(APP_ENV="ci")
        results = {detector.detect(["@dual", "@smoke"], env) for _ in range(20)}
        assert results == {TestMode.DUAL}


class TestErrors:
    def test_conflicting_tags_raise(self, detector, make_env):
        with pytest.raises(AmbiguousModeError) as excinfo:
            detector.detect(["@isolated", "@production"], make_env())
        assert excinfo.value.tags == ["@isolated", "@production"]

    def test_conflicting_tags_raise_even_with_override(self, detector, make_env):
        with pytest.raises(AmbiguousModeError):
            detector.detect(["@isolated", "@dual"], make_env(TEST_MODE="isolated"))

    def test_duplicate_tag_is_not_a_conflict(self, detector, make_env):
        assert detector.detect(["@isolated", "isolated"], make_env()) is TestMode.ISOLATED

    def test_invalid_override_raises(self, detector, make_env):
        with pytest.raises(ConfigurationError) as excinfo:
            detector.detect([], make_env(TEST_MODE="staging"))
        assert excinfo.value.key == "TEST_MODE"


class TestResolve:
    def test_dual_resolved_by_target(self, detector, make_env):
        env = make_env(DUAL_MODE_TARGET="production")
        assert detector.resolve(["@dual"], env) is TestMode.PRODUCTION

    def test_dual_resolved_by_ambient(self, detector, make_env):
        assert detector.resolve(["@dual"], make_env(APP_ENV="prod")) is TestMode.PRODUCTION

    def test_dual_defaults_to_isolated(self, detector, make_env):
        assert detector.resolve(["@dual"], make_env()) is TestMode.ISOLATED

    def test_dual_target_must_be_concrete(self, detector, make_env):
        with pytest.raises(ConfigurationError):
            detector.resolve(["@dual"], make_env(DUAL_MODE_TARGET="dual"))

    def test_concrete_mode_passes_through(self, detector, make_env):
        env = make_env(DUAL_MODE_TARGET="production")
        assert detector.resolve(["@isolated"], env) is TestMode.ISOLATED


class TestCompatibility:
    def test_isolated_only_scenario_not_compatible_with_production(self):
        assert not ModeDetector.is_compatible(TestMode.PRODUCTION, ["@isolated"])
        assert not ModeDetector.is_compatible(TestMode.ISOLATED, ["@production"])

    def test_untagged_and_dual_compatible_with_both(self):
        for mode in (TestMode.ISOLATED, TestMode.PRODUCTION):
            assert ModeDetector.is_compatible(mode, [])
            assert ModeDetector.is_compatible(mode, ["@dual"])

    def test_fallback_mode(self):
        assert ModeDetector.fallback_mode(TestMode.PRODUCTION) is TestMode.ISOLATED
        assert ModeDetector.fallback_mode(TestMode.DUAL) is TestMode.ISOLATED
        assert ModeDetector.fallback_mode(TestMode.ISOLATED) is None
