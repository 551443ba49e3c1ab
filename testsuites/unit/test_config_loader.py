from pathlib import Path

import pytest
import yaml

from reliability_tools.common import ConfigLoader, ConfigurationError, ReliabilitySettings


def write_config(path, data):
    path.write_text(yaml.dump(data), encoding="utf-8")
    return path


def test_env_override_and_defaults(monkeypatch, tmp_path):
    config_path = write_config(tmp_path / "config.yaml", {"visual": {"threshold": 0.1, "artifacts_dir": "out"}})

    ConfigLoader.reset()
    loader = ConfigLoader(config_path=config_path)
    assert loader.get("visual.threshold") == 0.1
    assert loader.get("locator.timeout", 10000) == 10000

    ConfigLoader.reset()
    monkeypatch.setenv("VISUAL_THRESHOLD", "0.05")
    loader = ConfigLoader(config_path=config_path)
    assert loader.get("visual.threshold", 0.2) == 0.05


def test_env_values_are_coerced_to_default_type(monkeypatch, tmp_path):
    monkeypatch.setenv("AI_ENABLED", "yes")
    monkeypatch.setenv("LOCATOR_TIMEOUT", "2500")

    ConfigLoader.reset()
    loader = ConfigLoader(config_path=tmp_path / "missing.yaml")

    assert loader.get("ai.enabled", False) is True
    assert loader.get("locator.timeout", 10000) == 2500


def test_reload_updates_values(tmp_path):
    config_path = write_config(tmp_path / "config.yaml", {"flaky_test": {"threshold": 0.3}})

    ConfigLoader.reset()
    loader = ConfigLoader(config_path=config_path)
    assert loader.get("flaky_test.threshold") == 0.3

    write_config(config_path, {"flaky_test": {"threshold": 0.5}})
    loader.reload()
    assert loader.get("flaky_test.threshold") == 0.5


def test_invalid_yaml_raises_configuration_error(tmp_path):
    config_path = tmp_path / "config.yaml"
    config_path.write_text("visual: [unclosed", encoding="utf-8")

    ConfigLoader.reset()
    with pytest.raises(ConfigurationError):
        ConfigLoader(config_path=config_path)


def test_settings_read_yaml_and_environment(monkeypatch, tmp_path):
    config_path = write_config(
        tmp_path / "config.yaml",
        {
            "visual": {"threshold": 0.1, "artifacts_dir": str(tmp_path / "artifacts")},
            "flaky_test": {"threshold": 0.25},
            "wait": {"timeout": 15000},
        },
    )
    monkeypatch.setenv("FLAKY_TEST_THRESHOLD", "0.4")
    monkeypatch.setenv("GOOGLE_GEMINI_API_KEY", "test-key")

    ConfigLoader.reset()
    settings = ReliabilitySettings.from_config(ConfigLoader(config_path=config_path))

    assert settings.visual_threshold == 0.1
    assert settings.flaky_threshold == 0.4
    assert settings.wait_timeout == 15000
    assert settings.locator_timeout == 10000
    assert settings.gemini_api_key == "test-key"
    assert settings.artifacts_dir == Path(tmp_path / "artifacts")


def test_repository_config_matches_documented_defaults(monkeypatch):
    for name in ("VISUAL_THRESHOLD", "FLAKY_TEST_THRESHOLD", "AI_ENABLED", "VISUAL_PIXEL_THRESHOLD"):
        monkeypatch.delenv(name, raising=False)

    ConfigLoader.reset()
    settings = ReliabilitySettings.from_config(ConfigLoader())

    assert settings.visual_threshold == 0.2
    assert settings.pixel_threshold == 0.1
    assert settings.flaky_threshold == 0.3
    assert settings.cache_probe_timeout == 1000
    assert settings.ai_enabled is False
