"""Tests for Settings and quality preset loading."""

from pathlib import Path

import pytest

from cim_extract.core.config import Settings, load_quality_presets
from cim_extract.payload.presets import DEFAULT_QUALITY_PRESETS, MB


def test_defaults():
    settings = Settings()

    assert settings.orchestrator.low_confidence_threshold == 60.0
    assert settings.payload.target_size_bytes == 8 * MB
    assert settings.payload.vision_acceptable_bytes == 20 * MB
    assert settings.payload.hard_limit_bytes == 50 * MB
    assert settings.payload.max_pages == 10
    assert set(settings.breaker_settings()) == {"vision", "text", "ocr"}
    assert settings.vision_breaker.timeout_seconds == 90.0


def test_nested_env_overrides(monkeypatch):
    monkeypatch.setenv("VISION_BREAKER__FAILURE_THRESHOLD", "5")
    monkeypatch.setenv("ORCHESTRATOR__TEXT_PROVIDER", "claude")
    monkeypatch.setenv("ORCHESTRATOR__LOW_CONFIDENCE_THRESHOLD", "70")
    monkeypatch.setenv("PAYLOAD__MAX_PAGES", "6")

    settings = Settings()

    assert settings.vision_breaker.failure_threshold == 5
    assert settings.orchestrator.text_provider == "claude"
    assert settings.orchestrator.low_confidence_threshold == 70.0
    assert settings.payload.max_pages == 6


def test_provider_env_aliases(monkeypatch):
    monkeypatch.setenv("OPENAI_MODEL", "gpt-4o-mini")
    monkeypatch.setenv("ANTHROPIC_API_KEY", "sk-ant-test")

    settings = Settings()

    assert settings.openai.model == "gpt-4o-mini"
    assert settings.anthropic.api_key == "sk-ant-test"


def test_default_presets_without_path():
    assert load_quality_presets() is DEFAULT_QUALITY_PRESETS


def test_custom_presets(tmp_path):
    path = tmp_path / "presets.yaml"
    path.write_text("- {name: high, scale: 1.0, quality: 0.8}\n- {name: low, scale: 0.5, quality: 0.4}\n")

    presets = load_quality_presets(path)

    assert [p.name for p in presets] == ["high", "low"]
    assert presets[1].scale == 0.5


def test_empty_presets_file_rejected(tmp_path):
    path = tmp_path / "presets.yaml"
    path.write_text("")

    with pytest.raises(ValueError, match="No quality presets"):
        load_quality_presets(path)


def test_ocr_breaker_timeout_covers_textract_and_llm():
    settings = Settings()

    assert settings.aws.textract_timeout_seconds == 30.0
    assert settings.ocr_breaker.failure_threshold == 2
    assert settings.ocr_breaker.timeout_seconds >= (
        settings.aws.textract_timeout_seconds + settings.orchestrator.request_timeout_seconds
    )


def test_shipped_preset_file_is_opt_in():
    path = Path(__file__).resolve().parents[1] / "config" / "quality-presets.yaml"

    assert Settings().payload.quality_presets_path is None
    assert "PAYLOAD__QUALITY_PRESETS_PATH" in path.read_text().splitlines()[0]
    assert load_quality_presets(path) == DEFAULT_QUALITY_PRESETS
