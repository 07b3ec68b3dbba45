"""Tests for pipeline configuration."""

import pytest

from pii_pipeline import ShieldConfig

ENV_VARS = [
    "PII_SHIELD_LANGUAGE",
    "PII_SHIELD_OCR_ENGINE",
    "PII_SHIELD_TESSERACT_CONFIG",
    "PII_SHIELD_MASK_OPACITY",
    "PII_SHIELD_COLOR_CODED",
    "PII_SHIELD_MAX_UPLOAD_MB",
    "PII_SHIELD_CROSS_WORD",
]


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    for name in ENV_VARS:
        monkeypatch.delenv(name, raising=False)


def test_defaults():
    config = ShieldConfig()
    assert config.language == "eng"
    assert config.ocr_engine == "tesseract"
    assert config.mask_opacity == 0.8
    assert config.color_coded_masks is False
    assert config.max_upload_mb == 10
    assert config.output_filename == "masked-image.png"


def test_from_env(monkeypatch):
    monkeypatch.setenv("PII_SHIELD_LANGUAGE", "hin")
    monkeypatch.setenv("PII_SHIELD_OCR_ENGINE", "EasyOCR")
    monkeypatch.setenv("PII_SHIELD_MASK_OPACITY", "0.6")
    monkeypatch.setenv("PII_SHIELD_COLOR_CODED", "yes")
    monkeypatch.setenv("PII_SHIELD_MAX_UPLOAD_MB", "4")

    config = ShieldConfig.from_env()
    assert config.language == "hin"
    assert config.ocr_engine == "easyocr"
    assert config.mask_opacity == 0.6
    assert config.color_coded_masks is True
    assert config.max_upload_mb == 4


def test_overrides_win_over_env(monkeypatch):
    monkeypatch.setenv("PII_SHIELD_MASK_OPACITY", "0.6")
    assert ShieldConfig.from_env(mask_opacity=1.0).mask_opacity == 1.0


@pytest.mark.parametrize("kwargs", [
    {"ocr_engine": "paddle"},
    {"mask_opacity": -0.1},
    {"max_upload_mb": 0},
])
def test_invalid_values(kwargs):
    with pytest.raises(ValueError):
        ShieldConfig(**kwargs)


def test_colors_are_tuples():
    config = ShieldConfig(mask_color=[1, 2, 3])
    assert config.mask_color == (1, 2, 3)


def test_cross_word_flag_from_env(monkeypatch):
    assert ShieldConfig.from_env().allow_cross_word_correlation is False
    monkeypatch.setenv("PII_SHIELD_CROSS_WORD", "1")
    assert ShieldConfig.from_env().allow_cross_word_correlation is True
