"""Tests for the Streamlit front end."""

from pathlib import Path

import pytest
from streamlit.testing.v1 import AppTest

APP_PATH = str(Path(__file__).resolve().parent.parent / "streamlit_app.py")

ENV_VARS = [
    "PII_SHIELD_OCR_ENGINE",
    "PII_SHIELD_MASK_OPACITY",
    "PII_SHIELD_COLOR_CODED",
    "PII_SHIELD_CROSS_WORD",
]


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    for name in ENV_VARS:
        monkeypatch.delenv(name, raising=False)


def _run_app():
    app = AppTest.from_file(APP_PATH, default_timeout=30)
    app.run()
    assert not app.exception
    return app


def test_low_opacity_from_env_is_accepted(monkeypatch):
    monkeypatch.setenv("PII_SHIELD_MASK_OPACITY", "0.3")
    app = _run_app()
    assert app.sidebar.slider[0].value == pytest.approx(0.3)
    assert app.session_state["orchestrator"].config.mask_opacity == pytest.approx(0.3)


def test_cross_word_matching_is_off_by_default():
    app = _run_app()
    assert app.sidebar.checkbox[0].value is False
    assert app.session_state["orchestrator"].matcher.allow_cross_word_correlation is False


def test_cross_word_checkbox_rebuilds_matcher():
    app = _run_app()
    app.sidebar.checkbox[0].check().run()
    assert not app.exception
    assert app.session_state["orchestrator"].matcher.allow_cross_word_correlation is True
