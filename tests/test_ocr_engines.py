"""Tests for the OCR engine adapters."""

import sys
from types import SimpleNamespace

import pytest

import ocr_engines
from azure_ocr import AzureReadEngine
from ocr_engines import EasyOCREngine, TesseractEngine, build_ocr_engine
from pii_pipeline import ShieldConfig, normalize_ocr_result

TESSERACT_DATA = {
    "level": [1, 4, 5, 5, 5],
    "text": ["", "", "Call", "  ", "9876543210"],
    "conf": ["-1", "-1", "96.5", "-1", "88"],
    "left": [0, 5, 5, 40, 50],
    "top": [0, 5, 5, 5, 6],
    "width": [120, 110, 30, 4, 60],
    "height": [80, 20, 18, 18, 17],
}


@pytest.fixture
def fake_tesseract(monkeypatch):
    calls = {}

    def image_to_data(image, lang, config, output_type):
        calls["data"] = (lang, config, image.shape)
        return TESSERACT_DATA

    def image_to_string(image, lang, config):
        calls["string"] = lang
        return "Call 9876543210\n"

    monkeypatch.setattr(ocr_engines.pytesseract, "image_to_data", image_to_data)
    monkeypatch.setattr(ocr_engines.pytesseract, "image_to_string", image_to_string)
    return calls


def test_tesseract_keeps_word_rows(image, fake_tesseract):
    result = TesseractEngine().recognize(image, "eng")

    assert result["engine"] == "tesseract"
    assert result["text"] == "Call 9876543210\n"
    assert result["words"] == [
        {"text": "Call", "confidence": 96.5, "bbox": {"x0": 5, "y0": 5, "x1": 35, "y1": 23}},
        {"text": "9876543210", "confidence": 88.0, "bbox": {"x0": 50, "y0": 6, "x1": 110, "y1": 23}},
    ]


def test_tesseract_passes_language_and_config(image, fake_tesseract):
    config = ShieldConfig(tesseract_config="--psm 6")
    TesseractEngine(config).recognize(image, "hin")
    assert fake_tesseract["data"] == ("hin", "--psm 6", image.shape)
    assert fake_tesseract["string"] == "hin"


def test_tesseract_progress_statuses(image, fake_tesseract):
    reports = []
    TesseractEngine().recognize(image, "eng", progress_callback=lambda s, v: reports.append((s, v)))
    assert reports == [
        ("initializing tesseract", 1.0),
        ("recognizing text", 0.0),
        ("recognizing text", 0.5),
        ("recognizing text", 1.0),
    ]


def test_tesseract_output_normalizes(image, fake_tesseract):
    ocr = normalize_ocr_result(TesseractEngine().recognize(image, "eng"))
    assert [t.text for t in ocr.tokens] == ["Call", "9876543210"]


def test_unknown_engine_is_rejected():
    with pytest.raises(ValueError):
        ShieldConfig(ocr_engine="paddle")

    config = ShieldConfig()
    config.ocr_engine = "paddle"
    with pytest.raises(ValueError):
        build_ocr_engine(config)


def test_factory_builds_tesseract():
    assert isinstance(build_ocr_engine(ShieldConfig()), TesseractEngine)


def _point(x, y):
    return SimpleNamespace(x=x, y=y)


class FakeAzureClient:
    def __init__(self, result):
        self.result = result
        self.requests = []

    def begin_analyze_document(self, model_id, document, locale=None):
        self.requests.append((model_id, document, locale))
        return SimpleNamespace(result=lambda: self.result)


def test_azure_words_from_polygons(image):
    word = SimpleNamespace(
        content="ABCDE1234F",
        confidence=0.97,
        polygon=[_point(10.4, 5.2), _point(80.9, 6.0), _point(81.0, 24.7), _point(10.0, 24.0)],
    )
    no_polygon = SimpleNamespace(content="ghost", confidence=0.5, polygon=None)
    result = SimpleNamespace(content="PAN ABCDE1234F", pages=[SimpleNamespace(words=[word, no_polygon])])
    client = FakeAzureClient(result)

    reports = []
    output = AzureReadEngine(client=client).recognize(image, "eng", lambda s, v: reports.append((s, v)))

    assert output["engine"] == "azure"
    assert output["text"] == "PAN ABCDE1234F"
    assert output["words"] == [{
        "text": "ABCDE1234F",
        "confidence": pytest.approx(97.0),
        "bbox": {"x0": 10, "y0": 5, "x1": 81, "y1": 24},
    }]
    assert client.requests[0][0] == "prebuilt-read"
    assert client.requests[0][1].startswith(b"\x89PNG")
    assert client.requests[0][2] == "en"
    assert reports == [("recognizing text", 0.0), ("recognizing text", 1.0)]


def test_azure_locale_follows_language(image):
    client = FakeAzureClient(SimpleNamespace(content="", pages=[]))
    output = AzureReadEngine(client=client).recognize(image, "hin")
    assert client.requests[0][2] == "hi"
    assert output["words"] == []


class FakeReader:
    created = []

    def __init__(self, languages, gpu=False, verbose=True):
        self.languages = languages
        FakeReader.created.append(languages)

    def readtext(self, image):
        return [
            ([[2, 3], [40, 3], [40, 15], [2, 15]], "Rahul Kumar", 0.91),
            ([[0, 0], [1, 0], [1, 1], [0, 1]], "  ", 0.2),
        ]


@pytest.fixture
def fake_easyocr(monkeypatch):
    FakeReader.created = []
    monkeypatch.setitem(sys.modules, "easyocr", SimpleNamespace(Reader=FakeReader))


def test_easyocr_reader_follows_language(image, fake_easyocr):
    engine = EasyOCREngine(ShieldConfig(language="eng"))
    assert FakeReader.created == [["en"]]

    engine.recognize(image, "eng")
    engine.recognize(image, "hin")
    engine.recognize(image, "hin")
    assert FakeReader.created == [["en"], ["hi"]]


def test_easyocr_lines_become_words(image, fake_easyocr):
    output = EasyOCREngine().recognize(image, "eng")
    assert output["text"] == "Rahul Kumar"
    assert output["words"] == [{
        "text": "Rahul Kumar",
        "confidence": pytest.approx(91.0),
        "bbox": {"x0": 2, "y0": 3, "x1": 40, "y1": 15},
    }]
