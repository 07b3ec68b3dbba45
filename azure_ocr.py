"""
Azure Document Intelligence engine for PII Shield

Runs the prebuilt-read model and returns word boxes in image pixels, for
handwriting or poor scans where local Tesseract output is too sparse.

Install the extra with `pip install 'pii-shield[azure]'`, put the resource
endpoint and key in AZURE_DOCUMENT_INTELLIGENCE_ENDPOINT and
AZURE_DOCUMENT_INTELLIGENCE_API_KEY (a .env file works) and select the
engine with PII_SHIELD_OCR_ENGINE=azure.
"""

import logging
import os
from dataclasses import dataclass
from typing import Dict, List

import cv2
import numpy as np
from dotenv import load_dotenv

from ocr_engines import ISO_LANGUAGES
from pii_pipeline import RECOGNIZING_STATUS

try:
    from azure.ai.formrecognizer import DocumentAnalysisClient
    from azure.core.credentials import AzureKeyCredential
    AZURE_AVAILABLE = True
except ImportError:
    AZURE_AVAILABLE = False

logger = logging.getLogger(__name__)

# Older deployments used the shorter variable names
ENDPOINT_VARS = ("AZURE_DOCUMENT_INTELLIGENCE_ENDPOINT", "AZURE_DOCUMENT_ENDPOINT")
API_KEY_VARS = ("AZURE_DOCUMENT_INTELLIGENCE_API_KEY", "AZURE_DOCUMENT_KEY")


def _first_env(names) -> str:
    for name in names:
        if os.getenv(name):
            return os.environ[name]
    return ""


@dataclass
class AzureConfig:
    endpoint: str = ""
    api_key: str = ""
    model_id: str = "prebuilt-read"

    @classmethod
    def from_env(cls, model_id: str = "prebuilt-read") -> "AzureConfig":
        load_dotenv()
        return cls(endpoint=_first_env(ENDPOINT_VARS),
                   api_key=_first_env(API_KEY_VARS),
                   model_id=model_id)

    @property
    def configured(self) -> bool:
        return bool(self.endpoint and self.api_key)


class AzureReadEngine:
    """Word-level OCR through Azure; polygons are collapsed to axis-aligned boxes"""

    name = "azure"

    def __init__(self, config: AzureConfig = None, client=None):
        self.config = config or AzureConfig.from_env()
        self.client = client or self._connect()

    def _connect(self):
        if not AZURE_AVAILABLE:
            raise ImportError("Azure SDK not installed. Run: pip install 'pii-shield[azure]'")
        if not self.config.configured:
            raise ValueError(f"Azure endpoint or key missing; set {ENDPOINT_VARS[0]} and {API_KEY_VARS[0]}")
        logger.info("Connecting to Azure Document Intelligence at %s", self.config.endpoint)
        return DocumentAnalysisClient(endpoint=self.config.endpoint,
                                      credential=AzureKeyCredential(self.config.api_key))

    def recognize(self, image: np.ndarray, language: str = "eng",
                  progress_callback=None) -> Dict:
        """
        Analyze a decoded image with Azure and return text plus word boxes.

        The language is sent as a locale hint; the read model still detects
        other scripts on the page.
        """
        ok, buffer = cv2.imencode('.png', image)
        if not ok:
            raise ValueError("Could not encode image for Azure upload")

        if progress_callback:
            progress_callback(RECOGNIZING_STATUS, 0.0)
        poller = self.client.begin_analyze_document(
            self.config.model_id,
            buffer.tobytes(),
            locale=ISO_LANGUAGES.get(language, language)
        )
        result = poller.result()
        if progress_callback:
            progress_callback(RECOGNIZING_STATUS, 1.0)

        return {
            'engine': self.name,
            'text': result.content or '',
            'words': self._words(result)
        }

    def _words(self, result) -> List[Dict]:
        words: List[Dict] = []

        for page in result.pages:
            for word in page.words:
                if not word.polygon:
                    continue
                x_coords = [p.x for p in word.polygon]
                y_coords = [p.y for p in word.polygon]
                words.append({
                    'text': word.content,
                    'confidence': (word.confidence or 0) * 100,
                    'bbox': {
                        'x0': int(min(x_coords)),
                        'y0': int(min(y_coords)),
                        'x1': int(max(x_coords)),
                        'y1': int(max(y_coords))
                    }
                })

        return words
