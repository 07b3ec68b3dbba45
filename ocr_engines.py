"""
OCR engines for the PII Shield pipeline

Every engine exposes recognize(image, language, progress_callback) and returns
{'engine', 'text', 'words': [{'text', 'confidence', 'bbox': {x0, y0, x1, y1}}]}
with boxes in the coordinate space of the image it was given.
"""

import logging
from typing import Dict, List, Optional

import cv2
import numpy as np
import pytesseract

from pii_pipeline import RECOGNIZING_STATUS, ShieldConfig

logger = logging.getLogger(__name__)

# Tesseract language codes to the ISO 639-1 codes EasyOCR and Azure expect
ISO_LANGUAGES = {
    'eng': 'en',
    'hin': 'hi',
    'tam': 'ta',
    'tel': 'te',
    'mar': 'mr',
    'ben': 'bn',
}


def _report(progress_callback, status: str, value: float):
    if progress_callback is not None:
        progress_callback(status, value)

# ============================================
# TESSERACT
# ============================================

class TesseractEngine:
    """Word-level OCR through the Tesseract binary"""

    name = "tesseract"

    def __init__(self, config: ShieldConfig = None):
        self.config = config or ShieldConfig()

    def _words(self, data: Dict) -> List[Dict]:
        words = []
        for i in range(len(data['text'])):
            # Level 5 rows are words; the rest are page/block/line containers
            if 'level' in data and int(data['level'][i]) != 5:
                continue
            token = str(data['text'][i]).strip()
            if not token:
                continue
            try:
                conf = float(data['conf'][i])
            except (TypeError, ValueError):
                conf = 0.0
            left, top = int(data['left'][i]), int(data['top'][i])
            words.append({
                'text': token,
                'confidence': max(conf, 0.0),
                'bbox': {
                    'x0': left,
                    'y0': top,
                    'x1': left + int(data['width'][i]),
                    'y1': top + int(data['height'][i])
                }
            })
        return words

    def recognize(self, image: np.ndarray, language: str = "eng",
                  progress_callback=None) -> Dict:
        """Extract text and word boxes using Tesseract OCR"""
        _report(progress_callback, "initializing tesseract", 1.0)
        _report(progress_callback, RECOGNIZING_STATUS, 0.0)

        rgb = cv2.cvtColor(image, cv2.COLOR_BGR2RGB) if image.ndim == 3 else image
        data = pytesseract.image_to_data(rgb,
                                         lang=language,
                                         config=self.config.tesseract_config,
                                         output_type=pytesseract.Output.DICT)
        _report(progress_callback, RECOGNIZING_STATUS, 0.5)

        text = pytesseract.image_to_string(rgb, lang=language, config=self.config.tesseract_config)
        _report(progress_callback, RECOGNIZING_STATUS, 1.0)

        words = self._words(data)
        logger.debug("Tesseract found %d words", len(words))
        return {
            'engine': self.name,
            'text': text,
            'words': words
        }

# ============================================
# EASYOCR
# ============================================

class EasyOCREngine:
    """Line-level OCR with EasyOCR (optional extra)"""

    name = "easyocr"

    def __init__(self, config: ShieldConfig = None, gpu: bool = False):
        # Imported here: EasyOCR pulls in torch and loads models on startup
        import easyocr

        self._easyocr = easyocr
        self.config = config or ShieldConfig()
        self.gpu = gpu
        self.readers: Dict[str, object] = {}
        self.reader_for(self.config.language)

    def reader_for(self, language: str):
        """Reader for a Tesseract-style language code, created on first use"""
        lang = ISO_LANGUAGES.get(language, language)
        if lang not in self.readers:
            logger.info("Loading EasyOCR model for '%s'", lang)
            self.readers[lang] = self._easyocr.Reader([lang], gpu=self.gpu, verbose=False)
        return self.readers[lang]

    def recognize(self, image: np.ndarray, language: str = "eng",
                  progress_callback=None) -> Dict:
        """Extract text using EasyOCR; a new language loads its model on first call"""
        reader = self.reader_for(language)
        _report(progress_callback, RECOGNIZING_STATUS, 0.0)
        results = reader.readtext(image)

        text_parts = []
        words = []
        for (polygon, text, confidence) in results:
            if not text.strip():
                continue
            text_parts.append(text)
            x_coords = [p[0] for p in polygon]
            y_coords = [p[1] for p in polygon]
            words.append({
                'text': text,
                'confidence': confidence * 100,
                'bbox': {
                    'x0': int(min(x_coords)),
                    'y0': int(min(y_coords)),
                    'x1': int(max(x_coords)),
                    'y1': int(max(y_coords))
                }
            })

        _report(progress_callback, RECOGNIZING_STATUS, 1.0)
        return {
            'engine': self.name,
            'text': '\n'.join(text_parts),
            'words': words
        }

# ============================================
# FACTORY
# ============================================

def build_ocr_engine(config: Optional[ShieldConfig] = None):
    """Create the OCR engine selected in the config"""
    config = config or ShieldConfig()

    if config.ocr_engine == "tesseract":
        return TesseractEngine(config)
    elif config.ocr_engine == "easyocr":
        return EasyOCREngine(config)
    elif config.ocr_engine == "azure":
        from azure_ocr import AzureReadEngine
        return AzureReadEngine()
    raise ValueError(f"Unknown OCR engine '{config.ocr_engine}'")
