"""
PII Shield Pipeline
Detects PII in OCR output and masks the matching regions of a document image
"""

import logging
import math
import os
import re
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, Iterator, List, Mapping, Optional, Sequence, Tuple

import cv2
import numpy as np
from dotenv import load_dotenv
from PIL import Image, ImageColor, ImageDraw

logger = logging.getLogger(__name__)

# ============================================
# CONFIGURATION
# ============================================

OCR_ENGINES = ("tesseract", "easyocr", "azure")

# Only progress reports with this status are shown to the user
RECOGNIZING_STATUS = "recognizing text"


@dataclass
class ShieldConfig:
    """Configuration for the PII Shield pipeline"""
    # OCR settings
    language: str = "eng"
    ocr_engine: str = "tesseract"
    tesseract_config: str = "--oem 3 --psm 3"
    min_token_confidence: float = 0.0

    # Matching settings
    # Word-level engines (Tesseract, Azure) give one token per word, so a
    # multi-word match such as a Potential Name is only masked when this is
    # on. It also lets split Aadhaar groups borrow their first group's box.
    allow_cross_word_correlation: bool = False

    # Masking settings
    mask_color: Tuple[int, int, int] = (0, 0, 0)  # RGB
    mask_opacity: float = 0.8
    color_coded_masks: bool = False
    draw_lock_glyph: bool = True
    glyph_color: Tuple[int, int, int] = (255, 255, 255)

    # Upload / export settings
    max_upload_mb: int = 10
    output_filename: str = "masked-image.png"

    def __post_init__(self):
        if self.ocr_engine not in OCR_ENGINES:
            raise ValueError(
                f"Unknown OCR engine '{self.ocr_engine}', expected one of {', '.join(OCR_ENGINES)}"
            )
        if not 0.0 <= self.mask_opacity <= 1.0:
            raise ValueError(f"mask_opacity must be within [0, 1], got {self.mask_opacity}")
        if self.max_upload_mb <= 0:
            raise ValueError("max_upload_mb must be positive")
        self.mask_color = tuple(self.mask_color)
        self.glyph_color = tuple(self.glyph_color)

    @classmethod
    def from_env(cls, **overrides) -> "ShieldConfig":
        """Build a config from PII_SHIELD_* environment variables (and .env)"""
        load_dotenv()
        values: Dict[str, Any] = {}

        if os.getenv("PII_SHIELD_LANGUAGE"):
            values["language"] = os.environ["PII_SHIELD_LANGUAGE"]
        if os.getenv("PII_SHIELD_OCR_ENGINE"):
            values["ocr_engine"] = os.environ["PII_SHIELD_OCR_ENGINE"].lower()
        if os.getenv("PII_SHIELD_TESSERACT_CONFIG"):
            values["tesseract_config"] = os.environ["PII_SHIELD_TESSERACT_CONFIG"]
        if os.getenv("PII_SHIELD_MASK_OPACITY"):
            values["mask_opacity"] = float(os.environ["PII_SHIELD_MASK_OPACITY"])
        if os.getenv("PII_SHIELD_COLOR_CODED"):
            values["color_coded_masks"] = _env_flag("PII_SHIELD_COLOR_CODED")
        if os.getenv("PII_SHIELD_CROSS_WORD"):
            values["allow_cross_word_correlation"] = _env_flag("PII_SHIELD_CROSS_WORD")
        if os.getenv("PII_SHIELD_MAX_UPLOAD_MB"):
            values["max_upload_mb"] = int(os.environ["PII_SHIELD_MAX_UPLOAD_MB"])

        values.update(overrides)
        return cls(**values)


def _env_flag(name: str) -> bool:
    return os.getenv(name, "").strip().lower() in ("1", "true", "yes", "on")

# ============================================
# ERRORS
# ============================================

class PipelineError(Exception):
    """Base class for failures surfaced by the pipeline"""
    stage = "pipeline"


class InputRejected(PipelineError):
    """Submitted file is not an image"""
    stage = "input"


class DecodeFailure(PipelineError):
    """Image bytes could not be decoded into a raster"""
    stage = "decode"


class RecognitionFailure(PipelineError):
    """OCR engine call failed"""
    stage = "ocr"


class RenderFailure(PipelineError):
    """Masked image could not be drawn or encoded"""
    stage = "render"

# ============================================
# DATA MODEL
# ============================================

@dataclass(frozen=True)
class BoundingBox:
    """Axis-aligned rectangle in original image pixel coordinates"""
    x0: float
    y0: float
    x1: float
    y1: float

    def to_dict(self) -> Dict:
        return {'x0': self.x0, 'y0': self.y0, 'x1': self.x1, 'y1': self.y1}


@dataclass(frozen=True)
class Token:
    """One OCR-recognized word with its box and confidence (0-100)"""
    text: str
    bounding_box: BoundingBox
    confidence: float


@dataclass(frozen=True)
class PIIMatch:
    """A classified PII occurrence with geometry borrowed from one token"""
    category: str
    matched_text: str
    confidence: float
    bounding_box: BoundingBox

    def to_dict(self) -> Dict:
        return {
            'category': self.category,
            'matched_text': self.matched_text,
            'confidence': round(self.confidence, 2),
            'bounding_box': self.bounding_box.to_dict()
        }


@dataclass(frozen=True)
class OCRResult:
    """Normalized OCR output: the full text plus the token index"""
    full_text: str
    tokens: Tuple[Token, ...] = ()

# ============================================
# PATTERN REGISTRY
# ============================================

@dataclass(frozen=True)
class PatternDefinition:
    """A PII category: matching rule, display label and highlight color"""
    id: str
    pattern: str
    label: str
    color: str
    _regex: "re.Pattern" = field(init=False, repr=False, compare=False)

    def __post_init__(self):
        # ASCII keeps \d, \b and IGNORECASE to the Latin range
        object.__setattr__(self, '_regex', re.compile(self.pattern, re.IGNORECASE | re.ASCII))

    def finditer(self, text: str) -> Iterator["re.Match"]:
        return self._regex.finditer(text)

    @property
    def rgb(self) -> Tuple[int, int, int]:
        return ImageColor.getrgb(self.color)[:3]


PII_PATTERNS: Tuple[PatternDefinition, ...] = (
    PatternDefinition(
        id='aadhaar',
        pattern=r'\b\d{4} ?\d{4} ?\d{4}\b',
        label='Aadhaar Number',
        color='#ff4444'
    ),
    PatternDefinition(
        id='phone',
        pattern=r'\b(?:\+91[\-\s]?)?[6-9]\d{9}\b',
        label='Phone Number',
        color='#ff8844'
    ),
    PatternDefinition(
        id='email',
        pattern=r'\b[A-Za-z0-9._%+-]+@[A-Za-z0-9.-]+\.[A-Za-z]{2,}\b',
        label='Email Address',
        color='#ffaa44'
    ),
    PatternDefinition(
        id='pan',
        pattern=r'\b[A-Z]{5}[0-9]{4}[A-Z]\b',
        label='PAN Number',
        color='#44ff44'
    ),
    PatternDefinition(
        id='dob',
        pattern=r'\b(?:\d{1,2}[/\-.]\d{1,2}[/\-.]\d{4}|\d{4}[/\-.]\d{1,2}[/\-.]\d{1,2})\b',
        label='Date of Birth',
        color='#4488ff'
    ),
    PatternDefinition(
        id='name',
        pattern=r'\b[A-Z][a-z]+(?:\s+[A-Z][a-z]+){1,3}\b',
        label='Potential Name',
        color='#8844ff'
    ),
)


def get_pattern_registry() -> List[PatternDefinition]:
    """Return the PII categories in declaration (precedence) order"""
    return list(PII_PATTERNS)


def get_pattern(pattern_id: str) -> PatternDefinition:
    for definition in PII_PATTERNS:
        if definition.id == pattern_id:
            return definition
    raise KeyError(f"Unknown PII pattern '{pattern_id}'")


def category_colors() -> Dict[str, Tuple[int, int, int]]:
    """Map each category label to its RGB highlight color"""
    return {definition.label: definition.rgb for definition in PII_PATTERNS}

# ============================================
# TOKEN INDEX NORMALIZATION
# ============================================

def _parse_bbox(raw: Any) -> Optional[BoundingBox]:
    if isinstance(raw, Mapping):
        try:
            coords = [raw['x0'], raw['y0'], raw['x1'], raw['y1']]
        except KeyError:
            return None
    elif isinstance(raw, Sequence) and not isinstance(raw, str) and len(raw) == 4:
        coords = list(raw)
    else:
        return None

    try:
        x0, y0, x1, y1 = (float(c) for c in coords)
    except (TypeError, ValueError):
        return None
    if not all(math.isfinite(c) for c in (x0, y0, x1, y1)):
        return None
    return BoundingBox(x0, y0, x1, y1)


def _parse_confidence(raw: Any) -> float:
    try:
        value = float(raw)
    except (TypeError, ValueError):
        return 0.0
    return value if math.isfinite(value) else 0.0


def normalize_tokens(raw_words: Optional[Iterable[Any]],
                     min_confidence: float = 0.0) -> Tuple[Token, ...]:
    """
    Convert raw OCR word entries into Tokens.

    Entries without text or without a usable bounding box are skipped,
    as are entries below min_confidence. A missing word list yields an
    empty index.
    """
    if not raw_words:
        return ()

    tokens = []
    skipped = 0
    for word in raw_words:
        if not isinstance(word, Mapping):
            skipped += 1
            continue
        text = word.get('text')
        if not isinstance(text, str) or not text.strip():
            skipped += 1
            continue
        bbox = _parse_bbox(word.get('bbox', word.get('boundingBox')))
        if bbox is None:
            skipped += 1
            continue
        confidence = _parse_confidence(word.get('confidence'))
        if confidence < min_confidence:
            skipped += 1
            continue
        tokens.append(Token(text=text, bounding_box=bbox, confidence=confidence))

    if skipped:
        logger.debug("Skipped %d unusable OCR word entries", skipped)
    return tuple(tokens)


def normalize_ocr_result(raw: Optional[Mapping[str, Any]],
                         min_confidence: float = 0.0) -> OCRResult:
    """Normalize an OCR engine response into the full text and token index"""
    if raw is None:
        return OCRResult(full_text='')
    if not isinstance(raw, Mapping):
        raise TypeError(f"OCR result must be a mapping, got {type(raw).__name__}")

    text = raw.get('text', raw.get('fullText'))
    full_text = text if isinstance(text, str) else ''

    raw_words = None
    for key in ('words', 'tokens', 'boxes'):
        if raw.get(key) is not None:
            raw_words = raw[key]
            break

    return OCRResult(full_text=full_text,
                     tokens=normalize_tokens(raw_words, min_confidence))

# ============================================
# PII MATCHER
# ============================================

class PIIMatcher:
    """Regex classification over the full text, correlated to OCR token boxes"""

    def __init__(self, patterns: Optional[Iterable[PatternDefinition]] = None,
                 allow_cross_word_correlation: bool = False):
        self.patterns = list(patterns) if patterns is not None else get_pattern_registry()
        self.allow_cross_word_correlation = allow_cross_word_correlation

    def correlate(self, matched_text: str, tokens: Sequence[Token]) -> Optional[Token]:
        """
        Find the first token whose text contains the match, or is contained in it.

        A token that is only a piece of the match counts when the match is a
        single word; a match spanning whitespace covers several OCR words and
        needs one token holding all of it.
        """
        needle = matched_text.lower()
        spans_words = any(ch.isspace() for ch in matched_text.strip())
        allow_partial = self.allow_cross_word_correlation or not spans_words

        for token in tokens:
            candidate = token.text.lower()
            if not candidate.strip():
                continue
            if needle in candidate:
                return token
            if allow_partial and candidate in needle:
                return token
        return None

    def detect(self, text: str, tokens: Sequence[Token]) -> List[PIIMatch]:
        """Detect all PII in text, in registry order then occurrence order"""
        matches = []
        dropped = 0

        for definition in self.patterns:
            for found in definition.finditer(text):
                matched_text = found.group(0)
                token = self.correlate(matched_text, tokens)
                if token is None:
                    dropped += 1
                    logger.debug("No token for %s match at %d", definition.id, found.start())
                    continue
                matches.append(PIIMatch(
                    category=definition.label,
                    matched_text=matched_text,
                    confidence=token.confidence,
                    bounding_box=token.bounding_box
                ))

        if dropped:
            logger.debug("Dropped %d matches without token geometry", dropped)
        return matches

# ============================================
# IMAGE LOADING
# ============================================

def load_image_from_bytes(image_bytes: bytes) -> np.ndarray:
    """Decode image bytes into a BGR array at native size"""
    if not image_bytes:
        raise DecodeFailure("Image is empty")
    nparr = np.frombuffer(image_bytes, np.uint8)
    image = cv2.imdecode(nparr, cv2.IMREAD_COLOR)
    if image is None:
        raise DecodeFailure("Could not decode image from bytes")
    return image

# ============================================
# MASK RENDERER
# ============================================

class MaskRenderer:
    """Draws a mask and lock glyph over every match box, in list order"""

    def __init__(self, config: ShieldConfig = None):
        self.config = config or ShieldConfig()
        self._colors = category_colors()

    def get_mask_color(self, category: str) -> Tuple[int, int, int]:
        """Get RGB mask color for a PII category"""
        if self.config.color_coded_masks:
            return self._colors.get(category, self.config.mask_color)
        return self.config.mask_color

    def _clip(self, bbox: BoundingBox, size: Tuple[int, int]) -> Optional[Tuple[int, int, int, int]]:
        width, height = size
        x0 = max(0, min(width, int(round(bbox.x0))))
        y0 = max(0, min(height, int(round(bbox.y0))))
        x1 = max(0, min(width, int(round(bbox.x1))))
        y1 = max(0, min(height, int(round(bbox.y1))))
        if x1 <= x0 or y1 <= y0:
            return None
        return x0, y0, x1, y1

    def _draw_lock_glyph(self, draw: ImageDraw.ImageDraw, box: Tuple[int, int, int, int]):
        """Padlock marker centered in the box"""
        x0, y0, x1, y1 = box
        size = int(min(x1 - x0, y1 - y0) * 0.6)
        if size < 6:
            return

        cx = (x0 + x1) // 2
        cy = (y0 + y1) // 2
        half = size // 2
        color = self.config.glyph_color
        line = max(1, size // 10)

        # Body: lower part of the glyph square
        body_top = cy - half + int(size * 0.45)
        draw.rectangle([cx - half, body_top, cx + half, cy + half], fill=color)

        # Shackle: half circle with two legs down to the body
        radius = max(2, int(size * 0.3))
        arc_top = cy - half
        draw.arc([cx - radius, arc_top, cx + radius, arc_top + 2 * radius],
                 start=180, end=360, fill=color, width=line)
        for leg_x in (cx - radius, cx + radius - line + 1):
            draw.rectangle([leg_x, arc_top + radius, leg_x + line - 1, body_top], fill=color)

    def redact_image(self, image: np.ndarray, matches: Sequence[PIIMatch]) -> np.ndarray:
        """Return a masked copy of a BGR image; the input array is left untouched"""
        if image is None or image.size == 0:
            raise RenderFailure("No image to render")
        if not matches:
            return image.copy()

        if len(image.shape) == 2:
            base = Image.fromarray(image).convert('RGB')
        else:
            base = Image.fromarray(cv2.cvtColor(image, cv2.COLOR_BGR2RGB))

        canvas = base.copy()
        draw = ImageDraw.Draw(canvas)
        opacity = self.config.mask_opacity

        for match in matches:
            box = self._clip(match.bounding_box, canvas.size)
            if box is None:
                logger.debug("Skipping empty mask box for %s", match.category)
                continue

            # Blend against the original pixels so overlaps are last-writer-wins
            region = base.crop(box)
            fill = Image.new('RGB', region.size, self.get_mask_color(match.category))
            canvas.paste(Image.blend(region, fill, opacity), box[:2])

            if self.config.draw_lock_glyph:
                self._draw_lock_glyph(draw, box)

        return cv2.cvtColor(np.array(canvas), cv2.COLOR_RGB2BGR)

    def encode_png(self, image: np.ndarray) -> bytes:
        ok, buffer = cv2.imencode('.png', image)
        if not ok:
            raise RenderFailure("PNG encoding failed")
        return buffer.tobytes()

    def render_png(self, image: np.ndarray, matches: Sequence[PIIMatch]) -> bytes:
        """Mask the image and encode it as PNG"""
        try:
            masked = self.redact_image(image, matches)
            return self.encode_png(masked)
        except RenderFailure:
            raise
        except (cv2.error, ValueError) as exc:
            raise RenderFailure(f"Could not render masked image: {exc}") from exc
