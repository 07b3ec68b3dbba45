"""
Job orchestration for the PII Shield pipeline

Runs one image through decode -> OCR -> matching -> masking. Every submission
gets a new generation number; results that come back for an older generation
are dropped instead of overwriting the current job.
"""

import asyncio
import inspect
import logging
import math
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, List, Optional

from pii_pipeline import (
    RECOGNIZING_STATUS,
    DecodeFailure,
    InputRejected,
    MaskRenderer,
    PIIMatch,
    PIIMatcher,
    PipelineError,
    RecognitionFailure,
    RenderFailure,
    ShieldConfig,
    load_image_from_bytes,
    normalize_ocr_result,
)

logger = logging.getLogger(__name__)

JobListener = Callable[["Job"], None]

# ============================================
# JOB STATE
# ============================================

class JobState(str, Enum):
    IDLE = "idle"
    PROCESSING = "processing"
    READY = "ready"
    FAILED = "failed"


@dataclass
class Job:
    """Processing context for exactly one submitted image"""
    generation: int
    state: JobState = JobState.IDLE
    progress: int = 0
    matches: List[PIIMatch] = field(default_factory=list)
    extracted_text: str = ""
    masked_image: Optional[bytes] = None
    error: Optional[PipelineError] = None
    abandoned: bool = False
    started_at: float = field(default_factory=time.time)
    finished_at: Optional[float] = None

    @property
    def elapsed_ms(self) -> float:
        end = self.finished_at or time.time()
        return (end - self.started_at) * 1000

    def to_dict(self) -> dict:
        return {
            'generation': self.generation,
            'state': self.state.value,
            'progress': self.progress,
            'matches': [m.to_dict() for m in self.matches],
            'extracted_text': self.extracted_text,
            'error': str(self.error) if self.error else None,
            'elapsed_ms': round(self.elapsed_ms, 2)
        }


def validate_submission(mime_type: Optional[str]):
    """Reject anything that is not an image/* upload"""
    if not mime_type or not mime_type.lower().startswith("image/"):
        raise InputRejected(f"Expected an image file, got '{mime_type or 'unknown'}'")


def progress_percent(value: float) -> int:
    """Map an engine progress fraction to a 0-100 integer, rounding halves up"""
    if not math.isfinite(value):
        return 0
    return max(0, min(100, int(math.floor(value * 100 + 0.5))))

# ============================================
# ORCHESTRATOR
# ============================================

class PipelineOrchestrator:
    """Sequences OCR, matching and masking for the current image job"""

    def __init__(self, ocr_engine: Any, config: ShieldConfig = None,
                 matcher: PIIMatcher = None, renderer: MaskRenderer = None):
        self.config = config or ShieldConfig()
        self.ocr_engine = ocr_engine
        self.matcher = matcher or PIIMatcher(
            allow_cross_word_correlation=self.config.allow_cross_word_correlation
        )
        self.renderer = renderer or MaskRenderer(self.config)
        self._generation = 0
        self._current = Job(generation=0)
        self._listeners: List[JobListener] = []

    @property
    def current_job(self) -> Job:
        return self._current

    def subscribe(self, listener: JobListener) -> Callable[[], None]:
        """Register a listener for job updates; returns an unsubscribe function"""
        self._listeners.append(listener)

        def unsubscribe():
            if listener in self._listeners:
                self._listeners.remove(listener)
        return unsubscribe

    def is_current(self, job: Job) -> bool:
        return job.generation == self._generation

    def _publish(self, job: Job):
        for listener in list(self._listeners):
            listener(job)

    def _on_progress(self, job: Job, status: str, value: float):
        if status != RECOGNIZING_STATUS:
            return
        if not self.is_current(job) or job.state is not JobState.PROCESSING:
            return
        job.progress = progress_percent(value)
        self._publish(job)

    async def _recognize(self, job: Job, image):
        recognize = self.ocr_engine.recognize
        language = self.config.language

        if inspect.iscoroutinefunction(recognize):
            def callback(status: str, value: float):
                self._on_progress(job, status, value)
            return await recognize(image, language, progress_callback=callback)

        # Blocking engines run in a worker thread; progress is handed back to the loop
        loop = asyncio.get_running_loop()

        def threaded_callback(status: str, value: float):
            loop.call_soon_threadsafe(self._on_progress, job, status, value)
        return await asyncio.to_thread(recognize, image, language, progress_callback=threaded_callback)

    def _abandon(self, job: Job, stage: str) -> Job:
        job.abandoned = True
        logger.info("Discarding %s result of superseded job %d (current: %d)",
                    stage, job.generation, self._generation)
        return job

    def _fail(self, job: Job, error: PipelineError) -> Job:
        if not self.is_current(job):
            return self._abandon(job, error.stage)
        job.state = JobState.FAILED
        job.progress = 0
        job.error = error
        job.finished_at = time.time()
        logger.error("Job %d failed during %s: %s", job.generation, error.stage, error,
                     exc_info=error.__cause__ is not None)
        self._publish(job)
        return job

    async def submit(self, image_bytes: bytes, mime_type: str) -> Job:
        """
        Start a new job for an uploaded image and run it to completion.

        Raises InputRejected before any job exists when the upload is not an
        image. Every other failure is recorded on the returned job.
        """
        validate_submission(mime_type)

        self._generation += 1
        job = Job(generation=self._generation, state=JobState.PROCESSING)
        self._current = job
        logger.info("Job %d started (%d bytes, %s)", job.generation, len(image_bytes or b""), mime_type)
        self._publish(job)

        try:
            return await self._run(job, image_bytes)
        except PipelineError as error:
            return self._fail(job, error)

    async def _run(self, job: Job, image_bytes: bytes) -> Job:
        # Stage 1: Decode
        try:
            image = await asyncio.to_thread(load_image_from_bytes, image_bytes)
        except PipelineError:
            raise
        except Exception as exc:
            raise DecodeFailure(f"Could not decode image: {exc}") from exc
        if not self.is_current(job):
            return self._abandon(job, "decode")

        # Stage 2: OCR
        try:
            raw_result = await self._recognize(job, image)
            ocr = normalize_ocr_result(raw_result, self.config.min_token_confidence)
        except PipelineError:
            raise
        except Exception as exc:
            raise RecognitionFailure(f"Text recognition failed: {exc}") from exc
        if not self.is_current(job):
            return self._abandon(job, "ocr")

        # Stage 3: Matching
        try:
            matches = self.matcher.detect(ocr.full_text, ocr.tokens)
        except Exception as exc:
            raise PipelineError(f"PII matching failed: {exc}") from exc
        logger.info("Job %d: %d tokens, %d PII matches", job.generation, len(ocr.tokens), len(matches))

        # Stage 4: Masking
        try:
            masked_png = await asyncio.to_thread(self.renderer.render_png, image, matches)
        except PipelineError:
            raise
        except Exception as exc:
            raise RenderFailure(f"Could not render masked image: {exc}") from exc
        if not self.is_current(job):
            return self._abandon(job, "render")

        job.matches = matches
        job.extracted_text = ocr.full_text
        job.masked_image = masked_png
        job.state = JobState.READY
        job.progress = 0
        job.finished_at = time.time()
        logger.info("Job %d ready in %.0fms", job.generation, job.elapsed_ms)
        self._publish(job)
        return job
