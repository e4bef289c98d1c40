"""
Pytest Configuration and Fixtures

Shared fixtures for all tests: synthetic comic pages, a loaded store and
fake narrative / speech backends.
"""

import io
import json
import shutil
import tempfile
from pathlib import Path
from typing import List, Optional, Sequence, Tuple

import numpy as np
import pytest
from PIL import Image

from comic_panel_narrator.audio_client import SpeechModel, SpeechRequest, SpeechResponse
from comic_panel_narrator.config import Config
from comic_panel_narrator.exceptions import ModelCallError
from comic_panel_narrator.geometry import Rect
from comic_panel_narrator.models import ChapterSource, PageSource
from comic_panel_narrator.narrative_client import NarrativeModel, NarrativeRequest
from comic_panel_narrator.panel_detector import DetectedPanel
from comic_panel_narrator.state_store import StateStore


def encode_png(raster: np.ndarray) -> bytes:
    buffer = io.BytesIO()
    Image.fromarray(raster).save(buffer, format="PNG")
    return buffer.getvalue()


def make_page(height: int = 200, width: int = 100,
              dark_rows: Sequence[Tuple[int, int]] = ((0, 80), (120, 200))) -> np.ndarray:
    """White RGB page with dark bands over the given [start, end) row ranges."""
    raster = np.full((height, width, 3), 255, dtype=np.uint8)
    for start, end in dark_rows:
        raster[start:end] = 30
    return raster


def make_page_source(name: str = "page.png", **kwargs) -> PageSource:
    raster = make_page(**kwargs)
    return PageSource(
        file_name=name,
        image_bytes=encode_png(raster),
        width=raster.shape[1],
        height=raster.shape[0],
        mime_type="image/png",
    )


class FakeNarrativeModel(NarrativeModel):
    """
    Answers with one story per submitted panel.

    `texts` maps panel id to the text to return; `drop` lists ids left out of
    every answer; `fail_times` makes the first n calls raise.
    """

    def __init__(self, language: str = "en-US", texts: Optional[dict] = None,
                 drop: Sequence[str] = (), fail_times: int = 0, fail_when=None):
        self.language = language
        self.texts = texts or {}
        self.drop = set(drop)
        self.fail_times = fail_times
        self.fail_when = fail_when
        self.calls: List[Tuple[str, NarrativeRequest]] = []

    async def generate(self, model: str, request: NarrativeRequest) -> str:
        self.calls.append((model, request))
        if len(self.calls) <= self.fail_times:
            raise ModelCallError(model, "transient failure")
        if self.fail_when is not None and self.fail_when(request):
            raise ModelCallError(model, "scripted failure")
        items = [
            {
                "panel_id": pid,
                "key_action_description": f"action {pid}",
                "dialogue_summary": "None",
                "narration_tone": "Tense",
                "recap_texts": {self.language: self.texts.get(pid, f"story {pid}")},
            }
            for pid in request.panel_ids if pid not in self.drop
        ]
        return json.dumps(items)


class FakeSpeechModel(SpeechModel):
    """Returns one audio part per segment; the current segment is 4 PCM samples."""

    def __init__(self, fail_texts: Sequence[str] = (), on_call=None, finish_reason: str = "STOP"):
        self.fail_texts = set(fail_texts)
        self.on_call = on_call
        self.finish_reason = finish_reason
        self.requests: List[SpeechRequest] = []

    async def synthesize(self, model: str, request: SpeechRequest) -> SpeechResponse:
        self.requests.append(request)
        if self.on_call is not None:
            self.on_call(request)
        if request.text in self.fail_texts:
            return SpeechResponse(audio_parts=(), finish_reason="SAFETY")
        parts = tuple(b"\x00\x00" * 2 for _ in request.segments()[:-1]) + (b"\x01\x00" * 4,)
        return SpeechResponse(audio_parts=parts, finish_reason=self.finish_reason)


class SleepRecorder:
    def __init__(self):
        self.delays: List[float] = []

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)


@pytest.fixture
def temp_dir():
    """Create a temporary directory for tests."""
    temp_path = tempfile.mkdtemp()
    yield Path(temp_path)
    shutil.rmtree(temp_path, ignore_errors=True)


@pytest.fixture
def config() -> Config:
    return Config(api_key="test-key")


@pytest.fixture
def sleep() -> SleepRecorder:
    return SleepRecorder()


@pytest.fixture
def chapter_sources() -> List[ChapterSource]:
    """Two chapters: two pages, then one page."""
    return [
        ChapterSource("Chapter 1", (make_page_source("001.png"), make_page_source("002.png"))),
        ChapterSource("Chapter 2", (make_page_source("001.png"),)),
    ]


@pytest.fixture
def store(config, chapter_sources) -> StateStore:
    """Loaded store where every page has two panels: top (0, 0, 1, 0.4) and bottom (0, 0.6, 1, 0.4)."""
    store = StateStore(config)
    store.load_chapters(chapter_sources)
    for page_id in store.state.pages:
        store.set_detected_panels(page_id, [
            DetectedPanel(Rect(0.0, 0.0, 1.0, 0.4), 0.8),
            DetectedPanel(Rect(0.0, 0.6, 1.0, 0.4), 0.8),
        ])
    return store


@pytest.fixture
def first_page(store):
    chapter_id = store.chapter_ids()[0]
    return store.state.chapter_pages(chapter_id)[0]
