"""
Orchestration: detection, crops, per-chapter stories and per-panel audio.

Geometry events from the store are routed to the crop scheduler. Story
generation runs chapter by chapter and hands each chapter the trailing text
of the one before it; narration runs panel by panel in reading order with the
previous panel's text as context. Model failures are recorded on the
chapter or panel they belong to, and global runs carry on.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Sequence, Set

from .audio_client import NarrationAudioClient, SpeechParams
from .config import Config
from .cropper import CropScheduler
from .events import PanelGeometryChanged, PanelRemoved
from .exceptions import PanelNarratorError
from .geometry import Rect
from .models import AudioArtifact, AudioStatus, BatchStatus, PanelStatus
from .narrative_client import NarrativeClient, StoryResult
from .panel_detector import PanelDetector
from .state_store import StateStore

logger = logging.getLogger(__name__)


@dataclass
class BatchReport:
    """Outcome of a batch run. Ids are chapter ids for story runs and panel ids for narration runs."""
    completed: List[str] = field(default_factory=list)
    failed: List[str] = field(default_factory=list)
    skipped: List[str] = field(default_factory=list)
    errors: Dict[str, str] = field(default_factory=dict)
    stopped: bool = False

    def merge(self, other: "BatchReport") -> None:
        self.completed.extend(other.completed)
        self.failed.extend(other.failed)
        self.skipped.extend(other.skipped)
        self.errors.update(other.errors)
        self.stopped = self.stopped or other.stopped

    @property
    def ok(self) -> bool:
        return not self.failed and not self.stopped


class NarrationPipeline:
    def __init__(self, store: StateStore, narrative_client: NarrativeClient = None,
                 audio_client: NarrationAudioClient = None, detector: PanelDetector = None,
                 crop_scheduler: CropScheduler = None, config: Config = None):
        self.store = store
        self.config = config or store.config
        self.detector = detector or PanelDetector(self.config)
        self.crop_scheduler = crop_scheduler or CropScheduler()
        self._narrative_client = narrative_client
        self._audio_client = audio_client
        self._pending_crops: Set[str] = set()
        self._stop_requested = False
        self._unsubscribe = [
            store.bus.subscribe(PanelGeometryChanged, self._on_geometry_changed),
            store.bus.subscribe(PanelRemoved, self._on_panel_removed),
        ]

    @property
    def narrative_client(self) -> NarrativeClient:
        if self._narrative_client is None:
            self._narrative_client = NarrativeClient(config=self.config)
        return self._narrative_client

    @property
    def audio_client(self) -> NarrationAudioClient:
        if self._audio_client is None:
            self._audio_client = NarrationAudioClient(config=self.config)
        return self._audio_client

    def close(self) -> None:
        for unsubscribe in self._unsubscribe:
            unsubscribe()
        self._unsubscribe = []

    # ------------------------------------------------------------------
    # crops
    # ------------------------------------------------------------------

    def _on_geometry_changed(self, event: PanelGeometryChanged) -> None:
        try:
            asyncio.get_running_loop()
        except RuntimeError:
            self._pending_crops.add(event.panel_id)
            return
        self._pending_crops.discard(event.panel_id)
        page = self.store.page(event.page_id)
        self.crop_scheduler.schedule(event.panel_id, page, event.rect, self._store_crop)

    def _on_panel_removed(self, event: PanelRemoved) -> None:
        self._pending_crops.discard(event.panel_id)
        self.crop_scheduler.cancel(event.panel_id)

    def _store_crop(self, panel_id: str, rect: Rect, image: Optional[bytes]) -> None:
        if image is None:
            logger.warning(f"⚠️ Crop produced no image for panel {panel_id}")
            return
        self.store.set_cropped_image(panel_id, rect, image)

    @property
    def pending_crops(self) -> Set[str]:
        return set(self._pending_crops)

    async def flush_crops(self) -> None:
        """Schedule crops queued while no loop was running, then wait for all crops."""
        pending, self._pending_crops = self._pending_crops, set()
        for panel_id in pending:
            panel = self.store.state.panels.get(panel_id)
            if panel is None or panel.cropped_image is not None:
                continue
            page = self.store.page(panel.page_id)
            self.crop_scheduler.schedule(panel_id, page, panel.rect, self._store_crop)
        await self.crop_scheduler.drain()

    async def ensure_crops(self, panel_ids: Optional[Sequence[str]] = None) -> int:
        """Crop every listed panel (default: all) that has no thumbnail. Returns how many still lack one."""
        self._pending_crops.clear()
        for panel in self.store.panels_missing_crops(panel_ids):
            if self.crop_scheduler.in_flight(panel.panel_id):
                continue
            page = self.store.page(panel.page_id)
            self.crop_scheduler.schedule(panel.panel_id, page, panel.rect, self._store_crop)
        await self.crop_scheduler.drain()
        return len(self.store.panels_missing_crops(panel_ids))

    # ------------------------------------------------------------------
    # detection
    # ------------------------------------------------------------------

    async def detect_chapter(self, chapter_id: str, wait_for_crops: bool = True) -> Dict[str, List[str]]:
        """Detect panels on every page of a chapter; returns page id -> new panel ids."""
        pages = self.store.state.chapter_pages(chapter_id)
        detections = await asyncio.gather(*[
            asyncio.to_thread(self.detector.detect_image_bytes, page.image_bytes) for page in pages
        ])

        found = {}
        for page, detected in zip(pages, detections):
            found[page.page_id] = self.store.set_detected_panels(page.page_id, detected)
        logger.info(f"✅ Chapter {chapter_id}: {sum(len(v) for v in found.values())} panels on {len(pages)} pages")

        if wait_for_crops:
            await self.crop_scheduler.drain()
        return found

    async def detect_all(self, wait_for_crops: bool = True) -> BatchReport:
        """Detect chapter by chapter; a stop request takes effect before the next chapter."""
        self._stop_requested = False
        report = BatchReport()
        for chapter_id in self.store.chapter_ids():
            if self._stop_requested:
                report.stopped = True
                break
            await self.detect_chapter(chapter_id, wait_for_crops=False)
            report.completed.append(chapter_id)
        if wait_for_crops:
            await self.crop_scheduler.drain()
        return report

    # ------------------------------------------------------------------
    # stop
    # ------------------------------------------------------------------

    def request_stop(self) -> None:
        """Stop the running batch at the next panel or chapter boundary."""
        logger.info("⚠️ Stop requested")
        self._stop_requested = True

    @property
    def stop_requested(self) -> bool:
        return self._stop_requested

    # ------------------------------------------------------------------
    # stories
    # ------------------------------------------------------------------

    async def generate_stories(self, chapter_id: str, context: Optional[str] = None,
                               character_notes: str = "",
                               languages: Optional[Sequence[str]] = None) -> List[StoryResult]:
        """
        Generate narration for every panel of a chapter in one batch.

        On failure the error is recorded on the chapter and its panels and
        re-raised.
        """
        panel_ids = [p.panel_id for p in self.store.chapter_panels(chapter_id)]
        if not panel_ids:
            self.store.set_chapter_status(chapter_id, BatchStatus.COMPLETE)
            return []

        self.store.set_chapter_status(chapter_id, BatchStatus.PROCESSING)
        for panel_id in panel_ids:
            self.store.set_panel_status(panel_id, PanelStatus.SUMMARIZING)

        try:
            await self.ensure_crops(panel_ids)
            panels = [self.store.panel(pid) for pid in panel_ids if pid in self.store.state.panels]
            results = await self.narrative_client.generate_stories(
                panels, character_notes=character_notes, languages=languages, context=context)
        except PanelNarratorError as e:
            logger.error(f"❌ Story generation failed for chapter {chapter_id}: {e}")
            self.store.set_chapter_status(chapter_id, BatchStatus.ERROR, str(e))
            for panel_id in panel_ids:
                if panel_id in self.store.state.panels:
                    self.store.set_panel_status(panel_id, PanelStatus.ERROR, str(e))
            raise

        self.store.apply_story_results(results)
        self.store.set_chapter_status(chapter_id, BatchStatus.COMPLETE)
        return results

    async def generate_all_stories(self, language: Optional[str] = None, character_notes: str = "",
                                   languages: Optional[Sequence[str]] = None) -> BatchReport:
        """Chapters in order, each getting the trailing text of the one before it."""
        language = language or self.config.primary_language
        self._stop_requested = False
        report = BatchReport()
        context = None

        for chapter_id in self.store.chapter_ids():
            if self._stop_requested:
                report.stopped = True
                break
            try:
                await self.generate_stories(chapter_id, context, character_notes, languages)
                report.completed.append(chapter_id)
            except PanelNarratorError as e:
                report.failed.append(chapter_id)
                report.errors[chapter_id] = str(e)
            if self.store.chapter_panels(chapter_id):
                context = self.store.trailing_context(chapter_id, language)

        logger.info(f"✅ Stories: {len(report.completed)} chapters done, {len(report.failed)} failed")
        return report

    # ------------------------------------------------------------------
    # narration audio
    # ------------------------------------------------------------------

    async def _narrate_chapter(self, chapter_id: str, language: str, voice: Optional[str],
                               params: Optional[SpeechParams]) -> BatchReport:
        report = BatchReport()
        for panel_id in [p.panel_id for p in self.store.chapter_panels(chapter_id)]:
            if self._stop_requested:
                report.stopped = True
                break
            if panel_id not in self.store.state.panels:
                continue

            panel = self.store.panel(panel_id)
            voiced = panel.text(language)
            text = voiced.strip()
            if not text:
                report.skipped.append(panel_id)
                continue

            previous = self.store.previous_panel(panel_id)
            previous_text = previous.text(language) if previous is not None else None
            prior_status = panel.status

            self.store.set_panel_status(panel_id, PanelStatus.NARRATING)
            self.store.set_audio(panel_id, language, AudioArtifact(AudioStatus.GENERATING), voiced)
            try:
                pcm = await self.audio_client.generate_audio(text, previous_text, voice, params)
            except PanelNarratorError as e:
                logger.error(f"❌ Audio failed for panel {panel_id}: {e}")
                if panel_id in self.store.state.panels:
                    self.store.set_audio(panel_id, language, AudioArtifact(AudioStatus.FAILED, error=str(e)), voiced)
                    self.store.set_panel_status(panel_id, prior_status, str(e))
                report.failed.append(panel_id)
                report.errors[panel_id] = str(e)
                continue

            if panel_id not in self.store.state.panels:
                continue
            self.store.set_panel_status(panel_id, prior_status)
            duration = len(pcm) / 2 / self.config.sample_rate
            if self.store.set_audio(panel_id, language, AudioArtifact(AudioStatus.READY, pcm, duration), voiced):
                report.completed.append(panel_id)
            else:
                report.skipped.append(panel_id)
        return report

    async def _narrate_with_status(self, chapter_id: str, language: str, voice: Optional[str],
                                   params: Optional[SpeechParams]) -> BatchReport:
        self.store.set_chapter_status(chapter_id, BatchStatus.PROCESSING)
        report = await self._narrate_chapter(chapter_id, language, voice, params)
        if report.failed:
            error = "; ".join(f"{pid}: {report.errors[pid]}" for pid in report.failed)
            self.store.set_chapter_status(chapter_id, BatchStatus.ERROR, error)
        elif report.stopped:
            self.store.set_chapter_status(chapter_id, BatchStatus.PENDING)
        else:
            self.store.set_chapter_status(chapter_id, BatchStatus.COMPLETE)
        return report

    async def narrate_chapter(self, chapter_id: str, language: Optional[str] = None,
                              voice: Optional[str] = None, params: Optional[SpeechParams] = None) -> BatchReport:
        """Audio for every panel with text, strictly in reading order."""
        self._stop_requested = False
        return await self._narrate_with_status(chapter_id, language or self.config.primary_language, voice, params)

    async def narrate_all(self, language: Optional[str] = None, voice: Optional[str] = None,
                          params: Optional[SpeechParams] = None) -> BatchReport:
        language = language or self.config.primary_language
        self._stop_requested = False
        report = BatchReport()
        for chapter_id in self.store.chapter_ids():
            if self._stop_requested:
                report.stopped = True
                break
            report.merge(await self._narrate_with_status(chapter_id, language, voice, params))
            if report.stopped:
                break

        logger.info(f"✅ Narration: {len(report.completed)} panels, {len(report.failed)} failed, "
                    f"{len(report.skipped)} skipped")
        return report
