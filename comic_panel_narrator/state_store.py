"""
Single source of truth for a narration project.

The store owns an undo/redo `History` of immutable `ProjectState` snapshots,
the global panel selection and the `EventBus` that tells the pipeline which
panels need a new thumbnail.

Two kinds of writes exist:

* history-significant edits (detection results, geometry edits, text edits)
  commit a new snapshot;
* derived updates (thumbnails, statuses, generated narration, audio) are
  folded into every snapshot so that undo never throws away work that is
  still valid.
"""

import logging
from dataclasses import replace
from typing import Callable, Iterable, List, Optional, Sequence, Tuple

from . import geometry
from .config import Config
from .events import EventBus, PanelGeometryChanged, PanelRemoved
from .exceptions import UnknownEntityError
from .geometry import Rect
from .history import History
from .models import (
    AudioArtifact,
    BatchStatus,
    Chapter,
    ChapterSource,
    ExportedPanel,
    Page,
    Panel,
    PanelStatus,
    ProjectState,
)
from .utils import generate_id

logger = logging.getLogger(__name__)


def _without(audio, languages) -> dict:
    """Audio map minus the given languages; their text no longer matches the recording."""
    return {lang: artifact for lang, artifact in audio.items() if lang not in languages}


class StateStore:
    """Chapters, pages and panels plus history and selection."""

    def __init__(self, config: Config = None, bus: EventBus = None):
        self.config = config or Config()
        self.bus = bus or EventBus()
        self.history: History[ProjectState] = History(ProjectState(), depth=self.config.history_depth)
        self.selected_panel_id: Optional[str] = None
        self._drag_origin: Optional[Tuple[str, ProjectState]] = None

    @property
    def state(self) -> ProjectState:
        return self.history.present

    @property
    def can_undo(self) -> bool:
        return self.history.can_undo

    @property
    def can_redo(self) -> bool:
        return self.history.can_redo

    # ------------------------------------------------------------------
    # internal helpers
    # ------------------------------------------------------------------

    def _commit(self, new_state: ProjectState, previous: Optional[ProjectState] = None) -> bool:
        return self.history.commit(new_state, previous)

    def _derive(self, fn: Callable[[ProjectState], ProjectState]) -> None:
        self.history.rebase(fn)
        if self._drag_origin is not None:
            panel_id, origin = self._drag_origin
            self._drag_origin = (panel_id, fn(origin))

    def _emit_geometry(self, panel: Panel) -> None:
        self.bus.publish(PanelGeometryChanged(panel.panel_id, panel.page_id, panel.rect))

    def _emit_removed(self, panel: Panel) -> None:
        self.bus.publish(PanelRemoved(panel.panel_id, panel.page_id))

    def _locate(self, panel_id: str) -> Tuple[Panel, List[Panel]]:
        panel = self.state.panel(panel_id)
        return panel, self.state.page_panels(panel.page_id)

    @staticmethod
    def _clamped(rect: Rect) -> Optional[Rect]:
        rect = geometry.clamp(rect)
        return rect if geometry.is_valid(rect) else None

    def _reconcile_after_jump(self, before: ProjectState) -> None:
        """Selection and events after undo/redo replaced the whole snapshot."""
        after = self.state
        for panel_id, panel in before.panels.items():
            if panel_id not in after.panels:
                self._emit_removed(panel)
        for panel in after.reading_order():
            if panel.cropped_image is None:
                self._emit_geometry(panel)
        if self.selected_panel_id not in after.panels:
            self.selected_panel_id = None

    # ------------------------------------------------------------------
    # ingestion and detection
    # ------------------------------------------------------------------

    def load_chapters(self, sources: Sequence[ChapterSource]) -> List[str]:
        """Replace the project with the given chapters, in the order given. Clears history."""
        chapters = {}
        pages = {}
        order = []
        for rank, source in enumerate(sources):
            chapter_id = generate_id("chapter")
            page_ids = []
            for page_source in source.pages:
                page_id = generate_id("page")
                pages[page_id] = Page(
                    page_id=page_id,
                    chapter_id=chapter_id,
                    file_name=page_source.file_name,
                    image_bytes=page_source.image_bytes,
                    width=page_source.width,
                    height=page_source.height,
                    mime_type=page_source.mime_type,
                )
                page_ids.append(page_id)
            chapters[chapter_id] = Chapter(chapter_id, source.name, rank, tuple(page_ids))
            order.append(chapter_id)

        old_panels = list(self.state.panels.values())
        self.history.reset(ProjectState(tuple(order), chapters, pages, {}))
        self.selected_panel_id = None
        self._drag_origin = None
        for panel in old_panels:
            self._emit_removed(panel)

        logger.info(f"✅ Loaded {len(order)} chapters, {len(pages)} pages")
        return order

    def set_detected_panels(self, page_id: str, detected: Iterable) -> List[str]:
        """Replace a page's panels with detector output (anything with `rect` and `confidence`)."""
        old = self.state.page_panels(page_id)
        panels = []
        for item in detected:
            rect = self._clamped(item.rect)
            if rect is None:
                continue
            panels.append(Panel(generate_id("panel"), page_id, rect, confidence=item.confidence))

        self._commit(self.state.with_page_panels(page_id, panels))
        for panel in old:
            self._emit_removed(panel)
        for panel in self.state.page_panels(page_id):
            self._emit_geometry(panel)
        if self.selected_panel_id not in self.state.panels:
            self.selected_panel_id = None
        return [p.panel_id for p in panels]

    # ------------------------------------------------------------------
    # geometry edits
    # ------------------------------------------------------------------

    def add_panel(self, page_id: str, rect: Rect, select: bool = True) -> Optional[str]:
        """Insert a drawn panel in reading order (top edge, then left edge)."""
        rect = self._clamped(rect)
        if rect is None:
            return None

        panels = self.state.page_panels(page_id)
        position = len(panels)
        for i, existing in enumerate(panels):
            if (rect.y, rect.x) < (existing.rect.y, existing.rect.x):
                position = i
                break

        panel = Panel(generate_id("panel"), page_id, rect)
        panels.insert(position, panel)
        self._commit(self.state.with_page_panels(page_id, panels))
        self._emit_geometry(panel)
        if select:
            self.selected_panel_id = panel.panel_id
        return panel.panel_id

    def update_panel_rect(self, panel_id: str, rect: Rect) -> bool:
        panel = self.state.panel(panel_id)
        rect = self._clamped(rect)
        if rect is None or rect == panel.rect:
            return False
        self._commit(self.state.with_panel(panel.with_rect(rect)))
        self._emit_geometry(self.state.panel(panel_id))
        return True

    def begin_drag(self, panel_id: str) -> None:
        self.state.panel(panel_id)
        self._drag_origin = (panel_id, self.state)

    def move_panel_live(self, panel_id: str, rect: Rect) -> bool:
        """Live drag frame: replaces the present without history and without cropping."""
        if self._drag_origin is None or self._drag_origin[0] != panel_id:
            self.begin_drag(panel_id)
        rect = self._clamped(rect)
        if rect is None:
            return False
        panel = self.state.panel(panel_id)
        if rect != panel.rect:
            self.history.replace(self.state.with_panel(panel.with_rect(rect)))
        return True

    def commit_drag(self) -> bool:
        """Finish a drag as one history entry from the pre-drag state."""
        if self._drag_origin is None:
            return False
        panel_id, origin = self._drag_origin
        self._drag_origin = None

        if panel_id not in self.state.panels:
            return False
        if self.state.panel(panel_id).rect == origin.panel(panel_id).rect:
            self.history.replace(origin)
            return False

        changed = self._commit(self.state, previous=origin)
        self._emit_geometry(self.state.panel(panel_id))
        return changed

    def cancel_drag(self) -> None:
        if self._drag_origin is not None:
            self.history.replace(self._drag_origin[1])
            self._drag_origin = None

    def split_panel(self, panel_id: str, y_split: float) -> Optional[Tuple[str, str]]:
        """Split at page-Y `y_split` into two new panels; the top one is selected."""
        panel, panels = self._locate(panel_id)
        halves = geometry.split(panel.rect, y_split)
        if halves is None:
            return None

        top = panel.cleared(generate_id("panel"), halves[0])
        bottom = panel.cleared(generate_id("panel"), halves[1])
        panels[panel.index:panel.index + 1] = [top, bottom]
        self._commit(self.state.with_page_panels(panel.page_id, panels))

        self._emit_removed(panel)
        self._emit_geometry(top)
        self._emit_geometry(bottom)
        self.selected_panel_id = top.panel_id
        logger.debug(f"✂️ Split {panel_id} at {y_split:.4f}")
        return top.panel_id, bottom.panel_id

    def crop_panel(self, panel_id: str, y: float, direction: str) -> Optional[Rect]:
        """Move the top or bottom edge; texts and audio stay."""
        panel = self.state.panel(panel_id)
        rect = geometry.crop_edge(panel.rect, y, direction)
        if rect is None or rect == panel.rect:
            return None
        self._commit(self.state.with_panel(panel.with_rect(rect)))
        self._emit_geometry(self.state.panel(panel_id))
        return rect

    def duplicate_panel(self, panel_id: str) -> str:
        """Insert a copy right after the panel, with texts and audio cleared."""
        panel, panels = self._locate(panel_id)
        copy = panel.cleared(generate_id("panel"))
        panels.insert(panel.index + 1, copy)
        self._commit(self.state.with_page_panels(panel.page_id, panels))
        if copy.cropped_image is None:
            self._emit_geometry(copy)
        self.selected_panel_id = copy.panel_id
        return copy.panel_id

    # ------------------------------------------------------------------
    # other history-significant edits
    # ------------------------------------------------------------------

    def merge_with_next(self, panel_id: str) -> bool:
        """
        Fold the next panel of the same page into this one.

        Texts are joined per language with a single space; the geometry of the
        surviving panel is unchanged. Audio of the merged panel no longer
        matches its text and is dropped.
        """
        panel, panels = self._locate(panel_id)
        if panel.index + 1 >= len(panels):
            return False
        successor = panels[panel.index + 1]

        texts = {}
        for language in list(panel.texts) + [lang for lang in successor.texts if lang not in panel.texts]:
            parts = [t for t in (panel.texts.get(language), successor.texts.get(language)) if t]
            texts[language] = " ".join(parts)

        merged = replace(panel, texts=texts, audio={})
        panels[panel.index:panel.index + 2] = [merged]
        self._commit(self.state.with_page_panels(panel.page_id, panels))
        self._emit_removed(successor)
        if self.selected_panel_id == successor.panel_id:
            self.selected_panel_id = panel_id
        return True

    def delete_panel(self, panel_id: str) -> bool:
        """
        Remove a panel. A deleted selection moves to the panel now at its index
        on the same page, else that page's new last panel; only an emptied page
        hands the selection to the neighbour in global reading order.
        """
        panel, panels = self._locate(panel_id)
        order = [p.panel_id for p in self.state.reading_order()]
        position = order.index(panel_id)

        del panels[panel.index]
        self._commit(self.state.with_page_panels(panel.page_id, panels))
        self._emit_removed(panel)

        if self.selected_panel_id == panel_id:
            if panels:
                self.selected_panel_id = panels[min(panel.index, len(panels) - 1)].panel_id
            else:
                remaining = self.state.reading_order()
                self.selected_panel_id = remaining[min(position, len(remaining) - 1)].panel_id if remaining else None
        return True

    def set_panel_text(self, panel_id: str, language: str, text: str) -> bool:
        panel = self.state.panel(panel_id)
        if panel.texts.get(language) == text:
            return False
        texts = dict(panel.texts)
        texts[language] = text
        return self._commit(self.state.with_panel(replace(panel, texts=texts, audio=_without(panel.audio, [language]))))

    # ------------------------------------------------------------------
    # derived updates (no history entry)
    # ------------------------------------------------------------------

    def set_cropped_image(self, panel_id: str, rect: Rect, image: Optional[bytes]) -> bool:
        """Store a thumbnail cut for `rect`; ignored once the panel has moved on."""
        if panel_id not in self.state.panels or self.state.panels[panel_id].rect != rect:
            logger.debug(f"⚠️ Discarding stale crop for {panel_id}")
            return False

        def apply(state: ProjectState) -> ProjectState:
            panel = state.panels.get(panel_id)
            if panel is None or panel.rect != rect:
                return state
            return state.with_panel(replace(panel, cropped_image=image))

        self._derive(apply)
        return True

    def set_panel_status(self, panel_id: str, status: PanelStatus, error: Optional[str] = None) -> None:
        self.state.panel(panel_id)

        def apply(state: ProjectState) -> ProjectState:
            panel = state.panels.get(panel_id)
            if panel is None:
                return state
            return state.with_panel(replace(panel, status=status, error=error))

        self._derive(apply)

    def set_audio(self, panel_id: str, language: str, artifact: AudioArtifact, text: Optional[str] = None) -> bool:
        """
        Store audio voiced from `text` (default: the panel's current text).

        Only snapshots where the panel holds that text receive it, so undoing
        back to the voiced text brings the audio along. Returns False when the
        present text differs.
        """
        current = self.state.panel(panel_id).text(language)
        voiced = current if text is None else text

        def apply(state: ProjectState) -> ProjectState:
            panel = state.panels.get(panel_id)
            if panel is None or panel.text(language) != voiced:
                return state
            audio = dict(panel.audio)
            audio[language] = artifact
            return state.with_panel(replace(panel, audio=audio))

        self._derive(apply)
        if current != voiced:
            logger.debug(f"⚠️ Audio for {panel_id} no longer matches its text")
            return False
        return True

    def set_chapter_status(self, chapter_id: str, status: BatchStatus, error: Optional[str] = None) -> None:
        self.state.chapter(chapter_id)

        def apply(state: ProjectState) -> ProjectState:
            chapter = state.chapters.get(chapter_id)
            if chapter is None:
                return state
            return state.with_chapter(replace(chapter, status=status, error=error))

        self._derive(apply)

    def apply_story_results(self, results: Iterable) -> int:
        """
        Write narrative results back onto their panels.

        Each result carries `panel_id`, `texts`, `key_action_description`,
        `dialogue_summary` and `narration_tone`. Results for panels deleted in
        the meantime are skipped. Returns the number applied.
        """
        results = list(results)
        applied = sum(1 for r in results if r.panel_id in self.state.panels)

        def apply(state: ProjectState) -> ProjectState:
            for result in results:
                panel = state.panels.get(result.panel_id)
                if panel is None:
                    continue
                texts = dict(panel.texts)
                texts.update(result.texts)
                changed = [lang for lang, text in result.texts.items() if panel.texts.get(lang) != text]
                state = state.with_panel(replace(
                    panel,
                    texts=texts,
                    audio=_without(panel.audio, changed),
                    key_action_description=result.key_action_description,
                    dialogue_summary=result.dialogue_summary,
                    narration_tone=result.narration_tone,
                    status=PanelStatus.COMPLETE,
                    error=None,
                ))
            return state

        self._derive(apply)
        if applied < len(results):
            logger.warning(f"⚠️ {len(results) - applied} story results referred to deleted panels")
        return applied

    # ------------------------------------------------------------------
    # queries
    # ------------------------------------------------------------------

    def chapter_ids(self) -> List[str]:
        return list(self.state.chapter_order)

    def chapter_panels(self, chapter_id: str) -> List[Panel]:
        return self.state.chapter_panels(chapter_id)

    def reading_order(self) -> List[Panel]:
        return self.state.reading_order()

    def panel(self, panel_id: str) -> Panel:
        return self.state.panel(panel_id)

    def page(self, page_id: str) -> Page:
        return self.state.page(page_id)

    def previous_panel(self, panel_id: str) -> Optional[Panel]:
        """Panel right before this one in reading order, across page and chapter boundaries."""
        self.state.panel(panel_id)
        previous = None
        for panel in self.state.reading_order():
            if panel.panel_id == panel_id:
                return previous
            previous = panel
        return None

    def trailing_context(self, chapter_id: str, language: str) -> Optional[str]:
        """Text of the chapter's last panel in `language`, the context handed to the next chapter."""
        panels = self.state.chapter_panels(chapter_id)
        if not panels:
            return None
        text = panels[-1].text(language).strip()
        return text or None

    def context_for(self, chapter_id: str, language: str) -> Optional[str]:
        """Trailing context of the chapter before `chapter_id`, if there is one."""
        order = self.state.chapter_order
        self.state.chapter(chapter_id)
        position = order.index(chapter_id)
        if position == 0:
            return None
        return self.trailing_context(order[position - 1], language)

    def export_chapter(self, chapter_id: str) -> List[ExportedPanel]:
        exported = []
        for position, panel in enumerate(self.state.chapter_panels(chapter_id)):
            exported.append(ExportedPanel(
                chapter_id=chapter_id,
                page_id=panel.page_id,
                panel_id=panel.panel_id,
                position=position,
                rect=panel.rect,
                cropped_image=panel.cropped_image,
                texts=dict(panel.texts),
                audio=dict(panel.audio),
            ))
        return exported

    # ------------------------------------------------------------------
    # history and selection
    # ------------------------------------------------------------------

    def undo(self) -> bool:
        self.cancel_drag()
        before = self.state
        if not self.history.undo():
            return False
        self._reconcile_after_jump(before)
        return True

    def redo(self) -> bool:
        self.cancel_drag()
        before = self.state
        if not self.history.redo():
            return False
        self._reconcile_after_jump(before)
        return True

    def select(self, panel_id: Optional[str]) -> None:
        if panel_id is not None and panel_id not in self.state.panels:
            raise UnknownEntityError("panel", panel_id)
        self.selected_panel_id = panel_id

    @property
    def selected_panel(self) -> Optional[Panel]:
        if self.selected_panel_id is None:
            return None
        return self.state.panels.get(self.selected_panel_id)

    def _step_selection(self, step: int) -> Optional[str]:
        order = [p.panel_id for p in self.state.reading_order()]
        if not order:
            return None
        if self.selected_panel_id not in order:
            self.selected_panel_id = order[0] if step > 0 else order[-1]
            return self.selected_panel_id
        position = order.index(self.selected_panel_id) + step
        if 0 <= position < len(order):
            self.selected_panel_id = order[position]
        return self.selected_panel_id

    def select_next(self) -> Optional[str]:
        return self._step_selection(1)

    def select_previous(self) -> Optional[str]:
        return self._step_selection(-1)

    def panels_missing_crops(self, panel_ids: Optional[Iterable[str]] = None) -> List[Panel]:
        panels = self.state.reading_order() if panel_ids is None else [self.state.panel(pid) for pid in panel_ids]
        return [p for p in panels if p.cropped_image is None]
