"""
Entities of a narration project.

Every entity is a frozen dataclass and every change produces a new value, so
history snapshots share whatever they did not touch. `ProjectState` is the
arena: chapters, pages and panels live in id-addressed maps and refer to each
other only by id.
"""

from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Dict, List, Mapping, Optional, Sequence, Tuple

from .exceptions import UnknownEntityError
from .geometry import Rect


class PanelStatus(str, Enum):
    PENDING = "pending"
    SUMMARIZING = "summarizing"
    NARRATING = "narrating"
    COMPLETE = "complete"
    SKIPPED = "skipped"
    ERROR = "error"


class AudioStatus(str, Enum):
    PENDING = "pending"
    GENERATING = "generating"
    READY = "ready"
    FAILED = "failed"


class BatchStatus(str, Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETE = "complete"
    ERROR = "error"


# =============================================================================
# INGESTION INPUT
# =============================================================================

@dataclass(frozen=True)
class PageSource:
    """One page as handed over by ingestion."""
    file_name: str
    image_bytes: bytes = field(repr=False)
    width: int
    height: int
    mime_type: str = "image/png"


@dataclass(frozen=True)
class ChapterSource:
    """A named, already naturally sorted list of pages."""
    name: str
    pages: Tuple[PageSource, ...]


# =============================================================================
# PROJECT ENTITIES
# =============================================================================

@dataclass(frozen=True)
class AudioArtifact:
    status: AudioStatus = AudioStatus.PENDING
    pcm: Optional[bytes] = field(default=None, repr=False)
    duration: float = 0.0
    error: Optional[str] = None


@dataclass(frozen=True)
class Chapter:
    chapter_id: str
    name: str
    rank: int
    page_ids: Tuple[str, ...] = ()
    status: BatchStatus = BatchStatus.PENDING
    error: Optional[str] = None


@dataclass(frozen=True)
class Page:
    page_id: str
    chapter_id: str
    file_name: str
    image_bytes: bytes = field(repr=False)
    width: int
    height: int
    mime_type: str = "image/png"
    panel_ids: Tuple[str, ...] = ()


@dataclass(frozen=True)
class Panel:
    panel_id: str
    page_id: str
    rect: Rect
    index: int = 0
    texts: Mapping[str, str] = field(default_factory=dict)
    confidence: float = 1.0
    key_action_description: str = ""
    dialogue_summary: str = ""
    narration_tone: str = ""
    cropped_image: Optional[bytes] = field(default=None, repr=False)
    audio: Mapping[str, AudioArtifact] = field(default_factory=dict)
    status: PanelStatus = PanelStatus.PENDING
    error: Optional[str] = None

    def text(self, language: str) -> str:
        return self.texts.get(language, "") or ""

    def with_rect(self, rect: Rect) -> "Panel":
        """New geometry always invalidates the thumbnail."""
        return replace(self, rect=rect, cropped_image=None)

    def cleared(self, panel_id: str, rect: Optional[Rect] = None) -> "Panel":
        """A fresh copy under a new id with texts and audio dropped."""
        return replace(
            self,
            panel_id=panel_id,
            rect=rect if rect is not None else self.rect,
            texts={},
            audio={},
            cropped_image=None if rect is not None else self.cropped_image,
            status=PanelStatus.PENDING,
            error=None,
        )


@dataclass(frozen=True)
class ExportedPanel:
    """A panel as handed to export: reading position plus artifacts."""
    chapter_id: str
    page_id: str
    panel_id: str
    position: int
    rect: Rect
    cropped_image: Optional[bytes] = field(repr=False)
    texts: Mapping[str, str]
    audio: Mapping[str, AudioArtifact]


@dataclass(frozen=True)
class ProjectState:
    """Immutable arena of chapters, pages and panels."""
    chapter_order: Tuple[str, ...] = ()
    chapters: Mapping[str, Chapter] = field(default_factory=dict)
    pages: Mapping[str, Page] = field(default_factory=dict)
    panels: Mapping[str, Panel] = field(default_factory=dict)

    # ------------------------------------------------------------------
    # lookups
    # ------------------------------------------------------------------

    def chapter(self, chapter_id: str) -> Chapter:
        try:
            return self.chapters[chapter_id]
        except KeyError:
            raise UnknownEntityError("chapter", chapter_id) from None

    def page(self, page_id: str) -> Page:
        try:
            return self.pages[page_id]
        except KeyError:
            raise UnknownEntityError("page", page_id) from None

    def panel(self, panel_id: str) -> Panel:
        try:
            return self.panels[panel_id]
        except KeyError:
            raise UnknownEntityError("panel", panel_id) from None

    def page_panels(self, page_id: str) -> List[Panel]:
        return [self.panels[pid] for pid in self.page(page_id).panel_ids]

    def chapter_pages(self, chapter_id: str) -> List[Page]:
        return [self.pages[pid] for pid in self.chapter(chapter_id).page_ids]

    def chapter_panels(self, chapter_id: str) -> List[Panel]:
        panels = []
        for page in self.chapter_pages(chapter_id):
            panels.extend(self.panels[pid] for pid in page.panel_ids)
        return panels

    def reading_order(self) -> List[Panel]:
        """All panels: chapter by chapter, page by page, panel by panel."""
        panels = []
        for chapter_id in self.chapter_order:
            panels.extend(self.chapter_panels(chapter_id))
        return panels

    def chapter_of(self, panel_id: str) -> str:
        return self.page(self.panel(panel_id).page_id).chapter_id

    # ------------------------------------------------------------------
    # copy-on-write updates
    # ------------------------------------------------------------------

    def with_panel(self, panel: Panel) -> "ProjectState":
        panels = dict(self.panels)
        panels[panel.panel_id] = panel
        return replace(self, panels=panels)

    def with_chapter(self, chapter: Chapter) -> "ProjectState":
        chapters = dict(self.chapters)
        chapters[chapter.chapter_id] = chapter
        return replace(self, chapters=chapters)

    def with_page_panels(self, page_id: str, panels: Sequence[Panel]) -> "ProjectState":
        """
        Replace the panel list of a page.

        Panels are re-indexed 0..n-1 in the given order and panels that used to
        belong to the page but are not in `panels` are dropped from the arena.
        """
        page = self.page(page_id)
        new_panels: Dict[str, Panel] = dict(self.panels)
        keep = {p.panel_id for p in panels}
        for old_id in page.panel_ids:
            if old_id not in keep:
                new_panels.pop(old_id, None)

        for index, panel in enumerate(panels):
            if panel.index != index or panel.page_id != page_id:
                panel = replace(panel, index=index, page_id=page_id)
            new_panels[panel.panel_id] = panel

        pages = dict(self.pages)
        pages[page_id] = replace(page, panel_ids=tuple(p.panel_id for p in panels))
        return replace(self, pages=pages, panels=new_panels)
