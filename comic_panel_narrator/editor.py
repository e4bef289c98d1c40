"""
Pointer and keyboard editing on top of the state store.

The UI converts screen coordinates to normalized page coordinates and feeds
them here; this module decides whether a gesture draws, moves or resizes a
panel and turns it into store operations.
"""

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Dict, List, Optional

from . import geometry
from .config import Config
from .geometry import Rect
from .state_store import StateStore

logger = logging.getLogger(__name__)


class EditorMode(str, Enum):
    IDLE = "idle"
    DRAWING = "drawing"
    MOVING = "moving"
    RESIZING = "resizing"


@dataclass(frozen=True)
class Keybinding:
    key: str
    ctrl: bool = False
    shift: bool = False
    alt: bool = False

    def matches(self, key: str, ctrl: bool = False, shift: bool = False, alt: bool = False) -> bool:
        return (
            self.key.lower() == key.lower() and
            self.ctrl == ctrl and
            self.shift == shift and
            self.alt == alt
        )


DEFAULT_KEYBINDINGS: Dict[str, List[Keybinding]] = {
    "split": [Keybinding("b", ctrl=True)],
    "crop_top": [Keybinding("q")],
    "crop_bottom": [Keybinding("w")],
    "delete": [Keybinding("Delete")],
    "undo": [Keybinding("z", ctrl=True)],
    "redo": [Keybinding("y", ctrl=True), Keybinding("z", ctrl=True, shift=True)],
    "next": [Keybinding("Enter")],
    "previous": [Keybinding("Enter", shift=True)],
}


class EditorSurface:
    """One editing session over a StateStore."""

    def __init__(self, store: StateStore, config: Config = None,
                 keybindings: Optional[Dict[str, List[Keybinding]]] = None):
        self.store = store
        self.config = config or store.config
        self.keybindings = dict(DEFAULT_KEYBINDINGS)
        if keybindings:
            self.keybindings.update(keybindings)

        self.mode = EditorMode.IDLE
        self.preview: Optional[Rect] = None
        self.cursor_y: Optional[float] = None
        self._page_id: Optional[str] = None
        self._panel_id: Optional[str] = None
        self._handle: Optional[str] = None
        self._start = (0.0, 0.0)
        self._original: Optional[Rect] = None

    # ------------------------------------------------------------------
    # pointer state machine
    # ------------------------------------------------------------------

    def pointer_down(self, page_id: str, x: float, y: float,
                     panel_id: Optional[str] = None, handle: Optional[str] = None) -> EditorMode:
        """Start a gesture. No panel hit draws; a panel body moves; a handle resizes."""
        self.store.page(page_id)
        self._page_id = page_id
        self._start = (x, y)
        self.cursor_y = y

        if panel_id is None:
            self.mode = EditorMode.DRAWING
            self.preview = geometry.from_points(x, y, x, y)
            return self.mode

        panel = self.store.panel(panel_id)
        self.store.select(panel_id)
        self._panel_id = panel_id
        self._original = panel.rect
        if handle is not None:
            if handle not in geometry.HANDLES:
                raise ValueError(f"Unknown resize handle: {handle}")
            self._handle = handle
            self.mode = EditorMode.RESIZING
        else:
            self.mode = EditorMode.MOVING
        self.store.begin_drag(panel_id)
        return self.mode

    def pointer_move(self, x: float, y: float) -> Optional[Rect]:
        """Update the gesture; returns the rect currently shown for it."""
        self.cursor_y = y
        if self.mode == EditorMode.IDLE:
            return None

        if self.mode == EditorMode.DRAWING:
            self.preview = geometry.clamp(geometry.from_points(self._start[0], self._start[1], x, y))
            return self.preview

        dx = x - self._start[0]
        dy = y - self._start[1]
        if self.mode == EditorMode.MOVING:
            rect = geometry.translate(self._original, dx, dy)
        else:
            rect = geometry.resize(self._original, self._handle, dx, dy)

        if geometry.is_valid(rect):
            self.store.move_panel_live(self._panel_id, rect)
        return self.store.panel(self._panel_id).rect

    def pointer_up(self, x: float, y: float) -> Optional[str]:
        """
        Finish the gesture.

        Returns the id of a newly drawn panel, the id of a moved or resized
        panel when its geometry changed, otherwise None.
        """
        mode = self.mode
        result = None
        try:
            if mode == EditorMode.DRAWING:
                rect = geometry.clamp(geometry.from_points(self._start[0], self._start[1], x, y))
                if rect.w > self.config.min_draw_size and rect.h > self.config.min_draw_size:
                    result = self.store.add_panel(self._page_id, rect)
                else:
                    logger.debug("⚠️ Drawn rect below minimum size, discarded")
            elif mode in (EditorMode.MOVING, EditorMode.RESIZING):
                self.pointer_move(x, y)
                if self.store.commit_drag():
                    result = self._panel_id
        finally:
            self._reset_gesture()
        return result

    def cancel(self) -> None:
        if self.mode in (EditorMode.MOVING, EditorMode.RESIZING):
            self.store.cancel_drag()
        self._reset_gesture()

    def _reset_gesture(self) -> None:
        self.mode = EditorMode.IDLE
        self.preview = None
        self._panel_id = None
        self._handle = None
        self._original = None

    # ------------------------------------------------------------------
    # explicit actions on the selection
    # ------------------------------------------------------------------

    def track_cursor(self, y: float) -> None:
        self.cursor_y = y

    def _target_y(self, y: Optional[float]) -> Optional[float]:
        return self.cursor_y if y is None else y

    def split_selected(self, y: Optional[float] = None):
        y = self._target_y(y)
        panel_id = self.store.selected_panel_id
        if panel_id is None or y is None:
            return None
        return self.store.split_panel(panel_id, y)

    def crop_top(self, y: Optional[float] = None) -> Optional[Rect]:
        y = self._target_y(y)
        panel_id = self.store.selected_panel_id
        if panel_id is None or y is None:
            return None
        return self.store.crop_panel(panel_id, y, geometry.TOP)

    def crop_bottom(self, y: Optional[float] = None) -> Optional[Rect]:
        y = self._target_y(y)
        panel_id = self.store.selected_panel_id
        if panel_id is None or y is None:
            return None
        return self.store.crop_panel(panel_id, y, geometry.BOTTOM)

    def merge_with_next(self) -> bool:
        panel_id = self.store.selected_panel_id
        return panel_id is not None and self.store.merge_with_next(panel_id)

    def delete_selected(self) -> bool:
        panel_id = self.store.selected_panel_id
        return panel_id is not None and self.store.delete_panel(panel_id)

    def duplicate_selected(self) -> Optional[str]:
        panel_id = self.store.selected_panel_id
        if panel_id is None:
            return None
        return self.store.duplicate_panel(panel_id)

    def undo(self) -> bool:
        self.cancel()
        return self.store.undo()

    def redo(self) -> bool:
        self.cancel()
        return self.store.redo()

    def select_next(self) -> Optional[str]:
        return self.store.select_next()

    def select_previous(self) -> Optional[str]:
        return self.store.select_previous()

    # ------------------------------------------------------------------
    # keyboard
    # ------------------------------------------------------------------

    def _actions(self) -> Dict[str, Callable[[], object]]:
        return {
            "undo": self.undo,
            "redo": self.redo,
            "delete": self.delete_selected,
            "next": self.select_next,
            "previous": self.select_previous,
            "split": self.split_selected,
            "crop_top": self.crop_top,
            "crop_bottom": self.crop_bottom,
        }

    def action_for_key(self, key: str, ctrl: bool = False, shift: bool = False, alt: bool = False) -> Optional[str]:
        for action in self._actions():
            if any(b.matches(key, ctrl, shift, alt) for b in self.keybindings.get(action, [])):
                return action
        return None

    def handle_key(self, key: str, ctrl: bool = False, shift: bool = False, alt: bool = False) -> Optional[str]:
        """Run the action bound to a key press; returns the action name, or None when unbound."""
        action = self.action_for_key(key, ctrl, shift, alt)
        if action is None:
            return None
        self._actions()[action]()
        return action
