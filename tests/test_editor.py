"""
Tests for comic_panel_narrator/editor.py
"""

import pytest

from comic_panel_narrator.editor import EditorMode, EditorSurface, Keybinding
from comic_panel_narrator.geometry import Rect
from comic_panel_narrator.models import ChapterSource
from comic_panel_narrator.panel_detector import DetectedPanel
from comic_panel_narrator.state_store import StateStore

from .conftest import make_page_source


@pytest.fixture
def single(config):
    """Store with one page holding one panel at (0.2, 0.2, 0.3, 0.3)."""
    store = StateStore(config)
    store.load_chapters([ChapterSource("Chapter 1", (make_page_source(),))])
    page_id = next(iter(store.state.pages))
    (panel_id,) = store.set_detected_panels(page_id, [DetectedPanel(Rect(0.2, 0.2, 0.3, 0.3), 0.8)])
    return store, page_id, panel_id


class TestDrawing:
    def test_draw_adds_panel(self, single):
        store, page_id, _ = single
        editor = EditorSurface(store)

        assert editor.pointer_down(page_id, 0.1, 0.6) == EditorMode.DRAWING
        preview = editor.pointer_move(0.4, 0.8)
        assert preview.as_tuple() == pytest.approx((0.1, 0.6, 0.3, 0.2))

        new_id = editor.pointer_up(0.4, 0.8)
        assert new_id is not None
        assert store.panel(new_id).rect.as_tuple() == pytest.approx((0.1, 0.6, 0.3, 0.2))
        assert store.selected_panel_id == new_id
        assert editor.mode == EditorMode.IDLE

    def test_reversed_draw_is_normalized(self, single):
        store, page_id, _ = single
        editor = EditorSurface(store)
        editor.pointer_down(page_id, 0.4, 0.8)
        new_id = editor.pointer_up(0.1, 0.6)
        assert store.panel(new_id).rect.as_tuple() == pytest.approx((0.1, 0.6, 0.3, 0.2))

    def test_tiny_draw_is_discarded(self, single):
        store, page_id, _ = single
        editor = EditorSurface(store)
        before = store.state

        editor.pointer_down(page_id, 0.5, 0.5)
        assert editor.pointer_up(0.505, 0.7) is None
        assert store.state is before

    def test_draw_off_page_is_clamped(self, single):
        store, page_id, _ = single
        editor = EditorSurface(store)
        editor.pointer_down(page_id, 0.8, 0.8)
        new_id = editor.pointer_up(1.4, 1.3)
        rect = store.panel(new_id).rect
        assert rect.right == pytest.approx(1.0)
        assert rect.bottom == pytest.approx(1.0)


class TestMoveAndResize:
    def test_move_is_clamped_and_one_history_entry(self, single):
        store, page_id, panel_id = single
        editor = EditorSurface(store)
        past = len(store.history.past)

        assert editor.pointer_down(page_id, 0.3, 0.3, panel_id=panel_id) == EditorMode.MOVING
        editor.pointer_move(0.5, 0.5)
        editor.pointer_move(0.9, 0.9)
        assert editor.pointer_up(1.3, 1.3) == panel_id

        assert store.panel(panel_id).rect.as_tuple() == pytest.approx((0.7, 0.7, 0.3, 0.3))
        assert len(store.history.past) == past + 1

        editor.undo()
        assert store.panel(panel_id).rect == Rect(0.2, 0.2, 0.3, 0.3)

    def test_live_moves_skip_history(self, single):
        store, page_id, panel_id = single
        editor = EditorSurface(store)
        past = len(store.history.past)
        editor.pointer_down(page_id, 0.3, 0.3, panel_id=panel_id)
        editor.pointer_move(0.35, 0.3)
        assert len(store.history.past) == past
        assert store.panel(panel_id).rect.x == pytest.approx(0.25)

    def test_click_without_move_adds_no_history(self, single):
        store, page_id, panel_id = single
        editor = EditorSurface(store)
        past = len(store.history.past)

        editor.pointer_down(page_id, 0.3, 0.3, panel_id=panel_id)
        assert editor.pointer_up(0.3, 0.3) is None
        assert len(store.history.past) == past
        assert store.selected_panel_id == panel_id

    def test_resize_past_edge_flips(self, single):
        store, page_id, panel_id = single
        editor = EditorSurface(store)

        assert editor.pointer_down(page_id, 0.5, 0.35, panel_id=panel_id, handle="r") == EditorMode.RESIZING
        editor.pointer_up(0.1, 0.35)

        rect = store.panel(panel_id).rect
        assert rect.x == pytest.approx(0.1)
        assert rect.w == pytest.approx(0.1)
        assert rect.h == pytest.approx(0.3)

    def test_corner_dragged_past_origin_flips_both_axes(self, single):
        store, page_id, panel_id = single
        editor = EditorSurface(store)

        editor.pointer_down(page_id, 0.5, 0.5, panel_id=panel_id, handle="br")
        assert editor.pointer_up(0.1, 0.1) == panel_id

        assert store.panel(panel_id).rect.as_tuple() == pytest.approx((0.1, 0.1, 0.1, 0.1))

    def test_cancel_restores_origin(self, single):
        store, page_id, panel_id = single
        editor = EditorSurface(store)
        editor.pointer_down(page_id, 0.3, 0.3, panel_id=panel_id)
        editor.pointer_move(0.6, 0.6)
        editor.cancel()
        assert store.panel(panel_id).rect == Rect(0.2, 0.2, 0.3, 0.3)
        assert editor.mode == EditorMode.IDLE

    def test_unknown_handle(self, single):
        store, page_id, panel_id = single
        with pytest.raises(ValueError):
            EditorSurface(store).pointer_down(page_id, 0.3, 0.3, panel_id=panel_id, handle="middle")


class TestActions:
    def test_split_at_cursor(self, single):
        store, _, panel_id = single
        editor = EditorSurface(store)
        store.select(panel_id)
        editor.track_cursor(0.3)

        top, bottom = editor.split_selected()
        assert store.panel(top).rect.bottom == pytest.approx(0.3)
        assert store.panel(bottom).rect.y == pytest.approx(0.3)

    def test_crop_bottom_at_cursor(self, single):
        store, _, panel_id = single
        editor = EditorSurface(store)
        store.select(panel_id)
        editor.track_cursor(0.4)

        rect = editor.crop_bottom()
        assert rect.as_tuple() == pytest.approx((0.2, 0.2, 0.3, 0.2))

    def test_actions_without_selection(self, single):
        store, _, _ = single
        editor = EditorSurface(store)
        editor.track_cursor(0.3)
        assert editor.split_selected() is None
        assert editor.crop_top() is None
        assert not editor.delete_selected()
        assert editor.duplicate_selected() is None


class TestKeyboard:
    def test_default_bindings(self, single):
        store, _, _ = single
        editor = EditorSurface(store)
        assert editor.action_for_key("b", ctrl=True) == "split"
        assert editor.action_for_key("Q") == "crop_top"
        assert editor.action_for_key("w") == "crop_bottom"
        assert editor.action_for_key("Delete") == "delete"
        assert editor.action_for_key("z", ctrl=True) == "undo"
        assert editor.action_for_key("z", ctrl=True, shift=True) == "redo"
        assert editor.action_for_key("y", ctrl=True) == "redo"
        assert editor.action_for_key("Enter") == "next"
        assert editor.action_for_key("Enter", shift=True) == "previous"
        assert editor.action_for_key("b") is None

    def test_custom_binding_overrides(self, single):
        store, _, _ = single
        editor = EditorSurface(store, keybindings={"split": [Keybinding("s")]})
        assert editor.action_for_key("s") == "split"
        assert editor.action_for_key("b", ctrl=True) is None

    def test_handle_key_runs_action(self, single):
        store, _, panel_id = single
        editor = EditorSurface(store)
        store.select(panel_id)

        assert editor.handle_key("Delete") == "delete"
        assert panel_id not in store.state.panels
        assert editor.handle_key("z", ctrl=True) == "undo"
        assert panel_id in store.state.panels
        assert editor.handle_key("x") is None
