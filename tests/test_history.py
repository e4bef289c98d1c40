"""
Tests for comic_panel_narrator/history.py
"""

import pytest

from comic_panel_narrator.history import History


class TestHistory:
    def test_commit_undo_redo(self):
        history = History("a")
        history.commit("b")
        history.commit("c")

        assert history.undo()
        assert history.present == "b"
        assert history.undo()
        assert history.present == "a"
        assert not history.undo()

        assert history.redo()
        assert history.present == "b"
        assert history.future == ["c"]

    def test_commit_after_undo_clears_future(self):
        history = History("a")
        history.commit("b")
        history.undo()
        history.commit("x")

        assert not history.can_redo
        assert history.past == ["a"]
        assert not history.redo()

    def test_unchanged_commit_is_ignored(self):
        history = History("a")
        assert not history.commit("a")
        assert history.past == []

    def test_depth_drops_oldest(self):
        history = History(0, depth=3)
        for value in range(1, 6):
            history.commit(value)

        assert history.past == [2, 3, 4]
        undone = 0
        while history.undo():
            undone += 1
        assert undone == 3
        assert history.present == 2

    def test_replace_leaves_stacks_alone(self):
        history = History("a")
        history.commit("b")
        history.replace("b*")

        assert history.past == ["a"]
        assert history.present == "b*"

    def test_commit_with_explicit_previous(self):
        history = History("start")
        history.replace("live-1")
        history.replace("live-2")
        history.commit("end", previous="start")

        assert history.past == ["start"]
        history.undo()
        assert history.present == "start"

    def test_rebase_touches_every_snapshot(self):
        history = History("a")
        history.commit("b")
        history.commit("c")
        history.undo()
        history.rebase(str.upper)

        assert history.past == ["A"]
        assert history.present == "B"
        assert history.future == ["C"]

    def test_invalid_depth(self):
        with pytest.raises(ValueError):
            History("a", depth=0)
