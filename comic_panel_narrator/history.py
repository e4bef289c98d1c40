from typing import Callable, Generic, List, Optional, TypeVar

T = TypeVar("T")


class History(Generic[T]):
    """
    Bounded undo/redo over immutable snapshots.

    `past` is oldest first and `future[0]` is the next state redo restores.
    """

    def __init__(self, initial: T, depth: int = 50):
        if depth < 1:
            raise ValueError("History depth must be at least 1")
        self.depth = depth
        self.past: List[T] = []
        self.present: T = initial
        self.future: List[T] = []

    @property
    def can_undo(self) -> bool:
        return bool(self.past)

    @property
    def can_redo(self) -> bool:
        return bool(self.future)

    def commit(self, new: T, previous: Optional[T] = None) -> bool:
        """
        Record a history-significant change.

        `previous` overrides the snapshot pushed onto `past`; drags use it to
        record the state from before their live updates. Returns False when
        nothing changed.
        """
        before = self.present if previous is None else previous
        if new == before:
            self.present = new
            return False

        self.past.append(before)
        if len(self.past) > self.depth:
            del self.past[: len(self.past) - self.depth]
        self.present = new
        self.future.clear()
        return True

    def replace(self, new: T) -> None:
        """Swap the present without touching past or future (derived data, live drags)."""
        self.present = new

    def rebase(self, fn: Callable[[T], T]) -> None:
        """Apply `fn` to every snapshot, so derived data survives undo and redo."""
        self.past = [fn(s) for s in self.past]
        self.present = fn(self.present)
        self.future = [fn(s) for s in self.future]

    def undo(self) -> bool:
        if not self.past:
            return False
        self.future.insert(0, self.present)
        self.present = self.past.pop()
        return True

    def redo(self) -> bool:
        if not self.future:
            return False
        self.past.append(self.present)
        self.present = self.future.pop(0)
        return True

    def reset(self, initial: T) -> None:
        self.past.clear()
        self.future.clear()
        self.present = initial
