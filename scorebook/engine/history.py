from scorebook.errors import NothingToUndo
from scorebook.models import ScoringState, Snapshot


class SnapshotHistory:
    """
    Append-only stack of full scoring-state copies for single-step undo.
    Each entry is taken before a delivery (or manual adjustment) mutates
    anything, so popping it restores the state exactly as it was.
    """

    def __init__(self) -> None:
        self._stack: list[Snapshot] = []

    def __len__(self) -> int:
        return len(self._stack)

    def push(self, state: ScoringState) -> None:
        self._stack.append(Snapshot(state=state.model_copy(deep=True)))

    def pop(self) -> ScoringState:
        """Remove the latest snapshot and return a fresh copy of its state."""
        if not self._stack:
            raise NothingToUndo("Nothing to undo")
        snap = self._stack.pop()
        return snap.state.model_copy(deep=True)

    def clear(self) -> None:
        self._stack.clear()
