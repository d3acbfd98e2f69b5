"""Bounded undo/redo history for asset-timeline.

Provides the generic ``UndoStack`` (past/present/future with a depth limit)
and ``IterationHistory``, the per-session state machine over image
generation iterations.

Storage of iterations is append-only: rollback archives later iterations
instead of deleting them, while the undo stack gives fast navigation
without rewriting the record.
"""

import logging
from collections import deque
from collections.abc import Callable, Iterable
from typing import Generic, TypeVar

from src.config import get_history_max_depth
from src.core.errors import InvariantViolation, OutOfRangeError

from .models import Iteration, IterationResult

logger = logging.getLogger(__name__)

T = TypeVar("T")


def _identity(value: T) -> T:
    return value


class UndoStack(Generic[T]):
    """Past/present/future stack with a bounded past.

    Every value crossing the stack boundary (push in, present/undo/redo out)
    goes through ``snapshot``. Pass a deep-copy function for mutable
    values so no two entries, and no caller, share an object.

    Example:
        >>> stack = UndoStack[str](max_depth=2)
        >>> for state in ("a", "b", "c", "d"):
        ...     stack.push(state)
        >>> stack.past
        ['b', 'c']
        >>> stack.undo()
        'c'
        >>> stack.redo()
        'd'

    Args:
        max_depth: Maximum past entries kept; oldest dropped first.
            Defaults to ASSET_HISTORY_MAX_DEPTH (50).
        snapshot: Copy function applied at push/undo/redo boundaries.
    """

    def __init__(
        self,
        max_depth: int | None = None,
        snapshot: Callable[[T], T] | None = None,
    ):
        self._max_depth = get_history_max_depth(max_depth)
        self._snapshot: Callable[[T], T] = snapshot or _identity
        self._past: deque[T] = deque(maxlen=self._max_depth)
        self._present: T | None = None
        self._future: deque[T] = deque()

    @property
    def max_depth(self) -> int:
        """Maximum number of past entries."""
        return self._max_depth

    @property
    def present(self) -> T | None:
        """Current value (a snapshot of it), or None when empty."""
        if self._present is None:
            return None
        return self._snapshot(self._present)

    @property
    def past(self) -> list[T]:
        """Past values, oldest first."""
        return [self._snapshot(value) for value in self._past]

    @property
    def future(self) -> list[T]:
        """Redo-able values, next redo first."""
        return [self._snapshot(value) for value in self._future]

    @property
    def undo_depth(self) -> int:
        return len(self._past)

    @property
    def redo_depth(self) -> int:
        return len(self._future)

    def can_undo(self) -> bool:
        return bool(self._past)

    def can_redo(self) -> bool:
        return bool(self._future)

    def push(self, value: T) -> None:
        """Make ``value`` the present, archiving the old present into past.

        Clears the redo future unconditionally.
        """
        if self._present is not None:
            self._past.append(self._present)
        self._present = self._snapshot(value)
        self._future.clear()
        self.check_invariants(after_push=True)

    def undo(self) -> T | None:
        """Step back one entry.

        Returns:
            The new present, or None if there is nothing to undo.
        """
        if not self._past:
            return None
        if self._present is not None:
            self._future.appendleft(self._present)
        self._present = self._past.pop()
        self.check_invariants()
        return self.present

    def redo(self) -> T | None:
        """Step forward one entry.

        Returns:
            The new present, or None if there is nothing to redo.
        """
        if not self._future:
            return None
        if self._present is not None:
            self._past.append(self._present)
        self._present = self._future.popleft()
        self.check_invariants()
        return self.present

    def reset(self, past: Iterable[T] = (), present: T | None = None) -> None:
        """Replace the whole stack state and clear the future.

        Only the newest ``max_depth`` entries of ``past`` are kept.
        """
        self._past = deque(
            (self._snapshot(value) for value in past), maxlen=self._max_depth
        )
        self._present = None if present is None else self._snapshot(present)
        self._future.clear()
        self.check_invariants(after_push=True)

    def check_invariants(self, after_push: bool = False) -> None:
        """Verify the stack invariants.

        Raises:
            InvariantViolation: If any invariant no longer holds.
        """
        if len(self._past) > self._max_depth:
            raise InvariantViolation(
                f"past holds {len(self._past)} entries, limit is {self._max_depth}"
            )
        if after_push and self._future:
            raise InvariantViolation("future must be empty right after a push")
        if self._present is None and (self._past or self._future):
            raise InvariantViolation("empty present with non-empty past/future")


class IterationHistory:
    """Per-session undo/redo/rollback state machine over iterations.

    The history operates on the session's own ``iterations`` list, which it
    only ever appends to. The *timeline* is the ordered list of active
    iterations; rollback truncates the timeline (marking the tail inactive)
    and the next push starts a new branch after the rollback target.

    Example:
        >>> history = IterationHistory("session-1")
        >>> history.push("a cat", IterationResult()).index
        0
        >>> history.push("a cat in a hat", IterationResult()).index
        1
        >>> history.undo().prompt
        'a cat'

    Args:
        session_id: Owning session identifier.
        iterations: The session's append-only iteration record. Materializes
            the timeline from its active entries.
        max_depth: Undo depth limit (default ASSET_HISTORY_MAX_DEPTH).
    """

    def __init__(
        self,
        session_id: str,
        iterations: list[Iteration] | None = None,
        max_depth: int | None = None,
    ):
        self.session_id = session_id
        self._iterations: list[Iteration] = iterations if iterations is not None else []
        self._stack: UndoStack[Iteration] = UndoStack(max_depth=max_depth)
        self._timeline: list[Iteration] = [it for it in self._iterations if it.active]
        self._branch = max((it.branch for it in self._iterations), default=0)
        # A rollback that orphaned iterations on the current branch means the
        # next push opens a new branch.
        self._pending_branch = any(
            not it.active and it.branch == self._branch for it in self._iterations
        )

        if self._timeline:
            self._stack.reset(past=self._timeline[:-1], present=self._timeline[-1])
            self._check_invariants()

    # =========================================================================
    # Mutations
    # =========================================================================

    def push(self, prompt: str, result: IterationResult | None = None) -> Iteration:
        """Record a new iteration at the end of the timeline.

        Args:
            prompt: Prompt that produced the result.
            result: Successful engine result.

        Returns:
            The new iteration, now the present.
        """
        if self._pending_branch:
            self._branch += 1
            self._pending_branch = False

        iteration = Iteration(
            index=len(self._timeline),
            prompt=prompt,
            result=result or IterationResult(),
            branch=self._branch,
        )
        self._iterations.append(iteration)
        self._timeline.append(iteration)
        self._stack.push(iteration)
        self._check_invariants()
        return iteration

    def undo(self) -> Iteration | None:
        """Move the present one step back. None when nothing to undo."""
        iteration = self._stack.undo()
        if iteration is not None:
            logger.debug(f"Session {self.session_id}: undo to iteration {iteration.index}")
        return iteration

    def redo(self) -> Iteration | None:
        """Move the present one step forward. None when nothing to redo."""
        iteration = self._stack.redo()
        if iteration is not None:
            logger.debug(f"Session {self.session_id}: redo to iteration {iteration.index}")
        return iteration

    def rollback(self, target_index: int) -> Iteration:
        """Make an earlier iteration the tip of the timeline.

        Later iterations are marked inactive but stay in the record and
        remain reachable through ``get_iteration``/``get_all_iterations``.

        Args:
            target_index: Timeline index to roll back to.

        Returns:
            The target iteration.

        Raises:
            OutOfRangeError: If target_index is outside [0, size()).
        """
        if not 0 <= target_index < len(self._timeline):
            raise OutOfRangeError(target_index, len(self._timeline))

        target = self._timeline[target_index]
        target.rolled_back_to = True

        orphaned = self._timeline[target_index + 1 :]
        for iteration in orphaned:
            iteration.active = False
        if orphaned:
            self._pending_branch = True

        self._timeline = self._timeline[: target_index + 1]
        self._stack.reset(past=self._timeline[:-1], present=target)
        self._check_invariants()

        logger.info(
            f"Session {self.session_id}: rolled back to iteration {target_index}, "
            f"archived {len(orphaned)}"
        )
        return target

    # =========================================================================
    # Read-only access
    # =========================================================================

    def get_iteration(self, index: int) -> Iteration | None:
        """Get an iteration by index.

        The active timeline wins; otherwise the most recently archived
        iteration recorded at that index is returned.
        """
        if index < 0:
            return None
        if index < len(self._timeline):
            return self._timeline[index]
        for iteration in reversed(self._iterations):
            if iteration.index == index:
                return iteration
        return None

    def get_all_iterations(self) -> list[Iteration]:
        """Every recorded iteration, archived ones included, in record order."""
        return list(self._iterations)

    def get_active_iterations(self) -> list[Iteration]:
        """The current timeline."""
        return list(self._timeline)

    def get_last_n(self, n: int) -> list[Iteration]:
        """Last ``n`` iterations of the timeline."""
        if n <= 0:
            return []
        return self._timeline[-n:]

    @property
    def current(self) -> Iteration | None:
        """The present iteration."""
        return self._stack.present

    @property
    def current_index(self) -> int:
        """Index of the present iteration, -1 when empty."""
        current = self._stack.present
        return current.index if current is not None else -1

    @property
    def past(self) -> list[Iteration]:
        return self._stack.past

    @property
    def future(self) -> list[Iteration]:
        return self._stack.future

    @property
    def branch(self) -> int:
        return self._branch

    def can_undo(self) -> bool:
        return self._stack.can_undo()

    def can_redo(self) -> bool:
        return self._stack.can_redo()

    def size(self) -> int:
        """Length of the active timeline."""
        return len(self._timeline)

    def _check_invariants(self) -> None:
        self._stack.check_invariants()
        present = self._stack.present
        if present is not None and not present.active:
            raise InvariantViolation(
                f"present iteration {present.index} is archived"
            )
        for position, iteration in enumerate(self._timeline):
            if iteration.index != position:
                raise InvariantViolation(
                    f"timeline position {position} holds iteration {iteration.index}"
                )


__all__ = [
    "UndoStack",
    "IterationHistory",
]
