"""Compensation for partially completed install pipelines."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Callable, List, Optional, Tuple

logger = logging.getLogger(__name__)

UndoAction = Callable[[], None]


@dataclass(frozen=True)
class RollbackReport:
    attempted: List[str]
    restored: List[str]
    errors: List[str] = field(default_factory=list)

    @property
    def clean(self) -> bool:
        return not self.errors


class CompensationStack:
    """Records undo actions for completed steps.

    Used as a context manager: if the block raises before ``commit`` the
    undo actions run newest first. A failing undo is logged and does not
    stop the others; the original exception still propagates.
    """

    def __init__(self):
        self._actions: List[Tuple[str, UndoAction]] = []
        self._committed = False
        self.report: Optional[RollbackReport] = None

    def push(self, name: str, undo: UndoAction) -> None:
        self._actions.append((name, undo))

    def discard(self, name: str) -> None:
        """Drop an undo whose step has been superseded (e.g. backups already restored)."""
        self._actions = [(n, a) for n, a in self._actions if n != name]

    def commit(self) -> None:
        self._committed = True
        self._actions.clear()

    def __len__(self) -> int:
        return len(self._actions)

    def rollback(self) -> RollbackReport:
        attempted: List[str] = []
        restored: List[str] = []
        errors: List[str] = []

        while self._actions:
            name, undo = self._actions.pop()
            attempted.append(name)
            try:
                undo()
                restored.append(name)
                logger.info("Rolled back: %s", name)
            except Exception as exc:
                logger.error("Rollback step '%s' failed: %s", name, exc, exc_info=True)
                errors.append(f"{name}: {exc}")

        self.report = RollbackReport(attempted=attempted, restored=restored, errors=errors)
        return self.report

    def __enter__(self) -> "CompensationStack":
        return self

    def __exit__(self, exc_type, exc, tb) -> bool:
        if exc_type is not None and not self._committed:
            logger.warning("Pipeline failed, compensating %d completed step(s)", len(self._actions))
            self.rollback()
        return False
