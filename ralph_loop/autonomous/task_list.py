"""Checklist progress read from the fix plan file."""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from pathlib import Path

logger = logging.getLogger(__name__)

# "- [ ] task", "* [x] task"; the marker character decides completion
CHECKLIST_ITEM = re.compile(r"^\s*[-*]\s+\[(?P<mark>.)\]")
COMPLETED_MARKS = frozenset({"x", "X"})


@dataclass(frozen=True)
class TaskListProgress:
    """Completion counts of a checklist-style task list."""

    total_items: int = 0
    completed_items: int = 0

    @property
    def fraction(self) -> float:
        if self.total_items == 0:
            return 0.0
        return self.completed_items / self.total_items

    @property
    def is_complete(self) -> bool:
        return self.total_items > 0 and self.completed_items == self.total_items

    @classmethod
    def from_text(cls, text: str) -> TaskListProgress:
        total = 0
        completed = 0
        for line in text.splitlines():
            match = CHECKLIST_ITEM.match(line)
            if not match:
                continue
            total += 1
            if match.group("mark") in COMPLETED_MARKS:
                completed += 1
        return cls(total_items=total, completed_items=completed)

    @classmethod
    def from_file(cls, path: str | Path) -> TaskListProgress:
        """Read progress from ``path``; a missing or unreadable file has no items."""
        path_obj = Path(path)
        if not path_obj.is_file():
            return cls()
        try:
            text = path_obj.read_text(encoding="utf-8", errors="replace")
        except OSError as e:
            logger.warning(f"Failed to read task list {path_obj}: {e}")
            return cls()
        return cls.from_text(text)

