from __future__ import annotations

from datetime import datetime
from typing import Protocol


class ChangeOracle(Protocol):
    def exists_changed_after(self, timestamp: datetime) -> bool:
        ...


class ChangeDetector:
    """Answers whether the dataset changed after a point in time."""

    def __init__(self, oracle: ChangeOracle) -> None:
        self.oracle = oracle

    def has_changed_since(self, timestamp: datetime) -> bool:
        return bool(self.oracle.exists_changed_after(timestamp))
