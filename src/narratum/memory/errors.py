"""Exceptions raised by the fact and memorandum model."""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from uuid import UUID


class MemoryModelError(Exception):
    """Base exception for fact model errors."""


class ViolationNotFoundError(MemoryModelError, KeyError):
    """Raised when a violation id is not present in a memorandum."""

    def __init__(self, violation_id: UUID) -> None:
        self.violation_id = violation_id
        super().__init__(f"Violation {violation_id} not found")

    def __str__(self) -> str:
        return f"Violation {self.violation_id} not found"


class ViolationAlreadyResolvedError(MemoryModelError):
    """Raised when resolving a violation that is already resolved."""

    def __init__(self, violation_id: UUID) -> None:
        self.violation_id = violation_id
        super().__init__(f"Violation {violation_id} is already resolved")


class UnknownMemoryLevelError(MemoryModelError, KeyError):
    """Raised when a memorandum has no canonical state for a level."""

    def __init__(self, level: object) -> None:
        self.level = level
        super().__init__(f"No canonical state for level {level!r}")

    def __str__(self) -> str:
        return f"No canonical state for level {self.level!r}"
