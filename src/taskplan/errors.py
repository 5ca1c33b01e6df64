from __future__ import annotations

from typing import Iterable


class TaskplanError(Exception):
    pass


class InvalidPlanError(TaskplanError, ValueError):
    """A plan failed structural validation and was not stored."""

    def __init__(self, errors: Iterable[str]) -> None:
        self.errors = tuple(errors)
        super().__init__(f"Invalid plan: {'; '.join(self.errors)}")


class DocumentError(TaskplanError):
    pass
