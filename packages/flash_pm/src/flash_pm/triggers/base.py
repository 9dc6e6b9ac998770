from __future__ import annotations

from abc import ABC, abstractmethod
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from datetime import datetime, tzinfo


class CronEvaluator(ABC):
    """
    Interface for cron evaluation.

    Implementations are pure: the same expression, timezone and reference
    instant always produce the same match. No I/O, no clock reads.
    """

    @abstractmethod
    def next_match(
        self,
        expression: str,
        tz: tzinfo,
        after: datetime,
    ) -> datetime | None:
        """
        Returns the earliest UTC instant strictly after ``after`` whose wall
        time in ``tz`` matches ``expression``, or None if none can be found.

        Raises:
            ValueError: If ``expression`` cannot be parsed.
        """
        ...

    @abstractmethod
    def validate(self, expression: str) -> None:
        """Raises ValueError if ``expression`` cannot be parsed."""
        ...

    def is_valid(self, expression: str) -> bool:
        try:
            self.validate(expression)
        except ValueError:
            return False
        return True
