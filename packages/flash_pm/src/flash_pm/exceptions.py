from __future__ import annotations

from typing import Any


class PmError(Exception):
    """Base class for all flash_pm exceptions."""


class ValidationError(PmError, ValueError):
    """
    Raised when a date, patch or outcome handed to the engine is malformed.

    Attributes:
        errors: Field-level details, in the shape pydantic reports them.
    """

    def __init__(self, message: str, errors: list[dict[str, Any]] | None = None):
        super().__init__(message)
        self.errors = errors or []

    @classmethod
    def from_pydantic(cls, exc: Any, subject: str) -> ValidationError:
        errors = [
            {
                "loc": tuple(err.get("loc", ())),
                "msg": err.get("msg", ""),
                "type": err.get("type", ""),
            }
            for err in exc.errors()
        ]
        fields = ", ".join(
            ".".join(str(p) for p in err["loc"]) or subject for err in errors
        )
        return cls(f"Invalid {subject}: {fields}", errors)


class NotFoundError(PmError, LookupError):
    """Raised when a program, task, trigger or owner id is not known."""
