# treatment_planner/errors.py
from __future__ import annotations

from typing import List, Optional


class PlannerError(Exception):
    """Base class for errors raised by the planning and matching services."""


class ValidationError(PlannerError):
    """Malformed or out-of-range input to the normalizer. Always caller-correctable."""

    def __init__(self, field: str, message: str):
        super().__init__(f"{field}: {message}")
        self.field = field
        self.message = message


class TextGenerationError(PlannerError):
    """The text-generation collaborator failed, timed out or returned nothing."""


class PlanGenerationError(PlannerError):
    """Generator output could not be parsed into a treatment plan."""

    def __init__(self, message: str, raw_text: Optional[str] = None):
        super().__init__(message)
        self.raw_text = raw_text or ""

    def excerpt(self, limit: int = 500) -> str:
        text = self.raw_text.strip()
        return text if len(text) <= limit else text[:limit] + "..."


class PlanValidationError(PlannerError):
    """Generator output broke a biomechanical rule that cannot be repaired safely."""

    def __init__(self, violations: List[str]):
        super().__init__("; ".join(violations) or "plan violates planning rules")
        self.violations = list(violations)
