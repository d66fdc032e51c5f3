"""Validation result shared by both engines."""
from dataclasses import dataclass, field
from typing import Optional

from .errors import DependencyCycleError, ValidationError


@dataclass
class ValidationResult:
    """Result of pre-flight validation."""
    valid: bool
    errors: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)
    cycle: Optional[list[str]] = None

    def raise_for_errors(self) -> None:
        """Raise the matching ValidationError when invalid."""
        if self.valid:
            return
        if self.cycle:
            error = DependencyCycleError(self.cycle)
            error.errors = list(self.errors)
            raise error
        summary = self.errors[0] if len(self.errors) == 1 else (
            f"{len(self.errors)} validation errors: {'; '.join(self.errors)}"
        )
        raise ValidationError(summary, list(self.errors))
