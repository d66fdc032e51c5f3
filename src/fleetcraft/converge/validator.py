"""Pre-flight validation for playbooks.

Catches logical errors before any executor is called.
"""
from collections import Counter
from typing import Optional

from ..errors import ExpressionError, ValidationError
from ..inventory import HostInventory
from ..modules import MODULE_REGISTRY
from ..validation import ValidationResult
from ..values import RESERVED_ROOTS, Literal, check_syntax, compile_expression, parse_value
from .schema import Action, Play, Playbook


class PlaybookValidator:
    """Validate a playbook for logical errors before running it."""

    def validate(self, playbook: Playbook, inventory: Optional[HostInventory] = None) -> ValidationResult:
        """
        Validate a playbook.

        Performs pre-flight checks:
        - Unknown module kinds
        - Static parameters against the module schema
        - Expression syntax in parameters, conditions and loops
        - notify targets that are not handlers of the play
        - Duplicate handler names
        - Host patterns matching nothing (warning)

        Returns:
            ValidationResult with valid flag, errors, and warnings
        """
        errors: list[str] = []
        warnings: list[str] = []

        for play in playbook.plays:
            self._check_handlers(play, errors)
            for action in play.actions + play.handlers:
                self._check_action(play, action, errors)
            if inventory is not None and not inventory.match(play.hosts):
                warnings.append(f"Play '{play.name}': host pattern '{play.hosts}' matches no hosts")
            notified = {n for a in play.actions + play.handlers for n in a.notifies}
            for handler in play.handlers:
                if handler.name not in notified:
                    warnings.append(f"Play '{play.name}': handler '{handler.name}' is never notified")

        return ValidationResult(valid=len(errors) == 0, errors=errors, warnings=warnings)

    def _check_handlers(self, play: Play, errors: list[str]) -> None:
        counts = Counter(h.name for h in play.handlers)
        for name, count in counts.items():
            if count > 1:
                errors.append(f"Play '{play.name}': duplicate handler '{name}'")

    def _check_action(self, play: Play, action: Action, errors: list[str]) -> None:
        label = f"Play '{play.name}', {'handler' if action.handler else 'action'} '{action.name}'"

        module = MODULE_REGISTRY.get(action.module)
        if module is None:
            errors.append(f"{label}: unknown module '{action.module}'")
        else:
            try:
                check_syntax(action.parameters)
            except ExpressionError as e:
                errors.append(f"{label}: {e}")
            else:
                # Templated parameters are checked once resolved
                if isinstance(parse_value(action.parameters), Literal) and action.loop is None:
                    try:
                        module.validate(action.parameters)
                    except ValidationError as e:
                        errors.extend(f"{label}: {msg}" for msg in e.errors)

        if action.condition is not None:
            try:
                compile_expression(action.condition)
            except ExpressionError as e:
                errors.append(f"{label}: invalid condition: {e}")

        if isinstance(action.loop, str):
            try:
                check_syntax(action.loop)
                if "${" not in action.loop:
                    compile_expression(action.loop)
            except ExpressionError as e:
                errors.append(f"{label}: invalid loop: {e}")
        elif action.loop is not None and not isinstance(action.loop, list):
            errors.append(f"{label}: loop must be a list or an expression")

        if action.register in RESERVED_ROOTS:
            errors.append(f"{label}: '{action.register}' is reserved and cannot be registered")

        for name in action.notifies:
            if play.handler(name) is None:
                errors.append(f"{label}: notifies undefined handler '{name}'")
