"""Pre-flight validation for desired state documents.

Catches logical errors before any provider is called.
"""
from collections import Counter
from typing import Iterable, Optional

from ..errors import ExpressionError
from ..providers import ProviderRegistry
from ..values import RESERVED_ROOTS, AttributeValue, Expression, ResourceRef, check_syntax, value_references
from ..validation import ValidationResult
from .graph import resource_cycle
from .schema import DesiredState


class DesiredStateValidator:
    """Validate a desired state for logical errors before planning."""

    def __init__(self, providers: Optional[ProviderRegistry] = None):
        """
        Initialize validator.

        Args:
            providers: Registry used to check every type has a provider
        """
        self.providers = providers

    def validate(self, desired: DesiredState) -> ValidationResult:
        """
        Validate a desired state.

        Performs pre-flight checks:
        - Duplicate resource identities
        - depends_on targets that are not declared
        - Expression syntax and references
        - Variables without a value or default
        - Resource types no provider handles
        - Dependency cycles

        Returns:
            ValidationResult with valid flag, errors, and warnings
        """
        errors: list[str] = []
        warnings: list[str] = []

        declared = set(desired.refs())
        self._check_duplicates(desired, errors)
        self._check_depends_on(desired, declared, errors)

        used_variables: set[str] = set()
        for resource in desired.resources:
            for attr, value in resource.attributes.items():
                self._check_value(f"{resource.ref}.{attr}", value, desired, declared,
                                  used_variables, errors)
        for name, value in desired.outputs.items():
            self._check_value(f"output '{name}'", value, desired, declared,
                              used_variables, errors)

        for name in desired.variables:
            if name not in used_variables:
                warnings.append(f"Variable '{name}' is declared but never used")
        for name in desired.values:
            if name not in desired.variables:
                warnings.append(f"Value supplied for undeclared variable '{name}'")

        self._check_providers(desired, errors)

        cycle = None
        if not errors:
            cycle = resource_cycle(desired)
            if cycle:
                errors.append(f"Dependency cycle detected: {' -> '.join(cycle)}")

        return ValidationResult(
            valid=len(errors) == 0,
            errors=errors,
            warnings=warnings,
            cycle=cycle,
        )

    def _check_duplicates(self, desired: DesiredState, errors: list[str]) -> None:
        counts = Counter(desired.refs())
        for ref, count in counts.items():
            if count > 1:
                errors.append(f"Resource {ref} is declared {count} times")

    def _check_depends_on(self, desired: DesiredState, declared: set[ResourceRef],
                          errors: list[str]) -> None:
        for resource in desired.resources:
            for dep in resource.depends_on:
                if dep == resource.ref:
                    errors.append(f"{resource.ref} depends on itself")
                elif dep not in declared:
                    errors.append(f"{resource.ref} depends on undeclared resource {dep}")

    def _check_value(
        self,
        where: str,
        value: AttributeValue,
        desired: DesiredState,
        declared: set[ResourceRef],
        used_variables: set[str],
        errors: list[str],
    ) -> None:
        if isinstance(value, Expression):
            try:
                check_syntax(value.raw)
            except ExpressionError as e:
                errors.append(f"{where}: {e}")
                return

        supplied = desired.variable_values()
        guarded = set(value_references(value)) - set(value_references(value, skip_defaulted=True))
        for path in value_references(value):
            root = path[0]
            if root == "var":
                if len(path) < 2:
                    errors.append(f"{where}: 'var' needs a variable name")
                    continue
                name = path[1]
                used_variables.add(name)
                if name not in desired.variables:
                    errors.append(f"{where}: undefined variable 'var.{name}'")
                elif name not in supplied and path not in guarded:
                    errors.append(f"{where}: variable 'var.{name}' has no value and no default")
            elif root in RESERVED_ROOTS:
                errors.append(f"{where}: '{root}' is not available in resource attributes")
            elif len(path) < 3:
                errors.append(f"{where}: reference '{'.'.join(path)}' must name an attribute")
            else:
                ref = ResourceRef(path[0], path[1])
                if ref not in declared:
                    errors.append(f"{where}: references undeclared resource {ref}")

    def _check_providers(self, desired: DesiredState, errors: list[str]) -> None:
        if self.providers is None:
            return
        for resource_type in _unique(r.type for r in desired.resources):
            if not self.providers.has(resource_type):
                errors.append(f"No provider registered for resource type '{resource_type}'")


def _unique(items: Iterable[str]) -> list[str]:
    seen: list[str] = []
    for item in items:
        if item not in seen:
            seen.append(item)
    return seen

