"""Shared value and expression layer."""
from .expressions import compile_expression, evaluate, references, to_text, truthy
from .schema import (
    COMPUTED,
    RESERVED_ROOTS,
    AttributeValue,
    Computed,
    Expression,
    Literal,
    Reference,
    ResourceRef,
    check_syntax,
    is_template,
    parse_value,
    render_raw,
    render_template,
    resolve_value,
    to_raw,
    value_references,
)

__all__ = [
    "COMPUTED",
    "RESERVED_ROOTS",
    "AttributeValue",
    "Computed",
    "Expression",
    "Literal",
    "Reference",
    "ResourceRef",
    "check_syntax",
    "compile_expression",
    "evaluate",
    "is_template",
    "parse_value",
    "references",
    "render_raw",
    "render_template",
    "resolve_value",
    "to_raw",
    "to_text",
    "truthy",
    "value_references",
]
