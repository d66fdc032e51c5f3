"""Attribute value types shared by the reconciliation and convergence engines.

A raw document value (from YAML or a dict) is parsed into one of:

- Literal: plain value, no interpolation
- Reference: the whole string is ``${type.name.attribute}``
- Expression: any other string or container holding ``${...}``
- Computed: only known once the resource it depends on has been applied
"""
import copy
import re
from dataclasses import dataclass
from typing import Any, Mapping, Union

from ..errors import ExpressionError, ParseError, UndefinedVariableError
from .expressions import compile_expression, evaluate, references, to_text


NAME_PATTERN = r"[A-Za-z_][A-Za-z0-9_]*"
REFERENCE_RE = re.compile(rf"^\$\{{\s*({NAME_PATTERN})\.({NAME_PATTERN})\.({NAME_PATTERN})\s*\}}$")

# Scope roots that never name a resource type
RESERVED_ROOTS = frozenset({"var", "facts", "host", "item"})


@dataclass(frozen=True, order=True)
class ResourceRef:
    """Identity of a resource: ``type.name``."""
    type: str
    name: str

    def __str__(self) -> str:
        return f"{self.type}.{self.name}"

    @classmethod
    def parse(cls, text: str) -> "ResourceRef":
        parts = str(text).strip().split(".")
        if len(parts) != 2 or not all(parts):
            raise ParseError(f"Invalid resource reference '{text}', expected 'type.name'")
        return cls(parts[0], parts[1])


@dataclass(frozen=True)
class Literal:
    value: Any


@dataclass(frozen=True)
class Reference:
    ref: ResourceRef
    attribute: str

    @property
    def source(self) -> str:
        return f"{self.ref}.{self.attribute}"


@dataclass(frozen=True)
class Expression:
    """A template string or a container with templates somewhere inside."""
    raw: Any


class Computed:
    """Placeholder for a value only known after apply."""

    _instance = None

    def __new__(cls):
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __repr__(self) -> str:
        return "<computed>"

    def __eq__(self, other: object) -> bool:
        return isinstance(other, Computed)

    def __hash__(self) -> int:
        return hash("<computed>")


COMPUTED = Computed()

AttributeValue = Union[Literal, Reference, Expression, Computed]


# --- Templates ---

def split_template(text: str) -> list[tuple[str, str]]:
    """Split a string into ("text", ...) and ("expr", ...) parts.

    ``$${`` escapes a literal ``${``. Braces inside quoted strings within
    an interpolation do not terminate it.
    """
    parts: list[tuple[str, str]] = []
    buf: list[str] = []
    i = 0
    n = len(text)
    while i < n:
        if text.startswith("$${", i):
            buf.append("${")
            i += 3
            continue
        if text.startswith("${", i):
            j = i + 2
            depth = 1
            quote = None
            while j < n:
                ch = text[j]
                if quote:
                    if ch == "\\":
                        j += 1
                    elif ch == quote:
                        quote = None
                elif ch in ("'", '"'):
                    quote = ch
                elif ch == "{":
                    depth += 1
                elif ch == "}":
                    depth -= 1
                    if depth == 0:
                        break
                j += 1
            if j >= n:
                raise ExpressionError("Unterminated '${' interpolation", text)
            if buf:
                parts.append(("text", "".join(buf)))
                buf = []
            source = text[i + 2:j].strip()
            if not source:
                raise ExpressionError("Empty interpolation", text)
            parts.append(("expr", source))
            i = j + 1
            continue
        buf.append(text[i])
        i += 1
    if buf:
        parts.append(("text", "".join(buf)))
    return parts


def is_template(text: str) -> bool:
    """True when the string contains an unescaped ``${``."""
    return "${" in text.replace("$${", "")


def _has_template(raw: Any) -> bool:
    if isinstance(raw, str):
        return "${" in raw
    if isinstance(raw, Mapping):
        return any(_has_template(v) for v in raw.values())
    if isinstance(raw, (list, tuple)):
        return any(_has_template(v) for v in raw)
    return False


def render_template(text: str, scope: Mapping[str, Any]) -> Any:
    """Render a template string.

    A string that is exactly one interpolation keeps the type of the
    evaluated value; anything else renders to a string.
    """
    parts = split_template(text)
    if len(parts) == 1 and parts[0][0] == "expr":
        return evaluate(parts[0][1], scope)
    out = []
    for kind, chunk in parts:
        out.append(chunk if kind == "text" else to_text(evaluate(chunk, scope)))
    return "".join(out)


def render_raw(raw: Any, scope: Mapping[str, Any]) -> Any:
    """Render templates anywhere inside a raw value."""
    if isinstance(raw, str):
        if is_template(raw):
            return render_template(raw, scope)
        return raw.replace("$${", "${")
    if isinstance(raw, Mapping):
        return {k: render_raw(v, scope) for k, v in raw.items()}
    if isinstance(raw, (list, tuple)):
        return [render_raw(v, scope) for v in raw]
    return raw


# --- AttributeValue helpers ---

def parse_value(raw: Any) -> AttributeValue:
    """Convert a raw document value into an AttributeValue.

    Examples:
        "eu-west-1"                -> Literal("eu-west-1")
        "${net_vpc.main.id}"       -> Reference(net_vpc.main, "id")
        "http://${var.host}:80"    -> Expression(...)
        {"tags": ["${var.env}"]}   -> Expression(...)
    """
    if isinstance(raw, (Literal, Reference, Expression, Computed)):
        return raw
    if isinstance(raw, str):
        match = REFERENCE_RE.match(raw.strip())
        if match and match.group(1) not in RESERVED_ROOTS:
            return Reference(ResourceRef(match.group(1), match.group(2)), match.group(3))
    if _has_template(raw):
        return Expression(raw)
    return Literal(raw)


def check_syntax(raw: Any) -> None:
    """Compile every interpolation inside a raw value, raising on bad syntax."""
    if isinstance(raw, str):
        for kind, chunk in split_template(raw):
            if kind == "expr":
                compile_expression(chunk)
    elif isinstance(raw, Mapping):
        for v in raw.values():
            check_syntax(v)
    elif isinstance(raw, (list, tuple)):
        for v in raw:
            check_syntax(v)


def _raw_references(raw: Any, found: list[tuple[str, ...]], skip_defaulted: bool) -> None:
    if isinstance(raw, str):
        for kind, chunk in split_template(raw):
            if kind == "expr":
                found.extend(references(chunk, skip_defaulted))
    elif isinstance(raw, Mapping):
        for v in raw.values():
            _raw_references(v, found, skip_defaulted)
    elif isinstance(raw, (list, tuple)):
        for v in raw:
            _raw_references(v, found, skip_defaulted)


def value_references(value: AttributeValue,
                     skip_defaulted: bool = False) -> list[tuple[str, ...]]:
    """Dotted variable paths a value reads."""
    if isinstance(value, Reference):
        return [(value.ref.type, value.ref.name, value.attribute)]
    if isinstance(value, Expression):
        found: list[tuple[str, ...]] = []
        _raw_references(value.raw, found, skip_defaulted)
        return found
    return []


def resolve_value(value: AttributeValue, scope: Mapping[str, Any]) -> Any:
    """Evaluate a value against a scope. Computed stays Computed."""
    if isinstance(value, Literal):
        return copy.deepcopy(value.value)
    if isinstance(value, Reference):
        try:
            return copy.deepcopy(scope[value.ref.type][value.ref.name][value.attribute])
        except (KeyError, TypeError):
            raise UndefinedVariableError(value.source)
    if isinstance(value, Expression):
        return render_raw(value.raw, scope)
    return COMPUTED


def to_raw(value: AttributeValue) -> Any:
    """Document form of a value, used for plan serialization."""
    if isinstance(value, Literal):
        return value.value
    if isinstance(value, Reference):
        return "${" + value.source + "}"
    if isinstance(value, Expression):
        return value.raw
    return "(known after apply)"
