"""Expression language used by resource attributes, action parameters and
action conditions.

Expressions are Jinja2 expressions compiled in an immutable sandbox:

- literals: 42, 1.5, 'text', "text", true, false, null/none, [1, 2]
- lookups: facts.os_family, net_vpc.main.id, tags['env'], hosts[0]
- operators: + - * / %, == != < <= > >=, in, not in, and, or, not
- filters: value | default('x'), lower, upper, trim, length, string, int,
  bool, join(', ')

Evaluation is pure: it only reads the scope mapping it is given. Looking up
a name that is not defined raises UndefinedVariableError unless the lookup is
wrapped in the ``default`` filter or tested with ``is defined``.
"""
from functools import lru_cache
from typing import Any, Callable, Mapping, Optional

from jinja2 import ChainableUndefined, StrictUndefined, TemplateError, UndefinedError, nodes
from jinja2.filters import do_default, do_lower, do_trim, do_upper
from jinja2.sandbox import ImmutableSandboxedEnvironment

from ..errors import ExpressionError, UndefinedVariableError


class _Undefined(ChainableUndefined, StrictUndefined):
    """Missing lookups chain silently and fail on first use."""
    __slots__ = ()


class _ScopeEnvironment(ImmutableSandboxedEnvironment):
    """Dotted lookups on mappings read keys, never methods like ``items``."""

    def getattr(self, obj: Any, attribute: str) -> Any:
        if isinstance(obj, Mapping):
            try:
                return obj[attribute]
            except KeyError:
                return self.undefined(obj=obj, name=attribute)
        return super().getattr(obj, attribute)

    def getitem(self, obj: Any, argument: Any) -> Any:
        if isinstance(obj, Mapping):
            try:
                return obj[argument]
            except (KeyError, TypeError):
                return self.undefined(obj=obj, name=argument)
        return super().getitem(obj, argument)


def to_text(value: Any) -> str:
    """Render a value for string interpolation."""
    if value is None:
        return ""
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


def truthy(value: Any) -> bool:
    """Truth value of an evaluated condition.

    Same rule as ``not``, ``and`` and ``or`` inside an expression: any
    non-empty string is true. Use the ``bool`` filter to read "no" or
    "false" strings as false.
    """
    return bool(value)


def _filter_bool(value: Any) -> bool:
    if isinstance(value, str):
        return value.strip().lower() in ("1", "true", "yes", "on")
    return bool(value)


def _filter_int(value: Any) -> int:
    if isinstance(value, bool):
        raise ValueError("int expects a number or numeric string, got a boolean")
    return int(value)


def _filter_join(value: Any, sep: str = ",") -> str:
    if not isinstance(value, (list, tuple)):
        raise TypeError("join expects a list")
    return str(sep).join(to_text(v) for v in value)


FILTERS: dict[str, Callable[..., Any]] = {
    "default": do_default,
    "lower": do_lower,
    "upper": do_upper,
    "trim": do_trim,
    "length": len,
    "string": to_text,
    "int": _filter_int,
    "bool": _filter_bool,
    "join": _filter_join,
}

# Tests that guard a lookup the same way ``default`` does
GUARD_TESTS = frozenset({"defined", "undefined"})


def _build_environment() -> _ScopeEnvironment:
    env = _ScopeEnvironment(undefined=_Undefined, autoescape=False)
    env.filters = dict(FILTERS)
    env.tests = {name: env.tests[name] for name in ("defined", "undefined", "none")}
    env.globals = {"null": None}
    return env


_ENV = _build_environment()


@lru_cache(maxsize=1024)
def compile_expression(source: str) -> Callable[..., Any]:
    """Compile an expression, raising ExpressionError on bad syntax."""
    text = source.strip()
    if not text:
        raise ExpressionError("Empty expression", source)
    try:
        return _ENV.compile_expression(text, undefined_to_none=False)
    except TemplateError as e:
        raise ExpressionError(e.message or str(e), source) from None


@lru_cache(maxsize=1024)
def _parse(source: str) -> nodes.Template:
    compile_expression(source)
    try:
        return _ENV.parse("{{ " + source.strip() + " }}")
    except TemplateError as e:
        raise ExpressionError(e.message or str(e), source) from None


def _contains_undefined(value: Any) -> bool:
    if isinstance(value, StrictUndefined):
        return True
    if isinstance(value, Mapping):
        return any(_contains_undefined(v) for v in value.values())
    if isinstance(value, (list, tuple)):
        return any(_contains_undefined(v) for v in value)
    return False


def _step(target: Any, key: str) -> tuple[bool, Any]:
    if isinstance(target, Mapping):
        if key in target:
            return True, target[key]
    elif isinstance(target, (list, tuple)):
        try:
            return True, target[int(key)]
        except (ValueError, IndexError):
            pass
    return False, None


def missing_path(source: str, scope: Mapping[str, Any]) -> Optional[str]:
    """First unguarded lookup in ``source`` that ``scope`` cannot satisfy."""
    for path in references(source, skip_defaulted=True):
        target: Any = scope
        for depth, key in enumerate(path):
            found, target = _step(target, key)
            if not found:
                return ".".join(path[:depth + 1])
    return None


def evaluate(source: str, scope: Mapping[str, Any]) -> Any:
    """Evaluate an expression against a scope mapping.

    Raises:
        ExpressionError: malformed expression or invalid operands
        UndefinedVariableError: a looked up name is not defined
    """
    expression = compile_expression(source)
    try:
        result = expression(scope)
        if _contains_undefined(result):
            raise UndefinedError("undefined value")
    except UndefinedError as e:
        raise UndefinedVariableError(missing_path(source, scope) or str(e), source) from None
    except TemplateError as e:
        raise ExpressionError(e.message or str(e), source) from None
    except (TypeError, ValueError, ArithmeticError, LookupError) as e:
        raise ExpressionError(f"Cannot evaluate: {e}", source) from None
    return result


def _path(node: nodes.Node) -> Optional[tuple[str, ...]]:
    """Segments of a lookup chain like ``a.b['c']``, None otherwise."""
    parts: list[str] = []
    while True:
        if isinstance(node, nodes.Name):
            parts.append(node.name)
            return tuple(reversed(parts))
        if isinstance(node, nodes.Getattr):
            parts.append(node.attr)
            node = node.node
        elif isinstance(node, nodes.Getitem) and isinstance(node.arg, nodes.Const):
            parts.append(str(node.arg.value))
            node = node.node
        else:
            return None


def references(source: str, skip_defaulted: bool = False) -> list[tuple[str, ...]]:
    """Return the variable paths an expression reads, in reading order.

    With ``skip_defaulted`` lookups wrapped in the default filter or an
    ``is defined`` test are left out, since they cannot fail.

    Examples:
        "net_vpc.main.id" -> [("net_vpc", "main", "id")]
        "a.b + c" -> [("a", "b"), ("c",)]
    """
    found: list[tuple[str, ...]] = []

    def walk(node: nodes.Node) -> None:
        if isinstance(node, (nodes.Name, nodes.Getattr, nodes.Getitem)):
            path = _path(node)
            if path is not None:
                if path[0] not in _ENV.globals:
                    found.append(path)
                return
        guarded = skip_defaulted and (
            (isinstance(node, nodes.Filter) and node.name == "default")
            or (isinstance(node, nodes.Test) and node.name in GUARD_TESTS)
        )
        for child in node.iter_child_nodes():
            if guarded and child is node.node:
                continue
            walk(child)

    walk(_parse(source))
    return found
