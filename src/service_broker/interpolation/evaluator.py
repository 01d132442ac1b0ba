"""Interpolation template evaluator built on a sandboxed Jinja2 environment.

Templates are literal text interleaved with ``${ ... }`` regions. A region
holds a Jinja2 expression: variable references (dotted access walks into
maps), literals, arithmetic, comparisons, boolean logic, conditional
expressions and calls into the typed function table.

Key Features:
- Sandboxed execution: templates cannot reach Python internals
- Strict undefined handling: any unknown variable fails with
  "unknown variable accessed: <name>"
- Native results: a template consisting of exactly one region returns the
  expression's value (int, bool, map, ...) instead of its text rendering
- Closed function table: only the functions registered on the evaluator are
  callable, each with declared argument types and arity. Values expose no
  methods, so ``${name.upper()}`` is an error.
- Integer arithmetic stays integral: ``${7 / 2}`` is 3
- Dotted variable names such as ``request.plan_id`` are exposed as nested maps

Literals and operators of the grammar (``true``, ``none``, ``if``, ``self``
and the rest of RESERVED_NAMES) cannot be used as variable names.

Block statements and comments are not part of the language; their Jinja2
delimiters are mapped to sequences that never occur in practice so that plain
text, including ``{%`` and ``{#``, passes through untouched.

Example:
    evaluator = Evaluator()
    evaluator.evaluate("${str.truncate(3, name)}-db", {"name": "orders"})
    # "ord-db"
    evaluator.evaluate("${size * 2}", {"size": 10})
    # 20
"""

from __future__ import annotations

import re
from collections.abc import Mapping
from functools import cache, lru_cache
from types import SimpleNamespace
from typing import Any

from jinja2 import StrictUndefined, TemplateSyntaxError, Undefined, nodes
from jinja2.exceptions import SecurityError, UndefinedError
from jinja2.sandbox import SandboxedEnvironment
from jinja2.utils import missing, object_type_repr

from ..exceptions import EvaluationError
from .functions import Counter, Function, standard_library
from .values import Value, format_value, to_value

_SINGLE_REGION = re.compile(r"^\$\{(?P<expression>.*)\}$", re.DOTALL)

# Names the expression grammar claims for itself. A variable whose top-level
# name is one of these can never be referenced from a template.
RESERVED_NAMES = frozenset(
    ["true", "false", "none", "True", "False", "None", "self"]
    + ["and", "or", "not", "in", "is", "if", "else"]
)


def is_reserved_name(name: str) -> bool:
    """Check whether a (possibly dotted) variable name is unreachable from templates.

    Example:
        >>> is_reserved_name("none")
        True
        >>> is_reserved_name("self.link")
        True
        >>> is_reserved_name("request.none")
        False
    """
    return name.split(".", 1)[0] in RESERVED_NAMES


class UnknownVariable(StrictUndefined):
    """Undefined marker that fails on any use with an evaluator-style message."""

    __slots__ = ()

    @property
    def _undefined_message(self) -> str:
        if self._undefined_hint:
            return self._undefined_hint
        if self._undefined_obj is missing:
            return f"unknown variable accessed: {self._undefined_name}"
        return (
            f"unknown variable accessed: {self._undefined_name} "
            f"(no such key on {object_type_repr(self._undefined_obj)})"
        )


class TemplateEnvironment(SandboxedEnvironment):
    """Sandboxed environment that treats values as data.

    Attribute access on a mapping always looks up a key, so a variable named
    ``items`` or ``keys`` inside a map never resolves to a dict method. Lists
    accept integer indexes. Every other attribute or item lookup is undefined,
    and only entries of the function table can be called, so the Python methods
    of strings, lists and numbers stay out of reach.

    Division of two integers truncates toward zero and yields an integer.
    """

    intercepted_binops = frozenset({"/"})

    def getattr(self, obj: Any, attribute: str) -> Any:
        if isinstance(obj, Undefined):
            return obj
        if isinstance(obj, Mapping):
            try:
                return obj[attribute]
            except (KeyError, TypeError):
                return self.undefined(obj=obj, name=attribute)
        if isinstance(obj, SimpleNamespace) and attribute in vars(obj):
            return vars(obj)[attribute]
        return self.undefined(obj=obj, name=attribute)

    def getitem(self, obj: Any, argument: Any) -> Any:
        if isinstance(obj, Undefined):
            return obj
        if isinstance(obj, Mapping):
            return self.getattr(obj, argument)
        if isinstance(obj, (list, tuple)) and _is_int(argument):
            try:
                return obj[argument]
            except IndexError:
                pass
        return self.undefined(obj=obj, name=argument)

    def is_safe_callable(self, obj: Any) -> bool:
        # Undefined raises its own "unknown variable" error when called
        return isinstance(obj, (Function, Undefined))

    def call_binop(self, context: Any, operator: str, left: Any, right: Any) -> Any:
        if operator == "/" and _is_int(left) and _is_int(right):
            if right == 0:
                raise ZeroDivisionError("integer division by zero")
            quotient = abs(left) // abs(right)
            return quotient if (left < 0) == (right < 0) else -quotient
        return super().call_binop(context, operator, left, right)


def _is_int(value: Any) -> bool:
    return isinstance(value, int) and not isinstance(value, bool)


def _finalize(value: Any) -> str:
    if isinstance(value, Undefined):
        value._fail_with_undefined_error()
    return format_value(value)


def expand_dotted(variables: Mapping[str, Any]) -> dict[str, Any]:
    """Expose dotted variable names as nested maps.

    Args:
        variables: Flat mapping, possibly containing keys like "request.plan_id"

    Returns:
        New mapping where ``{"a.b": 1}`` becomes ``{"a": {"b": 1}}``. Input
        mappings are never mutated.

    Example:
        >>> expand_dotted({"request.plan_id": "p1", "name": "db"})
        {'request': {'plan_id': 'p1'}, 'name': 'db'}
    """
    scope: dict[str, Any] = {}
    for key, value in variables.items():
        if "." not in key:
            scope[key] = value
            continue

        head, *rest = key.split(".")
        node = scope.get(head)
        node = dict(node) if isinstance(node, Mapping) else {}
        scope[head] = node
        for part in rest[:-1]:
            child = node.get(part)
            child = dict(child) if isinstance(child, Mapping) else {}
            node[part] = child
            node = child
        node[rest[-1]] = value
    return scope


class Evaluator:
    """Evaluates interpolation templates against a variable scope.

    One evaluator owns one Counter, so ``counter.next()`` is unique across
    every template it evaluates. Evaluators are safe to share between threads;
    the counter is the only mutable state.

    Args:
        counter: Counter backing ``counter.next()`` (a fresh one if omitted)
        functions: Extra functions to register on top of the standard library
    """

    def __init__(
        self,
        counter: Counter | None = None,
        functions: Mapping[str, Function] | None = None,
    ) -> None:
        self.counter = counter if counter is not None else Counter()
        self.functions: dict[str, Function] = standard_library(self.counter)
        if functions:
            self.functions.update(functions)

        self._env = TemplateEnvironment(
            variable_start_string="${",
            variable_end_string="}",
            block_start_string="\x00{%",
            block_end_string="%}\x00",
            comment_start_string="\x00{#",
            comment_end_string="#}\x00",
            undefined=UnknownVariable,
            finalize=_finalize,
            autoescape=False,
            keep_trailing_newline=True,
        )
        # The template language only exposes the function table
        self._env.globals.clear()
        self._env.filters.clear()

        self._namespaces = self._build_namespaces(self.functions)
        self._compile_template = lru_cache(maxsize=512)(self._env.from_string)
        self._compile_expression = lru_cache(maxsize=512)(self._expression)
        self._single_expression = lru_cache(maxsize=512)(self._find_single_expression)

    @staticmethod
    def _build_namespaces(functions: Mapping[str, Function]) -> dict[str, Any]:
        grouped: dict[str, dict[str, Function]] = {}
        top_level: dict[str, Any] = {}
        for name, function in functions.items():
            if "." in name:
                namespace, member = name.split(".", 1)
                grouped.setdefault(namespace, {})[member] = function
            else:
                top_level[name] = function
        for namespace, members in grouped.items():
            top_level[namespace] = SimpleNamespace(**members)
        return top_level

    def _expression(self, source: str) -> Any:
        return self._env.compile_expression(source, undefined_to_none=False)

    def _find_single_expression(self, template: str) -> str | None:
        """Return the expression source if the template is exactly one region."""
        match = _SINGLE_REGION.match(template)
        if not match:
            return None
        body = self._env.parse(template).body
        if len(body) != 1 or not isinstance(body[0], nodes.Output):
            return None
        parts = body[0].nodes
        if len(parts) != 1 or isinstance(parts[0], nodes.TemplateData):
            return None
        return match.group("expression")

    def scope(self, variables: Mapping[str, Any]) -> dict[str, Any]:
        """Build the evaluation scope: nested variables plus function namespaces.

        Functions shadow variables that share their top-level name.
        """
        scope = expand_dotted(variables)
        scope.update(self._namespaces)
        return scope

    def evaluate(self, template: str, variables: Mapping[str, Any] | None = None) -> Value:
        """Evaluate a template.

        Args:
            template: Template text
            variables: Variable scope (flat or nested; dotted keys are expanded)

        Returns:
            The native value when the template is a single ``${...}`` region,
            otherwise the rendered text

        Raises:
            EvaluationError: On syntax errors, unknown variables, function
                errors (including failed ``assert``) and type errors
        """
        scope = self.scope(variables or {})
        try:
            expression = self._single_expression(template)
            if expression is not None:
                result = self._compile_expression(expression)(scope)
                if isinstance(result, Undefined):
                    result._fail_with_undefined_error()
                return to_value(result)
            return self._compile_template(template).render(scope)
        except EvaluationError as e:
            raise EvaluationError(e.message, template) from e
        except UndefinedError as e:
            raise EvaluationError(str(e), template) from e
        except TemplateSyntaxError as e:
            raise EvaluationError(f"parse error: {e.message}", template) from e
        except SecurityError as e:
            raise EvaluationError(f"forbidden operation: {e}", template) from e
        except (TypeError, ValueError, ArithmeticError) as e:
            raise EvaluationError(str(e), template) from e

    def is_literal(self, text: str) -> bool:
        """Check whether text evaluates to itself against an empty scope."""
        return is_literal(text)

    def __repr__(self) -> str:
        return f"Evaluator(functions={len(self.functions)}, counter={self.counter!r})"


@cache
def _literal_checker() -> Evaluator:
    return Evaluator()


@lru_cache(maxsize=1024)
def is_literal(text: str) -> bool:
    """Determine whether a string is a literal or a live template.

    The text is evaluated against an empty scope by a private evaluator, so
    the check never advances a shared counter. It is a literal when evaluation
    succeeds and returns the original text unchanged.

    Args:
        text: Candidate default value

    Returns:
        True if the text can be stored as-is, False if it must be re-evaluated
        on every resolution

    Example:
        >>> is_literal("db-primary")
        True
        >>> is_literal("${name}-db")
        False
    """
    try:
        return _literal_checker().evaluate(text, {}) == text
    except EvaluationError:
        return False


__all__ = [
    "RESERVED_NAMES",
    "Evaluator",
    "TemplateEnvironment",
    "UnknownVariable",
    "expand_dotted",
    "is_literal",
    "is_reserved_name",
]
