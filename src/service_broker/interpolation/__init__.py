"""Interpolation templates: a small expression language for computed variables.

Public API:
- Evaluator: evaluates ``${...}`` templates against a variable scope
- is_literal: tells literal strings apart from live templates
- is_reserved_name: names that templates cannot reference
- Counter: atomic counter backing ``counter.next()``
- Function / standard_library: typed function table
- Value / ValueType / type_of: the closed value type
"""

from .evaluator import RESERVED_NAMES, Evaluator, expand_dotted, is_literal, is_reserved_name
from .functions import Counter, Function, standard_library
from .values import Value, ValueType, format_value, parse_bool, to_value, type_of

__all__ = [
    "RESERVED_NAMES",
    "Counter",
    "Evaluator",
    "Function",
    "Value",
    "ValueType",
    "expand_dotted",
    "format_value",
    "parse_bool",
    "is_literal",
    "is_reserved_name",
    "standard_library",
    "to_value",
    "type_of",
]
