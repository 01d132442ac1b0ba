"""Variable context resolution.

ContextBuilder merges ordered configuration sources into an immutable
VarContext, evaluating expression defaults with the interpolation Evaluator.
"""

from .builder import JSON_TYPES, ContextBuilder, DefaultVariable, ErrorCollector, cast_to
from .context import VarContext

__all__ = [
    "JSON_TYPES",
    "ContextBuilder",
    "DefaultVariable",
    "ErrorCollector",
    "VarContext",
    "cast_to",
]
