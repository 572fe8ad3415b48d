"""
Expression runtime.

This module provides:
- Evaluator: Tree-walking evaluation of expressions against a scope
- Scope: Immutable lexical scopes with deferred graph lookups
- BuiltinRegistry: The fixed function library
- convert: Explicit coercions between value kinds
"""

from .convert import (
    to_string,
    to_number,
    to_bool,
    to_list,
    to_set,
    to_map,
    convert,
)

from .scope import (
    Scope,
    Binding,
    Resolver,
    EMPTY_SCOPE,
)

from .builtins import (
    Param,
    FunctionSignature,
    UnknownPolicy,
    BuiltinFunction,
    BuiltinRegistry,
    get_builtin_registry,
    call_builtin,
)

from .evaluator import (
    Evaluator,
    evaluate,
    index_value,
    attribute_value,
)

__all__ = [
    # Conversion
    "to_string",
    "to_number",
    "to_bool",
    "to_list",
    "to_set",
    "to_map",
    "convert",
    # Scope
    "Scope",
    "Binding",
    "Resolver",
    "EMPTY_SCOPE",
    # Builtins
    "Param",
    "FunctionSignature",
    "UnknownPolicy",
    "BuiltinFunction",
    "BuiltinRegistry",
    "get_builtin_registry",
    "call_builtin",
    # Evaluator
    "Evaluator",
    "evaluate",
    "index_value",
    "attribute_value",
]
