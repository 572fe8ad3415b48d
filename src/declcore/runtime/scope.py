"""
Lexical scopes for expression evaluation.

A scope maps symbol paths to values. Scopes never change after they are
built: entering a for-expression body or a resource instance creates a child
scope. A binding may be a deferred lookup (a zero-argument callable); the
root scope of a graph run also carries a resolver that asks the scheduler
for declaration values.
"""

from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Callable, Mapping, Optional, Union

from ..ast import SymbolPath
from ..errors import error_undefined_symbol
from ..source import SourceSpan
from ..values import Value


Binding = Union[Value, Callable[[], Value]]
Resolver = Callable[[SymbolPath], Value]


@dataclass(frozen=True)
class Scope:
    """
    A single immutable scope.

    Scopes form a chain via the `parent` field. The `resolver`, when set, is
    consulted for names no scope in the chain binds.
    """
    bindings: Mapping[SymbolPath, Binding] = field(default_factory=dict)
    parent: Optional["Scope"] = None
    resolver: Optional[Resolver] = None
    name: str = "global"  # For debugging

    def __post_init__(self):
        object.__setattr__(self, "bindings", MappingProxyType(dict(self.bindings)))

    def lookup(self, path: SymbolPath, span: Optional[SourceSpan] = None) -> Value:
        """Look up a symbol in this scope, its parents, then the resolver."""
        scope: Optional[Scope] = self
        while scope is not None:
            if path in scope.bindings:
                binding = scope.bindings[path]
                return binding() if callable(binding) else binding
            if scope.resolver is not None:
                return scope.resolver(path)
            scope = scope.parent
        raise error_undefined_symbol(str(path), span)

    def contains(self, path: SymbolPath) -> bool:
        """Check if a symbol is bound in this scope or its parents."""
        scope: Optional[Scope] = self
        while scope is not None:
            if path in scope.bindings:
                return True
            scope = scope.parent
        return False

    def child(self, bindings: Mapping[SymbolPath, Binding], name: str = "child") -> "Scope":
        """Create a nested scope shadowing this one."""
        return Scope(bindings=bindings, parent=self, name=name)

    def bind(self, path: SymbolPath, value: Binding) -> "Scope":
        """Shorthand for a child scope with a single binding."""
        return self.child({path: value}, name=str(path))


EMPTY_SCOPE = Scope(name="empty")
