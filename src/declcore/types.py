"""
Type constraints for variable declarations.

Constraints describe what a variable accepts:
    Primitives: string, number, bool
    Collections: list(T), set(T), map(T)
    Structural: object({name = T, ...})
    Wildcard: any

``declcore.runtime.convert.convert`` applies a constraint to a value.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Dict, List, Optional, Tuple

from .values import Kind


@dataclass(frozen=True)
class TypeConstraint(ABC):
    """Base class for all type constraints."""

    @property
    @abstractmethod
    def name(self) -> str:
        """The constraint in its written form."""
        pass

    def __str__(self) -> str:
        return self.name


@dataclass(frozen=True)
class PrimitiveConstraint(TypeConstraint):
    """string, number or bool."""
    kind: Kind

    @property
    def name(self) -> str:
        return self.kind.label


@dataclass(frozen=True)
class AnyConstraint(TypeConstraint):
    """Accepts any value unchanged."""

    @property
    def name(self) -> str:
        return "any"


@dataclass(frozen=True)
class CollectionConstraint(TypeConstraint):
    """list(T), set(T) or map(T)."""
    kind: Kind
    element: TypeConstraint

    @property
    def name(self) -> str:
        return f"{self.kind.label}({self.element.name})"


@dataclass(frozen=True)
class ObjectConstraint(TypeConstraint):
    """object({attr = T, ...}) with a closed set of attributes."""
    attributes: Tuple[Tuple[str, TypeConstraint], ...]

    @property
    def name(self) -> str:
        inner = ", ".join(f"{k} = {t.name}" for k, t in self.attributes)
        return f"object({{{inner}}})"

    def attribute_map(self) -> Dict[str, TypeConstraint]:
        return dict(self.attributes)


STRING = PrimitiveConstraint(Kind.STRING)
NUMBER = PrimitiveConstraint(Kind.NUMBER)
BOOL = PrimitiveConstraint(Kind.BOOL)
ANY = AnyConstraint()

BUILTIN_CONSTRAINTS: Dict[str, TypeConstraint] = {
    "string": STRING,
    "number": NUMBER,
    "bool": BOOL,
    "any": ANY,
}


def make_list_type(element: TypeConstraint) -> CollectionConstraint:
    return CollectionConstraint(Kind.LIST, element)


def make_set_type(element: TypeConstraint) -> CollectionConstraint:
    return CollectionConstraint(Kind.SET, element)


def make_map_type(element: TypeConstraint) -> CollectionConstraint:
    return CollectionConstraint(Kind.MAP, element)


def make_object_type(attributes: Dict[str, TypeConstraint]) -> ObjectConstraint:
    return ObjectConstraint(tuple(attributes.items()))


def resolve_type_name(name: str) -> Optional[TypeConstraint]:
    """Look up a primitive constraint by name."""
    return BUILTIN_CONSTRAINTS.get(name)


# =============================================================================
# Written form
# =============================================================================

class _TypeExprReader:
    """Reads the written form of a constraint, e.g. ``map(list(string))``."""

    _COLLECTIONS = {"list": Kind.LIST, "set": Kind.SET, "map": Kind.MAP}

    def __init__(self, text: str):
        self.text = text
        self.pos = 0

    def read(self) -> TypeConstraint:
        constraint = self._constraint()
        self._skip_space()
        if self.pos != len(self.text):
            raise ValueError(f"unexpected '{self.text[self.pos:]}' in type expression")
        return constraint

    def _skip_space(self) -> None:
        while self.pos < len(self.text) and self.text[self.pos].isspace():
            self.pos += 1

    def _expect(self, char: str) -> None:
        self._skip_space()
        if not self.text.startswith(char, self.pos):
            raise ValueError(f"expected '{char}' at offset {self.pos} in type expression")
        self.pos += 1

    def _word(self) -> str:
        self._skip_space()
        start = self.pos
        while self.pos < len(self.text) and (self.text[self.pos].isalnum() or self.text[self.pos] == "_"):
            self.pos += 1
        if start == self.pos:
            raise ValueError(f"expected a name at offset {start} in type expression")
        return self.text[start:self.pos]

    def _peek(self, char: str) -> bool:
        self._skip_space()
        return self.text.startswith(char, self.pos)

    def _constraint(self) -> TypeConstraint:
        word = self._word()
        if word in BUILTIN_CONSTRAINTS:
            return BUILTIN_CONSTRAINTS[word]
        if word in self._COLLECTIONS:
            self._expect("(")
            element = self._constraint()
            self._expect(")")
            return CollectionConstraint(self._COLLECTIONS[word], element)
        if word == "object":
            self._expect("(")
            self._expect("{")
            attributes: List[Tuple[str, TypeConstraint]] = []
            while not self._peek("}"):
                attr = self._word()
                self._expect("=")
                attributes.append((attr, self._constraint()))
                if self._peek(","):
                    self.pos += 1
            self._expect("}")
            self._expect(")")
            return ObjectConstraint(tuple(attributes))
        raise ValueError(f"unknown type '{word}'")


def parse_type_expr(text: str) -> TypeConstraint:
    """
    Parse the written form of a type constraint.

    Raises ValueError for malformed text.
    """
    return _TypeExprReader(text).read()
