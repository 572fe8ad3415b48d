"""
Runtime values for the configuration language.

A ``Value`` pairs a ``Kind`` tag with immutable Python data:

    NULL     None
    BOOL     bool
    NUMBER   decimal.Decimal (never float)
    STRING   str
    LIST     tuple of Value
    SET      tuple of Value, deduplicated and kept in canonical sorted order
    MAP      read-only mapping of str -> Value
    OBJECT   read-only mapping of str -> Value (closed shape)
    UNKNOWN  None (singleton; value exists but is not known yet)

Equality is structural and deep. Only lists compare position by position;
map and object equality ignores key order, although insertion order is kept
for display.
"""

from dataclasses import dataclass
from decimal import Context, Decimal, ROUND_HALF_EVEN, InvalidOperation, DivisionByZero, Overflow
from enum import Enum
from functools import cmp_to_key
from types import MappingProxyType
from typing import Any, Dict, Iterable, List, Mapping, Tuple, Union


# All arithmetic goes through this context; the process-wide decimal context
# is never touched.
DECIMAL_CONTEXT = Context(
    prec=128,
    rounding=ROUND_HALF_EVEN,
    traps=[InvalidOperation, DivisionByZero, Overflow],
)


class Kind(Enum):
    """The closed set of value kinds, in total-order rank."""
    NULL = 0
    BOOL = 1
    NUMBER = 2
    STRING = 3
    LIST = 4
    SET = 5
    MAP = 6
    OBJECT = 7
    UNKNOWN = 8

    @property
    def label(self) -> str:
        return self.name.lower()

    def __str__(self) -> str:
        return self.label


COLLECTION_KINDS = frozenset({Kind.LIST, Kind.SET, Kind.MAP, Kind.OBJECT})
KEYED_KINDS = frozenset({Kind.MAP, Kind.OBJECT})
SEQUENCE_KINDS = frozenset({Kind.LIST, Kind.SET})


@dataclass(frozen=True, eq=False)
class Value:
    """
    A runtime value with its kind.

    Build values through the constructors below (``number_val``,
    ``map_val``, ...) rather than directly so the data invariants hold.
    """
    kind: Kind
    data: Any = None

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Value):
            return NotImplemented
        if self.kind is not other.kind:
            return False
        if self.kind is Kind.SET:
            return frozenset(self.data) == frozenset(other.data)
        if self.kind in KEYED_KINDS:
            return dict(self.data) == dict(other.data)
        return self.data == other.data

    def __hash__(self) -> int:
        if self.kind is Kind.SET:
            return hash((self.kind, frozenset(self.data)))
        if self.kind in KEYED_KINDS:
            return hash((self.kind, frozenset(self.data.items())))
        return hash((self.kind, self.data))

    def __lt__(self, other: "Value") -> bool:
        return compare_values(self, other) < 0

    def __repr__(self) -> str:
        return f"Value({self.kind.label}, {render(self)})"

    def __str__(self) -> str:
        return render(self)

    # -- predicates -----------------------------------------------------

    @property
    def is_null(self) -> bool:
        return self.kind is Kind.NULL

    @property
    def is_unknown(self) -> bool:
        return self.kind is Kind.UNKNOWN

    @property
    def is_collection(self) -> bool:
        return self.kind in COLLECTION_KINDS

    def contains_unknown(self) -> bool:
        """True if this value or anything nested inside it is Unknown."""
        if self.kind is Kind.UNKNOWN:
            return True
        if self.kind in SEQUENCE_KINDS:
            return any(item.contains_unknown() for item in self.data)
        if self.kind in KEYED_KINDS:
            return any(item.contains_unknown() for item in self.data.values())
        return False

    def is_whole_number(self) -> bool:
        return (self.kind is Kind.NUMBER and self.data.is_finite()
                and self.data == self.data.to_integral_value())

    # -- collection access ----------------------------------------------

    def elements(self) -> List["Value"]:
        """Elements of a list or set, in their stored order."""
        return list(self.data)

    def fields(self) -> Mapping[str, "Value"]:
        """Key/value mapping of a map or object."""
        return self.data

    def length(self) -> int:
        if self.kind in COLLECTION_KINDS:
            return len(self.data)
        raise ValueError(f"{self.kind.label} value has no length")

    # -- python interop -------------------------------------------------

    def to_python(self) -> Any:
        """Export as plain Python data (Decimal numbers, lists, dicts)."""
        if self.kind is Kind.UNKNOWN:
            raise ValueError("cannot export an unknown value")
        if self.kind in SEQUENCE_KINDS:
            return [item.to_python() for item in self.data]
        if self.kind in KEYED_KINDS:
            return {key: item.to_python() for key, item in self.data.items()}
        return self.data

    @staticmethod
    def from_python(data: Any) -> "Value":
        """Build a value from plain Python data."""
        return from_python(data)


# Singletons

NULL = Value(Kind.NULL, None)
UNKNOWN = Value(Kind.UNKNOWN, None)
TRUE = Value(Kind.BOOL, True)
FALSE = Value(Kind.BOOL, False)


# Convenience constructors

def null_val() -> Value:
    """The null value."""
    return NULL


def bool_val(b: bool) -> Value:
    """Create a boolean value."""
    return TRUE if b else FALSE


def number_val(n: Union[int, str, Decimal, float]) -> Value:
    """
    Create a number value.

    Floats are converted through their shortest ``repr`` so ``0.1`` becomes
    ``Decimal("0.1")`` rather than the binary approximation.
    """
    if isinstance(n, bool):
        raise ValueError("booleans are not numbers")
    if isinstance(n, float):
        n = repr(n)
    number = Decimal(n)
    if not number.is_finite():
        raise ValueError(f"numbers must be finite, got {n!r}")
    return Value(Kind.NUMBER, number)


def string_val(s: str) -> Value:
    """Create a string value."""
    return Value(Kind.STRING, str(s))


def list_val(items: Iterable[Value]) -> Value:
    """Create a list value."""
    return Value(Kind.LIST, tuple(items))


def set_val(items: Iterable[Value]) -> Value:
    """Create a set value; duplicates are dropped and order is canonical."""
    unique: Dict[Value, None] = {}
    for item in items:
        unique.setdefault(item, None)
    return Value(Kind.SET, tuple(sorted(unique, key=SORT_KEY)))


def map_val(entries: Mapping[str, Value]) -> Value:
    """Create a map value (string keys)."""
    return Value(Kind.MAP, _freeze_fields(entries))


def object_val(fields: Mapping[str, Value]) -> Value:
    """Create an object value."""
    return Value(Kind.OBJECT, _freeze_fields(fields))


def unknown_val() -> Value:
    """The unknown placeholder."""
    return UNKNOWN


def _freeze_fields(entries: Mapping[str, Value]) -> Mapping[str, Value]:
    frozen = {}
    for key, item in entries.items():
        if not isinstance(key, str):
            raise ValueError(f"map keys must be strings, got {type(key).__name__}")
        if not isinstance(item, Value):
            raise ValueError(f"map entry '{key}' is not a Value")
        frozen[key] = item
    return MappingProxyType(frozen)


def from_python(data: Any) -> Value:
    """Build a value from plain Python data.

    dicts become maps, lists and tuples become lists, sets become sets.
    """
    if isinstance(data, Value):
        return data
    if data is None:
        return NULL
    if isinstance(data, bool):
        return bool_val(data)
    if isinstance(data, (int, float, Decimal)):
        return number_val(data)
    if isinstance(data, str):
        return string_val(data)
    if isinstance(data, Mapping):
        return map_val({str(k): from_python(v) for k, v in data.items()})
    if isinstance(data, (set, frozenset)):
        return set_val(from_python(v) for v in data)
    if isinstance(data, (list, tuple)):
        return list_val(from_python(v) for v in data)
    raise ValueError(f"cannot represent {type(data).__name__} as a value")


# =============================================================================
# Ordering
# =============================================================================

def _cmp(a: Any, b: Any) -> int:
    return (a > b) - (a < b)


def _compare_sequences(left: Tuple[Value, ...], right: Tuple[Value, ...]) -> int:
    for a, b in zip(left, right):
        result = compare_values(a, b)
        if result:
            return result
    return _cmp(len(left), len(right))


def compare_values(a: Value, b: Value) -> int:
    """
    Total order over values: kind rank first, then content.

    Returns a negative number, zero or a positive number.
    """
    if a.kind is not b.kind:
        return _cmp(a.kind.value, b.kind.value)
    kind = a.kind
    if kind in (Kind.NULL, Kind.UNKNOWN):
        return 0
    if kind in (Kind.BOOL, Kind.NUMBER, Kind.STRING):
        return _cmp(a.data, b.data)
    if kind in SEQUENCE_KINDS:
        return _compare_sequences(a.data, b.data)
    left_keys = sorted(a.data)
    right_keys = sorted(b.data)
    result = _cmp(left_keys, right_keys)
    if result:
        return result
    return _compare_sequences(
        tuple(a.data[k] for k in left_keys),
        tuple(b.data[k] for k in right_keys),
    )


SORT_KEY = cmp_to_key(compare_values)


def sorted_values(values: Iterable[Value]) -> List[Value]:
    """Sort values by the total order."""
    return sorted(values, key=SORT_KEY)


# =============================================================================
# Display
# =============================================================================

def format_number(number: Decimal) -> str:
    """Render a number without exponent or trailing zeros."""
    if number == 0:
        return "0"
    text = format(number.normalize(DECIMAL_CONTEXT), "f")
    if "." in text:
        text = text.rstrip("0").rstrip(".")
    return text


def _quote(text: str) -> str:
    escaped = text.replace("\\", "\\\\").replace('"', '\\"').replace("\n", "\\n")
    return f'"{escaped}"'


def render(value: Value) -> str:
    """Render a value the way it would be written in configuration."""
    kind = value.kind
    if kind is Kind.NULL:
        return "null"
    if kind is Kind.UNKNOWN:
        return "(known after apply)"
    if kind is Kind.BOOL:
        return "true" if value.data else "false"
    if kind is Kind.NUMBER:
        return format_number(value.data)
    if kind is Kind.STRING:
        return _quote(value.data)
    if kind is Kind.LIST:
        return "[" + ", ".join(render(v) for v in value.data) + "]"
    if kind is Kind.SET:
        return "toset([" + ", ".join(render(v) for v in value.data) + "])"
    entries = ", ".join(f"{_quote(k)} = {render(v)}" for k, v in value.data.items())
    if kind is Kind.MAP:
        return "tomap({" + entries + "})"
    return "{" + entries + "}"


def kind_label(value: Value) -> str:
    """Name of a value's kind for error messages."""
    return value.kind.label
