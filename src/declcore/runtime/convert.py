"""
Explicit coercions between value kinds.

Operators never coerce; these functions are the only way a value changes
kind. Each either succeeds deterministically or raises ``ConversionError``
naming the source and target kinds. Unknown converts to Unknown and Null to
Null for every target.
"""

import re
from decimal import Decimal
from typing import Dict

from ..errors import ConversionError, error_conversion
from ..types import (
    TypeConstraint, PrimitiveConstraint, AnyConstraint,
    CollectionConstraint, ObjectConstraint,
)
from ..values import (
    Value, Kind, NULL, UNKNOWN, TRUE, FALSE,
    KEYED_KINDS, SEQUENCE_KINDS,
    number_val, string_val, list_val, set_val, map_val, object_val,
    format_number, sorted_values,
)


_DECIMAL_LITERAL = re.compile(r"-?\d+(\.\d+)?([eE][+-]?\d+)?")


def _passthrough(value: Value) -> bool:
    return value.kind in (Kind.UNKNOWN, Kind.NULL)


def to_string(value: Value) -> Value:
    """String, Number or Bool to String."""
    if _passthrough(value) or value.kind is Kind.STRING:
        return value
    if value.kind is Kind.NUMBER:
        return string_val(format_number(value.data))
    if value.kind is Kind.BOOL:
        return string_val("true" if value.data else "false")
    raise error_conversion(value.kind.label, "string")


def to_number(value: Value) -> Value:
    """Number, or a String holding a well-formed decimal literal."""
    if _passthrough(value) or value.kind is Kind.NUMBER:
        return value
    if value.kind is Kind.STRING:
        text = value.data
        if not _DECIMAL_LITERAL.fullmatch(text):
            raise error_conversion("string", "number", f"'{value.data}' is not a decimal number")
        return number_val(Decimal(text))
    raise error_conversion(value.kind.label, "number")


def to_bool(value: Value) -> Value:
    """Bool, or the strings "true" and "false"."""
    if _passthrough(value) or value.kind is Kind.BOOL:
        return value
    if value.kind is Kind.STRING:
        if value.data == "true":
            return TRUE
        if value.data == "false":
            return FALSE
        raise error_conversion("string", "bool", f"'{value.data}' is not \"true\" or \"false\"")
    raise error_conversion(value.kind.label, "bool")


def to_list(value: Value) -> Value:
    """List, or a Set in its sorted order."""
    if _passthrough(value) or value.kind is Kind.LIST:
        return value
    if value.kind is Kind.SET:
        return list_val(sorted_values(value.data))
    raise error_conversion(value.kind.label, "list")


def to_set(value: Value) -> Value:
    """
    Set, or a List deduplicated by structural equality.

    A List holding Unknown anywhere converts to Unknown, since unknown
    elements may or may not turn out equal to each other.
    """
    if _passthrough(value) or value.kind is Kind.SET:
        return value
    if value.kind is Kind.LIST:
        if value.contains_unknown():
            return UNKNOWN
        return set_val(value.data)
    raise error_conversion(value.kind.label, "set")


def to_map(value: Value) -> Value:
    """Map, or an Object whose fields all share one kind."""
    if _passthrough(value) or value.kind is Kind.MAP:
        return value
    if value.kind is Kind.OBJECT:
        kinds = {item.kind for item in value.data.values() if not item.is_unknown}
        if len(kinds) > 1:
            found = ", ".join(sorted(k.label for k in kinds))
            raise error_conversion(
                "object", "map", f"attribute values have mixed kinds ({found})")
        return map_val(value.data)
    raise error_conversion(value.kind.label, "map")


_PRIMITIVE_CONVERTERS = {
    Kind.STRING: to_string,
    Kind.NUMBER: to_number,
    Kind.BOOL: to_bool,
}


def convert(value: Value, constraint: TypeConstraint) -> Value:
    """
    Convert a value to satisfy a type constraint.

    Collections are converted element by element. Object constraints are
    closed: missing attributes become null, extra attributes are an error.
    """
    if value.is_unknown or value.is_null:
        return value
    if isinstance(constraint, AnyConstraint):
        return value
    if isinstance(constraint, PrimitiveConstraint):
        return _PRIMITIVE_CONVERTERS[constraint.kind](value)
    if isinstance(constraint, CollectionConstraint):
        return _convert_collection(value, constraint)
    if isinstance(constraint, ObjectConstraint):
        return _convert_object(value, constraint)
    raise error_conversion(value.kind.label, str(constraint))


def _convert_collection(value: Value, constraint: CollectionConstraint) -> Value:
    target = constraint.kind
    if target in SEQUENCE_KINDS:
        if value.kind not in SEQUENCE_KINDS:
            raise error_conversion(value.kind.label, constraint.name)
        elements = [_convert_nested(item, constraint.element, constraint) for item in value.data]
        if target is Kind.SET:
            if any(item.contains_unknown() for item in elements):
                return UNKNOWN
            return set_val(elements)
        if value.kind is Kind.SET:
            return list_val(sorted_values(elements))
        return list_val(elements)
    # map(T)
    if value.kind not in KEYED_KINDS:
        raise error_conversion(value.kind.label, constraint.name)
    return map_val({
        key: _convert_nested(item, constraint.element, constraint)
        for key, item in value.data.items()
    })


def _convert_object(value: Value, constraint: ObjectConstraint) -> Value:
    if value.kind not in KEYED_KINDS:
        raise error_conversion(value.kind.label, constraint.name)
    attributes = constraint.attribute_map()
    extra = sorted(set(value.data) - set(attributes))
    if extra:
        raise error_conversion(
            value.kind.label, constraint.name, f"unexpected attribute '{extra[0]}'")
    fields: Dict[str, Value] = {}
    for name, attr_type in constraint.attributes:
        item = value.data.get(name, NULL)
        fields[name] = _convert_nested(item, attr_type, constraint)
    return object_val(fields)


def _convert_nested(item: Value, element: TypeConstraint, outer: TypeConstraint) -> Value:
    try:
        return convert(item, element)
    except ConversionError as exc:
        raise error_conversion(
            item.kind.label, outer.name, exc.diagnostic.message) from exc
