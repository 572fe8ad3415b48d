"""
Built-in function library.

Every function has a fixed signature. Calls are checked before the
implementation runs: a wrong argument count is an ``ArityError`` and an
argument of the wrong kind is a ``TypeError`` naming the function and the
1-based argument position.

Unknown arguments make the result Unknown without calling the
implementation. Functions whose result depends on the content of
collection elements (``join``, ``sort``, ``jsonencode``, ...) also return
Unknown when an Unknown is nested anywhere inside an argument.

``try`` and ``can`` are not here: they take unevaluated expressions and are
handled by the evaluator.
"""

import json
import re
from dataclasses import dataclass
from decimal import Decimal, ROUND_CEILING, ROUND_FLOOR
from enum import Enum
from typing import Callable, Dict, FrozenSet, List, Optional, Sequence, Tuple

from ..errors import (
    EvalError,
    error_argument_type, error_arity, error_function_call, error_index_out_of_range,
    error_key_not_found, error_unknown_function,
)
from ..source import SourceSpan
from ..values import (
    Value, Kind, UNKNOWN, DECIMAL_CONTEXT,
    COLLECTION_KINDS, KEYED_KINDS, SEQUENCE_KINDS,
    bool_val, number_val, string_val, list_val, map_val, object_val,
    format_number, render,
)
from . import cidr
from .convert import to_string, to_number, to_bool, to_list, to_set, to_map


class UnknownPolicy(Enum):
    """How a function treats Unknown arguments."""
    SHALLOW = "shallow"   # an Unknown argument makes the result Unknown
    DEEP = "deep"         # an Unknown anywhere inside an argument does
    ACCEPT = "accept"     # the implementation handles Unknown itself


NUMBER = frozenset({Kind.NUMBER})
STRING = frozenset({Kind.STRING})
LIST = frozenset({Kind.LIST})
SEQUENCE = SEQUENCE_KINDS
KEYED = KEYED_KINDS
COLLECTION = COLLECTION_KINDS
PRIMITIVE = frozenset({Kind.STRING, Kind.NUMBER, Kind.BOOL})


@dataclass(frozen=True)
class Param:
    """One parameter; ``kinds`` of None accepts any kind."""
    name: str
    kinds: Optional[FrozenSet[Kind]] = None
    optional: bool = False
    nullable: bool = False

    def expected(self) -> str:
        if self.kinds is None:
            return "any value"
        return " or ".join(sorted(k.label for k in self.kinds))


@dataclass(frozen=True)
class FunctionSignature:
    """Fixed parameter list of a built-in function."""
    name: str
    params: Tuple[Param, ...] = ()
    variadic: Optional[Param] = None
    min_variadic: int = 0
    unknowns: UnknownPolicy = UnknownPolicy.SHALLOW

    @property
    def required_count(self) -> int:
        return sum(1 for p in self.params if not p.optional) + self.min_variadic

    def arity_text(self) -> str:
        required = self.required_count
        if self.variadic is not None:
            return f"at least {required}"
        if required != len(self.params):
            return f"{required} to {len(self.params)}"
        return str(required)

    def accepts_count(self, count: int) -> bool:
        if count < self.required_count:
            return False
        return self.variadic is not None or count <= len(self.params)

    def param_at(self, index: int) -> Param:
        if index < len(self.params):
            return self.params[index]
        return self.variadic

    def check(self, args: Sequence[Value], span: Optional[SourceSpan] = None) -> None:
        """Raise ArityError or TypeError for a call that does not fit."""
        if not self.accepts_count(len(args)):
            raise error_arity(self.name, self.arity_text(), len(args), span)
        for index, arg in enumerate(args):
            param = self.param_at(index)
            if arg.is_unknown:
                continue
            if arg.is_null:
                if not param.nullable:
                    raise error_argument_type(self.name, index + 1, param.expected(), "null", span)
                continue
            if param.kinds is not None and arg.kind not in param.kinds:
                raise error_argument_type(self.name, index + 1, param.expected(), arg.kind.label, span)


def _sig(name: str, params: List[Param], variadic: Param = None,
         min_variadic: int = 0,
         unknowns: UnknownPolicy = UnknownPolicy.SHALLOW) -> FunctionSignature:
    return FunctionSignature(
        name=name,
        params=tuple(params),
        variadic=variadic,
        min_variadic=min_variadic,
        unknowns=unknowns,
    )


@dataclass
class BuiltinFunction:
    """
    A built-in function with its implementation and signature.
    """
    name: str
    signature: FunctionSignature
    implementation: Callable[..., Value]
    doc: str = ""

    def invoke(self, args: Sequence[Value], span: Optional[SourceSpan] = None) -> Value:
        """Check the call, apply the Unknown policy, then run."""
        self.signature.check(args, span)
        policy = self.signature.unknowns
        if policy is UnknownPolicy.SHALLOW and any(a.is_unknown for a in args):
            return UNKNOWN
        if policy is UnknownPolicy.DEEP and any(a.contains_unknown() for a in args):
            return UNKNOWN
        try:
            return self.implementation(*args)
        except EvalError as exc:
            if exc.diagnostic.span is None:
                exc.diagnostic.span = span
            raise
        except ArithmeticError as exc:
            raise error_function_call(self.name, f"arithmetic error: {exc}", span) from exc


# =============================================================================
# Argument helpers
# =============================================================================

def _whole(function: str, position: int, value: Value) -> int:
    """A whole-number argument as a Python int."""
    if not value.is_whole_number():
        raise error_argument_type(function, position, "whole number", render(value))
    return int(value.data)


def _strings(function: str, position: int, value: Value) -> List[str]:
    """Elements of a sequence argument as strings."""
    result = []
    for item in value.elements():
        if item.kind not in PRIMITIVE:
            raise error_argument_type(
                function, position, "list of string", f"list containing {item.kind.label}")
        result.append(to_string(item).data)
    return result


def _numbers(function: str, position: int, values: Sequence[Value]) -> List[Decimal]:
    result = []
    for item in values:
        if item.kind is not Kind.NUMBER:
            raise error_argument_type(function, position, "number", item.kind.label)
        result.append(item.data)
    return result


def _json_encode(value: Value) -> str:
    kind = value.kind
    if kind is Kind.NULL:
        return "null"
    if kind is Kind.BOOL:
        return "true" if value.data else "false"
    if kind is Kind.NUMBER:
        return format_number(value.data)
    if kind is Kind.STRING:
        return json.dumps(value.data)
    if kind in SEQUENCE_KINDS:
        return "[" + ",".join(_json_encode(item) for item in value.data) + "]"
    entries = (f"{json.dumps(key)}:{_json_encode(value.data[key])}" for key in sorted(value.data))
    return "{" + ",".join(entries) + "}"


_FORMAT_VERB = re.compile(r"%(?:\[(\d+)\])?([-+# 0]*)(\d+)?(?:\.(\d+))?([a-zA-Z%])")


def _format_one(verb: str, flags: str, width: Optional[str], precision: Optional[str],
                arg: Value) -> str:
    if arg.is_null and verb != "v":
        raise error_function_call("format", f"unsupported value for %{verb}: null")
    if verb in ("v", "s"):
        if arg.kind in PRIMITIVE:
            text = to_string(arg).data
        elif verb == "v":
            text = _json_encode(arg)
        else:
            raise error_function_call("format", f"%s cannot format {arg.kind.label}")
        if precision is not None:
            text = text[:int(precision)]
    elif verb == "q":
        if arg.kind not in PRIMITIVE:
            raise error_function_call("format", f"%q cannot format {arg.kind.label}")
        text = json.dumps(to_string(arg).data)
    elif verb == "t":
        if arg.kind is not Kind.BOOL:
            raise error_function_call("format", f"%t requires a bool, got {arg.kind.label}")
        text = "true" if arg.data else "false"
    elif verb == "d":
        number = to_number(arg)
        if not number.is_whole_number():
            raise error_function_call("format", f"%d requires a whole number, got {render(arg)}")
        text = str(int(number.data))
        if "+" in flags and number.data >= 0:
            text = "+" + text
    elif verb in ("f", "e", "g"):
        number = to_number(arg)
        digits = precision if precision is not None else "6"
        spec = f".{digits}{verb}"
        text = format(number.data, spec)
        if "+" in flags and number.data >= 0:
            text = "+" + text
    elif verb in ("x", "X", "o", "b"):
        number = to_number(arg)
        if not number.is_whole_number():
            raise error_function_call("format", f"%{verb} requires a whole number")
        text = format(int(number.data), verb)
    else:
        raise error_function_call("format", f"unsupported verb %{verb}")

    if width is not None and len(text) < int(width):
        pad = int(width) - len(text)
        if "-" in flags:
            text = text + " " * pad
        elif "0" in flags and verb in ("d", "f", "e", "g"):
            sign = text[0] if text[:1] in ("-", "+") else ""
            text = sign + "0" * pad + text[len(sign):]
        else:
            text = " " * pad + text
    return text


def _format(spec: Value, *args: Value) -> Value:
    template = spec.data
    output = []
    position = 0
    next_arg = 0
    for match in _FORMAT_VERB.finditer(template):
        output.append(template[position:match.start()])
        position = match.end()
        explicit, flags, width, precision, verb = match.groups()
        if verb == "%":
            output.append("%")
            continue
        index = int(explicit) - 1 if explicit else next_arg
        if index < 0 or index >= len(args):
            raise error_function_call(
                "format", f"not enough arguments for verb %{verb} at offset {match.start()}")
        next_arg = index + 1
        output.append(_format_one(verb, flags, width, precision, args[index]))
    output.append(template[position:])
    return string_val("".join(output))


class BuiltinRegistry:
    """
    Registry of all built-in functions.

    Functions are registered by name and can be looked up for execution.
    """

    def __init__(self):
        self._functions: Dict[str, BuiltinFunction] = {}
        self._register_all()

    def get_function(self, name: str) -> Optional[BuiltinFunction]:
        """Look up a function by name."""
        return self._functions.get(name)

    def register(self, func: BuiltinFunction) -> None:
        """Register a function."""
        self._functions[func.name] = func

    def names(self) -> List[str]:
        return sorted(self._functions)

    def call(self, name: str, args: Sequence[Value], span: Optional[SourceSpan] = None) -> Value:
        """Check and invoke a function by name."""
        func = self.get_function(name)
        if func is None:
            raise error_unknown_function(name, span)
        return func.invoke(list(args), span)

    def _add(self, name: str, params: List[Param], implementation: Callable[..., Value],
             doc: str = "", **options) -> None:
        self.register(BuiltinFunction(name, _sig(name, params, **options), implementation, doc))

    def _register_all(self) -> None:
        """Register all built-in functions."""
        self._register_collection_functions()
        self._register_numeric_functions()
        self._register_string_functions()
        self._register_conversion_functions()
        self._register_network_functions()

    # --- Collection Functions ---

    def _register_collection_functions(self) -> None:
        """Register collection functions."""

        def _merge(*args: Value) -> Value:
            merged: Dict[str, Value] = {}
            all_maps = True
            for arg in args:
                if arg.is_null:
                    continue
                all_maps = all_maps and arg.kind is Kind.MAP
                merged.update(arg.fields())
            if all_maps and any(not a.is_null for a in args):
                return map_val(merged)
            return object_val(merged)

        def _flatten_into(items, out: List[Value]) -> None:
            for item in items:
                if item.kind is Kind.LIST:
                    _flatten_into(item.data, out)
                else:
                    out.append(item)

        def _flatten(lst: Value) -> Value:
            out: List[Value] = []
            _flatten_into(lst.data, out)
            return list_val(out)

        def _distinct(lst: Value) -> Value:
            seen: Dict[Value, None] = {}
            for item in lst.data:
                seen.setdefault(item, None)
            return list_val(seen)

        def _concat(*lists: Value) -> Value:
            out: List[Value] = []
            for lst in lists:
                out.extend(lst.data)
            return list_val(out)

        def _lookup(mapping: Value, key: Value, *default: Value) -> Value:
            if key.data in mapping.data:
                return mapping.data[key.data]
            if default:
                return default[0]
            raise error_key_not_found(key.data)

        def _zipmap(keys: Value, values: Value) -> Value:
            names = _strings("zipmap", 1, keys)
            if len(names) != values.length():
                raise error_function_call(
                    "zipmap",
                    f"number of keys ({len(names)}) does not match number of values ({values.length()})",
                )
            entries = dict(zip(names, values.data))
            kinds = {v.kind for v in entries.values()}
            return map_val(entries) if len(kinds) <= 1 else object_val(entries)

        def _length(value: Value) -> Value:
            if value.kind is Kind.STRING:
                return number_val(len(value.data))
            return number_val(value.length())

        def _keys(mapping: Value) -> Value:
            return list_val(string_val(k) for k in sorted(mapping.data))

        def _values(mapping: Value) -> Value:
            return list_val(mapping.data[k] for k in sorted(mapping.data))

        def _contains(collection: Value, value: Value) -> Value:
            return bool_val(value in collection.data)

        def _element(lst: Value, index: Value) -> Value:
            position = _whole("element", 2, index)
            if not lst.data:
                raise error_function_call("element", "cannot use element function with an empty list")
            if position < 0:
                raise error_function_call("element", "cannot use element function with a negative index")
            return lst.data[position % len(lst.data)]

        def _coalesce(*args: Value) -> Value:
            for arg in args:
                if arg.is_unknown:
                    return UNKNOWN
                if arg.is_null or (arg.kind is Kind.STRING and arg.data == ""):
                    continue
                return arg
            raise error_function_call("coalesce", "no non-null, non-empty-string arguments")

        def _compact(lst: Value) -> Value:
            out = []
            for item in lst.data:
                if item.is_null or (item.kind is Kind.STRING and item.data == ""):
                    continue
                if item.kind is not Kind.STRING:
                    raise error_argument_type("compact", 1, "list of string", f"list containing {item.kind.label}")
                out.append(item)
            return list_val(out)

        def _range(*args: Value) -> Value:
            numbers = _numbers("range", 1, args)
            if len(numbers) == 1:
                start, limit, step = Decimal(0), numbers[0], Decimal(1)
            elif len(numbers) == 2:
                start, limit = numbers
                step = Decimal(1) if limit >= start else Decimal(-1)
            else:
                start, limit, step = numbers
            if step == 0:
                raise error_function_call("range", "step must not be zero")
            if (limit - start) * step < 0:
                return list_val(())
            out = []
            current = start
            while (current < limit) if step > 0 else (current > limit):
                out.append(number_val(current))
                if len(out) > 1024:
                    raise error_function_call("range", "more than 1024 values were generated")
                current = DECIMAL_CONTEXT.add(current, step)
            return list_val(out)

        def _slice(lst: Value, start: Value, end: Value) -> Value:
            first = _whole("slice", 2, start)
            last = _whole("slice", 3, end)
            size = len(lst.data)
            if first < 0 or first > size:
                raise error_index_out_of_range(str(first), size)
            if last < first or last > size:
                raise error_index_out_of_range(str(last), size)
            return list_val(lst.data[first:last])

        def _reverse(lst: Value) -> Value:
            return list_val(reversed(lst.data))

        def _sort(lst: Value) -> Value:
            return list_val(string_val(s) for s in sorted(_strings("sort", 1, lst)))

        self._add("merge", [], _merge,
                  "Shallow union of maps or objects; later arguments win.",
                  variadic=Param("maps", KEYED, nullable=True))
        self._add("flatten", [Param("list", SEQUENCE)], _flatten,
                  "Flatten nested lists into one list.", unknowns=UnknownPolicy.DEEP)
        self._add("distinct", [Param("list", LIST)], _distinct,
                  "Remove duplicates, keeping first occurrences.", unknowns=UnknownPolicy.DEEP)
        self._add("concat", [], _concat, "Join lists end to end.",
                  variadic=Param("lists", LIST), min_variadic=1)
        self._add("lookup", [Param("map", KEYED), Param("key", STRING),
                             Param("default", optional=True, nullable=True)],
                  _lookup, "Map element by key, with an optional default.")
        self._add("zipmap", [Param("keys", LIST), Param("values", LIST)], _zipmap,
                  "Build a map from a list of keys and a list of values.",
                  unknowns=UnknownPolicy.DEEP)
        self._add("length", [Param("value", COLLECTION | STRING)], _length,
                  "Number of elements, attributes or characters.")
        self._add("keys", [Param("map", KEYED)], _keys, "Sorted keys of a map.")
        self._add("values", [Param("map", KEYED)], _values, "Values of a map in key order.")
        self._add("contains", [Param("list", SEQUENCE), Param("value", nullable=True)], _contains,
                  "Whether a list or set holds a value.", unknowns=UnknownPolicy.DEEP)
        self._add("element", [Param("list", LIST), Param("index", NUMBER)], _element,
                  "List element by index, wrapping around.")
        self._add("coalesce", [], _coalesce, "First non-null, non-empty argument.",
                  variadic=Param("values", nullable=True), min_variadic=1,
                  unknowns=UnknownPolicy.ACCEPT)
        self._add("compact", [Param("list", LIST)], _compact,
                  "Drop null and empty strings from a list.", unknowns=UnknownPolicy.DEEP)
        self._add("range", [Param("start", NUMBER), Param("limit", NUMBER, optional=True),
                            Param("step", NUMBER, optional=True)],
                  _range, "Arithmetic sequence of numbers.")
        self._add("slice", [Param("list", LIST), Param("start", NUMBER), Param("end", NUMBER)],
                  _slice, "Consecutive elements from start up to end.")
        self._add("reverse", [Param("list", LIST)], _reverse, "Reverse a list.")
        self._add("sort", [Param("list", SEQUENCE)], _sort,
                  "Sort strings lexicographically.", unknowns=UnknownPolicy.DEEP)

    # --- Numeric Functions ---

    def _register_numeric_functions(self) -> None:
        """Register numeric functions."""

        def _min(*args: Value) -> Value:
            return number_val(min(a.data for a in args))

        def _max(*args: Value) -> Value:
            return number_val(max(a.data for a in args))

        def _abs(x: Value) -> Value:
            return number_val(DECIMAL_CONTEXT.abs(x.data))

        def _ceil(x: Value) -> Value:
            return number_val(x.data.to_integral_value(rounding=ROUND_CEILING))

        def _floor(x: Value) -> Value:
            return number_val(x.data.to_integral_value(rounding=ROUND_FLOOR))

        def _pow(base: Value, exp: Value) -> Value:
            return number_val(DECIMAL_CONTEXT.power(base.data, exp.data))

        def _signum(x: Value) -> Value:
            return number_val((x.data > 0) - (x.data < 0))

        def _sum(lst: Value) -> Value:
            if not lst.data:
                raise error_function_call("sum", "cannot sum an empty list")
            total = Decimal(0)
            for number in _numbers("sum", 1, lst.data):
                total = DECIMAL_CONTEXT.add(total, number)
            return number_val(total)

        self._add("min", [], _min, "Smallest of the numbers.",
                  variadic=Param("numbers", NUMBER), min_variadic=1)
        self._add("max", [], _max, "Largest of the numbers.",
                  variadic=Param("numbers", NUMBER), min_variadic=1)
        self._add("abs", [Param("number", NUMBER)], _abs, "Absolute value.")
        self._add("ceil", [Param("number", NUMBER)], _ceil, "Round up to a whole number.")
        self._add("floor", [Param("number", NUMBER)], _floor, "Round down to a whole number.")
        self._add("pow", [Param("base", NUMBER), Param("exponent", NUMBER)], _pow,
                  "Raise a number to a power.")
        self._add("signum", [Param("number", NUMBER)], _signum, "-1, 0 or 1.")
        self._add("sum", [Param("list", SEQUENCE)], _sum, "Total of a list of numbers.",
                  unknowns=UnknownPolicy.DEEP)

    # --- String Functions ---

    def _register_string_functions(self) -> None:
        """Register string functions."""

        def _upper(s: Value) -> Value:
            return string_val(s.data.upper())

        def _lower(s: Value) -> Value:
            return string_val(s.data.lower())

        def _trimspace(s: Value) -> Value:
            return string_val(s.data.strip())

        def _join(separator: Value, *lists: Value) -> Value:
            parts: List[str] = []
            for position, lst in enumerate(lists, start=2):
                parts.extend(_strings("join", position, lst))
            return string_val(separator.data.join(parts))

        def _split(separator: Value, s: Value) -> Value:
            if separator.data == "":
                pieces = list(s.data)
            else:
                pieces = s.data.split(separator.data)
            return list_val(string_val(p) for p in pieces)

        def _replace(s: Value, search: Value, replacement: Value) -> Value:
            pattern = search.data
            if len(pattern) > 1 and pattern.startswith("/") and pattern.endswith("/"):
                template = replacement.data.replace("\\", "\\\\")
                template = re.sub(r"\$\{?(\d+)\}?", r"\\g<\1>", template)
                try:
                    return string_val(re.sub(pattern[1:-1], template, s.data))
                except re.error as exc:
                    raise error_function_call("replace", f"invalid regular expression: {exc}") from exc
            return string_val(s.data.replace(pattern, replacement.data))

        def _substr(s: Value, offset: Value, length: Value) -> Value:
            text = s.data
            start = _whole("substr", 2, offset)
            count = _whole("substr", 3, length)
            if start < 0:
                start += len(text)
            if start < 0 or start > len(text):
                raise error_function_call("substr", "offset out of range")
            if count == -1:
                return string_val(text[start:])
            if count < 0:
                raise error_function_call("substr", "length must be non-negative or -1")
            return string_val(text[start:start + count])

        self._add("upper", [Param("string", STRING)], _upper, "Convert to upper case.")
        self._add("lower", [Param("string", STRING)], _lower, "Convert to lower case.")
        self._add("trimspace", [Param("string", STRING)], _trimspace,
                  "Remove leading and trailing whitespace.")
        self._add("join", [Param("separator", STRING)], _join,
                  "Concatenate list elements with a separator.",
                  variadic=Param("lists", SEQUENCE), min_variadic=1,
                  unknowns=UnknownPolicy.DEEP)
        self._add("split", [Param("separator", STRING), Param("string", STRING)], _split,
                  "Divide a string at each separator.")
        self._add("replace", [Param("string", STRING), Param("search", STRING),
                              Param("replacement", STRING)],
                  _replace, "Replace substrings; /.../ searches are regular expressions.")
        self._add("substr", [Param("string", STRING), Param("offset", NUMBER),
                             Param("length", NUMBER)],
                  _substr, "Extract characters by offset and length.")
        self._add("format", [Param("spec", STRING)], _format,
                  "printf-style formatting.",
                  variadic=Param("values", nullable=True), unknowns=UnknownPolicy.DEEP)

    # --- Conversion Functions ---

    def _register_conversion_functions(self) -> None:
        """Register type conversion functions."""

        def _jsonencode(value: Value) -> Value:
            return string_val(_json_encode(value))

        nullable_any = [Param("value", nullable=True)]
        self._add("tostring", nullable_any, to_string, "Convert to string.")
        self._add("tonumber", nullable_any, to_number, "Convert to number.")
        self._add("tobool", nullable_any, to_bool, "Convert to bool.")
        self._add("tolist", nullable_any, to_list, "Convert to list.")
        self._add("toset", nullable_any, to_set, "Convert to set.")
        self._add("tomap", nullable_any, to_map, "Convert to map.")
        self._add("jsonencode", nullable_any, _jsonencode, "Encode as JSON text.",
                  unknowns=UnknownPolicy.DEEP)

    # --- Network Functions ---

    def _register_network_functions(self) -> None:
        """Register network prefix functions."""

        def _cidrsubnet(prefix: Value, newbits: Value, netnum: Value) -> Value:
            return string_val(cidr.cidrsubnet(
                prefix.data, _whole("cidrsubnet", 2, newbits), _whole("cidrsubnet", 3, netnum)))

        def _cidrhost(prefix: Value, hostnum: Value) -> Value:
            return string_val(cidr.cidrhost(prefix.data, _whole("cidrhost", 2, hostnum)))

        def _cidrnetmask(prefix: Value) -> Value:
            return string_val(cidr.cidrnetmask(prefix.data))

        def _cidrsubnets(prefix: Value, *newbits: Value) -> Value:
            sizes = [_whole("cidrsubnets", i, n) for i, n in enumerate(newbits, start=2)]
            return list_val(string_val(s) for s in cidr.cidrsubnets(prefix.data, sizes))

        self._add("cidrsubnet", [Param("prefix", STRING), Param("newbits", NUMBER),
                                 Param("netnum", NUMBER)],
                  _cidrsubnet, "Subnet address within a prefix.")
        self._add("cidrhost", [Param("prefix", STRING), Param("hostnum", NUMBER)],
                  _cidrhost, "Host address within a prefix.")
        self._add("cidrnetmask", [Param("prefix", STRING)], _cidrnetmask,
                  "IPv4 netmask of a prefix.")
        self._add("cidrsubnets", [Param("prefix", STRING)], _cidrsubnets,
                  "Consecutive subnets of the given sizes.",
                  variadic=Param("newbits", NUMBER), min_variadic=1)


# Global singleton registry
_registry: Optional[BuiltinRegistry] = None


def get_builtin_registry() -> BuiltinRegistry:
    """Get the global built-in function registry."""
    global _registry
    if _registry is None:
        _registry = BuiltinRegistry()
    return _registry


def call_builtin(name: str, args: List[Value], span: Optional[SourceSpan] = None) -> Value:
    """
    Call a built-in function by name.

    Raises UndefinedSymbolError if the function is not in the library.
    """
    return get_builtin_registry().call(name, args, span)
