"""
Expression evaluator.

Walks an expression tree against an explicit ``Scope`` and produces a
``Value``. Failures are raised as ``EvalError`` subclasses; the scheduler
catches them at the graph-node boundary. ``try`` and ``can`` are the only
constructs that absorb errors.

Unknown propagates: any operator, interpolation, index, attribute access or
function call that reads an Unknown operand yields Unknown instead of
failing. A conditional whose condition is Unknown is Unknown, even if both
branches would agree.
"""

from typing import Dict, List, Optional, Sequence, Tuple

from loguru import logger

from ..ast import (
    Expression, Literal, SymbolRef, Index, Attribute, FunctionCall, Conditional,
    BinaryOp, UnaryOp, Operator, ListExpr, ObjectExpr, ForExpression,
    SplatExpression, TemplateString, TemplateIf, TemplateFor, TemplatePart,
    SymbolPath, desugar_splat,
)
from ..errors import (
    Diagnostic, EvalError,
    error_arithmetic, error_arity, error_division_by_zero, error_duplicate_key,
    error_function_call, error_index_out_of_range, error_key_not_found,
    error_type_mismatch, error_unsupported_operation,
)
from ..source import SourceSpan
from ..values import (
    Value, Kind, UNKNOWN, TRUE, FALSE, DECIMAL_CONTEXT, KEYED_KINDS, SEQUENCE_KINDS,
    bool_val, number_val, string_val, list_val, map_val, object_val, render,
)
from .builtins import BuiltinRegistry, get_builtin_registry
from .convert import to_string
from .scope import Scope


ARITHMETIC_OPS = frozenset({Operator.ADD, Operator.SUB, Operator.MUL, Operator.DIV, Operator.MOD})
COMPARISON_OPS = frozenset({Operator.LT, Operator.LE, Operator.GT, Operator.GE})
LOGICAL_OPS = frozenset({Operator.AND, Operator.OR})
EQUALITY_OPS = frozenset({Operator.EQ, Operator.NE})

INTERPOLATABLE = frozenset({Kind.STRING, Kind.NUMBER, Kind.BOOL})


class Evaluator:
    """
    Evaluates expression trees.

    The evaluator holds no per-run state; the same instance may be used from
    several threads at once.
    """

    def __init__(self, registry: Optional[BuiltinRegistry] = None):
        self.registry = registry or get_builtin_registry()

    def evaluate(self, expr: Expression, scope: Scope) -> Value:
        """Evaluate an expression to produce a Value."""
        if isinstance(expr, Literal):
            return expr.value
        elif isinstance(expr, SymbolRef):
            return scope.lookup(expr.path, expr.span)
        elif isinstance(expr, BinaryOp):
            return self._eval_binary_op(expr, scope)
        elif isinstance(expr, UnaryOp):
            return self._eval_unary_op(expr, scope)
        elif isinstance(expr, Conditional):
            return self._eval_conditional(expr, scope)
        elif isinstance(expr, FunctionCall):
            return self._eval_function_call(expr, scope)
        elif isinstance(expr, Index):
            return self._eval_index(expr, scope)
        elif isinstance(expr, Attribute):
            return self._eval_attribute(expr, scope)
        elif isinstance(expr, ListExpr):
            return list_val(self.evaluate(item, scope) for item in expr.items)
        elif isinstance(expr, ObjectExpr):
            return self._eval_object(expr, scope)
        elif isinstance(expr, ForExpression):
            return self._eval_for(expr, scope)
        elif isinstance(expr, SplatExpression):
            return self._eval_splat(expr, scope)
        elif isinstance(expr, TemplateString):
            return self._eval_template(expr, scope)
        else:
            raise RuntimeError(f"Unknown expression type: {type(expr).__name__}")

    # --- Operators ---

    def _eval_binary_op(self, op: BinaryOp, scope: Scope) -> Value:
        """Evaluate a binary operation."""
        left = self.evaluate(op.left, scope)
        right = self.evaluate(op.right, scope)
        operator = op.operator

        if operator in EQUALITY_OPS:
            if left.contains_unknown() or right.contains_unknown():
                return UNKNOWN
            equal = left == right
            return bool_val(equal if operator is Operator.EQ else not equal)

        if operator in LOGICAL_OPS:
            self._require(left, Kind.BOOL, operator.value, op.span)
            self._require(right, Kind.BOOL, operator.value, op.span)
            if left.is_unknown or right.is_unknown:
                return UNKNOWN
            if operator is Operator.AND:
                return bool_val(left.data and right.data)
            return bool_val(left.data or right.data)

        if operator in ARITHMETIC_OPS or operator in COMPARISON_OPS:
            self._require(left, Kind.NUMBER, operator.value, op.span)
            self._require(right, Kind.NUMBER, operator.value, op.span)
            if left.is_unknown or right.is_unknown:
                return UNKNOWN
            if operator in COMPARISON_OPS:
                return self._compare(operator, left.data, right.data)
            return self._arithmetic(operator, left.data, right.data, op.span)

        raise RuntimeError(f"Unknown binary operator: {operator}")

    def _require(self, value: Value, kind: Kind, operation: str,
                 span: Optional[SourceSpan]) -> None:
        if value.is_unknown or value.kind is kind:
            return
        raise error_type_mismatch(kind.label, value.kind.label, span,
                                  context=f"operand of '{operation}'")

    def _compare(self, operator: Operator, a, b) -> Value:
        if operator is Operator.LT:
            return bool_val(a < b)
        elif operator is Operator.LE:
            return bool_val(a <= b)
        elif operator is Operator.GT:
            return bool_val(a > b)
        return bool_val(a >= b)

    def _arithmetic(self, operator: Operator, a, b, span: Optional[SourceSpan]) -> Value:
        ctx = DECIMAL_CONTEXT
        if b == 0 and operator in (Operator.DIV, Operator.MOD):
            raise error_division_by_zero(span)
        try:
            if operator is Operator.ADD:
                return number_val(ctx.add(a, b))
            elif operator is Operator.SUB:
                return number_val(ctx.subtract(a, b))
            elif operator is Operator.MUL:
                return number_val(ctx.multiply(a, b))
            elif operator is Operator.DIV:
                return number_val(ctx.divide(a, b))
            return number_val(ctx.remainder(a, b))
        except ArithmeticError as exc:
            raise error_arithmetic(operator.value, _arithmetic_detail(exc), span) from exc

    def _eval_unary_op(self, op: UnaryOp, scope: Scope) -> Value:
        """Evaluate a unary operation."""
        operand = self.evaluate(op.operand, scope)
        if op.operator is Operator.NEG:
            self._require(operand, Kind.NUMBER, "-", op.span)
            if operand.is_unknown:
                return UNKNOWN
            try:
                return number_val(DECIMAL_CONTEXT.minus(operand.data))
            except ArithmeticError as exc:
                raise error_arithmetic("-", _arithmetic_detail(exc), op.span) from exc
        elif op.operator is Operator.NOT:
            self._require(operand, Kind.BOOL, "!", op.span)
            if operand.is_unknown:
                return UNKNOWN
            return bool_val(not operand.data)
        raise RuntimeError(f"Unknown unary operator: {op.operator}")

    def _eval_conditional(self, cond: Conditional, scope: Scope) -> Value:
        """Evaluate cond ? a : b, evaluating only the chosen branch."""
        condition = self.evaluate(cond.condition, scope)
        if condition.is_unknown:
            return UNKNOWN
        if condition.kind is not Kind.BOOL:
            raise error_type_mismatch("bool", condition.kind.label, cond.span,
                                      context="condition")
        branch = cond.true_branch if condition.data else cond.false_branch
        return self.evaluate(branch, scope)

    # --- Function calls ---

    def _eval_function_call(self, call: FunctionCall, scope: Scope) -> Value:
        """Evaluate a function call."""
        if call.name == "try":
            return self._eval_try(call, scope)
        if call.name == "can":
            return self._eval_can(call, scope)
        args = [self.evaluate(arg, scope) for arg in call.arguments]
        return self.registry.call(call.name, args, call.span)

    def _eval_try(self, call: FunctionCall, scope: Scope) -> Value:
        """Return the first candidate that evaluates without error."""
        if not call.arguments:
            raise error_arity("try", "at least 1", 0, call.span)
        failures: List[Diagnostic] = []
        for candidate in call.arguments:
            try:
                return self.evaluate(candidate, scope)
            except EvalError as exc:
                failures.append(exc.diagnostic)
        error = error_function_call(
            "try", "no expression succeeded; the last error was: "
            f"{failures[-1].message}", call.span)
        error.diagnostic.related.extend(failures)
        raise error

    def _eval_can(self, call: FunctionCall, scope: Scope) -> Value:
        """True if the expression evaluates without error."""
        if len(call.arguments) != 1:
            raise error_arity("can", "1", len(call.arguments), call.span)
        try:
            self.evaluate(call.arguments[0], scope)
        except EvalError as exc:
            logger.trace("evaluator.can.absorbed code={} message={}", exc.code, exc.diagnostic.message)
            return FALSE
        return TRUE

    # --- Access ---

    def _eval_index(self, access: Index, scope: Scope) -> Value:
        """Evaluate collection[key]."""
        collection = self.evaluate(access.collection, scope)
        key = self.evaluate(access.key, scope)
        return index_value(collection, key, access.span)

    def _eval_attribute(self, access: Attribute, scope: Scope) -> Value:
        """Evaluate target.name."""
        target = self.evaluate(access.target, scope)
        return attribute_value(target, access.name, access.span)

    # --- Constructors ---

    def _eval_object(self, obj: ObjectExpr, scope: Scope) -> Value:
        """Evaluate an object constructor."""
        fields: Dict[str, Value] = {}
        unknown_key = False
        for key_expr, value_expr in obj.items:
            key = self.evaluate(key_expr, scope)
            value = self.evaluate(value_expr, scope)
            if key.is_unknown:
                unknown_key = True
                continue
            name = self._key_string(key, key_expr.span or obj.span)
            if name in fields:
                raise error_duplicate_key(name, key_expr.span or obj.span)
            fields[name] = value
        if unknown_key:
            return UNKNOWN
        return object_val(fields)

    def _key_string(self, key: Value, span: Optional[SourceSpan]) -> str:
        if key.kind not in INTERPOLATABLE:
            raise error_type_mismatch("string", key.kind.label, span, context="map key")
        return to_string(key).data

    # --- Comprehensions ---

    def _iteration_pairs(self, collection: Value,
                         span: Optional[SourceSpan]) -> List[Tuple[Value, Value]]:
        """(key, value) pairs of a collection in iteration order."""
        if collection.kind is Kind.LIST:
            return [(number_val(i), item) for i, item in enumerate(collection.data)]
        if collection.kind is Kind.SET:
            return [(item, item) for item in collection.data]
        if collection.kind in KEYED_KINDS:
            return [(string_val(k), collection.data[k]) for k in sorted(collection.data)]
        raise error_unsupported_operation(
            "iterate over", collection.kind.label, span,
            hints=["a for expression needs a list, set, map or object"])

    def _eval_for(self, comp: ForExpression, scope: Scope) -> Value:
        """Evaluate a for expression."""
        collection = self.evaluate(comp.collection, scope)
        if collection.is_unknown:
            return UNKNOWN
        return self._iterate(comp, self._iteration_pairs(collection, comp.span), scope)

    def _iterate(self, comp: ForExpression, pairs: Sequence[Tuple[Value, Value]],
                 scope: Scope) -> Value:
        items: List[Value] = []
        entries: Dict[str, Value] = {}
        groups: Dict[str, List[Value]] = {}
        unknown = False

        for key, value in pairs:
            bindings = {SymbolPath.bound(comp.value_var): value}
            if comp.key_var is not None:
                bindings[SymbolPath.bound(comp.key_var)] = key
            inner = scope.child(bindings, name="for")

            if comp.condition is not None:
                keep = self.evaluate(comp.condition, inner)
                if keep.is_unknown:
                    unknown = True
                    continue
                if keep.kind is not Kind.BOOL:
                    raise error_type_mismatch("bool", keep.kind.label, comp.span,
                                              context="for expression filter")
                if not keep.data:
                    continue

            if not comp.is_map_form:
                items.append(self.evaluate(comp.value_expr, inner))
                continue

            result_key = self.evaluate(comp.key_expr, inner)
            result_value = self.evaluate(comp.value_expr, inner)
            if result_key.is_unknown:
                unknown = True
                continue
            name = self._key_string(result_key, comp.span)
            if comp.grouping:
                groups.setdefault(name, []).append(result_value)
            elif name in entries:
                raise error_duplicate_key(name, comp.span)
            else:
                entries[name] = result_value

        if unknown:
            return UNKNOWN
        if not comp.is_map_form:
            return list_val(items)
        if comp.grouping:
            return map_val({name: list_val(values) for name, values in groups.items()})
        return map_val(entries)

    def _eval_splat(self, splat: SplatExpression, scope: Scope) -> Value:
        """Evaluate source[*].path as a for expression over the source."""
        source = self.evaluate(splat.source, scope)
        if source.is_unknown:
            return UNKNOWN
        if source.is_null:
            return list_val(())
        comp = desugar_splat(splat)
        if source.kind in SEQUENCE_KINDS:
            pairs = self._iteration_pairs(source, splat.span)
        else:
            pairs = [(number_val(0), source)]
        return self._iterate(comp, pairs, scope)

    # --- Templates ---

    def _eval_template(self, template: TemplateString, scope: Scope) -> Value:
        """Evaluate a string template."""
        out: List[str] = []
        known = self._render_parts(template.parts, scope, out, template.span)
        if not known:
            return UNKNOWN
        return string_val("".join(out))

    def _render_parts(self, parts: Sequence[TemplatePart], scope: Scope,
                      out: List[str], span: Optional[SourceSpan]) -> bool:
        """Append rendered parts to ``out``; False if any part was Unknown."""
        known = True
        for part in parts:
            if isinstance(part, str):
                out.append(part)
            elif isinstance(part, TemplateIf):
                known = self._render_if(part, scope, out) and known
            elif isinstance(part, TemplateFor):
                known = self._render_for(part, scope, out) and known
            else:
                value = self.evaluate(part, scope)
                if value.is_unknown:
                    known = False
                elif value.kind in INTERPOLATABLE:
                    out.append(to_string(value).data)
                else:
                    raise error_type_mismatch(
                        "string", value.kind.label, part.span or span,
                        context="template interpolation")
        return known

    def _render_if(self, directive: TemplateIf, scope: Scope, out: List[str]) -> bool:
        condition = self.evaluate(directive.condition, scope)
        if condition.is_unknown:
            return False
        if condition.kind is not Kind.BOOL:
            raise error_type_mismatch("bool", condition.kind.label, directive.span,
                                      context="template if condition")
        parts = directive.then_parts if condition.data else directive.else_parts
        return self._render_parts(parts, scope, out, directive.span)

    def _render_for(self, directive: TemplateFor, scope: Scope, out: List[str]) -> bool:
        collection = self.evaluate(directive.collection, scope)
        if collection.is_unknown:
            return False
        known = True
        for key, value in self._iteration_pairs(collection, directive.span):
            bindings = {SymbolPath.bound(directive.value_var): value}
            if directive.key_var is not None:
                bindings[SymbolPath.bound(directive.key_var)] = key
            inner = scope.child(bindings, name="template for")
            known = self._render_parts(directive.body, inner, out, directive.span) and known
        return known


def _arithmetic_detail(exc: ArithmeticError) -> str:
    """Name the decimal conditions behind a trapped arithmetic signal."""
    if exc.args and isinstance(exc.args[0], list):
        return ", ".join(getattr(cond, "__name__", str(cond)) for cond in exc.args[0])
    return str(exc) or type(exc).__name__


# =============================================================================
# Index and attribute access
# =============================================================================

def index_value(collection: Value, key: Value, span: Optional[SourceSpan] = None) -> Value:
    """collection[key] for lists, maps and objects."""
    if collection.is_unknown or key.is_unknown:
        return UNKNOWN
    if collection.kind is Kind.LIST:
        if key.kind is not Kind.NUMBER:
            raise error_type_mismatch("number", key.kind.label, span, context="list index")
        if not key.is_whole_number():
            raise error_type_mismatch("whole number", render(key), span, context="list index")
        position = int(key.data)
        if position < 0 or position >= len(collection.data):
            raise error_index_out_of_range(render(key), len(collection.data), span)
        return collection.data[position]
    if collection.kind in KEYED_KINDS:
        if key.kind is not Kind.STRING:
            raise error_type_mismatch("string", key.kind.label, span, context="map key")
        if key.data not in collection.data:
            raise error_key_not_found(key.data, span)
        return collection.data[key.data]
    hints = ["convert the set to a list with tolist() first"] if collection.kind is Kind.SET else None
    raise error_unsupported_operation("index", collection.kind.label, span, hints)


def attribute_value(target: Value, name: str, span: Optional[SourceSpan] = None) -> Value:
    """target.name for maps and objects."""
    if target.is_unknown:
        return UNKNOWN
    if target.kind in KEYED_KINDS:
        if name not in target.data:
            raise error_key_not_found(name, span)
        return target.data[name]
    hints = None
    if target.kind in SEQUENCE_KINDS:
        hints = [f"use a splat expression ([*].{name}) to read the attribute of every element"]
    raise error_unsupported_operation(
        f"read attribute '{name}' of", target.kind.label, span, hints)


def evaluate(expr: Expression, scope: Scope) -> Value:
    """Evaluate an expression with the default function library."""
    return Evaluator().evaluate(expr, scope)
