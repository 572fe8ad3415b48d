"""
Tests for the expression evaluator (operators, access, comprehensions,
splat, templates, try/can).
"""

import pytest

from declcore.ast import (
    Literal, SymbolRef, SymbolPath, Index, Attribute, FunctionCall, Conditional,
    BinaryOp, UnaryOp, Operator, ListExpr, ObjectExpr, ForExpression,
    SplatExpression, TemplateString, TemplateIf, TemplateFor, COUNT_INDEX,
)
from declcore.errors import (
    TypeError as EvalTypeError, DivisionByZeroError, DuplicateKeyError,
    IndexOutOfRangeError, KeyNotFoundError, FunctionCallError, UndefinedSymbolError,
    ArityError,
)
from declcore.runtime import Evaluator, Scope, EMPTY_SCOPE, evaluate
from declcore.values import (
    Kind, NULL, UNKNOWN, TRUE, FALSE,
    number_val, string_val, list_val, set_val, map_val, object_val, from_python,
)


def lit(data):
    return Literal(from_python(data))


def bound(name):
    return SymbolRef(SymbolPath.bound(name))


def div(a, b):
    return BinaryOp(lit(a), Operator.DIV, lit(b))


@pytest.fixture
def evaluator():
    return Evaluator()


# --- Operator Tests ---

class TestOperators:
    """Test arithmetic, comparison, logic and equality."""

    def test_arithmetic(self, evaluator):
        assert evaluator.evaluate(BinaryOp(lit(2), Operator.ADD, lit(3)), EMPTY_SCOPE) == number_val(5)
        assert evaluator.evaluate(BinaryOp(lit(2), Operator.SUB, lit(3)), EMPTY_SCOPE) == number_val(-1)
        assert evaluator.evaluate(BinaryOp(lit(4), Operator.MUL, lit(2.5)), EMPTY_SCOPE) == number_val(10)
        assert evaluator.evaluate(div(7, 2), EMPTY_SCOPE) == number_val("3.5")
        assert evaluator.evaluate(BinaryOp(lit(7), Operator.MOD, lit(3)), EMPTY_SCOPE) == number_val(1)

    def test_decimal_arithmetic_is_exact(self, evaluator):
        """0.1 + 0.2 is exactly 0.3."""
        result = evaluator.evaluate(BinaryOp(lit(0.1), Operator.ADD, lit(0.2)), EMPTY_SCOPE)
        assert result == number_val("0.3")

    def test_unknown_plus_one(self, evaluator):
        """Unknown propagates through arithmetic."""
        expr = BinaryOp(Literal(UNKNOWN), Operator.ADD, lit(1))
        assert evaluator.evaluate(expr, EMPTY_SCOPE) is UNKNOWN

    def test_unknown_does_not_hide_type_errors(self, evaluator):
        expr = BinaryOp(Literal(UNKNOWN), Operator.ADD, lit("a"))
        with pytest.raises(EvalTypeError):
            evaluator.evaluate(expr, EMPTY_SCOPE)

    def test_no_implicit_coercion(self, evaluator):
        with pytest.raises(EvalTypeError) as exc_info:
            evaluator.evaluate(BinaryOp(lit("1"), Operator.ADD, lit(1)), EMPTY_SCOPE)
        assert exc_info.value.code == "E201"

    def test_division_by_zero(self, evaluator):
        with pytest.raises(DivisionByZeroError):
            evaluator.evaluate(div(1, 0), EMPTY_SCOPE)
        with pytest.raises(DivisionByZeroError):
            evaluator.evaluate(BinaryOp(lit(1), Operator.MOD, lit(0)), EMPTY_SCOPE)

    def test_remainder_beyond_precision(self, evaluator):
        """A remainder whose quotient needs more digits than the context fails cleanly."""
        expr = BinaryOp(Literal(number_val("1e200")), Operator.MOD, lit(7))
        with pytest.raises(FunctionCallError) as exc_info:
            evaluator.evaluate(expr, EMPTY_SCOPE)
        assert exc_info.value.code == "E306"
        assert "'%'" in exc_info.value.diagnostic.message

    def test_overflow(self, evaluator):
        expr = BinaryOp(Literal(number_val("9e999999")), Operator.MUL, lit(10))
        with pytest.raises(FunctionCallError) as exc_info:
            evaluator.evaluate(expr, EMPTY_SCOPE)
        assert "Overflow" in exc_info.value.diagnostic.message

    def test_comparison(self, evaluator):
        assert evaluator.evaluate(BinaryOp(lit(1), Operator.LT, lit(2)), EMPTY_SCOPE) is TRUE
        assert evaluator.evaluate(BinaryOp(lit(2), Operator.LE, lit(2)), EMPTY_SCOPE) is TRUE
        assert evaluator.evaluate(BinaryOp(lit(1), Operator.GT, lit(2)), EMPTY_SCOPE) is FALSE
        with pytest.raises(EvalTypeError):
            evaluator.evaluate(BinaryOp(lit("a"), Operator.LT, lit("b")), EMPTY_SCOPE)

    def test_logic(self, evaluator):
        assert evaluator.evaluate(BinaryOp(lit(True), Operator.AND, lit(False)), EMPTY_SCOPE) is FALSE
        assert evaluator.evaluate(BinaryOp(lit(True), Operator.OR, lit(False)), EMPTY_SCOPE) is TRUE
        assert evaluator.evaluate(UnaryOp(Operator.NOT, lit(True)), EMPTY_SCOPE) is FALSE
        with pytest.raises(EvalTypeError):
            evaluator.evaluate(BinaryOp(lit(1), Operator.AND, lit(True)), EMPTY_SCOPE)

    def test_negation(self, evaluator):
        assert evaluator.evaluate(UnaryOp(Operator.NEG, lit(5)), EMPTY_SCOPE) == number_val(-5)
        assert evaluator.evaluate(UnaryOp(Operator.NEG, Literal(UNKNOWN)), EMPTY_SCOPE) is UNKNOWN

    def test_equality_is_structural(self, evaluator):
        left = lit({"a": [1, 2]})
        right = lit({"a": [1, 2]})
        assert evaluator.evaluate(BinaryOp(left, Operator.EQ, right), EMPTY_SCOPE) is TRUE

    def test_equality_across_kinds_is_false(self, evaluator):
        expr = BinaryOp(lit(1), Operator.EQ, lit("1"))
        assert evaluator.evaluate(expr, EMPTY_SCOPE) is FALSE
        expr = BinaryOp(lit(1), Operator.NE, lit("1"))
        assert evaluator.evaluate(expr, EMPTY_SCOPE) is TRUE

    def test_equality_with_unknown_inside(self, evaluator):
        expr = BinaryOp(ListExpr((Literal(UNKNOWN),)), Operator.EQ, lit([1]))
        assert evaluator.evaluate(expr, EMPTY_SCOPE) is UNKNOWN


# --- Conditional Tests ---

class TestConditional:
    """Test cond ? a : b."""

    def test_only_chosen_branch_is_evaluated(self, evaluator):
        expr = Conditional(lit(True), lit("yes"), div(1, 0))
        assert evaluator.evaluate(expr, EMPTY_SCOPE) == string_val("yes")
        expr = Conditional(lit(False), div(1, 0), lit("no"))
        assert evaluator.evaluate(expr, EMPTY_SCOPE) == string_val("no")

    def test_unknown_condition_is_unknown(self, evaluator):
        """Even when both branches agree."""
        expr = Conditional(Literal(UNKNOWN), lit(1), lit(1))
        assert evaluator.evaluate(expr, EMPTY_SCOPE) is UNKNOWN

    def test_condition_must_be_bool(self, evaluator):
        with pytest.raises(EvalTypeError):
            evaluator.evaluate(Conditional(lit("true"), lit(1), lit(2)), EMPTY_SCOPE)


# --- Access Tests ---

class TestAccess:
    """Test index and attribute access."""

    def test_list_index(self, evaluator):
        expr = Index(lit(["a", "b"]), lit(1))
        assert evaluator.evaluate(expr, EMPTY_SCOPE) == string_val("b")

    def test_list_index_out_of_range(self, evaluator):
        with pytest.raises(IndexOutOfRangeError):
            evaluator.evaluate(Index(lit(["a"]), lit(1)), EMPTY_SCOPE)
        with pytest.raises(IndexOutOfRangeError):
            evaluator.evaluate(Index(lit(["a"]), lit(-1)), EMPTY_SCOPE)

    def test_fractional_index(self, evaluator):
        with pytest.raises(EvalTypeError):
            evaluator.evaluate(Index(lit(["a"]), lit(0.5)), EMPTY_SCOPE)

    def test_map_index(self, evaluator):
        expr = Index(lit({"k": 1}), lit("k"))
        assert evaluator.evaluate(expr, EMPTY_SCOPE) == number_val(1)

    def test_missing_key(self, evaluator):
        """KeyNotFoundError is an IndexOutOfRangeError."""
        with pytest.raises(KeyNotFoundError) as exc_info:
            evaluator.evaluate(Index(lit({"k": 1}), lit("x")), EMPTY_SCOPE)
        assert isinstance(exc_info.value, IndexOutOfRangeError)

    def test_index_null_or_set(self, evaluator):
        with pytest.raises(EvalTypeError):
            evaluator.evaluate(Index(lit(None), lit(0)), EMPTY_SCOPE)
        with pytest.raises(EvalTypeError) as exc_info:
            evaluator.evaluate(Index(Literal(set_val([number_val(1)])), lit(0)), EMPTY_SCOPE)
        assert any("tolist" in h for h in exc_info.value.diagnostic.hints)

    def test_index_unknown(self, evaluator):
        assert evaluator.evaluate(Index(Literal(UNKNOWN), lit(0)), EMPTY_SCOPE) is UNKNOWN
        assert evaluator.evaluate(Index(lit([1]), Literal(UNKNOWN)), EMPTY_SCOPE) is UNKNOWN

    def test_attribute(self, evaluator):
        target = Literal(object_val({"id": string_val("i-1")}))
        assert evaluator.evaluate(Attribute(target, "id"), EMPTY_SCOPE) == string_val("i-1")
        with pytest.raises(KeyNotFoundError):
            evaluator.evaluate(Attribute(target, "arn"), EMPTY_SCOPE)

    def test_attribute_of_list_hints_splat(self, evaluator):
        with pytest.raises(EvalTypeError) as exc_info:
            evaluator.evaluate(Attribute(lit([1]), "id"), EMPTY_SCOPE)
        assert any("[*].id" in h for h in exc_info.value.diagnostic.hints)


# --- Constructor Tests ---

class TestConstructors:
    """Test list and object constructors."""

    def test_object(self, evaluator):
        expr = ObjectExpr(((lit("a"), lit(1)), (lit("b"), lit(True))))
        result = evaluator.evaluate(expr, EMPTY_SCOPE)
        assert result.kind is Kind.OBJECT
        assert list(result.fields()) == ["a", "b"]

    def test_object_duplicate_key(self, evaluator):
        expr = ObjectExpr(((lit("a"), lit(1)), (lit("a"), lit(2))))
        with pytest.raises(DuplicateKeyError):
            evaluator.evaluate(expr, EMPTY_SCOPE)

    def test_object_unknown_key(self, evaluator):
        expr = ObjectExpr(((Literal(UNKNOWN), lit(1)),))
        assert evaluator.evaluate(expr, EMPTY_SCOPE) is UNKNOWN

    def test_list_keeps_unknown_elements(self, evaluator):
        result = evaluator.evaluate(ListExpr((lit(1), Literal(UNKNOWN))), EMPTY_SCOPE)
        assert result.kind is Kind.LIST
        assert result.contains_unknown()


# --- For Expression Tests ---

class TestForExpression:
    """Test list and map comprehensions."""

    def test_list_form_over_list(self, evaluator):
        expr = ForExpression(lit([1, 2, 3]), "v", BinaryOp(bound("v"), Operator.MUL, lit(10)))
        assert evaluator.evaluate(expr, EMPTY_SCOPE) == from_python([10, 20, 30])

    def test_key_var_over_list_is_index(self, evaluator):
        expr = ForExpression(lit(["a", "b"]), "v", bound("i"), key_var="i")
        assert evaluator.evaluate(expr, EMPTY_SCOPE) == from_python([0, 1])

    def test_map_iterates_in_key_order(self, evaluator):
        expr = ForExpression(lit({"b": 2, "a": 1}), "v", bound("k"), key_var="k")
        assert evaluator.evaluate(expr, EMPTY_SCOPE) == from_python(["a", "b"])

    def test_set_key_is_element(self, evaluator):
        expr = ForExpression(Literal(set_val([string_val("x")])), "v", bound("k"), key_var="k")
        assert evaluator.evaluate(expr, EMPTY_SCOPE) == from_python(["x"])

    def test_filter(self, evaluator):
        even = BinaryOp(BinaryOp(bound("v"), Operator.MOD, lit(2)), Operator.EQ, lit(0))
        expr = ForExpression(lit([1, 2, 3, 4]), "v", bound("v"), condition=even)
        assert evaluator.evaluate(expr, EMPTY_SCOPE) == from_python([2, 4])

    def test_filter_must_be_bool(self, evaluator):
        expr = ForExpression(lit([1]), "v", bound("v"), condition=lit(1))
        with pytest.raises(EvalTypeError):
            evaluator.evaluate(expr, EMPTY_SCOPE)

    def test_map_form(self, evaluator):
        expr = ForExpression(lit(["a", "b"]), "v", bound("i"), key_var="i", key_expr=bound("v"))
        assert evaluator.evaluate(expr, EMPTY_SCOPE) == map_val({"a": number_val(0), "b": number_val(1)})

    def test_map_form_number_keys_become_strings(self, evaluator):
        expr = ForExpression(lit([5]), "v", bound("v"), key_expr=bound("v"))
        result = evaluator.evaluate(expr, EMPTY_SCOPE)
        assert list(result.fields()) == ["5"]

    def test_map_form_duplicate_key(self, evaluator):
        expr = ForExpression(lit(["a", "a"]), "v", bound("i"), key_var="i", key_expr=bound("v"))
        with pytest.raises(DuplicateKeyError):
            evaluator.evaluate(expr, EMPTY_SCOPE)

    def test_grouping_collects_duplicates(self, evaluator):
        expr = ForExpression(lit(["a", "b", "a"]), "v", bound("i"), key_var="i",
                             key_expr=bound("v"), grouping=True)
        assert evaluator.evaluate(expr, EMPTY_SCOPE) == from_python({"a": [0, 2], "b": [1]})

    def test_unknown_collection(self, evaluator):
        expr = ForExpression(Literal(UNKNOWN), "v", bound("v"))
        assert evaluator.evaluate(expr, EMPTY_SCOPE) is UNKNOWN

    def test_non_collection(self, evaluator):
        with pytest.raises(EvalTypeError):
            evaluator.evaluate(ForExpression(lit("abc"), "v", bound("v")), EMPTY_SCOPE)

    def test_bindings_do_not_leak(self, evaluator):
        """The loop variable is bound in a child scope only."""
        outer = Scope({SymbolPath.bound("v"): string_val("outer")})
        evaluator.evaluate(ForExpression(lit([1]), "v", bound("v")), outer)
        assert evaluator.evaluate(bound("v"), outer) == string_val("outer")


# --- Splat Tests ---

class TestSplat:
    """Test source[*].path."""

    def test_splat_over_null_is_empty_list(self, evaluator):
        expr = SplatExpression(lit(None), ("id",))
        assert evaluator.evaluate(expr, EMPTY_SCOPE) == list_val(())

    def test_splat_over_list(self, evaluator):
        source = lit([{"id": "a"}, {"id": "b"}])
        expr = SplatExpression(source, ("id",))
        assert evaluator.evaluate(expr, EMPTY_SCOPE) == from_python(["a", "b"])

    def test_splat_with_index_step(self, evaluator):
        source = lit([{"ips": ["10.0.0.1", "10.0.0.2"]}])
        expr = SplatExpression(source, ("ips", lit(1)))
        assert evaluator.evaluate(expr, EMPTY_SCOPE) == from_python(["10.0.0.2"])

    def test_splat_over_single_value(self, evaluator):
        """A non-collection is treated as a one-element list."""
        expr = SplatExpression(lit({"id": "a"}), ("id",))
        assert evaluator.evaluate(expr, EMPTY_SCOPE) == from_python(["a"])

    def test_splat_over_unknown(self, evaluator):
        expr = SplatExpression(Literal(UNKNOWN), ("id",))
        assert evaluator.evaluate(expr, EMPTY_SCOPE) is UNKNOWN


# --- Template Tests ---

class TestTemplates:
    """Test string templates and directives."""

    def test_interpolation(self, evaluator):
        scope = Scope({COUNT_INDEX: number_val(3)})
        expr = TemplateString(("server-", SymbolRef(COUNT_INDEX)))
        assert evaluator.evaluate(expr, scope) == string_val("server-3")

    def test_interpolate_number_and_bool(self, evaluator):
        expr = TemplateString((lit(1.50), "/", lit(True)))
        assert evaluator.evaluate(expr, EMPTY_SCOPE) == string_val("1.5/true")

    def test_interpolate_unknown(self, evaluator):
        expr = TemplateString(("id-", Literal(UNKNOWN)))
        assert evaluator.evaluate(expr, EMPTY_SCOPE) is UNKNOWN

    def test_interpolate_null_or_collection(self, evaluator):
        with pytest.raises(EvalTypeError):
            evaluator.evaluate(TemplateString(("x", lit(None))), EMPTY_SCOPE)
        with pytest.raises(EvalTypeError):
            evaluator.evaluate(TemplateString(("x", lit([1]))), EMPTY_SCOPE)

    def test_if_directive(self, evaluator):
        expr = TemplateString(("env=", TemplateIf(lit(False), ("prod",), ("dev",))))
        assert evaluator.evaluate(expr, EMPTY_SCOPE) == string_val("env=dev")

    def test_for_directive(self, evaluator):
        body = (bound("v"), ";")
        expr = TemplateString((TemplateFor(lit(["a", "b"]), "v", body),))
        assert evaluator.evaluate(expr, EMPTY_SCOPE) == string_val("a;b;")


# --- Function Call Tests ---

class TestFunctionCalls:
    """Test library calls, try and can."""

    def test_library_call(self, evaluator):
        expr = FunctionCall("upper", (lit("web"),))
        assert evaluator.evaluate(expr, EMPTY_SCOPE) == string_val("WEB")

    def test_unknown_function(self, evaluator):
        with pytest.raises(UndefinedSymbolError):
            evaluator.evaluate(FunctionCall("nosuch", ()), EMPTY_SCOPE)

    def test_can_division_by_zero(self, evaluator):
        """can(1/0) is false."""
        assert evaluator.evaluate(FunctionCall("can", (div(1, 0),)), EMPTY_SCOPE) is FALSE

    def test_can_success(self, evaluator):
        assert evaluator.evaluate(FunctionCall("can", (lit(1),)), EMPTY_SCOPE) is TRUE
        assert evaluator.evaluate(FunctionCall("can", (Literal(UNKNOWN),)), EMPTY_SCOPE) is TRUE

    def test_can_arithmetic_error(self, evaluator):
        expr = BinaryOp(Literal(number_val("1e200")), Operator.MOD, lit(7))
        assert evaluator.evaluate(FunctionCall("can", (expr,)), EMPTY_SCOPE) is FALSE

    def test_can_bad_replacement(self, evaluator):
        expr = FunctionCall("replace", (lit("abc"), lit("/b/"), lit("$5")))
        assert evaluator.evaluate(FunctionCall("can", (expr,)), EMPTY_SCOPE) is FALSE

    def test_length_of_set_with_unknowns(self, evaluator):
        """Unknown elements might be equal, so the set size is unknown."""
        items = ListExpr((Literal(UNKNOWN), Literal(UNKNOWN)))
        expr = FunctionCall("length", (FunctionCall("toset", (items,)),))
        assert evaluator.evaluate(expr, EMPTY_SCOPE) is UNKNOWN

    def test_can_arity(self, evaluator):
        with pytest.raises(ArityError):
            evaluator.evaluate(FunctionCall("can", ()), EMPTY_SCOPE)

    def test_try_first_success(self, evaluator):
        expr = FunctionCall("try", (div(1, 0), lit("fallback"), lit("unused")))
        assert evaluator.evaluate(expr, EMPTY_SCOPE) == string_val("fallback")

    def test_try_unknown_is_success(self, evaluator):
        expr = FunctionCall("try", (Literal(UNKNOWN), lit("fallback")))
        assert evaluator.evaluate(expr, EMPTY_SCOPE) is UNKNOWN

    def test_try_all_fail(self, evaluator):
        expr = FunctionCall("try", (div(1, 0), Index(lit([]), lit(0))))
        with pytest.raises(FunctionCallError) as exc_info:
            evaluator.evaluate(expr, EMPTY_SCOPE)
        related = exc_info.value.diagnostic.related
        assert [d.code for d in related] == ["E305", "E303"]

    def test_try_arity(self, evaluator):
        with pytest.raises(ArityError):
            evaluator.evaluate(FunctionCall("try", ()), EMPTY_SCOPE)


class TestScopes:
    """Test symbol lookup through scopes."""

    def test_undefined_symbol(self, evaluator):
        with pytest.raises(UndefinedSymbolError):
            evaluator.evaluate(SymbolRef(SymbolPath.variable("missing")), EMPTY_SCOPE)

    def test_child_shadows_parent(self):
        path = SymbolPath.local("x")
        parent = Scope({path: number_val(1)})
        child = parent.bind(path, number_val(2))
        assert evaluate(SymbolRef(path), child) == number_val(2)
        assert evaluate(SymbolRef(path), parent) == number_val(1)

    def test_deferred_binding(self):
        calls = []

        def produce():
            calls.append(1)
            return string_val("late")

        scope = Scope({SymbolPath.local("x"): produce})
        assert calls == []
        assert evaluate(SymbolRef(SymbolPath.local("x")), scope) == string_val("late")
        assert calls == [1]

    def test_resolver(self):
        seen = []

        def resolver(path):
            seen.append(path)
            return number_val(42)

        scope = Scope(resolver=resolver).child({}, name="inner")
        assert evaluate(SymbolRef(SymbolPath.variable("answer")), scope) == number_val(42)
        assert seen == [SymbolPath.variable("answer")]
