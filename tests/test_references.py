"""
Tests for static reference extraction.
"""

from declcore.ast import (
    Literal, SymbolRef, SymbolPath, Index, Attribute, FunctionCall, Conditional,
    BinaryOp, Operator, ListExpr, ObjectExpr, ForExpression, SplatExpression,
    TemplateString, TemplateIf, TemplateFor, Variable, Validation, Local,
    ResourceTemplate, Output, COUNT_INDEX,
)
from declcore.references import (
    ReferenceAnalyzer, extract_references, declaration_references, references_of,
)
from declcore.values import number_val, string_val


VAR_A = SymbolPath.variable("a")
LOCAL_B = SymbolPath.local("b")
WEB = SymbolPath.resource("aws_instance", "web")


def ref(path):
    return SymbolRef(path)


class TestExtractReferences:
    """Test collecting symbol references from expression trees."""

    def test_literal_has_none(self):
        assert extract_references(Literal(number_val(1))) == frozenset()

    def test_operators_and_calls(self):
        expr = FunctionCall("max", (BinaryOp(ref(VAR_A), Operator.ADD, ref(LOCAL_B)),))
        assert extract_references(expr) == {VAR_A, LOCAL_B}

    def test_both_conditional_branches(self):
        """Over-approximation: the untaken branch still counts."""
        expr = Conditional(Literal(number_val(1)), ref(VAR_A), ref(LOCAL_B))
        assert extract_references(expr) == {VAR_A, LOCAL_B}

    def test_access_and_constructors(self):
        expr = ListExpr((
            Index(ref(VAR_A), Literal(number_val(0))),
            Attribute(ref(WEB), "id"),
            ObjectExpr(((Literal(string_val("k")), ref(LOCAL_B)),)),
        ))
        assert extract_references(expr) == {VAR_A, WEB, LOCAL_B}

    def test_for_expression(self):
        item = SymbolPath.bound("item")
        expr = ForExpression(
            ref(VAR_A), "item", Attribute(ref(item), "name"),
            key_expr=ref(LOCAL_B), condition=ref(COUNT_INDEX))
        refs = extract_references(expr)
        assert {VAR_A, LOCAL_B, item, COUNT_INDEX} == refs
        assert declaration_references(expr) == {VAR_A, LOCAL_B}

    def test_splat_path_expressions(self):
        expr = SplatExpression(ref(WEB), ("ips", ref(VAR_A)))
        assert extract_references(expr) == {WEB, VAR_A}

    def test_template_directives(self):
        expr = TemplateString((
            "x-",
            ref(VAR_A),
            TemplateIf(ref(LOCAL_B), ("yes",), (Attribute(ref(WEB), "id"),)),
            TemplateFor(ref(SymbolPath.local("names")), "n", (ref(SymbolPath.bound("n")),)),
        ))
        assert declaration_references(expr) == {
            VAR_A, LOCAL_B, WEB, SymbolPath.local("names"),
        }

    def test_analyzer_accumulates_until_reset(self):
        analyzer = ReferenceAnalyzer()
        analyzer.walk(ref(VAR_A))
        analyzer.walk(ref(LOCAL_B))
        assert analyzer.references == {VAR_A, LOCAL_B}
        analyzer.reset()
        assert analyzer.references == set()


class TestDeclarationReferences:
    """Test gathering references for whole declarations."""

    def test_local(self):
        assert references_of(Local("b", ref(VAR_A))) == {VAR_A}

    def test_resource_includes_multiplicity_and_depends_on(self):
        decl = ResourceTemplate(
            "aws_instance", "web",
            arguments={"ami": ref(VAR_A)},
            multiplicity=ref(LOCAL_B),
            depends_on=(SymbolPath.resource("aws_vpc", "main"),),
        )
        assert references_of(decl) == {VAR_A, LOCAL_B, SymbolPath.resource("aws_vpc", "main")}

    def test_output_depends_on(self):
        decl = Output("ip", Attribute(ref(WEB), "ip"), depends_on=(LOCAL_B,))
        assert references_of(decl) == {WEB, LOCAL_B}

    def test_variable_validation_self_reference(self):
        """A validation reads its own variable; that is not a dependency."""
        rule = Validation(
            BinaryOp(ref(VAR_A), Operator.GT, ref(SymbolPath.variable("floor"))),
            "too small")
        decl = Variable("a", validations=(rule,))
        assert references_of(decl) == {SymbolPath.variable("floor")}

    def test_output_references_are_ignored(self):
        decl = Local("x", ref(SymbolPath.output("y")))
        assert references_of(decl) == frozenset()
