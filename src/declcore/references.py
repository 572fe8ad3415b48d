"""
Static reference analysis.

Walks expression trees and collects every ``SymbolRef`` they contain,
without evaluating anything. The result depends only on the tree, which is
what lets the dependency graph be built before any value is known.

Both branches of a conditional are always counted, even when the condition
would rule one of them out at run time. Scheduling needs an
over-approximation of the real dependencies.
"""

from typing import FrozenSet, Iterable, Set

from .ast import (
    AstNode, AstVisitor, Expression, Literal, SymbolRef, SymbolPath, SymbolKind,
    Index, Attribute, FunctionCall, Conditional, BinaryOp, UnaryOp,
    ListExpr, ObjectExpr, ForExpression, SplatExpression,
    TemplateString, TemplateIf, TemplateFor, TemplatePart,
    Declaration, ResourceTemplate, Output, Variable,
)


REFERENCEABLE_KINDS = frozenset({SymbolKind.VARIABLE, SymbolKind.LOCAL, SymbolKind.RESOURCE})


class ReferenceAnalyzer(AstVisitor):
    """
    Collects symbol references from expression trees.

    One analyzer may walk several trees; references accumulate in
    ``references`` until ``reset`` is called.
    """

    def __init__(self):
        self.references: Set[SymbolPath] = set()

    def reset(self) -> None:
        self.references = set()

    def walk(self, node: AstNode) -> None:
        node.accept(self)

    def _walk_parts(self, parts: Iterable[TemplatePart]) -> None:
        for part in parts:
            if not isinstance(part, str):
                self.walk(part)

    def visit_Literal(self, node: Literal) -> None:
        pass

    def visit_SymbolRef(self, node: SymbolRef) -> None:
        self.references.add(node.path)

    def visit_Index(self, node: Index) -> None:
        self.walk(node.collection)
        self.walk(node.key)

    def visit_Attribute(self, node: Attribute) -> None:
        self.walk(node.target)

    def visit_FunctionCall(self, node: FunctionCall) -> None:
        for arg in node.arguments:
            self.walk(arg)

    def visit_Conditional(self, node: Conditional) -> None:
        self.walk(node.condition)
        self.walk(node.true_branch)
        self.walk(node.false_branch)

    def visit_BinaryOp(self, node: BinaryOp) -> None:
        self.walk(node.left)
        self.walk(node.right)

    def visit_UnaryOp(self, node: UnaryOp) -> None:
        self.walk(node.operand)

    def visit_ListExpr(self, node: ListExpr) -> None:
        for item in node.items:
            self.walk(item)

    def visit_ObjectExpr(self, node: ObjectExpr) -> None:
        for key, value in node.items:
            self.walk(key)
            self.walk(value)

    def visit_ForExpression(self, node: ForExpression) -> None:
        self.walk(node.collection)
        self.walk(node.value_expr)
        if node.key_expr is not None:
            self.walk(node.key_expr)
        if node.condition is not None:
            self.walk(node.condition)

    def visit_SplatExpression(self, node: SplatExpression) -> None:
        self.walk(node.source)
        for step in node.path:
            if not isinstance(step, str):
                self.walk(step)

    def visit_TemplateString(self, node: TemplateString) -> None:
        self._walk_parts(node.parts)

    def visit_TemplateIf(self, node: TemplateIf) -> None:
        self.walk(node.condition)
        self._walk_parts(node.then_parts)
        self._walk_parts(node.else_parts)

    def visit_TemplateFor(self, node: TemplateFor) -> None:
        self.walk(node.collection)
        self._walk_parts(node.body)


def extract_references(node: Expression) -> FrozenSet[SymbolPath]:
    """Every symbol referenced anywhere inside an expression tree."""
    analyzer = ReferenceAnalyzer()
    analyzer.walk(node)
    return frozenset(analyzer.references)


def declaration_references(node: Expression) -> FrozenSet[SymbolPath]:
    """References to variables, locals and resources only."""
    return frozenset(p for p in extract_references(node) if p.kind in REFERENCEABLE_KINDS)


def references_of(declaration: Declaration) -> FrozenSet[SymbolPath]:
    """
    Declarations a declaration depends on.

    Covers every expression the declaration owns plus its explicit
    ``depends_on`` list.
    """
    analyzer = ReferenceAnalyzer()
    for _, expr in declaration.expressions():
        analyzer.walk(expr)
    found = {p for p in analyzer.references if p.kind in REFERENCEABLE_KINDS}
    if isinstance(declaration, (ResourceTemplate, Output)):
        found.update(declaration.depends_on)
    if isinstance(declaration, Variable):
        # validation conditions read the variable being validated
        found.discard(declaration.symbol)
    return frozenset(found)
