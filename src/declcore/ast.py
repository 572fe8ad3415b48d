"""
Abstract Syntax Tree (AST) node definitions for configuration expressions.

The front-end parser builds these trees; the core only walks them. Trees are
immutable and owned by exactly one declaration argument, so they never
contain cycles. Cycles can only appear between declarations, through
``SymbolRef`` nodes.

Declarations (variables, locals, resource templates, outputs) are defined
at the bottom of this module.
"""

from abc import ABC
from dataclasses import dataclass, field
from enum import Enum, auto
from typing import Any, Dict, Iterator, Optional, Tuple, Union

from .source import SourceSpan
from .types import TypeConstraint
from .values import Value


# =============================================================================
# Base Classes
# =============================================================================

@dataclass(frozen=True)
class AstNode(ABC):
    """Base class for all AST nodes."""
    span: Optional[SourceSpan] = field(default=None, kw_only=True, compare=False)

    def accept(self, visitor: "AstVisitor") -> Any:
        """Accept a visitor for traversal."""
        method_name = f"visit_{self.__class__.__name__}"
        method = getattr(visitor, method_name, visitor.generic_visit)
        return method(self)


class AstVisitor(ABC):
    """Base class for AST visitors."""

    def generic_visit(self, node: AstNode) -> Any:
        """Default visit method."""
        raise NotImplementedError(f"No visitor for {node.__class__.__name__}")


# =============================================================================
# Symbols
# =============================================================================

class SymbolKind(Enum):
    """The scope a symbol name lives in."""
    VARIABLE = auto()   # var.NAME
    LOCAL = auto()      # local.NAME
    RESOURCE = auto()   # TYPE.NAME
    OUTPUT = auto()     # output.NAME (never referenced by expressions)
    EACH = auto()       # each.key / each.value
    COUNT = auto()      # count.index
    BOUND = auto()      # comprehension-bound name


DECLARATION_KINDS = frozenset({
    SymbolKind.VARIABLE, SymbolKind.LOCAL, SymbolKind.RESOURCE, SymbolKind.OUTPUT,
})

_PREFIXES = {
    SymbolKind.VARIABLE: "var.",
    SymbolKind.LOCAL: "local.",
    SymbolKind.OUTPUT: "output.",
    SymbolKind.EACH: "each.",
    SymbolKind.COUNT: "count.",
    SymbolKind.RESOURCE: "",
    SymbolKind.BOUND: "",
}


@dataclass(frozen=True)
class SymbolPath:
    """
    A scoped name such as ``var.region`` or ``aws_instance.web``.

    Resource names include their type tag: ``SymbolPath(RESOURCE,
    "aws_instance.web")``.
    """
    kind: SymbolKind
    name: str

    def __str__(self) -> str:
        return f"{_PREFIXES[self.kind]}{self.name}"

    @property
    def is_declaration(self) -> bool:
        return self.kind in DECLARATION_KINDS

    @property
    def address(self) -> str:
        """The declaration address this path names."""
        return str(self)

    @classmethod
    def variable(cls, name: str) -> "SymbolPath":
        return cls(SymbolKind.VARIABLE, name)

    @classmethod
    def local(cls, name: str) -> "SymbolPath":
        return cls(SymbolKind.LOCAL, name)

    @classmethod
    def resource(cls, type_tag: str, name: str) -> "SymbolPath":
        return cls(SymbolKind.RESOURCE, f"{type_tag}.{name}")

    @classmethod
    def output(cls, name: str) -> "SymbolPath":
        return cls(SymbolKind.OUTPUT, name)

    @classmethod
    def bound(cls, name: str) -> "SymbolPath":
        return cls(SymbolKind.BOUND, name)


EACH_KEY = SymbolPath(SymbolKind.EACH, "key")
EACH_VALUE = SymbolPath(SymbolKind.EACH, "value")
COUNT_INDEX = SymbolPath(SymbolKind.COUNT, "index")


# =============================================================================
# Expression Nodes
# =============================================================================

class Operator(Enum):
    """Binary and unary operators."""
    ADD = "+"
    SUB = "-"
    MUL = "*"
    DIV = "/"
    MOD = "%"
    EQ = "=="
    NE = "!="
    LT = "<"
    LE = "<="
    GT = ">"
    GE = ">="
    AND = "&&"
    OR = "||"
    NEG = "neg"
    NOT = "!"


@dataclass(frozen=True)
class Expression(AstNode):
    """Base class for all expressions."""
    pass


@dataclass(frozen=True)
class Literal(Expression):
    """A constant value produced by the front-end."""
    value: Value


@dataclass(frozen=True)
class SymbolRef(Expression):
    """A reference to a declaration or a bound name."""
    path: SymbolPath


@dataclass(frozen=True)
class Index(Expression):
    """Index access (e.g., list[0], map["key"])."""
    collection: Expression
    key: Expression


@dataclass(frozen=True)
class Attribute(Expression):
    """Attribute access (e.g., aws_instance.web.id)."""
    target: Expression
    name: str


@dataclass(frozen=True)
class FunctionCall(Expression):
    """A call into the function library (e.g., merge(a, b))."""
    name: str
    arguments: Tuple[Expression, ...] = ()


@dataclass(frozen=True)
class Conditional(Expression):
    """cond ? true_branch : false_branch"""
    condition: Expression
    true_branch: Expression
    false_branch: Expression


@dataclass(frozen=True)
class BinaryOp(Expression):
    """A binary operation (e.g., a + b, x && y)."""
    left: Expression
    operator: Operator
    right: Expression


@dataclass(frozen=True)
class UnaryOp(Expression):
    """A unary operation (e.g., !x, -n)."""
    operator: Operator
    operand: Expression


@dataclass(frozen=True)
class ListExpr(Expression):
    """A list constructor (e.g., [a, b, c])."""
    items: Tuple[Expression, ...] = ()


@dataclass(frozen=True)
class ObjectExpr(Expression):
    """An object constructor (e.g., {name = "web", size = var.size})."""
    items: Tuple[Tuple[Expression, Expression], ...] = ()


@dataclass(frozen=True)
class ForExpression(Expression):
    """A for expression.

    List form:
        [for k, v in coll : value_expr if cond]
    Map form (key_expr set):
        {for k, v in coll : key_expr => value_expr if cond}

    With ``grouping`` set, the map form collects values that share a key
    into lists instead of rejecting the duplicate.
    """
    collection: Expression
    value_var: str
    value_expr: Expression
    key_var: Optional[str] = None
    key_expr: Optional[Expression] = None
    condition: Optional[Expression] = None
    grouping: bool = False

    @property
    def is_map_form(self) -> bool:
        return self.key_expr is not None


# A splat step is either an attribute name or an index expression.
TraversalStep = Union[str, Expression]


@dataclass(frozen=True)
class SplatExpression(Expression):
    """Splat access (e.g., aws_instance.web[*].id)."""
    source: Expression
    path: Tuple[TraversalStep, ...] = ()


@dataclass(frozen=True)
class TemplateIf(AstNode):
    """%{ if cond }...%{ else }...%{ endif }"""
    condition: Expression
    then_parts: Tuple["TemplatePart", ...] = ()
    else_parts: Tuple["TemplatePart", ...] = ()


@dataclass(frozen=True)
class TemplateFor(AstNode):
    """%{ for k, v in coll }...%{ endfor }"""
    collection: Expression
    value_var: str
    body: Tuple["TemplatePart", ...] = ()
    key_var: Optional[str] = None


TemplatePart = Union[str, Expression, TemplateIf, TemplateFor]


@dataclass(frozen=True)
class TemplateString(Expression):
    """A string template with interpolations and directives."""
    parts: Tuple[TemplatePart, ...] = ()


SPLAT_ITEM = SymbolPath(SymbolKind.BOUND, "*")


def desugar_splat(splat: SplatExpression) -> ForExpression:
    """
    Rewrite ``source[*].a.b`` as ``[for item in source : item.a.b]``.

    The element is bound under a name no user identifier can spell, so the
    rewrite cannot capture a user binding.
    """
    body: Expression = SymbolRef(SPLAT_ITEM, span=splat.span)
    for step in splat.path:
        if isinstance(step, str):
            body = Attribute(body, step, span=splat.span)
        else:
            body = Index(body, step, span=splat.span)
    return ForExpression(
        collection=splat.source,
        value_var=SPLAT_ITEM.name,
        value_expr=body,
        span=splat.span,
    )


# =============================================================================
# Declarations
# =============================================================================

@dataclass(frozen=True)
class Declaration(AstNode):
    """Base class for declarations."""

    @property
    def address(self) -> str:
        raise NotImplementedError

    @property
    def symbol(self) -> SymbolPath:
        raise NotImplementedError

    def expressions(self) -> Iterator[Tuple[str, Expression]]:
        """Every expression subtree owned by this declaration."""
        return iter(())


@dataclass(frozen=True)
class Validation(AstNode):
    """A validation rule attached to a variable."""
    condition: Expression
    error_message: str


@dataclass(frozen=True)
class Variable(Declaration):
    """An input variable."""
    name: str
    type: Optional[TypeConstraint] = None
    default: Optional[Value] = None
    validations: Tuple[Validation, ...] = ()
    description: str = ""

    @property
    def symbol(self) -> SymbolPath:
        return SymbolPath.variable(self.name)

    @property
    def address(self) -> str:
        return str(self.symbol)

    def expressions(self) -> Iterator[Tuple[str, Expression]]:
        for i, rule in enumerate(self.validations):
            yield f"validation[{i}]", rule.condition


@dataclass(frozen=True)
class Local(Declaration):
    """A named local value."""
    name: str
    expression: Expression

    @property
    def symbol(self) -> SymbolPath:
        return SymbolPath.local(self.name)

    @property
    def address(self) -> str:
        return str(self.symbol)

    def expressions(self) -> Iterator[Tuple[str, Expression]]:
        yield "value", self.expression


@dataclass(frozen=True)
class LifecyclePolicy:
    """Lifecycle flags passed through to the provider layer."""
    create_before_destroy: bool = False
    prevent_destroy: bool = False
    ignore_changes: Tuple[str, ...] = ()


@dataclass(frozen=True)
class ResourceTemplate(Declaration):
    """A managed resource, optionally expanded by a multiplicity source.

    ``multiplicity`` is the ``count`` or ``for_each`` expression; which one it
    is follows from the kind of value it evaluates to. ``computed`` names
    the attributes the provider fills in after the side effect happens.
    """
    type_tag: str
    name: str
    arguments: Dict[str, Expression] = field(default_factory=dict)
    multiplicity: Optional[Expression] = None
    depends_on: Tuple[SymbolPath, ...] = ()
    lifecycle: LifecyclePolicy = field(default_factory=LifecyclePolicy)
    computed: Tuple[str, ...] = ("id",)

    @property
    def symbol(self) -> SymbolPath:
        return SymbolPath.resource(self.type_tag, self.name)

    @property
    def address(self) -> str:
        return str(self.symbol)

    def expressions(self) -> Iterator[Tuple[str, Expression]]:
        if self.multiplicity is not None:
            yield "multiplicity", self.multiplicity
        for arg_name, expr in self.arguments.items():
            yield arg_name, expr


@dataclass(frozen=True)
class Output(Declaration):
    """A value exported from the configuration."""
    name: str
    expression: Expression
    sensitive: bool = False
    depends_on: Tuple[SymbolPath, ...] = ()

    @property
    def symbol(self) -> SymbolPath:
        return SymbolPath.output(self.name)

    @property
    def address(self) -> str:
        return str(self.symbol)

    def expressions(self) -> Iterator[Tuple[str, Expression]]:
        yield "value", self.expression
