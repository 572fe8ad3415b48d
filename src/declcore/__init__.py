"""
declcore: evaluation core for a declarative infrastructure language.

This package provides:
- Values: Null, Unknown, primitives and collections
- Runtime: expression evaluation, conversions and the builtin function library
- References: static extraction of the symbols an expression mentions
- Graph: declaration dependency graph with cycle detection
- Expansion: count / for_each multiplicity expansion
- Scheduler: concurrent, memoized resolution of every declaration

Usage:
    from declcore import (
        Variable, ResourceTemplate, Output, Literal, SymbolRef, SymbolPath,
        TemplateString, SplatExpression, Scheduler, number_val, string_val,
    )

    decls = [
        Variable("region", default=string_val("us-east-1")),
        ResourceTemplate(
            "server", "web",
            arguments={"name": TemplateString(("web-", SymbolRef(SymbolPath.variable("region"))))},
            multiplicity=Literal(number_val(2)),
        ),
        Output("names", SplatExpression(
            SymbolRef(SymbolPath.resource("server", "web")), ("name",))),
    ]
    result = Scheduler(decls).run()
    if not result.ok:
        print(result.diagnostics.format_all())

The library logs through loguru but is silent until ``configure_logging``
is called.
"""

from loguru import logger

from .source import (
    SourceLocation,
    SourceSpan,
    span_at,
)

from .errors import (
    ErrorSeverity,
    Diagnostic,
    DiagnosticCollector,
    EvalError,
    TypeError,
    ConversionError,
    UndefinedSymbolError,
    ArityError,
    CyclicReferenceError,
    DuplicateKeyError,
    IndexOutOfRangeError,
    KeyNotFoundError,
    DivisionByZeroError,
    FunctionCallError,
    ValidationError,
    ConfigurationError,
)

from .values import (
    Kind,
    Value,
    NULL,
    UNKNOWN,
    TRUE,
    FALSE,
    number_val,
    string_val,
    bool_val,
    list_val,
    set_val,
    map_val,
    object_val,
    from_python,
    render,
)

from .types import (
    TypeConstraint,
    PrimitiveConstraint,
    AnyConstraint,
    CollectionConstraint,
    ObjectConstraint,
    parse_type_expr,
)

from .ast import (
    # Base
    AstNode,
    AstVisitor,
    SymbolKind,
    SymbolPath,
    Operator,
    # Expressions
    Expression,
    Literal,
    SymbolRef,
    Index,
    Attribute,
    FunctionCall,
    Conditional,
    BinaryOp,
    UnaryOp,
    ListExpr,
    ObjectExpr,
    ForExpression,
    SplatExpression,
    TemplateIf,
    TemplateFor,
    TemplateString,
    # Declarations
    Declaration,
    Validation,
    Variable,
    Local,
    LifecyclePolicy,
    ResourceTemplate,
    Output,
)

from .runtime import (
    Scope,
    Evaluator,
    BuiltinRegistry,
    get_builtin_registry,
    convert,
    evaluate,
)

from .references import (
    ReferenceAnalyzer,
    extract_references,
    references_of,
)

from .graph import (
    NodeId,
    DependencyGraph,
)

from .expansion import (
    ExpansionMode,
    Expansion,
    InstancePlan,
    MultiplicityExpander,
    plan_instances,
)

from .scheduler import (
    NodeState,
    NodeFailure,
    DeferredExpansion,
    ResourceInstance,
    RunResult,
    Scheduler,
    run,
)

from .config import EngineConfig
from .logging_utils import configure_logging

logger.disable("declcore")

__all__ = [
    # Source
    "SourceLocation",
    "SourceSpan",
    "span_at",
    # Errors
    "ErrorSeverity",
    "Diagnostic",
    "DiagnosticCollector",
    "EvalError",
    "TypeError",
    "ConversionError",
    "UndefinedSymbolError",
    "ArityError",
    "CyclicReferenceError",
    "DuplicateKeyError",
    "IndexOutOfRangeError",
    "KeyNotFoundError",
    "DivisionByZeroError",
    "FunctionCallError",
    "ValidationError",
    "ConfigurationError",
    # Values
    "Kind",
    "Value",
    "NULL",
    "UNKNOWN",
    "TRUE",
    "FALSE",
    "number_val",
    "string_val",
    "bool_val",
    "list_val",
    "set_val",
    "map_val",
    "object_val",
    "from_python",
    "render",
    # Types
    "TypeConstraint",
    "PrimitiveConstraint",
    "AnyConstraint",
    "CollectionConstraint",
    "ObjectConstraint",
    "parse_type_expr",
    # AST
    "AstNode",
    "AstVisitor",
    "SymbolKind",
    "SymbolPath",
    "Operator",
    "Expression",
    "Literal",
    "SymbolRef",
    "Index",
    "Attribute",
    "FunctionCall",
    "Conditional",
    "BinaryOp",
    "UnaryOp",
    "ListExpr",
    "ObjectExpr",
    "ForExpression",
    "SplatExpression",
    "TemplateIf",
    "TemplateFor",
    "TemplateString",
    "Declaration",
    "Validation",
    "Variable",
    "Local",
    "LifecyclePolicy",
    "ResourceTemplate",
    "Output",
    # Runtime
    "Scope",
    "Evaluator",
    "BuiltinRegistry",
    "get_builtin_registry",
    "convert",
    "evaluate",
    # References
    "ReferenceAnalyzer",
    "extract_references",
    "references_of",
    # Graph
    "NodeId",
    "DependencyGraph",
    # Expansion
    "ExpansionMode",
    "Expansion",
    "InstancePlan",
    "MultiplicityExpander",
    "plan_instances",
    # Scheduler
    "NodeState",
    "NodeFailure",
    "DeferredExpansion",
    "ResourceInstance",
    "RunResult",
    "Scheduler",
    "run",
    # Config
    "EngineConfig",
    "configure_logging",
]
