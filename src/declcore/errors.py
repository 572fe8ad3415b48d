"""
Evaluation errors and diagnostics.

Error code ranges:
- E2xx: Type and symbol errors raised while evaluating an expression
- E3xx: Semantic errors (graph shape, collections, functions, validation)

Every error is an exception carrying a ``Diagnostic``. Expression evaluation
raises them; the scheduler catches them and attaches them to the graph node
that failed, so sibling nodes keep their results.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Optional, List, Sequence

from .source import SourceSpan


class ErrorSeverity(Enum):
    """Severity levels for diagnostics."""
    ERROR = "error"
    WARNING = "warning"
    INFO = "info"
    HINT = "hint"


@dataclass
class Diagnostic:
    """A single diagnostic message (error, warning, etc.)."""
    code: str                       # E201, E301, etc.
    message: str                    # Human-readable message
    severity: ErrorSeverity = ErrorSeverity.ERROR
    span: Optional[SourceSpan] = None
    subject: Optional[str] = None   # Graph node the diagnostic belongs to
    hints: List[str] = field(default_factory=list)
    related: List["Diagnostic"] = field(default_factory=list)

    def format(self) -> str:
        """Format the diagnostic for display."""
        parts = []

        where = []
        if self.subject:
            where.append(self.subject)
        if self.span is not None:
            where.append(str(self.span.start))
        prefix = f"{' @ '.join(where)}: " if where else ""
        parts.append(f"{prefix}{self.severity.value}[{self.code}]: {self.message}")

        for hint in self.hints:
            parts.append(f"    = hint: {hint}")

        for related in self.related:
            loc = f"{related.span.start}: " if related.span is not None else ""
            parts.append(f"    --> {loc}{related.message}")

        return "\n".join(parts)

    def to_json(self) -> dict:
        """Convert to JSON-serializable dict for tooling integration."""
        data = {
            "code": self.code,
            "message": self.message,
            "severity": self.severity.value,
            "subject": self.subject,
            "hints": self.hints,
            "related": [r.to_json() for r in self.related],
        }
        if self.span is not None:
            data["range"] = {
                "start": {
                    "line": self.span.start.line,
                    "column": self.span.start.column,
                    "offset": self.span.start.offset,
                },
                "end": {
                    "line": self.span.end.line,
                    "column": self.span.end.column,
                    "offset": self.span.end.offset,
                },
            }
        return data


class EvalError(Exception):
    """Base exception for evaluation errors."""

    def __init__(self, diagnostic: Diagnostic):
        self.diagnostic = diagnostic
        super().__init__(diagnostic.message)

    @property
    def code(self) -> str:
        return self.diagnostic.code

    def __str__(self) -> str:
        return self.diagnostic.format()


class TypeError(EvalError):
    """Operator or function applied to the wrong kind of value (E201)."""
    pass


class ConversionError(EvalError):
    """An explicit coercion between value kinds failed (E202)."""
    pass


class UndefinedSymbolError(EvalError):
    """Reference to a declaration or binding that does not exist (E203)."""
    pass


class ArityError(EvalError):
    """Wrong number of arguments to a function (E204)."""
    pass


class CyclicReferenceError(EvalError):
    """The dependency graph contains a cycle (E301)."""

    def __init__(self, diagnostic: Diagnostic, cycle: Sequence[str] = ()):
        self.cycle = list(cycle)
        super().__init__(diagnostic)


class DuplicateKeyError(EvalError):
    """A map-form comprehension produced the same key twice (E302)."""
    pass


class IndexOutOfRangeError(EvalError):
    """A list index outside the list bounds (E303)."""
    pass


class KeyNotFoundError(IndexOutOfRangeError):
    """A map or object key that is not present (E304)."""
    pass


class DivisionByZeroError(EvalError):
    """Division or modulo with a zero divisor (E305)."""
    pass


class FunctionCallError(EvalError):
    """A library function rejected a well-typed argument value (E306)."""
    pass


class ValidationError(EvalError):
    """A variable validation predicate evaluated to false (E307)."""
    pass


class ConfigurationError(EvalError):
    """The declaration batch or engine configuration is malformed (E308)."""
    pass


def _diag(code: str, message: str, span: Optional[SourceSpan] = None,
          hints: Optional[List[str]] = None) -> Diagnostic:
    return Diagnostic(
        code=code,
        message=message,
        severity=ErrorSeverity.ERROR,
        span=span,
        hints=list(hints or []),
    )


# --- Type and symbol errors ---

def error_type_mismatch(expected: str, found: str, span: SourceSpan = None,
                        context: str = None) -> TypeError:
    """E201: Value of the wrong kind."""
    where = f"{context}: " if context else ""
    return TypeError(_diag(
        "E201", f"{where}expected {expected}, found {found}", span))


def error_unsupported_operation(operation: str, found: str,
                                span: SourceSpan = None,
                                hints: List[str] = None) -> TypeError:
    """E201: Operation not defined for a kind of value."""
    return TypeError(_diag(
        "E201", f"cannot {operation} a value of kind {found}", span, hints))


def error_argument_type(function: str, position: int, expected: str,
                        found: str, span: SourceSpan = None) -> TypeError:
    """E201: Function argument of the wrong kind."""
    return TypeError(_diag(
        "E201",
        f"function '{function}' argument {position}: expected {expected}, found {found}",
        span,
    ))


def error_conversion(source_kind: str, target_kind: str, detail: str = None,
                     span: SourceSpan = None) -> ConversionError:
    """E202: Explicit conversion failed."""
    message = f"cannot convert {source_kind} to {target_kind}"
    if detail:
        message = f"{message}: {detail}"
    return ConversionError(_diag("E202", message, span))


def error_undefined_symbol(name: str, span: SourceSpan = None,
                           hints: List[str] = None) -> UndefinedSymbolError:
    """E203: Undefined symbol."""
    return UndefinedSymbolError(_diag(
        "E203", f"reference to undeclared symbol '{name}'", span, hints))


def error_unknown_function(name: str, span: SourceSpan = None) -> UndefinedSymbolError:
    """E203: Call to a function that is not in the library."""
    return UndefinedSymbolError(_diag(
        "E203", f"call to unknown function '{name}'", span))


def error_arity(function: str, expected: str, found: int,
                span: SourceSpan = None) -> ArityError:
    """E204: Wrong number of arguments."""
    return ArityError(_diag(
        "E204",
        f"function '{function}' expects {expected} argument(s), got {found}",
        span,
    ))


# --- Semantic errors ---

def error_cycle(cycle: Sequence[str], span: SourceSpan = None) -> CyclicReferenceError:
    """E301: Dependency cycle, reported with every member of the cycle."""
    path = " -> ".join(list(cycle) + [cycle[0]]) if cycle else ""
    diag = _diag(
        "E301",
        f"cycle in references: {path}",
        span,
        hints=["break the cycle by removing one of the references"],
    )
    return CyclicReferenceError(diag, cycle)


def error_duplicate_key(key: str, span: SourceSpan = None) -> DuplicateKeyError:
    """E302: Duplicate key in a map-form comprehension."""
    return DuplicateKeyError(_diag(
        "E302",
        f"duplicate key '{key}' produced by for expression",
        span,
        hints=["use grouping mode ('...') to collect values sharing a key"],
    ))


def error_index_out_of_range(index: str, length: int,
                             span: SourceSpan = None) -> IndexOutOfRangeError:
    """E303: List index outside the list bounds."""
    return IndexOutOfRangeError(_diag(
        "E303", f"index {index} out of range for list of length {length}", span))


def error_key_not_found(key: str, span: SourceSpan = None) -> KeyNotFoundError:
    """E304: Missing map key or object attribute."""
    return KeyNotFoundError(_diag("E304", f"key '{key}' is not present", span))


def error_division_by_zero(span: SourceSpan = None) -> DivisionByZeroError:
    """E305: Division by zero."""
    return DivisionByZeroError(_diag("E305", "division by zero", span))


def error_function_call(function: str, message: str,
                        span: SourceSpan = None) -> FunctionCallError:
    """E306: Function-specific failure (bad prefix, overflow, ...)."""
    return FunctionCallError(_diag(
        "E306", f"function '{function}': {message}", span))


def error_arithmetic(operation: str, detail: str,
                     span: SourceSpan = None) -> FunctionCallError:
    """E306: Numeric result outside what the number context can represent."""
    return FunctionCallError(_diag(
        "E306", f"operator '{operation}': arithmetic error: {detail}", span))


def error_validation(variable: str, message: str,
                     span: SourceSpan = None) -> ValidationError:
    """E307: Variable validation failed."""
    return ValidationError(_diag(
        "E307", f"invalid value for variable '{variable}': {message}", span))


def error_configuration(message: str, span: SourceSpan = None,
                        hints: List[str] = None) -> ConfigurationError:
    """E308: Malformed declarations or engine configuration."""
    return ConfigurationError(_diag("E308", message, span, hints))


class DiagnosticCollector:
    """Collects diagnostics during an evaluation run."""

    def __init__(self, max_errors: int = 0):
        # max_errors == 0 means unlimited
        self.diagnostics: List[Diagnostic] = []
        self.max_errors = max_errors
        self._error_count = 0

    def add(self, diagnostic: Diagnostic) -> None:
        """Add a diagnostic."""
        self.diagnostics.append(diagnostic)
        if diagnostic.severity == ErrorSeverity.ERROR:
            self._error_count += 1

    def add_error(self, error: EvalError, subject: str = None) -> None:
        """Add an error exception as a diagnostic."""
        diag = error.diagnostic
        if subject is not None and diag.subject is None:
            diag.subject = subject
        self.add(diag)

    @property
    def error_count(self) -> int:
        return self._error_count

    @property
    def warning_count(self) -> int:
        return sum(1 for d in self.diagnostics if d.severity == ErrorSeverity.WARNING)

    @property
    def should_stop(self) -> bool:
        """Check if we've hit the max error limit."""
        return self.max_errors > 0 and self._error_count >= self.max_errors

    def format_all(self) -> str:
        """Format all diagnostics for display."""
        parts = [d.format() for d in self.diagnostics]
        if self._error_count > 0:
            parts.append(f"{self._error_count} error(s), {self.warning_count} warning(s)")
        elif self.warning_count > 0:
            parts.append(f"{self.warning_count} warning(s)")
        return "\n\n".join(parts)

    def to_json(self) -> dict:
        """Convert all diagnostics to JSON format."""
        return {
            "diagnostics": [d.to_json() for d in self.diagnostics],
            "error_count": self._error_count,
            "warning_count": self.warning_count,
        }
