"""
Graph scheduler.

Resolves declaration values in dependency order, evaluating each graph node
at most once per pass. Node state machine:

    UNVISITED -> IN_PROGRESS -> RESOLVED
                             -> FAILED    (its own evaluation raised)
                             -> SKIPPED   (a dependency failed)

Every state transition happens under a single lock. A thread asking for a
node that another thread has IN_PROGRESS waits on the lock's condition
variable until that node settles. Asking for a node that is already
IN_PROGRESS on the same resolution chain is a cycle.

``run`` drives the whole graph on a thread pool, submitting a declaration
as soon as all its dependencies have settled. A failed node skips its
dependents; independent parts of the graph still complete, and every
failure is reported in the ``RunResult``.

``apply`` is the inbound channel from the provider layer: it merges
attribute values learned after a side effect into a resolved instance and
re-evaluates only the nodes that transitively depend on it.
"""

import threading
from collections import Counter
from concurrent.futures import FIRST_COMPLETED, ThreadPoolExecutor, wait
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, FrozenSet, List, Mapping, Optional, Sequence, Tuple, Union

from loguru import logger

from .ast import (
    Declaration, Variable, Local, ResourceTemplate, Output, LifecyclePolicy, SymbolPath,
)
from .config import EngineConfig
from .errors import (
    Diagnostic, DiagnosticCollector, ErrorSeverity, EvalError,
    error_configuration, error_cycle, error_type_mismatch, error_undefined_symbol,
    error_validation,
)
from .expansion import Expansion, ExpansionMode, MultiplicityExpander, key_order
from .graph import DependencyGraph, InstanceKey, NodeId
from .references import REFERENCEABLE_KINDS
from .runtime.convert import convert
from .runtime.evaluator import Evaluator
from .runtime.scope import Scope
from .values import Value, Kind, UNKNOWN, from_python, list_val, map_val, object_val


class NodeState(Enum):
    """Lifecycle of a graph node within one pass."""
    UNVISITED = "unvisited"
    IN_PROGRESS = "in_progress"
    RESOLVED = "resolved"
    FAILED = "failed"
    SKIPPED = "skipped"


SETTLED = frozenset({NodeState.RESOLVED, NodeState.FAILED, NodeState.SKIPPED})


@dataclass(frozen=True)
class NodeFailure:
    """
    A node that failed or was skipped.

    ``chain`` runs from this node down the references to the node whose own
    evaluation raised ``error``; for a failed node it is just the node.
    """
    node: NodeId
    error: EvalError
    chain: Tuple[str, ...]
    skipped: bool = False

    @property
    def origin(self) -> str:
        return self.chain[-1]

    def format(self) -> str:
        if self.skipped:
            return f"{self.node}: skipped, {' -> '.join(self.chain)} failed: {self.error.diagnostic.message}"
        return f"{self.node}: {self.error.diagnostic.message}"


@dataclass(frozen=True)
class DeferredExpansion:
    """A resource whose instances cannot be known until an unknown value is."""
    node: NodeId
    reason: str = "multiplicity source is unknown"


@dataclass(frozen=True)
class ResourceInstance:
    """
    One resolved resource instance, as handed to the provider layer.

    ``unknown_arguments`` names the arguments whose values (or a part of
    them) are not known until after a side effect.
    """
    node: NodeId
    type_tag: str
    arguments: Mapping[str, Value]
    unknown_arguments: FrozenSet[str]
    lifecycle: LifecyclePolicy


class _DependencyFailed(Exception):
    """Raised through a resolution chain when a node it needs did not resolve."""

    def __init__(self, failure: NodeFailure):
        self.failure = failure
        super().__init__(failure.format())


@dataclass
class RunResult:
    """Outcome of a scheduler pass."""
    values: Dict[NodeId, Value] = field(default_factory=dict)
    outputs: Dict[str, Value] = field(default_factory=dict)
    sensitive_outputs: FrozenSet[str] = frozenset()
    failures: List[NodeFailure] = field(default_factory=list)
    deferred: List[DeferredExpansion] = field(default_factory=list)
    diagnostics: DiagnosticCollector = field(default_factory=DiagnosticCollector)
    evaluations: Dict[NodeId, int] = field(default_factory=dict)
    resources: List[ResourceInstance] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.failures

    @property
    def failed(self) -> List[NodeFailure]:
        return [f for f in self.failures if not f.skipped]

    @property
    def skipped(self) -> List[NodeFailure]:
        return [f for f in self.failures if f.skipped]

    def value(self, address: str, key: Optional[InstanceKey] = None) -> Value:
        return self.values[NodeId(address, key)]

    def instances(self) -> List[ResourceInstance]:
        """Resolved resource instances in graph order."""
        return list(self.resources)


NodeRef = Union[NodeId, str]


class Scheduler:
    """
    Evaluates a batch of declarations.

    Args:
        declarations: the immutable batch from the front-end
        variables: input variable values by name (plain Python data or Values)
        config: engine tunables
        evaluator: expression evaluator (one with a custom function registry,
            or an instrumented one in tests)
    """

    def __init__(self, declarations: Sequence[Declaration],
                 variables: Optional[Mapping[str, Any]] = None,
                 config: Optional[EngineConfig] = None,
                 evaluator: Optional[Evaluator] = None):
        self.declarations: Tuple[Declaration, ...] = tuple(declarations)
        self.config = config or EngineConfig()
        self.graph = DependencyGraph.build(self.declarations)
        self.evaluator = evaluator or Evaluator()
        self.expander = MultiplicityExpander(self.config.max_instances)
        self.variable_values = self._input_variables(variables or {})

        self._condition = threading.Condition(threading.Lock())
        self._states: Dict[NodeId, NodeState] = {}
        self._values: Dict[NodeId, Value] = {}
        self._failures: Dict[NodeId, NodeFailure] = {}
        self._expansions: Dict[str, Expansion] = {}
        self._deferred: Dict[str, DeferredExpansion] = {}
        self._arguments: Dict[NodeId, Dict[str, Value]] = {}
        self._applied: Dict[NodeId, Dict[str, Value]] = {}
        self._evaluations: Counter = Counter()
        self._acyclic = False
        self._root_scope = Scope(resolver=self._lookup, name="root")

    def _input_variables(self, variables: Mapping[str, Any]) -> Dict[str, Value]:
        declared = {d.name for d in self.declarations if isinstance(d, Variable)}
        values = {}
        for name, raw in variables.items():
            if name not in declared:
                raise error_configuration(
                    f"value supplied for undeclared variable '{name}'",
                    hints=[f"declared variables: {', '.join(sorted(declared)) or 'none'}"])
            try:
                values[name] = from_python(raw)
            except ValueError as exc:
                raise error_configuration(f"invalid value for variable '{name}': {exc}") from exc
        return values

    # --- Public API ---

    def resolve(self, node: NodeRef) -> Value:
        """
        Value of a node, evaluating it and its dependencies if needed.

        Memoized: a node is evaluated at most once per pass, however many
        threads ask for it. Raises the node's error if it failed, or the
        originating error if it was skipped.
        """
        node_id = self._node_id(node)
        self._ensure_acyclic()
        try:
            return self._resolve(node_id, ())
        except _DependencyFailed as exc:
            raise exc.failure.error

    def state(self, node: NodeRef) -> NodeState:
        with self._condition:
            return self._states.get(self._node_id(node), NodeState.UNVISITED)

    def run(self) -> RunResult:
        """Resolve every declaration and report the outcome."""
        self._ensure_acyclic()
        order = self.graph.topological_order()
        logger.info("scheduler.run.started nodes={} workers={}", len(order), self.config.max_workers)
        self._drive(order)
        result = self._result()
        logger.info(
            "scheduler.run.finished resolved={} failed={} skipped={} deferred={}",
            len(result.values), len(result.failed), len(result.skipped), len(result.deferred))
        return result

    def apply(self, node: NodeRef, attributes: Mapping[str, Any]) -> RunResult:
        """
        Merge provider-supplied attributes into a resolved resource instance.

        Only the transitive dependents of the instance's declaration are
        invalidated and evaluated again; every other node keeps its value.
        """
        node_id = self._node_id(node)
        decl = self.graph.declaration(node_id.address)
        if not isinstance(decl, ResourceTemplate):
            raise error_configuration(f"cannot apply attributes to {node_id}: not a resource")
        if node_id.key is None and decl.multiplicity is not None:
            raise error_configuration(
                f"cannot apply attributes to {node_id}: name a single instance",
                hints=[f"use NodeId(\"{node_id.address}\", key)"])
        merged = {name: from_python(value) for name, value in attributes.items()}

        with self._condition:
            if self._states.get(node_id) is not NodeState.RESOLVED:
                raise error_configuration(f"cannot apply attributes to unresolved node {node_id}")
            self._applied.setdefault(node_id, {}).update(merged)
            fields = dict(self._values[node_id].fields())
            fields.update(merged)
            self._values[node_id] = object_val(fields)
            if node_id.is_instance:
                self._reaggregate(node_id.address)

            affected = self.graph.dependents_closure([node_id.address])
            for address in affected:
                self._invalidate(address)
            self._evaluations = Counter()

        order = [a for a in self.graph.topological_order() if a in affected]
        logger.info("scheduler.apply node={} attributes={} invalidated={}",
                    node_id, sorted(merged), len(order))
        self._drive(order)
        return self._result()

    # --- Driving ---

    def _drive(self, addresses: Sequence[str]) -> None:
        """Resolve ``addresses`` on the pool, each once its dependencies settle."""
        pending = set(addresses)
        waiting = {a: set(self.graph.dependencies(a)) & pending for a in addresses}
        ready = [a for a in addresses if not waiting[a]]
        collector = DiagnosticCollector(self.config.max_errors)

        with ThreadPoolExecutor(max_workers=self.config.max_workers,
                                thread_name_prefix="declcore") as pool:
            futures = {}

            def submit(address: str) -> None:
                futures[pool.submit(self._settle, NodeId(address))] = address

            for address in ready:
                submit(address)
                del waiting[address]
            while futures:
                done, _ = wait(futures, return_when=FIRST_COMPLETED)
                settled = []
                for future in done:
                    address = futures.pop(future)
                    future.result()
                    settled.append(address)
                    self._collect_failures(address, collector)
                if collector.should_stop:
                    if waiting:
                        logger.warning("scheduler.stopped errors={} unscheduled={}",
                                       collector.error_count, len(waiting))
                        waiting.clear()
                    continue
                for address in settled:
                    for dependent in self.graph.dependents(address):
                        if dependent not in waiting:
                            continue
                        waiting[dependent].discard(address)
                        if not waiting[dependent]:
                            submit(dependent)
                            del waiting[dependent]

    def _settle(self, node_id: NodeId) -> None:
        """Resolve a node, leaving any failure recorded rather than raised."""
        try:
            self._resolve(node_id, ())
        except _DependencyFailed:
            pass

    def _collect_failures(self, address: str, collector: DiagnosticCollector) -> None:
        with self._condition:
            failures = [f for n, f in self._failures.items()
                        if n.address == address and not f.skipped]
        for failure in failures:
            collector.add_error(failure.error, subject=str(failure.node))

    def _ensure_acyclic(self) -> None:
        if not self._acyclic:
            self.graph.check_acyclic()
            self._acyclic = True

    # --- Resolution ---

    def _node_id(self, node: NodeRef) -> NodeId:
        node_id = node if isinstance(node, NodeId) else NodeId(node)
        if node_id.address not in self.graph:
            raise error_undefined_symbol(str(node_id))
        return node_id

    def _resolve(self, node_id: NodeId, chain: Tuple[NodeId, ...]) -> Value:
        if node_id in chain:
            cycle = chain[chain.index(node_id):]
            raise error_cycle([str(n) for n in cycle])

        with self._condition:
            while True:
                state = self._states.get(node_id, NodeState.UNVISITED)
                if state is NodeState.RESOLVED:
                    return self._values[node_id]
                if state in (NodeState.FAILED, NodeState.SKIPPED):
                    raise _DependencyFailed(self._failures[node_id])
                if state is NodeState.UNVISITED:
                    self._states[node_id] = NodeState.IN_PROGRESS
                    self._evaluations[node_id] += 1
                    break
                self._condition.wait()

        inner = chain + (node_id,)
        try:
            value = self._evaluate_node(node_id, inner)
        except _DependencyFailed as exc:
            failure = NodeFailure(
                node_id, exc.failure.error, (str(node_id),) + exc.failure.chain, skipped=True)
            self._record_failure(failure)
            raise _DependencyFailed(failure) from None
        except EvalError as exc:
            failure = NodeFailure(node_id, exc, (str(node_id),))
            self._record_failure(failure)
            raise _DependencyFailed(failure) from None
        except BaseException:
            with self._condition:
                self._states[node_id] = NodeState.UNVISITED
                self._condition.notify_all()
            raise

        with self._condition:
            self._values[node_id] = value
            self._states[node_id] = NodeState.RESOLVED
            self._condition.notify_all()
        logger.debug("scheduler.node.resolved node={}", node_id)
        return value

    def _record_failure(self, failure: NodeFailure) -> None:
        with self._condition:
            self._failures[failure.node] = failure
            self._states[failure.node] = NodeState.SKIPPED if failure.skipped else NodeState.FAILED
            self._condition.notify_all()
        if failure.skipped:
            logger.debug("scheduler.node.skipped node={} origin={}", failure.node, failure.origin)
        else:
            logger.info("scheduler.node.failed node={} code={} message={}",
                        failure.node, failure.error.code, failure.error.diagnostic.message)

    def _resolve_dependencies(self, address: str, chain: Tuple[NodeId, ...]) -> None:
        missing = self.graph.missing_references(address)
        if missing:
            others = [str(p) for p in missing[1:]]
            hints = [f"also undeclared: {', '.join(others)}"] if others else None
            raise error_undefined_symbol(str(missing[0]), self.graph.declaration(address).span, hints)
        first_failure: Optional[_DependencyFailed] = None
        for dependency in sorted(self.graph.dependencies(address), key=self.graph.position):
            try:
                self._resolve(NodeId(dependency), chain)
            except _DependencyFailed as exc:
                first_failure = first_failure or exc
        if first_failure is not None:
            raise first_failure

    def _lookup(self, path: SymbolPath) -> Value:
        """Root-scope resolver: declaration values by symbol path."""
        if path.kind not in REFERENCEABLE_KINDS or path.address not in self.graph:
            raise error_undefined_symbol(str(path))
        return self._resolve(NodeId(path.address), ())

    def _evaluate_node(self, node_id: NodeId, chain: Tuple[NodeId, ...]) -> Value:
        decl = self.graph.declaration(node_id.address)
        self._resolve_dependencies(node_id.address, chain)

        if isinstance(decl, Variable):
            return self._evaluate_variable(decl)
        elif isinstance(decl, Local):
            return self.evaluator.evaluate(decl.expression, self._root_scope)
        elif isinstance(decl, Output):
            return self.evaluator.evaluate(decl.expression, self._root_scope)
        elif isinstance(decl, ResourceTemplate):
            if node_id.key is None and decl.multiplicity is not None:
                return self._evaluate_expanded(decl, node_id, chain)
            return self._evaluate_instance(decl, node_id)
        raise RuntimeError(f"Unknown declaration type: {type(decl).__name__}")

    def _evaluate_variable(self, decl: Variable) -> Value:
        if decl.name in self.variable_values:
            value = self.variable_values[decl.name]
        elif decl.default is not None:
            value = decl.default
        else:
            raise error_configuration(
                f"no value for required variable '{decl.name}'", decl.span,
                hints=["supply a value or declare a default"])
        if decl.type is not None:
            value = convert(value, decl.type)

        scope = self._root_scope.bind(decl.symbol, value)
        for rule in decl.validations:
            outcome = self.evaluator.evaluate(rule.condition, scope)
            if outcome.is_unknown:
                continue
            if outcome.kind is not Kind.BOOL:
                raise error_type_mismatch("bool", outcome.kind.label, rule.span,
                                          context=f"validation of {decl.address}")
            if not outcome.data:
                raise error_validation(decl.name, rule.error_message, rule.span)
        return value

    def _expansion_for(self, decl: ResourceTemplate) -> Expansion:
        address = decl.address
        with self._condition:
            cached = self._expansions.get(address)
        if cached is not None:
            return cached
        source = None
        if decl.multiplicity is not None:
            source = self.evaluator.evaluate(decl.multiplicity, self._root_scope)
        expansion = self.expander.expand(decl, source)
        with self._condition:
            return self._expansions.setdefault(address, expansion)

    def _evaluate_expanded(self, decl: ResourceTemplate, node_id: NodeId,
                           chain: Tuple[NodeId, ...]) -> Value:
        """Expand a template and resolve every instance it produces."""
        expansion = self._expansion_for(decl)
        if expansion.deferred:
            deferred = DeferredExpansion(node_id)
            with self._condition:
                self._deferred[decl.address] = deferred
            logger.info("scheduler.node.deferred node={}", node_id)
            return UNKNOWN

        first_failure: Optional[_DependencyFailed] = None
        for key in expansion.keys:
            try:
                self._resolve(NodeId(decl.address, key), chain)
            except _DependencyFailed as exc:
                first_failure = first_failure or exc
        if first_failure is not None:
            raise first_failure
        with self._condition:
            return self._aggregate(expansion)

    def _aggregate(self, expansion: Expansion) -> Value:
        """Declaration value from its instance values; caller holds the lock."""
        values = [self._values[NodeId(expansion.address, key)] for key in expansion.keys]
        if expansion.mode is ExpansionMode.COUNT:
            return list_val(values)
        return map_val(dict(zip(expansion.keys, values)))

    def _reaggregate(self, address: str) -> None:
        """Rebuild a declaration's value after one instance changed; lock held."""
        template = NodeId(address)
        expansion = self._expansions.get(address)
        if expansion is None or self._states.get(template) is not NodeState.RESOLVED:
            return
        if all(self._states.get(NodeId(address, k)) is NodeState.RESOLVED for k in expansion.keys):
            self._values[template] = self._aggregate(expansion)

    def _evaluate_instance(self, decl: ResourceTemplate, node_id: NodeId) -> Value:
        """Evaluate the arguments of one instance in its own scope."""
        expansion = self._expansion_for(decl)
        if expansion.deferred or node_id.key not in expansion.keys:
            raise error_undefined_symbol(str(node_id), decl.span)
        scope = self._root_scope.child(expansion.bindings_for(node_id.key), name=str(node_id))

        arguments: Dict[str, Value] = {}
        for name, expr in decl.arguments.items():
            arguments[name] = self.evaluator.evaluate(expr, scope)

        attributes = dict(arguments)
        for name in decl.computed:
            attributes.setdefault(name, UNKNOWN)
        with self._condition:
            self._arguments[node_id] = arguments
            attributes.update(self._applied.get(node_id, {}))
        return object_val(attributes)

    def _invalidate(self, address: str) -> None:
        """Forget every result of a declaration and its instances; lock held."""
        stale = [n for n in self._states if n.address == address]
        for node_id in stale:
            self._states.pop(node_id, None)
            self._values.pop(node_id, None)
            self._failures.pop(node_id, None)
            self._arguments.pop(node_id, None)
        self._expansions.pop(address, None)
        self._deferred.pop(address, None)

    # --- Reporting ---

    def _node_order(self, node_id: NodeId):
        return (self.graph.position(node_id.address), key_order(node_id.key))

    def _result(self) -> RunResult:
        with self._condition:
            values = dict(self._values)
            failures = sorted(self._failures.values(), key=lambda f: self._node_order(f.node))
            deferred = sorted(self._deferred.values(), key=lambda d: self._node_order(d.node))
            evaluations = dict(self._evaluations)
            arguments = dict(self._arguments)

        result = RunResult(
            values={n: values[n] for n in sorted(values, key=self._node_order)},
            failures=failures,
            deferred=deferred,
            diagnostics=DiagnosticCollector(self.config.max_errors),
            evaluations=evaluations,
        )

        sensitive = set()
        for decl in self.declarations:
            if isinstance(decl, Output) and NodeId(decl.address) in values:
                result.outputs[decl.name] = values[NodeId(decl.address)]
                if decl.sensitive:
                    sensitive.add(decl.name)
        result.sensitive_outputs = frozenset(sensitive)

        for failure in failures:
            if failure.skipped:
                result.diagnostics.add(Diagnostic(
                    code=failure.error.code,
                    message=f"not evaluated because {' -> '.join(failure.chain[1:])} failed",
                    severity=ErrorSeverity.INFO,
                    subject=str(failure.node),
                ))
            else:
                result.diagnostics.add_error(failure.error, subject=str(failure.node))

        for node_id in sorted(arguments, key=self._node_order):
            if node_id not in values:
                continue
            decl = self.graph.declaration(node_id.address)
            args = arguments[node_id]
            result.resources.append(ResourceInstance(
                node=node_id,
                type_tag=decl.type_tag,
                arguments=args,
                unknown_arguments=frozenset(n for n, v in args.items() if v.contains_unknown()),
                lifecycle=decl.lifecycle,
            ))
        return result


def run(declarations: Sequence[Declaration], variables: Optional[Mapping[str, Any]] = None,
        config: Optional[EngineConfig] = None) -> RunResult:
    """Build a scheduler for a batch of declarations and run it."""
    return Scheduler(declarations, variables, config).run()
