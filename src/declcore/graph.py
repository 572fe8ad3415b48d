"""
Dependency graph over declarations.

One node per declaration, keyed by address (``var.region``,
``aws_instance.web``, ...). An edge runs from a declaration to every
declaration it references. The graph must be acyclic; a cycle is a
configuration error and is reported with every declaration on it.

Instance nodes (one per multiplicity key) are not part of this graph: they
are created by the scheduler when a resource template is expanded, and
inherit the edges of their template.
"""

from collections import deque
from dataclasses import dataclass, field
from typing import Dict, FrozenSet, Iterable, Iterator, List, Optional, Set, Union

from loguru import logger

from .ast import Declaration, SymbolPath
from .errors import error_configuration, error_cycle
from .references import references_of


InstanceKey = Union[int, str]


@dataclass(frozen=True)
class NodeId:
    """
    Identity of a graph node: a declaration address plus, for an expanded
    resource instance, its multiplicity key.
    """
    address: str
    key: Optional[InstanceKey] = None

    def __str__(self) -> str:
        if self.key is None:
            return self.address
        if isinstance(self.key, int):
            return f"{self.address}[{self.key}]"
        return f'{self.address}["{self.key}"]'

    @property
    def is_instance(self) -> bool:
        return self.key is not None

    def template(self) -> "NodeId":
        """The node of the declaration this instance was expanded from."""
        return NodeId(self.address)


@dataclass
class GraphNode:
    """A declaration with its outgoing edges."""
    declaration: Declaration
    dependencies: Set[str] = field(default_factory=set)
    missing: List[SymbolPath] = field(default_factory=list)  # undeclared references

    @property
    def address(self) -> str:
        return self.declaration.address


class DependencyGraph:
    """
    Directed graph from declarations to the declarations they reference.

    Iteration and every ordering the graph produces follow declaration
    order, so results are deterministic.
    """

    def __init__(self):
        self.nodes: Dict[str, GraphNode] = {}
        self._dependents: Dict[str, Set[str]] = {}
        self._position: Dict[str, int] = {}

    @classmethod
    def build(cls, declarations: Iterable[Declaration]) -> "DependencyGraph":
        """
        Build the graph for a batch of declarations.

        Raises ConfigurationError for two declarations with the same
        address. References to undeclared symbols do not raise here; they
        are kept on the node and fail it when it is scheduled.
        """
        graph = cls()
        for decl in declarations:
            address = decl.address
            if address in graph.nodes:
                raise error_configuration(
                    f"duplicate declaration '{address}'", decl.span,
                    hints=["each declaration address must be unique"])
            graph.nodes[address] = GraphNode(decl)
            graph._dependents[address] = set()
            graph._position[address] = len(graph._position)

        for address, node in graph.nodes.items():
            for path in sorted(references_of(node.declaration), key=str):
                target = path.address
                if target in graph.nodes:
                    node.dependencies.add(target)
                    graph._dependents[target].add(address)
                else:
                    node.missing.append(path)

        logger.debug(
            "graph.built nodes={} edges={}",
            len(graph.nodes), sum(len(n.dependencies) for n in graph.nodes.values()))
        return graph

    def __contains__(self, address: str) -> bool:
        return address in self.nodes

    def __len__(self) -> int:
        return len(self.nodes)

    def __iter__(self) -> Iterator[str]:
        return iter(self.nodes)

    def declaration(self, address: str) -> Declaration:
        return self.nodes[address].declaration

    def dependencies(self, address: str) -> FrozenSet[str]:
        """Declarations this one references directly."""
        return frozenset(self.nodes[address].dependencies)

    def dependents(self, address: str) -> FrozenSet[str]:
        """Declarations that reference this one directly."""
        return frozenset(self._dependents[address])

    def missing_references(self, address: str) -> List[SymbolPath]:
        return list(self.nodes[address].missing)

    def position(self, address: str) -> int:
        """Index of a declaration in the batch the graph was built from."""
        return self._position[address]

    def _ordered(self, addresses: Iterable[str]) -> List[str]:
        return sorted(addresses, key=self._position.__getitem__)

    # --- Cycles ---

    def find_cycles(self) -> List[List[str]]:
        """
        Every cycle in the graph, one path per strongly connected component.

        A path lists each member of the component once, in the order the
        references are followed from its earliest-declared member.
        """
        index: Dict[str, int] = {}
        low: Dict[str, int] = {}
        stack: List[str] = []
        on_stack: Set[str] = set()
        components: List[List[str]] = []
        counter = 0

        for root in self.nodes:
            if root in index:
                continue
            index[root] = low[root] = counter
            counter += 1
            stack.append(root)
            on_stack.add(root)
            work = [(root, iter(self._ordered(self.nodes[root].dependencies)))]

            while work:
                address, children = work[-1]
                descended = False
                for child in children:
                    if child not in index:
                        index[child] = low[child] = counter
                        counter += 1
                        stack.append(child)
                        on_stack.add(child)
                        work.append((child, iter(self._ordered(self.nodes[child].dependencies))))
                        descended = True
                        break
                    if child in on_stack:
                        low[address] = min(low[address], index[child])
                if descended:
                    continue

                work.pop()
                if work:
                    parent = work[-1][0]
                    low[parent] = min(low[parent], low[address])
                if low[address] == index[address]:
                    component = []
                    while True:
                        member = stack.pop()
                        on_stack.discard(member)
                        component.append(member)
                        if member == address:
                            break
                    if len(component) > 1 or address in self.nodes[address].dependencies:
                        components.append(self._cycle_path(set(component)))

        components.sort(key=lambda path: self._position[path[0]])
        return components

    def _cycle_path(self, members: Set[str]) -> List[str]:
        start = min(members, key=self._position.__getitem__)
        path: List[str] = []
        seen: Set[str] = set()
        pending = [start]
        while pending:
            address = pending.pop()
            if address in seen:
                continue
            seen.add(address)
            path.append(address)
            inside = [d for d in self._ordered(self.nodes[address].dependencies) if d in members]
            pending.extend(reversed(inside))
        return path

    def check_acyclic(self) -> None:
        """Raise CyclicReferenceError naming the first cycle found."""
        cycles = self.find_cycles()
        if cycles:
            raise error_cycle(cycles[0], self.nodes[cycles[0][0]].declaration.span)

    # --- Orderings ---

    def topological_order(self) -> List[str]:
        """Addresses with every dependency before its dependents."""
        self.check_acyclic()
        remaining = {address: len(node.dependencies) for address, node in self.nodes.items()}
        ready = deque(a for a in self.nodes if remaining[a] == 0)
        order: List[str] = []
        while ready:
            address = ready.popleft()
            order.append(address)
            for dependent in self._ordered(self._dependents[address]):
                remaining[dependent] -= 1
                if remaining[dependent] == 0:
                    ready.append(dependent)
        return order

    def dependents_closure(self, addresses: Iterable[str]) -> Set[str]:
        """Every declaration that transitively references one of ``addresses``."""
        closure: Set[str] = set()
        pending = deque(addresses)
        while pending:
            address = pending.popleft()
            for dependent in self._dependents.get(address, ()):
                if dependent not in closure:
                    closure.add(dependent)
                    pending.append(dependent)
        return closure

    def reference_chain(self, start: str, target: str) -> Optional[List[str]]:
        """Shortest path of references from ``start`` down to ``target``."""
        if start == target:
            return [start]
        previous: Dict[str, str] = {}
        pending = deque([start])
        while pending:
            address = pending.popleft()
            for dependency in self._ordered(self.nodes[address].dependencies):
                if dependency in previous or dependency == start:
                    continue
                previous[dependency] = address
                if dependency == target:
                    chain = [target]
                    while chain[-1] != start:
                        chain.append(previous[chain[-1]])
                    return list(reversed(chain))
                pending.append(dependency)
        return None
