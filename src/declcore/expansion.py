"""
Multiplicity expansion.

Turns a resource template plus the value of its multiplicity source into
the keyed set of instance identities, with the bindings each instance's
scope adds:

    whole number n     keys 0..n-1, binds count.index
    set                one key per element (string form), binds each.key
                       and each.value (equal for a set of strings)
    map / object       one key per map key, binds each.key and each.value
    unknown            deferred: the instances cannot be known yet

Lists are rejected so that reordering a list can never be mistaken for
deleting and recreating instances. Instance identity depends only on the
key, never on iteration position.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, Iterable, Mapping, Optional, Tuple

from loguru import logger

from .ast import ResourceTemplate, SymbolPath, COUNT_INDEX, EACH_KEY, EACH_VALUE
from .errors import (
    error_duplicate_key, error_type_mismatch, error_unsupported_operation,
)
from .graph import InstanceKey
from .values import Value, Kind, KEYED_KINDS, number_val, string_val, render
from .runtime.convert import to_string


class ExpansionMode(Enum):
    SINGLE = "single"
    COUNT = "count"
    FOR_EACH = "for_each"
    DEFERRED = "deferred"


@dataclass(frozen=True)
class Expansion:
    """The instances one resource template expands into."""
    address: str
    mode: ExpansionMode
    keys: Tuple[Optional[InstanceKey], ...] = ()
    bindings: Mapping[Optional[InstanceKey], Mapping[SymbolPath, Value]] = field(default_factory=dict)

    @property
    def deferred(self) -> bool:
        return self.mode is ExpansionMode.DEFERRED

    def bindings_for(self, key: Optional[InstanceKey]) -> Mapping[SymbolPath, Value]:
        return self.bindings.get(key, {})


@dataclass(frozen=True)
class InstancePlan:
    """Instance identities to create, destroy and keep."""
    added: Tuple[InstanceKey, ...] = ()
    removed: Tuple[InstanceKey, ...] = ()
    retained: Tuple[InstanceKey, ...] = ()

    @property
    def unchanged(self) -> bool:
        return not self.added and not self.removed


def key_order(key: Optional[InstanceKey]):
    """Sort key for instance keys: counts numerically, then string keys."""
    if key is None:
        return (0, 0, "")
    if isinstance(key, int):
        return (1, key, "")
    return (2, 0, key)


class MultiplicityExpander:
    """
    Expands resource templates into instance identities.

    ``max_instances`` caps the size of a single expansion; 0 means no cap.
    """

    def __init__(self, max_instances: int = 0):
        self.max_instances = max_instances

    def expand(self, template: ResourceTemplate, source: Optional[Value]) -> Expansion:
        """
        Expand ``template`` given the evaluated multiplicity source.

        ``source`` is None for a template without a multiplicity source.
        """
        address = template.address
        if source is None:
            return Expansion(address, ExpansionMode.SINGLE, (None,), {None: {}})

        span = template.multiplicity.span if template.multiplicity is not None else template.span
        if source.is_unknown:
            logger.debug("expansion.deferred address={}", address)
            return Expansion(address, ExpansionMode.DEFERRED)

        if source.kind is Kind.NUMBER:
            expansion = self._expand_count(address, source, span)
        elif source.kind is Kind.SET:
            expansion = self._expand_set(address, source, span)
        elif source.kind in KEYED_KINDS:
            expansion = self._expand_keyed(address, source)
        elif source.kind is Kind.LIST:
            raise error_unsupported_operation(
                "expand instances from", "list", span,
                hints=["convert the list with toset() so instance identity "
                       "does not depend on element order"])
        else:
            raise error_type_mismatch(
                "whole number, set, map or object", source.kind.label, span,
                context=f"multiplicity of {address}")

        if expansion.mode is not ExpansionMode.DEFERRED:
            self._check_size(address, len(expansion.keys), span)
            logger.debug("expansion.expanded address={} mode={} instances={}",
                         address, expansion.mode.value, len(expansion.keys))
        return expansion

    def _check_size(self, address: str, count: int, span) -> None:
        if self.max_instances and count > self.max_instances:
            raise error_type_mismatch(
                f"at most {self.max_instances} instances", str(count), span,
                context=f"multiplicity of {address}")

    def _expand_count(self, address: str, source: Value, span) -> Expansion:
        if not source.is_whole_number() or source.data < 0:
            raise error_type_mismatch(
                "whole non-negative number", render(source), span,
                context=f"count of {address}")
        count = int(source.data)
        self._check_size(address, count, span)
        keys = tuple(range(count))
        bindings = {i: {COUNT_INDEX: number_val(i)} for i in keys}
        return Expansion(address, ExpansionMode.COUNT, keys, bindings)

    def _expand_set(self, address: str, source: Value, span) -> Expansion:
        if source.contains_unknown():
            logger.debug("expansion.deferred address={} reason=unknown-element", address)
            return Expansion(address, ExpansionMode.DEFERRED)
        bindings: Dict[InstanceKey, Dict[SymbolPath, Value]] = {}
        for element in source.data:
            if element.kind not in (Kind.STRING, Kind.NUMBER, Kind.BOOL):
                raise error_type_mismatch(
                    "set of strings", f"set containing {element.kind.label}", span,
                    context=f"for_each of {address}")
            key = to_string(element).data
            if key in bindings:
                raise error_duplicate_key(key, span)
            bindings[key] = {EACH_KEY: string_val(key), EACH_VALUE: element}
        keys = tuple(sorted(bindings))
        return Expansion(address, ExpansionMode.FOR_EACH, keys, bindings)

    def _expand_keyed(self, address: str, source: Value) -> Expansion:
        keys = tuple(sorted(source.data))
        bindings = {
            key: {EACH_KEY: string_val(key), EACH_VALUE: source.data[key]}
            for key in keys
        }
        return Expansion(address, ExpansionMode.FOR_EACH, keys, bindings)


def plan_instances(previous_keys: Iterable[InstanceKey], expansion: Expansion) -> InstancePlan:
    """
    Diff the instance identities of a previous expansion against a new one.

    Only keys matter: reordering a set or map never adds or removes an
    instance.
    """
    if expansion.deferred:
        raise ValueError(f"cannot plan instances of {expansion.address}: expansion is deferred")
    before = set(previous_keys)
    after = {k for k in expansion.keys if k is not None}
    return InstancePlan(
        added=tuple(sorted(after - before, key=key_order)),
        removed=tuple(sorted(before - after, key=key_order)),
        retained=tuple(sorted(after & before, key=key_order)),
    )
