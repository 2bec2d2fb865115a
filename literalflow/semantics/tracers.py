"""
Binding, call-return and argument tracers.

All three share one collection policy (``_collect``) and one way of turning a
recorded form into candidates (``resolve_form``):

- literal / qualified constant  -> the value itself
- variable                      -> BindingTracer on that variable
- local call                    -> CallReturnTracer on that call

A ResolutionContext is created per top-level request and threaded through
every nested tracer; it holds the only mutable cross-tracer state, the sets
of calls and variables currently being traced.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import Enum, auto
from typing import Any, Callable, Hashable, List, Optional, Set, Tuple

from .adapter import Argument, Definition, Gate, RepresentationAdapter
from .candidates import CandidateSet, Provenance
from .literals import try_extract

SEMANTICS_LOGGER = "literalflow.semantics"

Record = Callable[[Any, Gate], None]


class FormKind(Enum):
    CONSTANT = auto()
    VARIABLE = auto()
    CALL = auto()
    OTHER = auto()


@dataclass
class ResolutionContext:
    """Per-request context shared by every tracer invoked for one site."""
    adapter: RepresentationAdapter
    trace_calls: bool = True
    logger: logging.Logger = field(default_factory=lambda: logging.getLogger(SEMANTICS_LOGGER))
    active_calls: Set[str] = field(default_factory=set)
    active_variables: Set[Tuple[Hashable, Hashable]] = field(default_factory=set)


@dataclass
class TraversalState:
    """
    Provisional buffers of one binding trace.

    ``unconditional`` holds forms from the last straight-line definition;
    ``conditional`` accumulates forms that are only reached through a branch.
    """
    subject: Optional[Hashable]
    unconditional: List[Any] = field(default_factory=list)
    conditional: List[Any] = field(default_factory=list)
    last_target: Optional[Tuple[int, ...]] = None

    def begin(self, definition: Definition):
        """Straight-line redefinition discards earlier unconditional forms."""
        if definition.conditional:
            return
        if definition.position != self.last_target:
            self.unconditional.clear()
            self.last_target = definition.position

    def record(self, node: Any, gate: Gate):
        if gate.is_conditional:
            self.conditional.append(node)
        else:
            self.unconditional.append(node)

    def forms(self) -> List[Any]:
        return self.unconditional + self.conditional


class _Tracer:

    def __init__(self, context: ResolutionContext):
        self.context = context
        self.adapter = context.adapter
        self.log = context.logger

    def _classify(self, node) -> FormKind:
        if try_extract(node, self.adapter) is not None:
            return FormKind.CONSTANT
        if self.adapter.variable_subject(node) is not None:
            return FormKind.VARIABLE
        if self.adapter.call_target(node) is not None:
            return FormKind.CALL
        return FormKind.OTHER

    def _collect(self, node, gate: Gate, subject: Optional[Hashable], record: Record):
        """Record the candidate forms inside a value expression."""
        if self.adapter.is_conditional_boundary(node):
            gate = gate.nested()

        kind = self._classify(node)
        if kind in (FormKind.CONSTANT, FormKind.CALL):
            record(node, gate)
            return
        if kind is FormKind.VARIABLE:
            # A plain read of the traced variable does not extend the trace
            if self.adapter.variable_subject(node) != subject:
                record(node, gate)
            return

        for child, child_gate in self.adapter.visit_children_with_collection_gate(node, gate):
            self._collect(child, child_gate, subject, record)

    def resolve_form(self, node) -> CandidateSet:
        candidate = try_extract(node, self.adapter)
        if candidate is not None:
            return CandidateSet([candidate])

        if self.adapter.variable_subject(node) is not None:
            return BindingTracer(self.context).trace_variable(node)

        target = self.adapter.call_target(node)
        if target is not None:
            if not target.is_local:
                self.log.debug("Not tracing non-local call %s", target.name)
                return CandidateSet()
            if not self.context.trace_calls:
                return CandidateSet()
            return CallReturnTracer(self.context).trace_call(node)

        return CandidateSet()

    def _resolve_all(self, forms: List[Any]) -> CandidateSet:
        result = CandidateSet()
        for form in forms:
            result.extend(self.resolve_form(form))
        return result


class BindingTracer(_Tracer):
    """Finds the values a local variable may hold at one use."""

    def trace_variable(self, reference) -> CandidateSet:
        adapter = self.adapter
        subject = adapter.variable_subject(reference)
        if subject is None:
            self.log.debug("Not a variable reference: %s", adapter.describe(reference))
            return CandidateSet()

        procedure = adapter.enclosing_procedure(reference)
        if procedure is None:
            self.log.debug("No enclosing procedure for %s", adapter.describe(reference))
            return CandidateSet()

        key = (adapter.procedure_key(procedure), subject)
        if key in self.context.active_variables:
            self.log.debug("Variable %s already being traced", subject)
            return CandidateSet()

        self.context.active_variables.add(key)
        try:
            state = TraversalState(subject)
            for definition in adapter.definitions(procedure, subject, reference):
                # ``x = x`` leaves the binding unchanged
                if definition.value is not None and adapter.variable_subject(definition.value) == subject:
                    continue
                state.begin(definition)
                if definition.value is None:
                    continue
                gate = Gate(depth=1 if definition.conditional else 0).collecting()
                self._collect(definition.value, gate, subject, state.record)

            self.log.debug("Variable %s: %d unconditional, %d conditional forms",
                           subject, len(state.unconditional), len(state.conditional))
            result = self._resolve_all(state.forms())
        finally:
            self.context.active_variables.discard(key)

        return result.retagged(Provenance.TRACED_VARIABLE)


class CallReturnTracer(_Tracer):
    """Resolves the return values of a call to a procedure in the same module."""

    def trace_call(self, call) -> CandidateSet:
        adapter = self.adapter
        target = adapter.call_target(call)
        if target is None:
            return CandidateSet()

        if target.name in self.context.active_calls:
            self.log.debug("Skipping %s: already being traced", target.name)
            return CandidateSet()

        declaration = adapter.find_procedure(call, target)
        if declaration is None:
            self.log.debug("No declaration of %s in this module", target.name)
            return CandidateSet()

        self.context.active_calls.add(target.name)
        try:
            forms: List[Any] = []
            for value in adapter.return_values(declaration):
                self._collect(value, Gate().collecting(), None, lambda node, gate: forms.append(node))
            self.log.debug("Call %s: %d return forms", target.name, len(forms))
            result = self._resolve_all(forms)
        finally:
            self.context.active_calls.discard(target.name)

        return result.retagged(Provenance.TRACED_RETURN)


class ArgumentTracer(_Tracer):
    """Top-level entry: every candidate for one argument of one call site."""

    def trace_argument(self, site, argument: Argument) -> CandidateSet:
        adapter = self.adapter
        result = CandidateSet()
        for value in adapter.argument_values(site, argument):
            candidate = try_extract(value, adapter)
            if candidate is not None:
                result.add(candidate)
                continue
            state = TraversalState(subject=None)
            self._collect(value, Gate().collecting(), None, state.record)
            result.extend(self._resolve_all(state.forms()))
        return result
