"""
Representation-agnostic traversal contract.

The tracers never look at ``ast`` nodes or bytecode directly. They talk to a
RepresentationAdapter, which supplies three traversal primitives:

    visit_children_with_collection_gate(node, gate)
    is_assignment_target(node, subject)
    is_conditional_boundary(node)

plus the front-end queries (literal text, symbol resolution, enclosing
procedure, call targets).  The generic ``walk`` below is written once in terms
of those primitives and drives both the syntax-tree and the instruction-graph
adapters.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, replace
from enum import Enum, auto
from typing import (Any, Dict, Generic, Hashable, Iterable, Iterator, List,
                    Optional, Sequence, Tuple, TypeVar, Union)

from ..frontend.symbols import ResolvedSymbol

logger = logging.getLogger(__name__)

N = TypeVar("N")  # node
P = TypeVar("P")  # procedure body
S = TypeVar("S")  # call site

Argument = Union[int, str]

DEFAULT_MAX_STATES = 20000


class GateState(Enum):
    """Whether nodes visited now may be recorded as candidate forms."""
    IDLE = auto()
    COLLECTING = auto()


@dataclass(frozen=True)
class Gate:
    """
    Collection gate threaded through a traversal by value.

    ``depth`` counts enclosing conditional constructs; anything recorded with
    depth > 0 is only conditionally reached. Being immutable, a gate handed to
    one branch can never leak into a sibling.
    """
    state: GateState = GateState.IDLE
    depth: int = 0

    def collecting(self) -> "Gate":
        return replace(self, state=GateState.COLLECTING)

    def nested(self) -> "Gate":
        return replace(self, depth=self.depth + 1)

    @property
    def is_collecting(self) -> bool:
        return self.state is GateState.COLLECTING

    @property
    def is_conditional(self) -> bool:
        return self.depth > 0


@dataclass(frozen=True)
class Definition(Generic[N]):
    """One (re)definition of the traced variable seen before its use."""
    target: N
    value: Optional[N]
    conditional: bool
    position: Tuple[int, ...]


@dataclass(frozen=True)
class CallTarget:
    """
    The callee of a call expression.

    ``is_local`` is true when the callee could be declared in the same module:
    a bare name, or a method looked up on ``self`` / ``cls``.
    """
    name: str
    is_local: bool
    on_receiver: bool = False


class RepresentationAdapter(ABC, Generic[N, P, S]):
    """
    One program representation, seen through the traversal contract.

    Subclasses supply node navigation; this base class supplies the generic
    walk, definition discovery and return-value discovery.
    """

    def __init__(self, max_states: int = DEFAULT_MAX_STATES):
        self.max_states = max_states

    # ------------------------------------------------------------------
    # Traversal primitives
    # ------------------------------------------------------------------

    @abstractmethod
    def visit_children_with_collection_gate(self, node: N, gate: Gate) -> Iterable[Tuple[N, Gate]]:
        """
        Successors of ``node`` with the gate each one is visited under.

        While the gate is collecting, only value-bearing children are
        produced.
        """

    @abstractmethod
    def is_assignment_target(self, node: N, subject: Hashable) -> bool:
        """Does ``node`` (re)bind ``subject``?"""

    @abstractmethod
    def is_conditional_boundary(self, node: N) -> bool:
        """Is ``node`` only conditionally executed relative to its context?"""

    # ------------------------------------------------------------------
    # Node queries
    # ------------------------------------------------------------------

    @abstractmethod
    def assigned_value(self, node: N, subject: Hashable) -> Optional[N]:
        """The expression bound to ``subject`` by ``node``; None if not expressible."""

    @abstractmethod
    def returned_value(self, node: N) -> Optional[N]:
        """The returned expression if ``node`` is a return point."""

    @abstractmethod
    def entry_nodes(self, procedure: P, use: Optional[Any]) -> List[N]:
        """Where a walk over ``procedure`` starts."""

    @abstractmethod
    def is_use(self, node: N, use: Any) -> bool:
        """Is ``node`` the program point a walk stops at?"""

    def precedes(self, node: N, use: Any) -> bool:
        """Can ``node`` execute before ``use``?"""
        return True

    def encloses(self, node: N, use: Any) -> bool:
        """Does ``node`` complete only after ``use`` has been evaluated?"""
        return False

    @abstractmethod
    def position(self, node: N) -> Tuple[int, ...]:
        """Sort key reproducing program order."""

    @abstractmethod
    def literal_value(self, node: N) -> Optional[str]:
        """Literal string text of ``node``, if it is a literal."""

    @abstractmethod
    def resolve(self, node: N) -> Optional[ResolvedSymbol]:
        """Front-end symbol resolution."""

    @abstractmethod
    def variable_subject(self, node: N) -> Optional[Hashable]:
        """Identifier of the local variable read by ``node``, if any."""

    @abstractmethod
    def call_target(self, node: N) -> Optional[CallTarget]:
        """Callee of ``node`` if it is a call."""

    @abstractmethod
    def enclosing_procedure(self, node: N) -> Optional[P]:
        ...

    @abstractmethod
    def find_procedure(self, node: N, target: CallTarget) -> Optional[P]:
        """Declaration in the same module that a local call resolves to."""

    @abstractmethod
    def procedure_key(self, procedure: P) -> Hashable:
        ...

    @abstractmethod
    def argument_values(self, site: S, argument: Argument) -> List[N]:
        """Expressions that may be passed at ``argument`` of ``site``."""

    @abstractmethod
    def immediate_constants(self, site: S, argument: Argument) -> List[str]:
        """Cheap constant lookup that performs no traversal."""

    def argument_count(self, site: S) -> Optional[int]:
        """Number of arguments written at ``site``, if the representation keeps it."""
        return None

    @abstractmethod
    def find_call_sites(self, names: Sequence[str]) -> Iterator[S]:
        """Every call in the unit whose callee's simple name is in ``names``."""

    @abstractmethod
    def site_name(self, site: S) -> Optional[str]:
        ...

    @abstractmethod
    def site_line(self, site: S) -> Optional[int]:
        ...

    def describe(self, node: N) -> str:
        return repr(node)

    # ------------------------------------------------------------------
    # Generic traversal
    # ------------------------------------------------------------------

    def walk(self, procedure: P, use: Optional[Any] = None) -> Iterator[Tuple[N, Gate, bool]]:
        """
        Depth-first walk of ``procedure`` in program order.

        Yields ``(node, gate, at_use)``. The walk does not go past ``use``;
        identical nodes are visited once, and at most ``max_states`` nodes are
        visited in total.
        """
        work: List[Tuple[N, Gate]] = [(node, Gate()) for node in reversed(self.entry_nodes(procedure, use))]
        seen = set()

        while work:
            node, gate = work.pop()
            if node in seen:
                continue
            seen.add(node)
            if len(seen) > self.max_states:
                logger.debug("Walk of %s stopped after %d states", self.describe(procedure), self.max_states)
                return

            if use is not None:
                if self.is_use(node, use):
                    yield node, gate, True
                    continue
                if not self.precedes(node, use):
                    continue

            if self.is_conditional_boundary(node):
                gate = gate.nested()
            yield node, gate, False

            children = list(self.visit_children_with_collection_gate(node, gate))
            work.extend(reversed(children))

    def definitions(self, procedure: P, subject: Hashable, use: Any) -> List[Definition]:
        """All definitions of ``subject`` that can execute before ``use``, in program order."""
        found: Dict[Tuple[Tuple[int, ...], Any], Definition] = {}
        for node, gate, at_use in self.walk(procedure, use):
            if not self.is_assignment_target(node, subject):
                continue
            if not at_use and self.encloses(node, use):
                continue
            position = self.position(node)
            value = self.assigned_value(node, subject)
            found.setdefault((position, value), Definition(node, value, gate.is_conditional, position))

        return sorted(
            found.values(),
            key=lambda d: (d.position, self.position(d.value) if d.value is not None else ()),
        )

    def return_values(self, procedure: P) -> List[N]:
        """Every returned expression of ``procedure``, in program order."""
        found: Dict[Tuple[Tuple[int, ...], Any], N] = {}
        for node, _gate, _at_use in self.walk(procedure):
            value = self.returned_value(node)
            if value is not None:
                found.setdefault((self.position(node), value), value)
        ordered = sorted(found.items(), key=lambda item: (item[0][0], self.position(item[1])))
        return [value for _key, value in ordered]
