"""
Detector-facing entry point.

    resolver = StringFlowResolver.for_source(unit)
    for site in resolver.find_call_sites(["request_location_updates"]):
        candidates = resolver.resolve_possible_string_values(site, 0)

Each request gets a fresh ResolutionContext, so repeated requests on the same
site give identical results. An empty CandidateSet means "could not be
determined", never "safe".
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Dict, Iterator, List, Optional, Sequence

from ..cfg import CFGConstructionError
from ..frontend.loader import CodeUnit, SourceUnit
from .adapter import DEFAULT_MAX_STATES, Argument, RepresentationAdapter
from .candidates import Candidate, CandidateSet, Provenance
from .graph_adapter import GraphAdapter
from .tracers import SEMANTICS_LOGGER, ArgumentTracer, ResolutionContext
from .tree_adapter import TreeAdapter

logger = logging.getLogger(__name__)

STRING_TYPE_NAMES = frozenset({"str", "String", "java.lang.String"})


@dataclass
class CallSignatures:
    """
    Declared parameter types per call name.

    A call with a declared signature but no string-typed parameter is never
    resolved. Calls with no declared signature are assumed to accept strings.
    """
    parameters: Dict[str, List[str]] = field(default_factory=dict)

    def accepts_string(self, name: Optional[str]) -> bool:
        if name is None or name not in self.parameters:
            return True
        return any(type_name in STRING_TYPE_NAMES for type_name in self.parameters[name])


class StringFlowResolver:
    """Resolves string arguments of call sites in one compilation unit."""

    def __init__(self, adapter: RepresentationAdapter, trace_calls: bool = True,
                 logger: Optional[logging.Logger] = None,
                 signatures: Optional[CallSignatures] = None):
        self.adapter = adapter
        self.trace_calls = trace_calls
        self.logger = logger or logging.getLogger(SEMANTICS_LOGGER)
        self.signatures = signatures or CallSignatures()

    @classmethod
    def for_source(cls, unit: SourceUnit, max_states: int = DEFAULT_MAX_STATES,
                   **kwargs) -> "StringFlowResolver":
        return cls(TreeAdapter(unit, max_states), **kwargs)

    @classmethod
    def for_bytecode(cls, unit: CodeUnit, max_states: int = DEFAULT_MAX_STATES,
                     **kwargs) -> "StringFlowResolver":
        return cls(GraphAdapter(unit, max_states), **kwargs)

    def _accepts(self, site) -> bool:
        name = self.adapter.site_name(site)
        if self.signatures.accepts_string(name):
            return True
        self.logger.debug("Call %s takes no string argument", name)
        return False

    def resolve_possible_string_values(self, site, argument: Argument = 0) -> CandidateSet:
        """
        Every string the given argument of ``site`` may hold.

        Candidates come in discovery order, deduplicated by value.
        """
        if not self._accepts(site):
            return CandidateSet()

        context = ResolutionContext(self.adapter, trace_calls=self.trace_calls, logger=self.logger)
        try:
            result = ArgumentTracer(context).trace_argument(site, argument)
        except CFGConstructionError as e:
            logger.warning("Cannot resolve %s: %s", self.adapter.describe(site), e)
            return CandidateSet()

        self.logger.debug("%s argument %r -> %r", self.adapter.describe(site), argument, result)
        return result

    def resolve_immediate_constant(self, site, argument: Argument = 0) -> CandidateSet:
        """
        Cheap lookup that performs no traversal.

        On bytecode only the instruction right before each copy of the call
        is inspected, so constants built by longer sequences are missed.
        """
        if not self._accepts(site):
            return CandidateSet()
        try:
            values = self.adapter.immediate_constants(site, argument)
        except CFGConstructionError as e:
            logger.warning("Cannot resolve %s: %s", self.adapter.describe(site), e)
            return CandidateSet()
        return CandidateSet([Candidate(value, Provenance.LITERAL) for value in values])

    def argument_count(self, site) -> Optional[int]:
        return self.adapter.argument_count(site)

    def find_call_sites(self, names: Sequence[str]) -> Iterator:
        return self.adapter.find_call_sites(names)

    def site_name(self, site) -> Optional[str]:
        return self.adapter.site_name(site)

    def site_line(self, site) -> Optional[int]:
        return self.adapter.site_line(site)
