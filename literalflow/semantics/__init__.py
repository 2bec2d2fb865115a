"""Semantics: string-literal flow into call arguments, over ast or bytecode."""

from .adapter import (
    CallTarget,
    Definition,
    Gate,
    GateState,
    RepresentationAdapter,
)
from .candidates import Candidate, CandidateSet, Provenance
from .graph_adapter import BytecodeSite, GraphAdapter
from .literals import try_extract
from .resolver import CallSignatures, StringFlowResolver
from .tracers import (
    ArgumentTracer,
    BindingTracer,
    CallReturnTracer,
    ResolutionContext,
    TraversalState,
)
from .tree_adapter import TreeAdapter

__all__ = [
    'CallTarget',
    'Definition',
    'Gate',
    'GateState',
    'RepresentationAdapter',
    'Candidate',
    'CandidateSet',
    'Provenance',
    'BytecodeSite',
    'GraphAdapter',
    'try_extract',
    'CallSignatures',
    'StringFlowResolver',
    'ArgumentTracer',
    'BindingTracer',
    'CallReturnTracer',
    'ResolutionContext',
    'TraversalState',
    'TreeAdapter',
]
