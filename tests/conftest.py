"""
Shared helpers: resolve the first argument of every matching call in a
program, through the source tree or through compiled bytecode.
"""

import textwrap
from typing import Dict, List, Optional

import pytest

from literalflow.frontend import load_code_string, load_source_string
from literalflow.semantics import StringFlowResolver
from literalflow.semantics.candidates import CandidateSet

LOCATION_CONSTANTS = {
    "LocationManager.GPS_PROVIDER": "gps",
    "LocationManager.NETWORK_PROVIDER": "network",
    "LocationManager.PASSIVE_PROVIDER": "passive",
}


def tree_resolver(source: str, known: Optional[Dict[str, str]] = None, **kwargs) -> StringFlowResolver:
    unit = load_source_string(textwrap.dedent(source), "<test>", known)
    assert unit is not None
    return StringFlowResolver.for_source(unit, **kwargs)


def graph_resolver(source: str, known: Optional[Dict[str, str]] = None, **kwargs) -> StringFlowResolver:
    unit = load_code_string(textwrap.dedent(source), "<test>", known)
    assert unit is not None
    return StringFlowResolver.for_bytecode(unit, **kwargs)


def resolve_all(resolver: StringFlowResolver, call: str, argument=0) -> List[CandidateSet]:
    return [
        resolver.resolve_possible_string_values(site, argument)
        for site in resolver.find_call_sites([call])
    ]


def resolve_values(resolver: StringFlowResolver, call: str = "use", argument=0) -> List[str]:
    """Values resolved at the single ``call`` site of the program."""
    results = resolve_all(resolver, call, argument)
    assert len(results) == 1, f"expected one call to {call}, found {len(results)}"
    return results[0].values()


@pytest.fixture(params=["tree", "graph"])
def make_resolver(request):
    """Build a resolver for either representation of the same program."""
    def build(source: str, known: Optional[Dict[str, str]] = None, **kwargs) -> StringFlowResolver:
        if request.param == "tree":
            return tree_resolver(source, known, **kwargs)
        return graph_resolver(source, known, **kwargs)
    build.representation = request.param
    return build
