"""
Whole-module agreement between the source tree and the bytecode graph, and
repeatability of every request.
"""

import pytest

from conftest import LOCATION_CONSTANTS, graph_resolver, tree_resolver


TRACKER = '''
from android.location import LocationManager

DEFAULT = "passive"


def preferred(precise):
    if precise:
        return LocationManager.GPS_PROVIDER
    return LocationManager.NETWORK_PROVIDER


class Tracker:
    FALLBACK = "network"

    def __init__(self, lm):
        self.lm = lm

    def fallback(self):
        return self.FALLBACK

    def start(self, precise, retries):
        provider = DEFAULT
        if precise:
            provider = preferred(precise)
        self.lm.request_location_updates(provider, 1000, 0, None)

        while retries:
            retries -= 1
            self.lm.request_single_update(self.fallback(), None)

        last = self.lm.get_last_known_location(provider="gps" if precise else DEFAULT)
        return last

    def stop(self, listener):
        self.lm.remove_updates(listener)


def standalone(lm, name):
    lm.request_location_updates(name)
    lm.request_location_updates("net" + "work")
'''

CALLS = ["request_location_updates", "request_single_update", "get_last_known_location"]


def _resolve(resolver):
    rows = []
    for site in resolver.find_call_sites(CALLS):
        argument = "provider" if resolver.site_name(site) == "get_last_known_location" else 0
        result = resolver.resolve_possible_string_values(site, argument)
        rows.append((resolver.site_line(site), resolver.site_name(site), result.values()))
    return rows


class TestAgreement:
    """Both representations give the same answer for the same program."""

    def test_same_sites_and_values(self):
        tree = _resolve(tree_resolver(TRACKER, LOCATION_CONSTANTS))
        graph = _resolve(graph_resolver(TRACKER, LOCATION_CONSTANTS))
        assert tree == graph

    def test_expected_values(self):
        rows = _resolve(tree_resolver(TRACKER, LOCATION_CONSTANTS))
        assert [values for _line, _name, values in rows] == [
            ["passive", "gps", "network"],
            ["network"],
            ["gps", "passive"],
            [],
            ["network"],
        ]

    def test_provenance_agrees(self):
        tree = tree_resolver(TRACKER, LOCATION_CONSTANTS)
        graph = graph_resolver(TRACKER, LOCATION_CONSTANTS)
        for left, right in zip(tree.find_call_sites(CALLS[:1]), graph.find_call_sites(CALLS[:1])):
            assert [c.provenance for c in tree.resolve_possible_string_values(left)] == \
                [c.provenance for c in graph.resolve_possible_string_values(right)]


class TestIdempotence:
    """Repeating a request never changes its result."""

    @pytest.mark.parametrize("build", [tree_resolver, graph_resolver], ids=["tree", "graph"])
    def test_repeated_requests(self, build):
        resolver = build(TRACKER, LOCATION_CONSTANTS)
        first = _resolve(resolver)
        second = _resolve(resolver)
        assert first == second

    @pytest.mark.parametrize("build", [tree_resolver, graph_resolver], ids=["tree", "graph"])
    def test_candidate_sets_compare_equal(self, build):
        resolver = build(TRACKER, LOCATION_CONSTANTS)
        (site, *_rest) = resolver.find_call_sites(["request_location_updates"])
        assert resolver.resolve_possible_string_values(site) == resolver.resolve_possible_string_values(site)


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
