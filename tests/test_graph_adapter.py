"""
Tests for the instruction-graph adapter: operand stack simulation, keyword
arguments, call-site discovery and the preceding-constant heuristic.
"""

import sys
import textwrap

import pytest

from conftest import graph_resolver, resolve_values, tree_resolver
from literalflow.cfg import CFGConstructionError
from literalflow.frontend import load_code_string
from literalflow.semantics import BytecodeSite, CallSignatures, GraphAdapter, StringFlowResolver
from literalflow.semantics.graph_adapter import EntryKind, StackEntry


def _site(adapter: GraphAdapter, call: str) -> BytecodeSite:
    sites = list(adapter.find_call_sites([call]))
    assert len(sites) == 1
    return sites[0]


# ============================================================================
# Stack simulation
# ============================================================================

class TestStackSimulation:
    """Arguments are located by simulating the operand stack."""

    def test_constant_arguments_in_order(self):
        unit = load_code_string(textwrap.dedent("""
            def start(sock):
                sock.connect("host", "port", "mode")
        """))
        adapter = GraphAdapter(unit)
        site = _site(adapter, "connect")
        values = [adapter.argument_values(site, i) for i in range(3)]
        assert [[v.entry.value for v in group] for group in values] == [["host"], ["port"], ["mode"]]

    def test_argument_entries_are_constants(self):
        unit = load_code_string("use('gps')\n")
        adapter = GraphAdapter(unit)
        site = _site(adapter, "use")
        (value,) = adapter.argument_values(site, 0)
        assert value.entry.kind is EntryKind.CONST
        assert adapter.literal_value(value) == "gps"

    def test_out_of_range_argument(self):
        unit = load_code_string("use('gps')\n")
        adapter = GraphAdapter(unit)
        site = _site(adapter, "use")
        assert adapter.argument_values(site, 1) == []

    def test_nested_call_result_is_one_entry(self):
        unit = load_code_string(textwrap.dedent("""
            def start(sock, make):
                sock.connect(make("a", "b"), "port")
        """))
        adapter = GraphAdapter(unit)
        site = _site(adapter, "connect")
        (first,) = adapter.argument_values(site, 0)
        (second,) = adapter.argument_values(site, 1)
        assert first.entry.kind is EntryKind.CALL
        assert second.entry.value == "port"

    def test_unknown_instructions_do_not_shift_arguments(self):
        unit = load_code_string(textwrap.dedent("""
            def start(sock, items, key):
                sock.connect(items[key], [1, 2], {"k": key}, "tail")
        """))
        adapter = GraphAdapter(unit)
        site = _site(adapter, "connect")
        (last,) = adapter.argument_values(site, 3)
        assert last.entry.value == "tail"
        for index in range(3):
            (value,) = adapter.argument_values(site, index)
            assert adapter.literal_value(value) is None

    def test_branches_keep_separate_stacks(self):
        unit = load_code_string(textwrap.dedent("""
            def start(sock, flag):
                sock.connect("a" if flag else "b", "c")
        """))
        adapter = GraphAdapter(unit)
        site = _site(adapter, "connect")
        assert [v.entry.value for v in adapter.argument_values(site, 0)] == ["a", "b"]
        # the trailing constant may be copied into both arms
        assert {v.entry.value for v in adapter.argument_values(site, 1)} == {"c"}

    def test_stack_entries_are_immutable(self):
        entry = StackEntry(EntryKind.CONST, 0, value="gps")
        with pytest.raises(AttributeError):
            entry.value = "network"


# ============================================================================
# Keyword arguments
# ============================================================================

class TestKeywordArguments:
    """Keyword arguments are looked up by name on both representations."""

    SOURCE = """
def start(lm):
    lm.request_location_updates(0, provider="gps", min_time=1000)
"""

    def test_keyword_by_name(self, make_resolver):
        resolver = make_resolver(self.SOURCE)
        assert resolve_values(resolver, "request_location_updates", "provider") == ["gps"]

    def test_positional_index_stops_before_keywords(self, make_resolver):
        resolver = make_resolver(self.SOURCE)
        assert resolve_values(resolver, "request_location_updates", 1) == []

    def test_positional_before_keywords(self, make_resolver):
        resolver = make_resolver("""
def start(lm):
    lm.request_location_updates("passive", min_time=1000)
""")
        assert resolve_values(resolver, "request_location_updates", 0) == ["passive"]

    def test_missing_keyword(self, make_resolver):
        resolver = make_resolver(self.SOURCE)
        assert resolve_values(resolver, "request_location_updates", "listener") == []

    def test_negative_index_is_unresolvable(self, make_resolver):
        resolver = make_resolver("""
def start(lm):
    lm.request_location_updates("gps", "network")
""")
        assert resolve_values(resolver, "request_location_updates", -1) == []

    def test_keyword_through_variable(self, make_resolver):
        resolver = make_resolver("""
def start(lm):
    chosen = "network"
    lm.request_location_updates(provider=chosen)
""")
        assert resolve_values(resolver, "request_location_updates", "provider") == ["network"]


# ============================================================================
# Call-site discovery
# ============================================================================

class TestCallSites:
    """find_call_sites locates callees by simple name."""

    SOURCE = textwrap.dedent("""
        import os

        def start(lm):
            lm.request_location_updates("gps")

        class Tracker:
            def run(self, lm):
                lm.request_single_update("network")

        request_location_updates("passive")
        os.getenv("HOME")
    """)

    def test_sites_in_every_code_object(self):
        resolver = graph_resolver(self.SOURCE)
        sites = list(resolver.find_call_sites(["request_location_updates", "request_single_update"]))
        assert [resolver.site_name(s) for s in sites] == [
            "request_location_updates", "request_single_update", "request_location_updates",
        ]

    def test_sites_carry_lines(self):
        resolver = graph_resolver(self.SOURCE)
        lines = [resolver.site_line(s) for s in resolver.find_call_sites(["request_location_updates"])]
        assert lines == [5, 11]

    def test_lines_agree_with_tree(self):
        names = ["request_location_updates", "request_single_update", "getenv"]
        graph = graph_resolver(self.SOURCE)
        tree = tree_resolver(self.SOURCE)
        assert [graph.site_line(s) for s in graph.find_call_sites(names)] == \
            [tree.site_line(s) for s in tree.find_call_sites(names)]

    def test_unrelated_names_are_skipped(self):
        resolver = graph_resolver(self.SOURCE)
        assert list(resolver.find_call_sites(["nothing_here"])) == []


class TestCopiedCallTails:
    """
    A call that ends a branch join may be compiled once per arm.

    All copies belong to one site, and the site sees the arguments of every
    copy.
    """

    SOURCE = """
def start(lm, precise):
    lm.request_location_updates("gps" if precise else "network")
"""

    def test_one_site_per_source_call(self, make_resolver):
        resolver = make_resolver(self.SOURCE)
        assert len(list(resolver.find_call_sites(["request_location_updates"]))) == 1

    def test_values_from_every_copy(self, make_resolver):
        resolver = make_resolver(self.SOURCE)
        assert resolve_values(resolver, "request_location_updates") == ["gps", "network"]

    def test_site_offset_is_first_copy(self):
        resolver = graph_resolver(self.SOURCE)
        (site,) = resolver.find_call_sites(["request_location_updates"])
        assert site.offset == min(site.offsets)
        assert list(site.offsets) == sorted(site.offsets)

    def test_separate_calls_on_one_line_stay_separate(self):
        resolver = graph_resolver("""
def start(lm):
    lm.request_location_updates("gps"); lm.request_location_updates("network")
""")
        sites = list(resolver.find_call_sites(["request_location_updates"]))
        assert [resolver.resolve_possible_string_values(s).values() for s in sites] == [["gps"], ["network"]]

    @pytest.mark.skipif(sys.version_info < (3, 12), reason="call tails are copied from 3.12 on")
    def test_immediate_constant_checks_every_copy(self):
        resolver = graph_resolver("""
def check(lm, precise):
    return lm.is_provider_enabled("gps" if precise else "network")
""")
        (site,) = resolver.find_call_sites(["is_provider_enabled"])
        assert len(site.offsets) == 2
        assert resolver.resolve_immediate_constant(site).values() == ["gps", "network"]


# ============================================================================
# Preceding-constant heuristic
# ============================================================================

class TestImmediateConstant:
    """Only the instruction right before the call is inspected."""

    def test_literal_immediately_before_call(self):
        resolver = graph_resolver("""
def check(lm):
    return lm.is_provider_enabled("gps")
""")
        (site,) = resolver.find_call_sites(["is_provider_enabled"])
        assert resolver.resolve_immediate_constant(site).values() == ["gps"]

    def test_variable_is_not_followed(self):
        resolver = graph_resolver("""
def check(lm):
    provider = "gps"
    return lm.is_provider_enabled(provider)
""")
        (site,) = resolver.find_call_sites(["is_provider_enabled"])
        assert resolver.resolve_immediate_constant(site).values() == []
        # full resolution still finds it
        assert resolver.resolve_possible_string_values(site).values() == ["gps"]

    def test_constant_not_last_is_missed(self):
        resolver = graph_resolver("""
def check(lm, flag):
    return lm.is_provider_enabled("gps", flag)
""")
        (site,) = resolver.find_call_sites(["is_provider_enabled"])
        assert resolver.resolve_immediate_constant(site).values() == []


# ============================================================================
# Failure handling
# ============================================================================

class TestFailures:
    """Host-level failures give an empty result for that request only."""

    def test_cfg_failure_returns_empty(self, monkeypatch, caplog):
        resolver = graph_resolver("""
def start(lm):
    provider = "gps"
    lm.request_location_updates(provider)
""")
        (site,) = resolver.find_call_sites(["request_location_updates"])

        def broken(code):
            raise CFGConstructionError("cannot partition")

        monkeypatch.setattr(resolver.adapter.unit, "cfg_for", broken)
        assert resolver.resolve_possible_string_values(site).values() == []
        assert "cannot partition" in caplog.text

    def test_state_budget_bounds_walk(self):
        unit = load_code_string(textwrap.dedent("""
            def start(lm):
                provider = "gps"
                lm.request_location_updates(provider)
        """))
        (site,) = StringFlowResolver.for_bytecode(unit).find_call_sites(["request_location_updates"])
        limited = StringFlowResolver.for_bytecode(unit, max_states=1)
        # a single state cannot reach the call; nothing is reported
        assert limited.resolve_possible_string_values(site).values() == []

    def test_signature_without_string_parameter_is_skipped(self):
        resolver = graph_resolver("""
def start(lm):
    lm.request_location_updates("gps")
""", signatures=CallSignatures({"request_location_updates": ["Criteria", "int"]}))
        (site,) = resolver.find_call_sites(["request_location_updates"])
        assert resolver.resolve_possible_string_values(site).values() == []


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
