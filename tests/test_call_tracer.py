"""
Tests for the call-return tracer: helpers declared in the same module.
"""

import logging

import pytest

from conftest import resolve_all, resolve_values
from literalflow.semantics import Provenance


class TestLocalHelpers:
    """Calls resolved to a declaration in the same module."""

    def test_single_return(self, make_resolver):
        resolver = make_resolver("""
def choose():
    return "gps"

def start(lm):
    lm.request_location_updates(choose(), 0, 0, None)
""")
        result = resolve_all(resolver, "request_location_updates")[0]
        assert result.values() == ["gps"]
        assert result[0].provenance is Provenance.TRACED_RETURN

    def test_multiple_returns(self, make_resolver):
        resolver = make_resolver("""
def choose(precise):
    if precise:
        return "gps"
    return "network"

def start(lm, precise):
    lm.request_location_updates(choose(precise))
""")
        assert resolve_values(resolver, "request_location_updates") == ["gps", "network"]

    def test_return_of_local_variable(self, make_resolver):
        resolver = make_resolver("""
def choose():
    provider = "passive"
    return provider

def start(lm):
    lm.request_location_updates(choose())
""")
        assert resolve_values(resolver, "request_location_updates") == ["passive"]

    def test_return_of_module_constant(self, make_resolver):
        resolver = make_resolver("""
DEFAULT = "network"

def choose():
    return DEFAULT

def start(lm):
    lm.request_location_updates(choose())
""")
        assert resolve_values(resolver, "request_location_updates") == ["network"]

    def test_helper_through_variable(self, make_resolver):
        resolver = make_resolver("""
def choose():
    return "gps"

def start(lm):
    provider = choose()
    lm.request_location_updates(provider)
""")
        result = resolve_all(resolver, "request_location_updates")[0]
        assert result.values() == ["gps"]
        # the outermost hop decides the provenance
        assert result[0].provenance is Provenance.TRACED_VARIABLE

    def test_nested_helpers(self, make_resolver):
        resolver = make_resolver("""
def fine():
    return "gps"

def choose(precise):
    if precise:
        return fine()
    return "passive"

def start(lm):
    lm.request_location_updates(choose(True))
""")
        assert resolve_values(resolver, "request_location_updates") == ["gps", "passive"]

    def test_method_on_self(self, make_resolver):
        resolver = make_resolver("""
class Tracker:
    def provider(self):
        return "gps"

    def start(self, lm):
        lm.request_location_updates(self.provider())
""")
        assert resolve_values(resolver, "request_location_updates") == ["gps"]

    def test_method_of_other_class_is_not_confused(self, make_resolver):
        resolver = make_resolver("""
class Other:
    def provider(self):
        return "passive"

class Tracker:
    def provider(self):
        return "gps"

    def start(self, lm):
        lm.request_location_updates(self.provider())
""")
        assert resolve_values(resolver, "request_location_updates") == ["gps"]

    def test_tracing_calls_can_be_disabled(self, make_resolver):
        resolver = make_resolver("""
def choose():
    return "gps"

def start(lm):
    lm.request_location_updates(choose())
""", trace_calls=False)
        assert resolve_values(resolver, "request_location_updates") == []


# ============================================================================
# Calls that are not followed
# ============================================================================

class TestUnresolvedCalls:
    """External calls and cycles give an empty contribution."""

    def test_library_call(self, make_resolver):
        resolver = make_resolver("""
import settings

def start(lm):
    lm.request_location_updates(settings.provider())
""")
        assert resolve_values(resolver, "request_location_updates") == []

    def test_undeclared_function(self, make_resolver):
        resolver = make_resolver("""
def start(lm):
    lm.request_location_updates(lookup_provider())
""")
        assert resolve_values(resolver, "request_location_updates") == []

    def test_local_callable_variable(self, make_resolver):
        resolver = make_resolver("""
def choose():
    return "gps"

def start(lm, choose):
    lm.request_location_updates(choose())
""")
        assert resolve_values(resolver, "request_location_updates") == []

    def test_direct_recursion(self, make_resolver):
        resolver = make_resolver("""
def choose(n):
    if n:
        return choose(n - 1)
    return "gps"

def start(lm):
    lm.request_location_updates(choose(3))
""")
        assert resolve_values(resolver, "request_location_updates") == ["gps"]

    def test_mutual_recursion_terminates(self, make_resolver):
        resolver = make_resolver("""
def ping():
    return pong()

def pong():
    return ping()

def start(lm):
    lm.request_location_updates(ping())
""")
        assert resolve_values(resolver, "request_location_updates") == []

    def test_three_way_cycle_keeps_literals(self, make_resolver):
        resolver = make_resolver("""
def a(flag):
    if flag:
        return b(flag)
    return "gps"

def b(flag):
    return c(flag)

def c(flag):
    if flag:
        return a(flag)
    return "network"

def start(lm, flag):
    lm.request_location_updates(a(flag))
""")
        assert resolve_values(resolver, "request_location_updates") == ["network", "gps"]


# ============================================================================
# Logging
# ============================================================================

class TestLogging:
    """Every tracer step logs through the injected logger."""

    def test_skipped_call_is_logged(self, make_resolver, caplog):
        resolver = make_resolver("""
def start(lm):
    lm.request_location_updates(lookup_provider())
""")
        with caplog.at_level(logging.DEBUG, logger="literalflow.semantics"):
            resolve_all(resolver, "request_location_updates")
        assert any("lookup_provider" in record.getMessage() for record in caplog.records)


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
