"""
Location-provider permission check.

Calls that start location updates name a provider string (``"gps"``,
``"network"``, ``"passive"``); each provider needs a declared capability.
The provider argument is resolved with StringFlowResolver, so providers
reached through variables, constants and helper functions are checked too.

An unresolved argument never produces a finding.

Some rules depend on the API level the project targets: proximity alerts need
fine location from API 17 on, and ``is_provider_enabled`` stopped throwing for
a missing capability at API 21.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import Enum, auto
from typing import Dict, Iterable, List, Optional, Set, Tuple

from ..frontend.loader import CodeUnit, SourceUnit
from ..semantics.adapter import DEFAULT_MAX_STATES, Argument
from ..semantics.candidates import CandidateSet
from ..semantics.resolver import CallSignatures, StringFlowResolver

logger = logging.getLogger(__name__)

PERMISSION_PREFIX = "android.permission."
FINE_LOCATION = PERMISSION_PREFIX + "ACCESS_FINE_LOCATION"
COARSE_LOCATION = PERMISSION_PREFIX + "ACCESS_COARSE_LOCATION"

# Fine location includes coarse
IMPLIED_CAPABILITIES: Dict[str, Set[str]] = {FINE_LOCATION: {COARSE_LOCATION}}

PROVIDER_CAPABILITIES: Dict[str, str] = {
    "gps": FINE_LOCATION,
    "network": COARSE_LOCATION,
    "passive": COARSE_LOCATION,
}

# targetSdkVersion falls back to minSdkVersion, which defaults to 1
DEFAULT_TARGET_API = 1
API_JELLY_BEAN_MR1 = 17
API_LOLLIPOP = 21

DEFAULT_CONSTANTS: Dict[str, str] = {
    "LocationManager.GPS_PROVIDER": "gps",
    "LocationManager.NETWORK_PROVIDER": "network",
    "LocationManager.PASSIVE_PROVIDER": "passive",
}


def normalize_capability(name: str) -> str:
    """``ACCESS_FINE_LOCATION`` -> ``android.permission.ACCESS_FINE_LOCATION``."""
    return name if "." in name else PERMISSION_PREFIX + name


def granted_capabilities(declared: Iterable[str]) -> Set[str]:
    granted = set()
    for name in declared:
        capability = normalize_capability(name)
        granted.add(capability)
        granted |= IMPLIED_CAPABILITIES.get(capability, set())
    return granted


class RuleKind(Enum):
    PROVIDER = auto()            # full resolution, one finding per missing capability
    PROVIDER_HEURISTIC = auto()  # single argument, first finding only
    ALWAYS = auto()              # requires ``requires[0]`` regardless of arguments
    ANY_OF = auto()              # satisfied by any capability in ``requires``


@dataclass
class ArgumentRule:
    """
    How one call is checked.

    ``strict_since_api``: from this target API on, an ANY_OF rule is only
    satisfied by ``requires[0]``. ``until_api``: the rule is skipped when the
    target API is at or above it.
    """
    name: str
    kind: RuleKind
    argument: Argument = 0
    requires: Tuple[str, ...] = ()
    values: Dict[str, str] = field(default_factory=lambda: dict(PROVIDER_CAPABILITIES))
    strict_since_api: Optional[int] = None
    until_api: Optional[int] = None


def _camel(name: str) -> str:
    head, *rest = name.split("_")
    return head + "".join(part.title() for part in rest)


def _rules(name: str, kind: RuleKind, requires: Tuple[str, ...] = (), **options) -> List[ArgumentRule]:
    """The rule under its snake_case and camelCase spellings."""
    return [ArgumentRule(spelling, kind, requires=requires, **options) for spelling in (name, _camel(name))]


DEFAULT_RULES: List[ArgumentRule] = (
    _rules("request_location_updates", RuleKind.PROVIDER)
    + _rules("request_single_update", RuleKind.PROVIDER)
    + _rules("get_last_known_location", RuleKind.PROVIDER)
    + _rules("is_provider_enabled", RuleKind.PROVIDER_HEURISTIC, until_api=API_LOLLIPOP)
    + _rules("add_gps_status_listener", RuleKind.ALWAYS, (FINE_LOCATION,))
    + _rules("add_nmea_listener", RuleKind.ALWAYS, (FINE_LOCATION,))
    + _rules("add_proximity_alert", RuleKind.ANY_OF, (FINE_LOCATION, COARSE_LOCATION),
             strict_since_api=API_JELLY_BEAN_MR1)
    + _rules("remove_proximity_alert", RuleKind.ANY_OF, (FINE_LOCATION, COARSE_LOCATION),
             strict_since_api=API_JELLY_BEAN_MR1)
)

# (capability, provider value, API level the requirement starts at)
Missing = Tuple[str, Optional[str], Optional[int]]


@dataclass
class Finding:
    """A call that needs a capability the project does not declare."""
    path: str
    line: Optional[int]
    call: str
    capability: str
    value: Optional[str] = None
    representation: str = "tree"
    since_api: Optional[int] = None

    @property
    def message(self) -> str:
        message = f"Call to `{self.call}` requires `{self.capability}`"
        if self.since_api is not None:
            message += f" (starting with api {self.since_api})"
        return message

    def to_dict(self) -> Dict[str, object]:
        return {
            "path": self.path,
            "line": self.line,
            "call": self.call,
            "capability": self.capability,
            "value": self.value,
            "representation": self.representation,
            "since_api": self.since_api,
            "message": self.message,
        }

    def __str__(self) -> str:
        location = f"{self.path}:{self.line}" if self.line is not None else self.path
        suffix = f" (provider {self.value!r})" if self.value is not None else ""
        return f"{location}: {self.message}{suffix}"


class PermissionCheck:
    """Reports location calls whose provider needs an undeclared capability."""

    def __init__(self, declared: Iterable[str] = (), rules: Optional[List[ArgumentRule]] = None,
                 signatures: Optional[CallSignatures] = None, trace_calls: bool = True,
                 max_states: int = DEFAULT_MAX_STATES, target_api: int = DEFAULT_TARGET_API):
        self.granted = granted_capabilities(declared)
        self.target_api = target_api
        self.rules = {
            rule.name: rule
            for rule in (rules if rules is not None else DEFAULT_RULES)
            if rule.until_api is None or target_api < rule.until_api
        }
        self.signatures = signatures
        self.trace_calls = trace_calls
        self.max_states = max_states

    def check_source(self, unit: SourceUnit) -> List[Finding]:
        resolver = StringFlowResolver.for_source(
            unit, self.max_states, trace_calls=self.trace_calls, signatures=self.signatures)
        return self._check(resolver, unit.path, "tree")

    def check_bytecode(self, unit: CodeUnit) -> List[Finding]:
        resolver = StringFlowResolver.for_bytecode(
            unit, self.max_states, trace_calls=self.trace_calls, signatures=self.signatures)
        return self._check(resolver, unit.path, "graph")

    def _check(self, resolver: StringFlowResolver, path: str, representation: str) -> List[Finding]:
        findings: List[Finding] = []
        for site in resolver.find_call_sites(list(self.rules)):
            name = resolver.site_name(site)
            rule = self.rules[name]
            line = resolver.site_line(site)
            for capability, value, since_api in self._missing(rule, resolver, site, representation):
                findings.append(Finding(path, line, name, capability, value, representation, since_api))
        logger.debug("%s: %d findings (%s)", path, len(findings), representation)
        return findings

    def _missing(self, rule: ArgumentRule, resolver: StringFlowResolver, site,
                 representation: str) -> List[Missing]:
        if rule.kind is RuleKind.ALWAYS:
            return [(capability, None, None) for capability in rule.requires if capability not in self.granted]

        if rule.kind is RuleKind.ANY_OF:
            if rule.strict_since_api is not None and self.target_api >= rule.strict_since_api:
                if rule.requires[0] in self.granted:
                    return []
                return [(rule.requires[0], None, rule.strict_since_api)]
            if any(capability in self.granted for capability in rule.requires):
                return []
            return [(rule.requires[-1], None, None)]

        if rule.kind is RuleKind.PROVIDER_HEURISTIC:
            if representation == "graph":
                candidates = resolver.resolve_immediate_constant(site, rule.argument)
            elif resolver.argument_count(site) == 1:
                candidates = resolver.resolve_possible_string_values(site, rule.argument)
            else:
                return []
        else:
            candidates = resolver.resolve_possible_string_values(site, rule.argument)
        return self._missing_for_values(rule, candidates)

    def _missing_for_values(self, rule: ArgumentRule, candidates: CandidateSet) -> List[Missing]:
        missing: List[Missing] = []
        reported: Set[str] = set()
        for candidate in candidates:
            capability = rule.values.get(candidate.value)
            if capability is None or capability in self.granted or capability in reported:
                continue
            missing.append((capability, candidate.value, None))
            reported.add(capability)
            if rule.kind is RuleKind.PROVIDER_HEURISTIC:
                break
        return missing
