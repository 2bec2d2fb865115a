"""Checks built on top of the string-flow resolver."""

from .providers import (
    COARSE_LOCATION,
    DEFAULT_CONSTANTS,
    DEFAULT_RULES,
    FINE_LOCATION,
    ArgumentRule,
    Finding,
    PermissionCheck,
    RuleKind,
    granted_capabilities,
    normalize_capability,
)

__all__ = [
    'COARSE_LOCATION',
    'DEFAULT_CONSTANTS',
    'DEFAULT_RULES',
    'FINE_LOCATION',
    'ArgumentRule',
    'Finding',
    'PermissionCheck',
    'RuleKind',
    'granted_capabilities',
    'normalize_capability',
]
