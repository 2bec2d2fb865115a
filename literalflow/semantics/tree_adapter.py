"""
Syntax-tree adapter: nodes are ``ast`` statements and expressions.

Successors are syntactic children in source order. Nested scopes (functions,
classes, lambdas, comprehensions) and ``except`` handlers are never entered.
"""

from __future__ import annotations

import ast
from typing import Hashable, Iterable, Iterator, List, Optional, Sequence, Tuple

from ..frontend.loader import FUNCTION_NODES, SourceUnit
from ..frontend.symbols import (SCOPE_NODES, SELF_NAMES, ResolvedSymbol,
                                SymbolKind, fold_string)
from .adapter import (DEFAULT_MAX_STATES, Argument, CallTarget, Gate,
                      RepresentationAdapter)
from .literals import try_extract

CONDITIONAL_NODES = (ast.If, ast.IfExp, ast.For, ast.AsyncFor, ast.While, ast.match_case)


def _binds(target: ast.AST, subject: str) -> bool:
    if isinstance(target, ast.Name):
        return target.id == subject
    if isinstance(target, (ast.Tuple, ast.List)):
        return any(_binds(element, subject) for element in target.elts)
    if isinstance(target, ast.Starred):
        return _binds(target.value, subject)
    return False


def _matching_value(target: ast.AST, value: ast.AST, subject: str) -> Optional[ast.AST]:
    """Element of ``value`` bound to ``subject`` by ``target``, for literal unpacking."""
    if isinstance(target, ast.Name):
        return value if target.id == subject else None
    if not isinstance(target, (ast.Tuple, ast.List)) or not isinstance(value, (ast.Tuple, ast.List)):
        return None
    if len(target.elts) != len(value.elts):
        return None
    if any(isinstance(node, ast.Starred) for node in target.elts + value.elts):
        return None
    for element, element_value in zip(target.elts, value.elts):
        found = _matching_value(element, element_value, subject)
        if found is not None:
            return found
    return None


def _dotted(node: ast.AST) -> Optional[str]:
    if isinstance(node, ast.Name):
        return node.id
    if isinstance(node, ast.Attribute):
        base = _dotted(node.value)
        return f"{base}.{node.attr}" if base is not None else None
    return None


class TreeAdapter(RepresentationAdapter[ast.AST, ast.AST, ast.Call]):
    """Traversal contract over a parsed module."""

    def __init__(self, unit: SourceUnit, max_states: int = DEFAULT_MAX_STATES):
        super().__init__(max_states)
        self.unit = unit

    # ------------------------------------------------------------------
    # Traversal primitives
    # ------------------------------------------------------------------

    def visit_children_with_collection_gate(self, node: ast.AST, gate: Gate) -> Iterable[Tuple[ast.AST, Gate]]:
        if gate.is_collecting:
            return self._value_children(node, gate)
        return [
            (child, gate)
            for child in ast.iter_child_nodes(node)
            if not isinstance(child, SCOPE_NODES + (ast.ExceptHandler,))
        ]

    def _value_children(self, node: ast.AST, gate: Gate) -> List[Tuple[ast.AST, Gate]]:
        if isinstance(node, ast.IfExp):
            return [(node.body, gate), (node.orelse, gate)]
        if isinstance(node, ast.BoolOp):
            first, *rest = node.values
            return [(first, gate)] + [(value, gate.nested()) for value in rest]
        if isinstance(node, ast.BinOp):
            return [(node.left, gate), (node.right, gate)]
        if isinstance(node, (ast.AugAssign, ast.NamedExpr)):
            return [(node.value, gate)]
        return []

    def is_assignment_target(self, node: ast.AST, subject: Hashable) -> bool:
        if isinstance(node, ast.Assign):
            return any(_binds(target, subject) for target in node.targets)
        if isinstance(node, ast.AnnAssign):
            return node.value is not None and _binds(node.target, subject)
        if isinstance(node, (ast.AugAssign, ast.NamedExpr, ast.For, ast.AsyncFor)):
            return _binds(node.target, subject)
        if isinstance(node, ast.withitem):
            return node.optional_vars is not None and _binds(node.optional_vars, subject)
        return False

    def is_conditional_boundary(self, node: ast.AST) -> bool:
        return isinstance(node, CONDITIONAL_NODES)

    # ------------------------------------------------------------------
    # Node queries
    # ------------------------------------------------------------------

    def assigned_value(self, node: ast.AST, subject: Hashable) -> Optional[ast.AST]:
        if isinstance(node, ast.Assign):
            for target in node.targets:
                if _binds(target, subject):
                    return _matching_value(target, node.value, subject)
            return None
        if isinstance(node, (ast.AnnAssign, ast.NamedExpr)):
            return node.value
        if isinstance(node, ast.AugAssign):
            return node
        return None

    def returned_value(self, node: ast.AST) -> Optional[ast.AST]:
        if isinstance(node, ast.Return):
            return node.value
        return None

    def entry_nodes(self, procedure: ast.AST, use) -> List[ast.AST]:
        return self.unit.body_of(procedure)

    def is_use(self, node: ast.AST, use) -> bool:
        return node is use

    def precedes(self, node: ast.AST, use) -> bool:
        return self.encloses(node, use) or self.position(node) < self.position(use)

    def encloses(self, node: ast.AST, use) -> bool:
        return self.unit.encloses(node, use)

    def position(self, node: ast.AST) -> Tuple[int, ...]:
        return (getattr(node, "lineno", 0), getattr(node, "col_offset", 0))

    def literal_value(self, node: ast.AST) -> Optional[str]:
        return fold_string(node)

    def resolve(self, node: ast.AST) -> Optional[ResolvedSymbol]:
        symbols = self.unit.symbols
        if isinstance(node, ast.Name):
            procedure = self.unit.enclosing_procedure(node)
            if procedure is not None and node.id in self.unit.local_names(procedure):
                if isinstance(procedure, ast.ClassDef):
                    symbol = symbols.resolve(f"{self.unit.qualname(procedure)}.{node.id}")
                    if symbol is not None:
                        return symbol
                elif isinstance(procedure, ast.Module):
                    symbol = symbols.resolve(node.id)
                    if symbol is not None:
                        return symbol
                return ResolvedSymbol(node.id, SymbolKind.VARIABLE)
            return symbols.resolve(node.id)

        if isinstance(node, ast.Attribute):
            dotted = _dotted(node)
            if dotted is None:
                return None
            return symbols.resolve(dotted, class_scope=self._method_class(node))
        return None

    def variable_subject(self, node: ast.AST) -> Optional[Hashable]:
        if not isinstance(node, ast.Name) or not isinstance(node.ctx, ast.Load):
            return None
        symbol = self.resolve(node)
        if symbol is not None and symbol.is_variable:
            return node.id
        return None

    def call_target(self, node: ast.AST) -> Optional[CallTarget]:
        if not isinstance(node, ast.Call):
            return None
        func = node.func
        if isinstance(func, ast.Name):
            procedure = self.unit.enclosing_procedure(node)
            is_local_variable = (
                isinstance(procedure, FUNCTION_NODES + (ast.Lambda,))
                and func.id in self.unit.local_names(procedure)
            )
            return CallTarget(func.id, is_local=not is_local_variable)
        if isinstance(func, ast.Attribute):
            on_receiver = isinstance(func.value, ast.Name) and func.value.id in SELF_NAMES
            return CallTarget(func.attr, is_local=on_receiver, on_receiver=on_receiver)
        return None

    def enclosing_procedure(self, node: ast.AST) -> Optional[ast.AST]:
        return self.unit.enclosing_procedure(node)

    def _method_class(self, node: ast.AST) -> Optional[str]:
        """Qualified class name when ``node`` sits directly in a method body."""
        procedure = self.unit.enclosing_procedure(node)
        if isinstance(procedure, FUNCTION_NODES):
            owner = self.unit.parent(procedure)
            if isinstance(owner, ast.ClassDef):
                return self.unit.qualname(owner)
        return None

    def find_procedure(self, node: ast.AST, target: CallTarget) -> Optional[ast.AST]:
        if target.on_receiver:
            owner = self._method_class(node)
            if owner is None:
                return None
            return self.unit.find_procedure(f"{owner}.{target.name}")
        return self.unit.find_procedure(target.name)

    def procedure_key(self, procedure: ast.AST) -> Hashable:
        return procedure

    def argument_values(self, site: ast.Call, argument: Argument) -> List[ast.AST]:
        if isinstance(argument, int):
            if not 0 <= argument < len(site.args):
                return []
            if any(isinstance(arg, ast.Starred) for arg in site.args[:argument + 1]):
                return []
            return [site.args[argument]]
        for keyword in site.keywords:
            if keyword.arg == argument:
                return [keyword.value]
        return []

    def immediate_constants(self, site: ast.Call, argument: Argument) -> List[str]:
        values = self.argument_values(site, argument)
        if not values:
            return []
        candidate = try_extract(values[0], self)
        return [candidate.value] if candidate is not None else []

    def argument_count(self, site: ast.Call) -> Optional[int]:
        return len(site.args) + len(site.keywords)

    def find_call_sites(self, names: Sequence[str]) -> Iterator[ast.Call]:
        wanted = set(names)
        sites = [
            node for node in ast.walk(self.unit.tree)
            if isinstance(node, ast.Call) and self.site_name(node) in wanted
        ]
        return iter(sorted(sites, key=self.position))

    def site_name(self, site: ast.Call) -> Optional[str]:
        if isinstance(site.func, ast.Name):
            return site.func.id
        if isinstance(site.func, ast.Attribute):
            return site.func.attr
        return None

    def site_line(self, site: ast.Call) -> Optional[int]:
        return getattr(site, "lineno", None)

    def describe(self, node: ast.AST) -> str:
        return f"{type(node).__name__}@{getattr(node, 'lineno', '?')}"
