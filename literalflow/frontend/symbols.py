"""
Symbol resolution for one compilation unit (a Python module).

The table answers one question for the analysis core: does a (possibly
dotted) name denote a constant with a known string value?  It is built once
per unit, either from the syntax tree or purely from bytecode, and is only
ever queried afterwards.

Sources of constants:
- Module-level names assigned exactly once to a string literal
- Class attributes assigned exactly once to a string literal (``Cls.NAME``)
- Known constants supplied by configuration (``LocationManager.GPS_PROVIDER``)
"""

from __future__ import annotations

import ast
import dis
import logging
import types
from collections import Counter
from dataclasses import dataclass, field
from enum import Enum, auto
from typing import Dict, Iterable, Iterator, List, Optional

logger = logging.getLogger(__name__)

SCOPE_NODES = (ast.FunctionDef, ast.AsyncFunctionDef, ast.ClassDef, ast.Lambda,
               ast.ListComp, ast.SetComp, ast.DictComp, ast.GeneratorExp)

SELF_NAMES = ("self", "cls")


class SymbolKind(Enum):
    FIELD = auto()
    VARIABLE = auto()


@dataclass(frozen=True)
class ResolvedSymbol:
    """What the front end knows about a name at one program point."""
    name: str
    kind: SymbolKind
    value: Optional[str] = None

    @property
    def is_field(self) -> bool:
        return self.kind is SymbolKind.FIELD

    @property
    def is_variable(self) -> bool:
        return self.kind is SymbolKind.VARIABLE

    def constant_value(self) -> Optional[str]:
        return self.value


def fold_string(node: ast.AST) -> Optional[str]:
    """
    Return the string an expression folds to at compile time, if any.

    Mirrors CPython's AST optimizer for the cases that matter here: a ``str``
    constant, or ``+`` between two foldable strings.
    """
    if isinstance(node, ast.Constant) and isinstance(node.value, str):
        return node.value
    if isinstance(node, ast.BinOp) and isinstance(node.op, ast.Add):
        left = fold_string(node.left)
        if left is None:
            return None
        right = fold_string(node.right)
        if right is None:
            return None
        return left + right
    return None


def iter_scope(nodes: Iterable[ast.AST]) -> Iterator[ast.AST]:
    """
    Yield every node belonging to the scope of ``nodes``, in source order.

    Nested function, class, lambda and comprehension nodes are yielded but not
    entered.
    """
    stack = list(reversed(list(nodes)))
    while stack:
        node = stack.pop()
        yield node
        if isinstance(node, SCOPE_NODES):
            continue
        stack.extend(reversed(list(ast.iter_child_nodes(node))))


@dataclass
class SymbolTable:
    """
    Constant and alias table for a single module.

    Keys are dotted names as they are spelled after alias expansion, e.g.
    ``GPS`` for a module constant or ``Providers.GPS`` for a class attribute.
    """
    constants: Dict[str, str] = field(default_factory=dict)
    aliases: Dict[str, str] = field(default_factory=dict)
    known: Dict[str, str] = field(default_factory=dict)

    def expand(self, dotted: str) -> str:
        """Replace a leading import alias with the imported module path."""
        head, sep, rest = dotted.partition(".")
        target = self.aliases.get(head)
        if target is None:
            return dotted
        return target + sep + rest

    def resolve(self, dotted: str, class_scope: Optional[str] = None) -> Optional[ResolvedSymbol]:
        """
        Resolve a dotted name to a constant field.

        Args:
            dotted: Name as written, e.g. ``LocationManager.GPS_PROVIDER``
            class_scope: Qualified name of the enclosing class, used to map
                ``self.X`` / ``cls.X`` onto ``Class.X``

        Returns:
            A FIELD symbol with its string value, or None
        """
        head, _, rest = dotted.partition(".")
        if head in SELF_NAMES and rest:
            if class_scope is None:
                return None
            dotted = f"{class_scope}.{rest}"

        for name in (dotted, self.expand(dotted)):
            if name in self.constants:
                return ResolvedSymbol(name, SymbolKind.FIELD, self.constants[name])
            if name in self.known:
                return ResolvedSymbol(name, SymbolKind.FIELD, self.known[name])

        expanded = self.expand(dotted)
        for key, value in self.known.items():
            if expanded.endswith("." + key):
                return ResolvedSymbol(key, SymbolKind.FIELD, value)
        return None

    # ------------------------------------------------------------------
    # Construction from a syntax tree
    # ------------------------------------------------------------------

    @classmethod
    def from_tree(cls, tree: ast.Module, known: Optional[Dict[str, str]] = None) -> "SymbolTable":
        table = cls(known=dict(known or {}))
        table._scan_tree_scope(tree.body, prefix="", module_level=True)

        # ``global X`` anywhere means X can be rebound from a function body.
        rebound = {name for node in ast.walk(tree) if isinstance(node, ast.Global) for name in node.names}
        for name in rebound:
            table.constants.pop(name, None)
        logger.debug("Tree symbol table: %d constants, %d aliases", len(table.constants), len(table.aliases))
        return table

    def _scan_tree_scope(self, body: List[ast.stmt], prefix: str, module_level: bool):
        counts: Counter = Counter()
        values: Dict[str, str] = {}

        for node in iter_scope(body):
            if isinstance(node, ast.Name) and isinstance(node.ctx, (ast.Store, ast.Del)):
                counts[node.id] += 1
            elif isinstance(node, (ast.FunctionDef, ast.AsyncFunctionDef, ast.ClassDef)):
                counts[node.name] += 1
                if isinstance(node, ast.ClassDef) and node in body:
                    self._scan_tree_scope(node.body, prefix=f"{prefix}{node.name}.", module_level=False)
            elif isinstance(node, ast.Import):
                for alias in node.names:
                    bound = alias.asname or alias.name.split(".")[0]
                    counts[bound] += 1
                    if alias.asname and module_level:
                        self.aliases[alias.asname] = alias.name
            elif isinstance(node, ast.ImportFrom):
                for alias in node.names:
                    bound = alias.asname or alias.name
                    counts[bound] += 1
                    if module_level and node.level == 0 and node.module and alias.name != "*":
                        self.aliases[bound] = f"{node.module}.{alias.name}"
            elif isinstance(node, ast.Assign) and len(node.targets) == 1:
                target = node.targets[0]
                text = fold_string(node.value)
                if isinstance(target, ast.Name) and text is not None:
                    values.setdefault(target.id, text)
            elif isinstance(node, ast.AnnAssign) and node.value is not None and isinstance(node.target, ast.Name):
                text = fold_string(node.value)
                if text is not None:
                    values.setdefault(node.target.id, text)

        for name, text in values.items():
            if counts[name] == 1 and not name.startswith("__"):
                self.constants[prefix + name] = text

    # ------------------------------------------------------------------
    # Construction from bytecode
    # ------------------------------------------------------------------

    @classmethod
    def from_code(cls, code: types.CodeType, known: Optional[Dict[str, str]] = None) -> "SymbolTable":
        table = cls(known=dict(known or {}))
        table._scan_code_scope(code, prefix="", module_level=True)

        rebound = set()
        for nested in iter_code_objects(code):
            for instr in dis.get_instructions(nested):
                if instr.opname == "STORE_GLOBAL":
                    rebound.add(instr.argval)
            if nested is not code and is_class_body(nested):
                table._scan_code_scope(nested, prefix=f"{nested.co_qualname}.", module_level=False)
        for name in rebound:
            table.constants.pop(name, None)
        logger.debug("Bytecode symbol table: %d constants, %d aliases", len(table.constants), len(table.aliases))
        return table

    def _scan_code_scope(self, code: types.CodeType, prefix: str, module_level: bool):
        instructions = list(dis.get_instructions(code))
        counts: Counter = Counter()
        values: Dict[str, str] = {}

        for i, instr in enumerate(instructions):
            if instr.opname in ("STORE_NAME", "STORE_GLOBAL", "DELETE_NAME"):
                counts[instr.argval] += 1
                prev = instructions[i - 1] if i else None
                if (prev is not None and prev.opname == "LOAD_CONST" and isinstance(prev.argval, str)
                        and not instr.is_jump_target and not prev.is_jump_target):
                    values.setdefault(instr.argval, prev.argval)
            elif instr.opname == "IMPORT_NAME" and module_level:
                self._record_import(instructions, i)

        for name, text in values.items():
            if counts[name] == 1 and not name.startswith("__"):
                self.constants[prefix + name] = text

    def _record_import(self, instructions: List[dis.Instruction], index: int):
        module = instructions[index].argval
        prev = instructions[index - 1] if index else None
        fromlist = prev.argval if prev is not None and prev.opname == "LOAD_CONST" else None
        stores = ("STORE_NAME", "STORE_GLOBAL")
        j = index + 1

        if fromlist is None:
            # import a.b.c as n -> IMPORT_FROM chain, then a single store
            while j < len(instructions) and instructions[j].opname in ("IMPORT_FROM", "SWAP", "POP_TOP"):
                j += 1
            if j < len(instructions) and instructions[j].opname in stores:
                bound = instructions[j].argval
                if bound != module.split(".")[0]:
                    self.aliases[bound] = module
            return

        while j + 1 < len(instructions) and instructions[j].opname == "IMPORT_FROM":
            store = instructions[j + 1]
            if store.opname not in stores:
                break
            self.aliases[store.argval] = f"{module}.{instructions[j].argval}"
            j += 2


def iter_code_objects(code: types.CodeType) -> Iterator[types.CodeType]:
    """Yield ``code`` and every code object nested in its constants, depth first."""
    stack = [code]
    while stack:
        current = stack.pop()
        yield current
        nested = [const for const in current.co_consts if isinstance(const, types.CodeType)]
        stack.extend(reversed(nested))


def is_class_body(code: types.CodeType) -> bool:
    """Class bodies are the only code objects that store ``__qualname__`` by name."""
    return any(
        instr.opname == "STORE_NAME" and instr.argval == "__qualname__"
        for instr in dis.get_instructions(code)
    )
