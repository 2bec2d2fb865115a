"""
Frontend: load one compilation unit for analysis.

A unit is a single Python module. Two views are available:
- SourceUnit: the parsed ``ast`` plus parent links and per-scope bindings
- CodeUnit: the compiled module code object plus lazily built CFGs

Both own a SymbolTable. Units are built once and only read by the analysis.
"""

from __future__ import annotations

import ast
import dis
import importlib.util
import logging
import marshal
import types
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List, Optional, Set, Union

from ..cfg import CFGConstructionError, ControlFlowGraph, build_cfg
from .symbols import SymbolTable, is_class_body, iter_code_objects, iter_scope

logger = logging.getLogger(__name__)

PROCEDURE_NODES = (ast.Module, ast.FunctionDef, ast.AsyncFunctionDef, ast.ClassDef, ast.Lambda)
FUNCTION_NODES = (ast.FunctionDef, ast.AsyncFunctionDef)

PYC_HEADER_SIZE = 16


@dataclass
class SourceUnit:
    """A parsed module with the navigation the tree adapter needs."""
    path: str
    source: str
    tree: ast.Module
    symbols: SymbolTable
    parents: Dict[ast.AST, ast.AST] = field(default_factory=dict, repr=False)
    _locals: Dict[ast.AST, Set[str]] = field(default_factory=dict, repr=False)

    @classmethod
    def from_tree(cls, tree: ast.Module, source: str, path: str,
                  known: Optional[Dict[str, str]] = None) -> "SourceUnit":
        parents = {
            child: parent
            for parent in ast.walk(tree)
            for child in ast.iter_child_nodes(parent)
        }
        return cls(path=path, source=source, tree=tree,
                   symbols=SymbolTable.from_tree(tree, known), parents=parents)

    def parent(self, node: ast.AST) -> Optional[ast.AST]:
        return self.parents.get(node)

    def encloses(self, ancestor: ast.AST, node: ast.AST) -> bool:
        """True if ``ancestor`` is a strict ancestor of ``node``."""
        current = self.parents.get(node)
        while current is not None:
            if current is ancestor:
                return True
            current = self.parents.get(current)
        return False

    def enclosing_procedure(self, node: ast.AST) -> Optional[ast.AST]:
        """Innermost function, lambda, class body or module containing ``node``."""
        current = self.parents.get(node)
        while current is not None:
            if isinstance(current, PROCEDURE_NODES):
                return current
            current = self.parents.get(current)
        return None

    def qualname(self, node: ast.AST) -> str:
        """``__qualname__`` the compiler would give a def or class node."""
        if isinstance(node, ast.Module):
            return "<module>"
        parts = [getattr(node, "name", "<lambda>")]
        current = self.parents.get(node)
        while current is not None and not isinstance(current, ast.Module):
            if isinstance(current, FUNCTION_NODES + (ast.Lambda,)):
                parts.append(getattr(current, "name", "<lambda>") + ".<locals>")
            elif isinstance(current, ast.ClassDef):
                parts.append(current.name)
            current = self.parents.get(current)
        return ".".join(reversed(parts))

    def body_of(self, procedure: ast.AST) -> List[ast.AST]:
        if isinstance(procedure, ast.Lambda):
            return [procedure.body]
        return list(procedure.body)

    def local_names(self, procedure: ast.AST) -> Set[str]:
        """Names bound in the scope of ``procedure`` (parameters included)."""
        cached = self._locals.get(procedure)
        if cached is not None:
            return cached

        names: Set[str] = set()
        declared: Set[str] = set()
        if isinstance(procedure, FUNCTION_NODES + (ast.Lambda,)):
            args = procedure.args
            for arg in args.posonlyargs + args.args + args.kwonlyargs:
                names.add(arg.arg)
            for arg in (args.vararg, args.kwarg):
                if arg is not None:
                    names.add(arg.arg)

        for node in iter_scope(self.body_of(procedure)):
            if isinstance(node, ast.Name) and isinstance(node.ctx, (ast.Store, ast.Del)):
                names.add(node.id)
            elif isinstance(node, (ast.FunctionDef, ast.AsyncFunctionDef, ast.ClassDef)):
                names.add(node.name)
            elif isinstance(node, (ast.Import, ast.ImportFrom)):
                for alias in node.names:
                    names.add(alias.asname or alias.name.split(".")[0])
            elif isinstance(node, (ast.Global, ast.Nonlocal)):
                declared.update(node.names)
            elif isinstance(node, ast.ExceptHandler) and node.name:
                names.add(node.name)

        result = names - declared
        self._locals[procedure] = result
        return result

    def find_procedure(self, qualname: str) -> Optional[ast.AST]:
        """Find a def by its qualified name."""
        for node in ast.walk(self.tree):
            if isinstance(node, FUNCTION_NODES) and self.qualname(node) == qualname:
                return node
        return None


@dataclass
class CodeUnit:
    """A compiled module with CFGs built on demand."""
    path: str
    code: types.CodeType
    symbols: SymbolTable
    _cfgs: Dict[types.CodeType, ControlFlowGraph] = field(default_factory=dict, repr=False)
    _instructions: Dict[types.CodeType, List[dis.Instruction]] = field(default_factory=dict, repr=False)

    @classmethod
    def from_code(cls, code: types.CodeType, path: str,
                  known: Optional[Dict[str, str]] = None) -> "CodeUnit":
        return cls(path=path, code=code, symbols=SymbolTable.from_code(code, known))

    def iter_code(self):
        return iter_code_objects(self.code)

    def find_code(self, qualname: str) -> Optional[types.CodeType]:
        """Find a function body by its qualified name."""
        for code in self.iter_code():
            if code is self.code or is_class_body(code):
                continue
            if code.co_qualname == qualname:
                return code
        return None

    def instructions(self, code: types.CodeType) -> List[dis.Instruction]:
        cached = self._instructions.get(code)
        if cached is None:
            cached = list(dis.get_instructions(code))
            self._instructions[code] = cached
        return cached

    def cfg_for(self, code: types.CodeType) -> ControlFlowGraph:
        """
        Build (once) the CFG of a code object in this unit.

        Raises:
            CFGConstructionError: if the bytecode cannot be partitioned
        """
        cfg = self._cfgs.get(code)
        if cfg is not None:
            return cfg
        try:
            cfg = build_cfg(code)
        except Exception as e:
            logger.warning("Cannot build CFG for %s in %s: %s", code.co_qualname, self.path, e)
            raise CFGConstructionError(f"{self.path}:{code.co_qualname}: {e}") from e
        self._cfgs[code] = cfg
        return cfg


def _read_text(filepath: Path) -> Optional[str]:
    try:
        return filepath.read_text(encoding="utf-8")
    except (OSError, UnicodeDecodeError) as e:
        logger.warning("Error loading %s: %s", filepath, e)
        return None


def load_source_string(source: str, filename: str = "<string>",
                       known: Optional[Dict[str, str]] = None) -> Optional[SourceUnit]:
    """
    Parse Python source into a SourceUnit.

    Returns:
        SourceUnit, or None on syntax error
    """
    try:
        tree = ast.parse(source, filename=filename)
    except (SyntaxError, ValueError) as e:
        logger.warning("Error parsing %s: %s", filename, e)
        return None
    return SourceUnit.from_tree(tree, source, filename, known)


def load_source_file(filepath: Union[str, Path],
                     known: Optional[Dict[str, str]] = None) -> Optional[SourceUnit]:
    filepath = Path(filepath)
    source = _read_text(filepath)
    if source is None:
        return None
    return load_source_string(source, str(filepath), known)


def load_code_string(source: str, filename: str = "<string>",
                     known: Optional[Dict[str, str]] = None) -> Optional[CodeUnit]:
    """
    Compile Python source into a CodeUnit.

    Returns:
        CodeUnit, or None on error
    """
    try:
        code = compile(source, filename, "exec")
    except (SyntaxError, ValueError) as e:
        logger.warning("Error compiling %s: %s", filename, e)
        return None
    return CodeUnit.from_code(code, filename, known)


def load_code_file(filepath: Union[str, Path],
                   known: Optional[Dict[str, str]] = None) -> Optional[CodeUnit]:
    """
    Load a CodeUnit from a ``.py`` source or a compiled ``.pyc`` file.

    A ``.pyc`` must have been produced by the running interpreter; its magic
    number is checked before unmarshalling.
    """
    filepath = Path(filepath)
    if filepath.suffix != ".pyc":
        source = _read_text(filepath)
        if source is None:
            return None
        return load_code_string(source, str(filepath), known)

    try:
        data = filepath.read_bytes()
    except OSError as e:
        logger.warning("Error loading %s: %s", filepath, e)
        return None

    if data[:4] != importlib.util.MAGIC_NUMBER:
        logger.warning("Error loading %s: bytecode was compiled by a different Python version", filepath)
        return None
    try:
        code = marshal.loads(data[PYC_HEADER_SIZE:])
    except (EOFError, ValueError, TypeError) as e:
        logger.warning("Error loading %s: %s", filepath, e)
        return None
    if not isinstance(code, types.CodeType):
        logger.warning("Error loading %s: no module code object", filepath)
        return None
    return CodeUnit.from_code(code, str(filepath), known)
