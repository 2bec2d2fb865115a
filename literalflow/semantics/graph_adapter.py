"""
Instruction-graph adapter: nodes are bytecode instructions in a CFG.

An explicit operand stack replaces expression nesting. Each walk node is a
Cursor: the next instruction to execute plus an immutable snapshot of the
simulated stack, so sibling branches never observe each other's pushes and
pops. Stack entries are small expression trees (StackEntry) recording which
instruction produced them and from which operands.

Depth is kept exact by reconciling, after every instruction, with
``dis.stack_effect`` for the edge actually taken; instructions that are not
modelled degrade to opaque entries instead of shifting call arguments.

Variables are fast-local slot numbers. In module and class bodies they are
the names used by LOAD_NAME / STORE_NAME.
"""

from __future__ import annotations

import dis
import logging
import sys
import types
from dataclasses import dataclass, field
from enum import Enum, auto
from typing import (Any, Dict, Hashable, Iterable, Iterator, List, Optional,
                    Sequence, Set, Tuple)

from ..cfg import CFGConstructionError, EdgeType
from ..cfg.control_flow import RAISE_OPS, RETURN_OPS
from ..frontend.loader import CodeUnit
from ..frontend.symbols import SELF_NAMES, ResolvedSymbol, SymbolKind, is_class_body
from .adapter import (DEFAULT_MAX_STATES, Argument, CallTarget, Gate,
                      RepresentationAdapter)

logger = logging.getLogger(__name__)

CALL_OPS = frozenset({'CALL', 'CALL_KW'})
CONST_LOADS = frozenset({'LOAD_CONST', 'LOAD_SMALL_INT'})
FAST_LOADS = frozenset({'LOAD_FAST', 'LOAD_FAST_CHECK', 'LOAD_FAST_AND_CLEAR', 'LOAD_FAST_BORROW'})
PAIR_LOADS = frozenset({'LOAD_FAST_LOAD_FAST', 'LOAD_FAST_BORROW_LOAD_FAST_BORROW'})
SINGLE_STORES = frozenset({'STORE_FAST', 'STORE_NAME', 'STORE_DEREF'})

NO_STACK_OPS = frozenset({
    'NOP', 'RESUME', 'RESUME_CHECK', 'CACHE', 'EXTENDED_ARG', 'PRECALL',
    'JUMP_FORWARD', 'JUMP_BACKWARD', 'JUMP_BACKWARD_NO_INTERRUPT', 'JUMP_ABSOLUTE',
    'JUMP', 'JUMP_NO_INTERRUPT', 'NOT_TAKEN', 'MAKE_CELL', 'COPY_FREE_VARS',
    'SETUP_ANNOTATIONS', 'DELETE_FAST', 'DELETE_NAME', 'DELETE_GLOBAL', 'DELETE_DEREF',
})

# Instructions that consume operands without producing a result
PURE_CONSUMERS = frozenset({
    'STORE_ATTR', 'STORE_SUBSCR', 'STORE_SLICE', 'STORE_GLOBAL', 'DELETE_ATTR',
    'DELETE_SUBSCR', 'END_FOR', 'POP_ITER', 'POP_EXCEPT', 'LIST_APPEND', 'SET_ADD',
    'MAP_ADD', 'LIST_EXTEND', 'SET_UPDATE', 'DICT_UPDATE', 'DICT_MERGE',
})

# Skipped when looking for the instruction "just before" a call
HEURISTIC_SKIPPED = frozenset({'PRECALL', 'CACHE', 'EXTENDED_ARG', 'KW_NAMES'})


class EntryKind(Enum):
    CONST = auto()
    VARIABLE = auto()
    NAME = auto()
    ATTRIBUTE = auto()
    CALL = auto()
    OPERATION = auto()
    NULL = auto()
    OPAQUE = auto()


@dataclass(frozen=True)
class StackEntry:
    """
    One simulated stack slot.

    ``offset`` is the producing instruction. ``slot`` is the variable
    identity for VARIABLE entries (and for NAME entries loaded by LOAD_NAME).
    CALL entries keep the callee as their first operand and the keyword
    names in ``value``.
    """
    kind: EntryKind
    offset: int
    name: Optional[str] = None
    value: Any = None
    slot: Optional[Hashable] = None
    operands: Tuple["StackEntry", ...] = ()


def _opaque(offset: int) -> StackEntry:
    return StackEntry(EntryKind.OPAQUE, offset)


@dataclass(frozen=True)
class BytecodeSite:
    """
    One source call inside one code object.

    The compiler may copy the tail of a call into each arm of a branch, so a
    single source call can own several CALL / CALL_KW instructions. ``offset``
    is the first of them and ``copies`` lists them all.
    """
    code: types.CodeType
    offset: int
    name: Optional[str] = field(default=None, compare=False)
    line: Optional[int] = field(default=None, compare=False)
    copies: Tuple[int, ...] = field(default=(), compare=False)

    @property
    def offsets(self) -> Tuple[int, ...]:
        return self.copies or (self.offset,)


@dataclass(frozen=True)
class GraphValue:
    """A stack entry consumed in block ``anchor`` of ``code``."""
    code: types.CodeType
    entry: StackEntry
    anchor: int


@dataclass(frozen=True)
class Cursor:
    """Walk node: the next instruction to run and the stack before it."""
    code: types.CodeType
    block: int
    index: int
    offset: int
    stack: Tuple[StackEntry, ...] = ()
    kwnames: Optional[Tuple[str, ...]] = None
    target_block: Optional[int] = None


def _select_callee(pair: Sequence[StackEntry]) -> Optional[StackEntry]:
    """Pick the callable out of the two entries below a call's arguments."""
    for kind in (EntryKind.ATTRIBUTE, EntryKind.NAME, EntryKind.VARIABLE, EntryKind.CALL):
        for entry in pair:
            if entry.kind is kind:
                return entry
    return None


def _call_operands(stack: Sequence[StackEntry], instr: dis.Instruction,
                   kwnames: Optional[Tuple[str, ...]]):
    """
    Split the stack at a call into (callee, arguments, keyword names).

    Layout below the arguments is a callable / self-or-null pair whose order
    differs between interpreter versions; only the callable matters here.
    """
    argc = instr.arg or 0
    extra = 1 if instr.opname == 'CALL_KW' else 0
    needed = argc + 2 + extra
    if len(stack) < needed:
        return None

    top = len(stack)
    if extra:
        names_entry = stack[-1]
        if names_entry.kind is EntryKind.CONST and isinstance(names_entry.value, tuple):
            names = tuple(names_entry.value)
        else:
            names = ()
    else:
        names = tuple(kwnames or ())

    args = tuple(stack[top - extra - argc:top - extra])
    callee = _select_callee(stack[top - needed:top - needed + 2])
    return callee, args, names


def _dotted(entry: StackEntry) -> Optional[str]:
    if entry.kind in (EntryKind.NAME, EntryKind.VARIABLE):
        return entry.name
    if entry.kind is EntryKind.ATTRIBUTE and entry.operands:
        base = _dotted(entry.operands[0])
        return f"{base}.{entry.name}" if base is not None else None
    return None


def _source_span(instr: dis.Instruction) -> Optional[Tuple[int, int, int, int]]:
    """Full source range of an instruction, or None when positions are stripped."""
    positions = getattr(instr, "positions", None)
    if positions is None or None in positions:
        return None
    return tuple(positions)


def _line_of(instr: dis.Instruction) -> Optional[int]:
    positions = getattr(instr, "positions", None)
    if positions is not None and positions.lineno is not None:
        return positions.lineno
    return instr.starts_line if isinstance(instr.starts_line, int) and not isinstance(instr.starts_line, bool) else None


class GraphAdapter(RepresentationAdapter[Any, types.CodeType, BytecodeSite]):
    """Traversal contract over the bytecode of a compiled module."""

    def __init__(self, unit: CodeUnit, max_states: int = DEFAULT_MAX_STATES):
        super().__init__(max_states)
        self.unit = unit
        self._class_bodies: Dict[types.CodeType, bool] = {}
        self._stored_names: Dict[types.CodeType, Set[str]] = {}

    # ------------------------------------------------------------------
    # Stack simulation
    # ------------------------------------------------------------------

    def _stack_effect(self, instr: dis.Instruction, jump: bool) -> Optional[int]:
        if instr.opname == 'PRECALL':
            return 0
        if instr.opname == 'CALL' and sys.version_info < (3, 12):
            # 3.11 splits the call's effect between PRECALL and CALL
            return -((instr.arg or 0) + 1)
        oparg = instr.arg if instr.opcode >= dis.HAVE_ARGUMENT else None
        try:
            return dis.stack_effect(instr.opcode, oparg, jump=jump)
        except ValueError:
            return None

    def _execute(self, code: types.CodeType, instr: dis.Instruction,
                 stack: Tuple[StackEntry, ...], kwnames: Optional[Tuple[str, ...]],
                 jump: bool) -> Tuple[Tuple[StackEntry, ...], Optional[Tuple[str, ...]]]:
        """Run one instruction on a copy of ``stack`` along one outgoing edge."""
        work = list(stack)
        effect = self._stack_effect(instr, jump)
        expected = max(0, len(work) + effect) if effect is not None else None

        kwnames = self._simulate(code, instr, work, kwnames, effect, jump)

        if expected is not None:
            while len(work) > expected:
                work.pop()
            while len(work) < expected:
                work.append(_opaque(instr.offset))
        return tuple(work), kwnames

    def _simulate(self, code: types.CodeType, instr: dis.Instruction, stack: List[StackEntry],
                  kwnames: Optional[Tuple[str, ...]], effect: Optional[int],
                  jump: bool) -> Optional[Tuple[str, ...]]:
        op = instr.opname
        offset = instr.offset

        def pop() -> StackEntry:
            return stack.pop() if stack else _opaque(offset)

        if op in NO_STACK_OPS:
            pass
        elif op == 'KW_NAMES':
            value = instr.argval if isinstance(instr.argval, tuple) else code.co_consts[instr.arg]
            kwnames = tuple(value)
        elif op in CONST_LOADS:
            stack.append(StackEntry(EntryKind.CONST, offset, value=instr.argval))
        elif op in FAST_LOADS:
            stack.append(StackEntry(EntryKind.VARIABLE, offset, name=instr.argval, slot=instr.arg))
        elif op in PAIR_LOADS:
            first, second = instr.argval
            stack.append(StackEntry(EntryKind.VARIABLE, offset, name=first, slot=instr.arg >> 4))
            stack.append(StackEntry(EntryKind.VARIABLE, offset, name=second, slot=instr.arg & 15))
        elif op == 'LOAD_DEREF':
            stack.append(StackEntry(EntryKind.VARIABLE, offset, name=instr.argval, slot=('deref', instr.argval)))
        elif op in SINGLE_STORES:
            pop()
        elif op == 'STORE_FAST_STORE_FAST':
            pop()
            pop()
        elif op == 'STORE_FAST_LOAD_FAST':
            pop()
            stack.append(StackEntry(EntryKind.VARIABLE, offset, name=instr.argval[1], slot=instr.arg & 15))
        elif op in ('LOAD_GLOBAL', 'LOAD_NAME'):
            slot = instr.argval if op == 'LOAD_NAME' else None
            stack.append(StackEntry(EntryKind.NAME, offset, name=instr.argval, slot=slot))
            if effect == 2:
                stack.append(StackEntry(EntryKind.NULL, offset))
        elif op in ('LOAD_ATTR', 'LOAD_METHOD'):
            owner = pop()
            stack.append(StackEntry(EntryKind.ATTRIBUTE, offset, name=instr.argval, operands=(owner,)))
            if effect == 1:
                stack.append(owner)
        elif op == 'PUSH_NULL':
            stack.append(StackEntry(EntryKind.NULL, offset))
        elif op == 'COPY':
            n = instr.arg
            stack.append(stack[-n] if len(stack) >= n else _opaque(offset))
        elif op == 'SWAP':
            n = instr.arg
            if len(stack) >= n:
                stack[-1], stack[-n] = stack[-n], stack[-1]
        elif op in ('POP_TOP', 'RETURN_VALUE'):
            pop()
        elif op == 'BINARY_OP':
            rhs = pop()
            lhs = pop()
            if '[' in instr.argrepr:
                stack.append(_opaque(offset))
            else:
                stack.append(StackEntry(EntryKind.OPERATION, offset, name=instr.argrepr, operands=(lhs, rhs)))
        elif op in CALL_OPS:
            split = _call_operands(stack, instr, kwnames)
            needed = (instr.arg or 0) + 2 + (1 if op == 'CALL_KW' else 0)
            del stack[max(0, len(stack) - needed):]
            if split is None:
                stack.append(_opaque(offset))
            else:
                callee, args, names = split
                callee = callee if callee is not None else _opaque(offset)
                stack.append(StackEntry(EntryKind.CALL, offset, name=callee.name,
                                        value=names, operands=(callee,) + args))
            kwnames = None
        elif op == 'UNPACK_SEQUENCE':
            sequence = pop()
            count = instr.arg or 0
            if (sequence.kind is EntryKind.CONST and isinstance(sequence.value, tuple)
                    and len(sequence.value) == count):
                for item in reversed(sequence.value):
                    stack.append(StackEntry(EntryKind.CONST, offset, value=item))
            else:
                stack.extend(_opaque(offset) for _ in range(count))
        elif op.startswith('POP_JUMP'):
            pop()
        elif op in ('JUMP_IF_TRUE_OR_POP', 'JUMP_IF_FALSE_OR_POP'):
            if not jump:
                pop()
        elif op == 'FOR_ITER' and not jump:
            stack.append(_opaque(offset))
        elif op == 'RETURN_CONST':
            pass
        elif effect is None:
            logger.debug("No stack effect for %s at %d", op, offset)
        elif op in PURE_CONSUMERS:
            for _ in range(-effect):
                pop()
        elif effect > 0:
            stack.extend(_opaque(offset) for _ in range(effect))
        else:
            for _ in range(1 - effect):
                pop()
            stack.append(_opaque(offset))
        return kwnames

    # ------------------------------------------------------------------
    # Cursors
    # ------------------------------------------------------------------

    def _cursor(self, code: types.CodeType, block_id: int, index: int,
                stack: Tuple[StackEntry, ...], kwnames: Optional[Tuple[str, ...]],
                target_block: Optional[int]) -> Cursor:
        block = self.unit.cfg_for(code).blocks[block_id]
        if index < len(block.instructions):
            offset = block.instructions[index].offset
        else:
            offset = block.start_offset
        return Cursor(code, block_id, index, offset, stack, kwnames, target_block)

    def _instruction(self, cursor: Cursor) -> Optional[dis.Instruction]:
        block = self.unit.cfg_for(cursor.code).blocks[cursor.block]
        if cursor.index < len(block.instructions):
            return block.instructions[cursor.index]
        return None

    def _successors(self, cursor: Cursor) -> List[Cursor]:
        cfg = self.unit.cfg_for(cursor.code)
        block = cfg.blocks[cursor.block]
        instr = self._instruction(cursor)

        if instr is not None and (instr.opname in RETURN_OPS or instr.opname in RAISE_OPS):
            return []

        if instr is not None and cursor.index < len(block.instructions) - 1:
            stack, kwnames = self._execute(cursor.code, instr, cursor.stack, cursor.kwnames, jump=False)
            return [self._cursor(cursor.code, cursor.block, cursor.index + 1, stack, kwnames, cursor.target_block)]

        reaching = cfg.blocks_reaching(cursor.target_block) if cursor.target_block is not None else None
        successors = []
        for target, edge in block.successors:
            if reaching is not None and target not in reaching:
                continue
            if instr is None:
                stack, kwnames = cursor.stack, cursor.kwnames
            else:
                jump = edge in (EdgeType.JUMP, EdgeType.COND_TAKEN)
                stack, kwnames = self._execute(cursor.code, instr, cursor.stack, cursor.kwnames, jump)
            successors.append(self._cursor(cursor.code, target, 0, stack, kwnames, cursor.target_block))
        return successors

    # ------------------------------------------------------------------
    # Traversal primitives
    # ------------------------------------------------------------------

    def visit_children_with_collection_gate(self, node, gate: Gate) -> Iterable[Tuple[Any, Gate]]:
        if isinstance(node, GraphValue):
            if gate.is_collecting and node.entry.kind is EntryKind.OPERATION:
                return [(GraphValue(node.code, operand, node.anchor), gate) for operand in node.entry.operands]
            return []
        # Depth is recomputed from dominance at every instruction
        return [(successor, Gate()) for successor in self._successors(node)]

    def is_assignment_target(self, node, subject: Hashable) -> bool:
        if not isinstance(node, Cursor):
            return False
        instr = self._instruction(node)
        if instr is None:
            return False
        op = instr.opname
        if op == 'STORE_FAST':
            return instr.arg == subject
        if op == 'STORE_NAME':
            return instr.argval == subject
        if op == 'STORE_DEREF':
            return ('deref', instr.argval) == subject
        if op == 'STORE_FAST_STORE_FAST':
            return subject in (instr.arg >> 4, instr.arg & 15)
        if op == 'STORE_FAST_LOAD_FAST':
            return instr.arg >> 4 == subject
        return False

    def is_conditional_boundary(self, node) -> bool:
        if isinstance(node, Cursor):
            if node.target_block is None:
                return False
            cfg = self.unit.cfg_for(node.code)
            return not cfg.is_dominated_by(node.target_block, node.block)
        if isinstance(node, GraphValue):
            cfg = self.unit.cfg_for(node.code)
            producer = cfg.offset_to_block.get(node.entry.offset)
            if producer is None:
                return False
            return not cfg.is_dominated_by(node.anchor, producer)
        return False

    # ------------------------------------------------------------------
    # Node queries
    # ------------------------------------------------------------------

    def assigned_value(self, node, subject: Hashable) -> Optional[GraphValue]:
        instr = self._instruction(node)
        stack = node.stack
        if instr is None or not stack:
            return None
        entry = stack[-1]
        if instr.opname == 'STORE_FAST_STORE_FAST' and (instr.arg >> 4) != subject:
            if len(stack) < 2:
                return None
            entry = stack[-2]
        return GraphValue(node.code, entry, node.block)

    def returned_value(self, node) -> Optional[GraphValue]:
        if not isinstance(node, Cursor):
            return None
        instr = self._instruction(node)
        if instr is None:
            return None
        if instr.opname == 'RETURN_VALUE' and node.stack:
            return GraphValue(node.code, node.stack[-1], node.block)
        if instr.opname == 'RETURN_CONST':
            entry = StackEntry(EntryKind.CONST, instr.offset, value=instr.argval)
            return GraphValue(node.code, entry, node.block)
        return None

    def _use_location(self, use) -> Tuple[types.CodeType, int]:
        if isinstance(use, GraphValue):
            return use.code, use.entry.offset
        return use.code, use.offset

    def entry_nodes(self, procedure: types.CodeType, use) -> List[Cursor]:
        cfg = self.unit.cfg_for(procedure)
        target_block = None
        if use is not None:
            _, offset = self._use_location(use)
            target_block = cfg.offset_to_block.get(offset)
            if target_block is None:
                return []
        return [self._cursor(procedure, cfg.entry_block, 0, (), None, target_block)]

    def is_use(self, node, use) -> bool:
        if not isinstance(node, Cursor):
            return False
        code, offset = self._use_location(use)
        return node.code is code and node.offset == offset

    def position(self, node) -> Tuple[int, ...]:
        if isinstance(node, GraphValue):
            return (node.entry.offset,)
        return (node.offset,)

    def literal_value(self, node) -> Optional[str]:
        if isinstance(node, GraphValue) and node.entry.kind is EntryKind.CONST and isinstance(node.entry.value, str):
            return node.entry.value
        return None

    def _is_class_body(self, code: types.CodeType) -> bool:
        cached = self._class_bodies.get(code)
        if cached is None:
            cached = is_class_body(code)
            self._class_bodies[code] = cached
        return cached

    def _names_stored_in(self, code: types.CodeType) -> Set[str]:
        cached = self._stored_names.get(code)
        if cached is None:
            cached = {
                instr.argval for instr in self.unit.instructions(code)
                if instr.opname in ('STORE_NAME', 'DELETE_NAME')
            }
            self._stored_names[code] = cached
        return cached

    def _method_class(self, code: types.CodeType) -> Optional[str]:
        """Qualified class name when ``code`` is a method body."""
        if '.' not in code.co_qualname or self._is_class_body(code):
            return None
        owner = code.co_qualname.rsplit('.', 1)[0]
        if owner.endswith('<locals>'):
            return None
        return owner

    def resolve(self, node) -> Optional[ResolvedSymbol]:
        if not isinstance(node, GraphValue):
            return None
        entry = node.entry
        symbols = self.unit.symbols

        if entry.kind is EntryKind.VARIABLE:
            return ResolvedSymbol(entry.name, SymbolKind.VARIABLE)

        if entry.kind is EntryKind.NAME:
            if entry.slot is not None:
                if self._is_class_body(node.code):
                    symbol = symbols.resolve(f"{node.code.co_qualname}.{entry.name}")
                else:
                    symbol = symbols.resolve(entry.name)
                if symbol is not None:
                    return symbol
                if entry.name in self._names_stored_in(node.code):
                    return ResolvedSymbol(entry.name, SymbolKind.VARIABLE)
            return symbols.resolve(entry.name)

        if entry.kind is EntryKind.ATTRIBUTE:
            dotted = _dotted(entry)
            if dotted is None:
                return None
            return symbols.resolve(dotted, class_scope=self._method_class(node.code))
        return None

    def variable_subject(self, node) -> Optional[Hashable]:
        if not isinstance(node, GraphValue):
            return None
        entry = node.entry
        if entry.kind is EntryKind.VARIABLE:
            return entry.slot
        if entry.kind is EntryKind.NAME and entry.slot is not None:
            symbol = self.resolve(node)
            if symbol is not None and symbol.is_variable:
                return entry.slot
        return None

    def call_target(self, node) -> Optional[CallTarget]:
        if not isinstance(node, GraphValue) or node.entry.kind is not EntryKind.CALL:
            return None
        callee = node.entry.operands[0]
        if callee.kind is EntryKind.NAME:
            return CallTarget(callee.name, is_local=True)
        if callee.kind is EntryKind.ATTRIBUTE:
            owner = callee.operands[0] if callee.operands else None
            on_receiver = (owner is not None and owner.kind is EntryKind.VARIABLE
                           and owner.name in SELF_NAMES)
            return CallTarget(callee.name, is_local=on_receiver, on_receiver=on_receiver)
        if callee.kind is EntryKind.VARIABLE:
            return CallTarget(callee.name, is_local=False)
        return None

    def enclosing_procedure(self, node) -> Optional[types.CodeType]:
        if isinstance(node, (GraphValue, Cursor)):
            return node.code
        return None

    def find_procedure(self, node, target: CallTarget) -> Optional[types.CodeType]:
        if target.on_receiver:
            owner = self._method_class(node.code)
            if owner is None:
                return None
            return self.unit.find_code(f"{owner}.{target.name}")
        return self.unit.find_code(target.name)

    def procedure_key(self, procedure: types.CodeType) -> Hashable:
        return procedure

    # ------------------------------------------------------------------
    # Call sites
    # ------------------------------------------------------------------

    def _argument_entry(self, cursor: Cursor, argument: Argument) -> Optional[StackEntry]:
        instr = self._instruction(cursor)
        if instr is None or instr.opname not in CALL_OPS:
            return None
        split = _call_operands(cursor.stack, instr, cursor.kwnames)
        if split is None:
            return None
        _callee, args, names = split
        positional = len(args) - len(names)
        if isinstance(argument, int):
            return args[argument] if 0 <= argument < positional else None
        if argument in names:
            return args[positional + names.index(argument)]
        return None

    def argument_values(self, site: BytecodeSite, argument: Argument) -> List[GraphValue]:
        cfg = self.unit.cfg_for(site.code)
        values: Dict[GraphValue, None] = {}
        for offset in site.offsets:
            anchor = cfg.offset_to_block[offset]
            for node, _gate, at_use in self.walk(site.code, BytecodeSite(site.code, offset)):
                if not at_use:
                    continue
                entry = self._argument_entry(node, argument)
                if entry is not None:
                    values.setdefault(GraphValue(site.code, entry, anchor), None)
        return sorted(values, key=lambda value: value.entry.offset)

    def _preceding_constant(self, code: types.CodeType, offset: int) -> Optional[str]:
        instructions = self.unit.instructions(code)
        index = next((i for i, instr in enumerate(instructions) if instr.offset == offset), None)
        if index is None:
            return None
        index -= 1
        while index >= 0 and instructions[index].opname in HEURISTIC_SKIPPED:
            index -= 1
        if index < 0:
            return None
        previous = instructions[index]
        if previous.opname == 'LOAD_CONST' and isinstance(previous.argval, str):
            return previous.argval
        return None

    def immediate_constants(self, site: BytecodeSite, argument: Argument) -> List[str]:
        found: Dict[str, None] = {}
        for offset in site.offsets:
            value = self._preceding_constant(site.code, offset)
            if value is not None:
                found.setdefault(value, None)
        return list(found)

    def find_call_sites(self, names: Sequence[str]) -> Iterator[BytecodeSite]:
        wanted = set(names)
        # (code, source span) -> (callee name, instruction offsets, line)
        groups: Dict[Tuple[types.CodeType, Hashable], Tuple[str, Set[int], Optional[int]]] = {}
        for code in self.unit.iter_code():
            try:
                for node, _gate, _at_use in self.walk(code):
                    instr = self._instruction(node)
                    if instr is None or instr.opname not in CALL_OPS:
                        continue
                    split = _call_operands(node.stack, instr, node.kwnames)
                    callee = split[0] if split is not None else None
                    if callee is None or callee.name not in wanted:
                        continue
                    span = _source_span(instr)
                    key = (code, span if span is not None else instr.offset)
                    if key not in groups:
                        groups[key] = (callee.name, set(), _line_of(instr))
                    groups[key][1].add(instr.offset)
            except CFGConstructionError as e:
                logger.warning("Skipping %s: %s", code.co_qualname, e)

        sites = []
        for (code, _span), (name, offsets, line) in groups.items():
            ordered = tuple(sorted(offsets))
            sites.append(BytecodeSite(code, ordered[0], name, line, ordered))
        return iter(sorted(sites, key=lambda site: (site.line or 0, site.offset)))

    def site_name(self, site: BytecodeSite) -> Optional[str]:
        return site.name

    def site_line(self, site: BytecodeSite) -> Optional[int]:
        return site.line

    def describe(self, node) -> str:
        if isinstance(node, GraphValue):
            return f"{node.code.co_qualname}:{node.entry.kind.name}@{node.entry.offset}"
        if isinstance(node, Cursor):
            return f"{node.code.co_qualname}@{node.offset}"
        if isinstance(node, types.CodeType):
            return node.co_qualname
        return repr(node)
