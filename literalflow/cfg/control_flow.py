"""
Control Flow Graph for Python bytecode, restricted to normal control flow.

The graph adapter walks this structure while simulating the operand stack:
- Normal edges: JUMP, conditional jumps, fallthrough
- Exception table edges are not modelled; handler code is unreachable here

The CFG provides:
1. Basic block structure
2. Dominance, used to decide whether a store or a value is conditional
3. Backward reachability, used to prune paths that can never reach a use
"""

from dataclasses import dataclass, field
from typing import Dict, List, Set, Optional, Tuple
import dis
import types
from enum import Enum, auto


class CFGConstructionError(Exception):
    """Raised when a code object cannot be turned into a control-flow graph."""


class EdgeType(Enum):
    """Type of CFG edge."""
    FALLTHROUGH = auto()      # Normal sequential execution
    JUMP = auto()             # Unconditional jump
    COND_TAKEN = auto()       # Conditional branch, jump taken
    COND_NOT_TAKEN = auto()   # Conditional branch, fallthrough


RETURN_OPS = frozenset({'RETURN_VALUE', 'RETURN_CONST'})
RAISE_OPS = frozenset({'RAISE_VARARGS', 'RERAISE'})
UNCONDITIONAL_JUMPS = frozenset({
    'JUMP_FORWARD',
    'JUMP_BACKWARD',
    'JUMP_BACKWARD_NO_INTERRUPT',
    'JUMP_ABSOLUTE',
    'JUMP',
    'JUMP_NO_INTERRUPT',
})

_JUMP_OPCODES = frozenset(dis.hasjrel) | frozenset(dis.hasjabs) | frozenset(getattr(dis, 'hasjump', ()))


def is_jump(instr: dis.Instruction) -> bool:
    """True for any instruction that can transfer control to ``argval``."""
    return instr.opcode in _JUMP_OPCODES and isinstance(instr.argval, int)


@dataclass
class BasicBlock:
    """
    A basic block in the CFG.

    Single entry, single exit under normal control flow.
    """
    id: int
    start_offset: int
    end_offset: int  # Exclusive
    instructions: List[dis.Instruction]

    # Successor edges: (target_block_id, edge_type)
    successors: List[Tuple[int, EdgeType]] = field(default_factory=list)

    # Predecessor block IDs
    predecessors: List[int] = field(default_factory=list)

    @property
    def is_exit(self) -> bool:
        """Is this an exit block (returns or raises)?"""
        if not self.instructions:
            return False
        return self.instructions[-1].opname in RETURN_OPS | RAISE_OPS

    @property
    def terminator(self) -> Optional[dis.Instruction]:
        return self.instructions[-1] if self.instructions else None


@dataclass
class ControlFlowGraph:
    """
    CFG for one code object (function, class body or module).
    """
    code: types.CodeType
    blocks: Dict[int, BasicBlock]  # block_id -> BasicBlock
    entry_block: int
    exit_blocks: List[int]

    # Dominance info (populated by _compute_dominance)
    dominators: Dict[int, Set[int]] = field(default_factory=dict)  # block -> set of dominators

    # Offset to block mapping
    offset_to_block: Dict[int, int] = field(default_factory=dict)  # instruction offset -> block_id

    _reaching: Dict[int, Set[int]] = field(default_factory=dict, repr=False)

    def is_dominated_by(self, block: int, dominator: int) -> bool:
        """Check if 'dominator' dominates 'block'."""
        return dominator in self.dominators.get(block, set())

    def blocks_reaching(self, target: int) -> Set[int]:
        """
        All blocks from which ``target`` is reachable (``target`` included).

        Computed once per target by a backward walk over predecessors.
        """
        cached = self._reaching.get(target)
        if cached is not None:
            return cached
        seen = {target}
        worklist = [target]
        while worklist:
            bid = worklist.pop()
            for pred in self.blocks[bid].predecessors:
                if pred not in seen:
                    seen.add(pred)
                    worklist.append(pred)
        self._reaching[target] = seen
        return seen


def build_cfg(code: types.CodeType) -> ControlFlowGraph:
    """
    Build a control flow graph from a code object.

    Algorithm:
    1. Find basic block boundaries (leaders)
    2. Build blocks and edges
    3. Compute dominance

    Returns:
        CFG with blocks, edges and dominators
    """
    instructions = list(dis.get_instructions(code))
    if not instructions:
        empty_block = BasicBlock(0, 0, 0, [])
        return ControlFlowGraph(
            code=code,
            blocks={0: empty_block},
            entry_block=0,
            exit_blocks=[0]
        )

    leaders = _find_leaders(instructions)
    blocks, offset_to_block = _build_blocks(instructions, leaders)
    _connect_edges(blocks, offset_to_block)

    exit_blocks = [bid for bid, blk in blocks.items() if blk.is_exit]
    cfg = ControlFlowGraph(
        code=code,
        blocks=blocks,
        entry_block=0,  # First block is always entry
        exit_blocks=exit_blocks,
        offset_to_block=offset_to_block
    )
    _compute_dominance(cfg)
    return cfg


def _find_leaders(instructions: List[dis.Instruction]) -> Set[int]:
    """
    Find basic block leaders (first instruction of each block).

    A leader is:
    - First instruction of the code object
    - Target of any jump
    - Instruction following a jump, return or raise
    """
    leaders = {instructions[0].offset}

    for i, instr in enumerate(instructions):
        ends_block = False
        if is_jump(instr):
            leaders.add(instr.argval)
            ends_block = True
        elif instr.opname in RETURN_OPS or instr.opname in RAISE_OPS:
            ends_block = True

        if ends_block and i + 1 < len(instructions):
            leaders.add(instructions[i + 1].offset)

    return leaders


def _build_blocks(
    instructions: List[dis.Instruction],
    leaders: Set[int]
) -> Tuple[Dict[int, BasicBlock], Dict[int, int]]:
    """Build basic blocks from instructions and leaders."""
    blocks = {}
    offset_to_block = {}

    sorted_leaders = sorted(leaders)
    cursor = 0

    for i, leader_offset in enumerate(sorted_leaders):
        if i + 1 < len(sorted_leaders):
            end_offset = sorted_leaders[i + 1]
        else:
            end_offset = instructions[-1].offset + 2

        block_instrs = []
        while cursor < len(instructions) and instructions[cursor].offset < end_offset:
            block_instrs.append(instructions[cursor])
            cursor += 1

        block = BasicBlock(
            id=i,
            start_offset=leader_offset,
            end_offset=end_offset,
            instructions=block_instrs
        )
        blocks[i] = block

        for instr in block_instrs:
            offset_to_block[instr.offset] = i

    return blocks, offset_to_block


def _connect_edges(blocks: Dict[int, BasicBlock], offset_to_block: Dict[int, int]):
    """Connect blocks with normal edges."""

    def link(block: BasicBlock, target_offset: int, edge: EdgeType):
        target_block = offset_to_block.get(target_offset)
        if target_block is None:
            return
        block.successors.append((target_block, edge))
        blocks[target_block].predecessors.append(block.id)

    for block in blocks.values():
        last_instr = block.terminator
        if last_instr is None:
            continue

        if last_instr.opname in RETURN_OPS or last_instr.opname in RAISE_OPS:
            continue

        if is_jump(last_instr):
            if last_instr.opname in UNCONDITIONAL_JUMPS:
                link(block, last_instr.argval, EdgeType.JUMP)
            else:
                # Jump target first, then fallthrough
                link(block, last_instr.argval, EdgeType.COND_TAKEN)
                link(block, block.end_offset, EdgeType.COND_NOT_TAKEN)
        else:
            link(block, block.end_offset, EdgeType.FALLTHROUGH)


def _compute_dominance(cfg: ControlFlowGraph):
    """
    Compute dominator sets using iterative dataflow.

    Algorithm: standard iterative dominance computation
    - dom[entry] = {entry}
    - dom[n] = {n} ∪ (∩ dom[p] for p in predecessors of n)
    """
    blocks = cfg.blocks
    entry = cfg.entry_block

    all_blocks = set(blocks.keys())
    cfg.dominators = {entry: {entry}}

    for bid in blocks:
        if bid != entry:
            cfg.dominators[bid] = all_blocks.copy()

    changed = True
    while changed:
        changed = False
        for bid in blocks:
            if bid == entry:
                continue

            block = blocks[bid]
            if not block.predecessors:
                continue

            pred_doms = [cfg.dominators[p] for p in block.predecessors if p in cfg.dominators]
            if pred_doms:
                new_dom = pred_doms[0].copy()
                for pd in pred_doms[1:]:
                    new_dom &= pd
                new_dom.add(bid)

                if new_dom != cfg.dominators[bid]:
                    cfg.dominators[bid] = new_dom
                    changed = True


def format_cfg(cfg: ControlFlowGraph) -> str:
    """Render a CFG as text, one block per paragraph (used by ``--verbose`` dumps)."""
    lines = [f"CFG for {cfg.code.co_qualname}"]
    for bid in sorted(cfg.blocks):
        block = cfg.blocks[bid]
        succs = ", ".join(f"{target}:{edge.name}" for target, edge in block.successors)
        lines.append(f"  block {bid} [{block.start_offset}, {block.end_offset}) -> {succs or 'exit'}")
        for instr in block.instructions:
            lines.append(f"    {instr.offset:4d} {instr.opname} {instr.argrepr}")
    return "\n".join(lines)
