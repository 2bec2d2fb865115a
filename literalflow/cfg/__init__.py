"""CFG: control-flow graph for bytecode, normal edges only."""

from .control_flow import (
    ControlFlowGraph,
    BasicBlock,
    EdgeType,
    CFGConstructionError,
    build_cfg,
    format_cfg,
    is_jump,
)

__all__ = [
    'ControlFlowGraph',
    'BasicBlock',
    'EdgeType',
    'CFGConstructionError',
    'build_cfg',
    'format_cfg',
    'is_jump',
]
