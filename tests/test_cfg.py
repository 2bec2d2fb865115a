"""
Tests for CFG construction over normal control flow.
"""

import pytest

from literalflow.cfg import EdgeType, build_cfg, format_cfg, is_jump


def branchy(flag):
    if flag:
        provider = "gps"
    else:
        provider = "network"
    return provider


def straight():
    provider = "passive"
    return provider


def looping(items):
    provider = "passive"
    for item in items:
        provider = item
    return provider


def _block_storing(cfg, value):
    for bid, block in cfg.blocks.items():
        if any(instr.argval == value for instr in block.instructions if instr.opname == 'LOAD_CONST'):
            return bid
    raise AssertionError(f"no block loads {value!r}")


class TestStructure:
    """Blocks and edges."""

    def test_straight_line_is_one_block(self):
        cfg = build_cfg(straight.__code__)
        assert len(cfg.blocks) == 1
        assert cfg.exit_blocks == [cfg.entry_block]

    def test_every_instruction_has_a_block(self):
        cfg = build_cfg(branchy.__code__)
        for block in cfg.blocks.values():
            for instr in block.instructions:
                assert cfg.offset_to_block[instr.offset] == block.id

    def test_branch_has_two_successors(self):
        cfg = build_cfg(branchy.__code__)
        entry = cfg.blocks[cfg.entry_block]
        edges = {edge for _target, edge in entry.successors}
        assert edges == {EdgeType.COND_TAKEN, EdgeType.COND_NOT_TAKEN}

    def test_predecessors_mirror_successors(self):
        cfg = build_cfg(looping.__code__)
        for block in cfg.blocks.values():
            for target, _edge in block.successors:
                assert block.id in cfg.blocks[target].predecessors

    def test_loop_has_back_edge(self):
        cfg = build_cfg(looping.__code__)
        back_edges = [
            (block.id, target)
            for block in cfg.blocks.values()
            for target, _edge in block.successors
            if cfg.blocks[target].start_offset <= block.start_offset
        ]
        assert back_edges

    def test_jumps_are_recognised(self):
        cfg = build_cfg(branchy.__code__)
        terminator = cfg.blocks[cfg.entry_block].terminator
        assert is_jump(terminator)


class TestDominance:
    """Dominance decides whether a definition is conditional."""

    def test_entry_dominates_everything(self):
        cfg = build_cfg(branchy.__code__)
        for bid in cfg.blocks:
            assert cfg.is_dominated_by(bid, cfg.entry_block)

    def test_branch_arms_do_not_dominate_each_other(self):
        cfg = build_cfg(branchy.__code__)
        gps = _block_storing(cfg, "gps")
        network = _block_storing(cfg, "network")
        assert gps != network
        assert not cfg.is_dominated_by(network, gps)
        assert not cfg.is_dominated_by(gps, network)

    def test_loop_body_does_not_dominate_exit(self):
        cfg = build_cfg(looping.__code__)
        body = cfg.offset_to_block[next(
            instr.offset for block in cfg.blocks.values() for instr in block.instructions
            if instr.opname.startswith('STORE_FAST') and instr.argval in ('provider', ('provider', 'item'))
            and block.id != cfg.entry_block
        )]
        reachable_exits = [bid for bid in cfg.exit_blocks if cfg.blocks[bid].predecessors]
        assert reachable_exits
        for bid in reachable_exits:
            assert not cfg.is_dominated_by(bid, body)


class TestReachability:
    """Backward reachability used to prune the walk."""

    def test_target_reaches_itself(self):
        cfg = build_cfg(branchy.__code__)
        assert cfg.entry_block in cfg.blocks_reaching(cfg.entry_block)

    def test_arm_does_not_reach_other_arm(self):
        cfg = build_cfg(branchy.__code__)
        gps = _block_storing(cfg, "gps")
        network = _block_storing(cfg, "network")
        reaching = cfg.blocks_reaching(network)
        assert cfg.entry_block in reaching
        assert gps not in reaching

    def test_result_is_cached(self):
        cfg = build_cfg(branchy.__code__)
        assert cfg.blocks_reaching(cfg.entry_block) is cfg.blocks_reaching(cfg.entry_block)


class TestFormatting:
    def test_dump_names_code_and_blocks(self):
        cfg = build_cfg(branchy.__code__)
        text = format_cfg(cfg)
        assert text.startswith("CFG for branchy")
        assert text.count("  block ") == len(cfg.blocks)


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
