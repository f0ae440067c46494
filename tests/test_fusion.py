import pytest

from wqvm.fusion import FusionStats, fuse, fuse_once
from wqvm.instruction import CompiledFunction, Instruction, Opcode
from wqvm.nodes import BinaryOperator


def ins(op, *args):
    return Instruction(op, args)


POP = ins(Opcode.POP)
RET = ins(Opcode.RETURN)


@pytest.mark.parametrize(
    "first, fused, counter",
    [
        (ins(Opcode.STORE_LOCAL_KEEP, 3), ins(Opcode.STORE_LOCAL, 3), "slk_pop"),
        (ins(Opcode.STORE_VAR_KEEP, "a"), ins(Opcode.STORE_VAR, "a"), "svk_pop"),
        (
            ins(Opcode.INDEX_ASSIGN_LOCAL, 2),
            ins(Opcode.INDEX_ASSIGN_LOCAL_DROP, 2),
            "idx_local_pop",
        ),
        (ins(Opcode.INDEX_ASSIGN), ins(Opcode.INDEX_ASSIGN_DROP), "idx_global_pop"),
    ],
)
def test_keep_then_pop_is_fused(first, fused, counter):
    code = [first, POP, RET]
    stats = FusionStats()
    assert fuse_once(code, stats) is True
    assert code == [fused, RET]
    assert getattr(stats, counter) == 1


def test_local_greater_than_zero_branch():
    code = [
        ins(Opcode.LOAD_LOCAL, 1),
        ins(Opcode.LOAD_CONST, 0),
        ins(Opcode.BINARY_OP, BinaryOperator.GREATER_THAN),
        ins(Opcode.JUMP_IF_FALSE, 5),
        ins(Opcode.LOAD_LOCAL, 1),
        RET,
    ]
    stats = fuse(code)
    assert code == [
        ins(Opcode.JUMP_IF_LEZ_LOCAL, 1, 2),
        ins(Opcode.LOAD_LOCAL, 1),
        RET,
    ]
    assert stats.ll0_gt_jifalse == 1


def test_false_constant_is_not_zero():
    code = [
        ins(Opcode.LOAD_LOCAL, 1),
        ins(Opcode.LOAD_CONST, False),
        ins(Opcode.BINARY_OP, BinaryOperator.GREATER_THAN),
        ins(Opcode.JUMP_IF_FALSE, 4),
    ]
    before = list(code)
    assert fuse_once(code, FusionStats()) is False
    assert code == before


def test_less_than_branch_becomes_jump_if_ge():
    code = [
        ins(Opcode.LOAD_LOCAL, 0),
        ins(Opcode.LOAD_LOCAL, 1),
        ins(Opcode.BINARY_OP, BinaryOperator.LESS_THAN),
        ins(Opcode.JUMP_IF_FALSE, 6),
        ins(Opcode.LOAD_CONST, 1),
        ins(Opcode.JUMP, 0),
        RET,
    ]
    stats = fuse(code)
    assert code == [
        ins(Opcode.LOAD_LOCAL, 0),
        ins(Opcode.LOAD_LOCAL, 1),
        ins(Opcode.JUMP_IF_GE, 5),
        ins(Opcode.LOAD_CONST, 1),
        ins(Opcode.JUMP, 0),
        RET,
    ]
    assert stats.lt_jifalse == 1


def test_jump_into_removed_instruction_moves_forward():
    code = [
        ins(Opcode.JUMP, 2),
        ins(Opcode.STORE_LOCAL_KEEP, 0),
        POP,
        ins(Opcode.LOAD_LOCAL, 0),
        RET,
    ]
    fuse(code)
    assert code == [
        ins(Opcode.JUMP, 2),
        ins(Opcode.STORE_LOCAL, 0),
        ins(Opcode.LOAD_LOCAL, 0),
        RET,
    ]


def test_jump_to_end_maps_to_new_end():
    code = [
        ins(Opcode.JUMP_IF_FALSE, 3),
        ins(Opcode.STORE_VAR_KEEP, "v"),
        POP,
    ]
    fuse(code)
    assert code == [ins(Opcode.JUMP_IF_FALSE, 2), ins(Opcode.STORE_VAR, "v")]


def test_nested_function_constant_is_fused():
    body = [ins(Opcode.STORE_LOCAL_KEEP, 0), POP, ins(Opcode.LOAD_LOCAL, 0), RET]
    func = CompiledFunction(params=("a",), locals=1, instructions=body)
    code = [ins(Opcode.LOAD_CONST, func), RET]
    stats = fuse(code)
    assert func.instructions == [
        ins(Opcode.STORE_LOCAL, 0),
        ins(Opcode.LOAD_LOCAL, 0),
        RET,
    ]
    assert stats.slk_pop == 1
    assert len(code) == 2


def test_unchanged_code_reports_false():
    code = [ins(Opcode.LOAD_CONST, 1), POP, ins(Opcode.LOAD_VAR, "x")]
    before = list(code)
    stats = FusionStats()
    assert fuse_once(code, stats) is False
    assert code == before
    assert stats == FusionStats()


def test_empty_code():
    code = []
    assert fuse(code) == FusionStats()
    assert code == []


def test_fuse_reaches_fixed_point():
    code = [
        ins(Opcode.STORE_VAR_KEEP, "a"),
        POP,
        ins(Opcode.INDEX_ASSIGN),
        POP,
        ins(Opcode.LOAD_VAR, "a"),
        ins(Opcode.LOAD_CONST, 3),
        ins(Opcode.BINARY_OP, BinaryOperator.LESS_THAN),
        ins(Opcode.JUMP_IF_FALSE, 0),
    ]
    stats = fuse(code)
    assert stats.svk_pop == 1
    assert stats.idx_global_pop == 1
    assert stats.lt_jifalse == 1
    assert fuse_once(code, FusionStats()) is False
    assert all(i.op is not Opcode.POP for i in code)
    assert code[-1] == ins(Opcode.JUMP_IF_GE, 0)