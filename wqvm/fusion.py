"""Peephole fusion of common instruction sequences into combined instructions."""

from __future__ import annotations

from dataclasses import dataclass
from typing import List, Optional, Tuple

from .instruction import CompiledFunction, Instruction, Opcode
from .nodes import BinaryOperator


@dataclass
class FusionStats:
    """How many times each fusion pattern was applied."""

    slk_pop: int = 0
    svk_pop: int = 0
    idx_local_pop: int = 0
    idx_global_pop: int = 0
    lt_jifalse: int = 0
    ll0_gt_jifalse: int = 0


# An instruction followed by Pop becomes a single instruction that leaves nothing behind.
_DROP_FUSIONS = {
    Opcode.STORE_LOCAL_KEEP: (Opcode.STORE_LOCAL, "slk_pop"),
    Opcode.STORE_VAR_KEEP: (Opcode.STORE_VAR, "svk_pop"),
    Opcode.INDEX_ASSIGN_LOCAL: (Opcode.INDEX_ASSIGN_LOCAL_DROP, "idx_local_pop"),
    Opcode.INDEX_ASSIGN: (Opcode.INDEX_ASSIGN_DROP, "idx_global_pop"),
}


def _is_int_zero(value: object) -> bool:
    return type(value) is int and value == 0


def _match(
    old: List[Instruction], i: int, stats: FusionStats
) -> Optional[Tuple[Instruction, int]]:
    """Return the fused instruction starting at ``i`` and how many it replaces."""
    n = len(old)
    ins = old[i]

    if i + 1 < n and old[i + 1].op is Opcode.POP and ins.op in _DROP_FUSIONS:
        new_op, counter = _DROP_FUSIONS[ins.op]
        setattr(stats, counter, getattr(stats, counter) + 1)
        return Instruction(new_op, ins.args), 2

    if i + 3 < n:
        load, const, cmp, branch = old[i : i + 4]
        if (
            load.op is Opcode.LOAD_LOCAL
            and const.op is Opcode.LOAD_CONST
            and _is_int_zero(const.args[0])
            and cmp.op is Opcode.BINARY_OP
            and cmp.args[0] is BinaryOperator.GREATER_THAN
            and branch.op is Opcode.JUMP_IF_FALSE
        ):
            stats.ll0_gt_jifalse += 1
            fused = Instruction(
                Opcode.JUMP_IF_LEZ_LOCAL, (load.args[0], branch.args[0])
            )
            return fused, 4

    if (
        i + 1 < n
        and ins.op is Opcode.BINARY_OP
        and ins.args[0] is BinaryOperator.LESS_THAN
        and old[i + 1].op is Opcode.JUMP_IF_FALSE
    ):
        stats.lt_jifalse += 1
        return Instruction(Opcode.JUMP_IF_GE, old[i + 1].args), 2

    return None


def fuse_once(code: List[Instruction], stats: FusionStats) -> bool:
    """Apply one fusion pass to ``code`` in place; return whether anything changed.

    Function constants nested in the code are fused first.  Jump targets are
    moved to the first surviving instruction at or after their old position.
    """
    changed = False
    for ins in code:
        if ins.op is Opcode.LOAD_CONST and isinstance(ins.args[0], CompiledFunction):
            if fuse_once(ins.args[0].instructions, stats):
                changed = True

    old = list(code)
    n = len(old)
    if n == 0:
        return changed

    out: List[Instruction] = []
    new_index_of = {}
    i = 0
    while i < n:
        matched = _match(old, i, stats)
        new_index_of[i] = len(out)
        if matched is None:
            out.append(old[i])
            i += 1
        else:
            fused, width = matched
            out.append(fused)
            changed = True
            i += width

    if changed:
        old_to_new = [len(out)] * (n + 1)
        current = len(out)
        for idx in reversed(range(n)):
            if idx in new_index_of:
                current = new_index_of[idx]
            old_to_new[idx] = current
        code[:] = [
            ins.with_target(old_to_new[ins.args[-1]]) if ins.is_jump() else ins
            for ins in out
        ]

    return changed


def fuse(code: List[Instruction]) -> FusionStats:
    """Fuse ``code`` in place until no pattern applies; return the counts."""
    stats = FusionStats()
    while fuse_once(code, stats):
        pass
    return stats