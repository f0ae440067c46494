"""Bytecode instructions, captures and constant values used by the virtual machine."""

from __future__ import annotations

import enum
from dataclasses import dataclass, field
from typing import Any, Optional, Tuple, Union


class Opcode(enum.Enum):
    """Every operation the virtual machine understands."""

    LOAD_CONST = "LoadConst"
    LOAD_CLOSURE = "LoadClosure"
    LOAD_VAR = "LoadVar"
    LOAD_CAPTURE = "LoadCapture"
    STORE_VAR = "StoreVar"
    STORE_VAR_KEEP = "StoreVarKeep"
    LOAD_LOCAL = "LoadLocal"
    STORE_LOCAL = "StoreLocal"
    STORE_LOCAL_KEEP = "StoreLocalKeep"
    BINARY_OP = "BinaryOp"
    UNARY_OP = "UnaryOp"
    CALL_BUILTIN = "CallBuiltin"
    CALL_BUILTIN_ID = "CallBuiltinId"
    CALL_LOCAL = "CallLocal"
    CALL_USER = "CallUser"
    CALL_ANON = "CallAnon"
    CALL_OR_INDEX = "CallOrIndex"
    MAKE_LIST = "MakeList"
    MAKE_DICT = "MakeDict"
    INDEX = "Index"
    INDEX_ASSIGN = "IndexAssign"
    INDEX_ASSIGN_LOCAL = "IndexAssignLocal"
    INDEX_ASSIGN_DROP = "IndexAssignDrop"
    INDEX_ASSIGN_LOCAL_DROP = "IndexAssignLocalDrop"
    JUMP = "Jump"
    JUMP_IF_FALSE = "JumpIfFalse"
    JUMP_IF_GE = "JumpIfGE"
    JUMP_IF_LEZ_LOCAL = "JumpIfLEZLocal"
    POP = "Pop"
    ASSERT = "Assert"
    RETURN = "Return"
    TRY = "Try"


# Number of operands each opcode carries.
_ARITY = {
    Opcode.LOAD_CONST: 1,
    # params, locals, captures, instructions
    Opcode.LOAD_CLOSURE: 4,
    Opcode.LOAD_VAR: 1,
    Opcode.LOAD_CAPTURE: 1,
    Opcode.STORE_VAR: 1,
    Opcode.STORE_VAR_KEEP: 1,
    Opcode.LOAD_LOCAL: 1,
    Opcode.STORE_LOCAL: 1,
    Opcode.STORE_LOCAL_KEEP: 1,
    Opcode.BINARY_OP: 1,
    Opcode.UNARY_OP: 1,
    Opcode.CALL_BUILTIN: 2,
    Opcode.CALL_BUILTIN_ID: 2,
    Opcode.CALL_LOCAL: 2,
    Opcode.CALL_USER: 2,
    Opcode.CALL_ANON: 1,
    Opcode.CALL_OR_INDEX: 1,
    Opcode.MAKE_LIST: 1,
    Opcode.MAKE_DICT: 1,
    Opcode.INDEX: 0,
    Opcode.INDEX_ASSIGN: 0,
    Opcode.INDEX_ASSIGN_LOCAL: 1,
    Opcode.INDEX_ASSIGN_DROP: 0,
    Opcode.INDEX_ASSIGN_LOCAL_DROP: 1,
    Opcode.JUMP: 1,
    Opcode.JUMP_IF_FALSE: 1,
    Opcode.JUMP_IF_GE: 1,
    Opcode.JUMP_IF_LEZ_LOCAL: 2,
    Opcode.POP: 0,
    Opcode.ASSERT: 0,
    Opcode.RETURN: 0,
    Opcode.TRY: 1,
}

_JUMP_OPCODES = frozenset(
    {Opcode.JUMP, Opcode.JUMP_IF_FALSE, Opcode.JUMP_IF_GE, Opcode.JUMP_IF_LEZ_LOCAL}
)


class CaptureKind(enum.Enum):
    """Where a closure takes a captured value from when it is created."""

    LOCAL = "local"
    FROM_CAPTURE = "from_capture"
    GLOBAL = "global"


@dataclass(frozen=True)
class Capture:
    """One captured value: a parent local slot, a parent capture index or a global name."""

    kind: CaptureKind
    source: Union[int, str]

    def __post_init__(self) -> None:
        if self.kind is CaptureKind.GLOBAL:
            if not isinstance(self.source, str):
                raise TypeError("a global capture needs a variable name")
        elif (
            not isinstance(self.source, int)
            or isinstance(self.source, bool)
            or self.source < 0
        ):
            raise TypeError("a slot capture needs a non-negative index")


@dataclass(frozen=True)
class Symbol:
    """A symbol constant, such as a dictionary key or a variable reference."""

    name: str

    def __str__(self) -> str:
        return self.name


@dataclass
class CompiledFunction:
    """A function constant: parameters, local slot count and its code."""

    params: Optional[Tuple[str, ...]]
    locals: int
    instructions: list = field(default_factory=list)

    def __post_init__(self) -> None:
        if self.params is not None:
            self.params = tuple(self.params)
        self.instructions = list(self.instructions)


@dataclass(frozen=True)
class Instruction:
    """A single operation together with its operands."""

    op: Opcode
    args: Tuple[Any, ...] = ()

    def __post_init__(self) -> None:
        args = tuple(self.args)
        object.__setattr__(self, "args", args)
        expected = _ARITY[self.op]
        if len(args) != expected:
            raise ValueError(
                f"{self.op.value} takes {expected} operand(s), got {len(args)}"
            )

    def is_jump(self) -> bool:
        """Whether this instruction transfers control to an absolute position."""
        return self.op in _JUMP_OPCODES

    def with_target(self, target: int) -> "Instruction":
        """Return the same jump aimed at another position."""
        if not self.is_jump():
            raise ValueError(f"{self.op.value} has no jump target")
        return Instruction(self.op, self.args[:-1] + (target,))