"""Compilation of syntax trees into virtual machine instructions."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Mapping, Optional, Tuple, Union

from .fusion import FusionStats, fuse
from .instruction import Capture, CaptureKind, CompiledFunction, Instruction, Opcode, Symbol
from .nodes import (
    Assert,
    Assignment,
    BinaryOp,
    BinaryOperator,
    Block,
    Break,
    Call,
    CallAnonymous,
    Conditional,
    Continue,
    DictExpr,
    ForLoop,
    Function,
    Index,
    IndexAssign,
    ListExpr,
    Literal,
    Postfix,
    Return,
    Try,
    UnaryOp,
    Variable,
    WhileLoop,
    has_control_flow,
)

BuiltinTable = Union[Mapping[str, int], Iterable[str], None]

_IMPLICIT_PARAMS = ("x", "y", "z")
_UNROLL_LIMIT = 16
_CHUNKED_UNROLL_LIMIT = 64
_CHUNK = 8


class CompileError(Exception):
    """Base class for errors raised while compiling."""


class CompileSyntaxError(CompileError):
    """A construct used where the language does not allow it."""


class DomainError(CompileError):
    """An operand of the wrong shape for the construct using it."""


def _ins(op: Opcode, *args: Any) -> Instruction:
    return Instruction(op, args)


def _resolve_builtins(builtins: BuiltinTable) -> Dict[str, int]:
    if builtins is None:
        return {}
    if isinstance(builtins, Mapping):
        return dict(builtins)
    return {name: idx for idx, name in enumerate(builtins)}


@dataclass
class _LoopInfo:
    break_jumps: List[int] = field(default_factory=list)
    continue_jumps: List[int] = field(default_factory=list)


class Compiler:
    """Turns syntax tree nodes into a flat list of instructions.

    ``builtins`` maps builtin names to their numeric ids; an iterable of
    names numbers them by position.
    """

    def __init__(self, builtins: BuiltinTable = None) -> None:
        self.instructions: List[Instruction] = []
        self._builtins = _resolve_builtins(builtins)
        self._loop_id = 0
        self._loop_stack: List[_LoopInfo] = []
        self._fn_depth = 0
        self._locals: Dict[str, int] = {}
        self._capture_map: Dict[str, int] = {}
        self._captures: List[Capture] = []
        self._parent_fn: Optional[Tuple[str, int]] = None

    # -- slots and variables -------------------------------------------------

    def _local_slot(self, name: str) -> int:
        return self._locals.setdefault(name, len(self._locals))

    def local_count(self) -> int:
        """Number of local slots the compiled code uses."""
        return len(self._locals)

    def _add_capture(self, name: str, capture: Capture) -> int:
        idx = len(self._capture_map)
        self._capture_map[name] = idx
        self._captures.append(capture)
        return idx

    def _emit(self, op: Opcode, *args: Any) -> int:
        self.instructions.append(Instruction(op, args))
        return len(self.instructions) - 1

    def _emit_load(self, name: str) -> None:
        if self._fn_depth > 0:
            if name in self._locals:
                self._emit(Opcode.LOAD_LOCAL, self._locals[name])
            elif name in self._capture_map:
                self._emit(Opcode.LOAD_CAPTURE, self._capture_map[name])
            else:
                # globals are captured by value
                idx = self._add_capture(name, Capture(CaptureKind.GLOBAL, name))
                self._emit(Opcode.LOAD_CAPTURE, idx)
        else:
            self._emit(Opcode.LOAD_VAR, name)

    def _emit_store(self, name: str) -> None:
        if self._fn_depth > 0:
            self._emit(Opcode.STORE_LOCAL, self._local_slot(name))
        else:
            self._emit(Opcode.STORE_VAR, name)

    def _emit_store_keep(self, name: str) -> None:
        if self._fn_depth > 0:
            self._emit(Opcode.STORE_LOCAL_KEEP, self._local_slot(name))
        else:
            self._emit(Opcode.STORE_VAR_KEEP, name)

    def _compile_all(self, nodes: Iterable[Any]) -> None:
        for node in nodes:
            self.compile(node)

    def _recursive_slot(self, name: str) -> Optional[int]:
        if self._fn_depth > 0 and self._parent_fn is not None:
            parent_name, slot = self._parent_fn
            if parent_name == name:
                return slot
        return None

    # -- functions -------------------------------------------------------------

    def _compile_function(
        self, params: Optional[Tuple[str, ...]], body: Any, name: Optional[str] = None
    ) -> None:
        slot = self._local_slot(name) if name is not None and self._fn_depth > 0 else 0
        child = Compiler(self._builtins)
        child._fn_depth = self._fn_depth + 1
        if self._fn_depth > 0:
            # the function being defined is not captured: it is reached through its slot
            for local, parent_slot in sorted(self._locals.items(), key=lambda kv: kv[1]):
                if local != name:
                    child._add_capture(local, Capture(CaptureKind.LOCAL, parent_slot))
            for cap_name, parent_idx in sorted(
                self._capture_map.items(), key=lambda kv: kv[1]
            ):
                if cap_name not in child._capture_map:
                    child._add_capture(
                        cap_name, Capture(CaptureKind.FROM_CAPTURE, parent_idx)
                    )
            if name is not None:
                child._parent_fn = (name, slot)
        for param in params if params is not None else _IMPLICIT_PARAMS:
            child._local_slot(param)
        child.compile(body)

        code = child.instructions
        if name is not None and self._fn_depth > 0:
            code = [
                _ins(Opcode.CALL_LOCAL, slot, ins.args[1])
                if ins.op is Opcode.CALL_USER and ins.args[0] == name
                else ins
                for ins in code
            ]
        code.append(_ins(Opcode.RETURN))
        locals_count = child.local_count()
        if child._captures:
            self._emit(
                Opcode.LOAD_CLOSURE,
                params,
                locals_count,
                tuple(child._captures),
                code,
            )
        else:
            self._emit(
                Opcode.LOAD_CONST,
                CompiledFunction(params=params, locals=locals_count, instructions=code),
            )

    # -- loops -----------------------------------------------------------------

    def _patch_loop(self, info: _LoopInfo, end: int, continue_target: int) -> None:
        for pos in info.break_jumps:
            self.instructions[pos] = _ins(Opcode.JUMP, end)
        for pos in info.continue_jumps:
            self.instructions[pos] = _ins(Opcode.JUMP, continue_target)

    def _unrolled_iteration(self, index: int, body: Any) -> None:
        self._emit(Opcode.LOAD_CONST, index)
        self._emit_store("_n")
        self.compile(body)

    def _try_unroll(self, count: Any, body: Any) -> bool:
        if not (isinstance(count, Literal) and type(count.value) is int):
            return False
        n = count.value
        if n < 0 or has_control_flow(body):
            return False
        if n <= _UNROLL_LIMIT:
            if n == 0:
                self._emit(Opcode.LOAD_CONST, None)
            for i in range(n):
                self._unrolled_iteration(i, body)
                if i < n - 1:
                    self._emit(Opcode.POP)
            return True
        if n <= _CHUNKED_UNROLL_LIMIT:
            full_chunks, remainder = divmod(n, _CHUNK)
            for i in range(full_chunks * _CHUNK):
                self._unrolled_iteration(i, body)
                self._emit(Opcode.POP)
            for i in range(remainder):
                self._unrolled_iteration(full_chunks * _CHUNK + i, body)
                if i < remainder - 1:
                    self._emit(Opcode.POP)
            self.instructions.pop()
            return True
        return False

    def _compile_for(self, count: Any, body: Any) -> None:
        if self._try_unroll(count, body):
            return
        loop_id = self._loop_id
        self._loop_id += 1
        count_var = f"__count{loop_id}"
        result_var = f"__for_result{loop_id}"
        old_var = f"__old_n{loop_id}"

        self.compile(count)
        self._emit_store(count_var)
        self._emit(Opcode.LOAD_CONST, 0)
        self._emit_store("_n")
        self._emit(Opcode.LOAD_CONST, None)
        self._emit_store(result_var)
        start = len(self.instructions)
        self._emit_load("_n")
        self._emit_load(count_var)
        self._emit(Opcode.BINARY_OP, BinaryOperator.LESS_THAN)
        jump_pos = self._emit(Opcode.JUMP_IF_FALSE, 0)
        self._emit_load("_n")
        self._emit_store(old_var)
        self._loop_stack.append(_LoopInfo())
        self.compile(body)
        self._emit_store(result_var)
        continue_target = len(self.instructions)
        self._emit_load(old_var)
        self._emit(Opcode.LOAD_CONST, 1)
        self._emit(Opcode.BINARY_OP, BinaryOperator.ADD)
        self._emit_store("_n")
        self._emit(Opcode.JUMP, start)
        end = len(self.instructions)
        self.instructions[jump_pos] = _ins(Opcode.JUMP_IF_FALSE, end)
        self._patch_loop(self._loop_stack.pop(), end, continue_target)
        self._emit_load(result_var)

    def _compile_while(self, condition: Any, body: Any) -> None:
        start = len(self.instructions)
        self.compile(condition)
        jump_pos = self._emit(Opcode.JUMP_IF_FALSE, 0)
        self._loop_stack.append(_LoopInfo())
        self.compile(body)
        continue_target = len(self.instructions)
        self._emit(Opcode.POP)
        self._emit(Opcode.JUMP, start)
        end = len(self.instructions)
        self.instructions[jump_pos] = _ins(Opcode.JUMP_IF_FALSE, end)
        self._patch_loop(self._loop_stack.pop(), end, continue_target)
        self._emit(Opcode.LOAD_CONST, None)

    # -- calls -----------------------------------------------------------------

    def _compile_call(self, name: str, args: Tuple[Any, ...]) -> None:
        argc = len(args)
        if name in self._builtins:
            self._compile_all(args)
            self._emit(Opcode.CALL_BUILTIN_ID, self._builtins[name], argc)
        elif self._fn_depth > 0 and name in self._locals:
            self._compile_all(args)
            self._emit(Opcode.CALL_LOCAL, self._locals[name], argc)
        elif (slot := self._recursive_slot(name)) is not None:
            self._compile_all(args)
            self._emit(Opcode.CALL_LOCAL, slot, argc)
        elif self._fn_depth > 0 and name in self._capture_map:
            self._emit_load(name)
            self._compile_all(args)
            self._emit(Opcode.CALL_ANON, argc)
        else:
            self._compile_all(args)
            self._emit(Opcode.CALL_USER, name, argc)

    def _compile_postfix(self, obj: Any, items: Tuple[Any, ...]) -> None:
        argc = len(items)
        if isinstance(obj, Variable):
            if obj.name in self._builtins:
                self._compile_all(items)
                self._emit(Opcode.CALL_BUILTIN_ID, self._builtins[obj.name], argc)
                return
            slot = self._recursive_slot(obj.name)
            if slot is not None:
                self._compile_all(items)
                self._emit(Opcode.CALL_LOCAL, slot, argc)
                return
        self.compile(obj)
        self._compile_all(items)
        self._emit(Opcode.CALL_OR_INDEX, argc)

    # -- entry points ----------------------------------------------------------

    def compile(self, node: Any) -> None:
        """Append the code for ``node`` to :attr:`instructions`."""
        match node:
            case Literal(value=value):
                self._emit(Opcode.LOAD_CONST, value)
            case Variable(name=name):
                self._emit_load(name)
            case Assignment(name=name, value=Function(params=params, body=body)):
                self._compile_function(params, body, name)
                self._emit_store_keep(name)
            case Assignment(name=name, value=value):
                self.compile(value)
                self._emit_store_keep(name)
            case BinaryOp(left=left, operator=operator, right=right):
                self.compile(left)
                self.compile(right)
                self._emit(Opcode.BINARY_OP, operator)
            case UnaryOp(operator=operator, operand=operand):
                self.compile(operand)
                self._emit(Opcode.UNARY_OP, operator)
            case ListExpr(elements=elements):
                self._compile_all(elements)
                self._emit(Opcode.MAKE_LIST, len(elements))
            case DictExpr(pairs=pairs):
                for key, value in pairs:
                    self._emit(Opcode.LOAD_CONST, Symbol(key))
                    self.compile(value)
                self._emit(Opcode.MAKE_DICT, len(pairs))
            case Call(name=name, args=args):
                self._compile_call(name, args)
            case CallAnonymous(obj=obj, args=args):
                self.compile(obj)
                self._compile_all(args)
                self._emit(Opcode.CALL_ANON, len(args))
            case Postfix(obj=obj, items=items):
                self._compile_postfix(obj, items)
            case Break():
                if not self._loop_stack:
                    raise CompileSyntaxError("@b outside loop")
                self._loop_stack[-1].break_jumps.append(self._emit(Opcode.JUMP, 0))
            case Continue():
                if not self._loop_stack:
                    raise CompileSyntaxError("@c outside loop")
                self._loop_stack[-1].continue_jumps.append(self._emit(Opcode.JUMP, 0))
            case Return(value=value):
                if self._fn_depth == 0:
                    raise CompileSyntaxError("@r outside function")
                if value is None:
                    self._emit(Opcode.LOAD_CONST, None)
                else:
                    self.compile(value)
                self._emit(Opcode.RETURN)
            case Assert(expr=expr):
                self.compile(expr)
                self._emit(Opcode.ASSERT)
            case Try(expr=expr):
                pos = self._emit(Opcode.TRY, 0)
                self.compile(expr)
                self.instructions[pos] = _ins(
                    Opcode.TRY, len(self.instructions) - pos - 1
                )
            case Index(obj=obj, index=index):
                self.compile(obj)
                self.compile(index)
                self._emit(Opcode.INDEX)
            case IndexAssign(obj=Variable(name=name), index=index, value=value):
                if self._fn_depth > 0 and name in self._locals:
                    slot = self._local_slot(name)
                    self.compile(index)
                    self.compile(value)
                    self._emit(Opcode.INDEX_ASSIGN_LOCAL, slot)
                else:
                    self._emit(Opcode.LOAD_CONST, Symbol(name))
                    self.compile(index)
                    self.compile(value)
                    self._emit(Opcode.INDEX_ASSIGN)
            case IndexAssign():
                raise DomainError("Invalid index assignment target")
            case Function(params=params, body=body):
                self._compile_function(params, body)
            case Conditional(
                condition=condition, true_branch=true_branch, false_branch=false_branch
            ):
                self.compile(condition)
                jump_if_false = self._emit(Opcode.JUMP_IF_FALSE, 0)
                self.compile(true_branch)
                jump_end = self._emit(Opcode.JUMP, 0)
                self.instructions[jump_if_false] = _ins(
                    Opcode.JUMP_IF_FALSE, len(self.instructions)
                )
                if false_branch is None:
                    self._emit(Opcode.LOAD_CONST, None)
                else:
                    self.compile(false_branch)
                self.instructions[jump_end] = _ins(Opcode.JUMP, len(self.instructions))
            case WhileLoop(condition=condition, body=body):
                self._compile_while(condition, body)
            case ForLoop(count=count, body=body):
                self._compile_for(count, body)
            case Block(statements=statements):
                if not statements:
                    self._emit(Opcode.LOAD_CONST, None)
                else:
                    for stmt in statements:
                        self.compile(stmt)
                        self._emit(Opcode.POP)
                    # the last statement's value is the block's value
                    self.instructions.pop()
            case _:
                raise DomainError(f"cannot compile {type(node).__name__}")

    def fuse(self) -> FusionStats:
        """Fuse common instruction sequences in place; return what was fused."""
        return fuse(self.instructions)


def compile_program(node: Any, builtins: BuiltinTable = None) -> List[Instruction]:
    """Compile ``node`` at top level, fuse the result and return its instructions."""
    compiler = Compiler(builtins)
    compiler.compile(node)
    compiler.fuse()
    return compiler.instructions