"""Syntax tree nodes consumed by the compiler."""

from __future__ import annotations

import enum
from dataclasses import dataclass
from typing import Any, Optional, Tuple


class BinaryOperator(enum.Enum):
    """Binary operators that may appear in expressions."""

    ADD = "+"
    SUBTRACT = "-"
    MULTIPLY = "*"
    DIVIDE = "/"
    MODULO = "%"
    EQUALS = "="
    NOT_EQUALS = "~"
    LESS_THAN = "<"
    LESS_THAN_OR_EQUAL = "<="
    GREATER_THAN = ">"
    GREATER_THAN_OR_EQUAL = ">="


def _freeze(node: Any, name: str) -> None:
    object.__setattr__(node, name, tuple(getattr(node, name)))


@dataclass(frozen=True)
class Literal:
    value: Any


@dataclass(frozen=True)
class Variable:
    name: str


@dataclass(frozen=True)
class Assignment:
    name: str
    value: Any


@dataclass(frozen=True)
class BinaryOp:
    left: Any
    operator: BinaryOperator
    right: Any


@dataclass(frozen=True)
class UnaryOp:
    operator: Any
    operand: Any


@dataclass(frozen=True)
class ListExpr:
    elements: Tuple[Any, ...]

    def __post_init__(self) -> None:
        _freeze(self, "elements")


@dataclass(frozen=True)
class DictExpr:
    pairs: Tuple[Tuple[str, Any], ...]

    def __post_init__(self) -> None:
        object.__setattr__(self, "pairs", tuple((k, v) for k, v in self.pairs))


@dataclass(frozen=True)
class Call:
    name: str
    args: Tuple[Any, ...]

    def __post_init__(self) -> None:
        _freeze(self, "args")


@dataclass(frozen=True)
class CallAnonymous:
    obj: Any
    args: Tuple[Any, ...]

    def __post_init__(self) -> None:
        _freeze(self, "args")


@dataclass(frozen=True)
class Postfix:
    obj: Any
    items: Tuple[Any, ...]
    explicit_call: bool = False

    def __post_init__(self) -> None:
        _freeze(self, "items")


@dataclass(frozen=True)
class Break:
    pass


@dataclass(frozen=True)
class Continue:
    pass


@dataclass(frozen=True)
class Return:
    value: Optional[Any] = None


@dataclass(frozen=True)
class Assert:
    expr: Any


@dataclass(frozen=True)
class Try:
    expr: Any


@dataclass(frozen=True)
class Index:
    obj: Any
    index: Any


@dataclass(frozen=True)
class IndexAssign:
    obj: Any
    index: Any
    value: Any


@dataclass(frozen=True)
class Function:
    """A function literal; without params it takes the implicit x, y and z."""

    params: Optional[Tuple[str, ...]]
    body: Any

    def __post_init__(self) -> None:
        if self.params is not None:
            _freeze(self, "params")


@dataclass(frozen=True)
class Conditional:
    condition: Any
    true_branch: Any
    false_branch: Optional[Any] = None


@dataclass(frozen=True)
class WhileLoop:
    condition: Any
    body: Any


@dataclass(frozen=True)
class ForLoop:
    count: Any
    body: Any


@dataclass(frozen=True)
class Block:
    statements: Tuple[Any, ...]

    def __post_init__(self) -> None:
        _freeze(self, "statements")


def has_control_flow(node: Any) -> bool:
    """Whether a break, continue or return appears anywhere within the node."""
    match node:
        case Break() | Continue() | Return():
            return True
        case Block(statements=stmts):
            return any(has_control_flow(s) for s in stmts)
        case Conditional(true_branch=tb, false_branch=fb):
            return has_control_flow(tb) or (fb is not None and has_control_flow(fb))
        case WhileLoop(body=body) | ForLoop(body=body) | Function(body=body):
            return has_control_flow(body)
        case UnaryOp(operand=operand):
            return has_control_flow(operand)
        case Postfix(obj=obj, items=items):
            return has_control_flow(obj) or any(has_control_flow(i) for i in items)
        case BinaryOp(left=left, right=right):
            return has_control_flow(left) or has_control_flow(right)
        case Call(args=args) | CallAnonymous(args=args) | ListExpr(elements=args):
            return any(has_control_flow(a) for a in args)
        case DictExpr(pairs=pairs):
            return any(has_control_flow(v) for _, v in pairs)
        case Index(obj=obj, index=index):
            return has_control_flow(obj) or has_control_flow(index)
        case IndexAssign(obj=obj, index=index, value=value):
            return (
                has_control_flow(obj)
                or has_control_flow(index)
                or has_control_flow(value)
            )
        case Assignment(value=value):
            return has_control_flow(value)
        case _:
            return False