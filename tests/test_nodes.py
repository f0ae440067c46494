import pytest

from wqvm.nodes import (
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


def test_sequences_become_tuples():
    assert ListExpr([Literal(1)]).elements == (Literal(1),)
    assert Block([Break()]).statements == (Break(),)
    assert Function(["a"], Literal(0)).params == ("a",)
    assert Function(None, Literal(0)).params is None
    assert DictExpr([["k", Literal(1)]]).pairs == (("k", Literal(1)),)


def test_nodes_compare_by_value():
    a = BinaryOp(Variable("x"), BinaryOperator.ADD, Literal(1))
    b = BinaryOp(Variable("x"), BinaryOperator.ADD, Literal(1))
    assert a == b
    assert Postfix(Variable("f"), [Literal(1)]).explicit_call is False


@pytest.mark.parametrize(
    "node",
    [
        Break(),
        Continue(),
        Return(),
        Return(Literal(1)),
        Block([Literal(1), Break()]),
        Conditional(Literal(1), Literal(2), Continue()),
        Conditional(Literal(1), Break()),
        WhileLoop(Literal(1), Break()),
        ForLoop(Literal(3), Block([Continue()])),
        Function(None, Return(Literal(1))),
        UnaryOp("-", Break()),
        Postfix(Variable("f"), [Break()]),
        Postfix(Block([Break()]), []),
        BinaryOp(Literal(1), BinaryOperator.ADD, Break()),
        Call("f", [Return()]),
        CallAnonymous(Variable("f"), [Continue()]),
        ListExpr([Break()]),
        DictExpr([("a", Break())]),
        Index(Variable("a"), Break()),
        IndexAssign(Variable("a"), Literal(0), Return()),
        Assignment("a", Break()),
    ],
)
def test_control_flow_found(node):
    assert has_control_flow(node)


@pytest.mark.parametrize(
    "node",
    [
        Literal(1),
        Variable("x"),
        Block([]),
        Block([Literal(1), Variable("x")]),
        Conditional(Literal(1), Literal(2)),
        WhileLoop(Literal(1), Literal(2)),
        ListExpr([Literal(1), Literal(2)]),
        Call("f", [Literal(1)]),
        # the callee of an anonymous call is not inspected
        CallAnonymous(Block([Break()]), []),
        # assert and try are not inspected
        Assert(Break()),
        Try(Return()),
    ],
)
def test_control_flow_absent(node):
    assert not has_control_flow(node)


def test_nodes_are_immutable():
    node = Variable("x")
    with pytest.raises(AttributeError):
        node.name = "y"
    assert node.name == "x"
    assert node == Variable("x")