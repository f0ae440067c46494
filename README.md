# wqvm

`wqvm` turns a syntax tree for the wq expression language into a flat list of
stack-machine instructions. A peephole pass then tightens that list.

## Modules

- **`wqvm.nodes`** holds the syntax tree classes: `Literal`, `Variable`,
  `Assignment`, `BinaryOp`, `UnaryOp`, `ListExpr`, `DictExpr`, `Call`,
  `CallAnonymous`, `Postfix`, `Break`, `Continue`, `Return`, `Assert`, `Try`,
  `Index`, `IndexAssign`, `Function`, `Conditional`, `WhileLoop`, `ForLoop` and
  `Block`. It also has the `BinaryOperator` enum. `has_control_flow(node)`
  tells whether a subtree contains a `Break`, `Continue` or `Return`.
- **`wqvm.instruction`** holds the instruction model.
  - `Instruction` is a frozen record of an `Opcode` and its operands. The
    operand count is checked when the record is built.
  - `is_jump()` reports whether the instruction is one of the four jump
    opcodes. `with_target(target)` returns the same jump aimed at another
    position.
  - `Capture` (with `CaptureKind`) describes where a closure takes each
    captured value from: a parent local slot, a parent capture, or a global
    name.
  - `Symbol` and `CompiledFunction` are the constant values the compiler emits.
- **`wqvm.compiler`** holds `Compiler`, which appends the code for each node to
  its `instructions` list.
  - Inside a function, names get numbered local slots. Names from enclosing
    functions become captures. Globals are captured by value.
  - A function assigned to a name inside another function can call itself; the
    call is emitted as a call by slot.
  - A `ForLoop` with a constant non-negative integer count of at most 64 is
    unrolled, provided its body has no control flow.
  - A `Break` or `Continue` outside a loop raises `CompileSyntaxError`, and so
    does a `Return` outside a function.
  - An index assignment whose target is not a variable raises `DomainError`,
    and so does a node the compiler does not know. Both errors derive from
    `CompileError`.
- **`wqvm.fusion`** holds `fuse(code)`, which runs `fuse_once(code, stats)`
  until nothing changes and returns a `FusionStats` with the count of each
  rewrite. The rewrites are:
  - a store-and-keep followed by a pop becomes a plain store;
  - an index-assign followed by a pop becomes its "drop" form;
  - a less-than followed by a jump-if-false becomes `JumpIfGE`;
  - "load local, load 0, greater-than, jump-if-false" becomes `JumpIfLEZLocal`.

  `fuse` also rewrites the code of function constants (`CompiledFunction`)
  found in the list. Jump targets are remapped after every pass.

## Installing

```
pip install .
```

To run the tests, install the `test` extra and run pytest:

```
pip install .[test]
pytest
```

## Example

```python
from wqvm.compiler import compile_program
from wqvm.nodes import Assignment, BinaryOp, BinaryOperator, Block, Literal, Variable

program = Block([
    Assignment("a", Literal(2)),
    BinaryOp(Variable("a"), BinaryOperator.ADD, Literal(3)),
])

code = compile_program(program, builtins=["len", "print"])
for ins in code:
    print(ins)
```

`compile_program` compiles the tree at top level, fuses the result and returns
the instruction list.

`builtins` may be either of two things:

- a mapping from name to id;
- a sequence of names, in which case each name's position is its id.

A call to a builtin is emitted as `CallBuiltinId` with that id.

You can also run the steps one at a time:

```python
from wqvm.compiler import Compiler

compiler = Compiler(["len", "print"])
compiler.compile(program)
stats = compiler.fuse()
print(compiler.instructions)
print(stats)
```

## What it does not do

The package only compiles. It has no parser, so syntax trees must be built from
the node classes. It has no virtual machine to run the instructions. It has no
builtin function table of its own. It has no command-line interface or REPL.