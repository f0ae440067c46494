"""Compiler from wq syntax trees to stack-machine instructions, with a peephole fusion pass."""

__version__ = "0.7.0a2"
__all__ = ["compiler", "fusion", "instruction", "nodes"]