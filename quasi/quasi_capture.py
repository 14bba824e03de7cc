"""
Captures: an expression bound to the environment it was written in.
"""

from typing import Any, Optional

from quasi.quasi_datatypes import ExprNode, Literal, Symbol, Call, Arg


class Capture:
    """An immutable (expression, environment) pair.

    Two Captures are equal only when their expressions are structurally equal
    AND they hold the very same environment: identical text captured in
    different places evaluates differently, so it is not the same value.
    """
    __slots__ = ('expr', 'env')

    def __init__(self, expr: ExprNode, env):
        if not isinstance(expr, ExprNode):
            raise TypeError(f"Capture expects an expression node, not {type(expr).__name__}")
        if env is None:
            raise TypeError("Capture requires an environment")
        object.__setattr__(self, 'expr', expr)
        object.__setattr__(self, 'env', env)

    def __setattr__(self, key, value):
        raise AttributeError("Capture is immutable")

    def __delattr__(self, key):
        raise AttributeError("Capture is immutable")

    # Copies share the environment; a frame is never duplicated.
    def __copy__(self):
        return self

    def __deepcopy__(self, memo):
        return self

    def __eq__(self, other):
        if not isinstance(other, Capture):
            return NotImplemented
        return self.env is other.env and self.expr == other.expr

    __hash__ = None

    @property
    def env_tag(self) -> str:
        """Opaque identity of the bound environment, for debugging output."""
        return self.env.tag

    @property
    def label(self) -> str:
        from quasi.quasi_printer import as_label
        return as_label(self.expr)

    def is_symbol(self, name: Optional[str] = None) -> bool:
        return isinstance(self.expr, Symbol) and (name is None or self.expr.name == name)

    def is_call(self, name: Optional[str] = None) -> bool:
        if not isinstance(self.expr, Call):
            return False
        if name is None:
            return True
        return isinstance(self.expr.target, Symbol) and self.expr.target.name == name

    def is_literal(self) -> bool:
        return isinstance(self.expr, Literal)

    def replace(self, expr: Optional[ExprNode] = None, env: Any = None) -> 'Capture':
        return Capture(expr if expr is not None else self.expr, env if env is not None else self.env)

    def squash(self) -> ExprNode:
        """The expression with every nested environment override dropped."""
        return squash(self.expr)

    def __repr__(self) -> str:
        from quasi.quasi_printer import Printer
        return f"<capture expr={Printer().pformat(self)} env={self.env_tag}>"


def squash(node: ExprNode) -> ExprNode:
    """Rebuilds `node` without any per-subtree environment overrides."""
    if isinstance(node, Capture):
        return squash(node.expr)
    if isinstance(node, Call):
        args = [Arg(squash(a.value), a.name) for a in node.args]
        return Call(squash(node.target), args)
    if node.env is not None:
        return node.with_env(None)
    return node


def is_capture(obj: Any) -> bool:
    return isinstance(obj, Capture)
