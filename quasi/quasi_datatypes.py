"""
Defines the core data types for quasi: the expression tree, the quasiquotation
markers that a parser places into it, and the error kinds raised while
quoting and evaluating.

An expression tree is code as data. A fully resolved tree contains only
Literal, Symbol and Call nodes; the marker nodes exist only until the unquote
pass in `quasi_interpreter` rewrites them away.
"""

from abc import ABC
from typing import Any, Iterator, List, Optional, Sequence, Tuple, Union
import collections.abc
import copy


# =================================================================
# Errors
# =================================================================

class QuasiError(Exception):
    """Base class for every error raised by the quoting and evaluation core."""
    def __init__(self, message: str, node: Any = None):
        super().__init__(message)
        # Offending tree, when known. The runtime pretty-prints it in error reports.
        self.quasi_obj = node


class UnboundSymbol(QuasiError, KeyError):
    """A symbol lookup exhausted the data mask and the environment chain."""
    def __init__(self, name: str, node: Any = None):
        super().__init__(f"object '{name}' not found", node)
        self.name = name

    def __str__(self) -> str:
        # KeyError would otherwise repr() the message.
        return self.args[0]


class InvalidSpliceOperand(QuasiError, TypeError):
    """A splice (`!!!`) operand was not a sequence, or the splice was misplaced."""


class InvalidNameOperand(QuasiError, TypeError):
    """A name-unquote (`!!x :=`) operand cannot be used as an argument name."""


class PromiseCaptureMisuse(QuasiError):
    """Promise-style capture was asked for something that is not a suspended argument."""


# =================================================================
# Expression Nodes
# =================================================================

class ExprNode(ABC):
    """Abstract base class for every node of an expression tree.

    Each node may carry an overriding environment in `env`. `None` means the
    node inherits the nearest ancestor's override, or failing that the
    environment of the Capture holding the tree.
    """
    env = None

    def with_env(self, env) -> 'ExprNode':
        """Returns a shallow copy of this node with its override set to `env`."""
        clone = copy.copy(self)
        clone.env = env
        return clone

    def children(self) -> List['ExprNode']:
        return []

    def walk(self) -> Iterator['ExprNode']:
        """Yields this node and then every descendant, depth first."""
        yield self
        for child in self.children():
            yield from child.walk()


class Literal(ExprNode):
    """A constant value embedded in the tree."""
    def __init__(self, value: Any, env=None):
        self.value = value
        self.env = env

    def __repr__(self) -> str:
        return f"Literal({self.value!r})"

    def __eq__(self, other):
        if not isinstance(other, Literal):
            return NotImplemented
        # 1 == True in Python; the tree must keep them apart.
        return (
            type(self.value) is type(other.value) and
            self.value == other.value and
            self.env is other.env
        )


class Symbol(ExprNode):
    """A name to be resolved against the evaluation context."""
    def __init__(self, name: str, env=None):
        if not isinstance(name, str) or not name:
            raise TypeError(f"Symbol name must be a non-empty str, not {name!r}")
        self.name = name
        self.env = env

    def __repr__(self) -> str:
        return f"Symbol<{self.name!r}>"

    def __eq__(self, other):
        if not isinstance(other, Symbol):
            return NotImplemented
        return self.name == other.name and self.env is other.env


class Arg:
    """One argument slot of a Call: an expression and an optional name.

    Before unquoting, `name` may also hold a NameUnquote or GlueName marker.
    """
    def __init__(self, value: ExprNode, name: Union[None, str, 'NameUnquote', 'GlueName'] = None):
        self.value = value
        self.name = name

    def __repr__(self) -> str:
        if self.name is None:
            return f"Arg({self.value!r})"
        return f"Arg({self.value!r}, name={self.name!r})"

    def __eq__(self, other):
        return isinstance(other, Arg) and self.name == other.name and self.value == other.value


class Call(ExprNode):
    """Application of `target` to an ordered, possibly named, argument list."""
    def __init__(self, target: ExprNode, args: Sequence[Union[Arg, ExprNode]] = (), env=None):
        self.target = target
        # Bare nodes are accepted as positional arguments for convenience.
        self.args: Tuple[Arg, ...] = tuple(a if isinstance(a, Arg) else Arg(a) for a in args)
        self.env = env

    def with_args(self, args: Sequence[Arg]) -> 'Call':
        clone = copy.copy(self)
        clone.args = tuple(args)
        return clone

    def children(self) -> List[ExprNode]:
        return [self.target] + [a.value for a in self.args]

    def __repr__(self) -> str:
        return f"Call({self.target!r}, {list(self.args)!r})"

    def __eq__(self, other):
        if not isinstance(other, Call):
            return NotImplemented
        return self.target == other.target and self.args == other.args and self.env is other.env


# =================================================================
# Quasiquotation Markers
# =================================================================

class Marker:
    """Mixin for parse-time markers that the unquote pass must remove."""
    pass


class Unquote(Marker, ExprNode):
    """`!!x`: evaluate `inner` now and substitute the result."""
    def __init__(self, inner: ExprNode):
        self.inner = inner

    def children(self) -> List[ExprNode]:
        return [self.inner]

    def __repr__(self) -> str:
        return f"Unquote({self.inner!r})"

    def __eq__(self, other):
        return isinstance(other, Unquote) and self.inner == other.inner


class Splice(Marker, ExprNode):
    """`!!!x`: evaluate `inner` and expand it into sibling call arguments."""
    def __init__(self, inner: ExprNode):
        self.inner = inner

    def children(self) -> List[ExprNode]:
        return [self.inner]

    def __repr__(self) -> str:
        return f"Splice({self.inner!r})"

    def __eq__(self, other):
        return isinstance(other, Splice) and self.inner == other.inner


class Embrace(Marker, ExprNode):
    """`{{ x }}`: capture the argument bound to parameter `x` and unquote it."""
    def __init__(self, symbol: Symbol):
        if not isinstance(symbol, Symbol):
            raise TypeError("embrace expects a symbol")
        self.symbol = symbol

    def children(self) -> List[ExprNode]:
        return [self.symbol]

    def __repr__(self) -> str:
        return f"Embrace({self.symbol!r})"

    def __eq__(self, other):
        return isinstance(other, Embrace) and self.symbol == other.symbol


class NameUnquote(Marker):
    """`!!x := value`: an argument name computed from `inner`. Name position only."""
    def __init__(self, inner: ExprNode):
        self.inner = inner

    def __repr__(self) -> str:
        return f"NameUnquote({self.inner!r})"

    def __eq__(self, other):
        return isinstance(other, NameUnquote) and self.inner == other.inner


class GlueName(Marker):
    """`"{{var}}_mean" := value`: an argument name rendered from a template."""
    def __init__(self, template: str):
        self.template = template

    def __repr__(self) -> str:
        return f"GlueName({self.template!r})"

    def __eq__(self, other):
        return isinstance(other, GlueName) and self.template == other.template


# =================================================================
# Collections
# =================================================================

class NamedList(collections.abc.MutableSequence):
    """An ordered list whose entries may each carry a name (None when unnamed).

    Used for rest arguments, for the result of `quos`/`enquos`, and as a splice
    operand whose names become argument names.
    """
    def __init__(self, items=(), names: Optional[Sequence[Optional[str]]] = None):
        self.items = list(items)
        self.names: List[Optional[str]] = list(names) if names is not None else [None] * len(self.items)
        if len(self.names) != len(self.items):
            raise ValueError("NamedList names must match items in length")

    @classmethod
    def from_pairs(cls, pairs) -> 'NamedList':
        out = cls()
        for name, value in pairs:
            out.append(value, name)
        return out

    def __getitem__(self, index):
        if isinstance(index, str):
            for name, value in zip(self.names, self.items):
                if name == index:
                    return value
            raise KeyError(index)
        if isinstance(index, slice):
            return NamedList(self.items[index], self.names[index])
        return self.items[index]

    def __setitem__(self, index, value):
        if isinstance(index, str):
            if index in self.names:
                self.items[self.names.index(index)] = value
            else:
                self.append(value, index)
            return
        if isinstance(index, slice):
            values = list(value)
            names = value.names if isinstance(value, NamedList) else [None] * len(values)
            self.items[index] = values
            self.names[index] = names
            return
        self.items[index] = value

    def reverse(self):
        self.items.reverse()
        self.names.reverse()

    def __delitem__(self, index):
        del self.items[index]
        del self.names[index]

    def __len__(self) -> int:
        return len(self.items)

    def insert(self, index, value, name: Optional[str] = None):
        self.items.insert(index, value)
        self.names.insert(index, name)

    def append(self, value, name: Optional[str] = None):
        self.insert(len(self.items), value, name)

    def pairs(self):
        return list(zip(self.names, self.items))

    def __eq__(self, other):
        if isinstance(other, NamedList):
            return self.names == other.names and self.items == other.items
        if isinstance(other, list):
            return all(n is None for n in self.names) and self.items == other
        return NotImplemented

    def __repr__(self) -> str:
        parts = [f"{n}={v!r}" if n is not None else repr(v) for n, v in self.pairs()]
        return f"NamedList([{', '.join(parts)}])"
