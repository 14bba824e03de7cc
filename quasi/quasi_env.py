"""
Lexical environments, suspended arguments and closures.

Frames are shared by reference: a Capture holds the very Frame it was made
in, never a copy, so rebinding a name after capture is visible to every
Capture that holds the frame.
"""

from typing import Any, Dict, List, Optional
import collections.abc

from quasi.quasi_datatypes import ExprNode, UnboundSymbol


class Frame:
    """A chained, mutable name-to-value scope.

    Lookup walks from this frame through its parents to the root; the first
    binding found wins. Entering a new lexical scope (a function call, a
    block) is done with `child()`, which only takes a reference to the parent.
    """
    def __init__(self, parent: Optional['Frame'] = None, bindings: Optional[Dict[str, Any]] = None, name: Optional[str] = None):
        self.bindings: Dict[str, Any] = dict(bindings or {})
        self.parent = parent
        self.name = name

    def child(self, bindings: Optional[Dict[str, Any]] = None, **kwargs) -> 'Frame':
        """Creates a new frame whose parent is this one."""
        frame = Frame(parent=self, bindings=bindings)
        frame.bindings.update(kwargs)
        return frame

    def find_owner(self, key: str) -> Optional['Frame']:
        """Finds the frame in the chain (self → parent → ...) that binds key."""
        frame = self
        while frame is not None:
            if key in frame.bindings:
                return frame
            frame = frame.parent
        return None

    def lookup(self, name: str) -> Any:
        owner = self.find_owner(name)
        if owner is None:
            raise UnboundSymbol(name)
        return owner.bindings[name]

    def lookup_function(self, name: str) -> Any:
        """Like lookup, but skips bindings that are not callable."""
        frame = self
        while frame is not None:
            if name in frame.bindings:
                value = frame.bindings[name]
                if isinstance(value, Promise):
                    value = value.force()
                if callable(value):
                    return value
            frame = frame.parent
        raise UnboundSymbol(name)

    def assign(self, name: str, value: Any):
        """Rebinds name in the frame that already owns it, else binds it here."""
        owner = self.find_owner(name) or self
        owner.bindings[name] = value

    def __setitem__(self, key: str, value: Any):
        if not isinstance(key, str):
            raise TypeError(f"Frame key must be a str, not {type(key)}")
        self.bindings[key] = value

    def __getitem__(self, key: str) -> Any:
        return self.lookup(key)

    def __delitem__(self, key: str):
        if key not in self.bindings:
            raise UnboundSymbol(key)
        del self.bindings[key]

    def __contains__(self, key: Any) -> bool:
        return isinstance(key, str) and self.find_owner(key) is not None

    def get(self, key: str, default: Any = None) -> Any:
        owner = self.find_owner(key) if isinstance(key, str) else None
        if owner is None:
            return default
        return owner.bindings[key]

    def keys(self) -> collections.abc.KeysView:
        """Returns a view of keys in this frame only."""
        return self.bindings.keys()

    def chain(self) -> List['Frame']:
        """The frames searched by lookup, innermost first."""
        out = []
        frame = self
        while frame is not None:
            out.append(frame)
            frame = frame.parent
        return out

    @property
    def tag(self) -> str:
        """Opaque identity tag for diagnostics. Never reveals bindings."""
        label = f"{self.name}@" if self.name else ""
        return f"<env {label}{id(self):#x}>"

    def __repr__(self) -> str:
        parent_id = f", parent=#{id(self.parent):#x}" if self.parent is not None else ""
        return f"<Frame {self.name or 'anonymous'} #{id(self):#x} bindings={len(self.bindings)}{parent_id}>"


class Promise:
    """A suspended argument: the caller-written expression and the caller's environment.

    `context` is what forcing evaluates against; it is `env` itself, or a data
    mask over `env` when the call was made inside one. Forcing is memoised.
    """
    __slots__ = ('expr', 'env', 'context', 'evaluator', '_forced', '_value')

    def __init__(self, expr: ExprNode, env: Frame, context: Any = None, evaluator: Any = None):
        self.expr = expr
        self.env = env
        self.context = context if context is not None else env
        self.evaluator = evaluator
        self._forced = False
        self._value = None

    @property
    def forced(self) -> bool:
        return self._forced

    def force(self) -> Any:
        if not self._forced:
            evaluator = self.evaluator
            if evaluator is None:
                from quasi.quasi_interpreter import Evaluator
                evaluator = self.evaluator = Evaluator()
            self._value = evaluator.eval(self.expr, self.context)
            self._forced = True
        return self._value

    @property
    def value(self) -> Any:
        return self.force()

    def __repr__(self) -> str:
        from quasi.quasi_printer import as_label
        state = "forced" if self._forced else "pending"
        return f"<Promise {as_label(self.expr)} {state} env={self.env.tag}>"


class QuasiFunction:
    """A closure whose body is an expression tree.

    Arguments reach it as Promises, which is what lets the body recover the
    caller's expression with `enquo`.
    """
    def __init__(self, params: List[str], body: ExprNode, closure: Frame,
                 defaults: Optional[Dict[str, ExprNode]] = None, rest: Optional[str] = None,
                 name: Optional[str] = None):
        self.params = list(params)
        self.body = body
        self.closure = closure
        self.defaults: Dict[str, ExprNode] = dict(defaults or {})
        self.rest = rest
        self.name = name
        self._quasi_lazy = True

    def __call__(self, *args, **kwargs):
        # Python-side calls go through a plain evaluator with already-evaluated values.
        from quasi.quasi_interpreter import Evaluator
        from quasi.quasi_datatypes import Literal
        pairs = [(None, Literal(a)) for a in args] + [(k, Literal(v)) for k, v in kwargs.items()]
        evaluator = Evaluator()
        promises = [(n, Promise(expr, self.closure, evaluator=evaluator)) for n, expr in pairs]
        return evaluator.call(self, promises, self.closure)

    def __repr__(self) -> str:
        from quasi.quasi_printer import as_label
        params = list(self.params) + ([f"{self.rest}..."] if self.rest else [])
        return f"<QuasiFunction {self.name or 'anonymous'}({', '.join(params)}) {as_label(self.body)}>"

    def __eq__(self, other):
        if not isinstance(other, QuasiFunction):
            return NotImplemented
        return (
            self.params == other.params and self.body == other.body and
            self.rest == other.rest and self.closure is other.closure
        )

    __hash__ = object.__hash__


def lazy(func):
    """Marks a Python callable to receive its arguments as Promises instead of values."""
    func._quasi_lazy = True
    return func


def is_lazy(func) -> bool:
    return isinstance(func, QuasiFunction) or bool(getattr(func, '_quasi_lazy', False))
