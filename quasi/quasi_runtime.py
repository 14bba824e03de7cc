"""
The quasi runtime: the base library bound into every session, the Session
that owns environments and an evaluator, and structured execution results.
"""
import inspect
import math
import operator
import collections.abc
from dataclasses import dataclass
from typing import Any, Dict, List, Literal as TLiteral, Optional

from quasi.quasi_datatypes import (
    ExprNode, Literal, Symbol, NamedList,
    UnboundSymbol, PromiseCaptureMisuse, QuasiError
)
from quasi.quasi_env import Frame, Promise, QuasiFunction, lazy
from quasi.quasi_capture import Capture
from quasi.quasi_mask import DataMask, DataPronoun, EnvPronoun
from quasi.quasi_interpreter import (
    Evaluator, frame_of, quote_fixed, quote_expr, enquo, enquos, eval_tidy
)
from quasi.quasi_transformer import QuasiTransformer
from quasi.quasi_printer import Printer, as_label


# ===================================================================
# Vector helpers
# ===================================================================

def _is_vector(x) -> bool:
    return isinstance(x, (list, tuple))


def _elementwise(fn, a, b):
    """Applies a binary op across columns, recycling scalars and length-1 vectors."""
    if not _is_vector(a) and not _is_vector(b):
        return fn(a, b)
    a_items = list(a) if _is_vector(a) else [a]
    b_items = list(b) if _is_vector(b) else [b]
    if len(a_items) == 1:
        a_items = a_items * len(b_items)
    elif len(b_items) == 1:
        b_items = b_items * len(a_items)
    elif len(a_items) != len(b_items):
        raise ValueError(f"operands have different lengths: {len(a_items)} and {len(b_items)}")
    return [fn(x, y) for x, y in zip(a_items, b_items)]


def _flatten(values) -> List[Any]:
    out: List[Any] = []
    for v in values:
        if _is_vector(v) or isinstance(v, NamedList):
            out.extend(_flatten(v))
        else:
            out.append(v)
    return out


# Default for the second operand of + and -, which are also unary.
_UNARY = object()


def _lookup_member(target, name):
    if isinstance(target, (DataPronoun, EnvPronoun, NamedList)):
        try:
            return target[name]
        except KeyError:
            raise UnboundSymbol(name) from None
    if isinstance(target, (collections.abc.Mapping, Frame)):
        if name not in target:
            raise UnboundSymbol(name)
        return target[name]
    return getattr(target, name)


def _param_name(arg: Promise, fname: str) -> str:
    if not isinstance(arg.expr, Symbol):
        raise PromiseCaptureMisuse(f"{fname}() expects a parameter name, got {as_label(arg.expr)}", arg.expr)
    return arg.expr.name


# ===================================================================
# Standard library
# ===================================================================

class StdLib:
    """Python implementations of the quasi built-ins."""

    # Operator spellings that cannot be derived from a method name.
    OPERATORS = {
        '+': '_add', '-': '_sub', '*': '_mul', '/': '_div', '^': '_pow',
        '%%': '_mod', '%/%': '_intdiv',
        '==': '_eq', '!=': '_neq', '<': '_lt', '<=': '_lte', '>': '_gt', '>=': '_gte',
        '&': '_and', '|': '_or', '!': '_not',
        '$': '_get_field', '[[': '_get_element',
    }

    def __init__(self, evaluator):
        self.evaluator = evaluator

    def bind(self, frame: Frame) -> Frame:
        """Installs every built-in into `frame` (usually the session's base frame)."""
        for name, member in inspect.getmembers(self):
            if name.startswith('_') and not name.startswith('__') and callable(member):
                frame[name[1:]] = member
        for op, method in self.OPERATORS.items():
            frame[op] = getattr(self, method)
        return frame

    # --- Math and Logic ---
    def _add(self, a, b=_UNARY):
        if b is _UNARY:
            return a
        return _elementwise(operator.add, a, b)

    def _sub(self, a, b=_UNARY):
        if b is _UNARY:
            return [-x for x in a] if _is_vector(a) else -a
        return _elementwise(operator.sub, a, b)

    def _mul(self, a, b): return _elementwise(operator.mul, a, b)
    def _div(self, a, b): return _elementwise(operator.truediv, a, b)
    def _pow(self, b, e): return _elementwise(operator.pow, b, e)
    def _mod(self, a, b): return _elementwise(operator.mod, a, b)
    def _intdiv(self, a, b): return _elementwise(operator.floordiv, a, b)
    def _eq(self, a, b):
        res = _elementwise(operator.eq, a, b)
        self.evaluator._dbg("EQ", type(a).__name__, "==", type(b).__name__, "->", res)
        return res
    def _neq(self, a, b): return _elementwise(operator.ne, a, b)
    def _gt(self, a, b): return _elementwise(operator.gt, a, b)
    def _gte(self, a, b): return _elementwise(operator.ge, a, b)
    def _lt(self, a, b): return _elementwise(operator.lt, a, b)
    def _lte(self, a, b): return _elementwise(operator.le, a, b)
    def _and(self, a, b): return _elementwise(lambda x, y: bool(x and y), a, b)
    def _or(self, a, b): return _elementwise(lambda x, y: bool(x or y), a, b)
    def _not(self, x):
        if _is_vector(x):
            return [not v for v in x]
        return not x
    def _exp(self, x): return [math.exp(v) for v in x] if _is_vector(x) else math.exp(x)
    def _log(self, x): return [math.log(v) for v in x] if _is_vector(x) else math.log(x)

    # --- Vectors and lists ---
    def _c(self, *values):
        return _flatten(values)

    def _list(self, *values, **named):
        out = NamedList(values)
        for name, value in named.items():
            out.append(value, name)
        return out

    def _length(self, x):
        if isinstance(x, (str, bytes)) or not isinstance(x, collections.abc.Sized):
            return 1
        return len(x)

    def _sum(self, *values):
        return sum(_flatten(values))

    def _mean(self, *values):
        items = _flatten(values)
        if not items:
            return math.nan
        return sum(items) / len(items)

    def _min(self, *values):
        return min(_flatten(values))

    def _max(self, *values):
        return max(_flatten(values))

    def _paste(self, *values, sep=" "):
        """Joins values as strings; vector arguments paste element-wise."""
        if not any(_is_vector(v) for v in values):
            return sep.join(str(v) for v in values)
        width = max(len(v) for v in values if _is_vector(v))
        columns = [list(v) if _is_vector(v) else [v] for v in values]
        for col in columns:
            if len(col) not in (1, width):
                raise ValueError(f"paste arguments have different lengths: {len(col)} and {width}")
        return [
            sep.join(str(col[i] if len(col) == width else col[0]) for col in columns)
            for i in range(width)
        ]

    def _n(self, *, context):
        """Number of rows in the current data context."""
        if not isinstance(context, DataMask):
            raise TypeError("n() must be called inside a data mask")
        return len(context)

    # --- Access ---
    @lazy
    def _get_field(self, obj, field):
        target = obj.force()
        match field.expr:
            case Symbol(name=name):
                pass
            case Literal(value=str() as name):
                pass
            case _:
                raise TypeError(f"invalid field name {as_label(field.expr)} for $")
        return _lookup_member(target, name)

    def _get_element(self, obj, key):
        if isinstance(obj, (DataPronoun, EnvPronoun)):
            if not isinstance(key, str):
                raise TypeError(f"pronouns are indexed by name, not {type(key).__name__}")
            return obj[key]
        if isinstance(key, str) and not isinstance(obj, str):
            return _lookup_member(obj, key)
        return obj[key]

    # --- Quoting ---
    @lazy
    def _quo(self, x):
        return quote_fixed(x.expr, x.context, self.evaluator)

    @lazy
    def _quos(self, *xs, **named):
        out = NamedList()
        for p in xs:
            out.append(quote_fixed(p.expr, p.context, self.evaluator))
        for name, p in named.items():
            out.append(quote_fixed(p.expr, p.context, self.evaluator), name)
        return out

    @lazy
    def _enquo(self, arg, *, context):
        return enquo(frame_of(context), _param_name(arg, 'enquo'), self.evaluator)

    @lazy
    def _enquos(self, arg, *, context):
        return enquos(frame_of(context), _param_name(arg, 'enquos'), self.evaluator)

    @lazy
    def _expr(self, x):
        return quote_expr(x.expr, x.context, self.evaluator)

    def _sym(self, name):
        return Symbol(name)

    def _syms(self, *names):
        return [Symbol(n) for n in _flatten(names)]

    def _eval_tidy(self, obj, data=None, *, context):
        if isinstance(obj, Capture):
            return eval_tidy(obj, data, evaluator=self.evaluator)
        if isinstance(obj, ExprNode):
            return eval_tidy(obj, data, frame_of(context), self.evaluator)
        return obj


# ===================================================================
# Execution
# ===================================================================

Token = Dict[str, Any]


@dataclass
class ExecutionResult:
    """The structured result of an evaluation."""
    status: TLiteral['success', 'error']
    value: Any = None
    error_message: Optional[str] = None
    error_token: Optional[Token] = None

    def format_error(self) -> str:
        """Formats an error message with line and column if available."""
        if self.status != 'error':
            return ""
        msg = str(self.error_message or "Unknown error")
        if self.error_token and 'line' in self.error_token:
            line = self.error_token.get('line')
            col = self.error_token.get('col')
            if not msg.startswith("Error on line "):
                col_info = f", col {col}" if col is not None else ""
                return f"Error on line {line}{col_info}: {msg}"
        return msg


class Session:
    """Owns a base frame of built-ins, a global frame under it, and an evaluator."""

    def __init__(self, invoker=None, stdlib: bool = True):
        self.evaluator = Evaluator(invoker)
        self.base_env = Frame(name="base")
        if stdlib:
            StdLib(self.evaluator).bind(self.base_env)
        self.global_env = self.base_env.child()
        self.global_env.name = "global"
        self._transformer = QuasiTransformer()

    def _node(self, tree):
        if isinstance(tree, (dict, list)):
            return self._transformer.transform(tree)
        return tree

    def quote(self, tree, env: Optional[Frame] = None) -> Capture:
        return quote_fixed(self._node(tree), env or self.global_env, self.evaluator)

    def define(self, name: str, params: List[str], body, defaults: Optional[Dict[str, Any]] = None,
               rest: Optional[str] = None, env: Optional[Frame] = None) -> QuasiFunction:
        """Binds a closure over `env` (the global frame by default) under `name`."""
        env = env or self.global_env
        defaults = {k: self._node(v) for k, v in (defaults or {}).items()}
        fn = QuasiFunction(params, self._node(body), env, defaults, rest, name)
        env[name] = fn
        return fn

    def eval_tidy(self, obj, data: Any = None, env: Optional[Frame] = None) -> Any:
        return eval_tidy(self._node(obj), data, env or self.global_env, self.evaluator)

    def run(self, tree, data: Any = None, env: Optional[Frame] = None) -> ExecutionResult:
        """Evaluates a tree, capture or raw parser output, reporting errors as a result."""
        self.evaluator.call_stack = []
        self.evaluator.current_node = None
        try:
            value = self.eval_tidy(tree, data, env)
            return ExecutionResult(status='success', value=value)
        except Exception as e:
            self.evaluator._dbg("Session.run error", type(e).__name__, e)
            msg, token = self._format_runtime_error(e, self.evaluator.current_node)
            return ExecutionResult(status='error', error_message=msg, error_token=token)

    def _format_runtime_error(self, e, node) -> tuple[str, Optional[dict]]:
        stack = getattr(e, 'quasi_stack', None) or []
        match e:
            case SyntaxError():
                msg = f"SyntaxError: {e}"
            case UnboundSymbol() as ub:
                msg = f"UnboundSymbol: {ub.name}"
            case PromiseCaptureMisuse():
                msg = f"PromiseCaptureMisuse: {e}"
            case TypeError():
                call_name = None
                if stack:
                    call_name = stack[-1].get('name')
                msg = f"TypeError: {e}"
                if isinstance(call_name, str) and call_name != '<call>':
                    msg += f" in ({call_name})"
            case ValueError():
                msg = f"ValueError: {e}"
            case _:
                msg = f"InternalError: {e}"

        # Pretty-print the offending tree, if one is attached
        quasi_obj = e.quasi_obj if isinstance(e, QuasiError) else None
        if quasi_obj is not None:
            msg = f"{msg}\n{Printer().pformat(quasi_obj)}"

        token = None
        offender = quasi_obj if quasi_obj is not None else node
        loc = getattr(offender, 'loc', None)
        if isinstance(loc, dict) and loc.get('line') is not None:
            token = {'line': loc.get('line'), 'col': loc.get('col'), 'tag': loc.get('tag'), 'text': loc.get('text')}

        st = self._format_stacktrace(stack)
        if st:
            msg += "\n" + st
        return msg, token

    def _format_stacktrace(self, stack) -> str:
        if not stack:
            return ""
        pf = Printer().pformat

        def fmt(arg):
            match arg:
                case Promise():
                    return as_label(arg.expr)
                case QuasiFunction():
                    return "fn"
                case Capture():
                    return pf(arg)
                case list():
                    return f"c[{len(arg)}]"
                case _ if callable(arg):
                    return getattr(arg, '__name__', '<callable>').lstrip('_')
                case _:
                    return pf(arg)

        frames = []
        for frame in stack:
            name = frame.get('name') or '<call>'
            args_s = " ".join(fmt(a) for a in frame.get('args') or [])
            frames.append(f"({name} {args_s})" if args_s else f"({name})")
        return "quasi stacktrace: " + " ".join(frames)
