"""
The core quasi interpreter: the Evaluator, the unquote pass that rewrites
marked trees before they are captured, and the quoting entry points built on
top of both.
"""
import inspect
import os
import re
import sys
import collections.abc
from typing import Any, Dict, List, Optional, Tuple

import pystache

from quasi.quasi_datatypes import (
    ExprNode, Literal, Symbol, Call, Arg, Marker, Unquote, Splice, Embrace,
    NameUnquote, GlueName, NamedList,
    InvalidSpliceOperand, InvalidNameOperand, PromiseCaptureMisuse, UnboundSymbol
)
from quasi.quasi_env import Frame, Promise, QuasiFunction, is_lazy
from quasi.quasi_capture import Capture
from quasi.quasi_mask import DataMask, DataPronoun, EnvPronoun
from quasi.quasi_printer import as_label


def frame_of(context) -> Frame:
    """The environment chain underneath a context (a Frame or a DataMask)."""
    if isinstance(context, DataMask):
        return context.env
    return context


def rebind(context, env: Frame):
    """Swaps the environment of a context, keeping a mask's dataset layer."""
    if isinstance(context, DataMask):
        return context.rebind(env)
    return env


def _tmpl_normalize_value(v):
    """Convert quasi values into plain Python types for Mustache."""
    if isinstance(v, Capture):
        return v.label
    if isinstance(v, Promise):
        # Labels the caller's expression without forcing it.
        return as_label(v.expr)
    if isinstance(v, ExprNode):
        return as_label(v)
    if isinstance(v, Frame):
        return v.tag
    if isinstance(v, QuasiFunction):
        return v.name or "function"
    if isinstance(v, DataPronoun):
        return ".data"
    if isinstance(v, EnvPronoun):
        return ".env"
    if callable(v):
        # Mustache calls callables it resolves; built-ins render as their name.
        return getattr(v, '__name__', type(v).__name__).lstrip('_')
    if isinstance(v, collections.abc.Mapping):
        return {k: _tmpl_normalize_value(v[k]) for k in v.keys()}
    if isinstance(v, list):
        return [_tmpl_normalize_value(x) for x in v]
    return v


def _frame_to_dict(frame: Frame) -> dict:
    """Flatten the frame and its parents into a single plain dict."""
    out: dict = {}
    # Populate from root to current so inner bindings override outer ones
    for f in reversed(frame.chain()):
        for k, v in f.bindings.items():
            out[k] = _tmpl_normalize_value(v)
    return out


_TEMPLATE_TAG = re.compile(r"\{\{\s*([A-Za-z_.][\w.]*)\s*\}\}")


def coerce_name(value: Any, node: Any = None) -> str:
    """Turns a name-unquote operand into an argument name."""
    if isinstance(value, str) and value:
        return value
    if isinstance(value, Symbol):
        return value.name
    if isinstance(value, Capture) and isinstance(value.expr, Symbol):
        return value.expr.name
    raise InvalidNameOperand(f"cannot use {type(value).__name__} {value!r} as an argument name", node)


def splice_pairs(value: Any, node: Any = None) -> List[Tuple[Optional[str], Any]]:
    """(name, element) pairs for a splice operand; names are None when unlabelled."""
    if isinstance(value, NamedList):
        return value.pairs()
    if isinstance(value, collections.abc.Mapping):
        return [(coerce_name(k, node), v) for k, v in value.items()]
    if isinstance(value, (str, bytes)) or not isinstance(value, collections.abc.Sequence):
        raise InvalidSpliceOperand(f"!!! expects a sequence, got {type(value).__name__}", node)
    return [(None, v) for v in value]


def embed_value(value: Any) -> ExprNode:
    """The subtree that replaces an unquoted value.

    A Capture brings its own environment along as an override on the spliced
    subtree (unless that subtree already carries a more specific one). A bare
    expression is inlined as code. Anything else becomes a Literal.
    """
    if isinstance(value, Promise):
        value = quote_promise(value)
    if isinstance(value, Capture):
        expr = value.expr
        return expr if expr.env is not None else expr.with_env(value.env)
    if isinstance(value, ExprNode) and not isinstance(value, Marker):
        return value
    return Literal(value)


class Evaluator:
    """The quasi execution engine."""
    def __init__(self, invoker=None):
        # invoker(func, [(name, value), ...], context) -> result
        self.invoker = invoker or self.call
        self.call_stack: List[Dict[str, Any]] = []
        self.current_node = None

    def _push_frame(self, name, func, args, call_site_node):
        loc = getattr(call_site_node, 'loc', None)
        self.call_stack.append({
            'name': name,
            'func': func,
            'args': args,
            'call_site': loc,
        })

    def _pop_frame(self):
        if self.call_stack:
            self.call_stack.pop()

    def _dbg(self, *parts):
        if os.environ.get("QUASI_DEBUG"):
            print("[DBG]", *parts, file=sys.stderr)

    # -----------------------------------------------------------------
    # Evaluation
    # -----------------------------------------------------------------

    def eval(self, node: Any, context) -> Any:
        """Public entry point. A Capture evaluates against its own environment."""
        if isinstance(node, Capture):
            context = node.env if context is None else rebind(context, node.env)
            node = node.expr
        if context is None:
            raise TypeError("eval requires a Frame or DataMask context")
        return self._eval(node, context)

    def _eval(self, node: ExprNode, context) -> Any:
        """Recursive dispatcher for evaluating any expression node."""
        self.current_node = node
        if node.env is not None:
            context = rebind(context, node.env)
        match node:
            case Literal():
                return node.value
            case Symbol():
                try:
                    value = context.lookup(node.name)
                except UnboundSymbol as e:
                    if e.quasi_obj is None:
                        e.quasi_obj = node
                    raise
                if isinstance(value, Promise):
                    value = value.force()
                return value
            case Call():
                if _has_arg_markers(node):
                    # A splice or name marker evaluated directly is resolved here, in place.
                    return self._eval(self.expand(node, context), context)
                return self._eval_call(node, context)
            case Unquote() | Embrace() | Splice():
                return self._eval(self.expand(node, context), context)
            case _:
                raise TypeError(f"Cannot evaluate {node!r}")

    def _eval_call(self, node: Call, context) -> Any:
        func = self._eval_target(node.target, context)
        if is_lazy(func):
            args = [(a.name, self._promise(a.value, context)) for a in node.args]
        else:
            args = [(a.name, self._eval(a.value, context)) for a in node.args]
        name = node.target.name if isinstance(node.target, Symbol) else '<call>'
        self._push_frame(name, func, [v for _, v in args], node)
        try:
            return self.invoker(func, args, context)
        except Exception as e:
            # The innermost failure keeps the stack it was raised under.
            if getattr(e, 'quasi_stack', None) is None:
                e.quasi_stack = list(self.call_stack)
            raise
        finally:
            self._pop_frame()

    def _eval_target(self, target: ExprNode, context) -> Any:
        if isinstance(target, Symbol):
            ctx = rebind(context, target.env) if target.env is not None else context
            try:
                return ctx.lookup_function(target.name)
            except UnboundSymbol as e:
                if e.quasi_obj is None:
                    e.quasi_obj = target
                raise
        return self._eval(target, context)

    def _promise(self, node: ExprNode, context) -> Promise:
        if node.env is not None:
            return Promise(node.with_env(None), node.env, rebind(context, node.env), self)
        return Promise(node, frame_of(context), context, self)

    # -----------------------------------------------------------------
    # Invocation
    # -----------------------------------------------------------------

    def call(self, func: Any, args: List[Tuple[Optional[str], Any]], context=None) -> Any:
        """Applies a callable to (name, value) pairs. The default invoker."""
        self._dbg("Evaluator.call", type(func).__name__, "argc", len(args))
        seen = set()
        for name, _ in args:
            if name is None:
                continue
            if not isinstance(name, str):
                raise InvalidNameOperand(f"argument name must be a str, not {type(name).__name__}")
            if name in seen:
                raise TypeError(f"duplicate argument name '{name}'")
            seen.add(name)

        match func:
            case QuasiFunction():
                return self._call_function(func, args)
            case _ if callable(func):
                positional = [v for n, v in args if n is None]
                named = {n: v for n, v in args if n is not None}
                if context is not None and _accepts_context(func):
                    named['context'] = context
                return func(*positional, **named)
            case _:
                raise TypeError(f"Object is not callable: {func!r}")

    def _call_function(self, func: QuasiFunction, args) -> Any:
        frame = func.closure.child()
        frame.name = func.name
        params = func.params
        bound: Dict[str, Any] = {}
        # Exact names first, then positional arguments fill the remaining slots in order.
        for name, value in args:
            if name is not None and name in params:
                bound[name] = value
        free = [p for p in params if p not in bound]
        extras = NamedList()
        for name, value in args:
            if name is not None and name in params:
                continue
            if name is None and free:
                bound[free.pop(0)] = value
            elif func.rest is not None:
                extras.append(value, name)
            else:
                label = name if name is not None else _arg_label(value)
                raise TypeError(f"unused argument in call to {func.name or 'function'}: {label}")
        for p in params:
            if p not in bound:
                if p in func.defaults:
                    bound[p] = Promise(func.defaults[p], frame, frame, self)
                else:
                    raise TypeError(f"argument '{p}' is missing, with no default")
        frame.bindings.update(bound)
        if func.rest is not None:
            frame[func.rest] = extras
        self._dbg("QuasiFunction call", func.name, "bindings", list(frame.keys()))
        return self._eval(func.body, frame)

    # -----------------------------------------------------------------
    # Unquoting
    # -----------------------------------------------------------------

    def expand(self, node: ExprNode, context) -> ExprNode:
        """
        Resolve the quasiquotation markers in node, returning a new tree:
        - !!x (Unquote): evaluate x now in `context` and substitute the result
        - !!!x (Splice): x must be a sequence; one call argument per element
        - !!n := v (NameUnquote): evaluate n to get the argument name
        - "{{a}}_b" := v (GlueName): render the name against the environment
        - {{x}} (Embrace): capture the argument bound to parameter x and unquote it
        Marker operands are always evaluated in `context`, the environment of
        the capture being built, never in that of a substituted Capture.
        """
        if node.env is not None:
            context = rebind(context, node.env)
        match node:
            case Unquote():
                return embed_value(self._eval(node.inner, context))
            case Embrace():
                return embed_value(enquo(frame_of(context), node.symbol.name, evaluator=self))
            case Splice():
                raise InvalidSpliceOperand("!!! is only valid inside a call's argument list", node)
            case Call():
                target = self.expand(node.target, context)
                args: List[Arg] = []
                for arg in node.args:
                    if isinstance(arg.value, Splice):
                        if arg.name is not None:
                            raise InvalidSpliceOperand("a spliced argument cannot also be named", arg.value)
                        args.extend(self._splice_args(arg.value, context))
                        continue
                    args.append(Arg(self.expand(arg.value, context), self._expand_name(arg.name, context)))
                new_call = node.with_args(args)
                new_call.target = target
                return new_call
            case _:
                return node

    def _splice_args(self, marker: Splice, context) -> List[Arg]:
        value = self._eval(marker.inner, context)
        return [Arg(embed_value(v), name) for name, v in splice_pairs(value, marker)]

    def _expand_name(self, name, context) -> Optional[str]:
        match name:
            case None | str():
                return name
            case NameUnquote():
                return coerce_name(self._eval(name.inner, context), name)
            case GlueName():
                return self._render_glue(name, context)
            case _:
                raise InvalidNameOperand(f"unsupported argument name {name!r}", name)

    def _render_glue(self, marker: GlueName, context) -> str:
        view = _frame_to_dict(frame_of(context))
        for m in _TEMPLATE_TAG.finditer(marker.template):
            key = m.group(1)
            if key not in view and key.split('.')[0] not in view:
                raise UnboundSymbol(key, marker)
        renderer = pystache.Renderer(escape=lambda u: u)
        rendered = renderer.render(marker.template, view)
        if not rendered:
            raise InvalidNameOperand(f"template {marker.template!r} rendered an empty name", marker)
        return rendered


def _has_arg_markers(node: Call) -> bool:
    """True when the call's own argument list holds a splice or a marked name."""
    for arg in node.args:
        if isinstance(arg.value, Splice) or isinstance(arg.name, (NameUnquote, GlueName)):
            return True
    return False


def _accepts_context(func) -> bool:
    """True when a Python callable takes a keyword-only `context` parameter."""
    needs = getattr(func, "_quasi_accepts_context", None)
    if needs is None:
        try:
            param = inspect.signature(func).parameters.get('context')
            needs = param is not None and param.kind is inspect.Parameter.KEYWORD_ONLY
        except (TypeError, ValueError):
            needs = False
        try:
            setattr(func, "_quasi_accepts_context", needs)
        except AttributeError:
            pass
    return needs


def _arg_label(value: Any) -> str:
    if isinstance(value, Promise):
        return as_label(value.expr)
    return repr(value)


# =================================================================
# Quoting
# =================================================================

def _capture(expr: ExprNode, env: Frame) -> Capture:
    # quo(!!q) is q itself, not a capture wrapping an override.
    if expr.env is not None:
        return Capture(expr.with_env(None), expr.env)
    return Capture(expr, env)


def _require_node(tree: Any):
    if not isinstance(tree, ExprNode):
        raise TypeError(f"expected an expression node, got {type(tree).__name__}")


def quote_fixed(tree: ExprNode, env, evaluator: Optional[Evaluator] = None) -> Capture:
    """Captures tree bound to `env`, the environment where the quoting call appears."""
    _require_node(tree)
    ev = evaluator or Evaluator()
    return _capture(ev.expand(tree, env), frame_of(env))


def quote_promise(promise: Any, evaluator: Optional[Evaluator] = None) -> Capture:
    """Captures a suspended argument: the caller's expression in the caller's environment."""
    if not isinstance(promise, Promise):
        raise PromiseCaptureMisuse(
            f"expected a suspended function argument, got {type(promise).__name__}"
        )
    ev = evaluator or promise.evaluator or Evaluator()
    return _capture(ev.expand(promise.expr, promise.context), promise.env)


def enquo(frame, name: str, evaluator: Optional[Evaluator] = None) -> Capture:
    """Captures what the caller wrote for parameter `name` of the function running in frame."""
    frame = frame_of(frame)
    # Only the running function's own parameters, never an enclosing one's.
    value = frame.bindings.get(name) if isinstance(frame, Frame) else None
    if not isinstance(value, Promise):
        raise PromiseCaptureMisuse(f"'{name}' is not a function argument and cannot be captured with enquo")
    return quote_promise(value, evaluator)


def enquos(frame, name: str, evaluator: Optional[Evaluator] = None) -> NamedList:
    """Captures every argument collected by the rest parameter `name`."""
    frame = frame_of(frame)
    value = frame.bindings.get(name) if isinstance(frame, Frame) else None
    if not isinstance(value, NamedList) or not all(isinstance(p, Promise) for p in value):
        raise PromiseCaptureMisuse(f"'{name}' is not a rest parameter and cannot be captured with enquos")
    return NamedList([quote_promise(p, evaluator) for p in value], value.names)


def _as_capture(value: Any, env: Frame, ev: Evaluator) -> Capture:
    if isinstance(value, Capture):
        return value
    if isinstance(value, Promise):
        return quote_promise(value, ev)
    if isinstance(value, ExprNode):
        return quote_fixed(value, env, ev)
    return Capture(Literal(value), env)


def quos(env, *trees: ExprNode, named: bool = False, evaluator: Optional[Evaluator] = None, **named_trees: ExprNode) -> NamedList:
    """Captures several expressions in `env` at once.

    A top-level `Splice` contributes one capture per element. With
    `named=True` every unnamed capture is named after its label.
    """
    ev = evaluator or Evaluator()
    out = NamedList()
    for name, tree in [(None, t) for t in trees] + list(named_trees.items()):
        if isinstance(tree, Splice):
            value = ev._eval(tree.inner, env)
            for n, v in splice_pairs(value, tree):
                out.append(_as_capture(v, frame_of(env), ev), n)
            continue
        out.append(quote_fixed(tree, env, ev), name)
    if named:
        out.names = [n if n is not None else q.label for n, q in out.pairs()]
    return out


def quote_expr(tree: ExprNode, env, evaluator: Optional[Evaluator] = None) -> ExprNode:
    """Resolves markers in tree and returns the bare expression, without an environment."""
    _require_node(tree)
    ev = evaluator or Evaluator()
    return ev.expand(tree, env)


def sym(name: str) -> Symbol:
    return Symbol(name)


def syms(names) -> List[Symbol]:
    return [Symbol(n) for n in names]


def call2(target: Any, *args: Any, **named: Any) -> Call:
    """Builds a Call from a function name (or node) and argument values."""
    head = Symbol(target) if isinstance(target, str) else embed_value(target)
    out = [Arg(embed_value(a)) for a in args]
    out += [Arg(embed_value(v), k) for k, v in named.items()]
    return Call(head, out)


def eval_tidy(obj: Any, data: Any = None, env=None, evaluator: Optional[Evaluator] = None) -> Any:
    """Evaluates a Capture (or a bare expression in `env`) with dataset columns masking variables."""
    ev = evaluator or Evaluator()
    if isinstance(obj, Capture):
        env, node = obj.env, obj.expr
    else:
        _require_node(obj)
        if env is None:
            raise TypeError("eval_tidy needs an environment for a bare expression")
        node = obj
    env = frame_of(env)
    if isinstance(data, DataMask):
        mask = data.rebind(env)
    else:
        mask = DataMask(data, env)
    return ev.eval(node, mask)
