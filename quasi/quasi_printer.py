"""
A pretty-printer for quasi expression trees and captures.
"""
import collections.abc

from quasi.quasi_datatypes import (
    Literal, Symbol, Call, Arg, Unquote, Splice, Embrace, NameUnquote, GlueName, NamedList
)

BINARY_OPS = {'+', '-', '*', '/', '^', '==', '!=', '<', '<=', '>', '>=', '&', '|', '%%', '%/%'}
UNARY_OPS = {'-', '!'}


class Printer:
    """Formats quasi objects into readable source-like strings.

    With `show_env`, a subtree that carries its own environment override is
    prefixed with `^` so the boundary between captures stays visible.
    """

    def __init__(self, show_env=True):
        self.show_env = show_env
        self._handlers = self._create_handlers()

    def pformat(self, obj):
        """Public entry point to format an object."""
        from quasi.quasi_capture import Capture
        if isinstance(obj, Capture):
            return f"^{self.pformat(obj.expr)}" if self.show_env else self.pformat(obj.expr)
        text = self._get_handler(obj)(obj)
        if self.show_env and getattr(obj, 'env', None) is not None and isinstance(obj, (Literal, Symbol, Call)):
            return f"^{text}"
        return text

    def _get_handler(self, obj):
        """Dispatcher to find the correct formatting method."""
        obj_type = type(obj)
        if obj_type in self._handlers:
            return self._handlers[obj_type]
        if isinstance(obj, NamedList):
            return self._pformat_named_list
        if isinstance(obj, collections.abc.Mapping):
            return self._pformat_dict
        if isinstance(obj, (list, tuple)):
            return self._pformat_vector
        return repr

    def _create_handlers(self):
        return {
            str: self._pformat_str,
            int: str,
            float: self._pformat_float,
            bool: self._pformat_bool,
            type(None): self._pformat_none,
            Literal: self._pformat_literal,
            Symbol: self._pformat_symbol,
            Call: self._pformat_call,
            Unquote: self._pformat_unquote,
            Splice: self._pformat_splice,
            Embrace: self._pformat_embrace,
        }

    def _pformat_str(self, obj):
        escaped = obj.replace('\\', '\\\\').replace('"', '\\"')
        return f'"{escaped}"'

    def _pformat_float(self, obj):
        return repr(obj) if not obj.is_integer() else str(int(obj))

    def _pformat_bool(self, obj):
        return 'TRUE' if obj else 'FALSE'

    def _pformat_none(self, obj):
        return 'NULL'

    def _pformat_vector(self, obj):
        return f"c({', '.join(self.pformat(v) for v in obj)})"

    def _pformat_named_list(self, obj):
        parts = [self._pformat_entry(n, v) for n, v in obj.pairs()]
        return f"list({', '.join(parts)})"

    def _pformat_dict(self, obj):
        parts = [self._pformat_entry(k, v) for k, v in obj.items()]
        return f"list({', '.join(parts)})"

    def _pformat_entry(self, name, value):
        text = self.pformat(value)
        return text if name is None else f"{name} = {text}"

    def _pformat_literal(self, obj):
        return self.pformat(obj.value)

    def _pformat_symbol(self, obj):
        return obj.name

    def _pformat_operand(self, node):
        # Nested infix calls get parentheses; precedence is not tracked.
        text = self.pformat(node)
        if isinstance(node, Call) and self._infix_op(node) is not None:
            return f"({text})"
        return text

    def _infix_op(self, node):
        if not isinstance(node.target, Symbol) or node.target.env is not None:
            return None
        op = node.target.name
        unnamed = all(a.name is None for a in node.args)
        if op in BINARY_OPS and len(node.args) == 2 and unnamed:
            return op
        if op == '$' and len(node.args) == 2 and unnamed:
            return op
        return None

    def _pformat_call(self, obj):
        op = self._infix_op(obj)
        if op == '$':
            lhs, rhs = obj.args
            return f"{self._pformat_operand(lhs.value)}${self.pformat(rhs.value)}"
        if op is not None:
            lhs, rhs = obj.args
            return f"{self._pformat_operand(lhs.value)} {op} {self._pformat_operand(rhs.value)}"
        if (isinstance(obj.target, Symbol) and obj.target.name in UNARY_OPS
                and len(obj.args) == 1 and obj.args[0].name is None):
            return f"{obj.target.name}{self._pformat_operand(obj.args[0].value)}"
        head = self._pformat_operand(obj.target)
        return f"{head}({', '.join(self._pformat_arg(a) for a in obj.args)})"

    def _pformat_arg(self, arg: Arg):
        value = self.pformat(arg.value)
        match arg.name:
            case None:
                return value
            case NameUnquote():
                return f"!!{self.pformat(arg.name.inner)} := {value}"
            case GlueName():
                return f"{self._pformat_str(arg.name.template)} := {value}"
            case _:
                return f"{arg.name} = {value}"

    def _pformat_unquote(self, obj):
        return f"!!{self._pformat_operand(obj.inner)}"

    def _pformat_splice(self, obj):
        return f"!!!{self._pformat_operand(obj.inner)}"

    def _pformat_embrace(self, obj):
        return f"{{{{ {obj.symbol.name} }}}}"


_LABEL_PRINTER = None


def as_label(obj) -> str:
    """Source-like text for an expression, without environment decorations."""
    global _LABEL_PRINTER
    if _LABEL_PRINTER is None:
        _LABEL_PRINTER = Printer(show_env=False)
    return _LABEL_PRINTER.pformat(obj)
