"""
Transforms the raw parser AST (tagged dicts) into quasi expression nodes.
"""

from quasi.quasi_datatypes import (
    Literal, Symbol, Call, Arg, Unquote, Splice, Embrace, NameUnquote, GlueName
)


class QuasiTransformer:
    def _attach_loc(self, obj, node):
        line = node.get('line'); col = node.get('col')
        if line is not None and col is not None and hasattr(obj, '__dict__'):
            obj.loc = {'line': line, 'col': col, 'tag': node.get('tag'), 'text': node.get('text')}
        return obj

    def transform(self, node: object) -> object:
        # Lists: transform each item
        if isinstance(node, list):
            return [self.transform(n) for n in node]

        # Primitives are already literal values
        if not isinstance(node, dict):
            return Literal(node)

        # Subgrammar namespace wrappers (e.g., 'Quasi_*'): unwrap
        tag = node.get('tag')
        if isinstance(tag, str) and tag.startswith('Quasi'):
            return self.transform(self._single_child(node))

        children = node.get('children', [])

        match tag:
            case 'expr' | 'group':
                return self.transform(self._single_child(node))

            # Atomics
            case 'number':
                # Integers (no '.') stay exact Python ints.
                txt = node.get('text')
                if isinstance(txt, str) and '.' not in txt and 'e' not in txt.lower():
                    try:
                        return self._attach_loc(Literal(int(txt)), node)
                    except ValueError:
                        pass
                value = node.get('value')
                if value is None:
                    value = float(txt)
                return self._attach_loc(Literal(value), node)
            case 'string':
                return self._attach_loc(Literal(node['text']), node)
            case 'boolean' | 'null':
                return self._attach_loc(Literal(node.get('value')), node)
            case 'name':
                return self._attach_loc(Symbol(node['text']), node)

            # Calls and operators
            case 'call':
                target = self.transform(children['target'])
                args = [self._transform_arg(a) for a in children.get('args') or []]
                return self._attach_loc(Call(target, args), node)
            case 'binary-op':
                op = self._op_text(node)
                left = self.transform(children['left'])
                right = self.transform(children['right'])
                return self._attach_loc(Call(Symbol(op), [left, right]), node)
            case 'unary-op':
                op = self._op_text(node)
                operand = self.transform(children['operand'])
                return self._attach_loc(Call(Symbol(op), [operand]), node)

            # Quasiquotation markers
            case 'unquote':
                return self._attach_loc(Unquote(self.transform(self._single_child(node))), node)
            case 'splice':
                return self._attach_loc(Splice(self.transform(self._single_child(node))), node)
            case 'embrace':
                inner = self.transform(self._single_child(node))
                if not isinstance(inner, Symbol):
                    raise SyntaxError(f"{{{{ }}}} expects a name, got {inner!r}")
                return self._attach_loc(Embrace(inner), node)
            case 'name-unquote' | 'glue-name':
                raise SyntaxError(f"'{tag}' is only valid in argument-name position")

            case _:
                raise NotImplementedError(f"No transformer for tag '{tag}'")

    def _transform_arg(self, node):
        if not isinstance(node, dict) or node.get('tag') != 'arg':
            return Arg(self.transform(node))
        children = node.get('children') or {}
        value = self.transform(children['value'])
        name = self._transform_name(children.get('name'))
        return self._attach_loc(Arg(value, name), node)

    def _transform_name(self, node):
        if node is None or isinstance(node, str):
            return node
        match node.get('tag'):
            case 'name' | 'string':
                return node['text']
            case 'name-unquote':
                return NameUnquote(self.transform(self._single_child(node)))
            case 'glue-name':
                return GlueName(node['text'])
            case other:
                raise NotImplementedError(f"No transformer for argument name tag '{other}'")

    def _single_child(self, node):
        children = node.get('children', [])
        if isinstance(children, dict):
            children = list(children.values())
        if len(children) != 1:
            raise SyntaxError(f"'{node.get('tag')}' expects exactly one child, got {len(children)}")
        return children[0]

    def _op_text(self, node):
        op = node.get('op')
        if op is None:
            op = (node.get('children') or {}).get('op')
        if isinstance(op, dict):
            op = op.get('text')
        if not isinstance(op, str) or not op:
            raise SyntaxError(f"'{node.get('tag')}' is missing its operator")
        return op
