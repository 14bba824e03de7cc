import pytest
from quasi.quasi_transformer import QuasiTransformer
from quasi.quasi_datatypes import (
    Literal, Symbol, Call, Arg, Unquote, Splice, Embrace, NameUnquote, GlueName
)


@pytest.fixture
def transformer():
    return QuasiTransformer()


def name(text, **loc):
    return {'tag': 'name', 'text': text, **loc}


def number(text, value):
    return {'tag': 'number', 'text': text, 'value': value}


def arg(value, arg_name=None):
    return {'tag': 'arg', 'children': {'name': arg_name, 'value': value}}


@pytest.mark.parametrize("raw, expected", [
    (number("42", 42), Literal(42)),
    (number("1.5", 1.5), Literal(1.5)),
    ({'tag': 'string', 'text': 'hi'}, Literal("hi")),
    ({'tag': 'boolean', 'value': True}, Literal(True)),
    ({'tag': 'null', 'value': None}, Literal(None)),
    (name("x"), Symbol("x")),
])
def test_atoms(transformer, raw, expected):
    assert transformer.transform(raw) == expected


def test_big_integers_stay_exact(transformer):
    raw = number("12345678901234567890", 1.2345678901234567e19)
    assert transformer.transform(raw) == Literal(12345678901234567890)


def test_call_with_named_args(transformer):
    raw = {'tag': 'call', 'children': {
        'target': name("f"),
        'args': [arg(number("1", 1)), arg({'tag': 'string', 'text': 's'}, name("n"))],
    }}
    assert transformer.transform(raw) == Call(Symbol("f"), [Literal(1), Arg(Literal("s"), "n")])


def test_binary_and_unary_ops(transformer):
    raw = {'tag': 'binary-op', 'op': '+', 'children': {
        'left': name("x"),
        'right': {'tag': 'unary-op', 'op': {'text': '-'}, 'children': {'operand': number("1", 1)}},
    }}
    expected = Call(Symbol("+"), [Symbol("x"), Call(Symbol("-"), [Literal(1)])])
    assert transformer.transform(raw) == expected


def test_markers(transformer):
    raw = {'tag': 'call', 'children': {
        'target': name("list"),
        'args': [
            arg({'tag': 'unquote', 'children': [name("x")]}),
            arg({'tag': 'splice', 'children': [name("xs")]}),
            arg({'tag': 'embrace', 'children': [name("v")]}),
            arg(number("1", 1), {'tag': 'name-unquote', 'children': [name("nm")]}),
            arg(number("2", 2), {'tag': 'glue-name', 'text': '{{v}}_x'}),
        ],
    }}
    expected = Call(Symbol("list"), [
        Unquote(Symbol("x")),
        Splice(Symbol("xs")),
        Embrace(Symbol("v")),
        Arg(Literal(1), NameUnquote(Symbol("nm"))),
        Arg(Literal(2), GlueName("{{v}}_x")),
    ])
    assert transformer.transform(raw) == expected


def test_wrappers_are_unwrapped(transformer):
    raw = {'tag': 'expr', 'children': [{'tag': 'QuasiExpr', 'children': [name("x")]}]}
    assert transformer.transform(raw) == Symbol("x")


def test_locations_are_attached(transformer):
    node = transformer.transform(name("x", line=3, col=7))
    assert node.loc == {'line': 3, 'col': 7, 'tag': 'name', 'text': 'x'}


def test_name_markers_outside_name_position(transformer):
    with pytest.raises(SyntaxError):
        transformer.transform({'tag': 'name-unquote', 'children': [name("x")]})


def test_embrace_requires_name(transformer):
    with pytest.raises(SyntaxError):
        transformer.transform({'tag': 'embrace', 'children': [number("1", 1)]})


def test_unknown_tag(transformer):
    with pytest.raises(NotImplementedError):
        transformer.transform({'tag': 'mystery'})
