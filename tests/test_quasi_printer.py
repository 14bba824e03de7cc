import pytest
from quasi.quasi_printer import Printer, as_label
from quasi.quasi_datatypes import (
    Literal, Symbol, Call, Arg, Unquote, Splice, Embrace, NameUnquote, GlueName, NamedList
)
from quasi.quasi_env import Frame
from quasi.quasi_capture import Capture

@pytest.fixture
def printer():
    return Printer()

ENV = Frame()

# Test cases: (id, object, expected_string)
FORMAT_TEST_CASES = [
    ("str", "hello", '"hello"'),
    ("str_escape", 'a"b', '"a\\"b"'),
    ("int", 123, "123"),
    ("float", -1.5, "-1.5"),
    ("float_integral", 2.0, "2"),
    ("bool_true", True, "TRUE"),
    ("bool_false", False, "FALSE"),
    ("none", None, "NULL"),
    ("vector", [1, "a"], 'c(1, "a")'),
    ("named_list", NamedList([1, 2], [None, "b"]), "list(1, b = 2)"),
    ("literal", Literal(5), "5"),
    ("symbol", Symbol("x"), "x"),
    ("infix", Call(Symbol("+"), [Symbol("x"), Literal(1)]), "x + 1"),
    (
        "nested_infix",
        Call(Symbol("*"), [Call(Symbol("+"), [Symbol("a"), Symbol("b")]), Symbol("c")]),
        "(a + b) * c"
    ),
    ("unary", Call(Symbol("-"), [Symbol("x")]), "-x"),
    ("dollar", Call(Symbol("$"), [Symbol(".data"), Symbol("x")]), ".data$x"),
    (
        "call_with_named_arg",
        Call(Symbol("f"), [Literal(1), Arg(Literal("s"), "n")]),
        'f(1, n = "s")'
    ),
    ("named_binary_is_prefix", Call(Symbol("+"), [Arg(Literal(1), "a"), Literal(2)]), "+(a = 1, 2)"),
    ("unquote", Call(Symbol("f"), [Unquote(Symbol("x"))]), "f(!!x)"),
    ("splice", Call(Symbol("f"), [Splice(Symbol("xs"))]), "f(!!!xs)"),
    ("embrace", Call(Symbol("mean"), [Embrace(Symbol("var"))]), "mean({{ var }})"),
    (
        "name_unquote",
        Call(Symbol("list"), [Arg(Literal(1), NameUnquote(Symbol("nm")))]),
        "list(!!nm := 1)"
    ),
    (
        "glue_name",
        Call(Symbol("list"), [Arg(Literal(1), GlueName("{{var}}_mean"))]),
        'list("{{var}}_mean" := 1)'
    ),
    ("override", Call(Symbol("f"), [Symbol("x", env=ENV)]), "f(^x)"),
    ("capture", Capture(Symbol("x"), ENV), "^x"),
]

@pytest.mark.parametrize("test_id, obj, expected", FORMAT_TEST_CASES, ids=[c[0] for c in FORMAT_TEST_CASES])
def test_pformat(printer, test_id, obj, expected):
    assert printer.pformat(obj) == expected


def test_as_label_hides_overrides():
    tree = Call(Symbol("+"), [Symbol("x", env=ENV), Literal(1)])
    assert as_label(tree) == "x + 1"
    assert as_label(Capture(tree, ENV)) == "x + 1"


def test_unknown_objects_fall_back_to_repr(printer):
    class Thing:
        def __repr__(self):
            return "<thing>"
    assert printer.pformat(Thing()) == "<thing>"
