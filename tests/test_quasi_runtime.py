import pytest
from quasi.quasi_datatypes import Literal, Symbol, Call, Arg, NamedList, UnboundSymbol
from quasi.quasi_capture import Capture
from quasi.quasi_runtime import Session, StdLib, ExecutionResult
from quasi.quasi_interpreter import Evaluator
from quasi.quasi_env import Frame


@pytest.fixture
def session():
    return Session()


def call(fname, *args):
    return Call(Symbol(fname), list(args))


# --- StdLib ---

def test_stdlib_binds_names_and_operators():
    frame = StdLib(Evaluator()).bind(Frame())
    for name in ("c", "list", "length", "sum", "mean", "min", "max", "paste",
                 "quo", "enquo", "enquos", "expr", "sym", "eval_tidy", "n",
                 "+", "-", "==", "!", "$", "[["):
        assert name in frame, name
    assert "bind" not in frame


@pytest.mark.parametrize("op, a, b, expected", [
    ("+", 1, 2, 3),
    ("+", [1, 2], 10, [11, 12]),
    ("*", [1, 2], [3, 4], [3, 8]),
    ("-", 5, 3, 2),
    ("/", [2, 4], 2, [1.0, 2.0]),
    ("^", 2, 3, 8),
    ("%%", 7, 3, 1),
    ("%/%", 7, 2, 3),
    (">", [1, 5], 3, [False, True]),
    ("==", "a", "a", True),
    ("&", [True, False], True, [True, False]),
])
def test_elementwise_operators(session, op, a, b, expected):
    assert session.eval_tidy(call(op, Literal(a), Literal(b))) == expected


def test_operator_length_mismatch(session):
    with pytest.raises(ValueError):
        session.eval_tidy(call("+", Literal([1, 2]), Literal([1, 2, 3])))


def test_unary_minus_and_not(session):
    assert session.eval_tidy(call("-", Literal([1, 2]))) == [-1, -2]
    assert session.eval_tidy(call("!", Literal(False))) is True


def test_binary_plus_with_null_operand_fails(session):
    with pytest.raises(TypeError):
        session.eval_tidy(call("+", Literal(1), Literal(None)))
    with pytest.raises(TypeError):
        session.eval_tidy(call("-", Literal(1), Literal(None)))


def test_vector_helpers(session):
    assert session.eval_tidy(call("c", Literal(1), Literal([2, 3]))) == [1, 2, 3]
    assert session.eval_tidy(call("length", Literal([1, 2, 3]))) == 3
    assert session.eval_tidy(call("length", Literal("abc"))) == 1
    assert session.eval_tidy(call("sum", Literal([1, 2]), Literal(3))) == 6
    assert session.eval_tidy(call("mean", Literal([1, 2, 3, 4]))) == 2.5
    assert session.eval_tidy(call("min", Literal([4, 2]))) == 2
    assert session.eval_tidy(call("max", Literal([4, 2]))) == 4


def test_paste(session):
    assert session.eval_tidy(call("paste", Literal("a"), Literal(1))) == "a 1"
    assert session.eval_tidy(Call(Symbol("paste"), [Literal(["x", "y"]), Literal("v"), Arg(Literal("_"), "sep")])) == ["x_v", "y_v"]


def test_list_keeps_names(session):
    out = session.eval_tidy(Call(Symbol("list"), [Literal(1), Arg(Literal(2), "b")]))
    assert out == NamedList([1, 2], [None, "b"])


def test_n_counts_rows_in_mask(session):
    assert session.eval_tidy(call("n"), data={"x": [1, 2, 3]}) == 3


def test_dollar_and_double_bracket_on_pronouns(session):
    session.global_env["x"] = 2
    data = {"x": 1}
    assert session.eval_tidy(call("$", Symbol(".env"), Symbol("x")), data=data) == 2
    assert session.eval_tidy(call("$", Symbol(".data"), Symbol("x")), data=data) == 1
    assert session.eval_tidy(call("[[", Symbol(".data"), Literal("x")), data=data) == 1
    with pytest.raises(UnboundSymbol):
        session.eval_tidy(call("$", Symbol(".data"), Symbol("y")), data=data)


def test_dollar_on_named_list(session):
    session.global_env["rec"] = NamedList([1, 2], ["a", "b"])
    assert session.eval_tidy(call("$", Symbol("rec"), Symbol("b"))) == 2


def test_quo_expr_and_sym(session):
    q = session.eval_tidy(call("quo", call("+", Symbol("x"), Literal(1))))
    assert isinstance(q, Capture)
    assert q.env is session.global_env
    assert q.label == "x + 1"
    assert session.eval_tidy(call("expr", Symbol("x"))) == Symbol("x")
    assert session.eval_tidy(call("sym", Literal("x"))) == Symbol("x")


def test_in_language_eval_tidy_with_data(session):
    session.global_env["x"] = 100
    session.global_env["q"] = session.quote(call("+", Symbol("x"), Literal(1)))
    assert session.eval_tidy(call("eval_tidy", Symbol("q"))) == 101
    session.global_env["d"] = {"x": [1, 2]}
    assert session.eval_tidy(call("eval_tidy", Symbol("q"), Symbol("d"))) == [2, 3]


def test_define_returns_closure(session):
    fn = session.define("inc", ["a"], call("+", Symbol("a"), Literal(1)))
    assert session.global_env["inc"] is fn
    assert fn(1) == 2


def test_session_accepts_raw_parser_output(session):
    raw = {'tag': 'binary-op', 'op': '*', 'children': {
        'left': {'tag': 'name', 'text': 'x'},
        'right': {'tag': 'number', 'text': '2', 'value': 2},
    }}
    assert session.eval_tidy(raw, data={"x": [1, 2]}) == [2, 4]
    assert session.quote(raw).label == "x * 2"


def test_session_without_stdlib():
    bare = Session(stdlib=False)
    assert "+" not in bare.global_env
    with pytest.raises(UnboundSymbol):
        bare.eval_tidy(call("+", Literal(1), Literal(2)))


# --- ExecutionResult ---

def test_run_success(session):
    result = session.run(call("+", Literal(1), Literal(2)))
    assert result == ExecutionResult(status='success', value=3)
    assert result.format_error() == ""


def test_run_reports_unbound_symbol(session):
    result = session.run(call("+", Symbol("nope"), Literal(1)))
    assert result.status == 'error'
    assert result.error_message.startswith("UnboundSymbol: nope")


def test_run_reports_type_error_with_call_name(session):
    session.define("f", ["a"], Symbol("a"))
    result = session.run(call("f", Literal(1), Literal(2)))
    assert result.status == 'error'
    first = result.error_message.splitlines()[0]
    assert first.startswith("TypeError: unused argument")
    assert first.endswith("in (f)")
    assert "quasi stacktrace: (f 1 2)" in result.error_message


def test_run_error_location_from_parser_output(session):
    raw = {'tag': 'name', 'text': 'missing', 'line': 2, 'col': 4}
    result = session.run(raw)
    assert result.error_token['line'] == 2
    assert result.format_error().startswith("Error on line 2, col 4: UnboundSymbol: missing")


def test_failed_run_unwinds_call_stack(session):
    session.define("f", ["a"], Symbol("a"))
    result = session.run(call("f", Literal(1), Literal(2)))
    assert "quasi stacktrace: (f 1 2)" in result.error_message
    assert session.evaluator.call_stack == []
    assert session.run(Literal(1)).value == 1
