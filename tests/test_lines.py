"""Tests for logical line reconstruction."""

from mongospectre.languages import CSharpLanguage, GoLanguage, PythonLanguage
from mongospectre.scanners.lines import LogicalLine, join_continuation_lines, paren_balance


def test_paren_balance_counts_open_calls():
    """Unclosed calls leave a positive balance."""
    assert paren_balance("coll.Find(ctx, bson.M{") == 1
    assert paren_balance("})") == -1
    assert paren_balance("f(g(x))") == 0


def test_paren_balance_ignores_strings():
    """Parentheses inside string literals do not count."""
    assert paren_balance('fmt.Println("(((", x)') == 0
    assert paren_balance("log('a ) b'") == 1


def test_paren_balance_ignores_line_comments():
    """Everything after the comment marker is skipped."""
    assert paren_balance("find(  // close later )", GoLanguage) == 1
    assert paren_balance("find(  # close later )", PythonLanguage) == 1


def test_paren_balance_escaped_quote():
    """An escaped quote does not end the string."""
    assert paren_balance(r'call("a \" ( b")') == 0


def test_paren_balance_verbatim_strings():
    """Backslash is literal in Go raw strings and C# verbatim strings."""
    assert paren_balance("f(`C:\\`)", GoLanguage) == 0
    assert paren_balance('f(@"C:\\", x)', CSharpLanguage) == 0


def test_join_single_lines_untouched():
    """Balanced lines become their own logical lines."""
    out = join_continuation_lines(["a()", "b()"])
    assert out == [LogicalLine(1, "a()"), LogicalLine(2, "b()")]


def test_join_multiline_call():
    """Continuation lines are stripped and joined with spaces."""
    lines = [
        'db.collection("users").find({',
        '    "status": "active",',
        "})",
        "next()",
    ]
    out = join_continuation_lines(lines)
    assert out[0] == LogicalLine(1, 'db.collection("users").find({ "status": "active", })')
    assert out[1] == LogicalLine(4, "next()")


def test_join_respects_cap():
    """A never-closing call is flushed after max_lines physical lines."""
    lines = ["open("] + ["x,"] * 3
    out = join_continuation_lines(lines, max_lines=3)
    assert [ll.line for ll in out] == [1, 4]
    assert out[0].text == "open( x, x,"


def test_join_flushes_unterminated_tail():
    """Leftover buffered lines are emitted at end of input."""
    out = join_continuation_lines(["call(", "a"])
    assert out == [LogicalLine(1, "call( a")]
