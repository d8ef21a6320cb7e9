"""
Tests for the Machina lexer
"""

import pytest

from lexer import Lexer, ParseError


def types(source):
    return [token.type for token in Lexer(source).tokenize()]


def values(source):
    return [token.value for token in Lexer(source).tokenize() if token.type not in ("NEWLINE", "EOF")]


class TestTokens:
    def test_keywords_and_identifiers(self):
        assert types("proc main end jmp LOOP") == ["PROC", "IDENT", "END", "JMP", "IDENT", "EOF"]

    def test_all_instruction_keywords(self):
        source = "define jmpt jmpf call ret out output exec"
        assert types(source)[:-1] == ["DEFINE", "JMPT", "JMPF", "CALL", "RET", "OUT", "OUTPUT", "EXEC"]

    def test_operation_names_are_identifiers(self):
        assert types("add mod case switch") == ["IDENT", "IDENT", "IDENT", "IDENT", "EOF"]

    def test_variable_drops_dollar(self):
        tokens = Lexer("$counter_1").tokenize()
        assert tokens[0].type == "VARIABLE"
        assert tokens[0].value == "counter_1"

    def test_numbers(self):
        tokens = Lexer("42 -17 +3").tokenize()
        assert [(t.type, t.value) for t in tokens[:-1]] == [
            ("NUMBER", "42"),
            ("NUMBER", "-17"),
            ("NUMBER", "+3"),
        ]

    def test_symbols(self):
        assert types("fib($n, $m):") == ["IDENT", "LPAREN", "VARIABLE", "COMMA", "VARIABLE", "RPAREN", "COLON", "EOF"]

    def test_equals(self):
        assert types("$x = 1") == ["VARIABLE", "EQUALS", "NUMBER", "EOF"]


class TestLines:
    def test_newlines_are_tokens(self):
        assert types("ret\nend\n") == ["RET", "NEWLINE", "END", "NEWLINE", "EOF"]

    def test_comments_are_skipped(self):
        assert values("out 1 # prints one\n# whole line\nend") == ["out", "1", "end"]

    def test_line_and_column_tracking(self):
        tokens = Lexer("proc main\n    out 1").tokenize()
        out = [t for t in tokens if t.type == "OUT"][0]
        assert (out.line, out.column) == (2, 5)

    def test_carriage_returns_ignored(self):
        assert types("ret\r\nend") == ["RET", "NEWLINE", "END", "EOF"]


class TestStrings:
    def test_plain_string(self):
        assert values('"Fizz"') == ["Fizz"]

    def test_escapes(self):
        assert values(r'"a\nb\t\"c\"\\"') == ['a\nb\t"c"\\']

    def test_unknown_escape_kept(self):
        assert values(r'"\q"') == ["\\q"]

    def test_backslash_newline_continues_string(self):
        tokens = Lexer('out "Fizz\\\nBuzz"\nend').tokenize()
        assert tokens[1].type == "STRING"
        assert tokens[1].value == "FizzBuzz"
        assert (tokens[3].type, tokens[3].line) == ("END", 3)

    def test_unterminated_string(self):
        with pytest.raises(ParseError) as info:
            Lexer('out "oops\nend', "prog.mc").tokenize()
        assert info.value.line == 1
        assert "Unterminated" in info.value.message

    def test_unterminated_at_eof(self):
        with pytest.raises(ParseError):
            Lexer('"abc').tokenize()


class TestErrors:
    def test_unexpected_character(self):
        with pytest.raises(ParseError) as info:
            Lexer("out @", "prog.mc").tokenize()
        assert info.value.column == 5
        assert "prog.mc:1:5" in str(info.value)

    def test_bare_dollar(self):
        with pytest.raises(ParseError):
            Lexer("$ = 1").tokenize()

    def test_number_glued_to_letters(self):
        with pytest.raises(ParseError):
            Lexer("12abc").tokenize()
