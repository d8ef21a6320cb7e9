from __future__ import annotations
from dataclasses import dataclass
from typing import List, Optional


class MachinaError(Exception):
    """Base class for interpreter errors."""


class ParseError(MachinaError):
    """Raised when lexing or parsing fails."""

    def __init__(
        self,
        message: str,
        *,
        filename: str = "<string>",
        line: int = 0,
        column: int = 0,
    ) -> None:
        super().__init__(f"{message} at {filename}:{line}:{column}")
        self.message = message
        self.filename = filename
        self.line = line
        self.column = column


@dataclass
class Token:
    type: str
    value: str
    line: int
    column: int


KEYWORDS = {
    "define",
    "proc",
    "end",
    "jmp",
    "jmpt",
    "jmpf",
    "call",
    "ret",
    "out",
    "output",
    "exec",
}

SYMBOLS = {
    "(": "LPAREN",
    ")": "RPAREN",
    ",": "COMMA",
    "=": "EQUALS",
    ":": "COLON",
}

ESCAPES = {
    "n": "\n",
    "r": "\r",
    "t": "\t",
    "\\": "\\",
    '"': '"',
    "'": "'",
    "a": "\x07",
    "b": "\x08",
    "f": "\x0c",
    "v": "\x0b",
    "0": "\x00",
}

IDENT_START = "abcdefghijklmnopqrstuvwxyzABCDEFGHIJKLMNOPQRSTUVWXYZ_"
IDENT_PART = IDENT_START + "0123456789"
DIGITS = "0123456789"


class Lexer:
    def __init__(self, text: str, filename: str = "<string>") -> None:
        self.text = text
        self.filename = filename
        self.index = 0
        self.line = 1
        self.column = 1

    def tokenize(self) -> List[Token]:
        tokens: List[Token] = []
        tokens_append = tokens.append
        _advance = self._advance
        symbols = SYMBOLS
        text = self.text
        n = len(text)

        while self.index < n:
            ch: str = text[self.index]
            if ch == " " or ch == "\t" or ch == "\r":
                _advance()
                continue
            if ch == "\n":
                tokens_append(Token("NEWLINE", "\n", self.line, self.column))
                _advance()
                continue
            if ch == "#":
                self._consume_comment()
                continue
            if ch in symbols:
                tokens_append(Token(symbols[ch], ch, self.line, self.column))
                _advance()
                continue
            if ch == '"':
                tokens_append(self._consume_string())
                continue
            if ch == "$":
                tokens_append(self._consume_variable())
                continue
            if ch in DIGITS:
                tokens_append(self._consume_number())
                continue
            if ch in "+-" and self._peek_at(1) != "" and self._peek_at(1) in DIGITS:
                tokens_append(self._consume_number())
                continue
            if ch in IDENT_START:
                tokens_append(self._consume_identifier())
                continue
            raise self._error(f"Unexpected character '{ch}'")
        tokens_append(Token("EOF", "", self.line, self.column))
        return tokens

    def _consume_comment(self) -> None:
        text = self.text
        n = len(text)
        _advance = self._advance
        while self.index < n and text[self.index] != "\n":
            _advance()

    def _consume_number(self) -> Token:
        line, col = self.line, self.column
        chars: List[str] = []
        if self._peek() in "+-":
            chars.append(self._peek())
            self._advance()
        while not self._eof and self._peek() in DIGITS:
            chars.append(self._peek())
            self._advance()
        if not self._eof and self._peek() in IDENT_START:
            raise self._error("Malformed number literal", line=line, column=col)
        return Token("NUMBER", "".join(chars), line, col)

    def _consume_string(self) -> Token:
        line, col = self.line, self.column
        self._advance()  # consume opening quote
        chars: List[str] = []
        while not self._eof:
            ch = self._peek()
            if ch == '"':
                self._advance()
                return Token("STRING", "".join(chars), line, col)
            if ch == "\n":
                break
            if ch == "\\":
                self._advance()
                if self._eof:
                    break
                escaped = self._peek()
                self._advance()
                if escaped == "\n":
                    # Line continuation.
                    continue
                # Unknown escapes are kept verbatim.
                chars.append(ESCAPES.get(escaped, "\\" + escaped))
                continue
            chars.append(ch)
            self._advance()
        raise self._error("Unterminated string literal", line=line, column=col)

    def _consume_variable(self) -> Token:
        line, col = self.line, self.column
        self._advance()  # consume '$'
        if self._eof or self._peek() not in IDENT_START:
            raise self._error("Expected variable name after '$'", line=line, column=col)
        name = self._consume_word()
        return Token("VARIABLE", name, line, col)

    def _consume_identifier(self) -> Token:
        line, col = self.line, self.column
        value = self._consume_word()
        token_type: str = value.upper() if value in KEYWORDS else "IDENT"
        return Token(token_type, value, line, col)

    def _consume_word(self) -> str:
        chars: List[str] = []
        text = self.text
        n = len(text)
        _advance = self._advance
        while self.index < n and text[self.index] in IDENT_PART:
            chars.append(text[self.index])
            _advance()
        return "".join(chars)

    def _error(self, message: str, *, line: Optional[int] = None, column: Optional[int] = None) -> ParseError:
        return ParseError(
            message,
            filename=self.filename,
            line=self.line if line is None else line,
            column=self.column if column is None else column,
        )

    @property
    def _eof(self) -> bool:
        return self.index >= len(self.text)

    def _peek(self) -> str:
        return self.text[self.index]

    def _peek_at(self, offset: int) -> str:
        position = self.index + offset
        if position >= len(self.text):
            return ""
        return self.text[position]

    def _advance(self) -> None:
        if self.text[self.index] == "\n":
            self.line += 1
            self.column = 1
        else:
            self.column += 1
        self.index += 1
