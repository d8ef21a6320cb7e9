from __future__ import annotations
from dataclasses import dataclass, field
from typing import Iterable, List, Optional, Sequence, Tuple, Union

from lexer import ESCAPES, ParseError, Token
from operations import OPERATIONS, Operations
from values import TYPE_INT, TYPE_STR, Value, make_int, make_str


@dataclass(frozen=True)
class SourceLocation:
    file: str
    line: int
    column: int
    statement: str


# ---- Operands ----


class Operand:
    pass


@dataclass(frozen=True)
class Variable(Operand):
    name: str


@dataclass(frozen=True)
class Literal(Operand):
    value: Value


@dataclass(frozen=True)
class LabelRef(Operand):
    name: str
    # Filled in by the resolver.
    index: Optional[int] = None


# ---- Instructions ----


@dataclass(frozen=True)
class Node:
    location: SourceLocation = field(compare=False, repr=False)


class Instruction(Node):
    pass


@dataclass(frozen=True)
class Assign(Instruction):
    dest: str
    op: str
    args: Tuple[Operand, ...]


@dataclass(frozen=True)
class Jump(Instruction):
    target: LabelRef


@dataclass(frozen=True)
class JumpIfTrue(Instruction):
    cond: Operand
    target: LabelRef


@dataclass(frozen=True)
class JumpIfFalse(Instruction):
    cond: Operand
    target: LabelRef


@dataclass(frozen=True)
class Call(Instruction):
    dest: Optional[str]
    function: str
    args: Tuple[Operand, ...]


@dataclass(frozen=True)
class Return(Instruction):
    value: Optional[Operand]


@dataclass(frozen=True)
class Output(Instruction):
    value: Operand


@dataclass(frozen=True)
class Exec(Instruction):
    block: Operand


@dataclass(frozen=True)
class End(Instruction):
    pass


@dataclass(frozen=True)
class LabelMarker(Node):
    name: str


BodyItem = Union[Instruction, LabelMarker]


@dataclass
class FunctionDef:
    name: str
    params: Tuple[str, ...]
    body: List[BodyItem]
    location: SourceLocation = field(compare=False, repr=False)


@dataclass
class ProgramDef:
    filename: str
    functions: List[FunctionDef]


HEADER_TOKENS = {"DEFINE", "PROC"}
LINE_END_TOKENS = {"NEWLINE", "EOF"}


class Parser:
    def __init__(
        self,
        tokens: List[Token],
        filename: str,
        source_lines: List[str],
        *,
        operations: Optional[Operations] = None,
    ):
        self.tokens = tokens
        self.filename = filename
        self.source_lines = source_lines
        self.operations = operations or OPERATIONS
        self.index = 0

    def parse(self) -> ProgramDef:
        functions: List[FunctionDef] = []
        seen: set = set()
        current: Optional[FunctionDef] = None

        while self._peek().type != "EOF":
            if self._match("NEWLINE"):
                continue
            token = self._peek()
            if token.type in HEADER_TOKENS:
                # A new header closes the function that is still open.
                if current is not None:
                    functions.append(current)
                current = self._parse_header()
                if current.name in seen:
                    raise self._error(f"Duplicate function '{current.name}'", token)
                seen.add(current.name)
            elif current is None:
                raise self._error("Instruction outside of a function body", token)
            elif token.type == "END":
                self._consume("END")
                self._expect_line_end()
                current.body.append(End(location=self._location_from_token(token)))
                functions.append(current)
                current = None
            elif token.type == "IDENT" and self._peek_next().type == "COLON":
                current.body.append(self._parse_label())
            else:
                current.body.append(self._parse_instruction())
        if current is not None:
            functions.append(current)
        return ProgramDef(filename=self.filename, functions=functions)

    def _parse_header(self) -> FunctionDef:
        keyword = self._peek()
        self.index += 1
        name_token = self._consume("IDENT", "function name")
        params: List[str] = []
        if self._match("LPAREN"):
            while self._peek().type != "RPAREN":
                param = self._peek()
                if param.type not in ("VARIABLE", "IDENT"):
                    raise self._error(f"Malformed parameter '{param.value}'", param)
                if param.value in params:
                    raise self._error(f"Duplicate parameter '{param.value}'", param)
                params.append(param.value)
                self.index += 1
                self._match("COMMA")
            self._consume("RPAREN")
        self._match("COLON")
        self._expect_line_end()
        return FunctionDef(
            location=self._location_from_token(keyword),
            name=name_token.value,
            params=tuple(params),
            body=[],
        )

    def _parse_label(self) -> LabelMarker:
        name = self._consume("IDENT")
        self._consume("COLON")
        self._expect_line_end()
        return LabelMarker(location=self._location_from_token(name), name=name.value)

    def _parse_instruction(self) -> Instruction:
        token = self._peek()
        location = self._location_from_token(token)
        if token.type == "VARIABLE":
            instruction = self._parse_assignment(location)
        elif token.type == "CALL":
            self.index += 1
            instruction = self._parse_call(None, location)
        elif token.type == "JMP":
            self.index += 1
            instruction = Jump(location=location, target=self._parse_label_operand())
        elif token.type == "JMPT":
            self.index += 1
            cond = self._parse_value_operand()
            instruction = JumpIfTrue(location=location, cond=cond, target=self._parse_label_operand())
        elif token.type == "JMPF":
            self.index += 1
            cond = self._parse_value_operand()
            instruction = JumpIfFalse(location=location, cond=cond, target=self._parse_label_operand())
        elif token.type == "RET":
            self.index += 1
            value = None if self._at_line_end() else self._parse_value_operand()
            instruction = Return(location=location, value=value)
        elif token.type in ("OUT", "OUTPUT"):
            self.index += 1
            instruction = Output(location=location, value=self._parse_value_operand())
        elif token.type == "EXEC":
            self.index += 1
            block = self._peek()
            if block.type != "VARIABLE":
                raise self._error("exec expects a variable holding a block reference", block)
            self.index += 1
            instruction = Exec(location=location, block=Variable(block.value))
        elif token.type == "IDENT" and self.operations.has(token.value):
            raise self._error(f"Operation '{token.value}' needs a destination (${{name}} = {token.value} ...)", token)
        elif token.type == "IDENT":
            raise self._error(f"Unknown instruction '{token.value}'", token)
        else:
            raise self._error(f"Unexpected token '{token.value}'", token)
        self._expect_line_end()
        return instruction

    def _parse_assignment(self, location: SourceLocation) -> Instruction:
        dest = self._consume("VARIABLE")
        self._consume("EQUALS")
        token = self._peek()
        if token.type == "CALL":
            self.index += 1
            return self._parse_call(dest.value, location)
        if token.type == "IDENT":
            if not self.operations.has(token.value):
                raise self._error(f"Unknown operation '{token.value}'", token)
            self.index += 1
            operation = self.operations.get(token.value)
            args: List[Operand] = []
            while not self._at_line_end():
                if operation.is_label_position(len(args)):
                    args.append(self._parse_label_operand())
                else:
                    args.append(self._parse_value_operand())
                self._match("COMMA")
            problem = operation.arity_error(len(args))
            if problem is not None:
                raise self._error(problem, token)
            return Assign(location=location, dest=dest.value, op=operation.name, args=tuple(args))
        value = self._parse_value_operand()
        return Assign(location=location, dest=dest.value, op="mov", args=(value,))

    def _parse_call(self, dest: Optional[str], location: SourceLocation) -> Call:
        name = self._consume("IDENT", "function name")
        args: List[Operand] = []
        while not self._at_line_end():
            args.append(self._parse_value_operand())
            self._match("COMMA")
        return Call(location=location, dest=dest, function=name.value, args=tuple(args))

    def _parse_value_operand(self) -> Operand:
        token = self._peek()
        if token.type == "VARIABLE":
            self.index += 1
            return Variable(token.value)
        if token.type == "NUMBER":
            self.index += 1
            return Literal(make_int(int(token.value)))
        if token.type == "STRING":
            self.index += 1
            return Literal(make_str(token.value))
        if token.type == "IDENT":
            raise self._error(f"Expected a value but found label name '{token.value}'", token)
        if token.type in LINE_END_TOKENS:
            raise self._error("Missing operand", token)
        raise self._error(f"Malformed operand '{token.value}'", token)

    def _parse_label_operand(self) -> LabelRef:
        token = self._peek()
        if token.type != "IDENT":
            if token.type in LINE_END_TOKENS:
                raise self._error("Missing label operand", token)
            raise self._error(f"Expected a label name but found '{token.value}'", token)
        self.index += 1
        return LabelRef(token.value)

    def _expect_line_end(self) -> None:
        token = self._peek()
        if token.type not in LINE_END_TOKENS:
            raise self._error(f"Unexpected token '{token.value}' at end of line", token)
        if token.type == "NEWLINE":
            self.index += 1

    def _at_line_end(self) -> bool:
        return self._peek().type in LINE_END_TOKENS

    def _consume(self, token_type: str, what: Optional[str] = None) -> Token:
        token = self._peek()
        if token.type != token_type:
            expected = what or token_type
            raise self._error(f"Expected {expected} but found {token.type} '{token.value}'", token)
        self.index += 1
        return token

    def _match(self, token_type: str) -> bool:
        if self._peek().type == token_type:
            self.index += 1
            return True
        return False

    def _peek(self) -> Token:
        return self.tokens[self.index]

    def _peek_next(self) -> Token:
        if self.index + 1 >= len(self.tokens):
            return self.tokens[-1]
        return self.tokens[self.index + 1]

    def _error(self, message: str, token: Token) -> ParseError:
        return ParseError(message, filename=self.filename, line=token.line, column=token.column)

    def _location_from_token(self, token: Token) -> SourceLocation:
        line_index = token.line - 1
        statement = ""
        if 0 <= line_index < len(self.source_lines):
            statement = self.source_lines[line_index].strip()
        return SourceLocation(file=self.filename, line=token.line, column=token.column, statement=statement)


# ---- Serialization ----

_UNESCAPES = {char: "\\" + key for key, char in ESCAPES.items() if key != "'"}


def format_operand(operand: Operand) -> str:
    if isinstance(operand, Variable):
        return f"${operand.name}"
    if isinstance(operand, LabelRef):
        return operand.name
    if isinstance(operand, Literal):
        if operand.value.type == TYPE_INT:
            return str(operand.value.value)
        if operand.value.type == TYPE_STR:
            body = "".join(_UNESCAPES.get(ch, ch) for ch in operand.value.value)
            return f'"{body}"'
    raise ValueError(f"Cannot format operand {operand!r}")


def _join(operands: Iterable[Operand]) -> str:
    return " ".join(format_operand(operand) for operand in operands)


def format_instruction(instruction: Instruction) -> str:
    if isinstance(instruction, Assign):
        if instruction.op == "mov":
            return f"${instruction.dest} = {format_operand(instruction.args[0])}"
        return f"${instruction.dest} = {instruction.op} {_join(instruction.args)}"
    if isinstance(instruction, Jump):
        return f"jmp {instruction.target.name}"
    if isinstance(instruction, JumpIfTrue):
        return f"jmpt {format_operand(instruction.cond)} {instruction.target.name}"
    if isinstance(instruction, JumpIfFalse):
        return f"jmpf {format_operand(instruction.cond)} {instruction.target.name}"
    if isinstance(instruction, Call):
        text = f"call {instruction.function}"
        if instruction.args:
            text += " " + _join(instruction.args)
        return text if instruction.dest is None else f"${instruction.dest} = {text}"
    if isinstance(instruction, Return):
        return "ret" if instruction.value is None else f"ret {format_operand(instruction.value)}"
    if isinstance(instruction, Output):
        return f"out {format_operand(instruction.value)}"
    if isinstance(instruction, Exec):
        return f"exec {format_operand(instruction.block)}"
    if isinstance(instruction, End):
        return "end"
    raise ValueError(f"Cannot format instruction {instruction!r}")


def format_function(name: str, params: Sequence[str], instructions: Sequence[Instruction], labels: dict) -> str:
    header = f"proc {name}"
    if params:
        header += "(" + ", ".join(f"${param}" for param in params) + ")"
    lines = [header]
    by_index: dict = {}
    for label, index in labels.items():
        by_index.setdefault(index, []).append(label)
    for index in range(len(instructions) + 1):
        for label in by_index.get(index, []):
            lines.append(f"{label}:")
        if index < len(instructions):
            lines.append("    " + format_instruction(instructions[index]))
    return "\n".join(lines)


def format_program(program) -> str:
    """Serialize a resolved program back to source text.

    Formatting is normalized (`proc` headers, four-space indent, `out` for
    both output spellings); instruction order and operand values are kept,
    so loading the result yields an equal program.
    """
    chunks = [
        format_function(function.name, function.params, function.instructions, function.labels)
        for function in program.functions.values()
    ]
    return "\n\n".join(chunks) + "\n"
