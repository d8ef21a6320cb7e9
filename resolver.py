"""Second pass over parsed functions: fix label names to instruction indices."""

from __future__ import annotations
import dataclasses
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Tuple

from lexer import Lexer, ParseError
from parser import (
    Assign,
    FunctionDef,
    Instruction,
    JumpIfFalse,
    JumpIfTrue,
    Jump,
    LabelMarker,
    LabelRef,
    Parser,
    ProgramDef,
    SourceLocation,
)


class ResolutionError(ParseError):
    """Raised when a label is undeclared or declared twice."""


@dataclass
class Function:
    name: str
    params: Tuple[str, ...]
    instructions: List[Instruction]
    labels: Dict[str, int]
    location: Optional[SourceLocation] = field(default=None, compare=False, repr=False)


@dataclass
class Program:
    filename: str = field(compare=False)
    functions: Dict[str, Function] = field(default_factory=dict)

    def get(self, name: str) -> Optional[Function]:
        return self.functions.get(name)


def _resolution_error(message: str, location: SourceLocation) -> ResolutionError:
    return ResolutionError(message, filename=location.file, line=location.line, column=location.column)


def _resolve_ref(ref: LabelRef, labels: Dict[str, int], function: str, location: SourceLocation) -> LabelRef:
    index = labels.get(ref.name)
    if index is None:
        raise _resolution_error(f"Undeclared label '{ref.name}' in function '{function}'", location)
    return LabelRef(ref.name, index)


def resolve_function(definition: FunctionDef) -> Function:
    labels: Dict[str, int] = {}
    pending: List[Instruction] = []
    for item in definition.body:
        if isinstance(item, LabelMarker):
            if item.name in labels:
                raise _resolution_error(
                    f"Duplicate label '{item.name}' in function '{definition.name}'", item.location
                )
            labels[item.name] = len(pending)
            continue
        pending.append(item)

    instructions: List[Instruction] = []
    for instruction in pending:
        if isinstance(instruction, (Jump, JumpIfTrue, JumpIfFalse)):
            target = _resolve_ref(instruction.target, labels, definition.name, instruction.location)
            instruction = dataclasses.replace(instruction, target=target)
        elif isinstance(instruction, Assign) and any(isinstance(arg, LabelRef) for arg in instruction.args):
            args = tuple(
                _resolve_ref(arg, labels, definition.name, instruction.location) if isinstance(arg, LabelRef) else arg
                for arg in instruction.args
            )
            instruction = dataclasses.replace(instruction, args=args)
        instructions.append(instruction)

    return Function(
        name=definition.name,
        params=definition.params,
        instructions=instructions,
        labels=labels,
        location=definition.location,
    )


def resolve(program: ProgramDef) -> Program:
    resolved = Program(filename=program.filename)
    for definition in program.functions:
        resolved.functions[definition.name] = resolve_function(definition)
    return resolved


def parse_source(source: str, filename: str = "<string>") -> ProgramDef:
    lexer = Lexer(source, filename)
    tokens = lexer.tokenize()
    parser = Parser(tokens, filename, source.splitlines())
    return parser.parse()


def load_program(source: str, filename: str = "<string>") -> Program:
    return resolve(parse_source(source, filename))
