"""Runtime values and runtime errors shared by the operation table and the interpreter."""

from __future__ import annotations
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Callable, Dict, List, Optional

from lexer import MachinaError

if TYPE_CHECKING:
    from parser import SourceLocation


TYPE_INT = "INT"
TYPE_BOOL = "BOOL"
TYPE_STR = "STR"
TYPE_BLOCK = "BLOCK"
TYPE_UNIT = "UNIT"


@dataclass(frozen=True)
class BlockRef:
    """Handle naming a label, valid only inside the frame that produced it."""

    label: str
    index: int
    function: str
    frame_id: str


@dataclass(frozen=True)
class Value:
    type: str
    value: Any

    def __str__(self) -> str:
        return TYPES[self.type].to_str(self)


UNIT = Value(TYPE_UNIT, None)
TRUE = Value(TYPE_BOOL, True)
FALSE = Value(TYPE_BOOL, False)


def make_int(number: int) -> Value:
    return Value(TYPE_INT, int(number))


def make_str(text: str) -> Value:
    return Value(TYPE_STR, text)


def make_bool(flag: bool) -> Value:
    return TRUE if flag else FALSE


class MachinaRuntimeError(MachinaError):
    """Raised for runtime faults."""

    def __init__(
        self,
        message: str,
        *,
        location: Optional["SourceLocation"] = None,
        rule: Optional[str] = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.location = location
        self.rule = rule
        self.step_index: Optional[int] = None
        # Exceptions raised by on_error hooks while this error was reported.
        self.hook_failures: List[Exception] = []


class UnknownFunction(MachinaRuntimeError):
    pass


class ArityMismatch(MachinaRuntimeError):
    pass


class UnknownVariable(MachinaRuntimeError):
    pass


class TypeMismatch(MachinaRuntimeError):
    pass


class DivisionByZero(MachinaRuntimeError):
    pass


class NoMatchingCase(MachinaRuntimeError):
    pass


class StackOverflow(MachinaRuntimeError):
    pass


class StepBudgetExceeded(MachinaRuntimeError):
    pass


# ---- Types ----

TypeCondition = Callable[[Value], Optional[bool]]
TypeToStr = Callable[[Value], str]


@dataclass(frozen=True)
class TypeSpec:
    name: str
    # None means the type cannot be used as a condition.
    condition: TypeCondition
    to_str: TypeToStr


def _no_condition(_: Value) -> Optional[bool]:
    return None


TYPES: Dict[str, TypeSpec] = {
    TYPE_INT: TypeSpec(
        name=TYPE_INT,
        condition=lambda v: v.value != 0,
        to_str=lambda v: str(v.value),
    ),
    TYPE_BOOL: TypeSpec(
        name=TYPE_BOOL,
        condition=lambda v: bool(v.value),
        to_str=lambda v: "1" if v.value else "0",
    ),
    TYPE_STR: TypeSpec(
        name=TYPE_STR,
        condition=_no_condition,
        to_str=lambda v: v.value,
    ),
    TYPE_BLOCK: TypeSpec(
        name=TYPE_BLOCK,
        condition=_no_condition,
        to_str=lambda v: f"<block {v.value.label}>",
    ),
    TYPE_UNIT: TypeSpec(
        name=TYPE_UNIT,
        condition=_no_condition,
        to_str=lambda v: "",
    ),
}


def truthy(value: Value, rule: str, location: Optional["SourceLocation"] = None) -> bool:
    flag = TYPES[value.type].condition(value)
    if flag is None:
        raise TypeMismatch(
            f"{rule} expects a boolean or integer condition, got {value.type}",
            location=location,
            rule=rule,
        )
    return flag


def render(value: Value) -> str:
    return TYPES[value.type].to_str(value)
